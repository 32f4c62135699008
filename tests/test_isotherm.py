"""
Tests for the semi-empirical copper isotherm.

Constants are evaluated at the baseline optimum V% = 17.3363 with the
baseline PLS (7.0 g/L Cu, 1.96 g/L acid) and spent electrolyte
(35 g/L Cu, 190 g/L acid).
"""

import pytest
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import utils.isotherm as isotherm_module
from utils.isotherm import (
    Isotherm,
    IsothermConstants,
    extraction_constants,
    stripping_constants,
    ACID_PER_COPPER,
)
from utils.sx_errors import DegenerateCubicError

V_BASELINE = 17.336343201064977


@pytest.fixture
def extraction_isotherm():
    return Isotherm(extraction_constants(1.96, 7.0, V_BASELINE), "extraction")


@pytest.fixture
def stripping_isotherm():
    return Isotherm(stripping_constants(190.0, 35.0, V_BASELINE), "stripping")


class TestIsothermConstants:
    """Constant derivation per circuit."""

    def test_extraction_constants(self):
        k = extraction_constants(1.96, 7.0, V_BASELINE)
        assert k.a == pytest.approx(1.96 + 1.54 * 7.0)
        assert k.b == -ACID_PER_COPPER
        assert k.c == pytest.approx(57.2619, rel=1e-5)
        assert k.d == -3.0842
        assert k.e == pytest.approx(-0.198937, rel=1e-5)
        assert k.f == pytest.approx(1.881886, rel=1e-5)

    def test_stripping_constants(self):
        k = stripping_constants(190.0, 35.0, V_BASELINE)
        assert k.a == pytest.approx(190.0 + 1.54 * 35.0)
        assert k.c == pytest.approx(3.303 * V_BASELINE)
        assert k.e == pytest.approx(5.11e-3 * V_BASELINE - 0.194)
        assert k.f == pytest.approx(12.81 * V_BASELINE ** -0.901)

    def test_constants_are_immutable(self):
        k = extraction_constants(1.96, 7.0, V_BASELINE)
        with pytest.raises(AttributeError):
            k.a = 0.0

    def test_non_positive_v_percent_is_a_math_error(self):
        with pytest.raises((ValueError, ZeroDivisionError)):
            extraction_constants(1.96, 7.0, 0.0)


class TestIsothermInverses:
    """organic_from_aqueous and aqueous_from_organic."""

    def test_zero_maps_to_zero(self, extraction_isotherm, stripping_isotherm):
        for iso in (extraction_isotherm, stripping_isotherm):
            assert iso.organic_from_aqueous(0.0) == 0.0
            assert iso.aqueous_from_organic(0.0) == 0.0
            assert iso.organic_from_aqueous(-1.0) == 0.0
            assert iso.aqueous_from_organic(-1.0) == 0.0

    def test_maximum_loading_at_feed_copper(self, extraction_isotherm):
        assert extraction_isotherm.organic_from_aqueous(7.0) == pytest.approx(9.42697, abs=1e-4)

    @pytest.mark.parametrize("organic", [0.5, 1.0, 2.0, 4.0, 7.0, 9.0])
    def test_extraction_round_trip(self, extraction_isotherm, organic):
        aqueous = extraction_isotherm.aqueous_from_organic(organic)
        assert aqueous is not None and aqueous > 0
        assert extraction_isotherm.organic_from_aqueous(aqueous) == pytest.approx(organic, abs=1e-8)

    @pytest.mark.parametrize("organic", [0.5, 1.0, 2.0, 3.0, 4.0])
    def test_stripping_round_trip(self, stripping_isotherm, organic):
        aqueous = stripping_isotherm.aqueous_from_organic(organic)
        assert aqueous is not None and aqueous > 0
        assert stripping_isotherm.organic_from_aqueous(aqueous) == pytest.approx(organic, abs=1e-8)

    def test_extraction_curve_increases_with_aqueous_copper(self, extraction_isotherm):
        loadings = [extraction_isotherm.organic_from_aqueous(x) for x in (0.2, 1.95, 7.0)]
        assert loadings == sorted(loadings)
        assert loadings[0] < loadings[-1]

    def test_loading_beyond_capacity_has_no_aqueous_root(self, extraction_isotherm, stripping_isotherm):
        assert extraction_isotherm.aqueous_from_organic(10.0) is None
        assert extraction_isotherm.aqueous_from_organic(20.0) is None
        assert stripping_isotherm.aqueous_from_organic(10.0) is None

    def test_degenerate_cubic_raises(self, extraction_isotherm, monkeypatch):
        monkeypatch.setattr(isotherm_module, "solve_cubic", lambda a, b, c, d: None)
        with pytest.raises(DegenerateCubicError, match="extraction"):
            extraction_isotherm.organic_from_aqueous(7.0)

    def test_custom_constants(self):
        iso = Isotherm(IsothermConstants(a=10.0, b=-1.54, c=50.0, d=-3.0842, e=-0.2, f=2.0))
        assert iso.circuit == "extraction"
        assert iso.organic_from_aqueous(0.0) == 0.0
