"""
Semi-Empirical Copper Isotherm Model

Equilibrium between aqueous and organic copper for an oxime extractant
(Lix984N-type) as a function of reagent concentration V% and the acid
balance of the aqueous phase. Each circuit builds its own constants
(a..f) from its aqueous chemistry and the trial V%:

    extraction: PLS acid/copper,   e = -25.698 V^-1.704, f = 10.663 V^-0.608
    stripping:  spent electrolyte, e = 5.11e-3 V - 0.194, f = 12.81 V^-0.901

Aqueous -> organic solves a cubic in Cu_org; organic -> aqueous solves a
quadratic in Cu_aq and takes the smaller root. The empirical exponents are
fixed domain constants.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from utils.cubic_solver import solve_cubic
from utils.sx_errors import DegenerateCubicError

logger = logging.getLogger(__name__)

# Stoichiometry: g/L H2SO4 released per g/L Cu extracted
ACID_PER_COPPER = 1.54

# Shared isotherm constants
REAGENT_LOADING_SLOPE = 3.303   # c = 3.303 * V%
ORGANIC_LOADING_COEFF = -3.0842  # d

# Extraction exponents on V%
EXTRACTION_E_COEFF = -25.698
EXTRACTION_E_EXPONENT = -1.704
EXTRACTION_F_COEFF = 10.663
EXTRACTION_F_EXPONENT = -0.608

# Stripping: linear e, power-law f
STRIPPING_E_SLOPE = 5.11e-3
STRIPPING_E_INTERCEPT = -0.194
STRIPPING_F_COEFF = 12.81
STRIPPING_F_EXPONENT = -0.901


@dataclass(frozen=True)
class IsothermConstants:
    """Six constants that fully determine one circuit's equilibrium curve."""
    a: float
    b: float
    c: float
    d: float
    e: float
    f: float


def extraction_constants(pls_acid_g_L: float, pls_copper_g_L: float,
                         v_percent: float) -> IsothermConstants:
    """Isotherm constants for the extraction circuit at a trial V%."""
    return IsothermConstants(
        a=pls_acid_g_L + ACID_PER_COPPER * pls_copper_g_L,
        b=-ACID_PER_COPPER,
        c=REAGENT_LOADING_SLOPE * v_percent,
        d=ORGANIC_LOADING_COEFF,
        e=EXTRACTION_E_COEFF * math.pow(v_percent, EXTRACTION_E_EXPONENT),
        f=EXTRACTION_F_COEFF * math.pow(v_percent, EXTRACTION_F_EXPONENT),
    )


def stripping_constants(spent_acid_g_L: float, spent_copper_g_L: float,
                        v_percent: float) -> IsothermConstants:
    """Isotherm constants for the stripping circuit at a trial V%."""
    return IsothermConstants(
        a=spent_acid_g_L + ACID_PER_COPPER * spent_copper_g_L,
        b=-ACID_PER_COPPER,
        c=REAGENT_LOADING_SLOPE * v_percent,
        d=ORGANIC_LOADING_COEFF,
        e=STRIPPING_E_SLOPE * v_percent + STRIPPING_E_INTERCEPT,
        f=STRIPPING_F_COEFF * math.pow(v_percent, STRIPPING_F_EXPONENT),
    )


class Isotherm:
    """
    Equilibrium curve of one circuit.

    Instances are cheap and built fresh for every trial V%; they hold no
    state beyond their constants.

    Usage:
        iso = Isotherm(extraction_constants(1.96, 7.0, 17.1), "extraction")
        y = iso.organic_from_aqueous(7.0)   # maximum loading
        x = iso.aqueous_from_organic(y)     # back to ~7.0
    """

    def __init__(self, constants: IsothermConstants, circuit: str = "extraction"):
        self.constants = constants
        self.circuit = circuit

        k = constants
        self._denominator = (k.d ** 2) * k.e
        # alpha and epsilon do not depend on the aqueous concentration
        self._alpha = (2 * k.c * k.d * k.e + (k.d ** 2) * k.f) / self._denominator
        self._lambda_base = 2 * k.c * k.d * k.f + (k.c ** 2) * k.e
        self._epsilon = (k.f * (k.c ** 2)) / self._denominator

    def __repr__(self):
        return f"Isotherm({self.circuit}, {self.constants})"

    def organic_from_aqueous(self, cu_aq: float) -> float:
        """
        Organic copper in equilibrium with an aqueous copper concentration.

        Returns 0 for cu_aq <= 0. A NaN from the cubic solve is passed
        through; stage searches then report divergence.

        Raises:
            DegenerateCubicError: If the cubic solve reports a degenerate polynomial
        """
        if cu_aq <= 0:
            return 0.0

        k = self.constants
        g = ((k.a + k.b * cu_aq) ** 2) / cu_aq
        lam = (self._lambda_base - g) / self._denominator

        cu_org = solve_cubic(1.0, self._alpha, lam, self._epsilon)
        if cu_org is None:
            raise DegenerateCubicError(
                f"{self.circuit} isotherm produced a degenerate cubic at Cu_aq={cu_aq:.4g} g/L"
            )
        return cu_org

    def aqueous_from_organic(self, cu_org: float) -> Optional[float]:
        """
        Aqueous copper in equilibrium with an organic copper loading.

        Returns 0 for cu_org <= 0 and None when no real aqueous
        concentration matches this loading under the current constants.
        """
        if cu_org <= 0:
            return 0.0

        k = self.constants
        h = ((k.e * cu_org + k.f) * (k.c + k.d * cu_org) ** 2) / cu_org

        quad_a = k.b ** 2
        quad_b = 2 * k.a * k.b - h
        quad_c = k.a ** 2
        discriminant = quad_b * quad_b - 4 * quad_a * quad_c
        if discriminant < 0:
            logger.debug(
                f"{self.circuit} isotherm: no aqueous root for Cu_org={cu_org:.4g} g/L "
                f"(discriminant={discriminant:.3e})"
            )
            return None

        return (h - 2 * k.a * k.b - math.sqrt(discriminant)) / (2 * quad_a)
