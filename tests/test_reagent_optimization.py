"""
Tests for the outer V% consistency search and the async tool functions.
"""

import asyncio
import dataclasses
import json
import logging
import pytest
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError

import tools.reagent_optimization as reagent_optimization
from tools.circuit_simulation import negative_concentrations
from tools.schemas import ProcessInputs
from tools.reagent_optimization import (
    evaluate_circuits,
    consistency_residual,
    optimize_reagent_concentration,
    optimize_sx_circuit,
    simulate_sx_circuit,
)
from utils.sx_defaults import apply_solver_defaults, get_default_process_inputs
from utils.sx_errors import (
    DivergedError,
    ModelInconsistencyError,
    NotConvergedError,
    OutOfRangeError,
    SXModelError,
)

V_BASELINE = 17.336343201064977

DILUTE_FEED = {
    "pls_copper_g_L": 1.668,
    "pls_acid_g_L": 9.259,
    "max_loading_percent": 77.47,
    "oa_ratio_extraction": 2.708,
}


@pytest.fixture
def inputs():
    return ProcessInputs(**get_default_process_inputs())


class TestOptimizeReagentConcentration:
    """Pure synchronous search."""

    def test_baseline_optimum(self, inputs):
        result = optimize_reagent_concentration(inputs)

        assert result.v_percent == pytest.approx(V_BASELINE, abs=1e-3)
        assert abs(result.residual) < 1e-7
        assert result.so_consistency == result.residual
        assert result.objective_evaluations >= 2
        assert result.extraction.recovery_percent == pytest.approx(96.8636, abs=1e-2)
        assert result.stripping.recovery_percent == pytest.approx(71.926, abs=1e-2)

    def test_circuits_agree_on_loaded_organic(self, inputs):
        result = optimize_reagent_concentration(inputs)
        assert result.stripping.loaded_organic == result.extraction.loaded_organic
        assert result.extraction.stripped_organic == pytest.approx(
            result.stripping.stripped_organic, abs=1e-6
        )

    @pytest.mark.parametrize("pls_copper", [0.0, -1.0])
    def test_no_feed_copper_diverges(self, inputs, pls_copper):
        degenerate = dataclasses.replace(inputs, pls_copper_g_L=pls_copper)
        with pytest.raises(DivergedError):
            optimize_reagent_concentration(degenerate)

    def test_optimum_above_ceiling_is_out_of_range(self, inputs):
        with pytest.raises(OutOfRangeError, match="outside the plausible range"):
            optimize_reagent_concentration(inputs, {"max_v_percent": 17.2})

    def test_iteration_budget(self, inputs):
        with pytest.raises(NotConvergedError):
            optimize_reagent_concentration(inputs, {"max_iterations": 1})

    def test_unknown_setting_rejected(self, inputs):
        with pytest.raises(ValueError, match="Unknown solver setting"):
            optimize_reagent_concentration(inputs, {"tolerence": 1e-6})

    def test_invalid_setting_rejected(self, inputs):
        with pytest.raises(ValueError):
            optimize_reagent_concentration(inputs, {"initial_v_percent": -2.0})

    def test_recovery_rises_with_extraction_efficiency(self, inputs):
        recoveries = []
        for eff in (80.0, 90.0, 100.0):
            varied = dataclasses.replace(inputs, efficiency_e1_percent=eff, efficiency_e2_percent=eff)
            recoveries.append(optimize_reagent_concentration(varied).extraction.recovery_percent)
        assert recoveries == sorted(recoveries)
        assert recoveries[0] == pytest.approx(94.47, abs=0.05)
        assert recoveries[2] == pytest.approx(97.25, abs=0.05)

    @pytest.mark.parametrize("overrides,expected_v", [
        (DILUTE_FEED, 3.540361090282372),
        ({"pls_copper_g_L": 3.0}, 8.657813072814236),
        ({"oa_ratio_extraction": 2.0}, 11.663582903086189),
    ])
    def test_optimum_far_from_initial_guess(self, inputs, overrides, expected_v):
        varied = dataclasses.replace(inputs, **overrides)
        result = optimize_reagent_concentration(varied)

        assert result.v_percent == pytest.approx(expected_v, abs=1e-6)
        assert abs(result.residual) < 1e-7
        assert negative_concentrations(result) == []

    def test_search_passes_through_unphysical_seeds(self, inputs):
        dilute = dataclasses.replace(inputs, **DILUTE_FEED)
        settings = apply_solver_defaults()

        # Both seeds give a negative S1 electrolyte inlet
        for v in (17.0, 17.2):
            assert negative_concentrations(evaluate_circuits(dilute, v, settings))
        assert consistency_residual(dilute, 17.0, settings) == pytest.approx(5.358673, abs=1e-5)
        assert consistency_residual(dilute, 17.2, settings) == pytest.approx(5.435178, abs=1e-5)

        result = optimize_reagent_concentration(dilute)
        assert result.extraction.loaded_organic == pytest.approx(0.996871, abs=1e-5)
        assert result.stripping.stage1.organic_inlet.aqueous == pytest.approx(40.1104, abs=1e-3)

    def test_unphysical_converged_point_raises(self, inputs, monkeypatch):
        dilute = dataclasses.replace(inputs, **DILUTE_FEED)
        monkeypatch.setattr(reagent_optimization, "secant_solve", lambda *args, **kwargs: 17.0)

        with pytest.raises(ModelInconsistencyError, match="electrolyte entering S1"):
            optimize_reagent_concentration(dilute)


class TestConsistencyResidual:
    """Objective evaluated at individual trial V%."""

    def test_residual_at_fixed_v(self, inputs):
        settings = apply_solver_defaults()
        assert consistency_residual(inputs, 17.0, settings) == pytest.approx(-0.150, abs=0.005)
        assert consistency_residual(inputs, 25.0, settings) == pytest.approx(3.593, abs=0.005)

    def test_infeasible_trial_returns_sentinel(self, inputs):
        settings = apply_solver_defaults()
        assert consistency_residual(inputs, 5.0, settings) == 1e9
        assert consistency_residual(inputs, 10.0, settings) == 1e9

    def test_custom_sentinel(self, inputs):
        settings = apply_solver_defaults({"infeasible_residual": 42.0})
        assert consistency_residual(inputs, 5.0, settings) == 42.0

    def test_evaluate_circuits_propagates_failures(self, inputs):
        with pytest.raises((SXModelError, ArithmeticError, ValueError)):
            evaluate_circuits(inputs, 5.0)

    def test_evaluations_are_independent(self, inputs):
        first = evaluate_circuits(inputs, 17.0)
        evaluate_circuits(inputs, 25.0)
        again = evaluate_circuits(inputs, 17.0)
        assert again.residual == first.residual
        assert again.extraction.raffinate == first.extraction.raffinate


class TestAsyncTools:
    """MCP-facing async wrappers."""

    @pytest.mark.asyncio
    async def test_optimize_sx_circuit_defaults(self):
        result = await optimize_sx_circuit()

        assert set(result) == {"summary", "result", "copper_balance", "report_tables"}
        summary = result["summary"]
        assert summary["v_percent"] == pytest.approx(V_BASELINE, abs=1e-3)
        assert summary["raffinate_copper_g_L"] == pytest.approx(0.21955, abs=1e-3)
        assert summary["net_copper_transfer"] == pytest.approx(0.3129, abs=1e-3)
        assert result["copper_balance"]["passed"] is True
        json.dumps(result)

    @pytest.mark.asyncio
    async def test_optimize_without_report_tables(self):
        result = await optimize_sx_circuit(include_report_tables=False)
        assert "report_tables" not in result

    @pytest.mark.asyncio
    async def test_simulate_sx_circuit_fixed_v(self):
        result = await simulate_sx_circuit(17.0)

        assert result["summary"]["v_percent"] == 17.0
        assert result["summary"]["so_consistency"] == pytest.approx(-0.150, abs=0.005)
        assert result["copper_balance"]["passed"] is False

    @pytest.mark.asyncio
    async def test_simulate_unphysical_v_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="tools.reagent_optimization"):
            result = await simulate_sx_circuit(17.0, **DILUTE_FEED)

        assert result["summary"]["v_percent"] == 17.0
        assert "not physical" in caplog.text

    @pytest.mark.asyncio
    async def test_simulate_rejects_non_positive_v(self):
        with pytest.raises(ValueError, match="must be positive"):
            await simulate_sx_circuit(0.0)

    @pytest.mark.asyncio
    async def test_advance_must_exceed_spent(self):
        with pytest.raises(ValidationError):
            await optimize_sx_circuit(advance_copper_g_L=30.0)

    @pytest.mark.asyncio
    async def test_zero_efficiency_rejected(self):
        with pytest.raises(ValidationError):
            await optimize_sx_circuit(efficiency_e1_percent=0.0)

    @pytest.mark.asyncio
    async def test_concurrent_solves_match_sequential(self):
        baseline = await optimize_sx_circuit(include_report_tables=False)
        low_eff = await optimize_sx_circuit(
            efficiency_e1_percent=80.0, efficiency_e2_percent=80.0, include_report_tables=False
        )

        concurrent = await asyncio.gather(
            optimize_sx_circuit(include_report_tables=False),
            optimize_sx_circuit(
                efficiency_e1_percent=80.0, efficiency_e2_percent=80.0, include_report_tables=False
            ),
        )

        assert concurrent[0]["summary"] == baseline["summary"]
        assert concurrent[1]["summary"] == low_eff["summary"]
        assert concurrent[1]["summary"]["v_percent"] < concurrent[0]["summary"]["v_percent"]
