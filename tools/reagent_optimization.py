"""
Reagent Concentration (V%) Optimization

Finds the V% at which the two circuits agree on the stripped organic:

    f(V%) = SO_extraction(V%) - SO_stripping(V%) = 0

The secant search starts at 17.1 V%. A trial V% whose circuit simulation
fails returns a large sentinel residual instead of aborting the search.
Trial V% values may pass through negative intermediate concentrations.
After convergence both circuits are re-simulated once at the optimum; any
failure there, including a negative load-bearing concentration,
propagates to the caller.

Async tool functions wrap the pure solve with asyncio.to_thread so MCP
callers stay responsive during the nested searches.
"""

import asyncio
import logging
from typing import Dict, Any, Optional

from .schemas import ProcessInputs, OptimizationResult, SXCircuitInput, SXOptimizationSummary
from .circuit_simulation import (
    simulate_extraction,
    simulate_stripping,
    negative_concentrations,
    validate_copper_balance,
)
from .report_tables import build_report_tables, convert_to_dict
from utils.root_finder import secant_solve
from utils.sx_defaults import apply_solver_defaults, validate_solver_settings
from utils.sx_errors import SXModelError, OutOfRangeError, ModelInconsistencyError

logger = logging.getLogger(__name__)


def evaluate_circuits(
    inputs: ProcessInputs,
    v_percent: float,
    settings: Optional[Dict[str, Any]] = None
) -> OptimizationResult:
    """
    Simulate extraction then stripping at one V% (no outer search).

    Failures propagate unchanged.

    Returns:
        OptimizationResult with residual = SO_extraction - SO_stripping
    """
    if settings is None:
        settings = apply_solver_defaults()

    extraction = simulate_extraction(inputs, v_percent, settings)
    stripping = simulate_stripping(
        inputs, v_percent, extraction.loaded_organic, extraction.stripped_organic
    )

    return OptimizationResult(
        v_percent=v_percent,
        inputs=inputs,
        extraction=extraction,
        stripping=stripping,
        residual=extraction.stripped_organic - stripping.stripped_organic,
    )


def consistency_residual(
    inputs: ProcessInputs,
    v_percent: float,
    settings: Dict[str, Any]
) -> float:
    """
    Objective for the outer search at one trial V%.

    Model failures, arithmetic errors and math domain errors are absorbed
    into settings["infeasible_residual"].
    """
    try:
        trial = evaluate_circuits(inputs, v_percent, settings)
    except (SXModelError, ArithmeticError, ValueError) as e:
        logger.debug(f"Trial V%={v_percent:.6g} infeasible: {type(e).__name__}: {e}")
        return settings["infeasible_residual"]

    logger.debug(f"Trial V%={v_percent:.6g}: residual={trial.residual:.3e}")
    return trial.residual


def optimize_reagent_concentration(
    inputs: ProcessInputs,
    settings: Optional[Dict[str, Any]] = None
) -> OptimizationResult:
    """
    Find the V% that makes extraction and stripping consistent.

    Args:
        inputs: Process inputs
        settings: Solver settings overrides (see utils.sx_defaults)

    Returns:
        OptimizationResult at the converged V%

    Raises:
        DivergedError, NotConvergedError: Outer search failed
        OutOfRangeError: Converged V% outside (0, max_v_percent]
        ModelInconsistencyError: Converged circuits carry a negative concentration
        SXModelError: Final evaluation at the converged V% failed
        ValueError: Invalid solver settings
    """
    settings = apply_solver_defaults(settings)
    validate_solver_settings(settings)

    evaluations = 0

    def objective(v_percent: float) -> float:
        nonlocal evaluations
        evaluations += 1
        return consistency_residual(inputs, v_percent, settings)

    logger.info(f"Searching V% from initial guess {settings['initial_v_percent']}")
    v_optimal = secant_solve(
        objective,
        settings["initial_v_percent"],
        tolerance=settings["tolerance"],
        max_iterations=settings["max_iterations"],
    )

    if v_optimal <= 0 or v_optimal > settings["max_v_percent"]:
        raise OutOfRangeError(
            f"Optimal reagent concentration {v_optimal:.4g} V% is outside the "
            f"plausible range (0-{settings['max_v_percent']}%). Check the inputs."
        )

    result = evaluate_circuits(inputs, v_optimal, settings)
    result.objective_evaluations = evaluations

    negatives = negative_concentrations(result)
    if negatives:
        raise ModelInconsistencyError(
            f"Consistent V%={v_optimal:.4g} gives negative concentrations: "
            f"{', '.join(negatives)}"
        )

    logger.info(
        f"Converged: V%={v_optimal:.4f} after {evaluations} evaluations, "
        f"LO={result.extraction.loaded_organic:.4f}, SO={result.extraction.stripped_organic:.4f} g/L, "
        f"residual={result.residual:.2e}"
    )
    return result


def _package_result(result: OptimizationResult, include_report_tables: bool) -> Dict[str, Any]:
    output = {
        "summary": SXOptimizationSummary.from_result(result).model_dump(),
        "result": convert_to_dict(result),
        "copper_balance": validate_copper_balance(result),
    }
    if include_report_tables:
        output["report_tables"] = build_report_tables(result)
    return output


async def optimize_sx_circuit(
    pls_flow_rate_m3_h: float = 400.0,
    pls_copper_g_L: float = 7.0,
    pls_acid_g_L: float = 1.96,
    max_loading_percent: float = 80.0,
    oa_ratio_extraction: float = 1.25,
    efficiency_e1_percent: float = 95.0,
    efficiency_e2_percent: float = 95.0,
    spent_copper_g_L: float = 35.0,
    spent_acid_g_L: float = 190.0,
    advance_copper_g_L: float = 50.0,
    efficiency_s1_percent: float = 98.0,
    efficiency_s2_percent: float = 98.0,
    solver_settings: Optional[Dict[str, Any]] = None,
    include_report_tables: bool = True
) -> Dict[str, Any]:
    """
    Optimize reagent concentration V% for a copper SX circuit.

    Runs the outer consistency search in a worker thread and returns a
    JSON-ready result.

    Args:
        pls_flow_rate_m3_h: PLS flow rate, m³/h
        pls_copper_g_L: PLS copper, g/L
        pls_acid_g_L: PLS acid, g/L
        max_loading_percent: Loaded organic as % of maximum loading
        oa_ratio_extraction: Extraction O/A ratio
        efficiency_e1_percent, efficiency_e2_percent: Extraction stage efficiencies, %
        spent_copper_g_L: Spent electrolyte copper, g/L
        spent_acid_g_L: Spent electrolyte acid, g/L
        advance_copper_g_L: Advance electrolyte copper, g/L
        efficiency_s1_percent, efficiency_s2_percent: Stripping stage efficiencies, %
        solver_settings: Optional solver setting overrides
        include_report_tables: Include summary/extraction/stripping tables

    Returns:
        Dict with summary, full result, copper balance and report tables

    Example:
        >>> result = await optimize_sx_circuit(pls_copper_g_L=7.0)
        >>> print(f"V% = {result['summary']['v_percent']:.2f}")
    """
    input_data = SXCircuitInput(
        pls_flow_rate_m3_h=pls_flow_rate_m3_h,
        pls_copper_g_L=pls_copper_g_L,
        pls_acid_g_L=pls_acid_g_L,
        max_loading_percent=max_loading_percent,
        oa_ratio_extraction=oa_ratio_extraction,
        efficiency_e1_percent=efficiency_e1_percent,
        efficiency_e2_percent=efficiency_e2_percent,
        spent_copper_g_L=spent_copper_g_L,
        spent_acid_g_L=spent_acid_g_L,
        advance_copper_g_L=advance_copper_g_L,
        efficiency_s1_percent=efficiency_s1_percent,
        efficiency_s2_percent=efficiency_s2_percent,
    )

    result = await asyncio.to_thread(
        optimize_reagent_concentration, input_data.to_process_inputs(), solver_settings
    )
    return _package_result(result, include_report_tables)


async def simulate_sx_circuit(
    v_percent: float,
    pls_flow_rate_m3_h: float = 400.0,
    pls_copper_g_L: float = 7.0,
    pls_acid_g_L: float = 1.96,
    max_loading_percent: float = 80.0,
    oa_ratio_extraction: float = 1.25,
    efficiency_e1_percent: float = 95.0,
    efficiency_e2_percent: float = 95.0,
    spent_copper_g_L: float = 35.0,
    spent_acid_g_L: float = 190.0,
    advance_copper_g_L: float = 50.0,
    efficiency_s1_percent: float = 98.0,
    efficiency_s2_percent: float = 98.0,
    solver_settings: Optional[Dict[str, Any]] = None,
    include_report_tables: bool = True
) -> Dict[str, Any]:
    """
    Simulate both circuits at a fixed V% without the consistency search.

    The residual in the summary shows how far this V% is from a
    consistent circuit. Inputs are the same as optimize_sx_circuit.

    Raises:
        ValueError: If v_percent is not positive
        SXModelError: If either circuit cannot be simulated at this V%
    """
    if not v_percent > 0:
        raise ValueError(f"v_percent must be positive, got {v_percent}")

    input_data = SXCircuitInput(
        pls_flow_rate_m3_h=pls_flow_rate_m3_h,
        pls_copper_g_L=pls_copper_g_L,
        pls_acid_g_L=pls_acid_g_L,
        max_loading_percent=max_loading_percent,
        oa_ratio_extraction=oa_ratio_extraction,
        efficiency_e1_percent=efficiency_e1_percent,
        efficiency_e2_percent=efficiency_e2_percent,
        spent_copper_g_L=spent_copper_g_L,
        spent_acid_g_L=spent_acid_g_L,
        advance_copper_g_L=advance_copper_g_L,
        efficiency_s1_percent=efficiency_s1_percent,
        efficiency_s2_percent=efficiency_s2_percent,
    )

    settings = apply_solver_defaults(solver_settings)
    validate_solver_settings(settings)

    result = await asyncio.to_thread(
        evaluate_circuits, input_data.to_process_inputs(), v_percent, settings
    )
    logger.info(f"Fixed V%={v_percent:.4f}: residual={result.residual:.3e}")
    negatives = negative_concentrations(result)
    if negatives:
        logger.warning(f"Fixed V%={v_percent:.4g} is not physical: {', '.join(negatives)}")
    return _package_result(result, include_report_tables)
