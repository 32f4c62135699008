"""
Two-stage countercurrent circuit simulation for copper solvent extraction.

Extraction (E1, E2): organic flows E2 -> E1, aqueous PLS flows E1 -> E2.
Each stage approaches equilibrium by its efficiency:

    Y_out - Y_in = eff/100 * (Y_eq(X_out) - Y_in)
    Y_in = Y_out - (X_in - X_out) / (O/A)

The aqueous outlet X_out has no closed form and is found with the secant
root finder, seeded at a fraction of the stage's aqueous inlet.

Stripping (S1, S2): loaded organic enters S1, spent electrolyte enters S2
and leaves S1 as advance electrolyte. Both aqueous ends are fixed by the
tankhouse, so the stripping O/A follows from the copper balance and each
stage is closed-form.

Every call rebuilds its isotherm and records from scratch; nothing is
cached between trial V% values.
"""

import logging
from typing import Dict, Tuple, Optional, List

import numpy as np

from tools.schemas import (
    ProcessInputs,
    EquilibriumPoint,
    StageRecord,
    McCabeThieleData,
    ExtractionResult,
    StrippingResult,
    OptimizationResult,
)
from utils.isotherm import (
    Isotherm,
    extraction_constants,
    stripping_constants,
    ACID_PER_COPPER,
)
from utils.root_finder import secant_solve
from utils.sx_defaults import apply_solver_defaults
from utils.sx_errors import ModelInconsistencyError

logger = logging.getLogger(__name__)

# Equilibrium curve resolution for plotting
CURVE_SAMPLES = 101

# Stripping curve extends past advance electrolyte Cu by this much (g/L)
STRIPPING_CURVE_MARGIN = 5.0

# Copper balance closure tolerance (fraction)
BALANCE_TOLERANCE = 0.01


def build_extraction_isotherm(inputs: ProcessInputs, v_percent: float) -> Isotherm:
    """Extraction isotherm from PLS chemistry at a trial V%."""
    constants = extraction_constants(inputs.pls_acid_g_L, inputs.pls_copper_g_L, v_percent)
    return Isotherm(constants, "extraction")


def build_stripping_isotherm(inputs: ProcessInputs, v_percent: float) -> Isotherm:
    """Stripping isotherm from spent electrolyte chemistry at a trial V%."""
    constants = stripping_constants(inputs.spent_acid_g_L, inputs.spent_copper_g_L, v_percent)
    return Isotherm(constants, "stripping")


def loading_targets(inputs: ProcessInputs, isotherm: Isotherm) -> Tuple[float, float]:
    """
    Maximum loading ML at feed copper and the loaded organic target LO.

    Returns:
        (ML, LO) in g/L, LO = ML * max_loading_percent / 100
    """
    ml = isotherm.organic_from_aqueous(inputs.pls_copper_g_L)
    lo = ml * (inputs.max_loading_percent / 100)
    return ml, lo


def sample_equilibrium_curve(isotherm: Isotherm, start: float, stop: float) -> List[EquilibriumPoint]:
    """
    Sample the isotherm at evenly spaced aqueous concentrations.

    Points with negative (or NaN) organic copper are dropped.
    """
    curve = []
    for x in np.linspace(start, stop, CURVE_SAMPLES):
        y = isotherm.organic_from_aqueous(float(x))
        if y >= 0:
            curve.append(EquilibriumPoint(float(x), y))
    return curve


# ============================================================================
# EXTRACTION
# ============================================================================

def solve_extraction_stage(
    isotherm: Isotherm,
    x_in: float,
    y_out: float,
    oa_ratio: float,
    efficiency_percent: float,
    seed: float,
    tolerance: float = 1e-7,
    max_iterations: int = 100
) -> Tuple[float, float]:
    """
    Solve one extraction stage for its aqueous outlet.

    Args:
        isotherm: Extraction isotherm at the current V%
        x_in: Aqueous copper entering the stage, g/L
        y_out: Organic copper leaving the stage, g/L
        oa_ratio: Organic/aqueous flow ratio
        efficiency_percent: Stage efficiency, %
        seed: Initial guess for the aqueous outlet
        tolerance: Secant residual tolerance
        max_iterations: Secant iteration budget

    Returns:
        (X_out, Y_in): aqueous outlet and organic inlet, g/L

    Raises:
        DivergedError, NotConvergedError: From the secant search
    """
    efficiency = efficiency_percent / 100

    def stage_residual(x_out: float) -> float:
        y_eq = isotherm.organic_from_aqueous(x_out)
        y_in = y_out - (x_in - x_out) / oa_ratio
        return (y_out - y_in) - efficiency * (y_eq - y_in)

    x_out = secant_solve(stage_residual, seed, tolerance, max_iterations)
    y_in = y_out - (x_in - x_out) / oa_ratio
    return x_out, y_in


def _extraction_stage_record(isotherm: Isotherm, x_in: float, x_out: float,
                             y_out: float, y_in: float,
                             efficiency_percent: float) -> StageRecord:
    y_eq = isotherm.organic_from_aqueous(x_out)
    # Plot-only point: aqueous side is None when the loading has no real root
    x_eq = isotherm.aqueous_from_organic(y_eq)

    return StageRecord(
        inlet=EquilibriumPoint(x_in, y_out),
        outlet=EquilibriumPoint(x_out, y_out),
        organic_inlet=EquilibriumPoint(x_out, y_in),
        equilibrium=EquilibriumPoint(x_eq, y_eq),
        efficiency_percent=efficiency_percent,
    )


def simulate_extraction(
    inputs: ProcessInputs,
    v_percent: float,
    settings: Optional[Dict] = None
) -> ExtractionResult:
    """
    Simulate the two extraction stages at a given V%.

    Intermediate concentrations are not range-checked here; a trial V%
    may produce negative values on its way to the consistent one.

    Args:
        inputs: Process inputs
        v_percent: Reagent concentration V%
        settings: Solver settings (defaults applied when None)

    Returns:
        ExtractionResult with SO = organic entering E2 and raffinate = E2 aqueous outlet

    Raises:
        DivergedError, NotConvergedError: A stage solve failed
    """
    if settings is None:
        settings = apply_solver_defaults()

    isotherm = build_extraction_isotherm(inputs, v_percent)
    ml, lo = loading_targets(inputs, isotherm)
    oa = inputs.oa_ratio_extraction

    # Stage E1: organic leaves at LO, PLS enters
    x_in_e1 = inputs.pls_copper_g_L
    y_out_e1 = lo
    x_out_e1, y_in_e1 = solve_extraction_stage(
        isotherm, x_in_e1, y_out_e1, oa, inputs.efficiency_e1_percent,
        seed=settings["stage1_seed_fraction"] * x_in_e1,
        tolerance=settings["stage_tolerance"],
        max_iterations=settings["stage_max_iterations"],
    )
    logger.debug(f"E1: X_out={x_out_e1:.5f}, Y_in={y_in_e1:.5f} g/L")

    # Stage E2: fed by E1 aqueous outlet, organic leaves toward E1
    x_in_e2 = x_out_e1
    y_out_e2 = y_in_e1
    x_out_e2, y_in_e2 = solve_extraction_stage(
        isotherm, x_in_e2, y_out_e2, oa, inputs.efficiency_e2_percent,
        seed=settings["stage2_seed_fraction"] * x_in_e2,
        tolerance=settings["stage_tolerance"],
        max_iterations=settings["stage_max_iterations"],
    )
    logger.debug(f"E2: X_out={x_out_e2:.5f}, Y_in={y_in_e2:.5f} g/L")

    so = y_in_e2
    raffinate = x_out_e2

    stage1 = _extraction_stage_record(isotherm, x_in_e1, x_out_e1, y_out_e1, y_in_e1,
                                      inputs.efficiency_e1_percent)
    stage2 = _extraction_stage_record(isotherm, x_in_e2, x_out_e2, y_out_e2, y_in_e2,
                                      inputs.efficiency_e2_percent)

    copper_extracted = inputs.pls_copper_g_L - raffinate
    mccabe_thiele = McCabeThieleData(
        equilibrium_curve=sample_equilibrium_curve(isotherm, 0.0, inputs.pls_copper_g_L),
        operating_line={
            "SO": EquilibriumPoint(raffinate, so),
            "LO": EquilibriumPoint(inputs.pls_copper_g_L, lo),
        },
        stage_markers={
            "E1": EquilibriumPoint(x_out_e1, y_out_e1),
            "E2": EquilibriumPoint(x_out_e2, y_out_e2),
        },
    )

    return ExtractionResult(
        circuit="extraction",
        loaded_organic=lo,
        stripped_organic=so,
        aqueous_outlet=raffinate,
        recovery_percent=copper_extracted / inputs.pls_copper_g_L * 100,
        net_copper_transfer=(lo - so) / v_percent,
        oa_ratio=oa,
        stage1=stage1,
        stage2=stage2,
        mccabe_thiele=mccabe_thiele,
        maximum_loading=ml,
        raffinate_acid=inputs.pls_acid_g_L + copper_extracted * ACID_PER_COPPER,
    )


# ============================================================================
# STRIPPING
# ============================================================================

def simulate_stripping(
    inputs: ProcessInputs,
    v_percent: float,
    loaded_organic: float,
    extraction_stripped_organic: float
) -> StrippingResult:
    """
    Simulate the two stripping stages at a given V%.

    The stripping O/A is derived from the electrolyte copper gain and the
    organic copper swing of the extraction circuit:

        O/A_st = (advance Cu - spent Cu) / (LO - SO_extraction)

    Args:
        inputs: Process inputs
        v_percent: Reagent concentration V%
        loaded_organic: LO from extraction, g/L
        extraction_stripped_organic: SO reported by extraction, g/L

    Returns:
        StrippingResult whose stripped_organic is the SO leaving S2

    Raises:
        ModelInconsistencyError: LO <= SO_extraction
    """
    lo = loaded_organic
    if lo <= extraction_stripped_organic:
        raise ModelInconsistencyError(
            f"Loaded organic ({lo:.4g} g/L) must exceed stripped organic "
            f"({extraction_stripped_organic:.4g} g/L); no net copper transfer"
        )

    spent_cu = inputs.spent_copper_g_L
    advance_cu = inputs.advance_copper_g_L
    oa_st = (advance_cu - spent_cu) / (lo - extraction_stripped_organic)
    isotherm = build_stripping_isotherm(inputs, v_percent)

    # Stage S1: loaded organic enters, advance electrolyte leaves
    y_in_s1 = lo
    x_out_s1 = advance_cu
    y_eq_s1 = isotherm.organic_from_aqueous(x_out_s1)
    y_out_s1 = y_in_s1 - (inputs.efficiency_s1_percent / 100) * (y_in_s1 - y_eq_s1)
    x_in_s1 = x_out_s1 - oa_st * (y_in_s1 - y_out_s1)
    logger.debug(f"S1: Y_out={y_out_s1:.5f}, X_in={x_in_s1:.5f} g/L")

    # Stage S2: organic from S1, aqueous outlet feeds S1
    y_in_s2 = y_out_s1
    x_out_s2 = x_in_s1
    y_eq_s2 = isotherm.organic_from_aqueous(x_out_s2)
    so = y_in_s2 - (inputs.efficiency_s2_percent / 100) * (y_in_s2 - y_eq_s2)
    logger.debug(f"S2: SO={so:.5f} g/L")

    stage1 = StageRecord(
        inlet=EquilibriumPoint(x_out_s1, y_in_s1),
        outlet=EquilibriumPoint(x_out_s1, y_out_s1),
        organic_inlet=EquilibriumPoint(x_in_s1, y_out_s1),
        equilibrium=EquilibriumPoint(x_out_s1, y_eq_s1),
        efficiency_percent=inputs.efficiency_s1_percent,
    )
    stage2 = StageRecord(
        inlet=EquilibriumPoint(x_out_s2, y_in_s2),
        outlet=EquilibriumPoint(x_out_s2, so),
        organic_inlet=EquilibriumPoint(spent_cu, so),
        equilibrium=EquilibriumPoint(x_out_s2, y_eq_s2),
        efficiency_percent=inputs.efficiency_s2_percent,
    )

    mccabe_thiele = McCabeThieleData(
        equilibrium_curve=sample_equilibrium_curve(
            isotherm, spent_cu, advance_cu + STRIPPING_CURVE_MARGIN
        ),
        operating_line={
            "SO": EquilibriumPoint(spent_cu, so),
            "LO": EquilibriumPoint(advance_cu, lo),
        },
        stage_markers={
            "S1": EquilibriumPoint(x_out_s1, y_in_s1),
            "S2": EquilibriumPoint(x_out_s2, y_in_s2),
        },
    )

    return StrippingResult(
        circuit="stripping",
        loaded_organic=lo,
        stripped_organic=so,
        aqueous_outlet=advance_cu,
        recovery_percent=(lo - so) / lo * 100,
        net_copper_transfer=(lo - so) / v_percent,
        oa_ratio=oa_st,
        stage1=stage1,
        stage2=stage2,
        mccabe_thiele=mccabe_thiele,
        aqueous_inlet=spent_cu,
    )


def negative_concentrations(result: OptimizationResult) -> List[str]:
    """
    Load-bearing concentrations of a solved circuit pair that are negative.

    Returns:
        Descriptions such as "electrolyte entering S1 = -57.07 g/L"; empty
        when every checked value is physical
    """
    ex = result.extraction
    st = result.stripping
    checks = [
        ("extraction stripped organic", ex.stripped_organic),
        ("raffinate copper", ex.raffinate),
        ("electrolyte entering S1", st.stage1.organic_inlet.aqueous),
        ("stripping stripped organic", st.stripped_organic),
    ]
    return [f"{name} = {value:.4g} g/L" for name, value in checks if value < 0]


# ============================================================================
# COPPER BALANCE VALIDATION
# ============================================================================

def _closure_error(supplied: float, received: float) -> float:
    if supplied == 0:
        return 0.0 if received == 0 else float("inf")
    return abs(received - supplied) / abs(supplied)


def validate_copper_balance(result: OptimizationResult) -> Dict:
    """
    Check copper closure across both circuits (separate from convergence).

    Extraction: PLS copper removed vs organic copper picked up
        Q_pls * (Cu_pls - Cu_raff) = Q_org * (LO - SO_ex)
    Stripping: organic copper stripped vs electrolyte copper gained
        Q_org * (LO - SO_st) = Q_el * (Cu_adv - Cu_spent)

    Flows in m³/h times g/L give kg/h. Extraction closes by construction;
    stripping closes only when the two circuits are consistent, so a fixed
    V% evaluation away from the optimum reports the mismatch here.

    Args:
        result: Solved circuits

    Returns:
        Dict with flows, copper rates, closure errors and passed flag
    """
    inputs = result.inputs
    ex = result.extraction
    st = result.stripping

    pls_flow = inputs.pls_flow_rate_m3_h
    organic_flow = ex.oa_ratio * pls_flow
    electrolyte_flow = organic_flow / st.oa_ratio

    aqueous_removed = pls_flow * (inputs.pls_copper_g_L - ex.raffinate)
    organic_loaded = organic_flow * (ex.loaded_organic - ex.stripped_organic)
    organic_stripped = organic_flow * (st.loaded_organic - st.stripped_organic)
    electrolyte_gain = electrolyte_flow * (inputs.advance_copper_g_L - inputs.spent_copper_g_L)

    extraction_error = _closure_error(aqueous_removed, organic_loaded)
    stripping_error = _closure_error(organic_stripped, electrolyte_gain)
    passed = extraction_error < BALANCE_TOLERANCE and stripping_error < BALANCE_TOLERANCE

    logger.info(
        f"Copper balance: extracted={aqueous_removed:.2f} kg/h, "
        f"stripped={organic_stripped:.2f} kg/h, "
        f"errors={extraction_error:.2%}/{stripping_error:.2%}"
    )

    if not passed:
        logger.warning(
            f"Copper balance does not close within {BALANCE_TOLERANCE:.0%}: "
            f"extraction error={extraction_error:.2%}, stripping error={stripping_error:.2%}. "
            "Circuits are not consistent at this V%."
        )

    return {
        'organic_flow_m3_h': organic_flow,
        'electrolyte_flow_m3_h': electrolyte_flow,
        'copper_extracted_kg_h': aqueous_removed,
        'copper_loaded_kg_h': organic_loaded,
        'copper_stripped_kg_h': organic_stripped,
        'copper_to_electrolyte_kg_h': electrolyte_gain,
        'extraction_error_fraction': extraction_error,
        'stripping_error_fraction': stripping_error,
        'passed': passed
    }
