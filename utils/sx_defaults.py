"""
Default process inputs and solver settings for copper SX circuit design.

The baseline plant case is the Lix984N reference circuit (Table 17 of the
semi-empirical model's source study): a 400 m³/h PLS at 7 g/L Cu feeding
two extraction and two stripping mixer-settlers.

Solver settings cover both levels of the nested search:
- outer V% consistency search (tolerance, max_iterations, initial_v_percent)
- inner per-stage aqueous outlet searches in extraction
  (stage_tolerance, stage_max_iterations, stage seeds)
"""

from typing import Dict, Any


DEFAULT_PROCESS_INPUTS = {
    # Extraction circuit
    "pls_flow_rate_m3_h": 400.0,
    "pls_copper_g_L": 7.0,
    "pls_acid_g_L": 1.96,
    "max_loading_percent": 80.0,  # % of maximum organic loading actually reached
    "oa_ratio_extraction": 1.25,
    "efficiency_e1_percent": 95.0,
    "efficiency_e2_percent": 95.0,

    # Stripping circuit (electrowinning tankhouse loop)
    "spent_copper_g_L": 35.0,
    "spent_acid_g_L": 190.0,
    "advance_copper_g_L": 50.0,
    "efficiency_s1_percent": 98.0,
    "efficiency_s2_percent": 98.0,
}


def get_default_process_inputs() -> Dict[str, float]:
    """Return a fresh copy of the baseline plant case."""
    return dict(DEFAULT_PROCESS_INPUTS)


def get_default_solver_settings() -> Dict[str, Any]:
    """
    Get default numerical settings for the nested secant searches.

    Returns:
        Dictionary of solver settings
    """
    return {
        # Outer V% search
        "tolerance": 1e-7,
        "max_iterations": 100,
        "initial_v_percent": 17.1,  # Empirical starting point for Lix984N
        "max_v_percent": 50.0,  # Upper end of the plausible reagent band

        # Inner stage searches (extraction aqueous outlets)
        "stage_tolerance": 1e-7,
        "stage_max_iterations": 100,
        "stage1_seed_fraction": 0.3,  # Seed = 0.3 * stage 1 aqueous inlet
        "stage2_seed_fraction": 0.15,  # Seed = 0.15 * stage 2 aqueous inlet

        # Objective value returned for an infeasible trial V%
        "infeasible_residual": 1e9,
    }


def apply_solver_defaults(user_settings: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Apply defaults to user-provided solver settings.

    Args:
        user_settings: User-provided settings (override defaults)

    Returns:
        Complete solver settings with defaults applied

    Raises:
        ValueError: If a user key is not a known solver setting
    """
    defaults = get_default_solver_settings()
    if user_settings is None:
        return defaults

    unknown = sorted(set(user_settings) - set(defaults))
    if unknown:
        raise ValueError(
            f"Unknown solver setting(s) {unknown}. "
            f"Must be among: {sorted(defaults.keys())}"
        )

    # User settings take precedence
    return {**defaults, **user_settings}


def validate_solver_settings(settings: Dict[str, Any]) -> None:
    """
    Validate solver settings are usable.

    Args:
        settings: Complete solver settings (after apply_solver_defaults)

    Raises:
        ValueError: If a setting is outside its valid range
    """
    for key in ("tolerance", "stage_tolerance"):
        if not settings[key] > 0:
            raise ValueError(f"{key} {settings[key]} must be positive")

    for key in ("max_iterations", "stage_max_iterations"):
        if int(settings[key]) != settings[key] or settings[key] < 1:
            raise ValueError(f"{key} {settings[key]} must be a positive integer")

    for key in ("stage1_seed_fraction", "stage2_seed_fraction"):
        if not 0 < settings[key] < 1:
            raise ValueError(f"{key} {settings[key]} outside range (0-1)")

    if not settings["max_v_percent"] > 0:
        raise ValueError(f"max_v_percent {settings['max_v_percent']} must be positive")

    if not 0 < settings["initial_v_percent"] <= settings["max_v_percent"]:
        raise ValueError(
            f"initial_v_percent {settings['initial_v_percent']} outside range "
            f"(0-{settings['max_v_percent']}%)"
        )

    if not settings["infeasible_residual"] > 0:
        raise ValueError(
            f"infeasible_residual {settings['infeasible_residual']} must be positive"
        )
