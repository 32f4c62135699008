"""
Secant Root Finder

Scalar secant iteration shared by the outer V% consistency search and the
per-stage aqueous outlet solves in the extraction circuit.

The domain is concentrations and reagent percentages, so every candidate
must stay strictly positive. Anything else aborts the search immediately
instead of iterating on a meaningless value.
"""

import logging
import math
from typing import Callable

from utils.sx_errors import DivergedError, NotConvergedError

logger = logging.getLogger(__name__)

# Half-width of the initial secant bracket around the guess
SEED_OFFSET = 0.1


def secant_solve(
    objective: Callable[[float], float],
    initial_guess: float,
    tolerance: float = 1e-7,
    max_iterations: int = 100
) -> float:
    """
    Find a zero of objective with the secant method.

    Seeds x0 = guess - 0.1 and x1 = guess + 0.1 (x0 clamped to 0.1 when it
    would be non-positive) and iterates until |f(x1)| < tolerance.

    Args:
        objective: Scalar function of one positive variable
        initial_guess: Starting estimate of the root
        tolerance: Absolute residual threshold (default 1e-7)
        max_iterations: Secant updates allowed before giving up (default 100)

    Returns:
        The last iterate x1 whose residual met tolerance

    Raises:
        DivergedError: If an update is non-finite, NaN or <= 0
        NotConvergedError: If max_iterations is exhausted
    """
    x0 = initial_guess - SEED_OFFSET
    x1 = initial_guess + SEED_OFFSET
    if x0 <= 0:
        x0 = SEED_OFFSET

    f0 = objective(x0)
    f1 = objective(x1)

    for iteration in range(max_iterations):
        if abs(f1) < tolerance:
            logger.debug(f"Secant converged in {iteration} iterations: x={x1:.6g}, f={f1:.3e}")
            return x1

        try:
            x2 = x1 - f1 * (x1 - x0) / (f1 - f0)
        except ZeroDivisionError:
            # Flat secant: the update is unbounded
            x2 = math.nan

        if not math.isfinite(x2) or x2 <= 0:
            raise DivergedError(
                f"Secant search diverged at iteration {iteration} "
                f"(x0={x0:.6g}, x1={x1:.6g}, f0={f0:.3e}, f1={f1:.3e}, candidate={x2}). "
                "Check the inputs."
            )

        logger.debug(f"  Secant iter {iteration}: x={x2:.8g}")

        x0, f0 = x1, f1
        x1 = x2
        f1 = objective(x1)

    raise NotConvergedError(
        f"Secant search did not converge after {max_iterations} iterations "
        f"(last x={x1:.6g}, residual={f1:.3e})"
    )
