"""
Unit tests for the secant root finder.

Covers convergence, seed clamping for non-positive guesses, divergence on
invalid candidates and iteration budget exhaustion.
"""

import math
import pytest
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from utils.root_finder import secant_solve, SEED_OFFSET
from utils.sx_errors import DivergedError, NotConvergedError, SolverError, SXModelError


class TestSecantConvergence:
    """Secant converges on well-behaved positive roots."""

    def test_square_root_of_two(self):
        root = secant_solve(lambda x: x * x - 2.0, 1.5)
        assert abs(root * root - 2.0) < 1e-7
        assert root == pytest.approx(math.sqrt(2.0), abs=1e-7)

    def test_linear_objective_converges_in_one_step(self):
        calls = []

        def objective(x):
            calls.append(x)
            return 3.0 * x - 6.0

        root = secant_solve(objective, 1.0)
        assert root == pytest.approx(2.0)
        # Two seeds plus one secant update
        assert len(calls) == 3

    def test_returns_upper_seed_when_already_converged(self):
        root = secant_solve(lambda x: x - 5.1, 5.0, tolerance=1e-3)
        assert root == pytest.approx(5.0 + SEED_OFFSET)

    def test_custom_tolerance(self):
        root = secant_solve(lambda x: x ** 3 - 2 * x - 5, 2.0, tolerance=1e-10)
        assert abs(root ** 3 - 2 * root - 5) < 1e-10


class TestSeedClamping:
    """Lower seed is clamped to 0.1 when it would be non-positive."""

    def test_small_guess_clamps_lower_seed(self):
        calls = []

        def objective(x):
            calls.append(x)
            return x - 1.0

        root = secant_solve(objective, 0.05)
        assert calls[0] == 0.1
        assert calls[1] == pytest.approx(0.15)
        assert root == pytest.approx(1.0)

    def test_positive_guess_keeps_symmetric_seeds(self):
        calls = []

        def objective(x):
            calls.append(x)
            return x - 4.0

        secant_solve(objective, 3.0)
        assert calls[0] == pytest.approx(2.9)
        assert calls[1] == pytest.approx(3.1)


class TestSecantFailures:
    """Invalid candidates and exhausted budgets raise distinct errors."""

    def test_negative_candidate_diverges(self):
        # Root at -10 is outside the positive domain
        with pytest.raises(DivergedError, match="diverged"):
            secant_solve(lambda x: x + 10.0, 1.0)

    def test_flat_objective_diverges(self):
        with pytest.raises(DivergedError):
            secant_solve(lambda x: 5.0, 1.0)

    def test_nan_objective_diverges(self):
        with pytest.raises(DivergedError):
            secant_solve(lambda x: math.nan, 1.0)

    def test_budget_exhausted(self):
        with pytest.raises(NotConvergedError, match="1 iterations"):
            secant_solve(lambda x: x ** 3 - 2 * x - 5, 1.0, max_iterations=1)

    def test_failures_share_base_class(self):
        assert issubclass(DivergedError, SolverError)
        assert issubclass(NotConvergedError, SolverError)
        assert issubclass(SolverError, SXModelError)
