"""
Exception taxonomy for the copper SX circuit model.

All model failures derive from SXModelError so callers can catch the whole
family at once. The outer V% search absorbs these during trial evaluations;
everywhere else they propagate to the caller with a readable message.
"""


class SXModelError(Exception):
    """Base class for all solvent-extraction model failures."""


class SolverError(SXModelError):
    """Root search failed to produce a usable answer."""


class DivergedError(SolverError):
    """Secant candidate became non-finite, NaN or non-positive."""


class NotConvergedError(SolverError):
    """Iteration budget exhausted before the residual met tolerance."""


class ModelInconsistencyError(SXModelError):
    """
    Physical premise of the circuit is violated.

    Raised when loaded organic does not exceed the stripped organic fed
    back to extraction, or when a load-bearing concentration comes out
    negative.
    """


class OutOfRangeError(SXModelError):
    """Outer search converged to a V% outside the plausible band."""


class DegenerateCubicError(SXModelError):
    """Cubic solve requested with a near-zero leading coefficient."""
