"""
Closed-form cubic solver used by the isotherm model.

Returns ONE real root of a*x^3 + b*x^2 + c*x + d = 0:
- one real root (Cardano): the Cardano sum
- three real roots (trigonometric form): the k=0 root only

The branch choice is fixed; the other algebraic roots are never evaluated.
"""

import math
from typing import Optional

import numpy as np

# Leading coefficients below this are not treated as cubics
DEGENERATE_LEADING_COEFF = 1e-9


def solve_cubic(a: float, b: float, c: float, d: float) -> Optional[float]:
    """
    Solve a*x^3 + b*x^2 + c*x + d = 0 for the model's real root.

    Args:
        a, b, c, d: Polynomial coefficients

    Returns:
        The selected real root, None if |a| < 1e-9, or NaN when the
        trigonometric form has no real angle (NaN input included)

    Example:
        >>> solve_cubic(1.0, -6.0, 11.0, -6.0)  # roots 1, 2, 3
        3.0
    """
    if abs(a) < DEGENERATE_LEADING_COEFF:
        return None

    # Depressed cubic t^3 + p*t + q = 0 with x = t - b/(3a)
    p = c / a - (b * b) / (3 * a * a)
    q = (2 * b * b * b) / (27 * a * a * a) - (b * c) / (3 * a * a) + d / a

    term1 = q / 2
    term2 = (q * q) / 4 + (p * p * p) / 27

    if term2 >= 0:
        sqrt_term2 = math.sqrt(term2)
        u = np.cbrt(-term1 + sqrt_term2)
        v = np.cbrt(-term1 - sqrt_term2)
        return float(u + v - b / (3 * a))

    r = math.sqrt(-(p * p * p) / 27)
    cos_arg = -q / (2 * r)
    # Outside [-1, 1] (rounding) or NaN: no root, the NaN reaches the caller
    phi = math.acos(cos_arg) if -1.0 <= cos_arg <= 1.0 else math.nan
    return float(2 * np.cbrt(r) * math.cos(phi / 3) - b / (3 * a))
