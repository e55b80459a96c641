"""Closed-form Cholesky factor of the AR(1) correlation matrix.

The first-order autoregressive correlation matrix of dimension p is

    M[i, j] = ρ^|i−j|,   |ρ| < 1.

Its upper-triangular Cholesky factor R (Rᵀ R = M) has a closed form
that needs no matrix decomposition.  Write c = √(1−ρ²), the scale
that keeps unit variance (c² + ρ² = 1).  Then

    R[0, :]  = [1, ρ, ρ², …, ρ^(p−1)]
    R[j, k]  = c · ρ^(k−j)   for k ≥ j ≥ 1
    R[j, k]  = 0             for k < j

i.e. every row after the first is the same pattern ``c · R[0, :]``
shifted right by the row index.  This is the innovation form of the
AR(1) recursion x_j = ρ x_{j−1} + c ε_j written as a matrix, and it
costs O(p²) instead of the O(p³) of a generic Cholesky.

Why it works
------------
Column k of R holds the coefficients of x_k on the innovations
ε_0, …, ε_k: x_k = ρ^k ε_0 + c Σ_{j=1..k} ρ^(k−j) ε_j.  The inner
product of columns i ≤ k is then

    ρ^(i+k) + c² Σ_{j=1..i} ρ^(i−j) ρ^(k−j)
        = ρ^(k−i) [ρ^(2i) + (1−ρ²)(1 + ρ² + … + ρ^(2(i−1)))]
        = ρ^(k−i),

which is M[i, k].

:func:`ar1_correlation_matrix` builds M explicitly.  It exists only so
the closed form can be checked against an independent decomposition;
nothing on the simulation path calls it.
"""

from __future__ import annotations

import math
import numbers

import numpy as np

from ._exceptions import InvalidParameter

# ------------------------------------------------------------------ #
# Argument validation (shared by kronecker / simulate / fit)
# ------------------------------------------------------------------ #


def _validate_rho(rho: float, name: str = "rho") -> float:
    """Return *rho* as a float, or raise if it is not in ``(-1, 1)``."""
    if isinstance(rho, bool) or not isinstance(rho, numbers.Real):
        msg = f"{name} must be a real number, got {type(rho).__name__}."
        raise InvalidParameter(msg)
    value = float(rho)
    if not math.isfinite(value) or not -1.0 < value < 1.0:
        msg = f"{name} must lie in the open interval (-1, 1), got {rho!r}."
        raise InvalidParameter(msg)
    return value


def _validate_dimension(p: int, name: str = "p") -> int:
    """Return *p* as an int, or raise if it is not a positive integer."""
    if isinstance(p, bool) or not isinstance(p, numbers.Integral):
        msg = f"{name} must be an integer, got {type(p).__name__}."
        raise InvalidParameter(msg)
    if p < 1:
        msg = f"{name} must be at least 1, got {p}."
        raise InvalidParameter(msg)
    return int(p)


def _validate_sigma(sigma: float, name: str = "sigma") -> float:
    """Return *sigma* as a float, or raise if it is negative or non-finite."""
    if isinstance(sigma, bool) or not isinstance(sigma, numbers.Real):
        msg = f"{name} must be a real number, got {type(sigma).__name__}."
        raise InvalidParameter(msg)
    value = float(sigma)
    if not math.isfinite(value) or value < 0.0:
        msg = f"{name} must be finite and non-negative, got {sigma!r}."
        raise InvalidParameter(msg)
    return value


# ------------------------------------------------------------------ #
# Builders
# ------------------------------------------------------------------ #


def _ar1_upper_factor(rho: float, p: int) -> np.ndarray:
    """Closed-form AR(1) factor without argument validation.

    Accepts the closed interval ``ρ ∈ [-1, 1]`` because the optimizer's
    box includes the endpoints.  At ``|ρ| = 1`` the scale c is zero and
    the factor is rank one (only the first row survives).
    """
    row = rho ** np.arange(p, dtype=np.float64)
    c = math.sqrt(max(1.0 - rho * rho, 0.0))
    shifted = c * row

    R = np.zeros((p, p), dtype=np.float64)
    R[0, :] = row
    for j in range(1, p):
        R[j, j:] = shifted[: p - j]
    return R


def ar1_cholesky_factor(rho: float, p: int) -> np.ndarray:
    """Upper-triangular Cholesky factor of the AR(1) correlation matrix.

    Args:
        rho: Lag-one correlation, strictly inside ``(-1, 1)``.
        p: Matrix dimension (grid size along one axis), ``p >= 1``.

    Returns:
        ``(p, p)`` upper-triangular matrix R with strictly positive
        diagonal and ``R.T @ R == ar1_correlation_matrix(rho, p)``.

    Raises:
        InvalidParameter: If ``|rho| >= 1`` or ``p < 1``.
    """
    rho = _validate_rho(rho)
    p = _validate_dimension(p)
    return _ar1_upper_factor(rho, p)


def ar1_correlation_matrix(rho: float, p: int) -> np.ndarray:
    """Dense AR(1) correlation matrix ``M[i, j] = rho ** |i - j|``.

    Validation path only: the simulator never forms this matrix.

    Raises:
        InvalidParameter: If ``|rho| >= 1`` or ``p < 1``.
    """
    rho = _validate_rho(rho)
    p = _validate_dimension(p)
    idx = np.arange(p)
    lags = np.abs(idx[:, None] - idx[None, :])
    return np.asarray(rho ** lags.astype(np.float64))
