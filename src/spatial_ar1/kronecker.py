"""Kronecker-structured Cholesky factors for separable 2-D correlation.

A separable covariance on a p1 × p2 grid is the Kronecker product of
two one-axis covariances:

    Σ = (σ1² M1) ⊗ (σ2² M2),    M_k = AR1(ρ_k, p_k).

With upper-triangular factors R_k (R_kᵀ R_k = M_k), the mixed-product
rule gives

    (σ1 R1 ⊗ σ2 R2)ᵀ (σ1 R1 ⊗ σ2 R2) = σ1² R1ᵀR1 ⊗ σ2² R2ᵀR2 = Σ,

and the Kronecker product of two upper-triangular matrices with
positive diagonals is itself upper-triangular with positive diagonal.
By uniqueness of the Cholesky factor, C = σ1 R1 ⊗ σ2 R2 *is* the
Cholesky factor of Σ.  Building it this way costs O((p1 p2)²) and
never forms or decomposes the (p1 p2) × (p1 p2) covariance.

Grid-cell order
~~~~~~~~~~~~~~~
``np.kron(A, B)`` indexes rows as ``i_A * p_B + i_B``: the *second*
operand varies fastest.  Simulated plots enumerate cells with x
fastest, so :func:`grid_cholesky_factor` puts the x-axis factor
second.  Simulator and fitter both go through it, so the two always
agree on which axis a parameter belongs to.

Triangular parameter vectors
~~~~~~~~~~~~~~~~~~~~~~~~~~~~
The deviance engine is parameterised by the lower triangle of the
relative covariance factor Λ (ΛΛᵀ = Σ), flattened row-major with the
diagonal included::

    [Λ[0,0], Λ[1,0], Λ[1,1], Λ[2,0], Λ[2,1], Λ[2,2], …]

For an upper-triangular C with CᵀC = Σ, Λ = Cᵀ.
:func:`theta_to_lower_triangular` and
:func:`lower_triangular_to_factor` are the two directions of that
mapping.
"""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from ._exceptions import InvalidParameter
from .ar1 import (
    _ar1_upper_factor,
    _validate_dimension,
    _validate_rho,
    _validate_sigma,
    ar1_correlation_matrix,
)


def _unpack_pair(value: Sequence[float], name: str) -> tuple[float, float]:
    """Return *value* as a 2-tuple, or raise if it is not a pair."""
    try:
        first, second = value
    except (TypeError, ValueError):
        msg = f"{name} must be a pair of values, got {value!r}."
        raise InvalidParameter(msg) from None
    return first, second


def _validate_axes(
    N: Sequence[int],
    sigma: Sequence[float],
    rho: Sequence[float],
) -> tuple[tuple[int, int], tuple[float, float], tuple[float, float]]:
    """Validate per-axis (dimension, scale, correlation) pairs."""
    n1, n2 = _unpack_pair(N, "N")
    s1, s2 = _unpack_pair(sigma, "sigma")
    r1, r2 = _unpack_pair(rho, "rho")
    return (
        (_validate_dimension(n1, "N[0]"), _validate_dimension(n2, "N[1]")),
        (_validate_sigma(s1, "sigma[0]"), _validate_sigma(s2, "sigma[1]")),
        (_validate_rho(r1, "rho[0]"), _validate_rho(r2, "rho[1]")),
    )


# ------------------------------------------------------------------ #
# Joint factor
# ------------------------------------------------------------------ #


def kronecker_cholesky_factor(
    N: Sequence[int],
    sigma: Sequence[float],
    rho: Sequence[float],
) -> np.ndarray:
    """Joint Cholesky factor of a separable 2-D AR(1) covariance.

    Args:
        N: ``(p1, p2)`` dimensions of the two axes.
        sigma: ``(σ1, σ2)`` per-axis standard deviations, ``>= 0``.
        rho: ``(ρ1, ρ2)`` per-axis correlations in ``(-1, 1)``.

    Returns:
        ``(p1·p2, p1·p2)`` upper-triangular
        ``C = kron(σ1·R(ρ1, p1), σ2·R(ρ2, p2))``.

    Raises:
        InvalidParameter: If any pair is malformed or out of range.
    """
    (p1, p2), (s1, s2), (r1, r2) = _validate_axes(N, sigma, rho)
    return _kron_factor(p1, p2, s1, s2, r1, r2)


def _kron_factor(
    p1: int, p2: int, s1: float, s2: float, r1: float, r2: float
) -> np.ndarray:
    """Unchecked :func:`kronecker_cholesky_factor` (``ρ ∈ [-1, 1]``)."""
    return np.kron(s1 * _ar1_upper_factor(r1, p1), s2 * _ar1_upper_factor(r2, p2))


def kronecker_covariance(
    N: Sequence[int],
    sigma: Sequence[float],
    rho: Sequence[float],
) -> np.ndarray:
    """Explicit joint covariance ``kron(σ1²·M1, σ2²·M2)``.

    Validation path only, used to check :func:`kronecker_cholesky_factor`
    against a generic decomposition.

    Raises:
        InvalidParameter: If any pair is malformed or out of range.
    """
    (p1, p2), (s1, s2), (r1, r2) = _validate_axes(N, sigma, rho)
    return np.kron(
        s1**2 * ar1_correlation_matrix(r1, p1),
        s2**2 * ar1_correlation_matrix(r2, p2),
    )


def grid_cholesky_factor(
    N: Sequence[int],
    sigma: Sequence[float],
    rho: Sequence[float],
) -> np.ndarray:
    """Joint factor in grid-cell order (x fastest).

    Args:
        N: ``(N1, N2)`` grid size along x and y.
        sigma: ``(σx, σy)``.
        rho: ``(ρx, ρy)``.

    Returns:
        ``kron(σy·R(ρy, N2), σx·R(ρx, N1))``, so that row/column
        ``(y−1)·N1 + (x−1)`` belongs to cell ``(x, y)``.
    """
    (n1, n2), (sx, sy), (rx, ry) = _validate_axes(N, sigma, rho)
    return _kron_factor(n2, n1, sy, sx, ry, rx)


def _grid_factor_unchecked(
    N: tuple[int, int],
    sigma_x: float,
    rho_x: float,
    sigma_y: float,
    rho_y: float,
) -> np.ndarray:
    """Unchecked :func:`grid_cholesky_factor` for the optimizer's inner loop."""
    n1, n2 = N
    return _kron_factor(n2, n1, sigma_y, sigma_x, rho_y, rho_x)


# ------------------------------------------------------------------ #
# Triangular parameterisation bridge
# ------------------------------------------------------------------ #


def theta_to_lower_triangular(C: np.ndarray) -> np.ndarray:
    """Flatten the lower triangle of ``C.T`` row-major.

    Args:
        C: ``(d, d)`` upper-triangular factor with ``CᵀC = Σ``.

    Returns:
        Vector of length ``d(d+1)/2``:
        ``[Cᵀ[0,0], Cᵀ[1,0], Cᵀ[1,1], Cᵀ[2,0], …]``.

    Raises:
        InvalidParameter: If *C* is not a square 2-D array.
    """
    C = np.asarray(C, dtype=np.float64)
    if C.ndim != 2 or C.shape[0] != C.shape[1]:
        msg = f"C must be a square matrix, got shape {C.shape}."
        raise InvalidParameter(msg)
    # np.tril_indices walks rows in order, columns ascending: row-major.
    rows, cols = np.tril_indices(C.shape[0])
    return C.T[rows, cols].copy()


def lower_triangular_to_factor(theta_full: np.ndarray, d: int) -> np.ndarray:
    """Rebuild the ``(d, d)`` lower-triangular Λ from its row-major vech.

    Inverse of :func:`theta_to_lower_triangular`:
    ``lower_triangular_to_factor(theta_to_lower_triangular(C), d) == C.T``.

    Raises:
        InvalidParameter: If ``len(theta_full) != d(d+1)/2``.
    """
    theta_full = np.asarray(theta_full, dtype=np.float64).ravel()
    expected = d * (d + 1) // 2
    if theta_full.shape[0] != expected:
        msg = (
            f"theta_full has {theta_full.shape[0]} entries, expected "
            f"{expected} for a {d}x{d} lower-triangular factor."
        )
        raise InvalidParameter(msg)
    L = np.zeros((d, d), dtype=np.float64)
    L[np.tril_indices(d)] = theta_full
    return L
