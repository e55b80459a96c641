"""Recover (σx, ρx, σy, ρy) from one simulated dataset.

The deviance engine (:mod:`spatial_ar1.deviance`) speaks in the
row-major lower-triangular vector θ_full of the relative covariance
factor Λ, a vector of length d(d+1)/2 with d = N1·N2.  The physically
meaningful parameters are just four numbers.  :func:`bridge` maps one
to the other:

    θ = (σx, ρx, σy, ρy)
      → C = kron(σy·R(ρy, N2), σx·R(ρx, N1))     (grid-cell order)
      → Λ = Cᵀ
      → θ_full = vech_rowmajor(Λ)

and :func:`fit_parameters` minimises ``deviance(bridge(θ))`` over a
box (σ ≥ 0, ρ ∈ [−1, 1] by default) with ``scipy.optimize.minimize``.

Identifiability
~~~~~~~~~~~~~~~
Λ depends on σx and σy only through the product σx·σy, so from the
symmetric start σx = σy = 1 the two estimates move together and stay
equal.  Λ is also *relative* to the residual scale, and each plot has
exactly one observation per cell, so the cell effect and the residual
are separated only by the AR(1) shape of Λ.  In practice the deviance
prefers a small residual and a large σx·σy, so both σ estimates come
out well above their generating values while ρx and ρy are recovered.
This is a property of the model as posed; the fit reports what the
deviance supports and does not rescale it.

Failure semantics
~~~~~~~~~~~~~~~~~
* Invalid bounds / starting points raise
  :class:`~spatial_ar1.InvalidParameter` before any evaluation.
* A candidate whose factor cannot be evaluated scores ``+inf`` so the
  minimizer steps away from it.
* Non-convergence is returned as a non-zero ``convergence_code``,
  never raised.
"""

from __future__ import annotations

import logging
import math
import numbers
import warnings
from collections.abc import Callable, Sequence
from typing import Any

import numpy as np
from scipy.optimize import minimize

from ._compat import DataFrameLike
from ._config import resolve_optimizer
from ._exceptions import InvalidParameter, NumericDegeneracy
from ._results import FitResult
from ._typing import Bounds, GridShape, Theta
from .ar1 import _validate_dimension
from .deviance import DevianceFunction, build_deviance
from .kronecker import _grid_factor_unchecked, _unpack_pair, theta_to_lower_triangular

logger = logging.getLogger(__name__)

DEFAULT_INITIAL_THETA = (1.0, 0.0, 1.0, 0.0)

DEFAULT_BOUNDS: Bounds = [(0.0, None), (-1.0, 1.0), (0.0, None), (-1.0, 1.0)]


# ------------------------------------------------------------------ #
# Reparameterisation bridge
# ------------------------------------------------------------------ #


def bridge(theta: Theta, N: Sequence[int]) -> np.ndarray:
    """Map ``(σx, ρx, σy, ρy)`` to the engine's triangular vector.

    No range checks: the optimizer's box already keeps σ ≥ 0 and
    ρ ∈ [−1, 1], and the endpoints are legal here (|ρ| = 1 gives a
    rank-one axis factor, which the deviance still evaluates).

    Args:
        theta: ``(σx, ρx, σy, ρy)``.
        N: ``(N1, N2)`` grid size.

    Returns:
        Lower triangle of ``Cᵀ``, row-major, length ``d(d+1)/2``.
    """
    sigma_x, rho_x, sigma_y, rho_y = (float(v) for v in theta)
    n1, n2 = N
    C = _grid_factor_unchecked((int(n1), int(n2)), sigma_x, rho_x, sigma_y, rho_y)
    return theta_to_lower_triangular(C)


# ------------------------------------------------------------------ #
# Argument validation
# ------------------------------------------------------------------ #


def _validate_theta(theta: Any, name: str) -> np.ndarray:
    arr = np.asarray(theta, dtype=np.float64).ravel()
    if arr.shape != (4,):
        msg = f"{name} must have 4 entries (sigma_x, rho_x, sigma_y, rho_y), got {arr.shape[0]}."
        raise InvalidParameter(msg)
    if not np.all(np.isfinite(arr)):
        msg = f"{name} must be finite, got {arr.tolist()}."
        raise InvalidParameter(msg)
    return arr


def _validate_bound(value: Any, name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        msg = f"{name} must be a real number or None, got {type(value).__name__}."
        raise InvalidParameter(msg)
    value = float(value)
    if math.isnan(value):
        msg = f"{name} must not be NaN."
        raise InvalidParameter(msg)
    # Infinite bounds mean "unbounded" to scipy.
    return None if math.isinf(value) else value


def _validate_bounds(bounds: Bounds | None, x0: np.ndarray) -> Bounds:
    """Check the 4 ``(lower, upper)`` pairs and that *x0* lies inside."""
    if bounds is None:
        bounds = DEFAULT_BOUNDS
    try:
        pairs = [tuple(pair) for pair in bounds]
    except TypeError:
        msg = f"bounds must be a sequence of (lower, upper) pairs, got {bounds!r}."
        raise InvalidParameter(msg) from None
    if len(pairs) != 4 or any(len(pair) != 2 for pair in pairs):
        msg = f"bounds must contain exactly 4 (lower, upper) pairs, got {bounds!r}."
        raise InvalidParameter(msg)

    checked: Bounds = []
    for i, (lo, hi) in enumerate(pairs):
        lo = _validate_bound(lo, f"bounds[{i}][0]")
        hi = _validate_bound(hi, f"bounds[{i}][1]")
        if lo is not None and hi is not None and lo > hi:
            msg = f"bounds[{i}] has lower {lo} > upper {hi}."
            raise InvalidParameter(msg)
        if (lo is not None and x0[i] < lo) or (hi is not None and x0[i] > hi):
            msg = f"initial_theta[{i}] = {x0[i]} lies outside bounds[{i}] = ({lo}, {hi})."
            raise InvalidParameter(msg)
        checked.append((lo, hi))
    return checked


# ------------------------------------------------------------------ #
# Objective
# ------------------------------------------------------------------ #


def _make_objective(
    deviance: DevianceFunction,
    N: GridShape,
) -> tuple[Callable[[np.ndarray], float], dict[str, int]]:
    """Close over *deviance* and the grid; count evaluations."""
    counter = {"n": 0}

    def objective(theta: np.ndarray) -> float:
        counter["n"] += 1
        try:
            value = float(deviance(bridge(theta, N)))
        except (NumericDegeneracy, np.linalg.LinAlgError, FloatingPointError) as exc:
            logger.debug("Objective degenerate at %s: %s", np.round(theta, 6), exc)
            return np.inf
        return value if np.isfinite(value) else np.inf

    return objective, counter


def _convergence_code(res: Any) -> int:
    """Non-zero whenever the minimizer did not report success."""
    status = int(getattr(res, "status", 0) or 0)
    if res.success:
        return 0
    return status if status != 0 else 1


# ------------------------------------------------------------------ #
# Public entry point
# ------------------------------------------------------------------ #


def fit_parameters(
    dataset: DataFrameLike | None,
    N: Sequence[int],
    initial_theta: Sequence[float] = DEFAULT_INITIAL_THETA,
    bounds: Bounds | None = None,
    *,
    deviance: DevianceFunction | None = None,
    engine: str = "henderson",
    method: str | None = None,
    reml: bool = True,
    options: dict[str, Any] | None = None,
) -> FitResult:
    """Fit ``(σx, ρx, σy, ρy)`` to one dataset by minimising the deviance.

    Args:
        dataset: Simulated frame (``plot_id``, ``x``, ``y``, ``z``).  May
            be ``None`` when *deviance* is supplied.
        N: ``(N1, N2)`` grid size the data were simulated on.
        initial_theta: Starting ``(σx, ρx, σy, ρy)``.
        bounds: Four ``(lower, upper)`` pairs; ``None`` entries are
            unbounded.  Defaults to σ ∈ [0, ∞), ρ ∈ [−1, 1].
        deviance: Pre-built ``theta_full -> float`` callable.  When
            given, *dataset*, *engine* and *reml* are not used to
            build one.
        engine: Deviance engine for *dataset* (``"henderson"`` or
            ``"statsmodels"``).
        method: ``scipy.optimize.minimize`` method; ``None`` uses
            :func:`~spatial_ar1.get_optimizer`.
        reml: REML (default) or ML deviance.
        options: Extra ``options=`` forwarded to ``minimize``.

    Returns:
        A :class:`~spatial_ar1.FitResult`.

    Raises:
        InvalidParameter: For malformed grid, bounds or starting point,
            or when neither *dataset* nor *deviance* is given.
        ValueError: For an unknown optimizer name.
    """
    n1, n2 = _unpack_pair(N, "N")
    grid = (_validate_dimension(n1, "N[0]"), _validate_dimension(n2, "N[1]"))
    x0 = _validate_theta(initial_theta, "initial_theta")
    box = _validate_bounds(bounds, x0)
    opt_method = resolve_optimizer(method)

    if deviance is None:
        if dataset is None:
            msg = "fit_parameters() needs either a dataset or a deviance function."
            raise InvalidParameter(msg)
        deviance = build_deviance(dataset, grid, engine=engine, reml=reml)

    objective, counter = _make_objective(deviance, grid)

    # scipy warns on inf objective values and bound clipping; the
    # outcome is reported through the convergence code instead.
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=RuntimeWarning)
        warnings.filterwarnings("ignore", category=UserWarning)
        res = minimize(
            objective,
            x0,
            method=opt_method,
            bounds=box,
            options=options or {},
        )

    code = _convergence_code(res)
    theta_hat = np.asarray(res.x, dtype=np.float64)
    if code != 0:
        logger.debug(
            "Fit did not converge (method=%s, code=%d): %s",
            opt_method,
            code,
            res.message,
        )

    return FitResult(
        theta_hat=theta_hat,
        convergence_code=code,
        deviance=float(res.fun) if np.isfinite(res.fun) else float("inf"),
        n_evaluations=counter["n"],
        message=str(res.message),
        method=opt_method,
        initial_theta=x0,
    )
