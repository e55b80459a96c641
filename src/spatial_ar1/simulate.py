"""Synthetic spatially-correlated plot data.

Each plot is an N1 × N2 grid of measurements.  Within a plot the
field has the separable AR(1) covariance Σ = (σx² Mx) ⊗ (σy² My) in
grid-cell order, plus independent measurement noise:

    z_p = v_p · C + σ_resid · ε_p,    v_p, ε_p ~ N(0, I_{N1·N2}),

where C is the upper-triangular factor from
:func:`~spatial_ar1.kronecker.grid_cholesky_factor`.  Because
CᵀC = Σ, the row vector v_p · C has covariance Σ.  C comes in closed
form, so no covariance matrix is formed or decomposed here.

Plots are mutually independent.  Randomness comes from an explicit
``numpy.random.Generator`` (or a seed used to build one); nothing
touches NumPy's global random state.

Draw order
~~~~~~~~~~
For a given generator state the draws are always:

1. one ``(P, N1·N2)`` standard-normal block for the structured field;
2. one ``(P, N1·N2)`` standard-normal block for the residual noise.

Rows come out plot-major, then y, then x fastest.  The output is
therefore a deterministic function of the seed and the grid size.
"""

from __future__ import annotations

import logging
import numbers
from collections.abc import Sequence

import numpy as np
import pandas as pd

from ._exceptions import InvalidParameter
from ._typing import RandomState
from .ar1 import _validate_dimension, _validate_sigma
from .kronecker import _unpack_pair, grid_cholesky_factor

logger = logging.getLogger(__name__)


def _resolve_rng(random_state: RandomState) -> np.random.Generator:
    """Return a Generator for *random_state*.

    A Generator is returned as-is and consumed in place.  An int
    seeds a fresh ``default_rng``; ``None`` draws fresh OS entropy.

    Raises:
        InvalidParameter: For any other type.
    """
    if isinstance(random_state, np.random.Generator):
        return random_state
    if random_state is None or (
        isinstance(random_state, numbers.Integral)
        and not isinstance(random_state, bool)
    ):
        return np.random.default_rng(random_state)
    msg = (
        "random_state must be None, an int seed, or a numpy Generator, "
        f"got {type(random_state).__name__}."
    )
    raise InvalidParameter(msg)


def _unpack_sigma3(sigma: Sequence[float]) -> tuple[float, float, float]:
    """Validate ``(σx, σy, σresid)``."""
    try:
        sx, sy, sr = sigma
    except (TypeError, ValueError):
        msg = f"sigma must be a triple (sigma_x, sigma_y, sigma_resid), got {sigma!r}."
        raise InvalidParameter(msg) from None
    return (
        _validate_sigma(sx, "sigma_x"),
        _validate_sigma(sy, "sigma_y"),
        _validate_sigma(sr, "sigma_resid"),
    )


def grid_coordinates(n_plots: int, N: Sequence[int]) -> pd.DataFrame:
    """Row skeleton ``(plot_id, x, y)`` in simulation order.

    1-based labels; x varies fastest, then y, then plot.

    Raises:
        InvalidParameter: If *n_plots* or *N* is not positive.
    """
    n_plots = _validate_dimension(n_plots, "n_plots")
    n1, n2 = _unpack_pair(N, "N")
    n1 = _validate_dimension(n1, "N[0]")
    n2 = _validate_dimension(n2, "N[1]")
    n_cells = n1 * n2

    return pd.DataFrame(
        {
            "plot_id": np.repeat(np.arange(1, n_plots + 1), n_cells),
            "x": np.tile(np.arange(1, n1 + 1), n2 * n_plots),
            "y": np.tile(np.repeat(np.arange(1, n2 + 1), n1), n_plots),
        }
    )


def simulate_plots(
    n_plots: int,
    N: Sequence[int],
    rho: Sequence[float],
    sigma: Sequence[float],
    *,
    random_state: RandomState = None,
) -> pd.DataFrame:
    """Simulate *n_plots* independent grids of correlated measurements.

    Args:
        n_plots: Number of plots P, ``>= 1``.
        N: ``(N1, N2)`` grid size along x and y.
        rho: ``(ρx, ρy)``, each in ``(-1, 1)``.
        sigma: ``(σx, σy, σresid)``, each finite and ``>= 0``.
        random_state: ``None``, an int seed, or a
            ``numpy.random.Generator``.  A Generator is advanced in
            place, which is how replicates share one stream.

    Returns:
        DataFrame with ``P·N1·N2`` rows and columns ``plot_id``, ``x``,
        ``y``, ``z``.  Every ``(plot_id, x, y)`` appears exactly once.

    Raises:
        InvalidParameter: If any argument is out of range.
    """
    sx, sy, sr = _unpack_sigma3(sigma)
    # Validates N and rho as well.
    C = grid_cholesky_factor(N, (sx, sy), rho)
    frame = grid_coordinates(n_plots, N)
    rng = _resolve_rng(random_state)

    n_cells = C.shape[0]
    field = rng.standard_normal((n_plots, n_cells)) @ C
    noise = sr * rng.standard_normal((n_plots, n_cells))

    frame["z"] = (field + noise).ravel()
    logger.debug(
        "Simulated %d plot(s) on a %dx%d grid (%d rows).",
        n_plots,
        int(frame["x"].iat[-1]),
        int(frame["y"].iat[-1]),
        len(frame),
    )
    return frame
