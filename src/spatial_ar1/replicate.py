"""Repeated simulate-then-fit replicates for estimator bias studies.

Each replicate draws a fresh dataset with
:func:`~spatial_ar1.simulate_plots` and fits it with
:func:`~spatial_ar1.fit_parameters` from the generic start
σ = 1, ρ = 0 on both axes.  Collecting the estimates over many
replicates gives their empirical sampling distribution.

Random streams
~~~~~~~~~~~~~~
Replicate *i* is simulated from its own generator
``default_rng(base_seed + i)``.  No replicate reads anything another
replicate wrote, so the whole table is a deterministic function of
``base_seed``, and the result does not depend on execution order or
on ``n_jobs``.

``base_seed`` is ``random_state`` when that is an int; it is drawn
once from the generator when a ``numpy.random.Generator`` is passed,
and from fresh OS entropy when ``random_state`` is ``None``.

Parallelism
~~~~~~~~~~~
When ``n_jobs != 1`` the replicates run under
``joblib.Parallel(prefer="threads")``.  Threads (rather than
processes) avoid pickling the datasets.  The heavy work of every fit
(batched Cholesky, solves, ``np.kron``) happens in LAPACK/BLAS, which
releases the GIL, so replicates overlap on multi-core hardware.  Each
worker returns its own row and the rows are sorted by ``replicate``
afterwards, so nothing is shared between workers.
"""

from __future__ import annotations

import logging
import numbers
from collections.abc import Sequence
from typing import Any

import numpy as np
import pandas as pd
from joblib import Parallel, delayed

from ._config import resolve_optimizer
from ._exceptions import InvalidParameter
from ._results import PARAMETER_NAMES, ReplicationResult
from ._typing import GridShape, RandomState
from .ar1 import _validate_dimension, _validate_rho
from .deviance import _engine_name, build_deviance
from .fit import DEFAULT_INITIAL_THETA, fit_parameters
from .kronecker import _unpack_pair
from .simulate import _unpack_sigma3, simulate_plots

logger = logging.getLogger(__name__)

_SEED_SPACE = 2**31


def _resolve_base_seed(random_state: RandomState) -> int:
    """Turn *random_state* into the integer seed of replicate 0."""
    if isinstance(random_state, np.random.Generator):
        return int(random_state.integers(_SEED_SPACE))
    if random_state is None:
        return int(np.random.default_rng().integers(_SEED_SPACE))
    if isinstance(random_state, numbers.Integral) and not isinstance(random_state, bool):
        if random_state < 0:
            msg = f"random_state must be non-negative, got {random_state}."
            raise InvalidParameter(msg)
        return int(random_state)
    msg = (
        "random_state must be None, an int seed, or a numpy Generator, "
        f"got {type(random_state).__name__}."
    )
    raise InvalidParameter(msg)


def _run_one(
    index: int,
    seed: int,
    n_plots: int,
    N: GridShape,
    rho: tuple[float, float],
    sigma: tuple[float, float, float],
    engine: str,
    method: str,
    reml: bool,
) -> dict[str, Any]:
    """Simulate and fit one replicate; return its table row."""
    rng = np.random.default_rng(seed)
    data = simulate_plots(n_plots, N, rho, sigma, random_state=rng)
    deviance = build_deviance(data, N, engine=engine, reml=reml)
    result = fit_parameters(
        None,
        N,
        initial_theta=DEFAULT_INITIAL_THETA,
        deviance=deviance,
        method=method,
    )
    row: dict[str, Any] = {"replicate": index}
    row.update(zip(PARAMETER_NAMES, result.theta_hat.tolist()))
    row["convergence_code"] = result.convergence_code
    logger.debug(
        "Replicate %d: theta_hat=%s code=%d",
        index,
        np.round(result.theta_hat, 4).tolist(),
        result.convergence_code,
    )
    return row


def run_replicates(
    n_reps: int,
    n_plots: int,
    N: Sequence[int],
    rho: Sequence[float],
    sigma: Sequence[float],
    *,
    random_state: RandomState = None,
    n_jobs: int = 1,
    engine: str = "henderson",
    method: str | None = None,
    reml: bool = True,
) -> ReplicationResult:
    """Run *n_reps* independent simulate-then-fit replicates.

    Args:
        n_reps: Number of replicates, ``>= 1``.
        n_plots: Plots per simulated dataset.
        N: ``(N1, N2)`` grid size.
        rho: True ``(ρx, ρy)``.
        sigma: True ``(σx, σy, σresid)``.
        random_state: ``None``, a non-negative int base seed, or a
            ``numpy.random.Generator`` to draw the base seed from.
        n_jobs: joblib worker count (``1`` runs sequentially; ``-1``
            uses every core).
        engine: Deviance engine, ``"henderson"`` or ``"statsmodels"``.
        method: Optimizer; ``None`` uses
            :func:`~spatial_ar1.get_optimizer`.
        reml: REML (default) or ML deviance.

    Returns:
        :class:`~spatial_ar1.ReplicationResult` whose ``estimates``
        has exactly *n_reps* rows ordered by replicate index.

    Raises:
        InvalidParameter: If any argument is out of range.  Everything
            is validated before the first replicate runs.
    """
    n_reps = _validate_dimension(n_reps, "n_reps")
    n_plots = _validate_dimension(n_plots, "n_plots")
    n1, n2 = _unpack_pair(N, "N")
    grid = (_validate_dimension(n1, "N[0]"), _validate_dimension(n2, "N[1]"))
    r1, r2 = _unpack_pair(rho, "rho")
    rhos = (_validate_rho(r1, "rho_x"), _validate_rho(r2, "rho_y"))
    sigmas = _unpack_sigma3(sigma)
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, numbers.Integral) or n_jobs == 0:
        msg = f"n_jobs must be a non-zero integer, got {n_jobs!r}."
        raise InvalidParameter(msg)
    engine = _engine_name(engine)
    opt_method = resolve_optimizer(method)
    base_seed = _resolve_base_seed(random_state)

    logger.debug(
        "Running %d replicate(s) from base seed %d (n_jobs=%d).",
        n_reps,
        base_seed,
        n_jobs,
    )

    args = (n_plots, grid, rhos, sigmas, engine, opt_method, reml)
    if n_jobs == 1:
        rows = [_run_one(i, base_seed + i, *args) for i in range(n_reps)]
    else:
        rows = Parallel(n_jobs=n_jobs, prefer="threads")(
            delayed(_run_one)(i, base_seed + i, *args) for i in range(n_reps)
        )

    estimates = (
        pd.DataFrame(rows, columns=["replicate", *PARAMETER_NAMES, "convergence_code"])
        .sort_values("replicate")
        .reset_index(drop=True)
    )
    estimates["convergence_code"] = estimates["convergence_code"].astype(np.int64)

    return ReplicationResult(
        estimates=estimates,
        true_theta=(sigmas[0], rhos[0], sigmas[1], rhos[1]),
        sigma_resid=sigmas[2],
        n_plots=n_plots,
        grid_shape=grid,
        base_seed=base_seed,
        method=opt_method,
    )
