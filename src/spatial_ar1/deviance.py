"""Profiled deviance of the plot-level structured random-effects model.

Model
~~~~~
For plot g with observations y_g (one per grid cell visited),

    y_g = X_g β + Z_g u_g + ε_g,   u_g ~ N(0, σ² ΛΛᵀ),   ε_g ~ N(0, σ² I),

where Z_g is the cell-indicator design (a cell × plot interaction
random effect, ``z ~ 1 + (cell | plot)``), X_g holds the fixed effects
(an intercept for simulated data), and Λ is the d × d lower-triangular
*relative covariance factor* (d = N1·N2).  σ² and β are profiled out,
so the deviance is a function of Λ alone, passed as its row-major
lower-triangular vector θ (see
:func:`~spatial_ar1.kronecker.lower_triangular_to_factor`).

Profiled deviance (Bates, Mächler, Bolker & Walker 2015)
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
With M_g = ΛᵀZ_gᵀZ_gΛ + I (always positive definite, even when Λ is
singular), the Woodbury identity gives

    X'Ṽ⁻¹X = X'X − Σ_g (ΛᵀZ_gᵀX_g)ᵀ M_g⁻¹ (ΛᵀZ_gᵀX_g)   = S
    X'Ṽ⁻¹y = X'y − Σ_g (ΛᵀZ_gᵀX_g)ᵀ M_g⁻¹ (ΛᵀZ_gᵀy_g)   = b
    y'Ṽ⁻¹y = y'y − Σ_g (ΛᵀZ_gᵀy_g)ᵀ M_g⁻¹ (ΛᵀZ_gᵀy_g)   = c

    β̂ = S⁻¹b,    Q = c − β̂ᵀb,    log|Ṽ| = Σ_g log|M_g|

    REML:  d(θ) = log|Ṽ| + log|S| + (n−p)[1 + log(2πQ/(n−p))]
    ML:    d(θ) = log|Ṽ| + n[1 + log(2πQ/n)]

All sufficient statistics (Z_gᵀZ_g, Z_gᵀX_g, Z_gᵀy_g, X'X, X'y, y'y)
are computed once.  Every plot shares Λ, so each evaluation is a
single batched Cholesky over a ``(G, d, d)`` stack with no per-plot
Python loop.  Z_gᵀZ_g is diagonal because every row hits exactly one
cell, so it is stored as a ``(G, d)`` count array.

Engines
~~~~~~~
* :class:`ProfiledDeviance` — the NumPy implementation above.
* :class:`StatsmodelsDeviance` — the same quantity from
  ``statsmodels`` ``MixedLM.loglike`` (−2·loglike, scale profiled).
  Much slower, and undefined where ΛΛᵀ is singular, but independent:
  it is how the NumPy engine is cross-checked.

Both engines are plain callables ``theta_full -> float``.  Where the
implied factor cannot be evaluated they return ``inf``; they never
raise for a bad *value* of θ (a wrong *length* is a caller bug and
raises :class:`~spatial_ar1.InvalidParameter`).
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import numpy as np
import scipy.linalg

from ._compat import DataFrameLike, _ensure_dataset
from ._exceptions import InvalidParameter, NumericDegeneracy
from .ar1 import _validate_dimension
from .kronecker import _unpack_pair, lower_triangular_to_factor

logger = logging.getLogger(__name__)

DevianceFunction = Callable[[np.ndarray], float]

_LOG_2PI = float(np.log(2.0 * np.pi))

_ENGINES = ("henderson", "statsmodels")


# ------------------------------------------------------------------ #
# Design helpers
# ------------------------------------------------------------------ #


def _dataset_design(
    dataset: DataFrameLike,
    N: Sequence[int],
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, int]:
    """Pull ``(y, X, groups, cells, n_cells)`` out of a simulated frame.

    Cells are numbered ``(y−1)·N1 + (x−1)``, matching
    :func:`~spatial_ar1.kronecker.grid_cholesky_factor`.  X is a
    single intercept column.

    Raises:
        InvalidParameter: If coordinates fall outside the grid.
    """
    df = _ensure_dataset(dataset)
    n1, n2 = _unpack_pair(N, "N")
    n1 = _validate_dimension(n1, "N[0]")
    n2 = _validate_dimension(n2, "N[1]")

    xs = df["x"].to_numpy()
    ys = df["y"].to_numpy()
    if np.any((xs < 1) | (xs > n1)) or np.any((ys < 1) | (ys > n2)):
        msg = f"dataset coordinates fall outside the {n1}x{n2} grid."
        raise InvalidParameter(msg)
    if np.any(xs != np.round(xs)) or np.any(ys != np.round(ys)):
        msg = "dataset coordinates x and y must be whole numbers."
        raise InvalidParameter(msg)

    cells = (ys.astype(np.int64) - 1) * n1 + (xs.astype(np.int64) - 1)
    y = df["z"].to_numpy(dtype=np.float64)
    X = np.ones((len(y), 1), dtype=np.float64)
    groups = df["plot_id"].to_numpy()
    return y, X, groups, cells, n1 * n2


def _check_design(
    y: np.ndarray,
    X: np.ndarray,
    groups: np.ndarray,
    cells: np.ndarray,
    n_cells: int,
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Validate shapes and ranges shared by both engines."""
    y = np.asarray(y, dtype=np.float64).ravel()
    X = np.asarray(X, dtype=np.float64)
    if X.ndim == 1:
        X = X[:, None]
    groups = np.asarray(groups)
    cells = np.asarray(cells)
    n = y.shape[0]

    if X.shape[0] != n or groups.shape != (n,) or cells.shape != (n,):
        msg = (
            f"y, X, groups and cells must have the same number of rows; "
            f"got {n}, {X.shape[0]}, {groups.shape[0]}, {cells.shape[0]}."
        )
        raise InvalidParameter(msg)
    if n <= X.shape[1]:
        msg = f"need more observations ({n}) than fixed effects ({X.shape[1]})."
        raise InvalidParameter(msg)
    if not np.issubdtype(cells.dtype, np.integer):
        msg = f"cells must be integer indices, got dtype {cells.dtype}."
        raise InvalidParameter(msg)
    if np.any(cells < 0) or np.any(cells >= n_cells):
        msg = f"cell indices must lie in [0, {n_cells})."
        raise InvalidParameter(msg)
    return y, X, groups, cells


# ------------------------------------------------------------------ #
# NumPy engine
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class _SufficientStats:
    """Cross-products reused by every deviance evaluation."""

    n_obs: int
    n_fixed: int
    n_cells: int
    ztz: np.ndarray  # (G, d)   diagonal of Z_gᵀZ_g (cell counts)
    ztx: np.ndarray  # (G, d, p)
    zty: np.ndarray  # (G, d)
    xtx: np.ndarray  # (p, p)
    xty: np.ndarray  # (p,)
    yty: float


@dataclass(frozen=True)
class _Profile:
    """Intermediate quantities of one evaluation."""

    beta: np.ndarray
    q: float
    logdet_v: float
    logdet_s: float


class ProfiledDeviance:
    """Profiled REML/ML deviance as a function of the triangular θ.

    Args:
        y: Response ``(n,)``.
        X: Fixed-effect design ``(n, p)`` including any intercept.
        groups: Plot labels ``(n,)``; any hashable values.
        cells: 0-based grid-cell index of each row, ``(n,)``.
        n_cells: Random-effect dimension d.
        reml: REML (default) or ML deviance.

    Raises:
        InvalidParameter: If the design arrays are inconsistent.
    """

    def __init__(
        self,
        y: np.ndarray,
        X: np.ndarray,
        groups: np.ndarray,
        cells: np.ndarray,
        n_cells: int,
        *,
        reml: bool = True,
    ) -> None:
        n_cells = _validate_dimension(n_cells, "n_cells")
        y, X, groups, cells = _check_design(y, X, groups, cells, n_cells)
        self.reml = reml
        self._stats = self._sufficient_stats(y, X, groups, cells, n_cells)

    @classmethod
    def from_dataset(
        cls,
        dataset: DataFrameLike,
        N: Sequence[int],
        *,
        reml: bool = True,
    ) -> ProfiledDeviance:
        """Build the intercept-only model for a simulated dataset."""
        y, X, groups, cells, n_cells = _dataset_design(dataset, N)
        return cls(y, X, groups, cells, n_cells, reml=reml)

    @staticmethod
    def _sufficient_stats(
        y: np.ndarray,
        X: np.ndarray,
        groups: np.ndarray,
        cells: np.ndarray,
        n_cells: int,
    ) -> _SufficientStats:
        _, g_idx = np.unique(groups, return_inverse=True)
        g_idx = g_idx.ravel()
        n_groups = int(g_idx.max()) + 1
        p = X.shape[1]

        ztz = np.zeros((n_groups, n_cells))
        np.add.at(ztz, (g_idx, cells), 1.0)
        zty = np.zeros((n_groups, n_cells))
        np.add.at(zty, (g_idx, cells), y)
        ztx = np.zeros((n_groups, n_cells, p))
        np.add.at(ztx, (g_idx, cells), X)

        return _SufficientStats(
            n_obs=y.shape[0],
            n_fixed=p,
            n_cells=n_cells,
            ztz=ztz,
            ztx=ztx,
            zty=zty,
            xtx=X.T @ X,
            xty=X.T @ y,
            yty=float(y @ y),
        )

    @property
    def n_cells(self) -> int:
        """Random-effect dimension d."""
        return self._stats.n_cells

    @property
    def n_theta(self) -> int:
        """Length of the triangular parameter vector, ``d(d+1)/2``."""
        d = self._stats.n_cells
        return d * (d + 1) // 2

    def _profile(self, theta_full: np.ndarray) -> _Profile:
        """Evaluate the profiled quantities, or raise NumericDegeneracy."""
        s = self._stats
        d, p = s.n_cells, s.n_fixed
        Lam = lower_triangular_to_factor(theta_full, d)
        if not np.all(np.isfinite(Lam)):
            raise NumericDegeneracy("relative covariance factor is not finite")

        with np.errstate(over="raise", invalid="raise"):
            try:
                # M_g = Λᵀ diag(ztz_g) Λ + I, one (d, d) block per plot.
                M = np.einsum("ji,gj,jk->gik", Lam, s.ztz, Lam)
                M += np.eye(d)
                chol_M = np.linalg.cholesky(M)

                # Stack [ΛᵀZᵀX | ΛᵀZᵀy] so one batched solve serves S, b, c.
                rhs = np.concatenate(
                    [
                        np.einsum("ji,gjp->gip", Lam, s.ztx),
                        np.einsum("ji,gj->gi", Lam, s.zty)[:, :, None],
                    ],
                    axis=2,
                )
                sol = np.linalg.solve(M, rhs)
                cross = np.einsum("gki,gkj->ij", rhs, sol)

                S = s.xtx - cross[:p, :p]
                b = s.xty - cross[:p, p]
                c = s.yty - cross[p, p]

                chol_S = scipy.linalg.cho_factor(S, lower=True)
                beta = scipy.linalg.cho_solve(chol_S, b)
            # scipy's check_finite raises ValueError on nan/inf entries.
            except (np.linalg.LinAlgError, FloatingPointError, ValueError) as exc:
                raise NumericDegeneracy(str(exc)) from exc

        q = float(c - beta @ b)
        if not np.isfinite(q) or q <= 0.0:
            raise NumericDegeneracy(f"non-positive residual quadratic form {q!r}")

        logdet_v = 2.0 * float(np.sum(np.log(np.diagonal(chol_M, axis1=1, axis2=2))))
        logdet_s = 2.0 * float(np.sum(np.log(np.diag(chol_S[0]))))
        return _Profile(beta=beta, q=q, logdet_v=logdet_v, logdet_s=logdet_s)

    def _deviance(self, prof: _Profile) -> float:
        n, p = self._stats.n_obs, self._stats.n_fixed
        if self.reml:
            dof = n - p
            return (
                prof.logdet_v
                + prof.logdet_s
                + dof * (1.0 + _LOG_2PI + np.log(prof.q / dof))
            )
        return prof.logdet_v + n * (1.0 + _LOG_2PI + np.log(prof.q / n))

    def __call__(self, theta_full: np.ndarray) -> float:
        """Deviance at *theta_full*; ``inf`` where it cannot be evaluated.

        Raises:
            InvalidParameter: If ``len(theta_full) != d(d+1)/2``.
        """
        try:
            value = float(self._deviance(self._profile(theta_full)))
        except NumericDegeneracy as exc:
            logger.debug("Degenerate deviance evaluation: %s", exc)
            return np.inf
        return value if np.isfinite(value) else np.inf

    def profiled_estimates(self, theta_full: np.ndarray) -> dict[str, Any]:
        """Fixed effects and residual variance profiled at *theta_full*.

        Returns:
            Dict with ``beta`` ``(p,)``, ``sigma2`` (residual variance,
            REML or ML denominator to match ``reml``), and
            ``relative_covariance`` ``ΛΛᵀ``.

        Raises:
            NumericDegeneracy: If the deviance is undefined at *theta_full*.
        """
        prof = self._profile(theta_full)
        n, p = self._stats.n_obs, self._stats.n_fixed
        Lam = lower_triangular_to_factor(theta_full, self._stats.n_cells)
        return {
            "beta": prof.beta,
            "sigma2": prof.q / (n - p if self.reml else n),
            "relative_covariance": Lam @ Lam.T,
        }


# ------------------------------------------------------------------ #
# statsmodels engine
# ------------------------------------------------------------------ #


class StatsmodelsDeviance:
    """Same deviance, computed by ``statsmodels`` ``MixedLM``.

    ``MixedLM.loglike`` takes ``cov_re`` in units of the residual
    scale (exactly ΛΛᵀ) and profiles the scale and fixed effects, so
    ``−2 · loglike`` equals :class:`ProfiledDeviance`.  ``cov_re`` must
    be non-singular here: at σ = 0 or |ρ| = 1 this engine returns
    ``inf`` where the NumPy engine stays finite.
    """

    def __init__(
        self,
        y: np.ndarray,
        X: np.ndarray,
        groups: np.ndarray,
        cells: np.ndarray,
        n_cells: int,
        *,
        reml: bool = True,
    ) -> None:
        import statsmodels.regression.mixed_linear_model as mlm

        n_cells = _validate_dimension(n_cells, "n_cells")
        y, X, groups, cells = _check_design(y, X, groups, cells, n_cells)
        exog_re = np.zeros((y.shape[0], n_cells))
        exog_re[np.arange(y.shape[0]), cells] = 1.0

        with warnings.catch_warnings():
            warnings.filterwarnings("ignore")
            self._model = mlm.MixedLM(y, X, groups=groups, exog_re=exog_re)
        # loglike() reads the penalty attributes that fit() would set.
        self._model.reml = reml
        self._model.fe_pen = None
        self._model.cov_pen = None
        self._params_cls = mlm.MixedLMParams
        self._n_cells = n_cells
        self._k_fe = X.shape[1]
        self.reml = reml

    @classmethod
    def from_dataset(
        cls,
        dataset: DataFrameLike,
        N: Sequence[int],
        *,
        reml: bool = True,
    ) -> StatsmodelsDeviance:
        """Build the intercept-only model for a simulated dataset."""
        y, X, groups, cells, n_cells = _dataset_design(dataset, N)
        return cls(y, X, groups, cells, n_cells, reml=reml)

    @property
    def n_cells(self) -> int:
        return self._n_cells

    @property
    def n_theta(self) -> int:
        return self._n_cells * (self._n_cells + 1) // 2

    def __call__(self, theta_full: np.ndarray) -> float:
        Lam = lower_triangular_to_factor(theta_full, self._n_cells)
        if not np.all(np.isfinite(Lam)):
            return np.inf
        cov_re = Lam @ Lam.T
        params = self._params_cls.from_components(
            fe_params=np.zeros(self._k_fe), cov_re=cov_re
        )
        # Singular cov_re makes statsmodels fall back to pinv and warn.
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore")
            try:
                loglike = float(self._model.loglike(params, profile_fe=True))
            except (np.linalg.LinAlgError, ValueError, FloatingPointError) as exc:
                logger.debug("statsmodels deviance failed: %s", exc)
                return np.inf
        value = -2.0 * loglike
        return value if np.isfinite(value) else np.inf


# ------------------------------------------------------------------ #
# Factory
# ------------------------------------------------------------------ #


def _engine_name(engine: str) -> str:
    """Return the lower-case engine name, or raise if it is unknown."""
    name = engine.strip().lower() if isinstance(engine, str) else None
    if name not in _ENGINES:
        msg = f"Unknown deviance engine {engine!r}. Choose from: {list(_ENGINES)}"
        raise InvalidParameter(msg)
    return name


def build_deviance(
    dataset: DataFrameLike,
    N: Sequence[int],
    *,
    engine: str = "henderson",
    reml: bool = True,
) -> ProfiledDeviance | StatsmodelsDeviance:
    """Construct the deviance function for *dataset* on an ``N`` grid.

    Args:
        dataset: Frame with ``plot_id``, ``x``, ``y``, ``z``.
        N: ``(N1, N2)`` grid size.
        engine: ``"henderson"`` (NumPy, default) or ``"statsmodels"``.
        reml: REML (default) or ML deviance.

    Raises:
        InvalidParameter: For an unknown engine or a malformed dataset.
    """
    if _engine_name(engine) == "statsmodels":
        return StatsmodelsDeviance.from_dataset(dataset, N, reml=reml)
    return ProfiledDeviance.from_dataset(dataset, N, reml=reml)
