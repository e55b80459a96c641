"""Typed result objects for parameter recovery.

Frozen dataclasses that provide:

* **Attribute access** — ``result.theta_hat``, ``result.convergence_code``.
* **Dict-like access** — ``result["theta_hat"]``, ``result.get("key")``,
  ``"key" in result`` for consumers that prefer bracket syntax.
* **Serialisation** — ``.to_dict()`` returns a plain ``dict[str, Any]``
  with all NumPy types converted to native Python.

Two concrete result types:

* :class:`FitResult` — one fit of (σx, ρx, σy, ρy) to one dataset.
* :class:`ReplicationResult` — the estimates table from many
  simulate-then-fit replicates, with a distributional summary.

Both are frozen: a result is a snapshot of a completed computation
and is never mutated after it is created.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar

import numpy as np
import pandas as pd

PARAMETER_NAMES = ("sigma_x", "rho_x", "sigma_y", "rho_y")

# ------------------------------------------------------------------ #
# Serialisation helper
# ------------------------------------------------------------------ #


def _numpy_to_python(obj: Any) -> Any:
    """Recursively convert NumPy / pandas values to Python-native types.

    Handles nested dicts, lists, tuples, ``np.ndarray``, NumPy scalars
    and ``pd.DataFrame`` (as a list of row dicts) so that
    :meth:`to_dict` returns a fully JSON-serialisable structure.
    """
    if isinstance(obj, pd.DataFrame):
        return [_numpy_to_python(row) for row in obj.to_dict(orient="records")]
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.bool_)):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, dict):
        return {k: _numpy_to_python(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        converted = [_numpy_to_python(item) for item in obj]
        return type(obj)(converted)
    return obj


# ------------------------------------------------------------------ #
# Dict-compatibility mixin
# ------------------------------------------------------------------ #


class _DictAccessMixin:
    """Dict-like access convenience for result dataclasses.

    Supports three access patterns:

    1. ``result["key"]``      — raises ``KeyError`` on miss
    2. ``result.get(key, d)`` — returns *d* on miss (default ``None``)
    3. ``"key" in result``    — membership test
    """

    # Fields to exclude from to_dict() serialisation.
    _EXCLUDE_FROM_DICT: ClassVar[frozenset[str]] = frozenset()

    def __getitem__(self, key: str) -> Any:
        """Attribute lookup via bracket syntax."""
        try:
            return getattr(self, key)
        except AttributeError:
            raise KeyError(key) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Attribute lookup with a fallback default."""
        return getattr(self, key, default)

    def __contains__(self, key: object) -> bool:
        """Membership test: ``"key" in result``."""
        if not isinstance(key, str):
            return False
        return hasattr(self, key)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain, JSON-serialisable dictionary."""
        result: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            if f.name in self._EXCLUDE_FROM_DICT:
                continue
            result[f.name] = _numpy_to_python(getattr(self, f.name))
        return result


# ------------------------------------------------------------------ #
# FitResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class FitResult(_DictAccessMixin):
    """Outcome of one parameter-recovery fit.

    A non-zero ``convergence_code`` means the minimizer stopped without
    meeting its criterion.  The estimate is kept anyway so it can be
    inspected.
    """

    theta_hat: np.ndarray
    """Estimated ``(σx, ρx, σy, ρy)``."""

    convergence_code: int
    """``0`` on success; the minimizer's non-zero status otherwise."""

    deviance: float
    """Deviance at ``theta_hat`` (``inf`` if never finite)."""

    n_evaluations: int
    """Number of objective evaluations the minimizer made."""

    message: str
    """Minimizer termination message."""

    method: str
    """``scipy.optimize.minimize`` method used."""

    initial_theta: np.ndarray = field(default_factory=lambda: np.zeros(4))
    """Starting point of the search."""

    @property
    def converged(self) -> bool:
        """Whether ``convergence_code == 0``."""
        return self.convergence_code == 0

    @property
    def sigma_x(self) -> float:
        return float(self.theta_hat[0])

    @property
    def rho_x(self) -> float:
        return float(self.theta_hat[1])

    @property
    def sigma_y(self) -> float:
        return float(self.theta_hat[2])

    @property
    def rho_y(self) -> float:
        return float(self.theta_hat[3])


# ------------------------------------------------------------------ #
# ReplicationResult
# ------------------------------------------------------------------ #


@dataclass(frozen=True)
class ReplicationResult(_DictAccessMixin):
    """Estimates from repeated simulate-then-fit replicates.

    ``estimates`` has one row per replicate, ordered by the
    ``replicate`` column, with columns ``replicate``, ``sigma_x``,
    ``rho_x``, ``sigma_y``, ``rho_y`` and ``convergence_code``.
    """

    estimates: pd.DataFrame
    """Per-replicate estimates table."""

    true_theta: tuple[float, float, float, float]
    """Generating ``(σx, ρx, σy, ρy)``."""

    sigma_resid: float
    """Generating residual standard deviation."""

    n_plots: int
    """Plots per simulated dataset."""

    grid_shape: tuple[int, int]
    """``(N1, N2)``."""

    base_seed: int
    """Replicate *i* was simulated with ``default_rng(base_seed + i)``."""

    method: str
    """Optimizer used for every fit."""

    @property
    def n_reps(self) -> int:
        return len(self.estimates)

    @property
    def converged_fraction(self) -> float:
        """Share of replicates with ``convergence_code == 0``."""
        if self.n_reps == 0:
            return float("nan")
        return float((self.estimates["convergence_code"] == 0).mean())

    def summary(self, *, converged_only: bool = False) -> pd.DataFrame:
        """Distributional summary of the estimates against the truth.

        Args:
            converged_only: Restrict to replicates with code 0.

        Returns:
            DataFrame indexed by parameter name with columns ``true``,
            ``mean``, ``bias`` (mean − true), ``sd``, ``se``
            (sd / √n) and ``n``.
        """
        est = self.estimates
        if converged_only:
            est = est[est["convergence_code"] == 0]
        n = len(est)
        rows = []
        for name, true in zip(PARAMETER_NAMES, self.true_theta):
            values = est[name].to_numpy(dtype=np.float64)
            mean = float(np.mean(values)) if n else float("nan")
            sd = float(np.std(values, ddof=1)) if n > 1 else float("nan")
            rows.append(
                {
                    "parameter": name,
                    "true": float(true),
                    "mean": mean,
                    "bias": mean - float(true),
                    "sd": sd,
                    "se": sd / np.sqrt(n) if n > 1 else float("nan"),
                    "n": n,
                }
            )
        return pd.DataFrame(rows).set_index("parameter")
