"""Optimizer configuration for the spatial_ar1 package.

Controls which ``scipy.optimize.minimize`` method drives parameter
recovery when :func:`~spatial_ar1.fit_parameters` is called without an
explicit ``method=``.

Resolution order (first match wins):
    1. Programmatic override via :func:`set_optimizer`.
    2. The ``SPATIAL_AR1_OPTIMIZER`` environment variable.
    3. The default, ``"L-BFGS-B"``.

Valid optimizer names are ``"L-BFGS-B"``, ``"Nelder-Mead"``,
``"Powell"`` and ``"TNC"`` (case-insensitive).  All four honour box
constraints.

Examples:
    Switch to a derivative-free search from the shell::

        export SPATIAL_AR1_OPTIMIZER=nelder-mead

    Switch programmatically::

        import spatial_ar1
        spatial_ar1.set_optimizer("Nelder-Mead")

    Re-enable default resolution::

        spatial_ar1.set_optimizer("auto")
"""

from __future__ import annotations

import os

_DEFAULT_OPTIMIZER = "L-BFGS-B"

# Lower-case lookup key -> canonical scipy spelling.
_VALID_OPTIMIZERS = {
    "l-bfgs-b": "L-BFGS-B",
    "nelder-mead": "Nelder-Mead",
    "powell": "Powell",
    "tnc": "TNC",
}

# Sentinel indicating "no programmatic override has been set".
_optimizer_override: str | None = None


def _canonical_optimizer(name: str) -> str | None:
    """Return the canonical spelling of *name*, or ``None`` if unknown."""
    return _VALID_OPTIMIZERS.get(name.strip().lower())


def get_optimizer() -> str:
    """Return the active optimizer name.

    Resolution order:
        1. Value set by :func:`set_optimizer` (unless ``"auto"``).
        2. ``SPATIAL_AR1_OPTIMIZER`` environment variable.
        3. ``"L-BFGS-B"``.

    Returns:
        Canonical scipy method name, e.g. ``"L-BFGS-B"``.
    """
    # 1. Programmatic override
    if _optimizer_override is not None and _optimizer_override != "auto":
        return _optimizer_override

    # 2. Environment variable (unknown values are ignored)
    env = os.environ.get("SPATIAL_AR1_OPTIMIZER", "")
    canonical = _canonical_optimizer(env) if env else None
    if canonical is not None:
        return canonical

    # 3. Default
    return _DEFAULT_OPTIMIZER


def set_optimizer(name: str) -> None:
    """Override the optimizer selection.

    Args:
        name: One of ``"L-BFGS-B"``, ``"Nelder-Mead"``, ``"Powell"``,
            ``"TNC"``, or ``"auto"`` (case-insensitive).  ``"auto"``
            restores the default resolution order.

    Raises:
        ValueError: If *name* is not a recognised optimizer.
    """
    global _optimizer_override
    if name.strip().lower() == "auto":
        _optimizer_override = "auto"
        return
    canonical = _canonical_optimizer(name)
    if canonical is None:
        choices = sorted([*_VALID_OPTIMIZERS.values(), "auto"])
        raise ValueError(f"Unknown optimizer '{name}'. Choose from: {choices}")
    _optimizer_override = canonical


def resolve_optimizer(method: str | None) -> str:
    """Resolve an explicit *method* argument against the configuration.

    ``None`` defers to :func:`get_optimizer`.  Explicit names are
    validated the same way as :func:`set_optimizer`.

    Raises:
        ValueError: If *method* is not a recognised optimizer.
    """
    if method is None:
        return get_optimizer()
    canonical = _canonical_optimizer(method)
    if canonical is None:
        raise ValueError(
            f"Unknown optimizer '{method}'. "
            f"Choose from: {sorted(_VALID_OPTIMIZERS.values())}"
        )
    return canonical
