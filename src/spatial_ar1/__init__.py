"""spatial_ar1 — Separable AR(1) spatial simulation and parameter recovery.

Builds the Cholesky factor of an AR(1) correlation matrix in closed
form, combines two such factors with a Kronecker product into the
factor of a separable 2-D covariance, simulates plots of spatially
correlated measurements from it, and recovers the generating
(σx, ρx, σy, ρy) by minimising a profiled mixed-model deviance,
replicated to study estimator bias.

Public API:
    .. autosummary::
        ar1_cholesky_factor
        ar1_correlation_matrix
        kronecker_cholesky_factor
        kronecker_covariance
        grid_cholesky_factor
        theta_to_lower_triangular
        lower_triangular_to_factor
        simulate_plots
        ProfiledDeviance
        StatsmodelsDeviance
        build_deviance
        bridge
        fit_parameters
        run_replicates
        print_fit_table
        print_replication_table
        get_optimizer
        set_optimizer
        FitResult
        ReplicationResult
        InvalidParameter
        NumericDegeneracy
"""

from ._config import get_optimizer, set_optimizer
from ._exceptions import InvalidParameter, NumericDegeneracy
from ._results import FitResult, ReplicationResult
from .ar1 import ar1_cholesky_factor, ar1_correlation_matrix
from .deviance import ProfiledDeviance, StatsmodelsDeviance, build_deviance
from .display import print_fit_table, print_replication_table
from .fit import bridge, fit_parameters
from .kronecker import (
    grid_cholesky_factor,
    kronecker_cholesky_factor,
    kronecker_covariance,
    lower_triangular_to_factor,
    theta_to_lower_triangular,
)
from .replicate import run_replicates
from .simulate import simulate_plots

__all__ = [
    "FitResult",
    "ReplicationResult",
    "InvalidParameter",
    "NumericDegeneracy",
    "ar1_cholesky_factor",
    "ar1_correlation_matrix",
    "kronecker_cholesky_factor",
    "kronecker_covariance",
    "grid_cholesky_factor",
    "theta_to_lower_triangular",
    "lower_triangular_to_factor",
    "simulate_plots",
    "ProfiledDeviance",
    "StatsmodelsDeviance",
    "build_deviance",
    "bridge",
    "fit_parameters",
    "run_replicates",
    "print_fit_table",
    "print_replication_table",
    "get_optimizer",
    "set_optimizer",
]

__version__ = "0.1.0"
