"""
Spatial AR(1) Parameter Recovery Study
10 plots on a 10 × 10 grid, ρx = 0.5, ρy = 0.3, σx = 2, σy = 1, σresid = 0.1

Demonstrates:
- Closed-form AR(1) Cholesky factor checked against ``numpy.linalg``
- Kronecker product of two axis factors as the joint grid factor
- ``simulate_plots`` — one synthetic dataset in grid-cell order
- ``fit_parameters`` — one fit, with the NumPy deviance cross-checked
  against statsmodels ``MixedLM.loglike``
- ``run_replicates`` — 200 simulate-then-fit replicates in parallel
  threads, summarised with ``print_replication_table``

Identifiability
---------------
The fitted model sees the plot covariance only relative to the
residual variance, and the Kronecker factor depends on σx and σy only
through their product.  With one observation per cell per plot the
cell effect is hard to tell apart from the residual, so the replicates
recover ρx and ρy but inflate σx and σy.  Starting from σx = σy = 1,
the two σ estimates stay equal to each other.
"""

import numpy as np

from spatial_ar1 import (
    ar1_cholesky_factor,
    ar1_correlation_matrix,
    bridge,
    build_deviance,
    fit_parameters,
    grid_cholesky_factor,
    kronecker_covariance,
    print_fit_table,
    print_replication_table,
    run_replicates,
    simulate_plots,
)

N = (10, 10)
RHO = (0.5, 0.3)
SIGMA = (2.0, 1.0, 0.1)
N_PLOTS = 10
N_REPS = 200

# ============================================================================
# Closed-form factors
# ============================================================================

print("=" * 80)
print("Closed-form AR(1) and Kronecker factors")
print("=" * 80)

R = ar1_cholesky_factor(0.5, 10)
M = ar1_correlation_matrix(0.5, 10)
print(f"  R[0, :3]             {np.round(R[0, :3], 4).tolist()}")
print(f"  R[1, 1]              {R[1, 1]:.4f}  (√0.75)")
print(f"  max |RᵀR − M|        {np.max(np.abs(R.T @ R - M)):.2e}")

C = grid_cholesky_factor(N, SIGMA[:2], RHO)
cov = kronecker_covariance((N[1], N[0]), (SIGMA[1], SIGMA[0]), (RHO[1], RHO[0]))
print(f"  grid factor shape    {C.shape}")
print(f"  max |CᵀC − Σ|        {np.max(np.abs(C.T @ C - cov)):.2e}")
print(f"  max |chol(Σ)ᵀ − C|   {np.max(np.abs(np.linalg.cholesky(cov).T - C)):.2e}")
print()

# ============================================================================
# One dataset, one fit
# ============================================================================

data = simulate_plots(N_PLOTS, N, RHO, SIGMA, random_state=2023)
print("Simulated dataset")
print(f"  Rows:          {len(data)}")
print(f"  Plots:         {data['plot_id'].nunique()}")
print(f"  z range:       {data['z'].min():.2f}–{data['z'].max():.2f}")
print()

result = fit_parameters(data, N)
print_fit_table(result, title="Single-dataset fit (REML, L-BFGS-B)")

# ============================================================================
# External validation: statsmodels MixedLM
# ============================================================================

print("=" * 80)
print("External validation: statsmodels MixedLM.loglike")
print("=" * 80)

theta_full = bridge(result.theta_hat, N)
ours = build_deviance(data, N)(theta_full)
theirs = build_deviance(data, N, engine="statsmodels")(theta_full)
print(f"  NumPy deviance:        {ours:.6f}")
print(f"  statsmodels deviance:  {theirs:.6f}")
print(f"  agree (rtol=1e-6):     {np.isclose(ours, theirs, rtol=1e-6)}")
print()

# ============================================================================
# Replication study
# ============================================================================

study = run_replicates(
    N_REPS,
    N_PLOTS,
    N,
    RHO,
    SIGMA,
    random_state=2023,
    n_jobs=-1,
)
print_replication_table(study, title=f"{N_REPS} replicates, {N[0]}x{N[1]} grid")

est = study.estimates
print(f"σx·σy (true):            {SIGMA[0] * SIGMA[1]:.2f}")
print(f"mean σ̂x·σ̂y:             {(est['sigma_x'] * est['sigma_y']).mean():.2f}")
print(f"median |σ̂x / σ̂y − 1|:   {(est['sigma_x'] / est['sigma_y'] - 1).abs().median():.4f}")
