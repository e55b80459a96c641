"""Shared type aliases for the spatial_ar1 package."""

import numpy as np

# Grid size along (x, y).
GridShape = tuple[int, int]

# Parameter vector (sigma_x, rho_x, sigma_y, rho_y).
Theta = tuple[float, float, float, float] | np.ndarray

# Elementwise (lower, upper) box constraints, one pair per parameter.
Bounds = list[tuple[float | None, float | None]]

# Anything accepted as a source of randomness.
RandomState = int | np.random.Generator | None
