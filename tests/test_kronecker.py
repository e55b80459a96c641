"""Tests for the Kronecker-structured factors and the triangular bridge."""

import numpy as np
import pytest

from spatial_ar1 import (
    InvalidParameter,
    grid_cholesky_factor,
    kronecker_cholesky_factor,
    kronecker_covariance,
    lower_triangular_to_factor,
    theta_to_lower_triangular,
)


class TestKroneckerCholeskyFactor:
    N = (3, 4)
    SIGMA = (1.5, 0.7)
    RHO = (0.3, -0.6)

    def test_reconstructs_covariance(self):
        C = kronecker_cholesky_factor(self.N, self.SIGMA, self.RHO)
        cov = kronecker_covariance(self.N, self.SIGMA, self.RHO)
        np.testing.assert_allclose(C.T @ C, cov, atol=1e-10)

    def test_equals_generic_cholesky(self):
        C = kronecker_cholesky_factor(self.N, self.SIGMA, self.RHO)
        cov = kronecker_covariance(self.N, self.SIGMA, self.RHO)
        np.testing.assert_allclose(np.linalg.cholesky(cov).T, C, atol=1e-10)

    def test_upper_triangular_with_positive_diagonal(self):
        C = kronecker_cholesky_factor(self.N, self.SIGMA, self.RHO)
        assert C.shape == (12, 12)
        assert np.all(np.tril(C, k=-1) == 0.0)
        assert np.all(np.diag(C) > 0)

    def test_zero_sigma_gives_zero_factor(self):
        C = kronecker_cholesky_factor((2, 2), (0.0, 1.0), (0.5, 0.5))
        np.testing.assert_array_equal(C, np.zeros((4, 4)))

    def test_rejects_invalid_rho(self):
        with pytest.raises(InvalidParameter, match=r"rho\[1\]"):
            kronecker_cholesky_factor((3, 3), (1.0, 1.0), (0.2, 1.0))

    def test_rejects_negative_sigma(self):
        with pytest.raises(InvalidParameter, match=r"sigma\[0\]"):
            kronecker_cholesky_factor((3, 3), (-1.0, 1.0), (0.2, 0.2))

    def test_rejects_malformed_pair(self):
        with pytest.raises(InvalidParameter, match="pair"):
            kronecker_cholesky_factor((3,), (1.0, 1.0), (0.2, 0.2))
        with pytest.raises(InvalidParameter, match="pair"):
            kronecker_cholesky_factor(3, (1.0, 1.0), (0.2, 0.2))


class TestGridCholeskyFactor:
    """Cell (x, y) sits at index (y - 1) * N1 + (x - 1)."""

    def test_x_neighbours_use_rho_x(self):
        sx, sy, rx, ry = 1.2, 0.8, 0.6, 0.2
        C = grid_cholesky_factor((3, 2), (sx, sy), (rx, ry))
        cov = C.T @ C
        scale = (sx * sy) ** 2
        # (1, 1) and (2, 1) are x-neighbours; (1, 1) and (1, 2) are y-neighbours.
        assert cov[0, 1] == pytest.approx(scale * rx)
        assert cov[0, 3] == pytest.approx(scale * ry)
        assert cov[0, 2] == pytest.approx(scale * rx**2)
        assert cov[0, 4] == pytest.approx(scale * rx * ry)

    def test_equals_swapped_kronecker(self):
        C = grid_cholesky_factor((4, 3), (1.1, 0.9), (0.4, -0.3))
        expected = kronecker_cholesky_factor((3, 4), (0.9, 1.1), (-0.3, 0.4))
        np.testing.assert_array_equal(C, expected)


class TestTriangularBridge:
    def test_row_major_order(self):
        C = np.array(
            [
                [1.0, 2.0, 3.0],
                [0.0, 4.0, 5.0],
                [0.0, 0.0, 6.0],
            ]
        )
        # Lower triangle of C.T, row by row.
        np.testing.assert_array_equal(
            theta_to_lower_triangular(C), [1.0, 2.0, 4.0, 3.0, 5.0, 6.0]
        )

    def test_length(self):
        C = grid_cholesky_factor((3, 3), (1.0, 1.0), (0.5, 0.5))
        assert theta_to_lower_triangular(C).shape == (45,)

    def test_round_trip(self):
        C = grid_cholesky_factor((3, 2), (1.3, 0.6), (0.5, -0.4))
        theta_full = theta_to_lower_triangular(C)
        L = lower_triangular_to_factor(theta_full, 6)
        np.testing.assert_array_equal(L, C.T)
        np.testing.assert_allclose(L @ L.T, C.T @ C)

    def test_returns_copy(self):
        C = np.eye(2)
        theta_full = theta_to_lower_triangular(C)
        theta_full[0] = 99.0
        assert C[0, 0] == 1.0

    def test_rejects_non_square(self):
        with pytest.raises(InvalidParameter, match="square"):
            theta_to_lower_triangular(np.zeros((2, 3)))

    def test_rejects_wrong_length(self):
        with pytest.raises(InvalidParameter, match="expected 6"):
            lower_triangular_to_factor(np.ones(5), 3)
