"""Tests for the replication driver."""

import numpy as np
import pandas as pd
import pytest

from spatial_ar1 import (
    InvalidParameter,
    ReplicationResult,
    fit_parameters,
    run_replicates,
    simulate_plots,
)

GRID = (2, 2)
RHO = (0.5, 0.3)
SIGMA = (1.0, 1.0, 1.0)
COLUMNS = ["replicate", "sigma_x", "rho_x", "sigma_y", "rho_y", "convergence_code"]


@pytest.fixture(scope="module")
def small_study():
    return run_replicates(4, 6, GRID, RHO, SIGMA, random_state=123)


class TestRunReplicates:
    def test_table_shape(self, small_study):
        assert isinstance(small_study, ReplicationResult)
        assert list(small_study.estimates.columns) == COLUMNS
        assert small_study.n_reps == 4
        assert small_study.estimates["replicate"].tolist() == [0, 1, 2, 3]

    def test_estimates_finite(self, small_study):
        est = small_study.estimates
        assert np.all(np.isfinite(est[["sigma_x", "rho_x", "sigma_y", "rho_y"]].to_numpy()))

    def test_code_dtype(self, small_study):
        assert small_study.estimates["convergence_code"].dtype == np.int64

    def test_metadata(self, small_study):
        assert small_study.base_seed == 123
        assert small_study.true_theta == (1.0, 0.5, 1.0, 0.3)
        assert small_study.sigma_resid == 1.0
        assert small_study.n_plots == 6
        assert small_study.grid_shape == GRID
        assert small_study.method == "L-BFGS-B"

    def test_reproducible(self, small_study):
        again = run_replicates(4, 6, GRID, RHO, SIGMA, random_state=123)
        pd.testing.assert_frame_equal(small_study.estimates, again.estimates)

    def test_parallel_matches_sequential(self, small_study):
        parallel = run_replicates(4, 6, GRID, RHO, SIGMA, random_state=123, n_jobs=2)
        pd.testing.assert_frame_equal(small_study.estimates, parallel.estimates)

    def test_replicate_uses_offset_seed(self, small_study):
        data = simulate_plots(6, GRID, RHO, SIGMA, random_state=np.random.default_rng(125))
        direct = fit_parameters(data, GRID)
        row = small_study.estimates.iloc[2]
        np.testing.assert_allclose(
            row[["sigma_x", "rho_x", "sigma_y", "rho_y"]].to_numpy(dtype=float),
            direct.theta_hat,
        )
        assert row["convergence_code"] == direct.convergence_code

    def test_generator_seed(self):
        result = run_replicates(
            2, 4, GRID, RHO, SIGMA, random_state=np.random.default_rng(0)
        )
        assert 0 <= result.base_seed < 2**31
        assert result.n_reps == 2

    def test_statsmodels_engine(self):
        result = run_replicates(
            1, 5, GRID, RHO, SIGMA, random_state=7, engine="statsmodels", method="Nelder-Mead"
        )
        assert result.n_reps == 1
        assert result.method == "Nelder-Mead"


class TestRunReplicatesValidation:
    def test_zero_reps(self):
        with pytest.raises(InvalidParameter, match="n_reps"):
            run_replicates(0, 6, GRID, RHO, SIGMA)

    def test_zero_plots(self):
        with pytest.raises(InvalidParameter, match="n_plots"):
            run_replicates(2, 0, GRID, RHO, SIGMA)

    def test_invalid_rho(self):
        with pytest.raises(InvalidParameter, match="rho_y"):
            run_replicates(2, 6, GRID, (0.5, 1.0), SIGMA)

    def test_invalid_sigma(self):
        with pytest.raises(InvalidParameter, match="sigma_resid"):
            run_replicates(2, 6, GRID, RHO, (1.0, 1.0, -1.0))

    def test_zero_jobs(self):
        with pytest.raises(InvalidParameter, match="n_jobs"):
            run_replicates(2, 6, GRID, RHO, SIGMA, n_jobs=0)

    def test_unknown_engine(self):
        with pytest.raises(InvalidParameter, match="engine"):
            run_replicates(2, 6, GRID, RHO, SIGMA, engine="lme4")

    def test_non_string_engine(self):
        with pytest.raises(InvalidParameter, match="engine"):
            run_replicates(2, 6, GRID, RHO, SIGMA, engine=1)

    def test_negative_seed(self):
        with pytest.raises(InvalidParameter, match="non-negative"):
            run_replicates(2, 6, GRID, RHO, SIGMA, random_state=-1)

    def test_bad_seed_type(self):
        with pytest.raises(InvalidParameter, match="random_state"):
            run_replicates(2, 6, GRID, RHO, SIGMA, random_state=1.5)

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown optimizer"):
            run_replicates(2, 6, GRID, RHO, SIGMA, method="newton")


@pytest.mark.slow
class TestRecoveryScenario:
    """200 replicates of 10 plots on a 10x10 grid."""

    @pytest.fixture(scope="class")
    def study(self):
        return run_replicates(
            200,
            10,
            (10, 10),
            (0.5, 0.3),
            (2.0, 1.0, 0.1),
            random_state=2023,
            n_jobs=-1,
        )

    def test_rows(self, study):
        assert study.n_reps == 200
        est = study.estimates[["sigma_x", "rho_x", "sigma_y", "rho_y"]].to_numpy()
        assert np.all(np.isfinite(est))
        assert study.estimates["convergence_code"].dtype == np.int64

    def test_correlations_recovered(self, study):
        summary = study.summary()
        assert summary.loc["rho_x", "mean"] == pytest.approx(0.5, abs=0.1)
        assert summary.loc["rho_y", "mean"] == pytest.approx(0.3, abs=0.1)

    def test_sigmas_biased_upwards(self, study):
        summary = study.summary()
        assert summary.loc["sigma_x", "bias"] > 0
        assert summary.loc["sigma_y", "bias"] > 0
        est = study.estimates
        assert (est["sigma_x"] * est["sigma_y"]).mean() > 2.0 * 1.0

    def test_sigmas_move_together(self, study):
        est = study.estimates
        ratio = est["sigma_x"] / est["sigma_y"]
        assert np.median(np.abs(ratio - 1.0)) < 0.05
