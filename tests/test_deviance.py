"""Tests for the profiled deviance engines."""

import numpy as np
import pandas as pd
import pytest

from spatial_ar1 import (
    InvalidParameter,
    NumericDegeneracy,
    ProfiledDeviance,
    StatsmodelsDeviance,
    bridge,
    build_deviance,
    simulate_plots,
)

N = (3, 2)


@pytest.fixture
def dataset():
    return simulate_plots(8, N, (0.4, 0.2), (1.0, 1.0, 1.0), random_state=0)


@pytest.fixture
def strong_dataset():
    return simulate_plots(20, N, (0.5, 0.3), (2.0, 2.0, 0.5), random_state=1)


class TestProfiledDeviance:
    def test_finite_at_generic_start(self, dataset):
        dev = build_deviance(dataset, N)
        assert isinstance(dev, ProfiledDeviance)
        assert np.isfinite(dev(bridge((1.0, 0.0, 1.0, 0.0), N)))

    def test_dimensions(self, dataset):
        dev = build_deviance(dataset, N)
        assert dev.n_cells == 6
        assert dev.n_theta == 21

    def test_finite_at_zero_sigma(self, dataset):
        dev = build_deviance(dataset, N)
        assert np.isfinite(dev(bridge((0.0, 0.3, 1.0, 0.3), N)))

    def test_finite_at_unit_rho(self, dataset):
        dev = build_deviance(dataset, N)
        assert np.isfinite(dev(bridge((1.0, 1.0, 1.0, -1.0), N)))

    def test_non_finite_theta_gives_inf(self, dataset):
        dev = build_deviance(dataset, N)
        theta_full = bridge((1.0, 0.2, 1.0, 0.2), N)
        theta_full[0] = np.nan
        assert dev(theta_full) == np.inf
        theta_full[0] = np.inf
        assert dev(theta_full) == np.inf

    def test_overflow_gives_inf(self, dataset):
        dev = build_deviance(dataset, N)
        assert dev(np.full(dev.n_theta, 1e200)) == np.inf

    def test_wrong_length_raises(self, dataset):
        dev = build_deviance(dataset, N)
        with pytest.raises(InvalidParameter, match="expected 21"):
            dev(np.ones(20))

    def test_lower_near_truth(self, strong_dataset):
        dev = build_deviance(strong_dataset, N)
        # Generating field relative to the residual: sigma_x * sigma_y / sigma_resid = 8.
        near_truth = dev(bridge((np.sqrt(8.0), 0.5, np.sqrt(8.0), 0.3), N))
        at_zero = dev(bridge((0.0, 0.0, 0.0, 0.0), N))
        assert near_truth < at_zero

    def test_depends_on_sigma_product_only(self, dataset):
        dev = build_deviance(dataset, N)
        a = dev(bridge((2.0, 0.3, 0.5, -0.2), N))
        b = dev(bridge((0.5, 0.3, 2.0, -0.2), N))
        assert a == pytest.approx(b, rel=1e-10)

    def test_ml_differs_from_reml(self, dataset):
        theta_full = bridge((1.0, 0.3, 1.0, 0.3), N)
        reml = build_deviance(dataset, N, reml=True)(theta_full)
        ml = build_deviance(dataset, N, reml=False)(theta_full)
        assert np.isfinite(ml)
        assert ml != pytest.approx(reml)

    def test_group_labels_are_arbitrary(self, dataset):
        relabelled = dataset.assign(plot_id=dataset["plot_id"].map(lambda g: f"plot-{g}"))
        theta_full = bridge((1.2, 0.1, 0.8, 0.4), N)
        a = build_deviance(dataset, N)(theta_full)
        b = build_deviance(relabelled, N)(theta_full)
        assert a == pytest.approx(b, rel=1e-12)

    def test_row_order_is_irrelevant(self, dataset):
        shuffled = dataset.sample(frac=1.0, random_state=4)
        theta_full = bridge((1.2, 0.1, 0.8, 0.4), N)
        a = build_deviance(dataset, N)(theta_full)
        b = build_deviance(shuffled, N)(theta_full)
        assert a == pytest.approx(b, rel=1e-10)


class TestProfiledEstimates:
    def test_zero_factor_reduces_to_ols(self, dataset):
        dev = build_deviance(dataset, N)
        est = dev.profiled_estimates(np.zeros(dev.n_theta))
        z = dataset["z"].to_numpy()
        np.testing.assert_allclose(est["beta"], [z.mean()])
        assert est["sigma2"] == pytest.approx(z.var(ddof=1))
        np.testing.assert_array_equal(est["relative_covariance"], np.zeros((6, 6)))

    def test_ml_uses_n_denominator(self, dataset):
        dev = build_deviance(dataset, N, reml=False)
        est = dev.profiled_estimates(np.zeros(dev.n_theta))
        assert est["sigma2"] == pytest.approx(dataset["z"].to_numpy().var(ddof=0))

    def test_degenerate_raises(self, dataset):
        dev = build_deviance(dataset, N)
        with pytest.raises(NumericDegeneracy):
            dev.profiled_estimates(np.full(dev.n_theta, np.nan))


class TestStatsmodelsDeviance:
    def test_evaluates_without_fitting(self, dataset):
        dev = StatsmodelsDeviance.from_dataset(dataset, N)
        assert np.isfinite(dev(bridge((1.1, 0.2, 0.9, 0.4), N)))

    @pytest.mark.parametrize("reml", [True, False])
    @pytest.mark.parametrize(
        "theta",
        [(1.0, 0.0, 1.0, 0.0), (1.3, 0.4, 0.8, -0.2), (0.6, -0.5, 0.9, 0.7)],
    )
    def test_agrees_with_profiled(self, dataset, theta, reml):
        theta_full = bridge(theta, N)
        ours = build_deviance(dataset, N, reml=reml)(theta_full)
        theirs = build_deviance(dataset, N, engine="statsmodels", reml=reml)(theta_full)
        assert isinstance(build_deviance(dataset, N, engine="statsmodels"), StatsmodelsDeviance)
        assert theirs == pytest.approx(ours, rel=1e-6)

    def test_non_finite_theta_gives_inf(self, dataset):
        dev = build_deviance(dataset, N, engine="statsmodels")
        assert dev(np.full(dev.n_theta, np.nan)) == np.inf

    def test_dimensions(self, dataset):
        dev = build_deviance(dataset, N, engine="Statsmodels")
        assert dev.n_cells == 6
        assert dev.n_theta == 21


class TestBuildDeviance:
    def test_unknown_engine(self, dataset):
        with pytest.raises(InvalidParameter, match="Unknown deviance engine"):
            build_deviance(dataset, N, engine="lme4")

    def test_non_string_engine(self, dataset):
        with pytest.raises(InvalidParameter, match="Unknown deviance engine"):
            build_deviance(dataset, N, engine=None)

    def test_missing_column(self, dataset):
        with pytest.raises(InvalidParameter, match="missing required column"):
            build_deviance(dataset.drop(columns="z"), N)

    def test_empty_frame(self, dataset):
        with pytest.raises(InvalidParameter, match="no rows"):
            build_deviance(dataset.iloc[:0], N)

    def test_non_finite_response(self, dataset):
        bad = dataset.copy()
        bad.loc[3, "z"] = np.nan
        with pytest.raises(InvalidParameter, match="finite"):
            build_deviance(bad, N)

    def test_coordinates_outside_grid(self, dataset):
        with pytest.raises(InvalidParameter, match="outside"):
            build_deviance(dataset, (2, 2))

    def test_fractional_coordinates(self, dataset):
        bad = dataset.assign(x=dataset["x"].astype(float))
        bad.loc[0, "x"] = 1.5
        with pytest.raises(InvalidParameter, match="whole numbers"):
            build_deviance(bad, N)

    def test_rejects_non_dataframe(self):
        with pytest.raises(TypeError, match="pandas DataFrame"):
            build_deviance({"z": [1.0]}, N)


class TestDirectConstruction:
    def test_float_cells_rejected(self):
        y = np.arange(4.0)
        with pytest.raises(InvalidParameter, match="integer"):
            ProfiledDeviance(y, np.ones((4, 1)), np.array([1, 1, 2, 2]), y, 2)

    def test_cells_out_of_range(self):
        with pytest.raises(InvalidParameter, match="cell indices"):
            ProfiledDeviance(
                np.arange(4.0), np.ones(4), np.array([1, 1, 2, 2]), np.array([0, 1, 2, 0]), 2
            )

    def test_mismatched_rows(self):
        with pytest.raises(InvalidParameter, match="same number of rows"):
            ProfiledDeviance(
                np.arange(4.0), np.ones((3, 1)), np.array([1, 1, 2, 2]), np.array([0, 1, 0, 1]), 2
            )

    def test_too_few_observations(self):
        with pytest.raises(InvalidParameter, match="more observations"):
            ProfiledDeviance(np.arange(1.0), np.ones((1, 1)), np.array([1]), np.array([0]), 1)

    def test_extra_covariate(self):
        rng = np.random.default_rng(42)
        n = 40
        groups = np.repeat(np.arange(10), 4)
        cells = np.tile(np.arange(4), 10)
        X = np.column_stack([np.ones(n), rng.standard_normal(n)])
        y = X @ np.array([1.0, 2.0]) + rng.standard_normal(n)
        ours = ProfiledDeviance(y, X, groups, cells, 4)
        theirs = StatsmodelsDeviance(y, X, groups, cells, 4)
        theta_full = 0.5 * np.eye(4)[np.tril_indices(4)]
        assert ours(theta_full) == pytest.approx(theirs(theta_full), rel=1e-6)
        beta = ours.profiled_estimates(theta_full)["beta"]
        assert beta[1] == pytest.approx(2.0, abs=0.5)
