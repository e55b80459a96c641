"""Tests for Polars DataFrame input compatibility."""

import numpy as np
import pandas as pd
import pytest

from spatial_ar1 import build_deviance, bridge, simulate_plots
from spatial_ar1._compat import _ensure_dataset, _ensure_pandas_df

# Import polars; skip all tests in this module if not installed.
pl = pytest.importorskip("polars")


@pytest.fixture
def dataset():
    return simulate_plots(4, (2, 3), (0.3, 0.6), (1.0, 1.0, 0.5), random_state=42)


class TestEnsurePandasDf:
    """Tests for the _ensure_pandas_df converter."""

    def test_pandas_passthrough(self, dataset):
        result = _ensure_pandas_df(dataset)
        assert result is dataset  # exact same object, no copy

    def test_polars_converted(self, dataset):
        result = _ensure_pandas_df(pl.from_pandas(dataset))
        assert isinstance(result, pd.DataFrame)
        assert list(result.columns) == ["plot_id", "x", "y", "z"]

    def test_polars_lazyframe_collected_and_converted(self, dataset):
        result = _ensure_pandas_df(pl.from_pandas(dataset).lazy())
        assert isinstance(result, pd.DataFrame)
        np.testing.assert_array_equal(result["z"].to_numpy(), dataset["z"].to_numpy())

    def test_rejects_invalid_type(self):
        with pytest.raises(TypeError, match="must be a pandas DataFrame"):
            _ensure_pandas_df([1, 2, 3])

    def test_error_includes_name(self):
        with pytest.raises(TypeError, match="'frame'"):
            _ensure_pandas_df({"a": 1}, name="frame")


class TestPolarsDataset:
    def test_missing_column(self, dataset):
        from spatial_ar1 import InvalidParameter

        with pytest.raises(InvalidParameter, match="plot_id"):
            _ensure_dataset(pl.from_pandas(dataset.drop(columns="plot_id")))

    def test_same_deviance_as_pandas(self, dataset):
        theta_full = bridge((1.0, 0.3, 1.0, 0.6), (2, 3))
        a = build_deviance(dataset, (2, 3))(theta_full)
        b = build_deviance(pl.from_pandas(dataset), (2, 3))(theta_full)
        assert a == pytest.approx(b, rel=1e-12)
