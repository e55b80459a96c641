"""Dataset input layer with optional Polars support.

Every function that consumes a simulated dataset accepts a pandas
DataFrame with the columns ``plot_id``, ``x``, ``y`` and ``z``.  This
module adds transparent support for Polars DataFrames: a
``polars.DataFrame`` (or ``polars.LazyFrame``) is converted to
``pandas.DataFrame`` at the boundary so that internal code, which
works on NumPy arrays pulled out of pandas, stays unchanged.

Polars is **not** a required dependency.  If it is not installed, the
converter simply passes pandas objects through untouched.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias

import numpy as np
import pandas as pd

from ._exceptions import InvalidParameter

if TYPE_CHECKING:
    import polars as pl

    DataFrameLike: TypeAlias = pd.DataFrame | pl.DataFrame | pl.LazyFrame
else:
    DataFrameLike: TypeAlias = pd.DataFrame

# Runtime detection — avoids a hard dependency on Polars.
try:
    import polars as pl

    _HAS_POLARS = True
except ImportError:
    _HAS_POLARS = False

DATASET_COLUMNS = ("plot_id", "x", "y", "z")


def _ensure_pandas_df(obj: DataFrameLike, *, name: str = "dataset") -> pd.DataFrame:
    """Convert *obj* to a :class:`pandas.DataFrame` if necessary.

    Accepted types:
        * ``pandas.DataFrame`` — returned as-is.
        * ``polars.DataFrame`` — converted via ``.to_pandas()``.
        * ``polars.LazyFrame`` — collected then converted.

    Raises:
        TypeError: If *obj* is not a recognised DataFrame type.
    """
    if isinstance(obj, pd.DataFrame):
        return obj

    if _HAS_POLARS:
        if isinstance(obj, pl.LazyFrame):
            return obj.collect().to_pandas()
        if isinstance(obj, pl.DataFrame):
            return obj.to_pandas()

    raise TypeError(
        f"'{name}' must be a pandas DataFrame"
        + (" or Polars DataFrame/LazyFrame" if _HAS_POLARS else "")
        + f", got {type(obj).__name__}."
    )


def _ensure_dataset(obj: DataFrameLike, *, name: str = "dataset") -> pd.DataFrame:
    """Coerce *obj* to pandas and check it has the simulated-plot columns.

    Raises:
        TypeError: If *obj* is not a recognised DataFrame type.
        InvalidParameter: If a required column is missing, the frame is
            empty, or ``z`` contains non-finite values.
    """
    df = _ensure_pandas_df(obj, name=name)
    missing = [c for c in DATASET_COLUMNS if c not in df.columns]
    if missing:
        msg = f"'{name}' is missing required column(s): {missing}."
        raise InvalidParameter(msg)
    if len(df) == 0:
        msg = f"'{name}' has no rows."
        raise InvalidParameter(msg)
    # Coercion turns non-numeric entries into NaN, which isfinite rejects.
    z = pd.to_numeric(df["z"], errors="coerce").to_numpy(dtype=np.float64)
    if not np.all(np.isfinite(z)):
        msg = f"'{name}' column 'z' must contain only finite numbers."
        raise InvalidParameter(msg)
    return df
