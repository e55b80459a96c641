"""Exception types for the spatial_ar1 package.

Two conditions are exceptional, and they are handled very differently:

* :class:`InvalidParameter` — a correlation outside ``(-1, 1)``, a
  non-positive grid dimension, malformed optimizer bounds.  Raised
  eagerly at construction time and never caught inside the package:
  it signals a programmer or configuration error and aborts the run.
* :class:`NumericDegeneracy` — a candidate parameter vector whose
  reconstructed covariance factor cannot be evaluated.  Raised only
  inside the deviance internals and always converted to a deviance of
  ``+inf`` before the value reaches the minimizer.

Non-convergence of the minimizer is *not* an exception: it is recorded
as the ``convergence_code`` field of :class:`~spatial_ar1.FitResult`.
"""

from __future__ import annotations


class InvalidParameter(ValueError):
    """A model, grid, or optimizer argument is outside its valid domain."""


class NumericDegeneracy(ArithmeticError):
    """A deviance evaluation hit an ill-formed covariance factor."""
