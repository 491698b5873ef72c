"""Exception and warning types for QTLEMM.

Three kinds of problems are distinguished:

- ConfigurationError: invalid flags or mode combinations (unknown population
  type, interval placement at a chromosome boundary, a selective-genotyping
  model without the auxiliary phenotypes it needs, bad ``crit``/``stop``).
- InputError: malformed data (shape mismatches, non-finite values, unsorted
  markers, QTL outside the marker span, genotype codes outside {0, 1, 2}).
- ConvergenceFailure: a warning category, emitted when the EM iteration does
  not meet its stopping criterion. It is not fatal; callers who prefer an
  exception can escalate it with ``warnings.simplefilter("error", ...)``.

Both error classes subclass ValueError so that generic callers catching
ValueError keep working.
"""


class QTLEMMError(Exception):
    """Base class for all QTLEMM errors."""


class ConfigurationError(QTLEMMError, ValueError):
    """Invalid option or option combination."""


class InputError(QTLEMMError, ValueError):
    """Malformed or out-of-range input data."""


class ConvergenceFailure(RuntimeWarning):
    """EM iteration stopped without meeting the convergence criterion."""
