# errors.py
from __future__ import annotations

"""
Exceptions raised by the Shapley Values loop.

Hierarchy
----------------------------
- ``ShapleyValuesError``: common base class.
- ``InvalidSettingsError``: bad column selection, non-numeric prediction
  column, non-positive iteration count, empty sampling set. Raised before any
  row is processed.
- ``RowKeyFormatError``: a RowID was not created by the Shapley key generator.
- ``RowOrderError``: a RowID does not match the row expected next in a batch.
- ``IncompleteBatchError``: a batch ended early or has trailing rows.
- ``PredictionTypeError``: a prediction cell is missing or not numeric.
- ``CanceledExecutionError``: the execution was canceled by the user.
"""

__all__ = [
    "ShapleyValuesError",
    "InvalidSettingsError",
    "RowKeyFormatError",
    "RowOrderError",
    "IncompleteBatchError",
    "PredictionTypeError",
    "CanceledExecutionError",
]


class ShapleyValuesError(Exception):
    """Base class of all errors raised by knime_shapley."""


class InvalidSettingsError(ShapleyValuesError, ValueError):
    pass


class RowKeyFormatError(ShapleyValuesError, ValueError):
    pass


class RowOrderError(ShapleyValuesError):
    pass


class IncompleteBatchError(RowOrderError):
    pass


class PredictionTypeError(ShapleyValuesError, TypeError):
    pass


class CanceledExecutionError(ShapleyValuesError):
    pass
