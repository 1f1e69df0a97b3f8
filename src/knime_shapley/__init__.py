"""
knime_shapley — the KNIME Shapley Values loop in Python.

Overview
--------
`knime_shapley` estimates Shapley Values (Štrumbelj & Kononenko, algorithm 1)
with the two-phase protocol of KNIME's "Shapley Values Loop Start / End"
nodes: the loop start expands every row of interest into perturbed rows with
coded RowIDs, an external model appends predictions, and the loop end turns
each batch of predicted rows back into one row of Shapley Values.

Public API
----------
- ``FeatureReplacer``: builds the intact/replaced row pair for one feature.
- ``ShapleyKeyCodec`` / ``SVId``: RowID generation and order checking.
- ``ShapleyValuesAlgorithm``: prepare and aggregate phases on single rows.
- ``ShapleyValuesEstimator``: the same phases on pandas DataFrames.
- ``ShapleyValuesLoopStart`` / ``ShapleyValuesLoopEnd`` / ``run_shapley_loop``:
  chunked loop execution.
- ``ShapleyLoopSettings`` / ``parse_shapley_loop_settings``: configuration
  from a node's ``settings.xml``.

CLI
---
The console entry point is ``k2shap`` (``python -m knime_shapley``). See ``k2shap --help``.

Notes
-----
Tables are pandas DataFrames indexed by RowID; settings are parsed with lxml.
"""

from .algorithm import ShapleyValuesAlgorithm
from .errors import (
    CanceledExecutionError,
    IncompleteBatchError,
    InvalidSettingsError,
    PredictionTypeError,
    RowKeyFormatError,
    RowOrderError,
    ShapleyValuesError,
)
from .estimator import ShapleyValuesEstimator
from .execution import ExecutionMonitor
from .keys import DEFAULT_CODEC, ShapleyKeyCodec, SVId
from .loop import ShapleyValuesLoopEnd, ShapleyValuesLoopStart, run_shapley_loop
from .replacer import FeatureReplacer, ReplacementResult
from .rows import DataRow, PeekingIterator
from .settings import ShapleyLoopSettings, parse_shapley_loop_settings, write_shapley_loop_settings
from .tables import ColumnFilter, TablePreparer

__all__ = [
    "FeatureReplacer",
    "ReplacementResult",
    "SVId",
    "ShapleyKeyCodec",
    "DEFAULT_CODEC",
    "DataRow",
    "PeekingIterator",
    "ShapleyValuesAlgorithm",
    "ColumnFilter",
    "TablePreparer",
    "ShapleyValuesEstimator",
    "ExecutionMonitor",
    "ShapleyValuesLoopStart",
    "ShapleyValuesLoopEnd",
    "run_shapley_loop",
    "ShapleyLoopSettings",
    "parse_shapley_loop_settings",
    "write_shapley_loop_settings",
    "ShapleyValuesError",
    "InvalidSettingsError",
    "RowKeyFormatError",
    "RowOrderError",
    "IncompleteBatchError",
    "PredictionTypeError",
    "CanceledExecutionError",
]
