#!/usr/bin/env python3

####################################################################################################
#
# Table Preparer
#
# Resolves the configured feature / prediction column filters against pandas DataFrames and produces
# the views the algorithm works on.
# • Loop start: feature-only view of the ROI table and of the sampling table.
# • Loop end: prediction-only view of the predicted table; prediction columns must be numeric.
# • Output of the loop end: one column per (prediction, feature), named "<feature>(<prediction>)",
#   prediction-major so that the cell order matches the Shapley Values layout.
# Column filters follow KNIME's DataColumnSpecFilterConfiguration:
# • EnforceInclusion → exactly the included names, in configured order.
# • EnforceExclusion → every table column (in table order) except the excluded names.
#
# RowIDs live in the DataFrame index (name "RowID") and are handled as strings.
#
####################################################################################################

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional, Sequence

import pandas as pd
from pandas.api.types import is_bool_dtype, is_numeric_dtype

from .errors import InvalidSettingsError
from .rows import DataRow

__all__ = [
    "ROW_ID",
    "ENFORCE_INCLUSION",
    "ENFORCE_EXCLUSION",
    "ColumnFilter",
    "TablePreparer",
    "shapley_column_name",
    "iter_rows",
    "rows_to_frame",
]

ROW_ID = "RowID"

ENFORCE_INCLUSION = "EnforceInclusion"
ENFORCE_EXCLUSION = "EnforceExclusion"


@dataclass
class ColumnFilter:
    included: List[str] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)
    enforce_option: str = ENFORCE_INCLUSION

    @property
    def enforce_inclusion(self) -> bool:
        return self.enforce_option != ENFORCE_EXCLUSION

    def apply(self, columns: Sequence[str]) -> List[str]:
        """
        Resolve the filter against the available `columns`.

        Included names that are missing from `columns` are kept so that validation can
        report them; use `missing` to find them.
        """
        if self.enforce_inclusion:
            return list(dict.fromkeys(self.included))
        excluded = set(self.excluded)
        return [c for c in columns if c not in excluded]

    def missing(self, columns: Sequence[str]) -> List[str]:
        available = set(columns)
        return [c for c in self.apply(columns) if c not in available]


def shapley_column_name(feature: str, prediction: str) -> str:
    return f"{feature}({prediction})"


def _is_numeric(series: pd.Series) -> bool:
    return is_numeric_dtype(series.dtype) and not is_bool_dtype(series.dtype)


def iter_rows(df: pd.DataFrame) -> Iterator[DataRow]:
    """Yield the rows of `df` as DataRows keyed by the (string) index."""
    for key, *cells in df.itertuples(index=True, name=None):
        yield DataRow(str(key), tuple(cells))


def rows_to_frame(rows: Iterable[DataRow], columns: Sequence[str]) -> pd.DataFrame:
    """Build a DataFrame with RowID index from DataRows whose cells follow `columns`."""
    rows = list(rows)
    index = pd.Index([r.key for r in rows], name=ROW_ID, dtype=object)
    return pd.DataFrame([list(r.cells) for r in rows], index=index, columns=list(columns))


class TablePreparer:
    """
    Keeps the resolved feature and prediction columns and filters tables accordingly.

    Args:
        feature_filter: Which columns are explained.
        prediction_filter: Which columns hold the predictions of the model.
    """

    def __init__(self, feature_filter: ColumnFilter, prediction_filter: ColumnFilter):
        self._feature_filter = feature_filter
        self._prediction_filter = prediction_filter
        self._feature_columns: Optional[List[str]] = None

    # ------------------------------------------------------------------------------------------
    # loop start
    # ------------------------------------------------------------------------------------------

    def update_specs(self, roi_columns: Sequence[str]) -> List[str]:
        """Resolve the feature columns against the ROI table; returns the loop start columns."""
        roi_columns = [str(c) for c in roi_columns]
        missing = self._feature_filter.missing(roi_columns)
        if missing:
            raise InvalidSettingsError(f"The input table does not contain all feature columns: missing {missing}")
        features = self._feature_filter.apply(roi_columns)
        if not features:
            raise InvalidSettingsError("No feature columns are selected.")
        self._feature_columns = features
        return list(features)

    @property
    def feature_columns(self) -> List[str]:
        if self._feature_columns is None:
            raise InvalidSettingsError("The feature columns have not been resolved yet.")
        return list(self._feature_columns)

    @property
    def loop_start_columns(self) -> List[str]:
        return self.feature_columns

    def check_sampling_table(self, df: pd.DataFrame) -> None:
        self._ensure_contained(df.columns, self.feature_columns, "feature", "sampling table")

    def prepare_table_for_perturbation(self, df: pd.DataFrame) -> pd.DataFrame:
        """Drop all non-feature columns (including the prediction columns)."""
        features = self.feature_columns
        self._ensure_contained(df.columns, features, "feature")
        return df.loc[:, features]

    # ------------------------------------------------------------------------------------------
    # loop end
    # ------------------------------------------------------------------------------------------

    def prediction_columns(self, df: pd.DataFrame) -> List[str]:
        """
        Resolve and validate the prediction columns of the predicted table.

        Raises:
            InvalidSettingsError: If prediction columns are missing, not numeric or none are selected.
        """
        columns = [str(c) for c in df.columns]
        if self._prediction_filter.enforce_inclusion:
            predictions = self._prediction_filter.apply(columns)
            self._ensure_contained(columns, predictions, "prediction")
        else:
            features = set(self._feature_columns or [])
            candidates = [c for c in columns if c not in features and _is_numeric(df[c])]
            predictions = self._prediction_filter.apply(candidates)
        if not predictions:
            raise InvalidSettingsError("At least one prediction column must be included.")
        non_numeric = [c for c in predictions if not _is_numeric(df[c])]
        if non_numeric:
            raise InvalidSettingsError(f"The prediction columns {non_numeric} are not numeric.")
        return predictions

    def num_prediction_columns(self, df: pd.DataFrame) -> int:
        return len(self.prediction_columns(df))

    def prepare_table_for_evaluation(self, df: pd.DataFrame) -> pd.DataFrame:
        """Drop all non-prediction columns (including the feature columns)."""
        return df.loc[:, self.prediction_columns(df)]

    def loop_end_columns(self, df: pd.DataFrame) -> List[str]:
        features = self.feature_columns
        return [shapley_column_name(f, p) for p in self.prediction_columns(df) for f in features]

    # ------------------------------------------------------------------------------------------

    @staticmethod
    def _ensure_contained(columns: Iterable, required: Sequence[str], purpose: str, table: str = "input table") -> None:
        available = {str(c) for c in columns}
        missing = [c for c in required if c not in available]
        if missing:
            raise InvalidSettingsError(f"The {table} does not contain all {purpose} columns: missing {missing}")
