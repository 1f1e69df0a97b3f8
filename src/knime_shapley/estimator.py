#!/usr/bin/env python3

####################################################################################################
#
# Shapley Values Estimator
#
# Table-level execution of the Shapley Values loop.
# • Loop start: reads the sampling table once (feature columns only) into the sampling set, then
#   expands every ROI row into its batch of perturbed rows. Output = feature columns, RowIDs coded.
# • Loop end: reads the predicted table (prediction columns only) batch by batch and emits one row of
#   Shapley Values per original row. Output columns "<feature>(<prediction>)".
# • Cancellation is checked at every row (loop start) and every batch (loop end); progress is split
#   50/50 between sampling-set creation and perturbation.
#
####################################################################################################

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import pandas as pd

from .algorithm import ShapleyValuesAlgorithm
from .errors import InvalidSettingsError
from .execution import ExecutionMonitor
from .replacer import FeatureReplacer
from .rows import DataRow, PeekingIterator
from .settings import ShapleyLoopSettings
from .tables import TablePreparer, iter_rows, rows_to_frame

__all__ = ["ShapleyValuesEstimator"]

LOG = logging.getLogger(__name__)

PROG_FRAC_SAMPLING_CREATION = 0.5
PROG_FRAC_PERTURB_ROWS = 0.5


class ShapleyValuesEstimator:
    """
    Args:
        settings: Loop start settings; validated on construction.
    """

    def __init__(self, settings: ShapleyLoopSettings):
        settings.validate()
        self._settings = settings
        self._table_preparer = TablePreparer(settings.feature_columns, settings.prediction_columns)
        self._algorithm: Optional[ShapleyValuesAlgorithm] = None

    @classmethod
    def for_evaluation(cls, settings: ShapleyLoopSettings, feature_columns: Sequence[str]) -> "ShapleyValuesEstimator":
        """
        Estimator that can only run the loop end, e.g. in a separate process.

        Args:
            feature_columns: The resolved feature columns of the loop start, in order.
        """
        est = cls(settings)
        est._table_preparer.update_specs(list(feature_columns))
        return est

    @property
    def settings(self) -> ShapleyLoopSettings:
        return self._settings

    @property
    def feature_columns(self) -> List[str]:
        return self._table_preparer.feature_columns

    @property
    def table_preparer(self) -> TablePreparer:
        return self._table_preparer

    @property
    def algorithm(self) -> Optional[ShapleyValuesAlgorithm]:
        return self._algorithm

    # ------------------------------------------------------------------------------------------
    # loop start
    # ------------------------------------------------------------------------------------------

    def configure_loop_start(self, roi_df: pd.DataFrame, sampling_df: pd.DataFrame) -> List[str]:
        """Resolve and validate the feature columns; returns the columns of the loop start output."""
        if roi_df.index.has_duplicates:
            duplicated = sorted({str(k) for k in roi_df.index[roi_df.index.duplicated()]})
            raise InvalidSettingsError(f"The input table contains duplicate RowIDs: {duplicated}")
        columns = self._table_preparer.update_specs(list(roi_df.columns))
        self._table_preparer.check_sampling_table(sampling_df)
        return columns

    def initialize(self, sampling_df: pd.DataFrame, monitor: ExecutionMonitor) -> None:
        """Read the sampling set and create the algorithm."""
        sampling_set = self._create_sampling_set(sampling_df, monitor)
        replacer = FeatureReplacer(sampling_set, seed=self._settings.seed)
        self._algorithm = ShapleyValuesAlgorithm(
            replacer.feature_count,
            self._settings.iterations_per_feature,
            # the prediction columns are unknown until the loop end; the prepare phase does not use them
            1,
            feature_replacer=replacer,
        )
        LOG.info(
            "Sampling set of %d rows, %d features, %d iterations per feature",
            replacer.sampling_set_size,
            replacer.feature_count,
            self._settings.iterations_per_feature,
        )

    def execute_loop_start(
        self, roi_df: pd.DataFrame, sampling_df: pd.DataFrame, monitor: Optional[ExecutionMonitor] = None
    ) -> pd.DataFrame:
        monitor = monitor or ExecutionMonitor()
        self.configure_loop_start(roi_df, sampling_df)
        self.initialize(sampling_df, monitor.create_sub_progress(PROG_FRAC_SAMPLING_CREATION))
        return self.perturb_rows(roi_df, monitor.create_sub_progress(PROG_FRAC_PERTURB_ROWS))

    def perturb_rows(self, roi_df: pd.DataFrame, monitor: ExecutionMonitor) -> pd.DataFrame:
        """Expand every row of `roi_df` into its batch of perturbed rows."""
        if self._algorithm is None:
            raise InvalidSettingsError("The estimator has not been initialized with a sampling table.")
        monitor.set_message("Perturb rows")
        filtered = self._table_preparer.prepare_table_for_perturbation(roi_df)
        total = max(len(filtered), 1)
        perturbed: List[DataRow] = []
        for current, row in enumerate(iter_rows(filtered)):
            monitor.check_canceled()
            monitor.set_progress(current / total, f"Perturb row {row.key}")
            perturbed.extend(self._algorithm.prepare_row(row))
        monitor.set_progress(1.0)
        LOG.debug("Perturbed %d rows into %d rows", len(filtered), len(perturbed))
        return rows_to_frame(perturbed, self._table_preparer.loop_start_columns)

    def _create_sampling_set(self, sampling_df: pd.DataFrame, monitor: ExecutionMonitor) -> List[tuple]:
        monitor.set_message("Create sampling dataset")
        filtered = self._table_preparer.prepare_table_for_perturbation(sampling_df)
        total = max(len(filtered), 1)
        sampling_set = []
        for current, row in enumerate(iter_rows(filtered)):
            monitor.check_canceled()
            monitor.set_progress(current / total, f"Reading row {row.key}")
            sampling_set.append(row.cells)
        monitor.set_progress(1.0)
        return sampling_set

    # ------------------------------------------------------------------------------------------
    # loop end
    # ------------------------------------------------------------------------------------------

    def loop_end_columns(self, predicted_df: pd.DataFrame) -> List[str]:
        return self._table_preparer.loop_end_columns(predicted_df)

    def execute_loop_end(self, predicted_df: pd.DataFrame, monitor: Optional[ExecutionMonitor] = None) -> pd.DataFrame:
        """
        Calculate the Shapley Values of all batches in `predicted_df`.

        Returns:
            pd.DataFrame: One row per original RowID.
        """
        monitor = monitor or ExecutionMonitor()
        monitor.set_message("Calculating Shapley Values.")
        columns = self.loop_end_columns(predicted_df)
        filtered = self._table_preparer.prepare_table_for_evaluation(predicted_df)
        algorithm = ShapleyValuesAlgorithm(
            len(self.feature_columns),
            self._settings.iterations_per_feature,
            filtered.shape[1],
        )
        total = max(len(filtered) // algorithm.batch_size, 1)
        rows = PeekingIterator(iter_rows(filtered))
        results: List[DataRow] = []
        while rows.has_next():
            monitor.check_canceled()
            row = algorithm.calculate_shapley_values_for_next_row(rows)
            results.append(row)
            monitor.set_progress(len(results) / total, f"Finished Shapley Value calculation for row {row.key}")
        LOG.info("Calculated Shapley Values for %d rows", len(results))
        return rows_to_frame(results, columns)
