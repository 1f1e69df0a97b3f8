#!/usr/bin/env python3

####################################################################################################
#
# Shapley Values Loop (Start / End)
#
# Chunked execution of the Shapley Values loop, the way KNIME runs the loop start / loop end nodes.
# • The loop start reads the sampling table once, then emits the perturbed rows of `chunk_size`
#   ROI rows per iteration.
# • The loop body (an external predictor) appends prediction columns to those rows.
# • The loop end calculates the Shapley Values of every chunk and concatenates them in order.
# Flow variables compatible with KNIME semantics:
#   – maxIterations     (number of chunks)
#   – currentIteration  (0-based index of the chunk emitted last)
#
####################################################################################################

from __future__ import annotations

import dataclasses
import logging
import math
from typing import Callable, Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .errors import InvalidSettingsError
from .estimator import PROG_FRAC_SAMPLING_CREATION, ShapleyValuesEstimator
from .execution import ExecutionMonitor
from .settings import ShapleyLoopSettings
from .tables import ENFORCE_EXCLUSION, ColumnFilter

__all__ = ["ShapleyValuesLoopStart", "ShapleyValuesLoopEnd", "run_shapley_loop", "LOOP_NAME"]

LOG = logging.getLogger(__name__)

LOOP_NAME = "Shapley Values Loop"

Predictor = Callable[[pd.DataFrame], Union[pd.DataFrame, pd.Series, np.ndarray, Sequence]]


class ShapleyValuesLoopStart:
    def __init__(self, settings: ShapleyLoopSettings):
        self._estimator = ShapleyValuesEstimator(settings)
        self._roi: Optional[pd.DataFrame] = None
        self._max_iterations = 0
        self._current_iteration = -1

    @property
    def estimator(self) -> ShapleyValuesEstimator:
        return self._estimator

    @property
    def chunk_size(self) -> int:
        return self._estimator.settings.chunk_size

    def start(self, roi_df: pd.DataFrame, sampling_df: pd.DataFrame, monitor: Optional[ExecutionMonitor] = None) -> None:
        """Validate the tables, read the sampling set and rewind the loop."""
        monitor = monitor or ExecutionMonitor()
        self._estimator.configure_loop_start(roi_df, sampling_df)
        self._estimator.initialize(sampling_df, monitor.create_sub_progress(PROG_FRAC_SAMPLING_CREATION))
        self._roi = roi_df
        # an empty ROI table still runs one (empty) iteration
        self._max_iterations = max(1, math.ceil(len(roi_df) / self.chunk_size))
        self._current_iteration = -1

    def terminate_loop(self) -> bool:
        return self._roi is None or self._current_iteration + 1 >= self._max_iterations

    def next_chunk(self, monitor: Optional[ExecutionMonitor] = None) -> pd.DataFrame:
        """
        Perturbed rows of the next `chunk_size` ROI rows.

        Raises:
            InvalidSettingsError: If the loop was not started or is already finished.
        """
        if self._roi is None:
            raise InvalidSettingsError(f"The {LOOP_NAME} has not been started.")
        if self.terminate_loop():
            raise InvalidSettingsError(f"The {LOOP_NAME} has no chunks left.")
        self._current_iteration += 1
        begin = self._current_iteration * self.chunk_size
        chunk = self._roi.iloc[begin:begin + self.chunk_size]
        LOG.debug("Chunk %d/%d: ROI rows %d..%d", self._current_iteration + 1, self._max_iterations, begin,
                  begin + len(chunk))
        return self._estimator.perturb_rows(chunk, monitor or ExecutionMonitor())

    def flow_variables(self) -> Dict[str, int]:
        return {
            "maxIterations": self._max_iterations,
            "currentIteration": max(self._current_iteration, 0),
        }


class ShapleyValuesLoopEnd:
    def __init__(self, loop_start):
        if not isinstance(loop_start, ShapleyValuesLoopStart):
            raise InvalidSettingsError(
                f"The {LOOP_NAME} End node can only be used with the {LOOP_NAME} Start node."
            )
        self._loop_start = loop_start
        self._results: List[pd.DataFrame] = []

    def collect(self, predicted_df: pd.DataFrame, monitor: Optional[ExecutionMonitor] = None) -> pd.DataFrame:
        """Calculate the Shapley Values of one predicted chunk and keep them for `result()`."""
        shapley = self._loop_start.estimator.execute_loop_end(predicted_df, monitor)
        self._results.append(shapley)
        return shapley

    def result(self) -> pd.DataFrame:
        if not self._results:
            return pd.DataFrame()
        return pd.concat(self._results, axis=0)


def _prediction_names(settings: ShapleyLoopSettings, count: int) -> List[str]:
    configured = settings.prediction_columns.included
    if settings.prediction_columns.enforce_inclusion and len(configured) == count:
        return list(configured)
    if count == 1:
        return ["Prediction"]
    return [f"Prediction ({i})" for i in range(count)]


def _attach_predictions(chunk: pd.DataFrame, predictions, settings: ShapleyLoopSettings) -> pd.DataFrame:
    if isinstance(predictions, pd.Series):
        predictions = predictions.to_frame(name=_prediction_names(settings, 1)[0])
    if not isinstance(predictions, pd.DataFrame):
        arr = np.asarray(predictions, dtype=float)
        if arr.ndim == 1:
            arr = arr.reshape(-1, 1)
        predictions = pd.DataFrame(arr, columns=_prediction_names(settings, arr.shape[1]))
    if len(predictions) != len(chunk):
        raise InvalidSettingsError(
            f"The predictor returned {len(predictions)} rows for {len(chunk)} perturbed rows."
        )
    predictions = predictions.set_axis(chunk.index, axis=0)
    return pd.concat([chunk, predictions], axis=1)


def run_shapley_loop(
    roi_df: pd.DataFrame,
    sampling_df: pd.DataFrame,
    predict: Predictor,
    settings: ShapleyLoopSettings,
    monitor: Optional[ExecutionMonitor] = None,
) -> pd.DataFrame:
    """
    Run the whole loop: start, predict every chunk, end.

    Args:
        predict: Receives the feature-only perturbed rows of one chunk; returns the predictions
            (DataFrame, Series, or 1-D/2-D array) in the same row order.

    Returns:
        pd.DataFrame: One row of Shapley Values per ROI row.
    """
    monitor = monitor or ExecutionMonitor()
    if settings.prediction_columns.enforce_inclusion and not settings.prediction_columns.included:
        # every numeric non-feature column the predictor adds is a prediction
        settings = dataclasses.replace(settings, prediction_columns=ColumnFilter(enforce_option=ENFORCE_EXCLUSION))

    loop_start = ShapleyValuesLoopStart(settings)
    loop_start.start(roi_df, sampling_df, monitor.create_sub_progress(0.1))
    loop_end = ShapleyValuesLoopEnd(loop_start)
    while not loop_start.terminate_loop():
        monitor.check_canceled()
        chunk = loop_start.next_chunk(monitor.create_sub_progress(0.0))
        predicted = _attach_predictions(chunk, predict(chunk), settings)
        loop_end.collect(predicted, monitor.create_sub_progress(0.0))
        flow = loop_start.flow_variables()
        monitor.set_progress(
            0.1 + 0.9 * (flow["currentIteration"] + 1) / flow["maxIterations"],
            f"Finished chunk {flow['currentIteration'] + 1} of {flow['maxIterations']}",
        )
    return loop_end.result()
