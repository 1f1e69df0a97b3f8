#!/usr/bin/env python3

####################################################################################################
#
# Shapley Values Algorithm
#
# Estimates Shapley Values with algorithm 1 of Strumbelj and Kononenko, "Explaining prediction models
# and individual predictions with feature contributions".
#
# Prepare phase (loop start)
# • For feature i in [0, F) and iteration j in [0, K): one FeatureReplacer draw yields the pair
#   (FOI intact, FOI replaced); both are emitted in that order with RowIDs coding (i, j, variant).
# • One original row therefore becomes a batch of 2·F·K rows.
#
# Aggregate phase (loop end)
# • Consumes exactly one batch from a PeekingIterator whose rows hold only prediction cells.
# • Every RowID is checked against the expected (i, j, variant); any deviation aborts the batch.
# • Shapley value of feature i for target t = mean over j of prediction_t(intact) - prediction_t(replaced).
# • Output cells are target-major: value(t, i) sits at t·F + i.
#
####################################################################################################

from __future__ import annotations

import logging
import math
import numbers
from typing import List, Optional

import numpy as np

from .errors import IncompleteBatchError, InvalidSettingsError, PredictionTypeError
from .keys import DEFAULT_CODEC, ShapleyKeyCodec, SVId
from .replacer import FeatureReplacer
from .rows import DataRow, PeekingIterator

__all__ = ["ShapleyValuesAlgorithm", "DiffAccumulator", "ShapleyValues"]

LOG = logging.getLogger(__name__)


def _get_prediction(cell, key) -> float:
    if cell is None or isinstance(cell, (bool, np.bool_)) or not isinstance(cell, numbers.Real):
        raise PredictionTypeError(f"The prediction cell {cell!r} of row '{key}' is not numerical.")
    value = float(cell)
    if math.isnan(value):
        raise PredictionTypeError(f"Row '{key}' contains a missing prediction.")
    return value


class DiffAccumulator:
    """Running sum of prediction differences (intact - replaced), one slot per target column."""

    def __init__(self, num_targets: int):
        self._data = [0.0] * num_targets

    def reset(self) -> None:
        for i in range(len(self._data)):
            self._data[i] = 0.0

    def update(self, foi_intact: DataRow, foi_replaced: DataRow) -> None:
        """
        Add the differences of one intact/replaced pair.

        Both rows are expected to contain only the prediction cells.
        """
        if foi_intact.num_cells != len(self._data) or foi_replaced.num_cells != len(self._data):
            raise InvalidSettingsError(
                f"Expected {len(self._data)} prediction cells in rows '{foi_intact.key}' and "
                f"'{foi_replaced.key}'."
            )
        for t, (a, b) in enumerate(zip(foi_intact.cells, foi_replaced.cells)):
            self._data[t] += _get_prediction(a, foi_intact.key) - _get_prediction(b, foi_replaced.key)

    def accumulated_diff(self, target_idx: int) -> float:
        return self._data[target_idx]


class ShapleyValues:
    """Shapley Values of one original row, laid out target-major."""

    def __init__(self, num_features: int, num_targets: int, iterations_per_feature: int):
        self._num_features = num_features
        self._iterations = iterations_per_feature
        self._data = [0.0] * (num_features * num_targets)
        self._num_targets = num_targets

    def _flat_idx(self, feature_idx: int, target_idx: int) -> int:
        return target_idx * self._num_features + feature_idx

    def update_values(self, feature_idx: int, accumulator: DiffAccumulator) -> None:
        """Normalize the accumulated differences of `feature_idx` for every target."""
        for t in range(self._num_targets):
            self._data[self._flat_idx(feature_idx, t)] = accumulator.accumulated_diff(t) / self._iterations

    def get(self, feature_idx: int, target_idx: int = 0) -> float:
        return self._data[self._flat_idx(feature_idx, target_idx)]

    def as_tuple(self) -> tuple:
        return tuple(self._data)


class ShapleyValuesAlgorithm:
    """
    Prepare and aggregate phases of the Monte-Carlo Shapley Values estimator.

    Args:
        feature_count: Number of feature columns.
        iterations_per_feature: Number of sampled coalitions per feature (K).
        num_target_cols: Number of prediction columns.
        feature_replacer: Required for the prepare phase only.
        codec: RowID codec; plain string keys by default.
    """

    def __init__(
        self,
        feature_count: int,
        iterations_per_feature: int,
        num_target_cols: int,
        feature_replacer: Optional[FeatureReplacer] = None,
        codec: ShapleyKeyCodec = DEFAULT_CODEC,
    ):
        if num_target_cols <= 0:
            raise InvalidSettingsError("At least one prediction column must be included.")
        if iterations_per_feature <= 0:
            raise InvalidSettingsError("The number of iterations per feature must be larger than 0.")
        if feature_count <= 0:
            raise InvalidSettingsError("At least one feature column must be included.")
        if feature_replacer is not None and feature_replacer.feature_count != feature_count:
            raise InvalidSettingsError(
                f"The sampling set has {feature_replacer.feature_count} features but {feature_count} "
                "feature columns are configured."
            )
        self._feature_count = feature_count
        self._iterations = iterations_per_feature
        self._num_targets = num_target_cols
        self._replacer = feature_replacer
        self._codec = codec

    @property
    def feature_count(self) -> int:
        return self._feature_count

    @property
    def iterations_per_feature(self) -> int:
        return self._iterations

    @property
    def num_target_cols(self) -> int:
        return self._num_targets

    @property
    def batch_size(self) -> int:
        """Number of perturbed rows created per original row."""
        return 2 * self._feature_count * self._iterations

    # ------------------------------------------------------------------------------------------
    # prepare phase
    # ------------------------------------------------------------------------------------------

    def prepare_row(self, row: DataRow) -> List[DataRow]:
        """
        Expand `row` into its batch of perturbed rows.

        Returns:
            List[DataRow]: 2·F·K rows ordered feature × iteration × (intact, replaced).
        """
        if self._replacer is None:
            raise InvalidSettingsError("No sampling set available: the algorithm was created for evaluation only.")
        rows: List[DataRow] = []
        key_gen = self._codec.create_generator(row.key)
        for i in range(self._feature_count):
            for j in range(self._iterations):
                r = self._replacer.replace_features(row.cells, i)
                rows.append(DataRow(key_gen.create(SVId(i, j, True)), r.foi_intact))
                rows.append(DataRow(key_gen.create(SVId(i, j, False)), r.foi_replaced))
        return rows

    # ------------------------------------------------------------------------------------------
    # aggregate phase
    # ------------------------------------------------------------------------------------------

    def calculate_shapley_values_for_next_row(self, rows: PeekingIterator[DataRow]) -> DataRow:
        """
        Consume the batch at the head of `rows` and compute its Shapley Values.

        Args:
            rows: Positioned at the first row of a batch; rows contain prediction cells only.
                Left positioned at the first row of the next batch (or exhausted).

        Returns:
            DataRow: Keyed by the original RowID, F·T Shapley Values (target-major).

        Raises:
            RowKeyFormatError: A RowID was not created by the key generator.
            RowOrderError: A RowID is not the one expected next.
            IncompleteBatchError: The batch ends early or continues past its last row.
            PredictionTypeError: A prediction cell is missing or not numeric.
        """
        if not isinstance(rows, PeekingIterator):
            raise TypeError("rows must be a PeekingIterator so that the next batch is not consumed.")
        if not rows.has_next():
            raise IncompleteBatchError("There are no rows left to calculate Shapley Values for.")
        checker = self._codec.create_checker(rows.peek().key)
        values = ShapleyValues(self._feature_count, self._num_targets, self._iterations)
        accumulator = DiffAccumulator(self._num_targets)
        for i in range(self._feature_count):
            accumulator.reset()
            for j in range(self._iterations):
                foi_intact = self._next_row(rows, checker.original_key)
                checker.check(foi_intact.key, SVId(i, j, True))
                foi_replaced = self._next_row(rows, checker.original_key)
                checker.check(foi_replaced.key, SVId(i, j, False))
                accumulator.update(foi_intact, foi_replaced)
            values.update_values(i, accumulator)

        if rows.has_next() and checker.belongs_to_batch(rows.peek().key):
            raise IncompleteBatchError(
                f"More transformed rows than expected arrived for row '{checker.original_key}'; the rows were "
                "created with different settings."
            )
        LOG.debug("Calculated Shapley Values for row '%s'", checker.original_key)
        return DataRow(self._codec.string_to_key(checker.original_key), values.as_tuple())

    @staticmethod
    def _next_row(rows: PeekingIterator[DataRow], original_key: str) -> DataRow:
        try:
            return next(rows)
        except StopIteration:
            raise IncompleteBatchError(
                f"Not all transformed rows of row '{original_key}' arrived in the loop end."
            ) from None

