#!/usr/bin/env python3

####################################################################################################
#
# Feature Replacer
#
# Produces the two counterfactual rows used by the Monte-Carlo Shapley estimator for one feature of
# interest (FOI):
# • A random permutation of the feature indices is drawn, then a random row of the sampling set.
# • Features that precede the FOI in the permutation are replaced by the sampled values in BOTH
#   outputs (the coalition); features after it keep their original values.
# • The FOI keeps its own value in `foi_intact` and takes the sampled value in `foi_replaced`.
# Both rows therefore differ at most at the FOI.
#
# Randomness
# • One numpy Generator per replacer, advanced in a fixed order (permutation, then sampled row),
#   so a fixed seed reproduces every draw.
#
####################################################################################################

from __future__ import annotations

from typing import Any, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .errors import InvalidSettingsError

__all__ = ["FeatureReplacer", "ReplacementResult", "make_rng"]

_UINT64_MASK = (1 << 64) - 1


class ReplacementResult(NamedTuple):
    foi_intact: Tuple[Any, ...]
    foi_replaced: Tuple[Any, ...]


def make_rng(seed: Optional[int] = None) -> np.random.Generator:
    """
    Create the generator used for all draws of one replacer.

    KNIME seeds are signed 64-bit longs; numpy only accepts non-negative seeds, so
    negative values are folded into the unsigned range.
    """
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng(int(seed) & _UINT64_MASK)


class FeatureReplacer:
    """
    Draws rows from a fixed sampling set and mixes their values into a row of interest.

    Args:
        sampling_set: Non-empty sequence of rows (sequences of cells), all of equal length.
        seed: Seed for the generator. Ignored if `rng` is given.
        rng: Explicit generator; anything exposing ``permutation(n)`` and ``integers(low, high)``.
    """

    def __init__(self, sampling_set: Sequence[Sequence[Any]], seed: Optional[int] = None, rng=None):
        if sampling_set is None or len(sampling_set) == 0:
            raise InvalidSettingsError("The sampling set may not be empty.")
        self._sampling_set: Tuple[Tuple[Any, ...], ...] = tuple(tuple(r) for r in sampling_set)
        self._feature_count = len(self._sampling_set[0])
        for i, r in enumerate(self._sampling_set):
            if len(r) != self._feature_count:
                raise ValueError(
                    f"Sampling row {i} has {len(r)} cells, expected {self._feature_count}."
                )
        self._rng = rng if rng is not None else make_rng(seed)

    @property
    def feature_count(self) -> int:
        return self._feature_count

    @property
    def sampling_set_size(self) -> int:
        return len(self._sampling_set)

    def replace_features(self, row: Sequence[Any], foi: int) -> ReplacementResult:
        """
        Draw a permutation and a sampled row and build the intact/replaced pair for `foi`.

        Args:
            row: The row to transform; must have exactly `feature_count` cells.
            foi: Index of the feature of interest.

        Returns:
            ReplacementResult: New tuples; `row` itself is never modified.
        """
        if len(row) != self._feature_count:
            raise ValueError(
                f"The row has {len(row)} cells but the sampling set has {self._feature_count} features."
            )
        if not 0 <= foi < self._feature_count:
            raise ValueError(f"Feature index {foi} is out of range [0, {self._feature_count}).")

        perm = self._rng.permutation(self._feature_count)
        sampled = self._sample_row()
        foi_intact = list(row)
        foi_replaced = list(row)
        for idx in perm:
            idx = int(idx)
            replacement = sampled[idx]
            if idx == foi:
                foi_replaced[idx] = replacement
                break
            foi_intact[idx] = replacement
            foi_replaced[idx] = replacement
        return ReplacementResult(tuple(foi_intact), tuple(foi_replaced))

    def _sample_row(self) -> Tuple[Any, ...]:
        return self._sampling_set[int(self._rng.integers(0, len(self._sampling_set)))]
