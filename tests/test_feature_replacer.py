# tests/test_feature_replacer.py
from __future__ import annotations

import numpy as np
import pytest

from knime_shapley.errors import InvalidSettingsError
from knime_shapley.replacer import FeatureReplacer, ReplacementResult


class PinnedRng:
    """Generator stand-in returning fixed draws and recording the call order."""

    def __init__(self, permutation, sample_idx=0):
        self._perm = np.asarray(permutation)
        self._sample_idx = sample_idx
        self.calls = []

    def permutation(self, n):
        self.calls.append(("permutation", n))
        assert n == len(self._perm)
        return self._perm.copy()

    def integers(self, low, high):
        self.calls.append(("integers", low, high))
        return self._sample_idx


@pytest.mark.parametrize(
    "perm, expected",
    [
        ([0, 1], ReplacementResult((1, 2), (10, 2))),
        ([1, 0], ReplacementResult((1, 20), (10, 20))),
    ],
)
def test_two_feature_scenario_with_pinned_permutation(perm, expected):
    """Feature 0 of [1, 2] against the single sampling row [10, 20]."""
    rng = PinnedRng(perm)
    fr = FeatureReplacer([[10, 20]], rng=rng)

    assert fr.replace_features([1, 2], 0) == expected


def test_permutation_is_drawn_before_the_sampled_row():
    rng = PinnedRng([2, 0, 1], sample_idx=1)
    fr = FeatureReplacer([[0, 0, 0], [7, 8, 9]], rng=rng)

    result = fr.replace_features([1, 2, 3], 1)

    assert rng.calls == [("permutation", 3), ("integers", 0, 2)]
    # index 2 and 0 precede the FOI 1 → replaced in both; FOI flips between the two rows
    assert result.foi_intact == (7, 2, 9)
    assert result.foi_replaced == (7, 8, 9)


def test_foi_first_in_permutation_only_touches_foi():
    fr = FeatureReplacer([[7, 8, 9]], rng=PinnedRng([1, 0, 2]))

    result = fr.replace_features([1, 2, 3], 1)

    assert result.foi_intact == (1, 2, 3)
    assert result.foi_replaced == (1, 8, 3)


def test_seeded_scenario_yields_one_of_the_valid_pairs():
    fr = FeatureReplacer([[10, 20]], seed=7)
    for _ in range(20):
        assert fr.replace_features([1, 2], 0) in (
            ReplacementResult((1, 2), (10, 2)),
            ReplacementResult((1, 20), (10, 20)),
        )


def test_same_seed_reproduces_every_draw():
    sampling = [[i, 10 * i, 100 * i, -i] for i in range(6)]
    a = FeatureReplacer(sampling, seed=1234)
    b = FeatureReplacer(sampling, seed=1234)
    row = [1, 2, 3, 4]

    draws_a = [a.replace_features(row, foi) for foi in (0, 1, 2, 3) for _ in range(10)]
    draws_b = [b.replace_features(row, foi) for foi in (0, 1, 2, 3) for _ in range(10)]

    assert draws_a == draws_b


def test_negative_seed_is_accepted():
    a = FeatureReplacer([[1, 2], [3, 4]], seed=-5)
    b = FeatureReplacer([[1, 2], [3, 4]], seed=-5)
    assert a.replace_features([0, 0], 1) == b.replace_features([0, 0], 1)


def test_pair_differs_at_most_at_foi():
    rng = np.random.default_rng(0)
    sampling = rng.normal(size=(8, 6)).tolist()
    row = [100.0 + i for i in range(6)]
    fr = FeatureReplacer(sampling, seed=99)

    for foi in range(6):
        for _ in range(25):
            r = fr.replace_features(row, foi)
            diff = [i for i in range(6) if r.foi_intact[i] != r.foi_replaced[i]]
            assert diff == [foi]
            assert r.foi_intact[foi] == row[foi]
            assert r.foi_replaced[foi] in {s[foi] for s in sampling}
            # every other cell is either original or taken from the sampling set
            for i in range(6):
                if i != foi:
                    assert r.foi_intact[i] == row[i] or r.foi_intact[i] in {s[i] for s in sampling}


def test_input_row_is_not_modified():
    row = [1, 2, 3]
    fr = FeatureReplacer([[4, 5, 6]], seed=1)
    fr.replace_features(row, 2)
    assert row == [1, 2, 3]


def test_empty_sampling_set_is_a_settings_error():
    with pytest.raises(InvalidSettingsError, match="may not be empty"):
        FeatureReplacer([])


def test_ragged_sampling_set_is_rejected():
    with pytest.raises(ValueError, match="Sampling row 1"):
        FeatureReplacer([[1, 2], [3]])


def test_row_length_must_match_sampling_set():
    fr = FeatureReplacer([[1, 2, 3]], seed=0)
    with pytest.raises(ValueError, match="3 features"):
        fr.replace_features([1, 2], 0)


@pytest.mark.parametrize("foi", [-1, 3])
def test_foi_out_of_range(foi):
    fr = FeatureReplacer([[1, 2, 3]], seed=0)
    with pytest.raises(ValueError, match="out of range"):
        fr.replace_features([1, 2, 3], foi)
