# keys.py
from __future__ import annotations

"""
RowID generation and checking for the Shapley Values loop.

Overview
----------------------------
Every perturbed row created by the loop start carries a RowID that encodes the
original RowID, the feature index, the iteration and whether the feature of
interest is intact:

    <original>_<featureIdx>_<iteration>_<tag>      tag: "f" = FOI intact, "t" = FOI replaced

The loop end decodes these RowIDs to verify that the predicted rows arrive
grouped per original row and in the exact order they were created.

Decoding
----------------------------
The three generated components never contain the delimiter, so keys are split
from the right. Original RowIDs that contain "_" therefore round-trip.

Key types
----------------------------
The codec is generic over the key representation: it is parameterized with
``string_to_key`` and ``key_to_string`` (identity over ``str`` by default).
"""

import re
from dataclasses import dataclass
from typing import Callable, Generic, Optional, Tuple, TypeVar

from .errors import RowKeyFormatError, RowOrderError

__all__ = [
    "DELIMITER",
    "FOI_INTACT",
    "FOI_REPLACED",
    "SVId",
    "ShapleyKeyCodec",
    "RowKeyGenerator",
    "RowKeyChecker",
    "DEFAULT_CODEC",
]

DELIMITER = "_"
FOI_INTACT = "f"
FOI_REPLACED = "t"

# number of components the generator appends to the original key
NUM_ADDITIONAL_COMPONENTS = 3

_INDEX_RE = re.compile(r"[0-9]+")

K = TypeVar("K")


@dataclass(frozen=True)
class SVId:
    """Position of one perturbed row inside the batch of its original row."""

    feature_idx: int
    iteration: int
    foi_intact: bool

    def __str__(self) -> str:
        variant = "intact" if self.foi_intact else "replaced"
        return f"(feature={self.feature_idx}, iteration={self.iteration}, {variant})"


def _error_string(key) -> str:
    return f"The row key '{key}' was not created by the Shapley Values key generator."


def _parse_index(value: str, key) -> int:
    if not _INDEX_RE.fullmatch(value):
        raise RowKeyFormatError(_error_string(key))
    return int(value)


def _encode(original_key: str, sv_id: SVId) -> str:
    tag = FOI_INTACT if sv_id.foi_intact else FOI_REPLACED
    return DELIMITER.join((original_key, str(sv_id.feature_idx), str(sv_id.iteration), tag))


def _decode(key_string: str, key) -> Tuple[str, SVId]:
    parts = key_string.rsplit(DELIMITER, NUM_ADDITIONAL_COMPONENTS)
    if len(parts) <= NUM_ADDITIONAL_COMPONENTS:
        raise RowKeyFormatError(_error_string(key))
    original, feature, iteration, tag = parts
    feature_idx = _parse_index(feature, key)
    iteration_idx = _parse_index(iteration, key)
    if tag == FOI_INTACT:
        intact = True
    elif tag == FOI_REPLACED:
        intact = False
    else:
        raise RowKeyFormatError(_error_string(key))
    return original, SVId(feature_idx, iteration_idx, intact)


class RowKeyGenerator(Generic[K]):
    """Creates the keys of all perturbed rows that belong to one original row."""

    def __init__(self, original_key: K, codec: "ShapleyKeyCodec[K]"):
        self._codec = codec
        self._original_key = codec.key_to_string(original_key)

    @property
    def original_key(self) -> str:
        return self._original_key

    def create(self, sv_id: SVId) -> K:
        return self._codec.string_to_key(_encode(self._original_key, sv_id))


class RowKeyChecker(Generic[K]):
    """
    Checks that the rows of one batch belong together and arrive in the expected order.

    Must be created from the key of the first row in a batch; fails if that key does
    not designate the start of a batch (feature 0, iteration 0).
    """

    def __init__(self, first_key_in_batch: K, codec: "ShapleyKeyCodec[K]"):
        self._codec = codec
        original, sv_id = codec.decode(first_key_in_batch)
        if sv_id.feature_idx != 0 or sv_id.iteration != 0:
            raise RowOrderError(
                f"The row with key '{first_key_in_batch}' is not the first row in a row batch."
            )
        self._original_key = original

    @property
    def original_key(self) -> str:
        return self._original_key

    def belongs_to_batch(self, key: K) -> bool:
        """True if `key` decodes to the original key of this batch."""
        try:
            original, _ = self._codec.decode(key)
        except RowKeyFormatError:
            return False
        return original == self._original_key

    def check(self, key: K, expected_id: SVId) -> bool:
        original, sv_id = self._codec.decode(key)
        if original != self._original_key:
            raise RowOrderError(f"The row with key '{key}' does not belong to the current batch of rows.")
        if sv_id != expected_id:
            raise RowOrderError(
                f"The rows corresponding to the original row key '{self._original_key}' are not in the "
                f"expected order: expected {expected_id} but got {sv_id} (key '{key}')."
            )
        return True


class ShapleyKeyCodec(Generic[K]):
    """
    Factory for key generators and checkers, parameterized by the key representation.

    Args:
        string_to_key: Converts an encoded string into a key.
        key_to_string: Converts a key into its string form.
    """

    def __init__(
        self,
        string_to_key: Optional[Callable[[str], K]] = None,
        key_to_string: Optional[Callable[[K], str]] = None,
    ):
        self.string_to_key: Callable[[str], K] = string_to_key or (lambda s: s)
        self.key_to_string: Callable[[K], str] = key_to_string or str

    def create_generator(self, original_key: K) -> RowKeyGenerator[K]:
        return RowKeyGenerator(original_key, self)

    def create_checker(self, first_key_in_batch: K) -> RowKeyChecker[K]:
        return RowKeyChecker(first_key_in_batch, self)

    def encode(self, original_key: K, sv_id: SVId) -> K:
        return self.string_to_key(_encode(self.key_to_string(original_key), sv_id))

    def decode(self, key: K) -> Tuple[str, SVId]:
        """
        Split a generated key into the original key and its SVId.

        Raises:
            RowKeyFormatError: If the key has too few components, a non-decimal index or an unknown tag.
        """
        return _decode(self.key_to_string(key), key)


DEFAULT_CODEC: ShapleyKeyCodec[str] = ShapleyKeyCodec()
