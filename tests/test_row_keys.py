# tests/test_row_keys.py
from __future__ import annotations

from dataclasses import dataclass

import pytest

from knime_shapley.errors import RowKeyFormatError, RowOrderError
from knime_shapley.keys import DEFAULT_CODEC, ShapleyKeyCodec, SVId


def test_generated_key_format():
    gen = DEFAULT_CODEC.create_generator("Row7")
    assert gen.create(SVId(2, 13, True)) == "Row7_2_13_f"
    assert gen.create(SVId(0, 0, False)) == "Row7_0_0_t"


@pytest.mark.parametrize("original", ["Row0", "a_b_c", "Row_0_0_f", "", "12"])
@pytest.mark.parametrize("sv_id", [SVId(0, 0, True), SVId(3, 999, False)])
def test_decode_recovers_original_key_and_id(original, sv_id):
    key = DEFAULT_CODEC.encode(original, sv_id)
    assert DEFAULT_CODEC.decode(key) == (original, sv_id)


@pytest.mark.parametrize(
    "key",
    [
        "row1_abc_0_t",   # non-integer feature index
        "row1_0_x1_t",    # non-integer iteration
        "row1_-1_0_t",    # negative index
        "row1_0_0_x",     # unknown variant tag
        "row1_0_t",       # too few components
        "row1",
    ],
)
def test_malformed_keys_raise_format_error(key):
    with pytest.raises(RowKeyFormatError, match="was not created"):
        DEFAULT_CODEC.decode(key)
    with pytest.raises(RowKeyFormatError):
        DEFAULT_CODEC.create_checker(key)


def test_checker_requires_batch_start():
    with pytest.raises(RowOrderError, match="not the first row"):
        DEFAULT_CODEC.create_checker("Row0_1_0_f")
    with pytest.raises(RowOrderError, match="not the first row"):
        DEFAULT_CODEC.create_checker("Row0_0_1_f")


def test_checker_recovers_original_key_with_delimiters():
    checker = DEFAULT_CODEC.create_checker("my_row_0_0_f")
    assert checker.original_key == "my_row"


def test_check_accepts_expected_id():
    checker = DEFAULT_CODEC.create_checker("Row0_0_0_f")
    assert checker.check("Row0_0_0_f", SVId(0, 0, True))
    assert checker.check("Row0_4_2_t", SVId(4, 2, False))


def test_check_rejects_foreign_batch():
    checker = DEFAULT_CODEC.create_checker("Row0_0_0_f")
    with pytest.raises(RowOrderError, match="does not belong"):
        checker.check("Row1_0_0_t", SVId(0, 0, False))


@pytest.mark.parametrize("key", ["Row0_0_1_f", "Row0_1_0_f", "Row0_0_0_t"])
def test_check_rejects_wrong_position(key):
    checker = DEFAULT_CODEC.create_checker("Row0_0_0_f")
    with pytest.raises(RowOrderError, match="not in the expected order"):
        checker.check(key, SVId(0, 0, True))


def test_belongs_to_batch():
    checker = DEFAULT_CODEC.create_checker("Row0_0_0_f")
    assert checker.belongs_to_batch("Row0_5_5_t")
    assert not checker.belongs_to_batch("Row1_0_0_f")
    assert not checker.belongs_to_batch("garbage")


@dataclass(frozen=True)
class RowKey:
    string: str


def test_codec_is_generic_over_key_type():
    codec = ShapleyKeyCodec(RowKey, lambda k: k.string)

    key = codec.create_generator(RowKey("r_1")).create(SVId(1, 2, False))

    assert key == RowKey("r_1_1_2_t")
    assert codec.decode(key) == ("r_1", SVId(1, 2, False))
    checker = codec.create_checker(RowKey("r_1_0_0_f"))
    assert checker.check(key, SVId(1, 2, False))
