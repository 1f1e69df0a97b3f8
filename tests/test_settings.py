# tests/test_settings.py
from __future__ import annotations

from pathlib import Path

import pytest

from knime_shapley.errors import InvalidSettingsError
from knime_shapley.settings import (
    LOOP_END_FACTORY,
    LOOP_START_FACTORY,
    ShapleyLoopSettings,
    parse_shapley_loop_settings,
    write_shapley_loop_settings,
)
from knime_shapley.tables import ENFORCE_EXCLUSION, ColumnFilter
from knime_shapley.xml_utils import parse_settings_xml

NODE_DIR = Path(__file__).resolve().parent / "data" / "Node_shapley_loop_start"


def test_parse_knime_settings_xml():
    assert NODE_DIR.joinpath("settings.xml").exists(), "Missing Shapley Values Loop Start settings.xml test data"

    s = parse_shapley_loop_settings(NODE_DIR)

    assert s.chunk_size == 250
    assert s.iterations_per_feature == 64
    assert s.seed == -4629874366284931117
    assert s.feature_columns.enforce_inclusion
    assert s.feature_columns.included == ["sepal length", "sepal width", "petal length"]
    assert s.feature_columns.excluded == ["petal width", "class"]
    # nested name_pattern entries must not leak into the filter
    assert s.prediction_columns.enforce_option == ENFORCE_EXCLUSION
    assert s.prediction_columns.included == []
    assert s.prediction_columns.excluded == ["Prediction (class)"]
    s.validate()


def test_parse_settings_xml_reports_name_and_factory():
    name, factory = parse_settings_xml(NODE_DIR / "settings.xml")
    assert factory == LOOP_START_FACTORY
    assert name == "Shapley Values Loop Start"


def test_defaults_without_settings(tmp_path):
    for path in (None, tmp_path, tmp_path / "missing.xml"):
        s = parse_shapley_loop_settings(path)
        assert s.chunk_size == 1000
        assert s.iterations_per_feature == 1000
        assert s.feature_columns == ColumnFilter()


def test_random_default_seed_is_a_64_bit_long():
    seeds = {ShapleyLoopSettings().seed for _ in range(5)}
    assert len(seeds) > 1
    assert all(-(1 << 63) <= seed < (1 << 63) for seed in seeds)


def test_write_then_parse(tmp_path):
    settings = ShapleyLoopSettings(
        chunk_size=7,
        iterations_per_feature=3,
        seed=-1,
        feature_columns=ColumnFilter(included=["b", "a"], excluded=["c"]),
        prediction_columns=ColumnFilter(excluded=["a", "b"], enforce_option=ENFORCE_EXCLUSION),
    )

    written = write_shapley_loop_settings(settings, tmp_path / "node")

    assert written == tmp_path / "node" / "settings.xml"
    assert parse_shapley_loop_settings(tmp_path / "node") == settings
    assert parse_shapley_loop_settings(written) == settings


def test_write_to_explicit_file(tmp_path):
    target = tmp_path / "custom.xml"
    assert write_shapley_loop_settings(ShapleyLoopSettings(seed=5), target) == target
    assert parse_shapley_loop_settings(target).seed == 5


def test_settings_of_another_node_are_rejected(tmp_path):
    (tmp_path / "settings.xml").write_text(
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<config xmlns="http://www.knime.org/2008/09/XMLConfig" key="settings.xml">\n'
        '<entry key="factory" type="xstring" value="org.knime.base.node.preproc.filter.row.RowFilterNodeFactory"/>\n'
        "</config>\n",
        encoding="utf-8",
    )
    with pytest.raises(InvalidSettingsError, match="RowFilterNodeFactory"):
        parse_shapley_loop_settings(tmp_path)


def test_non_integer_setting(tmp_path):
    (tmp_path / "settings.xml").write_text(
        '<config key="settings.xml">'
        '<config key="model"><entry key="iterationsPerFeature" type="xint" value="many"/></config>'
        "</config>",
        encoding="utf-8",
    )
    with pytest.raises(InvalidSettingsError, match="iterationsPerFeature"):
        parse_shapley_loop_settings(tmp_path)


def test_unknown_enforce_option(tmp_path):
    (tmp_path / "settings.xml").write_text(
        '<config key="settings.xml"><config key="model">'
        '<config key="featureColumns"><entry key="enforce_option" type="xstring" value="Sometimes"/></config>'
        "</config></config>",
        encoding="utf-8",
    )
    with pytest.raises(InvalidSettingsError, match="Sometimes"):
        parse_shapley_loop_settings(tmp_path)


@pytest.mark.parametrize(
    "overrides, key",
    [
        (dict(iterations_per_feature=0), "iterationsPerFeature"),
        (dict(chunk_size=-3), "chunkSize"),
        (dict(seed=1 << 63), "seed"),
    ],
)
def test_validate_names_the_parameter(overrides, key):
    with pytest.raises(InvalidSettingsError, match=key):
        ShapleyLoopSettings(**{"seed": 1, **overrides}).validate()


def test_loop_end_settings_are_rejected(tmp_path):
    """Pointing at the loop end node yields a hint to use the loop start settings instead."""
    (tmp_path / "settings.xml").write_text(
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        '<config xmlns="http://www.knime.org/2008/09/XMLConfig" key="settings.xml">\n'
        f'<entry key="factory" type="xstring" value="{LOOP_END_FACTORY}"/>\n'
        '<config key="model"/>\n'
        "</config>\n",
        encoding="utf-8",
    )
    with pytest.raises(InvalidSettingsError, match="Loop End, which has no settings of its own"):
        parse_shapley_loop_settings(tmp_path)
