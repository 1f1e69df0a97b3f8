#!/usr/bin/env python3

####################################################################################################
#
# Shapley Values Loop settings
#
# settings.xml → ShapleyLoopSettings, and back.
#
# Settings mapping (model config of the loop start node)
# • chunk_size             ← entry key="chunkSize"            (ROI rows per loop iteration, default 1000)
# • iterations_per_feature ← entry key="iterationsPerFeature" (sampled coalitions per feature, default 1000)
# • seed                   ← entry key="seed"                 (signed 64-bit; random when absent)
# • feature_columns        ← config key="featureColumns"      (included_names / excluded_names / enforce_option)
# • prediction_columns     ← config key="predictionColumns"   (same layout; only numeric columns qualify)
#
# The loop end node has no settings of its own.
#
####################################################################################################

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
from lxml import etree as ET

from .errors import InvalidSettingsError
from .tables import ENFORCE_EXCLUSION, ENFORCE_INCLUSION, ColumnFilter
from .xml_utils import (
    add_child_config,
    add_entry,
    add_name_list,
    child_config,
    collect_name_list,
    entry_value,
    load_settings_root,
    new_config,
    parse_settings_xml,
)

__all__ = [
    "LOOP_START_FACTORY",
    "LOOP_END_FACTORY",
    "ShapleyLoopSettings",
    "parse_shapley_loop_settings",
    "write_shapley_loop_settings",
]

LOOP_START_FACTORY = "org.knime.base.node.meta.explain.shapley.ShapleyValuesLoopStartNodeFactory"
LOOP_END_FACTORY = "org.knime.base.node.meta.explain.shapley.ShapleyValuesLoopEndNodeFactory"

CFG_CHUNK_SIZE = "chunkSize"
CFG_ITERATIONS_PER_FEATURE = "iterationsPerFeature"
CFG_SEED = "seed"
CFG_FEATURE_COLS = "featureColumns"
CFG_PREDICTION_COLS = "predictionColumns"

DEF_CHUNK_SIZE = 1000
DEF_ITERATIONS_PER_FEATURE = 1000

_LONG_MIN = -(1 << 63)
_LONG_MAX = (1 << 63) - 1


def _random_seed() -> int:
    return int(np.random.default_rng().integers(_LONG_MIN, _LONG_MAX, endpoint=True))


@dataclass
class ShapleyLoopSettings:
    chunk_size: int = DEF_CHUNK_SIZE
    iterations_per_feature: int = DEF_ITERATIONS_PER_FEATURE
    seed: int = field(default_factory=_random_seed)
    feature_columns: ColumnFilter = field(default_factory=ColumnFilter)
    prediction_columns: ColumnFilter = field(default_factory=ColumnFilter)

    def validate(self) -> None:
        """
        Raises:
            InvalidSettingsError: Naming the offending parameter.
        """
        if self.iterations_per_feature <= 0:
            raise InvalidSettingsError(
                f"iterationsPerFeature must be larger than 0 (got {self.iterations_per_feature})."
            )
        if self.chunk_size <= 0:
            raise InvalidSettingsError(f"chunkSize must be larger than 0 (got {self.chunk_size}).")
        if not _LONG_MIN <= self.seed <= _LONG_MAX:
            raise InvalidSettingsError(f"seed must be a 64-bit integer (got {self.seed}).")


def _to_int(v: Optional[str], key: str, default: int) -> int:
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        raise InvalidSettingsError(f"Setting '{key}' is not an integer: {v!r}") from None


def _parse_column_filter(model: ET._Element, key: str) -> ColumnFilter:
    cfg = child_config(model, key)
    if cfg is None:
        return ColumnFilter()
    enforce = entry_value(cfg, "enforce_option") or ENFORCE_INCLUSION
    if enforce not in (ENFORCE_INCLUSION, ENFORCE_EXCLUSION):
        raise InvalidSettingsError(f"Unknown enforce_option {enforce!r} in '{key}'.")
    return ColumnFilter(
        included=collect_name_list(cfg, "included_names"),
        excluded=collect_name_list(cfg, "excluded_names"),
        enforce_option=enforce,
    )


def parse_shapley_loop_settings(path: Optional[Path]) -> ShapleyLoopSettings:
    """
    Read the loop start settings.

    Args:
        path: Node directory or settings.xml path. None or a missing file yields defaults.

    Raises:
        InvalidSettingsError: If the file belongs to another node or contains malformed values.
    """
    if not path:
        return ShapleyLoopSettings()
    root = load_settings_root(Path(path))
    if root is None:
        return ShapleyLoopSettings()

    _, factory = parse_settings_xml(Path(path))
    factory = factory.strip() if factory else None
    if factory == LOOP_END_FACTORY:
        raise InvalidSettingsError(
            f"The settings at {path} belong to the Shapley Values Loop End, which has no settings of its own; "
            "use the settings of the matching Shapley Values Loop Start."
        )
    if factory and factory != LOOP_START_FACTORY:
        raise InvalidSettingsError(
            f"The settings at {path} belong to {factory!r}, not to the Shapley Values Loop Start."
        )

    model = child_config(root, "model")
    if model is None:
        return ShapleyLoopSettings()

    seed_raw = entry_value(model, CFG_SEED)
    settings = ShapleyLoopSettings(
        chunk_size=_to_int(entry_value(model, CFG_CHUNK_SIZE), CFG_CHUNK_SIZE, DEF_CHUNK_SIZE),
        iterations_per_feature=_to_int(
            entry_value(model, CFG_ITERATIONS_PER_FEATURE), CFG_ITERATIONS_PER_FEATURE, DEF_ITERATIONS_PER_FEATURE
        ),
        feature_columns=_parse_column_filter(model, CFG_FEATURE_COLS),
        prediction_columns=_parse_column_filter(model, CFG_PREDICTION_COLS),
    )
    if seed_raw:
        settings.seed = _to_int(seed_raw, CFG_SEED, settings.seed)
    return settings


def _add_column_filter(model: ET._Element, key: str, cf: ColumnFilter) -> None:
    cfg = add_child_config(model, key)
    add_entry(cfg, "filter-type", "xstring", "STANDARD")
    add_name_list(cfg, "included_names", list(cf.included))
    add_name_list(cfg, "excluded_names", list(cf.excluded))
    add_entry(cfg, "enforce_option", "xstring", cf.enforce_option)


def write_shapley_loop_settings(settings: ShapleyLoopSettings, path: Path) -> Path:
    """
    Write `settings` as a KNIME settings.xml.

    Args:
        path: Node directory (settings.xml is created inside) or the target file.

    Returns:
        Path: The written file.
    """
    path = Path(path)
    target = path / "settings.xml" if path.is_dir() or not path.suffix else path
    target.parent.mkdir(parents=True, exist_ok=True)

    root = new_config()
    add_entry(root, "factory", "xstring", LOOP_START_FACTORY)
    add_entry(root, "node-name", "xstring", "Shapley Values Loop Start")
    model = add_child_config(root, "model")
    add_entry(model, CFG_CHUNK_SIZE, "xint", settings.chunk_size)
    add_entry(model, CFG_ITERATIONS_PER_FEATURE, "xint", settings.iterations_per_feature)
    add_entry(model, CFG_SEED, "xlong", settings.seed)
    _add_column_filter(model, CFG_FEATURE_COLS, settings.feature_columns)
    _add_column_filter(model, CFG_PREDICTION_COLS, settings.prediction_columns)

    ET.ElementTree(root).write(str(target), xml_declaration=True, encoding="UTF-8", pretty_print=True)
    return target
