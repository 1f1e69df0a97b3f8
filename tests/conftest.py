# conftest.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, List

import pandas as pd
import pytest

# --------------------------------------------------------------------------------------
# Repo paths
# --------------------------------------------------------------------------------------
REPO_ROOT = Path(__file__).resolve().parents[1]
TESTS_DIR = Path(__file__).resolve().parent
# pyproject sets `pythonpath = ["src"]`; keep plain `pytest tests/` working without it.
for _p in (REPO_ROOT / "src", TESTS_DIR):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))

from knime_shapley.settings import ShapleyLoopSettings  # noqa: E402
from knime_shapley.tables import ROW_ID, ColumnFilter  # noqa: E402

FEATURES = ["x0", "x1", "x2"]
WEIGHTS = [2.0, -1.0, 0.5]


# --------------------------------------------------------------------------------------
# Tables
# --------------------------------------------------------------------------------------
@pytest.fixture()
def roi_df() -> pd.DataFrame:
    """Five rows of interest with three numeric features and a string column that is never used."""
    df = pd.DataFrame(
        {
            "x0": [1.0, 2.0, 3.0, 4.0, 5.0],
            "x1": [10.0, 0.0, -5.0, 2.5, 1.0],
            "x2": [0.0, 4.0, 8.0, 1.0, -2.0],
            "label": ["a", "b", "a", "b", "a"],
        },
        index=pd.Index(["Row0", "Row1", "Row_2", "Row3", "Row4"], name=ROW_ID),
    )
    return df


@pytest.fixture()
def single_background_df() -> pd.DataFrame:
    """A sampling table with one row; makes additive models deterministic."""
    return pd.DataFrame(
        {"x0": [0.5], "x1": [1.0], "x2": [2.0], "label": ["z"]},
        index=pd.Index(["bg0"], name=ROW_ID),
    )


@pytest.fixture()
def background_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "x0": [0.0, 1.0, 2.0, 3.0],
            "x1": [1.0, 1.0, 3.0, 3.0],
            "x2": [-1.0, 0.0, 1.0, 2.0],
            "label": ["z", "z", "y", "y"],
        },
        index=pd.Index([f"bg{i}" for i in range(4)], name=ROW_ID),
    )


# --------------------------------------------------------------------------------------
# Settings
# --------------------------------------------------------------------------------------
@pytest.fixture()
def make_settings() -> Callable[..., ShapleyLoopSettings]:
    """Factory for settings over the FEATURES with a single 'Prediction' column.

    Example:
        make_settings(iterations_per_feature=3, chunk_size=2)
    """
    def _make(**overrides) -> ShapleyLoopSettings:
        kwargs = dict(
            chunk_size=1000,
            iterations_per_feature=5,
            seed=42,
            feature_columns=ColumnFilter(included=list(FEATURES)),
            prediction_columns=ColumnFilter(included=["Prediction"]),
        )
        kwargs.update(overrides)
        return ShapleyLoopSettings(**kwargs)
    return _make


@pytest.fixture(scope="session")
def feature_names() -> List[str]:
    return list(FEATURES)


@pytest.fixture(scope="session")
def weights() -> List[float]:
    return list(WEIGHTS)
