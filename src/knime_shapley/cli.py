#!/usr/bin/env python3
# -----------------------------------------------------------------------------
# knime_shapley.cli — Shapley Values loop over CSV files (CLI entry)
#
# The two halves of the loop run as separate commands so that any external
# tool can fill in the predictions in between:
#
#   k2shap init-settings node_dir/ --features a b c --predictions score
#   k2shap start roi.csv --sampling background.csv --settings node_dir/ --out perturbed.csv
#   ... predict perturbed.csv → predicted.csv (append prediction columns, keep RowID order)
#   k2shap end predicted.csv --settings node_dir/ --perturbed perturbed.csv --out shapley.csv
#
# CSV files carry the RowID in their first column.
#
# Exit codes
# ----------
# 0  success
# 2  bad input path
# 3  invalid settings (columns, iterations, settings.xml)
# 4  invalid data (RowIDs not created by `start`, wrong order, non-numeric predictions)
# 5  canceled
# -----------------------------------------------------------------------------

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .errors import CanceledExecutionError, InvalidSettingsError, ShapleyValuesError
from .estimator import ShapleyValuesEstimator
from .execution import ExecutionMonitor
from .loop import ShapleyValuesLoopStart
from .settings import ShapleyLoopSettings, parse_shapley_loop_settings, write_shapley_loop_settings
from .tables import ROW_ID, ColumnFilter

LOG = logging.getLogger(__name__)


def _require_file(path: Path) -> Path:
    p = path.expanduser().resolve()
    if not p.exists() or not p.is_file():
        print(f"File does not exist: {p}", file=sys.stderr)
        raise SystemExit(2)
    return p


def _read_table(path: Path) -> pd.DataFrame:
    df = pd.read_csv(_require_file(path), index_col=0, converters={0: str})
    df.index = df.index.astype(str)
    df.index.name = ROW_ID
    return df


def _write_table(df: pd.DataFrame, path: Path) -> Path:
    out = path.expanduser().resolve()
    out.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out, index=True, index_label=ROW_ID)
    return out


def _load_settings(args: argparse.Namespace) -> ShapleyLoopSettings:
    """settings.xml (if given) with command line overrides applied."""
    if args.settings is not None and not args.settings.expanduser().exists():
        print(f"Settings path does not exist: {args.settings}", file=sys.stderr)
        raise SystemExit(2)
    settings = parse_shapley_loop_settings(args.settings.expanduser() if args.settings else None)
    if getattr(args, "iterations", None) is not None:
        settings.iterations_per_feature = args.iterations
    if getattr(args, "seed", None) is not None:
        settings.seed = args.seed
    if getattr(args, "chunk_size", None) is not None:
        settings.chunk_size = args.chunk_size
    if getattr(args, "features", None):
        settings.feature_columns = ColumnFilter(included=list(args.features))
    if getattr(args, "predictions", None):
        settings.prediction_columns = ColumnFilter(included=list(args.predictions))
    return settings


def _progress_logger(fraction: float, message: Optional[str]) -> None:
    LOG.debug("%5.1f%% %s", 100.0 * fraction, message or "")


def _cmd_init_settings(args: argparse.Namespace) -> dict:
    settings = ShapleyLoopSettings(
        feature_columns=ColumnFilter(included=list(args.features or [])),
        prediction_columns=ColumnFilter(included=list(args.predictions or [])),
    )
    if args.iterations is not None:
        settings.iterations_per_feature = args.iterations
    if args.chunk_size is not None:
        settings.chunk_size = args.chunk_size
    if args.seed is not None:
        settings.seed = args.seed
    settings.validate()
    path = write_shapley_loop_settings(settings, args.path.expanduser())
    return {"settings": str(path), "seed": settings.seed}


def _cmd_start(args: argparse.Namespace) -> dict:
    settings = _load_settings(args)
    roi = _read_table(args.roi)
    sampling = _read_table(args.sampling)
    monitor = ExecutionMonitor(_progress_logger)

    loop_start = ShapleyValuesLoopStart(settings)
    loop_start.start(roi, sampling, monitor.create_sub_progress(0.1))
    chunks: List[pd.DataFrame] = []
    while not loop_start.terminate_loop():
        chunks.append(loop_start.next_chunk(monitor.create_sub_progress(0.0)))
        flow = loop_start.flow_variables()
        monitor.set_progress(0.1 + 0.9 * (flow["currentIteration"] + 1) / flow["maxIterations"])
    perturbed = pd.concat(chunks, axis=0)
    out = _write_table(perturbed, args.out)
    return {
        "perturbed": str(out),
        "rows": int(len(perturbed)),
        "feature_columns": loop_start.estimator.feature_columns,
        "chunks": loop_start.flow_variables()["maxIterations"],
        "seed": settings.seed,
    }


def _evaluation_features(args: argparse.Namespace, settings: ShapleyLoopSettings) -> List[str]:
    """Feature columns resolved by `start`: the header of its output, or the included names."""
    if args.perturbed is not None:
        header = pd.read_csv(_require_file(args.perturbed), index_col=0, nrows=0)
        return [str(c) for c in header.columns]
    if settings.feature_columns.enforce_inclusion:
        return settings.feature_columns.apply([])
    raise InvalidSettingsError(
        "The feature columns are selected by exclusion; pass the output of `start` with --perturbed."
    )


def _cmd_end(args: argparse.Namespace) -> dict:
    settings = _load_settings(args)
    predicted = _read_table(args.predicted)
    estimator = ShapleyValuesEstimator.for_evaluation(settings, _evaluation_features(args, settings))
    shapley = estimator.execute_loop_end(predicted, ExecutionMonitor(_progress_logger))
    out = _write_table(shapley, args.out)
    return {"shapley_values": str(out), "rows": int(len(shapley)), "columns": list(shapley.columns)}


def _add_override_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--settings", type=Path, default=None,
                   help="Loop start node directory or settings.xml (defaults when omitted)")
    p.add_argument("--iterations", type=int, default=None, help="Override iterationsPerFeature")
    p.add_argument("--features", nargs="+", default=None, help="Override the feature columns")
    p.add_argument("--predictions", nargs="+", default=None, help="Override the prediction columns")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="k2shap",
        description="Estimate Shapley Values with the KNIME Shapley Values loop protocol over CSV files.",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")
    sub = p.add_subparsers(dest="command", required=True)

    p_init = sub.add_parser("init-settings", help="Write a loop start settings.xml")
    p_init.add_argument("path", type=Path, help="Node directory or settings.xml path to create")
    p_init.add_argument("--features", nargs="+", default=None, help="Feature columns")
    p_init.add_argument("--predictions", nargs="+", default=None, help="Prediction columns")
    p_init.add_argument("--iterations", type=int, default=None, help="Iterations per feature")
    p_init.add_argument("--chunk-size", type=int, default=None, help="ROI rows per loop iteration")
    p_init.add_argument("--seed", type=int, default=None, help="Random seed (64-bit)")
    p_init.set_defaults(func=_cmd_init_settings)

    p_start = sub.add_parser("start", help="Loop start: perturb the rows of interest")
    p_start.add_argument("roi", type=Path, help="CSV with the rows to explain")
    p_start.add_argument("--sampling", type=Path, required=True, help="CSV with the sampling (background) rows")
    p_start.add_argument("--out", type=Path, default=Path("perturbed.csv"), help="Output CSV")
    p_start.add_argument("--seed", type=int, default=None, help="Override the seed")
    p_start.add_argument("--chunk-size", type=int, default=None, help="Override chunkSize")
    _add_override_args(p_start)
    p_start.set_defaults(func=_cmd_start)

    p_end = sub.add_parser("end", help="Loop end: aggregate predicted rows into Shapley Values")
    p_end.add_argument("predicted", type=Path, help="CSV with the perturbed rows plus prediction columns")
    p_end.add_argument("--out", type=Path, default=Path("shapley_values.csv"), help="Output CSV")
    p_end.add_argument("--perturbed", type=Path, default=None,
                       help="Output CSV of `start`; its columns are the feature columns")
    _add_override_args(p_end)
    p_end.set_defaults(func=_cmd_end)
    return p


def run_cli(argv: Optional[list[str]] = None) -> int:
    """
    Parse command-line arguments and run the selected loop phase.

    Args:
        argv (Optional[list[str]]): The command-line arguments. If None, uses sys.argv.

    Returns:
        int: Exit code indicating success (0) or failure (non-zero).
    """
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        summary = args.func(args)
    except InvalidSettingsError as e:
        print(f"ERROR invalid settings: {e}", file=sys.stderr)
        return 3
    except CanceledExecutionError as e:
        print(f"Canceled: {e}", file=sys.stderr)
        return 5
    except ShapleyValuesError as e:
        print(f"ERROR invalid data: {e}", file=sys.stderr)
        return 4

    print(json.dumps(summary, indent=2))
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
