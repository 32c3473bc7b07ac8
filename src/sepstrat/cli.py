"""Command-line interface for stratification.

Usage:
    python -m sepstrat stratify samples.csv --reference-dir refs/ -k 15 --output preds.csv
    python -m sepstrat project samples.csv --reference-dir refs/ --gene-set extended
    python -m sepstrat sensitivity samples.csv --reference-dir refs/ --output spread.csv

Input CSV: first column holds sample names, remaining columns gene IDs.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from sepstrat.data.reference import configure_registry
from sepstrat.exceptions import StratificationError
from sepstrat.stratification import project, run_sensitivity_analysis, stratify
from sepstrat.utils.config import ConfigError, get_value, load_config, validate_config
from sepstrat.utils.logging import setup_logging

logger = logging.getLogger(__name__)


def _read_samples(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    frame = pd.read_csv(path, index_col=0)
    frame.index = frame.index.astype(str)
    logger.info(f"Read {frame.shape[0]} samples x {frame.shape[1]} columns from {path.name}")
    return frame


def _write(frame: pd.DataFrame, output: Optional[Path]) -> None:
    if output is None:
        frame.to_csv(sys.stdout)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(output)
    logger.info(f"Saved predictions to: {output}")


def _load(args: argparse.Namespace):
    overrides = list(args.override or [])
    if args.reference_dir is not None:
        overrides.append(f"reference.directory={args.reference_dir}")
    cfg = load_config(args.config, overrides=overrides)
    validate_config(cfg)
    configure_registry(cfg)
    return cfg


def cmd_stratify(args: argparse.Namespace) -> int:
    """Align to the reference and predict with the trained models."""
    cfg = _load(args)
    result = stratify(
        _read_samples(args.input),
        gene_set=args.gene_set or get_value(cfg, "stratify.gene_set", "minimal"),
        k=args.k or get_value(cfg, "stratify.k", 20),
        verbose=args.verbose or bool(get_value(cfg, "stratify.verbose", False)),
        config=cfg,
    )
    logger.info(repr(result))
    _write(result.to_frame(), args.output)
    return 0


def cmd_project(args: argparse.Namespace) -> int:
    """Similarity-weighted projection from the nearest reference samples."""
    cfg = _load(args)
    result = project(
        _read_samples(args.input),
        gene_set=args.gene_set or get_value(cfg, "stratify.gene_set", "minimal"),
        k=args.k or get_value(cfg, "projection.k", 20),
        verbose=args.verbose,
        min_similarity=get_value(cfg, "projection.min_similarity"),
    )
    logger.info(repr(result))
    _write(result.to_frame(), args.output)
    return 0


def cmd_sensitivity(args: argparse.Namespace) -> int:
    """SRSq per sample across a range of k."""
    cfg = _load(args)
    k_values = [args.k] if args.k else list(get_value(cfg, "sensitivity.k_values", []))
    res = run_sensitivity_analysis(
        _read_samples(args.input),
        gene_set=args.gene_set or get_value(cfg, "stratify.gene_set", "minimal"),
        k_values=k_values or None,
        verbose=args.verbose,
        config=cfg,
    )
    table = res.srsq.add_prefix("SRSq_k")
    table = pd.concat([table, res.srsq_spread(), res.label_stability()], axis=1)
    _write(table, args.output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sepstrat",
        description="Sepsis response signature stratification",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    commands = {
        "stratify": (cmd_stratify, "Stratify samples with mNN alignment + trained models"),
        "project": (cmd_project, "Project labels from similar reference samples"),
        "sensitivity": (cmd_sensitivity, "Stratify across a range of k"),
    }
    for name, (func, help_text) in commands.items():
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("input", type=Path, help="CSV of samples x genes")
        sub.add_argument("--gene-set", default=None, help="minimal | extended")
        sub.add_argument("-k", type=int, default=None, help="Number of nearest neighbours")
        sub.add_argument("--config", type=Path, default=None, help="YAML config file")
        sub.add_argument("--reference-dir", type=Path, default=None,
                         help="Directory with reference tables and model artifacts")
        sub.add_argument("--override", nargs="*", default=None,
                         help="Config overrides as key=value")
        sub.add_argument("--output", "-o", type=Path, default=None,
                         help="Output CSV (stdout if omitted)")
        sub.add_argument("--verbose", "-v", action="store_true")
        sub.set_defaults(func=func)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO, stream=sys.stderr)

    try:
        return args.func(args)
    except (StratificationError, ConfigError, FileNotFoundError, LookupError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
