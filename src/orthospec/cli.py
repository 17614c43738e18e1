"""
Command-line interface for orthospec.

Usage:
    orthospec specificity --expression expr.csv --metadata meta.csv -o out/
    orthospec resample --expression expr.csv --metadata meta.csv --iterations 1000 --seed 7
    orthospec top --table specificity.csv --group microglia --n 20
    orthospec compare --table mouse=mouse.csv --table human=human.csv --reference mouse
    orthospec run --config analysis.yaml
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger("orthospec")


def _setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(level=level, format=fmt, handlers=handlers)


def _load_matrix(
    expression_path: str,
    metadata_path: str,
    group_col: str,
    species: Optional[str] = None,
    exclude: Optional[list[str]] = None,
):
    """Read expression and metadata CSVs into an ExpressionMatrix."""
    import pandas as pd
    from orthospec.expression import ExpressionMatrix

    expression = pd.read_csv(expression_path, index_col=0)
    metadata = pd.read_csv(metadata_path, index_col=0)
    matrix = ExpressionMatrix.from_frames(
        expression, metadata, group_col=group_col, species=species
    )
    if exclude:
        matrix = matrix.exclude_groups(*exclude)
    logger.info("Loaded %s", matrix)
    return matrix


def _load_table(path: str, species: Optional[str] = None):
    """Read a specificity table CSV (genes x groups)."""
    import pandas as pd
    from orthospec.specificity import SpecificityTable

    return SpecificityTable.from_frame(pd.read_csv(path, index_col=0), species=species)


def _parse_tables(specs: list[str]) -> dict[str, str]:
    """Parse SPECIES=PATH pairs."""
    tables = {}
    for spec in specs:
        species, sep, path = spec.partition("=")
        if not sep or not species or not path:
            raise ValueError(f"Expected SPECIES=PATH, got '{spec}'")
        tables[species] = path
    return tables


def cmd_specificity(args: argparse.Namespace) -> int:
    """Compute specificity scores for one species."""
    from orthospec.export import CSVWriter
    from orthospec.specificity import SpecificityCalculator

    matrix = _load_matrix(
        args.expression, args.metadata, args.group_col, args.species, args.exclude_group
    )
    table = SpecificityCalculator(args.bottom_threshold).compute(matrix)

    writer = CSVWriter(Path(args.output or "."))
    out_path = writer.write_specificity(table)
    logger.info("Specificity saved to %s (%d genes x %d groups)",
                out_path, *table.scores.shape)
    return 0


def cmd_resample(args: argparse.Namespace) -> int:
    """Compute specificity with replicate resampling."""
    from orthospec.core.config import ResamplingConfig
    from orthospec.export import CSVWriter, JSONWriter
    from orthospec.specificity import ResamplingEngine

    matrix = _load_matrix(
        args.expression, args.metadata, args.group_col, args.species, args.exclude_group
    )
    options = {"fraction": args.fraction} if args.strategy == "subsample" else {}
    config = ResamplingConfig(
        iterations=args.iterations,
        seed=args.seed,
        strategy=args.strategy,
        strategy_options=options,
        parallel=args.workers > 1,
        n_workers=args.workers,
        block_size=args.block_size,
        max_failure_rate=args.max_failure_rate,
        top_n=args.top_n,
        bottom_threshold=args.bottom_threshold,
    )
    result = ResamplingEngine(config).run(matrix)

    output_dir = Path(args.output or ".")
    writer = CSVWriter(output_dir)
    writer.write_specificity(result.point_estimate)
    writer.write_resampling(result)
    JSONWriter(output_dir).write_resampling_summary(result)
    logger.info("Resampling results saved to %s (%d/%d iterations completed)",
                output_dir, result.n_completed, result.n_requested)
    return 0


def cmd_top(args: argparse.Namespace) -> int:
    """Print the top genes of a group."""
    from orthospec.ranking import RankExtractor

    table = _load_table(args.table)
    for gene in RankExtractor().top_n(table, args.group, args.n):
        print(gene)
    return 0


def cmd_compare(args: argparse.Namespace) -> int:
    """Compare a reference species' top genes across species."""
    from orthospec.cross_species import CrossSpeciesComparator
    from orthospec.export import CSVWriter, JSONWriter
    from orthospec.ranking import RankExtractor

    paths = _parse_tables(args.table)
    if args.reference not in paths:
        logger.error("Reference species '%s' not among tables: %s",
                     args.reference, list(paths))
        return 1
    tables = {sp: _load_table(path, species=sp) for sp, path in paths.items()}
    targets = [sp for sp in tables if sp != args.reference]

    comparator = CrossSpeciesComparator(RankExtractor(ties=args.ties), strict=args.strict)
    comparisons = comparator.compare_groups(
        args.reference, targets, tables, top_n=args.top_n,
        groups=args.group or None,
    )

    output_dir = Path(args.output or ".")
    csv_writer = CSVWriter(output_dir)
    json_writer = JSONWriter(output_dir)
    for comparison in comparisons.values():
        csv_writer.write_comparison(comparison)
        json_writer.write_comparison(comparison)
    csv_writer.write_median_ranks(comparisons)
    json_writer.write_comparison_summary(comparisons)
    logger.info("Rank comparisons for %d groups saved to %s", len(comparisons), output_dir)
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Run a multi-species analysis from a YAML config file."""
    import yaml
    from orthospec.core.config import Config
    from orthospec.cross_species import CrossSpeciesComparator, balance_groups
    from orthospec.export import CSVWriter, JSONWriter
    from orthospec.ranking import RankExtractor
    from orthospec.specificity import ResamplingEngine

    config_path = Path(args.config)
    if not config_path.exists():
        logger.error("Config file not found: %s", config_path)
        return 1

    with open(config_path) as f:
        analysis = yaml.safe_load(f)

    config = Config.from_dict(analysis.get("config", {}))
    if args.output:
        config.output_dir = Path(args.output)
    config.validate()

    species_defs = analysis.get("species", {})
    if len(species_defs) < 1:
        logger.error("No species defined in %s", config_path)
        return 1
    reference = analysis.get("reference", next(iter(species_defs)))
    group_col = analysis.get("group_col", "cell_type")
    exclude = analysis.get("exclude_groups", [])

    base_dir = config_path.parent
    matrices = {}
    for name, spec in species_defs.items():
        matrices[name] = _load_matrix(
            str(base_dir / spec["expression"]),
            str(base_dir / spec["metadata"]),
            spec.get("group_col", group_col),
            species=name,
        )

    if analysis.get("balance_groups", True):
        matrices = balance_groups(matrices, exclude=exclude)
    elif exclude:
        matrices = {
            name: m.exclude_groups(*[g for g in exclude if g in m.groups])
            for name, m in matrices.items()
        }

    output_dir = config.output_dir or Path(".")
    csv_writer = CSVWriter(output_dir)
    json_writer = JSONWriter(output_dir)

    tables = {}
    for name, matrix in matrices.items():
        logger.info("Running stage: specificity (%s)", name)
        result = ResamplingEngine(config.resampling).run(matrix)
        tables[name] = result.table(analysis.get("report_table", "point"))
        csv_writer.write_specificity(tables[name], f"specificity_{name}.csv")
        if result.n_requested > 1:
            csv_writer.write_resampling(result, f"resampling_{name}")
            json_writer.write_resampling_summary(result, f"resampling_{name}.json")

    targets = [sp for sp in tables if sp != reference]
    comparator = CrossSpeciesComparator(
        RankExtractor(ties=config.specificity.ties), strict=config.comparison.strict
    )
    comparisons = comparator.compare_groups(
        reference, targets, tables,
        top_n=config.comparison.top_n,
        groups=analysis.get("groups"),
    )
    for comparison in comparisons.values():
        csv_writer.write_comparison(comparison)
        json_writer.write_comparison(comparison)
    csv_writer.write_median_ranks(comparisons)
    json_writer.write_comparison_summary(comparisons)

    logger.info("Analysis complete: %d species, %d groups -> %s",
                len(tables), len(comparisons), output_dir)
    return 0


def _add_matrix_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--expression", "-e", required=True,
                        help="Expression CSV (genes x samples)")
    parser.add_argument("--metadata", "-m", required=True,
                        help="Sample metadata CSV (samples x annotations)")
    parser.add_argument("--group-col", default="cell_type", help="Group column in metadata")
    parser.add_argument("--species", help="Species label")
    parser.add_argument("--exclude-group", nargs="+", help="Groups to leave out")
    parser.add_argument("--bottom-threshold", type=float, default=0.0,
                        help="Floor for group means")
    parser.add_argument("--output", "-o", help="Output directory")


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="orthospec",
        description="Specificity index analysis and cross-species rank comparison",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-file", type=str, help="Log file path")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # --- specificity ---
    p_spec = subparsers.add_parser("specificity", help="Compute specificity scores")
    _add_matrix_args(p_spec)
    p_spec.set_defaults(func=cmd_specificity)

    # --- resample ---
    p_res = subparsers.add_parser("resample", help="Specificity with replicate resampling")
    _add_matrix_args(p_res)
    p_res.add_argument("--iterations", type=int, default=100)
    p_res.add_argument("--seed", type=int, required=True)
    p_res.add_argument("--strategy", default="bootstrap",
                       choices=["bootstrap", "leave_one_out", "subsample"])
    p_res.add_argument("--fraction", type=float, default=0.8,
                       help="Replicate fraction for the subsample strategy")
    p_res.add_argument("--workers", type=int, default=1)
    p_res.add_argument("--block-size", type=int, default=16)
    p_res.add_argument("--max-failure-rate", type=float)
    p_res.add_argument("--top-n", type=int, help="Track top-N inclusion frequency")
    p_res.set_defaults(func=cmd_resample)

    # --- top ---
    p_top = subparsers.add_parser("top", help="Print top genes of a group")
    p_top.add_argument("--table", "-t", required=True, help="Specificity CSV")
    p_top.add_argument("--group", "-g", required=True)
    p_top.add_argument("--n", type=int, default=20)
    p_top.set_defaults(func=cmd_top)

    # --- compare ---
    p_cmp = subparsers.add_parser("compare", help="Cross-species rank comparison")
    p_cmp.add_argument("--table", "-t", action="append", required=True,
                       help="SPECIES=PATH to a specificity CSV (repeatable)")
    p_cmp.add_argument("--reference", "-r", required=True, help="Reference species")
    p_cmp.add_argument("--group", "-g", nargs="+", help="Groups (default: all shared)")
    p_cmp.add_argument("--top-n", type=int, default=100)
    p_cmp.add_argument("--ties", default="min", choices=["min", "ordinal"])
    p_cmp.add_argument("--strict", action="store_true",
                       help="Fail on genes without ortholog entry")
    p_cmp.add_argument("--output", "-o", help="Output directory")
    p_cmp.set_defaults(func=cmd_compare)

    # --- run ---
    p_run = subparsers.add_parser("run", help="Run multi-species analysis from YAML config")
    p_run.add_argument("--config", required=True, help="Analysis YAML config file")
    p_run.add_argument("--output", "-o", help="Output directory")
    p_run.set_defaults(func=cmd_run)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    from orthospec.core.errors import SpecificityError

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    _setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        return args.func(args)
    except (SpecificityError, ValueError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
