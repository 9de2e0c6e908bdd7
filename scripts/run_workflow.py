#!/usr/bin/env python3
"""Run or dry-run a configured GWAS workflow."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from gwasflow import (  # noqa: E402
    ChromosomeBounds,
    DaskExecutor,
    DuckDBParquetMatrixStorage,
    GwasflowError,
    LocalExecutor,
    RecordingExecutor,
    RunConfigLoader,
    WorkflowFailure,
    WorkflowRunner,
)
from gwasflow.config import DEFAULT_CONFIGS_DIR  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Plan and run a GWAS association workflow: per-window stages, chunk "
            "reductions, panel combination and the phenotype matrix."
        )
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Run config name in --configs-dir or a path to a run config JSON.",
    )
    parser.add_argument(
        "--configs-dir",
        default=str(DEFAULT_CONFIGS_DIR),
        help="Directory holding named run configs.",
    )
    parser.add_argument(
        "--run-depth",
        default=None,
        help="Override the run-depth selector of the config (e.g. from_association).",
    )
    parser.add_argument(
        "--bounds",
        default=None,
        help="Chromosome bounds name or JSON path. Defaults to the config's chromosome_bounds.",
    )
    parser.add_argument(
        "--set",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help=(
            "Override config values using dotted keys. "
            "Example: --set thresholds.maf=0.01"
        ),
    )
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Run independent chromosome, panel and pair groups in parallel with dask.",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker threads for --parallel. Defaults to dask's choice.",
    )
    parser.add_argument(
        "--matrix-db",
        default=None,
        help="DuckDB file where the final phenotype matrix is stored.",
    )
    parser.add_argument(
        "--matrix-parquet",
        default=None,
        help="Parquet copy of the final phenotype matrix. Requires --matrix-db.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan every task and print the execution summary without running anything.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args()


def _build_storage(args: argparse.Namespace) -> DuckDBParquetMatrixStorage | None:
    if args.matrix_db is None:
        if args.matrix_parquet is not None:
            raise ValueError("--matrix-parquet requires --matrix-db.")
        return None
    parquet = args.matrix_parquet or str(Path(args.matrix_db).with_suffix(".parquet"))
    return DuckDBParquetMatrixStorage(db_path=args.matrix_db, parquet_path=parquet)


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logger = logging.getLogger("gwasflow.runner")
    started = time.perf_counter()

    failed = False
    overrides = list(args.set)
    if args.run_depth:
        overrides.append(f"run_depth={args.run_depth}")

    try:
        config = RunConfigLoader(configs_dir=args.configs_dir).load(args.config, overrides)
        bounds = ChromosomeBounds.load(args.bounds or config.chromosome_bounds)
        activation = config.stage_activation()

        if args.dry_run:
            # Nothing is executed, so nothing may be removed either.
            planned = dataclasses.replace(config, remove_temporal_files=False)
            executor = RecordingExecutor(placeholder_on_failure=config.placeholder_on_failure)
            report = WorkflowRunner(planned, bounds=bounds, executor=executor).run(write_manifest=False)
        else:
            if args.parallel:
                executor = DaskExecutor(
                    num_workers=args.workers, placeholder_on_failure=config.placeholder_on_failure
                )
            else:
                executor = LocalExecutor(placeholder_on_failure=config.placeholder_on_failure)
            runner = WorkflowRunner(config, bounds=bounds, executor=executor, storage=_build_storage(args))
            report = runner.run()
    except WorkflowFailure as exc:
        logger.error("%s", exc)
        for error in exc.errors:
            logger.error("Failed: %s", error)
        report = exc.report
        failed = True
    except GwasflowError as exc:
        logger.error("%s", exc)
        return 1

    execution_summary: dict[str, Any] = {
        "config": args.config,
        "run_depth": activation.selector,
        "imputation_tool": activation.imputation_tool.value,
        "stages": activation.as_flags(),
        "parameters": config.describe(),
        **report.as_dict(),
    }

    if args.dry_run:
        execution_summary["dry_run"] = True
        execution_summary["commands"] = executor.manifest.entries
        print(json.dumps(execution_summary, indent=2))
        return 0

    elapsed = time.perf_counter() - started
    execution_summary["dry_run"] = False
    execution_summary["elapsed_seconds"] = round(elapsed, 2)
    logger.info(
        "Workflow finished: %d tasks, %d merges, %d warnings, %d errors",
        report.tasks_submitted,
        report.merges,
        len(report.warnings),
        len(report.errors),
    )
    print(json.dumps(execution_summary, indent=2))
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
