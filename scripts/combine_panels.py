#!/usr/bin/env python3
"""Reconcile two reference panels' results for one window."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from gwasflow import GwasflowError, combine_panels_complex  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Merge two panels' filtered or condensed artifacts, keeping the row with "
            "the higher info_all for strand-ambiguous matches."
        )
    )
    parser.add_argument("panel_a", help="Artifact of the first panel (plain or .gz).")
    parser.add_argument("panel_b", help="Artifact of the second panel (plain or .gz).")
    parser.add_argument("output", help="Combined artifact to write (.gz compresses).")
    parser.add_argument(
        "--scratch-dir",
        default=None,
        help="Directory for decompressed scratch copies. Defaults to the output directory.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    try:
        report = combine_panels_complex(args.panel_a, args.panel_b, args.output, args.scratch_dir)
    except GwasflowError as exc:
        logging.getLogger("gwasflow.combine").error("%s", exc)
        return 1
    print(json.dumps(report.as_dict(), indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
