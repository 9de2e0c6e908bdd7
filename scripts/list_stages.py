#!/usr/bin/env python3
"""Print the stage activation table of a run-depth selector."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "src"))

from gwasflow import ConfigurationError, ImputationTool, activation_table, available_selectors  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Show which stages a run-depth selector activates.")
    parser.add_argument(
        "selector",
        nargs="?",
        default=None,
        help="Run-depth selector. Omit to list every selector.",
    )
    parser.add_argument(
        "--imputation-tool",
        default=ImputationTool.IMPUTE.value,
        choices=[tool.value for tool in ImputationTool],
        help="Imputation tool the selector is resolved for.",
    )
    parser.add_argument(
        "--active-only",
        action="store_true",
        help="Print only the active stages, in execution order.",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    if args.selector is None:
        print("\n".join(available_selectors()))
        return 0

    try:
        activation = activation_table(args.selector, args.imputation_tool)
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    if args.active_only:
        payload: object = [stage.value for stage in activation.active_stages()]
    else:
        payload = activation.as_flags()
    summary = {"selector": activation.selector, "imputation_tool": args.imputation_tool, "stages": payload}
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
