#!/usr/bin/env python3
"""Count body rows of workflow artifacts using Dask.

Per-window artifacts of a large run number in the tens of thousands, so the
files are read lazily as one dask bag. Every artifact carries a single header
line that is not counted.
"""
import argparse
import json

import dask.bag as db


def count_rows(paths: str | list[str]) -> dict[str, int]:
    """Count body rows per artifact.

    Parameters
    ----------
    paths: str or list
        Artifact path(s); wildcards select sharded per-window files and
        ``.gz`` files are decompressed on the fly.
    Returns
    -------
    dict
        Body row count keyed by artifact path.
    """
    lines = db.read_text(paths, include_path=True, compression="infer")
    non_blank = lines.filter(lambda item: item[0].strip() != "")
    per_file = dict(non_blank.pluck(1).frequencies().compute())
    return {path: max(count - 1, 0) for path, count in sorted(per_file.items())}


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Count body rows of (sharded) workflow artifacts with Dask")
    parser.add_argument("artifacts", nargs="+", help="Artifact paths or glob patterns")
    parser.add_argument("--total-only", action="store_true", help="Print only the total row count")
    args = parser.parse_args(argv)

    counts = count_rows(args.artifacts)
    total = sum(counts.values())
    if args.total_only:
        print(total)
    else:
        print(json.dumps({"files": counts, "total": total}, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
