"""Per-window quality filters and top-hit extraction."""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pandas as pd

from gwasflow.config import PVA_THRESHOLD, Thresholds
from gwasflow.errors import InternalMergeFailure
from gwasflow.models import is_chromosome_x
from gwasflow.schema import (
    CONDENSED_HEADER,
    EMPTY_SUMMARY_HEADER,
    NA,
    REFPANEL_COLUMN,
    TAB,
    TOP_HITS_HEADER,
    HeaderSchema,
    open_artifact,
    parse_float,
    read_header,
    write_lines,
)

logger = logging.getLogger("gwasflow.filters")

DEFAULT_CHUNKSIZE = 100_000

FILTER_COLUMNS: tuple[str, ...] = (
    "chr",
    "position",
    "alleleA",
    "alleleB",
    "info_all",
    "cases_maf",
    "controls_maf",
    "frequentist_add_pvalue",
)
HWE_COLUMNS: tuple[str, ...] = ("cohort_1_hwe", "cases_hwe", "controls_hwe")
CONDENSED_SOURCE_COLUMNS: tuple[str, ...] = (
    "chr",
    "position",
    "alleleA",
    "alleleB",
    "frequentist_add_pvalue",
    "info_all",
)
TOP_HITS_COLUMNS: tuple[str, ...] = (
    "chr",
    "position",
    "rs_id_all",
    "all_maf",
    "alleleA",
    "alleleB",
    "frequentist_add_pvalue",
)

INFO_FILE_RSID_INDEX = 1
INFO_FILE_INFO_INDEX = 6


@dataclass
class FilterReport:
    """Summary of one filterByAll run."""

    input_rows: int
    kept_rows: int
    dropped_rows: int
    filtered_path: Path
    condensed_path: Path


def _is_placeholder(header: str) -> bool:
    return header == "" or header == EMPTY_SUMMARY_HEADER


def _iter_records(path: Path, chunksize: int) -> Iterator[dict[str, Any]]:
    """Yield body rows as ordered string records, header taken from the file."""

    try:
        for frame in pd.read_csv(
            path,
            sep=TAB,
            dtype=str,
            keep_default_na=False,
            quoting=csv.QUOTE_NONE,
            chunksize=chunksize,
        ):
            # Short rows come back as NaN; treat them as missing values.
            yield from frame.fillna(NA).to_dict(orient="records")
    except pd.errors.ParserError as exc:
        raise InternalMergeFailure(f"Malformed table: {exc}", artifact=str(path)) from exc


def _require(schema: HeaderSchema, columns: tuple[str, ...], path: Path) -> None:
    missing = [name for name in columns if not schema.has(name)]
    if missing:
        raise InternalMergeFailure(f"Missing column(s) {', '.join(missing)}", artifact=str(path))


def filter_by_all(
    summary: str | Path,
    filtered_out: str | Path,
    condensed_out: str | Path,
    panel: str,
    thresholds: Thresholds,
    info_threshold: float,
    *,
    chunksize: int = DEFAULT_CHUNKSIZE,
) -> FilterReport:
    """Split a window summary into its filtered and condensed artifacts.

    A row survives when none of its quality fields is ``NA``, both MAFs reach
    the MAF threshold, info reaches ``info_threshold`` and each HWE value
    reaches its threshold. Chromosome X rows use 1.0 for every HWE value.
    """

    summary_path = Path(summary)
    filtered_path = Path(filtered_out)
    condensed_path = Path(condensed_out)

    header = read_header(summary_path)
    if _is_placeholder(header):
        logger.warning("Summary %s is empty; writing empty filtered outputs", summary_path)
        write_lines(filtered_path, EMPTY_SUMMARY_HEADER, ())
        write_lines(condensed_path, CONDENSED_HEADER, ())
        return FilterReport(0, 0, 0, filtered_path, condensed_path)

    schema = HeaderSchema.parse(header)
    _require(schema, FILTER_COLUMNS, summary_path)

    input_rows = 0
    kept_rows = 0
    with open_artifact(filtered_path, "wt") as filtered, open_artifact(condensed_path, "wt") as condensed:
        filtered.write(header + TAB + REFPANEL_COLUMN + "\n")
        condensed.write(CONDENSED_HEADER + "\n")
        for record in _iter_records(summary_path, chunksize):
            input_rows += 1
            if not _passes_all(record, schema, thresholds, info_threshold, summary_path):
                continue
            filtered.write(TAB.join(record.values()) + TAB + panel + "\n")
            condensed.write(TAB.join(record[name] for name in CONDENSED_SOURCE_COLUMNS) + "\n")
            kept_rows += 1

    logger.info(
        "filterByAll %s: kept %d of %d rows (panel %s)",
        summary_path.name,
        kept_rows,
        input_rows,
        panel,
    )
    return FilterReport(
        input_rows=input_rows,
        kept_rows=kept_rows,
        dropped_rows=input_rows - kept_rows,
        filtered_path=filtered_path,
        condensed_path=condensed_path,
    )


def _passes_all(
    record: dict[str, Any],
    schema: HeaderSchema,
    thresholds: Thresholds,
    info_threshold: float,
    path: Path,
) -> bool:
    if is_chromosome_x(record["chr"]):
        hwe_values = ["1.0", "1.0", "1.0"]
    else:
        _require(schema, HWE_COLUMNS, path)
        hwe_values = [record[name] for name in HWE_COLUMNS]

    checked = [
        record["cases_maf"],
        record["controls_maf"],
        record["info_all"],
        record["frequentist_add_pvalue"],
        *hwe_values,
    ]
    if NA in checked:
        return False

    cases_maf = parse_float(record["cases_maf"], "cases_maf", artifact=path)
    controls_maf = parse_float(record["controls_maf"], "controls_maf", artifact=path)
    info = parse_float(record["info_all"], "info_all", artifact=path)
    hwe_cohort, hwe_cases, hwe_controls = (
        parse_float(value, name, artifact=path) for value, name in zip(hwe_values, HWE_COLUMNS)
    )
    return (
        cases_maf >= thresholds.maf
        and controls_maf >= thresholds.maf
        and info >= info_threshold
        and hwe_cohort >= thresholds.hwe_cohort
        and hwe_cases >= thresholds.hwe_cases
        and hwe_controls >= thresholds.hwe_controls
    )


def filter_by_info(info_file: str | Path, out: str | Path, threshold: float) -> int:
    """Write the rsids of an imputation info file whose info reaches ``threshold``.

    The info file is single-space delimited with a header line; the rsid is
    the second field and info the seventh. Returns the number of rsids kept.
    """

    info_path = Path(info_file)
    kept = 0
    with open_artifact(info_path) as reader, open_artifact(out, "wt") as writer:
        reader.readline()
        for line in reader:
            fields = line.rstrip("\r\n").split(" ")
            if len(fields) <= INFO_FILE_INFO_INDEX:
                continue
            info = parse_float(fields[INFO_FILE_INFO_INDEX], "info", artifact=info_path)
            if info >= threshold:
                writer.write(fields[INFO_FILE_RSID_INDEX] + "\n")
                kept += 1
    logger.info("filterByInfo %s: %d variants at info >= %s", info_path.name, kept, threshold)
    return kept


def _top_hit_rows(path: Path, pva_threshold: float, chunksize: int) -> dict[str, str]:
    header = read_header(path)
    if _is_placeholder(header):
        return {}
    _require(HeaderSchema.parse(header), TOP_HITS_COLUMNS, path)

    hits: dict[str, str] = {}
    for record in _iter_records(path, chunksize):
        pvalue_text = record["frequentist_add_pvalue"]
        if pvalue_text == NA:
            continue
        pvalue = parse_float(pvalue_text, "frequentist_add_pvalue", artifact=path)
        if 0.0 < pvalue <= pva_threshold:
            key = f"{record['position']}_{record['rs_id_all']}"
            hits[key] = TAB.join(record[name] for name in TOP_HITS_COLUMNS)
    return hits


def generate_top_hits(
    results: str | Path,
    x_results: str | Path | None,
    out: str | Path,
    pva_threshold: float = PVA_THRESHOLD,
    *,
    chunksize: int = DEFAULT_CHUNKSIZE,
) -> int:
    """Write rows with ``0 < p <= pva_threshold`` as a top-hits artifact.

    Rows of each input are ordered by their ``position_rsid`` string; the X
    input follows the main one and is skipped when it is the same file.
    """

    results_path = Path(results)
    inputs = [results_path]
    if x_results is not None and Path(x_results).resolve() != results_path.resolve():
        inputs.append(Path(x_results))

    def rows() -> Iterator[str]:
        for path in inputs:
            hits = _top_hit_rows(path, pva_threshold, chunksize)
            for key in sorted(hits):
                yield hits[key]

    count = write_lines(out, TOP_HITS_HEADER, rows())
    logger.info("Top hits %s: %d rows at p <= %g", Path(out).name, count, pva_threshold)
    return count
