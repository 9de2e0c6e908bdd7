"""Cross-panel reconciliation of per-window association results."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from gwasflow.models import VariantKey, complement_allele
from gwasflow.schema import (
    EMPTY_SUMMARY_HEADER,
    TAB,
    HeaderSchema,
    decompress_to,
    iter_body,
    parse_float,
    read_header,
    write_lines,
)

logger = logging.getLogger("gwasflow.reconcile")

__all__ = [
    "MatchKind",
    "PanelRows",
    "ReconcileReport",
    "combine_panels_complex",
    "complement_allele",
    "read_panel_rows",
]

KEY_COLUMNS = ("position", "alleleA", "alleleB", "chr")
INFO_COLUMN = "info_all"
SCRATCH_SUFFIX = ".temp"


class MatchKind(str, Enum):
    """How a row of panel A found its counterpart in panel B."""

    EXACT = "exact"
    REVERSE = "reverse"
    COMPLEMENT = "complement"
    COMPLEMENT_REVERSE = "complement_reverse"


_MATCH_ORDER = (
    MatchKind.EXACT,
    MatchKind.REVERSE,
    MatchKind.COMPLEMENT,
    MatchKind.COMPLEMENT_REVERSE,
)


@dataclass
class ReconcileReport:
    """Counts describing one reconciliation."""

    output: Path
    header: str
    kept_a: int = 0
    kept_b: int = 0
    unmatched_a: int = 0
    leftover_b: int = 0
    matches: dict[MatchKind, int] = field(default_factory=lambda: {kind: 0 for kind in MatchKind})

    @property
    def total(self) -> int:
        return self.kept_a + self.kept_b + self.unmatched_a + self.leftover_b

    def as_dict(self) -> dict[str, object]:
        return {
            "output": str(self.output),
            "kept_a": self.kept_a,
            "kept_b": self.kept_b,
            "unmatched_a": self.unmatched_a,
            "leftover_b": self.leftover_b,
            "matches": {kind.value: count for kind, count in self.matches.items()},
            "total": self.total,
        }


@dataclass
class PanelRows:
    """Rows of one panel artifact indexed by variant key string."""

    header: str
    schema: HeaderSchema | None
    rows: dict[str, str]

    @property
    def is_empty(self) -> bool:
        return self.schema is None


def _variant_key(schema: HeaderSchema, fields: list[str]) -> VariantKey:
    position, allele_a, allele_b, chromosome = (schema.value(fields, name) for name in KEY_COLUMNS)
    return VariantKey(position=position, allele_a=allele_a, allele_b=allele_b, chromosome=chromosome)


def read_panel_rows(path: str | Path) -> PanelRows:
    """Index a plain-text panel artifact by ``position_alleleA_alleleB_chr``.

    An empty file or one carrying the canonical empty header contributes no
    rows. When a key repeats, the last row wins.
    """

    header = read_header(path)
    if header == "" or header == EMPTY_SUMMARY_HEADER:
        return PanelRows(header=header, schema=None, rows={})

    schema = HeaderSchema.parse(header)
    for name in KEY_COLUMNS + (INFO_COLUMN,):
        schema.index(name)

    rows: dict[str, str] = {}
    for line in iter_body(path):
        fields = line.split(TAB)
        rows[_variant_key(schema, fields).identity()] = line
    return PanelRows(header=header, schema=schema, rows=rows)


def _info(schema: HeaderSchema, line: str, artifact: Path) -> float:
    return parse_float(schema.value(line.split(TAB), INFO_COLUMN), INFO_COLUMN, artifact=artifact)


def combine_panels_complex(
    path_a: str | Path,
    path_b: str | Path,
    path_out: str | Path,
    scratch_dir: str | Path | None = None,
) -> ReconcileReport:
    """Merge two panels' results for one window, keeping the better-imputed row.

    Every row of A is matched against B's index by exact, reverse, complement
    and complement+reverse key, in that order. On a match the row with the
    higher ``info_all`` is kept (ties keep A) and the B entry is consumed.
    The kept row is filed under A's key, so a B winner can never collide
    with another A row. Unmatched rows of both inputs are kept. Output rows
    are ordered by key string.
    """

    path_a, path_b, path_out = Path(path_a), Path(path_b), Path(path_out)
    scratch = Path(scratch_dir) if scratch_dir is not None else path_out.parent
    scratch_a = scratch / f"{path_out.name}.a{SCRATCH_SUFFIX}"
    scratch_b = scratch / f"{path_out.name}.b{SCRATCH_SUFFIX}"

    try:
        panel_a = _load_panel(path_a, scratch_a)
        panel_b = _load_panel(path_b, scratch_b)

        header = EMPTY_SUMMARY_HEADER
        for panel in (panel_a, panel_b):
            if not panel.is_empty:
                header = panel.header

        report = ReconcileReport(output=path_out, header=header)
        combined: dict[str, str] = {}
        remaining = dict(panel_b.rows)

        if panel_a.schema is not None:
            _match_rows(
                panel_a.schema, panel_a.rows, panel_b.schema, remaining, combined, report, path_a, path_b
            )

        # Leftover B keys never equal an A key: such a row would have matched exactly.
        for key_b, line_b in remaining.items():
            combined[key_b] = line_b
            report.leftover_b += 1

        write_lines(path_out, header, (combined[key] for key in sorted(combined)))
    finally:
        for temp in (scratch_a, scratch_b):
            temp.unlink(missing_ok=True)

    logger.info(
        "Combined %s + %s -> %s (%d rows, %d matched)",
        path_a.name,
        path_b.name,
        path_out,
        len(combined),
        sum(report.matches.values()),
    )
    return report


def _match_rows(
    schema_a: HeaderSchema,
    rows_a: dict[str, str],
    schema_b: HeaderSchema | None,
    remaining: dict[str, str],
    combined: dict[str, str],
    report: ReconcileReport,
    path_a: Path,
    path_b: Path,
) -> None:
    for key_a in sorted(rows_a):
        line_a = rows_a[key_a]
        candidates = _variant_key(schema_a, line_a.split(TAB)).candidates()
        found = next(
            ((kind, key_b) for kind, key_b in zip(_MATCH_ORDER, candidates) if key_b in remaining),
            None,
        )
        if found is None or schema_b is None:
            combined[key_a] = line_a
            report.unmatched_a += 1
            continue

        kind, key_b = found
        line_b = remaining.pop(key_b)
        report.matches[kind] += 1
        if _info(schema_a, line_a, path_a) >= _info(schema_b, line_b, path_b):
            combined[key_a] = line_a
            report.kept_a += 1
        else:
            combined[key_a] = line_b
            report.kept_b += 1


def _load_panel(path: Path, scratch: Path) -> PanelRows:
    if not path.exists():
        logger.warning("Panel artifact %s does not exist; treating it as empty", path)
        return PanelRows(header="", schema=None, rows={})
    return read_panel_rows(decompress_to(path, scratch))
