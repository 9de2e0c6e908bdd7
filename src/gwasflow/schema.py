"""Header-driven schema resolution and line-oriented artifact I/O."""

from __future__ import annotations

import gzip
import shutil
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO

from gwasflow.errors import InternalMergeFailure

TAB = "\t"
NA = "NA"

EMPTY_SUMMARY_HEADER = "chr\tposition\trs_id_all\tinfo_all\tcertainty_all\t"
CONDENSED_HEADER = "chr\tposition\talleleA\talleleB\tpvalue\tinfo_all"
TOP_HITS_HEADER = "chr\tposition\trsid\tMAF\ta1\ta2\tpval_add"
PHENOME_KEY_HEADER = "chr\tposition"
REFPANEL_COLUMN = "refpanel"


@dataclass(frozen=True)
class HeaderSchema:
    """Name to column-index map parsed once from an artifact header."""

    columns: tuple[str, ...]
    delimiter: str = TAB
    _index: dict[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Later duplicates win, matching a plain dict build over the header.
        object.__setattr__(
            self, "_index", {name: position for position, name in enumerate(self.columns)}
        )

    @classmethod
    def parse(cls, header_line: str, delimiter: str = TAB) -> "HeaderSchema":
        return cls(columns=tuple(header_line.rstrip("\r\n").split(delimiter)), delimiter=delimiter)

    def __len__(self) -> int:
        return len(self.columns)

    def has(self, name: str) -> bool:
        return name in self._index

    def index(self, name: str) -> int:
        """Return the column index of ``name`` or fail as malformed input."""

        try:
            return self._index[name]
        except KeyError:
            raise InternalMergeFailure(f"Missing column '{name}' in header") from None

    def value(self, fields: list[str], name: str) -> str:
        position = self.index(name)
        if position >= len(fields):
            raise InternalMergeFailure(
                f"Row has {len(fields)} fields, column '{name}' expects index {position}"
            )
        return fields[position]

    @property
    def last(self) -> str:
        return self.columns[-1] if self.columns else ""


def is_gzip_path(path: str | Path) -> bool:
    return str(path).endswith(".gz")


def open_artifact(path: str | Path, mode: str = "rt") -> IO[str]:
    """Open a plain or gzip text artifact as UTF-8."""

    target = Path(path)
    if "w" in mode or "a" in mode:
        target.parent.mkdir(parents=True, exist_ok=True)
    if is_gzip_path(target):
        return gzip.open(target, mode, encoding="utf-8", newline="")
    return target.open(mode.replace("t", ""), encoding="utf-8", newline="")


def read_header(path: str | Path) -> str:
    """Return the first line of an artifact, or an empty string."""

    with open_artifact(path) as stream:
        return stream.readline().rstrip("\r\n")


def iter_body(path: str | Path) -> Iterator[str]:
    """Yield body lines (header skipped) without trailing newlines."""

    with open_artifact(path) as stream:
        stream.readline()
        for line in stream:
            stripped = line.rstrip("\r\n")
            if stripped:
                yield stripped


def write_lines(path: str | Path, header: str, rows: Iterable[str]) -> int:
    """Write a header-bearing artifact and return the number of body rows."""

    count = 0
    with open_artifact(path, "wt") as stream:
        stream.write(header + "\n")
        for row in rows:
            stream.write(row + "\n")
            count += 1
    return count


def touch_empty(path: str | Path) -> None:
    """Create an empty placeholder artifact (a valid empty gzip for ``.gz``)."""

    with open_artifact(path, "wt"):
        pass


def decompress_to(source: str | Path, scratch: str | Path) -> Path:
    """Copy an artifact's text into a plain scratch file."""

    scratch_path = Path(scratch)
    scratch_path.parent.mkdir(parents=True, exist_ok=True)
    with open_artifact(source) as reader, scratch_path.open("w", encoding="utf-8", newline="") as writer:
        shutil.copyfileobj(reader, writer)
    return scratch_path


def parse_float(value: str, column: str, *, artifact: str | Path | None = None) -> float:
    """Convert a field to float, failing as malformed input."""

    try:
        return float(value)
    except (TypeError, ValueError):
        raise InternalMergeFailure(
            f"Unparseable number {value!r} in column '{column}'",
            artifact=str(artifact) if artifact is not None else None,
        ) from None
