"""Immutable data models shared by the planner, reducers and matrix builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

CHROMOSOME_X = 23

_X_LABELS = frozenset({"23", "X", "x", "chrX", "chr23"})


class ArtifactKind(str, Enum):
    """Kinds of persisted intermediate results."""

    FILTERED = "filtered"
    CONDENSED = "condensed"
    SUMMARY = "summary"
    TOP_HITS = "topHits"
    PHENOME_MATRIX = "phenomeMatrix"


def chromosome_label(chromosome: int) -> str:
    """Render a chromosome number the way artifact files carry it."""

    return str(chromosome)


def is_chromosome_x(value: int | str) -> bool:
    """Return True for chromosome 23 in either its numeric or ``X`` form."""

    if isinstance(value, int):
        return value == CHROMOSOME_X
    return value.strip() in _X_LABELS


@dataclass(frozen=True)
class GenomicWindow:
    """Contiguous position range analyzed as one unit."""

    chromosome: int
    start: int
    end: int
    chunk_size: int

    @property
    def label(self) -> str:
        return f"{self.start}-{self.end}"

    @property
    def is_x(self) -> bool:
        return self.chromosome == CHROMOSOME_X


@dataclass(frozen=True)
class WorkUnit:
    """One (test type, panel, chromosome, window) coordinate."""

    test_type: str
    panel: str
    chromosome: int
    window: GenomicWindow


@dataclass(frozen=True)
class ArtifactCoordinates:
    """Producing coordinates of an artifact; every field is optional."""

    test_type: str | None = None
    panel: str | None = None
    chromosome: int | None = None
    window: GenomicWindow | None = None
    index: int | None = None


@dataclass(frozen=True)
class Artifact:
    """Opaque handle to a persisted intermediate result.

    Identity is the path: two handles that point at the same file are the same
    artifact regardless of how they were produced.
    """

    path: Path
    kind: ArtifactKind
    coordinates: ArtifactCoordinates = field(default_factory=ArtifactCoordinates, compare=False)

    def exists(self) -> bool:
        return self.path.exists()

    def same_as(self, other: "Artifact") -> bool:
        return self.path.resolve() == other.path.resolve()

    def __str__(self) -> str:
        return str(self.path)


@dataclass(frozen=True)
class MergeNode:
    """Internal reduction-tree node: two inputs merged into one output."""

    left: Artifact
    right: Artifact
    output: Artifact

    @property
    def is_self_merge(self) -> bool:
        return self.left.same_as(self.right)


@dataclass(frozen=True)
class VariantKey:
    """Variant identity with the four strand-ambiguous string forms."""

    position: str
    allele_a: str
    allele_b: str
    chromosome: str

    def identity(self) -> str:
        return _join_key(self.position, self.allele_a, self.allele_b, self.chromosome)

    def reverse(self) -> str:
        return _join_key(self.position, self.allele_b, self.allele_a, self.chromosome)

    def complement(self) -> str:
        return _join_key(
            self.position,
            complement_allele(self.allele_a),
            complement_allele(self.allele_b),
            self.chromosome,
        )

    def complement_reverse(self) -> str:
        return _join_key(
            self.position,
            complement_allele(self.allele_b),
            complement_allele(self.allele_a),
            self.chromosome,
        )

    def candidates(self) -> tuple[str, str, str, str]:
        """Return key forms in matching priority order."""

        return (self.identity(), self.reverse(), self.complement(), self.complement_reverse())


_COMPLEMENT = {"A": "T", "T": "A", "C": "G", "G": "C"}
COMPLEMENT_SENTINEL = "X"


def complement_allele(allele: str) -> str:
    """Complement every base of an allele; non-ACGT bases map to ``X``."""

    return "".join(_COMPLEMENT.get(base, COMPLEMENT_SENTINEL) for base in allele)


def _join_key(position: str, allele_a: str, allele_b: str, chromosome: str) -> str:
    return f"{position}_{allele_a}_{allele_b}_{chromosome}"
