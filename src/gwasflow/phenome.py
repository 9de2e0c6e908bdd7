"""Phenotype-by-variant matrix built in four ordered phases."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from gwasflow.errors import InternalMergeFailure
from gwasflow.models import Artifact, ArtifactKind, is_chromosome_x
from gwasflow.naming import PathNamingService
from gwasflow.schema import (
    NA,
    PHENOME_KEY_HEADER,
    TAB,
    HeaderSchema,
    iter_body,
    read_header,
    write_lines,
)

logger = logging.getLogger("gwasflow.phenome")

KEY_WIDTH = 2

AUTOSOME_FIELDS: tuple[str, ...] = (
    "rs_id_all",
    "alleleA",
    "alleleB",
    "all_maf",
    "frequentist_add_pvalue",
    "frequentist_add_beta_1",
    "frequentist_add_se_1",
)
SEX_STRATIFIED_FIELDS: tuple[str, ...] = (
    "frequentist_add_beta_1:genotype/sex=1",
    "frequentist_add_beta_2:genotype/sex=2",
    "frequentist_add_se_1:genotype/sex=1",
    "frequentist_add_se_2:genotype/sex=2",
)
X_FIELDS: tuple[str, ...] = AUTOSOME_FIELDS[:5] + SEX_STRATIFIED_FIELDS
FILLOUT_COLUMNS: tuple[str, ...] = AUTOSOME_FIELDS + SEX_STRATIFIED_FIELDS
FILLOUT_WIDTH = len(FILLOUT_COLUMNS)


class PhenomePhase(str, Enum):
    INIT = "init"
    ADD = "add"
    FILLOUT = "fillout"
    FINALIZE = "finalize"


_ALLOWED_AFTER: dict[PhenomePhase | None, frozenset[PhenomePhase]] = {
    None: frozenset({PhenomePhase.INIT}),
    PhenomePhase.INIT: frozenset({PhenomePhase.ADD, PhenomePhase.FILLOUT}),
    PhenomePhase.ADD: frozenset({PhenomePhase.ADD, PhenomePhase.FILLOUT}),
    PhenomePhase.FILLOUT: frozenset({PhenomePhase.FILLOUT, PhenomePhase.FINALIZE}),
    PhenomePhase.FINALIZE: frozenset({PhenomePhase.FINALIZE}),
}


def matrix_key(chromosome: str, position: str) -> str:
    return f"{chromosome}_{position}"


def _key_rows(path: Path) -> dict[str, tuple[str, str]]:
    """Read ``(chr, position)`` of every row of a top-hits or matrix artifact."""

    header = read_header(path)
    if not header:
        return {}
    schema = HeaderSchema.parse(header)
    keys: dict[str, tuple[str, str]] = {}
    for line in iter_body(path):
        fields = line.split(TAB)
        chromosome = schema.value(fields, "chr")
        position = schema.value(fields, "position")
        keys[matrix_key(chromosome, position)] = (chromosome, position)
    return keys


def _read_matrix(path: Path) -> tuple[str, dict[str, list[str]]]:
    header = read_header(path)
    if not header:
        raise InternalMergeFailure("Phenotype matrix has no header", artifact=str(path))
    schema = HeaderSchema.parse(header)
    rows: dict[str, list[str]] = {}
    for line in iter_body(path):
        fields = line.split(TAB)
        rows[matrix_key(schema.value(fields, "chr"), schema.value(fields, "position"))] = fields
    return header, rows


def _write_keys(out: Path, keys: dict[str, tuple[str, str]]) -> int:
    return write_lines(out, PHENOME_KEY_HEADER, (TAB.join(keys[key]) for key in sorted(keys)))


def check_rectangular(path: str | Path) -> int:
    """Fail unless every row has as many fields as the header; returns the width."""

    path = Path(path)
    width = len(HeaderSchema.parse(read_header(path)))
    for number, line in enumerate(iter_body(path), start=2):
        count = len(line.split(TAB))
        if count != width:
            raise InternalMergeFailure(
                f"Row {number} has {count} fields, header has {width}", artifact=str(path)
            )
    return width


def init_pheno_matrix(top_hits: str | Path, out: str | Path) -> int:
    """Seed the matrix key set with the positions of one pair's top hits."""

    keys = _key_rows(Path(top_hits))
    count = _write_keys(Path(out), keys)
    logger.info("initPhenoMatrix %s: %d keys", Path(out).name, count)
    return count


def add_to_pheno_matrix(matrix: str | Path, top_hits: str | Path, out: str | Path) -> int:
    """Union the matrix key set with another pair's top-hit positions."""

    keys = _key_rows(Path(matrix))
    keys.update(_key_rows(Path(top_hits)))
    count = _write_keys(Path(out), keys)
    logger.info("addToPhenoMatrix %s: %d keys", Path(out).name, count)
    return count


def _fillout_values(path: Path, fields_wanted: tuple[str, ...], *, x: bool) -> dict[str, list[str]]:
    header = read_header(path)
    if not header:
        return {}
    schema = HeaderSchema.parse(header)
    values: dict[str, list[str]] = {}
    for line in iter_body(path):
        fields = line.split(TAB)
        key = matrix_key(schema.value(fields, "chr"), schema.value(fields, "position"))
        picked = [schema.value(fields, name) for name in fields_wanted]
        if x:
            values[key] = picked[:5] + [NA, NA] + picked[5:]
        else:
            values[key] = picked + [NA] * len(SEX_STRATIFIED_FIELDS)
    return values


def fillout_pheno_matrix(
    matrix: str | Path,
    filtered: str | Path | None,
    filtered_x: str | Path | None,
    out: str | Path,
    test_type: str,
    panel: str,
    *,
    include_x: bool,
) -> int:
    """Append one pair's eleven value columns to every key of the matrix.

    Autosome keys take their values from ``filtered``; chromosome X keys take
    them from ``filtered_x`` when the run includes X. Keys with no result get
    eleven ``NA``.
    """

    header, rows = _read_matrix(Path(matrix))
    autosome_values: dict[str, list[str]] = {}
    if filtered is not None:
        autosome_values = _fillout_values(Path(filtered), AUTOSOME_FIELDS, x=False)
    x_values: dict[str, list[str]] = {}
    if include_x and filtered_x is not None:
        x_values = _fillout_values(Path(filtered_x), X_FIELDS, x=True)

    prefix = f"{test_type}:{panel}:"
    out_header = TAB.join([header] + [prefix + name for name in FILLOUT_COLUMNS])
    missing = [NA] * FILLOUT_WIDTH

    def filled() -> Iterable[str]:
        for key in sorted(rows):
            chromosome = key.split("_", 1)[0]
            source = x_values if is_chromosome_x(chromosome) else autosome_values
            yield TAB.join(rows[key] + source.get(key, missing))

    count = write_lines(out, out_header, filled())
    check_rectangular(out)
    logger.info("filloutPhenoMatrix %s (%s:%s): %d rows", Path(out).name, test_type, panel, count)
    return count


def finalize_pheno_matrix(accumulator: str | Path, increment: str | Path, out: str | Path) -> int:
    """Concatenate an increment's value columns onto the accumulator.

    The accumulator's keys are authoritative: increment-only keys are dropped
    and accumulator keys missing from the increment get ``NA`` values.
    """

    acc_header, acc_rows = _read_matrix(Path(accumulator))
    inc_header, inc_rows = _read_matrix(Path(increment))
    inc_columns = inc_header.split(TAB)[KEY_WIDTH:]
    missing = [NA] * len(inc_columns)

    out_header = TAB.join([acc_header] + inc_columns)

    def joined() -> Iterable[str]:
        for key in sorted(acc_rows):
            extra = inc_rows[key][KEY_WIDTH:] if key in inc_rows else missing
            yield TAB.join(acc_rows[key] + extra)

    count = write_lines(out, out_header, joined())
    check_rectangular(out)
    logger.info("finalizePhenoMatrix %s: %d rows", Path(out).name, count)
    return count


class PhenomeBuilder:
    """Enforces INIT, ADD*, FILLOUT+, FINALIZE* ordering across phase calls."""

    def __init__(self, *, include_x: bool) -> None:
        self.include_x = include_x
        self.phase: PhenomePhase | None = None
        self.key_matrix: Path | None = None

    def _enter(self, phase: PhenomePhase) -> None:
        if phase not in _ALLOWED_AFTER[self.phase]:
            current = self.phase.value if self.phase else "start"
            raise InternalMergeFailure(f"Phenotype matrix phase {phase.value} cannot follow {current}")
        self.phase = phase

    def _require_key_matrix(self) -> Path:
        if self.key_matrix is None:
            raise InternalMergeFailure("Phenotype matrix has no key matrix; init must run first")
        return self.key_matrix

    def init(self, top_hits: str | Path, out: str | Path) -> int:
        self._enter(PhenomePhase.INIT)
        count = init_pheno_matrix(top_hits, out)
        self.key_matrix = Path(out)
        return count

    def add(self, top_hits: str | Path, out: str | Path) -> int:
        self._enter(PhenomePhase.ADD)
        count = add_to_pheno_matrix(self._require_key_matrix(), top_hits, out)
        self.key_matrix = Path(out)
        return count

    def fillout(
        self,
        filtered: str | Path | None,
        filtered_x: str | Path | None,
        out: str | Path,
        test_type: str,
        panel: str,
    ) -> int:
        self._enter(PhenomePhase.FILLOUT)
        return fillout_pheno_matrix(
            self._require_key_matrix(),
            filtered,
            filtered_x,
            out,
            test_type,
            panel,
            include_x=self.include_x,
        )

    def finalize(self, accumulator: str | Path, increment: str | Path, out: str | Path) -> int:
        self._enter(PhenomePhase.FINALIZE)
        return finalize_pheno_matrix(accumulator, increment, out)


@dataclass(frozen=True)
class PhenomeStep:
    """One planned phase call with its input and output artifacts."""

    phase: PhenomePhase
    inputs: tuple[Artifact, ...]
    output: Artifact
    test_type: str | None = None
    panel: str | None = None
    filtered: Artifact | None = None
    filtered_x: Artifact | None = None


@dataclass(frozen=True)
class PhenomePlan:
    steps: tuple[PhenomeStep, ...]
    final: Artifact

    def by_phase(self, phase: PhenomePhase) -> tuple[PhenomeStep, ...]:
        return tuple(step for step in self.steps if step.phase is phase)


def plan_phenome_analysis(
    pairs: Sequence[tuple[str, str]],
    naming: PathNamingService,
    *,
    include_x: bool,
    include_autosomes: bool = True,
) -> PhenomePlan:
    """Plan the matrix phases over (test type, panel) pairs in enumeration order.

    INIT seeds from pair 0, ADD folds in the remaining pairs, FILLOUT runs per
    pair against the final key set and FINALIZE left-folds the fillouts.
    """

    if not pairs:
        raise InternalMergeFailure("Phenotype matrix needs at least one (test type, panel) pair")

    steps: list[PhenomeStep] = []
    first_tt, first_panel = pairs[0]
    key_matrix = naming.phenome_artifact(PhenomePhase.INIT.value, 0)
    steps.append(
        PhenomeStep(
            phase=PhenomePhase.INIT,
            inputs=(naming.top_hits(first_tt, first_panel),),
            output=key_matrix,
            test_type=first_tt,
            panel=first_panel,
        )
    )

    for index, (test_type, panel) in enumerate(pairs[1:], start=1):
        output = naming.phenome_artifact(PhenomePhase.ADD.value, index)
        steps.append(
            PhenomeStep(
                phase=PhenomePhase.ADD,
                inputs=(key_matrix, naming.top_hits(test_type, panel)),
                output=output,
                test_type=test_type,
                panel=panel,
            )
        )
        key_matrix = output

    fillouts: list[Artifact] = []
    for index, (test_type, panel) in enumerate(pairs):
        filtered = naming.pair_result(test_type, panel, ArtifactKind.FILTERED) if include_autosomes else None
        filtered_x = naming.x_artifact(test_type, panel, ArtifactKind.FILTERED) if include_x else None
        inputs = (key_matrix,) + tuple(item for item in (filtered, filtered_x) if item is not None)
        output = naming.phenome_artifact(PhenomePhase.FILLOUT.value, index)
        steps.append(
            PhenomeStep(
                phase=PhenomePhase.FILLOUT,
                inputs=inputs,
                output=output,
                test_type=test_type,
                panel=panel,
                filtered=filtered,
                filtered_x=filtered_x,
            )
        )
        fillouts.append(output)

    accumulator = fillouts[0]
    for index, increment in enumerate(fillouts[1:], start=1):
        output = naming.phenome_artifact(PhenomePhase.FINALIZE.value, index)
        steps.append(
            PhenomeStep(phase=PhenomePhase.FINALIZE, inputs=(accumulator, increment), output=output)
        )
        accumulator = output

    return PhenomePlan(steps=tuple(steps), final=accumulator)
