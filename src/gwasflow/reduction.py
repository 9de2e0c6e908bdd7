"""Pairwise reduction of ordered artifacts and the merge/join operations."""

from __future__ import annotations

import logging
from collections.abc import Callable, Collection, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from gwasflow.dispatch import TaskCommand, TaskExecutor
from gwasflow.errors import GwasflowError, InternalMergeFailure
from gwasflow.models import Artifact, MergeNode
from gwasflow.schema import (
    EMPTY_SUMMARY_HEADER,
    REFPANEL_COLUMN,
    TAB,
    HeaderSchema,
    iter_body,
    open_artifact,
    read_header,
)
from gwasflow.stages import Stage

logger = logging.getLogger("gwasflow.reduction")

OutputNamer = Callable[[int], Artifact]


@dataclass(frozen=True)
class ReductionPlan:
    """Merge schedule for one ordered list of same-kind leaves."""

    leaves: tuple[Artifact, ...]
    nodes: tuple[MergeNode, ...]
    final: Artifact

    @property
    def merge_count(self) -> int:
        return len(self.nodes)


def plan_reduction(
    leaves: Sequence[Artifact],
    name_output: OutputNamer,
    *,
    final_output: Artifact | None = None,
) -> ReductionPlan:
    """Schedule merges so that exactly one artifact remains.

    The queue is seeded with the leaves; its two front artifacts are merged
    and the result is appended, so an odd leftover pairs with the next
    produced result. ``K`` leaves take ``K - 1`` merges; a single leaf is
    returned unchanged. ``final_output`` names the last merge output.
    """

    queue: tuple[Artifact, ...] = tuple(leaves)
    if not queue:
        raise InternalMergeFailure("Cannot reduce an empty list of artifacts")

    nodes: tuple[MergeNode, ...] = ()
    while len(queue) > 1:
        if len(queue) == 2 and final_output is not None:
            output = final_output
        else:
            output = name_output(len(nodes))
        node = MergeNode(left=queue[0], right=queue[1], output=output)
        queue = queue[2:] + (output,)
        nodes = nodes + (node,)

    return ReductionPlan(leaves=tuple(leaves), nodes=nodes, final=queue[0])


def _is_placeholder_header(header: str) -> bool:
    return header == "" or header == EMPTY_SUMMARY_HEADER


def _choose_header(path_a: Path, path_b: Path, same: bool) -> str:
    header_a = read_header(path_a)
    if same:
        return header_a
    header_b = read_header(path_b)
    if _is_placeholder_header(header_a):
        return header_b if not _is_placeholder_header(header_b) else header_a
    if not _is_placeholder_header(header_b) and header_a.rstrip() != header_b.rstrip():
        raise InternalMergeFailure(
            f"Cannot merge artifacts with different headers: {path_a} vs {path_b}",
            stage=Stage.MERGE_TWO_CHUNKS.value,
        )
    return header_a


def _same_path(path_a: Path, path_b: Path) -> bool:
    return Path(path_a).resolve() == Path(path_b).resolve()


def merge_two_chunks(path_a: str | Path, path_b: str | Path, path_out: str | Path) -> int:
    """Write header(A) + body(A) + body(B); B's body is skipped when B is A.

    Returns the number of body rows written.
    """

    path_a, path_b, path_out = Path(path_a), Path(path_b), Path(path_out)
    same = _same_path(path_a, path_b)
    header = _choose_header(path_a, path_b, same)

    rows = 0
    with open_artifact(path_out, "wt") as writer:
        writer.write(header + "\n")
        for line in iter_body(path_a):
            writer.write(line + "\n")
            rows += 1
        if not same:
            for line in iter_body(path_b):
                writer.write(line + "\n")
                rows += 1
    logger.debug("Merged %s + %s -> %s (%d rows)", path_a, path_b, path_out, rows)
    return rows


def joint_condensed_files(path_a: str | Path, path_b: str | Path, path_out: str | Path) -> int:
    """Join condensed per-chromosome files; same contract as ``merge_two_chunks``."""

    return merge_two_chunks(path_a, path_b, path_out)


def joint_filtered_by_all_files(
    path_a: str | Path,
    path_b: str | Path,
    path_out: str | Path,
    panel: str,
) -> int:
    """Join filtered files, guaranteeing a trailing ``refpanel`` column.

    Inputs whose header does not already end in ``refpanel`` get the panel
    name appended to each row.
    """

    path_a, path_b, path_out = Path(path_a), Path(path_b), Path(path_out)
    inputs = [path_a] if _same_path(path_a, path_b) else [path_a, path_b]

    # Placeholder inputs carry no rows; the first real header names the columns.
    tagged: list[tuple[Path, bool]] = []
    output_header = ""
    for path in inputs:
        header = read_header(path)
        if _is_placeholder_header(header):
            continue
        tag = HeaderSchema.parse(header).last != REFPANEL_COLUMN
        tagged.append((path, tag))
        if not output_header:
            output_header = header + TAB + REFPANEL_COLUMN if tag else header
    if not output_header:
        output_header = EMPTY_SUMMARY_HEADER

    rows = 0
    with open_artifact(path_out, "wt") as writer:
        writer.write(output_header + "\n")
        for path, tag in tagged:
            for line in iter_body(path):
                writer.write((line + TAB + panel if tag else line) + "\n")
                rows += 1
    return rows


@dataclass(frozen=True)
class ChromosomeJoinPlan:
    """Cross-chromosome join: autosomes reduced pairwise, X joined on its own."""

    autosomes: ReductionPlan | None
    x_node: MergeNode | None

    @property
    def final(self) -> Artifact:
        """Main joined artifact; the X artifact when no autosome is planned."""

        if self.autosomes is not None:
            return self.autosomes.final
        if self.x_node is not None:
            return self.x_node.output
        raise InternalMergeFailure("Chromosome join has no inputs")

    @property
    def x_final(self) -> Artifact | None:
        return self.x_node.output if self.x_node is not None else None


def plan_chromosome_join(
    autosome_artifacts: Sequence[Artifact],
    name_output: OutputNamer,
    *,
    final_output: Artifact | None = None,
    x_artifact: Artifact | None = None,
    x_output: Artifact | None = None,
) -> ChromosomeJoinPlan:
    """Plan a join where chromosome X is spliced in as a trailing special case.

    X is never interleaved with autosome merges; when given, it is self-joined
    into ``x_output``, the explicit self-merge shortcut.
    """

    autosomes = (
        plan_reduction(autosome_artifacts, name_output, final_output=final_output)
        if autosome_artifacts
        else None
    )
    x_node = None
    if x_artifact is not None:
        if x_output is None:
            raise InternalMergeFailure("An X output artifact is required to join chromosome X")
        x_node = MergeNode(left=x_artifact, right=x_artifact, output=x_output)
    if autosomes is None and x_node is None:
        raise InternalMergeFailure("Cannot join an empty list of chromosomes")
    return ChromosomeJoinPlan(autosomes=autosomes, x_node=x_node)


MergeFunction = Callable[[Path, Path, Path], int]


@dataclass
class ReductionResult:
    """Outcome of executing a reduction plan."""

    plan: ReductionPlan
    final: Artifact
    executed: int = 0
    skipped: int = 0
    errors: list[GwasflowError] = field(default_factory=list)
    failed: set[Path] = field(default_factory=set)

    @property
    def final_failed(self) -> bool:
        return self.final.path in self.failed


class ReductionRunner:
    """Execute reduction plans node by node through a task executor."""

    def __init__(self, executor: TaskExecutor) -> None:
        self.executor = executor

    def run(
        self,
        plan: ReductionPlan,
        *,
        stage: Stage = Stage.MERGE_TWO_CHUNKS,
        merge: MergeFunction = merge_two_chunks,
        label: str = "",
        blocked: Collection[Path] = (),
        strict: bool = True,
    ) -> ReductionResult:
        """Run every node; a failed node aborts only the nodes that consume it.

        Leaves listed in ``blocked`` count as already failed. With ``strict``
        a failed final output raises; otherwise the failures are returned on
        the result.
        """

        result = ReductionResult(plan=plan, final=plan.final)
        failed = result.failed
        failed.update(leaf.path for leaf in plan.leaves if leaf.path in blocked)

        for index, node in enumerate(plan.nodes):
            if node.left.path in failed or node.right.path in failed:
                failed.add(node.output.path)
                result.skipped += 1
                logger.warning(
                    "Skipping %s merge %d/%d for %s: an input failed",
                    stage.value,
                    index + 1,
                    plan.merge_count,
                    label or node.output.path.name,
                )
                continue

            task = TaskCommand(
                name=f"{stage.value}:{label}:{index}" if label else f"{stage.value}:{index}",
                stage=stage,
                expected_outputs=(node.output.path,),
                action=_bind_merge(merge, node),
                description=f"{stage.value} {node.left.path} {node.right.path} {node.output.path}",
            )
            try:
                self.executor.submit(task)
            except GwasflowError as exc:
                failed.add(node.output.path)
                result.errors.append(exc)
                logger.error("%s", exc)
                continue
            result.executed += 1

        if strict and result.final_failed:
            first = result.errors[0] if result.errors else InternalMergeFailure("an input failed")
            raise InternalMergeFailure(
                f"Reduction {label or plan.final.path.name} failed: {first.message}",
                stage=stage.value,
            ) from first
        return result

    def run_join(
        self,
        plan: ChromosomeJoinPlan,
        *,
        stage: Stage,
        merge: MergeFunction,
        label: str = "",
    ) -> Artifact:
        """Execute a chromosome join; returns the main joined artifact."""

        if plan.autosomes is not None:
            self.run(plan.autosomes, stage=stage, merge=merge, label=label)
        if plan.x_node is not None:
            node = plan.x_node
            self.executor.submit(
                TaskCommand(
                    name=f"{stage.value}:{label}:X" if label else f"{stage.value}:X",
                    stage=stage,
                    expected_outputs=(node.output.path,),
                    action=_bind_merge(merge, node),
                    description=f"{stage.value} {node.left.path} {node.right.path} {node.output.path}",
                )
            )
        return plan.final


def _bind_merge(merge: MergeFunction, node: MergeNode) -> Callable[[], int]:
    def action() -> int:
        return merge(node.left.path, node.right.path, node.output.path)

    return action


def join_filtered_merge(panel: str) -> MergeFunction:
    """Merge function for ``ReductionRunner`` that joins filtered files."""

    def merge(path_a: Path, path_b: Path, path_out: Path) -> int:
        return joint_filtered_by_all_files(path_a, path_b, path_out, panel)

    return merge
