"""Workflow runner: plan one configured run and drive it through an executor."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Any

from gwasflow.config import RunConfig
from gwasflow.dispatch import LocalExecutor, TaskCommand, TaskExecutor
from gwasflow.errors import ConfigurationError, GwasflowError, InternalMergeFailure, WorkflowFailure
from gwasflow.filters import filter_by_all, filter_by_info, generate_top_hits
from gwasflow.models import Artifact, ArtifactKind, GenomicWindow, WorkUnit
from gwasflow.naming import DirectoryNaming, PathNamingService
from gwasflow.phenome import PhenomeBuilder, PhenomePhase, PhenomeStep, plan_phenome_analysis
from gwasflow.planner import ChromosomeBounds, ChunkPlanner
from gwasflow.reconcile import combine_panels_complex
from gwasflow.reduction import (
    MergeFunction,
    ReductionPlan,
    ReductionRunner,
    join_filtered_merge,
    joint_condensed_files,
    merge_two_chunks,
    plan_chromosome_join,
    plan_reduction,
)
from gwasflow.stages import EXTERNAL_STAGES, ImputationTool, Stage
from gwasflow.storage import MatrixStorage

logger = logging.getLogger("gwasflow.workflow")

CHROMOSOME_STAGES: tuple[Stage, ...] = (
    Stage.CONVERT_FROM_BED_TO_BED,
    Stage.CREATE_RSID_LIST,
    Stage.PHASING_BED,
    Stage.PHASING,
)
PANEL_CHROMOSOME_STAGES: tuple[Stage, ...] = (
    Stage.CREATE_LIST_OF_EXCLUDED_SNPS,
    Stage.FILTER_HAPLOTYPES,
)

STAGE_SUFFIXES: Mapping[Stage, str] = {
    Stage.CONVERT_FROM_BED_TO_BED: ".bed",
    Stage.CREATE_RSID_LIST: ".txt",
    Stage.PHASING_BED: ".haps",
    Stage.PHASING: ".haps",
    Stage.CREATE_LIST_OF_EXCLUDED_SNPS: ".txt",
    Stage.FILTER_HAPLOTYPES: ".vcf.gz",
    Stage.IMPUTE_WITH_IMPUTE: ".impute",
    Stage.IMPUTE_WITH_MINIMAC: ".dose.vcf.gz",
    Stage.FILTER_BY_INFO: ".rsids.txt",
    Stage.QCTOOL_S: ".gen.gz",
    Stage.SNPTEST: ".out",
}
INFO_SUFFIX = ".info"

PHENOME_STAGES: Mapping[PhenomePhase, Stage] = {
    PhenomePhase.INIT: Stage.INIT_PHENO_MATRIX,
    PhenomePhase.ADD: Stage.ADD_TO_PHENO_MATRIX,
    PhenomePhase.FILLOUT: Stage.FILLOUT_PHENO_MATRIX,
    PhenomePhase.FINALIZE: Stage.FINALIZE_PHENO_MATRIX,
}


def render_command(template: Sequence[str], context: Mapping[str, Any]) -> tuple[str, ...]:
    """Fill ``{placeholder}`` tokens, then expand ``~`` and ``$VARS``."""

    rendered: list[str] = []
    for token in template:
        try:
            value = token.format_map(context)
        except KeyError as exc:
            raise ConfigurationError(
                f"Unknown placeholder {exc} in command template token {token!r}. "
                f"Available: {', '.join(sorted(context))}"
            ) from None
        rendered.append(os.path.expandvars(os.path.expanduser(value)))
    return tuple(rendered)


@dataclass
class PairResult:
    """Final artifacts of one (test type, panel) pair."""

    test_type: str
    panel: str
    filtered: Artifact | None = None
    filtered_x: Artifact | None = None
    condensed: Artifact | None = None
    top_hits: Artifact | None = None
    merges: int = 0
    intermediates: list[Path] = field(default_factory=list)


@dataclass
class CombineResult:
    """Final artifacts of the cross-panel combination of one test type."""

    test_type: str
    reconciled_windows: int = 0
    filtered: Artifact | None = None
    filtered_x: Artifact | None = None
    condensed: Artifact | None = None
    top_hits: Artifact | None = None
    merges: int = 0
    intermediates: list[Path] = field(default_factory=list)


@dataclass
class WorkflowReport:
    """Execution summary for a workflow run."""

    run_depth: str
    work_units: int = 0
    tasks_submitted: int = 0
    merges: int = 0
    reconciled_windows: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    final_artifacts: dict[str, str] = field(default_factory=dict)
    failed_artifacts: list[str] = field(default_factory=list)
    final_status: str = "uncompressed"
    removed_files: int = 0
    manifest_path: Path | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_depth": self.run_depth,
            "work_units": self.work_units,
            "tasks_submitted": self.tasks_submitted,
            "merges": self.merges,
            "reconciled_windows": self.reconciled_windows,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "final_artifacts": dict(self.final_artifacts),
            "failed_artifacts": list(self.failed_artifacts),
            "final_status": self.final_status,
            "removed_files": self.removed_files,
            "manifest_path": str(self.manifest_path) if self.manifest_path else None,
        }


class WorkflowRunner:
    """Run chromosome, panel and pair stages, reductions, combination and the matrix."""

    def __init__(
        self,
        config: RunConfig,
        *,
        bounds: ChromosomeBounds | None = None,
        naming: PathNamingService | None = None,
        executor: TaskExecutor | None = None,
        storage: MatrixStorage | None = None,
    ) -> None:
        self.config = config
        self.bounds = bounds if bounds is not None else ChromosomeBounds.load(config.chromosome_bounds)
        self.naming = naming if naming is not None else DirectoryNaming(config.output_dir)
        self.executor = (
            executor
            if executor is not None
            else LocalExecutor(placeholder_on_failure=config.placeholder_on_failure)
        )
        self.storage = storage
        self.activation = config.stage_activation()
        self.planner = ChunkPlanner(config, self.bounds)
        self.reducer = ReductionRunner(self.executor)
        self._failed: set[Path] = set()
        self._errors: list[GwasflowError] = []
        self._failure_lock = threading.Lock()

    def _record_failure(self, exc: GwasflowError, outputs: Iterable[Path]) -> None:
        with self._failure_lock:
            self._errors.append(exc)
            self._failed.update(outputs)
        logger.error("%s; consumers of its outputs are skipped", exc)

    def _mark_failed(self, outputs: Iterable[Path]) -> None:
        with self._failure_lock:
            self._failed.update(outputs)

    def _failed_inputs(self, inputs: Iterable[Path]) -> list[Path]:
        with self._failure_lock:
            return [path for path in inputs if path in self._failed]

    def _skip_if_blocked(self, name: str, inputs: Sequence[Path], outputs: Sequence[Path]) -> bool:
        """Mark ``outputs`` failed when any input did; returns whether the task is skipped."""

        blocked = self._failed_inputs(inputs)
        if not blocked:
            return False
        self._mark_failed(outputs)
        logger.warning("Skipping %s: input %s failed", name, blocked[0])
        return True

    def _template_for(self, stage: Stage) -> tuple[str, ...] | None:
        template = self.config.tool_commands.get(stage.value)
        if template is None and stage is Stage.COMB_GENERATE_MANHATTAN_TOP:
            template = self.config.tool_commands.get(Stage.GENERATE_QQ_MANHATTAN_PLOTS.value)
        return tuple(template) if template else None

    def _base_context(self) -> dict[str, Any]:
        thresholds = self.config.thresholds
        return {
            "output_dir": str(self.config.output_dir),
            "imputation_tool": self.config.imputation_tool.value,
            "phasing_tool": self.config.phasing_tool,
            "exclude_cgat_snps": "YES" if self.config.exclude_cgat_snps else "NO",
            "maf_threshold": thresholds.maf,
            "info_threshold": self.config.info_threshold,
            "pva_threshold": thresholds.pva,
            "manhattans": ",".join(self.config.manhattans),
        }

    def _unit_context(self, unit: WorkUnit) -> dict[str, Any]:
        context = self._base_context()
        context.update(
            {
                "chromosome": unit.chromosome,
                "start": unit.window.start,
                "end": unit.window.end,
                "chunk_size": unit.window.chunk_size,
                "panel": unit.panel,
                "test_type": unit.test_type,
            }
        )
        return context

    def _log_plan(self) -> None:
        active = self.activation.active_stages()
        logger.info(
            "Run depth %s (%s): %d active stages, %d work units",
            self.activation.selector,
            self.config.imputation_tool.value,
            len(active),
            self.planner.count_units(),
        )
        missing = [
            stage.value
            for stage in active
            if stage in EXTERNAL_STAGES and self._template_for(stage) is None
        ]
        if missing:
            logger.info("Active stages without a command template are skipped: %s", ", ".join(missing))

    def _submit_external(
        self,
        stage: Stage,
        name: str,
        context: Mapping[str, Any],
        outputs: Sequence[Path],
        inputs: Sequence[Path] = (),
    ) -> bool:
        """Submit an external stage when it is active and has a command template."""

        if not self.activation.is_active(stage):
            return False
        template = self._template_for(stage)
        if template is None:
            logger.debug("No command template for %s; skipping %s", stage.value, name)
            return False
        if self._skip_if_blocked(name, inputs, outputs):
            return False
        argv = render_command(template, context)
        self.executor.submit(
            TaskCommand(name=name, stage=stage, expected_outputs=tuple(outputs), argv=argv)
        )
        return True

    def _submit_internal(
        self,
        stage: Stage,
        name: str,
        action: Callable[[], Any],
        outputs: Sequence[Path],
        description: str,
        inputs: Sequence[Path] = (),
    ) -> bool:
        """Run an in-process task unless an input failed.

        A merge failure is recorded against ``outputs`` so that only the
        tasks consuming them are skipped.
        """

        if self._skip_if_blocked(name, inputs, outputs):
            return False
        try:
            self.executor.submit(
                TaskCommand(
                    name=name,
                    stage=stage,
                    expected_outputs=tuple(outputs),
                    action=action,
                    description=description,
                )
            )
        except InternalMergeFailure as exc:
            self._record_failure(exc, outputs)
            return False
        return True

    def _materialize(
        self, source: Artifact, target: Artifact, stage: Stage, merge: MergeFunction, label: str
    ) -> None:
        """Write a single-input result under its final name with a self-merge."""

        self._submit_internal(
            stage,
            f"{stage.value}:{label}:self",
            partial(merge, source.path, source.path, target.path),
            (target.path,),
            f"{stage.value} {source.path} {source.path} {target.path}",
            inputs=(source.path,),
        )

    def _run_reduction(
        self, plan: ReductionPlan, *, stage: Stage, merge: MergeFunction, label: str
    ) -> int:
        """Run ``plan`` past failed leaves; returns the number of merges executed."""

        with self._failure_lock:
            blocked = set(self._failed)
        result = self.reducer.run(
            plan, stage=stage, merge=merge, label=label, blocked=blocked, strict=False
        )
        with self._failure_lock:
            self._errors.extend(result.errors)
            self._failed.update(result.failed)
        return result.executed

    def _reduce(
        self,
        leaves: Sequence[Artifact],
        target: Artifact | None,
        name_output: Callable[[int], Artifact],
        *,
        stage: Stage,
        merge: MergeFunction,
        label: str,
        intermediates: list[Path],
    ) -> tuple[Artifact, int]:
        """Reduce ``leaves`` pairwise; a single leaf is copied to ``target``."""

        plan = plan_reduction(leaves, name_output, final_output=target)
        executed = self._run_reduction(plan, stage=stage, merge=merge, label=label)
        intermediates.extend(_intermediate_paths(plan))
        if target is not None and plan.final != target:
            self._materialize(plan.final, target, stage, merge, label)
            return target, executed
        return plan.final, executed

    def _run_chromosome(self, chromosome: int) -> tuple[int, Path | None]:
        previous: Path | None = None
        context = self._base_context()
        context["chromosome"] = chromosome
        for stage in CHROMOSOME_STAGES:
            output = self.naming.chromosome_stage_output(stage.value, chromosome, STAGE_SUFFIXES[stage])
            context.update(input=previous or "", output=output)
            if self._submit_external(stage, f"{stage.value}:chr{chromosome}", context, (output,)):
                previous = output
        return chromosome, previous

    def _run_panel_chromosome(
        self, panel: str, chromosome: int, upstream: Path | None
    ) -> dict[tuple[str, GenomicWindow], Path | None]:
        previous = upstream
        context = self._base_context()
        context.update(chromosome=chromosome, panel=panel)
        for stage in PANEL_CHROMOSOME_STAGES:
            output = self.naming.chromosome_stage_output(
                stage.value, chromosome, STAGE_SUFFIXES[stage], panel=panel
            )
            context.update(input=previous or "", output=output)
            if self._submit_external(stage, f"{stage.value}:{panel}:chr{chromosome}", context, (output,)):
                previous = output

        impute_stage = (
            Stage.IMPUTE_WITH_MINIMAC
            if self.config.imputation_tool is ImputationTool.MINIMAC
            else Stage.IMPUTE_WITH_IMPUTE
        )
        window_outputs: dict[tuple[str, GenomicWindow], Path | None] = {}
        for unit in self.planner.units_for("", panel, chromosome):
            window_previous = previous
            label = f"{panel}:chr{chromosome}:{unit.window.label}"
            context = self._unit_context(unit)

            imputed = self.naming.stage_output(impute_stage.value, unit, STAGE_SUFFIXES[impute_stage])
            info = self.naming.stage_output(impute_stage.value, unit, INFO_SUFFIX)
            context.update(input=window_previous or "", output=imputed, info=info)
            imputed_now = self._submit_external(
                impute_stage, f"{impute_stage.value}:{label}", context, (imputed, info)
            )
            if imputed_now:
                window_previous = imputed

            rsids = self.naming.stage_output(
                Stage.FILTER_BY_INFO.value, unit, STAGE_SUFFIXES[Stage.FILTER_BY_INFO]
            )
            if self.activation.is_active(Stage.FILTER_BY_INFO) and (imputed_now or info.exists()):
                self._submit_internal(
                    Stage.FILTER_BY_INFO,
                    f"{Stage.FILTER_BY_INFO.value}:{label}",
                    partial(filter_by_info, info, rsids, self.config.info_threshold),
                    (rsids,),
                    f"{Stage.FILTER_BY_INFO.value} {info} {rsids} {self.config.info_threshold}",
                    inputs=(info,),
                )

            qctool = self.naming.stage_output(Stage.QCTOOL_S.value, unit, STAGE_SUFFIXES[Stage.QCTOOL_S])
            context.update(input=window_previous or "", output=qctool, rsids=rsids)
            if self._submit_external(Stage.QCTOOL_S, f"{Stage.QCTOOL_S.value}:{label}", context, (qctool,)):
                window_previous = qctool
            window_outputs[(panel, unit.window)] = window_previous
        return window_outputs

    def _run_pair(
        self,
        test_type_name: str,
        panel: str,
        upstream: Mapping[tuple[str, GenomicWindow], Path | None],
    ) -> PairResult:
        test_type = next(item for item in self.config.test_types if item.name == test_type_name)
        result = PairResult(test_type=test_type_name, panel=panel)
        autosomes, x_chromosome = self.planner.chromosome_split()

        per_chromosome: dict[ArtifactKind, dict[int, Artifact]] = {
            ArtifactKind.FILTERED: {},
            ArtifactKind.CONDENSED: {},
        }
        for chromosome in self.config.chromosomes:
            leaves: dict[ArtifactKind, list[Artifact]] = {kind: [] for kind in per_chromosome}
            for unit in self.planner.units_for(test_type_name, panel, chromosome):
                self._run_association_window(
                    unit, test_type.response_variable, test_type.covariables_arg, upstream
                )
                for kind in leaves:
                    leaves[kind].append(self.naming.window_artifact(unit, kind))

            for kind, kind_leaves in leaves.items():
                target = self.naming.chromosome_artifact(test_type_name, panel, chromosome, kind)
                if self.activation.is_active(Stage.MERGE_TWO_CHUNKS):
                    target, merges = self._reduce(
                        kind_leaves,
                        target,
                        partial(self.naming.reduced_artifact, test_type_name, panel, chromosome, kind),
                        stage=Stage.MERGE_TWO_CHUNKS,
                        merge=merge_two_chunks,
                        label=f"{test_type_name}:{panel}:chr{chromosome}:{kind.value}",
                        intermediates=result.intermediates,
                    )
                    result.merges += merges
                per_chromosome[kind][chromosome] = target

        condensed = per_chromosome[ArtifactKind.CONDENSED]
        self._join_condensed(result, [condensed[chromosome] for chromosome in self.config.chromosomes])
        self._join_filtered(
            result,
            [per_chromosome[ArtifactKind.FILTERED][c] for c in autosomes],
            per_chromosome[ArtifactKind.FILTERED].get(x_chromosome) if x_chromosome is not None else None,
        )

        top_hits = self.naming.top_hits(test_type_name, panel)
        if self.activation.is_active(Stage.GENERATE_TOP_HITS) and result.filtered is not None:
            self._submit_top_hits(
                Stage.GENERATE_TOP_HITS,
                f"{test_type_name}:{panel}",
                result.filtered,
                result.filtered_x,
                top_hits,
            )
        result.top_hits = top_hits

        plots = self.naming.plot_outputs(test_type_name, panel)
        context = self._base_context()
        context.update(
            test_type=test_type_name,
            panel=panel,
            condensed=result.condensed.path if result.condensed else "",
            top_hits=top_hits.path,
            **plots,
        )
        self._submit_external(
            Stage.GENERATE_QQ_MANHATTAN_PLOTS,
            f"{Stage.GENERATE_QQ_MANHATTAN_PLOTS.value}:{test_type_name}:{panel}",
            context,
            tuple(plots.values()),
            inputs=_artifact_paths(result.condensed, top_hits),
        )
        return result

    def _run_association_window(
        self,
        unit: WorkUnit,
        response: str,
        covariables: str,
        upstream: Mapping[tuple[str, GenomicWindow], Path | None],
    ) -> None:
        label = f"{unit.test_type}:{unit.panel}:chr{unit.chromosome}:{unit.window.label}"
        context = self._unit_context(unit)
        context.update(response=response, covariables=covariables)

        snptest = self.naming.stage_output(Stage.SNPTEST.value, unit, STAGE_SUFFIXES[Stage.SNPTEST])
        previous = upstream.get((unit.panel, unit.window))
        context.update(input=previous or "", output=snptest)
        if self._submit_external(Stage.SNPTEST, f"{Stage.SNPTEST.value}:{label}", context, (snptest,)):
            previous = snptest

        summary = self.naming.window_artifact(unit, ArtifactKind.SUMMARY)
        context.update(input=previous or "", output=summary.path)
        self._submit_external(
            Stage.COLLECT_SUMMARY, f"{Stage.COLLECT_SUMMARY.value}:{label}", context, (summary.path,)
        )

        if self.activation.is_active(Stage.FILTER_BY_ALL):
            filtered = self.naming.window_artifact(unit, ArtifactKind.FILTERED)
            condensed = self.naming.window_artifact(unit, ArtifactKind.CONDENSED)
            self._submit_internal(
                Stage.FILTER_BY_ALL,
                f"{Stage.FILTER_BY_ALL.value}:{label}",
                partial(
                    filter_by_all,
                    summary.path,
                    filtered.path,
                    condensed.path,
                    unit.panel,
                    self.config.thresholds,
                    self.config.info_threshold,
                ),
                (filtered.path, condensed.path),
                f"{Stage.FILTER_BY_ALL.value} {summary.path} {filtered.path} {condensed.path} {unit.panel}",
                inputs=(summary.path,),
            )

    def _join_condensed(self, result: PairResult, chromosome_artifacts: list[Artifact]) -> None:
        tt, panel = result.test_type, result.panel
        target = self.naming.pair_result(tt, panel, ArtifactKind.CONDENSED)
        if self.activation.is_active(Stage.JOINT_CONDENSED_FILES):
            target, merges = self._reduce(
                chromosome_artifacts,
                target,
                partial(self.naming.joint_artifact, tt, panel, ArtifactKind.CONDENSED),
                stage=Stage.JOINT_CONDENSED_FILES,
                merge=joint_condensed_files,
                label=f"{tt}:{panel}:condensed",
                intermediates=result.intermediates,
            )
            result.merges += merges
        result.condensed = target

    def _join_filtered(
        self, result: PairResult, autosome_artifacts: list[Artifact], x_artifact: Artifact | None
    ) -> None:
        tt, panel = result.test_type, result.panel
        main = self.naming.pair_result(tt, panel, ArtifactKind.FILTERED) if autosome_artifacts else None
        x_output = self.naming.x_artifact(tt, panel, ArtifactKind.FILTERED) if x_artifact is not None else None

        if self.activation.is_active(Stage.JOINT_FILTERED_BY_ALL_FILES):
            stage = Stage.JOINT_FILTERED_BY_ALL_FILES
            merge = join_filtered_merge(panel)
            label = f"{tt}:{panel}:filtered"
            plan = plan_chromosome_join(
                autosome_artifacts,
                partial(self.naming.joint_artifact, tt, panel, ArtifactKind.FILTERED),
                final_output=main,
                x_artifact=x_artifact,
                x_output=x_output,
            )
            if plan.autosomes is not None:
                result.merges += self._run_reduction(plan.autosomes, stage=stage, merge=merge, label=label)
                result.intermediates.extend(_intermediate_paths(plan.autosomes))
                if main is not None and plan.autosomes.final != main:
                    self._materialize(plan.autosomes.final, main, stage, merge, label)
            if plan.x_node is not None:
                node = plan.x_node
                self._submit_internal(
                    stage,
                    f"{stage.value}:{label}:X",
                    partial(merge, node.left.path, node.right.path, node.output.path),
                    (node.output.path,),
                    f"{stage.value} {node.left.path} {node.right.path} {node.output.path}",
                    inputs=(node.left.path,),
                )

        result.filtered = main if main is not None else x_output
        result.filtered_x = x_output

    def _submit_top_hits(
        self,
        stage: Stage,
        label: str,
        filtered: Artifact,
        filtered_x: Artifact | None,
        out: Artifact,
    ) -> None:
        x_path = filtered_x.path if filtered_x is not None else None
        self._submit_internal(
            stage,
            f"{stage.value}:{label}:topHits",
            partial(generate_top_hits, filtered.path, x_path, out.path, self.config.thresholds.pva),
            (out.path,),
            f"generateTopHits {filtered.path} {x_path or filtered.path} {out.path} "
            f"{self.config.thresholds.pva}",
            inputs=(filtered.path,) + ((x_path,) if x_path is not None else ()),
        )

    def _combine_panels(self, test_type: str) -> CombineResult:
        result = CombineResult(test_type=test_type)
        first, *others = self.config.panels
        leaves: dict[str, list[Artifact]] = {"filtered": [], "filtered_x": [], "condensed": []}

        for chromosome in self.config.chromosomes:
            for window in self.planner.windows_for(chromosome):
                for kind in (ArtifactKind.FILTERED, ArtifactKind.CONDENSED):
                    accumulated = self.naming.window_artifact(
                        WorkUnit(test_type=test_type, panel=first, chromosome=chromosome, window=window), kind
                    )
                    for step, panel in enumerate(others, start=1):
                        other = self.naming.window_artifact(
                            WorkUnit(test_type=test_type, panel=panel, chromosome=chromosome, window=window), kind
                        )
                        output = self.naming.combined_window_artifact(test_type, step, window, kind)
                        label = f"{test_type}:chr{chromosome}:{window.label}:{kind.value}:{step}"
                        self._submit_internal(
                            Stage.COMBINE_PANELS_COMPLEX,
                            f"{Stage.COMBINE_PANELS_COMPLEX.value}:{label}",
                            partial(combine_panels_complex, accumulated.path, other.path, output.path),
                            (output.path,),
                            f"{Stage.COMBINE_PANELS_COMPLEX.value} {accumulated.path} {other.path} {output.path}",
                            inputs=(accumulated.path, other.path),
                        )
                        if step < len(others):
                            result.intermediates.append(output.path)
                        accumulated = output

                    if kind is ArtifactKind.CONDENSED:
                        leaves["condensed"].append(accumulated)
                    elif window.is_x:
                        leaves["filtered_x"].append(accumulated)
                    else:
                        leaves["filtered"].append(accumulated)
                result.reconciled_windows += 1

        for key, kind, x_only in (
            ("filtered", ArtifactKind.FILTERED, False),
            ("filtered_x", ArtifactKind.FILTERED, True),
            ("condensed", ArtifactKind.CONDENSED, False),
        ):
            if not leaves[key]:
                continue
            final, merges = self._reduce(
                leaves[key],
                None,
                partial(_combined_namer, self.naming, test_type, kind, x_only),
                stage=Stage.COMBINE_PANELS_COMPLEX,
                merge=merge_two_chunks,
                label=f"{test_type}:combined:{key}",
                intermediates=result.intermediates,
            )
            result.merges += merges
            setattr(result, key, final)

        main = result.filtered if result.filtered is not None else result.filtered_x
        result.top_hits = self.naming.combined_top_hits(test_type)
        if self.activation.is_active(Stage.COMB_GENERATE_MANHATTAN_TOP) and main is not None:
            self._submit_top_hits(
                Stage.COMB_GENERATE_MANHATTAN_TOP,
                f"{test_type}:combined",
                main,
                result.filtered_x,
                result.top_hits,
            )
            plots = self.naming.plot_outputs(test_type, None)
            context = self._base_context()
            context.update(
                test_type=test_type,
                panel="combined",
                condensed=result.condensed.path if result.condensed else "",
                top_hits=result.top_hits.path,
                **plots,
            )
            self._submit_external(
                Stage.COMB_GENERATE_MANHATTAN_TOP,
                f"{Stage.COMB_GENERATE_MANHATTAN_TOP.value}:{test_type}",
                context,
                tuple(plots.values()),
                inputs=_artifact_paths(result.condensed, result.top_hits),
            )
        return result

    def _run_phenome(self) -> Artifact:
        autosomes, x_chromosome = self.planner.chromosome_split()
        plan = plan_phenome_analysis(
            [(test_type.name, panel) for test_type, panel in self.config.pairs()],
            self.naming,
            include_x=x_chromosome is not None,
            include_autosomes=bool(autosomes),
        )
        builder = PhenomeBuilder(include_x=x_chromosome is not None)
        for index, step in enumerate(plan.steps):
            stage = PHENOME_STAGES[step.phase]
            self._submit_internal(
                stage,
                f"{stage.value}:{index}",
                partial(_apply_phenome_step, builder, step),
                (step.output.path,),
                " ".join([stage.value, *(str(item.path) for item in step.inputs), str(step.output.path)]),
                inputs=tuple(item.path for item in step.inputs),
            )
        return plan.final

    def _collect(self, report: WorkflowReport, prefix: str, result: PairResult | CombineResult) -> None:
        for name in ("filtered", "filtered_x", "condensed", "top_hits"):
            artifact = getattr(result, name)
            if artifact is None:
                continue
            key = f"{prefix}/{name}"
            if self._failed_inputs((artifact.path,)):
                report.failed_artifacts.append(key)
            else:
                report.final_artifacts[key] = str(artifact.path)

    def run(self, *, write_manifest: bool = True) -> WorkflowReport:
        """Execute the run; the stage manifest is written even when a stage fails.

        A merge failure aborts only the tasks that consume its outputs. Once
        every independent tree has run, the collected failures are raised
        together as ``WorkflowFailure`` carrying the report.
        """

        report = WorkflowReport(run_depth=self.config.run_depth)
        self._failed.clear()
        self._errors.clear()
        # Planning errors surface here, before any task is submitted.
        report.work_units = self.planner.count_units()
        self._log_plan()

        try:
            chromosome_outputs = dict(
                self.executor.run_groups(
                    [partial(self._run_chromosome, chromosome) for chromosome in self.config.chromosomes]
                )
            )

            upstream: dict[tuple[str, GenomicWindow], Path | None] = {}
            for window_outputs in self.executor.run_groups(
                [
                    partial(self._run_panel_chromosome, panel, chromosome, chromosome_outputs.get(chromosome))
                    for panel in self.config.panels
                    for chromosome in self.config.chromosomes
                ]
            ):
                upstream.update(window_outputs)

            pair_results = self.executor.run_groups(
                [
                    partial(self._run_pair, test_type.name, panel, upstream)
                    for test_type, panel in self.config.pairs()
                ]
            )
            intermediates: list[Path] = []
            for pair in pair_results:
                report.merges += pair.merges
                intermediates.extend(pair.intermediates)
                self._collect(report, f"{pair.test_type}/{pair.panel}", pair)

            if (
                self.activation.is_active(Stage.COMBINE_PANELS_COMPLEX)
                and self.config.refpanel_combine
                and len(self.config.panels) > 1
            ):
                for combined in self.executor.run_groups(
                    [partial(self._combine_panels, test_type.name) for test_type in self.config.test_types]
                ):
                    report.reconciled_windows += combined.reconciled_windows
                    report.merges += combined.merges
                    intermediates.extend(combined.intermediates)
                    self._collect(report, f"{combined.test_type}/combined", combined)

            if self.activation.is_active(Stage.INIT_PHENO_MATRIX) and len(self.config.test_types) > 1:
                matrix = self._run_phenome()
                if self._failed_inputs((matrix.path,)):
                    report.failed_artifacts.append("phenome")
                else:
                    report.final_artifacts["phenome"] = str(matrix.path)
                    if self.storage is not None:
                        if matrix.exists():
                            self.storage.persist(matrix)
                        else:
                            logger.warning("Phenotype matrix %s was not produced; storage skipped", matrix.path)

            self._finish(report, intermediates)
        finally:
            report.tasks_submitted = len(self.executor.manifest.entries)
            report.warnings = list(self.executor.warnings)
            report.errors = [str(error) for error in self._errors]
            if write_manifest:
                report.manifest_path = self.executor.manifest.write(
                    self.naming.manifest_path(self.config.list_of_stages_file),
                    self.config.describe(),
                )
                logger.info("Stage manifest written to %s", report.manifest_path)

        if self._errors:
            raise WorkflowFailure(self._errors, report)
        return report

    def _finish(self, report: WorkflowReport, intermediates: list[Path]) -> None:
        report.final_status = "compressed" if self.config.compress_files else "uncompressed"
        if not self.config.remove_temporal_files:
            return
        if self._errors:
            logger.info("Keeping intermediate files: %d tasks failed", len(self._errors))
            return
        for path in intermediates:
            if path.exists():
                path.unlink()
                report.removed_files += 1
        logger.info("Removed %d intermediate files", report.removed_files)


def _intermediate_paths(plan: ReductionPlan) -> list[Path]:
    return [node.output.path for node in plan.nodes if node.output != plan.final]


def _artifact_paths(*artifacts: Artifact | None) -> tuple[Path, ...]:
    return tuple(artifact.path for artifact in artifacts if artifact is not None)


def _combined_namer(
    naming: PathNamingService, test_type: str, kind: ArtifactKind, x_only: bool, index: int
) -> Artifact:
    return naming.combined_reduced_artifact(test_type, kind, index, x_only=x_only)


def _apply_phenome_step(builder: PhenomeBuilder, step: PhenomeStep) -> int:
    if step.phase is PhenomePhase.INIT:
        return builder.init(step.inputs[0].path, step.output.path)
    if step.phase is PhenomePhase.ADD:
        return builder.add(step.inputs[-1].path, step.output.path)
    if step.phase is PhenomePhase.FILLOUT:
        if step.test_type is None or step.panel is None:
            raise InternalMergeFailure("Fillout step has no (test type, panel) pair")
        return builder.fillout(
            step.filtered.path if step.filtered is not None else None,
            step.filtered_x.path if step.filtered_x is not None else None,
            step.output.path,
            step.test_type,
            step.panel,
        )
    return builder.finalize(step.inputs[0].path, step.inputs[1].path, step.output.path)
