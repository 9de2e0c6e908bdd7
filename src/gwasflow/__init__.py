"""Batch GWAS workflow primitives.

This package plans per-window association work and reduces the resulting
artifacts into per-chromosome, per-panel, cross-panel and cross-phenotype
results.
"""

from .config import RunConfig, RunConfigLoader, TestType, Thresholds
from .dispatch import (
    CommandManifest,
    DaskExecutor,
    LocalExecutor,
    RecordingExecutor,
    TaskCommand,
    TaskExecutor,
)
from .errors import (
    ConfigurationError,
    ExternalToolFailure,
    GwasflowError,
    InternalMergeFailure,
    WorkflowFailure,
)
from .filters import FilterReport, filter_by_all, filter_by_info, generate_top_hits
from .models import (
    Artifact,
    ArtifactKind,
    GenomicWindow,
    MergeNode,
    VariantKey,
    WorkUnit,
    complement_allele,
)
from .naming import DirectoryNaming, PathNamingService
from .phenome import (
    PhenomeBuilder,
    PhenomePhase,
    add_to_pheno_matrix,
    fillout_pheno_matrix,
    finalize_pheno_matrix,
    init_pheno_matrix,
    plan_phenome_analysis,
)
from .planner import ChromosomeBounds, ChunkPlanner, plan_windows, split_chromosomes
from .reconcile import MatchKind, ReconcileReport, combine_panels_complex
from .reduction import (
    ReductionPlan,
    ReductionRunner,
    joint_condensed_files,
    joint_filtered_by_all_files,
    merge_two_chunks,
    plan_chromosome_join,
    plan_reduction,
)
from .stages import ImputationTool, Stage, StageActivation, activation_table, available_selectors
from .storage import DuckDBParquetMatrixStorage, MatrixStorage
from .workflow import WorkflowReport, WorkflowRunner

__all__ = [
    "Artifact",
    "ArtifactKind",
    "ChromosomeBounds",
    "ChunkPlanner",
    "CommandManifest",
    "ConfigurationError",
    "DaskExecutor",
    "DirectoryNaming",
    "DuckDBParquetMatrixStorage",
    "ExternalToolFailure",
    "FilterReport",
    "GenomicWindow",
    "GwasflowError",
    "ImputationTool",
    "InternalMergeFailure",
    "LocalExecutor",
    "MatchKind",
    "MatrixStorage",
    "MergeNode",
    "PathNamingService",
    "PhenomeBuilder",
    "PhenomePhase",
    "ReconcileReport",
    "RecordingExecutor",
    "ReductionPlan",
    "ReductionRunner",
    "RunConfig",
    "RunConfigLoader",
    "Stage",
    "StageActivation",
    "TaskCommand",
    "TaskExecutor",
    "TestType",
    "Thresholds",
    "VariantKey",
    "WorkUnit",
    "WorkflowFailure",
    "WorkflowReport",
    "WorkflowRunner",
    "activation_table",
    "add_to_pheno_matrix",
    "available_selectors",
    "combine_panels_complex",
    "complement_allele",
    "fillout_pheno_matrix",
    "filter_by_all",
    "filter_by_info",
    "finalize_pheno_matrix",
    "generate_top_hits",
    "init_pheno_matrix",
    "joint_condensed_files",
    "joint_filtered_by_all_files",
    "merge_two_chunks",
    "plan_chromosome_join",
    "plan_phenome_analysis",
    "plan_reduction",
    "plan_windows",
    "split_chromosomes",
]
