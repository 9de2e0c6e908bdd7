"""Stage gate: typed stages and run-depth selectors mapped to explicit stage sets."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType

from gwasflow.errors import ConfigurationError


class Stage(str, Enum):
    """Named pipeline steps in execution order."""

    CONVERT_FROM_BED_TO_BED = "convertFromBedToBed"
    CREATE_RSID_LIST = "createRsIdList"
    PHASING_BED = "phasingBed"
    PHASING = "phasing"
    CREATE_LIST_OF_EXCLUDED_SNPS = "createListOfExcludedSnps"
    FILTER_HAPLOTYPES = "filterHaplotypes"
    IMPUTE_WITH_IMPUTE = "imputeWithImpute"
    IMPUTE_WITH_MINIMAC = "imputeWithMinimac"
    FILTER_BY_INFO = "filterByInfo"
    QCTOOL_S = "qctoolS"
    SNPTEST = "snptest"
    COLLECT_SUMMARY = "collectSummary"
    MERGE_TWO_CHUNKS = "mergeTwoChunks"
    FILTER_BY_ALL = "filterByAll"
    JOINT_CONDENSED_FILES = "jointCondensedFiles"
    JOINT_FILTERED_BY_ALL_FILES = "jointFilteredByAllFiles"
    GENERATE_TOP_HITS = "generateTopHits"
    GENERATE_QQ_MANHATTAN_PLOTS = "generateQQManhattanPlots"
    COMBINE_PANELS_COMPLEX = "combinePanelsComplex"
    COMB_GENERATE_MANHATTAN_TOP = "combGenerateManhattanTop"
    INIT_PHENO_MATRIX = "initPhenoMatrix"
    ADD_TO_PHENO_MATRIX = "addToPhenoMatrix"
    FILLOUT_PHENO_MATRIX = "filloutPhenoMatrix"
    FINALIZE_PHENO_MATRIX = "finalizePhenoMatrix"


class ImputationTool(str, Enum):
    """Imputation binaries the workflow knows how to gate."""

    IMPUTE = "impute"
    MINIMAC = "minimac"


STAGE_ORDER: tuple[Stage, ...] = tuple(Stage)

PHENOTYPE_STAGES: frozenset[Stage] = frozenset(
    {
        Stage.INIT_PHENO_MATRIX,
        Stage.ADD_TO_PHENO_MATRIX,
        Stage.FILLOUT_PHENO_MATRIX,
        Stage.FINALIZE_PHENO_MATRIX,
    }
)

# Stages whose work is done by third-party binaries through the task executor.
EXTERNAL_STAGES: frozenset[Stage] = frozenset(
    {
        Stage.CONVERT_FROM_BED_TO_BED,
        Stage.CREATE_RSID_LIST,
        Stage.PHASING_BED,
        Stage.PHASING,
        Stage.CREATE_LIST_OF_EXCLUDED_SNPS,
        Stage.FILTER_HAPLOTYPES,
        Stage.IMPUTE_WITH_IMPUTE,
        Stage.IMPUTE_WITH_MINIMAC,
        Stage.QCTOOL_S,
        Stage.SNPTEST,
        Stage.COLLECT_SUMMARY,
        Stage.GENERATE_QQ_MANHATTAN_PLOTS,
    }
)


def _stages(*names: Stage, pheno: bool = False) -> frozenset[Stage]:
    selected = set(names)
    if pheno:
        selected |= PHENOTYPE_STAGES
    return frozenset(selected)


_S = Stage

_INPUT = (_S.CONVERT_FROM_BED_TO_BED, _S.CREATE_RSID_LIST)
_QC = (_S.FILTER_BY_INFO, _S.QCTOOL_S)
_ASSOC_TO_FILTER = (_S.COLLECT_SUMMARY, _S.MERGE_TWO_CHUNKS, _S.FILTER_BY_ALL)
_SUMMARY_NO_COMBINE_PLOTS = (
    _S.JOINT_CONDENSED_FILES,
    _S.JOINT_FILTERED_BY_ALL_FILES,
    _S.GENERATE_TOP_HITS,
    _S.GENERATE_QQ_MANHATTAN_PLOTS,
    _S.COMBINE_PANELS_COMPLEX,
)
_SUMMARY = (*_SUMMARY_NO_COMBINE_PLOTS, _S.COMB_GENERATE_MANHATTAN_TOP)


def _selectors_for(
    impute: Stage,
    phasing: tuple[Stage, ...],
    *,
    phasing_summary_plots: bool,
) -> dict[str, frozenset[Stage]]:
    tail_from_phasing_summary = _SUMMARY if phasing_summary_plots else _SUMMARY_NO_COMBINE_PLOTS
    return {
        "until_convertFromBedToBed": _stages(*_INPUT),
        "until_phasing": _stages(*_INPUT, *phasing),
        "until_imputation": _stages(*_INPUT, *phasing, impute),
        "until_qctools": _stages(*_INPUT, *phasing, impute, *_QC),
        "until_association": _stages(*_INPUT, *phasing, impute, *_QC, _S.SNPTEST),
        "until_filterByAll": _stages(*_INPUT, *phasing, impute, *_QC, _S.SNPTEST, *_ASSOC_TO_FILTER),
        "until_summary": _stages(
            *_INPUT, *phasing, impute, *_QC, _S.SNPTEST, *_ASSOC_TO_FILTER, *_SUMMARY
        ),
        "whole_workflow": _stages(
            *_INPUT, *phasing, impute, *_QC, _S.SNPTEST, *_ASSOC_TO_FILTER, *_SUMMARY, pheno=True
        ),
        "from_phasing": _stages(impute, *_QC, _S.SNPTEST, *_ASSOC_TO_FILTER, *_SUMMARY, pheno=True),
        "from_phasing_to_summary": _stages(
            impute, *_QC, _S.SNPTEST, *_ASSOC_TO_FILTER, *tail_from_phasing_summary
        ),
        "from_phasing_to_filterByAll": _stages(impute, *_QC, _S.SNPTEST, *_ASSOC_TO_FILTER),
        "from_phasing_to_qctools": _stages(impute, *_QC),
        "from_phasing_to_association": _stages(impute, *_QC, _S.SNPTEST),
        "from_phasing_to_imputation": _stages(impute),
        "from_imputation": _stages(*_QC, _S.SNPTEST, *_ASSOC_TO_FILTER, *_SUMMARY, pheno=True),
        # Authored without combGenerateManhattanTop for both tools.
        "from_imputation_to_summary": _stages(
            *_QC, _S.SNPTEST, *_ASSOC_TO_FILTER, *_SUMMARY_NO_COMBINE_PLOTS
        ),
        "from_imputation_to_filterByAll": _stages(*_QC, _S.SNPTEST, *_ASSOC_TO_FILTER),
        "from_imputation_to_association": _stages(*_QC, _S.SNPTEST),
        "from_imputation_to_filterByInfo": _stages(_S.FILTER_BY_INFO),
        "from_filterByInfo_to_qctoolS": _stages(_S.QCTOOL_S),
        "from_qctoolS_to_association": _stages(_S.SNPTEST),
        "from_association": _stages(*_ASSOC_TO_FILTER, *_SUMMARY, pheno=True),
        "from_association_to_filterByAll": _stages(*_ASSOC_TO_FILTER),
        "from_association_to_summary": _stages(*_ASSOC_TO_FILTER, *_SUMMARY),
        "from_filterByAll": _stages(*_SUMMARY, pheno=True),
        "from_jointFiltered_to_condensed": _stages(_S.JOINT_FILTERED_BY_ALL_FILES),
        "from_filterByAll_to_summary": _stages(*_SUMMARY),
        "from_manhattan_to_combine": _stages(_S.JOINT_CONDENSED_FILES, _S.GENERATE_QQ_MANHATTAN_PLOTS),
        "from_combine_to_manhattan": _stages(_S.COMBINE_PANELS_COMPLEX),
        "from_combine_to_summary": _stages(_S.COMBINE_PANELS_COMPLEX, _S.COMB_GENERATE_MANHATTAN_TOP),
        "from_combine": _stages(
            _S.COMBINE_PANELS_COMPLEX, _S.COMB_GENERATE_MANHATTAN_TOP, pheno=True
        ),
        "from_combineGenManTop_to_summary": _stages(_S.COMB_GENERATE_MANHATTAN_TOP),
        "from_summary": _stages(pheno=True),
    }


RUN_DEPTH_SELECTORS: Mapping[ImputationTool, Mapping[str, frozenset[Stage]]] = MappingProxyType(
    {
        ImputationTool.IMPUTE: MappingProxyType(
            _selectors_for(
                _S.IMPUTE_WITH_IMPUTE,
                (_S.PHASING_BED, _S.PHASING),
                phasing_summary_plots=True,
            )
        ),
        ImputationTool.MINIMAC: MappingProxyType(
            _selectors_for(
                _S.IMPUTE_WITH_MINIMAC,
                (
                    _S.PHASING_BED,
                    _S.PHASING,
                    _S.CREATE_LIST_OF_EXCLUDED_SNPS,
                    _S.FILTER_HAPLOTYPES,
                ),
                phasing_summary_plots=False,
            )
        ),
    }
)


def available_selectors() -> list[str]:
    """Return the sorted run-depth selector vocabulary."""

    return sorted(RUN_DEPTH_SELECTORS[ImputationTool.IMPUTE].keys())


@dataclass(frozen=True)
class StageActivation(Mapping[Stage, bool]):
    """Immutable stage to on/off table derived once per run."""

    selector: str
    imputation_tool: ImputationTool
    active: frozenset[Stage]

    def __getitem__(self, stage: Stage | str) -> bool:
        try:
            key = Stage(stage)
        except ValueError:
            raise KeyError(stage) from None
        return key in self.active

    def __iter__(self) -> Iterator[Stage]:
        return iter(STAGE_ORDER)

    def __len__(self) -> int:
        return len(STAGE_ORDER)

    def is_active(self, stage: Stage | str) -> bool:
        return Stage(stage) in self.active

    def active_stages(self) -> list[Stage]:
        """Return active stages in execution order."""

        return [stage for stage in STAGE_ORDER if stage in self.active]

    def as_flags(self) -> dict[str, int]:
        """Return the ``stage name -> 0/1`` view used in summaries."""

        return {stage.value: int(stage in self.active) for stage in STAGE_ORDER}


def activation_table(selector: str, tool: ImputationTool | str = ImputationTool.IMPUTE) -> StageActivation:
    """Resolve a run-depth selector into a stage activation table."""

    try:
        resolved_tool = ImputationTool(tool)
    except ValueError:
        raise ConfigurationError(
            f"Unknown imputation tool '{tool}'. "
            f"Available: {', '.join(item.value for item in ImputationTool)}"
        ) from None

    selectors = RUN_DEPTH_SELECTORS[resolved_tool]
    key = selector.strip()
    if key not in selectors:
        raise ConfigurationError(
            f"Unknown run depth '{selector}'. Available: {', '.join(available_selectors())}"
        )
    return StageActivation(selector=key, imputation_tool=resolved_tool, active=selectors[key])
