import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from gwasflow import (  # noqa: E402
    ConfigurationError,
    ImputationTool,
    Stage,
    activation_table,
    available_selectors,
)
from gwasflow.stages import PHENOTYPE_STAGES, RUN_DEPTH_SELECTORS, STAGE_ORDER  # noqa: E402

MINIMAC_ONLY = {
    Stage.IMPUTE_WITH_MINIMAC,
    Stage.CREATE_LIST_OF_EXCLUDED_SNPS,
    Stage.FILTER_HAPLOTYPES,
}


@pytest.mark.parametrize("selector", available_selectors())
def test_activation_is_deterministic(selector: str) -> None:
    for tool in ImputationTool:
        assert activation_table(selector, tool) == activation_table(selector, tool)
        assert activation_table(selector, tool).as_flags() == activation_table(selector, tool).as_flags()


def test_vocabulary_is_shared_by_both_tools() -> None:
    impute = set(RUN_DEPTH_SELECTORS[ImputationTool.IMPUTE])
    minimac = set(RUN_DEPTH_SELECTORS[ImputationTool.MINIMAC])

    assert impute == minimac
    assert len(available_selectors()) == 33


def test_whole_workflow_with_impute_skips_minimac_stages() -> None:
    activation = activation_table("whole_workflow", "impute")

    assert set(activation.active_stages()) == set(Stage) - MINIMAC_ONLY


def test_whole_workflow_with_minimac_skips_impute_binary() -> None:
    activation = activation_table("whole_workflow", ImputationTool.MINIMAC)

    assert set(activation.active_stages()) == set(Stage) - {Stage.IMPUTE_WITH_IMPUTE}


@pytest.mark.parametrize("selector", available_selectors())
def test_phenotype_stages_switch_together(selector: str) -> None:
    active = activation_table(selector).active
    assert PHENOTYPE_STAGES <= active or not (PHENOTYPE_STAGES & active)


def test_from_association_starts_at_collect_summary() -> None:
    activation = activation_table("from_association")

    assert activation.active_stages()[0] is Stage.COLLECT_SUMMARY
    assert not activation.is_active(Stage.SNPTEST)
    assert activation.is_active(Stage.FINALIZE_PHENO_MATRIX)


def test_until_summary_has_no_phenotype_stages() -> None:
    activation = activation_table("until_summary")

    assert activation.is_active(Stage.COMB_GENERATE_MANHATTAN_TOP)
    assert not activation.is_active(Stage.INIT_PHENO_MATRIX)


def test_from_imputation_to_summary_omits_combined_plots_for_both_tools() -> None:
    for tool in ImputationTool:
        activation = activation_table("from_imputation_to_summary", tool)
        assert activation.is_active(Stage.COMBINE_PANELS_COMPLEX)
        assert not activation.is_active(Stage.COMB_GENERATE_MANHATTAN_TOP)


def test_from_phasing_to_summary_combined_plots_depend_on_tool() -> None:
    assert activation_table("from_phasing_to_summary", "impute").is_active(Stage.COMB_GENERATE_MANHATTAN_TOP)
    assert not activation_table("from_phasing_to_summary", "minimac").is_active(
        Stage.COMB_GENERATE_MANHATTAN_TOP
    )


def test_single_stage_selectors() -> None:
    assert activation_table("from_imputation_to_filterByInfo").active_stages() == [Stage.FILTER_BY_INFO]
    assert activation_table("from_jointFiltered_to_condensed").active_stages() == [
        Stage.JOINT_FILTERED_BY_ALL_FILES
    ]
    assert activation_table("from_summary").active == PHENOTYPE_STAGES


def test_activation_behaves_as_mapping() -> None:
    activation = activation_table("from_filterByAll")

    assert len(activation) == len(STAGE_ORDER) == 24
    assert list(activation) == list(STAGE_ORDER)
    assert activation["generateTopHits"] is True
    assert activation[Stage.SNPTEST] is False
    with pytest.raises(KeyError):
        activation["notAStage"]


def test_selector_whitespace_is_ignored() -> None:
    assert activation_table("  from_combine ").selector == "from_combine"


def test_unknown_selector_lists_available() -> None:
    with pytest.raises(ConfigurationError, match="Available: .*whole_workflow"):
        activation_table("from_nowhere")


def test_unknown_tool_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Unknown imputation tool"):
        activation_table("whole_workflow", "beagle")
