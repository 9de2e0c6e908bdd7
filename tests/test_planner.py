import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from gwasflow import (  # noqa: E402
    ChromosomeBounds,
    ChunkPlanner,
    ConfigurationError,
    RunConfig,
    TestType,
    plan_windows,
    split_chromosomes,
)


def _config(tmp_path: Path, **overrides) -> RunConfig:
    values = {
        "output_dir": tmp_path,
        "test_types": (TestType("cc", "pheno"),),
        "panels": ("1kg", "hapmap"),
        "init_chromosome": 1,
        "end_chromosome": 2,
        "chunk_size": 1000,
    }
    values.update(overrides)
    return RunConfig(**values).validate()


def test_windows_cover_range_without_clamping_last_end() -> None:
    windows = plan_windows(1, 1, 2500, 1000)

    assert [(window.start, window.end) for window in windows] == [
        (1, 1000),
        (1001, 2000),
        (2001, 3000),
    ]
    assert [window.label for window in windows] == ["1-1000", "1001-2000", "2001-3000"]


def test_windows_stop_when_start_reaches_max_position() -> None:
    windows = plan_windows(5, 1, 2001, 1000)

    assert [window.start for window in windows] == [1, 1001]


def test_windows_reject_non_positive_chunk_size() -> None:
    with pytest.raises(ConfigurationError):
        plan_windows(1, 1, 100, 0)


def test_windows_reject_inverted_bounds() -> None:
    with pytest.raises(ConfigurationError, match="above max"):
        plan_windows(3, 500, 100, 1000)


def test_split_keeps_x_out_of_autosomes() -> None:
    autosomes, x_chromosome = split_chromosomes(21, 23)

    assert autosomes == [21, 22]
    assert x_chromosome == 23


def test_split_single_x_pass() -> None:
    assert split_chromosomes(23, 23) == ([], 23)


def test_split_without_x() -> None:
    assert split_chromosomes(1, 3) == ([1, 2, 3], None)


def test_split_rejects_invalid_range() -> None:
    with pytest.raises(ConfigurationError):
        split_chromosomes(5, 3)


def test_planner_orders_units_test_type_major(tmp_path: Path) -> None:
    config = _config(tmp_path, test_types=(TestType("cc", "pheno"), TestType("sev", "score")))
    planner = ChunkPlanner(config, ChromosomeBounds.uniform(1, 2, 1, 2500))

    units = list(planner.work_units())

    assert len(units) == planner.count_units() == 2 * 2 * 2 * 3
    assert [unit.test_type for unit in units[:12]] == ["cc"] * 12
    assert [unit.panel for unit in units[:6]] == ["1kg"] * 6
    assert [(unit.chromosome, unit.window.start) for unit in units[:4]] == [
        (1, 1),
        (1, 1001),
        (1, 2001),
        (2, 1),
    ]


def test_scenario_two_chromosomes_gives_six_leaves(tmp_path: Path) -> None:
    config = _config(tmp_path, panels=("1kg",))
    planner = ChunkPlanner(config, ChromosomeBounds.uniform(1, 2, 1, 2500))

    assert planner.count_units() == 6
    assert len(planner.windows_for(1)) == len(planner.windows_for(2)) == 3


def test_missing_bounds_fail_as_configuration_error(tmp_path: Path) -> None:
    config = _config(tmp_path)
    planner = ChunkPlanner(config, ChromosomeBounds.uniform(1, 1, 1, 2500))

    with pytest.raises(ConfigurationError, match="chromosome 2"):
        planner.count_units()


def test_bounds_load_by_name_reads_x_as_23() -> None:
    bounds = ChromosomeBounds.load("grch37")

    assert bounds.for_chromosome(1) == (1, 249250621)
    assert bounds.for_chromosome(23)[1] == 155270560


def test_bounds_load_accepts_x_key_and_pairs(tmp_path: Path) -> None:
    path = tmp_path / "tiny.json"
    path.write_text('{"name": "tiny", "chromosomes": {"1": [10, 90], "X": {"max": 50}}}')

    bounds = ChromosomeBounds.load(path)

    assert bounds.name == "tiny"
    assert bounds.for_chromosome(1) == (10, 90)
    assert bounds.for_chromosome(23) == (1, 50)


def test_bounds_unknown_name_lists_available() -> None:
    with pytest.raises(ConfigurationError, match="Available: .*grch37"):
        ChromosomeBounds.load("no_such_build")
