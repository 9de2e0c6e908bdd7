import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from gwasflow import (  # noqa: E402
    DirectoryNaming,
    InternalMergeFailure,
    PhenomeBuilder,
    PhenomePhase,
    add_to_pheno_matrix,
    fillout_pheno_matrix,
    finalize_pheno_matrix,
    init_pheno_matrix,
    plan_phenome_analysis,
)
from gwasflow.phenome import FILLOUT_WIDTH, check_rectangular  # noqa: E402
from gwasflow.schema import TOP_HITS_HEADER  # noqa: E402

AUTOSOME_HEADER = "\t".join(
    [
        "chr",
        "position",
        "rs_id_all",
        "alleleA",
        "alleleB",
        "all_maf",
        "frequentist_add_pvalue",
        "frequentist_add_beta_1",
        "frequentist_add_se_1",
        "refpanel",
    ]
)
X_HEADER = "\t".join(
    [
        "chr",
        "position",
        "rs_id_all",
        "alleleA",
        "alleleB",
        "all_maf",
        "frequentist_add_pvalue",
        "frequentist_add_beta_1:genotype/sex=1",
        "frequentist_add_beta_2:genotype/sex=2",
        "frequentist_add_se_1:genotype/sex=1",
        "frequentist_add_se_2:genotype/sex=2",
        "refpanel",
    ]
)


def _write(path: Path, header: str, rows: list[str]) -> Path:
    path.write_text("\n".join([header, *rows]) + "\n")
    return path


def _lines(path: Path) -> list[list[str]]:
    return [line.split("\t") for line in path.read_text().splitlines()]


def _top_hits(path: Path, positions: list[tuple[str, str]]) -> Path:
    rows = [f"{chromosome}\t{position}\trs{position}\t0.2\tA\tG\t1e-9" for chromosome, position in positions]
    return _write(path, TOP_HITS_HEADER, rows)


def test_init_keys_rows_lexicographically(tmp_path: Path) -> None:
    top = _top_hits(tmp_path / "top.txt", [("1", "200"), ("2", "5"), ("1", "30")])
    out = tmp_path / "init.txt"

    count = init_pheno_matrix(top, out)

    assert count == 3
    assert _lines(out) == [["chr", "position"], ["1", "200"], ["1", "30"], ["2", "5"]]


def test_add_unions_key_sets_without_values(tmp_path: Path) -> None:
    matrix = tmp_path / "init.txt"
    init_pheno_matrix(_top_hits(tmp_path / "a.txt", [("1", "200"), ("2", "5")]), matrix)
    out = tmp_path / "add.txt"

    count = add_to_pheno_matrix(matrix, _top_hits(tmp_path / "b.txt", [("2", "5"), ("3", "9")]), out)

    assert count == 3
    assert _lines(out)[1:] == [["1", "200"], ["2", "5"], ["3", "9"]]


def test_fillout_appends_eleven_prefixed_columns(tmp_path: Path) -> None:
    matrix = tmp_path / "keys.txt"
    _write(matrix, "chr\tposition", ["1\t100", "1\t200", "23\t50"])
    filtered = _write(
        tmp_path / "filtered.txt",
        AUTOSOME_HEADER,
        ["1\t100\trs100\tA\tG\t0.3\t1e-9\t0.5\t0.1\t1kg"],
    )
    filtered_x = _write(
        tmp_path / "filtered_x.txt",
        X_HEADER,
        ["23\t50\trs50\tC\tT\t0.4\t1e-10\t0.2\t0.3\t0.02\t0.03\t1kg"],
    )
    out = tmp_path / "fillout.txt"

    count = fillout_pheno_matrix(matrix, filtered, filtered_x, out, "cc", "1kg", include_x=True)

    header, *rows = _lines(out)
    assert count == 3
    assert header[:2] == ["chr", "position"]
    assert header[2] == "cc:1kg:rs_id_all"
    assert header[-1] == "cc:1kg:frequentist_add_se_2:genotype/sex=2"
    assert len(header) == 2 + FILLOUT_WIDTH
    assert rows[0] == ["1", "100", "rs100", "A", "G", "0.3", "1e-9", "0.5", "0.1", "NA", "NA", "NA", "NA"]
    assert rows[1] == ["1", "200"] + ["NA"] * FILLOUT_WIDTH
    assert rows[2] == ["23", "50", "rs50", "C", "T", "0.4", "1e-10", "NA", "NA", "0.2", "0.3", "0.02", "0.03"]


def test_fillout_without_x_leaves_x_keys_missing(tmp_path: Path) -> None:
    matrix = _write(tmp_path / "keys.txt", "chr\tposition", ["23\t50"])
    filtered = _write(tmp_path / "filtered.txt", AUTOSOME_HEADER, [])
    filtered_x = _write(
        tmp_path / "filtered_x.txt",
        X_HEADER,
        ["23\t50\trs50\tC\tT\t0.4\t1e-10\t0.2\t0.3\t0.02\t0.03\t1kg"],
    )
    out = tmp_path / "fillout.txt"

    fillout_pheno_matrix(matrix, filtered, filtered_x, out, "cc", "1kg", include_x=False)

    assert _lines(out)[1] == ["23", "50"] + ["NA"] * FILLOUT_WIDTH


def test_every_fillout_row_matches_header_width(tmp_path: Path) -> None:
    matrix = _write(tmp_path / "keys.txt", "chr\tposition", [f"1\t{pos}" for pos in range(1, 40)])
    filtered = _write(
        tmp_path / "filtered.txt",
        AUTOSOME_HEADER,
        [f"1\t{pos}\trs{pos}\tA\tG\t0.3\t1e-9\t0.5\t0.1\t1kg" for pos in range(1, 40, 3)],
    )
    out = tmp_path / "fillout.txt"

    fillout_pheno_matrix(matrix, filtered, None, out, "cc", "1kg", include_x=False)

    header, *rows = _lines(out)
    assert all(len(row) == len(header) for row in rows)
    assert check_rectangular(out) == len(header)


def test_check_rectangular_rejects_ragged_rows(tmp_path: Path) -> None:
    path = _write(tmp_path / "ragged.txt", "chr\tposition\tvalue", ["1\t2\t3", "1\t3"])

    with pytest.raises(InternalMergeFailure, match="Row 3 has 2 fields"):
        check_rectangular(path)


def test_finalize_keeps_accumulator_keys_only(tmp_path: Path) -> None:
    accumulator = _write(tmp_path / "acc.txt", "chr\tposition\tcc:1kg:p", ["1\t10\t0.1", "1\t20\t0.2"])
    increment = _write(tmp_path / "inc.txt", "chr\tposition\tsev:1kg:p", ["1\t10\t0.5", "9\t99\t0.9"])
    out = tmp_path / "final.txt"

    count = finalize_pheno_matrix(accumulator, increment, out)

    assert count == 2
    assert _lines(out) == [
        ["chr", "position", "cc:1kg:p", "sev:1kg:p"],
        ["1", "10", "0.1", "0.5"],
        ["1", "20", "0.2", "NA"],
    ]


def test_builder_rejects_out_of_order_phases(tmp_path: Path) -> None:
    builder = PhenomeBuilder(include_x=False)

    with pytest.raises(InternalMergeFailure, match="fillout cannot follow start"):
        builder.fillout(None, None, tmp_path / "out.txt", "cc", "1kg")

    builder.init(_top_hits(tmp_path / "top.txt", [("1", "5")]), tmp_path / "init.txt")
    with pytest.raises(InternalMergeFailure, match="finalize cannot follow init"):
        builder.finalize(tmp_path / "a.txt", tmp_path / "b.txt", tmp_path / "c.txt")


def test_builder_runs_full_sequence(tmp_path: Path) -> None:
    builder = PhenomeBuilder(include_x=False)
    builder.init(_top_hits(tmp_path / "top_a.txt", [("1", "100")]), tmp_path / "init.txt")
    builder.add(_top_hits(tmp_path / "top_b.txt", [("1", "200")]), tmp_path / "add.txt")
    filtered = _write(
        tmp_path / "filtered.txt",
        AUTOSOME_HEADER,
        ["1\t200\trs200\tA\tG\t0.3\t1e-9\t0.5\t0.1\t1kg"],
    )
    builder.fillout(filtered, None, tmp_path / "fill_0.txt", "cc", "1kg")
    builder.fillout(filtered, None, tmp_path / "fill_1.txt", "sev", "1kg")

    count = builder.finalize(tmp_path / "fill_0.txt", tmp_path / "fill_1.txt", tmp_path / "final.txt")

    header, *rows = _lines(tmp_path / "final.txt")
    assert count == 2
    assert len(header) == 2 + 2 * FILLOUT_WIDTH
    assert rows[1][2] == "rs200" and rows[1][2 + FILLOUT_WIDTH] == "rs200"
    assert builder.phase is PhenomePhase.FINALIZE


def test_plan_orders_phases_over_pairs(tmp_path: Path) -> None:
    naming = DirectoryNaming(tmp_path)
    pairs = [("cc", "1kg"), ("cc", "hapmap"), ("sev", "1kg")]

    plan = plan_phenome_analysis(pairs, naming, include_x=True)

    assert [len(plan.by_phase(phase)) for phase in PhenomePhase] == [1, 2, 3, 2]
    last_add = plan.by_phase(PhenomePhase.ADD)[-1].output
    fillouts = plan.by_phase(PhenomePhase.FILLOUT)
    assert all(step.inputs[0] == last_add for step in fillouts)
    assert fillouts[0].filtered is not None and fillouts[0].filtered_x is not None
    finalizes = plan.by_phase(PhenomePhase.FINALIZE)
    assert finalizes[0].inputs == (fillouts[0].output, fillouts[1].output)
    assert finalizes[1].inputs == (finalizes[0].output, fillouts[2].output)
    assert plan.final == finalizes[-1].output


def test_plan_for_x_only_run_has_no_autosome_input(tmp_path: Path) -> None:
    plan = plan_phenome_analysis(
        [("cc", "1kg"), ("sev", "1kg")],
        DirectoryNaming(tmp_path),
        include_x=True,
        include_autosomes=False,
    )

    for step in plan.by_phase(PhenomePhase.FILLOUT):
        assert step.filtered is None
        assert step.filtered_x is not None


def test_plan_requires_a_pair(tmp_path: Path) -> None:
    with pytest.raises(InternalMergeFailure):
        plan_phenome_analysis([], DirectoryNaming(tmp_path), include_x=False)
