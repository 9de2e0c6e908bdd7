import gzip
import json
import subprocess
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]


def _run(*argv: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        ["python3", *argv],
        cwd=ROOT,
        text=True,
        capture_output=True,
        check=False,
    )


def test_run_workflow_dry_run_plans_without_executing(tmp_path: Path) -> None:
    output_dir = tmp_path / "example_run"
    result = _run(
        "scripts/run_workflow.py",
        "--config",
        "example",
        "--set",
        f"output_dir={output_dir}",
        "--dry-run",
        "--log-level",
        "WARNING",
    )

    assert result.returncode == 0, result.stderr
    summary = json.loads(result.stdout)
    assert summary["dry_run"] is True
    assert summary["run_depth"] == "whole_workflow"
    assert summary["imputation_tool"] == "impute"
    assert summary["stages"]["imputeWithImpute"] is True
    assert summary["stages"]["imputeWithMinimac"] is False
    assert summary["parameters"]["remove_temporal_files"] is True
    assert summary["removed_files"] == 0
    assert summary["manifest_path"] is None
    assert summary["tasks_submitted"] == len(summary["commands"])
    assert any(command.startswith("plink --bfile") for command in summary["commands"])
    assert any(command.startswith("combinePanelsComplex ") for command in summary["commands"])
    assert not output_dir.exists()


def test_run_workflow_run_depth_override(tmp_path: Path) -> None:
    result = _run(
        "scripts/run_workflow.py",
        "--config",
        "example",
        "--set",
        f"output_dir={tmp_path}",
        "--run-depth",
        "from_summary",
        "--dry-run",
        "--log-level",
        "ERROR",
    )

    assert result.returncode == 0, result.stderr
    summary = json.loads(result.stdout)
    assert summary["run_depth"] == "from_summary"
    stages = {command.split(" ", 1)[0] for command in summary["commands"]}
    assert stages == {"initPhenoMatrix", "addToPhenoMatrix", "filloutPhenoMatrix", "finalizePhenoMatrix"}


def test_run_workflow_rejects_invalid_config(tmp_path: Path) -> None:
    result = _run(
        "scripts/run_workflow.py",
        "--config",
        "example",
        "--set",
        f"output_dir={tmp_path}",
        "--set",
        "chunk_size_analysis=10",
        "--dry-run",
    )

    assert result.returncode == 1
    assert "chunk_size_analysis must not be less than 1000" in result.stderr


def test_list_stages_prints_selectors_and_tables() -> None:
    listing = _run("scripts/list_stages.py")
    assert listing.returncode == 0
    assert "whole_workflow" in listing.stdout.splitlines()

    result = _run("scripts/list_stages.py", "from_combine", "--active-only")
    assert result.returncode == 0
    payload = json.loads(result.stdout)
    assert payload["stages"][:2] == ["combinePanelsComplex", "combGenerateManhattanTop"]

    unknown = _run("scripts/list_stages.py", "from_nowhere")
    assert unknown.returncode == 1
    assert "Unknown run depth" in unknown.stderr


def test_combine_panels_script_reports_counts(tmp_path: Path) -> None:
    header = "chr\tposition\talleleA\talleleB\tpvalue\tinfo_all"
    (tmp_path / "a.txt").write_text(f"{header}\n1\t100\tA\tG\t1e-9\t0.90\n1\t300\tC\tT\t1e-3\t0.80\n")
    (tmp_path / "b.txt").write_text(f"{header}\n1\t100\tG\tA\t1e-8\t0.95\n1\t200\tA\tC\t1e-4\t0.70\n")
    output = tmp_path / "combined.txt.gz"

    result = _run(
        "scripts/combine_panels.py",
        str(tmp_path / "a.txt"),
        str(tmp_path / "b.txt"),
        str(output),
        "--log-level",
        "WARNING",
    )

    assert result.returncode == 0, result.stderr
    report = json.loads(result.stdout)
    assert report["kept_b"] == 1
    assert report["unmatched_a"] == 1
    assert report["leftover_b"] == 1
    assert report["matches"]["reverse"] == 1
    with gzip.open(output, "rt") as stream:
        assert len(stream.read().splitlines()) == 4


def test_count_artifact_rows_tool(tmp_path: Path) -> None:
    with gzip.open(tmp_path / "window_1.txt.gz", "wt") as stream:
        stream.write("chr\tposition\n1\t10\n1\t20\n")
    with gzip.open(tmp_path / "window_2.txt.gz", "wt") as stream:
        stream.write("chr\tposition\n1\t30\n\n")

    result = _run("tools/count_artifact_rows.py", str(tmp_path / "window_*.txt.gz"))

    assert result.returncode == 0, result.stderr
    payload = json.loads(result.stdout)
    assert payload["total"] == 3
    assert sorted(Path(path).name for path in payload["files"]) == ["window_1.txt.gz", "window_2.txt.gz"]
