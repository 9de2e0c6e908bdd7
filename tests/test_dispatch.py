import gzip
import sys
import time
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from gwasflow import (  # noqa: E402
    CommandManifest,
    DaskExecutor,
    ExternalToolFailure,
    InternalMergeFailure,
    LocalExecutor,
    RecordingExecutor,
    Stage,
    TaskCommand,
)
from gwasflow.dispatch import MANIFEST_RULE, MANIFEST_TITLE, TaskStatus  # noqa: E402


def _external(tmp_path: Path, argv: list[str], stage: Stage = Stage.SNPTEST) -> TaskCommand:
    return TaskCommand(
        name=f"{stage.value}:test",
        stage=stage,
        expected_outputs=(tmp_path / "out" / "result.txt.gz",),
        argv=tuple(argv),
    )


def test_external_failure_becomes_warning_with_placeholder(tmp_path: Path) -> None:
    executor = RecordingExecutor(external_exit_codes={"snptest": 3})
    task = _external(tmp_path, ["snptest", "-data", "x"])

    outcome = executor.submit(task)

    assert outcome.status is TaskStatus.WARNING
    assert "exited with status 3" in outcome.message
    assert executor.warnings and "[snptest]" in executor.warnings[0]
    placeholder = task.expected_outputs[0]
    with gzip.open(placeholder, "rt") as stream:
        assert stream.read() == ""


def test_external_failure_is_fatal_without_placeholders(tmp_path: Path) -> None:
    executor = RecordingExecutor(external_exit_codes={"snptest": 1}, placeholder_on_failure=False)

    with pytest.raises(ExternalToolFailure) as excinfo:
        executor.submit(_external(tmp_path, ["snptest"]))

    assert excinfo.value.exit_code == 1
    assert excinfo.value.stage == "snptest"


def test_internal_failure_is_tagged_with_stage(tmp_path: Path) -> None:
    def broken() -> None:
        raise InternalMergeFailure("Missing column 'chr' in header")

    executor = RecordingExecutor(run_internal=True)
    task = TaskCommand(name="merge", stage=Stage.MERGE_TWO_CHUNKS, action=broken)

    with pytest.raises(InternalMergeFailure) as excinfo:
        executor.submit(task)

    assert str(excinfo.value).startswith("[mergeTwoChunks] Missing column")
    assert executor.warnings == []


def test_os_errors_in_actions_become_merge_failures(tmp_path: Path) -> None:
    def unreadable() -> None:
        (tmp_path / "missing.txt").read_text()

    executor = RecordingExecutor(run_internal=True)

    with pytest.raises(InternalMergeFailure) as excinfo:
        executor.submit(TaskCommand(name="join", stage=Stage.JOINT_CONDENSED_FILES, action=unreadable))

    assert excinfo.value.stage == "jointCondensedFiles"


def test_recording_executor_skips_actions_by_default(tmp_path: Path) -> None:
    calls: list[str] = []
    executor = RecordingExecutor()

    outcome = executor.submit(
        TaskCommand(name="filter", stage=Stage.FILTER_BY_ALL, action=lambda: calls.append("ran"))
    )

    assert calls == []
    assert outcome.status is TaskStatus.COMPLETED
    assert executor.manifest.entries == ["filterByAll"]


def test_local_executor_runs_commands_and_keeps_logs(tmp_path: Path) -> None:
    executor = LocalExecutor(cwd=tmp_path)
    task = _external(tmp_path, [sys.executable, "-c", "print('hello')"])

    outcome = executor.submit(task)

    assert outcome.status is TaskStatus.COMPLETED
    log = Path(f"{task.expected_outputs[0]}.stdout")
    assert log.read_text().strip() == "hello"


def test_local_executor_reports_nonzero_exit(tmp_path: Path) -> None:
    executor = LocalExecutor(placeholder_on_failure=False)

    with pytest.raises(ExternalToolFailure) as excinfo:
        executor.submit(_external(tmp_path, [sys.executable, "-c", "import sys; sys.exit(4)"]))

    assert excinfo.value.exit_code == 4


def test_local_executor_missing_binary_exits_127(tmp_path: Path) -> None:
    executor = LocalExecutor()

    outcome = executor.submit(_external(tmp_path, ["gwasflow-no-such-binary"]))

    assert outcome.status is TaskStatus.WARNING
    assert "status 127" in outcome.message


def test_dask_executor_preserves_group_order() -> None:
    executor = DaskExecutor(num_workers=2)

    results = executor.run_groups([lambda value=value: value * 10 for value in range(5)])

    assert results == [0, 10, 20, 30, 40]


def test_manifest_writes_header_and_blank_line_separated_commands(tmp_path: Path) -> None:
    manifest = CommandManifest()
    manifest.add(TaskCommand(name="a", stage=Stage.SNPTEST, argv=("snptest", "-o", "out file")))
    manifest.add(
        TaskCommand(
            name="b",
            stage=Stage.MERGE_TWO_CHUNKS,
            action=lambda: None,
            description="mergeTwoChunks a.gz b.gz c.gz",
        )
    )
    stamp = time.strptime("2024-01-02 03:04:05", "%Y-%m-%d %H:%M:%S")

    path = manifest.write(tmp_path / "run" / "list_of_stages.txt", {"run_depth": "whole_workflow"}, now=stamp)

    assert path.read_text().splitlines() == [
        MANIFEST_RULE,
        MANIFEST_TITLE,
        "# Date: 2024/01/02 03:04:05",
        "# Parameters of the execution: ",
        "#   run_depth = whole_workflow",
        MANIFEST_RULE,
        "",
        "snptest -o 'out file'",
        "",
        "mergeTwoChunks a.gz b.gz c.gz",
    ]
