"""Task executors: the boundary between planned work and its execution."""

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

import dask.bag as db

from gwasflow.errors import ExternalToolFailure, GwasflowError, InternalMergeFailure
from gwasflow.schema import touch_empty
from gwasflow.stages import Stage

logger = logging.getLogger("gwasflow.dispatch")

T = TypeVar("T")

MANIFEST_RULE = "#" * 76
MANIFEST_TITLE = "# List of tasks executed by the workflow"


@dataclass(frozen=True)
class TaskCommand:
    """One dispatchable unit: an external argv or an in-process action."""

    name: str
    stage: Stage
    expected_outputs: tuple[Path, ...] = ()
    argv: tuple[str, ...] = ()
    action: Callable[[], Any] | None = field(default=None, compare=False, repr=False)
    description: str = ""

    @property
    def is_external(self) -> bool:
        return self.action is None

    def render(self) -> str:
        """Command line stored in the stage manifest."""

        if self.is_external:
            return shlex.join(self.argv)
        if self.description:
            return self.description
        outputs = " ".join(str(path) for path in self.expected_outputs)
        return f"{self.stage.value} {outputs}".strip()


class TaskStatus(str, Enum):
    COMPLETED = "completed"
    WARNING = "warning"


@dataclass
class TaskOutcome:
    """Result of one submitted task."""

    task: TaskCommand
    status: TaskStatus
    value: Any = None
    message: str | None = None
    elapsed_seconds: float = 0.0


class CommandManifest:
    """Ordered record of every submitted command, written as the stage list."""

    def __init__(self) -> None:
        self._entries: list[str] = []
        self._lock = threading.Lock()

    def add(self, task: TaskCommand) -> None:
        with self._lock:
            self._entries.append(task.render())

    @property
    def entries(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def write(self, path: str | Path, parameters: Mapping[str, Any], *, now: time.struct_time | None = None) -> Path:
        """Write the header block followed by commands separated by blank lines."""

        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        stamp = time.strftime("%Y/%m/%d %H:%M:%S", now or time.localtime())
        lines = [
            MANIFEST_RULE,
            MANIFEST_TITLE,
            f"# Date: {stamp}",
            "# Parameters of the execution: ",
        ]
        lines.extend(f"#   {key} = {value}" for key, value in parameters.items())
        lines.append(MANIFEST_RULE)
        body = "\n\n".join(self.entries)
        text = "\n".join(lines) + "\n\n" + (body + "\n" if body else "")
        target.write_text(text)
        return target


class TaskExecutor(ABC):
    """Runs tasks and applies the failure policy.

    A nonzero exit from an external binary is logged as a warning and, when
    ``placeholder_on_failure`` is set, replaced by empty placeholder outputs.
    Failures of in-process merge/filter logic propagate tagged with the stage.
    """

    def __init__(
        self,
        *,
        manifest: CommandManifest | None = None,
        placeholder_on_failure: bool = True,
    ) -> None:
        self.manifest = manifest if manifest is not None else CommandManifest()
        self.placeholder_on_failure = placeholder_on_failure
        self.warnings: list[str] = []
        self._warnings_lock = threading.Lock()

    def submit(self, task: TaskCommand) -> TaskOutcome:
        self.manifest.add(task)
        started = time.perf_counter()
        try:
            if task.is_external:
                value = self._run_external(task)
            else:
                value = self._run_internal(task)
        except ExternalToolFailure as exc:
            exc.with_stage(task.stage.value)
            if not self.placeholder_on_failure:
                raise
            self._record_warning(f"{exc} (task {task.name})")
            logger.warning("%s; continuing with placeholder outputs (task %s)", exc, task.name)
            for output in task.expected_outputs:
                if not output.exists():
                    touch_empty(output)
            return TaskOutcome(
                task=task,
                status=TaskStatus.WARNING,
                message=str(exc),
                elapsed_seconds=time.perf_counter() - started,
            )
        except GwasflowError as exc:
            raise exc.with_stage(task.stage.value)
        except OSError as exc:
            raise InternalMergeFailure(str(exc), stage=task.stage.value) from exc

        elapsed = time.perf_counter() - started
        logger.info("Completed %s: %s (%.2fs)", task.stage.value, task.name, elapsed)
        return TaskOutcome(task=task, status=TaskStatus.COMPLETED, value=value, elapsed_seconds=elapsed)

    def run_groups(self, groups: Sequence[Callable[[], T]]) -> list[T]:
        """Run independent task groups; order inside each group is the caller's."""

        return [group() for group in groups]

    def _run_internal(self, task: TaskCommand) -> Any:
        if task.action is None:
            raise InternalMergeFailure(f"Internal task {task.name} has no action")
        return task.action()

    @abstractmethod
    def _run_external(self, task: TaskCommand) -> Any:
        """Execute an external command, raising ``ExternalToolFailure`` on nonzero exit."""

    def _record_warning(self, message: str) -> None:
        with self._warnings_lock:
            self.warnings.append(message)


class LocalExecutor(TaskExecutor):
    """Run external commands with ``subprocess`` in the working directory."""

    def __init__(self, *, cwd: str | Path | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.cwd = Path(cwd) if cwd is not None else None

    def _run_external(self, task: TaskCommand) -> int:
        if not task.argv:
            raise InternalMergeFailure(f"External task {task.name} has an empty command")
        logger.info("Command: %s", shlex.join(task.argv))
        for output in task.expected_outputs:
            output.parent.mkdir(parents=True, exist_ok=True)

        log_base = task.expected_outputs[0] if task.expected_outputs else None
        try:
            if log_base is None:
                result = subprocess.run(
                    list(task.argv), cwd=self.cwd, text=True, capture_output=True, check=False
                )
                if result.stderr:
                    logger.debug("%s stderr: %s", task.name, result.stderr.strip())
            else:
                with open(f"{log_base}.stdout", "w") as stdout, open(f"{log_base}.stderr", "w") as stderr:
                    result = subprocess.run(
                        list(task.argv), cwd=self.cwd, stdout=stdout, stderr=stderr, check=False
                    )
        except FileNotFoundError:
            # Shell convention for "command not found".
            raise ExternalToolFailure(task.argv, 127) from None

        if result.returncode != 0:
            raise ExternalToolFailure(task.argv, result.returncode)
        return result.returncode


class RecordingExecutor(TaskExecutor):
    """Record commands without running external binaries.

    ``run_internal`` controls whether in-process actions execute, and
    ``external_exit_codes`` simulates binaries by stage name.
    """

    def __init__(
        self,
        *,
        run_internal: bool = False,
        external_exit_codes: Mapping[str, int] | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.run_internal = run_internal
        self.external_exit_codes = dict(external_exit_codes or {})
        self.submitted: list[TaskCommand] = []

    def submit(self, task: TaskCommand) -> TaskOutcome:
        self.submitted.append(task)
        return super().submit(task)

    def _run_internal(self, task: TaskCommand) -> Any:
        if not self.run_internal:
            return None
        return super()._run_internal(task)

    def _run_external(self, task: TaskCommand) -> int:
        code = self.external_exit_codes.get(task.stage.value, 0)
        if code != 0:
            raise ExternalToolFailure(task.argv, code)
        return code


class DaskExecutor(LocalExecutor):
    """Local executor that runs independent task groups on dask's threaded scheduler."""

    def __init__(self, *, num_workers: int | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.num_workers = num_workers

    def run_groups(self, groups: Sequence[Callable[[], T]]) -> list[T]:
        if len(groups) <= 1:
            return super().run_groups(groups)
        bag = db.from_sequence(list(groups), npartitions=len(groups))
        compute_kwargs: dict[str, Any] = {"scheduler": "threads"}
        if self.num_workers:
            compute_kwargs["num_workers"] = self.num_workers
        return list(bag.map(_call).compute(**compute_kwargs))


def _call(group: Callable[[], T]) -> T:
    return group()
