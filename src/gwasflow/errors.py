"""Error taxonomy for gwasflow workflows."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


class GwasflowError(Exception):
    """Base error optionally tagged with the stage that raised it."""

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage

    def with_stage(self, stage: str) -> "GwasflowError":
        """Return the same error tagged with ``stage`` unless already tagged."""

        if self.stage is None:
            self.stage = stage
        return self

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class ConfigurationError(GwasflowError):
    """Invalid run configuration, raised before any work unit is planned."""


class InternalMergeFailure(GwasflowError):
    """Malformed input hit by merge, reconciliation or matrix logic."""

    def __init__(
        self,
        message: str,
        *,
        stage: str | None = None,
        artifact: str | None = None,
    ) -> None:
        if artifact:
            message = f"{message} (artifact: {artifact})"
        super().__init__(message, stage=stage)
        self.artifact = artifact


class ExternalToolFailure(GwasflowError):
    """External genomics binary exited with a nonzero status."""

    def __init__(
        self,
        command: Sequence[str],
        exit_code: int,
        *,
        stage: str | None = None,
    ) -> None:
        self.command = list(command)
        self.exit_code = exit_code
        program = self.command[0] if self.command else "<empty>"
        super().__init__(f"{program} exited with status {exit_code}", stage=stage)


class WorkflowFailure(GwasflowError):
    """Some dependent subtrees failed; independent ones ran to completion.

    ``errors`` holds the stage-tagged failures in the order they occurred and
    ``report`` the summary of everything that did run.
    """

    def __init__(self, errors: Sequence[GwasflowError], report: Any = None) -> None:
        self.errors = list(errors)
        self.report = report
        first = self.errors[0] if self.errors else "unknown failure"
        super().__init__(f"{len(self.errors)} task(s) failed; first: {first}")
