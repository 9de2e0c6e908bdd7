"""Path naming service: stable artifact identities from coordinates."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from gwasflow.models import (
    Artifact,
    ArtifactCoordinates,
    ArtifactKind,
    GenomicWindow,
    WorkUnit,
)

ARTIFACT_SUFFIX = ".txt.gz"


class PathNamingService(ABC):
    """Maps (test type, panel, chromosome, window, kind) to artifact handles."""

    @abstractmethod
    def window_artifact(self, unit: WorkUnit, kind: ArtifactKind) -> Artifact:
        """Per-window result of one work unit."""

    @abstractmethod
    def stage_output(self, stage: str, unit: WorkUnit, suffix: str) -> Path:
        """Output file of an external per-window stage."""

    @abstractmethod
    def chromosome_stage_output(
        self, stage: str, chromosome: int, suffix: str, *, panel: str | None = None
    ) -> Path:
        """Output file of an external per-chromosome stage."""

    @abstractmethod
    def reduced_artifact(
        self, test_type: str, panel: str, chromosome: int, kind: ArtifactKind, index: int
    ) -> Artifact:
        """Intermediate output of a window reduction."""

    @abstractmethod
    def chromosome_artifact(self, test_type: str, panel: str, chromosome: int, kind: ArtifactKind) -> Artifact:
        """Final per-chromosome artifact of a window reduction."""

    @abstractmethod
    def joint_artifact(self, test_type: str, panel: str, kind: ArtifactKind, index: int) -> Artifact:
        """Intermediate or final output of a cross-chromosome join."""

    @abstractmethod
    def pair_result(self, test_type: str, panel: str, kind: ArtifactKind) -> Artifact:
        """Final cross-chromosome result of one (test type, panel) pair."""

    @abstractmethod
    def x_artifact(self, test_type: str, panel: str, kind: ArtifactKind) -> Artifact:
        """Chromosome X result joined separately from autosomes."""

    @abstractmethod
    def top_hits(self, test_type: str, panel: str) -> Artifact:
        """Top hits of one (test type, panel) pair."""

    @abstractmethod
    def plot_outputs(self, test_type: str, panel: str | None) -> dict[str, Path]:
        """QQ/Manhattan plot files; ``panel=None`` for combined panels."""

    @abstractmethod
    def combined_window_artifact(
        self, test_type: str, step: int, window: GenomicWindow, kind: ArtifactKind
    ) -> Artifact:
        """Cross-panel result of one window after ``step`` reconciliations."""

    @abstractmethod
    def combined_reduced_artifact(
        self, test_type: str, kind: ArtifactKind, index: int, *, x_only: bool = False
    ) -> Artifact:
        """Cross-window reduction of combined results."""

    @abstractmethod
    def combined_top_hits(self, test_type: str) -> Artifact:
        """Top hits of the combined panels of one test type."""

    @abstractmethod
    def phenome_artifact(self, phase: str, index: int) -> Artifact:
        """Phenotype matrix artifact of a builder phase."""

    @abstractmethod
    def manifest_path(self, file_name: str) -> Path:
        """Where the list of executed stages is written."""


class DirectoryNaming(PathNamingService):
    """Deterministic directory layout rooted at the run output directory."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _pair_dir(self, area: str, test_type: str, panel: str) -> Path:
        return self.root / area / test_type / panel

    def window_artifact(self, unit: WorkUnit, kind: ArtifactKind) -> Artifact:
        window = unit.window
        path = (
            self._pair_dir("associations", unit.test_type, unit.panel)
            / f"Chr_{unit.chromosome}"
            / f"{kind.value}_{unit.test_type}_{unit.panel}_chr{unit.chromosome}_{window.label}{ARTIFACT_SUFFIX}"
        )
        return Artifact(
            path=path,
            kind=kind,
            coordinates=ArtifactCoordinates(
                test_type=unit.test_type,
                panel=unit.panel,
                chromosome=unit.chromosome,
                window=window,
            ),
        )

    def stage_output(self, stage: str, unit: WorkUnit, suffix: str) -> Path:
        # Panel-scoped stages run once for every test type and carry no test type.
        scope = f"{unit.test_type}_{unit.panel}" if unit.test_type else unit.panel
        return (
            self.root
            / "stages"
            / stage
            / unit.panel
            / f"Chr_{unit.chromosome}"
            / f"{stage}_{scope}_chr{unit.chromosome}_{unit.window.label}{suffix}"
        )

    def chromosome_stage_output(
        self, stage: str, chromosome: int, suffix: str, *, panel: str | None = None
    ) -> Path:
        scope = panel or "common"
        return self.root / "stages" / stage / scope / f"{stage}_{scope}_chr{chromosome}{suffix}"

    def reduced_artifact(
        self, test_type: str, panel: str, chromosome: int, kind: ArtifactKind, index: int
    ) -> Artifact:
        path = (
            self._pair_dir("associations", test_type, panel)
            / f"Chr_{chromosome}"
            / "reduced"
            / f"reduced_{kind.value}_{test_type}_{panel}_chr{chromosome}_{index}{ARTIFACT_SUFFIX}"
        )
        return Artifact(
            path=path,
            kind=kind,
            coordinates=ArtifactCoordinates(
                test_type=test_type, panel=panel, chromosome=chromosome, index=index
            ),
        )

    def chromosome_artifact(self, test_type: str, panel: str, chromosome: int, kind: ArtifactKind) -> Artifact:
        path = (
            self._pair_dir("merged", test_type, panel)
            / f"{kind.value}_{test_type}_{panel}_chr{chromosome}{ARTIFACT_SUFFIX}"
        )
        return Artifact(
            path=path,
            kind=kind,
            coordinates=ArtifactCoordinates(test_type=test_type, panel=panel, chromosome=chromosome),
        )

    def joint_artifact(self, test_type: str, panel: str, kind: ArtifactKind, index: int) -> Artifact:
        path = (
            self._pair_dir("merged", test_type, panel)
            / "joint"
            / f"joint_{kind.value}_{test_type}_{panel}_{index}{ARTIFACT_SUFFIX}"
        )
        return Artifact(
            path=path,
            kind=kind,
            coordinates=ArtifactCoordinates(test_type=test_type, panel=panel, index=index),
        )

    def pair_result(self, test_type: str, panel: str, kind: ArtifactKind) -> Artifact:
        path = self._pair_dir("results", test_type, panel) / f"{kind.value}_{test_type}_{panel}{ARTIFACT_SUFFIX}"
        return Artifact(
            path=path,
            kind=kind,
            coordinates=ArtifactCoordinates(test_type=test_type, panel=panel),
        )

    def x_artifact(self, test_type: str, panel: str, kind: ArtifactKind) -> Artifact:
        path = self._pair_dir("results", test_type, panel) / f"{kind.value}_{test_type}_{panel}_chrX{ARTIFACT_SUFFIX}"
        return Artifact(
            path=path,
            kind=kind,
            coordinates=ArtifactCoordinates(test_type=test_type, panel=panel, chromosome=23),
        )

    def top_hits(self, test_type: str, panel: str) -> Artifact:
        path = self._pair_dir("results", test_type, panel) / f"tophits_{test_type}_{panel}{ARTIFACT_SUFFIX}"
        return Artifact(
            path=path,
            kind=ArtifactKind.TOP_HITS,
            coordinates=ArtifactCoordinates(test_type=test_type, panel=panel),
        )

    def plot_outputs(self, test_type: str, panel: str | None) -> dict[str, Path]:
        if panel is None:
            base = self.root / "combined" / test_type
            stem = f"{test_type}_combined"
        else:
            base = self._pair_dir("results", test_type, panel)
            stem = f"{test_type}_{panel}"
        return {
            "qq_pdf": base / f"QQplot_{stem}.pdf",
            "manhattan_pdf": base / f"manhattan_{stem}.pdf",
            "qq_tiff": base / f"QQplot_{stem}.tiff",
            "manhattan_tiff": base / f"manhattan_{stem}.tiff",
            "corrected_pvalues": base / f"corrected_pvalues_{stem}.txt.gz",
        }

    def combined_window_artifact(
        self, test_type: str, step: int, window: GenomicWindow, kind: ArtifactKind
    ) -> Artifact:
        path = (
            self.root
            / "combined"
            / test_type
            / f"Chr_{window.chromosome}"
            / f"combined_{kind.value}_{test_type}_step{step}_chr{window.chromosome}_{window.label}{ARTIFACT_SUFFIX}"
        )
        return Artifact(
            path=path,
            kind=kind,
            coordinates=ArtifactCoordinates(
                test_type=test_type, chromosome=window.chromosome, window=window, index=step
            ),
        )

    def combined_reduced_artifact(
        self, test_type: str, kind: ArtifactKind, index: int, *, x_only: bool = False
    ) -> Artifact:
        scope = "chrX" if x_only else "all"
        path = (
            self.root
            / "combined"
            / test_type
            / "reduced"
            / f"combined_reduced_{kind.value}_{test_type}_{scope}_{index}{ARTIFACT_SUFFIX}"
        )
        return Artifact(
            path=path,
            kind=kind,
            coordinates=ArtifactCoordinates(test_type=test_type, index=index),
        )

    def combined_top_hits(self, test_type: str) -> Artifact:
        path = self.root / "combined" / test_type / f"tophits_{test_type}_combined{ARTIFACT_SUFFIX}"
        return Artifact(
            path=path,
            kind=ArtifactKind.TOP_HITS,
            coordinates=ArtifactCoordinates(test_type=test_type),
        )

    def phenome_artifact(self, phase: str, index: int) -> Artifact:
        path = self.root / "phenome" / f"phenome_{phase}_{index}{ARTIFACT_SUFFIX}"
        return Artifact(
            path=path,
            kind=ArtifactKind.PHENOME_MATRIX,
            coordinates=ArtifactCoordinates(index=index),
        )

    def manifest_path(self, file_name: str) -> Path:
        return self.root / file_name
