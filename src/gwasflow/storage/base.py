"""Base class for phenotype matrix storage backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from gwasflow.models import Artifact


class MatrixStorage(ABC):
    """Persists a finished phenotype matrix outside the artifact tree."""

    @abstractmethod
    def persist(self, matrix: Artifact | str | Path) -> int:
        """Persist the matrix and return the number of stored rows."""
