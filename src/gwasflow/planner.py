"""Chunk planner: chromosome windows and ordered work units."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path

from gwasflow.config import MAX_CHROMOSOME, REPO_ROOT, RunConfig
from gwasflow.errors import ConfigurationError
from gwasflow.models import CHROMOSOME_X, GenomicWindow, WorkUnit

logger = logging.getLogger("gwasflow.planner")

DEFAULT_BOUNDS_DIR = REPO_ROOT / "config" / "chromosome_bounds"


def plan_windows(
    chromosome: int,
    min_position: int,
    max_position: int,
    chunk_size: int,
) -> tuple[GenomicWindow, ...]:
    """Split ``[min_position, max_position]`` into consecutive windows.

    Windows are ``chunk_size`` wide and keep coming while the window start is
    below ``max_position``; the last window's end is not clamped.
    """

    if chunk_size <= 0:
        raise ConfigurationError(f"Chunk size must be positive, got {chunk_size}")
    if min_position > max_position:
        raise ConfigurationError(
            f"Chromosome {chromosome} has min position {min_position} above max {max_position}"
        )

    windows: list[GenomicWindow] = []
    start = min_position
    while start < max_position:
        windows.append(
            GenomicWindow(
                chromosome=chromosome,
                start=start,
                end=start + chunk_size - 1,
                chunk_size=chunk_size,
            )
        )
        start += chunk_size
    return tuple(windows)


def split_chromosomes(start: int, end: int) -> tuple[list[int], int | None]:
    """Separate autosomes from chromosome X for a ``[start, end]`` range.

    X is returned on its own whenever the range ends at 23; a range of just
    ``23`` yields no autosomes.
    """

    if not 1 <= start <= end <= MAX_CHROMOSOME:
        raise ConfigurationError(f"Invalid chromosome range {start}..{end}")
    if end != CHROMOSOME_X:
        return list(range(start, end + 1)), None
    return list(range(start, CHROMOSOME_X)), CHROMOSOME_X


@dataclass(frozen=True)
class ChromosomeBounds:
    """Per-chromosome ``(min_position, max_position)`` table."""

    name: str
    bounds: Mapping[int, tuple[int, int]]

    def for_chromosome(self, chromosome: int) -> tuple[int, int]:
        try:
            return self.bounds[chromosome]
        except KeyError:
            raise ConfigurationError(
                f"No position bounds for chromosome {chromosome} in '{self.name}'"
            ) from None

    @classmethod
    def uniform(cls, start: int, end: int, min_position: int, max_position: int) -> "ChromosomeBounds":
        """Same bounds for every chromosome in ``[start, end]``."""

        return cls(
            name="uniform",
            bounds={chromosome: (min_position, max_position) for chromosome in range(start, end + 1)},
        )

    @classmethod
    def load(cls, name_or_path: str | Path, bounds_dir: str | Path | None = None) -> "ChromosomeBounds":
        """Load bounds by name from ``config/chromosome_bounds`` or an explicit path."""

        directory = Path(bounds_dir) if bounds_dir is not None else DEFAULT_BOUNDS_DIR
        requested = Path(name_or_path)
        if requested.exists():
            path = requested
        else:
            path = directory / f"{requested}.json"
            if not path.exists():
                available = sorted(item.stem for item in directory.glob("*.json"))
                raise ConfigurationError(
                    f"Chromosome bounds not found: {name_or_path}. Available: {', '.join(available)}"
                )

        payload = json.loads(path.read_text())
        raw_bounds = payload.get("chromosomes")
        if not isinstance(raw_bounds, Mapping):
            raise ConfigurationError(f"Chromosome bounds file needs a 'chromosomes' object: {path}")
        parsed: dict[int, tuple[int, int]] = {}
        for key, value in raw_bounds.items():
            chromosome = CHROMOSOME_X if str(key).upper() == "X" else int(key)
            if isinstance(value, Mapping):
                parsed[chromosome] = (int(value.get("min", 1)), int(value["max"]))
            else:
                parsed[chromosome] = (int(value[0]), int(value[1]))
        return cls(name=str(payload.get("name", path.stem)), bounds=parsed)


class ChunkPlanner:
    """Enumerate windows and work units for a validated run config."""

    def __init__(self, config: RunConfig, bounds: ChromosomeBounds) -> None:
        self.config = config
        self.bounds = bounds
        self._windows: dict[int, tuple[GenomicWindow, ...]] = {}

    def windows_for(self, chromosome: int) -> tuple[GenomicWindow, ...]:
        if chromosome not in self._windows:
            min_position, max_position = self.bounds.for_chromosome(chromosome)
            self._windows[chromosome] = plan_windows(
                chromosome, min_position, max_position, self.config.chunk_size
            )
        return self._windows[chromosome]

    def chromosome_split(self) -> tuple[list[int], int | None]:
        return split_chromosomes(self.config.init_chromosome, self.config.end_chromosome)

    def units_for(self, test_type: str, panel: str, chromosome: int) -> list[WorkUnit]:
        """Ordered units of one (test type, panel, chromosome)."""

        return [
            WorkUnit(test_type=test_type, panel=panel, chromosome=chromosome, window=window)
            for window in self.windows_for(chromosome)
        ]

    def work_units(self) -> Iterator[WorkUnit]:
        """Every unit, test-type-major, then panel, chromosome and window."""

        for test_type, panel in self.config.pairs():
            for chromosome in self.config.chromosomes:
                yield from self.units_for(test_type.name, panel, chromosome)

    def count_units(self) -> int:
        per_pair = sum(len(self.windows_for(chromosome)) for chromosome in self.config.chromosomes)
        return per_pair * len(self.config.pairs())
