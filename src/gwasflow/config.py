"""Run configuration contracts and the JSON run-config loader."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from jsonschema import FormatChecker
from jsonschema.validators import validator_for

from gwasflow.errors import ConfigurationError
from gwasflow.models import CHROMOSOME_X
from gwasflow.stages import ImputationTool, Stage, StageActivation, activation_table

logger = logging.getLogger("gwasflow.config")

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIGS_DIR = REPO_ROOT / "config" / "runs"
DEFAULT_SCHEMA_PATH = REPO_ROOT / "schemas" / "run_config.schema.json"

MINIMUM_CHUNK_SIZE = 1_000
MAX_CHROMOSOME = CHROMOSOME_X
PVA_THRESHOLD = 5e-8
VALID_MANHATTANS: tuple[str, ...] = ("add", "dom", "rec", "gen", "het")
VALID_PHASING_TOOLS: tuple[str, ...] = ("shapeit", "eagle")


@dataclass(frozen=True)
class TestType:
    """One response variable plus covariates analysis definition."""

    __test__ = False

    name: str
    response_variable: str
    covariables: tuple[str, ...] = ()

    @property
    def covariables_arg(self) -> str:
        """Covariates rendered the way association binaries expect them."""

        return " ".join(self.covariables) if self.covariables else "none"


@dataclass(frozen=True)
class Thresholds:
    """Per-variant quality thresholds applied by filterByAll and top hits."""

    maf: float = 0.001
    impute_info: float = 0.7
    minimac_info: float = 0.8
    pva: float = PVA_THRESHOLD
    hwe_cohort: float = 1e-6
    hwe_cases: float = 1e-6
    hwe_controls: float = 1e-6

    def info_for(self, tool: ImputationTool) -> float:
        """Return the info threshold of the configured imputation tool."""

        if tool is ImputationTool.MINIMAC:
            return self.minimac_info
        return self.impute_info


@dataclass(frozen=True)
class RunConfig:
    """Complete, validated description of one workflow run."""

    output_dir: Path
    test_types: tuple[TestType, ...]
    panels: tuple[str, ...]
    run_depth: str = "whole_workflow"
    imputation_tool: ImputationTool = ImputationTool.IMPUTE
    phasing_tool: str = "shapeit"
    init_chromosome: int = 1
    end_chromosome: int = 22
    chunk_size: int = 1_000_000
    thresholds: Thresholds = field(default_factory=Thresholds)
    manhattans: tuple[str, ...] = ("add",)
    refpanel_combine: bool = False
    exclude_cgat_snps: bool = False
    compress_files: bool = False
    remove_temporal_files: bool = False
    placeholder_on_failure: bool = True
    chromosome_bounds: str = "grch37"
    list_of_stages_file: str = "list_of_stages.txt"
    tool_commands: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def chromosomes(self) -> list[int]:
        return list(range(self.init_chromosome, self.end_chromosome + 1))

    @property
    def includes_x(self) -> bool:
        return self.end_chromosome == CHROMOSOME_X

    @property
    def info_threshold(self) -> float:
        return self.thresholds.info_for(self.imputation_tool)

    def stage_activation(self) -> StageActivation:
        return activation_table(self.run_depth, self.imputation_tool)

    def pairs(self) -> list[tuple[TestType, str]]:
        """(test type, panel) pairs in test-type-major order."""

        return [(test_type, panel) for test_type in self.test_types for panel in self.panels]

    def validate(self) -> "RunConfig":
        """Raise ``ConfigurationError`` on any invalid setting; return self."""

        if self.chunk_size < MINIMUM_CHUNK_SIZE:
            raise ConfigurationError(
                f"chunk_size_analysis must not be less than {MINIMUM_CHUNK_SIZE}, got {self.chunk_size}"
            )
        if not 1 <= self.init_chromosome <= MAX_CHROMOSOME:
            raise ConfigurationError(
                f"init_chromosome must be within 1..{MAX_CHROMOSOME}, got {self.init_chromosome}"
            )
        if not 1 <= self.end_chromosome <= MAX_CHROMOSOME or self.end_chromosome < self.init_chromosome:
            raise ConfigurationError(
                f"end_chromosome must be within {self.init_chromosome}..{MAX_CHROMOSOME}, "
                f"got {self.end_chromosome}"
            )
        if not self.test_types:
            raise ConfigurationError("At least one test type is required")
        if not self.panels:
            raise ConfigurationError("At least one reference panel is required")

        _require_unique("test type", [test_type.name for test_type in self.test_types])
        _require_unique("reference panel", list(self.panels))

        if self.phasing_tool not in VALID_PHASING_TOOLS:
            raise ConfigurationError(
                f"Unknown phasing tool '{self.phasing_tool}'. "
                f"Available: {', '.join(VALID_PHASING_TOOLS)}"
            )
        self._validate_thresholds()

        activation = self.stage_activation()
        plots_active = activation.is_active(Stage.GENERATE_QQ_MANHATTAN_PLOTS) or activation.is_active(
            Stage.COMB_GENERATE_MANHATTAN_TOP
        )
        if plots_active:
            unknown = [model for model in self.manhattans if model not in VALID_MANHATTANS]
            if unknown:
                raise ConfigurationError(
                    f"Unsupported manhattan plot types: {', '.join(unknown)}. "
                    f"Available: {', '.join(VALID_MANHATTANS)}"
                )
        if self.init_chromosome == CHROMOSOME_X and self.manhattans != ("add",):
            raise ConfigurationError("Only additive models are supported when analysing chromosome X alone")

        unknown_commands = sorted(set(self.tool_commands) - {stage.value for stage in Stage})
        if unknown_commands:
            raise ConfigurationError(f"tool_commands names unknown stages: {', '.join(unknown_commands)}")
        return self

    def _validate_thresholds(self) -> None:
        bounded = {
            "maf_threshold": self.thresholds.maf,
            "impute_threshold": self.thresholds.impute_info,
            "minimac_threshold": self.thresholds.minimac_info,
            "hwe_cohort_threshold": self.thresholds.hwe_cohort,
            "hwe_cases_threshold": self.thresholds.hwe_cases,
            "hwe_controls_threshold": self.thresholds.hwe_controls,
        }
        for name, value in bounded.items():
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        if not 0.0 < self.thresholds.pva <= 1.0:
            raise ConfigurationError(f"pva_threshold must be within (0, 1], got {self.thresholds.pva}")

    def describe(self) -> dict[str, Any]:
        """Parameter summary written into the stage manifest and dry runs."""

        return {
            "run_depth": self.run_depth,
            "imputation_tool": self.imputation_tool.value,
            "phasing_tool": self.phasing_tool,
            "init_chromosome": self.init_chromosome,
            "end_chromosome": self.end_chromosome,
            "chunk_size_analysis": self.chunk_size,
            "maf_threshold": self.thresholds.maf,
            "info_threshold": self.info_threshold,
            "pva_threshold": self.thresholds.pva,
            "hwe_cohort_threshold": self.thresholds.hwe_cohort,
            "hwe_cases_threshold": self.thresholds.hwe_cases,
            "hwe_controls_threshold": self.thresholds.hwe_controls,
            "exclude_cgat_snps": self.exclude_cgat_snps,
            "test_types": [test_type.name for test_type in self.test_types],
            "panels": list(self.panels),
            "refpanel_combine": self.refpanel_combine,
            "manhattans": list(self.manhattans),
            "compress_files": self.compress_files,
            "remove_temporal_files": self.remove_temporal_files,
            "output_dir": str(self.output_dir),
        }


def _require_unique(label: str, names: list[str]) -> None:
    seen: set[str] = set()
    for name in names:
        if name in seen:
            raise ConfigurationError(f"Duplicate {label} name: {name}")
        seen.add(name)


def parse_flag(value: Any, name: str) -> bool:
    """Accept JSON booleans and the ``YES``/``NO`` strings of legacy configs."""

    if isinstance(value, bool):
        return value
    text = str(value).strip().upper()
    if text in {"YES", "TRUE"}:
        return True
    if text in {"NO", "FALSE"}:
        return False
    raise ConfigurationError(f"{name} must be YES or NO, got {value!r}")


def parse_override_value(raw: str) -> Any:
    lowered = raw.strip().lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if lowered == "null":
        return None
    try:
        return int(raw)
    except ValueError:
        pass
    try:
        return float(raw)
    except ValueError:
        pass
    return raw


def apply_overrides(payload: dict[str, Any], entries: Iterable[str]) -> dict[str, Any]:
    """Apply ``dotted.key=value`` overrides to a copy of a config payload."""

    updated = deepcopy(payload)
    for entry in entries:
        if "=" not in entry:
            raise ConfigurationError(f"Override must use KEY=VALUE format: {entry}")
        key, raw_value = entry.split("=", 1)
        parts = [item for item in key.strip().split(".") if item]
        if not parts:
            raise ConfigurationError(f"Invalid override key: {key}")
        cursor: dict[str, Any] = updated
        for part in parts[:-1]:
            existing = cursor.get(part)
            if existing is None:
                cursor[part] = {}
                existing = cursor[part]
            if not isinstance(existing, dict):
                raise ConfigurationError(f"Cannot descend into non-object key: {part}")
            cursor = existing
        cursor[parts[-1]] = parse_override_value(raw_value.strip())
    return updated


class RunConfigLoader:
    """Load run configs from ``config/runs`` or a custom path."""

    def __init__(
        self,
        configs_dir: str | Path | None = None,
        schema_path: str | Path | None = None,
    ) -> None:
        self.configs_dir = Path(configs_dir) if configs_dir is not None else DEFAULT_CONFIGS_DIR
        self.schema_path = Path(schema_path) if schema_path is not None else DEFAULT_SCHEMA_PATH

    def list_configs(self) -> list[str]:
        """Return available config names from the configured directory."""

        return sorted(path.stem for path in self.configs_dir.glob("*.json"))

    def load(self, name_or_path: str | Path, overrides: Iterable[str] = ()) -> RunConfig:
        """Load, override, schema-check and validate a run config."""

        path = self._resolve_path(name_or_path)
        payload = json.loads(path.read_text())
        if not isinstance(payload, dict):
            raise ConfigurationError(f"Run config must be a JSON object: {path}")
        payload = apply_overrides(payload, overrides)
        self.check_schema(payload, source=path)
        config = self._parse(payload, base_dir=path.parent)
        logger.debug("Loaded run config %s (%s)", path, config.run_depth)
        return config.validate()

    def check_schema(self, payload: dict[str, Any], *, source: Path | None = None) -> None:
        schema = json.loads(self.schema_path.read_text())
        validator_cls = validator_for(schema)
        validator_cls.check_schema(schema)
        validator = validator_cls(schema, format_checker=FormatChecker())
        errors = sorted(validator.iter_errors(payload), key=lambda err: [str(p) for p in err.path])
        if not errors:
            return
        problems = [
            f"/{'/'.join(str(part) for part in err.path)}: {err.message}" for err in errors
        ]
        where = f" in {source}" if source is not None else ""
        raise ConfigurationError(f"Run config schema violations{where}: " + "; ".join(problems))

    def _resolve_path(self, name_or_path: str | Path) -> Path:
        requested = Path(name_or_path)

        if requested.exists():
            return requested

        candidate = self.configs_dir / f"{requested}.json"
        if candidate.exists():
            return candidate

        raise FileNotFoundError(
            f"Run config not found: {name_or_path}. Available: {', '.join(self.list_configs())}"
        )

    def _parse(self, payload: dict[str, Any], *, base_dir: Path) -> RunConfig:
        raw_thresholds = payload.get("thresholds", {})
        thresholds = Thresholds(
            maf=float(raw_thresholds.get("maf", Thresholds.maf)),
            impute_info=float(raw_thresholds.get("impute_info", Thresholds.impute_info)),
            minimac_info=float(raw_thresholds.get("minimac_info", Thresholds.minimac_info)),
            pva=float(raw_thresholds.get("pva", Thresholds.pva)),
            hwe_cohort=float(raw_thresholds.get("hwe_cohort", Thresholds.hwe_cohort)),
            hwe_cases=float(raw_thresholds.get("hwe_cases", Thresholds.hwe_cases)),
            hwe_controls=float(raw_thresholds.get("hwe_controls", Thresholds.hwe_controls)),
        )

        test_types = tuple(
            TestType(
                name=str(raw["name"]),
                response_variable=str(raw["response_variable"]),
                covariables=_parse_covariables(raw.get("covariables", ())),
            )
            for raw in payload.get("test_types", [])
        )

        output_dir = Path(os.path.expandvars(str(payload["output_dir"]))).expanduser()
        if not output_dir.is_absolute():
            output_dir = (base_dir / output_dir).resolve()

        try:
            imputation_tool = ImputationTool(str(payload.get("imputation_tool", "impute")))
        except ValueError:
            raise ConfigurationError(
                f"Unknown imputation tool '{payload.get('imputation_tool')}'. "
                f"Available: {', '.join(item.value for item in ImputationTool)}"
            ) from None

        tool_commands = {
            str(stage): tuple(str(token) for token in argv)
            for stage, argv in payload.get("tool_commands", {}).items()
        }

        init_chromosome = int(payload.get("init_chromosome", 1))
        end_chromosome = int(payload.get("end_chromosome", 22))
        manhattans = tuple(str(model) for model in payload.get("manhattans", ["add"]))
        if init_chromosome == end_chromosome == CHROMOSOME_X and "add" in manhattans:
            manhattans = ("add",)

        return RunConfig(
            output_dir=output_dir,
            test_types=test_types,
            panels=tuple(str(panel) for panel in payload.get("panels", [])),
            run_depth=str(payload.get("run_depth", "whole_workflow")),
            imputation_tool=imputation_tool,
            phasing_tool=str(payload.get("phasing_tool", "shapeit")),
            init_chromosome=init_chromosome,
            end_chromosome=end_chromosome,
            chunk_size=int(payload.get("chunk_size_analysis", 1_000_000)),
            thresholds=thresholds,
            manhattans=manhattans,
            refpanel_combine=parse_flag(payload.get("refpanel_combine", False), "refpanel_combine"),
            exclude_cgat_snps=parse_flag(payload.get("exclude_cgat_snps", False), "exclude_cgat_snps"),
            compress_files=parse_flag(payload.get("compress_files", False), "compress_files"),
            remove_temporal_files=parse_flag(
                payload.get("remove_temporal_files", False), "remove_temporal_files"
            ),
            placeholder_on_failure=parse_flag(
                payload.get("placeholder_on_failure", True), "placeholder_on_failure"
            ),
            chromosome_bounds=str(payload.get("chromosome_bounds", "grch37")),
            list_of_stages_file=str(payload.get("file_name_for_list_of_stages", "list_of_stages.txt")),
            tool_commands=tool_commands,
        )


def _parse_covariables(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, str):
        if raw.strip().lower() in {"", "none"}:
            return ()
        return tuple(item.strip() for item in raw.split(",") if item.strip())
    return tuple(str(item) for item in raw)
