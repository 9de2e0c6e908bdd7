import json
import sys
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))

from gwasflow import ConfigurationError, ImputationTool, RunConfigLoader  # noqa: E402
from gwasflow.config import apply_overrides, parse_flag  # noqa: E402


def _payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "output_dir": "out",
        "test_types": [{"name": "cc", "response_variable": "pheno", "covariables": "sex,age"}],
        "panels": ["1kg"],
        "run_depth": "from_association",
        "init_chromosome": 1,
        "end_chromosome": 2,
        "chunk_size_analysis": 1000,
    }
    payload.update(overrides)
    return payload


def _write_config(directory: Path, name: str, payload: dict[str, Any]) -> Path:
    path = directory / f"{name}.json"
    path.write_text(json.dumps(payload))
    return path


def test_example_config_loads_with_env_expanded_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GWASFLOW_OUTPUT", str(tmp_path))
    loader = RunConfigLoader()

    assert "example" in loader.list_configs()
    config = loader.load("example")

    assert config.output_dir == tmp_path / "example_run"
    assert config.panels == ("1kg", "hapmap")
    assert config.test_types[0].covariables == ("sex", "age")
    assert config.test_types[1].covariables_arg == "none"
    assert config.refpanel_combine is True
    assert config.exclude_cgat_snps is False
    assert config.includes_x
    assert config.chromosomes == [21, 22, 23]


def test_relative_output_dir_resolves_against_config_dir(tmp_path: Path) -> None:
    _write_config(tmp_path, "run", _payload())

    config = RunConfigLoader(configs_dir=tmp_path).load("run")

    assert config.output_dir == (tmp_path / "out").resolve()
    assert config.test_types[0].covariables == ("sex", "age")


def test_overrides_apply_before_validation(tmp_path: Path) -> None:
    _write_config(tmp_path, "run", _payload())

    config = RunConfigLoader(configs_dir=tmp_path).load(
        "run",
        ["thresholds.maf=0.05", "imputation_tool=minimac", "remove_temporal_files=YES"],
    )

    assert config.thresholds.maf == 0.05
    assert config.imputation_tool is ImputationTool.MINIMAC
    assert config.info_threshold == 0.8
    assert config.remove_temporal_files is True
    assert config.describe()["info_threshold"] == 0.8


def test_schema_violations_are_all_reported(tmp_path: Path) -> None:
    payload = _payload(chunk_size_analysis="big")
    del payload["panels"]
    _write_config(tmp_path, "run", payload)

    with pytest.raises(ConfigurationError) as excinfo:
        RunConfigLoader(configs_dir=tmp_path).load("run")

    message = str(excinfo.value)
    assert "'panels' is a required property" in message
    assert "/chunk_size_analysis" in message


def test_small_chunk_size_is_rejected(tmp_path: Path) -> None:
    _write_config(tmp_path, "run", _payload(chunk_size_analysis=999))

    with pytest.raises(ConfigurationError, match="must not be less than 1000"):
        RunConfigLoader(configs_dir=tmp_path).load("run")


@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"init_chromosome": 0}, "init_chromosome"),
        ({"init_chromosome": 5, "end_chromosome": 3}, "end_chromosome"),
        ({"end_chromosome": 24}, "end_chromosome"),
        ({"panels": ["1kg", "1kg"]}, "Duplicate reference panel"),
        ({"run_depth": "from_nowhere"}, "Unknown run depth"),
        ({"imputation_tool": "beagle"}, "Unknown imputation tool"),
        ({"phasing_tool": "beagle"}, "Unknown phasing tool"),
        ({"thresholds": {"maf": 1.5}}, "maf_threshold"),
        ({"thresholds": {"pva": 0}}, "pva_threshold"),
        ({"tool_commands": {"notAStage": ["echo"]}}, "unknown stages"),
        ({"run_depth": "whole_workflow", "manhattans": ["add", "xyz"]}, "Unsupported manhattan"),
    ],
)
def test_invalid_settings_fail_before_planning(tmp_path: Path, overrides: dict[str, Any], message: str) -> None:
    _write_config(tmp_path, "run", _payload(**overrides))

    with pytest.raises(ConfigurationError, match=message):
        RunConfigLoader(configs_dir=tmp_path).load("run")


def test_x_only_run_requires_additive_model(tmp_path: Path) -> None:
    _write_config(tmp_path, "run", _payload(init_chromosome=23, end_chromosome=23, manhattans=["dom"]))

    with pytest.raises(ConfigurationError, match="additive"):
        RunConfigLoader(configs_dir=tmp_path).load("run")


def test_x_only_run_keeps_only_additive_model(tmp_path: Path) -> None:
    _write_config(tmp_path, "run", _payload(init_chromosome=23, end_chromosome=23, manhattans=["add", "rec"]))

    config = RunConfigLoader(configs_dir=tmp_path).load("run")

    assert config.manhattans == ("add",)


def test_missing_config_lists_available(tmp_path: Path) -> None:
    _write_config(tmp_path, "alpha", _payload())

    with pytest.raises(FileNotFoundError, match="Available: alpha"):
        RunConfigLoader(configs_dir=tmp_path).load("beta")


def test_apply_overrides_builds_nested_keys() -> None:
    updated = apply_overrides({"a": 1}, ["b.c.d=2", "b.e=true", "f=null", "g=0.5", "h=text"])

    assert updated == {"a": 1, "b": {"c": {"d": 2}, "e": True}, "f": None, "g": 0.5, "h": "text"}


def test_apply_overrides_rejects_bad_entries() -> None:
    with pytest.raises(ConfigurationError, match="KEY=VALUE"):
        apply_overrides({}, ["novalue"])
    with pytest.raises(ConfigurationError, match="non-object"):
        apply_overrides({"a": 1}, ["a.b=2"])


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(True, True), ("YES", True), ("no", False), ("False", False)],
)
def test_parse_flag_accepts_yes_no(raw: Any, expected: bool) -> None:
    assert parse_flag(raw, "flag") is expected


def test_parse_flag_rejects_other_values() -> None:
    with pytest.raises(ConfigurationError, match="YES or NO"):
        parse_flag("maybe", "compress_files")
