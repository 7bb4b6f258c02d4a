from pathlib import Path

import pytest

from sysmond import config
from sysmond.config import DEFAULTS, ConfigError, load_config, merge


def test_merge_is_recursive_and_non_mutating():
    base = {"a": {"x": 1, "y": 2}, "b": 3}
    merged = merge(base, {"a": {"y": 20}, "c": 4})

    assert merged == {"a": {"x": 1, "y": 20}, "b": 3, "c": 4}
    assert base == {"a": {"x": 1, "y": 2}, "b": 3}


def test_missing_default_path_uses_defaults(tmp_path: Path, monkeypatch):
    monkeypatch.setattr(config, "DEFAULT_CONFIG_PATH", tmp_path / "nope.yaml")
    assert load_config() == DEFAULTS


def test_missing_explicit_path_raises(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "nope.yaml"))


def test_file_overrides_defaults(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("thermal:\n  poll_interval: 0.5\n  source: hwmon\nlifecycle:\n  exit_grace: 0\n")

    cfg = load_config(str(path))

    assert cfg["thermal"]["poll_interval"] == 0.5
    assert cfg["thermal"]["source"] == "hwmon"
    assert cfg["thermal"]["command_timeout"] == 5
    assert cfg["lifecycle"]["exit_grace"] == 0
    assert cfg["power"] == DEFAULTS["power"]


def test_invalid_yaml_raises(tmp_path: Path):
    path = tmp_path / "config.yaml"
    path.write_text("thermal: [oops\n")

    with pytest.raises(ConfigError):
        load_config(str(path))


def test_sample_config_is_valid():
    sample = Path(__file__).resolve().parents[1] / "config.yaml"
    cfg = load_config(str(sample))
    assert cfg["thermal"]["sensor_name"] == "coretemp-isa-0000"
