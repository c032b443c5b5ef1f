"""
Tests for YAML / environment configuration.
"""
from pathlib import Path

import pytest

from vangraph.config import Config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("VANGRAPH_DB", "VANGRAPH_BACKEND", "VANGRAPH_CONFIG"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_file_missing(tmp_path):
    cfg = Config.load(str(tmp_path / "missing.yaml"))
    assert cfg.backend == "sqlite"
    assert cfg.port == 3000
    assert cfg.position_step == 1000.0
    assert cfg.db_path == str(Path("~/.local/share/vangraph/vangraph.db").expanduser())


def test_yaml_values_and_unknown_keys(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("backend: memory\nport: 8080\nposition_step: 64\nflux_capacitor: true\n")
    cfg = Config.load(str(path))
    assert cfg.backend == "memory"
    assert cfg.port == 8080
    assert cfg.position_step == 64
    assert not hasattr(cfg, "flux_capacitor")


def test_broken_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("port: [unclosed\n")
    assert Config.load(str(path)).port == 3000


def test_env_overrides_file(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("backend: memory\ndb_path: /from/file.db\n")
    monkeypatch.setenv("VANGRAPH_BACKEND", "SQLite")
    monkeypatch.setenv("VANGRAPH_DB", str(tmp_path / "env.db"))
    cfg = Config.load(str(path))
    assert cfg.backend == "sqlite"
    assert cfg.db_path == str(tmp_path / "env.db")


def test_config_path_from_env(tmp_path, monkeypatch):
    path = tmp_path / "other.yaml"
    path.write_text("host: 0.0.0.0\n")
    monkeypatch.setenv("VANGRAPH_CONFIG", str(path))
    assert Config.load().host == "0.0.0.0"
