"""
Tests for loading settings.
"""

import json
from pathlib import Path

import pytest

from mod_annotator.config import ConfigError, load_settings


@pytest.fixture(autouse=True)
def no_token(monkeypatch):
    monkeypatch.delenv("GITHUB_API_KEY", raising=False)


def test_defaults_without_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    settings = load_settings()
    assert settings.mod_base_dir == Path("../.minecraft/mods")
    assert settings.annotated_file == Path("annotated_mods.json")
    assert settings.scan_depth == 4
    assert settings.update_batch_size == 8
    assert settings.github_api_key is None


def test_config_file(tmp_path):
    config = tmp_path / "config.json"
    config.write_text(
        json.dumps({"MOD_BASE_DIR": "/games/mods/", "ANNOTATED_FILE": "store.json", "SCAN_DEPTH": "2"}),
        encoding="utf-8",
    )
    settings = load_settings(config)
    assert settings.mod_base_dir == Path("/games/mods")
    assert settings.annotated_file == Path("store.json")
    assert settings.scan_depth == 2
    assert settings.ignored_path == Path("/games/mods/disabled_mods")


def test_token_from_env_json(tmp_path, monkeypatch):
    config = tmp_path / "config.json"
    config.write_text("{}", encoding="utf-8")
    (tmp_path / ".env.json").write_text(json.dumps({"GITHUB_API_KEY": "from-file"}), encoding="utf-8")
    assert load_settings(config).github_api_key == "from-file"

    monkeypatch.setenv("GITHUB_API_KEY", "from-env")
    assert load_settings(config).github_api_key == "from-env"


def test_bad_config(tmp_path):
    config = tmp_path / "config.json"
    config.write_text("[]", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(config)
    config.write_text("{oops", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(config)
    with pytest.raises(ConfigError):
        load_settings(tmp_path / "missing.json")


def test_bad_number(tmp_path):
    config = tmp_path / "config.json"
    config.write_text(json.dumps({"UPDATE_BATCH_SIZE": "lots"}), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_settings(config)
