"""
End-to-end tests for the command-line interface.
"""

import json

import pytest
from click.testing import CliRunner

from mod_annotator.cli import main
from tests.conftest import make_jar


@pytest.fixture
def workspace(tmp_path, mods_dir, monkeypatch):
    """A mods folder with alpha (wanting beta) and beta, run from tmp_path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GITHUB_API_KEY", raising=False)
    monkeypatch.delenv("MOD_BASE_DIR", raising=False)
    monkeypatch.delenv("ANNOTATED_FILE", raising=False)
    make_jar(mods_dir / "Alpha-1.0.jar", info=[{"modid": "alpha", "requiredMods": ["beta"]}])
    make_jar(mods_dir / "Beta-2.0.jar", info=[{"modid": "beta"}])
    return tmp_path


def run(*args):
    result = CliRunner().invoke(main, ["--mods-dir", "mods", "--store", "store.json", *args])
    return result


def test_refresh_then_toggle_round_trip(workspace):
    result = run("refresh")
    assert result.exit_code == 0, result.output
    assert "Archives scanned: 2" in result.output

    result = run("disable", "BETA")
    assert result.exit_code == 0, result.output
    assert "Changed 2 mods." in result.output
    assert (workspace / "mods" / "Alpha-1.0.jar.disabled").exists()
    assert (workspace / "mods" / "Beta-2.0.jar.disabled").exists()

    result = run("enable", "alpha")
    assert "Changed 2 mods." in result.output
    assert (workspace / "mods" / "Alpha-1.0.jar").exists()
    assert (workspace / "mods" / "Beta-2.0.jar").exists()

    # the store agrees with the folder after a fresh scan
    run("refresh")
    data = json.loads((workspace / "store.json").read_text(encoding="utf-8"))
    assert data["alpha"]["enabled"] is True
    assert data["beta"]["wanted_by"] == ["alpha"]


def test_unknown_id(workspace):
    run("refresh")
    result = run("toggle", "ghost")
    assert result.exit_code == 0
    assert "Unknown mod id: ghost" in result.output
    assert "No changes made." in result.output


def test_commands_need_a_store(workspace):
    result = run("list")
    assert result.exit_code == 1
    assert "Error:" in result.output
    assert "refresh" in result.output


def test_list(workspace):
    run("refresh")
    run("disable", "alpha")
    result = run("list")
    assert result.exit_code == 0, result.output
    assert "1 enabled, 1 disabled" in result.output


def test_list_folder(workspace):
    result = run("list", "--folder")
    assert result.exit_code == 0, result.output
    assert "2 enabled, 0 disabled" in result.output
    assert not (workspace / "store.json").exists()


def test_bulk_commands(workspace):
    run("refresh")
    result = run("disable-all")
    assert "Changed 2 mods." in result.output
    result = run("enable-all")
    assert "Changed 2 mods." in result.output


def test_binary_and_preview(workspace):
    run("refresh")
    result = run("binary-dry", "1/2")
    assert result.exit_code == 0, result.output
    assert "target" in result.output

    result = run("binary", "2/2")
    assert result.exit_code == 0, result.output
    assert (workspace / "mods" / "Alpha-1.0.jar.disabled").exists()
    assert (workspace / "mods" / "Beta-2.0.jar").exists()


def test_binary_bad_fraction(workspace):
    run("refresh")
    result = run("binary", "3/2")
    assert result.exit_code == 1
    assert "Faulty fraction" in result.output


def test_graph(workspace):
    run("refresh")
    result = run("graph", "--output", "out.html")
    assert result.exit_code == 0, result.output
    assert (workspace / "out.html").exists()


def test_update_with_nothing_to_check(workspace):
    run("refresh")
    result = run("update", "rare")
    assert result.exit_code == 0, result.output
    assert "0 of 2 mods can be upgraded." in result.output


def test_bad_config(workspace):
    (workspace / "config.json").write_text("[]", encoding="utf-8")
    result = run("list")
    assert result.exit_code == 1
    assert "Invalid config file" in result.output


def test_config_file_is_used(workspace):
    (workspace / "config.json").write_text(
        json.dumps({"MOD_BASE_DIR": "mods/", "ANNOTATED_FILE": "from_config.json"}), encoding="utf-8"
    )
    result = CliRunner().invoke(main, ["refresh"])
    assert result.exit_code == 0, result.output
    assert (workspace / "from_config.json").exists()
