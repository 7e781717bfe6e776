"""
Shared fixtures and helpers for the mod-annotator test suite.
"""

import json
import zipfile
from pathlib import Path

import pytest

from mod_annotator.archive import ArchiveError
from mod_annotator.state import ModRecord, ModRegistry

MOD_DESCRIPTOR = b"\x00\x19Lcpw/mods/fml/common/Mod;"


def make_jar(path: Path, info=None, entries=None) -> Path:
    """
    Write a mod jar. info becomes mcmod.info (dicts/lists are dumped as
    JSON, str/bytes are written as-is); entries are extra members.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as zf:
        if info is not None:
            if isinstance(info, (dict, list)):
                info = json.dumps(info)
            zf.writestr("mcmod.info", info)
        for name, data in (entries or {}).items():
            zf.writestr(name, data)
    return path


def make_main_class(dependencies: str = "", version: str | None = None) -> bytes:
    """Bytes resembling a compiled main class carrying an @Mod annotation."""
    body = b"\xca\xfe\xba\xbe\x00\x00" + MOD_DESCRIPTOR + b"\x01\x00\x05modid\x01\x00"
    if dependencies:
        body += b"\x0cdependencies\x01\x00" + bytes([len(dependencies)]) + dependencies.encode() + b"\x01\x00"
    if version is not None:
        body += b"\x07version\x01\x00" + bytes([len(version)]) + version.encode() + b"\x01\x00"
    return body + b"\x00" * 16


def make_registry(store_file: Path, records: dict[str, dict]) -> ModRegistry:
    """A registry holding records built from their stored form."""
    registry = ModRegistry(store_file)
    for mod_id, data in records.items():
        registry.add(ModRecord.from_dict(mod_id, data))
    return registry


class RecordingRenamer:
    """Stands in for the filesystem rename, remembering each call."""

    def __init__(self, fail_on: str | None = None):
        self.calls: list[tuple[str, str]] = []
        self.fail_on = fail_on

    def __call__(self, old_path: str, new_path: str) -> None:
        if self.fail_on and self.fail_on in old_path:
            raise ArchiveError(f"Failed to rename {old_path} -> {new_path}: permission denied")
        self.calls.append((old_path, new_path))


@pytest.fixture
def mods_dir(tmp_path):
    """A fresh, empty mods folder."""
    mods = tmp_path / "mods"
    mods.mkdir()
    return mods


@pytest.fixture
def store_file(tmp_path):
    return tmp_path / "annotated_mods.json"


@pytest.fixture
def renamer():
    return RecordingRenamer()
