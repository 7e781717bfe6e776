"""
Tests for mod records and the JSON store.
"""

import json

import pytest

from mod_annotator.state import (
    ModRecord,
    ModRegistry,
    RegistryError,
    SourceType,
    UpdateFrequency,
    default_record,
    is_self_reference,
    source_type_for,
)
from tests.conftest import make_registry


def test_default_records_share_nothing():
    first = default_record("a")
    second = default_record("b")
    first.tags.append("REQUIRED_BASE")
    first.update_state.extra["x"] = 1
    assert second.tags == ["SIDE.CLIENT", "SIDE.SERVER"]
    assert second.update_state.extra == {}
    assert default_record("c").tags == ["SIDE.CLIENT", "SIDE.SERVER"]


def test_from_dict_backfills_defaults():
    record = ModRecord.from_dict("Baubles", {"file_path": "mods/Baubles.jar", "wants": None})
    assert record.id == "Baubles"
    assert record.wants == []
    assert record.wanted_by == []
    assert record.enabled is True
    assert record.update_state.last_status == "200"
    assert record.update_state.frequency == UpdateFrequency.EOL


def test_github_source_defaults_to_common():
    record = ModRecord.from_dict("x", {"source": "https://github.com/owner/repo"})
    assert record.update_state.frequency == UpdateFrequency.COMMON
    assert record.update_state.source_type == SourceType.GH_RELEASE


def test_source_type_is_rederived():
    record = ModRecord.from_dict(
        "x",
        {"source": "https://modrinth.com/mod/x", "update_state": {"source_type": "GH_RELEASE"}},
    )
    assert record.update_state.source_type == SourceType.MODRINTH


def test_numeric_last_status_is_read_as_text():
    record = ModRecord.from_dict("x", {"update_state": {"last_status": 200}})
    assert record.update_state.last_status == "200"


def test_unknown_frequency_falls_back_to_eol():
    record = ModRecord.from_dict("x", {"update_state": {"frequency": "WEEKLY"}})
    assert record.update_state.frequency == UpdateFrequency.EOL


def test_frequency_ordering():
    assert UpdateFrequency.COMMON.ordinal < UpdateFrequency.RARE.ordinal < UpdateFrequency.EOL.ordinal


def test_source_types():
    assert source_type_for("https://github.com/a/b") == SourceType.GH_RELEASE
    assert source_type_for("https://www.curseforge.com/minecraft/mc-mods/x") == SourceType.CURSEFORGE
    assert source_type_for("https://modrinth.com/mod/x") == SourceType.MODRINTH
    assert source_type_for("") == SourceType.OTHER


def test_legacy_key_is_accepted():
    record = ModRecord.from_dict("x", {"other_mod_ids": ["x_api"]})
    assert record.other_ids == ["x_api"]
    assert "other_mod_ids" not in record.to_dict()


def test_unknown_keys_survive_round_trip(store_file):
    store_file.write_text(
        json.dumps({"x": {"file_path": "x.jar", "custom": {"a": 1}, "update_state": {"etag": "abc"}}}),
        encoding="utf-8",
    )
    registry = ModRegistry(store_file)
    registry.load()
    registry.save()

    saved = json.loads(store_file.read_text(encoding="utf-8"))
    assert saved["x"]["custom"] == {"a": 1}
    assert saved["x"]["update_state"]["etag"] == "abc"


def test_save_load_round_trip(store_file):
    registry = make_registry(
        store_file,
        {
            "a": {"file_path": "mods/a.jar", "wants": ["b"], "source": "https://github.com/o/a"},
            "b": {"file_path": "mods/b.jar.disabled", "wanted_by": ["a"], "enabled": False, "tags": ["REQUIRED_BASE"]},
        },
    )
    registry.save()

    loaded = ModRegistry(store_file)
    loaded.load()
    assert loaded.mods == registry.mods
    assert list(json.loads(store_file.read_text(encoding="utf-8"))) == ["a", "b"]


def test_load_missing_store(store_file):
    with pytest.raises(RegistryError):
        ModRegistry(store_file).load()


def test_load_invalid_store(store_file):
    store_file.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(RegistryError):
        ModRegistry(store_file).load()
    store_file.write_text("{not json", encoding="utf-8")
    with pytest.raises(RegistryError):
        ModRegistry(store_file).load()


def test_find_is_case_insensitive(store_file):
    registry = make_registry(store_file, {"Baubles": {}})
    assert registry.find("baubles") == "Baubles"
    assert registry.find("BAUBLES") == "Baubles"
    assert registry.find("nope") is None


def test_resolve_through_alternate_ids(store_file):
    registry = make_registry(
        store_file,
        {
            "thaumcraft": {"other_ids": ["Thaumcraft|API"]},
            "CoFHCore": {"other_ids": ["CoFHAPI|core"]},
        },
    )
    assert registry.resolve("Thaumcraft") == "thaumcraft"
    assert registry.resolve("thaumcraft|api") == "thaumcraft"
    assert registry.resolve("CoFHAPI") == "CoFHCore"
    assert registry.resolve("Baubles") is None


def test_self_reference():
    assert is_self_reference("TC", "tc", [])
    assert is_self_reference("tc_api", "tc", ["TC_API"])
    assert not is_self_reference("other", "tc", ["tc_api"])


def test_enabled_flag_mismatch(store_file):
    registry = make_registry(
        store_file,
        {
            "ok": {"file_path": "mods/ok.jar", "enabled": True},
            "stale": {"file_path": "mods/stale.jar.disabled", "enabled": True},
        },
    )
    assert registry.check_enabled_flags() == ["stale"]
