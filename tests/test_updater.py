"""
Tests for update checks and swapping in downloaded archives.
"""

from unittest.mock import MagicMock

from mod_annotator.api import ReleaseAPIError, ReleaseAsset, ReleaseInfo, ReleaseRateLimited
from mod_annotator.state import SourceType, UpdateFrequency
from mod_annotator.updater import UpdateCandidate, UpdateChecker, apply_update, mods_to_check, select_asset
from tests.conftest import make_jar, make_registry


def asset(name):
    return ReleaseAsset(name=name, url=f"https://example.invalid/{name}", size=10)


class FakeSource:
    def __init__(self, results):
        self.results = results
        self.requested = []

    def get_latest_release(self, source_url):
        self.requested.append(source_url)
        result = self.results[source_url]
        if isinstance(result, Exception):
            raise result
        return result


def gh(repo, **update_state):
    return {"source": f"https://github.com/o/{repo}", "update_state": update_state}


# ── asset selection ──────────────────────────────────────────────────────────

def test_single_asset_is_taken():
    chosen, names = select_asset([asset("mod-1.0.zip")])
    assert chosen.name == "mod-1.0.zip"


def test_side_artifacts_are_dropped():
    chosen, _ = select_asset([asset("mod-1.0.jar"), asset("mod-1.0-sources.jar"), asset("mod-1.0-dev.jar"), asset("notes.txt")])
    assert chosen.name == "mod-1.0.jar"


def test_file_pattern_narrows_first():
    chosen, _ = select_asset([asset("mod-1.7.10-1.0.jar"), asset("mod-1.12-1.0.jar")], r"1\.7\.10")
    assert chosen.name == "mod-1.7.10-1.0.jar"


def test_ambiguous_assets():
    chosen, names = select_asset([asset("a.jar"), asset("b.jar")])
    assert chosen is None
    assert names == ["a.jar", "b.jar"]


# ── which mods get checked ───────────────────────────────────────────────────

def test_mods_to_check_policy(store_file):
    registry = make_registry(
        store_file,
        {
            "common": gh("common"),
            "rare": gh("rare", frequency="RARE"),
            "failed": gh("failed", last_status="404"),
            "off": gh("off", disable_check=True),
            "nosource": {},
        },
    )
    assert [r.id for r in mods_to_check(registry, UpdateFrequency.COMMON)] == ["common"]
    assert [r.id for r in mods_to_check(registry, UpdateFrequency.RARE)] == ["common", "rare"]
    assert [r.id for r in mods_to_check(registry, UpdateFrequency.COMMON, retry_failed=True)] == ["common", "failed"]


# ── checking ─────────────────────────────────────────────────────────────────

def test_check_reports_upgrades_and_failures(store_file):
    registry = make_registry(
        store_file,
        {
            "newer": gh("newer", version="1.0"),
            "same": gh("same", version="2.0"),
            "broken": gh("broken", version="1.0"),
            "limited": gh("limited", version="1.0"),
            "curse": {"source": "https://www.curseforge.com/minecraft/mc-mods/curse", "update_state": {"frequency": "COMMON"}},
        },
    )
    source = FakeSource(
        {
            "https://github.com/o/newer": ReleaseInfo("GitHub", "1.1", [asset("newer-1.1.jar")]),
            "https://github.com/o/same": ReleaseInfo("GitHub", "2.0", [asset("same-2.0.jar")]),
            "https://github.com/o/broken": ReleaseAPIError("Resource not found", "404"),
            "https://github.com/o/limited": ReleaseRateLimited(120.0),
        }
    )
    report = UpdateChecker({SourceType.GH_RELEASE: source}, batch_size=2).check(registry)

    assert [c.mod_id for c in report.upgradable] == ["newer"]
    assert {c.mod_id: c.change for c in report.checked} == {"newer": -1, "same": 0}
    assert report.failures == {"broken": "404", "limited": "403"}
    assert report.unsupported == ["curse"]
    assert report.rate_limited
    assert report.rate_limit_reset_in == 120.0
    assert registry.mods["broken"].update_state.last_status == "404"
    assert registry.mods["newer"].update_state.last_status == "200"


def test_invalid_file_pattern_only_skips_that_mod(store_file):
    registry = make_registry(
        store_file,
        {
            "bad": gh("bad", version="1.0", file_pattern="foo[("),
            "good": gh("good", version="1.0", file_pattern=r"good"),
        },
    )
    source = FakeSource(
        {
            "https://github.com/o/bad": ReleaseInfo("GitHub", "1.1", [asset("bad-1.1.jar"), asset("bad-1.1-x.jar")]),
            "https://github.com/o/good": ReleaseInfo("GitHub", "1.1", [asset("good-1.1.jar"), asset("other-1.1.jar")]),
        }
    )
    report = UpdateChecker({SourceType.GH_RELEASE: source}).check(registry)

    assert [c.mod_id for c in report.upgradable] == ["good"]
    assert list(report.invalid_patterns) == ["bad"]
    assert registry.mods["good"].update_state.last_status == "200"


def test_unexpected_source_error_only_fails_that_mod(store_file):
    registry = make_registry(store_file, {"flaky": gh("flaky", version="1.0"), "fine": gh("fine", version="1.0")})
    source = FakeSource(
        {
            "https://github.com/o/flaky": ConnectionError("connection reset"),
            "https://github.com/o/fine": ReleaseInfo("GitHub", "1.1", [asset("fine-1.1.jar")]),
        }
    )
    report = UpdateChecker({SourceType.GH_RELEASE: source}).check(registry)

    assert [c.mod_id for c in report.upgradable] == ["fine"]
    assert report.failures == {"flaky": "500"}
    assert registry.mods["flaky"].update_state.last_status == "500"


def test_check_without_local_version_is_not_compared(store_file):
    registry = make_registry(store_file, {"x": gh("x")})
    source = FakeSource({"https://github.com/o/x": ReleaseInfo("GitHub", "1.0", [asset("x.jar")])})
    report = UpdateChecker({SourceType.GH_RELEASE: source}).check(registry)
    assert report.checked == []


# ── applying ─────────────────────────────────────────────────────────────────

def test_apply_update_swaps_archive(tmp_path, mods_dir, store_file):
    old = make_jar(mods_dir / "x-1.0.jar.disabled")
    registry = make_registry(store_file, {"x": {"file_path": str(old), "enabled": False, **gh("x", version="1.0")}})
    download_dir = tmp_path / "downloads"

    def fake_download(url, target_dir, filename, **kwargs):
        return make_jar(target_dir / filename)

    downloader = MagicMock()
    downloader.download.side_effect = fake_download
    candidate = UpdateCandidate("x", "1.0", "1.1", "GitHub", -1, asset("x-1.1.jar"))

    applied = apply_update(registry.mods["x"], candidate, downloader, download_dir, mods_dir / "disabled_mods")

    assert applied.new_path == str(mods_dir / "x-1.1.jar.disabled")
    assert (mods_dir / "x-1.1.jar.disabled").exists()
    assert (mods_dir / "disabled_mods" / "x-1.0.jar.disabled").exists()
    assert not old.exists()
    record = registry.mods["x"]
    assert record.file_path == str(mods_dir / "x-1.1.jar.disabled")
    assert record.update_state.version == "1.1"
    assert record.update_state.last_updated_at
