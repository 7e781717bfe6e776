"""Update checks against remote release sources, and replacing outdated archives."""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from rich.progress import Progress, TaskID

from .api import ReleaseAPIError, ReleaseAsset, ReleaseInfo, ReleaseRateLimited
from .archive import ArchiveError, disabled_path, move_file
from .downloader import Downloader, DownloadError
from .state import ModRecord, ModRegistry, SourceType, UpdateFrequency
from .versions import compare_versions

logger = logging.getLogger(__name__)

OK_STATUS = "200"
ERROR_STATUS = "500"
EXCLUDED_ASSET_SUFFIXES = ("-sources.jar", "-dev.jar", "-api.jar", "-preshadow.jar", "-prestub.jar")


class ReleaseSource(Protocol):
    def get_latest_release(self, source_url: str) -> ReleaseInfo: ...


@dataclass
class UpdateCandidate:
    """Outcome of checking one mod against its source."""

    mod_id: str
    current_version: str
    remote_version: str
    source_type: str
    change: int
    asset: ReleaseAsset | None = None

    @property
    def is_upgrade(self) -> bool:
        return self.change < 0 and self.asset is not None


@dataclass
class UpdateReport:
    checked: list[UpdateCandidate] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    unsupported: list[str] = field(default_factory=list)
    ambiguous: dict[str, list[str]] = field(default_factory=dict)
    invalid_patterns: dict[str, str] = field(default_factory=dict)
    rate_limit_reset_in: float | None = None
    rate_limited: bool = False

    @property
    def upgradable(self) -> list[UpdateCandidate]:
        return [candidate for candidate in self.checked if candidate.is_upgrade]


@dataclass
class AppliedUpdate:
    mod_id: str
    old_path: str
    new_path: str
    version: str


def select_asset(assets: list[ReleaseAsset], file_pattern: str = "") -> tuple[ReleaseAsset | None, list[str]]:
    """
    Narrow a release's assets down to the one mod archive.

    Returns (asset, remaining names); asset is None unless exactly one
    candidate is left. A malformed file_pattern raises re.error.
    """
    if len(assets) > 1 and file_pattern:
        pattern = re.compile(file_pattern, re.MULTILINE)
        assets = [asset for asset in assets if pattern.search(asset.name)]

    # Still several: drop the usual side artifacts
    if len(assets) > 1:
        assets = [
            asset
            for asset in assets
            if asset.name.endswith(".jar") and not asset.name.endswith(EXCLUDED_ASSET_SUFFIXES)
        ]

    names = [asset.name for asset in assets]
    if len(assets) == 1:
        return assets[0], names
    return None, names


def mods_to_check(
    registry: ModRegistry,
    frequency: UpdateFrequency = UpdateFrequency.COMMON,
    retry_failed: bool = False,
) -> list[ModRecord]:
    """Records due for a check at this frequency threshold."""
    due = []
    for mod_id in registry.ordered_ids():
        record = registry.mods[mod_id]
        update = record.update_state
        if update.disable_check or not record.source:
            continue
        if update.last_status != OK_STATUS and not retry_failed:
            continue
        if update.frequency.ordinal > frequency.ordinal:
            continue
        due.append(record)
    return due


class UpdateChecker:
    """Polls the sources of registry records and compares versions."""

    def __init__(self, sources: dict[SourceType, ReleaseSource], batch_size: int = 8):
        self.sources = sources
        self.batch_size = max(1, batch_size)

    def _fetch(self, record: ModRecord) -> ReleaseInfo | ReleaseAPIError | None:
        source = self.sources.get(record.update_state.source_type)
        if source is None:
            return None
        try:
            return source.get_latest_release(record.source)
        except ReleaseAPIError as e:
            return e
        except Exception as e:
            logger.debug("Unexpected error checking %s", record.source, exc_info=True)
            return ReleaseAPIError(f"Failed to check {record.source}: {e}", ERROR_STATUS)

    def check(
        self,
        registry: ModRegistry,
        frequency: UpdateFrequency = UpdateFrequency.COMMON,
        retry_failed: bool = False,
    ) -> UpdateReport:
        """
        Check every due record and record last_status on it.

        Remote failures are per mod; the other checks carry on.
        """
        report = UpdateReport()
        records = mods_to_check(registry, frequency, retry_failed)

        with ThreadPoolExecutor(max_workers=self.batch_size) as executor:
            results = list(executor.map(self._fetch, records))

        for record, result in zip(records, results):
            update = record.update_state
            if result is None:
                logger.debug("No release source for %s (%s)", record.id, update.source_type.value)
                report.unsupported.append(record.id)
                continue

            if isinstance(result, ReleaseAPIError):
                logger.warning("Update check failed for %s: %s", record.id, result)
                update.last_status = result.status
                report.failures[record.id] = result.status
                if isinstance(result, ReleaseRateLimited):
                    report.rate_limited = True
                    if result.reset_in is not None:
                        report.rate_limit_reset_in = max(report.rate_limit_reset_in or 0.0, result.reset_in)
                continue

            update.last_status = result.status
            if not result.assets:
                logger.warning("Got release with empty assets for %s", record.source)
                continue

            try:
                asset, remaining = select_asset(result.assets, update.file_pattern)
            except re.error as e:
                logger.warning("Invalid file_pattern %r for %s: %s", update.file_pattern, record.id, e)
                report.invalid_patterns[record.id] = str(e)
                continue
            if asset is None:
                logger.warning("More or less than one asset remaining for %s: %s", record.source, remaining)
                report.ambiguous[record.id] = remaining

            if not update.version:
                logger.warning("No local version known for %s, can't compare.", record.id)
                continue

            report.checked.append(
                UpdateCandidate(
                    mod_id=record.id,
                    current_version=update.version,
                    remote_version=result.version,
                    source_type=result.source_type,
                    change=compare_versions(update.version, result.version),
                    asset=asset,
                )
            )

        return report


def apply_update(
    record: ModRecord,
    candidate: UpdateCandidate,
    downloader: Downloader,
    download_dir: Path,
    ignored_dir: Path,
    progress: Progress | None = None,
    task_id: TaskID | None = None,
) -> AppliedUpdate:
    """
    Download the new archive and swap it in for the old one.

    The old archive is moved into ignored_dir so scans skip it. A disabled
    mod stays disabled.
    """
    if candidate.asset is None:
        raise DownloadError(f"No single asset to download for {record.id}")

    downloaded = downloader.download(
        candidate.asset.url, download_dir, candidate.asset.name, progress=progress, task_id=task_id
    )

    old_path = Path(record.file_path)
    new_path = old_path.parent / candidate.asset.name
    if not record.enabled:
        new_path = Path(disabled_path(new_path))

    if old_path.exists():
        move_file(old_path, ignored_dir)
    moved = move_file(downloaded, new_path.parent)
    if moved != new_path:
        try:
            moved.rename(new_path)
        except OSError as e:
            raise ArchiveError(f"Failed to rename {moved} -> {new_path}: {e}")

    record.file_path = str(new_path)
    record.update_state.version = candidate.remote_version
    record.update_state.last_updated_at = datetime.now(timezone.utc).isoformat()
    logger.info("Updated %s to %s", record.id, candidate.remote_version)
    return AppliedUpdate(
        mod_id=record.id,
        old_path=str(old_path),
        new_path=str(new_path),
        version=candidate.remote_version,
    )
