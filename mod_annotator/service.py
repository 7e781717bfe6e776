"""Service layer - business logic extracted from CLI for programmatic use."""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .api import GitHubAPI, ModrinthAPI, ReleaseAPIError
from .archive import ArchiveError, rename_archive, scan_folder
from .config import Settings
from .downloader import DownloadError, Downloader, create_download_progress
from .graph import GRAPH_FILENAME, write_graph
from .identity import extract_all
from .partition import (
    BisectError,
    Fraction,
    dependency_closure,
    divide_into_groups,
    get_mods_in_group,
    group_slice,
    parse_fraction,
)
from .reconcile import ReconcileReport, reconcile
from .state import ModRegistry, SourceType, UpdateFrequency
from .toggle import (
    Renamer,
    ToggleContext,
    disable_all,
    disable_deep,
    enable_all,
    enable_base_mods,
    enable_deep,
    toggle_deep,
)
from .updater import AppliedUpdate, UpdateCandidate, UpdateChecker, UpdateReport, apply_update

logger = logging.getLogger(__name__)


def _enabled_states(registry: ModRegistry) -> dict[str, bool]:
    return {record.id: record.enabled for record in registry}


def _net_changes(registry: ModRegistry, before: dict[str, bool], renamed: list[str]) -> list[str]:
    """Renamed ids whose enabled state differs from before, in first-rename order."""
    return [mod_id for mod_id in dict.fromkeys(renamed) if registry.mods[mod_id].enabled != before[mod_id]]


@dataclass
class RefreshResult:
    scanned: int
    report: ReconcileReport
    store_file: str


@dataclass
class ModListing:
    mod_id: str
    file_path: str
    enabled: bool


@dataclass
class ListResult:
    enabled: list[ModListing]
    disabled: list[ModListing]
    out_of_sync: list[str] = field(default_factory=list)


@dataclass
class ToggleResult:
    changed: list[str]
    unknown: list[str] = field(default_factory=list)

    @property
    def change_count(self) -> int:
        return len(self.changed)


@dataclass
class PreviewGroup:
    label: str
    members: list[str]
    dependencies: list[str]


@dataclass
class BinaryPreview:
    target: Fraction
    groups: list[PreviewGroup]
    sub_target: Fraction
    sub_groups: list[PreviewGroup]
    warnings: list[str]


@dataclass
class UpdateResult:
    report: UpdateReport
    total_mods: int
    applied: list[AppliedUpdate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    rate_limit: dict[str, Any] | None = None


class ModManagerService:
    """Business logic for keeping a mods folder and its store in step."""

    def __init__(self, settings: Settings, rename: Renamer = rename_archive):
        self.settings = settings
        self._rename = rename
        self._github: GitHubAPI | None = None
        self._modrinth: ModrinthAPI | None = None

    @property
    def github(self) -> GitHubAPI:
        if self._github is None:
            self._github = GitHubAPI(self.settings.github_api_key)
        return self._github

    @property
    def modrinth(self) -> ModrinthAPI:
        if self._modrinth is None:
            self._modrinth = ModrinthAPI()
        return self._modrinth

    def _registry(self) -> ModRegistry:
        return ModRegistry(self.settings.annotated_file)

    def load_registry(self) -> ModRegistry:
        """Load the store; raises RegistryError if there is none yet."""
        registry = self._registry()
        registry.load()
        return registry

    def _scan(self) -> list[Path]:
        return scan_folder(
            self.settings.mod_base_dir,
            max_depth=self.settings.scan_depth,
            ignored_dir=self.settings.ignored_dir,
        )

    def _context(self, registry: ModRegistry) -> ToggleContext:
        return ToggleContext(registry=registry, rename=self._rename)

    # -- annotate / list --

    def refresh(self) -> RefreshResult:
        """Scan the folder, merge what was found into the store and save it."""
        files = self._scan()
        extracted = extract_all(files)

        registry = self._registry()
        if registry.exists():
            registry.load()

        report = reconcile(extracted, registry)
        registry.save()
        return RefreshResult(
            scanned=len(files),
            report=report,
            store_file=str(registry.store_file),
        )

    def list_mods(self) -> ListResult:
        """Stored mods split by enabled state."""
        registry = self.load_registry()
        enabled, disabled = [], []
        for record in (registry.mods[mod_id] for mod_id in registry.ordered_ids()):
            listing = ModListing(record.id, record.file_path, record.enabled)
            (enabled if record.enabled else disabled).append(listing)
        return ListResult(enabled, disabled, out_of_sync=registry.check_enabled_flags())

    def list_folder(self) -> ListResult:
        """Mods found in the folder right now, without reading or writing the store."""
        enabled, disabled = [], []
        for file_path, identity in extract_all(self._scan()).items():
            listing = ModListing(identity.id, file_path, identity.enabled)
            (enabled if identity.enabled else disabled).append(listing)
        return ListResult(enabled, disabled)

    # -- toggling --

    def _apply_to_ids(self, mod_ids: list[str], action, restore_base: bool) -> ToggleResult:
        registry = self.load_registry()
        before = _enabled_states(registry)
        ctx = self._context(registry)
        unknown = []

        for requested in mod_ids:
            mod_id = registry.find(requested)
            if mod_id is None:
                logger.warning("No mod with id %s in %s", requested, registry.store_file)
                unknown.append(requested)
                continue
            # One operation per requested id
            operation = ctx.fresh()
            action(operation, mod_id)
            ctx.changed.extend(operation.changed)

        if restore_base:
            enable_base_mods(ctx)

        if ctx.changed:
            registry.save()
        return ToggleResult(changed=_net_changes(registry, before, ctx.changed), unknown=unknown)

    def enable(self, mod_ids: list[str]) -> ToggleResult:
        """Enable mods along with everything they want."""
        return self._apply_to_ids(mod_ids, enable_deep, restore_base=False)

    def disable(self, mod_ids: list[str]) -> ToggleResult:
        """Disable mods along with everything that wants them."""
        return self._apply_to_ids(mod_ids, disable_deep, restore_base=True)

    def toggle(self, mod_ids: list[str]) -> ToggleResult:
        """Flip each mod based on its current state."""
        return self._apply_to_ids(mod_ids, toggle_deep, restore_base=True)

    def enable_all(self) -> ToggleResult:
        registry = self.load_registry()
        ctx = self._context(registry)
        enable_all(ctx)
        if ctx.changed:
            registry.save()
        return ToggleResult(changed=ctx.changed)

    def disable_all(self) -> ToggleResult:
        registry = self.load_registry()
        before = _enabled_states(registry)
        ctx = self._context(registry)
        disable_all(ctx)
        if ctx.changed:
            registry.save()
        return ToggleResult(changed=_net_changes(registry, before, ctx.changed))

    # -- bisection --

    @staticmethod
    def _parse_fractions(fractions: list[str]) -> list[Fraction]:
        if not fractions:
            raise BisectError("No target fraction given. Expected e.g. 1/4")
        return [parse_fraction(text) for text in fractions]

    @staticmethod
    def _scope_warning(scope: int, total: int, which: str) -> str | None:
        if total / 2 < scope:
            return (
                f"The {which} scope ({scope}) is bigger than half of your mods, "
                "which will lead to imprecisions. Use binary-dry with manual toggling."
            )
        return None

    @staticmethod
    def _preview_group(
        registry: ModRegistry, ordered_ids: list[str], groups: list[int], section: int, label: str
    ) -> PreviewGroup:
        members = group_slice(ordered_ids, groups, section)
        return PreviewGroup(
            label=label,
            members=members,
            dependencies=dependency_closure(registry, members, "wants"),
        )

    def binary_dry(self, fractions: list[str]) -> BinaryPreview:
        """
        Preview the groups around the first target fraction, touching nothing.

        Shows the neighbours of the target group at its scope, then the
        target's two halves at twice the scope for the next step.
        """
        target = self._parse_fractions(fractions)[0]
        registry = self.load_registry()
        ordered_ids = registry.ordered_ids()
        total = len(ordered_ids)
        warnings = []

        warning = self._scope_warning(target.scope, total, "current")
        if warning:
            warnings.append(warning)

        section, scope = target.section, target.scope
        groups = divide_into_groups(total, scope)
        preview = []
        if section > 0:
            preview.append(
                self._preview_group(registry, ordered_ids, groups, section - 1, f"group #{section} (pre)")
            )
        preview.append(
            self._preview_group(registry, ordered_ids, groups, section, f"group #{section + 1} (target)")
        )
        if section < scope - 1:
            preview.append(
                self._preview_group(registry, ordered_ids, groups, section + 1, f"group #{section + 2} (post)")
            )

        sub_scope = scope * 2
        sub_section = (section + 1) * 2 - 1
        sub_groups = divide_into_groups(total, sub_scope)
        warning = self._scope_warning(sub_scope, total, "next")
        if warning:
            warnings.append(warning)

        # The target splits into exactly two halves, so no post group here
        sub_preview = [
            self._preview_group(
                registry, ordered_ids, sub_groups, sub_section - 1, f"group #{sub_section} (first half)"
            ),
            self._preview_group(
                registry, ordered_ids, sub_groups, sub_section, f"group #{sub_section + 1} (second half)"
            ),
        ]

        for text in warnings:
            logger.warning(text)

        return BinaryPreview(
            target=target,
            groups=preview,
            sub_target=Fraction(section=sub_section, scope=sub_scope),
            sub_groups=sub_preview,
            warnings=warnings,
        )

    def binary(self, fractions: list[str]) -> ToggleResult:
        """
        Disable everything, then enable only the mods of the given fractions.

        Each fraction's group is enabled together with its dependency
        closure. REQUIRED_BASE mods are enabled at the end.
        """
        targets = self._parse_fractions(fractions)
        registry = self.load_registry()
        ordered_ids = registry.ordered_ids()
        before = _enabled_states(registry)

        warning = self._scope_warning(targets[0].scope, len(ordered_ids), "current")
        if warning:
            logger.warning(warning)

        # Disable all mods first, so there are no stragglers
        sweep = self._context(registry)
        disable_all(sweep)

        ctx = self._context(registry)
        for target in targets:
            logger.info("Enabling fraction %s", target)
            groups = divide_into_groups(len(ordered_ids), target.scope)
            for mod_id in sorted(get_mods_in_group(registry, ordered_ids, groups, target.section)):
                enable_deep(ctx, mod_id)
        enable_base_mods(ctx)

        registry.save()
        return ToggleResult(changed=_net_changes(registry, before, sweep.changed + ctx.changed))

    # -- graph --

    def graph(self, output: Path | None = None) -> Path:
        """Write the dependency graph page."""
        registry = self.load_registry()
        return write_graph(registry, output or Path(GRAPH_FILENAME))

    # -- updates --

    def _checker(self) -> UpdateChecker:
        return UpdateChecker(
            {SourceType.GH_RELEASE: self.github, SourceType.MODRINTH: self.modrinth},
            batch_size=self.settings.update_batch_size,
        )

    def update(
        self,
        frequency: UpdateFrequency = UpdateFrequency.COMMON,
        retry_failed: bool = False,
        download: bool = False,
        show_progress: bool = True,
    ) -> UpdateResult:
        """
        Check due mods for newer releases, optionally downloading them.

        The registry is saved afterwards either way, since every check
        records its status on the mod.
        """
        registry = self.load_registry()
        report = self._checker().check(registry, frequency, retry_failed)
        result = UpdateResult(report=report, total_mods=len(registry))

        if download and report.upgradable:
            self._download_updates(registry, report, result, show_progress)

        registry.save()

        if self.settings.github_api_key and any(
            record.update_state.source_type == SourceType.GH_RELEASE for record in registry
        ):
            result.rate_limit = self.github_quota()
        return result

    def _download_updates(
        self, registry: ModRegistry, report: UpdateReport, result: UpdateResult, show_progress: bool
    ) -> None:
        downloader = Downloader()
        progress = create_download_progress() if show_progress else None

        def run(candidate: UpdateCandidate) -> None:
            task_id = None
            if progress is not None:
                task_id = progress.add_task("download", filename=candidate.asset.name[:30], total=None)
            try:
                result.applied.append(
                    apply_update(
                        registry.mods[candidate.mod_id],
                        candidate,
                        downloader,
                        self.settings.download_temp_dir,
                        self.settings.ignored_path,
                        progress=progress,
                        task_id=task_id,
                    )
                )
            except (DownloadError, ArchiveError) as e:
                logger.warning("Failed to update %s: %s", candidate.mod_id, e)
                result.errors.append(f"{candidate.mod_id}: {e}")

        if progress is None:
            for candidate in report.upgradable:
                run(candidate)
            return
        with progress:
            for candidate in report.upgradable:
                run(candidate)

    def github_quota(self) -> dict[str, Any] | None:
        """GitHub core quota, or None if it can't be fetched."""
        try:
            return self.github.get_rate_limit()
        except ReleaseAPIError as e:
            logger.warning("Could not fetch GitHub rate limits: %s", e)
            return None
