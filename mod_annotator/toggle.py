"""Dependency-aware enable/disable of mods."""

import logging
from dataclasses import dataclass, field
from typing import Callable

from .archive import disabled_path, enabled_path, rename_archive
from .state import ModRegistry, is_self_reference

logger = logging.getLogger(__name__)

Renamer = Callable[[str, str], None]


@dataclass
class ToggleContext:
    """
    State shared by one logical operation (a single toggle, a whole sweep).

    visited holds every id the operation has renamed, so a mod reached
    through several dependency paths is changed once. in_progress holds
    the ids on the current recursion path and stops cycles. changed lists
    the renamed ids, in order.
    """

    registry: ModRegistry
    rename: Renamer = rename_archive
    visited: set[str] = field(default_factory=set)
    in_progress: set[str] = field(default_factory=set)
    changed: list[str] = field(default_factory=list)

    def fresh(self) -> "ToggleContext":
        """A new operation on the same registry and renamer."""
        return ToggleContext(registry=self.registry, rename=self.rename)


def disable_deep(ctx: ToggleContext, mod_id: str) -> int:
    """
    Disable a mod after disabling everything that depends on it.

    Returns the number of mods changed, dependents included. Unknown ids
    are a no-op. A failed rename raises and stops the operation.
    """
    record = ctx.registry.get(mod_id)
    if record is None or mod_id in ctx.visited or mod_id in ctx.in_progress:
        return 0

    ctx.in_progress.add(mod_id)
    change_count = 0
    for dependent in list(record.wanted_by):
        if not is_self_reference(dependent, mod_id, record.other_ids):
            change_count += disable_deep(ctx, dependent)
    ctx.in_progress.discard(mod_id)

    if record.enabled:
        logger.info("Disabling mod %s", mod_id)
        new_path = disabled_path(record.file_path)
        ctx.rename(record.file_path, new_path)
        record.file_path = new_path
        record.enabled = False
        ctx.visited.add(mod_id)
        ctx.changed.append(mod_id)
        change_count += 1

    return change_count


def enable_deep(ctx: ToggleContext, mod_id: str) -> int:
    """
    Enable a mod after enabling everything it depends on.

    Returns the number of mods changed, dependencies included.
    """
    record = ctx.registry.get(mod_id)
    if record is None or mod_id in ctx.visited or mod_id in ctx.in_progress:
        return 0

    ctx.in_progress.add(mod_id)
    change_count = 0
    for dependency in list(record.wants):
        if not is_self_reference(dependency, mod_id, record.other_ids):
            change_count += enable_deep(ctx, dependency)
    ctx.in_progress.discard(mod_id)

    if not record.enabled:
        logger.info("Enabling mod %s", mod_id)
        new_path = enabled_path(record.file_path)
        ctx.rename(record.file_path, new_path)
        record.file_path = new_path
        record.enabled = True
        ctx.visited.add(mod_id)
        ctx.changed.append(mod_id)
        change_count += 1

    return change_count


def toggle_deep(ctx: ToggleContext, mod_id: str) -> int:
    """Flip a mod based on its own current state, carrying dependencies/dependents along."""
    record = ctx.registry.get(mod_id)
    if record is None:
        return 0
    if record.enabled:
        return disable_deep(ctx, mod_id)
    return enable_deep(ctx, mod_id)


def enable_base_mods(ctx: ToggleContext) -> int:
    """
    Re-enable every REQUIRED_BASE mod that ended up disabled.

    Runs as its own operation, so mods the caller just disabled can be
    brought back. Call after anything that disables in bulk.
    """
    base_ctx = ctx.fresh()
    change_count = 0
    for mod_id in ctx.registry.ordered_ids():
        record = ctx.registry.mods[mod_id]
        if record.is_required_base and not record.enabled:
            logger.info("Re-enabling mod required by base game: %s", mod_id)
            change_count += enable_deep(base_ctx, mod_id)
    ctx.changed.extend(base_ctx.changed)
    return change_count


def enable_all(ctx: ToggleContext) -> int:
    """Enable every mod in the registry."""
    change_count = 0
    for mod_id in ctx.registry.ordered_ids():
        change_count += enable_deep(ctx, mod_id)
    return change_count


def disable_all(ctx: ToggleContext) -> int:
    """Disable every mod, then bring back the REQUIRED_BASE ones."""
    change_count = 0
    for mod_id in ctx.registry.ordered_ids():
        change_count += disable_deep(ctx, mod_id)
    change_count += enable_base_mods(ctx)
    return change_count
