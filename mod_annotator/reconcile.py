"""Merge freshly extracted identities into the registry and rebuild back-edges."""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from .identity import ExtractedIdentity, LOADER_IDS
from .state import ModRecord, ModRegistry, default_record, is_self_reference

logger = logging.getLogger(__name__)


@dataclass
class ReconcileReport:
    """What one reconciliation pass did to the registry."""

    registry: ModRegistry
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    orphaned: list[str] = field(default_factory=list)
    missing_dependencies: list[tuple[str, str]] = field(default_factory=list)
    added_back_edges: list[tuple[str, str]] = field(default_factory=list)
    dropped_aliases: list[tuple[str, str]] = field(default_factory=list)


def is_safe_value(value: Any) -> bool:
    """
    Check whether an extracted value can be stored on a record as-is.

    Strings, lists of strings and dicts whose values are themselves
    safe qualify.
    """
    if isinstance(value, str):
        return True
    if isinstance(value, list):
        return all(isinstance(item, str) for item in value)
    if isinstance(value, dict):
        return all(is_safe_value(item) for item in value.values())
    return False


def _is_unset(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _merge_or_default(current: Any, incoming: Any, default: Any) -> Any:
    """
    Merge one extracted value into the stored one.

    Unset stored values take the extracted value if it is safe, else the
    default. Non-empty lists are unioned. Dicts are merged key by key.
    Anything else keeps the stored value.
    """
    if _is_unset(current):
        if incoming is not None and not _is_unset(incoming) and is_safe_value(incoming):
            return copy.deepcopy(incoming)
        if default is None:
            return current
        return copy.deepcopy(default)

    if isinstance(current, list) and isinstance(incoming, list) and incoming and is_safe_value(incoming):
        merged = list(current)
        for item in incoming:
            if item not in merged:
                merged.append(item)
        return merged

    if isinstance(current, dict) and isinstance(incoming, dict):
        default = default if isinstance(default, dict) else {}
        merged = dict(current)
        for key, value in incoming.items():
            merged[key] = _merge_or_default(current.get(key), value, default.get(key))
        return merged

    return current


def _extracted_fields(identity: ExtractedIdentity) -> dict[str, Any]:
    """The record fields an extraction can contribute, in store form."""
    fields = {
        "other_ids": list(identity.other_ids),
        "wants": list(identity.wants),
    }
    if identity.version:
        fields["update_state"] = {"version": identity.version}
    return fields


def merge_identity(record: ModRecord, identity: ExtractedIdentity) -> ModRecord:
    """Refresh an existing record from a new extraction of its archive."""
    stored = record.to_dict()
    defaults = default_record(record.id).to_dict()

    # Filesystem-derived, always fresh
    stored["file_path"] = identity.file_path
    stored["enabled"] = identity.enabled

    for key, value in _extracted_fields(identity).items():
        stored[key] = _merge_or_default(stored.get(key), value, defaults.get(key))

    return ModRecord.from_dict(record.id, stored)


def create_record(identity: ExtractedIdentity) -> ModRecord:
    """A new record for an identity seen for the first time."""
    record = default_record(identity.id)
    record.file_path = identity.file_path
    record.enabled = identity.enabled
    return merge_identity(record, identity)


def _drop_alias_collisions(registry: ModRegistry, report: ReconcileReport) -> None:
    """other_ids may not shadow another record's id or another record's alias."""
    ids = {mod_id.casefold(): mod_id for mod_id in registry.mods}
    claimed: dict[str, str] = {}
    for mod_id in registry.ordered_ids():
        record = registry.mods[mod_id]
        kept = []
        for other in record.other_ids:
            folded = other.casefold()
            owner = ids.get(folded)
            if owner is not None and owner != mod_id:
                logger.warning("Alternate id %s of %s is also the id of %s, dropping it.", other, mod_id, owner)
                report.dropped_aliases.append((mod_id, other))
                continue
            if folded in claimed and claimed[folded] != mod_id:
                logger.warning(
                    "Alternate id %s of %s is already claimed by %s, dropping it.", other, mod_id, claimed[folded]
                )
                report.dropped_aliases.append((mod_id, other))
                continue
            claimed[folded] = mod_id
            kept.append(other)
        record.other_ids = kept


def rebuild_edges(registry: ModRegistry, report: ReconcileReport | None = None) -> ReconcileReport:
    """
    Normalize every wants entry to a canonical id and add missing back-edges.

    Back-edges are only ever added here, never pruned.
    """
    if report is None:
        report = ReconcileReport(registry=registry)

    for mod_id in registry.ordered_ids():
        record = registry.mods[mod_id]
        normalized: list[str] = []
        for dep_id in record.wants:
            if "".join(dep_id.split()).lower() in LOADER_IDS:
                continue
            target_id = registry.resolve(dep_id)
            if target_id is None:
                logger.warning("Mod %s might be missing dependency %s", mod_id, dep_id)
                report.missing_dependencies.append((mod_id, dep_id))
                if dep_id not in normalized:
                    normalized.append(dep_id)
                continue
            if target_id == mod_id or is_self_reference(target_id, mod_id, record.other_ids):
                continue
            if target_id not in normalized:
                normalized.append(target_id)

            target = registry.mods[target_id]
            if mod_id not in target.wanted_by:
                target.wanted_by.append(mod_id)
                logger.info("Added missing dependent %s to %s", mod_id, target_id)
                report.added_back_edges.append((target_id, mod_id))
        record.wants = normalized

    return report


def reconcile(extracted: dict[str, ExtractedIdentity], registry: ModRegistry) -> ReconcileReport:
    """
    Bring the registry in line with the identities found in the folder.

    extracted maps scanned file path -> identity. Existing records get
    their path and enabled state overwritten and everything else merged;
    unseen ids get new records. Records whose file was not scanned are
    reported, not removed.
    """
    report = ReconcileReport(registry=registry)

    for file_path, identity in extracted.items():
        if identity.id is None:
            logger.warning("Skipping %s, no mod id could be extracted.", file_path)
            continue
        existing = registry.get(identity.id)
        if existing is not None:
            registry.add(merge_identity(existing, identity))
            report.updated.append(identity.id)
        else:
            registry.add(create_record(identity))
            report.created.append(identity.id)

    for mod_id in registry.ordered_ids():
        if registry.mods[mod_id].file_path not in extracted:
            logger.warning("Mod %s is missing its linked file. Was it renamed / moved?", mod_id)
            report.orphaned.append(mod_id)

    _drop_alias_collisions(registry, report)
    return rebuild_edges(registry, report)
