"""Mod registry: the annotated mod records and their JSON store."""

import copy
import json
import logging
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any

from .archive import is_disabled

logger = logging.getLogger(__name__)

REQUIRED_BASE_TAG = "REQUIRED_BASE"
GITHUB_URL_PREFIX = "https://github.com"


class RegistryError(Exception):
    """Raised when the registry store cannot be read or written."""

    pass


class UpdateFrequency(str, Enum):
    """How often a mod's source is polled, most frequent first."""

    COMMON = "COMMON"
    RARE = "RARE"
    EOL = "EOL"

    @property
    def ordinal(self) -> int:
        return list(UpdateFrequency).index(self)


class SourceType(str, Enum):
    GH_RELEASE = "GH_RELEASE"
    CURSEFORGE = "CURSEFORGE"
    MODRINTH = "MODRINTH"
    OTHER = "OTHER"


def source_type_for(url: str | None) -> SourceType:
    """Derive the source type from the scheme/host of a source URL."""
    if not url:
        return SourceType.OTHER
    if url.startswith(GITHUB_URL_PREFIX):
        return SourceType.GH_RELEASE
    if url.startswith("https://modrinth.com"):
        return SourceType.MODRINTH
    if url.startswith("https://www.curseforge.com"):
        return SourceType.CURSEFORGE
    return SourceType.OTHER


def is_self_reference(dep_id: str, mod_id: str, other_ids: list[str]) -> bool:
    """True if dep_id names mod_id itself or one of its alternate ids."""
    folded = dep_id.casefold()
    return folded == mod_id.casefold() or any(
        folded == other.casefold() for other in other_ids
    )


@dataclass
class UpdateState:
    """Polling policy and last known remote status of a mod."""

    version: str = ""
    disable_check: bool = False
    frequency: UpdateFrequency = UpdateFrequency.EOL
    source_type: SourceType = SourceType.OTHER
    last_status: str = "200"
    last_updated_at: str = ""
    file_pattern: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "version": self.version,
            "disable_check": self.disable_check,
            "frequency": self.frequency.value,
            "source_type": self.source_type.value,
            "last_status": self.last_status,
            "last_updated_at": self.last_updated_at,
            "file_pattern": self.file_pattern,
        }
        data.update(self.extra)
        return data


@dataclass
class ModRecord:
    """One annotated mod, keyed in the registry by its id."""

    id: str
    file_path: str = ""
    other_ids: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=lambda: ["SIDE.CLIENT", "SIDE.SERVER"])
    source: str = ""
    notes: str = ""
    wants: list[str] = field(default_factory=list)
    wanted_by: list[str] = field(default_factory=list)
    enabled: bool = True
    update_state: UpdateState = field(default_factory=UpdateState)
    # Keys in the store this tool does not know about, kept verbatim
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def is_required_base(self) -> bool:
        return REQUIRED_BASE_TAG in self.tags

    def to_dict(self) -> dict[str, Any]:
        data = {
            "file_path": self.file_path,
            "other_ids": list(self.other_ids),
            "tags": list(self.tags),
            "source": self.source,
            "notes": self.notes,
            "wants": list(self.wants),
            "wanted_by": list(self.wanted_by),
            "enabled": self.enabled,
            "update_state": self.update_state.to_dict(),
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, mod_id: str, data: dict[str, Any]) -> "ModRecord":
        """Build a record from its stored form, backfilling missing fields."""
        return _fill_defaults(mod_id, data)


# Template for new records. Never handed out directly, see default_record().
_DEFAULT_RECORD = ModRecord(id="")

# Field names as they appear in the store, minus the registry key and pass-through bag
_RECORD_FIELDS = tuple(f.name for f in fields(ModRecord) if f.name not in ("id", "extra"))
_UPDATE_FIELDS = tuple(f.name for f in fields(UpdateState) if f.name != "extra")

# Stores written by older versions used this name for other_ids
_LEGACY_KEYS = {"other_mod_ids": "other_ids"}


def default_record(mod_id: str) -> ModRecord:
    """A fresh record with default values, sharing no state with any other record."""
    record = copy.deepcopy(_DEFAULT_RECORD)
    record.id = mod_id
    return record


def _coerce_frequency(value: Any, source: str) -> UpdateFrequency:
    if value is None:
        if source.startswith(GITHUB_URL_PREFIX):
            return UpdateFrequency.COMMON
        return _DEFAULT_RECORD.update_state.frequency
    try:
        return UpdateFrequency(value)
    except ValueError:
        logger.warning("Unknown update frequency %r, using EOL.", value)
        return UpdateFrequency.EOL


def _fill_defaults(mod_id: str, data: dict[str, Any]) -> ModRecord:
    data = {_LEGACY_KEYS.get(key, key): value for key, value in data.items()}
    record = default_record(mod_id)

    for name in _RECORD_FIELDS:
        if name == "update_state":
            continue
        value = data.get(name)
        if value is not None:
            setattr(record, name, copy.deepcopy(value))
    record.extra = {
        key: copy.deepcopy(value)
        for key, value in data.items()
        if key not in _RECORD_FIELDS
    }

    stored_update = data.get("update_state")
    if not isinstance(stored_update, dict):
        stored_update = {}
    update = record.update_state
    for name in _UPDATE_FIELDS:
        value = stored_update.get(name)
        if name == "frequency":
            update.frequency = _coerce_frequency(value, record.source or "")
        elif name == "source_type":
            # Always re-derived, the source URL is authoritative
            update.source_type = source_type_for(record.source)
        elif name == "last_status":
            if value is not None:
                update.last_status = str(value)
        elif value is not None:
            setattr(update, name, value)
    update.extra = {
        key: copy.deepcopy(value)
        for key, value in stored_update.items()
        if key not in _UPDATE_FIELDS
    }
    return record


class ModRegistry:
    """In-memory map of mod id -> ModRecord, persisted as one JSON object."""

    def __init__(self, store_file: Path):
        self.store_file = Path(store_file)
        self.mods: dict[str, ModRecord] = {}

    def __contains__(self, mod_id: str) -> bool:
        return mod_id in self.mods

    def __iter__(self):
        return iter(self.mods.values())

    def __len__(self) -> int:
        return len(self.mods)

    def exists(self) -> bool:
        """Check if the store file exists."""
        return self.store_file.exists()

    def load(self) -> None:
        """Load records from the store, backfilling defaults."""
        if not self.store_file.exists():
            raise RegistryError(f"No mod store found at {self.store_file}")

        try:
            with open(self.store_file, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise RegistryError(f"Invalid mod store: {e}")

        if not isinstance(data, dict):
            raise RegistryError(f"Invalid mod store: expected an object in {self.store_file}")

        self.mods = {}
        for mod_id, mod_data in data.items():
            if not isinstance(mod_data, dict):
                logger.warning("Skipping malformed entry %s in %s", mod_id, self.store_file)
                continue
            self.mods[mod_id] = ModRecord.from_dict(mod_id, mod_data)

    def save(self) -> None:
        """Save records to the store, keys sorted for stable diffs."""
        self.store_file.parent.mkdir(parents=True, exist_ok=True)
        data = {mod_id: self.mods[mod_id].to_dict() for mod_id in sorted(self.mods)}

        with open(self.store_file, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")

    def add(self, record: ModRecord) -> None:
        self.mods[record.id] = record

    def get(self, mod_id: str) -> ModRecord | None:
        return self.mods.get(mod_id)

    def ordered_ids(self) -> list[str]:
        """Record ids in store order (sorted)."""
        return sorted(self.mods)

    def find(self, mod_id: str) -> str | None:
        """Case-insensitive id lookup, as used for operator input."""
        if mod_id in self.mods:
            return mod_id
        folded = mod_id.casefold()
        for candidate in self.mods:
            if candidate.casefold() == folded:
                return candidate
        return None

    def resolve(self, dep_id: str) -> str | None:
        """
        Resolve a declared dependency to the canonical id of a record.

        Lookup order:
        1. exact id
        2. case-insensitive id
        3. case-insensitive alternate id (other_ids)
        4. alternate id containing, or contained in, dep_id

        Returns None if nothing matches.
        """
        found = self.find(dep_id)
        if found is not None:
            return found

        folded = dep_id.casefold()
        for record in self.mods.values():
            if any(other.casefold() == folded for other in record.other_ids):
                return record.id

        for record in self.mods.values():
            for other in record.other_ids:
                other_folded = other.casefold()
                if other_folded and (other_folded in folded or folded in other_folded):
                    return record.id
        return None

    def check_enabled_flags(self) -> list[str]:
        """Ids whose stored enabled flag disagrees with their file name."""
        return [
            record.id
            for record in self.mods.values()
            if record.file_path and record.enabled == is_disabled(record.file_path)
        ]
