"""Mod identity extraction from archive metadata, bytecode and file names."""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .archive import ArchiveError, is_disabled, read_entry_from_archive, search_archive_for_marker

logger = logging.getLogger(__name__)

METADATA_ENTRY = "mcmod.info"
MOD_ANNOTATION_MARKER = b"Lcpw/mods/fml/common/Mod;"

# Dependencies on the loader itself are noise, compared with whitespace removed
LOADER_IDS = frozenset({"forge", "minecraftforge", "fml"})

# Filename -> mod id. Skips the folder, any [TAG] groups and leading separator or
# digit noise, then takes a letter followed by letters, single digits, or further
# words joined with + or - (two letters, or a single "a"/"I"). Stops at the first
# separator that doesn't fit, typically in front of the version.
FILENAME_PATTERN = re.compile(
    r"^(?P<path>(?:.*/)?)"
    r"(?P<pre>(?:\[[A-Z]+?\]|[\-\[\]\+\d\.])*)"
    r"(?P<middle>[a-zA-Z](?:[a-zA-Z]|\d|[\+\-](?:(?!mc|MC)[a-zA-Z]{2}|[aI]))+)"
    r"[+\-_\.]*(?:mc|MC)?"
    r"(?P<post>\d?.*?)"
    r"\.jar"
)

LOOSE_MODID_PATTERN = re.compile(r'"modid":\s*"(.*?)"')

# Bytecode is decoded as latin-1, so each byte maps to one character
ANNOTATION_PATTERN = re.compile(r"\x19Lcpw/mods/fml/common/Mod;(.{1,512})", re.DOTALL)
ANNOTATION_VERSION_PATTERN = re.compile(r"[\x07\x0c\x0a]version\x01\x00[\x03-\x0c](.+?)\x01\x00")
REQUIRED_AFTER_PATTERN = re.compile(
    r"required-after:(?P<mod_id>[a-zA-Z](?:[a-zA-Z]|\d|[\+\-\|](?:(?!mc|MC)[a-zA-Z]{2}|[aI]))+?)"
    r"(?:[ \n\r;@]|$)",
    re.MULTILINE,
)

# "@1.2" or "@[1.0,)", the range may itself contain a comma
VERSION_QUALIFIER_PATTERN = re.compile(r"@(?:[\[\(][^\]\)]*[\]\)]|[^,]*)")

LEGACY_RUNTIME_PATTERN = re.compile(r"[-+]?(?:mc)?1\.7\.10[-+]?", re.IGNORECASE)
DIGIT_PATTERN = re.compile(r"\d")


@dataclass
class ExtractedIdentity:
    """Best-effort identity of one archive, as read from the folder."""

    file_path: str
    id: str | None = None
    other_ids: list[str] = field(default_factory=list)
    wants: list[str] = field(default_factory=list)
    version: str | None = None
    enabled: bool = True


@dataclass
class MetadataInfo:
    """What a metadata entry yielded, each part possibly missing."""

    id: str | None = None
    other_ids: list[str] = field(default_factory=list)
    wants: list[str] = field(default_factory=list)
    version: str | None = None


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _declared_dependencies(entry: dict[str, Any]) -> list[str]:
    required = _strings(entry.get("requiredMods"))
    if required:
        return required
    return _strings(entry.get("dependencies"))


def _parse_structured(data: Any) -> MetadataInfo | None:
    """Read a parsed metadata document: either a list of entries or {"modList": [...]}."""
    if isinstance(data, list):
        entries = data
    elif isinstance(data, dict) and isinstance(data.get("modList"), list):
        entries = data["modList"]
    else:
        return None

    entries = [entry for entry in entries if isinstance(entry, dict)]
    if not entries:
        return None

    first, rest = entries[0], entries[1:]
    info = MetadataInfo()

    modid = first.get("modid")
    if isinstance(modid, str) and modid:
        info.id = modid
        info.other_ids = [
            entry["modid"]
            for entry in rest
            if isinstance(entry.get("modid"), str) and entry["modid"]
        ]

    info.wants = _declared_dependencies(first)
    # Submodules declare their own dependencies, the archive needs all of them
    for entry in rest:
        info.wants.extend(_strings(entry.get("dependencies")))
        info.wants.extend(_strings(entry.get("requiredMods")))

    version = first.get("version")
    if isinstance(version, str):
        info.version = version
    return info


def _parse_loose(text: str) -> MetadataInfo:
    """Scan text that failed to parse as JSON for "modid" keys."""
    matches = [match for match in LOOSE_MODID_PATTERN.findall(text) if match]
    info = MetadataInfo()
    if matches:
        info.id = matches[0]
        info.other_ids = matches[1:]
    return info


def parse_metadata(raw: bytes | None) -> MetadataInfo | None:
    """
    Parse the bytes of a metadata entry.

    Structured JSON is tried first; if that fails but the entry is not
    empty, it is scanned loosely for "modid" keys. Returns None when
    there is no entry (or an empty one).
    """
    if not raw:
        return None

    text = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(text, strict=False)
    except json.JSONDecodeError:
        logger.debug("Metadata is not valid JSON, scanning it loosely")
        return _parse_loose(text)

    return _parse_structured(data) or MetadataInfo()


def parse_filename(file_path: str) -> tuple[str | None, str | None]:
    """
    Guess (mod id, version) from an archive's file name.

    >>> parse_filename("mods/[CLIENT]AwesomeMod-1.2.3.jar")
    ('AwesomeMod', '1.2.3')
    """
    match = FILENAME_PATTERN.search(Path(file_path).name)
    if match is None:
        return None, None
    return match.group("middle") or None, match.group("post") or None


def scan_main_class(archive_path: Path) -> tuple[list[str], str | None]:
    """
    Read dependencies and version from the @Mod annotation in the main class.

    The class files are not parsed; the annotation is located by its type
    descriptor and the following bytes are searched for required-after
    entries and a version constant.

    Returns (dependencies, version).
    """
    deps: list[str] = []
    version = None

    found = search_archive_for_marker(archive_path, MOD_ANNOTATION_MARKER)
    if found is None:
        # Probably injected through a coremod instead
        return deps, version

    for entry_name, data in found.items():
        match = ANNOTATION_PATTERN.search(data.decode("latin-1"))
        if match is None:
            logger.debug("No @Mod annotation body in %s", entry_name)
            continue
        body = match.group(1)
        for dep_match in REQUIRED_AFTER_PATTERN.finditer(body):
            dep_id = dep_match.group("mod_id")
            if dep_id not in deps:
                deps.append(dep_id)
        version_match = ANNOTATION_VERSION_PATTERN.search(body)
        if version_match is not None:
            version = version_match.group(1)

    return deps, version


def resolve_version(
    metadata_version: str | None,
    main_class_version: str | None,
    filename_version: str | None,
) -> str | None:
    """
    Pick a version from the metadata, the main class, then the file name.

    A metadata version that says "version" without a single digit is a
    placeholder and ignored. A legacy 1.7.10 runtime token is stripped when
    something with a digit remains.
    """
    version = metadata_version
    if version and not DIGIT_PATTERN.search(version) and "version" in version.lower():
        version = None

    if not version:
        version = main_class_version or filename_version

    if version is None:
        return None

    stripped = LEGACY_RUNTIME_PATTERN.sub("", version, count=1)
    if len(stripped) < len(version):
        if len(stripped) > 1 and DIGIT_PATTERN.search(stripped):
            return stripped
        if filename_version:
            return filename_version
    return version


def _is_loader(dep_id: str) -> bool:
    return "".join(dep_id.split()).lower() in LOADER_IDS


def filter_faulty_dependencies(wants: list[str], mod_id: str, other_ids: list[str]) -> list[str]:
    """
    Clean up a raw dependency list.

    @version qualifiers are dropped and comma-joined entries split, the
    loader itself and references to this mod (or its submodules) are
    removed, and duplicates are dropped case-insensitively keeping the
    first spelling.
    """
    split: list[str] = []
    for dep in wants:
        for part in VERSION_QUALIFIER_PATTERN.sub("", dep).split(","):
            part = part.strip()
            if part:
                split.append(part)

    filtered: list[str] = []
    seen: set[str] = set()
    for dep in split:
        if _is_loader(dep):
            continue
        if dep.casefold() == mod_id.casefold():
            continue
        if any(dep.casefold() == other.casefold() for other in other_ids):
            continue
        if dep.casefold() in seen:
            continue
        seen.add(dep.casefold())
        filtered.append(dep)
    return filtered


def extract(archive_path: Path | str) -> ExtractedIdentity:
    """
    Derive the identity of one mod archive.

    Never raises: an archive that yields no id at all comes back with
    id=None and should be skipped by the caller.
    """
    file_path = str(archive_path)
    identity = ExtractedIdentity(file_path=file_path, enabled=not is_disabled(file_path))
    filename_id, filename_version = parse_filename(file_path)

    try:
        metadata = parse_metadata(read_entry_from_archive(Path(file_path), METADATA_ENTRY))
    except ArchiveError as e:
        logger.warning("Could not read metadata from %s: %s", file_path, e)
        metadata = None
    metadata = metadata or MetadataInfo()

    identity.id = metadata.id
    identity.other_ids = list(metadata.other_ids)
    if identity.id is None:
        identity.id = filename_id

    try:
        main_deps, main_version = scan_main_class(Path(file_path))
    except ArchiveError as e:
        logger.debug("Could not scan main class of %s: %s", file_path, e)
        main_deps, main_version = [], None

    identity.version = resolve_version(metadata.version, main_version, filename_version)

    if identity.id:
        identity.wants = filter_faulty_dependencies(
            metadata.wants + main_deps, identity.id, identity.other_ids
        )
    else:
        logger.warning("Failed to get any mod id for %s, faulty file?", file_path)
        identity.wants = []
    return identity


def extract_all(files: list[Path]) -> dict[str, ExtractedIdentity]:
    """
    Extract identities for a list of archives.

    Returns a map of file path -> identity; archives without an id are
    left out with a warning.
    """
    identities = {}
    for path in files:
        identity = extract(path)
        if identity.id is None:
            logger.warning("Failed to parse mod id for file %s, ignoring.", path)
            continue
        identities[identity.file_path] = identity
    return identities
