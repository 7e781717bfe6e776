"""Mod archive access: folder scanning, entry reads and enable/disable renames."""

import logging
import re
import shutil
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)

DISABLED_SUFFIX = ".disabled"
IGNORED_DIR_NAME = "disabled_mods"

# Matches "name.jar" as well as "name.jar.disabled" (and "name.jar.old.disabled")
ARCHIVE_NAME_PATTERN = re.compile(r"^.+\.jar(?:.*\.disabled)?$")


class ArchiveError(Exception):
    """Raised when a mod archive cannot be read or renamed."""

    pass


def is_archive(filepath: Path) -> bool:
    """Check if a file name looks like a (possibly disabled) mod archive."""
    return ARCHIVE_NAME_PATTERN.match(Path(filepath).name) is not None


def is_disabled(filepath: Path | str) -> bool:
    """The disabled marker on the file name is the only source of truth."""
    return str(filepath).endswith(DISABLED_SUFFIX)


def disabled_path(filepath: Path | str) -> str:
    """Path of the archive once the disabled marker is appended."""
    return str(filepath) + DISABLED_SUFFIX


def enabled_path(filepath: Path | str) -> str:
    """Path of the archive with exactly one trailing disabled marker removed."""
    path = str(filepath)
    if path.endswith(DISABLED_SUFFIX):
        return path[: -len(DISABLED_SUFFIX)]
    return path


def scan_folder(
    root: Path,
    max_depth: int = 4,
    ignored_dir: str = IGNORED_DIR_NAME,
) -> list[Path]:
    """
    Recursively list mod archives below root.

    Files deeper than max_depth levels (counting the file itself) and
    anything inside a directory named ignored_dir are skipped.

    Returns a sorted list of paths.
    """
    root = Path(root)
    if not root.is_dir():
        raise ArchiveError(f"Mods directory does not exist: {root}")

    found = []
    for path in root.rglob("*"):
        relative = path.relative_to(root)
        if len(relative.parts) > max_depth:
            continue
        if ignored_dir in relative.parts[:-1]:
            continue
        if path.is_file() and is_archive(path):
            found.append(path)
    return sorted(found)


def read_entry_from_archive(archive_path: Path, entry_name: str) -> bytes | None:
    """
    Read a single entry from a mod archive.

    Returns the raw bytes, or None if the archive has no such entry.
    """
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            try:
                return zf.read(entry_name)
            except KeyError:
                return None
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveError(f"Failed to read {archive_path}: {e}")


def search_archive_for_marker(archive_path: Path, marker: bytes) -> dict[str, bytes] | None:
    """
    Find every entry whose contents contain marker.

    Returns a map of entry name -> full entry contents, or None if no
    entry contains the marker.
    """
    results: dict[str, bytes] = {}
    try:
        with zipfile.ZipFile(archive_path, "r") as zf:
            for info in zf.infolist():
                # Skip directories
                if info.is_dir():
                    continue
                data = zf.read(info)
                if marker in data:
                    results[info.filename] = data
    except (zipfile.BadZipFile, OSError) as e:
        raise ArchiveError(f"Failed to search {archive_path}: {e}")

    return results or None


def rename_archive(old_path: Path | str, new_path: Path | str) -> None:
    """
    Rename an archive on disk.

    A missing source file is logged and skipped; any other failure is
    raised as ArchiveError so the caller does not record a state change
    that never happened.
    """
    old_path = Path(old_path)
    if not old_path.exists():
        logger.warning("File %s does not exist, but we tried to rename it.", old_path)
        return
    try:
        old_path.rename(new_path)
    except OSError as e:
        raise ArchiveError(f"Failed to rename {old_path} -> {new_path}: {e}")


def move_file(src: Path, dest_dir: Path) -> Path:
    """Move a file into dest_dir, keeping its name."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / src.name
    try:
        shutil.move(str(src), dest)
    except OSError as e:
        raise ArchiveError(f"Failed to move {src} to {dest_dir}: {e}")
    return dest
