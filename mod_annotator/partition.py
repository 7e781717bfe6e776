"""Split the mod list into near-equal groups for bisecting a faulty mod."""

import re
from dataclasses import dataclass
from typing import Literal

from .state import ModRegistry, is_self_reference

DepKey = Literal["wants", "wanted_by"]

FRACTION_PATTERN = re.compile(r"^\s*\[?\s*(\d+)\s*/\s*(\d+)\s*\]?\s*$")


class BisectError(Exception):
    """Raised when a bisection target cannot be understood."""

    pass


@dataclass(frozen=True)
class Fraction:
    """A target group: zero-based section out of scope groups."""

    section: int
    scope: int

    def __str__(self) -> str:
        return f"{self.section + 1}/{self.scope}"


def parse_fraction(text: str) -> Fraction:
    """
    Parse an operator fraction such as "1/4" (or "[1/4]").

    The section is one-based on input and stored zero-based.
    """
    match = FRACTION_PATTERN.match(text)
    if match is None:
        raise BisectError(f"Faulty fraction: {text!r}. Expected e.g. 1/4")
    section, scope = int(match.group(1)), int(match.group(2))
    if scope < 1 or section < 1 or section > scope:
        raise BisectError(f"Faulty fraction: {text!r}. Section must be between 1 and {scope}")
    return Fraction(section=section - 1, scope=scope)


def divide_into_groups(total: int, divisor: int) -> list[int]:
    """
    Split total items into divisor groups whose sizes differ by at most one.

    The remainder goes one unit each to the first groups.

    >>> divide_into_groups(10, 3)
    [4, 3, 3]
    """
    if divisor < 1:
        raise ValueError(f"divisor must be at least 1, got {divisor}")
    if total < 0:
        raise ValueError(f"total must not be negative, got {total}")

    base_size, leftover = divmod(total, divisor)
    return [base_size + 1 if i < leftover else base_size for i in range(divisor)]


def group_slice(ordered_ids: list[str], groups: list[int], section: int) -> list[str]:
    """The ids of one group, before any dependencies are added."""
    if section < 0 or section >= len(groups):
        return []
    start = sum(groups[:section])
    return ordered_ids[start : start + groups[section]]


def dependency_closure(registry: ModRegistry, mod_ids: list[str], dep_key: DepKey = "wants") -> list[str]:
    """
    Every id reachable from mod_ids along dep_key, not counting mod_ids themselves.

    Edges from a mod to itself or its alternate ids are ignored. Returns
    ids in discovery order, dependencies before the mods that pulled them in.
    """
    start = set(mod_ids)
    seen: set[str] = set()
    closure: list[str] = []

    def visit(mod_id: str) -> None:
        record = registry.get(mod_id)
        if record is None:
            return
        for dep in getattr(record, dep_key):
            if is_self_reference(dep, mod_id, record.other_ids) or dep in seen:
                continue
            seen.add(dep)
            visit(dep)
            if dep not in start:
                closure.append(dep)

    for mod_id in mod_ids:
        visit(mod_id)
    return closure


def get_mods_in_group(
    registry: ModRegistry,
    ordered_ids: list[str],
    groups: list[int],
    section: int,
    dep_key: DepKey = "wants",
) -> set[str]:
    """A group's slice plus its full transitive closure along dep_key."""
    members = group_slice(ordered_ids, groups, section)
    return set(members) | set(dependency_closure(registry, members, dep_key))
