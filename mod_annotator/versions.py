"""Loose version comparison for mod release tags."""

import re

TOKEN_PATTERN = re.compile(r"\d+|[a-zA-Z]+")


def version_to_comparable(version: str) -> list[float]:
    """
    Turn a version string into a list of comparable numbers.

    Digit runs become numbers; a run with leading zeros is shifted behind
    the decimal point ("05" -> 0.5). Letters count one token each, below
    any digit run of 1 or more (ord(c) / 128).
    """
    tokens: list[float] = []
    for token in TOKEN_PATTERN.findall(version):
        if token.isdigit():
            value = float(int(token))
            leading_zeros = len(token) - len(token.lstrip("0"))
            if leading_zeros:
                value = round(value / 10**leading_zeros, 4)
            tokens.append(value)
        else:
            tokens.extend(round(ord(char) / 128, 4) for char in token)
    return tokens


def compare_versions(base: str, other: str) -> int:
    """
    Compare two version strings.

    Returns -1 if other is newer, 0 if both are the same, 1 if base is newer.
    """
    version_a = version_to_comparable(base)
    version_b = version_to_comparable(other)

    for a, b in zip(version_a, version_b):
        if a > b:
            return 1
        if a < b:
            return -1

    # Equal prefix: the longer one is newer
    if len(version_a) == len(version_b):
        return 0
    return 1 if len(version_a) > len(version_b) else -1
