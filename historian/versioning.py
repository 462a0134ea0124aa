"""
Semantic version allocation for history records.

Every history record carries a major.minor.patch version. The first record
of an entity is 0.0.0; each later record bumps the previous record's
version by the bump class attached to the mutation (major by default).

Invariants:
    - Comparison is by semver precedence, never lexical ("10.0.0" > "9.0.0")
    - next_version() is pure: same input, same output
    - Malformed input raises InvalidVersionError, never returns a default

How to change safely:
    - Stored version strings must stay parseable by semver.Version.parse
    - Do not zero-pad versions; ordering already relies on precedence
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union

import semver

from .errors import InvalidVersionError

INITIAL_VERSION = "0.0.0"


class BumpClass(Enum):
    """Which version component a mutation increments."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"

    @classmethod
    def parse(cls, value: Union[BumpClass, str, None]) -> BumpClass:
        """Coerce a bump class name (case-insensitive); None or "" means MAJOR.

        Raises:
            InvalidVersionError: If the name is not a known bump class
        """
        if not value:
            return cls.MAJOR
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidVersionError(f"Unknown bump class: {value!r}", value=value)


def parse_version(text: str) -> semver.Version:
    """Parse a version string.

    Args:
        text: Version string such as "1.2.3"

    Returns:
        Parsed semver.Version

    Raises:
        InvalidVersionError: If the string is not a valid semantic version
    """
    if not isinstance(text, str):
        raise InvalidVersionError(f"Version must be a string, got {type(text).__name__}", value=text)
    try:
        return semver.Version.parse(text)
    except ValueError as e:
        raise InvalidVersionError(f"Invalid version {text!r}: {e}", value=text) from e


def next_version(
    previous: Optional[str],
    bump: Union[BumpClass, str, None] = BumpClass.MAJOR,
) -> str:
    """Compute the version for the next history record.

    Args:
        previous: Version of the entity's latest record, or None if none
        bump: Bump class to apply

    Returns:
        "0.0.0" when there is no previous version, otherwise the bumped version
    """
    bump_class = BumpClass.parse(bump)
    if previous is None:
        return INITIAL_VERSION

    current = parse_version(previous)
    if bump_class is BumpClass.MAJOR:
        bumped = current.bump_major()
    elif bump_class is BumpClass.MINOR:
        bumped = current.bump_minor()
    else:
        bumped = current.bump_patch()
    return str(bumped)


def compare_versions(left: str, right: str) -> int:
    """Compare two version strings by semver precedence.

    Returns:
        -1, 0 or 1
    """
    return parse_version(left).compare(parse_version(right))


def version_key(text: str) -> tuple[int, int, int]:
    """Sort key for version strings."""
    parsed = parse_version(text)
    return (parsed.major, parsed.minor, parsed.patch)
