"""
Unit tests for semantic version allocation.

Tests cover:
- First version of an entity
- Bump classes
- Precedence ordering
- Malformed input
"""

import pytest

from historian.errors import InvalidVersionError
from historian.versioning import (
    INITIAL_VERSION,
    BumpClass,
    compare_versions,
    next_version,
    parse_version,
    version_key,
)


class TestNextVersion:
    """Tests for next_version()."""

    def test_first_version(self):
        """No previous version yields 0.0.0 whatever the bump."""
        assert next_version(None) == INITIAL_VERSION
        assert next_version(None, "minor") == "0.0.0"
        assert next_version(None, BumpClass.PATCH) == "0.0.0"

    def test_default_bump_is_major(self):
        """Major is the default bump."""
        assert next_version("0.0.0") == "1.0.0"
        assert next_version("1.2.3") == "2.0.0"

    def test_minor_resets_patch(self):
        assert next_version("1.2.3", "minor") == "1.3.0"

    def test_patch(self):
        assert next_version("1.2.3", "patch") == "1.2.4"

    def test_bump_class_case_insensitive(self):
        """Bump class names are matched case-insensitively."""
        assert next_version("1.0.0", "MINOR") == "1.1.0"
        assert BumpClass.parse("Patch") is BumpClass.PATCH
        assert BumpClass.parse(None) is BumpClass.MAJOR

    def test_empty_bump_class_means_major(self):
        """A blank bump class is treated like a missing one."""
        assert BumpClass.parse("") is BumpClass.MAJOR
        assert next_version("1.2.3", "") == "2.0.0"

    def test_unknown_bump_class(self):
        with pytest.raises(InvalidVersionError):
            next_version("1.0.0", "huge")

    def test_malformed_previous_version(self):
        """A corrupt stored version surfaces as an error."""
        with pytest.raises(InvalidVersionError) as exc_info:
            next_version("not-a-version")
        assert exc_info.value.code == "INVALID_VERSION"
        assert exc_info.value.value == "not-a-version"


class TestVersionOrdering:
    """Tests for precedence comparison."""

    def test_numeric_not_lexical(self):
        """10.0.0 sorts after 9.0.0."""
        assert compare_versions("10.0.0", "9.0.0") == 1
        assert compare_versions("9.0.0", "10.0.0") == -1
        assert compare_versions("1.2.3", "1.2.3") == 0

    def test_version_key_sorts_by_precedence(self):
        versions = ["1.10.0", "0.0.0", "1.2.0", "10.0.0", "1.2.10", "1.2.9"]
        assert sorted(versions, key=version_key) == [
            "0.0.0",
            "1.2.0",
            "1.2.9",
            "1.2.10",
            "1.10.0",
            "10.0.0",
        ]

    def test_parse_rejects_non_strings(self):
        with pytest.raises(InvalidVersionError):
            parse_version(1)

    def test_parse_rejects_partial_versions(self):
        with pytest.raises(InvalidVersionError):
            parse_version("1.0")
