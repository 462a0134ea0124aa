"""
Unit tests for pending history metadata.

Tests cover:
- Explicit metadata versus the document side channel
- Bound field names
- Bump class resolution
"""

import pytest

from historian.config import HistoryConfig
from historian.errors import InvalidVersionError
from historian.metadata import HistoryMetadata, clear_metadata, resolve_metadata
from historian.versioning import BumpClass


class TestHistoryMetadata:
    """Tests for metadata resolution."""

    def test_explicit_metadata_wins(self):
        config = HistoryConfig()
        document = {"_id": "t1", "__history": {"event": "from-document"}}

        resolved = resolve_metadata(document, HistoryMetadata(event="explicit"), config)

        assert resolved.event == "explicit"

    def test_explicit_mapping(self):
        resolved = resolve_metadata({}, {"event": "created", "type": "minor"}, HistoryConfig())

        assert resolved.event == "created"
        assert resolved.bump is BumpClass.MINOR

    def test_side_channel(self):
        document = {"_id": "t1", "__history": {"event": "resized", "user": "u1"}}

        resolved = resolve_metadata(document, None, HistoryConfig())

        assert resolved.event == "resized"
        assert resolved.user == "u1"

    def test_no_metadata(self):
        assert resolve_metadata({"_id": "t1"}, None, HistoryConfig()) is None

    def test_bound_field_names(self):
        config = HistoryConfig(user_field="actor", account_field="tenant", method_field="verb")
        document = {"__history": {"actor": "u1", "tenant": "a1", "verb": "delete"}}

        resolved = resolve_metadata(document, None, config)

        assert resolved.user == "u1"
        assert resolved.account == "a1"
        assert resolved.method == "delete"

    def test_custom_metadata_field(self):
        config = HistoryConfig(metadata_field="_pending")
        resolved = resolve_metadata({"_pending": {"event": "x"}}, None, config)
        assert resolved.event == "x"

    def test_clear_metadata(self):
        document = {"_id": "t1", "__history": {"event": "x"}}
        clear_metadata(document, HistoryConfig())
        assert document == {"_id": "t1"}

    def test_default_bump_is_major(self):
        assert HistoryMetadata().bump is BumpClass.MAJOR

    def test_unknown_bump_class(self):
        with pytest.raises(InvalidVersionError):
            HistoryMetadata(type="giant").bump
