"""
Unit tests for snapshot capture.

Tests cover:
- Snapshot normalization
- Previous-state lookup failures
- Forced captures and full-snapshot records
"""

import pytest

from historian.capture import SnapshotCapture
from historian.config import HistoryConfig
from historian.diff import JsonPatchDiffEngine
from historian.errors import DiffError, HistorianError
from historian.metadata import HistoryMetadata


def loader_returning(state):
    async def load(collection, entity_id):
        return state

    return load


class TestSnapshotCapture:
    """Tests for SnapshotCapture."""

    @pytest.fixture
    def engine(self):
        return JsonPatchDiffEngine()

    def test_normalize_strips_transient_fields(self, engine):
        config = HistoryConfig(ignore=("updated_at",))
        capture = SnapshotCapture(config, engine, loader_returning(None))

        snapshot = capture.normalize({
            "_id": "t1",
            "size": "small",
            "__v": 3,
            "__history": {"event": "x"},
            "updated_at": "2024-01-01",
        })

        assert snapshot == {"_id": "t1", "size": "small"}

    def test_normalize_empty(self, engine):
        capture = SnapshotCapture(HistoryConfig(), engine, loader_returning(None))
        assert capture.normalize(None) == {}
        assert capture.normalize({}) == {}

    def test_entity_id_required(self, engine):
        capture = SnapshotCapture(HistoryConfig(), engine, loader_returning(None))
        with pytest.raises(HistorianError) as exc_info:
            capture.entity_id({"size": "small"})
        assert exc_info.value.code == "MISSING_ENTITY_ID"
        assert capture.entity_id({"_id": 7}) == "7"

    def test_should_attempt(self, engine):
        always = SnapshotCapture(HistoryConfig(), engine, loader_returning(None))
        events_only = SnapshotCapture(HistoryConfig(no_event_save=False), engine, loader_returning(None))

        assert always.should_attempt(None)
        assert not events_only.should_attempt(None)
        assert events_only.should_attempt(HistoryMetadata(event="resized"))

    @pytest.mark.asyncio
    async def test_capture_diff_against_previous(self, engine):
        capture = SnapshotCapture(
            HistoryConfig(), engine, loader_returning({"_id": "t1", "size": "small", "__v": 0})
        )

        result = await capture.capture("tank", {"_id": "t1", "size": "large", "__v": 0}, None)

        assert result.collection_name == "tank"
        assert result.entity_id == "t1"
        assert result.diff == [{"op": "replace", "path": "/size", "value": "large"}]
        assert not result.snapshot

    @pytest.mark.asyncio
    async def test_failed_lookup_diffs_against_empty(self, engine):
        """A broken previous-state lookup never fails the mutation."""

        async def broken(collection, entity_id):
            raise RuntimeError("backend down")

        capture = SnapshotCapture(HistoryConfig(), engine, broken)

        result = await capture.capture("tank", {"_id": "t1", "size": "small"}, None)

        assert result.previous == {}
        assert engine.patch({}, result.diff) == {"_id": "t1", "size": "small"}

    @pytest.mark.asyncio
    async def test_embedded_capture_uses_alias(self, engine):
        seen = []

        async def load(collection, entity_id):
            seen.append((collection, entity_id))
            return None

        config = HistoryConfig(embedded=True, embedded_collection="fish")
        capture = SnapshotCapture(config, engine, load)

        result = await capture.capture("tank", {"_id": "f1", "name": "nemo"}, None)

        assert result.collection_name == "fish"
        assert seen == [("tank", "f1")]

    @pytest.mark.asyncio
    async def test_forced_no_diff_method_snapshots_previous(self, engine):
        """Removal tagged with a no-diff method stores the full previous state."""
        previous = {"_id": "t1", "size": "large"}
        config = HistoryConfig(no_diff_save_on_methods=("delete",))
        capture = SnapshotCapture(config, engine, loader_returning(previous))

        result = await capture.capture(
            "tank", dict(previous), HistoryMetadata(method="delete"), forced=True
        )

        assert result.save_without_diff
        assert result.snapshot
        assert result.diff == previous

    @pytest.mark.asyncio
    async def test_unforced_no_diff_method_keeps_diff(self, engine):
        config = HistoryConfig(no_diff_save_on_methods=("touch",))
        capture = SnapshotCapture(config, engine, loader_returning({"_id": "t1"}))

        result = await capture.capture("tank", {"_id": "t1"}, HistoryMetadata(method="touch"))

        assert result.save_without_diff
        assert not result.snapshot
        assert result.diff == []

    @pytest.mark.asyncio
    async def test_unserializable_document(self, engine):
        class Broken:
            def __str__(self):
                raise TypeError("no string form")

        capture = SnapshotCapture(HistoryConfig(), engine, loader_returning(None))
        with pytest.raises(DiffError):
            await capture.capture("tank", {"_id": "t1", "value": Broken()}, None)
