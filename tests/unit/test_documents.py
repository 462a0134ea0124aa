"""
Unit tests for the in-memory document store.

Tests cover:
- Id and revision assignment
- Copy isolation
- Hook ordering and aborts
"""

import pytest

from historian.documents import DocumentStore, InMemoryDocumentStore


class RecordingTracker:
    """Stands in for HistoryTracker and records hook calls."""

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    async def before_persist(self, collection, document, metadata=None):
        self.calls.append(("persist", collection, dict(document), metadata))
        if self.fail:
            raise RuntimeError("hook failed")

    async def before_remove(self, collection, document, metadata=None):
        self.calls.append(("remove", collection, dict(document), metadata))


class TestInMemoryDocumentStore:
    """Tests for InMemoryDocumentStore."""

    @pytest.fixture
    def docs(self):
        return InMemoryDocumentStore()

    def test_satisfies_protocol(self, docs):
        assert isinstance(docs, DocumentStore)

    @pytest.mark.asyncio
    async def test_save_assigns_id_and_revision(self, docs):
        tank = await docs.save("tank", {"size": "small"})
        assert tank["_id"]
        assert tank["__v"] == 0

        await docs.save("tank", tank)
        assert tank["__v"] == 1

    @pytest.mark.asyncio
    async def test_find_one_returns_copy(self, docs):
        tank = await docs.save("tank", {"size": "small"})

        found = await docs.find_one("tank", tank["_id"])
        found["size"] = "large"

        again = await docs.find_one("tank", tank["_id"])
        assert again["size"] == "small"
        assert await docs.find_one("tank", "missing") is None

    @pytest.mark.asyncio
    async def test_hooks_see_document_before_write(self, docs):
        tracker = RecordingTracker()
        docs.register("tank", tracker)

        tank = await docs.save("tank", {"size": "small"}, {"event": "created"})

        kind, collection, seen, metadata = tracker.calls[0]
        assert (kind, collection) == ("persist", "tank")
        assert "__v" not in seen
        assert seen["_id"] == tank["_id"]
        assert metadata == {"event": "created"}

    @pytest.mark.asyncio
    async def test_embedded_hooks_run_per_item(self, docs):
        tracker = RecordingTracker()
        docs.register("tank", tracker, path="fishes")

        tank = await docs.save("tank", {"fishes": [{"name": "nemo"}, {"name": "dory"}]})

        assert [call[2]["name"] for call in tracker.calls] == ["nemo", "dory"]
        assert all(fish["_id"] for fish in tank["fishes"])

    @pytest.mark.asyncio
    async def test_failing_hook_aborts_save(self, docs):
        docs.register("tank", RecordingTracker(fail=True))

        with pytest.raises(RuntimeError):
            await docs.save("tank", {"size": "small"})

        assert await docs.find("tank") == []

    @pytest.mark.asyncio
    async def test_delete(self, docs):
        tracker = RecordingTracker()
        tank = await docs.save("tank", {"size": "small"})
        docs.register("tank", tracker)

        assert await docs.delete("tank", tank, {"method": "delete"}) is True
        assert await docs.find_one("tank", tank["_id"]) is None
        assert tracker.calls[0][0] == "remove"
        assert await docs.delete("tank", tank) is False
