"""
Tests for the pull engine: ordering, resumability and page sizing.
"""

import pytest

from docsync.replication.checkpoint import Checkpoint, SENTINEL
from docsync.replication.concurrency import WriteClock
from docsync.replication.pull import PullEngine

from conftest import FakeNow, seed


# Several documents share a timestamp so the id tiebreak matters.
FIXTURE_DOCUMENTS = [
    ("c", 100, {"n": 1}),
    ("a", 100, {"n": 2}),
    ("b", 100, {"n": 3}),
    ("e", 200, {"n": 4}),
    ("d", 200, {"n": 5}),
    ("f", 300, {"n": 6}),
    ("a2", 300, {"n": 7}),
]

EXPECTED_ORDER = [
    (100, "a"), (100, "b"), (100, "c"),
    (200, "d"), (200, "e"),
    (300, "a2"), (300, "f"),
]


class TestPull:

    @pytest.mark.asyncio
    async def test_empty_store(self, service):
        result = await service.pull(SENTINEL, 10)
        assert result.documents == []
        assert result.checkpoint == SENTINEL

    @pytest.mark.asyncio
    async def test_initial_sync_order(self, service, store):
        await seed(store, *FIXTURE_DOCUMENTS)

        result = await service.pull(SENTINEL, 100)

        assert [d.position for d in result.documents] == EXPECTED_ORDER
        assert result.checkpoint == Checkpoint(300, "f")

    @pytest.mark.asyncio
    async def test_pull_is_idempotent(self, service, store):
        await seed(store, *FIXTURE_DOCUMENTS)

        first = await service.pull(SENTINEL, 100)
        second = await service.pull(first.checkpoint, 100)
        third = await service.pull(second.checkpoint, 100)

        assert second.documents == []
        assert second.checkpoint == first.checkpoint
        assert third.checkpoint == first.checkpoint

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page_size", [1, 2, 3, 4, 7, 50])
    async def test_pagination_is_complete(self, service, store, page_size):
        await seed(store, *FIXTURE_DOCUMENTS)

        seen = []
        checkpoint = SENTINEL
        for _ in range(len(FIXTURE_DOCUMENTS) + 2):
            result = await service.pull(checkpoint, page_size)
            assert len(result.documents) <= page_size
            if not result.documents:
                assert result.checkpoint == checkpoint
                break
            seen.extend(d.position for d in result.documents)
            checkpoint = result.checkpoint
        else:
            pytest.fail("pagination did not terminate")

        assert seen == EXPECTED_ORDER

    @pytest.mark.asyncio
    async def test_resume_mid_timestamp(self, service, store):
        await seed(store, *FIXTURE_DOCUMENTS)

        result = await service.pull(Checkpoint(100, "b"), 10)

        assert [d.id for d in result.documents] == ["c", "d", "e", "a2", "f"]

    @pytest.mark.asyncio
    async def test_documents_written_after_checkpoint_appear_later(self, service, store):
        await seed(store, ("a", 100, {}))
        first = await service.pull(SENTINEL, 10)

        await seed(store, ("b", 150, {}), ("a", 200, {"edited": True}))
        second = await service.pull(first.checkpoint, 10)

        assert [d.position for d in second.documents] == [(150, "b"), (200, "a")]
        assert second.documents[-1].data == {"edited": True}

    @pytest.mark.asyncio
    async def test_wire_shape_injects_protocol_fields(self, service, store):
        await seed(store, ("doc-1", 100, {"title": "hello", "id": "spoofed", "updatedAt": 1}))

        body = await service.pull_from_params(limit=10)

        assert body == {
            "documents": [{"title": "hello", "id": "doc-1", "updatedAt": 100}],
            "checkpoint": "100_doc-1",
        }

    @pytest.mark.asyncio
    async def test_token_wins_over_params(self, service, store):
        await seed(store, *FIXTURE_DOCUMENTS)

        body = await service.pull_from_params(updated_at=0, doc_id="", limit=10, token="200_e")

        assert [d["id"] for d in body["documents"]] == ["a2", "f"]

    @pytest.mark.asyncio
    async def test_garbage_checkpoint_restarts_from_beginning(self, service, store):
        await seed(store, *FIXTURE_DOCUMENTS)

        body = await service.pull_from_params(updated_at="not-a-number", limit=2)

        assert [d["id"] for d in body["documents"]] == ["a", "b"]
        assert body["checkpoint"] == "100_b"


class TestPageSize:

    @pytest.fixture
    async def engine(self, store):
        await seed(store, *[(f"doc-{i:02d}", 100 + i, {}) for i in range(15)])
        return PullEngine(store, default_limit=10, max_limit=12)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [None, 0, -3])
    async def test_non_positive_limit_uses_default(self, engine, limit):
        result = await engine.pull(SENTINEL, limit)
        assert len(result.documents) == 10

    @pytest.mark.asyncio
    async def test_limit_capped_at_maximum(self, engine):
        result = await engine.pull(SENTINEL, 500)
        assert len(result.documents) == 12

    @pytest.mark.asyncio
    async def test_explicit_limit(self, engine):
        result = await engine.pull(SENTINEL, 3)
        assert [d.id for d in result.documents] == ["doc-00", "doc-01", "doc-02"]


class TestVisibilityHorizon:
    """Pulls never move past a push that is still in flight."""

    @pytest.mark.asyncio
    async def test_in_flight_stamp_hides_newer_documents(self, store):
        clock = WriteClock(now=FakeNow(1_000))
        engine = PullEngine(store, clock=clock)
        await seed(store, ("old", 500, {}))

        with clock.reserve() as stamp:
            # Written by a concurrent push that has already landed its row.
            await seed(store, ("landed", stamp, {}))
            during = await engine.pull(SENTINEL, 10)

        after = await engine.pull(during.checkpoint, 10)

        assert [d.id for d in during.documents] == ["old"]
        assert during.checkpoint == Checkpoint(500, "old")
        assert [d.id for d in after.documents] == ["landed"]

    @pytest.mark.asyncio
    async def test_checkpoint_query_stops_short_of_in_flight_push(self, service, store):
        await seed(store, ("old", 500, {}))

        with service.clock.reserve() as slow_stamp:
            # A later push finishes while the slow one is still writing.
            assert await service.push([{"newDocumentState": {"id": "b"}}]) == []
            token = await service.current_checkpoint()
            await seed(store, ("a", slow_stamp, {}))

        assert token == "500_old"
        caught_up = await service.pull_from_params(token=token, limit=10)
        assert [d["id"] for d in caught_up["documents"]] == ["a", "b"]
        assert await service.current_checkpoint() == caught_up["checkpoint"]
