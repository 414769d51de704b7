"""
Tests for the push engine and conflict reporting.
"""

import asyncio

import pytest

from docsync.replication.checkpoint import SENTINEL
from docsync.replication.concurrency import WriteClock
from docsync.replication.models import ChangeRow, MALFORMED_ROW_ERROR, is_error_entry
from docsync.replication.push import validate_change_row
from docsync.service import ReplicationService
from docsync.utils.errors import MalformedChangeRowError

from conftest import FakeNow, SlowMemoryStore, seed


def new_row(doc_id, assumed=None, **fields):
    row = {"newDocumentState": {"id": doc_id, **fields}}
    if assumed is not None:
        row["assumedMasterState"] = assumed
    return row


class TestApply:

    @pytest.mark.asyncio
    async def test_first_write(self, service, store):
        conflicts = await service.push([new_row("a", title="hello")])

        assert conflicts == []
        stored = await store.get("a")
        assert stored.data == {"title": "hello"}
        assert stored.updated_at == service.clock.last_stamp

    @pytest.mark.asyncio
    async def test_protocol_fields_stripped(self, service, store):
        await service.push([new_row("a", title="x", updatedAt=1, _rev="3-abc", _attachments={})])

        stored = await store.get("a")
        assert stored.data == {"title": "x"}

    @pytest.mark.asyncio
    async def test_matching_assumption_replaces_document(self, service, store):
        await seed(store, ("a", 100, {"title": "old", "tags": ["x"]}))

        conflicts = await service.push([
            new_row("a", assumed={"id": "a", "updatedAt": 100, "title": "old"}, title="new"),
        ])

        assert conflicts == []
        stored = await store.get("a")
        # Full replace: fields missing from the new state are gone.
        assert stored.data == {"title": "new"}
        assert stored.updated_at > 100

    @pytest.mark.asyncio
    async def test_batch_shares_one_stamp(self, service, store):
        outcome = await service.pusher.push_detailed([
            new_row("a"), new_row("b"), new_row("c"),
        ])

        assert outcome.applied == ["a", "b", "c"]
        stamps = {(await store.get(doc_id)).updated_at for doc_id in "abc"}
        assert stamps == {outcome.updated_at}

    @pytest.mark.asyncio
    async def test_consecutive_pushes_get_increasing_stamps(self, service, store):
        await service.push([new_row("a")])
        first = (await store.get("a")).updated_at

        stored = (await store.get("a")).to_wire()
        await service.push([new_row("a", assumed=stored, n=2)])

        assert (await store.get("a")).updated_at > first

    @pytest.mark.asyncio
    async def test_applied_rows_visible_to_pull(self, service):
        await service.push([new_row("b"), new_row("a")])

        result = await service.pull(SENTINEL, 10)

        # Same stamp, so id order.
        assert [d.id for d in result.documents] == ["a", "b"]
        assert await service.current_checkpoint() == result.checkpoint.encode()


class TestConflicts:

    @pytest.mark.asyncio
    async def test_stale_assumption(self, service, store):
        await seed(store, ("a", 100, {"title": "server"}))

        conflicts = await service.push([
            new_row("a", assumed={"id": "a", "updatedAt": 50}, title="client"),
        ])

        assert conflicts == [{"id": "a", "title": "server", "updatedAt": 100}]
        assert (await store.get("a")).data == {"title": "server"}

    @pytest.mark.asyncio
    async def test_existing_document_assumed_new(self, service, store):
        await seed(store, ("a", 100, {"title": "server"}))

        conflicts = await service.push([new_row("a", title="client")])

        assert conflicts == [{"id": "a", "title": "server", "updatedAt": 100}]

    @pytest.mark.asyncio
    async def test_missing_document_assumed_existing(self, service, store):
        conflicts = await service.push([
            new_row("ghost", assumed={"id": "ghost", "updatedAt": 10}),
        ])

        assert conflicts == [{}]
        assert await store.get("ghost") is None

    @pytest.mark.asyncio
    async def test_assumption_without_stamp(self, service, store):
        await seed(store, ("a", 100, {}))

        conflicts = await service.push([new_row("a", assumed={"id": "a"})])

        assert len(conflicts) == 1
        assert (await store.get("a")).updated_at == 100

    @pytest.mark.asyncio
    async def test_conflicts_in_input_order(self, service, store):
        await seed(store, ("x", 100, {}), ("y", 200, {}))

        conflicts = await service.push([
            new_row("y"),
            new_row("fresh"),
            new_row("x"),
        ])

        assert [c["id"] for c in conflicts] == ["y", "x"]
        assert await store.get("fresh") is not None

    @pytest.mark.asyncio
    async def test_repeated_new_row_conflicts_second_time(self, service):
        row = new_row("a", title="once")

        assert await service.push([row]) == []
        conflicts = await service.push([row])

        assert len(conflicts) == 1
        assert conflicts[0]["title"] == "once"

    @pytest.mark.asyncio
    async def test_stamp_never_goes_backwards(self, store):
        # Stored stamp is ahead of anything this clock will hand out.
        service = ReplicationService(store, clock=WriteClock(now=FakeNow(1_000)))
        await seed(store, ("a", 9_000, {"title": "future"}))

        conflicts = await service.push([
            new_row("a", assumed={"id": "a", "updatedAt": 9_000}, title="client"),
        ])

        assert conflicts == [{"id": "a", "title": "future", "updatedAt": 9_000}]

    @pytest.mark.asyncio
    async def test_initialize_moves_clock_past_stored_stamps(self, store):
        await seed(store, ("a", 9_000, {}))
        service = ReplicationService(store, clock=WriteClock(now=FakeNow(1_000)))
        await service.initialize()

        conflicts = await service.push([new_row("a", assumed={"id": "a", "updatedAt": 9_000})])

        assert conflicts == []
        assert (await store.get("a")).updated_at == 9_001


class TestMalformedRows:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", [
        "not a row",
        {},
        {"newDocumentState": None},
        {"newDocumentState": {"title": "no id"}},
        {"newDocumentState": {"id": ""}},
        {"newDocumentState": {"id": 7}},
        {"newDocumentState": {"id": "a"}, "assumedMasterState": "stale"},
    ])
    async def test_malformed_row_is_reported(self, service, raw):
        conflicts = await service.push([raw])

        assert len(conflicts) == 1
        assert conflicts[0]["error"] == MALFORMED_ROW_ERROR
        assert is_error_entry(conflicts[0])

    @pytest.mark.asyncio
    async def test_malformed_row_does_not_abort_batch(self, service, store):
        conflicts = await service.push([
            new_row("a"),
            {"newDocumentState": {}},
            new_row("b"),
        ])

        assert len(conflicts) == 1
        assert is_error_entry(conflicts[0])
        assert await store.get("a") is not None
        assert await store.get("b") is not None

    def test_validate_change_row(self):
        assert validate_change_row(ChangeRow({"id": "a"})) == "a"
        with pytest.raises(MalformedChangeRowError) as exc_info:
            validate_change_row(ChangeRow(["a"]))
        assert exc_info.value.field == "newDocumentState"

    def test_conflict_entries_are_not_error_entries(self):
        assert not is_error_entry({"id": "a", "updatedAt": 1})
        assert not is_error_entry({})


class TestConcurrentPushes:
    """Racing writers on one document: exactly one wins."""

    @pytest.fixture
    async def slow_service(self):
        service = ReplicationService(SlowMemoryStore(), clock=WriteClock(now=FakeNow(1_000)))
        await service.initialize()
        yield service
        await service.close()

    @pytest.mark.asyncio
    async def test_only_one_new_write_wins(self, slow_service):
        results = await asyncio.gather(
            slow_service.push([new_row("doc", writer="one")]),
            slow_service.push([new_row("doc", writer="two")]),
        )

        winners = [r for r in results if r == []]
        losers = [r for r in results if r != []]
        assert len(winners) == 1
        assert len(losers) == 1

        stored = await slow_service.store.get("doc")
        assert losers[0] == [stored.to_wire()]
        assert len(slow_service.locks) == 0

    @pytest.mark.asyncio
    async def test_loser_retries_with_server_state(self, slow_service):
        await slow_service.push([new_row("doc", n=0)])
        base = (await slow_service.store.get("doc")).to_wire()

        results = await asyncio.gather(*[
            slow_service.push([new_row("doc", assumed=base, n=i)]) for i in range(1, 4)
        ])
        assert sum(1 for r in results if r == []) == 1

        conflict = next(r for r in results if r)[0]
        retry = await slow_service.push([new_row("doc", assumed=conflict, n=99)])

        assert retry == []
        assert (await slow_service.store.get("doc")).data == {"n": 99}

    @pytest.mark.asyncio
    async def test_different_documents_all_apply(self, slow_service):
        results = await asyncio.gather(*[
            slow_service.push([new_row(f"doc-{i}")]) for i in range(5)
        ])

        assert results == [[]] * 5
        page = await slow_service.pull(SENTINEL, 10)
        assert len(page.documents) == 5
