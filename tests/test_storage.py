"""
Tests for the document store implementations.

The Google Sheets store is exercised through its pure row and request
builders and against a fake spreadsheet; no real sheet is contacted.
"""

import asyncio
import json
from decimal import Decimal

import pytest

from conftest import wait_until
from finledger.config import ConfigurationInvalidError
from finledger.models.audit import AuditEventBuilder
from finledger.services.storage import (
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    SnapshotEvent,
    SubscriptionErrorEvent,
    WriteBatch,
    WriteRejectedError,
)
from finledger.services.storage.google_sheets import (
    DOCUMENT_COLUMNS,
    build_batch_requests,
    document_to_row,
    row_to_document,
)
from finledger.services.storage.interface import apply_increment


class TestWriteBatch:
    """Batch building."""

    def test_operations_are_ordered(self):
        batch = (
            WriteBatch()
            .set("transactions", "t1", {"amount": "5"})
            .increment("accounts", "a", "balance", Decimal("-5"))
        )
        assert [op.kind for op in batch.operations] == ["set", "increment"]
        assert batch.collections == frozenset({"transactions", "accounts"})
        assert batch.operations[1].fields == {"balance": "-5"}

    def test_apply_increment(self):
        assert apply_increment("100000", "-350") == "99650"
        assert apply_increment(None, "12.5") == "12.5"


class TestInMemoryStore:
    """In-memory store honours the full contract."""

    @pytest.mark.asyncio
    async def test_subscription_filters_by_user(self):
        store = InMemoryDocumentStore()
        store.seed("accounts", "a", {"user_id": "alice", "name": "A"})
        store.seed("accounts", "b", {"user_id": "bob", "name": "B"})
        events = []

        store.subscribe("accounts", "alice", events.append)

        assert isinstance(events[0], SnapshotEvent)
        assert [d.id for d in events[0].documents] == ["a"]

    @pytest.mark.asyncio
    async def test_commit_delivers_full_snapshot(self):
        store = InMemoryDocumentStore()
        events = []
        store.subscribe("accounts", "alice", events.append)

        await store.create("accounts", {"user_id": "alice", "name": "A"})
        await store.create("accounts", {"user_id": "alice", "name": "B"})

        assert len(events) == 3
        assert len(events[-1].documents) == 2

    @pytest.mark.asyncio
    async def test_batch_is_all_or_nothing(self):
        store = InMemoryDocumentStore()
        batch = (
            store.batch()
            .set("transactions", "t1", {"user_id": "alice"})
            .increment("accounts", "missing", "balance", Decimal("1"))
        )

        with pytest.raises(WriteRejectedError):
            await store.commit(batch)

        assert store.get("transactions", "t1") is None

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_delivery(self):
        store = InMemoryDocumentStore()
        events = []
        subscription = store.subscribe("accounts", "alice", events.append)
        subscription.close()
        subscription.close()

        await store.create("accounts", {"user_id": "alice"})

        assert subscription.closed
        assert len(events) == 1

    @pytest.mark.asyncio
    async def test_denied_reads_deliver_errors(self):
        store = InMemoryDocumentStore()
        store.deny_reads("alice", "permission denied")
        events = []

        store.subscribe("accounts", "alice", events.append)

        assert isinstance(events[0], SubscriptionErrorEvent)
        assert events[0].error_message == "permission denied"

    @pytest.mark.asyncio
    async def test_update_missing_document_is_rejected(self):
        store = InMemoryDocumentStore()
        with pytest.raises(WriteRejectedError):
            await store.update("accounts", "nope", {"name": "x"})

    @pytest.mark.asyncio
    async def test_delete_missing_document_is_fine(self):
        store = InMemoryDocumentStore()
        await store.delete("accounts", "nope")


class TestInMemoryAuditStorage:
    """Append-only audit list."""

    @pytest.mark.asyncio
    async def test_filters(self):
        storage = InMemoryAuditStorage()
        await storage.append_event(AuditEventBuilder.account_created("alice", "a1", "Main"))
        await storage.append_event(AuditEventBuilder.account_deleted("alice", "a1"))
        await storage.append_event(AuditEventBuilder.session_opened("bob"))

        assert len(await storage.get_events_by_user("alice")) == 2
        by_entity = await storage.get_events_by_entity("account", "a1")
        assert [e.event_type.value for e in by_entity] == ["account_created", "account_deleted"]
        assert len(await storage.get_recent_events(limit=1)) == 1


def sheet(*docs):
    """Worksheet values: header plus one row per (id, data)."""
    return [DOCUMENT_COLUMNS] + [document_to_row(doc_id, data) for doc_id, data in docs]


class TestSheetsRows:
    """Row conversion for the Sheets store."""

    def test_row_round_trip_keeps_user_column(self):
        row = document_to_row("a", {"user_id": "alice", "name": "Main"})
        assert row[0] == "a"
        assert row[1] == "alice"
        assert row_to_document(row).data == {"user_id": "alice", "name": "Main"}

    def test_blank_row_is_none(self):
        assert row_to_document(["", "", "", ""]) is None


class TestSheetsBatchRequests:
    """WriteBatch → spreadsheets.batchUpdate requests."""

    def test_add_transaction_batch(self):
        batch = (
            WriteBatch()
            .set("transactions", "t1", {"user_id": "alice", "amount": "350"})
            .increment("accounts", "a", "balance", Decimal("-350"))
        )
        rows = {
            "accounts": sheet(("a", {"user_id": "alice", "balance": "100000"})),
            "transactions": sheet(),
        }

        requests = build_batch_requests(batch, {"accounts": 1, "transactions": 2}, rows)

        assert [list(r)[0] for r in requests] == ["updateCells", "appendCells"]
        update = requests[0]["updateCells"]
        assert update["start"] == {"sheetId": 1, "rowIndex": 1, "columnIndex": 0}
        data_json = update["rows"][0]["values"][3]["userEnteredValue"]["stringValue"]
        assert json.loads(data_json)["balance"] == "99650"

    def test_deletes_run_bottom_up(self):
        batch = WriteBatch().delete("transactions", "t1").delete("transactions", "t3")
        rows = {"transactions": sheet(("t1", {}), ("t2", {}), ("t3", {}))}

        requests = build_batch_requests(batch, {"transactions": 7}, rows)

        starts = [r["deleteDimension"]["range"]["startIndex"] for r in requests]
        assert starts == [3, 1]

    def test_increment_of_missing_document_is_rejected(self):
        batch = WriteBatch().increment("accounts", "gone", "balance", Decimal("1"))
        with pytest.raises(WriteRejectedError):
            build_batch_requests(batch, {"accounts": 1}, {"accounts": sheet()})

    def test_set_then_delete_in_one_batch_writes_nothing(self):
        batch = WriteBatch().set("stocks", "h1", {"symbol": "AAPL"}).delete("stocks", "h1")
        assert build_batch_requests(batch, {"stocks": 3}, {"stocks": sheet()}) == []


class TestSheetsDocumentStore:
    """Commits and subscriptions against a fake spreadsheet."""

    @pytest.mark.asyncio
    async def test_commit_delivers_snapshot_before_returning(self, sheets_store):
        events = []
        subscription = sheets_store.subscribe("accounts", "alice", events.append)
        try:
            await sheets_store.create("accounts", {"user_id": "alice", "name": "A"})

            assert isinstance(events[-1], SnapshotEvent)
            assert [d.data["name"] for d in events[-1].documents] == ["A"]
        finally:
            subscription.close()

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_serialized(self, sheets_client, sheets_store):
        await sheets_store.create("accounts", {"user_id": "alice", "balance": "100000"})
        account_id = next(iter(sheets_client.documents("accounts")))
        sheets_client.spreadsheet.read_delay = 0.05

        def expense(tx_id):
            return (
                WriteBatch()
                .set("transactions", tx_id, {"user_id": "alice", "amount": "350"})
                .increment("accounts", account_id, "balance", Decimal("-350"))
            )

        await asyncio.gather(
            sheets_store.commit(expense("t1")),
            sheets_store.commit(expense("t2")),
        )

        assert sheets_client.documents("accounts")[account_id]["balance"] == "99300"
        assert set(sheets_client.documents("transactions")) == {"t1", "t2"}

    @pytest.mark.asyncio
    async def test_rejected_batch_writes_nothing(self, sheets_client, sheets_store):
        batch = (
            WriteBatch()
            .set("transactions", "t1", {"user_id": "alice"})
            .increment("accounts", "missing", "balance", Decimal("1"))
        )

        with pytest.raises(WriteRejectedError):
            await sheets_store.commit(batch)

        assert sheets_client.documents("transactions") == {}
        assert sheets_client.spreadsheet.batch_updates == 0

    @pytest.mark.asyncio
    async def test_poll_error_then_recovery(self, sheets_client, sheets_store):
        events = []
        sheets_client.error = RuntimeError("quota exceeded")
        subscription = sheets_store.subscribe("accounts", "alice", events.append)
        try:
            await wait_until(lambda: len(events) > 0)
            assert events[0].error_message == "quota exceeded"
            assert events[0].configuration_error is False

            sheets_client.error = None
            await wait_until(lambda: isinstance(events[-1], SnapshotEvent))
        finally:
            subscription.close()

        # The same failure on every poll is reported once
        assert sum(isinstance(e, SubscriptionErrorEvent) for e in events) == 1

    @pytest.mark.asyncio
    async def test_configuration_failure_is_marked(self, sheets_client, sheets_store):
        events = []
        sheets_client.error = ConfigurationInvalidError(
            "google_sheets", "spreadsheet not found: sheet-under-test"
        )
        subscription = sheets_store.subscribe("accounts", "alice", events.append)
        try:
            await wait_until(lambda: len(events) > 0)
        finally:
            subscription.close()

        assert events[0].configuration_error is True
        assert events[0].error_message == "spreadsheet not found: sheet-under-test"

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_subscription(self, sheets_store):
        events = []

        def listener(event):
            events.append(event)
            raise RuntimeError("listener bug")

        subscription = sheets_store.subscribe("accounts", "alice", listener)
        try:
            await wait_until(lambda: len(events) > 0)
            await sheets_store.create("accounts", {"user_id": "alice", "name": "A"})

            assert len(events[-1].documents) == 1
        finally:
            subscription.close()

    @pytest.mark.asyncio
    async def test_closed_subscription_stops_delivery(self, sheets_store):
        events = []
        subscription = sheets_store.subscribe("accounts", "alice", events.append)
        await wait_until(lambda: len(events) > 0)
        subscription.close()
        delivered = len(events)

        await sheets_store.create("accounts", {"user_id": "alice", "name": "A"})
        await asyncio.sleep(0.05)

        assert len(events) == delivered


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
