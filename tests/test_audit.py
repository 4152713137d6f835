"""
Tests for the audit logger.
"""

from decimal import Decimal

import pytest

from finledger.audit import AuditLogger
from finledger.models.audit import AuditEventBuilder, AuditEventType, AuditSeverity
from finledger.services.storage import InMemoryAuditStorage


class FailingAuditStorage(InMemoryAuditStorage):
    async def append_event(self, event):
        raise RuntimeError("sheet unavailable")


class TestAuditLogger:
    """Events reach storage; storage failures never propagate."""

    @pytest.mark.asyncio
    async def test_transaction_added_is_persisted(self):
        storage = InMemoryAuditStorage()
        audit = AuditLogger(storage)

        await audit.log_transaction_added(
            user_id="alice",
            transaction_id="t1",
            account_id="a",
            transaction_type="EXPENSE",
            amount=Decimal("350"),
            balance_delta=Decimal("-350"),
        )

        event = storage.events[0]
        assert event.event_type == AuditEventType.TRANSACTION_ADDED
        assert event.entity_id == "t1"
        assert event.details["balance_delta"] == "-350"

    @pytest.mark.asyncio
    async def test_dangling_reference_has_no_delta(self):
        storage = InMemoryAuditStorage()
        await AuditLogger(storage).log_transaction_deleted("alice", "t1", "gone", None)
        assert storage.events[0].details["balance_delta"] is None

    @pytest.mark.asyncio
    async def test_storage_failure_is_swallowed(self):
        audit = AuditLogger(FailingAuditStorage())
        assert await audit.log(AuditEventBuilder.session_opened("alice")) is False

    @pytest.mark.asyncio
    async def test_local_only_logging(self):
        audit = AuditLogger()
        await audit.log_configuration_invalid("missing spreadsheet id")

    @pytest.mark.asyncio
    async def test_write_rejected_is_an_error(self):
        storage = InMemoryAuditStorage()
        await AuditLogger(storage).log_write_rejected("alice", "add_transaction", "denied")
        event = storage.events[0]
        assert event.severity == AuditSeverity.ERROR
        assert event.error_message == "denied"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
