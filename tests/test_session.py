"""
Tests for the snapshot reducer and the session lifecycle.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from conftest import ACCOUNT_A, ALICE, BOB, account_doc, wait_until
from finledger.config import ConfigurationInvalidError
from finledger.ledger import LedgerState, NoActiveSessionError, SessionManager, reduce_event
from finledger.models.audit import AuditEventType
from finledger.models.ledger import Collection, TransactionDraft, TransactionType
from finledger.orchestrator import create_app_components
from finledger.services.auth import LocalAuthProvider
from finledger.services.storage import Document, SnapshotEvent, SubscriptionErrorEvent


ACCOUNTS = Collection.ACCOUNTS.value


def accounts_snapshot(**balances) -> SnapshotEvent:
    return SnapshotEvent(
        collection=ACCOUNTS,
        documents=tuple(
            Document(id=doc_id, data=account_doc("alice", doc_id, balance))
            for doc_id, balance in balances.items()
        ),
    )


class TestReducer:
    """reduce_event is a pure snapshot-replace function."""

    def test_snapshot_replaces_collection(self):
        state = reduce_event(LedgerState(), accounts_snapshot(a="1", b="2"))
        state = reduce_event(state, accounts_snapshot(b="5"))
        assert set(state.accounts) == {"b"}
        assert state.accounts["b"].balance == Decimal("5")

    def test_input_state_is_not_mutated(self):
        before = reduce_event(LedgerState(), accounts_snapshot(a="1"))
        after = reduce_event(before, accounts_snapshot(a="2"))
        assert before.accounts["a"].balance == Decimal("1")
        assert after.accounts["a"].balance == Decimal("2")

    def test_error_flag_persists_until_next_snapshot(self):
        state = reduce_event(LedgerState(), accounts_snapshot(a="1"))
        state = reduce_event(state, SubscriptionErrorEvent(collection=ACCOUNTS, error_message="denied"))

        assert state.subscription_errors == {ACCOUNTS: "denied"}
        # Last good snapshot stays in place
        assert "a" in state.accounts

        state = reduce_event(state, accounts_snapshot(a="3"))
        assert state.subscription_errors == {}

    def test_malformed_document_is_skipped(self):
        event = SnapshotEvent(
            collection=ACCOUNTS,
            documents=(
                Document(id="ok", data=account_doc("alice", "ok", "1")),
                Document(id="bad", data={"user_id": "alice", "balance": "not a number"}),
            ),
        )
        assert set(reduce_event(LedgerState(), event).accounts) == {"ok"}

    def test_loaded_tracks_collections(self):
        state = reduce_event(LedgerState(), accounts_snapshot())
        assert ACCOUNTS in state.loaded
        assert state.is_loaded is False


class TestSessionLifecycle:
    """Subscriptions live exactly as long as the signed-in user."""

    def test_no_ledger_before_sign_in(self, sessions):
        with pytest.raises(NoActiveSessionError):
            sessions.ledger

    def test_sign_in_subscribes_all_collections(self, auth, sessions):
        auth.sign_in(ALICE)
        collections = {s.collection for s in sessions.context.subscriptions}
        assert collections == {"accounts", "transactions", "stocks"}
        assert sessions.ledger.state.is_loaded

    def test_sign_out_tears_down(self, auth, sessions):
        auth.sign_in(ALICE)
        context = sessions.context
        subscriptions = context.subscriptions

        auth.sign_out()

        assert context.closed
        assert all(s.closed for s in subscriptions)
        with pytest.raises(NoActiveSessionError):
            sessions.ledger

    @pytest.mark.asyncio
    async def test_old_ledger_refuses_writes(self, auth, sessions):
        auth.sign_in(ALICE)
        stale = sessions.ledger
        auth.sign_out()

        with pytest.raises(NoActiveSessionError):
            await stale.add_account({"name": "Late"})

    def test_user_switch_discards_state(self, auth, sessions, store):
        store.seed(ACCOUNTS, "acct-bob", account_doc(BOB.id, "Bob's", "7"))

        auth.sign_in(ALICE)
        alice_ledger = sessions.ledger
        auth.sign_in(BOB)

        assert sessions.ledger is not alice_ledger
        assert set(sessions.ledger.state.accounts) == {"acct-bob"}
        # Alice's ledger no longer receives snapshots
        assert set(alice_ledger.state.accounts) == {ACCOUNT_A}

    @pytest.mark.asyncio
    async def test_subscription_error_sets_flag(self, auth, sessions, store, audit_storage):
        store.deny_reads(ALICE.id, "permission denied")
        auth.sign_in(ALICE)

        assert sessions.ledger.subscription_errors == {
            "accounts": "permission denied",
            "transactions": "permission denied",
            "stocks": "permission denied",
        }
        # Audit writes were scheduled on the running loop
        await _drain()
        assert any(
            e.event_type == AuditEventType.SUBSCRIPTION_ERROR for e in audit_storage.events
        )


class TestConfigurationErrors:
    """Invalid configuration blocks every ledger operation."""

    def test_configuration_error_blocks_ledger(self, store):
        auth = LocalAuthProvider(ALICE)
        manager = SessionManager(
            auth,
            store,
            configuration_error=ConfigurationInvalidError("google_sheets", "missing spreadsheet id"),
        )
        manager.start()

        with pytest.raises(ConfigurationInvalidError):
            manager.ledger
        assert manager.context is None

    def test_missing_store_is_a_configuration_error(self):
        manager = SessionManager(LocalAuthProvider(ALICE), None)
        manager.start()
        with pytest.raises(ConfigurationInvalidError):
            manager.ledger

    def test_orchestrator_memory_backend(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        components = create_app_components(store_backend="memory")

        components.auth.sign_in(ALICE)
        assert components.sessions.ledger.user_id == ALICE.id
        assert components.price_agent.configured is False

    def test_orchestrator_unknown_backend(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        components = create_app_components(store_backend="postgres")
        assert isinstance(components.sessions.configuration_error, ConfigurationInvalidError)


class TestAuditTasks:
    """Audit writes scheduled from listeners are tracked until done."""

    @pytest.mark.asyncio
    async def test_drain_waits_for_scheduled_audits(self, auth, sessions, audit_storage):
        auth.sign_in(ALICE)
        assert sessions.pending_audits > 0

        await sessions.drain_audits()

        assert sessions.pending_audits == 0
        assert any(e.event_type == AuditEventType.SESSION_OPENED for e in audit_storage.events)


class TestSheetsBackedSessions:
    """SessionManager over the Google Sheets store (fake spreadsheet)."""

    @pytest.mark.asyncio
    async def test_new_account_then_expense_conserves_balance(
        self, sheets_client, sheets_store, audit_logger, ledger_settings
    ):
        auth = LocalAuthProvider()
        manager = SessionManager(auth, sheets_store, audit_logger=audit_logger, settings=ledger_settings)
        manager.start()
        auth.sign_in(ALICE)
        try:
            ledger = manager.ledger
            account = await ledger.add_account({"name": "Main", "balance": "100000"})
            # The commit already delivered the new account back to the ledger
            assert ledger.state.account(account.id) is not None

            await ledger.add_transaction(TransactionDraft(
                account_id=account.id,
                type=TransactionType.EXPENSE,
                amount=Decimal("350"),
                category="Food",
                date=date(2024, 1, 5),
            ))

            assert sheets_client.documents(ACCOUNTS)[account.id]["balance"] == "99650"
            assert ledger.state.account(account.id).balance == Decimal("99650")
        finally:
            manager.stop()
            await manager.drain_audits()

    @pytest.mark.asyncio
    async def test_runtime_configuration_error_blocks_ledger(
        self, sheets_client, sheets_store, audit_storage, audit_logger, ledger_settings
    ):
        auth = LocalAuthProvider()
        manager = SessionManager(auth, sheets_store, audit_logger=audit_logger, settings=ledger_settings)
        manager.start()
        sheets_client.error = ConfigurationInvalidError(
            "google_sheets", "spreadsheet not found: sheet-under-test"
        )
        auth.sign_in(ALICE)
        try:
            await wait_until(lambda: manager.configuration_error is not None)

            with pytest.raises(ConfigurationInvalidError):
                manager.ledger
            assert manager.context is None

            # Signing in again does not reopen a session on a broken store
            auth.sign_in(BOB)
            assert manager.context is None
        finally:
            manager.stop()
            await manager.drain_audits()

        assert any(
            e.event_type == AuditEventType.CONFIGURATION_INVALID for e in audit_storage.events
        )


async def _drain():
    for _ in range(3):
        await asyncio.sleep(0)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
