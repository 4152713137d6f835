"""
Ledger

Owns one user's view of accounts, transactions and stock holdings and
applies every mutation through the document store.

DESIGN DECISIONS:
1. Adding or deleting a transaction and adjusting its account balance
   go out as ONE WriteBatch. The store commits both or neither.
2. The balance change is an increment applied by the store at commit
   time, not a value computed from our possibly stale snapshot.
3. No optimistic updates. Local state only changes when the store
   delivers a new snapshot through apply().
4. A rejected write is audited and re-raised unchanged. Mutations are
   never retried.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union

import structlog

from finledger.agents.ai_agents import Advisor, PriceSource
from finledger.audit import AuditLogger
from finledger.config import LedgerSettings
from finledger.ledger import views
from finledger.ledger.context import SessionContext
from finledger.ledger.state import LedgerState, reduce_event
from finledger.models.audit import AuditEventType
from finledger.models.ledger import (
    Account,
    Collection,
    HoldingReturn,
    MonthlyTrend,
    PeriodTotals,
    SetHoldingPrice,
    StockHolding,
    Transaction,
    TransactionType,
)
from finledger.services.storage.interface import (
    USER_FIELD,
    DocumentStore,
    NotFoundError,
    StoreEvent,
    WriteBatch,
    WriteRejectedError,
)
from finledger.validation import LedgerValidator, require_id


logger = structlog.get_logger(__name__)

ACCOUNTS = Collection.ACCOUNTS.value
TRANSACTIONS = Collection.TRANSACTIONS.value
HOLDINGS = Collection.HOLDINGS.value


def balance_delta(tx: Transaction) -> Optional[Decimal]:
    """
    The change a transaction makes to its account balance, or None
    when its type carries no balance rule (TRANSFER).
    """
    if tx.type == TransactionType.TRANSFER:
        return None
    return tx.signed_amount


class Ledger:
    """
    Ledger operations for the user of one SessionContext.

    State is fed in by the session's store subscriptions via apply().
    """

    def __init__(
        self,
        context: SessionContext,
        store: DocumentStore,
        validator: Optional[LedgerValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
    ):
        self._context = context
        self._store = store
        self._validator = validator or LedgerValidator()
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or LedgerSettings()
        self._state = LedgerState()
        self._refreshing_prices = False
        self._logger = logger.bind(user_id=context.user_id)

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def state(self) -> LedgerState:
        return self._state

    @property
    def user_id(self) -> str:
        return self._context.user_id

    @property
    def is_refreshing_prices(self) -> bool:
        return self._refreshing_prices

    @property
    def subscription_errors(self) -> dict[str, str]:
        return dict(self._state.subscription_errors)

    def apply(self, event: StoreEvent) -> None:
        """Swap in the state that results from one store event."""
        self._state = reduce_event(self._state, event)

    def _owned(self, data: dict[str, Any]) -> dict[str, Any]:
        return {**data, USER_FIELD: self.user_id}

    async def _commit(self, batch: WriteBatch, operation: str) -> None:
        self._context.ensure_open()
        try:
            await self._store.commit(batch)
        except WriteRejectedError as e:
            self._logger.error("write_rejected", operation=operation, error=str(e))
            await self._audit.log_write_rejected(self.user_id, operation, str(e))
            raise

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def add_transaction(self, draft: Any) -> Transaction:
        """
        Record a transaction and adjust its account balance atomically.

        If the account is not in the current state the transaction is
        still recorded, without any balance change.

        Raises:
            InvalidInputError: Before any write, if the draft is invalid
            WriteRejectedError: If the store refused the batch
        """
        draft = self._validator.transaction_draft(draft)
        self._context.ensure_open()

        transaction = Transaction(id=self._store.new_id(TRANSACTIONS), **draft.model_dump())
        batch = self._store.batch().set(
            TRANSACTIONS, transaction.id, self._owned(transaction.to_document())
        )

        delta = balance_delta(transaction)
        if delta is not None and self._state.account(transaction.account_id) is None:
            self._logger.warning(
                "dangling_account_reference",
                transaction_id=transaction.id,
                account_id=transaction.account_id,
            )
            delta = None
        if delta is not None:
            batch.increment(ACCOUNTS, transaction.account_id, "balance", delta)

        await self._commit(batch, "add_transaction")
        await self._audit.log_transaction_added(
            user_id=self.user_id,
            transaction_id=transaction.id,
            account_id=transaction.account_id,
            transaction_type=transaction.type.value,
            amount=transaction.amount,
            balance_delta=delta,
        )
        return transaction

    async def delete_transaction(self, transaction_id: str) -> None:
        """
        Remove a transaction and reverse its balance contribution atomically.

        The reversal uses the type recorded on the transaction. Unknown
        ids are a no-op; a missing account means only the record is removed.
        """
        transaction_id = require_id(transaction_id, "transaction")
        self._context.ensure_open()

        transaction = self._state.transaction(transaction_id)
        if transaction is None:
            self._logger.info("delete_unknown_transaction", transaction_id=transaction_id)
            return

        batch = self._store.batch().delete(TRANSACTIONS, transaction_id)

        delta = balance_delta(transaction)
        if delta is not None and self._state.account(transaction.account_id) is None:
            self._logger.warning(
                "dangling_account_reference",
                transaction_id=transaction_id,
                account_id=transaction.account_id,
            )
            delta = None
        if delta is not None:
            delta = -delta
            batch.increment(ACCOUNTS, transaction.account_id, "balance", delta)

        await self._commit(batch, "delete_transaction")
        await self._audit.log_transaction_deleted(
            user_id=self.user_id,
            transaction_id=transaction_id,
            account_id=transaction.account_id,
            balance_delta=delta,
        )

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def add_account(self, draft: Any) -> Account:
        draft = self._validator.account_draft(draft)
        self._context.ensure_open()

        account = Account(id=self._store.new_id(ACCOUNTS), **draft.model_dump())
        batch = self._store.batch().set(ACCOUNTS, account.id, self._owned(account.to_document()))
        await self._commit(batch, "add_account")
        await self._audit.log_account_created(self.user_id, account.id, account.name)
        return account

    def _require_account(self, account_id: str) -> Account:
        account = self._state.account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return account

    async def update_account(self, account: Any) -> None:
        """
        Replace every field of an existing account.

        Raises:
            NotFoundError: If the account is not in the current state
        """
        account = self._validator.account(account)
        self._context.ensure_open()
        self._require_account(account.id)

        batch = self._store.batch().update(ACCOUNTS, account.id, account.to_document())
        await self._commit(batch, "update_account")
        await self._audit.log_account_updated(
            self.user_id, account.id, sorted(account.to_document())
        )

    async def edit_account(self, account_id: str, *updates: Any) -> None:
        """Apply typed field updates (RenameAccount, SetAccountBalance, ...)."""
        account_id = require_id(account_id, "account")
        validated = self._validator.account_updates(updates)
        self._context.ensure_open()
        self._require_account(account_id)

        patch = self._validator.merge_patches(validated)
        await self._commit(self._store.batch().update(ACCOUNTS, account_id, patch), "edit_account")
        await self._audit.log_account_updated(self.user_id, account_id, sorted(patch))

    async def delete_account(self, account_id: str) -> None:
        """
        Delete an account. Its transactions are left in place with a
        dangling account reference. Unknown ids are a no-op.
        """
        account_id = require_id(account_id, "account")
        self._context.ensure_open()

        if self._state.account(account_id) is None:
            self._logger.info("delete_unknown_account", account_id=account_id)
            return

        await self._commit(self._store.batch().delete(ACCOUNTS, account_id), "delete_account")
        await self._audit.log_account_deleted(self.user_id, account_id)

    # =========================================================================
    # STOCK HOLDINGS
    # =========================================================================

    async def add_holding(self, draft: Any) -> StockHolding:
        draft = self._validator.holding_draft(draft)
        self._context.ensure_open()

        holding = StockHolding(id=self._store.new_id(HOLDINGS), **draft.model_dump())
        batch = self._store.batch().set(HOLDINGS, holding.id, self._owned(holding.to_document()))
        await self._commit(batch, "add_holding")
        await self._audit.log_holding_changed(
            AuditEventType.HOLDING_ADDED, self.user_id, holding.id, holding.symbol
        )
        return holding

    async def edit_holding(self, holding_id: str, *updates: Any) -> None:
        """Apply typed field updates (SetHoldingPrice, SetHoldingQuantity, ...)."""
        holding_id = require_id(holding_id, "holding")
        validated = self._validator.holding_updates(updates)
        self._context.ensure_open()

        holding = self._state.holding(holding_id)
        if holding is None:
            raise NotFoundError(f"Holding not found: {holding_id}")

        patch = self._validator.merge_patches(validated)
        await self._commit(self._store.batch().update(HOLDINGS, holding_id, patch), "edit_holding")
        await self._audit.log_holding_changed(
            AuditEventType.HOLDING_UPDATED, self.user_id, holding_id, holding.symbol
        )

    async def delete_holding(self, holding_id: str) -> None:
        holding_id = require_id(holding_id, "holding")
        self._context.ensure_open()

        holding = self._state.holding(holding_id)
        if holding is None:
            self._logger.info("delete_unknown_holding", holding_id=holding_id)
            return

        await self._commit(self._store.batch().delete(HOLDINGS, holding_id), "delete_holding")
        await self._audit.log_holding_changed(
            AuditEventType.HOLDING_DELETED, self.user_id, holding_id, holding.symbol
        )

    async def refresh_prices(self, price_source: PriceSource) -> int:
        """
        Ask the price collaborator for current prices and apply them.

        Holdings whose symbol is missing from the response are left
        alone. All matching prices are written in one batch.

        Returns:
            Number of holdings updated (0 when there was nothing to do)
        """
        self._context.ensure_open()
        holdings = list(self._state.holdings)
        if not holdings:
            return 0

        self._refreshing_prices = True
        try:
            try:
                updates = await price_source.fetch_prices(holdings)
            except Exception as e:
                await self._audit.log_external_service_error(
                    "price_update", str(e), user_id=self.user_id
                )
                raise

            prices = {u.symbol: u.price for u in updates}
            batch = self._store.batch()
            for holding in holdings:
                if holding.symbol in prices:
                    patch = SetHoldingPrice(value=prices[holding.symbol]).to_patch()
                    batch.update(HOLDINGS, holding.id, patch)

            if len(batch):
                await self._commit(batch, "refresh_prices")
        finally:
            self._refreshing_prices = False

        await self._audit.log_prices_refreshed(self.user_id, len(batch), len(holdings))
        return len(batch)

    # =========================================================================
    # ADVICE
    # =========================================================================

    async def request_advice(self, advisor: Advisor) -> str:
        """Send a summary of the current state to the advice collaborator."""
        self._context.ensure_open()
        summary = self.financial_summary()
        await self._audit.log_advice_requested(self.user_id, len(summary))
        return await advisor.get_financial_advice(summary)

    # =========================================================================
    # DERIVED VIEWS
    # =========================================================================

    def total_assets(self) -> Decimal:
        return views.total_assets(
            self._state, self._settings.local_currency, self._settings.fx_rates
        )

    def monthly_totals(self, month: Union[date, str]) -> PeriodTotals:
        return views.monthly_totals(self._state, month)

    def category_totals(
        self,
        transaction_type: TransactionType = TransactionType.EXPENSE,
    ) -> dict[str, Decimal]:
        return views.category_totals(self._state, transaction_type)

    def trend_by_month(self) -> list[MonthlyTrend]:
        return views.trend_by_month(self._state)

    def recent_transactions(self, limit: Optional[int] = None) -> list[Transaction]:
        if limit is None:
            limit = self._settings.recent_transactions_limit
        return views.recent_transactions(self._state, limit)

    def search_transactions(self, text: str) -> list[Transaction]:
        return views.search_transactions(self._state, text)

    def holding_returns(self) -> dict[str, HoldingReturn]:
        return {h.id: views.holding_return(h) for h in self._state.holdings}

    def financial_summary(self) -> str:
        return views.build_financial_summary(
            self._state, self._settings.local_currency, self._settings.fx_rates
        )
