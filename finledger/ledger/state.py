"""
Ledger State and Snapshot Reducer

DESIGN DECISION: The ledger's in-memory view is an immutable value
rebuilt from store events. The store pushes full-collection snapshots,
so each event replaces exactly one collection; nothing is merged and
nothing is predicted locally.

reduce_event() is a pure function. Feeding it a synthetic event
sequence is how the ledger's view is unit tested.
"""

from typing import Iterable, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from finledger.models.ledger import Account, Collection, StockHolding, Transaction
from finledger.services.storage.interface import (
    Document,
    SnapshotEvent,
    StoreEvent,
    SubscriptionErrorEvent,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class LedgerState(BaseModel):
    """
    One user's accounts, transactions and holdings as last delivered
    by the store.

    Transactions are kept newest date first.
    """
    model_config = ConfigDict(frozen=True)

    accounts: dict[str, Account] = Field(default_factory=dict)
    transactions: tuple[Transaction, ...] = ()
    holdings: tuple[StockHolding, ...] = ()
    # collection -> last subscription error, cleared by the next good snapshot
    subscription_errors: dict[str, str] = Field(default_factory=dict)
    loaded: frozenset[str] = frozenset()

    def account(self, account_id: str) -> Optional[Account]:
        return self.accounts.get(account_id)

    def transaction(self, transaction_id: str) -> Optional[Transaction]:
        for tx in self.transactions:
            if tx.id == transaction_id:
                return tx
        return None

    def holding(self, holding_id: str) -> Optional[StockHolding]:
        for holding in self.holdings:
            if holding.id == holding_id:
                return holding
        return None

    @property
    def has_errors(self) -> bool:
        return bool(self.subscription_errors)

    @property
    def is_loaded(self) -> bool:
        """True once every collection has delivered a snapshot."""
        return self.loaded >= {c.value for c in Collection}


def _parse_documents(
    model: type[ModelT],
    documents: tuple[Document, ...],
    collection: str,
) -> list[ModelT]:
    """Validate documents, skipping (and logging) malformed ones."""
    parsed = []
    for doc in documents:
        try:
            parsed.append(model.model_validate(doc.to_record()))
        except ValidationError as e:
            logger.warning(
                "malformed_document_skipped",
                collection=collection,
                doc_id=doc.id,
                error_count=e.error_count(),
            )
    return parsed


def _newest_first(transactions: list[Transaction]) -> tuple[Transaction, ...]:
    # Stable sort keeps store order among same-day transactions
    return tuple(sorted(transactions, key=lambda tx: tx.date, reverse=True))


def _without(errors: dict[str, str], collection: str) -> dict[str, str]:
    return {k: v for k, v in errors.items() if k != collection}


def reduce_event(state: LedgerState, event: StoreEvent) -> LedgerState:
    """
    Return the state that results from applying one store event.

    A snapshot replaces its collection wholesale and clears that
    collection's error flag; an error event sets the flag and leaves
    the last good snapshot in place. Events for unknown collections
    are ignored.
    """
    collection = event.collection

    if isinstance(event, SubscriptionErrorEvent):
        errors = dict(state.subscription_errors)
        errors[collection] = event.error_message
        return state.model_copy(update={"subscription_errors": errors})

    if not isinstance(event, SnapshotEvent):
        return state

    update: dict = {
        "subscription_errors": _without(state.subscription_errors, collection),
        "loaded": state.loaded | {collection},
    }

    if collection == Collection.ACCOUNTS.value:
        accounts = _parse_documents(Account, event.documents, collection)
        update["accounts"] = {a.id: a for a in accounts}
    elif collection == Collection.TRANSACTIONS.value:
        transactions = _parse_documents(Transaction, event.documents, collection)
        update["transactions"] = _newest_first(transactions)
    elif collection == Collection.HOLDINGS.value:
        update["holdings"] = tuple(
            _parse_documents(StockHolding, event.documents, collection)
        )
    else:
        logger.warning("unknown_collection_event", collection=collection)
        return state

    return state.model_copy(update=update)


def replay(events: Iterable[StoreEvent], state: Optional[LedgerState] = None) -> LedgerState:
    """Fold a sequence of events into a state, starting from empty."""
    if state is None:
        state = LedgerState()
    for event in events:
        state = reduce_event(state, event)
    return state
