"""
In-Memory Storage Implementation

Backs the ledger in tests and local demos. Honours the full store
contract: atomic batches (validated on a working copy, swapped in only
when every operation succeeds) and synchronous snapshot delivery to
subscribers after each successful commit.
"""

import copy
from collections import defaultdict
from typing import Any, Optional
from uuid import uuid4

import structlog

from finledger.models.audit import AuditEvent
from finledger.services.storage.interface import (
    USER_FIELD,
    AuditStorageInterface,
    Document,
    DocumentStore,
    Listener,
    SnapshotEvent,
    Subscription,
    SubscriptionErrorEvent,
    WriteBatch,
    WriteRejectedError,
    apply_increment,
)


logger = structlog.get_logger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed document store: {collection: {doc_id: fields}}."""

    def __init__(self):
        self._collections: dict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._listeners: dict[int, tuple[str, str, Listener]] = {}
        self._next_listener = 0
        self._pending_failures: dict[str, str] = {}
        self._denied_users: dict[str, str] = {}

    def new_id(self, collection: str) -> str:
        return uuid4().hex

    def seed(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """Insert a document directly, bypassing batches and listeners."""
        self._collections[collection][doc_id] = copy.deepcopy(data)

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read one document regardless of owner."""
        data = self._collections[collection].get(doc_id)
        if data is None:
            return None
        return Document(id=doc_id, data=copy.deepcopy(data))

    def reject_next_commit(self, collection: str, reason: str = "permission denied") -> None:
        """Make the next commit that touches `collection` fail."""
        self._pending_failures[collection] = reason

    def deny_reads(self, user_id: str, reason: str = "permission denied") -> None:
        """Make subscriptions for a user deliver errors instead of snapshots."""
        self._denied_users[user_id] = reason

    def _snapshot(self, collection: str, user_id: str) -> list[Document]:
        return [
            Document(id=doc_id, data=copy.deepcopy(data))
            for doc_id, data in self._collections[collection].items()
            if data.get(USER_FIELD) == user_id
        ]

    async def query(self, collection: str, user_id: str) -> list[Document]:
        return self._snapshot(collection, user_id)

    def subscribe(
        self,
        collection: str,
        user_id: str,
        listener: Listener,
    ) -> Subscription:
        key = self._next_listener
        self._next_listener += 1
        self._listeners[key] = (collection, user_id, listener)
        self._deliver(collection, user_id, listener)
        return Subscription(collection, lambda: self._listeners.pop(key, None))

    def _deliver(self, collection: str, user_id: str, listener: Listener) -> None:
        if user_id in self._denied_users:
            event = SubscriptionErrorEvent(
                collection=collection,
                error_message=self._denied_users[user_id],
            )
        else:
            event = SnapshotEvent(
                collection=collection,
                documents=tuple(self._snapshot(collection, user_id)),
            )
        try:
            listener(event)
        except Exception as e:
            # The commit already happened; a broken listener must not undo it
            logger.error("listener_failed", collection=collection, error=str(e))

    async def commit(self, batch: WriteBatch) -> None:
        if not len(batch):
            return

        for collection in batch.collections:
            reason = self._pending_failures.pop(collection, None)
            if reason is not None:
                raise WriteRejectedError(
                    f"Commit rejected on {collection}: {reason}",
                    operation="commit",
                )

        working = {
            name: copy.deepcopy(self._collections[name])
            for name in batch.collections
        }

        for op in batch.operations:
            docs = working[op.collection]
            if op.kind == "set":
                docs[op.doc_id] = copy.deepcopy(op.fields)
            elif op.kind == "delete":
                docs.pop(op.doc_id, None)
            else:
                if op.doc_id not in docs:
                    raise WriteRejectedError(
                        f"No document {op.collection}/{op.doc_id} to {op.kind}",
                        operation=op.kind,
                    )
                if op.kind == "update":
                    docs[op.doc_id].update(copy.deepcopy(op.fields))
                else:
                    for field, delta in op.fields.items():
                        docs[op.doc_id][field] = apply_increment(
                            docs[op.doc_id].get(field), delta
                        )

        # Every operation succeeded: swap the new state in
        for name, docs in working.items():
            self._collections[name] = docs

        for collection, user_id, listener in list(self._listeners.values()):
            if collection in batch.collections:
                self._deliver(collection, user_id, listener)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_user(self, user_id: str, limit: int = 100) -> list[AuditEvent]:
        events = [e for e in self._events if e.user_id == user_id]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
