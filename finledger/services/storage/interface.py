"""
Abstract Storage Interface

DESIGN DECISION: The ledger talks to a generic document store through
this interface. This allows us to:
1. Swap Google Sheets for a hosted document database later
2. Use in-memory storage for testing
3. Keep ledger logic decoupled from storage implementation

The contract is the minimum the ledger needs:
- per-collection queries filtered by owning user
- live subscriptions delivering full-collection snapshots
- atomic multi-document batches
- per-document create / update / delete
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from finledger.models.audit import AuditEvent


USER_FIELD = "user_id"


# =============================================================================
# DOCUMENTS AND EVENTS
# =============================================================================

class Document(BaseModel):
    """A stored document: opaque id plus JSON-compatible fields."""
    model_config = ConfigDict(frozen=True)

    id: str
    data: dict[str, Any] = Field(default_factory=dict)

    def to_record(self) -> dict[str, Any]:
        """Fields merged with the id, ready for model validation."""
        return {**self.data, "id": self.id}


class SnapshotEvent(BaseModel):
    """Full current content of one collection for one user."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["snapshot"] = "snapshot"
    collection: str
    documents: tuple[Document, ...] = ()


class SubscriptionErrorEvent(BaseModel):
    """
    The subscription for a collection could not deliver a snapshot.

    configuration_error marks failures only a settings change can fix
    (bad credentials, unknown spreadsheet) as opposed to transient ones.
    """
    model_config = ConfigDict(frozen=True)

    kind: Literal["error"] = "error"
    collection: str
    error_message: str
    configuration_error: bool = False


StoreEvent = Union[SnapshotEvent, SubscriptionErrorEvent]
Listener = Callable[[StoreEvent], None]


class Subscription:
    """Handle for a live subscription. Closing it is idempotent."""

    def __init__(self, collection: str, on_close: Callable[[], None]):
        self.collection = collection
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close()


# =============================================================================
# BATCHED WRITES
# =============================================================================

class WriteOperation(BaseModel):
    """One operation inside a WriteBatch."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["set", "update", "increment", "delete"]
    collection: str
    doc_id: str
    fields: dict[str, Any] = Field(default_factory=dict)


class WriteBatch:
    """
    An ordered list of document operations committed as one unit.

    Nothing is written until DocumentStore.commit() is called, and then
    either every operation is applied or none is.
    """

    def __init__(self):
        self._operations: list[WriteOperation] = []

    def set(self, collection: str, doc_id: str, data: dict[str, Any]) -> "WriteBatch":
        """Create or overwrite a document."""
        self._operations.append(
            WriteOperation(kind="set", collection=collection, doc_id=doc_id, fields=data)
        )
        return self

    def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> "WriteBatch":
        """Patch fields of an existing document."""
        self._operations.append(
            WriteOperation(kind="update", collection=collection, doc_id=doc_id, fields=fields)
        )
        return self

    def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        delta: Decimal,
    ) -> "WriteBatch":
        """Add delta to a numeric field of an existing document at commit time."""
        self._operations.append(
            WriteOperation(
                kind="increment",
                collection=collection,
                doc_id=doc_id,
                fields={field: str(delta)},
            )
        )
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        """Remove a document. Deleting a missing document is not an error."""
        self._operations.append(
            WriteOperation(kind="delete", collection=collection, doc_id=doc_id)
        )
        return self

    @property
    def operations(self) -> tuple[WriteOperation, ...]:
        return tuple(self._operations)

    @property
    def collections(self) -> frozenset[str]:
        return frozenset(op.collection for op in self._operations)

    def __len__(self) -> int:
        return len(self._operations)


def apply_increment(current: Any, delta: str) -> str:
    """Add a decimal delta to a stored value, returning the stored form."""
    base = Decimal(str(current)) if current not in (None, "") else Decimal("0")
    return str(base + Decimal(delta))


# =============================================================================
# INTERFACES
# =============================================================================

class DocumentStore(ABC):
    """
    Abstract interface for the ledger's document store.

    Any storage implementation (Google Sheets, a hosted document
    database, in-memory) must implement these methods.
    """

    @abstractmethod
    def new_id(self, collection: str) -> str:
        """Allocate a fresh document id for a collection."""
        pass

    @abstractmethod
    async def query(self, collection: str, user_id: str) -> list[Document]:
        """
        Return every document in a collection owned by a user.

        Raises:
            StorageError: If the collection cannot be read
        """
        pass

    @abstractmethod
    def subscribe(
        self,
        collection: str,
        user_id: str,
        listener: Listener,
    ) -> Subscription:
        """
        Start a live subscription on a user's documents.

        The listener receives a SnapshotEvent with the full filtered
        collection once immediately and again after every change, or a
        SubscriptionErrorEvent when the collection cannot be read.
        """
        pass

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply every operation of the batch atomically.

        Raises:
            WriteRejectedError: If any operation fails; nothing is applied
        """
        pass

    def batch(self) -> WriteBatch:
        """Start a new write batch."""
        return WriteBatch()

    async def create(self, collection: str, data: dict[str, Any]) -> str:
        """Create a single document and return its store-assigned id."""
        doc_id = self.new_id(collection)
        await self.commit(self.batch().set(collection, doc_id, data))
        return doc_id

    async def update(self, collection: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Patch a single existing document."""
        await self.commit(self.batch().update(collection, doc_id, fields))

    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a single document."""
        await self.commit(self.batch().delete(collection, doc_id))


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_user(self, user_id: str, limit: int = 100) -> list[AuditEvent]:
        """Events for one user, newest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Events for one entity in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """The most recent audit events, newest first."""
        pass


# =============================================================================
# EXCEPTIONS
# =============================================================================

class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class WriteRejectedError(StorageError):
    """The store refused to commit a mutation. Nothing was written."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(message)


class StoreConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
