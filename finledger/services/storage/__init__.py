"""
Storage Services Package

Provides the abstract document store contract and its implementations:
an in-memory store for tests and demos, and Google Sheets as the hosted
backend.
"""

from finledger.services.storage.interface import (
    AuditStorageInterface,
    Document,
    DocumentStore,
    Listener,
    NotFoundError,
    SnapshotEvent,
    StorageError,
    StoreConnectionError,
    StoreEvent,
    Subscription,
    SubscriptionErrorEvent,
    WriteBatch,
    WriteRejectedError,
)
from finledger.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDocumentStore,
)
from finledger.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "Document",
    "DocumentStore",
    "Listener",
    "SnapshotEvent",
    "StoreEvent",
    "Subscription",
    "SubscriptionErrorEvent",
    "WriteBatch",
    # Exceptions
    "NotFoundError",
    "StorageError",
    "StoreConnectionError",
    "WriteRejectedError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
]
