"""Services package."""

from finledger.services.auth import (
    AuthProvider,
    LocalAuthProvider,
)
from finledger.services.storage import (
    AuditStorageInterface,
    DocumentStore,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
    StoreConnectionError,
    WriteRejectedError,
)

__all__ = [
    # Auth
    "AuthProvider",
    "LocalAuthProvider",
    # Storage services
    "AuditStorageInterface",
    "DocumentStore",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    "NotFoundError",
    "StorageError",
    "StoreConnectionError",
    "WriteRejectedError",
]
