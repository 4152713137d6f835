"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is used as the hosted store because:
1. Users can view their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. spreadsheets.batchUpdate is all-or-nothing, which gives us atomic
   multi-document commits

TRADEOFFS:
- No push notifications (subscriptions poll the worksheet)
- Limited query capabilities (we filter by user in Python)

Each collection lives in its own worksheet, one document per row.
Document fields are JSON-serialized into a single column.
"""

import asyncio
import json
import threading
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from finledger.config import ConfigurationInvalidError, GoogleSheetsSettings
from finledger.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finledger.services.storage.interface import (
    USER_FIELD,
    AuditStorageInterface,
    Document,
    DocumentStore,
    Listener,
    SnapshotEvent,
    StorageError,
    StoreConnectionError,
    Subscription,
    SubscriptionErrorEvent,
    WriteBatch,
    WriteRejectedError,
    apply_increment,
)


logger = structlog.get_logger(__name__)


# Column layout for every collection worksheet
DOCUMENT_COLUMNS = [
    "id",
    "user_id",
    "updated_at",
    "data_json",
]

# Column layout for the audit worksheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "user_id",
    "entity_type",
    "entity_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self, settings: GoogleSheetsSettings):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings

    @property
    def settings(self) -> GoogleSheetsSettings:
        return self._settings

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(StoreConnectionError),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConfigurationInvalidError(
                    "google_sheets",
                    f"credentials file not found: {self._settings.credentials_path}",
                )
            except ValueError as e:
                raise ConfigurationInvalidError(
                    "google_sheets", f"malformed credentials: {e}"
                )
            except Exception as e:
                raise StoreConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConfigurationInvalidError(
                    "google_sheets",
                    f"spreadsheet not found: {self._settings.spreadsheet_id}",
                )
        return self._spreadsheet

    def get_worksheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get or create a worksheet with the given header row."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_collection_sheet(self, collection: str) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.sheet_name_for(collection), DOCUMENT_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        return self.get_worksheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


# =============================================================================
# ROW CONVERSION
# =============================================================================

def document_to_row(doc_id: str, data: dict[str, Any]) -> list[str]:
    """Convert a document to a worksheet row."""
    return [
        doc_id,
        str(data.get(USER_FIELD, "")),
        datetime.now(timezone.utc).isoformat(),
        json.dumps(data, ensure_ascii=False, sort_keys=True),
    ]


def row_to_document(row: list[str]) -> Optional[Document]:
    """Convert a worksheet row to a Document, or None for blank rows."""
    if not row or not row[0]:
        return None
    data_json = row[3] if len(row) > 3 else ""
    return Document(id=row[0], data=json.loads(data_json) if data_json else {})


def _cell_row(values: list[str]) -> dict:
    return {
        "values": [
            {"userEnteredValue": {"stringValue": value}} for value in values
        ]
    }


def build_batch_requests(
    batch: WriteBatch,
    sheet_ids: dict[str, int],
    current_rows: dict[str, list[list[str]]],
) -> list[dict]:
    """
    Translate a WriteBatch into spreadsheets.batchUpdate requests.

    current_rows holds each affected worksheet's values including the
    header row. Requests are ordered so that row indices stay valid:
    in-place updates first, then appends, then row deletions from the
    bottom up.

    Raises:
        WriteRejectedError: If an update/increment targets a missing document
    """
    # Resolve the final content of every touched document first
    positions: dict[tuple[str, str], int] = {}
    state: dict[tuple[str, str], Optional[dict[str, Any]]] = {}
    for collection in batch.collections:
        for index, row in enumerate(current_rows[collection]):
            if index == 0:
                continue
            doc = row_to_document(row)
            if doc is not None:
                positions[(collection, doc.id)] = index
                state[(collection, doc.id)] = doc.data

    touched: list[tuple[str, str]] = []
    for op in batch.operations:
        key = (op.collection, op.doc_id)
        if key not in touched:
            touched.append(key)
        if op.kind == "set":
            state[key] = dict(op.fields)
        elif op.kind == "delete":
            state[key] = None
        else:
            if state.get(key) is None:
                raise WriteRejectedError(
                    f"No document {op.collection}/{op.doc_id} to {op.kind}",
                    operation=op.kind,
                )
            data = dict(state[key])
            if op.kind == "update":
                data.update(op.fields)
            else:
                for field, delta in op.fields.items():
                    data[field] = apply_increment(data.get(field), delta)
            state[key] = data

    updates, appends, deletes = [], [], []
    for key in touched:
        collection, doc_id = key
        data = state[key]
        sheet_id = sheet_ids[collection]
        row_index = positions.get(key)
        if data is None:
            if row_index is not None:
                deletes.append((sheet_id, row_index))
        elif row_index is not None:
            updates.append({
                "updateCells": {
                    "start": {"sheetId": sheet_id, "rowIndex": row_index, "columnIndex": 0},
                    "rows": [_cell_row(document_to_row(doc_id, data))],
                    "fields": "userEnteredValue",
                }
            })
        else:
            appends.append({
                "appendCells": {
                    "sheetId": sheet_id,
                    "rows": [_cell_row(document_to_row(doc_id, data))],
                    "fields": "userEnteredValue",
                }
            })

    requests = updates + appends
    for sheet_id, row_index in sorted(deletes, key=lambda d: d[1], reverse=True):
        requests.append({
            "deleteDimension": {
                "range": {
                    "sheetId": sheet_id,
                    "dimension": "ROWS",
                    "startIndex": row_index,
                    "endIndex": row_index + 1,
                }
            }
        })
    return requests


# =============================================================================
# DOCUMENT STORE
# =============================================================================

class _Watcher:
    """One subscription: its listener and what it was last sent."""

    def __init__(self, collection: str, user_id: str, listener: Listener):
        self.collection = collection
        self.user_id = user_id
        self.listener = listener
        self.active = True
        # Held across read + deliver so a slow poll never lands after a fresher read
        self.lock = asyncio.Lock()
        self._last: Optional[tuple[Document, ...]] = None
        self._last_error: Optional[str] = None

    def snapshot(self, documents: tuple[Document, ...]) -> None:
        if documents == self._last and self._last_error is None:
            return
        self._last, self._last_error = documents, None
        self._emit(SnapshotEvent(collection=self.collection, documents=documents))

    def error(self, message: str, configuration_error: bool = False) -> None:
        if message == self._last_error:
            return
        self._last_error = message
        self._emit(SubscriptionErrorEvent(
            collection=self.collection,
            error_message=message,
            configuration_error=configuration_error,
        ))

    def _emit(self, event) -> None:
        if not self.active:
            return
        try:
            self.listener(event)
        except Exception as e:
            logger.error("listener_failed", collection=self.collection, error=str(e))


class GoogleSheetsDocumentStore(DocumentStore):
    """
    Google Sheets implementation of the document store.

    Commits are sent as one spreadsheets.batchUpdate call so they are
    applied all-or-nothing. Commits from this process are serialized,
    so increments are computed from the rows they overwrite. Writers in
    other processes sharing the spreadsheet are NOT serialized.

    Subscriptions poll their worksheet and only deliver when the user's
    documents changed. A commit re-reads every subscribed collection it
    touched before returning, so callers see their own writes.
    """

    def __init__(self, client: GoogleSheetsClient):
        self._client = client
        self._settings = client.settings
        self._commit_lock = threading.Lock()
        self._watchers: dict[int, _Watcher] = {}
        self._next_watcher = 0

    def new_id(self, collection: str) -> str:
        return str(uuid4())

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((gspread.exceptions.APIError, StoreConnectionError)),
        reraise=True,
    )
    def _read_rows(self, collection: str) -> list[list[str]]:
        return self._client.get_collection_sheet(collection).get_all_values()

    def _read_documents(self, collection: str, user_id: str) -> list[Document]:
        documents = []
        for row in self._read_rows(collection)[1:]:  # Skip header
            try:
                doc = row_to_document(row)
            except ValueError:
                logger.warning("malformed_row_skipped", collection=collection, row_id=row[0])
                continue
            if doc is not None and doc.data.get(USER_FIELD) == user_id:
                documents.append(doc)
        return documents

    async def query(self, collection: str, user_id: str) -> list[Document]:
        try:
            return await asyncio.to_thread(self._read_documents, collection, user_id)
        except ConfigurationInvalidError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {collection}: {e}")

    def subscribe(
        self,
        collection: str,
        user_id: str,
        listener: Listener,
    ) -> Subscription:
        """
        Start polling a collection.

        Must be called while an event loop is running.
        """
        key = self._next_watcher
        self._next_watcher += 1
        watcher = _Watcher(collection, user_id, listener)
        self._watchers[key] = watcher
        task = asyncio.get_running_loop().create_task(self._poll(watcher))

        def close() -> None:
            watcher.active = False
            self._watchers.pop(key, None)
            task.cancel()

        return Subscription(collection, close)

    async def _refresh(self, watcher: _Watcher) -> None:
        async with watcher.lock:
            try:
                documents = tuple(await asyncio.to_thread(
                    self._read_documents, watcher.collection, watcher.user_id
                ))
            except ConfigurationInvalidError as e:
                watcher.error(e.reason, configuration_error=True)
            except Exception as e:
                watcher.error(str(e))
            else:
                watcher.snapshot(documents)

    async def _poll(self, watcher: _Watcher) -> None:
        while watcher.active:
            await self._refresh(watcher)
            await asyncio.sleep(self._settings.poll_interval_seconds)

    def _commit_sync(self, batch: WriteBatch) -> None:
        # Read, build and write under one lock: the requests carry row
        # indices and computed increments that are only valid for these rows
        with self._commit_lock:
            spreadsheet = self._client.get_spreadsheet()
            sheet_ids: dict[str, int] = {}
            current_rows: dict[str, list[list[str]]] = {}
            for collection in batch.collections:
                sheet = self._client.get_collection_sheet(collection)
                sheet_ids[collection] = sheet.id
                current_rows[collection] = sheet.get_all_values()

            requests = build_batch_requests(batch, sheet_ids, current_rows)
            if requests:
                spreadsheet.batch_update({"requests": requests})

    async def commit(self, batch: WriteBatch) -> None:
        if not len(batch):
            return
        try:
            await asyncio.to_thread(self._commit_sync, batch)
        except (WriteRejectedError, ConfigurationInvalidError):
            raise
        except Exception as e:
            raise WriteRejectedError(f"Google Sheets rejected the batch: {e}", operation="commit")

        for watcher in list(self._watchers.values()):
            if watcher.collection in batch.collections:
                await self._refresh(watcher)


# =============================================================================
# AUDIT STORAGE
# =============================================================================

class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: GoogleSheetsClient):
        self._client = client

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        def safe_get(index: int, default: str = "") -> str:
            try:
                return row[index] if row[index] else default
            except IndexError:
                return default

        return AuditEvent(
            event_id=UUID(safe_get(0)),
            timestamp=datetime.fromisoformat(safe_get(1)),
            event_type=AuditEventType(safe_get(2)),
            severity=AuditSeverity(safe_get(3)),
            user_id=safe_get(4) or None,
            entity_type=safe_get(5) or None,
            entity_id=safe_get(6) or None,
            description=safe_get(7),
            details=json.loads(safe_get(8)) if safe_get(8) else {},
            error_message=safe_get(9) or None,
            is_user_action=safe_get(10).lower() == "true",
        )

    def _read_events(self) -> list[AuditEvent]:
        events = []
        for row in self._client.get_audit_sheet().get_all_values()[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(StorageError),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except gspread.exceptions.APIError as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_user(self, user_id: str, limit: int = 100) -> list[AuditEvent]:
        try:
            events = [e for e in self._read_events() if e.user_id == user_id]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        try:
            events = [
                e for e in self._read_events()
                if e.entity_type == entity_type and e.entity_id == entity_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        try:
            events = self._read_events()
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
