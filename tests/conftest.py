"""
Shared fixtures for finledger tests.

Ledger tests run against the in-memory document store, Sheets store
tests against a fake spreadsheet. No network, no Google credentials,
no Gemini key.
"""

import asyncio
import json
import time
from decimal import Decimal
from typing import Optional

import pytest

from finledger.audit import AuditLogger
from finledger.config import GoogleSheetsSettings, LedgerSettings
from finledger.ledger import SessionManager
from finledger.models.ledger import Collection, User
from finledger.services.auth import LocalAuthProvider
from finledger.services.storage import (
    GoogleSheetsDocumentStore,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
)
from finledger.services.storage.google_sheets import DOCUMENT_COLUMNS


ALICE = User(id="alice", name="Alice", email="alice@example.com")
BOB = User(id="bob", name="Bob", email="bob@example.com")

ACCOUNT_A = "acct-a"


def account_doc(user_id: str, name: str, balance: str, currency: str = "TWD") -> dict:
    return {
        "user_id": user_id,
        "name": name,
        "type": "Checking",
        "balance": balance,
        "currency": currency,
        "color": "bg-blue-500",
    }


def transaction_doc(
    user_id: str,
    account_id: str,
    type_: str,
    amount: str,
    day: str,
    category: str = "Food",
    note=None,
) -> dict:
    return {
        "user_id": user_id,
        "account_id": account_id,
        "type": type_,
        "amount": amount,
        "category": category,
        "date": day,
        "note": note,
    }


@pytest.fixture
def ledger_settings():
    return LedgerSettings(
        local_currency="TWD",
        fx_rates={"USD": Decimal("32")},
        recent_transactions_limit=5,
    )


@pytest.fixture
def store():
    store = InMemoryDocumentStore()
    store.seed(
        Collection.ACCOUNTS.value,
        ACCOUNT_A,
        account_doc(ALICE.id, "Main", "100000"),
    )
    return store


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def auth():
    return LocalAuthProvider()


@pytest.fixture
def sessions(auth, store, audit_logger, ledger_settings):
    manager = SessionManager(
        auth,
        store,
        audit_logger=audit_logger,
        settings=ledger_settings,
    )
    manager.start()
    yield manager
    manager.stop()


@pytest.fixture
def ledger(auth, sessions):
    """Alice's ledger, already holding the first snapshots."""
    auth.sign_in(ALICE)
    return sessions.ledger


def balance_of(store: InMemoryDocumentStore, account_id: str = ACCOUNT_A) -> Decimal:
    """Balance as persisted in the store."""
    return Decimal(store.get(Collection.ACCOUNTS.value, account_id).data["balance"])


# =============================================================================
# FAKE GOOGLE SHEETS
# =============================================================================

def _cell_values(row_data: dict) -> list[str]:
    return [cell["userEnteredValue"]["stringValue"] for cell in row_data["values"]]


class FakeWorksheet:
    def __init__(self, spreadsheet, sheet_id: int):
        self._spreadsheet = spreadsheet
        self.id = sheet_id
        self.rows = [list(DOCUMENT_COLUMNS)]

    def get_all_values(self):
        rows = [list(row) for row in self.rows]
        # Widen the read/write window so overlapping commits would interleave
        time.sleep(self._spreadsheet.read_delay)
        return rows


class FakeSpreadsheet:
    """Applies batchUpdate requests to in-memory worksheets."""

    def __init__(self):
        self.sheets: dict[str, FakeWorksheet] = {}
        self.read_delay = 0.0
        self.batch_updates = 0

    def worksheet(self, title: str) -> FakeWorksheet:
        if title not in self.sheets:
            self.sheets[title] = FakeWorksheet(self, len(self.sheets) + 1)
        return self.sheets[title]

    def batch_update(self, body: dict) -> None:
        self.batch_updates += 1
        by_id = {sheet.id: sheet for sheet in self.sheets.values()}
        for request in body["requests"]:
            if "updateCells" in request:
                update = request["updateCells"]
                sheet = by_id[update["start"]["sheetId"]]
                sheet.rows[update["start"]["rowIndex"]] = _cell_values(update["rows"][0])
            elif "appendCells" in request:
                append = request["appendCells"]
                by_id[append["sheetId"]].rows.append(_cell_values(append["rows"][0]))
            else:
                span = request["deleteDimension"]["range"]
                del by_id[span["sheetId"]].rows[span["startIndex"]:span["endIndex"]]


class FakeSheetsClient:
    """Stands in for GoogleSheetsClient; `error` makes every access fail."""

    def __init__(self, poll_interval_seconds: float = 0.01):
        self.settings = GoogleSheetsSettings(
            credentials_path="credentials.json",
            spreadsheet_id="sheet-under-test",
            poll_interval_seconds=poll_interval_seconds,
        )
        self.spreadsheet = FakeSpreadsheet()
        self.error: Optional[Exception] = None

    def get_spreadsheet(self) -> FakeSpreadsheet:
        if self.error is not None:
            raise self.error
        return self.spreadsheet

    def get_collection_sheet(self, collection: str) -> FakeWorksheet:
        return self.get_spreadsheet().worksheet(self.settings.sheet_name_for(collection))

    def documents(self, collection: str) -> dict[str, dict]:
        """Stored documents of a collection, by id."""
        sheet = self.spreadsheet.worksheet(self.settings.sheet_name_for(collection))
        return {row[0]: json.loads(row[3]) for row in sheet.rows[1:] if row and row[0]}


@pytest.fixture
def sheets_client():
    return FakeSheetsClient()


@pytest.fixture
def sheets_store(sheets_client):
    return GoogleSheetsDocumentStore(sheets_client)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() holds (poll tasks run in between)."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)
