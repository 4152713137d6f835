"""Ledger package: state, derived views, operations and sessions."""

from finledger.ledger.context import NoActiveSessionError, SessionContext
from finledger.ledger.ledger import Ledger, balance_delta
from finledger.ledger.session import SessionManager
from finledger.ledger.state import LedgerState, reduce_event, replay

__all__ = [
    "Ledger",
    "LedgerState",
    "NoActiveSessionError",
    "SessionContext",
    "SessionManager",
    "balance_delta",
    "reduce_event",
    "replay",
]
