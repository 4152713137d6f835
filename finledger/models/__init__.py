"""
Data Models Package

This package contains all Pydantic models used by the ledger.
All data flowing between the ledger, the store and the AI collaborators
must conform to these schemas.
"""

from finledger.models.ledger import (
    Account,
    AccountDraft,
    AccountType,
    AccountUpdate,
    ChangeAccountType,
    Collection,
    HoldingReturn,
    HoldingUpdate,
    MonthlyTrend,
    PeriodTotals,
    RenameAccount,
    SetAccountBalance,
    SetAccountColor,
    SetAccountCurrency,
    SetHoldingAverageCost,
    SetHoldingPrice,
    SetHoldingQuantity,
    SetHoldingSector,
    StockHolding,
    StockHoldingDraft,
    StockPriceUpdate,
    Transaction,
    TransactionDraft,
    TransactionType,
    User,
    ValidationIssue,
)
from finledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountDraft",
    "AccountType",
    "AccountUpdate",
    "ChangeAccountType",
    "Collection",
    "HoldingReturn",
    "HoldingUpdate",
    "MonthlyTrend",
    "PeriodTotals",
    "RenameAccount",
    "SetAccountBalance",
    "SetAccountColor",
    "SetAccountCurrency",
    "SetHoldingAverageCost",
    "SetHoldingPrice",
    "SetHoldingQuantity",
    "SetHoldingSector",
    "StockHolding",
    "StockHoldingDraft",
    "StockPriceUpdate",
    "Transaction",
    "TransactionDraft",
    "TransactionType",
    "User",
    "ValidationIssue",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
