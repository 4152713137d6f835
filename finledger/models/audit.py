"""
Audit Models for the Ledger

Every ledger mutation and every collaborator failure is logged for
audit purposes. This provides:
1. Traceability of balance changes back to the transaction that caused them
2. Debugging information when a write is rejected
3. A record of session lifecycle per user

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Session lifecycle
    SESSION_OPENED = "session_opened"
    SESSION_CLOSED = "session_closed"

    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Transactions
    TRANSACTION_ADDED = "transaction_added"
    TRANSACTION_DELETED = "transaction_deleted"

    # Holdings
    HOLDING_ADDED = "holding_added"
    HOLDING_UPDATED = "holding_updated"
    HOLDING_DELETED = "holding_deleted"
    PRICES_REFRESHED = "prices_refreshed"

    # Advice
    ADVICE_REQUESTED = "advice_requested"

    # Failures
    WRITE_REJECTED = "write_rejected"
    SUBSCRIPTION_ERROR = "subscription_error"
    CONFIGURATION_INVALID = "configuration_invalid"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Entity ids are the store's opaque document ids.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - who and what is this about?
    user_id: Optional[str] = Field(
        default=None,
        description="Signed-in user the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'account', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Store id of the entity this event relates to"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None
    is_user_action: bool = False

    def to_log_dict(self) -> dict:
        """Convert to a dictionary suitable for structured logging."""
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row for the audit worksheet.

        Columns: [event_id, timestamp, event_type, severity, user_id,
        entity_type, entity_id, description, details_json,
        error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.user_id or "",
            self.entity_type or "",
            self.entity_id or "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_added(user_id, tx, adjusted=True)
        event = AuditEventBuilder.write_rejected(user_id, "add_transaction", str(exc))
    """

    @staticmethod
    def session_opened(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_OPENED,
            user_id=user_id,
            entity_type="session",
            description="Ledger session opened",
            is_user_action=True,
        )

    @staticmethod
    def session_closed(user_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SESSION_CLOSED,
            user_id=user_id,
            entity_type="session",
            description="Ledger session closed",
        )

    @staticmethod
    def account_created(user_id: str, account_id: str, name: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_CREATED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account created: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def account_updated(user_id: str, account_id: str, fields: list[str]) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description=f"Account updated: {', '.join(fields)}",
            details={"fields": fields},
            is_user_action=True,
        )

    @staticmethod
    def account_deleted(user_id: str, account_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_DELETED,
            user_id=user_id,
            entity_type="account",
            entity_id=account_id,
            description="Account deleted (transactions kept)",
            is_user_action=True,
        )

    @staticmethod
    def transaction_added(
        user_id: str,
        transaction_id: str,
        account_id: str,
        transaction_type: str,
        amount: Decimal,
        balance_delta: Optional[Decimal],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_ADDED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description=f"{transaction_type} of {amount} recorded",
            details={
                "account_id": account_id,
                "type": transaction_type,
                "amount": str(amount),
                "balance_delta": str(balance_delta) if balance_delta is not None else None,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_deleted(
        user_id: str,
        transaction_id: str,
        account_id: str,
        balance_delta: Optional[Decimal],
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            description="Transaction deleted",
            details={
                "account_id": account_id,
                "balance_delta": str(balance_delta) if balance_delta is not None else None,
            },
            is_user_action=True,
        )

    @staticmethod
    def holding_changed(
        event_type: AuditEventType,
        user_id: str,
        holding_id: str,
        symbol: str,
    ) -> AuditEvent:
        verb = event_type.value.split("_")[-1]
        return AuditEvent(
            event_type=event_type,
            user_id=user_id,
            entity_type="holding",
            entity_id=holding_id,
            description=f"Holding {verb}: {symbol}",
            details={"symbol": symbol},
            is_user_action=True,
        )

    @staticmethod
    def prices_refreshed(user_id: str, updated: int, requested: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PRICES_REFRESHED,
            user_id=user_id,
            entity_type="holding",
            description=f"Prices refreshed for {updated} of {requested} holdings",
            details={"updated": updated, "requested": requested},
            is_user_action=True,
        )

    @staticmethod
    def advice_requested(user_id: str, summary_length: int) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ADVICE_REQUESTED,
            user_id=user_id,
            description="Financial advice requested",
            details={"summary_length": summary_length},
            is_user_action=True,
        )

    @staticmethod
    def write_rejected(
        user_id: Optional[str],
        operation: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.WRITE_REJECTED,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"Write rejected: {operation}",
            details={"operation": operation},
            error_message=error_message,
        )

    @staticmethod
    def subscription_error(
        user_id: Optional[str],
        collection: str,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SUBSCRIPTION_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"Subscription error on {collection}",
            details={"collection": collection},
            error_message=error_message,
        )

    @staticmethod
    def configuration_invalid(error_message: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONFIGURATION_INVALID,
            severity=AuditSeverity.CRITICAL,
            description="Store configuration is invalid",
            error_message=error_message,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            user_id=user_id,
            description=f"External service error: {service}",
            error_message=error_message,
            details={"service": service},
        )
