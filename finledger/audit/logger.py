"""
Audit Logger

DESIGN DECISION: Every ledger mutation and collaborator failure is logged.
This provides:
1. Traceability of each balance change back to its transaction
2. Debugging capability when the store rejects a write
3. A per-user history of session lifecycle

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the ledger if logging fails)
"""

from decimal import Decimal
from typing import Optional

import structlog

from finledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from finledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Audit persistence never fails the ledger operation
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_session_opened(self, user_id: str) -> None:
        await self.log(AuditEventBuilder.session_opened(user_id))

    async def log_session_closed(self, user_id: str) -> None:
        await self.log(AuditEventBuilder.session_closed(user_id))

    async def log_account_created(self, user_id: str, account_id: str, name: str) -> None:
        await self.log(AuditEventBuilder.account_created(user_id, account_id, name))

    async def log_account_updated(
        self,
        user_id: str,
        account_id: str,
        fields: list[str],
    ) -> None:
        await self.log(AuditEventBuilder.account_updated(user_id, account_id, fields))

    async def log_account_deleted(self, user_id: str, account_id: str) -> None:
        await self.log(AuditEventBuilder.account_deleted(user_id, account_id))

    async def log_transaction_added(
        self,
        user_id: str,
        transaction_id: str,
        account_id: str,
        transaction_type: str,
        amount: Decimal,
        balance_delta: Optional[Decimal],
    ) -> None:
        """Log a recorded transaction and the balance change it carried, if any."""
        event = AuditEventBuilder.transaction_added(
            user_id=user_id,
            transaction_id=transaction_id,
            account_id=account_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_delta=balance_delta,
        )
        await self.log(event)

    async def log_transaction_deleted(
        self,
        user_id: str,
        transaction_id: str,
        account_id: str,
        balance_delta: Optional[Decimal],
    ) -> None:
        event = AuditEventBuilder.transaction_deleted(
            user_id=user_id,
            transaction_id=transaction_id,
            account_id=account_id,
            balance_delta=balance_delta,
        )
        await self.log(event)

    async def log_holding_changed(
        self,
        event_type: AuditEventType,
        user_id: str,
        holding_id: str,
        symbol: str,
    ) -> None:
        await self.log(
            AuditEventBuilder.holding_changed(event_type, user_id, holding_id, symbol)
        )

    async def log_prices_refreshed(self, user_id: str, updated: int, requested: int) -> None:
        await self.log(AuditEventBuilder.prices_refreshed(user_id, updated, requested))

    async def log_advice_requested(self, user_id: str, summary_length: int) -> None:
        await self.log(AuditEventBuilder.advice_requested(user_id, summary_length))

    async def log_write_rejected(
        self,
        user_id: Optional[str],
        operation: str,
        error_message: str,
    ) -> None:
        """Log a mutation the store refused."""
        await self.log(AuditEventBuilder.write_rejected(user_id, operation, error_message))

    async def log_subscription_error(
        self,
        user_id: Optional[str],
        collection: str,
        error_message: str,
    ) -> None:
        await self.log(
            AuditEventBuilder.subscription_error(user_id, collection, error_message)
        )

    async def log_configuration_invalid(self, error_message: str) -> None:
        await self.log(AuditEventBuilder.configuration_invalid(error_message))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        user_id: Optional[str] = None,
    ) -> None:
        """Log external service error."""
        event = AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            user_id=user_id,
        )
        await self.log(event)
