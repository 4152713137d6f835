"""
Session Management

Ties the ledger's lifetime to the auth collaborator:

- SIGN-IN: tear down any previous session, then build a fresh
  SessionContext and Ledger and subscribe to the user's accounts,
  transactions and holdings.
- SIGN-OUT: close every subscription and discard the ledger.

No state survives from one user to the next.
"""

import asyncio
from typing import Callable, Optional

import structlog

from finledger.audit import AuditLogger
from finledger.config import ConfigurationInvalidError, LedgerSettings
from finledger.ledger.context import NoActiveSessionError, SessionContext
from finledger.ledger.ledger import Ledger
from finledger.models.ledger import Collection, User
from finledger.services.auth import AuthProvider
from finledger.services.storage.interface import (
    DocumentStore,
    StoreEvent,
    SubscriptionErrorEvent,
)
from finledger.validation import LedgerValidator


logger = structlog.get_logger(__name__)

SUBSCRIBED_COLLECTIONS = (
    Collection.ACCOUNTS.value,
    Collection.TRANSACTIONS.value,
    Collection.HOLDINGS.value,
)


class SessionManager:
    """
    Owns the current SessionContext and Ledger.

    When the store or auth configuration is invalid the manager never
    subscribes, and every access to `ledger` raises
    ConfigurationInvalidError. A store that reports a configuration
    problem after start-up (revoked credentials, deleted spreadsheet)
    ends the session and puts the manager in the same state.
    """

    def __init__(
        self,
        auth: AuthProvider,
        store: Optional[DocumentStore],
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[LedgerSettings] = None,
        validator: Optional[LedgerValidator] = None,
        configuration_error: Optional[ConfigurationInvalidError] = None,
    ):
        self._auth = auth
        self._store = store
        self._audit = audit_logger or AuditLogger()
        self._settings = settings or LedgerSettings()
        self._validator = validator or LedgerValidator()
        self._configuration_error = configuration_error
        if store is None and configuration_error is None:
            self._configuration_error = ConfigurationInvalidError(
                "store", "no document store was provided"
            )

        self._context: Optional[SessionContext] = None
        self._ledger: Optional[Ledger] = None
        self._remove_auth_listener: Optional[Callable[[], None]] = None
        self._audit_tasks: set[asyncio.Task] = set()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        """Begin following the auth collaborator."""
        if self._remove_auth_listener is not None:
            return
        if self._configuration_error is not None:
            logger.error("session_manager_misconfigured", error=str(self._configuration_error))
            self._schedule(self._audit.log_configuration_invalid(str(self._configuration_error)))
            return
        self._remove_auth_listener = self._auth.on_change(self._on_auth_change)

    def stop(self) -> None:
        """Stop following auth changes and end any open session."""
        if self._remove_auth_listener is not None:
            self._remove_auth_listener()
            self._remove_auth_listener = None
        self._teardown()

    def _on_auth_change(self, user: Optional[User]) -> None:
        if self._context is not None and user is not None and self._context.user == user:
            return
        self._teardown()
        if user is not None and self._configuration_error is None:
            self._open(user)

    def _open(self, user: User) -> None:
        context = SessionContext(user, self._store)
        ledger = Ledger(
            context,
            self._store,
            validator=self._validator,
            audit_logger=self._audit,
            settings=self._settings,
        )
        self._context = context
        self._ledger = ledger
        context.subscribe(SUBSCRIBED_COLLECTIONS, self._listener_for(ledger))
        logger.info("session_opened", user_id=user.id)
        self._schedule(self._audit.log_session_opened(user.id))

    def _teardown(self) -> None:
        if self._context is None:
            return
        user_id = self._context.user_id
        self._context.close()
        self._context = None
        self._ledger = None
        self._schedule(self._audit.log_session_closed(user_id))

    def _configuration_failed(self, error: ConfigurationInvalidError) -> None:
        """The store reported a settings problem at runtime: stop serving ledgers."""
        self._configuration_error = error
        logger.error("session_manager_misconfigured", error=str(error))
        self._schedule(self._audit.log_configuration_invalid(str(error)))
        self._teardown()

    def _listener_for(self, ledger: Ledger) -> Callable[[StoreEvent], None]:
        """Route store events to one ledger only, even if delivered late."""

        def listener(event: StoreEvent) -> None:
            if ledger is not self._ledger:
                return
            ledger.apply(event)
            if not isinstance(event, SubscriptionErrorEvent):
                return
            if event.configuration_error:
                self._configuration_failed(
                    ConfigurationInvalidError("store", event.error_message)
                )
                return
            logger.error(
                "subscription_error",
                user_id=ledger.user_id,
                collection=event.collection,
                error=event.error_message,
            )
            self._schedule(self._audit.log_subscription_error(
                ledger.user_id, event.collection, event.error_message
            ))

        return listener

    def _schedule(self, coro) -> None:
        """Run an audit coroutine on the running loop, if there is one."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._audit_tasks.add(task)
        task.add_done_callback(self._audit_done)

    def _audit_done(self, task: asyncio.Task) -> None:
        self._audit_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("audit_task_failed", error=str(task.exception()))

    async def drain_audits(self) -> None:
        """Wait for every scheduled audit write to finish."""
        while self._audit_tasks:
            await asyncio.gather(*self._audit_tasks, return_exceptions=True)

    # =========================================================================
    # ACCESS
    # =========================================================================

    @property
    def pending_audits(self) -> int:
        return len(self._audit_tasks)

    @property
    def configuration_error(self) -> Optional[ConfigurationInvalidError]:
        return self._configuration_error

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    @property
    def is_active(self) -> bool:
        return self._ledger is not None

    @property
    def ledger(self) -> Ledger:
        """
        The signed-in user's ledger.

        Raises:
            ConfigurationInvalidError: If the store or auth settings are invalid
            NoActiveSessionError: If nobody is signed in
        """
        if self._configuration_error is not None:
            raise self._configuration_error
        if self._ledger is None:
            raise NoActiveSessionError("No user is signed in")
        return self._ledger
