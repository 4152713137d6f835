"""
Session Context

One SessionContext exists per sign-in. It owns the signed-in user's
identity and every live store subscription opened for that user, and
closing it releases all of them. Nothing about the session lives in
module-level globals.
"""

from typing import Iterable

import structlog

from finledger.models.ledger import User
from finledger.services.storage.interface import DocumentStore, Listener, Subscription


logger = structlog.get_logger(__name__)


class NoActiveSessionError(RuntimeError):
    """A ledger operation was attempted with nobody signed in."""
    pass


class SessionContext:
    """Identity plus live subscriptions for one signed-in user."""

    def __init__(self, user: User, store: DocumentStore):
        self.user = user
        self._store = store
        self._subscriptions: list[Subscription] = []
        self._closed = False

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        return tuple(self._subscriptions)

    def ensure_open(self) -> None:
        if self._closed:
            raise NoActiveSessionError(f"Session for user {self.user_id} has ended")

    def subscribe(self, collections: Iterable[str], listener: Listener) -> None:
        """Open one subscription per collection, scoped to this user."""
        self.ensure_open()
        for collection in collections:
            self._subscriptions.append(
                self._store.subscribe(collection, self.user_id, listener)
            )
        logger.info(
            "session_subscribed",
            user_id=self.user_id,
            collections=[s.collection for s in self._subscriptions],
        )

    def close(self) -> None:
        """Close every subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription.close()
        self._subscriptions.clear()
        logger.info("session_closed", user_id=self.user_id)
