"""
Authentication Collaborator

The ledger only needs to know who is signed in and when that changes.
Credential checking belongs to the identity provider in front of the
application; it hands us a User and we react to sign-in / sign-out.
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

import structlog

from finledger.models.ledger import User


AuthListener = Callable[[Optional[User]], None]

logger = structlog.get_logger(__name__)


class AuthProvider(ABC):
    """Supplies the current user identity and notifies on changes."""

    @property
    @abstractmethod
    def current_user(self) -> Optional[User]:
        """The signed-in user, or None."""
        pass

    @abstractmethod
    def on_change(self, listener: AuthListener) -> Callable[[], None]:
        """
        Register a listener for sign-in / sign-out.

        The listener is called once immediately with the current user.

        Returns:
            A callable that removes the listener
        """
        pass


class LocalAuthProvider(AuthProvider):
    """
    In-process auth provider.

    The host application calls sign_in() with the identity it has
    verified and sign_out() when the user leaves.
    """

    def __init__(self, user: Optional[User] = None):
        self._user = user
        self._listeners: list[AuthListener] = []

    @property
    def current_user(self) -> Optional[User]:
        return self._user

    def on_change(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)
        listener(self._user)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def sign_in(self, user: User) -> None:
        if self._user == user:
            return
        self._user = user
        logger.info("user_signed_in", user_id=user.id)
        self._notify()

    def sign_out(self) -> None:
        if self._user is None:
            return
        logger.info("user_signed_out", user_id=self._user.id)
        self._user = None
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._user)
