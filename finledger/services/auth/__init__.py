"""Authentication collaborator package."""

from finledger.services.auth.provider import (
    AuthListener,
    AuthProvider,
    LocalAuthProvider,
)

__all__ = [
    "AuthListener",
    "AuthProvider",
    "LocalAuthProvider",
]
