"""Input validation package."""

from finledger.validation.validator import (
    InvalidInputError,
    LedgerValidator,
    issues_from_validation_error,
    require_id,
)

__all__ = [
    "InvalidInputError",
    "LedgerValidator",
    "issues_from_validation_error",
    "require_id",
]
