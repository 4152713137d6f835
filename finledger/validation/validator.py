"""
Two-Stage Input Validation

DESIGN DECISION: Everything a caller hands the ledger is validated
before any write is attempted, in two stages:

STAGE 1 - SCHEMA VALIDATION:
- Types, required fields, formats (delegated to the Pydantic models)
- Non-positive amounts, unknown update variants

STAGE 2 - SEMANTIC VALIDATION:
- Checks that need more than one field (duplicate update fields,
  empty update lists)
- Non-blocking warnings (future-dated or TRANSFER transactions)

IMPORTANT: Validation NEVER silently fixes issues. Errors raise
InvalidInputError; warnings are logged and the input proceeds.
"""

from datetime import date, timedelta
from typing import Any, Iterable, Optional, Sequence, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from finledger.models.ledger import (
    Account,
    AccountDraft,
    AccountUpdate,
    HoldingUpdate,
    StockHoldingDraft,
    TransactionDraft,
    TransactionType,
    ValidationIssue,
)


logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_ACCOUNT_UPDATE = TypeAdapter(AccountUpdate)
_HOLDING_UPDATE = TypeAdapter(HoldingUpdate)


class InvalidInputError(ValueError):
    """Caller-supplied data failed validation. No write was attempted."""

    def __init__(self, entity: str, issues: list[ValidationIssue]):
        self.entity = entity
        self.issues = issues
        details = "; ".join(f"{i.field}: {i.message}" for i in issues)
        super().__init__(f"Invalid {entity}: {details}")


def issues_from_validation_error(error: ValidationError) -> list[ValidationIssue]:
    """Convert Pydantic errors into ValidationIssues."""
    issues = []
    for err in error.errors():
        field = ".".join(str(part) for part in err["loc"]) or "input"
        issue_type = "missing" if err["type"] == "missing" else "invalid_value"
        issues.append(ValidationIssue(
            field=field,
            issue_type=issue_type,
            message=err["msg"],
            severity="error",
        ))
    return issues


class LedgerValidator:
    """
    Validates drafts and field updates before the ledger dispatches them.

    Accepts either model instances or plain mappings.
    """

    def __init__(self, future_date_tolerance_days: int = 7):
        self._future_tolerance = timedelta(days=future_date_tolerance_days)

    def _coerce(self, model: type[ModelT], data: Any, entity: str) -> ModelT:
        """Stage 1: schema validation through the Pydantic model."""
        if isinstance(data, BaseModel):
            data = data.model_dump()
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise InvalidInputError(entity, issues_from_validation_error(e)) from e

    def _report(self, entity: str, issues: list[ValidationIssue]) -> None:
        errors = [i for i in issues if i.severity == "error"]
        for issue in issues:
            if issue.severity == "warning":
                logger.warning(
                    "validation_warning",
                    entity=entity,
                    field=issue.field,
                    message=issue.message,
                )
        if errors:
            raise InvalidInputError(entity, errors)

    def transaction_draft(self, data: Any) -> TransactionDraft:
        draft = self._coerce(TransactionDraft, data, "transaction")

        issues = []
        if draft.date > date.today() + self._future_tolerance:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Transaction date ({draft.date}) is in the future",
                severity="warning",
            ))
        if draft.type == TransactionType.TRANSFER:
            issues.append(ValidationIssue(
                field="type",
                issue_type="no_balance_effect",
                message="TRANSFER transactions are recorded without adjusting any balance",
                severity="warning",
            ))
        self._report("transaction", issues)
        return draft

    def account_draft(self, data: Any) -> AccountDraft:
        return self._coerce(AccountDraft, data, "account")

    def account(self, data: Any) -> Account:
        return self._coerce(Account, data, "account")

    def holding_draft(self, data: Any) -> StockHoldingDraft:
        return self._coerce(StockHoldingDraft, data, "holding")

    def _updates(
        self,
        adapter: TypeAdapter,
        updates: Iterable[Any],
        entity: str,
    ) -> list:
        validated = []
        issues = []
        for index, update in enumerate(updates):
            if isinstance(update, BaseModel):
                update = update.model_dump()
            try:
                validated.append(adapter.validate_python(update))
            except ValidationError as e:
                for issue in issues_from_validation_error(e):
                    issue.field = f"updates[{index}].{issue.field}"
                    issues.append(issue)

        if not validated and not issues:
            issues.append(ValidationIssue(
                field="updates",
                issue_type="missing",
                message="At least one field update is required",
                severity="error",
            ))

        seen: set[str] = set()
        for update in validated:
            if update.field in seen:
                issues.append(ValidationIssue(
                    field=update.field,
                    issue_type="duplicate_field",
                    message=f"Field '{update.field}' is updated more than once",
                    severity="error",
                ))
            seen.add(update.field)

        self._report(entity, issues)
        return validated

    def account_updates(self, updates: Sequence[Any]) -> list[AccountUpdate]:
        return self._updates(_ACCOUNT_UPDATE, updates, "account update")

    def holding_updates(self, updates: Sequence[Any]) -> list[HoldingUpdate]:
        return self._updates(_HOLDING_UPDATE, updates, "holding update")

    @staticmethod
    def merge_patches(updates: Iterable[Any]) -> dict[str, Any]:
        """Combine validated update variants into one store field patch."""
        patch: dict[str, Any] = {}
        for update in updates:
            patch.update(update.to_patch())
        return patch


def require_id(value: Optional[str], entity: str) -> str:
    """Reject blank ids before any lookup or write."""
    if not value or not str(value).strip():
        raise InvalidInputError(entity, [ValidationIssue(
            field="id",
            issue_type="missing",
            message="An id is required",
            severity="error",
        )])
    return str(value).strip()
