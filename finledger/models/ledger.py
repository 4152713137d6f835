"""
Core Data Models for the Ledger

These models define the schemas for everything the ledger stores or
receives from callers:
1. Accounts, transactions and stock holdings (store-backed entities)
2. Drafts - the same entities before the store has assigned an id
3. Closed sets of field-update variants for accounts and holdings

DESIGN DECISION: Field updates are a closed, typed set of variants
rather than free-form dicts. Every variant is validated by Pydantic
before anything is dispatched to the store.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class AccountType(str, Enum):
    """Kinds of bank account a user can hold."""
    CHECKING = "Checking"
    SAVINGS = "Savings"
    CREDIT = "Credit"
    INVESTMENT = "Investment"
    CASH = "Cash"


class TransactionType(str, Enum):
    """
    Transaction direction.

    TRANSFER is accepted and recorded but carries no balance effect.
    """
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class Collection(str, Enum):
    """Store collections owned by the ledger."""
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    HOLDINGS = "stocks"


DEFAULT_CURRENCY = "TWD"
DEFAULT_ACCOUNT_COLOR = "bg-blue-500"


def _normalize_currency(value: str) -> str:
    value = value.strip().upper()
    if len(value) != 3 or not value.isalpha():
        raise ValueError(f"Currency must be a 3-letter code, got: {value!r}")
    return value


# =============================================================================
# IDENTITY
# =============================================================================

class User(BaseModel):
    """Authenticated user identity supplied by the auth collaborator."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    name: str = ""
    email: str = ""


# =============================================================================
# ACCOUNTS
# =============================================================================

class AccountDraft(BaseModel):
    """An account as entered by the user, before the store assigns an id."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Display name of the account"
    )
    type: AccountType = Field(
        default=AccountType.CHECKING,
        description="Kind of account"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Signed balance in the account's own currency"
    )
    currency: str = Field(
        default=DEFAULT_CURRENCY,
        description="ISO-like currency code"
    )
    color: str = Field(
        default=DEFAULT_ACCOUNT_COLOR,
        description="Display tag, opaque to the ledger"
    )

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)


class Account(AccountDraft):
    """A stored account."""

    id: str = Field(..., min_length=1)

    def to_document(self) -> dict[str, Any]:
        """Store fields, without the id (the id is the document key)."""
        return self.model_dump(mode="json", exclude={"id"})


# =============================================================================
# TRANSACTIONS
# =============================================================================

class TransactionDraft(BaseModel):
    """
    A transaction as entered by the user.

    Amount is an unsigned magnitude; direction comes from `type`.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    account_id: str = Field(
        ...,
        min_length=1,
        description="Account this transaction belongs to (reference, not ownership)"
    )
    type: TransactionType
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Unsigned magnitude"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    date: date
    note: Optional[str] = Field(
        default=None,
        max_length=1000,
    )

    @field_validator("note")
    @classmethod
    def empty_note_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    @property
    def signed_amount(self) -> Decimal:
        """Contribution of this transaction to its account balance."""
        if self.type == TransactionType.INCOME:
            return self.amount
        if self.type == TransactionType.EXPENSE:
            return -self.amount
        return Decimal("0")

    @property
    def month_key(self) -> str:
        """Zero-padded YYYY-MM key."""
        return f"{self.date.year:04d}-{self.date.month:02d}"


class Transaction(TransactionDraft):
    """A stored transaction."""

    id: str = Field(..., min_length=1)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})


# =============================================================================
# STOCK HOLDINGS
# =============================================================================

class StockHoldingDraft(BaseModel):
    """
    A stock position as entered by the user.

    If no current price is given the average cost is used, and if no
    name is given the symbol is used.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    symbol: str = Field(..., min_length=1, max_length=20)
    name: str = ""
    quantity: Decimal = Field(..., ge=0)
    avg_cost: Decimal = Field(default=Decimal("0"), ge=0)
    current_price: Optional[Decimal] = Field(default=None, ge=0)
    currency: str = DEFAULT_CURRENCY
    sector: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.upper()

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)

    @model_validator(mode="after")
    def fill_defaults(self) -> "StockHoldingDraft":
        if not self.name:
            self.name = self.symbol
        if self.current_price is None:
            self.current_price = self.avg_cost
        return self


class StockHolding(StockHoldingDraft):
    """A stored stock position."""

    id: str = Field(..., min_length=1)
    current_price: Decimal = Field(..., ge=0)

    @property
    def market_value(self) -> Decimal:
        return self.quantity * self.current_price

    @property
    def cost_basis(self) -> Decimal:
        return self.quantity * self.avg_cost

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude={"id"})


class StockPriceUpdate(BaseModel):
    """A price returned by the price-update collaborator."""

    symbol: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0)

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.strip().upper()


# =============================================================================
# FIELD UPDATE VARIANTS
# =============================================================================

class _FieldUpdate(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    def to_patch(self) -> dict[str, Any]:
        """Render as a store field patch {field: json_value}."""
        data = self.model_dump(mode="json")
        return {data["field"]: data["value"]}


class RenameAccount(_FieldUpdate):
    field: Literal["name"] = "name"
    value: str = Field(..., min_length=1, max_length=200)


class ChangeAccountType(_FieldUpdate):
    field: Literal["type"] = "type"
    value: AccountType


class SetAccountBalance(_FieldUpdate):
    field: Literal["balance"] = "balance"
    value: Decimal


class SetAccountCurrency(_FieldUpdate):
    field: Literal["currency"] = "currency"
    value: str

    @field_validator("value")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return _normalize_currency(v)


class SetAccountColor(_FieldUpdate):
    field: Literal["color"] = "color"
    value: str = Field(..., min_length=1)


AccountUpdate = Annotated[
    Union[
        RenameAccount,
        ChangeAccountType,
        SetAccountBalance,
        SetAccountCurrency,
        SetAccountColor,
    ],
    Field(discriminator="field"),
]


class SetHoldingPrice(_FieldUpdate):
    field: Literal["current_price"] = "current_price"
    value: Decimal = Field(..., ge=0)


class SetHoldingQuantity(_FieldUpdate):
    field: Literal["quantity"] = "quantity"
    value: Decimal = Field(..., ge=0)


class SetHoldingAverageCost(_FieldUpdate):
    field: Literal["avg_cost"] = "avg_cost"
    value: Decimal = Field(..., ge=0)


class SetHoldingSector(_FieldUpdate):
    field: Literal["sector"] = "sector"
    value: Optional[str] = None


HoldingUpdate = Annotated[
    Union[
        SetHoldingPrice,
        SetHoldingQuantity,
        SetHoldingAverageCost,
        SetHoldingSector,
    ],
    Field(discriminator="field"),
]


# =============================================================================
# DERIVED VIEW RESULTS
# =============================================================================

class PeriodTotals(BaseModel):
    """Income and expense totals for one period."""
    model_config = ConfigDict(frozen=True)

    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")

    @property
    def net(self) -> Decimal:
        return self.income - self.expense


class MonthlyTrend(PeriodTotals):
    """Totals for one YYYY-MM bucket."""

    month: str = Field(..., pattern=r"^\d{4}-\d{2}$")


class HoldingReturn(BaseModel):
    """Unrealised return on one holding."""
    model_config = ConfigDict(frozen=True)

    market_value: Decimal
    gain: Decimal
    gain_percent: Decimal


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem found in caller-supplied data."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'duplicate_field')"
    )
    message: str
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
    )
