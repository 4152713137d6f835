"""
Derived Views

Pure functions over a LedgerState. None of them mutate anything or
keep counters between calls; every figure is recomputed from the
current accounts, transactions and holdings.

NOTE: total_assets() converts holding values with a fixed rate table
taken from configuration. It is an approximation, not a live exchange
rate.
"""

import re
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional, Union

from finledger.models.ledger import (
    DEFAULT_CURRENCY,
    HoldingReturn,
    MonthlyTrend,
    PeriodTotals,
    StockHolding,
    Transaction,
    TransactionType,
    ValidationIssue,
)
from finledger.ledger.state import LedgerState
from finledger.validation import InvalidInputError


ZERO = Decimal("0")
MONTH_KEY = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def _month_key(month: Union[date, str]) -> str:
    if isinstance(month, date):
        return f"{month.year:04d}-{month.month:02d}"
    if not MONTH_KEY.match(month):
        raise InvalidInputError("month", [
            ValidationIssue(
                field="month",
                issue_type="invalid_value",
                message=f"expected YYYY-MM, got {month!r}",
                severity="error",
            )
        ])
    return month


def convert(
    amount: Decimal,
    currency: str,
    local_currency: str = DEFAULT_CURRENCY,
    fx_rates: Optional[Mapping[str, Decimal]] = None,
) -> Decimal:
    """Convert an amount into the local currency. Unknown currencies convert at 1."""
    if currency == local_currency:
        return amount
    return amount * (fx_rates or {}).get(currency, Decimal("1"))


def cash_total(state: LedgerState) -> Decimal:
    """Sum of all account balances, in each account's own units."""
    return sum((a.balance for a in state.accounts.values()), ZERO)


def stock_value(
    state: LedgerState,
    local_currency: str = DEFAULT_CURRENCY,
    fx_rates: Optional[Mapping[str, Decimal]] = None,
) -> Decimal:
    """Market value of all holdings, converted into the local currency."""
    return sum(
        (
            convert(h.market_value, h.currency, local_currency, fx_rates)
            for h in state.holdings
        ),
        ZERO,
    )


def total_assets(
    state: LedgerState,
    local_currency: str = DEFAULT_CURRENCY,
    fx_rates: Optional[Mapping[str, Decimal]] = None,
) -> Decimal:
    """
    Account balances plus converted holding values.

    Account balances are summed as stored; only holding values go
    through the rate table.
    """
    return cash_total(state) + stock_value(state, local_currency, fx_rates)


def _totals(transactions) -> PeriodTotals:
    income = ZERO
    expense = ZERO
    for tx in transactions:
        if tx.type == TransactionType.INCOME:
            income += tx.amount
        elif tx.type == TransactionType.EXPENSE:
            expense += tx.amount
    return PeriodTotals(income=income, expense=expense)


def monthly_totals(state: LedgerState, month: Union[date, str]) -> PeriodTotals:
    """
    Income and expense for one calendar month.

    Args:
        month: Any date inside the month, or a "YYYY-MM" key

    TRANSFER transactions count towards neither total.
    """
    key = _month_key(month)
    return _totals(tx for tx in state.transactions if tx.month_key == key)


def category_totals(
    state: LedgerState,
    transaction_type: TransactionType = TransactionType.EXPENSE,
) -> dict[str, Decimal]:
    """Amounts grouped by category for one transaction type, in first-seen order."""
    totals: dict[str, Decimal] = {}
    for tx in state.transactions:
        if tx.type == transaction_type:
            totals[tx.category] = totals.get(tx.category, ZERO) + tx.amount
    return totals


def trend_by_month(state: LedgerState) -> list[MonthlyTrend]:
    """Income and expense per YYYY-MM, oldest month first."""
    buckets: dict[str, list[Transaction]] = {}
    for tx in state.transactions:
        buckets.setdefault(tx.month_key, []).append(tx)

    trend = []
    for key in sorted(buckets):
        totals = _totals(buckets[key])
        trend.append(MonthlyTrend(month=key, income=totals.income, expense=totals.expense))
    return trend


def recent_transactions(state: LedgerState, limit: int = 5) -> list[Transaction]:
    """The newest transactions by date."""
    return list(state.transactions[:limit])


def search_transactions(state: LedgerState, text: str) -> list[Transaction]:
    """
    Transactions whose category, note or account name contains `text`
    (case-insensitive). Blank text matches everything.
    """
    needle = text.strip().lower()
    if not needle:
        return list(state.transactions)

    results = []
    for tx in state.transactions:
        account = state.account(tx.account_id)
        haystack = [tx.category, tx.note or "", account.name if account else ""]
        if any(needle in value.lower() for value in haystack):
            results.append(tx)
    return results


def holding_return(holding: StockHolding) -> HoldingReturn:
    """Unrealised gain of a holding against its average cost."""
    gain = holding.market_value - holding.cost_basis
    if holding.cost_basis == 0:
        percent = ZERO
    else:
        percent = gain / holding.cost_basis * 100
    return HoldingReturn(
        market_value=holding.market_value,
        gain=gain,
        gain_percent=percent,
    )


def build_financial_summary(
    state: LedgerState,
    local_currency: str = DEFAULT_CURRENCY,
    fx_rates: Optional[Mapping[str, Decimal]] = None,
    top_categories: int = 3,
) -> str:
    """Plain-text summary handed to the advice collaborator."""
    trend = trend_by_month(state)
    latest = trend[-1] if trend else None

    expenses = category_totals(state, TransactionType.EXPENSE)
    ranked = sorted(expenses.items(), key=lambda item: item[1], reverse=True)
    top = ", ".join(name for name, _ in ranked[:top_categories]) or "none"

    lines = [
        f"Total cash: {cash_total(state)} {local_currency}",
        f"Total stock value: {stock_value(state, local_currency, fx_rates)} {local_currency}",
        f"Latest month income: {latest.income if latest else ZERO}",
        f"Latest month expense: {latest.expense if latest else ZERO}",
        f"Top expense categories: {top}",
    ]
    return "\n".join(lines)
