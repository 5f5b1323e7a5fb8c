# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Forward-looking and historical dashboard views.

These helpers complement the cash-basis metrics of ``engine.py`` with the
month-by-month breakdowns shown on the dashboard:

- future_projection:       pending installments from today through the end
                           of year + 2, total and per month,
- setup_pending_breakdown: pending installments of a month, of the two
                           following months, and their total,
- installment_alerts:      warnings for pending installments due soon,
- cash_flow_projection:    expected entries (MRR + pending installments),
                           exits (expenses) and balance per month,
- revenue_history:         MRR, paid installments and completed services for
                           the last months,
- expenses_by_category:    expense totals per category for a month.

They are read-only: client statuses are used as stored, no reconciliation is
triggered from here. Month keys are ``YYYY-MM`` strings.

Grouping is done with pandas on one range query per source rather than one
query per month.
"""

from dataclasses import asdict, dataclass
from datetime import date, timedelta
from typing import Optional

import pandas as pd

from . import periods
from .db import (
    DatabaseConfig,
    list_clients,
    list_expenses_by_date_range,
    list_installments_by_date_range,
    list_services_by_date_range,
)
from .engine import active_clients
from .exceptions import ValidationError
from .periods import month_period, shift_month


@dataclass(frozen=True)
class FutureProjection:
    total_pending: float
    by_month: dict[str, float]


@dataclass(frozen=True)
class SetupPendingBreakdown:
    this_month: float
    next_3_months: float
    total_future: float


@dataclass(frozen=True)
class Alert:
    type: str
    title: str
    message: str


@dataclass(frozen=True)
class CashFlowMonth:
    month: str
    entries: float
    exits: float
    balance: float


@dataclass(frozen=True)
class RevenueMonth:
    month: str
    revenue: float
    mrr: float
    setup: float
    services: float


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _frame(rows: list, columns: list[str]) -> pd.DataFrame:
    """Build a DataFrame from dataclass rows, keeping `columns` when empty."""
    if not rows:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([asdict(r) for r in rows])[columns]


def _month_key(day: date) -> str:
    return f"{day.year}-{day.month:02d}"


def _sum_by_month(
    df: pd.DataFrame, date_column: str, months: list[str]
) -> pd.Series:
    """Sum `amount` per month key, with 0.0 for months without rows."""
    if df.empty:
        return pd.Series(0.0, index=months)
    keys = df[date_column].map(_month_key)
    totals = df["amount"].astype(float).groupby(keys).sum()
    return totals.reindex(months, fill_value=0.0)


def _check_months(months: int) -> None:
    if isinstance(months, bool) or not isinstance(months, int) or months < 1:
        raise ValidationError(f"months must be an integer >= 1, got {months!r}.")


def _month_starts(first: date, count: int) -> list[date]:
    starts = []
    for offset in range(count):
        year, month = shift_month(first.year, first.month, offset)
        starts.append(date(year, month, 1))
    return starts


def _current_mrr(cfg: Optional[DatabaseConfig]) -> float:
    return round(sum(c.mrr for c in active_clients(list_clients(cfg))), 2)


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


def future_projection(
    cfg: Optional[DatabaseConfig], today: Optional[date] = None
) -> FutureProjection:
    """Pending installments due from today through December 31st of year + 2."""
    today = today or periods.current_date()
    end = date(today.year + 2, 12, 31)

    df = _frame(
        list_installments_by_date_range(cfg, today, end),
        ["amount", "due_date", "status"],
    )
    df = df[df["status"] == "pending"]
    if df.empty:
        return FutureProjection(total_pending=0.0, by_month={})

    by_month = (
        df["amount"].astype(float).groupby(df["due_date"].map(_month_key)).sum()
    )
    return FutureProjection(
        total_pending=round(float(df["amount"].sum()), 2),
        by_month={k: round(float(v), 2) for k, v in by_month.sort_index().items()},
    )


def setup_pending_breakdown(
    cfg: Optional[DatabaseConfig], year: int, month: int
) -> SetupPendingBreakdown:
    """
    Pending installments for the month and the two months that follow.

    ``this_month`` covers the requested month, ``next_3_months`` the two
    following months, and ``total_future`` the whole three-month window.
    """
    current = month_period(year, month)
    last_year, last_month = shift_month(year, month, 2)
    window_end = month_period(last_year, last_month).end

    df = _frame(
        list_installments_by_date_range(cfg, current.start, window_end),
        ["amount", "due_date", "status"],
    )
    df = df[df["status"] == "pending"]
    if df.empty:
        return SetupPendingBreakdown(0.0, 0.0, 0.0)

    in_month = df["due_date"] <= current.end
    return SetupPendingBreakdown(
        this_month=round(float(df.loc[in_month, "amount"].sum()), 2),
        next_3_months=round(float(df.loc[~in_month, "amount"].sum()), 2),
        total_future=round(float(df["amount"].sum()), 2),
    )


def installment_alerts(
    cfg: Optional[DatabaseConfig],
    today: Optional[date] = None,
    days: int = 7,
) -> list[Alert]:
    """Warn when pending installments fall due within the next `days` days."""
    today = today or periods.current_date()
    due_soon = [
        i
        for i in list_installments_by_date_range(cfg, today, today + timedelta(days=days))
        if i.status == "pending"
    ]
    if not due_soon:
        return []

    total = round(sum(i.amount for i in due_soon), 2)
    return [
        Alert(
            type="warning",
            title="Installments due",
            message=(
                f"{len(due_soon)} installment(s) due in the next {days} days "
                f"({total:.2f})"
            ),
        )
    ]


def cash_flow_projection(
    cfg: Optional[DatabaseConfig],
    today: Optional[date] = None,
    months: int = 3,
) -> list[CashFlowMonth]:
    """
    Expected cash flow for the current month and the following ones.

    entries = current MRR + pending installments due in the month,
    exits   = expenses dated in the month,
    balance = entries - exits.
    """
    _check_months(months)
    today = today or periods.current_date()
    starts = _month_starts(today, months)
    keys = [_month_key(s) for s in starts]
    window_end = month_period(starts[-1].year, starts[-1].month).end

    installments = _frame(
        list_installments_by_date_range(cfg, starts[0], window_end),
        ["amount", "due_date", "status"],
    )
    installments = installments[installments["status"] == "pending"]
    expenses = _frame(
        list_expenses_by_date_range(cfg, starts[0], window_end),
        ["amount", "expense_date"],
    )

    mrr = _current_mrr(cfg)
    setup_in = _sum_by_month(installments, "due_date", keys)
    out = _sum_by_month(expenses, "expense_date", keys)

    projection = []
    for key in keys:
        entries = round(mrr + float(setup_in[key]), 2)
        exits = round(float(out[key]), 2)
        projection.append(
            CashFlowMonth(
                month=key,
                entries=entries,
                exits=exits,
                balance=round(entries - exits, 2),
            )
        )
    return projection


def revenue_history(
    cfg: Optional[DatabaseConfig],
    today: Optional[date] = None,
    months: int = 6,
) -> list[RevenueMonth]:
    """
    Revenue of the last `months` months, oldest first (current month included).

    The MRR column is the current run-rate repeated for every month; setup
    counts paid installments due in the month, services the completed ones.
    """
    _check_months(months)
    today = today or periods.current_date()
    first_year, first_month = shift_month(today.year, today.month, -(months - 1))
    starts = _month_starts(date(first_year, first_month, 1), months)
    keys = [_month_key(s) for s in starts]
    window_end = month_period(today.year, today.month).end

    installments = _frame(
        list_installments_by_date_range(cfg, starts[0], window_end),
        ["amount", "due_date", "status"],
    )
    installments = installments[installments["status"] == "paid"]
    services = _frame(
        list_services_by_date_range(cfg, starts[0], window_end, status="completed"),
        ["amount", "service_date"],
    )

    mrr = _current_mrr(cfg)
    setup = _sum_by_month(installments, "due_date", keys)
    done = _sum_by_month(services, "service_date", keys)

    history = []
    for key in keys:
        setup_amount = round(float(setup[key]), 2)
        services_amount = round(float(done[key]), 2)
        history.append(
            RevenueMonth(
                month=key,
                revenue=round(mrr + setup_amount + services_amount, 2),
                mrr=mrr,
                setup=setup_amount,
                services=services_amount,
            )
        )
    return history


def expenses_by_category(
    cfg: Optional[DatabaseConfig], year: int, month: int
) -> dict[str, float]:
    """Total of the month's expenses per category (categories without rows omitted)."""
    period = month_period(year, month)
    df = _frame(
        list_expenses_by_date_range(cfg, period.start, period.end),
        ["amount", "category"],
    )
    if df.empty:
        return {}

    totals = df.groupby("category")["amount"].sum().sort_index()
    return {str(k): round(float(v), 2) for k, v in totals.items()}
