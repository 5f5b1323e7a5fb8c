# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Cash-basis aggregation engine for Agency Ledger.

This module computes the dashboard metrics for an arbitrary date range or
for a calendar month. It is the cash-basis counterpart of ``dre.py``.

Recognition rules
-----------------
- total_mrr:
    Sum of ``mrr`` over clients whose status is ``active`` *after*
    reconciliation. This is a point-in-time run-rate and is NOT filtered by
    the requested range.
- setup_revenue:
    Sum of installment amounts whose due date falls in the range, whatever
    their payment status. Cash-basis is approximated by due date, not by the
    actual payment date.
- services_revenue:
    Sum of ``completed`` services dated within the range.
- total_costs / total_expenses:
    Sum of expenses dated within the range (by ``expense_date``), split by
    expense type (``cost`` for variable costs, ``expense`` for fixed
    operating expenses).

Derived values
--------------
- total_revenue = total_mrr + setup_revenue + services_revenue
- profit        = total_revenue - (total_costs + total_expenses)
- profit_margin = profit / total_revenue * 100, or 0 when total_revenue <= 0

Every component sum is rounded to 2 decimals before derived values are
computed, so the identities above hold exactly on the returned numbers.
Empty datasets yield zeros; nothing here raises on missing data.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .db import (
    Client,
    DatabaseConfig,
    Expense,
    Installment,
    Service,
    list_clients,
    list_expenses_by_date_range,
    list_installments_by_date_range,
    list_services_by_date_range,
)
from .periods import Period, month_period, validate_range
from .reconciler import reconcile_client_statuses


@dataclass(frozen=True)
class Metrics:
    """Cash-basis metrics for one period."""

    total_mrr: float
    setup_revenue: float
    services_revenue: float
    total_revenue: float
    total_costs: float
    total_expenses: float
    profit: float
    profit_margin: float
    active_clients_count: int


def sum_amounts(rows: Iterable) -> float:
    """Sum the ``amount`` attribute of rows, rounded to 2 decimals."""
    return round(sum(float(r.amount) for r in rows), 2)


def percent_of(value: float, base: float) -> float:
    """Return value / base * 100, or 0.0 when base <= 0."""
    if base <= 0:
        return 0.0
    return round(value / base * 100.0, 2)


def active_clients(clients: Iterable[Client]) -> list[Client]:
    return [c for c in clients if c.status == "active"]


def build_metrics(
    clients: Iterable[Client],
    installments: Iterable[Installment],
    services: Iterable[Service],
    expenses: Iterable[Expense],
) -> Metrics:
    """
    Compute Metrics from already-filtered rows.

    `installments`, `services` and `expenses` are expected to be restricted
    to the period already; `services` may still contain non-completed rows,
    which are ignored here. `clients` is the full client list.
    """
    active = active_clients(clients)
    expenses = list(expenses)

    total_mrr = round(sum(c.mrr for c in active), 2)
    setup_revenue = sum_amounts(installments)
    services_revenue = sum_amounts(s for s in services if s.status == "completed")
    total_costs = sum_amounts(e for e in expenses if e.type == "cost")
    total_expenses = sum_amounts(e for e in expenses if e.type == "expense")

    total_revenue = round(total_mrr + setup_revenue + services_revenue, 2)
    profit = round(total_revenue - (total_costs + total_expenses), 2)

    return Metrics(
        total_mrr=total_mrr,
        setup_revenue=setup_revenue,
        services_revenue=services_revenue,
        total_revenue=total_revenue,
        total_costs=total_costs,
        total_expenses=total_expenses,
        profit=profit,
        profit_margin=percent_of(profit, total_revenue),
        active_clients_count=len(active),
    )


def aggregate_period(
    cfg: Optional[DatabaseConfig],
    start: date,
    end: date,
    *,
    today: Optional[date] = None,
    override_paused: bool = True,
) -> Metrics:
    """
    Compute cash-basis metrics for the inclusive range [start, end].

    Client statuses are reconciled first so that the ``active`` filter used
    for MRR reflects overdue installments.

    Raises:
        ValidationError: if end is before start.
    """
    validate_range(start, end)

    reconcile_client_statuses(cfg, today, override_paused=override_paused)

    return build_metrics(
        clients=list_clients(cfg),
        installments=list_installments_by_date_range(cfg, start, end),
        services=list_services_by_date_range(cfg, start, end, status="completed"),
        expenses=list_expenses_by_date_range(cfg, start, end),
    )


def aggregate_month(
    cfg: Optional[DatabaseConfig],
    year: int,
    month: int,
    *,
    today: Optional[date] = None,
    override_paused: bool = True,
) -> Metrics:
    """Cash-basis metrics for a calendar month (first to last day)."""
    period: Period = month_period(year, month)
    return aggregate_period(
        cfg,
        period.start,
        period.end,
        today=today,
        override_paused=override_paused,
    )
