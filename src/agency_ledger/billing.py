# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Billing-day forecaster.

A coarse billing model based only on ``Client.billing_day_of_month``: it does
not look at installments nor at any invoice record. Only ``active`` clients
with a billing day are considered, and every charge is for the client's MRR.

Dates are compared as calendar days, so a billing day equal to today is an
upcoming charge (0 days until due), never an overdue one.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from . import periods
from .db import Client, DatabaseConfig, list_clients
from .exceptions import ValidationError
from .periods import shift_month


@dataclass(frozen=True)
class BillingCharge:
    """A monthly MRR charge due on a client's billing day."""

    client_id: int
    client_name: str
    amount: float
    due_date: date
    days_until_due: Optional[int] = None
    days_overdue: Optional[int] = None


def _billable(clients: Iterable[Client]) -> list[Client]:
    return [c for c in clients if c.status == "active" and c.billing_day_of_month]


def next_billing_date(billing_day: int, today: date) -> date:
    """First billing date on or after `today`."""
    candidate = date(today.year, today.month, billing_day)
    if candidate < today:
        year, month = shift_month(today.year, today.month, 1)
        candidate = date(year, month, billing_day)
    return candidate


def last_billing_date(billing_day: int, today: date) -> date:
    """Most recent billing date on or before `today`."""
    candidate = date(today.year, today.month, billing_day)
    if candidate > today:
        year, month = shift_month(today.year, today.month, -1)
        candidate = date(year, month, billing_day)
    return candidate


def upcoming_charges(
    cfg: Optional[DatabaseConfig],
    days_ahead: int = 7,
    today: Optional[date] = None,
) -> list[BillingCharge]:
    """
    Charges due within [today, today + days_ahead], soonest first.

    Raises:
        ValidationError: if days_ahead is negative.
    """
    if days_ahead < 0:
        raise ValidationError(
            f"days_ahead must be zero or positive, got {days_ahead!r}."
        )
    today = today or periods.current_date()
    horizon = today + timedelta(days=days_ahead)

    charges = []
    for client in _billable(list_clients(cfg)):
        due = next_billing_date(client.billing_day_of_month, today)
        if today <= due <= horizon:
            charges.append(
                BillingCharge(
                    client_id=client.id,
                    client_name=client.name,
                    amount=client.mrr,
                    due_date=due,
                    days_until_due=(due - today).days,
                )
            )

    return sorted(charges, key=lambda c: c.due_date)


def overdue_charges(
    cfg: Optional[DatabaseConfig], today: Optional[date] = None
) -> list[BillingCharge]:
    """Charges whose latest billing date is strictly before today, most overdue first."""
    today = today or periods.current_date()

    charges = []
    for client in _billable(list_clients(cfg)):
        due = last_billing_date(client.billing_day_of_month, today)
        if due < today:
            charges.append(
                BillingCharge(
                    client_id=client.id,
                    client_name=client.name,
                    amount=client.mrr,
                    due_date=due,
                    days_overdue=(today - due).days,
                )
            )

    return sorted(charges, key=lambda c: c.days_overdue, reverse=True)
