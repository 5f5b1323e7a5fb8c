# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Accrual-basis monthly income statement (DRE) for Agency Ledger.

The DRE ("Demonstração do Resultado do Exercício") differs from the
cash-basis dashboard of ``engine.py`` in two places:

- setup revenue is recognized in full in the month a contract is signed
  (its ``start_date``), for every contract that is not cancelled, instead of
  being spread over installment due dates;
- costs and operating expenses are read from the immutable
  ``expense_history`` ledger rather than from live expense rows, so that a
  deleted recurring expense still weighs on the months it covered.

Statement layout
----------------
    gross_revenue = mrr + setup + services
    taxes         = gross_revenue * tax_rate / 100
    net_revenue   = gross_revenue - taxes
    gross_margin  = net_revenue - costs
    net_income    = gross_margin - expenses

``gross_margin_percent`` and ``net_income_percent`` are expressed against
``gross_revenue`` and are 0 when gross revenue is not positive.

The tax rate comes from the company settings singleton. When no settings row
has been written yet, ``default_tax_rate`` (11% unless configured otherwise)
is used.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .db import (
    CompanySettings,
    DatabaseConfig,
    get_company_settings,
    list_clients,
    list_expense_history_by_date_range,
    list_services_by_date_range,
    list_setup_contracts,
    upsert_company_settings,
)
from .engine import active_clients, percent_of, sum_amounts
from .exceptions import ValidationError
from .periods import month_period
from .reconciler import reconcile_client_statuses

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = 11.0


@dataclass(frozen=True)
class DREResult:
    """Monthly accrual-basis income statement."""

    year: int
    month: int
    gross_revenue: float
    mrr: float
    setup: float
    services: float
    tax_rate: float
    taxes: float
    net_revenue: float
    costs: float
    gross_margin: float
    expenses: float
    net_income: float
    gross_margin_percent: float
    net_income_percent: float


def effective_tax_rate(
    settings: Optional[CompanySettings], default_tax_rate: float = DEFAULT_TAX_RATE
) -> float:
    """Tax rate of the settings row, or the default when none exists."""
    if settings is None:
        return float(default_tax_rate)
    return float(settings.tax_rate)


def monthly_income_statement(
    cfg: Optional[DatabaseConfig],
    year: int,
    month: int,
    *,
    default_tax_rate: float = DEFAULT_TAX_RATE,
    today: Optional[date] = None,
    override_paused: bool = True,
) -> DREResult:
    """
    Build the DRE for a calendar month.

    Client statuses are reconciled first, as for the cash-basis metrics, so
    that the MRR line only counts clients that are ``active`` right now.

    Raises:
        ValidationError: if the month is out of range.
    """
    period = month_period(year, month)

    reconcile_client_statuses(cfg, today, override_paused=override_paused)

    mrr = round(sum(c.mrr for c in active_clients(list_clients(cfg))), 2)

    signed = [
        c
        for c in list_setup_contracts(cfg)
        if period.contains(c.start_date) and c.status != "cancelled"
    ]
    setup = round(sum(c.total_amount for c in signed), 2)

    services = sum_amounts(
        list_services_by_date_range(cfg, period.start, period.end, status="completed")
    )

    history = list_expense_history_by_date_range(cfg, period.start, period.end)
    costs = sum_amounts(h for h in history if h.type == "cost")
    expenses = sum_amounts(h for h in history if h.type == "expense")

    tax_rate = effective_tax_rate(get_company_settings(cfg), default_tax_rate)

    gross_revenue = round(mrr + setup + services, 2)
    taxes = round(gross_revenue * tax_rate / 100.0, 2)
    net_revenue = round(gross_revenue - taxes, 2)
    gross_margin = round(net_revenue - costs, 2)
    net_income = round(gross_margin - expenses, 2)

    return DREResult(
        year=year,
        month=month,
        gross_revenue=gross_revenue,
        mrr=mrr,
        setup=setup,
        services=services,
        tax_rate=tax_rate,
        taxes=taxes,
        net_revenue=net_revenue,
        costs=costs,
        gross_margin=gross_margin,
        expenses=expenses,
        net_income=net_income,
        gross_margin_percent=percent_of(gross_margin, gross_revenue),
        net_income_percent=percent_of(net_income, gross_revenue),
    )


def update_tax_rate(cfg: Optional[DatabaseConfig], tax_rate: float) -> CompanySettings:
    """
    Set the company tax rate (percentage between 0 and 100 inclusive).

    The settings row is created on first use and updated afterwards; at most
    one row ever exists.

    Raises:
        ValidationError: if the rate is not a number in [0, 100].
        DatabaseUnavailableError: if no database is configured.
    """
    if isinstance(tax_rate, bool):
        raise ValidationError(f"Invalid tax rate: {tax_rate!r}")
    try:
        rate = float(tax_rate)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid tax rate: {tax_rate!r}") from exc
    if not 0.0 <= rate <= 100.0:
        raise ValidationError(f"Tax rate must be between 0 and 100, got {rate}.")

    settings = upsert_company_settings(cfg, rate)
    logger.info("Company tax rate set to %s%%", settings.tax_rate)
    return settings
