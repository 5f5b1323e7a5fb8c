# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Agency Ledger
-------------

A Python backend for the financial management of small agencies that sell
recurring plans (MRR), setup contracts paid in installments and one-off
services, and that track categorized expenses.

Main capabilities:
- installment schedule generation for setup contracts,
- derived client status reconciliation from overdue installments,
- cash-basis dashboard metrics for any date range or calendar month,
- accrual-basis monthly income statement (DRE) with a configurable tax rate,
- expense historization on delete, so past months keep their costs,
- billing-day forecast of upcoming and overdue MRR charges,
- month-by-month projections (pending setup, cash flow, revenue history),
- a SQLite repository and an authenticated operations facade (api.py).

Agency Ledger separates computation (engine, dre, projections),
configuration (TOML) and presentation (CLI), making it suitable for
scripting and for use behind a web transport.


Version: 0.1.0

Usage:
    agency-ledger --help
"""

__all__ = ["api", "billing", "dre", "engine", "ledger_service", "projections"]

__version__ = "0.1.0"
