# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for Agency Ledger.

This module turns the results of the engine, the DRE and the other services
into pandas DataFrames ready for display or CSV export by the CLI:

- metrics_to_dataframe:  one row per cash-basis metric,
- dre_to_dataframe:      the income statement as ordered lines with a level,
                         mirroring the usual DRE layout,
- records_to_dataframe:  any list of dataclass rows (clients, installments,
                         charges, ...) with a stable column order.

Amounts are rounded to the requested number of decimals; percentages are
kept in their own ``unit`` so that the CLI can format them separately.
"""

from dataclasses import asdict, fields, is_dataclass
from typing import Optional

import pandas as pd

from .dre import DREResult
from .engine import Metrics

_METRIC_LABELS: list[tuple[str, str, str]] = [
    ("total_mrr", "Total MRR", "amount"),
    ("setup_revenue", "Setup revenue", "amount"),
    ("services_revenue", "Services revenue", "amount"),
    ("total_revenue", "Total revenue", "amount"),
    ("total_costs", "Total costs", "amount"),
    ("total_expenses", "Total expenses", "amount"),
    ("profit", "Profit", "amount"),
    ("profit_margin", "Profit margin", "percent"),
    ("active_clients_count", "Active clients", "count"),
]

# (level, key, label, unit); level 0 lines are the statement subtotals.
_DRE_LINES: list[tuple[int, str, str, str]] = [
    (0, "gross_revenue", "Gross revenue", "amount"),
    (1, "mrr", "MRR", "amount"),
    (1, "setup", "Setup (signed contracts)", "amount"),
    (1, "services", "Services", "amount"),
    (1, "taxes", "(-) Taxes", "amount"),
    (0, "net_revenue", "Net revenue", "amount"),
    (1, "costs", "(-) Costs", "amount"),
    (0, "gross_margin", "Gross margin", "amount"),
    (1, "expenses", "(-) Operating expenses", "amount"),
    (0, "net_income", "Net income", "amount"),
    (2, "tax_rate", "Tax rate", "percent"),
    (2, "gross_margin_percent", "Gross margin %", "percent"),
    (2, "net_income_percent", "Net income %", "percent"),
]


def metrics_to_dataframe(metrics: Metrics, decimals: int = 2) -> pd.DataFrame:
    """Return a DataFrame with columns key, label, value, unit."""
    rows: list[dict[str, object]] = []
    for key, label, unit in _METRIC_LABELS:
        value = getattr(metrics, key)
        if unit != "count":
            value = round(float(value), decimals)
        rows.append({"key": key, "label": label, "value": value, "unit": unit})
    return pd.DataFrame(rows, columns=["key", "label", "value", "unit"])


def dre_to_dataframe(result: DREResult, decimals: int = 2) -> pd.DataFrame:
    """
    Return the income statement as display lines.

    Columns: display_order, level, key, name, unit, amount. display_order is
    numbered 10, 20, 30, ... in statement order.
    """
    rows: list[dict[str, object]] = []
    for idx, (level, key, name, unit) in enumerate(_DRE_LINES, start=1):
        rows.append(
            {
                "display_order": idx * 10,
                "level": level,
                "key": key,
                "name": name,
                "unit": unit,
                "amount": round(float(getattr(result, key)), decimals),
            }
        )
    return pd.DataFrame(rows)


def records_to_dataframe(
    records: list, columns: Optional[list[str]] = None
) -> pd.DataFrame:
    """
    Convert a list of dataclass instances into a DataFrame.

    When the list is empty, the DataFrame still carries the expected columns
    (from `columns`, if given) so that CSV exports keep their header.
    Nested dataclasses are flattened to their dict form by ``asdict``.
    """
    if not records:
        return pd.DataFrame(columns=columns or [])

    first = records[0]
    if not is_dataclass(first):
        raise TypeError(f"Expected dataclass rows, got {type(first).__name__}")

    df = pd.DataFrame([asdict(r) for r in records])
    ordered = columns or [f.name for f in fields(first)]
    return df[[c for c in ordered if c in df.columns]]


def mapping_to_dataframe(
    values: dict[str, float], key_name: str, decimals: int = 2
) -> pd.DataFrame:
    """Turn a {key: amount} mapping into a two-column DataFrame."""
    return pd.DataFrame(
        [{key_name: k, "amount": round(float(v), decimals)} for k, v in values.items()],
        columns=[key_name, "amount"],
    )
