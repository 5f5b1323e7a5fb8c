from datetime import date

import pandas as pd
import pytest

from agency_ledger.billing import BillingCharge
from agency_ledger.dre import DREResult
from agency_ledger.engine import Metrics
from agency_ledger.views import (
    dre_to_dataframe,
    mapping_to_dataframe,
    metrics_to_dataframe,
    records_to_dataframe,
)


def _is_step10(seq) -> bool:
    return all(b - a == 10 for a, b in zip(seq, seq[1:]))


@pytest.fixture(scope="module")
def dre_result() -> DREResult:
    return DREResult(
        year=2025,
        month=4,
        gross_revenue=6000.0,
        mrr=3000.0,
        setup=2000.0,
        services=1000.0,
        tax_rate=11.0,
        taxes=660.0,
        net_revenue=5340.0,
        costs=500.0,
        gross_margin=4840.0,
        expenses=1200.0,
        net_income=3640.0,
        gross_margin_percent=80.67,
        net_income_percent=60.67,
    )


def test_dre_to_dataframe_levels_and_order(dre_result) -> None:
    df = dre_to_dataframe(dre_result)

    assert list(df.columns) == ["display_order", "level", "key", "name", "unit", "amount"]
    # display_order must be strictly increasing by steps of 10
    assert _is_step10(df["display_order"].tolist())
    assert df["display_order"].iloc[0] == 10

    # Subtotals are level 0 and appear in statement order
    subtotals = df.loc[df["level"] == 0, "key"].tolist()
    assert subtotals == ["gross_revenue", "net_revenue", "gross_margin", "net_income"]

    amounts = dict(zip(df["key"], df["amount"]))
    assert amounts["net_income"] == 3640.0
    assert amounts["taxes"] == 660.0
    assert set(df.loc[df["unit"] == "percent", "key"]) == {
        "tax_rate",
        "gross_margin_percent",
        "net_income_percent",
    }


def test_metrics_to_dataframe_keeps_counts_as_integers() -> None:
    metrics = Metrics(
        total_mrr=1000.456,
        setup_revenue=0.0,
        services_revenue=0.0,
        total_revenue=1000.456,
        total_costs=0.0,
        total_expenses=0.0,
        profit=1000.456,
        profit_margin=100.0,
        active_clients_count=3,
    )

    df = metrics_to_dataframe(metrics, decimals=1)

    assert list(df.columns) == ["key", "label", "value", "unit"]
    assert len(df) == 9
    values = dict(zip(df["key"], df["value"]))
    assert values["total_mrr"] == 1000.5
    assert values["active_clients_count"] == 3
    assert df.loc[df["key"] == "profit_margin", "unit"].item() == "percent"


def test_records_to_dataframe_keeps_field_order() -> None:
    charges = [
        BillingCharge(1, "Acme", 1500.0, date(2025, 3, 17), days_until_due=2),
        BillingCharge(2, "Globex", 800.0, date(2025, 3, 20), days_until_due=5),
    ]

    df = records_to_dataframe(charges)

    assert list(df.columns)[:4] == ["client_id", "client_name", "amount", "due_date"]
    assert df["amount"].sum() == pytest.approx(2300.0)

    subset = records_to_dataframe(charges, columns=["client_name", "missing", "amount"])
    assert list(subset.columns) == ["client_name", "amount"]


def test_records_to_dataframe_empty_and_invalid_rows() -> None:
    empty = records_to_dataframe([], columns=["client_id", "amount"])
    assert empty.empty
    assert list(empty.columns) == ["client_id", "amount"]

    with pytest.raises(TypeError):
        records_to_dataframe([{"client_id": 1}])


def test_mapping_to_dataframe() -> None:
    df = mapping_to_dataframe({"office": 1050.456, "team": 10.0}, "category")
    expected = pd.DataFrame(
        {"category": ["office", "team"], "amount": [1050.46, 10.0]}
    )
    pd.testing.assert_frame_equal(df, expected)

    assert list(mapping_to_dataframe({}, "month").columns) == ["month", "amount"]
