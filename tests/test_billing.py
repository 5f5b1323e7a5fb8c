from datetime import date

import pytest

import agency_ledger.billing as billing
import agency_ledger.periods as periods
from agency_ledger.db import DatabaseConfig, NewClient, insert_client
from agency_ledger.exceptions import ValidationError


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """Helper to build a DatabaseConfig pointing to a temporary SQLite file."""
    db_path = tmp_path / "test_db.sqlite"
    return DatabaseConfig(engine="sqlite", path=db_path)


def _client(cfg, name, day, mrr=1000.0, status="active") -> int:
    return insert_client(
        cfg,
        NewClient(
            name=name,
            mrr=mrr,
            start_date=date(2025, 1, 1),
            status=status,
            billing_day_of_month=day,
        ),
    )


def test_next_and_last_billing_dates():
    today = date(2025, 12, 20)
    assert billing.next_billing_date(20, today) == date(2025, 12, 20)
    assert billing.next_billing_date(5, today) == date(2026, 1, 5)
    assert billing.last_billing_date(20, today) == date(2025, 12, 20)
    assert billing.last_billing_date(25, date(2025, 1, 10)) == date(2024, 12, 25)


def test_upcoming_charges_within_window_sorted_by_due_date(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    later = _client(cfg, "Later", 2, mrr=300.0)
    today_id = _client(cfg, "Today", 28, mrr=500.0)
    _client(cfg, "Far", 15)
    _client(cfg, "Paused", 28, status="paused")
    _client(cfg, "NoDay", None)

    charges = billing.upcoming_charges(cfg, days_ahead=7, today=date(2025, 3, 28))

    assert [c.client_id for c in charges] == [today_id, later]
    assert charges[0].days_until_due == 0
    assert charges[0].amount == 500.0
    assert charges[1].due_date == date(2025, 4, 2)
    assert charges[1].days_until_due == 5
    assert charges[1].days_overdue is None


def test_billing_day_today_is_not_overdue(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    _client(cfg, "Today", 10)

    assert billing.overdue_charges(cfg, today=date(2025, 3, 10)) == []


def test_overdue_charges_most_overdue_first(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    recent = _client(cfg, "Recent", 8)
    old = _client(cfg, "Old", 1)
    _client(cfg, "Gone", 1, status="inactive")

    charges = billing.overdue_charges(cfg, today=date(2025, 3, 10))

    assert [c.client_id for c in charges] == [old, recent]
    assert charges[0].days_overdue == 9
    assert charges[0].due_date == date(2025, 3, 1)
    assert charges[1].days_overdue == 2


def test_billing_uses_current_date_by_default(tmp_path, monkeypatch):
    cfg = make_tmp_db_cfg(tmp_path)
    _client(cfg, "Soon", 12)
    monkeypatch.setattr(periods, "current_date", lambda: date(2025, 6, 10))

    (charge,) = billing.upcoming_charges(cfg)

    assert charge.due_date == date(2025, 6, 12)


def test_billing_without_database_is_empty():
    assert billing.upcoming_charges(None, today=date(2025, 1, 1)) == []
    assert billing.overdue_charges(None, today=date(2025, 1, 1)) == []


def test_upcoming_charges_rejects_negative_window(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    _client(cfg, "Acme", 10)

    with pytest.raises(ValidationError):
        billing.upcoming_charges(cfg, days_ahead=-5, today=date(2025, 1, 5))

    (charge,) = billing.upcoming_charges(cfg, days_ahead=0, today=date(2025, 1, 10))
    assert charge.days_until_due == 0
