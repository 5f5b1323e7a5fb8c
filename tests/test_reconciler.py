from datetime import date

import pytest

import agency_ledger.periods as periods
import agency_ledger.reconciler as reconciler
from agency_ledger.db import (
    DatabaseConfig,
    NewClient,
    NewSetupContract,
    ScheduledInstallment,
    get_client_by_id,
    insert_client,
    insert_setup_contract_with_schedule,
    list_installments_by_contract_id,
    update_installment,
)


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """Helper to build a DatabaseConfig pointing to a temporary SQLite file."""
    db_path = tmp_path / "test_db.sqlite"
    return DatabaseConfig(engine="sqlite", path=db_path)


def _client_with_installment(cfg, due, status="active") -> tuple[int, int]:
    client_id = insert_client(
        cfg,
        NewClient(name="Acme", mrr=500.0, start_date=date(2025, 1, 1), status=status),
    )
    contract_id = insert_setup_contract_with_schedule(
        cfg,
        NewSetupContract(
            client_id=client_id,
            total_amount=300.0,
            installments=1,
            installment_amount=300.0,
            start_date=due,
        ),
        [ScheduledInstallment(1, 300.0, due)],
    )
    inst = list_installments_by_contract_id(cfg, contract_id)[0]
    return client_id, inst.id


@pytest.mark.parametrize(
    "current, has_overdue, override, expected",
    [
        ("active", True, True, "overdue"),
        ("active", False, True, "active"),
        ("overdue", False, True, "active"),
        ("overdue", True, True, "overdue"),
        ("paused", True, True, "overdue"),
        ("paused", True, False, "paused"),
        ("paused", False, True, "paused"),
        ("inactive", True, True, "inactive"),
        ("inactive", False, True, "inactive"),
    ],
)
def test_next_client_status_transitions(current, has_overdue, override, expected):
    assert (
        reconciler.next_client_status(current, has_overdue, override_paused=override)
        == expected
    )


def test_installment_due_today_is_not_overdue(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id, _ = _client_with_installment(cfg, date(2025, 3, 10))

    report = reconciler.reconcile_client_statuses(cfg, today=date(2025, 3, 10))

    assert report.overdue_client_ids == frozenset()
    assert report.changes == ()
    assert get_client_by_id(cfg, client_id).status == "active"


def test_unpaid_past_installment_marks_client_overdue(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id, _ = _client_with_installment(cfg, date(2025, 3, 10))

    report = reconciler.reconcile_client_statuses(cfg, today=date(2025, 3, 11))

    assert report.overdue_client_ids == frozenset({client_id})
    assert report.changes == (reconciler.StatusChange(client_id, "active", "overdue"),)
    assert get_client_by_id(cfg, client_id).status == "overdue"


def test_paying_the_installment_restores_active(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id, inst_id = _client_with_installment(cfg, date(2025, 3, 10))
    reconciler.reconcile_client_statuses(cfg, today=date(2025, 3, 20))

    update_installment(cfg, inst_id, {"status": "paid", "paid_date": date(2025, 3, 20)})
    reconciler.reconcile_client_statuses(cfg, today=date(2025, 3, 20))

    assert get_client_by_id(cfg, client_id).status == "active"


def test_reconcile_is_idempotent(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    _client_with_installment(cfg, date(2025, 3, 10))

    first = reconciler.reconcile_client_statuses(cfg, today=date(2025, 4, 1))
    second = reconciler.reconcile_client_statuses(cfg, today=date(2025, 4, 1))

    assert len(first.changes) == 1
    assert second.changes == ()


def test_paused_client_respects_override_flag(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id, _ = _client_with_installment(cfg, date(2025, 3, 10), status="paused")

    reconciler.reconcile_client_statuses(
        cfg, today=date(2025, 4, 1), override_paused=False
    )
    assert get_client_by_id(cfg, client_id).status == "paused"

    reconciler.reconcile_client_statuses(cfg, today=date(2025, 4, 1))
    assert get_client_by_id(cfg, client_id).status == "overdue"


def test_inactive_client_is_never_touched(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id, _ = _client_with_installment(cfg, date(2025, 3, 10), status="inactive")

    report = reconciler.reconcile_client_statuses(cfg, today=date(2025, 4, 1))

    assert client_id in report.overdue_client_ids
    assert report.changes == ()
    assert get_client_by_id(cfg, client_id).status == "inactive"


def test_reconcile_defaults_to_current_date(tmp_path, monkeypatch):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id, _ = _client_with_installment(cfg, date(2025, 3, 10))
    monkeypatch.setattr(periods, "current_date", lambda: date(2025, 3, 9))

    reconciler.reconcile_client_statuses(cfg)

    assert get_client_by_id(cfg, client_id).status == "active"


def test_reconcile_without_database_is_a_no_op():
    report = reconciler.reconcile_client_statuses(None, today=date(2025, 1, 1))
    assert report.overdue_client_ids == frozenset()
    assert report.changes == ()
