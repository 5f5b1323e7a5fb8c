from datetime import date

import pytest

import agency_ledger.db as db
from agency_ledger.db import (
    DatabaseConfig,
    NewClient,
    NewExpense,
    NewExpenseHistory,
    NewService,
    NewSetupContract,
    ScheduledInstallment,
    count_installments,
    delete_client,
    delete_expense_with_history,
    format_amount,
    get_client_by_id,
    get_company_settings,
    get_expense_by_id,
    init_database,
    insert_client,
    insert_expense,
    insert_service,
    insert_setup_contract_with_schedule,
    list_clients,
    list_expense_history_by_date_range,
    list_expenses_by_date_range,
    list_expenses_by_period,
    list_installments_by_contract_id,
    list_installments_by_date_range,
    list_overdue_installments,
    list_services_by_date_range,
    list_setup_contracts,
    parse_amount,
    replace_contract_installments,
    update_client,
    update_installment,
    upsert_company_settings,
)
from agency_ledger.exceptions import (
    DatabaseUnavailableError,
    NotFoundError,
    ValidationError,
)


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """Helper to build a DatabaseConfig pointing to a temporary SQLite file."""
    db_path = tmp_path / "test_db.sqlite"
    return DatabaseConfig(engine="sqlite", path=db_path)


def _client(cfg, name="Acme", mrr=1500.0, **kwargs) -> int:
    return insert_client(
        cfg, NewClient(name=name, mrr=mrr, start_date=date(2025, 1, 1), **kwargs)
    )


def _contract(cfg, client_id, schedule) -> int:
    return insert_setup_contract_with_schedule(
        cfg,
        NewSetupContract(
            client_id=client_id,
            total_amount=sum(s.amount for s in schedule),
            installments=len(schedule),
            installment_amount=schedule[0].amount,
            start_date=schedule[0].due_date,
        ),
        schedule,
    )


def test_init_database_creates_file_and_schema(tmp_path):
    """init_database should create the SQLite file and an empty schema."""
    cfg = make_tmp_db_cfg(tmp_path)

    assert not cfg.path.exists()
    init_database(cfg)
    assert cfg.path.exists()

    assert list_clients(cfg) == []
    assert count_installments(cfg) == 0
    assert get_company_settings(cfg) is None


def test_init_database_rejects_unknown_engine(tmp_path):
    cfg = DatabaseConfig(engine="postgres", path=tmp_path / "x.sqlite")
    with pytest.raises(ValueError):
        init_database(cfg)


def test_client_round_trip_keeps_amounts_in_cents(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id = _client(cfg, mrr="1234.56", billing_day_of_month=10)

    client = get_client_by_id(cfg, client_id)
    assert client is not None
    assert client.name == "Acme"
    assert client.mrr == 1234.56
    assert client.status == "active"
    assert client.billing_day_of_month == 10
    assert client.start_date == date(2025, 1, 1)
    assert client.created_at is not None


def test_update_client_rejects_unknown_fields_and_missing_rows(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id = _client(cfg)

    update_client(cfg, client_id, {"mrr": 2000, "notes": "renegotiated"})
    client = get_client_by_id(cfg, client_id)
    assert client.mrr == 2000.0
    assert client.notes == "renegotiated"

    with pytest.raises(ValidationError):
        update_client(cfg, client_id, {"nmae": "typo"})
    with pytest.raises(ValidationError):
        update_client(cfg, client_id, {})
    with pytest.raises(NotFoundError):
        update_client(cfg, 999, {"name": "Ghost"})


def test_date_range_queries_are_inclusive(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id = _client(cfg)
    schedule = [
        ScheduledInstallment(1, 100.0, date(2025, 1, 31)),
        ScheduledInstallment(2, 100.0, date(2025, 2, 1)),
        ScheduledInstallment(3, 100.0, date(2025, 2, 28)),
        ScheduledInstallment(4, 100.0, date(2025, 3, 1)),
    ]
    _contract(cfg, client_id, schedule)

    rows = list_installments_by_date_range(cfg, date(2025, 2, 1), date(2025, 2, 28))
    assert [r.installment_number for r in rows] == [2, 3]

    insert_service(
        cfg,
        NewService(client_id, "Audit", 500.0, date(2025, 2, 28), status="completed"),
    )
    insert_service(cfg, NewService(client_id, "Draft", 300.0, date(2025, 2, 10)))
    services = list_services_by_date_range(cfg, date(2025, 2, 1), date(2025, 2, 28))
    assert len(services) == 2
    completed = list_services_by_date_range(
        cfg, date(2025, 2, 1), date(2025, 2, 28), status="completed"
    )
    assert [s.description for s in completed] == ["Audit"]


def test_overdue_installments_exclude_paid_and_today(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id = _client(cfg)
    contract_id = _contract(
        cfg,
        client_id,
        [
            ScheduledInstallment(1, 100.0, date(2025, 1, 10)),
            ScheduledInstallment(2, 100.0, date(2025, 2, 10)),
            ScheduledInstallment(3, 100.0, date(2025, 3, 10)),
        ],
    )
    first = list_installments_by_contract_id(cfg, contract_id)[0]
    update_installment(cfg, first.id, {"status": "paid", "paid_date": date(2025, 1, 9)})

    overdue = list_overdue_installments(cfg, today=date(2025, 3, 10))
    assert [i.installment_number for i in overdue] == [2]


def test_update_installment_can_clear_paid_date(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    contract_id = _contract(
        cfg, _client(cfg), [ScheduledInstallment(1, 100.0, date(2025, 1, 10))]
    )
    inst = list_installments_by_contract_id(cfg, contract_id)[0]

    update_installment(cfg, inst.id, {"status": "paid", "paid_date": date(2025, 1, 5)})
    update_installment(cfg, inst.id, {"status": "pending", "paid_date": None})

    inst = list_installments_by_contract_id(cfg, contract_id)[0]
    assert inst.status == "pending"
    assert inst.paid_date is None


def test_replace_contract_installments_swaps_schedule(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    contract_id = _contract(
        cfg,
        _client(cfg),
        [
            ScheduledInstallment(1, 50.0, date(2025, 1, 1)),
            ScheduledInstallment(2, 50.0, date(2025, 2, 1)),
        ],
    )

    deleted, created = replace_contract_installments(
        cfg,
        contract_id,
        [ScheduledInstallment(n, 25.0, date(2025, n, 1)) for n in range(1, 5)],
    )

    assert (deleted, created) == (2, 4)
    assert len(list_installments_by_contract_id(cfg, contract_id)) == 4


def test_deleting_client_cascades_to_contracts_and_installments(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    client_id = _client(cfg)
    _contract(cfg, client_id, [ScheduledInstallment(1, 100.0, date(2025, 1, 1))])

    delete_client(cfg, client_id)

    assert list_setup_contracts(cfg) == []
    assert count_installments(cfg) == 0
    with pytest.raises(NotFoundError):
        delete_client(cfg, client_id)


def test_expenses_by_period_and_range(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    insert_expense(cfg, NewExpense("Hosting", 80.0, "infrastructure", "cost", date(2025, 3, 1)))
    insert_expense(cfg, NewExpense("Rent", 900.0, "office", "expense", date(2025, 3, 31)))
    insert_expense(cfg, NewExpense("Ads", 200.0, "marketing", "expense", date(2025, 4, 1)))

    march = list_expenses_by_period(cfg, 2025, 3)
    assert {e.description for e in march} == {"Hosting", "Rent"}
    assert march[0].expense_date >= march[1].expense_date

    ranged = list_expenses_by_date_range(cfg, date(2025, 3, 31), date(2025, 4, 1))
    assert [e.description for e in ranged] == ["Rent", "Ads"]


def test_delete_expense_with_history_rolls_back_when_expense_is_missing(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    history = [
        NewExpenseHistory(42, "Ghost", 10.0, "other", "expense", date(2025, 1, 1))
    ]

    with pytest.raises(NotFoundError):
        delete_expense_with_history(cfg, 42, history)

    rows = list_expense_history_by_date_range(cfg, date(2025, 1, 1), date(2025, 12, 31))
    assert rows == []


def test_delete_expense_with_history_writes_rows_and_deletes(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)
    expense_id = insert_expense(
        cfg, NewExpense("Rent", 900.0, "office", "expense", date(2025, 3, 15))
    )

    written = delete_expense_with_history(
        cfg,
        expense_id,
        [NewExpenseHistory(expense_id, "Rent", 900.0, "office", "expense", date(2025, 3, 1))],
    )

    assert written == 1
    assert get_expense_by_id(cfg, expense_id) is None
    (row,) = list_expense_history_by_date_range(cfg, date(2025, 3, 1), date(2025, 3, 31))
    assert row.expense_id == expense_id
    assert row.type == "expense"
    assert row.amount == 900.0


def test_upsert_company_settings_keeps_a_single_row(tmp_path):
    cfg = make_tmp_db_cfg(tmp_path)

    first = upsert_company_settings(cfg, 11.0)
    second = upsert_company_settings(cfg, 6.5)

    assert first.id == second.id
    assert second.tax_rate == 6.5
    assert get_company_settings(cfg).tax_rate == 6.5


def test_upsert_company_settings_locks_before_reading(tmp_path, monkeypatch):
    """The write lock is taken before the existence check."""
    cfg = make_tmp_db_cfg(tmp_path)
    init_database(cfg)
    statements: list[str] = []
    connect = db._connect

    def traced_connect(db_cfg):
        conn = connect(db_cfg)
        conn.set_trace_callback(statements.append)
        return conn

    monkeypatch.setattr(db, "_connect", traced_connect)

    upsert_company_settings(cfg, 9.0)

    begin = next(i for i, s in enumerate(statements) if s.startswith("BEGIN IMMEDIATE"))
    select = next(i for i, s in enumerate(statements) if "SELECT id FROM company_settings" in s)
    assert begin < select


def test_reads_degrade_and_writes_fail_without_database():
    assert list_clients(None) == []
    assert get_client_by_id(None, 1) is None
    assert list_installments_by_date_range(None, date(2025, 1, 1), date(2025, 1, 31)) == []
    assert get_company_settings(None) is None
    assert count_installments(None) == 0

    with pytest.raises(DatabaseUnavailableError):
        insert_client(None, NewClient(name="X", mrr=1.0, start_date=date(2025, 1, 1)))
    with pytest.raises(DatabaseUnavailableError):
        upsert_company_settings(None, 10.0)


def test_amount_helpers():
    assert format_amount(1000 / 3) == "333.33"
    assert format_amount(2.675) == "2.68"
    assert parse_amount("1500.50") == 1500.5
    assert parse_amount(" 10 ") == 10.0
    with pytest.raises(ValidationError):
        parse_amount("ten")
    with pytest.raises(ValidationError):
        parse_amount("NaN")
