from datetime import date

import pytest

import agency_ledger.cli as cli
from agency_ledger.db import (
    DatabaseConfig,
    NewExpense,
    NewSetupContract,
    ScheduledInstallment,
    get_company_settings,
    insert_expense,
    insert_setup_contract_with_schedule,
    list_clients,
    list_expense_history_by_date_range,
)


def make_config_file(tmp_path, extra: str = "") -> str:
    """Write a minimal TOML config pointing to a temporary database."""
    cfg_file = tmp_path / "agency_ledger_config.toml"
    cfg_file.write_text(
        '[database]\npath = "test_db.sqlite"\n\n[company]\ncurrency = "BRL"\n' + extra,
        encoding="utf-8",
    )
    return str(cfg_file)


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """DatabaseConfig matching the database of make_config_file."""
    return DatabaseConfig(engine="sqlite", path=(tmp_path / "test_db.sqlite").resolve())


def run(tmp_path, *argv) -> None:
    cli.main(["--config", make_config_file(tmp_path), *argv])


def test_version_flag(capsys):
    cli.main(["--version"])
    assert "agency_ledger version" in capsys.readouterr().out


def test_missing_config_file_is_a_usage_error(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--config", str(tmp_path / "nope.toml"), "reconcile"])
    assert excinfo.value.code == 2


def test_clients_add_and_list(tmp_path, capsys):
    run(tmp_path, "clients", "add", "--name", "Acme", "--mrr", "1500", "--start-date", "2025-01-01")
    out = capsys.readouterr().out
    assert "Created client #1 (Acme)." in out

    run(tmp_path, "clients", "list")
    out = capsys.readouterr().out
    assert "=== Clients ===" in out
    assert "Acme" in out

    (client,) = list_clients(make_tmp_db_cfg(tmp_path))
    assert client.mrr == 1500.0


def test_validation_errors_exit_with_code(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        run(
            tmp_path,
            "clients", "add", "--name", "Acme", "--mrr", "-5", "--start-date", "2025-01-01",
        )
    assert "VALIDATION_ERROR" in str(excinfo.value.code)


def test_dashboard_for_custom_period(tmp_path, capsys):
    run(tmp_path, "clients", "add", "--name", "Acme", "--mrr", "1200", "--start-date", "2025-01-01")
    capsys.readouterr()

    run(tmp_path, "dashboard", "--from", "2025-03-01", "--to", "2025-03-31")

    out = capsys.readouterr().out
    assert "Applied period: Custom period" in out
    assert "Total MRR" in out
    assert "Profit margin" in out


def test_dre_csv_output(tmp_path, capsys):
    out_dir = tmp_path / "out"

    run(
        tmp_path,
        "--display-mode", "csv",
        "--output", str(out_dir),
        "dre", "--year", "2025", "--month", "3",
    )

    files = list(out_dir.glob("dre_*.csv"))
    assert len(files) == 1
    assert "net_income" in files[0].read_text(encoding="utf-8")
    assert "=== DRE" not in capsys.readouterr().out


def test_regenerate_all_requires_yes(tmp_path, capsys):
    cfg = make_tmp_db_cfg(tmp_path)
    run(tmp_path, "clients", "add", "--name", "Acme", "--mrr", "0", "--start-date", "2025-01-01")
    insert_setup_contract_with_schedule(
        cfg,
        NewSetupContract(1, 200.0, 2, 100.0, date(2025, 1, 5)),
        [
            ScheduledInstallment(1, 100.0, date(2025, 1, 5)),
            ScheduledInstallment(2, 100.0, date(2025, 2, 5)),
        ],
    )
    capsys.readouterr()

    with pytest.raises(SystemExit) as excinfo:
        run(tmp_path, "installments", "regenerate-all")
    assert "CONFIRMATION_REQUIRED" in str(excinfo.value.code)

    run(tmp_path, "installments", "regenerate-all", "--yes")
    out = capsys.readouterr().out
    assert "Regenerated 1 contract(s): 2 installment(s) deleted, 2 created." in out


def test_expenses_delete_writes_history(tmp_path, capsys):
    cfg = make_tmp_db_cfg(tmp_path)
    run(tmp_path, "reconcile")
    expense_id = insert_expense(
        cfg, NewExpense("Ads", 200.0, "marketing", "expense", date(2025, 3, 12))
    )
    capsys.readouterr()

    run(tmp_path, "expenses", "delete", str(expense_id))

    assert "(1 history row(s) written)" in capsys.readouterr().out
    (row,) = list_expense_history_by_date_range(cfg, date(2025, 3, 1), date(2025, 3, 1))
    assert row.description == "Ads"


def test_settings_set_and_show(tmp_path, capsys):
    run(tmp_path, "settings", "show")
    assert "Tax rate: 11.00% (configuration default)" in capsys.readouterr().out

    run(tmp_path, "settings", "set-tax-rate", "8.5")
    run(tmp_path, "settings", "show")
    out = capsys.readouterr().out
    assert "Tax rate set to 8.50%." in out
    assert "Tax rate: 8.50% (company settings)" in out
    assert get_company_settings(make_tmp_db_cfg(tmp_path)).tax_rate == 8.5


def test_reconcile_reports_no_change_on_empty_database(tmp_path, capsys):
    run(tmp_path, "reconcile")
    out = capsys.readouterr().out
    assert "Clients with overdue installments: 0" in out
    assert "No status change." in out
