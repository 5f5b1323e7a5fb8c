# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for Agency Ledger.

This module wires together the main building blocks of Agency Ledger:

- global configuration (database, tax rate, billing and display options),
- the SQLite repository,
- the cash-basis engine, the accrual DRE and the projections,
- the ledger services (clients, installments, expenses),
- view helpers (tabular rendering).

The CLI is intentionally thin: it does not implement financial logic itself.
It orchestrates the underlying modules based on command-line arguments and
the configuration file.


Commands
--------

``dashboard``
    Cash-basis metrics for a period (``--period``, ``--year/--month`` or
    ``--from/--to``), followed by installment alerts.

``dre``
    Accrual-basis income statement for a calendar month.

``billing upcoming|overdue``
    Billing-day charges forecast.

``installments list|pay|unpay|regenerate-all``
    Installment schedule of a contract and payment tracking.
    ``regenerate-all`` deletes and rebuilds every schedule; it requires
    ``--yes``.

``expenses list|add|delete|by-category``
    Expense management. Deleting an expense writes its history first.

``clients list|show|add``
    Client management and client details.

``reconcile``
    Recompute derived client statuses from overdue installments.

``settings show|set-tax-rate``
    Company settings.

``projections future|setup-pending|cash-flow|revenue-history``
    Month-by-month dashboard views.


Display modes and output
------------------------

The main configuration defines a default display mode
(``display.mode = "table" | "csv" | "both"``), which can be overridden with
``--display-mode``. In CSV mode, files are written to ``--output DIR`` or to
``data/output`` with a timestamp-based name (e.g.
``dashboard_YYYY-MM-DD-HH-MM-SS.csv``).


Logging
-------

Log records go to stderr. The level comes from ``[logging].level`` in the
configuration and can be overridden with ``--log-level``.


Examples
--------

    agency-ledger dashboard --period mtd
    agency-ledger dre --year 2025 --month 3 --display-mode both
    agency-ledger billing upcoming --days 10
    agency-ledger installments regenerate-all --yes
"""

import argparse
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__, billing, dre, engine, ledger_service, projections
from .config import DISPLAY_MODES, LOG_LEVELS, AppConfig, load_app_config
from .db import (
    EXPENSE_CATEGORIES,
    EXPENSE_TYPES,
    NewClient,
    NewExpense,
    get_company_settings,
    init_database,
    list_clients,
    list_expenses,
    list_expenses_by_category,
    list_expenses_by_period,
    list_installments_by_contract_id,
)
from .exceptions import LedgerError
from .periods import current_date, determine_period_from_args
from .reconciler import reconcile_client_statuses
from .scheduler import regenerate_all_installments
from .views import (
    dre_to_dataframe,
    mapping_to_dataframe,
    metrics_to_dataframe,
    records_to_dataframe,
)

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="agency-ledger",
        description=(
            "Agency Ledger - Financial management backend for small agencies. "
            "Tracks recurring clients, setup contracts, services and expenses, "
            "and renders cash-basis dashboards and a monthly DRE."
        ),
    )

    # Generic options
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of agency_ledger and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. If omitted, "
            "'agency_ledger_config.toml' in the current directory is used."
        ),
    )
    ap.add_argument(
        "--display-mode",
        choices=DISPLAY_MODES,
        help="Override display.mode from the configuration.",
    )
    ap.add_argument(
        "--output",
        dest="output_dir",
        help="Directory for CSV output (default: data/output).",
    )
    ap.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        help="Override logging.level from the configuration.",
    )

    subparsers = ap.add_subparsers(dest="command")

    # dashboard
    dashboard = subparsers.add_parser("dashboard", help="Cash-basis metrics.")
    _add_period_arguments(dashboard)

    # dre
    dre_parser = subparsers.add_parser("dre", help="Monthly accrual income statement.")
    dre_parser.add_argument("--year", type=int)
    dre_parser.add_argument("--month", type=int)

    # billing
    billing_parser = subparsers.add_parser("billing", help="Billing-day charges.")
    billing_sub = billing_parser.add_subparsers(dest="billing_command", required=True)
    upcoming = billing_sub.add_parser("upcoming", help="Charges due soon.")
    upcoming.add_argument(
        "--days",
        type=int,
        help="Look-ahead window in days (default: billing.upcoming_days).",
    )
    billing_sub.add_parser("overdue", help="Charges past their billing day.")

    # installments
    inst_parser = subparsers.add_parser("installments", help="Installment schedules.")
    inst_sub = inst_parser.add_subparsers(dest="installments_command", required=True)
    inst_list = inst_sub.add_parser("list", help="List a contract's installments.")
    inst_list.add_argument("--contract", type=int, required=True)
    inst_pay = inst_sub.add_parser("pay", help="Mark an installment as paid.")
    inst_pay.add_argument("installment_id", type=int)
    inst_pay.add_argument("--date", dest="paid_date", help="YYYY-MM-DD (default: today)")
    inst_unpay = inst_sub.add_parser("unpay", help="Mark an installment as pending.")
    inst_unpay.add_argument("installment_id", type=int)
    regen = inst_sub.add_parser(
        "regenerate-all",
        help="Delete and rebuild every installment schedule (destructive).",
    )
    regen.add_argument(
        "--yes",
        action="store_true",
        help="Confirm the destructive regeneration.",
    )

    # expenses
    exp_parser = subparsers.add_parser("expenses", help="Expenses.")
    exp_sub = exp_parser.add_subparsers(dest="expenses_command", required=True)
    exp_list = exp_sub.add_parser("list", help="List expenses.")
    exp_list.add_argument("--year", type=int)
    exp_list.add_argument("--month", type=int)
    exp_list.add_argument("--category", choices=EXPENSE_CATEGORIES)
    exp_add = exp_sub.add_parser("add", help="Create an expense.")
    exp_add.add_argument("--description", required=True)
    exp_add.add_argument("--amount", required=True)
    exp_add.add_argument("--category", choices=EXPENSE_CATEGORIES, required=True)
    exp_add.add_argument(
        "--type", dest="expense_type", choices=EXPENSE_TYPES, default="expense"
    )
    exp_add.add_argument("--date", dest="expense_date")
    exp_add.add_argument("--recurring", action="store_true")
    exp_add.add_argument("--start", dest="recurring_start_date")
    exp_add.add_argument("--end", dest="recurring_end_date")
    exp_add.add_argument("--notes")
    exp_delete = exp_sub.add_parser("delete", help="Historize and delete an expense.")
    exp_delete.add_argument("expense_id", type=int)
    exp_cat = exp_sub.add_parser("by-category", help="Monthly totals per category.")
    exp_cat.add_argument("--year", type=int)
    exp_cat.add_argument("--month", type=int)

    # clients
    cli_parser = subparsers.add_parser("clients", help="Clients.")
    cli_sub = cli_parser.add_subparsers(dest="clients_command", required=True)
    cli_sub.add_parser("list", help="List clients.")
    cli_show = cli_sub.add_parser("show", help="Client details and summary.")
    cli_show.add_argument("client_id", type=int)
    cli_add = cli_sub.add_parser("add", help="Create a client.")
    cli_add.add_argument("--name", required=True)
    cli_add.add_argument("--mrr", required=True)
    cli_add.add_argument("--start-date", dest="start_date", required=True)
    cli_add.add_argument("--billing-day", dest="billing_day_of_month", type=int)
    cli_add.add_argument("--email")
    cli_add.add_argument("--company")

    # reconcile
    subparsers.add_parser("reconcile", help="Recompute derived client statuses.")

    # settings
    settings_parser = subparsers.add_parser("settings", help="Company settings.")
    settings_sub = settings_parser.add_subparsers(dest="settings_command", required=True)
    settings_sub.add_parser("show", help="Show company settings.")
    tax = settings_sub.add_parser("set-tax-rate", help="Set the tax rate (0-100).")
    tax.add_argument("rate", type=float)

    # projections
    proj_parser = subparsers.add_parser("projections", help="Dashboard projections.")
    proj_sub = proj_parser.add_subparsers(dest="projections_command", required=True)
    proj_sub.add_parser("future", help="Pending installments until end of year + 2.")
    pending = proj_sub.add_parser("setup-pending", help="Pending setup breakdown.")
    pending.add_argument("--year", type=int)
    pending.add_argument("--month", type=int)
    proj_sub.add_parser("cash-flow", help="Three-month cash flow projection.")
    proj_sub.add_parser("revenue-history", help="Revenue of the last six months.")

    return ap


def _add_period_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--period",
        choices=["this-month", "mtd", "ytd", "last-month"],
        help="Named reporting period (default: this month).",
    )
    parser.add_argument("--year", type=int)
    parser.add_argument("--month", type=int)
    parser.add_argument("--from", dest="from_date", help="Custom start, YYYY-MM-DD.")
    parser.add_argument("--to", dest="to_date", help="Custom end, YYYY-MM-DD.")


def _parse_optional_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an optional CLI date argument (YYYY-MM-DD).

    Raises
    ------
    SystemExit
        If the date format is invalid.
    """
    if value is None:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        msg = f"Invalid date format: {value!r}. Expected YYYY-MM-DD."
        raise SystemExit(msg) from exc


def _year_month(args: argparse.Namespace) -> tuple[int, int]:
    today = current_date()
    return (args.year or today.year, args.month or today.month)


def _render(
    df: pd.DataFrame,
    title: str,
    name: str,
    display_mode: str,
    output_dir: Optional[str],
) -> None:
    """Print a DataFrame and/or write it as CSV, depending on the display mode."""
    if display_mode in {"table", "both"}:
        print()
        print(f"=== {title} ===")
        if df.empty:
            print("(no rows)")
        else:
            print(df.to_string(index=False))

    if display_mode in {"csv", "both"}:
        out = Path(output_dir) if output_dir else Path("data/output")
        out.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y-%m-%d-%H-%M-%S")
        path = out / f"{name}_{timestamp}.csv"
        df.to_csv(path, index=False)
        print(f"Wrote {path} ({len(df)} rows)")


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _handle_dashboard(args: argparse.Namespace, config: AppConfig, mode: str) -> None:
    period = determine_period_from_args(args)
    print(
        f"Applied period: {period.label} "
        f"({period.start.isoformat()} → {period.end.isoformat()})"
    )

    metrics = engine.aggregate_period(
        config.database,
        period.start,
        period.end,
        override_paused=config.override_paused,
    )
    _render(
        metrics_to_dataframe(metrics, config.amount_decimals),
        f"Dashboard ({config.currency})",
        "dashboard",
        mode,
        args.output_dir,
    )

    for alert in projections.installment_alerts(config.database):
        print(f"[{alert.type}] {alert.title}: {alert.message}")


def _handle_dre(args: argparse.Namespace, config: AppConfig, mode: str) -> None:
    year, month = _year_month(args)
    result = dre.monthly_income_statement(
        config.database,
        year,
        month,
        default_tax_rate=config.default_tax_rate,
        override_paused=config.override_paused,
    )
    _render(
        dre_to_dataframe(result, config.amount_decimals),
        f"DRE {year}-{month:02d} ({config.currency})",
        "dre",
        mode,
        args.output_dir,
    )


def _handle_billing(args: argparse.Namespace, config: AppConfig, mode: str) -> None:
    if args.billing_command == "upcoming":
        days = args.days if args.days is not None else config.upcoming_days
        charges = billing.upcoming_charges(config.database, days)
        title = f"Upcoming charges (next {days} days)"
    else:
        charges = billing.overdue_charges(config.database)
        title = "Overdue charges"

    _render(records_to_dataframe(charges), title, "billing", mode, args.output_dir)


def _handle_installments(
    args: argparse.Namespace, config: AppConfig, mode: str
) -> None:
    command = args.installments_command

    if command == "list":
        rows = list_installments_by_contract_id(config.database, args.contract)
        _render(
            records_to_dataframe(rows),
            f"Installments of contract #{args.contract}",
            "installments",
            mode,
            args.output_dir,
        )
        return

    if command == "pay":
        paid_date = _parse_optional_date(args.paid_date) or current_date()
        inst = ledger_service.mark_installment_paid(
            config.database, args.installment_id, paid_date
        )
        print(f"Installment #{inst.id} marked as paid on {paid_date.isoformat()}.")
        return

    if command == "unpay":
        inst = ledger_service.mark_installment_pending(
            config.database, args.installment_id
        )
        print(f"Installment #{inst.id} marked as pending.")
        return

    # regenerate-all
    report = regenerate_all_installments(
        config.database,
        confirm=args.yes,
        day_overflow=config.day_overflow,
        actor="cli",
    )
    print(
        f"Regenerated {report.contracts} contract(s): "
        f"{report.installments_deleted} installment(s) deleted, "
        f"{report.installments_created} created."
    )


def _handle_expenses(args: argparse.Namespace, config: AppConfig, mode: str) -> None:
    command = args.expenses_command

    if command == "list":
        if args.month is not None:
            year, month = _year_month(args)
            rows = list_expenses_by_period(config.database, year, month)
        elif args.category:
            rows = list_expenses_by_category(config.database, args.category)
        else:
            rows = list_expenses(config.database)
        _render(records_to_dataframe(rows), "Expenses", "expenses", mode, args.output_dir)
        return

    if command == "add":
        expense = ledger_service.create_expense(
            config.database,
            NewExpense(
                description=args.description,
                amount=args.amount,
                category=args.category,
                type=args.expense_type,
                expense_date=_parse_optional_date(args.expense_date),
                recurring=args.recurring,
                recurring_start_date=_parse_optional_date(args.recurring_start_date),
                recurring_end_date=_parse_optional_date(args.recurring_end_date),
                notes=args.notes,
            ),
        )
        print(f"Created expense #{expense.id} ({expense.description}).")
        return

    if command == "delete":
        written = ledger_service.delete_expense(config.database, args.expense_id)
        print(f"Deleted expense #{args.expense_id} ({written} history row(s) written).")
        return

    # by-category
    year, month = _year_month(args)
    totals = projections.expenses_by_category(config.database, year, month)
    _render(
        mapping_to_dataframe(totals, "category", config.amount_decimals),
        f"Expenses by category {year}-{month:02d}",
        "expenses_by_category",
        mode,
        args.output_dir,
    )


def _handle_clients(args: argparse.Namespace, config: AppConfig, mode: str) -> None:
    command = args.clients_command

    if command == "list":
        _render(
            records_to_dataframe(list_clients(config.database)),
            "Clients",
            "clients",
            mode,
            args.output_dir,
        )
        return

    if command == "show":
        details = ledger_service.client_details(config.database, args.client_id)
        client = details.client
        print(f"Client #{client.id}: {client.name} [{client.status}]")
        print(f"  MRR:            {details.summary.mrr:.2f}")
        print(f"  Paid setup:     {details.summary.total_paid_setup:.2f}")
        print(f"  Pending setup:  {details.summary.total_pending_setup:.2f}")
        print(f"  Services:       {details.summary.total_services:.2f}")
        print(f"  Total revenue:  {details.summary.total_revenue:.2f}")
        _render(
            records_to_dataframe(details.installments),
            "Installments",
            f"client_{client.id}_installments",
            mode,
            args.output_dir,
        )
        return

    # add
    client = ledger_service.create_client(
        config.database,
        NewClient(
            name=args.name,
            mrr=args.mrr,
            start_date=_parse_optional_date(args.start_date),
            billing_day_of_month=args.billing_day_of_month,
            email=args.email,
            company=args.company,
        ),
    )
    print(f"Created client #{client.id} ({client.name}).")


def _handle_reconcile(config: AppConfig) -> None:
    report = reconcile_client_statuses(
        config.database, override_paused=config.override_paused
    )
    print(f"Clients with overdue installments: {len(report.overdue_client_ids)}")
    if not report.changes:
        print("No status change.")
    for change in report.changes:
        print(f"  client #{change.client_id}: {change.previous} -> {change.current}")


def _handle_settings(args: argparse.Namespace, config: AppConfig) -> None:
    if args.settings_command == "set-tax-rate":
        settings = dre.update_tax_rate(config.database, args.rate)
        print(f"Tax rate set to {settings.tax_rate:.2f}%.")
        return

    settings = get_company_settings(config.database)
    rate = dre.effective_tax_rate(settings, config.default_tax_rate)
    source = "company settings" if settings is not None else "configuration default"
    print(f"Tax rate: {rate:.2f}% ({source})")
    print(f"Currency: {config.currency}")


def _handle_projections(
    args: argparse.Namespace, config: AppConfig, mode: str
) -> None:
    command = args.projections_command

    if command == "future":
        result = projections.future_projection(config.database)
        print(f"Total pending installments: {result.total_pending:.2f}")
        _render(
            mapping_to_dataframe(result.by_month, "month", config.amount_decimals),
            "Pending installments by month",
            "future_projection",
            mode,
            args.output_dir,
        )
    elif command == "setup-pending":
        year, month = _year_month(args)
        breakdown = projections.setup_pending_breakdown(config.database, year, month)
        _render(
            records_to_dataframe([breakdown]),
            f"Pending setup from {year}-{month:02d}",
            "setup_pending",
            mode,
            args.output_dir,
        )
    elif command == "cash-flow":
        _render(
            records_to_dataframe(projections.cash_flow_projection(config.database)),
            "Cash flow projection",
            "cash_flow",
            mode,
            args.output_dir,
        )
    else:
        _render(
            records_to_dataframe(projections.revenue_history(config.database)),
            "Revenue history",
            "revenue_history",
            mode,
            args.output_dir,
        )


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the Agency Ledger CLI.

    This function parses command-line arguments, loads the application
    configuration, configures logging, initializes the database and
    dispatches to the selected command. Domain errors are reported on stderr
    with a non-zero exit status.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"agency_ledger version {__version__}")
        return

    if args.command is None:
        parser.print_help()
        return

    # 1) Load application configuration
    try:
        config = load_app_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))

    # 2) Logging: CLI flag overrides the configured level
    logging.basicConfig(
        level=args.log_level or config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # 3) Initialize the database (create file and schema if needed)
    if config.database is not None:
        init_database(config.database)
    else:
        print("Warning: database disabled in the configuration, results are empty.")

    display_mode = args.display_mode or config.display_mode

    try:
        if args.command == "dashboard":
            _handle_dashboard(args, config, display_mode)
        elif args.command == "dre":
            _handle_dre(args, config, display_mode)
        elif args.command == "billing":
            _handle_billing(args, config, display_mode)
        elif args.command == "installments":
            _handle_installments(args, config, display_mode)
        elif args.command == "expenses":
            _handle_expenses(args, config, display_mode)
        elif args.command == "clients":
            _handle_clients(args, config, display_mode)
        elif args.command == "reconcile":
            _handle_reconcile(config)
        elif args.command == "settings":
            _handle_settings(args, config)
        elif args.command == "projections":
            _handle_projections(args, config, display_mode)
    except LedgerError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        raise SystemExit(f"Error [{exc.code}]: {exc}") from exc


if __name__ == "__main__":
    main()
