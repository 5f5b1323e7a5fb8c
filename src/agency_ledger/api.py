# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Operations facade for Agency Ledger.

`LedgerAPI` exposes every query and mutation of the application as plain
Python methods returning plain data (dicts, lists, strings, numbers). It is
the surface a transport layer (HTTP, RPC, ...) would wrap; no such layer is
shipped here.

Authentication
--------------
Each call receives a `RequestContext`. Every operation except
`system_health` is decorated with `protected` and raises `UnauthorizedError`
when the context carries no authenticated user.

Data exchange
-------------
- Dates are accepted as `datetime.date` or ISO ``YYYY-MM-DD`` strings and
  returned as ISO strings.
- Stored monetary values (``mrr``, ``amount``, ``total_amount``,
  ``installment_amount``) are accepted as numbers or fixed-point strings and
  returned as 2-decimal fixed-point strings (e.g. ``"333.33"``). Computed
  report figures (metrics, DRE, projections) are returned as floats rounded
  to 2 decimals.
"""

import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, is_dataclass
from datetime import date, datetime
from functools import wraps
from typing import Any, Optional

from . import billing, dre, engine, ledger_service, projections, reconciler, scheduler
from .config import AppConfig
from .db import (
    NewClient,
    NewExpense,
    NewService,
    NewSetupContract,
    format_amount,
    get_client_by_id,
    get_company_settings,
    get_expense_by_id,
    get_service_by_id,
    get_setup_contract_by_id,
    list_clients,
    list_expenses,
    list_expenses_by_category,
    list_expenses_by_period,
    list_installments_by_contract_id,
    list_services,
    list_services_by_client_id,
    list_setup_contracts,
    list_setup_contracts_by_client_id,
)
from .exceptions import NotFoundError, UnauthorizedError, ValidationError
from .periods import validate_month

logger = logging.getLogger(__name__)

_MONEY_FIELDS = frozenset({"mrr", "amount", "total_amount", "installment_amount"})
_DATE_FIELDS = frozenset(
    {
        "start_date",
        "due_date",
        "paid_date",
        "service_date",
        "expense_date",
        "recurring_start_date",
        "recurring_end_date",
    }
)


@dataclass(frozen=True)
class RequestContext:
    """Caller identity; `user` is None for anonymous callers."""

    user: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.user)


def protected(func):
    """Reject calls whose RequestContext has no authenticated user."""

    @wraps(func)
    def wrapper(self, ctx, *args, **kwargs):
        if ctx is None or not ctx.is_authenticated:
            logger.warning("Rejected unauthenticated call to %s", func.__name__)
            raise UnauthorizedError(func.__name__)
        return func(self, ctx, *args, **kwargs)

    return wrapper


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def _as_date(value: Any, field: str) -> Optional[date]:
    if value is None or (isinstance(value, date) and not isinstance(value, datetime)):
        return value
    if isinstance(value, datetime):
        return value.date()
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValidationError(
            f"Invalid {field}: {value!r}, expected YYYY-MM-DD."
        ) from exc


def _coerce_dates(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        key: _as_date(value, key) if key in _DATE_FIELDS else value
        for key, value in data.items()
    }


def _build(cls, data: Mapping[str, Any]):
    """Instantiate an insert dataclass from request data."""
    allowed = {f.name for f in fields(cls)}
    unknown = set(data).difference(allowed)
    if unknown:
        raise ValidationError(
            f"Unknown field(s) for {cls.__name__}: {', '.join(sorted(unknown))}"
        )
    try:
        return cls(**_coerce_dates(data))
    except TypeError as exc:
        raise ValidationError(f"Missing field(s) for {cls.__name__}: {exc}") from exc


def _plain_value(key: Optional[str], value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if key in _MONEY_FIELDS and isinstance(value, (int, float)):
        return format_amount(value)
    if isinstance(value, Mapping):
        return {k: _plain_value(k, v) for k, v in value.items()}
    if isinstance(value, (list, tuple, frozenset, set)):
        return [_plain_value(key, v) for v in value]
    return value


def to_plain(obj: Any, *, money_as_text: bool = True) -> Any:
    """
    Convert service results into plain data.

    Dataclasses become dicts, dates become ISO strings and, when
    `money_as_text` is set, stored monetary fields become fixed-point strings.
    """
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    if not money_as_text:
        return _plain_report(obj)
    if isinstance(obj, Mapping):
        return {k: _plain_value(k, v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_plain(item) for item in obj]
    return _plain_value(None, obj)


def _plain_report(obj: Any) -> Any:
    if is_dataclass(obj) and not isinstance(obj, type):
        obj = asdict(obj)
    if isinstance(obj, Mapping):
        return {k: _plain_report(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain_report(item) for item in obj]
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    return obj


def _found(record, entity: str, record_id: int):
    if record is None:
        raise NotFoundError(entity, record_id)
    return to_plain(record)


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class LedgerAPI:
    """All Agency Ledger operations, bound to one application configuration."""

    def __init__(self, app_config: AppConfig):
        self.config = app_config
        self.db = app_config.database

    # -- system ------------------------------------------------------------

    def system_health(self, ctx: Optional[RequestContext] = None) -> dict[str, Any]:
        """Public liveness check."""
        return {"ok": True, "database": self.db is not None}

    # -- clients -----------------------------------------------------------

    @protected
    def list_clients(self, ctx: RequestContext) -> list[dict]:
        return to_plain(list_clients(self.db))

    @protected
    def get_client(self, ctx: RequestContext, client_id: int) -> dict:
        return _found(get_client_by_id(self.db, client_id), "Client", client_id)

    @protected
    def create_client(self, ctx: RequestContext, data: Mapping[str, Any]) -> dict:
        client = ledger_service.create_client(self.db, _build(NewClient, data))
        return to_plain(client)

    @protected
    def update_client(
        self, ctx: RequestContext, client_id: int, changes: Mapping[str, Any]
    ) -> dict:
        client = ledger_service.update_client(self.db, client_id, _coerce_dates(changes))
        return to_plain(client)

    @protected
    def delete_client(self, ctx: RequestContext, client_id: int) -> dict:
        ledger_service.delete_client(self.db, client_id)
        return {"success": True}

    @protected
    def client_details(self, ctx: RequestContext, client_id: int) -> dict:
        details = ledger_service.client_details(self.db, client_id)
        plain = to_plain(details)
        plain["summary"] = _plain_report(details.summary)
        return plain

    # -- setup contracts and installments ----------------------------------

    @protected
    def list_setup_contracts(self, ctx: RequestContext) -> list[dict]:
        return to_plain(list_setup_contracts(self.db))

    @protected
    def get_setup_contract(self, ctx: RequestContext, contract_id: int) -> dict:
        return _found(
            get_setup_contract_by_id(self.db, contract_id), "Setup contract", contract_id
        )

    @protected
    def list_setup_contracts_by_client(
        self, ctx: RequestContext, client_id: int
    ) -> list[dict]:
        return to_plain(list_setup_contracts_by_client_id(self.db, client_id))

    @protected
    def create_setup_contract(self, ctx: RequestContext, data: Mapping[str, Any]) -> dict:
        payload = dict(data)
        payload.setdefault("installment_amount", None)
        contract = ledger_service.create_setup_contract(
            self.db,
            _build(NewSetupContract, payload),
            day_overflow=self.config.day_overflow,
        )
        return to_plain(contract)

    @protected
    def update_setup_contract(
        self, ctx: RequestContext, contract_id: int, changes: Mapping[str, Any]
    ) -> dict:
        contract = ledger_service.update_setup_contract(
            self.db, contract_id, _coerce_dates(changes)
        )
        return to_plain(contract)

    @protected
    def delete_setup_contract(self, ctx: RequestContext, contract_id: int) -> dict:
        ledger_service.delete_setup_contract(self.db, contract_id)
        return {"success": True}

    @protected
    def list_installments_by_contract(
        self, ctx: RequestContext, contract_id: int
    ) -> list[dict]:
        return to_plain(list_installments_by_contract_id(self.db, contract_id))

    @protected
    def mark_installment_paid(
        self, ctx: RequestContext, installment_id: int, paid_date: Any
    ) -> dict:
        installment = ledger_service.mark_installment_paid(
            self.db, installment_id, _as_date(paid_date, "paid_date")
        )
        return to_plain(installment)

    @protected
    def mark_installment_pending(self, ctx: RequestContext, installment_id: int) -> dict:
        return to_plain(ledger_service.mark_installment_pending(self.db, installment_id))

    @protected
    def regenerate_all_installments(
        self, ctx: RequestContext, *, confirm: bool = False
    ) -> dict:
        report = scheduler.regenerate_all_installments(
            self.db,
            confirm=confirm,
            day_overflow=self.config.day_overflow,
            actor=ctx.user,
        )
        return to_plain(report)

    # -- services ----------------------------------------------------------

    @protected
    def list_services(self, ctx: RequestContext) -> list[dict]:
        return to_plain(list_services(self.db))

    @protected
    def get_service(self, ctx: RequestContext, service_id: int) -> dict:
        return _found(get_service_by_id(self.db, service_id), "Service", service_id)

    @protected
    def list_services_by_client(self, ctx: RequestContext, client_id: int) -> list[dict]:
        return to_plain(list_services_by_client_id(self.db, client_id))

    @protected
    def create_service(self, ctx: RequestContext, data: Mapping[str, Any]) -> dict:
        return to_plain(ledger_service.create_service(self.db, _build(NewService, data)))

    @protected
    def update_service(
        self, ctx: RequestContext, service_id: int, changes: Mapping[str, Any]
    ) -> dict:
        service = ledger_service.update_service(
            self.db, service_id, _coerce_dates(changes)
        )
        return to_plain(service)

    @protected
    def delete_service(self, ctx: RequestContext, service_id: int) -> dict:
        ledger_service.delete_service(self.db, service_id)
        return {"success": True}

    # -- expenses ----------------------------------------------------------

    @protected
    def list_expenses(self, ctx: RequestContext) -> list[dict]:
        return to_plain(list_expenses(self.db))

    @protected
    def get_expense(self, ctx: RequestContext, expense_id: int) -> dict:
        return _found(get_expense_by_id(self.db, expense_id), "Expense", expense_id)

    @protected
    def list_expenses_by_category(self, ctx: RequestContext, category: str) -> list[dict]:
        return to_plain(list_expenses_by_category(self.db, category))

    @protected
    def list_expenses_by_period(
        self, ctx: RequestContext, year: int, month: int
    ) -> list[dict]:
        validate_month(year, month)
        return to_plain(list_expenses_by_period(self.db, year, month))

    @protected
    def create_expense(self, ctx: RequestContext, data: Mapping[str, Any]) -> dict:
        return to_plain(ledger_service.create_expense(self.db, _build(NewExpense, data)))

    @protected
    def update_expense(
        self, ctx: RequestContext, expense_id: int, changes: Mapping[str, Any]
    ) -> dict:
        expense = ledger_service.update_expense(
            self.db, expense_id, _coerce_dates(changes)
        )
        return to_plain(expense)

    @protected
    def delete_expense(self, ctx: RequestContext, expense_id: int) -> dict:
        written = ledger_service.delete_expense(self.db, expense_id)
        return {"success": True, "history_rows": written}

    # -- metrics -----------------------------------------------------------

    @protected
    def reconcile_client_statuses(self, ctx: RequestContext) -> dict:
        report = reconciler.reconcile_client_statuses(
            self.db, override_paused=self.config.override_paused
        )
        return {
            "overdue_client_ids": sorted(report.overdue_client_ids),
            "changes": [asdict(change) for change in report.changes],
        }

    @protected
    def metrics_by_date_range(self, ctx: RequestContext, start: Any, end: Any) -> dict:
        metrics = engine.aggregate_period(
            self.db,
            _as_date(start, "start"),
            _as_date(end, "end"),
            override_paused=self.config.override_paused,
        )
        return to_plain(metrics, money_as_text=False)

    @protected
    def metrics_monthly(self, ctx: RequestContext, year: int, month: int) -> dict:
        metrics = engine.aggregate_month(
            self.db, year, month, override_paused=self.config.override_paused
        )
        return to_plain(metrics, money_as_text=False)

    @protected
    def future_projection(self, ctx: RequestContext) -> dict:
        return to_plain(projections.future_projection(self.db), money_as_text=False)

    @protected
    def setup_pending_breakdown(self, ctx: RequestContext, year: int, month: int) -> dict:
        breakdown = projections.setup_pending_breakdown(self.db, year, month)
        return to_plain(breakdown, money_as_text=False)

    @protected
    def alerts(self, ctx: RequestContext) -> list[dict]:
        return to_plain(projections.installment_alerts(self.db), money_as_text=False)

    @protected
    def cash_flow_projection(self, ctx: RequestContext) -> list[dict]:
        return to_plain(projections.cash_flow_projection(self.db), money_as_text=False)

    @protected
    def revenue_history(self, ctx: RequestContext) -> list[dict]:
        return to_plain(projections.revenue_history(self.db), money_as_text=False)

    @protected
    def expenses_by_category(self, ctx: RequestContext, year: int, month: int) -> dict:
        return projections.expenses_by_category(self.db, year, month)

    # -- billing -----------------------------------------------------------

    @protected
    def upcoming_charges(
        self, ctx: RequestContext, days_ahead: Optional[int] = None
    ) -> list[dict]:
        if days_ahead is None:
            days_ahead = self.config.upcoming_days
        return to_plain(billing.upcoming_charges(self.db, days_ahead))

    @protected
    def overdue_charges(self, ctx: RequestContext) -> list[dict]:
        return to_plain(billing.overdue_charges(self.db))

    # -- DRE and settings --------------------------------------------------

    @protected
    def dre_monthly(self, ctx: RequestContext, year: int, month: int) -> dict:
        result = dre.monthly_income_statement(
            self.db,
            year,
            month,
            default_tax_rate=self.config.default_tax_rate,
            override_paused=self.config.override_paused,
        )
        return to_plain(result, money_as_text=False)

    @protected
    def get_settings(self, ctx: RequestContext) -> dict:
        settings = get_company_settings(self.db)
        return {
            "tax_rate": dre.effective_tax_rate(settings, self.config.default_tax_rate),
            "currency": self.config.currency,
        }

    @protected
    def update_tax_rate(self, ctx: RequestContext, tax_rate: float) -> dict:
        settings = dre.update_tax_rate(self.db, tax_rate)
        logger.info("Tax rate updated by %s", ctx.user)
        return to_plain(settings, money_as_text=False)
