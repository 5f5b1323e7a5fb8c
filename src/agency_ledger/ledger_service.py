# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
High-level services for ledger mutations and client reporting.

This module sits between:
- the low-level database helpers in `db.py`, and
- user-facing layers such as the operations API (`api.py`) and the CLI.

Responsibilities
----------------
1) Validated CRUD
   - Clients: enum checks, billing day of month in 1..28, non-negative MRR.
   - Setup contracts: created together with their full installment schedule
     (see `scheduler.generate_schedule`) in a single transaction.
   - Services and expenses: enum checks, positive amounts, mandatory dates.

2) Installment payments
   - Mark an installment as paid on a given date, or back to pending.

3) Expense historization
   - Before an expense is deleted, snapshot rows are written to the
     append-only ``expense_history`` ledger so that the accrual income
     statement keeps counting it for the months it covered. The history
     insert and the delete are applied as one transaction.

4) Client details
   - A client with its contracts, services, installments and a revenue
     summary.

Design notes
------------
- Validation failures raise `ValidationError` with a descriptive message;
  nothing is silently coerced.
- Requests for a missing record by id raise `NotFoundError`.
- Every mutation requires a configured database (`DatabaseUnavailableError`
  otherwise), while reads degrade to empty results.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from datetime import date
from typing import Any, Optional

from .db import (
    CLIENT_STATUSES,
    CONTRACT_STATUSES,
    EXPENSE_CATEGORIES,
    EXPENSE_TYPES,
    PAYMENT_STATUSES,
    SERVICE_STATUSES,
    Client,
    DatabaseConfig,
    Expense,
    Installment,
    NewClient,
    NewExpense,
    NewExpenseHistory,
    NewService,
    NewSetupContract,
    Service,
    SetupContract,
    parse_amount,
)
from .db import (
    delete_client as _db_delete_client,
)
from .db import (
    delete_expense_with_history as _db_delete_expense_with_history,
)
from .db import (
    delete_service as _db_delete_service,
)
from .db import (
    delete_setup_contract as _db_delete_setup_contract,
)
from .db import (
    get_client_by_id as _db_get_client_by_id,
)
from .db import (
    get_expense_by_id as _db_get_expense_by_id,
)
from .db import (
    get_installment_by_id as _db_get_installment_by_id,
)
from .db import (
    get_service_by_id as _db_get_service_by_id,
)
from .db import (
    get_setup_contract_by_id as _db_get_setup_contract_by_id,
)
from .db import (
    insert_client as _db_insert_client,
)
from .db import (
    insert_expense as _db_insert_expense,
)
from .db import (
    insert_service as _db_insert_service,
)
from .db import (
    insert_setup_contract_with_schedule as _db_insert_setup_contract_with_schedule,
)
from .db import (
    list_installments_by_contract_id as _db_list_installments_by_contract_id,
)
from .db import (
    list_services_by_client_id as _db_list_services_by_client_id,
)
from .db import (
    list_setup_contracts_by_client_id as _db_list_setup_contracts_by_client_id,
)
from .db import (
    update_client as _db_update_client,
)
from .db import (
    update_expense as _db_update_expense,
)
from .db import (
    update_installment as _db_update_installment,
)
from .db import (
    update_service as _db_update_service,
)
from .db import (
    update_setup_contract as _db_update_setup_contract,
)
from .exceptions import NotFoundError, ValidationError
from .periods import iter_month_starts
from .scheduler import generate_schedule

logger = logging.getLogger(__name__)

# Open-ended recurring expenses are historized through December 31st of
# their start year + HISTORY_HORIZON_YEARS.
HISTORY_HORIZON_YEARS = 10

_EXPENSE_FIELDS = frozenset(f.name for f in fields(Expense)) - {"id"}


@dataclass(frozen=True)
class ClientSummary:
    """Revenue summary shown on the client details page."""

    mrr: float
    total_paid_setup: float
    total_pending_setup: float
    total_services: float
    total_revenue: float


@dataclass(frozen=True)
class ClientDetails:
    client: Client
    contracts: list[SetupContract]
    services: list[Service]
    installments: list[Installment]
    summary: ClientSummary


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _check_choice(value: Any, choices: tuple[str, ...], field: str) -> None:
    if value not in choices:
        raise ValidationError(
            f"Invalid {field}: {value!r}. Expected one of: {', '.join(choices)}."
        )


def _check_amount(value: Any, field: str, *, allow_zero: bool = False) -> float:
    amount = parse_amount(value)
    if amount < 0 or (amount == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise ValidationError(f"{field} must be {qualifier}, got {value!r}.")
    return amount


def _check_text(value: Any, field: str) -> str:
    text = "" if value is None else str(value).strip()
    if not text:
        raise ValidationError(f"{field} must not be empty.")
    return text


def _check_billing_day(value: Any) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 28:
        raise ValidationError(
            f"billing_day_of_month must be an integer between 1 and 28, got {value!r}."
        )


def _check_positive_int(value: Any, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be an integer >= 1, got {value!r}.")


def _check_date(value: Any, field: str) -> None:
    if not isinstance(value, date):
        raise ValidationError(f"{field} must be a date, got {value!r}.")


def _check_client_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    checked = dict(changes)
    if "name" in checked:
        checked["name"] = _check_text(checked["name"], "name")
    if "mrr" in checked:
        checked["mrr"] = _check_amount(checked["mrr"], "mrr", allow_zero=True)
    if "status" in checked:
        _check_choice(checked["status"], CLIENT_STATUSES, "client status")
    if "billing_day_of_month" in checked:
        _check_billing_day(checked["billing_day_of_month"])
    if "start_date" in checked:
        _check_date(checked["start_date"], "start_date")
    return checked


def _check_service_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    checked = dict(changes)
    if "description" in checked:
        checked["description"] = _check_text(checked["description"], "description")
    if "amount" in checked:
        checked["amount"] = _check_amount(checked["amount"], "amount")
    if "service_date" in checked:
        _check_date(checked["service_date"], "service_date")
    if "status" in checked:
        _check_choice(checked["status"], SERVICE_STATUSES, "service status")
    if "payment_status" in checked:
        _check_choice(checked["payment_status"], PAYMENT_STATUSES, "payment status")
    return checked


def _check_expense_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    checked = dict(changes)
    if "description" in checked:
        checked["description"] = _check_text(checked["description"], "description")
    if "amount" in checked:
        checked["amount"] = _check_amount(checked["amount"], "amount")
    if "category" in checked:
        _check_choice(checked["category"], EXPENSE_CATEGORIES, "expense category")
    if "type" in checked:
        _check_choice(checked["type"], EXPENSE_TYPES, "expense type")
    for field in ("expense_date", "recurring_start_date", "recurring_end_date"):
        if checked.get(field) is not None:
            _check_date(checked[field], field)
    return checked


def _check_expense_dates(expense: NewExpense | Expense) -> None:
    """An expense must stay historizable: dated, or recurring with a sane range."""
    if expense.recurring and expense.recurring_start_date is not None:
        if (
            expense.recurring_end_date is not None
            and expense.recurring_end_date < expense.recurring_start_date
        ):
            raise ValidationError(
                "recurring_end_date must not be before recurring_start_date."
            )
    elif expense.expense_date is None:
        raise ValidationError("expense_date is required for non-recurring expenses.")


def _require_client(cfg: Optional[DatabaseConfig], client_id: int) -> Client:
    client = _db_get_client_by_id(cfg, client_id)
    if client is None:
        raise NotFoundError("Client", client_id)
    return client


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def create_client(cfg: Optional[DatabaseConfig], new_client: NewClient) -> Client:
    """Validate and insert a client, then return the stored row."""
    _check_text(new_client.name, "name")
    mrr = _check_amount(new_client.mrr, "mrr", allow_zero=True)
    _check_choice(new_client.status, CLIENT_STATUSES, "client status")
    _check_billing_day(new_client.billing_day_of_month)
    _check_date(new_client.start_date, "start_date")
    new_client = replace(new_client, mrr=mrr)

    client_id = _db_insert_client(cfg, new_client)
    logger.info("Created client #%s (%s)", client_id, new_client.name)
    return _require_client(cfg, client_id)


def update_client(
    cfg: Optional[DatabaseConfig], client_id: int, changes: Mapping[str, Any]
) -> Client:
    _db_update_client(cfg, client_id, _check_client_changes(changes))
    return _require_client(cfg, client_id)


def delete_client(cfg: Optional[DatabaseConfig], client_id: int) -> None:
    """Delete a client together with its contracts, installments and services."""
    _db_delete_client(cfg, client_id)
    logger.info("Deleted client #%s", client_id)


# ---------------------------------------------------------------------------
# Setup contracts
# ---------------------------------------------------------------------------


def create_setup_contract(
    cfg: Optional[DatabaseConfig],
    new_contract: NewSetupContract,
    *,
    day_overflow: str = "roll-forward",
) -> SetupContract:
    """
    Create a setup contract and its complete installment schedule.

    ``new_contract.installment_amount`` is informational only: it is stored
    as given, or computed as total / installments when it is 0 or negative.
    The schedule itself always splits the total evenly.

    Raises:
        NotFoundError: if the client does not exist.
        ValidationError: on invalid amounts, counts, status or dates.
    """
    _check_choice(new_contract.status, CONTRACT_STATUSES, "contract status")
    _check_date(new_contract.start_date, "start_date")
    _check_positive_int(new_contract.installments, "installments")
    total = _check_amount(new_contract.total_amount, "total_amount")
    _require_client(cfg, new_contract.client_id)

    schedule = generate_schedule(
        total,
        new_contract.installments,
        new_contract.start_date,
        day_overflow=day_overflow,
    )

    installment_amount = new_contract.installment_amount
    if installment_amount is not None:
        installment_amount = parse_amount(installment_amount)
    if installment_amount is None or installment_amount <= 0:
        installment_amount = total / new_contract.installments
    new_contract = replace(
        new_contract, total_amount=total, installment_amount=installment_amount
    )

    contract_id = _db_insert_setup_contract_with_schedule(cfg, new_contract, schedule)
    logger.info(
        "Created setup contract #%s for client #%s with %s installment(s)",
        contract_id,
        new_contract.client_id,
        len(schedule),
    )

    contract = _db_get_setup_contract_by_id(cfg, contract_id)
    if contract is None:
        raise NotFoundError("Setup contract", contract_id)
    return contract


def update_setup_contract(
    cfg: Optional[DatabaseConfig], contract_id: int, changes: Mapping[str, Any]
) -> SetupContract:
    """
    Apply a partial update to a contract.

    The installment schedule is NOT rebuilt: changing the total, the count or
    the start date only takes effect on installments after an explicit
    ``installments regenerate-all``.
    """
    checked = dict(changes)
    if "status" in checked:
        _check_choice(checked["status"], CONTRACT_STATUSES, "contract status")
    if "total_amount" in checked:
        checked["total_amount"] = _check_amount(checked["total_amount"], "total_amount")
    if "installment_amount" in checked:
        checked["installment_amount"] = _check_amount(
            checked["installment_amount"], "installment_amount"
        )
    if "installments" in checked:
        _check_positive_int(checked["installments"], "installments")
    if "start_date" in checked:
        _check_date(checked["start_date"], "start_date")
    if "client_id" in checked:
        _require_client(cfg, checked["client_id"])

    _db_update_setup_contract(cfg, contract_id, checked)

    contract = _db_get_setup_contract_by_id(cfg, contract_id)
    if contract is None:
        raise NotFoundError("Setup contract", contract_id)
    return contract


def delete_setup_contract(cfg: Optional[DatabaseConfig], contract_id: int) -> None:
    _db_delete_setup_contract(cfg, contract_id)
    logger.info("Deleted setup contract #%s", contract_id)


# ---------------------------------------------------------------------------
# Installments
# ---------------------------------------------------------------------------


def mark_installment_paid(
    cfg: Optional[DatabaseConfig], installment_id: int, paid_date: date
) -> Installment:
    """Record an installment as fully paid on `paid_date`."""
    _check_date(paid_date, "paid_date")
    _db_update_installment(
        cfg, installment_id, {"status": "paid", "paid_date": paid_date}
    )
    installment = _db_get_installment_by_id(cfg, installment_id)
    if installment is None:
        raise NotFoundError("Installment", installment_id)
    return installment


def mark_installment_pending(
    cfg: Optional[DatabaseConfig], installment_id: int
) -> Installment:
    """Revert an installment to pending and clear its paid date."""
    _db_update_installment(
        cfg, installment_id, {"status": "pending", "paid_date": None}
    )
    installment = _db_get_installment_by_id(cfg, installment_id)
    if installment is None:
        raise NotFoundError("Installment", installment_id)
    return installment


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def create_service(cfg: Optional[DatabaseConfig], new_service: NewService) -> Service:
    _check_text(new_service.description, "description")
    amount = _check_amount(new_service.amount, "amount")
    _check_date(new_service.service_date, "service_date")
    _check_choice(new_service.status, SERVICE_STATUSES, "service status")
    _check_choice(new_service.payment_status, PAYMENT_STATUSES, "payment status")
    _require_client(cfg, new_service.client_id)
    new_service = replace(new_service, amount=amount)

    service_id = _db_insert_service(cfg, new_service)
    service = _db_get_service_by_id(cfg, service_id)
    if service is None:
        raise NotFoundError("Service", service_id)
    return service


def update_service(
    cfg: Optional[DatabaseConfig], service_id: int, changes: Mapping[str, Any]
) -> Service:
    _db_update_service(cfg, service_id, _check_service_changes(changes))
    service = _db_get_service_by_id(cfg, service_id)
    if service is None:
        raise NotFoundError("Service", service_id)
    return service


def delete_service(cfg: Optional[DatabaseConfig], service_id: int) -> None:
    _db_delete_service(cfg, service_id)


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------


def create_expense(cfg: Optional[DatabaseConfig], new_expense: NewExpense) -> Expense:
    """
    Validate and insert an expense.

    A recurring expense with a start date is dated on that start date. Any
    other expense must carry an explicit ``expense_date``.
    """
    _check_text(new_expense.description, "description")
    amount = _check_amount(new_expense.amount, "amount")
    _check_choice(new_expense.category, EXPENSE_CATEGORIES, "expense category")
    _check_choice(new_expense.type, EXPENSE_TYPES, "expense type")
    _check_expense_dates(new_expense)

    new_expense = replace(new_expense, amount=amount)
    if new_expense.recurring and new_expense.recurring_start_date is not None:
        new_expense = replace(new_expense, expense_date=new_expense.recurring_start_date)

    expense_id = _db_insert_expense(cfg, new_expense)
    expense = _db_get_expense_by_id(cfg, expense_id)
    if expense is None:
        raise NotFoundError("Expense", expense_id)
    return expense


def update_expense(
    cfg: Optional[DatabaseConfig], expense_id: int, changes: Mapping[str, Any]
) -> Expense:
    """
    Apply a partial update to an expense.

    The merged row is checked before writing so that an update can never
    leave an expense that delete_expense refuses to historize.
    """
    checked = _check_expense_changes(changes)
    current = _db_get_expense_by_id(cfg, expense_id)
    if current is not None:
        known = {k: v for k, v in checked.items() if k in _EXPENSE_FIELDS}
        _check_expense_dates(replace(current, **known))

    _db_update_expense(cfg, expense_id, checked)
    expense = _db_get_expense_by_id(cfg, expense_id)
    if expense is None:
        raise NotFoundError("Expense", expense_id)
    return expense


def build_expense_history(expense: Expense) -> list[NewExpenseHistory]:
    """
    Build the history rows that preserve an expense once it is deleted.

    - Recurring expense with a start date: one row per month, from the first
      day of the start month through the end date (inclusive). Open-ended
      expenses run through December 31st of start year + 10.
    - Any other expense: one row for the month of its ``expense_date``.

    Every ``month`` value is the first day of its month.

    Raises:
        ValidationError: if the end date precedes the start date, or if a
            non-recurring expense has no expense date.
    """

    def snapshot(month: date) -> NewExpenseHistory:
        return NewExpenseHistory(
            expense_id=expense.id,
            description=expense.description,
            amount=expense.amount,
            category=expense.category,
            type=expense.type,
            month=month,
        )

    if expense.recurring and expense.recurring_start_date is not None:
        start = expense.recurring_start_date
        end = expense.recurring_end_date or date(
            start.year + HISTORY_HORIZON_YEARS, 12, 31
        )
        if end < start:
            raise ValidationError(
                f"Expense #{expense.id}: recurring end date {end.isoformat()} "
                f"is before its start date {start.isoformat()}."
            )
        return [snapshot(month) for month in iter_month_starts(start, end)]

    if expense.expense_date is None:
        raise ValidationError(
            f"Expense #{expense.id} has no expense date and cannot be historized."
        )
    return [snapshot(expense.expense_date.replace(day=1))]


def delete_expense(cfg: Optional[DatabaseConfig], expense_id: int) -> int:
    """
    Historize then delete an expense, as a single unit.

    Returns the number of history rows written. If writing the history
    fails, the expense is not deleted.

    Raises:
        NotFoundError: if the expense does not exist.
        ValidationError: if the expense cannot be historized.
    """
    expense = _db_get_expense_by_id(cfg, expense_id)
    if expense is None:
        raise NotFoundError("Expense", expense_id)

    history = build_expense_history(expense)
    written = _db_delete_expense_with_history(cfg, expense_id, history)
    logger.info(
        "Deleted expense #%s (%s), %s history row(s) written",
        expense_id,
        expense.description,
        written,
    )
    return written


# ---------------------------------------------------------------------------
# Client details
# ---------------------------------------------------------------------------


def client_details(cfg: Optional[DatabaseConfig], client_id: int) -> ClientDetails:
    """
    Load a client with its contracts, services and installments.

    Summary
    -------
    - total_paid_setup / total_pending_setup: installments by status
      (installments in the ``overdue`` status are in neither bucket),
    - total_services: completed services only,
    - total_revenue = mrr + total_paid_setup + total_services.

    Raises:
        NotFoundError: if the client does not exist.
    """
    client = _require_client(cfg, client_id)
    contracts = _db_list_setup_contracts_by_client_id(cfg, client_id)
    services = _db_list_services_by_client_id(cfg, client_id)

    installments: list[Installment] = []
    for contract in contracts:
        installments.extend(_db_list_installments_by_contract_id(cfg, contract.id))

    paid = round(sum(i.amount for i in installments if i.status == "paid"), 2)
    pending = round(sum(i.amount for i in installments if i.status == "pending"), 2)
    completed = round(sum(s.amount for s in services if s.status == "completed"), 2)

    summary = ClientSummary(
        mrr=client.mrr,
        total_paid_setup=paid,
        total_pending_setup=pending,
        total_services=completed,
        total_revenue=round(client.mrr + paid + completed, 2),
    )
    return ClientDetails(
        client=client,
        contracts=contracts,
        services=services,
        installments=installments,
        summary=summary,
    )
