# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Database layer for Agency Ledger.

This module provides all low-level accessors for the SQLite database used by
the application. It is the repository consumed by the reporting engine and
by the higher-level services:

- Initializing the database schema (idempotent).
- CRUD operations on clients, setup contracts, installments, services and
  expenses.
- Inclusive date-range queries used by the aggregation engine.
- Append-only access to the expense history ledger.
- Access to the singleton company settings row.
- A few multi-statement operations that must be applied as a single unit
  (contract + schedule creation, schedule replacement, expense deletion with
  historization).

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) clients
   - id, name, email, phone, company
   - mrr_cents             INTEGER NOT NULL  -- monthly recurring revenue
   - status                TEXT    NOT NULL  -- active | inactive | paused | overdue
   - billing_day_of_month  INTEGER           -- 1..28, optional
   - start_date            TEXT    NOT NULL  -- ISO date
   - notes, created_at, updated_at

2) setup_contracts
   - id, client_id (-> clients.id)
   - total_amount_cents, installments, installment_amount_cents
   - start_date, description
   - status                TEXT    NOT NULL  -- active | completed | cancelled | overdue

3) installments
   - id, contract_id (-> setup_contracts.id)
   - installment_number    INTEGER NOT NULL  -- 1-based, unique per contract
   - amount_cents, due_date, paid_date
   - status                TEXT    NOT NULL  -- pending | paid | overdue

4) services
   - id, client_id (-> clients.id), description, amount_cents, service_date
   - status                TEXT    NOT NULL  -- pending | completed | cancelled
   - payment_status        TEXT    NOT NULL  -- pending | paid | overdue
   - is_installment, installment_count, notes

5) expenses
   - id, description, amount_cents, category
   - type                  TEXT    NOT NULL  -- cost | expense
   - expense_date, recurring, recurring_start_date, recurring_end_date, notes

6) expense_history
   Immutable snapshot rows written when an expense is deleted. `expense_id`
   is not a foreign key: the referenced expense no longer exists.
   - id, expense_id, description, amount_cents, category, type
   - month                 TEXT    NOT NULL  -- first day of the month
   - created_at

7) company_settings
   Singleton row (at most one is ever written, see `upsert_company_settings`).
   - id, tax_rate_cents (percentage * 100), created_at, updated_at

------------------------------------------------------------------------------
Availability
------------------------------------------------------------------------------

Every public function accepts ``cfg: DatabaseConfig | None``. ``None`` means
that no database is configured: read functions then return empty results
(lists or None) so that dashboards degrade gracefully, while mutations raise
``DatabaseUnavailableError`` and never silently no-op.

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- Amounts are stored as signed integer cents and exposed as floats rounded
  to 2 decimals.
- Dates are ISO-8601 text, timestamps are ISO-8601 UTC text.
- Foreign key enforcement is explicitly enabled. Deleting a contract removes
  its installments; deleting a client removes its contracts and services.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Literal

from .exceptions import DatabaseUnavailableError, NotFoundError, ValidationError
from .periods import month_period

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

ClientStatus = Literal["active", "inactive", "paused", "overdue"]
ContractStatus = Literal["active", "completed", "cancelled", "overdue"]
InstallmentStatus = Literal["pending", "paid", "overdue"]
ServiceStatus = Literal["pending", "completed", "cancelled"]
PaymentStatus = Literal["pending", "paid", "overdue"]
ExpenseType = Literal["cost", "expense"]
ExpenseCategory = Literal[
    "infrastructure", "team", "marketing", "software", "office", "other"
]

CLIENT_STATUSES = ("active", "inactive", "paused", "overdue")
CONTRACT_STATUSES = ("active", "completed", "cancelled", "overdue")
INSTALLMENT_STATUSES = ("pending", "paid", "overdue")
SERVICE_STATUSES = ("pending", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "overdue")
EXPENSE_TYPES = ("cost", "expense")
EXPENSE_CATEGORIES = (
    "infrastructure",
    "team",
    "marketing",
    "software",
    "office",
    "other",
)


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for Agency Ledger.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


@dataclass(frozen=True)
class Client:
    """A client paying a monthly recurring fee."""

    id: int
    name: str
    email: str | None
    phone: str | None
    company: str | None
    mrr: float
    status: ClientStatus
    billing_day_of_month: int | None
    start_date: date
    notes: str | None
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(frozen=True)
class SetupContract:
    """
    A one-time setup fee billed in installments.

    `installment_amount` is informational; the installment rows are the
    source of truth for what is due when.
    """

    id: int
    client_id: int
    total_amount: float
    installments: int
    installment_amount: float
    start_date: date
    description: str | None
    status: ContractStatus
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(frozen=True)
class Installment:
    id: int
    contract_id: int
    installment_number: int
    amount: float
    due_date: date
    paid_date: date | None
    status: InstallmentStatus
    notes: str | None


@dataclass(frozen=True)
class Service:
    """A one-off service. `is_installment` is informational only."""

    id: int
    client_id: int
    description: str
    amount: float
    service_date: date
    status: ServiceStatus
    payment_status: PaymentStatus
    is_installment: bool
    installment_count: int | None
    notes: str | None


@dataclass(frozen=True)
class Expense:
    id: int
    description: str
    amount: float
    category: ExpenseCategory
    type: ExpenseType
    expense_date: date | None
    recurring: bool
    recurring_start_date: date | None
    recurring_end_date: date | None
    notes: str | None


@dataclass(frozen=True)
class ExpenseHistory:
    """Immutable record of one month an expense applied to."""

    id: int
    expense_id: int | None
    description: str
    amount: float
    category: ExpenseCategory
    type: ExpenseType
    month: date
    created_at: datetime | None


@dataclass(frozen=True)
class CompanySettings:
    id: int
    tax_rate: float
    created_at: datetime | None
    updated_at: datetime | None


@dataclass(frozen=True)
class NewClient:
    name: str
    mrr: float
    start_date: date
    status: ClientStatus = "active"
    billing_day_of_month: int | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class NewSetupContract:
    """
    Data required to create a setup contract.

    The installment schedule is supplied separately to
    `insert_setup_contract_with_schedule`.
    """

    client_id: int
    total_amount: float
    installments: int
    installment_amount: float
    start_date: date
    description: str | None = None
    status: ContractStatus = "active"


@dataclass(frozen=True)
class ScheduledInstallment:
    """One row of a generated installment schedule, not yet persisted."""

    installment_number: int
    amount: float
    due_date: date
    status: InstallmentStatus = "pending"
    paid_date: date | None = None


@dataclass(frozen=True)
class NewInstallment:
    contract_id: int
    installment_number: int
    amount: float
    due_date: date
    status: InstallmentStatus = "pending"
    paid_date: date | None = None
    notes: str | None = None


@dataclass(frozen=True)
class NewService:
    client_id: int
    description: str
    amount: float
    service_date: date
    status: ServiceStatus = "pending"
    payment_status: PaymentStatus = "pending"
    is_installment: bool = False
    installment_count: int | None = None
    notes: str | None = None


@dataclass(frozen=True)
class NewExpense:
    description: str
    amount: float
    category: ExpenseCategory
    type: ExpenseType = "expense"
    expense_date: date | None = None
    recurring: bool = False
    recurring_start_date: date | None = None
    recurring_end_date: date | None = None
    notes: str | None = None


@dataclass(frozen=True)
class NewExpenseHistory:
    expense_id: int | None
    description: str
    amount: float
    category: ExpenseCategory
    type: ExpenseType
    month: date


# ---------------------------------------------------------------------------
# Amount helpers
# ---------------------------------------------------------------------------

_CENT = Decimal("0.01")


def parse_amount(value: Any) -> float:
    """
    Parse a monetary value (fixed-point string, int, float or Decimal).

    Raises
    ------
    ValidationError
        If the value cannot be interpreted as a finite number.
    """
    try:
        dec = Decimal(str(value).strip())
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid monetary amount: {value!r}") from exc
    if not dec.is_finite():
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    return float(dec)


def format_amount(value: float) -> str:
    """Format an amount as a 2-decimal fixed-point string (e.g. '333.33')."""
    return str(Decimal(str(value)).quantize(_CENT, rounding=ROUND_HALF_UP))


def _to_cents(amount: float) -> int:
    return int(Decimal(str(amount)).scaleb(2).quantize(Decimal(1), ROUND_HALF_UP))


def _from_cents(cents: int | None) -> float:
    if cents is None:
        return 0.0
    return float(cents) / 100.0


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _connect(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def _transaction(cfg: DatabaseConfig) -> Iterator[sqlite3.Connection]:
    """
    Yield a connection whose statements are committed as one unit.

    Any exception raised inside the block rolls back every statement
    executed on the connection and is re-raised.
    """
    init_database(cfg)
    conn = _connect(cfg)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _require(cfg: DatabaseConfig | None, operation: str) -> DatabaseConfig:
    """Return cfg, or raise if no database is configured for a mutation."""
    if cfg is None:
        logger.error("Database not available: cannot %s", operation)
        raise DatabaseUnavailableError(operation)
    return cfg


def _fetch_all(
    cfg: DatabaseConfig | None,
    sql: str,
    params: Sequence[Any],
    converter: Callable[[sqlite3.Row], Any],
) -> list:
    """Run a SELECT and convert each row. Returns [] when no database is set."""
    if cfg is None:
        logger.warning("Database not available: returning an empty result")
        return []

    init_database(cfg)
    conn = _connect(cfg)
    try:
        rows = conn.execute(sql, params).fetchall()
    finally:
        conn.close()
    return [converter(row) for row in rows]


def _fetch_one(
    cfg: DatabaseConfig | None,
    sql: str,
    params: Sequence[Any],
    converter: Callable[[sqlite3.Row], Any],
):
    rows = _fetch_all(cfg, sql, params, converter)
    return rows[0] if rows else None


def _to_iso_date(value) -> str:
    """Convert a date-like value to ISO 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)).isoformat()


def _to_iso_date_or_none(value) -> str | None:
    return None if value is None else _to_iso_date(value)


def _parse_date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value is not None else None


def _parse_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _identity(value):
    return value


def _to_flag(value) -> int:
    return 1 if value else 0


def _update_row(
    cfg: DatabaseConfig | None,
    table: str,
    entity: str,
    record_id: int,
    changes: Mapping[str, Any],
    columns: Mapping[str, tuple[str, Callable[[Any], Any]]],
) -> None:
    """
    Apply a partial update to one row.

    `columns` maps public field names to (column name, converter). Unknown
    field names are rejected so that typos never turn into silent no-ops.
    """
    cfg = _require(cfg, f"update {entity}")

    unknown = set(changes).difference(columns)
    if unknown:
        raise ValidationError(
            f"Unknown field(s) for {entity}: {', '.join(sorted(unknown))}"
        )
    if not changes:
        raise ValidationError(f"No fields to update for {entity} #{record_id}.")

    fields: list[str] = []
    params: list[object] = []
    for name, value in changes.items():
        column, convert = columns[name]
        fields.append(f"{column} = ?")
        params.append(convert(value))

    fields.append("updated_at = ?")
    params.append(_now_utc_iso())

    params.append(record_id)

    with _transaction(cfg) as conn:
        cur = conn.execute(
            f"UPDATE {table} SET {', '.join(fields)} WHERE id = ?;",
            params,
        )
        if cur.rowcount == 0:
            raise NotFoundError(entity, record_id)


def _delete_row(
    cfg: DatabaseConfig | None, table: str, entity: str, record_id: int
) -> None:
    cfg = _require(cfg, f"delete {entity}")
    with _transaction(cfg) as conn:
        cur = conn.execute(f"DELETE FROM {table} WHERE id = ?;", (record_id,))
        if cur.rowcount == 0:
            raise NotFoundError(entity, record_id)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
    """
    Create tables and indexes if they do not exist yet.

    This function is idempotent and can be called multiple times safely.
    """
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS clients (
            id                   INTEGER PRIMARY KEY AUTOINCREMENT,
            name                 TEXT    NOT NULL,
            email                TEXT,
            phone                TEXT,
            company              TEXT,
            mrr_cents            INTEGER NOT NULL DEFAULT 0,
            status               TEXT    NOT NULL DEFAULT 'active',
            billing_day_of_month INTEGER,
            start_date           TEXT    NOT NULL,
            notes                TEXT,
            created_at           TEXT    NOT NULL,
            updated_at           TEXT    NOT NULL
        );

        CREATE TABLE IF NOT EXISTS setup_contracts (
            id                       INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id                INTEGER NOT NULL,
            total_amount_cents       INTEGER NOT NULL,
            installments             INTEGER NOT NULL,
            installment_amount_cents INTEGER NOT NULL,
            start_date               TEXT    NOT NULL,
            description              TEXT,
            status                   TEXT    NOT NULL DEFAULT 'active',
            created_at               TEXT    NOT NULL,
            updated_at               TEXT    NOT NULL,

            FOREIGN KEY (client_id) REFERENCES clients(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS installments (
            id                 INTEGER PRIMARY KEY AUTOINCREMENT,
            contract_id        INTEGER NOT NULL,
            installment_number INTEGER NOT NULL,
            amount_cents       INTEGER NOT NULL,
            due_date           TEXT    NOT NULL,
            paid_date          TEXT,
            status             TEXT    NOT NULL DEFAULT 'pending',
            notes              TEXT,
            created_at         TEXT    NOT NULL,
            updated_at         TEXT    NOT NULL,

            UNIQUE (contract_id, installment_number),
            FOREIGN KEY (contract_id) REFERENCES setup_contracts(id)
                ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS services (
            id                INTEGER PRIMARY KEY AUTOINCREMENT,
            client_id         INTEGER NOT NULL,
            description       TEXT    NOT NULL,
            amount_cents      INTEGER NOT NULL,
            service_date      TEXT    NOT NULL,
            status            TEXT    NOT NULL DEFAULT 'pending',
            payment_status    TEXT    NOT NULL DEFAULT 'pending',
            is_installment    INTEGER NOT NULL DEFAULT 0,
            installment_count INTEGER,
            notes             TEXT,
            created_at        TEXT    NOT NULL,
            updated_at        TEXT    NOT NULL,

            FOREIGN KEY (client_id) REFERENCES clients(id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS expenses (
            id                   INTEGER PRIMARY KEY AUTOINCREMENT,
            description          TEXT    NOT NULL,
            amount_cents         INTEGER NOT NULL,
            category             TEXT    NOT NULL,
            type                 TEXT    NOT NULL DEFAULT 'expense',
            expense_date         TEXT,
            recurring            INTEGER NOT NULL DEFAULT 0,
            recurring_start_date TEXT,
            recurring_end_date   TEXT,
            notes                TEXT,
            created_at           TEXT    NOT NULL,
            updated_at           TEXT    NOT NULL
        );

        CREATE TABLE IF NOT EXISTS expense_history (
            id           INTEGER PRIMARY KEY AUTOINCREMENT,
            expense_id   INTEGER,
            description  TEXT    NOT NULL,
            amount_cents INTEGER NOT NULL,
            category     TEXT    NOT NULL,
            type         TEXT    NOT NULL DEFAULT 'expense',
            month        TEXT    NOT NULL,  -- first day of the month
            created_at   TEXT    NOT NULL
        );

        CREATE TABLE IF NOT EXISTS company_settings (
            id             INTEGER PRIMARY KEY AUTOINCREMENT,
            tax_rate_cents INTEGER NOT NULL DEFAULT 1100,
            created_at     TEXT    NOT NULL,
            updated_at     TEXT    NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_installments_due_date
            ON installments(due_date);
        CREATE INDEX IF NOT EXISTS idx_services_service_date
            ON services(service_date);
        CREATE INDEX IF NOT EXISTS idx_expenses_expense_date
            ON expenses(expense_date);
        CREATE INDEX IF NOT EXISTS idx_expense_history_month
            ON expense_history(month);
        """
    )
    conn.commit()


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file (and its parent directory) if it does not exist.
    - Creates tables and indexes if they are missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(cfg)
    try:
        _create_schema_if_needed(conn)
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Row converters
# ---------------------------------------------------------------------------


def _row_to_client(row: sqlite3.Row) -> Client:
    return Client(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        company=row["company"],
        mrr=_from_cents(row["mrr_cents"]),
        status=row["status"],
        billing_day_of_month=row["billing_day_of_month"],
        start_date=date.fromisoformat(row["start_date"]),
        notes=row["notes"],
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


def _row_to_contract(row: sqlite3.Row) -> SetupContract:
    return SetupContract(
        id=row["id"],
        client_id=row["client_id"],
        total_amount=_from_cents(row["total_amount_cents"]),
        installments=row["installments"],
        installment_amount=_from_cents(row["installment_amount_cents"]),
        start_date=date.fromisoformat(row["start_date"]),
        description=row["description"],
        status=row["status"],
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


def _row_to_installment(row: sqlite3.Row) -> Installment:
    return Installment(
        id=row["id"],
        contract_id=row["contract_id"],
        installment_number=row["installment_number"],
        amount=_from_cents(row["amount_cents"]),
        due_date=date.fromisoformat(row["due_date"]),
        paid_date=_parse_date(row["paid_date"]),
        status=row["status"],
        notes=row["notes"],
    )


def _row_to_service(row: sqlite3.Row) -> Service:
    return Service(
        id=row["id"],
        client_id=row["client_id"],
        description=row["description"],
        amount=_from_cents(row["amount_cents"]),
        service_date=date.fromisoformat(row["service_date"]),
        status=row["status"],
        payment_status=row["payment_status"],
        is_installment=bool(row["is_installment"]),
        installment_count=row["installment_count"],
        notes=row["notes"],
    )


def _row_to_expense(row: sqlite3.Row) -> Expense:
    return Expense(
        id=row["id"],
        description=row["description"],
        amount=_from_cents(row["amount_cents"]),
        category=row["category"],
        type=row["type"],
        expense_date=_parse_date(row["expense_date"]),
        recurring=bool(row["recurring"]),
        recurring_start_date=_parse_date(row["recurring_start_date"]),
        recurring_end_date=_parse_date(row["recurring_end_date"]),
        notes=row["notes"],
    )


def _row_to_expense_history(row: sqlite3.Row) -> ExpenseHistory:
    return ExpenseHistory(
        id=row["id"],
        expense_id=row["expense_id"],
        description=row["description"],
        amount=_from_cents(row["amount_cents"]),
        category=row["category"],
        type=row["type"],
        month=date.fromisoformat(row["month"]),
        created_at=_parse_timestamp(row["created_at"]),
    )


def _row_to_settings(row: sqlite3.Row) -> CompanySettings:
    return CompanySettings(
        id=row["id"],
        tax_rate=_from_cents(row["tax_rate_cents"]),
        created_at=_parse_timestamp(row["created_at"]),
        updated_at=_parse_timestamp(row["updated_at"]),
    )


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------

_CLIENT_COLUMNS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "name": ("name", _identity),
    "email": ("email", _identity),
    "phone": ("phone", _identity),
    "company": ("company", _identity),
    "mrr": ("mrr_cents", _to_cents),
    "status": ("status", _identity),
    "billing_day_of_month": ("billing_day_of_month", _identity),
    "start_date": ("start_date", _to_iso_date),
    "notes": ("notes", _identity),
}


def list_clients(cfg: DatabaseConfig | None) -> list[Client]:
    """Return all clients, most recently created first."""
    return _fetch_all(
        cfg,
        "SELECT * FROM clients ORDER BY created_at DESC, id DESC;",
        (),
        _row_to_client,
    )


def get_client_by_id(cfg: DatabaseConfig | None, client_id: int) -> Client | None:
    return _fetch_one(
        cfg, "SELECT * FROM clients WHERE id = ?;", (client_id,), _row_to_client
    )


def insert_client(cfg: DatabaseConfig | None, new_client: NewClient) -> int:
    """Insert a client and return its id."""
    cfg = _require(cfg, "create client")
    now = _now_utc_iso()
    with _transaction(cfg) as conn:
        cur = conn.execute(
            """
            INSERT INTO clients (
                name, email, phone, company, mrr_cents, status,
                billing_day_of_month, start_date, notes, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                new_client.name,
                new_client.email,
                new_client.phone,
                new_client.company,
                _to_cents(new_client.mrr),
                new_client.status,
                new_client.billing_day_of_month,
                _to_iso_date(new_client.start_date),
                new_client.notes,
                now,
                now,
            ),
        )
        return cur.lastrowid


def update_client(
    cfg: DatabaseConfig | None, client_id: int, changes: Mapping[str, Any]
) -> None:
    _update_row(cfg, "clients", "Client", client_id, changes, _CLIENT_COLUMNS)


def update_client_status(
    cfg: DatabaseConfig | None, client_id: int, status: ClientStatus
) -> None:
    update_client(cfg, client_id, {"status": status})


def delete_client(cfg: DatabaseConfig | None, client_id: int) -> None:
    _delete_row(cfg, "clients", "Client", client_id)


# ---------------------------------------------------------------------------
# Setup contracts
# ---------------------------------------------------------------------------

_CONTRACT_COLUMNS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "client_id": ("client_id", _identity),
    "total_amount": ("total_amount_cents", _to_cents),
    "installments": ("installments", _identity),
    "installment_amount": ("installment_amount_cents", _to_cents),
    "start_date": ("start_date", _to_iso_date),
    "description": ("description", _identity),
    "status": ("status", _identity),
}


def list_setup_contracts(cfg: DatabaseConfig | None) -> list[SetupContract]:
    return _fetch_all(
        cfg,
        "SELECT * FROM setup_contracts ORDER BY created_at DESC, id DESC;",
        (),
        _row_to_contract,
    )


def list_setup_contracts_by_client_id(
    cfg: DatabaseConfig | None, client_id: int
) -> list[SetupContract]:
    return _fetch_all(
        cfg,
        """
        SELECT * FROM setup_contracts
         WHERE client_id = ?
         ORDER BY created_at DESC, id DESC;
        """,
        (client_id,),
        _row_to_contract,
    )


def get_setup_contract_by_id(
    cfg: DatabaseConfig | None, contract_id: int
) -> SetupContract | None:
    return _fetch_one(
        cfg,
        "SELECT * FROM setup_contracts WHERE id = ?;",
        (contract_id,),
        _row_to_contract,
    )


def _insert_schedule(
    conn: sqlite3.Connection,
    contract_id: int,
    schedule: Sequence[ScheduledInstallment],
    now: str,
) -> int:
    for item in schedule:
        conn.execute(
            """
            INSERT INTO installments (
                contract_id, installment_number, amount_cents, due_date,
                paid_date, status, notes, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?);
            """,
            (
                contract_id,
                item.installment_number,
                _to_cents(item.amount),
                _to_iso_date(item.due_date),
                _to_iso_date_or_none(item.paid_date),
                item.status,
                now,
                now,
            ),
        )
    return len(schedule)


def insert_setup_contract_with_schedule(
    cfg: DatabaseConfig | None,
    new_contract: NewSetupContract,
    schedule: Sequence[ScheduledInstallment],
) -> int:
    """
    Insert a setup contract together with its installment schedule.

    Both the contract row and every installment row are written in a single
    transaction: either the contract exists with its full schedule, or
    nothing is written.
    """
    cfg = _require(cfg, "create setup contract")
    now = _now_utc_iso()
    with _transaction(cfg) as conn:
        cur = conn.execute(
            """
            INSERT INTO setup_contracts (
                client_id, total_amount_cents, installments,
                installment_amount_cents, start_date, description, status,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                new_contract.client_id,
                _to_cents(new_contract.total_amount),
                new_contract.installments,
                _to_cents(new_contract.installment_amount),
                _to_iso_date(new_contract.start_date),
                new_contract.description,
                new_contract.status,
                now,
                now,
            ),
        )
        contract_id = cur.lastrowid
        _insert_schedule(conn, contract_id, schedule, now)
    return contract_id


def update_setup_contract(
    cfg: DatabaseConfig | None, contract_id: int, changes: Mapping[str, Any]
) -> None:
    """
    Apply a partial update to a contract.

    Installments are not regenerated here; see
    `scheduler.regenerate_all_installments` for the explicit bulk command.
    """
    _update_row(
        cfg, "setup_contracts", "Setup contract", contract_id, changes, _CONTRACT_COLUMNS
    )


def delete_setup_contract(cfg: DatabaseConfig | None, contract_id: int) -> None:
    _delete_row(cfg, "setup_contracts", "Setup contract", contract_id)


# ---------------------------------------------------------------------------
# Installments
# ---------------------------------------------------------------------------

_INSTALLMENT_COLUMNS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "amount": ("amount_cents", _to_cents),
    "due_date": ("due_date", _to_iso_date),
    "paid_date": ("paid_date", _to_iso_date_or_none),
    "status": ("status", _identity),
    "notes": ("notes", _identity),
}


def list_installments_by_contract_id(
    cfg: DatabaseConfig | None, contract_id: int
) -> list[Installment]:
    return _fetch_all(
        cfg,
        """
        SELECT * FROM installments
         WHERE contract_id = ?
         ORDER BY installment_number;
        """,
        (contract_id,),
        _row_to_installment,
    )


def list_installments_by_date_range(
    cfg: DatabaseConfig | None, start: date, end: date
) -> list[Installment]:
    """Installments whose due date lies in [start, end] (inclusive)."""
    return _fetch_all(
        cfg,
        """
        SELECT * FROM installments
         WHERE due_date BETWEEN ? AND ?
         ORDER BY due_date, id;
        """,
        (_to_iso_date(start), _to_iso_date(end)),
        _row_to_installment,
    )


def list_overdue_installments(
    cfg: DatabaseConfig | None, today: date
) -> list[Installment]:
    """Installments due strictly before `today` that are not paid."""
    return _fetch_all(
        cfg,
        """
        SELECT * FROM installments
         WHERE due_date < ?
           AND status != 'paid'
         ORDER BY due_date, id;
        """,
        (_to_iso_date(today),),
        _row_to_installment,
    )


def count_installments(cfg: DatabaseConfig | None) -> int:
    if cfg is None:
        return 0
    init_database(cfg)
    conn = _connect(cfg)
    try:
        return conn.execute("SELECT COUNT(*) FROM installments;").fetchone()[0]
    finally:
        conn.close()


def get_installment_by_id(
    cfg: DatabaseConfig | None, installment_id: int
) -> Installment | None:
    return _fetch_one(
        cfg,
        "SELECT * FROM installments WHERE id = ?;",
        (installment_id,),
        _row_to_installment,
    )


def insert_installment(cfg: DatabaseConfig | None, new: NewInstallment) -> int:
    cfg = _require(cfg, "create installment")
    now = _now_utc_iso()
    with _transaction(cfg) as conn:
        cur = conn.execute(
            """
            INSERT INTO installments (
                contract_id, installment_number, amount_cents, due_date,
                paid_date, status, notes, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                new.contract_id,
                new.installment_number,
                _to_cents(new.amount),
                _to_iso_date(new.due_date),
                _to_iso_date_or_none(new.paid_date),
                new.status,
                new.notes,
                now,
                now,
            ),
        )
        return cur.lastrowid


def update_installment(
    cfg: DatabaseConfig | None, installment_id: int, changes: Mapping[str, Any]
) -> None:
    _update_row(
        cfg,
        "installments",
        "Installment",
        installment_id,
        changes,
        _INSTALLMENT_COLUMNS,
    )


def delete_installment(cfg: DatabaseConfig | None, installment_id: int) -> None:
    _delete_row(cfg, "installments", "Installment", installment_id)


def replace_contract_installments(
    cfg: DatabaseConfig | None,
    contract_id: int,
    schedule: Sequence[ScheduledInstallment],
) -> tuple[int, int]:
    """
    Delete every installment of a contract and insert `schedule` instead.

    The delete and the inserts run in one transaction. Returns the number of
    deleted and inserted rows.
    """
    cfg = _require(cfg, "regenerate installments")
    now = _now_utc_iso()
    with _transaction(cfg) as conn:
        cur = conn.execute(
            "DELETE FROM installments WHERE contract_id = ?;", (contract_id,)
        )
        deleted = cur.rowcount
        inserted = _insert_schedule(conn, contract_id, schedule, now)
    return deleted, inserted


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

_SERVICE_COLUMNS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "description": ("description", _identity),
    "amount": ("amount_cents", _to_cents),
    "service_date": ("service_date", _to_iso_date),
    "status": ("status", _identity),
    "payment_status": ("payment_status", _identity),
    "is_installment": ("is_installment", _to_flag),
    "installment_count": ("installment_count", _identity),
    "notes": ("notes", _identity),
}


def list_services(cfg: DatabaseConfig | None) -> list[Service]:
    return _fetch_all(
        cfg,
        "SELECT * FROM services ORDER BY service_date DESC, id DESC;",
        (),
        _row_to_service,
    )


def list_services_by_client_id(
    cfg: DatabaseConfig | None, client_id: int
) -> list[Service]:
    return _fetch_all(
        cfg,
        """
        SELECT * FROM services
         WHERE client_id = ?
         ORDER BY service_date DESC, id DESC;
        """,
        (client_id,),
        _row_to_service,
    )


def list_services_by_date_range(
    cfg: DatabaseConfig | None,
    start: date,
    end: date,
    status: ServiceStatus | None = None,
) -> list[Service]:
    """Services dated in [start, end], optionally restricted to one status."""
    sql = "SELECT * FROM services WHERE service_date BETWEEN ? AND ?"
    params: list[object] = [_to_iso_date(start), _to_iso_date(end)]
    if status is not None:
        sql += " AND status = ?"
        params.append(status)
    sql += " ORDER BY service_date, id;"
    return _fetch_all(cfg, sql, params, _row_to_service)


def get_service_by_id(cfg: DatabaseConfig | None, service_id: int) -> Service | None:
    return _fetch_one(
        cfg, "SELECT * FROM services WHERE id = ?;", (service_id,), _row_to_service
    )


def insert_service(cfg: DatabaseConfig | None, new: NewService) -> int:
    cfg = _require(cfg, "create service")
    now = _now_utc_iso()
    with _transaction(cfg) as conn:
        cur = conn.execute(
            """
            INSERT INTO services (
                client_id, description, amount_cents, service_date, status,
                payment_status, is_installment, installment_count, notes,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                new.client_id,
                new.description,
                _to_cents(new.amount),
                _to_iso_date(new.service_date),
                new.status,
                new.payment_status,
                _to_flag(new.is_installment),
                new.installment_count,
                new.notes,
                now,
                now,
            ),
        )
        return cur.lastrowid


def update_service(
    cfg: DatabaseConfig | None, service_id: int, changes: Mapping[str, Any]
) -> None:
    _update_row(cfg, "services", "Service", service_id, changes, _SERVICE_COLUMNS)


def delete_service(cfg: DatabaseConfig | None, service_id: int) -> None:
    _delete_row(cfg, "services", "Service", service_id)


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

_EXPENSE_COLUMNS: dict[str, tuple[str, Callable[[Any], Any]]] = {
    "description": ("description", _identity),
    "amount": ("amount_cents", _to_cents),
    "category": ("category", _identity),
    "type": ("type", _identity),
    "expense_date": ("expense_date", _to_iso_date_or_none),
    "recurring": ("recurring", _to_flag),
    "recurring_start_date": ("recurring_start_date", _to_iso_date_or_none),
    "recurring_end_date": ("recurring_end_date", _to_iso_date_or_none),
    "notes": ("notes", _identity),
}


def list_expenses(cfg: DatabaseConfig | None) -> list[Expense]:
    return _fetch_all(
        cfg,
        "SELECT * FROM expenses ORDER BY expense_date DESC, id DESC;",
        (),
        _row_to_expense,
    )


def list_expenses_by_category(
    cfg: DatabaseConfig | None, category: str
) -> list[Expense]:
    return _fetch_all(
        cfg,
        """
        SELECT * FROM expenses
         WHERE category = ?
         ORDER BY expense_date DESC, id DESC;
        """,
        (category,),
        _row_to_expense,
    )


def list_expenses_by_date_range(
    cfg: DatabaseConfig | None, start: date, end: date
) -> list[Expense]:
    """Expenses whose `expense_date` lies in [start, end] (inclusive)."""
    return _fetch_all(
        cfg,
        """
        SELECT * FROM expenses
         WHERE expense_date BETWEEN ? AND ?
         ORDER BY expense_date, id;
        """,
        (_to_iso_date(start), _to_iso_date(end)),
        _row_to_expense,
    )


def list_expenses_by_period(
    cfg: DatabaseConfig | None, year: int, month: int
) -> list[Expense]:
    """Expenses dated within the given calendar month, newest first."""
    period = month_period(year, month)
    return list(
        reversed(list_expenses_by_date_range(cfg, period.start, period.end))
    )


def get_expense_by_id(cfg: DatabaseConfig | None, expense_id: int) -> Expense | None:
    return _fetch_one(
        cfg, "SELECT * FROM expenses WHERE id = ?;", (expense_id,), _row_to_expense
    )


def insert_expense(cfg: DatabaseConfig | None, new: NewExpense) -> int:
    cfg = _require(cfg, "create expense")
    now = _now_utc_iso()
    with _transaction(cfg) as conn:
        cur = conn.execute(
            """
            INSERT INTO expenses (
                description, amount_cents, category, type, expense_date,
                recurring, recurring_start_date, recurring_end_date, notes,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                new.description,
                _to_cents(new.amount),
                new.category,
                new.type,
                _to_iso_date_or_none(new.expense_date),
                _to_flag(new.recurring),
                _to_iso_date_or_none(new.recurring_start_date),
                _to_iso_date_or_none(new.recurring_end_date),
                new.notes,
                now,
                now,
            ),
        )
        return cur.lastrowid


def update_expense(
    cfg: DatabaseConfig | None, expense_id: int, changes: Mapping[str, Any]
) -> None:
    _update_row(cfg, "expenses", "Expense", expense_id, changes, _EXPENSE_COLUMNS)


def _insert_history_rows(
    conn: sqlite3.Connection, rows: Sequence[NewExpenseHistory], now: str
) -> int:
    for row in rows:
        conn.execute(
            """
            INSERT INTO expense_history (
                expense_id, description, amount_cents, category, type,
                month, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?);
            """,
            (
                row.expense_id,
                row.description,
                _to_cents(row.amount),
                row.category,
                row.type,
                _to_iso_date(row.month),
                now,
            ),
        )
    return len(rows)


def delete_expense_with_history(
    cfg: DatabaseConfig | None,
    expense_id: int,
    history: Sequence[NewExpenseHistory],
) -> int:
    """
    Write the expense history rows and delete the expense, as one unit.

    If any history insert fails, or the expense no longer exists, the whole
    transaction is rolled back and the expense is kept. Returns the number of
    history rows written.
    """
    cfg = _require(cfg, "delete expense")
    now = _now_utc_iso()
    with _transaction(cfg) as conn:
        written = _insert_history_rows(conn, history, now)
        cur = conn.execute("DELETE FROM expenses WHERE id = ?;", (expense_id,))
        if cur.rowcount == 0:
            raise NotFoundError("Expense", expense_id)
    return written


# ---------------------------------------------------------------------------
# Expense history
# ---------------------------------------------------------------------------


def list_expense_history_by_date_range(
    cfg: DatabaseConfig | None, start: date, end: date
) -> list[ExpenseHistory]:
    """History rows whose `month` lies in [start, end] (inclusive)."""
    return _fetch_all(
        cfg,
        """
        SELECT * FROM expense_history
         WHERE month BETWEEN ? AND ?
         ORDER BY month, id;
        """,
        (_to_iso_date(start), _to_iso_date(end)),
        _row_to_expense_history,
    )


def insert_expense_history(
    cfg: DatabaseConfig | None, rows: Sequence[NewExpenseHistory]
) -> int:
    """Append history rows. History rows are never updated nor deleted."""
    cfg = _require(cfg, "write expense history")
    with _transaction(cfg) as conn:
        return _insert_history_rows(conn, rows, _now_utc_iso())


# ---------------------------------------------------------------------------
# Company settings
# ---------------------------------------------------------------------------


def get_company_settings(cfg: DatabaseConfig | None) -> CompanySettings | None:
    """Return the settings row (the first one, only one is ever written)."""
    return _fetch_one(
        cfg,
        "SELECT * FROM company_settings ORDER BY id LIMIT 1;",
        (),
        _row_to_settings,
    )


def upsert_company_settings(
    cfg: DatabaseConfig | None, tax_rate: float
) -> CompanySettings:
    """
    Create the singleton settings row, or update it when it already exists.

    The write lock is taken before the existence check, so concurrent
    callers are serialized and at most one row is ever created.
    """
    cfg = _require(cfg, "update company settings")
    now = _now_utc_iso()
    with _transaction(cfg) as conn:
        conn.execute("BEGIN IMMEDIATE;")
        existing = conn.execute(
            "SELECT id FROM company_settings ORDER BY id LIMIT 1;"
        ).fetchone()
        if existing is not None:
            conn.execute(
                """
                UPDATE company_settings
                   SET tax_rate_cents = ?, updated_at = ?
                 WHERE id = ?;
                """,
                (_to_cents(tax_rate), now, existing["id"]),
            )
        else:
            conn.execute(
                """
                INSERT INTO company_settings (tax_rate_cents, created_at, updated_at)
                VALUES (?, ?, ?);
                """,
                (_to_cents(tax_rate), now, now),
            )

    settings = get_company_settings(cfg)
    if settings is None:
        raise RuntimeError("Company settings were just written but could not be reloaded.")
    return settings
