# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Installment scheduler.

Turns a setup contract (total amount, number of installments, start date)
into an ordered series of monthly installments, and exposes the explicit,
destructive bulk command that rebuilds every schedule from the current
contract values.

Schedule rules
--------------
- amount per installment = total / count, with no remainder correction
  (the last cent may drift; amounts are persisted rounded to cents),
- installment ``i`` (0-based) is due ``i`` calendar months after the start
  date, numbered ``i + 1``,
- every generated installment is ``pending`` with no paid date.

Day-of-month overflow
---------------------
When the start day does not exist in a target month (e.g. the 31st in
February), the default policy ``"roll-forward"`` carries the extra days into
the following month (Jan 31 + 1 month -> Mar 3, or Mar 2 in leap years).
The ``"clamp"`` policy keeps the last day of the target month instead. The
policy is selected through ``[installments].day_overflow`` in the config.
"""

import logging
from calendar import monthrange
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from .db import (
    DatabaseConfig,
    ScheduledInstallment,
    list_setup_contracts,
    replace_contract_installments,
)
from .exceptions import (
    ConfirmationRequiredError,
    DatabaseUnavailableError,
    ValidationError,
)
from .periods import shift_month

logger = logging.getLogger(__name__)

DAY_OVERFLOW_POLICIES = ("roll-forward", "clamp")

REGENERATE_ALL_COMMAND = "installments regenerate-all"


@dataclass(frozen=True)
class RegenerateReport:
    """Outcome of `regenerate_all_installments`."""

    contracts: int
    installments_deleted: int
    installments_created: int


def due_date_for(start: date, offset: int, day_overflow: str = "roll-forward") -> date:
    """Return the due date `offset` calendar months after `start`."""
    year, month = shift_month(start.year, start.month, offset)
    last_day = monthrange(year, month)[1]
    if start.day <= last_day:
        return date(year, month, start.day)
    if day_overflow == "clamp":
        return date(year, month, last_day)
    return date(year, month, last_day) + timedelta(days=start.day - last_day)


def generate_schedule(
    total_amount: float,
    count: int,
    start_date: date,
    *,
    day_overflow: str = "roll-forward",
) -> list[ScheduledInstallment]:
    """
    Generate the installment schedule of a contract.

    Args:
        total_amount: Contract total.
        count: Number of installments (>= 1).
        start_date: Due date of the first installment.
        day_overflow: "roll-forward" (default) or "clamp".

    Returns:
        A list of `count` ScheduledInstallment rows ordered by number.

    Raises:
        ValidationError: if count < 1, total_amount <= 0 or the overflow
            policy is unknown.
    """
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise ValidationError(f"Installment count must be >= 1, got {count!r}.")
    if total_amount <= 0:
        raise ValidationError(
            f"Contract total amount must be positive, got {total_amount!r}."
        )
    if day_overflow not in DAY_OVERFLOW_POLICIES:
        raise ValidationError(f"Unknown day overflow policy: {day_overflow!r}")

    amount = float(total_amount) / count
    return [
        ScheduledInstallment(
            installment_number=i + 1,
            amount=amount,
            due_date=due_date_for(start_date, i, day_overflow),
        )
        for i in range(count)
    ]


def regenerate_all_installments(
    cfg: Optional[DatabaseConfig],
    *,
    confirm: bool = False,
    day_overflow: str = "roll-forward",
    actor: Optional[str] = None,
) -> RegenerateReport:
    """
    Delete and rebuild the installments of every contract.

    This is a destructive administrative command: every installment row is
    deleted and a fresh schedule is created from the contract's *current*
    total amount, installment count and start date. Payment information
    (paid status, paid date, notes) is lost.

    Each contract is processed in its own transaction, so a failure leaves
    that contract untouched and stops the command; contracts processed before
    the failure keep their new schedule. Re-running the command is safe.

    Raises:
        ConfirmationRequiredError: if `confirm` is not True.
        DatabaseUnavailableError: if no database is configured.
    """
    if confirm is not True:
        raise ConfirmationRequiredError(REGENERATE_ALL_COMMAND)
    if cfg is None:
        raise DatabaseUnavailableError("regenerate installments")

    contracts = list_setup_contracts(cfg)
    deleted_total = 0
    created_total = 0

    for contract in contracts:
        schedule = generate_schedule(
            contract.total_amount,
            contract.installments or 1,
            contract.start_date,
            day_overflow=day_overflow,
        )
        deleted, created = replace_contract_installments(cfg, contract.id, schedule)
        logger.debug(
            "Regenerated contract #%s: %s deleted, %s created",
            contract.id,
            deleted,
            created,
        )
        deleted_total += deleted
        created_total += created

    logger.warning(
        "AUDIT %s by %s: %s contract(s), %s installment(s) deleted, %s created",
        REGENERATE_ALL_COMMAND,
        actor or "unknown",
        len(contracts),
        deleted_total,
        created_total,
    )

    return RegenerateReport(
        contracts=len(contracts),
        installments_deleted=deleted_total,
        installments_created=created_total,
    )
