# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Client status reconciler.

The ``overdue`` client status is derived: it is recomputed from the due
dates of unpaid installments before every aggregation. The other statuses
are set by users.

Transitions (``next_client_status``):

    active   -> overdue  when the client has an overdue installment
    overdue  -> active   when it no longer has one
    paused   -> overdue  when it has one and ``override_paused`` is set
    inactive -> inactive always

Reconciliation is idempotent: only clients whose status actually changes are
written, so a second run without intervening writes changes nothing. Writes
are issued client by client and are not transactional across clients; a
partial failure is corrected by the next run.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from . import periods
from .db import (
    ClientStatus,
    DatabaseConfig,
    list_clients,
    list_overdue_installments,
    list_setup_contracts,
    update_client_status,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusChange:
    client_id: int
    previous: ClientStatus
    current: ClientStatus


@dataclass(frozen=True)
class ReconcileReport:
    """Clients with an overdue installment and the status changes applied."""

    overdue_client_ids: frozenset[int]
    changes: tuple[StatusChange, ...] = field(default_factory=tuple)


def next_client_status(
    current: ClientStatus,
    has_overdue: bool,
    *,
    override_paused: bool = True,
) -> ClientStatus:
    """Return the status a client should have after reconciliation."""
    if current == "inactive":
        return current
    if current == "paused":
        return "overdue" if has_overdue and override_paused else current
    if has_overdue:
        return "overdue"
    if current == "overdue":
        return "active"
    return current


def overdue_client_ids(
    cfg: Optional[DatabaseConfig], today: Optional[date] = None
) -> frozenset[int]:
    """Ids of clients with at least one unpaid installment due before today."""
    today = today or periods.current_date()
    overdue = list_overdue_installments(cfg, today)
    if not overdue:
        return frozenset()

    client_by_contract = {c.id: c.client_id for c in list_setup_contracts(cfg)}
    return frozenset(
        client_by_contract[inst.contract_id]
        for inst in overdue
        if inst.contract_id in client_by_contract
    )


def reconcile_client_statuses(
    cfg: Optional[DatabaseConfig],
    today: Optional[date] = None,
    *,
    override_paused: bool = True,
) -> ReconcileReport:
    """
    Recompute every client's status from installment due dates.

    Safe to call before every read of aggregated metrics. With no database
    configured, nothing is read and nothing is written.
    """
    if cfg is None:
        return ReconcileReport(overdue_client_ids=frozenset())

    flagged = overdue_client_ids(cfg, today)

    changes: list[StatusChange] = []
    for client in list_clients(cfg):
        new_status = next_client_status(
            client.status,
            client.id in flagged,
            override_paused=override_paused,
        )
        if new_status == client.status:
            continue

        update_client_status(cfg, client.id, new_status)
        changes.append(StatusChange(client.id, client.status, new_status))
        logger.info(
            "Client #%s status %s -> %s", client.id, client.status, new_status
        )

    return ReconcileReport(overdue_client_ids=flagged, changes=tuple(changes))
