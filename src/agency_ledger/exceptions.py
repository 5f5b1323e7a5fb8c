# Agency Ledger - Financial management backend for small agencies
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Typed exceptions raised by Agency Ledger.

Every exception carries a machine-readable ``code`` so that the operations
layer (``api.py``) and the CLI can report failures without parsing messages.

Hierarchy::

    LedgerError
    +-- ValidationError          (also a ValueError)
    |   +-- ConfirmationRequiredError
    +-- NotFoundError            (also a LookupError)
    +-- DatabaseUnavailableError (also a RuntimeError)
    +-- UnauthorizedError        (also a PermissionError)
"""


class LedgerError(Exception):
    """Base class for all Agency Ledger errors."""

    code: str = "LEDGER_ERROR"


class ValidationError(LedgerError, ValueError):
    """Rejected input: bad range, missing recognition date, out-of-bounds value."""

    code: str = "VALIDATION_ERROR"


class ConfirmationRequiredError(ValidationError):
    """A destructive command was invoked without explicit confirmation."""

    code: str = "CONFIRMATION_REQUIRED"

    def __init__(self, command: str):
        self.command = command
        super().__init__(
            f"'{command}' is destructive and must be explicitly confirmed."
        )


class NotFoundError(LedgerError, LookupError):
    """A record requested by id does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, record_id: int):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} not found: #{record_id}")


class DatabaseUnavailableError(LedgerError, RuntimeError):
    """A mutation was attempted while no database is configured."""

    code: str = "DATABASE_UNAVAILABLE"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Database not available: cannot {operation}.")


class UnauthorizedError(LedgerError, PermissionError):
    """A protected operation was called without an authenticated user."""

    code: str = "UNAUTHORIZED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Authentication required for '{operation}'.")
