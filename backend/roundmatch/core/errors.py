# Copyright (c) 2026 Harsh Dwivedi
# Licensed under the Harsh Non-Commercial Attribution License (HNCAL) v1.0
# Commercial use requires written permission. See LICENSE for details.

"""
RoundMatch — Domain Errors
Raised by the store and the core; converted to JSON error responses by
api.middleware.error_handler. "Matching already completed" is not an
error: it is reported as MatchingResult.already_completed.
"""


class NotFoundError(KeyError):
    """Raised when a session, round, participant, registration or match does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier

    def __str__(self) -> str:
        return self.args[0]


class InvalidStateError(ValueError):
    """Raised when an action targets a registration in an incompatible status."""

    def __init__(self, message: str, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class ConfirmationWindowClosedError(InvalidStateError):
    """Raised when confirming attendance after the round has started."""


class RegistrationConflictError(InvalidStateError):
    """Raised when a (participant, session, round) registration already exists."""


class StorageError(RuntimeError):
    """Raised on transient store I/O failure. Matching runs are safe to retry."""
