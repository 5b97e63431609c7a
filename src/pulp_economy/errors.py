"""Economy error taxonomy.

Every error carries the HTTP status the API layer should answer with.
BusinessLogicError messages are shown to players verbatim; StorageError
messages are logged and replaced by a generic failure.
"""

from __future__ import annotations


class EconomyError(Exception):
    """Base class for all economy errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(EconomyError):
    """Malformed or missing input, rejected before any mutation."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class BusinessLogicError(EconomyError):
    """A game rule was violated."""

    status_code = 400


class InsufficientBalanceError(BusinessLogicError):
    """A debit would drive the balance below zero."""

    def __init__(self, player_id: int, amount: int, balance: int | None = None) -> None:
        if balance is None:
            message = f"Insufficient PULPs: need {amount}"
        else:
            message = f"Insufficient PULPs: has {balance}, needs {amount}"
        super().__init__(message)
        self.player_id = player_id
        self.amount = amount
        self.balance = balance


class WindowAlreadyOpenError(BusinessLogicError):
    """Only one PULPy window may be open at a time."""

    def __init__(self, seconds_remaining: int) -> None:
        super().__init__(f"A PULPy window is already open ({seconds_remaining}s remaining)")
        self.seconds_remaining = seconds_remaining


class NotFoundError(EconomyError):
    """Unknown player, window, challenge or catalog entry."""

    status_code = 404


class StorageError(EconomyError):
    """The backing store failed; the unit of work was rolled back."""

    status_code = 500
