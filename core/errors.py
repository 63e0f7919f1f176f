from __future__ import annotations

from typing import Any, Iterable

from rest_framework.exceptions import AuthenticationFailed


class LedgerError(Exception):
    """Base class for failures raised by ledger command handlers.

    Command handlers raise before building the new aggregate, so a failed
    command never leaves a partially written document behind.
    """

    code = "ledger_error"
    status_code = 400
    default_message = "The operation could not be completed."

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class LedgerValidationError(LedgerError):
    code = "validation_error"
    status_code = 400
    default_message = "Validation failed."


class DuplicateError(LedgerError):
    code = "duplicate"
    status_code = 409
    default_message = "Duplicate entries were rejected."

    def __init__(self, message: str | None = None, identifiers: Iterable[str] = (), details: dict[str, Any] | None = None):
        self.identifiers = list(identifiers)
        details = dict(details or {})
        details.setdefault("duplicates", self.identifiers)
        super().__init__(message, details)


class DuplicateModel(DuplicateError):
    code = "duplicate_model"
    default_message = "Model already exists in the catalog."


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404
    default_message = "Record was not found."


class AlreadySold(LedgerError):
    code = "already_sold"
    status_code = 409
    default_message = "This serial has already been sold."


class AlreadyInCart(LedgerError):
    code = "already_in_cart"
    status_code = 409
    default_message = "This serial is already in the cart."


class SyncError(Exception):
    """Remote mirror failure. The background mirror only logs it; explicit push and pull report ``sync_failed``."""

    def __init__(self, reason: str, status_code: int | None = None):
        self.reason = reason
        self.status_code = status_code
        super().__init__(reason)


class SessionExpired(AuthenticationFailed):
    default_detail = "Session expired after a period of inactivity. Please log in again."
    default_code = "session_expired"
