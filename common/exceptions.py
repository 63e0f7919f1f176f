"""Every API failure leaves as ``{code, message, errors, status}``."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.http import Http404
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from core.errors import LedgerError, SessionExpired, SyncError

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."

# Checked in order; subclasses come before their bases.
API_ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (SessionExpired, "session_expired"),
    (exceptions.ValidationError, "validation_error"),
    (exceptions.NotAuthenticated, "not_authenticated"),
    (exceptions.AuthenticationFailed, "authentication_failed"),
    (exceptions.PermissionDenied, "permission_denied"),
    (exceptions.NotFound, "not_found"),
    (exceptions.MethodNotAllowed, "method_not_allowed"),
    (exceptions.NotAcceptable, "not_acceptable"),
    (exceptions.UnsupportedMediaType, "unsupported_media_type"),
    (exceptions.ParseError, "parse_error"),
    (exceptions.Throttled, "throttled"),
)


def error_response(
    *,
    code: str,
    message: str,
    errors: Any = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        {"code": code, "message": message, "errors": errors, "status": status_code},
        status=status_code,
    )


def ledger_error_response(exc: LedgerError) -> Response:
    logger.info("ledger_command_rejected code=%s message=%s", exc.code, exc.message)
    return error_response(code=exc.code, message=exc.message, errors=exc.details or None, status_code=exc.status_code)


def sync_error_response(exc: SyncError, *, message: str = "The remote mirror could not be reached.", errors=None) -> Response:
    logger.warning("sync_request_failed reason=%s remote_status=%s", exc.reason, exc.status_code)
    return error_response(
        code="sync_failed",
        message=message,
        errors=errors if errors is not None else {"reason": exc.reason, "remote_status": exc.status_code},
        status_code=status.HTTP_502_BAD_GATEWAY,
    )


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    if isinstance(exc, LedgerError):
        return ledger_error_response(exc)
    if isinstance(exc, SyncError):
        return sync_error_response(exc)
    if isinstance(exc, Http404):
        exc = exceptions.NotFound()
    elif isinstance(exc, DjangoPermissionDenied):
        exc = exceptions.PermissionDenied()

    response = drf_exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("Unhandled API exception in %s", type(view).__name__ if view else "unknown")
        return error_response(
            code="internal_server_error",
            message=GENERIC_SERVER_ERROR_MESSAGE,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    data = response.data
    response.data = {
        "code": _code_for(exc),
        "message": _message_for(exc, data),
        "errors": _errors_for(data),
        "status": response.status_code,
    }
    return response


def _code_for(exc: Exception) -> str:
    for exception_type, code in API_ERROR_CODES:
        if isinstance(exc, exception_type):
            return code
    return str(getattr(exc, "default_code", "api_error"))


def _message_for(exc: Exception, data: Any) -> str:
    if isinstance(exc, exceptions.ValidationError):
        return "Validation failed."
    detail = data.get("detail") if isinstance(data, Mapping) else data if isinstance(data, str) else None
    if detail:
        return str(detail)
    return str(getattr(exc, "detail", "Request failed."))


def _errors_for(data: Any) -> Any:
    if isinstance(data, Mapping):
        return None if set(data) == {"detail"} else data
    if isinstance(data, list):
        return data
    return None
