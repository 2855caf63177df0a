from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from django.core.exceptions import PermissionDenied as DjangoPermissionDenied
from django.db.models import ProtectedError
from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, AuthenticationFailed, NotFound, PermissionDenied, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

SERVER_ERROR_MESSAGE = "An unexpected error occurred."


class FetchError(APIException):
    """Transaction data could not be loaded from the database."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Transaction data could not be loaded. Please try again."
    default_code = "fetch_error"


class StockUpdateError(APIException):
    """A stock counter write failed; already-applied writes were reverted."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Stock counters could not be updated. No changes were saved."
    default_code = "stock_update_error"


class ProtectedRecordError(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "This record is referenced by other records and cannot be deleted."
    default_code = "protected_record"


DOMAIN_ERRORS = (FetchError, StockUpdateError, ProtectedRecordError)

# Codes that stay fixed even when a library raises a subclass with its own default_code.
STABLE_CODES: dict[type[APIException], str] = {
    ValidationError: "validation_error",
    AuthenticationFailed: "authentication_failed",
}


def error_envelope(code: str, message: str, errors: Any, status_code: int) -> dict[str, Any]:
    return {"code": code, "message": message, "errors": errors, "status": status_code}


def _as_api_exception(exc: Exception) -> Exception:
    if isinstance(exc, Http404):
        return NotFound(*exc.args)
    if isinstance(exc, DjangoPermissionDenied):
        return PermissionDenied(*exc.args)
    if isinstance(exc, ProtectedError):
        return ProtectedRecordError()
    return exc


def _error_code(exc: APIException) -> str:
    for exception_type, code in STABLE_CODES.items():
        if isinstance(exc, exception_type):
            return code
    return str(getattr(exc, "default_code", "api_error"))


def _error_message(exc: APIException, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."
    if isinstance(data, Mapping) and data.get("detail"):
        return str(data["detail"])
    return str(exc.detail)


def _error_details(data: Any) -> Any:
    """Field errors are kept; a bare `{"detail": ...}` is already the message."""
    if isinstance(data, Mapping):
        return None if set(data) == {"detail"} else data
    if isinstance(data, list):
        return data
    return None


def _view_name(context: dict[str, Any]) -> str:
    view = context.get("view")
    return view.__class__.__name__ if view else "unknown"


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    """Render every API error as `{code, message, errors, status}`."""
    exc = _as_api_exception(exc)
    response = drf_exception_handler(exc, context)

    if response is None:
        logger.exception("Unhandled API exception in %s", _view_name(context))
        return Response(
            error_envelope("internal_server_error", SERVER_ERROR_MESSAGE, None, status.HTTP_500_INTERNAL_SERVER_ERROR),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if isinstance(exc, DOMAIN_ERRORS):
        logger.warning("%s in %s", exc.default_code, _view_name(context))

    response.data = error_envelope(
        _error_code(exc),
        _error_message(exc, response.data),
        _error_details(response.data),
        response.status_code,
    )
    return response
