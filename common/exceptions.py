from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from typing import Any

from django.db.models import ProtectedError
from rest_framework import status
from rest_framework.exceptions import (
    APIException,
    AuthenticationFailed,
    MethodNotAllowed,
    NotAcceptable,
    NotAuthenticated,
    NotFound,
    ParseError,
    PermissionDenied,
    Throttled,
    UnsupportedMediaType,
    ValidationError,
)
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

GENERIC_SERVER_ERROR_MESSAGE = "An unexpected error occurred."


class DependentRecordsExist(APIException):
    """Raised when a counterparty still has financial records pointing at it.

    ``dependents`` maps a record kind to how many rows reference the
    counterparty, e.g. ``{"invoices": 2, "payments": 1}``.
    """

    status_code = status.HTTP_409_CONFLICT
    default_detail = "Record cannot be deleted because it has associated transactions."
    default_code = "dependent_records_exist"

    def __init__(self, *, entity: str, dependents: Mapping[str, int]):
        self.entity = entity
        self.dependents = {kind: count for kind, count in dependents.items() if count}
        listing = ", ".join(f"{kind}: {count}" for kind, count in self.dependents.items())
        super().__init__(
            detail=f"Cannot delete this {entity} because it has associated transactions ({listing})."
        )

    @classmethod
    def from_protected_error(cls, exc: ProtectedError) -> "DependentRecordsExist":
        counts = Counter(obj._meta.model_name + "s" for obj in exc.protected_objects)
        return cls(entity="record", dependents=dict(counts))


ERROR_CODES: dict[type[Exception], str] = {
    ValidationError: "validation_error",
    NotAuthenticated: "not_authenticated",
    AuthenticationFailed: "authentication_failed",
    PermissionDenied: "permission_denied",
    NotFound: "not_found",
    MethodNotAllowed: "method_not_allowed",
    NotAcceptable: "not_acceptable",
    UnsupportedMediaType: "unsupported_media_type",
    ParseError: "parse_error",
    Throttled: "throttled",
    DependentRecordsExist: "dependent_records_exist",
}


def error_envelope(*, code: str, message: str, errors: Any, status_code: int) -> dict[str, Any]:
    """Body shared by every failed API response: ``{code, message, errors, status}``."""
    return {"code": code, "message": message, "errors": errors, "status": status_code}


def custom_exception_handler(exc: Exception, context: dict[str, Any]) -> Response:
    if isinstance(exc, ProtectedError):
        # A delete slipped past the dependent-record checks; report it the same way.
        exc = DependentRecordsExist.from_protected_error(exc)

    response = drf_exception_handler(exc, context)
    if response is None:
        view = context.get("view")
        logger.exception("Unhandled API exception in %s", view.__class__.__name__ if view else "unknown")
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return Response(
            error_envelope(
                code="internal_server_error",
                message=GENERIC_SERVER_ERROR_MESSAGE,
                errors=None,
                status_code=status_code,
            ),
            status=status_code,
        )

    if isinstance(exc, DependentRecordsExist):
        errors = exc.dependents
    else:
        errors = _field_errors(response.data)

    response.data = error_envelope(
        code=_code_for(exc),
        message=_message_for(exc, response.data),
        errors=errors,
        status_code=response.status_code,
    )
    return response


def _code_for(exc: Exception) -> str:
    for exception_type, code in ERROR_CODES.items():
        if isinstance(exc, exception_type):
            return code
    if isinstance(exc, APIException):
        return str(getattr(exc, "default_code", "api_error"))
    return "internal_server_error"


def _message_for(exc: Exception, data: Any) -> str:
    if isinstance(exc, ValidationError):
        return "Validation failed."

    detail = data.get("detail") if isinstance(data, Mapping) else data if isinstance(data, str) else None
    if detail:
        return str(detail)
    if isinstance(exc, Throttled):
        return "Request was throttled."
    if isinstance(exc, APIException):
        return str(getattr(exc, "detail", "Request failed."))
    return GENERIC_SERVER_ERROR_MESSAGE


def _field_errors(data: Any) -> Any:
    if isinstance(data, Mapping):
        return None if set(data) == {"detail"} else data
    if isinstance(data, Sequence) and not isinstance(data, str):
        return data
    return None
