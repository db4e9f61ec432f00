from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone

REQUEST_ID_HEADER = "X-Request-ID"

# Attributes passed through ``extra=`` that end up in the JSON line.
LEDGER_LOG_FIELDS = (
    "request_id",
    "tenant_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "remote_addr",
    "entity",
    "entity_id",
    "dependents",
    "invoice_number",
    "previous_status",
    "new_status",
)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with ledger context fields when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field))
            for field in LEDGER_LOG_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        # Decimals and UUIDs fall back to their string form.
        return json.dumps(entry, ensure_ascii=False, default=str)


def tenant_id_for(request) -> str | None:
    user = getattr(request, "user", None)
    if user is None or not user.is_authenticated:
        return None
    return str(user.pk)


class RequestLogMiddleware:
    """Tag each request with an ID and write one access line when it completes.

    DRF copies the JWT-authenticated user back onto the Django request, so the
    tenant is known by the time the response comes back through here.
    """

    def __init__(self, get_response):
        self.get_response = get_response
        self.logger = logging.getLogger("api.request")

    def __call__(self, request):
        request.request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()
        response = self.get_response(request)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        level = logging.ERROR if response.status_code >= 500 else logging.INFO
        self.logger.log(
            level,
            "request_completed",
            extra={
                "request_id": request.request_id,
                "tenant_id": tenant_id_for(request),
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": elapsed_ms,
                "remote_addr": request.META.get("REMOTE_ADDR"),
            },
        )
        response[REQUEST_ID_HEADER] = request.request_id
        return response
