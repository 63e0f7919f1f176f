from __future__ import annotations

import json
import logging
import time
import uuid
from datetime import datetime, timezone

# ``extra=`` keys copied onto every JSON log line when present.
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
    "remote_addr",
    "user_id",
    "shop_id",
    "command",
    "revision",
)
PROBE_PATHS = {"/healthz", "/readyz"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, carrying the shop and request context."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(
            (field, getattr(record, field)) for field in CONTEXT_FIELDS if getattr(record, field, None) is not None
        )
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _caller(request):
    user = getattr(request, "user", None)
    if user is None or not getattr(user, "is_authenticated", False):
        return None, None
    shop_id = getattr(user, "shop_id", None)
    return str(user.pk), str(shop_id) if shop_id else None


class RequestLogMiddleware:
    """Tag each request with an ``X-Request-ID`` and write one access line per response."""

    def __init__(self, get_response):
        self.get_response = get_response
        self.logger = logging.getLogger("api.request")

    def __call__(self, request):
        started_at = time.perf_counter()
        request.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex

        response = self.get_response(request)

        user_id, shop_id = _caller(request)
        if response.status_code >= 500:
            level = logging.ERROR
        elif request.path in PROBE_PATHS:
            level = logging.DEBUG
        else:
            level = logging.INFO
        self.logger.log(
            level,
            "request_completed",
            extra={
                "request_id": request.request_id,
                "method": request.method,
                "path": request.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started_at) * 1000, 2),
                "remote_addr": request.META.get("REMOTE_ADDR"),
                "user_id": user_id,
                "shop_id": shop_id,
            },
        )
        response["X-Request-ID"] = request.request_id
        return response
