# src/hubuum_console/correlation.py

import logging
import re
import time
import uuid
from typing import Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from .log_utils import log_event

logger = logging.getLogger(__name__)

CORRELATION_ID_HEADER = "x-correlation-id"
CORRELATION_COOKIE_MAX_AGE = 60 * 30  # 30 minutes
_CORRELATION_ID_PATTERN = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def normalize_correlation_id(value: Optional[str]) -> Optional[str]:
    """Return the trimmed id, or None when it is absent or malformed."""
    if not value:
        return None
    trimmed = value.strip()
    if not _CORRELATION_ID_PATTERN.fullmatch(trimmed):
        return None
    return trimmed


def request_is_https(request: Request) -> bool:
    forwarded_proto = request.headers.get("x-forwarded-proto", "").split(",")[0].strip().lower()
    effective_proto = forwarded_proto or request.url.scheme.lower()
    return effective_proto == "https"


def get_correlation_id(request: Request) -> str:
    correlation_id = getattr(request.state, "correlation_id", None)
    if correlation_id:
        return correlation_id
    return normalize_correlation_id(request.headers.get(CORRELATION_ID_HEADER)) or generate_correlation_id()


class CorrelationMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with a correlation id.

    API calls reuse the id of the page that triggered them (header first, then
    the short-lived cookie). A page navigation starts a new chain.
    """

    def __init__(self, app, cookie_name: str):
        super().__init__(app)
        self.cookie_name = cookie_name

    async def dispatch(self, request, call_next):
        path = request.url.path
        is_api = path.startswith("/api/")
        header_id = normalize_correlation_id(request.headers.get(CORRELATION_ID_HEADER))
        cookie_id = normalize_correlation_id(request.cookies.get(self.cookie_name))
        if is_api:
            correlation_id = header_id or cookie_id or generate_correlation_id()
        else:
            correlation_id = header_id or generate_correlation_id()
        request.state.correlation_id = correlation_id

        log_event(
            logger, "http.request",
            cid=correlation_id,
            method=request.method,
            path=path,
            content_type=request.headers.get("content-type", "-"),
            accept=request.headers.get("accept", "-"),
        )
        started = time.perf_counter()
        response: StarletteResponse = await call_next(request)
        log_event(
            logger, "http.response",
            cid=correlation_id,
            method=request.method,
            path=path,
            status=response.status_code,
            latency_ms=int((time.perf_counter() - started) * 1000),
        )

        response.headers[CORRELATION_ID_HEADER] = correlation_id
        if cookie_id != correlation_id:
            response.set_cookie(
                self.cookie_name,
                correlation_id,
                max_age=CORRELATION_COOKIE_MAX_AGE,
                path="/",
                httponly=True,
                secure=request_is_https(request),
                samesite="lax",
            )
        return response
