# src/hubuum_console/proxy.py

import logging
from typing import Optional
from urllib.parse import quote

import httpx
from fastapi import APIRouter, Depends, Request, Response, status

from .context import AppContext, get_context
from .correlation import CORRELATION_ID_HEADER, get_correlation_id
from .errors import json_error
from .log_utils import log_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

ALLOWED_METHODS = frozenset({"GET", "POST", "PATCH", "PUT", "DELETE"})
# Every method is routed here; the handler answers 405 itself.
ROUTE_METHODS = sorted(ALLOWED_METHODS | {"HEAD", "OPTIONS", "TRACE", "CONNECT"})
BODYLESS_METHODS = frozenset({"GET", "HEAD"})
UPSTREAM_PREFIX = "api/"
FORWARDED_HEADERS = ("content-type", "accept")
# RFC 3986 pchar characters that stay literal in a re-encoded segment.
SEGMENT_SAFE_CHARS = "!$&'()*+,;=:@"


def to_upstream_path(path: str) -> Optional[str]:
    """Map the captured route path to an upstream path, or None when it is not under api/."""
    if not path or not path.startswith(UPSTREAM_PREFIX):
        return None
    segments = path.split("/")
    if any(segment in (".", "..") for segment in segments):
        return None
    return "/" + "/".join(quote(segment, safe=SEGMENT_SAFE_CHARS) for segment in segments)


@router.api_route("/api/hubuum/{path:path}", methods=ROUTE_METHODS)
async def proxy_to_backend(
        path: str,
        request: Request,
        context: AppContext = Depends(get_context),
):
    method = request.method.upper()
    correlation_id = get_correlation_id(request)
    source = request.scope["path"]

    if method not in ALLOWED_METHODS:
        log_event(logger, "proxy.rejected", logging.WARNING, cid=correlation_id, method=method,
                  source=source, status=405, reason="method-not-allowed")
        return json_error(status.HTTP_405_METHOD_NOT_ALLOWED, "MethodNotAllowed",
                          f"{method} is not supported.", correlation_id)

    upstream_path = to_upstream_path(path)
    if upstream_path is None:
        log_event(logger, "proxy.rejected", logging.WARNING, cid=correlation_id, method=method,
                  source=source, status=400, reason="bad-path")
        return json_error(status.HTTP_400_BAD_REQUEST, "BadRequest",
                          "Path must begin with api/.", correlation_id)

    session = await context.sessions.resolve_session(request.cookies)
    if session is None:
        log_event(logger, "proxy.rejected", logging.WARNING, cid=correlation_id, method=method,
                  source=source, status=401, reason="no-session")
        return json_error(status.HTTP_401_UNAUTHORIZED, "Unauthorized",
                          "Sign in required.", correlation_id)

    upstream_headers = {
        name: request.headers[name] for name in FORWARDED_HEADERS if request.headers.get(name)
    }
    body = await request.body() if method not in BODYLESS_METHODS else None

    try:
        upstream = await context.backend.request(
            method,
            upstream_path,
            query=request.scope.get("query_string", b"").decode("latin-1"),
            token=session.token,
            correlation_id=correlation_id,
            headers=upstream_headers,
            content=body,
            source=source,
        )
    except httpx.RequestError:
        return json_error(status.HTTP_502_BAD_GATEWAY, "UpstreamUnavailable",
                          "Failed to reach backend service.", correlation_id)

    response = Response(content=upstream.content, status_code=upstream.status_code)
    content_type = upstream.headers.get("content-type")
    if content_type:
        response.headers["content-type"] = content_type
    response.headers[CORRELATION_ID_HEADER] = correlation_id

    if upstream.status_code == status.HTTP_401_UNAUTHORIZED:
        # Upstream rejected the token: the browser session ends here.
        await context.sessions.destroy_session(session.sid)
        context.sessions.clear_session_cookie(response, request)

    return response
