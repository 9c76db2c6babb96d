# src/hubuum_console/backend.py

import logging
import time
from typing import Dict, Optional
from urllib.parse import urljoin

import httpx

from .correlation import CORRELATION_ID_HEADER, normalize_correlation_id
from .log_utils import log_event

logger = logging.getLogger(__name__)


class BackendClient:
    """Thin wrapper around one httpx.AsyncClient pointed at the Hubuum API."""

    def __init__(self, base_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self._client = httpx.AsyncClient(transport=transport)

    def build_url(self, path: str, query: str = "") -> str:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = urljoin(self.base_url, normalized_path)
        return f"{url}?{query}" if query else url

    async def request(
            self,
            method: str,
            path: str,
            *,
            query: str = "",
            token: Optional[str] = None,
            correlation_id: Optional[str] = None,
            headers: Optional[Dict[str, str]] = None,
            content: Optional[bytes] = None,
            source: Optional[str] = None,
    ) -> httpx.Response:
        """
        Send one request upstream and return the raw response.

        Network failures are logged and re-raised as httpx.RequestError; the
        caller decides what status the browser sees.
        """
        method = method.upper()
        upstream_headers = {k.lower(): v for k, v in (headers or {}).items()}
        upstream_headers.setdefault("accept", "application/json")
        cid = normalize_correlation_id(correlation_id)
        if cid:
            upstream_headers[CORRELATION_ID_HEADER] = cid
        if token:
            upstream_headers["authorization"] = f"Bearer {token}"

        safe_path = f"{path}?{query}" if query else path
        log_fields = {"cid": cid or "-", "method": method, "path": safe_path}
        if source:
            log_fields["source"] = source
        log_event(logger, "backend.send", **log_fields)

        started = time.perf_counter()
        try:
            response = await self._client.request(
                method,
                self.build_url(path, query),
                headers=upstream_headers,
                content=content,
            )
        except httpx.RequestError as e:
            log_event(
                logger, "backend.error", logging.ERROR,
                latency_ms=int((time.perf_counter() - started) * 1000),
                error=f"{type(e).__name__}: {e}",
                **log_fields,
            )
            raise

        log_event(
            logger, "backend.receive",
            status=response.status_code,
            latency_ms=int((time.perf_counter() - started) * 1000),
            **log_fields,
        )
        return response

    async def aclose(self) -> None:
        await self._client.aclose()
