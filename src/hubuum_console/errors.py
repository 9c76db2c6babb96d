# src/hubuum_console/errors.py

from typing import Optional

from fastapi.responses import JSONResponse

from .correlation import CORRELATION_ID_HEADER


class SessionStoreUnavailable(Exception):
    """The distributed session store could not be reached or is not configured."""


def json_error(
        status_code: int,
        error: str,
        message: str,
        correlation_id: Optional[str] = None,
) -> JSONResponse:
    headers = {CORRELATION_ID_HEADER: correlation_id} if correlation_id else None
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "message": message},
        headers=headers,
    )
