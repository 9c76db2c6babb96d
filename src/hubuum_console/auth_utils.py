# src/hubuum_console/auth_utils.py

import logging
from typing import Any, Optional, Tuple

import httpx
from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel, Field, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .backend import BackendClient
from .context import AppContext, get_context
from .correlation import get_correlation_id
from .session import ActiveSession

logger = logging.getLogger(__name__)

# --- Upstream Hubuum endpoints ---
LOGIN_PATH = "/api/v0/auth/login"
LOGOUT_PATH = "/api/v0/auth/logout"
ADMIN_PROBE_PATH = "/api/v1/iam/groups"

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class LoginCredentials(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


async def parse_credentials(request: Request) -> Tuple[Optional[LoginCredentials], bool]:
    """
    Read login credentials from a JSON or form body.
    Returns the credentials (None when unusable) and whether the caller is an HTML form.
    """
    content_type = request.headers.get("content-type", "").lower()
    from_form = any(ct in content_type for ct in FORM_CONTENT_TYPES)

    try:
        if "application/json" in content_type:
            body = await request.json()
            return LoginCredentials.model_validate(body), False
        if from_form:
            form = await request.form()
            body = {"username": form.get("username"), "password": form.get("password")}
            return LoginCredentials.model_validate(body), True
    except (ValueError, ValidationError) as e:
        logger.info("Login payload rejected: %s", type(e).__name__)
    except StarletteHTTPException as e:
        # Raised by request.form() for a malformed multipart body.
        logger.info("Login form unreadable: %s", e.detail)

    return None, from_form


def read_json_payload(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


async def login_upstream(
        backend: BackendClient,
        credentials: LoginCredentials,
        correlation_id: Optional[str],
) -> httpx.Response:
    return await backend.request(
        "POST",
        LOGIN_PATH,
        correlation_id=correlation_id,
        headers={"content-type": "application/json"},
        content=credentials.model_dump_json().encode("utf-8"),
    )


async def logout_upstream(backend: BackendClient, token: str, correlation_id: Optional[str]) -> None:
    """Best effort: the local logout proceeds whatever the upstream says."""
    try:
        response = await backend.request("GET", LOGOUT_PATH, token=token, correlation_id=correlation_id)
    except httpx.RequestError as e:
        logger.warning("Upstream logout failed, continuing with local logout: %s", type(e).__name__)
        return
    if response.status_code >= 400:
        logger.info("Upstream logout returned status=%d", response.status_code)


async def has_admin_access(backend: BackendClient, token: str, correlation_id: Optional[str] = None) -> bool:
    try:
        response = await backend.request("GET", ADMIN_PROBE_PATH, token=token, correlation_id=correlation_id)
    except httpx.RequestError as e:
        logger.warning("Admin access check failed: %s", type(e).__name__)
        return False

    allowed = response.status_code == status.HTTP_200_OK
    if not allowed:
        logger.info("Admin access check denied status=%d", response.status_code)
    return allowed


# --- Dependency for pages that need a signed-in user ---
async def require_session(
        request: Request,
        context: AppContext = Depends(get_context),
) -> ActiveSession:
    correlation_id = get_correlation_id(request)
    session = await context.sessions.resolve_session(request.cookies)

    if session is None:
        logger.warning("No active session (cid=%s), redirecting to /login", correlation_id)
        raise HTTPException(
            status_code=status.HTTP_307_TEMPORARY_REDIRECT,
            detail="Not authenticated",
            headers={"Location": "/login"},
        )

    logger.info("Active session found (cid=%s)", correlation_id)
    return session
