# src/hubuum_console/main.py

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import httpx
import redis.asyncio as redis
from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from . import auth_utils
from .auth_utils import require_session
from .backend import BackendClient
from .config import CONFIG_FILE_DIR, Settings, get_settings
from .context import AppContext, get_context
from .correlation import CorrelationMiddleware, get_correlation_id
from .errors import SessionStoreUnavailable, json_error
from .log_utils import configure_logging
from .proxy import router as proxy_router
from .session import ActiveSession, build_session_boundary
from .session_store import SessionStore, build_session_store

logger = logging.getLogger(__name__)

templates = Jinja2Templates(directory=CONFIG_FILE_DIR / "templates")

LOGIN_ERROR_MESSAGES = {
    "invalid_credentials": "Invalid username or password.",
    "unavailable": "The Hubuum API could not be reached. Try again shortly.",
}

auth_router = APIRouter(prefix="/api/auth", tags=["auth"])
pages_router = APIRouter(tags=["pages"])


def see_other(location: str) -> RedirectResponse:
    return RedirectResponse(
        url=location,
        status_code=status.HTTP_303_SEE_OTHER,
        headers={"Cache-Control": "no-store"},
    )


# --- Authentication Routes ---
@auth_router.post("/login")
async def login(request: Request, context: AppContext = Depends(get_context)):
    correlation_id = get_correlation_id(request)
    credentials, from_form = await auth_utils.parse_credentials(request)
    logger.info(
        "Login request (cid=%s) fromForm=%s hasCredentials=%s",
        correlation_id, from_form, credentials is not None,
    )

    if credentials is None:
        if from_form:
            return see_other("/login?error=invalid_credentials")
        return json_error(status.HTTP_400_BAD_REQUEST, "BadRequest", "Invalid login payload", correlation_id)

    try:
        upstream = await auth_utils.login_upstream(context.backend, credentials, correlation_id)
    except httpx.RequestError:
        if from_form:
            return see_other("/login?error=unavailable")
        return json_error(status.HTTP_502_BAD_GATEWAY, "UpstreamUnavailable",
                          "Failed to reach backend service.", correlation_id)

    payload = auth_utils.read_json_payload(upstream)
    logger.info("Backend login (cid=%s) status=%d", correlation_id, upstream.status_code)

    if not upstream.is_success:
        if from_form:
            return see_other("/login?error=invalid_credentials")
        return JSONResponse(
            status_code=upstream.status_code,
            content=payload if payload is not None else {
                "error": "AuthenticationFailed",
                "message": "Login failed",
            },
        )

    token = payload.get("token") if isinstance(payload, dict) else None
    if not isinstance(token, str) or not token:
        return json_error(status.HTTP_502_BAD_GATEWAY, "AuthProtocolError",
                          "Backend did not return a token", correlation_id)

    sid = await context.sessions.create_session(token, credentials.username)
    if from_form:
        response = see_other("/app")
    else:
        response = JSONResponse({"authenticated": True}, headers={"Cache-Control": "no-store"})
    context.sessions.set_session_cookie(response, sid, request, token, credentials.username)
    logger.info("Login succeeded and session created (cid=%s, fromForm=%s)", correlation_id, from_form)
    return response


@auth_router.api_route("/logout", methods=["GET", "POST"])
async def logout(request: Request, context: AppContext = Depends(get_context)):
    correlation_id = get_correlation_id(request)
    session = await context.sessions.resolve_session(request.cookies)

    if session is not None:
        await auth_utils.logout_upstream(context.backend, session.token, correlation_id)
        await context.sessions.destroy_session(session.sid)
    else:
        logger.info("Logout request had no active session (cid=%s)", correlation_id)

    content_type = request.headers.get("content-type", "").lower()
    if any(ct in content_type for ct in auth_utils.FORM_CONTENT_TYPES):
        response = see_other("/login")
    else:
        response = JSONResponse({"message": "Logged out."})
    context.sessions.clear_session_cookie(response, request)
    logger.info("Logout completed (cid=%s)", correlation_id)
    return response


@auth_router.get("/session")
async def session_status(request: Request, context: AppContext = Depends(get_context)):
    session = await context.sessions.resolve_session(request.cookies)
    if session is None:
        return JSONResponse({"authenticated": False}, status_code=status.HTTP_401_UNAUTHORIZED)

    return {
        "authenticated": True,
        "createdAt": session.created_at,
        "lastSeen": session.last_seen,
    }


# --- Pages ---
@pages_router.get("/", include_in_schema=False)
async def read_root(request: Request, context: AppContext = Depends(get_context)):
    session = await context.sessions.resolve_session(request.cookies)
    return RedirectResponse(url="/app" if session else "/login", status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@pages_router.get("/login", response_class=HTMLResponse, include_in_schema=False)
async def login_page(request: Request, context: AppContext = Depends(get_context)):
    # Credentials must never linger in a URL (e.g. a form submitted with GET).
    if "username" in request.query_params or "password" in request.query_params:
        return RedirectResponse(url="/login", status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    session = await context.sessions.resolve_session(request.cookies)
    if session is not None:
        return RedirectResponse(url="/app", status_code=status.HTTP_307_TEMPORARY_REDIRECT)

    error_code = request.query_params.get("error")
    error_message = LOGIN_ERROR_MESSAGES.get(error_code, "Sign in failed.") if error_code else None
    return templates.TemplateResponse(
        request,
        "login.html",
        {"app_name": context.settings.APP_NAME, "error": error_message},
    )


@pages_router.get("/app", response_class=HTMLResponse, include_in_schema=False)
async def app_home(
        request: Request,
        session: ActiveSession = Depends(require_session),
        context: AppContext = Depends(get_context),
):
    can_view_admin = await auth_utils.has_admin_access(
        context.backend, session.token, get_correlation_id(request)
    )
    return templates.TemplateResponse(
        request,
        "app.html",
        {
            "app_name": context.settings.APP_NAME,
            "username": session.username,
            "can_view_admin": can_view_admin,
        },
    )


def build_context(
        settings: Settings,
        store: Optional[SessionStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        redis_client: Optional[redis.Redis] = None,
) -> AppContext:
    if store is None:
        store = build_session_store(settings, redis_client)
    return AppContext(
        settings=settings,
        store=store,
        sessions=build_session_boundary(settings, store),
        backend=BackendClient(settings.backend_base_url, transport=transport),
    )


def create_app(
        settings: Optional[Settings] = None,
        *,
        store: Optional[SessionStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        redis_client: Optional[redis.Redis] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)
    context = build_context(settings, store, transport, redis_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("--- %s BFF starting up ---", settings.APP_NAME)
        logger.info("Backend base URL: %s", settings.backend_base_url)
        logger.info("Session mode: %s", context.sessions.mode)
        logger.info("Session store: %s", type(context.store).__name__)
        logger.info("Session TTL: %ds", settings.SESSION_TTL_SECONDS)
        yield
        await context.aclose()

    app = FastAPI(
        title=f"{settings.APP_NAME} BFF",
        description="Backend-For-Frontend for the Hubuum console, holding the API token and proxying to Hubuum.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_middleware(CorrelationMiddleware, cookie_name=f"{settings.COOKIE_PREFIX}.cid")

    app.include_router(auth_router)
    app.include_router(proxy_router)
    app.include_router(pages_router)

    @app.exception_handler(SessionStoreUnavailable)
    async def session_store_unavailable_handler(request: Request, exc: SessionStoreUnavailable) -> JSONResponse:
        logger.error("Session store unavailable on %s %s: %s", request.method, request.url.path, exc)
        return json_error(status.HTTP_503_SERVICE_UNAVAILABLE, "SessionStoreUnavailable",
                          "Session storage is temporarily unavailable.", get_correlation_id(request))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return json_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "InternalError",
                          "An unexpected error occurred. Please try again later.",
                          get_correlation_id(request))

    return app


app = create_app()
