# src/hubuum_console/session.py

import abc
import base64
import binascii
import logging
import uuid
from typing import Any, Dict, Mapping, Optional

from starlette.requests import Request
from starlette.responses import Response

from .config import Settings
from .correlation import request_is_https
from .session_store import SessionRecord, SessionStore, now_ms

logger = logging.getLogger(__name__)

STANDALONE_SID = "cookie-token"


class ActiveSession(SessionRecord):
    sid: str


def encode_cookie_value(value: str) -> str:
    return base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cookie_value(value: str) -> Optional[str]:
    padded = value + "=" * (-len(value) % 4)
    try:
        return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None


class SessionBoundary(abc.ABC):
    """
    Maps browser cookies to sessions. One subclass is chosen per process by
    build_session_boundary; callers never branch on the mode themselves.
    """
    mode: str

    def __init__(self, settings: Settings):
        self.settings = settings
        prefix = settings.COOKIE_PREFIX
        self.sid_cookie = f"{prefix}.sid"
        self.token_cookie = f"{prefix}.token"
        self.username_cookie = f"{prefix}.username"

    def cookie_options(self, request: Optional[Request] = None) -> Dict[str, Any]:
        return {
            "max_age": self.settings.SESSION_TTL_SECONDS,
            "path": "/",
            "httponly": True,
            "secure": request_is_https(request) if request is not None else True,
            "samesite": "lax",
        }

    def _expire_cookie(self, response: Response, name: str, request: Optional[Request]) -> None:
        options = self.cookie_options(request)
        options.pop("max_age")
        response.delete_cookie(name, **options)

    @abc.abstractmethod
    async def resolve_session(self, cookies: Mapping[str, str]) -> Optional[ActiveSession]: ...

    @abc.abstractmethod
    async def create_session(self, token: str, username: Optional[str] = None) -> str: ...

    @abc.abstractmethod
    async def destroy_session(self, sid: str) -> None: ...

    @abc.abstractmethod
    def _write_cookies(
            self,
            response: Response,
            request: Optional[Request],
            sid: str,
            token: Optional[str],
            username: Optional[str],
    ) -> None: ...

    def set_session_cookie(
            self,
            response: Response,
            sid: str,
            request: Optional[Request] = None,
            token: Optional[str] = None,
            username: Optional[str] = None,
    ) -> None:
        self._write_cookies(response, request, sid, token, username)
        options = self.cookie_options(request)
        logger.info(
            "Set session cookie mode=%s tokenLen=%d secure=%s maxAge=%d host=%s proto=%s xfp=%s",
            self.mode,
            len(token or ""),
            options["secure"],
            options["max_age"],
            request.url.netloc if request is not None else "-",
            request.url.scheme if request is not None else "-",
            request.headers.get("x-forwarded-proto", "-") if request is not None else "-",
        )

    def clear_session_cookie(self, response: Response, request: Optional[Request] = None) -> None:
        # All three cookies, whatever the mode.
        for name in (self.sid_cookie, self.token_cookie, self.username_cookie):
            self._expire_cookie(response, name, request)


class DistributedSessionBoundary(SessionBoundary):
    """The cookie holds an opaque session id; the token stays in the store."""
    mode = "sid"

    def __init__(self, settings: Settings, store: SessionStore):
        super().__init__(settings)
        self.store = store

    async def resolve_session(self, cookies: Mapping[str, str]) -> Optional[ActiveSession]:
        sid = cookies.get(self.sid_cookie)
        if not sid:
            return None

        record = await self.store.get(sid)
        if record is None:
            return None

        touched = record.model_copy(update={"last_seen": now_ms()})
        await self.store.touch(sid, touched)
        return ActiveSession(sid=sid, **touched.model_dump())

    async def create_session(self, token: str, username: Optional[str] = None) -> str:
        sid = str(uuid.uuid4())
        now = now_ms()
        record = SessionRecord(token=token, username=username, created_at=now, last_seen=now)
        await self.store.create(sid, record)
        return sid

    async def destroy_session(self, sid: str) -> None:
        await self.store.destroy(sid)

    def _write_cookies(self, response, request, sid, token, username):
        response.set_cookie(self.sid_cookie, sid, **self.cookie_options(request))
        self._expire_cookie(response, self.token_cookie, request)
        self._expire_cookie(response, self.username_cookie, request)


class StandaloneSessionBoundary(SessionBoundary):
    """
    No distributed store: the token itself lives in an HttpOnly cookie.

    There is no server-side idle timeout in this mode; the cookie max-age is
    the only expiry.
    """
    mode = "token-cookie"

    async def resolve_session(self, cookies: Mapping[str, str]) -> Optional[ActiveSession]:
        encoded_token = cookies.get(self.token_cookie)
        if not encoded_token:
            logger.warning("No token cookie present on request")
            return None

        token = decode_cookie_value(encoded_token)
        if not token:
            logger.warning("Token cookie decode failed on request")
            return None

        encoded_username = cookies.get(self.username_cookie)
        username = decode_cookie_value(encoded_username) if encoded_username else None

        return ActiveSession(
            sid=STANDALONE_SID,
            token=token,
            username=username or None,
            created_at=0,
            last_seen=now_ms(),
        )

    async def create_session(self, token: str, username: Optional[str] = None) -> str:
        return f"cookie-{uuid.uuid4()}"

    async def destroy_session(self, sid: str) -> None:
        return None

    def _write_cookies(self, response, request, sid, token, username):
        if not token:
            raise ValueError("Standalone sessions need the token to set the session cookie.")
        options = self.cookie_options(request)
        response.set_cookie(self.token_cookie, encode_cookie_value(token), **options)
        if username:
            response.set_cookie(self.username_cookie, encode_cookie_value(username), **options)
        else:
            self._expire_cookie(response, self.username_cookie, request)
        self._expire_cookie(response, self.sid_cookie, request)


def build_session_boundary(settings: Settings, store: SessionStore) -> SessionBoundary:
    if settings.uses_distributed_sessions:
        return DistributedSessionBoundary(settings, store)
    return StandaloneSessionBoundary(settings)
