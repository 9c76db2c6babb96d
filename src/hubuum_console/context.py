# src/hubuum_console/context.py

from dataclasses import dataclass

from fastapi import Request

from .backend import BackendClient
from .config import Settings
from .session import SessionBoundary
from .session_store import SessionStore


@dataclass
class AppContext:
    """Process-scoped collaborators, built once in create_app."""
    settings: Settings
    store: SessionStore
    sessions: SessionBoundary
    backend: BackendClient

    async def aclose(self) -> None:
        await self.backend.aclose()
        await self.store.aclose()


def get_context(request: Request) -> AppContext:
    return request.app.state.context
