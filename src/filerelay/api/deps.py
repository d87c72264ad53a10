"""
FastAPI dependency injection — settings singleton and the transfer service.

Usage in routers::

    from filerelay.api.deps import Service, SessionToken

    @router.post("/things")
    async def do_thing(service: Service, authorization: SessionToken):
        ...
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, Request

from filerelay.core.settings import RelaySettings
from filerelay.transfer.service import TransferService

# ── Settings (singleton) ─────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_settings() -> RelaySettings:
    """Cached settings — loaded once per process."""
    return RelaySettings()


# ── Service (one per app) ────────────────────────────────────────────────


def get_service(request: Request) -> TransferService:
    """The :class:`TransferService` built by the app factory."""
    return request.app.state.service


def get_session_token(authorization: Annotated[str | None, Header()] = None) -> str | None:
    """Raw ``Authorization`` header; decoding happens in the service."""
    return authorization


Service = Annotated[TransferService, Depends(get_service)]
SessionToken = Annotated[str | None, Depends(get_session_token)]
