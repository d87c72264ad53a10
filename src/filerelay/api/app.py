"""
FastAPI application factory.

``create_app()`` wires middleware, routers, error handlers, and
lifespan events into a single ``FastAPI`` instance.

Manifesto:
    The app factory is the single composition root — the transfer service,
    middleware, routers, and lifecycle hooks are wired here so the rest of
    the codebase never touches ``FastAPI`` directly.

Tags:
    api, app-factory, composition-root, FastAPI
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from filerelay import __version__
from filerelay.api.deps import get_settings
from filerelay.api.middleware.errors import relay_error_handler, unhandled_exception_handler
from filerelay.api.middleware.request_id import RequestIDMiddleware
from filerelay.api.middleware.timing import TimingMiddleware
from filerelay.core.errors import RelayError
from filerelay.core.logging import configure_logging, get_logger
from filerelay.core.settings import RelaySettings
from filerelay.transfer.service import TransferService


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup / shutdown hooks."""
    settings: RelaySettings = app.state.settings
    configure_logging(settings.log_level, settings.json_logs, service="filerelay")
    log = get_logger("filerelay.api")
    service: TransferService = app.state.service

    service.start()
    log.info("filerelay.starting", version=app.version)

    yield

    log.info("filerelay.shutting_down", active_items=len(service.registry))
    await service.shutdown()


def create_app(
    *,
    settings: RelaySettings | None = None,
    service: TransferService | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : RelaySettings | None
        Override settings (useful for testing).  When ``None`` the cached
        singleton from :func:`get_settings` is used.
    service : TransferService | None
        Pre-built service (tests wire one over ``httpx.MockTransport``).
    """

    settings = settings or get_settings()

    app = FastAPI(
        title="filerelay",
        version=__version__,
        lifespan=lifespan,
    )

    # Stash settings and service on app state for handlers and middleware
    app.state.settings = settings
    app.state.service = service or TransferService.from_settings(settings)

    # Override DI so endpoints use the provided settings
    app.dependency_overrides[get_settings] = lambda: settings

    # ── Middleware (outermost → innermost) ────────────────────────────
    app.add_middleware(TimingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # ── Exception handlers ───────────────────────────────────────────
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────
    from filerelay.api.routers import oauth, system, transfers

    app.include_router(system.router)
    app.include_router(transfers.router)
    app.include_router(oauth.router)

    return app
