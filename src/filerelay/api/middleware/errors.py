"""
Error-handling middleware — maps :class:`RelayError` kinds to RFC 7807 responses.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from filerelay.api.schemas.common import ProblemDetail
from filerelay.core.errors import ErrorKind, RelayError
from filerelay.core.logging import get_logger

logger = get_logger(__name__)

# ── Error kind → HTTP status mapping ─────────────────────────────────────

KIND_TO_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
}


def status_for_error_kind(kind: ErrorKind) -> int:
    """Resolve an error kind to HTTP status, defaulting to 500."""
    return KIND_TO_STATUS.get(kind, 500)


def problem_response(
    *,
    status: int,
    title: str,
    detail: str = "",
    instance: str = "",
    kind: str | None = None,
    context: dict[str, Any] | None = None,
) -> JSONResponse:
    """Build a RFC 7807 JSON error response."""
    body = ProblemDetail(
        title=title,
        status=status,
        detail=detail,
        instance=instance,
        kind=kind,
        context=context or None,
    )
    return JSONResponse(
        status_code=status,
        content=body.model_dump(exclude_none=True),
        media_type="application/problem+json",
    )


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    """400 for validation, 401 for auth, 500 for everything else."""
    status = status_for_error_kind(exc.kind)
    if status >= 500:
        logger.error("http.relay_error", path=request.url.path, **exc.to_dict())
        return problem_response(
            status=500,
            title="Internal server error",
            detail=exc.message if request.app.state.settings.debug else "",
            instance=str(request.url),
        )

    logger.info("http.request_rejected", path=request.url.path, kind=exc.kind.value, error=exc.message)
    return problem_response(
        status=status,
        title="Bad Request" if status == 400 else "Unauthorized",
        detail=exc.message,
        instance=str(request.url),
        kind=exc.kind.value,
        context=exc.context.to_dict(),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions — returns 500 with ProblemDetail."""
    logger.exception("http.unhandled_error", path=request.url.path)
    return problem_response(
        status=500,
        title="Internal server error",
        detail=str(exc) if request.app.state.settings.debug else "An unexpected error occurred.",
        instance=str(request.url),
    )
