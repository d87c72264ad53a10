"""
Common API schemas — response envelopes and RFC 7807 errors.

Recipe endpoints answer with :class:`TransferResponse`; every 4xx/5xx uses
:class:`ProblemDetail`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


# ── RFC 7807 Problem Detail ─────────────────────────────────────────────


class ProblemDetail(BaseModel):
    """RFC 7807 «Problem Details for HTTP APIs».

    Error kinds:
        - ``VALIDATION`` (400): Bad payload or source value
        - ``AUTH`` (401): Missing/invalid session or no OAuth credential
        - ``INTERNAL`` (500): Unexpected server error
    """

    type: str = Field(default="about:blank", description="URI reference identifying the problem type")
    title: str = Field(description="Short human-readable summary")
    status: int = Field(description="HTTP status code")
    detail: str = Field(default="", description="Human-readable explanation")
    instance: str = Field(default="", description="URI of the request that failed")
    kind: str | None = Field(default=None, description="ErrorKind of the failure")
    context: dict[str, Any] | None = Field(default=None, description="Structured error context")


# ── Transfers ───────────────────────────────────────────────────────────


class TransferResponse(BaseModel):
    """Immediate acknowledgment of a recipe run."""

    success: bool | None = None
    message: str | None = None


class RemoteOption(BaseModel):
    title: str
    value: str


class RemoteOptionsPage(BaseModel):
    """Paginated remote-options answer for a dropdown field."""

    options: list[RemoteOption]
    isPaginated: bool = True
    nextPageRequestData: dict[str, int] | None = None
    isLastPage: bool


# ── System ──────────────────────────────────────────────────────────────


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    active_items: int


class MetricsResponse(BaseModel):
    metrics: dict[str, dict[str, Any]]
    circuits: dict[str, dict[str, Any]]
    active_items: int
    in_flight: dict[str, int]
