"""
Shared pytest fixtures for filerelay tests.

This module provides:
- A manual clock for breaker, limiter, registry and token cache tests
- Settings with every delay zeroed so pipelines drain instantly
- Task and file builders

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(clock, settings):
            ...
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import jwt
import pytest

from filerelay.core.settings import PipelineProfile, RelaySettings
from filerelay.transfer.models import FileRef, TransferTask


# =============================================================================
# Clock
# =============================================================================


class ManualClock:
    """Monotonic clock advanced explicitly by the test."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


# =============================================================================
# Settings
# =============================================================================


def fast_profile(**overrides: Any) -> PipelineProfile:
    """Pipeline profile with every wait zeroed."""
    values: dict[str, Any] = {
        "max_concurrent": 3,
        "max_task_retries": 10,
        "inter_task_delay": 0.0,
        "concurrency_poll_interval": 0.0,
        "rate_limit_poll_interval": 0.0,
        "backoff_base": 0.0,
        "backoff_cap": 0.0,
        "complexity_backoff_base": 0.0,
        "complexity_backoff_step": 0.0,
        "complexity_backoff_cap": 0.0,
    }
    values.update(overrides)
    return PipelineProfile(**values)


@pytest.fixture
def settings(tmp_path: Path) -> RelaySettings:
    """Settings isolated from the environment with instant retries."""
    profile = fast_profile()
    return RelaySettings(
        _env_file=None,
        scratch_dir=tmp_path / "scratch",
        client_id="client-id",
        client_secret="client-secret",
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        download_retry_delay=0.0,
        move_poll_interval=0.0,
        profiles={name: profile for name in ("column", "item", "board", "update")},
    )


# =============================================================================
# Builders
# =============================================================================


def make_file(asset_id: str = "a1", name: str = "report.pdf", public_url: str | None = None) -> FileRef:
    return FileRef(asset_id=asset_id, name=name, public_url=public_url)


def make_task(asset_id: str = "a1", item_key: str = "item-1", **overrides: Any) -> TransferTask:
    values: dict[str, Any] = {
        "item_key": item_key,
        "access_token": "token",
        "user_id": "u1",
        "board_id": "b1",
        "source_item_id": "item-1",
        "destination_item_id": "item-2",
        "destination_column_id": "files_dst",
        "file": make_file(asset_id, f"{asset_id}.pdf"),
        "circuit_key": "file:item-2",
    }
    values.update(overrides)
    return TransferTask(**values)


@pytest.fixture
def task_factory():
    return make_task


@pytest.fixture
def profile_factory():
    return fast_profile


# =============================================================================
# Fake monday.com
# =============================================================================


class FakeMonday:
    """httpx.MockTransport handler emulating the monday.com endpoints.

    GraphQL requests are routed by what the query asks for; uploads land in
    ``uploads``; every other URL serves a small PDF.
    """

    def __init__(self, settings: RelaySettings):
        self.settings = settings
        self.column_values: dict[tuple[str, str], str] = {}
        self.updates: dict[str, dict[str, Any]] = {}
        self.boards: dict[str, list[dict[str, Any]]] = {}
        self.uploads: list[bytes] = []
        self.changes: list[dict[str, Any]] = []
        self.notifications: list[dict[str, Any]] = []
        self.upload_errors: list[str] = []

    def set_files(self, item_id: str, column_id: str, *asset_ids: str) -> None:
        files = [{"assetId": int(a), "name": f"{a}.pdf"} for a in asset_ids]
        self.column_values[(item_id, column_id)] = json.dumps({"files": files})

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == self.settings.monday_file_url:
            if self.upload_errors:
                return httpx.Response(200, json={"errors": [{"message": self.upload_errors.pop(0)}]})
            self.uploads.append(request.content)
            return httpx.Response(200, json={"data": {"add_file_to_column": {"id": "f1"}}})
        if url == self.settings.monday_api_url:
            return self._graphql(json.loads(request.content))
        if url == f"{self.settings.monday_auth_url}/token":
            return httpx.Response(200, json={"access_token": "at", "refresh_token": "rt"})
        return httpx.Response(200, content=b"%PDF-1.4", headers={"Content-Type": "application/pdf"})

    def _graphql(self, body: dict[str, Any]) -> httpx.Response:
        query = body["query"]
        variables = body.get("variables") or {}

        if "change_column_value" in query:
            self.changes.append(variables)
            return httpx.Response(200, json={"data": {"change_column_value": {"id": variables["itemId"]}}})
        if "create_notification" in query:
            self.notifications.append(variables)
            return httpx.Response(200, json={"data": {"create_notification": {"text": variables["text"]}}})
        if "updates(" in query:
            update = self.updates.get(variables["updateId"][0])
            return httpx.Response(200, json={"data": {"updates": [update] if update else []}})
        if "assets(" in query:
            asset_id = variables["assetId"][0]
            asset = {"id": asset_id, "name": f"{asset_id}.pdf",
                     "public_url": f"https://files.example.com/{asset_id}.pdf"}
            return httpx.Response(200, json={"data": {"assets": [asset]}})
        if "boards(" in query:
            columns = self.boards.get(variables["boardId"])
            return httpx.Response(200, json={"data": {"boards": [{"columns": columns}] if columns else []}})
        if "column_values" in query:
            key = (variables["itemId"][0], variables["columnId"][0])
            value = self.column_values.get(key)
            column = {"value": value, "text": None}
            return httpx.Response(200, json={"data": {"items": [{"column_values": [column]}]}})
        if "me {" in query:
            return httpx.Response(200, json={"data": {"me": {"id": "7"}}})
        return httpx.Response(200, json={"errors": [{"message": f"unexpected query: {query}"}]})


@pytest.fixture
def monday(settings: RelaySettings) -> FakeMonday:
    return FakeMonday(settings)


@pytest.fixture
def session_token() -> str:
    """Unsigned session JWT for user 7 (settings carry no signing secret)."""
    return jwt.encode({"uid": 7, "aid": 1}, "session-secret-for-tests-only-0000", algorithm="HS256")
