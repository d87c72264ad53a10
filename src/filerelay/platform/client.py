"""
monday.com API client.

A thin async wrapper over the GraphQL endpoint and the multipart file
endpoint.  One :class:`MondayClient` is shared by the whole process; the
access token is passed per call because every item acts on behalf of a
different user.

Every failure leaves this module as a typed :class:`RelayError`:

================================  ===========================
Condition                         Raised
================================  ===========================
httpx timeout                     ``TimeoutError``
connection reset / protocol       ``ConnectionResetError``
HTTP 401 / "not authenticated"    ``AuthenticationError``
"Complexity budget" in errors     ``ComplexityBudgetError``
"Value exceeded max value ..."    ``BusinessRuleError``
anything else                     ``PlatformAPIError``
================================  ===========================

Tags:
    monday, graphql, httpx, api-client
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx

from filerelay.core.errors import (
    AuthenticationError,
    BusinessRuleError,
    ComplexityBudgetError,
    ConnectionResetError,
    PlatformAPIError,
    RelayError,
    TimeoutError,
)
from filerelay.core.logging import get_logger
from filerelay.core.settings import RelaySettings

logger = get_logger(__name__)

MAX_VALUE_EXCEEDED = "Value exceeded max value for column"

COLUMN_VALUE_QUERY = """
query($itemId: [ID!], $columnId: [String!]) {
  items(ids: $itemId) {
    column_values(ids: $columnId) {
      value
      text
    }
  }
}
"""

CHANGE_COLUMN_VALUE_MUTATION = """
mutation change_column_value($boardId: ID!, $itemId: ID!, $columnId: String!, $value: JSON!) {
  change_column_value(board_id: $boardId, item_id: $itemId, column_id: $columnId, value: $value) {
    id
  }
}
"""

BOARD_COLUMNS_QUERY = """
query($boardId: ID!) {
  boards(ids: [$boardId]) {
    columns {
      id
      title
      type
    }
  }
}
"""

UPDATE_QUERY = """
query($updateId: [ID!]) {
  updates(ids: $updateId) {
    id
    body
    creator_id
    created_at
    assets {
      id
      public_url
      name
    }
  }
}
"""

ASSET_QUERY = """
query($assetId: [ID!]!) {
  assets(ids: $assetId) {
    id
    name
    public_url
  }
}
"""

NOTIFICATION_MUTATION = """
mutation($userId: ID!, $targetId: ID!, $text: String!) {
  create_notification(user_id: $userId, target_id: $targetId, text: $text, target_type: Project) {
    text
  }
}
"""

UPLOAD_MUTATION = """
mutation($file: File!) {
  add_file_to_column(item_id: %s, column_id: %s, file: $file) {
    id
  }
}
"""


def _error_message(payload: dict[str, Any]) -> str | None:
    """First error message of a GraphQL response, if any."""
    errors = payload.get("errors")
    if errors:
        first = errors[0]
        return first.get("message") if isinstance(first, dict) else str(first)
    if payload.get("error_message"):
        return str(payload["error_message"])
    return None


def raise_for_graphql(payload: dict[str, Any], *, operation: str) -> None:
    """Raise the typed error matching a GraphQL error payload."""
    message = _error_message(payload)
    if message is None:
        return

    lowered = message.lower()
    if "complexity budget" in lowered or payload.get("error_code") == "ComplexityException":
        raise ComplexityBudgetError(message).with_context(operation=operation)
    if "not authenticated" in lowered:
        raise AuthenticationError(message).with_context(operation=operation)
    if message == MAX_VALUE_EXCEEDED:
        raise BusinessRuleError(message).with_context(operation=operation)
    raise PlatformAPIError(message).with_context(operation=operation)


class MondayClient:
    """Async monday.com API client.

    Args:
        settings: Endpoint URLs, API version and timeouts
        http: Pre-built ``httpx.AsyncClient`` (tests pass one with a
            ``MockTransport``); created lazily otherwise
    """

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        http: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or RelaySettings()
        self._http = http
        self._owns_http = http is None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
        self._http = None

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": token,
            "API-Version": self.settings.monday_api_version,
            "Accept": "application/json",
        }

    async def _post(self, url: str, *, operation: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self.http.post(url, **kwargs)
        except httpx.TimeoutException as e:
            raise TimeoutError(f"{operation} timed out", cause=e).with_context(url=url)
        except (httpx.RemoteProtocolError, httpx.ReadError, httpx.ConnectError) as e:
            raise ConnectionResetError(f"{operation} connection failed: {e}", cause=e).with_context(url=url)

        if response.status_code == 401:
            raise AuthenticationError("User not authenticated").with_context(
                url=url, http_status=401, operation=operation
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise PlatformAPIError(
                f"{operation} returned non-JSON response ({response.status_code})", cause=e
            ).with_context(url=url, http_status=response.status_code)

        raise_for_graphql(payload, operation=operation)
        if response.is_error:
            raise PlatformAPIError(
                f"{operation} failed: {response.reason_phrase}"
            ).with_context(url=url, http_status=response.status_code)
        return payload

    async def query(
        self,
        token: str,
        query: str,
        variables: dict[str, Any] | None = None,
        *,
        operation: str = "query",
    ) -> dict[str, Any]:
        """Run a GraphQL query or mutation and return the full response body."""
        body: dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = variables
        return await self._post(
            self.settings.monday_api_url,
            operation=operation,
            json=body,
            headers=self._headers(token),
        )

    # ── Column values ────────────────────────────────────────────

    async def get_column_value(self, token: str, item_id: str, column_id: str) -> str | None:
        """Raw value (or text) of one column, ``None`` when the column is empty."""
        payload = await self.query(
            token,
            COLUMN_VALUE_QUERY,
            {"itemId": [str(item_id)], "columnId": [column_id]},
            operation="get_column_value",
        )
        try:
            column = payload["data"]["items"][0]["column_values"][0]
        except (KeyError, IndexError, TypeError):
            logger.info("monday.column_value_missing", item_id=item_id, column_id=column_id)
            return None
        return column.get("value") or column.get("text")

    async def change_column_value(
        self, token: str, board_id: str, item_id: str, column_id: str, value: str
    ) -> dict[str, Any]:
        """Set a column to a JSON-encoded *value* (``"{}"`` clears a file column)."""
        return await self.query(
            token,
            CHANGE_COLUMN_VALUE_MUTATION,
            {
                "boardId": str(board_id),
                "itemId": str(item_id),
                "columnId": column_id,
                "value": value,
            },
            operation="change_column_value",
        )

    # ── Boards / updates / assets ────────────────────────────────

    async def get_board_columns(self, token: str, board_id: str) -> list[dict[str, Any]]:
        payload = await self.query(
            token, BOARD_COLUMNS_QUERY, {"boardId": str(board_id)}, operation="get_board_columns"
        )
        boards = (payload.get("data") or {}).get("boards") or []
        if not boards:
            raise PlatformAPIError(f"No data found for boardId: {board_id}").with_context(board_id=str(board_id))
        return boards[0].get("columns") or []

    async def get_update(self, token: str, update_id: str) -> dict[str, Any] | None:
        """An update with its assets, ``None`` if it does not exist."""
        payload = await self.query(
            token, UPDATE_QUERY, {"updateId": [str(update_id)]}, operation="get_update"
        )
        updates = (payload.get("data") or {}).get("updates") or []
        return updates[0] if updates else None

    async def get_asset(self, token: str, asset_id: str) -> dict[str, Any]:
        """Full asset response; ``data.assets[0].public_url`` is short-lived."""
        return await self.query(
            token, ASSET_QUERY, {"assetId": [str(asset_id)]}, operation="get_asset"
        )

    async def send_notification(self, token: str, user_id: str, target_id: str, text: str) -> None:
        """Notify *user_id*; failures are logged, never raised."""
        try:
            await self.query(
                token,
                NOTIFICATION_MUTATION,
                {"userId": str(user_id), "targetId": str(target_id), "text": text},
                operation="send_notification",
            )
        except RelayError as e:
            logger.error("monday.notification_failed", user_id=user_id, error=str(e))

    # ── Files ────────────────────────────────────────────────────

    async def upload_file_to_column(
        self,
        token: str,
        item_id: str,
        column_id: str,
        path: Path,
        *,
        filename: str | None = None,
        content_type: str = "application/octet-stream",
    ) -> dict[str, Any]:
        """Multipart-upload *path* into a file column."""
        mutation = UPLOAD_MUTATION % (json.dumps(str(item_id)), json.dumps(column_id))
        with open(path, "rb") as fh:
            return await self._post(
                self.settings.monday_file_url,
                operation="upload_file_to_column",
                data={"query": mutation},
                files={"variables[file]": (filename or path.name, fh, content_type)},
                headers={"Authorization": token},
                timeout=self.settings.upload_timeout,
            )


__all__ = ["MondayClient", "raise_for_graphql", "MAX_VALUE_EXCEEDED"]
