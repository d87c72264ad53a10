"""
OAuth 2.0 authorization-code flow against monday.com.

``authorization_url`` remembers the caller's context (item id, user id)
under a random ``state`` for a few minutes; the callback hands the state
back to ``validate_state`` to recover it, then ``exchange_code`` turns the
code into an access/refresh token pair.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlencode

import httpx

from filerelay.core.errors import AuthenticationError, ValidationError
from filerelay.core.logging import get_logger
from filerelay.core.settings import RelaySettings

logger = get_logger(__name__)


class OAuthService:
    """monday.com OAuth helper with an in-memory state store."""

    def __init__(
        self,
        settings: RelaySettings | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or RelaySettings()
        self._http = http
        self.clock = clock
        self._states: dict[str, dict[str, Any]] = {}

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.request_timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # ── State ────────────────────────────────────────────────────

    def _purge_expired(self) -> None:
        now = self.clock()
        ttl = self.settings.oauth_state_ttl
        for state in [s for s, data in self._states.items() if now - data["timestamp"] > ttl]:
            del self._states[state]

    def authorization_url(self, context: dict[str, Any] | None = None) -> str:
        """Authorization URL carrying a fresh state bound to *context*."""
        self._purge_expired()
        state = secrets.token_urlsafe(24)
        self._states[state] = {**(context or {}), "timestamp": self.clock()}

        params = urlencode(
            {
                "client_id": self.settings.client_id,
                "redirect_uri": self.settings.redirect_uri,
                "state": state,
                "scope": self.settings.oauth_scopes,
            }
        )
        return f"{self.settings.monday_auth_url}/authorize?{params}"

    def get_state_data(self, state: str) -> dict[str, Any] | None:
        data = self._states.get(state)
        if data is None:
            return None
        if self.clock() - data["timestamp"] > self.settings.oauth_state_ttl:
            del self._states[state]
            return None
        return data

    def validate_state(self, state: str | None) -> dict[str, Any]:
        """Context stored for *state*; a state can be used once."""
        if not state:
            raise ValidationError("State parameter is required", field="state")
        data = self.get_state_data(state)
        if data is None:
            raise AuthenticationError("Invalid or expired state")
        del self._states[state]
        return {k: v for k, v in data.items() if k != "timestamp"}

    # ── Tokens ───────────────────────────────────────────────────

    async def _token_request(self, body: dict[str, Any], *, operation: str) -> dict[str, Any]:
        url = f"{self.settings.monday_auth_url}/token"
        body = {
            "client_id": self.settings.client_id,
            "client_secret": self.settings.client_secret,
            **body,
        }
        try:
            response = await self.http.post(url, json=body)
        except httpx.HTTPError as e:
            raise AuthenticationError(f"{operation} failed: {e}", cause=e).with_context(url=url)

        if response.is_error:
            logger.error("oauth.token_request_failed", operation=operation, status=response.status_code)
            raise AuthenticationError(
                f"{operation} failed: {response.status_code} - {response.text}"
            ).with_context(url=url, http_status=response.status_code)
        return response.json()

    async def exchange_code(self, code: str | None) -> dict[str, Any]:
        """Trade an authorization code for ``access_token``/``refresh_token``."""
        if not code:
            raise ValidationError("Authorization code is required", field="code")
        return await self._token_request(
            {
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.settings.redirect_uri,
            },
            operation="OAuth token request",
        )

    async def refresh_token(self, refresh_token: str | None) -> dict[str, Any]:
        if not refresh_token:
            raise AuthenticationError("Refresh token is required")
        return await self._token_request(
            {"refresh_token": refresh_token, "grant_type": "refresh_token"},
            operation="OAuth refresh",
        )


__all__ = ["OAuthService"]
