"""Credential storage.

Two layers:

- ``TokenStore`` keeps each user's OAuth tokens (written by the OAuth
  callback, read by every transfer request).
- ``TokenCache`` pins a credential to an item for the lifetime of its drain
  loop, refreshing it once it is older than the freshness window.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field

from filerelay.core.errors import AuthenticationError, RelayError
from filerelay.core.logging import get_logger
from filerelay.platform.oauth import OAuthService

logger = get_logger(__name__)


@dataclass
class StoredToken:
    access_token: str
    refresh_token: str | None = None


class TokenStore(ABC):
    """Per-user OAuth token storage."""

    @abstractmethod
    async def get(self, user_id: str) -> StoredToken | None: ...

    @abstractmethod
    async def set(self, user_id: str, token: StoredToken) -> None: ...

    @abstractmethod
    async def clear(self, user_id: str) -> None: ...


class InMemoryTokenStore(TokenStore):
    """Process-local store; tokens are lost on restart."""

    def __init__(self) -> None:
        self._tokens: dict[str, StoredToken] = {}

    async def get(self, user_id: str) -> StoredToken | None:
        return self._tokens.get(str(user_id))

    async def set(self, user_id: str, token: StoredToken) -> None:
        self._tokens[str(user_id)] = token

    async def clear(self, user_id: str) -> None:
        self._tokens.pop(str(user_id), None)


@dataclass
class _CachedCredential:
    access_token: str
    refresh_token: str | None
    timestamp: float


@dataclass
class TokenCache:
    """Per-item credentials with a freshness window.

    Attributes:
        oauth: Used to refresh stale credentials
        freshness: Seconds a credential is trusted without refresh
        clock: Monotonic time source, injectable for tests
    """

    oauth: OAuthService
    freshness: float = 45 * 60.0
    clock: Callable[[], float] = time.monotonic

    _entries: dict[str, _CachedCredential] = field(default_factory=dict, init=False)

    def set(self, key: str, access_token: str, refresh_token: str | None = None) -> None:
        self._entries[key] = _CachedCredential(access_token, refresh_token, self.clock())

    def clear(self, key: str) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get(self, key: str) -> str:
        """Access token for *key*, refreshed when older than ``freshness``.

        Raises:
            AuthenticationError: No credential for *key*, or refresh failed.
        """
        cached = self._entries.get(key)
        if cached is None:
            raise AuthenticationError("No token available - OAuth flow required").with_context(item_key=key)

        if self.clock() - cached.timestamp < self.freshness:
            return cached.access_token

        try:
            refreshed = await self.oauth.refresh_token(cached.refresh_token)
        except RelayError as e:
            logger.error("tokens.refresh_failed", item_key=key, error=str(e))
            self._entries.pop(key, None)
            raise AuthenticationError("Failed to get valid token", cause=e).with_context(item_key=key)

        self.set(
            key,
            refreshed["access_token"],
            refreshed.get("refresh_token", cached.refresh_token),
        )
        logger.info("tokens.refreshed", item_key=key)
        return refreshed["access_token"]


__all__ = ["TokenStore", "InMemoryTokenStore", "StoredToken", "TokenCache"]
