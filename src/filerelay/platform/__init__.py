"""monday.com platform access: GraphQL client, OAuth, token caching, sessions."""

from filerelay.platform.client import MondayClient
from filerelay.platform.oauth import OAuthService
from filerelay.platform.session import Session, decode_session
from filerelay.platform.tokens import InMemoryTokenStore, StoredToken, TokenCache, TokenStore

__all__ = [
    "MondayClient",
    "OAuthService",
    "Session",
    "decode_session",
    "InMemoryTokenStore",
    "StoredToken",
    "TokenCache",
    "TokenStore",
]
