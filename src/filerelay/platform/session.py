"""Session tokens sent by monday.com with every integration request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import jwt

from filerelay.core.errors import AuthenticationError


@dataclass
class Session:
    user_id: str
    account_id: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)


def decode_session(token: str | None, signing_secret: str | None = None) -> Session:
    """Decode the ``Authorization`` JWT into a :class:`Session`.

    The signature is verified (HS256) when *signing_secret* is set; without a
    secret the token is only decoded.  The user id is the ``uid`` claim, or
    ``dat.user_id`` for tokens in the newer shape.

    Raises:
        AuthenticationError: Missing, malformed, expired or unsigned token,
            or no user id in it.
    """
    if not token:
        raise AuthenticationError("Missing authorization token")
    if token.lower().startswith("bearer "):
        token = token[7:]

    try:
        if signing_secret:
            claims = jwt.decode(token, signing_secret, algorithms=["HS256"])
        else:
            claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise AuthenticationError(f"Invalid authorization token: {e}", cause=e)

    dat = claims.get("dat") or {}
    user_id = claims.get("uid") or dat.get("user_id")
    if not user_id:
        raise AuthenticationError("Authorization token has no user id")

    account_id = claims.get("aid") or dat.get("account_id")
    return Session(
        user_id=str(user_id),
        account_id=str(account_id) if account_id else None,
        claims=claims,
    )


__all__ = ["Session", "decode_session"]
