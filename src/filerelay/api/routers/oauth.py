"""OAuth install flow.

``GET /oauth/start?itemId=...`` sends the user to monday.com's consent
screen; ``GET /oauth/callback`` stores the resulting token pair for the
user the state was issued to (or, when the state carries no user, the
user the new token belongs to).
"""

from __future__ import annotations

from fastapi import APIRouter, Query
from fastapi.responses import HTMLResponse, RedirectResponse

from filerelay.api.deps import Service
from filerelay.core.errors import AuthenticationError
from filerelay.core.logging import get_logger
from filerelay.platform.tokens import StoredToken

logger = get_logger(__name__)

router = APIRouter(prefix="/oauth", tags=["oauth"])

ME_QUERY = "query { me { id } }"

CALLBACK_PAGE = """<!DOCTYPE html>
<html>
  <head><script src="https://cdn.monday.com/monday-sdk-js/0.5.4/monday-sdk-js.js"></script></head>
  <body>
    <script>window.mondaySdk().execute("openAppFeatureModal", {url: "/", width: 800, height: 600});</script>
    <p>Redirecting you back to the app...</p>
  </body>
</html>
"""


@router.get("/start")
async def oauth_start(
    service: Service,
    item_id: str | None = Query(default=None, alias="itemId"),
    user_id: str | None = Query(default=None, alias="userId"),
) -> RedirectResponse:
    """Redirect to the monday.com authorization URL."""
    context = {key: value for key, value in {"itemId": item_id, "userId": user_id}.items() if value}
    url = service.oauth.authorization_url(context)
    logger.info("oauth.started", item_id=item_id)
    return RedirectResponse(url, status_code=302)


@router.get("/callback", response_class=HTMLResponse)
async def oauth_callback(
    service: Service,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
) -> HTMLResponse:
    """Exchange the code and store the token for its user."""
    context = service.oauth.validate_state(state)
    tokens = await service.oauth.exchange_code(code)

    access_token = tokens.get("access_token")
    if not access_token:
        raise AuthenticationError("Token response carried no access_token")

    user_id = context.get("userId")
    if not user_id:
        me = await service.client.query(access_token, ME_QUERY, operation="me")
        user_id = ((me.get("data") or {}).get("me") or {}).get("id")
    if not user_id:
        raise AuthenticationError("Could not determine the user for this token")

    await service.token_store.set(
        str(user_id), StoredToken(access_token, tokens.get("refresh_token"))
    )
    logger.info("oauth.completed", user_id=str(user_id), item_id=context.get("itemId"))
    return HTMLResponse(CALLBACK_PAGE)
