"""
Calendar OAuth endpoints.

initiate returns the provider consent URL; the PKCE verifier stays in Redis
under the state nonce. callback is hit by the provider's browser redirect,
so it authenticates through the signed state rather than a bearer token and
always answers with a redirect to the frontend.
"""

import logging
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from workblock.config import get_settings
from workblock.core.oauth_state import OAuthStateSigner
from workblock.core.verifier_store import VerifierStore, get_verifier_store
from workblock.deps import CurrentUser, DbSession
from workblock.errors import AuthError, CalendarError
from workblock.schemas.calendar import OAuthInitiateResponse
from workblock.services.calendar.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)

router = APIRouter()

Verifiers = Annotated[VerifierStore, Depends(get_verifier_store)]


def _frontend_redirect(path: str, **params: str) -> RedirectResponse:
    url = f"{get_settings().frontend_url.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


@router.get("/oauth/{provider}/initiate", response_model=OAuthInitiateResponse)
async def initiate_oauth(provider: str, user: CurrentUser, db: DbSession, verifiers: Verifiers):
    """Start connecting a Google or Outlook calendar."""
    request = ConnectionRegistry(db).initiate_auth(provider, user.id)
    await verifiers.put(request.nonce, request.code_verifier)
    return OAuthInitiateResponse(
        authorization_url=request.authorization_url,
        state=request.state,
        provider=provider,
    )


@router.get("/oauth/{provider}/callback")
async def oauth_callback(
    provider: str,
    db: DbSession,
    verifiers: Verifiers,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
):
    """Provider redirect target: finish the flow and send the user back to the app."""
    if error:
        logger.info("%s OAuth returned error: %s", provider, error)
        return _frontend_redirect("/calendar/connect", error="access_denied")
    if not code or not state:
        return _frontend_redirect("/calendar/connect", error="invalid_request")

    try:
        payload = OAuthStateSigner().verify(state, provider)
        code_verifier = await verifiers.pop(payload.nonce)
        if code_verifier is None:
            raise AuthError("The connection request expired. Please start connecting your calendar again.")
        connection = await ConnectionRegistry(db).complete_auth(code, state, code_verifier, provider)
    except CalendarError as e:
        logger.warning("%s OAuth callback failed: %s", provider, e.message)
        return _frontend_redirect("/calendar/connect", error=e.code)

    return _frontend_redirect(f"/calendar/settings/{connection.id}", connected="true")
