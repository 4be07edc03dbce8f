"""OAuth state tokens and PKCE helpers.

The state parameter is an HS256 JWT signed with ``OAUTH_STATE_SECRET``. It
embeds the initiating user, the provider and a nonce, and expires after
``OAUTH_STATE_TTL_SECONDS``. The PKCE verifier never travels in the state:
the HTTP layer keeps it server-side keyed by the nonce.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from workblock.config import get_settings
from workblock.errors import AuthError

_ALGORITHM = "HS256"
_AUDIENCE = "workblock:calendar-oauth"


@dataclass(frozen=True)
class OAuthState:
    user_id: UUID
    provider: str
    nonce: str


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE (code_verifier, code_challenge) pair per RFC 7636 (S256)."""
    code_verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return code_verifier, code_challenge


class OAuthStateSigner:
    """Issues and validates signed, time-boxed OAuth state tokens."""

    def __init__(self, secret: str | None = None, ttl_seconds: int | None = None) -> None:
        settings = get_settings()
        self.secret = secret if secret is not None else settings.oauth_state_secret
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.oauth_state_ttl_seconds

    def sign(self, user_id: UUID, provider: str, now: datetime | None = None) -> tuple[str, OAuthState]:
        """Return ``(token, payload)`` for a fresh state."""
        now = now or datetime.now(timezone.utc)
        payload = OAuthState(user_id=user_id, provider=provider, nonce=secrets.token_hex(16))
        token = jwt.encode(
            {
                "sub": str(user_id),
                "provider": provider,
                "nonce": payload.nonce,
                "aud": _AUDIENCE,
                "iat": int(now.timestamp()),
                "exp": int((now + timedelta(seconds=self.ttl_seconds)).timestamp()),
            },
            self.secret,
            algorithm=_ALGORITHM,
        )
        return token, payload

    def verify(self, token: str, provider: str | None = None) -> OAuthState:
        """Validate signature, audience and expiry.

        Raises:
            AuthError: if the token is malformed, tampered, expired or was
                issued for a different provider.
        """
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[_ALGORITHM],
                audience=_AUDIENCE,
                options={"require": ["exp", "sub", "nonce"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("The connection request expired. Please start connecting your calendar again.")
        except jwt.InvalidTokenError:
            raise AuthError("Invalid connection request. Please start connecting your calendar again.")

        if provider is not None and claims.get("provider") != provider:
            raise AuthError("Invalid connection request. Please start connecting your calendar again.")

        try:
            user_id = UUID(claims["sub"])
        except ValueError:
            raise AuthError("Invalid connection request. Please start connecting your calendar again.")

        return OAuthState(user_id=user_id, provider=claims.get("provider", ""), nonce=claims["nonce"])
