"""Clerk authentication module."""

from uuid import uuid4

import jwt
from jwt import PyJWKClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workblock.config import get_settings
from workblock.models.user import User


class ClerkAuth:
    """Clerk JWT validation and user lookup."""

    def __init__(self) -> None:
        self.settings = get_settings()
        self._jwks_client: PyJWKClient | None = None

    @property
    def jwks_client(self) -> PyJWKClient:
        """Lazy-loaded JWKS client."""
        if self._jwks_client is None:
            if not self.settings.clerk_jwks_url:
                raise ValueError("CLERK_JWKS_URL is not configured")
            self._jwks_client = PyJWKClient(self.settings.clerk_jwks_url)
        return self._jwks_client

    def verify_token(self, token: str) -> dict:
        """Validate Clerk JWT and return claims.

        Raises:
            jwt.InvalidTokenError: If token is invalid
        """
        signing_key = self.jwks_client.get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            options={"verify_aud": False},  # Clerk doesn't always set audience
        )

    async def get_or_create_user(
        self,
        clerk_user_id: str,
        email: str,
        name: str | None,
        db: AsyncSession,
    ) -> User:
        """Get existing user or create a new one.

        New users have no organization yet; they join one through the
        household onboarding flow, which lives outside this service.
        """
        result = await db.execute(
            select(User).where(User.clerk_user_id == clerk_user_id)
        )
        user = result.scalar_one_or_none()

        if user is not None:
            if user.email != email or user.name != name:
                user.email = email
                user.name = name
                await db.commit()
            return user

        user = User(
            id=uuid4(),
            clerk_user_id=clerk_user_id,
            email=email,
            name=name,
        )
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user


# Global instance
clerk_auth = ClerkAuth()
