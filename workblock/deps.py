"""FastAPI dependencies."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from workblock.config import get_settings
from workblock.core.auth import clerk_auth
from workblock.database import get_db
from workblock.errors import NotFoundError
from workblock.models.organization import Organization
from workblock.models.user import User

logger = logging.getLogger(__name__)

DEV_USER_EMAIL = "dev@workblock.local"


async def get_or_create_dev_user(db: AsyncSession) -> User:
    """Get or create a dev user (with a household) for local development."""
    result = await db.execute(select(User).where(User.email == DEV_USER_EMAIL))
    user = result.scalar_one_or_none()
    if user:
        return user

    organization = Organization(name="Dev Household")
    db.add(organization)
    await db.flush()

    user = User(
        email=DEV_USER_EMAIL,
        name="Dev User",
        clerk_user_id="dev_user_123",
        organization_id=organization.id,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the Clerk JWT, return the authenticated user.

    In dev mode (DEV_AUTH_BYPASS=true), returns a local dev user.
    """
    settings = get_settings()

    if settings.dev_auth_bypass:
        logger.info("DEV MODE: Bypassing Clerk auth, using dev user")
        return await get_or_create_dev_user(db)

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        scheme, token = authorization.split(" ", 1)
        if scheme.lower() != "bearer":
            raise ValueError("Invalid scheme")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = clerk_auth.verify_token(token)
    except Exception as e:
        logger.warning("Token validation failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    clerk_user_id = claims.get("sub")
    email = claims.get("email") or claims.get("primary_email_address")
    name = claims.get("name") or claims.get("first_name")

    if not clerk_user_id or not email:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token claims",
        )

    return await clerk_auth.get_or_create_user(
        clerk_user_id=clerk_user_id,
        email=email,
        name=name,
        db=db,
    )


async def get_organization_id(
    user: Annotated[User, Depends(get_current_user)],
) -> UUID:
    """Organization of the current user; every calendar query is scoped by it."""
    if user.organization_id is None:
        raise NotFoundError("Organization not found")
    return user.organization_id


# Type aliases for dependency injection
CurrentUser = Annotated[User, Depends(get_current_user)]
OrganizationId = Annotated[UUID, Depends(get_organization_id)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
