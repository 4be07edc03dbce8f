"""Access-token upkeep for calendar connections."""

import logging
from collections.abc import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from workblock.config import get_settings
from workblock.core.locks import KeyedLocks
from workblock.errors import RECONNECT_MESSAGE, AuthError, CalendarError
from workblock.models.calendar import CalendarConnection
from workblock.models.types import utcnow
from workblock.services.calendar.providers import CalendarProvider, get_calendar_provider

logger = logging.getLogger(__name__)

# One refresh in flight per connection within this process
refresh_locks = KeyedLocks()


class TokenManager:
    """Returns a usable access token, refreshing it when close to expiry."""

    def __init__(
        self,
        db: AsyncSession,
        provider_factory: Callable[[str], CalendarProvider] = get_calendar_provider,
        locks: KeyedLocks | None = None,
    ) -> None:
        self.db = db
        self.provider_factory = provider_factory
        self.locks = locks or refresh_locks
        self.margin = get_settings().token_refresh_margin_seconds

    async def ensure_valid_token(self, connection: CalendarConnection) -> str:
        """Return a valid access token for ``connection``.

        Concurrent callers for the same connection serialize on a keyed lock;
        whoever acquires it second re-reads the row and reuses the token the
        first one stored.

        Raises:
            AuthError: no refresh token, or the provider refused the refresh.
        """
        if not connection.token_expired(utcnow(), self.margin):
            return connection.access_token

        async with self.locks.hold(connection.id):
            await self.db.refresh(connection)
            if not connection.token_expired(utcnow(), self.margin):
                return connection.access_token

            if not connection.refresh_token:
                raise AuthError(RECONNECT_MESSAGE)

            provider = self.provider_factory(connection.provider)
            try:
                tokens = await provider.refresh_token(connection.refresh_token)
            except CalendarError as e:
                logger.warning(
                    "Token refresh failed for connection %s: %s", connection.id, e.message
                )
                raise AuthError(RECONNECT_MESSAGE) from e

            connection.access_token = tokens.access_token
            connection.refresh_token = tokens.refresh_token or connection.refresh_token
            connection.token_expires_at = tokens.expires_at
            await self.db.commit()

            logger.info("Refreshed access token for connection %s", connection.id)
            return connection.access_token
