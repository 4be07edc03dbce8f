"""
Connection Registry.

Handles:
- OAuth initiation (signed state + PKCE) and completion (code exchange, upsert)
- Listing and fetching an organization's connections
- Owner-only settings toggles and disconnects
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from workblock.core.oauth_state import OAuthStateSigner, generate_pkce_pair
from workblock.errors import AccessDenied, CalendarError, NotFoundError, ValidationError
from workblock.models.calendar import (
    SETTINGS_FIELDS,
    BlockedTimeSlot,
    BlockSource,
    CalendarConnection,
    CalendarProviderName,
    CalendarSyncLog,
    ConflictResolution,
    SyncedWorkEvent,
    SyncStatus,
)
from workblock.models.user import User
from workblock.services.calendar.providers import (
    CalendarProvider,
    ProviderTokens,
    get_calendar_provider,
)

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationRequest:
    """Everything the HTTP layer needs to start the consent redirect."""

    authorization_url: str
    state: str
    nonce: str
    code_verifier: str


class ConnectionRegistry:
    """Lifecycle of CalendarConnection rows."""

    def __init__(
        self,
        db: AsyncSession,
        provider_factory: Callable[[str], CalendarProvider] = get_calendar_provider,
        state_signer: OAuthStateSigner | None = None,
    ):
        self.db = db
        self.provider_factory = provider_factory
        self.state_signer = state_signer or OAuthStateSigner()

    # ── OAuth ──

    def initiate_auth(self, provider: str, user_id: UUID) -> AuthorizationRequest:
        """Build the consent URL, a signed state and a PKCE verifier."""
        if provider not in {p.value for p in CalendarProviderName}:
            raise ValidationError(f"Unsupported calendar provider: {provider}")

        code_verifier, code_challenge = generate_pkce_pair()
        state, payload = self.state_signer.sign(user_id, provider)
        url = self.provider_factory(provider).authorization_url(state, code_challenge)
        return AuthorizationRequest(
            authorization_url=url,
            state=state,
            nonce=payload.nonce,
            code_verifier=code_verifier,
        )

    async def complete_auth(
        self,
        code: str,
        state: str,
        code_verifier: str,
        provider: str | None = None,
    ) -> CalendarConnection:
        """Finish the OAuth flow and upsert the connection.

        Raises:
            AuthError: invalid/expired state or rejected code.
            NotFoundError: the user does not belong to an organization.
        """
        payload = self.state_signer.verify(state, provider)

        user = await self.db.get(User, payload.user_id)
        if user is None:
            raise NotFoundError("User not found")
        if user.organization_id is None:
            raise NotFoundError("Set up your household before connecting a calendar")

        adapter = self.provider_factory(payload.provider)
        tokens = await adapter.exchange_code(code, code_verifier)
        profile = await adapter.get_profile(tokens.access_token)
        calendars = await adapter.list_calendars(tokens.access_token)

        primary = next((c for c in calendars if c.is_primary), None)
        if primary is None and calendars:
            primary = calendars[0]

        values = {
            "provider_account_email": profile.email,
            "calendar_id": primary.id if primary else "primary",
            "calendar_name": primary.name if primary else None,
        }

        organization_id = user.organization_id
        values["user_id"] = user.id

        try:
            connection = await self._upsert(
                organization_id, payload.provider, profile.account_id, tokens, values
            )
        except IntegrityError:
            # Same account connected concurrently; the second writer updates
            await self.db.rollback()
            connection = await self._upsert(
                organization_id, payload.provider, profile.account_id, tokens, values
            )

        logger.info(
            "Calendar connection %s (%s) linked for org %s",
            connection.id,
            payload.provider,
            organization_id,
        )
        return connection

    async def _upsert(
        self,
        organization_id: UUID,
        provider: str,
        account_id: str,
        tokens: ProviderTokens,
        values: dict,
    ) -> CalendarConnection:
        values = dict(values)
        user_id = values.pop("user_id")
        result = await self.db.execute(
            select(CalendarConnection).where(
                CalendarConnection.organization_id == organization_id,
                CalendarConnection.provider == provider,
                CalendarConnection.provider_account_id == account_id,
            )
        )
        connection = result.scalar_one_or_none()
        if connection is None:
            connection = CalendarConnection(
                organization_id=organization_id,
                user_id=user_id,
                provider=provider,
                provider_account_id=account_id,
            )
            self.db.add(connection)

        connection.access_token = tokens.access_token
        connection.refresh_token = tokens.refresh_token or connection.refresh_token
        connection.token_expires_at = tokens.expires_at
        connection.sync_enabled = True
        connection.last_sync_status = SyncStatus.PENDING.value
        connection.last_sync_error = None
        connection.sync_started_at = None
        for key, value in values.items():
            setattr(connection, key, value)

        await self.db.commit()
        await self.db.refresh(connection)
        return connection

    # ── Queries ──

    async def list_connections(self, organization_id: UUID) -> list[CalendarConnection]:
        result = await self.db.execute(
            select(CalendarConnection)
            .where(CalendarConnection.organization_id == organization_id)
            .order_by(CalendarConnection.created_at)
        )
        return list(result.scalars().all())

    async def get_connection(
        self, connection_id: UUID, organization_id: UUID | None = None
    ) -> CalendarConnection:
        connection = await self.db.get(CalendarConnection, connection_id)
        if connection is None or (
            organization_id is not None and connection.organization_id != organization_id
        ):
            raise NotFoundError("Calendar connection not found")
        return connection

    async def _get_owned(self, connection_id: UUID, requester_user_id: UUID) -> CalendarConnection:
        connection = await self.get_connection(connection_id)
        if connection.user_id != requester_user_id:
            raise AccessDenied("Only the person who connected this calendar can change it")
        return connection

    # ── Mutations ──

    async def update_settings(
        self, connection_id: UUID, requester_user_id: UUID, patch: dict
    ) -> CalendarConnection:
        """Apply a partial update of the toggle fields.

        Raises:
            ValidationError: empty patch, unknown field or non-boolean value.
            AccessDenied: requester is not the owner.
        """
        if not patch:
            raise ValidationError("No settings to update")
        unknown = sorted(set(patch) - set(SETTINGS_FIELDS))
        if unknown:
            raise ValidationError(
                f"Unknown settings: {', '.join(unknown)}",
                details={"allowed": list(SETTINGS_FIELDS)},
            )
        for key, value in patch.items():
            if not isinstance(value, bool):
                raise ValidationError(f"Setting {key} must be true or false")

        connection = await self._get_owned(connection_id, requester_user_id)
        for key, value in patch.items():
            setattr(connection, key, value)
        await self.db.commit()
        await self.db.refresh(connection)
        return connection

    async def disconnect(self, connection_id: UUID, requester_user_id: UUID) -> dict:
        """Delete a connection with its events and work-event blocks.

        Resolution audit rows survive with their event reference cleared.
        Token revocation at the provider is best effort.
        """
        connection = await self._get_owned(connection_id, requester_user_id)
        provider_name = connection.provider
        token = connection.refresh_token or connection.access_token

        event_ids = select(SyncedWorkEvent.id).where(
            SyncedWorkEvent.calendar_connection_id == connection_id
        )
        blocks = await self.db.execute(
            delete(BlockedTimeSlot)
            .where(
                BlockedTimeSlot.source_type == BlockSource.WORK_EVENT.value,
                BlockedTimeSlot.source_event_id.in_(event_ids),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            update(ConflictResolution)
            .where(ConflictResolution.synced_work_event_id.in_(event_ids))
            .values(synced_work_event_id=None)
            .execution_options(synchronize_session=False)
        )
        events = await self.db.execute(
            delete(SyncedWorkEvent)
            .where(SyncedWorkEvent.calendar_connection_id == connection_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(CalendarSyncLog)
            .where(CalendarSyncLog.calendar_connection_id == connection_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(
            delete(CalendarConnection)
            .where(CalendarConnection.id == connection_id)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        self.db.expunge(connection)

        if token:
            try:
                await self.provider_factory(provider_name).revoke(token)
            except CalendarError as e:
                logger.warning(
                    "Could not revoke %s token for connection %s: %s",
                    provider_name,
                    connection_id,
                    e.message,
                )

        logger.info(
            "Disconnected calendar %s: %d events, %d blocks removed",
            connection_id,
            events.rowcount,
            blocks.rowcount,
        )
        return {"events_deleted": events.rowcount, "blocks_deleted": blocks.rowcount}
