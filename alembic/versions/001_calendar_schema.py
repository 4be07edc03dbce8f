"""Calendar sync, auto-block and conflict resolution schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Identity layer
    op.create_table(
        'organizations',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('clerk_user_id', sa.String(255), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('organization_id', UUID(as_uuid=True),
                  sa.ForeignKey('organizations.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])

    op.create_table(
        'lessons',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('scheduled_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('scheduled_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='scheduled',
                  comment='scheduled | completed | cancelled'),
        *_timestamps(),
    )
    op.create_index('ix_lessons_organization_id', 'lessons', ['organization_id'])
    op.create_index('ix_lessons_org_start', 'lessons', ['organization_id', 'scheduled_start'])

    # Calendar connections
    op.create_table(
        'calendar_connections',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False, comment='google | outlook'),
        sa.Column('provider_account_id', sa.String(255), nullable=False),
        sa.Column('provider_account_email', sa.String(255), nullable=True),
        sa.Column('calendar_id', sa.String(500), nullable=False, server_default='primary'),
        sa.Column('calendar_name', sa.String(255), nullable=True),
        sa.Column('access_token', sa.Text, nullable=True),
        sa.Column('refresh_token', sa.Text, nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('auto_block_enabled', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('conflict_notification_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('push_lessons_enabled', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('last_sync_status', sa.String(20), nullable=False, server_default='pending',
                  comment='pending | syncing | completed | failed'),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_sync_error', sa.Text, nullable=True),
        sa.Column('sync_started_at', sa.DateTime(timezone=True), nullable=True,
                  comment='Lease timestamp while syncing'),
        *_timestamps(),
        sa.UniqueConstraint('organization_id', 'provider', 'provider_account_id',
                            name='uq_calendar_connection_account'),
    )
    op.create_index('ix_calendar_connections_organization_id', 'calendar_connections', ['organization_id'])
    op.create_index('ix_calendar_connections_user_id', 'calendar_connections', ['user_id'])

    # Mirrored events
    op.create_table(
        'synced_work_events',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('calendar_connection_id', UUID(as_uuid=True),
                  sa.ForeignKey('calendar_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('organization_id', UUID(as_uuid=True),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('external_event_id', sa.String(500), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('location', sa.String(500), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_all_day', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('attendees_count', sa.Integer, nullable=False, server_default='0'),
        sa.Column('is_meeting', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(20), nullable=False, server_default='confirmed',
                  comment='confirmed | tentative | cancelled'),
        sa.Column('is_deleted', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('auto_blocked', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('has_conflict', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('calendar_connection_id', 'external_event_id',
                            name='uq_synced_event_connection_external'),
    )
    op.create_index('ix_synced_work_events_calendar_connection_id', 'synced_work_events',
                    ['calendar_connection_id'])
    op.create_index('ix_synced_work_events_organization_id', 'synced_work_events', ['organization_id'])
    op.create_index('ix_synced_work_events_org_start', 'synced_work_events',
                    ['organization_id', 'start_time'])
    op.create_index('ix_synced_work_events_conflicts', 'synced_work_events',
                    ['organization_id', 'has_conflict'],
                    postgresql_where=sa.text('has_conflict = true AND is_deleted = false'))

    op.create_table(
        'calendar_sync_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('calendar_connection_id', UUID(as_uuid=True),
                  sa.ForeignKey('calendar_connections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sync_started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sync_completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_status', sa.String(20), nullable=False, comment='completed | failed | rejected'),
        sa.Column('events_fetched', sa.Integer, nullable=False, server_default='0'),
        sa.Column('events_added', sa.Integer, nullable=False, server_default='0'),
        sa.Column('events_updated', sa.Integer, nullable=False, server_default='0'),
        sa.Column('events_deleted', sa.Integer, nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text, nullable=True),
    )
    op.create_index('ix_calendar_sync_logs_calendar_connection_id', 'calendar_sync_logs',
                    ['calendar_connection_id'])

    # Blocked time
    op.create_table(
        'blocked_time_slots',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('organization_id', UUID(as_uuid=True),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', UUID(as_uuid=True), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('source_type', sa.String(20), nullable=False, comment='work_event | manual'),
        sa.Column('source_event_id', UUID(as_uuid=True), nullable=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('source_type', 'source_event_id', name='uq_blocked_slot_source'),
    )
    op.create_index('ix_blocked_time_slots_organization_id', 'blocked_time_slots', ['organization_id'])
    op.create_index('ix_blocked_time_slots_org_window', 'blocked_time_slots',
                    ['organization_id', 'start_time', 'end_time'])

    # Resolution audit
    op.create_table(
        'calendar_conflict_resolutions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('synced_work_event_id', UUID(as_uuid=True),
                  sa.ForeignKey('synced_work_events.id', ondelete='SET NULL'), nullable=True),
        sa.Column('organization_id', UUID(as_uuid=True),
                  sa.ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False),
        sa.Column('resolved_by', UUID(as_uuid=True), nullable=False),
        sa.Column('resolution_type', sa.String(30), nullable=False,
                  comment='reschedule_lesson | cancel_lesson | keep_both | ignore'),
        sa.Column('resolution_notes', sa.Text, nullable=True),
        sa.Column('affected_lesson_id', UUID(as_uuid=True), nullable=True),
        sa.Column('new_lesson_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_calendar_conflict_resolutions_synced_work_event_id',
                    'calendar_conflict_resolutions', ['synced_work_event_id'])
    op.create_index('ix_calendar_conflict_resolutions_organization_id',
                    'calendar_conflict_resolutions', ['organization_id'])


def downgrade() -> None:
    op.drop_table('calendar_conflict_resolutions')
    op.drop_table('blocked_time_slots')
    op.drop_table('calendar_sync_logs')
    op.drop_table('synced_work_events')
    op.drop_table('calendar_connections')
    op.drop_table('lessons')
    op.drop_table('users')
    op.drop_table('organizations')
