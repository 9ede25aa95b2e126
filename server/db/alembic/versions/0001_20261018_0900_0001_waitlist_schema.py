"""Waitlist schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # One control row per (service, employee, slot); locked by every group transition
    op.create_table('waitlist_groups',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('service_id', sa.String(length=128), nullable=False),
        sa.Column('employee_id', sa.String(length=128), nullable=False),
        sa.Column('requested_date_time', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('service_id', 'employee_id', 'requested_date_time', name='uq_waitlist_group_key')
    )

    op.create_table('waitlist_entries',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('client_id', sa.String(length=128), nullable=False),
        sa.Column('service_id', sa.String(length=128), nullable=False),
        sa.Column('employee_id', sa.String(length=128), nullable=False),
        sa.Column('requested_date_time', sa.DateTime(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('selected_addon_ids', sa.JSON(), nullable=False),
        sa.Column('total_price', sa.Integer(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('notification_sent_at', sa.DateTime(), nullable=True),
        sa.Column('notification_expires_at', sa.DateTime(), nullable=True),
        sa.Column('converted_appointment_ref', sa.String(length=128), nullable=True),
        sa.Column('converted_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('length(client_id) > 0', name='ck_waitlist_client_id_not_empty'),
        sa.CheckConstraint('duration_minutes > 0', name='ck_waitlist_duration_positive'),
        sa.CheckConstraint('position >= 0', name='ck_waitlist_position_non_negative'),
        sa.CheckConstraint('total_price IS NULL OR total_price >= 0', name='ck_waitlist_total_price_non_negative'),
        sa.CheckConstraint(
            "status IN ('waiting', 'notified', 'confirmed', 'expired', 'cancelled')",
            name='ck_waitlist_status_valid'
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_waitlist_entries_client_id'), 'waitlist_entries', ['client_id'], unique=False)
    op.create_index(
        'ix_waitlist_group_queue',
        'waitlist_entries',
        ['service_id', 'employee_id', 'requested_date_time', 'status', 'position'],
        unique=False
    )
    op.create_index('ix_waitlist_status_expires_at', 'waitlist_entries', ['status', 'expires_at'], unique=False)
    op.create_index(
        'ix_waitlist_status_notification_expires_at',
        'waitlist_entries',
        ['status', 'notification_expires_at'],
        unique=False
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index('ix_waitlist_status_notification_expires_at', table_name='waitlist_entries')
    op.drop_index('ix_waitlist_status_expires_at', table_name='waitlist_entries')
    op.drop_index('ix_waitlist_group_queue', table_name='waitlist_entries')
    op.drop_index(op.f('ix_waitlist_entries_client_id'), table_name='waitlist_entries')
    op.drop_table('waitlist_entries')
    op.drop_table('waitlist_groups')
