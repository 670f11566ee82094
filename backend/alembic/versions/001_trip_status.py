"""Trips and append-only trip status history

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

TRIP_STATUSES = ('draft', 'planned', 'active', 'completed', 'cancelled')


def upgrade() -> None:
    trip_status = sa.Enum(*TRIP_STATUSES, name='tripstatus')

    op.create_table(
        'trips',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('destination', sa.String(200), nullable=True),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('status', trip_status, nullable=False, server_default='draft'),
        sa.Column('itinerary', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_trips_id', 'trips', ['id'])
    op.create_index('ix_trips_user_id', 'trips', ['user_id'])
    op.create_index('ix_trips_status', 'trips', ['status'])

    op.create_table(
        'trip_status_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('trip_id', sa.Integer(), sa.ForeignKey('trips.id', ondelete='CASCADE'), nullable=False),
        sa.Column('old_status', trip_status, nullable=True),
        sa.Column('new_status', trip_status, nullable=False),
        sa.Column('reason', sa.String(50), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_trip_status_history_id', 'trip_status_history', ['id'])
    op.create_index('ix_trip_status_history_trip_id', 'trip_status_history', ['trip_id'])
    op.create_index('ix_trip_status_history_timestamp', 'trip_status_history', ['timestamp'])


def downgrade() -> None:
    op.drop_table('trip_status_history')
    op.drop_table('trips')
    sa.Enum(name='tripstatus').drop(op.get_bind(), checkfirst=True)
