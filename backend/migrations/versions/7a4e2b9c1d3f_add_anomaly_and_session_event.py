"""add anomaly and session_event tables

Revision ID: 7a4e2b9c1d3f
Revises: 3c9d0e1f2a7b
Create Date: 2026-09-15 16:40:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7a4e2b9c1d3f'
down_revision = '3c9d0e1f2a7b'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'session_event' not in existing_tables:
        op.create_table(
            'session_event',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('kind', sa.String(length=32), nullable=False),
            sa.Column('session_id', sa.String(length=36), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('ip', sa.String(length=64), nullable=True),
            sa.Column('device_hash', sa.String(length=64), nullable=True),
            sa.Column('inserted_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_session_event_session_id', 'session_event', ['session_id'])

    if 'anomaly' not in existing_tables:
        op.create_table(
            'anomaly',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('session_id', sa.String(length=36), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=True),
            sa.Column('type', sa.String(length=32), nullable=False),
            sa.Column('severity', sa.Integer(), nullable=False),
            sa.Column('details', sa.Text(), nullable=True),
            sa.Column('inserted_at', sa.DateTime(), nullable=False),
            sa.Column('reviewed_at', sa.DateTime(), nullable=True),
            sa.UniqueConstraint('session_id', 'type', name='uq_anomaly_session_type'),
        )
        op.create_index('ix_anomaly_session_id', 'anomaly', ['session_id'])


def downgrade():
    op.drop_table('anomaly')
    op.drop_table('session_event')
