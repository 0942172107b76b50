"""create user, game catalog, session and reward tables

Revision ID: 3c9d0e1f2a7b
Revises:
Create Date: 2026-09-02 10:12:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3c9d0e1f2a7b'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'game_title' not in existing_tables:
        op.create_table(
            'game_title',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('slug', sa.String(length=64), nullable=False),
            sa.Column('name', sa.String(length=128), nullable=False),
            sa.Column('max_score', sa.Integer(), nullable=True),
            sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index('ix_game_title_slug', 'game_title', ['slug'], unique=True)

    if 'game_config' not in existing_tables:
        op.create_table(
            'game_config',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('game_id', sa.Integer(), sa.ForeignKey('game_title.id'), nullable=False, unique=True),
            sa.Column('max_duration_ms', sa.Integer(), nullable=True),
            sa.Column('min_duration_ms', sa.Integer(), nullable=True),
            sa.Column('max_score_per_min', sa.Integer(), nullable=True),
            sa.Column('min_client_version', sa.String(length=32), nullable=True),
        )

    if 'game_session' not in existing_tables:
        op.create_table(
            'game_session',
            sa.Column('id', sa.String(length=36), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('game_id', sa.Integer(), sa.ForeignKey('game_title.id'), nullable=False),
            sa.Column('nonce', sa.String(length=64), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='started'),
            sa.Column('started_at', sa.DateTime(), nullable=False),
            sa.Column('completed_at', sa.DateTime(), nullable=True),
            sa.Column('score', sa.Integer(), nullable=True),
            sa.Column('duration_ms', sa.Integer(), nullable=True),
            sa.Column('start_ip', sa.String(length=64), nullable=True),
            sa.Column('device_hash', sa.String(length=64), nullable=True),
            sa.Column('client_version', sa.String(length=32), nullable=True),
        )
        op.create_index('ix_game_session_user_id', 'game_session', ['user_id'])
        op.create_index('ix_game_session_device_hash', 'game_session', ['device_hash'])

    if 'game_reward' not in existing_tables:
        op.create_table(
            'game_reward',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('session_id', sa.String(length=36), sa.ForeignKey('game_session.id'), nullable=False, unique=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('xp_delta', sa.Integer(), nullable=False),
            sa.Column('currency_delta', sa.Integer(), nullable=False),
            sa.Column('inserted_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_game_reward_user_id', 'game_reward', ['user_id'])

    if 'game_grant' not in existing_tables:
        op.create_table(
            'game_grant',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('source', sa.String(length=32), nullable=False),
            sa.Column('idempotency_key', sa.String(length=64), nullable=False, unique=True),
            sa.Column('currency_amount', sa.Integer(), nullable=False),
            sa.Column('xp_amount', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('inserted_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_game_grant_user_id', 'game_grant', ['user_id'])


def downgrade():
    op.drop_table('game_grant')
    op.drop_table('game_reward')
    op.drop_table('game_session')
    op.drop_table('game_config')
    op.drop_table('game_title')
    op.drop_table('user')
