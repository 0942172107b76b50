"""add game_score table for leaderboards

Revision ID: 5b8e1d4c9a02
Revises: 7a4e2b9c1d3f
Create Date: 2026-10-17 11:05:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5b8e1d4c9a02'
down_revision = '7a4e2b9c1d3f'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa.inspect(bind).get_table_names())

    if 'game_score' not in existing_tables:
        op.create_table(
            'game_score',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('session_id', sa.String(length=36), nullable=False),
            sa.Column('user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('game_id', sa.Integer(), sa.ForeignKey('game_title.id'), nullable=False),
            sa.Column('score', sa.Integer(), nullable=False),
            sa.Column('duration_ms', sa.Integer(), nullable=False),
            sa.Column('inserted_at', sa.DateTime(), nullable=False),
            sa.UniqueConstraint('session_id', name='uq_game_score_session'),
        )
        op.create_index('ix_game_score_game_inserted', 'game_score', ['game_id', 'inserted_at'])


def downgrade():
    op.drop_index('ix_game_score_game_inserted', table_name='game_score')
    op.drop_table('game_score')
