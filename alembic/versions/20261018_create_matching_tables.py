"""create language_profiles and match_reservations tables

Revision ID: matching_tables
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'matching_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('language_profiles',
        sa.Column('user_id', sa.BigInteger(), autoincrement=False, nullable=False),
        sa.Column('username', sa.String(length=255), nullable=True),
        sa.Column('native_language', sa.String(length=10), nullable=False, server_default=''),
        sa.Column('target_language', sa.String(length=10), nullable=False, server_default=''),
        sa.Column('proficiency_level', sa.String(length=20), nullable=False, server_default='beginner'),
        sa.Column('interests', sa.JSON(), nullable=True),
        sa.Column('last_active_at', sa.DateTime(), nullable=False),
        sa.Column('match_status', sa.String(length=20), nullable=False, server_default='available'),
        # Optimistic concurrency: каждый переход статуса увеличивает version
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('user_id')
    )
    op.create_index(
        'ix_language_profiles_status_langs',
        'language_profiles',
        ['match_status', 'native_language', 'target_language']
    )

    op.create_table('match_reservations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('requester_id', sa.BigInteger(), nullable=False),
        sa.Column('candidate_id', sa.BigInteger(), nullable=False),
        sa.Column('state', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['requester_id'], ['language_profiles.user_id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['candidate_id'], ['language_profiles.user_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_match_reservations_requester_id', 'match_reservations', ['requester_id'])
    op.create_index('ix_match_reservations_candidate_id', 'match_reservations', ['candidate_id'])
    # Sweeper: pending с истёкшим дедлайном
    op.create_index('ix_match_reservations_state_expires', 'match_reservations', ['state', 'expires_at'])


def downgrade():
    op.drop_index('ix_match_reservations_state_expires', table_name='match_reservations')
    op.drop_index('ix_match_reservations_candidate_id', table_name='match_reservations')
    op.drop_index('ix_match_reservations_requester_id', table_name='match_reservations')
    op.drop_table('match_reservations')
    op.drop_index('ix_language_profiles_status_langs', table_name='language_profiles')
    op.drop_table('language_profiles')
