"""Create learning core tables and pattern search function

Revision ID: 0001_learning_core
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql

from reasonbank.models.reasoning_pattern import SEARCH_FUNCTION_SQL

# revision identifiers, used by Alembic.
revision = '0001_learning_core'
down_revision = None
branch_labels = None
depends_on = None

EMBEDDING_DIMENSIONS = 384


def upgrade() -> None:
    """Create pattern, trace, feedback, link and spike tables."""
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        'reasoning_patterns',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('fingerprint', sa.String(64), nullable=False),
        sa.Column('domain', sa.String(100), nullable=False),
        sa.Column('task_type', sa.String(64), nullable=False),
        sa.Column('tags', postgresql.ARRAY(sa.String(100)), nullable=False, server_default='{}'),
        sa.Column('tool_sequence', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('agent_types', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('embedding', Vector(EMBEDDING_DIMENSIONS), nullable=False),
        sa.Column('reward_score', sa.Float(), nullable=False, server_default='0.5'),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('spike_potential', sa.Float(), nullable=False, server_default='0'),
        sa.Column('potential_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_spike_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('reward_score >= 0 AND reward_score <= 1', name='ck_reasoning_patterns_reward'),
        sa.CheckConstraint('spike_potential >= 0 AND spike_potential <= 1', name='ck_reasoning_patterns_potential'),
    )
    op.create_index('ux_reasoning_patterns_fingerprint', 'reasoning_patterns', ['fingerprint'], unique=True)
    op.create_index('ix_reasoning_patterns_domain', 'reasoning_patterns', ['domain'])
    op.create_index(
        'ix_reasoning_patterns_domain_potential',
        'reasoning_patterns',
        ['domain', 'spike_potential'],
    )

    op.create_table(
        'reasoning_traces',
        sa.Column('id', sa.String(200), nullable=False),
        sa.Column('agent_type', sa.String(100), nullable=False),
        sa.Column('request_id', sa.String(200), nullable=False),
        sa.Column('steps', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('outcome', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('fingerprint', sa.String(64), nullable=True),
        sa.Column('domain', sa.String(100), nullable=True),
        sa.Column('pattern_id', postgresql.UUID(as_uuid=False), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_reasoning_traces_request_id', 'reasoning_traces', ['request_id'])
    op.create_index('ix_reasoning_traces_domain_created', 'reasoning_traces', ['domain', 'created_at'])

    op.create_table(
        'quality_feedback',
        sa.Column('id', sa.String(200), nullable=False),
        sa.Column('request_id', sa.String(200), nullable=False),
        sa.Column('score', sa.Float(), nullable=False),
        sa.Column('automated', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_quality_feedback_request_id', 'quality_feedback', ['request_id'])

    op.create_table(
        'pattern_links',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('source_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('target_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('weight', sa.Float(), nullable=False),
        sa.Column('co_occurrences', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['source_id'], ['reasoning_patterns.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['target_id'], ['reasoning_patterns.id'], ondelete='CASCADE'),
        sa.CheckConstraint('weight > 0 AND weight <= 1', name='ck_pattern_links_weight'),
    )
    op.create_index('ux_pattern_links_source_target', 'pattern_links', ['source_id', 'target_id'], unique=True)
    op.create_index('ix_pattern_links_target', 'pattern_links', ['target_id'])

    op.create_table(
        'spike_events',
        sa.Column('id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('pattern_id', postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column('domain', sa.String(100), nullable=False),
        sa.Column('fired_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_source', sa.Boolean(), nullable=False, server_default='false'),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['pattern_id'], ['reasoning_patterns.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_spike_events_domain_fired', 'spike_events', ['domain', 'fired_at'])
    op.create_index('ix_spike_events_pattern', 'spike_events', ['pattern_id'])

    op.execute(SEARCH_FUNCTION_SQL)


def downgrade() -> None:
    """Drop learning core tables and the search function."""
    op.execute("DROP FUNCTION IF EXISTS search_reasoning_patterns(vector, text, integer, double precision)")

    op.drop_index('ix_spike_events_pattern', table_name='spike_events')
    op.drop_index('ix_spike_events_domain_fired', table_name='spike_events')
    op.drop_table('spike_events')

    op.drop_index('ix_pattern_links_target', table_name='pattern_links')
    op.drop_index('ux_pattern_links_source_target', table_name='pattern_links')
    op.drop_table('pattern_links')

    op.drop_index('ix_quality_feedback_request_id', table_name='quality_feedback')
    op.drop_table('quality_feedback')

    op.drop_index('ix_reasoning_traces_domain_created', table_name='reasoning_traces')
    op.drop_index('ix_reasoning_traces_request_id', table_name='reasoning_traces')
    op.drop_table('reasoning_traces')

    op.drop_index('ix_reasoning_patterns_domain_potential', table_name='reasoning_patterns')
    op.drop_index('ix_reasoning_patterns_domain', table_name='reasoning_patterns')
    op.drop_index('ux_reasoning_patterns_fingerprint', table_name='reasoning_patterns')
    op.drop_table('reasoning_patterns')
