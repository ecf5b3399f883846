"""Learning engine schema: versions, findings, A/B tests, prompt templates, rewards, daily metrics

Revision ID: d41f6a0c2e18
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd41f6a0c2e18'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('algorithm_versions',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('algorithm_type', sa.Text(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('weights', sa.JSON(), nullable=False),
        sa.Column('config', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('research_based', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('research_findings', sa.JSON(), nullable=True),
        sa.Column('avg_accuracy', sa.Float(), nullable=True),
        sa.Column('avg_error', sa.Float(), nullable=True),
        sa.Column('total_tests', sa.Integer(), nullable=True),
        sa.Column('improvement_rate', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('promoted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('algorithm_type', 'version', name='uq_algorithm_version_type_version'),
    )
    op.create_index('ix_algorithm_versions_type_active', 'algorithm_versions', ['algorithm_type', 'is_active'])
    # At most one active version per algorithm type
    op.create_index(
        'uq_algorithm_version_one_active', 'algorithm_versions', ['algorithm_type'],
        unique=True,
        sqlite_where=sa.text('is_active'),
        postgresql_where=sa.text('is_active'),
    )

    op.create_table('research_findings',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('source', sa.Text(), nullable=False),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('published_date', sa.Text(), nullable=True),
        sa.Column('algorithm_type', sa.Text(), nullable=False),
        sa.Column('suggested_weight_delta', sa.JSON(), nullable=True),
        sa.Column('impacts', sa.JSON(), nullable=True),
        sa.Column('applied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('applied_version_id', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_research_findings_type_applied', 'research_findings', ['algorithm_type', 'applied'])

    op.create_table('algorithm_tests',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('algorithm_type', sa.Text(), nullable=False),
        sa.Column('analysis_id', sa.Text(), nullable=True),
        sa.Column('version_a_id', sa.Text(), nullable=False),
        sa.Column('version_b_id', sa.Text(), nullable=False),
        sa.Column('score_a', sa.Float(), nullable=False),
        sa.Column('score_b', sa.Float(), nullable=False),
        sa.Column('actual_score', sa.Float(), nullable=True),
        sa.Column('features', sa.JSON(), nullable=True),
        sa.Column('winner', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_algorithm_tests_type_created', 'algorithm_tests', ['algorithm_type', 'created_at'])
    op.create_index('ix_algorithm_tests_versions', 'algorithm_tests', ['version_a_id', 'version_b_id'])

    op.create_table('prompt_templates',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('agent_type', sa.Text(), nullable=False),
        sa.Column('template', sa.Text(), nullable=False),
        sa.Column('variables', sa.JSON(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('avg_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('success_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('agent_type', 'version', name='uq_prompt_template_agent_version'),
    )

    op.create_table('agent_rewards',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('agent_type', sa.Text(), nullable=False),
        sa.Column('span_type', sa.Text(), nullable=False),
        sa.Column('prompt_template_id', sa.Text(), nullable=True),
        sa.Column('conversation_id', sa.Text(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('relevance', sa.Float(), nullable=True),
        sa.Column('accuracy', sa.Float(), nullable=True),
        sa.Column('usefulness', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_agent_rewards_agent_created', 'agent_rewards', ['agent_type', 'created_at'])
    op.create_index('ix_agent_rewards_template', 'agent_rewards', ['prompt_template_id'])

    op.create_table('learning_metrics',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('agent_type', sa.Text(), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('total_spans', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('avg_reward', sa.Float(), nullable=False, server_default='0'),
        sa.Column('improvement_rate', sa.Float(), nullable=False, server_default='0'),
        sa.Column('best_prompt_version', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('agent_type', 'date', name='uq_learning_metric_agent_date'),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('learning_metrics')
    op.drop_index('ix_agent_rewards_template', table_name='agent_rewards')
    op.drop_index('ix_agent_rewards_agent_created', table_name='agent_rewards')
    op.drop_table('agent_rewards')
    op.drop_table('prompt_templates')
    op.drop_index('ix_algorithm_tests_versions', table_name='algorithm_tests')
    op.drop_index('ix_algorithm_tests_type_created', table_name='algorithm_tests')
    op.drop_table('algorithm_tests')
    op.drop_index('ix_research_findings_type_applied', table_name='research_findings')
    op.drop_table('research_findings')
    op.drop_index('uq_algorithm_version_one_active', table_name='algorithm_versions')
    op.drop_index('ix_algorithm_versions_type_active', table_name='algorithm_versions')
    op.drop_table('algorithm_versions')
