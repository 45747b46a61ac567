"""Create rewards engine tables (agents, metric facts, rules, tiers, badges, gifts, assignments, activity log).

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create subject, input, target, assignment and audit tables."""
    # Agents (subjects)
    op.create_table(
        'agents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('account_status', sa.String(20), server_default='active'),
        sa.Column('region', sa.String(50), nullable=True),
        sa.Column('total_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('verified_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('referrals_with_first_deal', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_agents_account_status', 'agents', ['account_status'])

    # Metric facts (read-only upstream input)
    op.create_table(
        'metric_facts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=False),
        sa.Column('metric', sa.String(50), nullable=False),
        sa.Column('value', sa.Numeric(14, 4), nullable=False, server_default='0'),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('developer_id', sa.String(64), nullable=True),
        sa.Column('project_id', sa.String(64), nullable=True),
        sa.Column('region', sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_metric_facts_metric_occurred', 'metric_facts', ['metric', 'occurred_at'])
    op.create_index('ix_metric_facts_agent_metric', 'metric_facts', ['agent_id', 'metric'])

    # Eligibility rules
    op.create_table(
        'eligibility_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('target_type', sa.String(20), nullable=False),
        sa.Column('target_id', sa.Integer(), nullable=False),
        sa.Column('metric', sa.String(50), nullable=False),
        sa.Column('time_window', sa.String(20), nullable=False, server_default='all_time'),
        sa.Column('operator', sa.String(20), nullable=False),
        sa.Column('value_single', sa.Numeric(14, 4), nullable=True),
        sa.Column('value_min', sa.Numeric(14, 4), nullable=True),
        sa.Column('value_max', sa.Numeric(14, 4), nullable=True),
        sa.Column('filters', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_eligibility_rules_target', 'eligibility_rules', ['target_type', 'target_id'])
    op.create_index('ix_eligibility_rules_active', 'eligibility_rules', ['is_active'])

    # Tiers
    op.create_table(
        'tiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('bonus_percentage', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('min_referrals', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_referrals', sa.Integer(), nullable=True),
        sa.Column('behavior_requirement', sa.String(20), nullable=False, server_default='none'),
        sa.Column('is_active', sa.Boolean(), server_default='true'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('level', name='unique_tier_level'),
    )

    # Badges
    op.create_table(
        'badges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('badge_type', sa.String(50), server_default='special'),
        sa.Column('unlock_criteria', sa.JSON(), nullable=True),
        sa.Column('benefit_type', sa.String(50), server_default='none'),
        sa.Column('benefit_value', sa.Numeric(10, 2), nullable=True),
        sa.Column('expires_in_days', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true'),
        sa.Column('display_order', sa.Integer(), server_default='0'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )

    # Gifts
    op.create_table(
        'gifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('tier_ids', sa.JSON(), nullable=True),
        sa.Column('exclusivity_mode', sa.String(20), server_default='none'),
        sa.Column('max_concurrent_claims', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )

    # Agent tier (one row per agent, promotion-only)
    op.create_table(
        'agent_tiers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=False),
        sa.Column('tier_id', sa.Integer(), nullable=False),
        sa.Column('awarded_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('awarded_by', sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['tier_id'], ['tiers.id']),
        sa.UniqueConstraint('agent_id', name='unique_agent_tier'),
    )

    # Agent badges (expired rows retained)
    op.create_table(
        'agent_badges',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=False),
        sa.Column('badge_id', sa.Integer(), nullable=False),
        sa.Column('unlocked_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('grant_seq', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('awarded_by', sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['badge_id'], ['badges.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('agent_id', 'badge_id', 'grant_seq', name='unique_agent_badge_grant'),
    )
    op.create_index('ix_agent_badges_agent_badge', 'agent_badges', ['agent_id', 'badge_id'])

    # Gift eligibilities
    op.create_table(
        'gift_eligibilities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('agent_id', sa.Integer(), nullable=False),
        sa.Column('gift_id', sa.Integer(), nullable=False),
        sa.Column('granted_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('granted_by', sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['agent_id'], ['agents.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['gift_id'], ['gifts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('agent_id', 'gift_id', name='unique_agent_gift'),
    )

    # Admin activity log
    op.create_table(
        'admin_activity_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(100), nullable=False),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=True),
        sa.Column('resource_id', sa.String(64), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_admin_activity_action', 'admin_activity_log', ['action'])
    op.create_index('ix_admin_activity_created', 'admin_activity_log', ['created_at'])


def downgrade():
    """Drop rewards engine tables."""
    op.drop_index('ix_admin_activity_created', table_name='admin_activity_log')
    op.drop_index('ix_admin_activity_action', table_name='admin_activity_log')
    op.drop_table('admin_activity_log')
    op.drop_table('gift_eligibilities')
    op.drop_index('ix_agent_badges_agent_badge', table_name='agent_badges')
    op.drop_table('agent_badges')
    op.drop_table('agent_tiers')
    op.drop_table('gifts')
    op.drop_table('badges')
    op.drop_table('tiers')
    op.drop_index('ix_eligibility_rules_active', table_name='eligibility_rules')
    op.drop_index('ix_eligibility_rules_target', table_name='eligibility_rules')
    op.drop_table('eligibility_rules')
    op.drop_index('ix_metric_facts_agent_metric', table_name='metric_facts')
    op.drop_index('ix_metric_facts_metric_occurred', table_name='metric_facts')
    op.drop_table('metric_facts')
    op.drop_index('ix_agents_account_status', table_name='agents')
    op.drop_table('agents')
