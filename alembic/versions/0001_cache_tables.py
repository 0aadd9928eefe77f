"""create cache analytics tables and seed invalidation rules

Revision ID: 0001
Revises:
Create Date: 2025-12-05
"""

from alembic import op
import sqlalchemy as sa


revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


DEFAULT_RULES = [
    ("operation", "firewall:rule:create", "cache:firewall:*", 10),
    ("operation", "firewall:rule:update", "cache:firewall:*", 10),
    ("operation", "firewall:rule:delete", "cache:firewall:*", 10),
    ("operation", "network:vlan:create", "cache:network:*", 10),
    ("operation", "network:vlan:update", "cache:network:*", 10),
    ("operation", "network:vlan:delete", "cache:network:*", 10),
    ("operation", "network:interface:update", "cache:network:*", 10),
    ("operation", "system:backup:create", "cache:backup:*", 5),
    ("operation", "system:backup:restore", "cache:*", 20),
    ("dependency", "cache:network:interfaces", "cache:network:vlans", 5),
    ("dependency", "cache:firewall:aliases", "cache:firewall:rules", 5),
]


def upgrade() -> None:
    op.create_table(
        'cache_stats',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('hits', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('misses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_access', sa.DateTime(timezone=True), nullable=True),
        sa.Column('avg_response_time', sa.Float(), nullable=False, server_default='0'),
        sa.Column('data_size', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('key', name='uq_cache_stats_key'),
    )
    op.create_index('idx_cache_stats_hits', 'cache_stats', ['hits'])

    op.create_table(
        'query_patterns',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('pattern', sa.String(length=255), nullable=False),
        sa.Column('frequency', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('avg_execution_time', sa.Float(), nullable=False, server_default='0'),
        sa.Column('last_executed', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cache_priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('suggested_ttl', sa.Integer(), nullable=False, server_default='300'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('pattern', name='uq_query_patterns_pattern'),
    )
    op.create_index('idx_query_patterns_frequency', 'query_patterns', ['frequency'])
    op.create_index('idx_query_patterns_priority', 'query_patterns', ['cache_priority'])

    rules = op.create_table(
        'cache_invalidation_rules',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('trigger_type', sa.String(length=50), nullable=False),
        sa.Column('trigger_pattern', sa.String(length=255), nullable=False),
        sa.Column('affected_pattern', sa.String(length=255), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('idx_invalidation_trigger_type', 'cache_invalidation_rules', ['trigger_type'])
    op.create_index('idx_invalidation_enabled', 'cache_invalidation_rules', ['enabled'])

    op.create_table(
        'operations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('target', sa.String(length=255), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('result', sa.String(length=20), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('idx_operations_timestamp', 'operations', ['timestamp'])
    op.create_index('idx_operations_type', 'operations', ['type'])
    op.create_index('idx_operations_result', 'operations', ['result'])

    op.bulk_insert(rules, [
        {
            'trigger_type': trigger_type,
            'trigger_pattern': trigger_pattern,
            'affected_pattern': affected_pattern,
            'priority': priority,
            'enabled': True,
        }
        for trigger_type, trigger_pattern, affected_pattern, priority in DEFAULT_RULES
    ])


def downgrade() -> None:
    op.drop_table('operations')
    op.drop_table('cache_invalidation_rules')
    op.drop_table('query_patterns')
    op.drop_table('cache_stats')
