"""Baseline: audit trail and notifications.

Revision ID: 0001_access_core
Revises:
Create Date: 2026-10-19

Creates:
- audit_logs (per-tenant hash chain)
- notifications
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0001_access_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ==========================================================================
    # audit_logs
    # ==========================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('actor_id', sa.String(64), nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('resource', sa.String(64), nullable=False),
        sa.Column('resource_id', sa.String(128), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=False),
        sa.Column('client_agent', sa.String(500), nullable=False),
        sa.Column('risk_level', sa.String(10), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('prev_hash', sa.String(64), nullable=True),
        sa.Column('entry_hash', sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_audit_tenant_created', 'audit_logs', ['tenant_id', 'created_at'])
    op.create_index(
        'idx_audit_tenant_action_created', 'audit_logs', ['tenant_id', 'action', 'created_at']
    )
    op.create_index(
        'idx_audit_tenant_actor_created', 'audit_logs', ['tenant_id', 'actor_id', 'created_at']
    )

    # ==========================================================================
    # notifications
    # ==========================================================================
    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.String(64), nullable=False),
        sa.Column('recipient_id', sa.String(64), nullable=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('priority', sa.String(10), nullable=False),
        sa.Column('category', sa.String(20), nullable=False),
        sa.Column('channels', sa.JSON(), nullable=False),
        sa.Column('actions', sa.JSON(), nullable=False),
        sa.Column('is_read', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('is_archived', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=True),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_notif_tenant_recipient_created',
        'notifications',
        ['tenant_id', 'recipient_id', 'created_at'],
    )
    op.create_index(
        'idx_notif_scheduled_pending', 'notifications', ['scheduled_for', 'dispatched_at']
    )


def downgrade() -> None:
    op.drop_index('idx_notif_scheduled_pending', table_name='notifications')
    op.drop_index('idx_notif_tenant_recipient_created', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('idx_audit_tenant_actor_created', table_name='audit_logs')
    op.drop_index('idx_audit_tenant_action_created', table_name='audit_logs')
    op.drop_index('idx_audit_tenant_created', table_name='audit_logs')
    op.drop_table('audit_logs')
