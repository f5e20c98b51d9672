"""Create invite tables

Revision ID: 20261019_000001
Revises: None
Create Date: 2026-10-19

Creates invites, tenant_property_links, rate_limits and audit_logs.
properties and profiles are owned by the property and identity modules
and must already exist.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '20261019_000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create invite, link, rate limit and audit tables."""
    op.create_table(
        'invites',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('property_id', sa.String(36), nullable=False),
        sa.Column('created_by', sa.String(255), nullable=False),
        sa.Column('token_hash', sa.String(64), nullable=False),
        sa.Column('token_salt', sa.String(64), nullable=False),
        sa.Column('token_lookup', sa.String(64), nullable=False),
        sa.Column('intended_email', sa.String(320), nullable=True),
        sa.Column(
            'delivery_method',
            sa.Enum('email', 'code', name='invite_delivery_method'),
            nullable=False,
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('accepted_by', sa.String(255), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_by', sa.String(255), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validation_attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_validation_attempt', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('token_hash', name='uq_invites_token_hash'),
        sa.CheckConstraint(
            "(accepted_at IS NULL AND accepted_by IS NULL) OR "
            "(accepted_at IS NOT NULL AND accepted_by IS NOT NULL)",
            name='ck_invites_acceptance_pair',
        ),
        sa.CheckConstraint(
            "delivery_method <> 'email' OR intended_email IS NOT NULL",
            name='ck_invites_email_delivery_has_email',
        ),
    )
    op.create_index('ix_invites_token_lookup', 'invites', ['token_lookup'], unique=True)
    op.create_index('ix_invites_property_id', 'invites', ['property_id'])
    op.create_index('ix_invites_accepted_by', 'invites', ['accepted_by'])
    op.create_index('ix_invites_property_created', 'invites', ['property_id', 'created_at'])
    op.create_index(
        'ix_invites_active',
        'invites',
        ['expires_at'],
        postgresql_where=sa.text('accepted_at IS NULL AND deleted_at IS NULL AND revoked_at IS NULL'),
    )
    op.create_index(
        'ix_invites_cleanup',
        'invites',
        ['expires_at', 'accepted_at'],
        postgresql_where=sa.text('deleted_at IS NULL'),
    )

    op.create_table(
        'tenant_property_links',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('tenant_id', sa.String(255), nullable=False),
        sa.Column('property_id', sa.String(36), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column(
            'invitation_status',
            sa.Enum('pending', 'active', 'expired', 'revoked', name='link_invitation_status'),
            server_default='pending',
            nullable=False,
        ),
        sa.Column('accepted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['property_id'], ['properties.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('tenant_id', 'property_id', name='uq_tenant_property_links_tenant_property'),
    )
    op.create_index('ix_tenant_property_links_tenant_id', 'tenant_property_links', ['tenant_id'])
    op.create_index('ix_tenant_property_links_property_id', 'tenant_property_links', ['property_id'])
    op.create_index(
        'uq_tenant_property_links_one_active',
        'tenant_property_links',
        ['tenant_id'],
        unique=True,
        postgresql_where=sa.text('is_active'),
    )

    op.create_table(
        'rate_limits',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('limiter_key', sa.String(255), nullable=False),
        sa.Column('tokens', sa.Integer(), nullable=False),
        sa.Column('last_refill', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('max_tokens', sa.Integer(), nullable=False),
        sa.Column('refill_rate', sa.Integer(), nullable=False),
        sa.Column('window_seconds', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_rate_limits_limiter_key', 'rate_limits', ['limiter_key'], unique=True)
    op.create_index('ix_rate_limits_updated_at', 'rate_limits', ['updated_at'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('actor_id', sa.String(255), nullable=True),
        sa.Column('property_id', sa.String(36), nullable=True),
        sa.Column('action', sa.String(100), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('resource_type', sa.String(100), nullable=True),
        sa.Column('resource_id', sa.String(255), nullable=True),
        sa.Column(
            'event_metadata',
            sa.JSON().with_variant(postgresql.JSONB(), 'postgresql'),
            nullable=False,
        ),
        sa.Column('correlation_id', sa.String(36), nullable=False),
        sa.Column('source', sa.String(50), server_default='api', nullable=False),
        sa.Column('outcome', sa.String(20), server_default='success', nullable=False),
        sa.Column('error_code', sa.String(50), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_property_id', 'audit_logs', ['property_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_logs_correlation_id', 'audit_logs', ['correlation_id'])
    op.create_index('ix_audit_logs_property_timestamp', 'audit_logs', ['property_id', 'timestamp'])
    op.create_index('ix_audit_logs_actor_action', 'audit_logs', ['actor_id', 'action'])


def downgrade() -> None:
    """Drop invite tables and their enum types."""
    op.drop_table('audit_logs')
    op.drop_table('rate_limits')
    op.drop_table('tenant_property_links')
    op.drop_table('invites')
    sa.Enum(name='link_invitation_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='invite_delivery_method').drop(op.get_bind(), checkfirst=True)
