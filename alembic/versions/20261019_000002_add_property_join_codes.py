"""Add property join codes

Revision ID: 20261019_000002
Revises: 20261019_000001
Create Date: 2026-10-19

Adds property_code, code_expires_at and allow_tenant_signup to the
externally owned properties table.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20261019_000002'
down_revision: Union[str, None] = '20261019_000001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add join code columns to properties."""
    op.add_column('properties', sa.Column('property_code', sa.String(6), nullable=True))
    op.add_column('properties', sa.Column('code_expires_at', sa.DateTime(timezone=True), nullable=True))
    op.add_column(
        'properties',
        sa.Column('allow_tenant_signup', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index('ix_properties_property_code', 'properties', ['property_code'], unique=True)


def downgrade() -> None:
    """Drop join code columns from properties."""
    op.drop_index('ix_properties_property_code', table_name='properties')
    op.drop_column('properties', 'allow_tenant_signup')
    op.drop_column('properties', 'code_expires_at')
    op.drop_column('properties', 'property_code')
