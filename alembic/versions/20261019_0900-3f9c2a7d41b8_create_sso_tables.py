"""create_sso_tables

Revision ID: 3f9c2a7d41b8
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d41b8'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the central identity, tenant identity and code store tables.

    1. users, tenants, tenant_user (membership pivot), patients
    2. tenant_users with one row per (tenant_id, email), tenant_user_roles
    3. sso_codes and tenant_session_switches for the database code store
    """

    # 1. Central identity
    op.create_table(
        'users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('email_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('two_factor_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'tenants',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tenants_domain', 'tenants', ['domain'], unique=True)

    op.create_table(
        'tenant_user',
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('tenant_id', 'user_id'),
    )

    op.create_table(
        'patients',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_patients_user_id', 'patients', ['user_id'])

    # 2. Tenant identity
    op.create_table(
        'tenant_users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=False),
        sa.Column('central_user_id', sa.String(length=36), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('email_verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_tenant_users_tenant_email'),
    )
    op.create_index('ix_tenant_users_tenant_id', 'tenant_users', ['tenant_id'])
    op.create_index('ix_tenant_users_central_user_id', 'tenant_users', ['central_user_id'])

    op.create_table(
        'tenant_user_roles',
        sa.Column('tenant_user_id', sa.String(length=36), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.ForeignKeyConstraint(['tenant_user_id'], ['tenant_users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('tenant_user_id', 'role'),
    )

    # 3. Database code store
    op.create_table(
        'sso_codes',
        sa.Column('code', sa.String(length=128), nullable=False),
        sa.Column('subject_user_id', sa.String(length=36), nullable=False),
        sa.Column('target_tenant_id', sa.String(length=36), nullable=False),
        sa.Column('redirect_path', sa.String(length=2048), nullable=False),
        sa.Column('issuing_session_id', sa.String(length=128), nullable=True),
        sa.Column('two_factor_passed', sa.Boolean(), nullable=False),
        sa.Column('document_ids', sa.JSON(), nullable=True),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('code'),
    )
    op.create_index('ix_sso_codes_expires_at', 'sso_codes', ['expires_at'])

    op.create_table(
        'tenant_session_switches',
        sa.Column('session_key', sa.String(length=128), nullable=False),
        sa.Column('token', sa.String(length=128), nullable=False),
        sa.Column('subject_user_id', sa.String(length=36), nullable=False),
        sa.Column('target_tenant_id', sa.String(length=36), nullable=False),
        sa.Column('redirect_path', sa.String(length=2048), nullable=False),
        sa.Column('two_factor_passed', sa.Boolean(), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('session_key'),
    )
    op.create_index('ix_tenant_session_switches_expires_at', 'tenant_session_switches', ['expires_at'])


def downgrade() -> None:
    """Drop all SSO tables."""
    op.drop_index('ix_tenant_session_switches_expires_at', table_name='tenant_session_switches')
    op.drop_table('tenant_session_switches')
    op.drop_index('ix_sso_codes_expires_at', table_name='sso_codes')
    op.drop_table('sso_codes')
    op.drop_table('tenant_user_roles')
    op.drop_index('ix_tenant_users_central_user_id', table_name='tenant_users')
    op.drop_index('ix_tenant_users_tenant_id', table_name='tenant_users')
    op.drop_table('tenant_users')
    op.drop_index('ix_patients_user_id', table_name='patients')
    op.drop_table('patients')
    op.drop_table('tenant_user')
    op.drop_index('ix_tenants_domain', table_name='tenants')
    op.drop_table('tenants')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
