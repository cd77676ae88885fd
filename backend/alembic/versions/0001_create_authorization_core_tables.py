"""Create tenants, users, role catalog and policy tables

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

Enum columns are stored as VARCHAR values (no native PostgreSQL enums) so
new catalog values never need a type migration.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str | None = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Apply schema changes."""
    op.create_table(
        'tenants',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('tenant_type', sa.String(length=32), nullable=False),
        sa.Column('plan', sa.String(length=32), nullable=False),
        sa.Column('subscription_status', sa.String(length=32), nullable=False),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('admin_ids', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('lifecycle', sa.String(length=32), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_tenants')),
    )
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)

    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_type', sa.String(length=32), nullable=False),
        sa.Column('global_role', sa.String(length=32), nullable=True),
        sa.Column('tenant_role_ids', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('internal_role_ids', postgresql.JSONB(), server_default='[]', nullable=False),
        sa.Column('lifecycle', sa.String(length=32), nullable=False),
        sa.Column('login_attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('lock_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_verified', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('is_email_verified', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_users_tenant_id_tenants'), ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_users')),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_users_tenant_id_email'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=False)
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'], unique=False)
    op.create_index('ix_users_global_role', 'users', ['global_role'], unique=False)

    op.create_table(
        'roles',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('role_type', sa.String(length=32), nullable=False),
        sa.Column('global_role', sa.String(length=32), nullable=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('tenant_type', sa.String(length=32), nullable=True),
        sa.Column('maritime_features', sa.Integer(), server_default='0', nullable=False),
        sa.Column('is_system_role', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('is_template', sa.Boolean(), server_default='false', nullable=False),
        sa.Column('lifecycle', sa.String(length=32), nullable=False),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], name=op.f('fk_roles_tenant_id_tenants'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_roles')),
        sa.UniqueConstraint('name', 'tenant_id', name='uq_roles_name_tenant_id'),
        sa.UniqueConstraint('global_role', name=op.f('uq_roles_global_role')),
    )
    op.create_index('ix_roles_name', 'roles', ['name'], unique=False)
    op.create_index('ix_roles_tenant_id', 'roles', ['tenant_id'], unique=False)
    # NULL tenant_id never collides under the composite constraint above
    op.create_index(
        'uq_roles_global_name',
        'roles',
        ['name'],
        unique=True,
        postgresql_where=sa.text('tenant_id IS NULL'),
    )

    op.create_table(
        'role_permissions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('role_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('resource', sa.String(length=255), nullable=False),
        sa.Column('actions', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['role_id'], ['roles.id'], name=op.f('fk_role_permissions_role_id_roles'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_role_permissions')),
        sa.UniqueConstraint('role_id', 'position', name='uq_role_permissions_role_id_position'),
    )
    op.create_index('ix_role_permissions_role_id', 'role_permissions', ['role_id'], unique=False)

    op.create_table(
        'policy_rules',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subject', sa.String(length=255), nullable=False),
        sa.Column('resource', sa.String(length=255), nullable=False),
        sa.Column('action', sa.String(length=16), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_policy_rules')),
        sa.UniqueConstraint('subject', 'resource', 'action', 'domain', name='uq_policy_rules_tuple'),
    )
    op.create_index('ix_policy_rules_subject', 'policy_rules', ['subject'], unique=False)
    op.create_index('ix_policy_rules_domain', 'policy_rules', ['domain'], unique=False)

    op.create_table(
        'role_assignments',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('subject', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=255), nullable=False),
        sa.Column('domain', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_role_assignments')),
        sa.UniqueConstraint('subject', 'role', 'domain', name='uq_role_assignments_tuple'),
    )
    op.create_index('ix_role_assignments_subject', 'role_assignments', ['subject'], unique=False)
    op.create_index('ix_role_assignments_domain', 'role_assignments', ['domain'], unique=False)


def downgrade() -> None:
    """Revert schema changes."""
    op.drop_index('ix_role_assignments_domain', table_name='role_assignments')
    op.drop_index('ix_role_assignments_subject', table_name='role_assignments')
    op.drop_table('role_assignments')

    op.drop_index('ix_policy_rules_domain', table_name='policy_rules')
    op.drop_index('ix_policy_rules_subject', table_name='policy_rules')
    op.drop_table('policy_rules')

    op.drop_index('ix_role_permissions_role_id', table_name='role_permissions')
    op.drop_table('role_permissions')

    op.drop_index('uq_roles_global_name', table_name='roles')
    op.drop_index('ix_roles_tenant_id', table_name='roles')
    op.drop_index('ix_roles_name', table_name='roles')
    op.drop_table('roles')

    op.drop_index('ix_users_global_role', table_name='users')
    op.drop_index('ix_users_tenant_id', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')

    op.drop_index('ix_tenants_slug', table_name='tenants')
    op.drop_table('tenants')
