"""Venue authorization: venues, owners, sub-users, sessions, audit log

Creates the full schema:
1. venues (tenant root) and venue_owners (gateway login)
2. sub_users with the per-venue active-username and founder-admin partial indexes
3. sub_user_sessions (one row per device login, hashed refresh token)
4. venue_audit_logs (append-only, hash chained per venue)

Revision ID: va001_venue_auth
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'va001_venue_auth'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # STEP 1: Venues and owners
    # ==========================================================================
    op.create_table('venues',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('requires_sub_user_setup', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )

    op.create_table('venue_owners',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('venue_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_venue_owners_venue_id', 'venue_owners', ['venue_id'])

    # ==========================================================================
    # STEP 2: Sub-users
    # ==========================================================================
    op.create_table('sub_users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('venue_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('username_normalized', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('permissions', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_founder_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('failed_login_attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('lockout_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('must_change_password', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('password_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_sub_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id']),
        sa.ForeignKeyConstraint(['created_by_sub_user_id'], ['sub_users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sub_users_venue_id', 'sub_users', ['venue_id'])
    op.create_index('ix_sub_users_venue_username', 'sub_users', ['venue_id', 'username_normalized'])

    # Usernames are unique among active sub-users only; deleted rows free the name
    op.create_index(
        'uq_sub_users_venue_username_active',
        'sub_users',
        ['venue_id', 'username_normalized'],
        unique=True,
        sqlite_where=sa.text('is_active = 1'),
        postgresql_where=sa.text('is_active = true'),
    )
    # At most one founder admin per venue
    op.create_index(
        'uq_sub_users_venue_founder',
        'sub_users',
        ['venue_id'],
        unique=True,
        sqlite_where=sa.text('is_founder_admin = 1'),
        postgresql_where=sa.text('is_founder_admin = true'),
    )

    # ==========================================================================
    # STEP 3: Sessions
    # ==========================================================================
    op.create_table('sub_user_sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sub_user_id', sa.Integer(), nullable=False),
        sa.Column('venue_id', sa.Integer(), nullable=False),
        sa.Column('refresh_token_hash', sa.String(length=64), nullable=False),
        sa.Column('refresh_token_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('access_token_jti', sa.String(length=64), nullable=True),
        sa.Column('access_token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('device_name', sa.String(length=128), nullable=True),
        sa.Column('device_type', sa.String(length=32), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('logged_out_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('logout_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['sub_user_id'], ['sub_users.id']),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sub_user_sessions_sub_user_id', 'sub_user_sessions', ['sub_user_id'])
    op.create_index('ix_sub_user_sessions_refresh_token_hash', 'sub_user_sessions', ['refresh_token_hash'], unique=True)
    op.create_index('ix_sub_user_sessions_access_token_jti', 'sub_user_sessions', ['access_token_jti'])
    op.create_index('ix_sub_user_sessions_sub_user_active', 'sub_user_sessions', ['sub_user_id', 'is_active'])
    op.create_index('ix_sub_user_sessions_venue', 'sub_user_sessions', ['venue_id'])

    # ==========================================================================
    # STEP 4: Audit log
    # ==========================================================================
    op.create_table('venue_audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('venue_id', sa.Integer(), nullable=False),
        sa.Column('sub_user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('old_values', sa.Text(), nullable=True),
        sa.Column('new_values', sa.Text(), nullable=True),
        sa.Column('additional_data', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('previous_hash', sa.String(length=64), nullable=True),
        sa.Column('entry_hash', sa.String(length=64), nullable=False),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id']),
        sa.ForeignKeyConstraint(['sub_user_id'], ['sub_users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_venue_audit_logs_venue_timestamp', 'venue_audit_logs', ['venue_id', 'timestamp'])
    op.create_index('ix_venue_audit_logs_sub_user', 'venue_audit_logs', ['sub_user_id'])
    op.create_index('ix_venue_audit_logs_action', 'venue_audit_logs', ['action'])


def downgrade():
    op.drop_index('ix_venue_audit_logs_action', table_name='venue_audit_logs')
    op.drop_index('ix_venue_audit_logs_sub_user', table_name='venue_audit_logs')
    op.drop_index('ix_venue_audit_logs_venue_timestamp', table_name='venue_audit_logs')
    op.drop_table('venue_audit_logs')

    op.drop_index('ix_sub_user_sessions_venue', table_name='sub_user_sessions')
    op.drop_index('ix_sub_user_sessions_sub_user_active', table_name='sub_user_sessions')
    op.drop_index('ix_sub_user_sessions_access_token_jti', table_name='sub_user_sessions')
    op.drop_index('ix_sub_user_sessions_refresh_token_hash', table_name='sub_user_sessions')
    op.drop_index('ix_sub_user_sessions_sub_user_id', table_name='sub_user_sessions')
    op.drop_table('sub_user_sessions')

    op.drop_index('uq_sub_users_venue_founder', table_name='sub_users')
    op.drop_index('uq_sub_users_venue_username_active', table_name='sub_users')
    op.drop_index('ix_sub_users_venue_username', table_name='sub_users')
    op.drop_index('ix_sub_users_venue_id', table_name='sub_users')
    op.drop_table('sub_users')

    op.drop_index('ix_venue_owners_venue_id', table_name='venue_owners')
    op.drop_table('venue_owners')
    op.drop_table('venues')
