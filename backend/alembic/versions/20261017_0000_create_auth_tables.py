"""create_auth_tables

Revision ID: create_auth_tables
Revises:
Create Date: 2026-10-17 00:00:00.000000+00:00

"""
from alembic import op
import sqlalchemy as sa


revision = 'create_auth_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'pending_auth_requests',
        sa.Column('token', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=True),
        sa.Column('continue_url', sa.Text(), nullable=False),
        sa.Column('kind', sa.Enum('registration', 'sign_in', name='auth_request_kind'), nullable=False),
        sa.Column('status', sa.Enum('pending', 'completed', 'expired', name='auth_request_status'), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('requester_ip', sa.String(45), nullable=True),
    )
    op.create_index('ix_pending_auth_requests_email', 'pending_auth_requests', ['email'])
    op.create_index('ix_pending_auth_requests_status', 'pending_auth_requests', ['status'])
    op.create_index('ix_pending_auth_requests_expires_at', 'pending_auth_requests', ['expires_at'])
    op.create_index(
        'ix_pending_auth_requests_email_kind_status',
        'pending_auth_requests',
        ['email', 'kind', 'status'],
    )

    op.create_table(
        'identity_accounts',
        sa.Column('uid', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=True),
        sa.Column('email_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_identity_accounts_email', 'identity_accounts', ['email'], unique=True)

    op.create_table(
        'user_profiles',
        sa.Column('uid', sa.String(64), primary_key=True),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('name', sa.String(100), nullable=True),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.Column('last_login_ip', sa.String(45), nullable=True),
        sa.Column('last_device', sa.String(255), nullable=True),
        sa.Column('login_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_profiles_email', 'user_profiles', ['email'])


def downgrade() -> None:
    op.drop_index('ix_user_profiles_email', table_name='user_profiles')
    op.drop_table('user_profiles')
    op.drop_index('ix_identity_accounts_email', table_name='identity_accounts')
    op.drop_table('identity_accounts')
    op.drop_index('ix_pending_auth_requests_email_kind_status', table_name='pending_auth_requests')
    op.drop_index('ix_pending_auth_requests_expires_at', table_name='pending_auth_requests')
    op.drop_index('ix_pending_auth_requests_status', table_name='pending_auth_requests')
    op.drop_index('ix_pending_auth_requests_email', table_name='pending_auth_requests')
    op.drop_table('pending_auth_requests')
    sa.Enum(name='auth_request_status').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='auth_request_kind').drop(op.get_bind(), checkfirst=True)
