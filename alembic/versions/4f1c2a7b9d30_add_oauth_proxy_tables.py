"""add_oauth_proxy_tables

Revision ID: 4f1c2a7b9d30
Revises:
Create Date: 2026-10-19 09:41:07.512318

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '4f1c2a7b9d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create tenant, end-user and OAuth proxy tables."""
    op.create_table('custom_oauth_configs',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('authorization_url', sa.Text(), nullable=False),
        sa.Column('token_url', sa.Text(), nullable=True),
        sa.Column('metadata_url', sa.Text(), nullable=True),
        sa.Column('client_id', sa.Text(), nullable=False),
        sa.Column('client_secret', sa.Text(), nullable=False),
        sa.Column('scopes', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id', 'name', name='custom_oauth_configs_org_name_unique'),
    )
    op.create_index('custom_oauth_configs_organization_id_idx', 'custom_oauth_configs', ['organization_id'], unique=False)

    op.create_table('mcp_servers',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('organization_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=256), nullable=False),
        sa.Column('slug', sa.String(length=128), nullable=False),
        sa.Column('auth_type', sa.String(length=32), nullable=False),
        sa.Column('custom_oauth_config_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['custom_oauth_config_id'], ['custom_oauth_configs.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_index('mcp_server_slug_idx', 'mcp_servers', ['slug'], unique=False)

    op.create_table('mcp_server_user',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('distinct_id', sa.String(length=128), nullable=True),
        sa.Column('email', sa.String(length=320), nullable=True),
        sa.Column('upstream_sub', sa.String(length=512), nullable=True),
        sa.Column('profile_data', sa.Text(), nullable=True),
        sa.Column('first_seen_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('distinct_id'),
    )
    op.create_index('mcp_server_user_email_idx', 'mcp_server_user', ['email'], unique=False)
    op.create_index('mcp_server_user_upstream_sub_idx', 'mcp_server_user', ['upstream_sub'], unique=False)

    op.create_table('mcp_server_session',
        sa.Column('mcp_server_session_id', sa.String(length=128), nullable=False),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('mcp_server_slug', sa.String(length=128), nullable=False),
        sa.Column('mcp_server_user_id', sa.String(length=64), nullable=True),
        sa.Column('connection_timestamp', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['mcp_server_slug'], ['mcp_servers.slug'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['mcp_server_user_id'], ['mcp_server_user.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('mcp_server_session_id'),
    )
    op.create_index('mcp_server_session_user_id_idx', 'mcp_server_session', ['mcp_server_user_id'], unique=False)
    op.create_index('mcp_server_session_mcp_server_slug_idx', 'mcp_server_session', ['mcp_server_slug'], unique=False)

    op.create_table('mcp_client_registrations',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('mcp_server_id', sa.String(length=64), nullable=False),
        sa.Column('client_id', sa.String(length=128), nullable=False),
        sa.Column('client_secret', sa.String(length=128), nullable=False),
        sa.Column('redirect_uris', sa.Text(), nullable=False),
        sa.Column('client_metadata', sa.Text(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['mcp_server_id'], ['mcp_servers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_id'),
    )
    op.create_index('mcp_client_registrations_mcp_server_id_idx', 'mcp_client_registrations', ['mcp_server_id'], unique=False)
    op.create_index('mcp_client_registrations_client_id_idx', 'mcp_client_registrations', ['client_id'], unique=False)

    op.create_table('mcp_authorization_sessions',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('mcp_client_registration_id', sa.String(length=64), nullable=False),
        sa.Column('custom_oauth_config_id', sa.String(length=64), nullable=False),
        sa.Column('state', sa.String(length=128), nullable=False),
        sa.Column('client_state', sa.Text(), nullable=True),
        sa.Column('redirect_uri', sa.Text(), nullable=False),
        sa.Column('scope', sa.Text(), nullable=False),
        sa.Column('code_challenge', sa.String(length=128), nullable=True),
        sa.Column('code_challenge_method', sa.String(length=16), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('expires_at', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['mcp_client_registration_id'], ['mcp_client_registrations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['custom_oauth_config_id'], ['custom_oauth_configs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('state'),
    )
    op.create_index('mcp_authorization_sessions_state_idx', 'mcp_authorization_sessions', ['state'], unique=False)
    op.create_index('mcp_authorization_sessions_expires_at_idx', 'mcp_authorization_sessions', ['expires_at'], unique=False)

    op.create_table('upstream_oauth_tokens',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('mcp_server_user_id', sa.String(length=64), nullable=False),
        sa.Column('oauth_config_id', sa.String(length=64), nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['mcp_server_user_id'], ['mcp_server_user.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['oauth_config_id'], ['custom_oauth_configs.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('upstream_oauth_tokens_mcp_server_user_id_idx', 'upstream_oauth_tokens', ['mcp_server_user_id'], unique=False)
    op.create_index('upstream_oauth_tokens_oauth_config_id_idx', 'upstream_oauth_tokens', ['oauth_config_id'], unique=False)
    op.create_index('upstream_oauth_tokens_expires_at_idx', 'upstream_oauth_tokens', ['expires_at'], unique=False)

    op.create_table('mcp_authorization_codes',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('mcp_client_registration_id', sa.String(length=64), nullable=False),
        sa.Column('authorization_session_id', sa.String(length=64), nullable=False),
        sa.Column('upstream_token_id', sa.String(length=64), nullable=False),
        sa.Column('code', sa.String(length=128), nullable=False),
        sa.Column('expires_at', sa.BigInteger(), nullable=False),
        sa.Column('used', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['mcp_client_registration_id'], ['mcp_client_registrations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['authorization_session_id'], ['mcp_authorization_sessions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['upstream_token_id'], ['upstream_oauth_tokens.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
    )
    op.create_index('mcp_authorization_codes_code_idx', 'mcp_authorization_codes', ['code'], unique=False)
    op.create_index('mcp_authorization_codes_expires_at_idx', 'mcp_authorization_codes', ['expires_at'], unique=False)

    op.create_table('mcp_proxy_tokens',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('mcp_client_registration_id', sa.String(length=64), nullable=False),
        sa.Column('upstream_token_id', sa.String(length=64), nullable=False),
        sa.Column('access_token', sa.String(length=128), nullable=False),
        sa.Column('refresh_token', sa.String(length=128), nullable=True),
        sa.Column('expires_at', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['mcp_client_registration_id'], ['mcp_client_registrations.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['upstream_token_id'], ['upstream_oauth_tokens.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('access_token'),
        sa.UniqueConstraint('refresh_token'),
    )
    op.create_index('mcp_proxy_tokens_access_token_idx', 'mcp_proxy_tokens', ['access_token'], unique=False)
    op.create_index('mcp_proxy_tokens_refresh_token_idx', 'mcp_proxy_tokens', ['refresh_token'], unique=False)
    op.create_index('mcp_proxy_tokens_expires_at_idx', 'mcp_proxy_tokens', ['expires_at'], unique=False)


def downgrade() -> None:
    """Drop the OAuth proxy tables in reverse dependency order."""
    for table in (
        'mcp_proxy_tokens',
        'mcp_authorization_codes',
        'upstream_oauth_tokens',
        'mcp_authorization_sessions',
        'mcp_client_registrations',
        'mcp_server_session',
        'mcp_server_user',
        'mcp_servers',
        'custom_oauth_configs',
    ):
        op.drop_table(table)
