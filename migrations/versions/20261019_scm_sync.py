"""create scm sync tables

Revision ID: 20261019_scm
Revises:
Create Date: 2026-10-19 09:00:00
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers, used by Alembic.
revision = '20261019_scm'
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column('id', UUID(as_uuid=True), primary_key=True,
                     server_default=sa.text('gen_random_uuid()'))


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, server_default=sa.func.now()),
    ]


def upgrade():
    op.create_table(
        'scm_users',
        _id(),
        sa.Column('username', sa.String(100), nullable=False, unique=True),
        sa.Column('display_name', sa.String(200)),
        sa.Column('email', sa.String(200)),
        sa.Column('password_hash', sa.String(256)),
        sa.Column('role', sa.String(20), nullable=False, server_default='viewer'),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        sa.Column('last_login_at', sa.DateTime),
        *_timestamps(),
    )
    op.create_index('ix_scm_users_username', 'scm_users', ['username'])

    op.create_table(
        'scm_modules',
        _id(),
        sa.Column('organization_id', UUID(as_uuid=True)),
        sa.Column('namespace', sa.String(100), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('system', sa.String(50), nullable=False),
        sa.Column('description', sa.Text),
        *_timestamps(),
        sa.UniqueConstraint('namespace', 'name', 'system', name='uq_module_address'),
    )

    op.create_table(
        'scm_module_versions',
        _id(),
        sa.Column('module_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_modules.id', ondelete='CASCADE'), nullable=False),
        sa.Column('version', sa.String(100), nullable=False),
        sa.Column('source', sa.String(20), nullable=False, server_default='upload'),
        sa.Column('source_url', sa.String(500)),
        sa.Column('readme', sa.Text),
        sa.Column('release_notes', sa.Text),
        sa.Column('tag_name', sa.String(255)),
        sa.Column('commit_sha', sa.String(64)),
        sa.Column('published_by', UUID(as_uuid=True), sa.ForeignKey('scm_users.id')),
        sa.Column('published_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('deprecated', sa.Boolean, server_default=sa.false()),
        sa.Column('deprecated_at', sa.DateTime),
        sa.Column('deprecation_message', sa.Text),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now()),
        sa.UniqueConstraint('module_id', 'version', name='uq_module_version'),
    )
    op.create_index('ix_scm_module_versions_module_id', 'scm_module_versions', ['module_id'])
    op.create_index('ix_scm_module_versions_tag_name', 'scm_module_versions', ['tag_name'])

    op.create_table(
        'scm_providers',
        _id(),
        sa.Column('organization_id', UUID(as_uuid=True)),
        sa.Column('provider_type', sa.String(20), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('base_url', sa.String(300)),
        sa.Column('tenant_id', sa.String(100)),
        sa.Column('client_id', sa.String(200)),
        sa.Column('client_secret_encrypted', sa.Text),
        sa.Column('webhook_secret', sa.String(200)),
        sa.Column('is_active', sa.Boolean, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_scm_providers_organization_id', 'scm_providers', ['organization_id'])

    op.create_table(
        'scm_oauth_tokens',
        _id(),
        sa.Column('user_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_providers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('token_type', sa.String(10), nullable=False, server_default='oauth'),
        sa.Column('access_token_encrypted', sa.Text, nullable=False),
        sa.Column('refresh_token_encrypted', sa.Text),
        sa.Column('scopes', JSONB),
        sa.Column('expires_at', sa.DateTime),
        sa.Column('reconnect_required', sa.Boolean, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'provider_id', name='uq_scm_token_user_provider'),
    )
    op.create_index('ix_scm_oauth_tokens_user_id', 'scm_oauth_tokens', ['user_id'])
    op.create_index('ix_scm_oauth_tokens_provider_id', 'scm_oauth_tokens', ['provider_id'])

    op.create_table(
        'scm_module_links',
        _id(),
        sa.Column('module_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_modules.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('provider_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_providers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('repository_owner', sa.String(200), nullable=False),
        sa.Column('repository_name', sa.String(200), nullable=False),
        sa.Column('repository_path', sa.String(300)),
        sa.Column('default_branch', sa.String(200), nullable=False, server_default='main'),
        sa.Column('auto_publish_enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('tag_pattern', sa.String(100), nullable=False, server_default='v*'),
        sa.Column('webhook_id', sa.String(100)),
        sa.Column('webhook_secret', sa.String(200), nullable=False),
        sa.Column('created_by', UUID(as_uuid=True),
                  sa.ForeignKey('scm_users.id', ondelete='SET NULL')),
        sa.Column('last_sync_at', sa.DateTime),
        *_timestamps(),
    )
    op.create_index('ix_scm_module_links_provider_id', 'scm_module_links', ['provider_id'])

    op.create_table(
        'scm_webhook_events',
        _id(),
        sa.Column('module_source_repo_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_module_links.id', ondelete='CASCADE'), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('ref_name', sa.String(255)),
        sa.Column('commit_sha', sa.String(64)),
        sa.Column('payload', JSONB),
        sa.Column('state', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('outcome', sa.String(30)),
        sa.Column('error_message', sa.Text),
        sa.Column('version_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_module_versions.id', ondelete='SET NULL')),
        sa.Column('retry_of', UUID(as_uuid=True),
                  sa.ForeignKey('scm_webhook_events.id', ondelete='SET NULL')),
        sa.Column('triggered_by', UUID(as_uuid=True),
                  sa.ForeignKey('scm_users.id', ondelete='SET NULL')),
        *_timestamps(),
    )
    op.create_index('ix_scm_webhook_events_module_source_repo_id', 'scm_webhook_events',
                    ['module_source_repo_id'])
    op.create_index('ix_scm_webhook_events_state', 'scm_webhook_events', ['state'])
    op.create_index('ix_scm_webhook_events_ref', 'scm_webhook_events',
                    ['module_source_repo_id', 'ref_name', 'commit_sha'])

    op.create_table(
        'scm_immutability_violations',
        _id(),
        sa.Column('module_version_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_module_versions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('tag_name', sa.String(255), nullable=False),
        sa.Column('original_commit_sha', sa.String(64), nullable=False),
        sa.Column('new_commit_sha', sa.String(64), nullable=False),
        sa.Column('detected_at', sa.DateTime, server_default=sa.func.now()),
        sa.Column('acknowledged', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('acknowledged_by', UUID(as_uuid=True),
                  sa.ForeignKey('scm_users.id', ondelete='SET NULL')),
        sa.Column('acknowledged_at', sa.DateTime),
        sa.Column('note', sa.Text),
    )
    op.create_index('ix_scm_immutability_violations_module_version_id',
                    'scm_immutability_violations', ['module_version_id'])

    op.create_table(
        'scm_webhook_cleanups',
        _id(),
        sa.Column('provider_id', UUID(as_uuid=True),
                  sa.ForeignKey('scm_providers.id', ondelete='CASCADE'), nullable=False),
        sa.Column('repository_owner', sa.String(200), nullable=False),
        sa.Column('repository_name', sa.String(200), nullable=False),
        sa.Column('webhook_id', sa.String(100), nullable=False),
        sa.Column('requested_by', UUID(as_uuid=True),
                  sa.ForeignKey('scm_users.id', ondelete='SET NULL')),
        sa.Column('state', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text),
        sa.Column('next_attempt_at', sa.DateTime, server_default=sa.func.now()),
        *_timestamps(),
    )
    op.create_index('ix_scm_webhook_cleanups_provider_id', 'scm_webhook_cleanups', ['provider_id'])
    op.create_index('ix_scm_webhook_cleanups_state', 'scm_webhook_cleanups', ['state'])


def downgrade():
    op.drop_table('scm_webhook_cleanups')
    op.drop_table('scm_immutability_violations')
    op.drop_table('scm_webhook_events')
    op.drop_table('scm_module_links')
    op.drop_table('scm_oauth_tokens')
    op.drop_table('scm_providers')
    op.drop_table('scm_module_versions')
    op.drop_table('scm_modules')
    op.drop_table('scm_users')
