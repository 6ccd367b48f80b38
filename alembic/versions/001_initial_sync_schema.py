"""initial_sync_schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:12:41.204518

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENTITY_TABLES = ('clio_matters', 'clio_contacts', 'clio_activities', 'clio_tasks', 'clio_users')


def _remote_columns():
    """Columnas tecnicas comunes a todas las proyecciones remotas."""
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('connection_id', sa.Integer(), nullable=False),
        sa.Column('remote_id', sa.String(length=64), nullable=False),
        sa.Column('remote_created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('remote_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
    ]


def _create_entity_table(name: str, *columns) -> None:
    op.create_table(
        name,
        *_remote_columns(),
        *columns,
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('connection_id', 'remote_id', name=f'uq_{name}_natural_key'),
    )
    op.create_index(op.f(f'ix_{name}_connection_id'), name, ['connection_id'], unique=False)


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table('connections'):
        op.create_table('connections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=255), nullable=False),
        sa.Column('remote_account_id', sa.String(length=64), nullable=False),
        sa.Column('access_token_encrypted', sa.Text(), nullable=True),
        sa.Column('refresh_token_encrypted', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('credentials_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('webhook_subscriptions', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_connections_id'), 'connections', ['id'], unique=False)
        op.create_index(op.f('ix_connections_user_id'), 'connections', ['user_id'], unique=False)

    if not inspector.has_table('sync_watermarks'):
        op.create_table('sync_watermarks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('connection_id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('synced_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['connection_id'], ['connections.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('connection_id', 'entity_type', name='uq_sync_watermarks_key')
        )

    if not inspector.has_table('sync_jobs'):
        op.create_table('sync_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('batch_id', sa.String(length=36), nullable=True),
        sa.Column('connection_id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('mode', sa.String(length=16), nullable=False),
        sa.Column('remote_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('cursor', sa.Text(), nullable=True),
        sa.Column('pages_completed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_since', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('available_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('worker_id', sa.String(length=64), nullable=True),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('error_code', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_chain', sa.JSON(), nullable=True),
        sa.Column('enqueued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['connection_id'], ['connections.id']),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_sync_jobs_batch_id'), 'sync_jobs', ['batch_id'], unique=False)
        op.create_index('ix_sync_jobs_key_status', 'sync_jobs', ['connection_id', 'entity_type', 'status'], unique=False)
        op.create_index('ix_sync_jobs_status_available', 'sync_jobs', ['status', 'available_at'], unique=False)

    if not inspector.has_table('clio_matters'):
        _create_entity_table(
            'clio_matters',
            sa.Column('display_number', sa.String(length=255), nullable=True),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('status', sa.String(length=32), nullable=True),
            sa.Column('open_date', sa.Date(), nullable=True),
            sa.Column('close_date', sa.Date(), nullable=True),
            sa.Column('billable', sa.Boolean(), nullable=True),
            sa.Column('practice_area', sa.String(length=255), nullable=True),
            sa.Column('client_remote_id', sa.String(length=64), nullable=True),
            sa.Column('responsible_attorney_remote_id', sa.String(length=64), nullable=True),
        )

    if not inspector.has_table('clio_contacts'):
        _create_entity_table(
            'clio_contacts',
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('contact_type', sa.String(length=32), nullable=True),
            sa.Column('primary_email_address', sa.String(length=255), nullable=True),
            sa.Column('primary_phone_number', sa.String(length=64), nullable=True),
            sa.Column('is_client', sa.Boolean(), nullable=True),
        )

    if not inspector.has_table('clio_activities'):
        _create_entity_table(
            'clio_activities',
            sa.Column('activity_type', sa.String(length=32), nullable=True),
            sa.Column('activity_date', sa.Date(), nullable=True),
            sa.Column('quantity', sa.Numeric(18, 4), nullable=True),
            sa.Column('price', sa.Numeric(18, 4), nullable=True),
            sa.Column('total', sa.Numeric(18, 4), nullable=True),
            sa.Column('note', sa.Text(), nullable=True),
            sa.Column('billed', sa.Boolean(), nullable=True),
            sa.Column('matter_remote_id', sa.String(length=64), nullable=True),
            sa.Column('user_remote_id', sa.String(length=64), nullable=True),
        )

    if not inspector.has_table('clio_tasks'):
        _create_entity_table(
            'clio_tasks',
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('status', sa.String(length=32), nullable=True),
            sa.Column('priority', sa.String(length=32), nullable=True),
            sa.Column('due_at', sa.Date(), nullable=True),
            sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('matter_remote_id', sa.String(length=64), nullable=True),
            sa.Column('assignee_remote_id', sa.String(length=64), nullable=True),
        )

    if not inspector.has_table('clio_users'):
        _create_entity_table(
            'clio_users',
            sa.Column('name', sa.String(length=255), nullable=True),
            sa.Column('email', sa.String(length=255), nullable=True),
            sa.Column('enabled', sa.Boolean(), nullable=True),
            sa.Column('rate', sa.Numeric(18, 4), nullable=True),
        )


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for name in ENTITY_TABLES + ('sync_jobs', 'sync_watermarks', 'connections'):
        if inspector.has_table(name):
            op.drop_table(name)
