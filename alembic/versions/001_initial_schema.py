"""Initial schema - accounts, items, listings, sync events and sync jobs

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'marketplace_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.String(length=64), nullable=False),
        sa.Column('marketplace', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('remote_account_id', sa.String(length=128), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=True),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_marketplace_accounts_org_id', 'marketplace_accounts', ['org_id'])
    op.create_index('ix_marketplace_accounts_marketplace', 'marketplace_accounts', ['marketplace'])
    op.create_index('ix_marketplace_accounts_status', 'marketplace_accounts', ['status'])

    op.create_table(
        'inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('org_id', sa.String(length=64), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_inventory_items_org_id', 'inventory_items', ['org_id'])
    op.create_index('ix_inventory_items_status', 'inventory_items', ['status'])

    op.create_table(
        'meta_listings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('item_id'),
    )

    op.create_table(
        'marketplace_listings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('meta_listing_id', sa.Integer(), nullable=False),
        sa.Column('marketplace_account_id', sa.Integer(), nullable=False),
        sa.Column('remote_listing_id', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('listing_url', sa.String(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['meta_listing_id'], ['meta_listings.id']),
        sa.ForeignKeyConstraint(['marketplace_account_id'], ['marketplace_accounts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('marketplace_account_id', 'remote_listing_id',
                            name='uq_marketplace_listing_account_remote_id'),
    )
    op.create_index('ix_marketplace_listings_meta_listing_id', 'marketplace_listings', ['meta_listing_id'])
    op.create_index('ix_marketplace_listings_marketplace_account_id', 'marketplace_listings', ['marketplace_account_id'])
    op.create_index('ix_marketplace_listings_remote_listing_id', 'marketplace_listings', ['remote_listing_id'])
    op.create_index('ix_marketplace_listings_status', 'marketplace_listings', ['status'])
    op.create_index('ix_marketplace_listings_last_synced_at', 'marketplace_listings', ['last_synced_at'])

    op.create_table(
        'sync_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sync_run_id', sa.String(length=36), nullable=True),
        sa.Column('marketplace', sa.String(length=32), nullable=True),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('marketplace_listing_id', sa.Integer(), nullable=True),
        sa.Column('item_id', sa.Integer(), nullable=True),
        sa.Column('change_type', sa.String(length=32), nullable=False),
        sa.Column('change_data', sa.JSON(), nullable=False),
        sa.Column('detected_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['marketplace_listing_id'], ['marketplace_listings.id']),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_events_id', 'sync_events', ['id'])
    op.create_index('ix_sync_events_sync_run_id', 'sync_events', ['sync_run_id'])
    op.create_index('ix_sync_events_marketplace', 'sync_events', ['marketplace'])
    op.create_index('ix_sync_events_marketplace_listing_id', 'sync_events', ['marketplace_listing_id'])
    op.create_index('ix_sync_events_item_id', 'sync_events', ['item_id'])
    op.create_index('ix_sync_events_change_type', 'sync_events', ['change_type'])

    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('available_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_sync_jobs_job_type', 'sync_jobs', ['job_type'])
    op.create_index('ix_sync_jobs_status', 'sync_jobs', ['status'])
    op.create_index('ix_sync_jobs_available_at', 'sync_jobs', ['available_at'])


def downgrade() -> None:
    op.drop_table('sync_jobs')
    op.drop_table('sync_events')
    op.drop_table('marketplace_listings')
    op.drop_table('meta_listings')
    op.drop_table('inventory_items')
    op.drop_table('marketplace_accounts')
