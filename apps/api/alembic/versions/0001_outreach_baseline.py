"""Baseline migration - outreach queue, CRM integrations, rate limits, jobs

Revision ID: 0001_outreach_baseline
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_outreach_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create outreach tables."""

    # ==========================================================================
    # CRM integrations
    # ==========================================================================
    op.create_table(
        'crm_integrations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('location_id', sa.String(100), nullable=False),
        sa.Column('access_token_encrypted', sa.Text(), nullable=False),
        sa.Column('refresh_token_encrypted', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('campaign_email', sa.String(255), nullable=True),
        sa.Column('token_version', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('idx_crm_integrations_user_active', 'crm_integrations', ['user_id', 'is_active'])

    # ==========================================================================
    # Outreach queue
    # ==========================================================================
    op.create_table(
        'outreach_queue_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.String(100), nullable=False),
        sa.Column('location_id', sa.String(100), nullable=False),
        sa.Column('contact_id', sa.String(100), nullable=False),
        sa.Column('channel', sa.String(10), nullable=False),
        sa.Column('lead_id', sa.String(100), nullable=True),
        sa.Column('property_address', sa.String(500), nullable=True),
        sa.Column('contact_name', sa.String(255), nullable=True),
        sa.Column('contact_phone', sa.String(30), nullable=True),
        sa.Column('contact_email', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('touch_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('last_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('contact_id', 'channel', name='uq_outreach_queue_contact_channel'),
    )
    op.create_index(
        'idx_outreach_queue_batch',
        'outreach_queue_items',
        ['user_id', 'channel', 'status', 'created_at'],
    )
    op.create_index('idx_outreach_queue_lead', 'outreach_queue_items', ['user_id', 'lead_id'])
    op.create_index('idx_outreach_queue_address', 'outreach_queue_items', ['user_id', 'property_address'])

    # ==========================================================================
    # Rate limit counters
    # ==========================================================================
    op.create_table(
        'rate_limit_counters',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('location_id', sa.String(100), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('hourly_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('daily_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('last_hour_reset', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_day_reset', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.UniqueConstraint('location_id', 'kind', name='uq_rate_limit_location_kind'),
    )

    # ==========================================================================
    # Inbound message receipts
    # ==========================================================================
    op.create_table(
        'inbound_message_receipts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('message_key', sa.String(255), nullable=False),
        sa.Column('contact_id', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('message_key', name='uq_inbound_message_key'),
    )
    op.create_index('idx_inbound_receipts_created', 'inbound_message_receipts', ['created_at'])

    # ==========================================================================
    # Jobs
    # ==========================================================================
    op.create_table(
        'jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('run_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'pending'"), nullable=False),
        sa.Column('attempts', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('max_attempts', sa.Integer(), server_default=sa.text('3'), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('idempotency_key', name='uq_job_idempotency'),
    )
    op.create_index('idx_jobs_pending', 'jobs', ['status', 'run_at'])


def downgrade() -> None:
    """Drop outreach tables."""
    op.drop_table('jobs')
    op.drop_table('inbound_message_receipts')
    op.drop_table('rate_limit_counters')
    op.drop_table('outreach_queue_items')
    op.drop_table('crm_integrations')
