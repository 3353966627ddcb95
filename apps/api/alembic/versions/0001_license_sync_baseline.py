"""Baseline migration - license sync tables

Revision ID: 0001_license_sync_baseline
Revises:
Create Date: 2026-10-16

Creates the staging mirror (external_licenses), the internal licenses table
with its SMS ledger, and the sync status/history tables.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_license_sync_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
MONEY = sa.Numeric(12, 2)
TIMESTAMP = sa.DateTime(timezone=True)


def upgrade() -> None:
    """Create license sync tables."""

    # ==========================================================================
    # Staging mirror of the provider
    # ==========================================================================
    op.create_table(
        'external_licenses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('appid', sa.String(100), nullable=False),
        sa.Column('countid', sa.Integer(), nullable=True),
        sa.Column('mid', sa.String(100), nullable=True),
        sa.Column('dba', sa.String(255), nullable=True),
        sa.Column('zip', sa.String(10), nullable=True),
        sa.Column('status', sa.Integer(), nullable=True),
        sa.Column('license_type', sa.String(50), nullable=True),
        sa.Column('activate_date', sa.Date(), nullable=True),
        sa.Column('coming_expired', sa.Date(), nullable=True),
        sa.Column('monthly_fee', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('sms_balance', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('sms_purchased', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('sms_sent', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('package', JSON_TYPE, nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('email_license', sa.String(255), nullable=True),
        sa.Column('sendbat_workspace', sa.String(255), nullable=True),
        sa.Column('last_active', TIMESTAMP, nullable=True),
        sa.Column('sync_status', sa.String(20), server_default=sa.text("'synced'"), nullable=False),
        sa.Column('last_synced_at', TIMESTAMP, nullable=True),
        sa.Column('created_at', TIMESTAMP, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', TIMESTAMP, server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('monthly_fee >= 0', name='ck_external_licenses_monthly_fee_non_negative'),
        sa.CheckConstraint('sms_balance >= 0', name='ck_external_licenses_sms_balance_non_negative'),
        sa.CheckConstraint('sms_purchased >= 0', name='ck_external_licenses_sms_purchased_non_negative'),
        sa.CheckConstraint('sms_sent >= 0', name='ck_external_licenses_sms_sent_non_negative'),
        sa.PrimaryKeyConstraint('id', name='pk_external_licenses'),
        sa.UniqueConstraint('appid', name='uq_external_licenses_appid'),
    )
    op.create_index('idx_external_licenses_status', 'external_licenses', ['status'])
    op.create_index('idx_external_licenses_last_synced', 'external_licenses', ['last_synced_at'])

    # ==========================================================================
    # Internal licenses
    # ==========================================================================
    op.create_table(
        'licenses',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('key', sa.String(255), nullable=False),
        sa.Column('appid', sa.String(100), nullable=True),
        sa.Column('product', sa.String(255), nullable=False),
        sa.Column('plan', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'active'"), nullable=False),
        sa.Column('term', sa.String(20), server_default=sa.text("'monthly'"), nullable=False),
        sa.Column('seats_total', sa.Integer(), server_default=sa.text('1'), nullable=False),
        sa.Column('seats_used', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('starts_at', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('cancel_date', sa.Date(), nullable=True),
        sa.Column('last_active', TIMESTAMP, nullable=True),
        sa.Column('dba', sa.String(255), nullable=True),
        sa.Column('zip', sa.String(10), nullable=True),
        sa.Column('last_payment', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('sms_purchased', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('sms_sent', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('sms_balance', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('agents', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('agents_name', JSON_TYPE, nullable=False),
        sa.Column('agents_cost', MONEY, server_default=sa.text('0'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('external_sync_status', sa.String(20), nullable=True),
        sa.Column('last_external_sync', TIMESTAMP, nullable=True),
        sa.Column('created_at', TIMESTAMP, server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', TIMESTAMP, server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('sms_balance >= 0', name='ck_licenses_sms_balance_non_negative'),
        sa.CheckConstraint('seats_total >= 0', name='ck_licenses_seats_total_non_negative'),
        sa.CheckConstraint('seats_used >= 0', name='ck_licenses_seats_used_non_negative'),
        sa.PrimaryKeyConstraint('id', name='pk_licenses'),
        sa.UniqueConstraint('key', name='uq_licenses_key'),
        sa.UniqueConstraint('appid', name='uq_licenses_appid'),
    )
    op.create_index('idx_licenses_status', 'licenses', ['status'])
    op.create_index('idx_licenses_due_date', 'licenses', ['due_date'])
    op.create_index('idx_licenses_created_at', 'licenses', ['created_at'])

    op.create_table(
        'sms_payments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('license_id', sa.Uuid(), nullable=False),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('sms_count', sa.Integer(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('paid_at', TIMESTAMP, server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_sms_payments_amount_non_negative'),
        sa.CheckConstraint('sms_count >= 0', name='ck_sms_payments_sms_count_non_negative'),
        sa.ForeignKeyConstraint(
            ['license_id'], ['licenses.id'],
            name='fk_sms_payments_license_id_licenses',
            ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('id', name='pk_sms_payments'),
    )
    op.create_index('idx_sms_payments_license', 'sms_payments', ['license_id', 'paid_at'])

    # ==========================================================================
    # Sync status (single row) and run history
    # ==========================================================================
    op.create_table(
        'license_sync_state',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('state', sa.String(20), server_default=sa.text("'idle'"), nullable=False),
        sa.Column('enabled', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('run_id', sa.Uuid(), nullable=True),
        sa.Column('trigger', sa.String(20), nullable=True),
        sa.Column('started_at', TIMESTAMP, nullable=True),
        sa.Column('last_outcome', sa.String(20), nullable=True),
        sa.Column('last_result', JSON_TYPE, nullable=True),
        sa.Column('last_success_at', TIMESTAMP, nullable=True),
        sa.Column('total_runs', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('successful_runs', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('failed_runs', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('total_duration_ms', sa.BigInteger(), server_default=sa.text('0'), nullable=False),
        sa.Column('total_records_processed', sa.BigInteger(), server_default=sa.text('0'), nullable=False),
        sa.Column('updated_at', TIMESTAMP, server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_license_sync_state'),
    )
    op.execute("INSERT INTO license_sync_state (id, state) VALUES (1, 'idle')")

    op.create_table(
        'license_sync_runs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('trigger', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('dry_run', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('started_at', TIMESTAMP, nullable=False),
        sa.Column('finished_at', TIMESTAMP, nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('fetched', sa.Integer(), nullable=False),
        sa.Column('created', sa.Integer(), nullable=False),
        sa.Column('updated', sa.Integer(), nullable=False),
        sa.Column('failed', sa.Integer(), nullable=False),
        sa.Column('reconciled_created', sa.Integer(), nullable=False),
        sa.Column('reconciled_updated', sa.Integer(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('failures', JSON_TYPE, nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_license_sync_runs'),
    )
    op.create_index('idx_license_sync_runs_started', 'license_sync_runs', ['started_at'])


def downgrade() -> None:
    """Drop license sync tables."""
    op.drop_index('idx_license_sync_runs_started', table_name='license_sync_runs')
    op.drop_table('license_sync_runs')
    op.drop_table('license_sync_state')
    op.drop_index('idx_sms_payments_license', table_name='sms_payments')
    op.drop_table('sms_payments')
    op.drop_index('idx_licenses_created_at', table_name='licenses')
    op.drop_index('idx_licenses_due_date', table_name='licenses')
    op.drop_index('idx_licenses_status', table_name='licenses')
    op.drop_table('licenses')
    op.drop_index('idx_external_licenses_last_synced', table_name='external_licenses')
    op.drop_index('idx_external_licenses_status', table_name='external_licenses')
    op.drop_table('external_licenses')
