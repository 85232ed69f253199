"""create landlords, billing accounts, event log, credit ledger, notifications

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2026-09-28 10:02:41.118204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '3f9a1c2b7d10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'landlords',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    )
    op.create_index('ix_landlords_owner_id', 'landlords', ['owner_id'], unique=True)
    op.create_index('ix_landlords_email', 'landlords', ['email'], unique=False)

    op.create_table(
        'billing_accounts',
        sa.Column('landlord_id', sa.Integer(), sa.ForeignKey('landlords.id', ondelete='RESTRICT'), primary_key=True),
        sa.Column('external_customer_id', sa.String(length=64), nullable=True),
        sa.Column('external_subscription_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=32), server_default=sa.text("'none'"), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_active', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('trial_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_event_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.CheckConstraint(
            "status IN ('none','trialing','active','active_cancel_pending','past_due','canceled')",
            name='ck_billing_accounts_status_valid',
        ),
    )
    op.create_index('ix_billing_accounts_external_customer_id', 'billing_accounts', ['external_customer_id'], unique=True)
    op.create_index('ix_billing_accounts_external_subscription_id', 'billing_accounts', ['external_subscription_id'], unique=False)
    op.create_index('ix_billing_accounts_status', 'billing_accounts', ['status'], unique=False)

    op.create_table(
        'billing_event_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=80), nullable=False),
        sa.Column('object_id', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('outcome', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
    )
    op.create_index('ix_billing_event_logs_provider_event_id', 'billing_event_logs', ['provider_event_id'], unique=True)
    op.create_index('ix_billing_event_logs_type', 'billing_event_logs', ['type'], unique=False)
    op.create_index('ix_billing_event_logs_object_id', 'billing_event_logs', ['object_id'], unique=False)

    op.create_table(
        'credit_ledger_entries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('landlord_id', sa.Integer(), sa.ForeignKey('landlords.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('units_purchased', sa.Integer(), nullable=False),
        sa.Column('external_ref', sa.String(length=255), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('purchased_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('units_purchased > 0', name='ck_credit_ledger_entries_units_positive'),
        sa.UniqueConstraint('external_ref', name='uq_credit_ledger_entries_external_ref'),
    )
    op.create_index('ix_credit_ledger_entries_landlord_id', 'credit_ledger_entries', ['landlord_id'], unique=False)

    op.create_table(
        'consumption_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('landlord_id', sa.Integer(), sa.ForeignKey('landlords.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('document_id', sa.String(length=64), nullable=True),
        sa.Column('document_url', sa.String(length=2048), nullable=True),
        sa.Column('signer_email', sa.String(length=320), nullable=True),
        sa.Column('signer_name', sa.String(length=255), nullable=True),
        sa.Column('provider_request_id', sa.String(length=128), nullable=True),
        sa.Column('signing_status', sa.String(length=32), nullable=True),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('reserved','sent','failed')", name='ck_consumption_records_status_valid'),
    )
    op.create_index('ix_consumption_records_landlord_id', 'consumption_records', ['landlord_id'], unique=False)
    op.create_index('ix_consumption_records_status', 'consumption_records', ['status'], unique=False)
    op.create_index('ix_consumption_records_provider_request_id', 'consumption_records', ['provider_request_id'], unique=True)
    op.create_index('ix_consumption_records_created_at', 'consumption_records', ['created_at'], unique=False)

    op.create_table(
        'notification_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('landlord_id', sa.Integer(), sa.ForeignKey('landlords.id'), nullable=True),
        sa.Column('to_email', sa.String(length=320), nullable=False),
        sa.Column('template', sa.String(length=64), nullable=False),
        sa.Column('subject', sa.String(length=200), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('meta', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_notification_logs_landlord_id', 'notification_logs', ['landlord_id'], unique=False)
    op.create_index('ix_notification_logs_to_email', 'notification_logs', ['to_email'], unique=False)
    op.create_index('ix_notification_logs_status', 'notification_logs', ['status'], unique=False)


def downgrade():
    op.drop_table('notification_logs')
    op.drop_table('consumption_records')
    op.drop_table('credit_ledger_entries')
    op.drop_table('billing_event_logs')
    op.drop_table('billing_accounts')
    op.drop_table('landlords')
