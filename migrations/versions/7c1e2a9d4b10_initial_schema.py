"""Initial schema: events, payments, admin tokens, action log, webhook ledger

Revision ID: 7c1e2a9d4b10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '7c1e2a9d4b10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('slug', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('price_pence', sa.Integer(), nullable=True),
        sa.Column('max_spots', sa.Integer(), nullable=True),
        sa.Column('organiser_name', sa.String(length=255), nullable=False),
        sa.Column('organiser_email', sa.String(length=255), nullable=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    op.create_table('payments',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_id', sa.String(length=36), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('amount_pence', sa.Integer(), nullable=True),
        sa.Column('amount_pence_captured', sa.Integer(), nullable=True),
        sa.Column('stripe_checkout_session_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_payment_intent_id', sa.String(length=255), nullable=True),
        sa.Column('stripe_refund_id', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('receipt_email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refund_email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('organiser_notification_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_checkout_session_id')
    )
    op.create_index('ix_payments_event_id', 'payments', ['event_id'])
    op.create_index('ix_payments_status_created_at', 'payments', ['status', 'created_at'])
    # At most one PLEDGED/PAID payment per (event, email)
    op.create_index(
        'uq_payments_event_email_active',
        'payments',
        ['event_id', 'email'],
        unique=True,
        postgresql_where=sa.text("status IN ('PLEDGED', 'PAID')"),
        sqlite_where=sa.text("status IN ('PLEDGED', 'PAID')"),
    )

    op.create_table('admin_tokens',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_id', sa.String(length=36), nullable=False),
        sa.Column('token', sa.String(length=64), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token')
    )
    op.create_index('ix_admin_tokens_event_id', 'admin_tokens', ['event_id'])

    op.create_table('admin_action_logs',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('event_id', sa.String(length=36), nullable=False),
        sa.Column('admin_token_hash', sa.String(length=64), nullable=False),
        sa.Column('action_type', sa.String(length=64), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_admin_action_logs_event_id', 'admin_action_logs', ['event_id'])

    op.create_table('stripe_webhook_events',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=255), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_event_id')
    )


def downgrade():
    op.drop_table('stripe_webhook_events')
    op.drop_index('ix_admin_action_logs_event_id', table_name='admin_action_logs')
    op.drop_table('admin_action_logs')
    op.drop_index('ix_admin_tokens_event_id', table_name='admin_tokens')
    op.drop_table('admin_tokens')
    op.drop_index('uq_payments_event_email_active', table_name='payments')
    op.drop_index('ix_payments_status_created_at', table_name='payments')
    op.drop_index('ix_payments_event_id', table_name='payments')
    op.drop_table('payments')
    op.drop_table('events')
