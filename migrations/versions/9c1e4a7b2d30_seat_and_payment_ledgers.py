"""seat and payment ledgers

Revision ID: 9c1e4a7b2d30
Revises:
Create Date: 2026-10-17 09:12:44.108214

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9c1e4a7b2d30'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('seats',
    sa.Column('seat_number', sa.Integer(), autoincrement=False, nullable=False),
    sa.Column('state', sa.String(length=20), nullable=False),
    sa.Column('owner_id', sa.String(length=128), nullable=True),
    sa.Column('shift', sa.String(length=20), nullable=True),
    sa.Column('booked_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('seat_number')
    )
    op.create_index('ix_seats_owner_id', 'seats', ['owner_id'])
    op.create_index('ix_seats_expires_at', 'seats', ['expires_at'])
    op.create_index('ix_seats_state_expires', 'seats', ['state', 'expires_at'])

    op.create_table('seat_history',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('seat_number', sa.Integer(), nullable=False),
    sa.Column('kind', sa.String(length=20), nullable=False),
    sa.Column('member_id', sa.String(length=128), nullable=True),
    sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('reason', sa.String(length=30), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.ForeignKeyConstraint(['seat_number'], ['seats.seat_number'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_seat_history_seat_number', 'seat_history', ['seat_number'])

    op.create_table('payment_attempts',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('order_id', sa.String(length=255), nullable=False),
    sa.Column('member_id', sa.String(length=128), nullable=False),
    sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
    sa.Column('currency', sa.String(length=10), nullable=False),
    sa.Column('purpose', sa.String(length=30), nullable=False),
    sa.Column('months_covered', sa.Integer(), nullable=False),
    sa.Column('shift', sa.String(length=20), nullable=True),
    sa.Column('payment_mode', sa.String(length=20), nullable=False),
    sa.Column('state', sa.String(length=20), nullable=False),
    sa.Column('gateway_payment_id', sa.String(length=255), nullable=True),
    sa.Column('receipt_id', sa.String(length=40), nullable=True),
    sa.Column('failure_reason', sa.String(length=255), nullable=True),
    sa.Column('verified_by', sa.String(length=128), nullable=True),
    sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('linked_seat_number', sa.Integer(), nullable=True),
    sa.Column('seat_allocation_outcome', sa.String(length=20), nullable=False),
    sa.Column('conflicted_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('resolution', sa.String(length=20), nullable=True),
    sa.Column('resolved_by', sa.String(length=128), nullable=True),
    sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('resolution_note', sa.Text(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('order_id'),
    sa.UniqueConstraint('gateway_payment_id'),
    sa.UniqueConstraint('receipt_id')
    )
    op.create_index('ix_payment_attempts_member_id', 'payment_attempts', ['member_id'])
    op.create_index('ix_payment_attempts_state', 'payment_attempts', ['state'])
    op.create_index('ix_payment_attempts_created_at', 'payment_attempts', ['created_at'])
    op.create_index('ix_payment_attempts_conflicted_at', 'payment_attempts', ['conflicted_at'])

    op.create_table('member_accounts',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('external_id', sa.String(length=128), nullable=False),
    sa.Column('display_name', sa.String(length=255), nullable=True),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('is_admin', sa.Boolean(), nullable=False),
    sa.Column('seat_number', sa.Integer(), nullable=True),
    sa.Column('seat_expires_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('shift', sa.String(length=20), nullable=True),
    sa.Column('payment_status', sa.String(length=20), nullable=False),
    sa.Column('next_due_date', sa.DateTime(timezone=True), nullable=True),
    sa.Column('total_paid', sa.Numeric(precision=12, scale=2), nullable=False),
    sa.Column('last_payment_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_payment_amount', sa.Numeric(precision=10, scale=2), nullable=True),
    sa.Column('mirror_sync_status', sa.String(length=20), nullable=False),
    sa.Column('mirror_synced_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('external_id')
    )
    op.create_index('ix_member_accounts_seat_number', 'member_accounts', ['seat_number'])
    op.create_index('ix_member_accounts_next_due_date', 'member_accounts', ['next_due_date'])

    op.create_table('member_payment_entries',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('account_id', sa.String(length=36), nullable=False),
    sa.Column('order_id', sa.String(length=255), nullable=False),
    sa.Column('receipt_id', sa.String(length=40), nullable=True),
    sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
    sa.Column('months', sa.Integer(), nullable=False),
    sa.Column('payment_mode', sa.String(length=20), nullable=False),
    sa.Column('collected_by', sa.String(length=128), nullable=True),
    sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['account_id'], ['member_accounts.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('order_id')
    )
    op.create_index('ix_member_payment_entries_account_id', 'member_payment_entries', ['account_id'])

    op.create_table('gateway_events',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('gateway_event_id', sa.String(length=255), nullable=False),
    sa.Column('event_type', sa.String(length=255), nullable=False),
    sa.Column('processed_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('gateway_event_id')
    )

    op.create_table('audit_events',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('member_id', sa.String(length=128), nullable=True),
    sa.Column('actor_id', sa.String(length=128), nullable=True),
    sa.Column('action', sa.String(length=255), nullable=False),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_audit_events_member_id', 'audit_events', ['member_id'])


def downgrade():
    op.drop_index('ix_audit_events_member_id', table_name='audit_events')
    op.drop_table('audit_events')
    op.drop_table('gateway_events')
    op.drop_index('ix_member_payment_entries_account_id', table_name='member_payment_entries')
    op.drop_table('member_payment_entries')
    op.drop_index('ix_member_accounts_next_due_date', table_name='member_accounts')
    op.drop_index('ix_member_accounts_seat_number', table_name='member_accounts')
    op.drop_table('member_accounts')
    op.drop_index('ix_payment_attempts_conflicted_at', table_name='payment_attempts')
    op.drop_index('ix_payment_attempts_created_at', table_name='payment_attempts')
    op.drop_index('ix_payment_attempts_state', table_name='payment_attempts')
    op.drop_index('ix_payment_attempts_member_id', table_name='payment_attempts')
    op.drop_table('payment_attempts')
    op.drop_index('ix_seat_history_seat_number', table_name='seat_history')
    op.drop_table('seat_history')
    op.drop_index('ix_seats_state_expires', table_name='seats')
    op.drop_index('ix_seats_expires_at', table_name='seats')
    op.drop_index('ix_seats_owner_id', table_name='seats')
    op.drop_table('seats')
