"""create_reconciliation_tables

Revision ID: 3c1f9a7d2e41
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3c1f9a7d2e41'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_number', sa.String(length=50), nullable=False, comment='Human readable order number'),
        sa.Column('email', sa.String(length=255), nullable=False, comment='Customer email'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('refunded_amount', sa.Numeric(precision=15, scale=2), nullable=False, server_default=sa.text('0')),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='pending'),
        sa.Column('payment_status', sa.String(length=30), nullable=False, server_default='pending'),
        sa.Column('fulfillment_status', sa.String(length=30), nullable=False, server_default='unfulfilled'),
        sa.Column('inventory_state', sa.String(length=20), nullable=False, server_default='unreserved'),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('billing_address', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('tracking_number', sa.String(length=100), nullable=True),
        sa.Column('tracking_url', sa.String(length=500), nullable=True),
        sa.Column('carrier', sa.String(length=100), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_email', 'orders', ['email'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_status', 'orders', ['payment_status'])
    op.create_index('ix_orders_email_created', 'orders', ['email', 'created_at'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('variant_id', sa.String(length=100), nullable=True),
        sa.Column('location_id', sa.String(length=100), nullable=True),
        sa.Column('sku', sa.String(length=100), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=True),
        sa.Column('unit_price', sa.Numeric(precision=15, scale=2), nullable=False, server_default=sa.text('0')),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('fulfilled_quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('restocked_quantity', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_items_id', 'order_items', ['id'])
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('from_status', sa.String(length=50), nullable=False),
        sa.Column('to_status', sa.String(length=50), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('changed_by', sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_order_status_history_id', 'order_status_history', ['id'])
    op.create_index('ix_order_status_history_order_created', 'order_status_history', ['order_id', 'created_at'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('gateway', sa.String(length=50), nullable=False, server_default='razorpay'),
        sa.Column('gateway_transaction_id', sa.String(length=200), nullable=False, comment='Gateway order id'),
        sa.Column('gateway_payment_id', sa.String(length=200), nullable=True),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(length=50), nullable=True),
        sa.Column('card_last4', sa.String(length=4), nullable=True),
        sa.Column('card_brand', sa.String(length=50), nullable=True),
        sa.Column('error_code', sa.String(length=100), nullable=True),
        sa.Column('error_description', sa.Text(), nullable=True),
        sa.Column('refund_reason', sa.Text(), nullable=True),
        sa.Column('risk_score', sa.Integer(), nullable=True),
        sa.Column('risk_level', sa.String(length=20), nullable=True),
        sa.Column('gateway_response', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('authorized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('captured_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'])
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_gateway_transaction_id', 'payments', ['gateway_transaction_id'])
    op.create_index('ix_payments_gateway_payment_id', 'payments', ['gateway_payment_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_order_status', 'payments', ['order_id', 'status'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('gateway_refund_id', sa.String(length=200), nullable=True),
        sa.Column('amount', sa.Numeric(precision=15, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='INR'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('restock_items', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        *_timestamps(),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_refunds_id', 'refunds', ['id'])
    op.create_index('ix_refunds_payment_id', 'refunds', ['payment_id'])
    op.create_index('ix_refunds_order_id', 'refunds', ['order_id'])
    op.create_index('ix_refunds_gateway_refund_id', 'refunds', ['gateway_refund_id'])
    op.create_index('ix_refunds_status', 'refunds', ['status'])
    op.create_index('ix_refunds_order_status', 'refunds', ['order_id', 'status'])

    op.create_table(
        'inventory_levels',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('variant_id', sa.String(length=100), nullable=False),
        sa.Column('location_id', sa.String(length=100), nullable=False),
        sa.Column('available', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('reserved', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('committed', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('variant_id', 'location_id', name='uq_inventory_levels_variant_location'),
        sa.CheckConstraint('available >= 0', name='ck_inventory_levels_available'),
        sa.CheckConstraint('reserved >= 0', name='ck_inventory_levels_reserved'),
        sa.CheckConstraint('committed >= 0', name='ck_inventory_levels_committed'),
        comment='Stock counters per variant and location',
    )

    op.create_table(
        'inventory_adjustments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('variant_id', sa.String(length=100), nullable=False),
        sa.Column('location_id', sa.String(length=100), nullable=False),
        sa.Column('movement', sa.String(length=20), nullable=False),
        sa.Column('requested', sa.Integer(), nullable=False),
        sa.Column('applied', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=30), nullable=True),
        sa.Column('reference_id', sa.String(length=100), nullable=True),
        sa.Column('inconsistent', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Append-only journal of ledger movements',
    )
    op.create_index('ix_inventory_adjustments_variant_created', 'inventory_adjustments', ['variant_id', 'created_at'])
    op.create_index('ix_inventory_adjustments_reference', 'inventory_adjustments', ['reference_type', 'reference_id'])

    op.create_table(
        'idempotency_keys',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('key', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key'),
        comment='Claimed webhook event keys and their stored outcome',
    )
    op.create_index('ix_idempotency_keys_expires_at', 'idempotency_keys', ['expires_at'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('resource_type', sa.String(length=30), nullable=False),
        sa.Column('resource_id', sa.String(length=100), nullable=False),
        sa.Column('actor_id', sa.String(length=100), nullable=False, server_default='system'),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='success'),
        sa.Column('error_message', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Append-only audit trail of payment and order actions',
    )
    op.create_index('ix_audit_logs_resource', 'audit_logs', ['resource_type', 'resource_id'])
    op.create_index('ix_audit_logs_action_created', 'audit_logs', ['action', 'created_at'])
    op.create_index('ix_audit_logs_actor_created', 'audit_logs', ['actor_id', 'created_at'])

    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('gateway', sa.String(length=50), nullable=False, server_default='razorpay'),
        sa.Column('delivery_id', sa.String(length=100), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('processing_time_ms', sa.Integer(), nullable=False, server_default=sa.text('0')),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Every received gateway notification and its outcome',
    )
    op.create_index('ix_webhook_deliveries_event_created', 'webhook_deliveries', ['event_type', 'created_at'])
    op.create_index('ix_webhook_deliveries_delivery_id', 'webhook_deliveries', ['delivery_id'])


def downgrade() -> None:
    op.drop_table('webhook_deliveries')
    op.drop_table('audit_logs')
    op.drop_table('idempotency_keys')
    op.drop_table('inventory_adjustments')
    op.drop_table('inventory_levels')
    op.drop_table('refunds')
    op.drop_table('payments')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
