"""Create return ledger tables.

Revision ID: 001_return_ledger
Revises:
Create Date: 2026-10-19

Tables:
- customers, orders, order_items
- returns, return_items
- accounts, transactions, transaction_lines
- document_sequences
- stock_movements
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '001_return_ledger'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, sa.Numeric(15, 2), nullable=False, server_default='0', **kwargs)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create every return ledger table."""

    op.create_table(
        'customers',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('phone_number', sa.String(20), nullable=True),
        _money('advance_balance'),
        *_timestamps(),
    )
    op.create_index('ix_customers_tenant_id', 'customers', ['tenant_id'])
    op.create_index('ix_customers_phone_number', 'customers', ['phone_number'])

    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_number', sa.String(50), nullable=False),
        sa.Column('customer_id', UUID(as_uuid=True), sa.ForeignKey('customers.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('selected_products', sa.JSON, nullable=True),
        sa.Column('product_quantities', sa.JSON, nullable=True),
        sa.Column('product_prices', sa.JSON, nullable=True),
        _money('shipping_charges'),
        _money('refund_amount', comment='Sum of total_amount over active returns'),
        sa.Column('return_status', sa.String(50), nullable=False, server_default='NONE', comment='NONE, PARTIAL, FULL'),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'order_number', name='uq_order_tenant_number'),
    )
    op.create_index('ix_orders_tenant_id', 'orders', ['tenant_id'])
    op.create_index('ix_orders_order_number', 'orders', ['order_number'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])

    op.create_table(
        'order_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(100), nullable=False),
        sa.Column('product_variant_id', sa.String(100), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='1'),
        sa.Column('unit_price', sa.Numeric(15, 2), nullable=False),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'returns',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('return_number', sa.String(50), nullable=False, comment='RET-<year>-<seq>'),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('return_type', sa.String(50), nullable=False, comment='CUSTOMER_FULL, CUSTOMER_PARTIAL'),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('return_date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('shipping_charge_handling', sa.String(50), nullable=False,
                  comment='FULL_REFUND, DEDUCT_FROM_ADVANCE, CUSTOMER_PAYS'),
        _money('shipping_charge_amount'),
        _money('advance_balance_used'),
        _money('total_amount', comment='Value counted against the order'),
        _money('refund_amount'),
        sa.Column('refund_method', sa.String(50), nullable=True, comment='Cash, Bank Transfer, Credit to Account'),
        sa.Column('status', sa.String(50), nullable=False, server_default='PENDING',
                  comment='PENDING, APPROVED, REJECTED, REFUNDED'),
        sa.Column('rejection_reason', sa.Text, nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'return_number', name='uq_return_tenant_number'),
    )
    op.create_index('ix_returns_tenant_id', 'returns', ['tenant_id'])
    op.create_index('ix_returns_return_number', 'returns', ['return_number'])
    op.create_index('ix_returns_order_id', 'returns', ['order_id'])
    op.create_index('ix_returns_status', 'returns', ['status'])
    op.create_index('ix_returns_tenant_status', 'returns', ['tenant_id', 'status'])

    op.create_table(
        'return_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('return_id', UUID(as_uuid=True), sa.ForeignKey('returns.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.String(100), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('purchase_price', sa.Numeric(15, 2), nullable=False, comment='Unit price at the time of the return'),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='1'),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('product_variant_id', sa.String(100), nullable=True),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_return_items_return_id', 'return_items', ['return_id'])

    op.create_table(
        'accounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('code', sa.String(20), nullable=False, comment='Account code e.g., 1000, 1200, 4100'),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('type', sa.String(50), nullable=False, comment='ASSET, LIABILITY, EQUITY, INCOME, EXPENSE'),
        sa.Column('account_sub_type', sa.String(50), nullable=True, comment='CASH, BANK for payment accounts'),
        _money('balance', comment='Running balance (auto-calculated)'),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_account_tenant_code'),
    )
    op.create_index('ix_accounts_tenant_id', 'accounts', ['tenant_id'])

    op.create_table(
        'transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('transaction_number', sa.String(50), nullable=False, unique=True),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('entry_type', sa.String(50), nullable=False,
                  comment='RETURN_APPROVAL, RETURN_REVERSAL, RETURN_REFUND'),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='SET NULL'), nullable=True),
        sa.Column('return_id', UUID(as_uuid=True), sa.ForeignKey('returns.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reversal_of_id', UUID(as_uuid=True), sa.ForeignKey('transactions.id', ondelete='RESTRICT'),
                  nullable=True, comment='Transaction this one reverses'),
        _money('total_debit'),
        _money('total_credit'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_transactions_tenant_id', 'transactions', ['tenant_id'])
    op.create_index('ix_transactions_transaction_number', 'transactions', ['transaction_number'])
    op.create_index('ix_transactions_entry_type', 'transactions', ['entry_type'])
    op.create_index('ix_transactions_order_id', 'transactions', ['order_id'])
    op.create_index('ix_transactions_return_id', 'transactions', ['return_id'])
    op.create_index('ix_transactions_reversal_of_id', 'transactions', ['reversal_of_id'])

    op.create_table(
        'transaction_lines',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('transaction_id', UUID(as_uuid=True), sa.ForeignKey('transactions.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False),
        sa.Column('account_id', UUID(as_uuid=True), sa.ForeignKey('accounts.id', ondelete='RESTRICT'), nullable=False),
        _money('debit_amount'),
        _money('credit_amount'),
    )
    op.create_index('ix_transaction_lines_transaction_id', 'transaction_lines', ['transaction_id'])
    op.create_index('ix_transaction_lines_account_id', 'transaction_lines', ['account_id'])

    op.create_table(
        'document_sequences',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('document_type', sa.String(10), nullable=False, comment='RET'),
        sa.Column('prefix', sa.String(10), nullable=False),
        sa.Column('current_number', sa.Integer, nullable=False, server_default='0', comment='Last used sequence number'),
        sa.Column('padding_length', sa.Integer, nullable=False, server_default='4'),
        *_timestamps(),
        sa.UniqueConstraint('tenant_id', 'document_type', name='uq_document_sequence_tenant_type'),
    )
    op.create_index('ix_document_sequences_tenant_id', 'document_sequences', ['tenant_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', UUID(as_uuid=True), nullable=False),
        sa.Column('movement_type', sa.String(50), nullable=False, comment='RETURN_IN'),
        sa.Column('movement_date', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column('product_id', sa.String(100), nullable=True),
        sa.Column('product_variant_id', sa.String(100), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_cost', sa.Numeric(15, 2), nullable=True, server_default='0'),
        sa.Column('reference_type', sa.String(50), nullable=True),
        sa.Column('reference_id', UUID(as_uuid=True), nullable=True),
        sa.Column('reference_number', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_stock_movements_tenant_id', 'stock_movements', ['tenant_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_reference_id', 'stock_movements', ['reference_id'])

    print("Created return ledger tables")


def downgrade() -> None:
    """Drop every return ledger table."""
    for table in (
        'stock_movements',
        'document_sequences',
        'transaction_lines',
        'transactions',
        'accounts',
        'return_items',
        'returns',
        'order_items',
        'orders',
        'customers',
    ):
        op.drop_table(table)
