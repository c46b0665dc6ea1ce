"""Settlement engine: menu, shifts, orders, payments, accounts and ledger

Revision ID: 20261016_settlement
Revises:
Create Date: 2026-10-16

This migration creates:
1. Menu catalogue (categories, menu items, option groups, options), customers, dining tables
2. Shifts (single open shift enforced by the open_marker unique column)
3. Orders, order items, customizations, payments, per-day order counters, print queue
4. Accounts, ledger postings, transfers, relations, payment method mapping
5. Expenses, receipts, audit log
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261016_settlement'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False)


def upgrade():
    # ==========================================================================
    # 1. MENU, CUSTOMERS, TABLES
    # ==========================================================================
    op.create_table('categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('printer_id', sa.Integer(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table('menu_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('menu_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_menu_items_category_id'), ['category_id'], unique=False)

    op.create_table('menu_item_option_groups',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('menu_item_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('min_select', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_select', sa.Integer(), nullable=True),
        sa.Column('allow_quantity', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['menu_item_id'], ['menu_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('menu_item_option_groups', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_menu_item_option_groups_menu_item_id'), ['menu_item_id'], unique=False)

    op.create_table('menu_item_options',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('group_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('price_delta', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('max_qty', sa.Integer(), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['group_id'], ['menu_item_option_groups.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('menu_item_options', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_menu_item_options_group_id'), ['group_id'], unique=False)

    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('discount_percent', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table('dining_tables',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 2. SHIFTS
    # ==========================================================================
    op.create_table('shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('opened_by_user_id', sa.Integer(), nullable=False),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('opening_cash', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closing_cash', sa.Numeric(12, 2), nullable=True),
        sa.Column('note', sa.String(length=500), nullable=True),
        # TRUE while open, NULL once closed; the unique constraint allows one open row
        sa.Column('open_marker', sa.Boolean(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('open_marker', name='uq_shifts_single_open'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shifts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_shifts_closed_at'), ['closed_at'], unique=False)

    # ==========================================================================
    # 3. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('order_no', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='draft'),
        sa.Column('nickname', sa.String(length=128), nullable=True),
        sa.Column('table_id', sa.Integer(), nullable=True),
        sa.Column('is_takeaway', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('people_count', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('customer_discount_percent', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_percent', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('service_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('service_fee_percent', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['table_id'], ['dining_tables.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('business_date', 'order_no', name='uq_orders_business_date_order_no'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_business_date'), ['business_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index('ix_orders_shift_status', ['shift_id', 'status'], unique=False)
    # At most one open order per table
    op.create_index(
        'uq_orders_open_table', 'orders', ['table_id'], unique=True,
        sqlite_where=sa.text("status = 'open' AND table_id IS NOT NULL"),
        postgresql_where=sa.text("status = 'open' AND table_id IS NOT NULL"),
    )

    op.create_table('order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('menu_item_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('qty', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('discount_percent', sa.Numeric(7, 3), nullable=False, server_default='0'),
        sa.Column('voided', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('voided_by_user_id', sa.Integer(), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('printer_id', sa.Integer(), nullable=True),
        sa.Column('kitchen_printed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('customization_signature', sa.String(length=500), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['menu_item_id'], ['menu_items.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_items_order_id'), ['order_id'], unique=False)

    op.create_table('order_item_customizations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_item_id', sa.Integer(), nullable=False),
        sa.Column('group_id', sa.Integer(), nullable=False),
        sa.Column('group_name', sa.String(length=128), nullable=False),
        sa.Column('option_id', sa.Integer(), nullable=False),
        sa.Column('option_name', sa.String(length=128), nullable=False),
        sa.Column('qty', sa.Numeric(12, 3), nullable=False),
        sa.Column('price_delta', sa.Numeric(12, 2), nullable=False, server_default='0'),
        _created_at(),
        sa.ForeignKeyConstraint(['order_item_id'], ['order_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_item_customizations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_item_customizations_order_item_id'), ['order_item_id'], unique=False)

    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payments_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_method'), ['method'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_created_at'), ['created_at'], unique=False)

    op.create_table('order_counters',
        sa.Column('business_date', sa.Date(), nullable=False),
        sa.Column('next_no', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('business_date')
    )

    op.create_table('print_queue',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('printer_id', sa.Integer(), nullable=True),
        sa.Column('kind', sa.String(length=32), nullable=False, server_default='kitchen'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.String(length=500), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('print_queue', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_print_queue_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_print_queue_status'), ['status'], unique=False)

    # ==========================================================================
    # 4. ACCOUNTS AND LEDGER
    # ==========================================================================
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False, server_default='cash'),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_locked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('account_scope', sa.String(length=32), nullable=False, server_default='custom'),
        sa.Column('account_key', sa.String(length=32), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('base_account_id', sa.Integer(), nullable=True),
        sa.Column('parent_account_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['base_account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['parent_account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('shift_id', 'account_key', name='uq_accounts_shift_key'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('accounts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_accounts_account_scope'), ['account_scope'], unique=False)
        batch_op.create_index(batch_op.f('ix_accounts_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_accounts_parent_account_id'), ['parent_account_id'], unique=False)
    # One vault account per slot
    op.create_index(
        'uq_accounts_vault_key', 'accounts', ['account_key'], unique=True,
        sqlite_where=sa.text("account_scope = 'vault_base'"),
        postgresql_where=sa.text("account_scope = 'vault_base'"),
    )

    op.create_table('account_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('direction', sa.String(length=3), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint('amount > 0', name='ck_account_transactions_amount_positive'),
        sa.CheckConstraint("direction IN ('in', 'out')", name='ck_account_transactions_direction'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('account_transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_account_transactions_account_id'), ['account_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_account_transactions_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_account_txns_source', ['source_type', 'source_id'], unique=False)
        batch_op.create_index('ix_account_txns_account_created', ['account_id', 'created_at'], unique=False)

    op.create_table('account_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_account_id', sa.Integer(), nullable=False),
        sa.Column('to_account_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint('amount > 0', name='ck_account_transfers_amount_positive'),
        sa.ForeignKeyConstraint(['from_account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['to_account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('account_transfers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_account_transfers_from_account_id'), ['from_account_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_account_transfers_to_account_id'), ['to_account_id'], unique=False)

    op.create_table('account_relations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_account_id', sa.Integer(), nullable=False),
        sa.Column('to_account_id', sa.Integer(), nullable=False),
        sa.Column('percentage', sa.Numeric(7, 3), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False, server_default='allocation'),
        _created_at(),
        sa.ForeignKeyConstraint(['from_account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['to_account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('from_account_id', 'to_account_id', 'kind', name='uq_account_relations_pair_kind'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('account_relations', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_account_relations_from_account_id'), ['from_account_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_account_relations_to_account_id'), ['to_account_id'], unique=False)

    op.create_table('payment_method_accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('method'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 5. EXPENSES, RECEIPTS, AUDIT
    # ==========================================================================
    op.create_table('expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('category', sa.String(length=128), nullable=False),
        sa.Column('supplier', sa.String(length=200), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint('amount > 0', name='ck_expenses_amount_positive'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('expenses', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_expenses_expense_date'), ['expense_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_expenses_shift_id'), ['shift_id'], unique=False)

    op.create_table('receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_date', sa.Date(), nullable=False),
        sa.Column('source', sa.String(length=200), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint('amount > 0', name='ck_receipts_amount_positive'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('receipts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_receipts_receipt_date'), ['receipt_date'], unique=False)

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_logs_actor_user_id'), ['actor_user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_logs_action'), ['action'], unique=False)
        batch_op.create_index('ix_audit_logs_entity', ['entity_type', 'entity_id'], unique=False)


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('receipts')
    op.drop_table('expenses')
    op.drop_table('payment_method_accounts')
    op.drop_table('account_relations')
    op.drop_table('account_transfers')
    op.drop_table('account_transactions')
    op.drop_index('uq_accounts_vault_key', table_name='accounts')
    op.drop_table('accounts')
    op.drop_table('print_queue')
    op.drop_table('order_counters')
    op.drop_table('payments')
    op.drop_table('order_item_customizations')
    op.drop_table('order_items')
    op.drop_index('uq_orders_open_table', table_name='orders')
    op.drop_table('orders')
    op.drop_table('shifts')
    op.drop_table('dining_tables')
    op.drop_table('customers')
    op.drop_table('menu_item_options')
    op.drop_table('menu_item_option_groups')
    op.drop_table('menu_items')
    op.drop_table('categories')
