"""Initial rental schema: catalog, BOM edges, customers, orders, stock ledger

Revision ID: 20261019_rental_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. items (ATOMIC / COMPOSITE / SERVICE catalog)
2. item_components (BOM edges parent -> child)
3. customers
4. orders + order_lines (simple or extended time window, optimistic version_id)
5. stock_movements (append-only ledger)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_rental_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. ITEMS
    # ==========================================================================
    op.create_table('items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=True),
        sa.Column('price_per_day_cents', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity_on_hand IS NULL OR quantity_on_hand >= 0', name='ck_items_quantity_non_negative'),
        sa.CheckConstraint('price_per_day_cents >= 0', name='ck_items_price_non_negative'),
        sa.PrimaryKeyConstraint('id', name='pk_items'),
        sa.UniqueConstraint('sku', name='uq_items_sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_items_kind_active', 'items', ['kind', 'is_active'], unique=False)

    # ==========================================================================
    # 2. BOM EDGES
    # ==========================================================================
    op.create_table('item_components',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=False),
        sa.Column('child_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_item_components_quantity_positive'),
        sa.CheckConstraint('parent_id <> child_id', name='ck_item_components_no_self_reference'),
        sa.ForeignKeyConstraint(['parent_id'], ['items.id'], name='fk_item_components_parent_id_items'),
        sa.ForeignKeyConstraint(['child_id'], ['items.id'], name='fk_item_components_child_id_items'),
        sa.PrimaryKeyConstraint('id', name='pk_item_components'),
        sa.UniqueConstraint('parent_id', 'child_id', name='uq_item_components_parent_child'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('item_components', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_item_components_parent_id'), ['parent_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_item_components_child_id'), ['child_id'], unique=False)

    # ==========================================================================
    # 3. CUSTOMERS
    # ==========================================================================
    op.create_table('customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('display_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_customers'),
        sa.UniqueConstraint('email', name='uq_customers_email'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('customers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_customers_is_active'), ['is_active'], unique=False)

    # ==========================================================================
    # 4. ORDERS + LINES
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('sales_person_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('return_due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('setup_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('order_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('order_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cleanup_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_orders_customer_id_customers'),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_status'), ['status'], unique=False)
        batch_op.create_index('ix_orders_status_window', ['status', 'setup_start', 'cleanup_end'], unique=False)

    op.create_table('order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_per_day_cents', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_order_lines_quantity_positive'),
        sa.CheckConstraint('price_per_day_cents >= 0', name='ck_order_lines_price_non_negative'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_order_lines_order_id_orders', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], name='fk_order_lines_item_id_items', ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name='pk_order_lines'),
        sa.UniqueConstraint('order_id', 'item_id', name='uq_order_lines_order_item'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('order_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_lines_order_id'), ['order_id'], unique=False)
        batch_op.create_index('ix_order_lines_item_order', ['item_id', 'order_id'], unique=False)

    # ==========================================================================
    # 5. STOCK LEDGER
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=16), nullable=False),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('delta <> 0', name='ck_stock_movements_delta_non_zero'),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], name='fk_stock_movements_item_id_items'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], name='fk_stock_movements_order_id_orders'),
        sa.PrimaryKeyConstraint('id', name='pk_stock_movements'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movements_item_id'), ['item_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_reason'), ['reason'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_stock_movements_item_created', ['item_id', 'created_at'], unique=False)


def downgrade():
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.drop_index('ix_stock_movements_item_created')
        batch_op.drop_index(batch_op.f('ix_stock_movements_created_at'))
        batch_op.drop_index(batch_op.f('ix_stock_movements_reason'))
        batch_op.drop_index(batch_op.f('ix_stock_movements_order_id'))
        batch_op.drop_index(batch_op.f('ix_stock_movements_item_id'))
    op.drop_table('stock_movements')

    with op.batch_alter_table('order_lines', schema=None) as batch_op:
        batch_op.drop_index('ix_order_lines_item_order')
        batch_op.drop_index(batch_op.f('ix_order_lines_order_id'))
    op.drop_table('order_lines')

    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.drop_index('ix_orders_status_window')
        batch_op.drop_index(batch_op.f('ix_orders_status'))
        batch_op.drop_index(batch_op.f('ix_orders_customer_id'))
    op.drop_table('orders')

    with op.batch_alter_table('customers', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_customers_is_active'))
    op.drop_table('customers')

    with op.batch_alter_table('item_components', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_item_components_child_id'))
        batch_op.drop_index(batch_op.f('ix_item_components_parent_id'))
    op.drop_table('item_components')

    op.drop_index('ix_items_kind_active', table_name='items')
    op.drop_table('items')
