"""Initial schema: inventory, production, sales, repairs, cash ledger, write journal

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. materials / products (stock never negative, enforced by CHECK constraints)
2. boms / production_orders (commitments live on the order row as JSON)
3. sales (unique daily code), repair_orders (materials_deducted lock column)
4. cash_transactions (deterministic ids for sale/repair-derived rows)
5. daily_sequences (backs get_next_daily_sequence) and write_batches (batch journal)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. INVENTORY
    # ==========================================================================
    op.create_table('materials',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default=''),
        sa.Column('stock', sa.Float(), nullable=False, server_default='0'),
        sa.Column('committed_quantity', sa.Float(), nullable=False, server_default='0'),
        sa.Column('purchase_price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('retail_price', sa.Float(), nullable=True),
        sa.Column('wholesale_price', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('stock >= 0', name='ck_materials_stock_non_negative'),
        sa.CheckConstraint('committed_quantity >= 0', name='ck_materials_committed_non_negative'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_materials_sku', 'materials', ['sku'])

    op.create_table('products',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('stock', sa.Float(), nullable=False, server_default='0'),
        sa.Column('cost_price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('retail_price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('wholesale_price', sa.Float(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.PrimaryKeyConstraint('id')
    )

    # ==========================================================================
    # 2. PRODUCTION
    # ==========================================================================
    op.create_table('boms',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=64), nullable=False),
        sa.Column('materials', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_boms_product_sku', 'boms', ['product_sku'])

    op.create_table('production_orders',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('bom_id', sa.String(length=64), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity_produced', sa.Float(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('materials_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('additional_costs', sa.JSON(), nullable=False),
        sa.Column('total_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('committed_materials', sa.JSON(), nullable=False),
        sa.Column('actual_costs', sa.JSON(), nullable=True),
        sa.Column('cost_analysis', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['bom_id'], ['boms.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_production_orders_bom_id', 'production_orders', ['bom_id'])
    op.create_index('ix_production_orders_status', 'production_orders', ['status'])

    # ==========================================================================
    # 3. SALES & REPAIRS
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=True),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('subtotal', sa.Float(), nullable=False, server_default='0'),
        sa.Column('discount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total', sa.Float(), nullable=False, server_default='0'),
        sa.Column('customer', sa.JSON(), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='paid'),
        sa.Column('paid_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('user_id', sa.String(length=64), nullable=True),
        sa.Column('user_name', sa.String(length=255), nullable=True),
        sa.UniqueConstraint('code', name='uq_sales_code'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sales_code', 'sales', ['code'])
    op.create_index('ix_sales_payment_status', 'sales', ['payment_status'])

    op.create_table('repair_orders',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('creation_date', sa.DateTime(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('device_name', sa.String(length=255), nullable=True),
        sa.Column('issue_description', sa.Text(), nullable=True),
        sa.Column('technician_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='INTAKE'),
        sa.Column('materials_used', sa.JSON(), nullable=False),
        sa.Column('labor_cost', sa.Float(), nullable=False, server_default='0'),
        sa.Column('total', sa.Float(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='unpaid'),
        sa.Column('deposit_amount', sa.Float(), nullable=False, server_default='0'),
        sa.Column('partial_payment_amount', sa.Float(), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('payment_date', sa.DateTime(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('materials_deducted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('materials_deducted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_repair_orders_status', 'repair_orders', ['status'])
    op.create_index('ix_repair_orders_materials_deducted', 'repair_orders', ['materials_deducted'])

    # ==========================================================================
    # 4. CASH LEDGER
    # ==========================================================================
    op.create_table('cash_transactions',
        sa.Column('id', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False, server_default='income'),
        sa.Column('date', sa.DateTime(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('contact', sa.JSON(), nullable=True),
        sa.Column('payment_source_id', sa.String(length=32), nullable=True),
        sa.Column('sale_id', sa.String(length=64), nullable=True),
        sa.Column('work_order_id', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cash_transactions_sale_id', 'cash_transactions', ['sale_id'])
    op.create_index('ix_cash_transactions_work_order_id', 'cash_transactions', ['work_order_id'])

    # ==========================================================================
    # 5. SEQUENCES & WRITE JOURNAL
    # ==========================================================================
    op.create_table('daily_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(length=32), nullable=False),
        sa.Column('day', sa.String(length=8), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('prefix', 'day', name='uq_daily_sequences_prefix_day'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('write_batches',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=64), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='open'),
        sa.Column('steps', sa.JSON(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_write_batches_reference_id', 'write_batches', ['reference_id'])
    op.create_index('ix_write_batches_status', 'write_batches', ['status'])


def downgrade():
    op.drop_index('ix_write_batches_status', table_name='write_batches')
    op.drop_index('ix_write_batches_reference_id', table_name='write_batches')
    op.drop_table('write_batches')
    op.drop_table('daily_sequences')
    op.drop_index('ix_cash_transactions_work_order_id', table_name='cash_transactions')
    op.drop_index('ix_cash_transactions_sale_id', table_name='cash_transactions')
    op.drop_table('cash_transactions')
    op.drop_index('ix_repair_orders_materials_deducted', table_name='repair_orders')
    op.drop_index('ix_repair_orders_status', table_name='repair_orders')
    op.drop_table('repair_orders')
    op.drop_index('ix_sales_payment_status', table_name='sales')
    op.drop_index('ix_sales_code', table_name='sales')
    op.drop_table('sales')
    op.drop_index('ix_production_orders_status', table_name='production_orders')
    op.drop_index('ix_production_orders_bom_id', table_name='production_orders')
    op.drop_table('production_orders')
    op.drop_index('ix_boms_product_sku', table_name='boms')
    op.drop_table('boms')
    op.drop_table('products')
    op.drop_index('ix_materials_sku', table_name='materials')
    op.drop_table('materials')
