"""Stock history: one row per stock adjustment

Revision ID: 20261019_stock_history
Revises: 20261019_initial
Create Date: 2026-10-19

This migration adds:
1. stock_history (item, signed change, before/after, reason, reference id)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_stock_history'
down_revision = '20261019_initial'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('stock_history',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('item_type', sa.String(length=16), nullable=False, server_default='material'),
        sa.Column('item_id', sa.String(length=64), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('quantity_change', sa.Float(), nullable=False),
        sa.Column('quantity_before', sa.Float(), nullable=True),
        sa.Column('quantity_after', sa.Float(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_stock_history_item_id', 'stock_history', ['item_id'])
    op.create_index('ix_stock_history_reference_id', 'stock_history', ['reference_id'])


def downgrade():
    op.drop_index('ix_stock_history_reference_id', table_name='stock_history')
    op.drop_index('ix_stock_history_item_id', table_name='stock_history')
    op.drop_table('stock_history')
