from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow
from .base import new_id


class Material(db.Model):
    """
    Raw material held in stock and consumed by production, sales and repairs.

    INVARIANT: committed_quantity == sum of commitment quantities across
    PENDING/IN_PRODUCTION production orders referencing this material.
    Stock never goes negative; writes go through the stock ledger.
    """
    __tablename__ = "materials"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_materials_stock_non_negative"),
        db.CheckConstraint("committed_quantity >= 0", name="ck_materials_committed_non_negative"),
    )

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    sku = db.Column(db.String(64), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=False, default="")

    stock = db.Column(db.Float, nullable=False, default=0)
    committed_quantity = db.Column(db.Float, nullable=False, default=0)

    purchase_price = db.Column(db.Float, nullable=False, default=0)
    retail_price = db.Column(db.Float, nullable=True)
    wholesale_price = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Material id={self.id} sku={self.sku!r} stock={self.stock}>"


class Product(db.Model):
    """Finished good; stocked by production completion, sold at the POS."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    stock = db.Column(db.Float, nullable=False, default=0)

    cost_price = db.Column(db.Float, nullable=False, default=0)
    retail_price = db.Column(db.Float, nullable=False, default=0)
    wholesale_price = db.Column(db.Float, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"


class StockHistory(db.Model):
    """
    One row per successful stock adjustment, written by the stock ledger.

    quantity_change is signed; transaction_type is 'import' for additions and
    'export' for removals.
    """
    __tablename__ = "stock_history"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    item_type = db.Column(db.String(16), nullable=False, default="material")  # material, product
    item_id = db.Column(db.String(64), nullable=False, index=True)
    transaction_type = db.Column(db.String(16), nullable=False)
    quantity_change = db.Column(db.Float, nullable=False)
    quantity_before = db.Column(db.Float, nullable=True)
    quantity_after = db.Column(db.Float, nullable=True)
    reason = db.Column(db.String(255), nullable=False, default="")
    reference_id = db.Column(db.String(64), nullable=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<StockHistory {self.item_type}:{self.item_id} {self.quantity_change:+g}>"
