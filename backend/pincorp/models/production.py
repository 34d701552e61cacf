from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow
from .base import new_id


class Bom(db.Model):
    """
    Bill of materials: units of each material per ONE finished unit.

    materials is a JSON list of {"material_id", "quantity"}.
    """
    __tablename__ = "boms"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    product_name = db.Column(db.String(255), nullable=False)
    product_sku = db.Column(db.String(64), nullable=False, index=True)
    materials = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)


class ProductionOrder(db.Model):
    """
    BOM-driven manufacturing order.

    Lifecycle: PENDING -> IN_PRODUCTION -> COMPLETED, CANCELLED from either
    open state. committed_materials is a JSON list of
    {"material_id", "quantity", "estimated_cost", "actual_cost"?, "actual_quantity_used"?}
    and only reserves stock while the order is open.
    """
    __tablename__ = "production_orders"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    bom_id = db.Column(db.String(64), db.ForeignKey("boms.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)
    quantity_produced = db.Column(db.Float, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    materials_cost = db.Column(db.Float, nullable=False, default=0)
    additional_costs = db.Column(db.JSON, nullable=False, default=list)
    total_cost = db.Column(db.Float, nullable=False, default=0)
    committed_materials = db.Column(db.JSON, nullable=False, default=list)

    actual_costs = db.Column(db.JSON, nullable=True)
    cost_analysis = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
