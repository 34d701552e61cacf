from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow
from .base import new_id


class RepairOrder(db.Model):
    """
    Repair ticket.

    materials_deducted flips false -> true at most once, through a conditional
    update (see RepairService). materials_used is a JSON list of
    {"material_id", "material_name", "quantity", "price"?}.
    """
    __tablename__ = "repair_orders"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    creation_date = db.Column(db.DateTime, nullable=False, default=utcnow)
    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(32), nullable=True)
    device_name = db.Column(db.String(255), nullable=True)
    issue_description = db.Column(db.Text, nullable=True)
    technician_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="INTAKE", index=True)

    materials_used = db.Column(db.JSON, nullable=False, default=list)
    labor_cost = db.Column(db.Float, nullable=False, default=0)
    total = db.Column(db.Float, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    payment_status = db.Column(db.String(16), nullable=False, default="unpaid")  # unpaid, partial, paid
    deposit_amount = db.Column(db.Float, nullable=False, default=0)
    partial_payment_amount = db.Column(db.Float, nullable=True)
    payment_method = db.Column(db.String(16), nullable=True)
    payment_date = db.Column(db.DateTime, nullable=True)
    due_date = db.Column(db.DateTime, nullable=True)

    materials_deducted = db.Column(db.Boolean, nullable=False, default=False, index=True)
    materials_deducted_at = db.Column(db.DateTime, nullable=True)
