from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow
from .base import new_id


class Sale(db.Model):
    """
    Point-of-sale transaction.

    code is the human-readable daily number (PREFIX-YYYYMMDD-####); the unique
    constraint is what makes concurrent code generation safe.
    items is a JSON list of {"product_id", "type": product|material, "quantity", "unit_price", ...}.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_sales_code"),
    )

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    code = db.Column(db.String(64), nullable=True, index=True)
    date = db.Column(db.DateTime, nullable=False, default=utcnow)

    items = db.Column(db.JSON, nullable=False, default=list)
    subtotal = db.Column(db.Float, nullable=False, default=0)
    discount = db.Column(db.Float, nullable=False, default=0)
    total = db.Column(db.Float, nullable=False, default=0)
    customer = db.Column(db.JSON, nullable=True)

    payment_method = db.Column(db.String(16), nullable=False, default="cash")
    payment_status = db.Column(db.String(16), nullable=False, default="paid", index=True)  # paid, partial, debt
    paid_amount = db.Column(db.Float, nullable=False, default=0)
    due_date = db.Column(db.DateTime, nullable=True)

    user_id = db.Column(db.String(64), nullable=True)
    user_name = db.Column(db.String(255), nullable=True)
