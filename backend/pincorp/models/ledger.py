from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow
from .base import new_id


class CashTransaction(db.Model):
    """
    Cash-ledger entry. Rows derived from a sale or repair order use
    deterministic ids so they can be upserted and removed idempotently.
    """
    __tablename__ = "cash_transactions"

    id = db.Column(db.String(128), primary_key=True, default=new_id)
    type = db.Column(db.String(16), nullable=False, default="income")  # income, expense
    date = db.Column(db.DateTime, nullable=False, default=utcnow)
    amount = db.Column(db.Float, nullable=False)
    contact = db.Column(db.JSON, nullable=True)
    payment_source_id = db.Column(db.String(32), nullable=True)
    sale_id = db.Column(db.String(64), nullable=True, index=True)
    work_order_id = db.Column(db.String(64), nullable=True, index=True)
    category = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)


class DailySequence(db.Model):
    """Per-prefix, per-day counter behind the get_next_daily_sequence procedure."""
    __tablename__ = "daily_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", "day", name="uq_daily_sequences_prefix_day"),
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(32), nullable=False)
    day = db.Column(db.String(8), nullable=False)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class WriteBatch(db.Model):
    """
    Compensating-action log for a multi-step write sequence.

    steps is a JSON list of {"op", "table", "row_id", ..., "done"}; a batch left
    in status 'failed' (or stale 'open') is reversed by the reconcile job.
    """
    __tablename__ = "write_batches"

    id = db.Column(db.String(64), primary_key=True, default=new_id)
    kind = db.Column(db.String(64), nullable=False)
    reference_id = db.Column(db.String(64), nullable=True, index=True)
    status = db.Column(db.String(16), nullable=False, default="open", index=True)
    steps = db.Column(db.JSON, nullable=False, default=list)
    error = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=True)
