# Overview: Cash ledger; the single choke point for writing and removing cash transactions.

from __future__ import annotations

import logging
import re

from ..errors import SchemaDriftError, ValidationError
from ..time_utils import utcnow
from .notifier import log_notify

logger = logging.getLogger(__name__)

APP_TAG = "#app:pincorp"
APP_TAG_PATTERN = re.compile(r"#app:(pin|pincorp)", re.I)

TRANSACTION_TYPES = ("income", "expense")

# Columns some deployed schemas lack; dropped on a schema-drift retry.
OPTIONAL_COLUMNS = ("category",)


def with_app_tag(notes: str | None) -> str:
    notes = (notes or "").strip()
    if APP_TAG_PATTERN.search(notes):
        return notes
    return f"{notes} {APP_TAG}".strip()


def sale_payment_id(sale_id: str) -> str:
    return f"sale-{sale_id}-payment"


def repair_payment_id(order_id: str, purpose: str) -> str:
    return f"repair-{order_id}-{purpose}"


class LedgerService:
    def __init__(self, cash_transactions, notify=log_notify):
        self.cash_transactions = cash_transactions
        self.notify = notify

    def add_cash_transaction(self, tx: dict) -> dict:
        """Upsert by id; retried once without optional columns on schema drift."""
        tx_type = tx.get("type") or "income"
        if tx_type not in TRANSACTION_TYPES:
            raise ValidationError(f"Loại giao dịch không hợp lệ: {tx_type}", details={"type": tx_type})
        try:
            amount = float(tx.get("amount"))
        except (TypeError, ValueError):
            raise ValidationError("Số tiền không hợp lệ", details={"amount": tx.get("amount")})

        values = {**tx, "type": tx_type, "amount": amount}
        values.setdefault("date", utcnow())
        try:
            return self.cash_transactions.upsert(values)
        except SchemaDriftError as exc:
            dropped = [col for col in OPTIONAL_COLUMNS if col in values]
            if not dropped:
                raise
            logger.warning("Cash transaction %s: schema drift (%s), retrying without %s", values.get("id"), exc, dropped)
            reduced = {k: v for k, v in values.items() if k not in dropped}
            return self.cash_transactions.upsert(reduced)

    def delete_cash_transactions(self, id: str | None = None, sale_id: str | None = None,
                                 work_order_id: str | None = None) -> int:
        """
        Remove every cash transaction matching ANY given filter.

        The cache is pruned either way. Returns the rows the store removed,
        which is 0 in offline mode.
        """
        filters = {"id": id, "sale_id": sale_id, "work_order_id": work_order_id}
        if all(value is None for value in filters.values()):
            raise ValidationError("Cần ít nhất một điều kiện để xóa giao dịch")
        removed = self.cash_transactions.delete_any(**filters)
        if self.cash_transactions.offline:
            return 0
        logger.info("Deleted %s cash transactions (%s)", removed, {k: v for k, v in filters.items() if v})
        return removed

    def for_sale(self, sale_id: str) -> list[dict]:
        return self.cash_transactions.find(sale_id=sale_id)

    def for_work_order(self, order_id: str) -> list[dict]:
        return self.cash_transactions.find(work_order_id=order_id)

    def balance(self) -> dict:
        income = sum(tx["amount"] for tx in self.cash_transactions.all() if tx["type"] == "income")
        expense = sum(tx["amount"] for tx in self.cash_transactions.all() if tx["type"] == "expense")
        return {"income": income, "expense": expense, "balance": income - expense}
