# Overview: Sale transaction processor; coded sale insert, stock decrement, linked cash entry.

from __future__ import annotations

import logging
from collections import OrderedDict

from ..errors import ConflictError, InconsistentStateError, PincorpError, ValidationError
from ..time_utils import utcnow
from .ledger_service import sale_payment_id, with_app_tag
from .notifier import log_notify

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = ("paid", "partial", "debt")

# Fields a sale update may change; the code is fixed once issued.
UPDATABLE_FIELDS = (
    "items", "subtotal", "discount", "total", "customer", "payment_method",
    "payment_status", "paid_amount", "due_date", "date",
)


def line_usage(items) -> "OrderedDict[tuple[str, str], float]":
    """Quantity per (type, item id) across sale lines; type defaults to product."""
    usage: OrderedDict[tuple[str, str], float] = OrderedDict()
    for item in items or []:
        item_id = item.get("product_id")
        quantity = float(item.get("quantity") or 0)
        if not item_id or quantity <= 0:
            continue
        key = (item.get("type") or "product", item_id)
        usage[key] = usage.get(key, 0.0) + quantity
    return usage


def restore_usage(items) -> "OrderedDict[tuple[str, str], float]":
    """What deleting the sale gives back: the stock each line actually took."""
    usage: OrderedDict[tuple[str, str], float] = OrderedDict()
    for item in items or []:
        item_id = item.get("product_id")
        taken = item.get("stock_deducted")
        quantity = float(item.get("quantity") or 0) if taken is None else float(taken)
        if not item_id or quantity <= 0:
            continue
        key = (item.get("type") or "product", item_id)
        usage[key] = usage.get(key, 0.0) + quantity
    return usage


class SalesService:
    def __init__(self, repos, stock, sequences, ledger, journal, *,
                 code_prefix: str = "LTN-BH", code_attempts: int = 3, notify=log_notify):
        self.repos = repos
        self.stock = stock
        self.sequences = sequences
        self.ledger = ledger
        self.journal = journal
        self.code_prefix = code_prefix
        self.code_attempts = code_attempts
        self.notify = notify

    def _stock_repo(self, item_type: str):
        return self.repos.materials if item_type == "material" else self.repos.products

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _sale_values(self, sale_data: dict, cash_entry: dict | None) -> dict:
        total = float(sale_data.get("total") or 0)
        if total < 0:
            raise ValidationError("Tổng tiền không hợp lệ", details={"total": total})

        paid = sale_data.get("paid_amount")
        if isinstance(paid, (int, float)):
            paid_amount = max(0.0, float(paid))
        elif cash_entry and cash_entry.get("amount") is not None:
            paid_amount = float(cash_entry["amount"])
        else:
            paid_amount = total

        payment_status = sale_data.get("payment_status")
        if not payment_status:
            payment_status = "partial" if isinstance(paid, (int, float)) and paid < total else "paid"
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"Trạng thái thanh toán không hợp lệ: {payment_status}")

        return {
            "date": sale_data.get("date") or utcnow(),
            "items": [dict(item) for item in sale_data.get("items") or []],
            "subtotal": float(sale_data.get("subtotal") or 0),
            "discount": float(sale_data.get("discount") or 0),
            "total": total,
            "customer": sale_data.get("customer") or {},
            "payment_method": sale_data.get("payment_method") or "cash",
            "payment_status": payment_status,
            "paid_amount": paid_amount,
            "due_date": sale_data.get("due_date"),
            "user_id": sale_data.get("user_id") or "offline",
            "user_name": sale_data.get("user_name") or "Offline",
        }

    def _insert_with_code(self, batch, sale_id: str, values: dict) -> dict:
        last_error = None
        for attempt in range(1, self.code_attempts + 1):
            code = self.sequences.next_code(self.code_prefix)
            try:
                return batch.insert(self.repos.sales, {**values, "id": sale_id, "code": code})
            except ConflictError as exc:
                last_error = exc
                logger.warning("Sale code %s taken (attempt %s/%s)", code, attempt, self.code_attempts)
        raise ConflictError(
            f"Không thể tạo mã đơn hàng sau {self.code_attempts} lần thử",
            details={"error": str(last_error)},
        )

    def handle_sale(self, sale_data: dict, cash_entry: dict | None = None) -> dict:
        """
        Insert the sale under a fresh daily code, take each line off stock
        (clamped at zero), then write the linked cash transaction.

        Line and cash writes are independent: failures are collected and,
        after every step was attempted, raised together as
        InconsistentStateError with the batch id for reconciliation.
        """
        values = self._sale_values(sale_data, cash_entry)
        sale_id = self.repos.sales.build({"id": sale_data.get("id")})["id"]
        errors = []

        with self.journal.begin("sale.create", sale_id) as batch:
            sale = self._insert_with_code(batch, sale_id, values)

            taken = {}
            for (item_type, item_id), quantity in line_usage(values["items"]).items():
                repo = self._stock_repo(item_type)
                current = repo.get(item_id)
                if current is None:
                    logger.warning("Sale %s: %s %s not found, stock untouched", sale_id, item_type, item_id)
                    taken[(item_type, item_id)] = 0.0
                    continue
                take = min(quantity, float(current.get("stock") or 0))
                taken[(item_type, item_id)] = take
                if take <= 0:
                    continue
                try:
                    batch.adjust(
                        repo, item_id, "stock", -take,
                        action=lambda t=item_type, i=item_id, q=take: self._require_ok(
                            self.stock.adjust(t, i, -q, reason=f"Bán hàng: {sale['code']}", reference_id=sale_id)
                        ),
                    )
                except PincorpError as exc:
                    taken[(item_type, item_id)] = 0.0
                    errors.append({"type": item_type, "id": item_id, "quantity": quantity, "error": exc.message})
                    self.notify(
                        "Lỗi cập nhật tồn kho nguyên liệu" if item_type == "material" else "Lỗi cập nhật tồn kho thành phẩm",
                        exc.message,
                        "error",
                    )

            items = self._with_deducted(values["items"], taken)
            if items != values["items"]:
                sale = batch.update(self.repos.sales, sale_id, {"items": items})

            amount = float((cash_entry or {}).get("amount") or 0)
            if amount > 0:
                tx = self._sale_cash_transaction(sale, cash_entry)
                try:
                    batch.run(
                        {"op": "insert", "table": self.repos.cash_transactions.name, "row_id": tx["id"]},
                        lambda: self.ledger.add_cash_transaction(tx),
                    )
                except PincorpError as exc:
                    errors.append({"type": "cash_transaction", "id": tx["id"], "amount": amount, "error": exc.message})

            if errors:
                batch.fail(errors)
                raise InconsistentStateError(
                    f"Đơn {sale['code']} đã lưu nhưng {len(errors)} bước cập nhật thất bại",
                    details={"sale_id": sale_id, "batch_id": batch.id, "errors": errors},
                )

        logger.info("Sale %s saved (code=%s, total=%s)", sale_id, sale["code"], sale["total"])
        self.notify("Đã lưu đơn hàng", f"{sale['code']}: {sale['total']:,.0f}", "success")
        return sale

    @staticmethod
    def _with_deducted(items: list[dict], taken: dict) -> list[dict]:
        """Spread each aggregate's deducted amount back over its lines, in order."""
        remaining = dict(taken)
        out = []
        for item in items:
            item = dict(item)
            key = (item.get("type") or "product", item.get("product_id"))
            quantity = float(item.get("quantity") or 0)
            if key in remaining and quantity > 0:
                share = min(quantity, remaining[key])
                remaining[key] -= share
                if share != quantity:
                    item["stock_deducted"] = share
            out.append(item)
        return out

    def _sale_cash_transaction(self, sale: dict, cash_entry: dict) -> dict:
        customer = sale.get("customer") or {}
        return {
            "id": sale_payment_id(sale["id"]),
            "type": "income",
            "date": cash_entry.get("date") or sale["date"],
            "amount": float(cash_entry["amount"]),
            "contact": cash_entry.get("contact") or {"id": customer.get("id"), "name": customer.get("name")},
            "payment_source_id": cash_entry.get("payment_source_id") or sale.get("payment_method"),
            "sale_id": sale["id"],
            "category": cash_entry.get("category") or "sale_income",
            "notes": with_app_tag(cash_entry.get("notes") or f"Thu tiền đơn {sale['code']}"),
        }

    @staticmethod
    def _require_ok(result):
        if not result.ok:
            raise ValidationError(result.reason or "Stock adjustment failed")
        return result

    # ------------------------------------------------------------------
    # Delete / update
    # ------------------------------------------------------------------

    def delete_sale(self, sale_id: str) -> dict:
        """
        Give stock back, clear the sale's cash rows, then delete the sale.

        A failure partway leaves stock already restored; the batch id in the
        raised error points the reconcile job at it.
        """
        sale = self.repos.sales.require(sale_id, "Sale")
        restored = []
        code = sale.get("code") or sale_id
        with self.journal.begin("sale.delete", sale_id) as batch:
            for (item_type, item_id), quantity in restore_usage(sale.get("items")).items():
                repo = self._stock_repo(item_type)
                if repo.get(item_id) is None:
                    logger.warning("Sale %s: %s %s no longer exists, nothing to restore", sale_id, item_type, item_id)
                    continue
                batch.adjust(
                    repo, item_id, "stock", quantity,
                    action=lambda t=item_type, i=item_id, q=quantity: self._require_ok(
                        self.stock.adjust(t, i, q, reason=f"Xóa đơn hàng: {code}", reference_id=sale_id)
                    ),
                )
                restored.append({"type": item_type, "id": item_id, "quantity": quantity})

            cash_removed = batch.delete_any(
                self.repos.cash_transactions,
                action=lambda: self.ledger.delete_cash_transactions(sale_id=sale_id),
                sale_id=sale_id,
            )
            batch.delete(self.repos.sales, sale_id)

        logger.info("Sale %s deleted; %s lines restored, %s cash rows removed", sale_id, len(restored), cash_removed)
        self.notify("Đã xóa đơn hàng", sale.get("code") or sale_id, "success")
        return {"sale_id": sale_id, "restored": restored, "cash_removed": cash_removed}

    def update_sale(self, sale: dict) -> dict:
        """
        Persist field changes. The linked cash transaction follows the paid
        amount (not the total) and keeps the app tag in its notes.

        stock_deducted is server-owned: a client copy is ignored. When the
        items change, stock moves by the quantity difference per line key
        and the new items carry what was actually taken.
        """
        sale_id = sale.get("id")
        stored = self.repos.sales.require(sale_id, "Sale")
        values = {key: sale[key] for key in UPDATABLE_FIELDS if key in sale}
        if "payment_status" in values and values["payment_status"] not in PAYMENT_STATUSES:
            raise ValidationError(f"Trạng thái thanh toán không hợp lệ: {values['payment_status']}")
        if "paid_amount" in values:
            values["paid_amount"] = max(0.0, float(values["paid_amount"] or 0))

        if "items" in values:
            items = [
                {k: v for k, v in item.items() if k != "stock_deducted"}
                for item in values.pop("items") or []
            ]
            with self.journal.begin("sale.update", sale_id) as batch:
                history = {"reason": f"Sửa đơn hàng: {stored.get('code') or sale_id}", "reference_id": sale_id}
                taken = self._move_stock_for_items(batch, stored.get("items"), items, history)
                updated = batch.update(
                    self.repos.sales, sale_id, {**values, "items": self._with_deducted(items, taken)}
                )
        else:
            updated = self.repos.sales.update(sale_id, values)
        if updated is None:
            raise ValidationError("Không tìm thấy hoá đơn", details={"id": sale_id})

        paid = float(updated.get("paid_amount") or 0)
        for tx in self.ledger.for_sale(sale_id):
            if paid > 0:
                self.ledger.add_cash_transaction({**tx, "amount": paid, "notes": with_app_tag(tx.get("notes"))})
            else:
                self.ledger.delete_cash_transactions(id=tx["id"])

        self.notify("Đã cập nhật đơn hàng", updated.get("code") or sale_id, "success")
        return updated

    def _move_stock_for_items(self, batch, old_items, new_items, history: dict) -> dict:
        """
        Apply the stock side of an item edit; returns taken quantity per key.

        A lowered quantity first absorbs the part that was never taken, then
        gives stock back. A raised quantity takes the extra, clamped at zero.
        """
        old_quantity = line_usage(old_items)
        old_taken = restore_usage(old_items)
        new_quantity = line_usage(new_items)
        taken = {}
        for key in OrderedDict.fromkeys([*old_quantity, *new_quantity]):
            item_type, item_id = key
            before = old_taken.get(key, 0.0)
            wanted = new_quantity.get(key, 0.0)
            repo = self._stock_repo(item_type)
            current = repo.get(item_id)
            if current is None:
                taken[key] = 0.0
                continue
            release = max(0.0, before - wanted)
            extra = max(0.0, wanted - old_quantity.get(key, 0.0))
            if release > 0:
                batch.adjust(
                    repo, item_id, "stock", release,
                    action=lambda t=item_type, i=item_id, q=release: self._require_ok(self.stock.adjust(t, i, q, **history)),
                )
                taken[key] = before - release
                continue
            take = min(extra, float(current.get("stock") or 0))
            if take > 0:
                batch.adjust(
                    repo, item_id, "stock", -take,
                    action=lambda t=item_type, i=item_id, q=take: self._require_ok(self.stock.adjust(t, i, -q, **history)),
                )
            taken[key] = before + take
        return taken
