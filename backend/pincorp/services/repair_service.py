# Overview: Repair order settlement; exactly-once material deduction and payment-derived cash rows.

from __future__ import annotations

import logging

from ..errors import PincorpError, ValidationError
from ..time_utils import utcnow
from .ledger_service import repair_payment_id, with_app_tag
from .notifier import log_notify

logger = logging.getLogger(__name__)

INTAKE = "INTAKE"
IN_PROGRESS = "IN_PROGRESS"
QUOTED = "QUOTED"
WAITING = "WAITING"
REPAIRED = "REPAIRED"
RETURNED = "RETURNED"  # handed back to the customer; billing is final

REPAIR_STATUSES = (INTAKE, IN_PROGRESS, QUOTED, WAITING, REPAIRED, RETURNED)
PAYMENT_STATUSES = ("unpaid", "partial", "paid")

# Set by the engine only; ignored when a client sends them.
SERVER_FIELDS = ("materials_deducted", "materials_deducted_at")


class RepairService:
    def __init__(self, repos, stock, ledger, journal, notify=log_notify):
        self.repos = repos
        self.stock = stock
        self.ledger = ledger
        self.journal = journal
        self.notify = notify

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def _validate(self, order: dict) -> dict:
        if not (order.get("customer_name") or "").strip():
            raise ValidationError("Tên khách hàng là bắt buộc")
        status = order.get("status") or INTAKE
        if status not in REPAIR_STATUSES:
            raise ValidationError(f"Trạng thái sửa chữa không hợp lệ: {status}", details={"status": status})
        payment_status = order.get("payment_status") or "unpaid"
        if payment_status not in PAYMENT_STATUSES:
            raise ValidationError(f"Trạng thái thanh toán không hợp lệ: {payment_status}")

        lines = []
        for line in order.get("materials_used") or []:
            quantity = float(line.get("quantity") or 0)
            if quantity <= 0:
                raise ValidationError(
                    "Số lượng vật tư phải lớn hơn 0",
                    details={"material": line.get("material_name") or line.get("material_id")},
                )
            lines.append({**line, "quantity": quantity})

        deposit = float(order.get("deposit_amount") or 0)
        if deposit < 0:
            raise ValidationError("Tiền đặt cọc không hợp lệ", details={"deposit_amount": deposit})

        values = {k: v for k, v in order.items() if k not in SERVER_FIELDS}
        values.update({
            "status": status,
            "payment_status": payment_status,
            "materials_used": lines,
            "deposit_amount": deposit,
            "labor_cost": float(order.get("labor_cost") or 0),
            "total": float(order.get("total") or 0),
        })
        return values

    def save_repair_order(self, order: dict) -> dict:
        """
        Create or update a repair order.

        Once the order is RETURNED with materials listed, the materials are
        taken off stock exactly once. Deposit/final cash rows are reconciled on
        every save, including one whose deduction failed; the deduction error
        is raised afterwards.
        """
        values = self._validate(order)
        repairs = self.repos.repair_orders
        existing = repairs.get(values["id"]) if values.get("id") else None
        if existing is None:
            saved = repairs.insert({**values, "materials_deducted": False, "materials_deducted_at": None})
        else:
            saved = repairs.update(existing["id"], values)
            if saved is None:
                raise ValidationError("Không tìm thấy phiếu sửa chữa", details={"id": existing["id"]})

        deduction_error = None
        if saved["status"] == RETURNED and saved.get("materials_used") and not saved.get("materials_deducted"):
            try:
                saved = self._deduct_materials(saved)
            except ValidationError as exc:
                deduction_error = exc

        self.sync_ledger(saved)

        if deduction_error is not None:
            self.notify("Không đủ vật tư", deduction_error.message, "error")
            raise deduction_error
        self.notify("Đã lưu phiếu sửa chữa", saved["id"], "success")
        return saved

    def _acquire_deduction_lock(self, order_id: str) -> bool:
        """
        Compare-and-set materials_deducted false -> true.

        Sound only because the store applies the conditional UPDATE
        atomically. False means another writer already holds or finished the
        deduction; that is not an error.
        """
        row = self.repos.repair_orders.update(order_id, {"materials_deducted": True}, materials_deducted=False)
        return row is not None

    def _release_deduction_lock(self, order_id: str) -> None:
        self.repos.repair_orders.update(
            order_id,
            {"materials_deducted": False, "materials_deducted_at": None},
            materials_deducted=True,
        )

    def resolve_material(self, line: dict) -> dict | None:
        """By id first, then by case-insensitive name."""
        materials = self.repos.materials
        material_id = line.get("material_id")
        if material_id:
            material = materials.get(material_id)
            if material is not None:
                return material
        name = (line.get("material_name") or "").strip().lower()
        if not name:
            return None
        return materials.find_one(lambda m: (m.get("name") or "").strip().lower() == name)

    @staticmethod
    def stock_reason(order: dict) -> str:
        device = order.get("device_name") or ""
        return f"Sửa chữa: {order.get('customer_name')} - {device} ({order['id']})"

    def _deduct_materials(self, order: dict) -> dict:
        repairs = self.repos.repair_orders
        if not self._acquire_deduction_lock(order["id"]):
            logger.info("Repair %s: materials already deducted by another writer", order["id"])
            return repairs.refresh_one(order["id"]) or {**order, "materials_deducted": True}

        applied, errors = [], []
        for line in order.get("materials_used") or []:
            label = line.get("material_name") or line.get("material_id")
            material = self.resolve_material(line)
            if material is None:
                errors.append({"material": label, "error": f"Không tìm thấy vật tư: {label}"})
                continue
            quantity = float(line["quantity"])
            result = self.stock.adjust_material(
                material["id"], -quantity, reason=self.stock_reason(order), reference_id=order["id"]
            )
            if not result.ok:
                errors.append({
                    "material": material["name"],
                    "material_id": material["id"],
                    "quantity": quantity,
                    "error": f'Vật tư "{material["name"]}" không đủ. Tồn kho: {material.get("stock")}, Cần: {quantity}',
                    "reason": result.reason,
                })
                continue
            applied.append((material["id"], quantity))

        if errors:
            restore_failures = self._restore(applied, order)
            self._release_deduction_lock(order["id"])
            logger.warning("Repair %s: deduction rolled back (%s errors)", order["id"], len(errors))
            raise ValidationError(
                f"Không thể trừ vật tư cho phiếu {order['id']}: " + "; ".join(e["error"] for e in errors),
                details={"order_id": order["id"], "errors": errors, "restore_failures": restore_failures},
            )

        stamped = repairs.update(order["id"], {"materials_deducted_at": utcnow()})
        logger.info("Repair %s: deducted %s material lines", order["id"], len(applied))
        return stamped or {**order, "materials_deducted": True}

    def _restore(self, applied: list[tuple[str, float]], order: dict) -> list[dict]:
        failures = []
        for material_id, quantity in applied:
            result = self.stock.adjust_material(
                material_id, quantity, reason=f"Hoàn vật tư: {self.stock_reason(order)}", reference_id=order["id"]
            )
            if not result.ok:
                logger.error("Could not restore %s of material %s: %s", quantity, material_id, result.reason)
                failures.append({"material_id": material_id, "quantity": quantity, "reason": result.reason})
        return failures

    # ------------------------------------------------------------------
    # Ledger sync
    # ------------------------------------------------------------------

    def final_amount(self, order: dict) -> float:
        if order.get("status") != RETURNED:
            return 0.0
        payment_status = order.get("payment_status")
        if payment_status == "paid":
            return float(order.get("total") or 0) - float(order.get("deposit_amount") or 0)
        if payment_status == "partial":
            return float(order.get("partial_payment_amount") or 0)
        return 0.0

    def sync_ledger(self, order: dict) -> dict:
        """Upsert or remove the deposit and final cash rows to match the order."""
        contact = {"name": order.get("customer_name"), "phone": order.get("customer_phone")}
        result = {}
        plan = (
            ("deposit", float(order.get("deposit_amount") or 0), order.get("creation_date"), "service_deposit",
             f"Đặt cọc sửa chữa #{order['id']}"),
            ("final", self.final_amount(order), order.get("payment_date"), "service_income",
             f"Thanh toán sửa chữa #{order['id']}"),
        )
        for purpose, amount, date, category, notes in plan:
            tx_id = repair_payment_id(order["id"], purpose)
            if amount > 0:
                result[purpose] = self.ledger.add_cash_transaction({
                    "id": tx_id,
                    "type": "income",
                    "date": date or utcnow(),
                    "amount": amount,
                    "contact": contact,
                    "payment_source_id": order.get("payment_method") or "cash",
                    "work_order_id": order["id"],
                    "category": category,
                    "notes": with_app_tag(notes),
                })
            else:
                if self.ledger.cash_transactions.get(tx_id) is not None:
                    self.ledger.delete_cash_transactions(id=tx_id)
                result[purpose] = None
        return result

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_repair_order(self, order_id: str) -> dict:
        """
        Give deducted materials back, delete the order, then clean up its cash
        rows. The cleanup is best effort: a failure there is logged and
        reported, never raised.
        """
        order = self.repos.repair_orders.require(order_id, "Repair order")
        restored = []
        with self.journal.begin("repair.delete", order_id) as batch:
            if order.get("materials_deducted"):
                for line in order.get("materials_used") or []:
                    material = self.resolve_material(line)
                    if material is None:
                        logger.warning("Repair %s: material %s gone, nothing to restore", order_id, line)
                        continue
                    quantity = float(line.get("quantity") or 0)
                    batch.adjust(
                        self.repos.materials, material["id"], "stock", quantity,
                        action=lambda m=material["id"], q=quantity: self._require_ok(self.stock.adjust_material(
                            m, q, reason=f"Xóa phiếu: {self.stock_reason(order)}", reference_id=order_id,
                        )),
                    )
                    restored.append((material["id"], quantity))
            batch.delete(self.repos.repair_orders, order_id)

        cash_removed = 0
        try:
            cash_removed = self.ledger.delete_cash_transactions(work_order_id=order_id)
        except PincorpError as exc:
            logger.warning("Repair %s deleted; cash cleanup failed: %s", order_id, exc)
            self.notify("Chưa dọn được sổ quỹ", f"Phiếu {order_id}: {exc.message}", "warn")

        self.notify("Đã xoá phiếu sửa chữa", order_id, "success")
        return {
            "order_id": order_id,
            "restored": [{"material_id": m, "quantity": q} for m, q in restored],
            "cash_removed": cash_removed,
        }

    @staticmethod
    def _require_ok(result):
        if not result.ok:
            raise ValidationError(result.reason or "Stock adjustment failed")
        return result
