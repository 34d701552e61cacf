# Overview: Production order lifecycle; commitments, completion and cost analysis.

from __future__ import annotations

import logging
import math
from collections import defaultdict

from ..errors import ValidationError
from ..time_utils import utcnow
from .commitment_service import (
    CANCELLED,
    COMPLETED,
    IN_PRODUCTION,
    OPEN_STATUSES,
    PENDING,
    is_open,
    order_commitments,
)
from .notifier import log_notify

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    PENDING: {IN_PRODUCTION, CANCELLED},
    IN_PRODUCTION: {COMPLETED, CANCELLED},
    COMPLETED: set(),
    CANCELLED: set(),
}

STATUS_LABELS = {
    PENDING: "Đang chờ",
    IN_PRODUCTION: "Đang sản xuất",
    COMPLETED: "Hoàn thành",
    CANCELLED: "Đã hủy",
}


def fmt_qty(value) -> str:
    value = float(value or 0)
    if value.is_integer():
        return str(int(value))
    return f"{round(value, 4):g}"


def _as_float(value, field: str) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: value})


def _sum_amounts(lines) -> float:
    return sum(float(line.get("amount") or 0) for line in lines or [])


def calculate_cost_analysis(order: dict, actual_costs: dict) -> dict:
    """Estimated vs actual cost, overall and per component; informational only."""
    estimated = float(order.get("total_cost") or 0)
    actual = float(actual_costs.get("total_actual_cost") or 0)
    variance = actual - estimated
    variance_percentage = (variance / estimated) * 100 if estimated > 0 else 0.0

    estimated_by_material = {
        line["material_id"]: float(line.get("estimated_cost") or 0)
        for line in order.get("committed_materials") or []
    }
    material_variances = []
    actual_material_cost = 0.0
    for line in actual_costs.get("material_costs") or []:
        line_actual = float(line.get("actual_cost") or 0)
        actual_material_cost += line_actual
        line_estimated = estimated_by_material.get(line.get("material_id"), 0.0)
        material_variances.append({
            "material_id": line.get("material_id"),
            "estimated_cost": line_estimated,
            "actual_cost": line_actual,
            "variance": line_actual - line_estimated,
        })

    estimated_additional = _sum_amounts(order.get("additional_costs"))
    actual_additional = _sum_amounts(actual_costs.get("other_costs"))

    return {
        "estimated_cost": estimated,
        "actual_cost": actual,
        "variance": variance,
        "variance_percentage": variance_percentage,
        "material_variance": actual_material_cost - float(order.get("materials_cost") or 0),
        "material_variances": material_variances,
        "additional_costs_variance": actual_additional - estimated_additional,
    }


class ProductionService:
    def __init__(self, repos, stock, commitments, journal, notify=log_notify):
        self.repos = repos
        self.stock = stock
        self.commitments = commitments
        self.journal = journal
        self.notify = notify

    # ------------------------------------------------------------------
    # BOMs
    # ------------------------------------------------------------------

    def upsert_bom(self, bom: dict) -> dict:
        if not (bom.get("product_name") or "").strip():
            raise ValidationError("Tên sản phẩm là bắt buộc")
        if not (bom.get("product_sku") or "").strip():
            raise ValidationError("SKU sản phẩm là bắt buộc")
        lines = []
        for line in bom.get("materials") or []:
            material_id = line.get("material_id")
            quantity = _as_float(line.get("quantity"), "quantity")
            if quantity <= 0:
                raise ValidationError("Số lượng nguyên liệu phải lớn hơn 0", details={"material_id": material_id})
            self.repos.materials.require(material_id, "Material")
            lines.append({"material_id": material_id, "quantity": quantity})
        if not lines:
            raise ValidationError("BOM phải có ít nhất một nguyên liệu")
        return self.repos.boms.upsert({**bom, "materials": lines})

    def delete_bom(self, bom_id: str) -> None:
        self.repos.boms.require(bom_id, "BOM")
        in_use = self.repos.production_orders.find(lambda o: o["bom_id"] == bom_id and is_open(o))
        if in_use:
            raise ValidationError(
                "Không thể xóa BOM đang được dùng bởi lệnh sản xuất chưa hoàn thành",
                details={"bom_id": bom_id, "order_ids": [o["id"] for o in in_use]},
            )
        self.repos.boms.delete(bom_id)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def requirements_for(self, bom: dict, quantity: float) -> dict[str, float]:
        """Per-material quantity for `quantity` finished units; duplicate lines summed."""
        totals: dict[str, float] = defaultdict(float)
        for line in bom.get("materials") or []:
            totals[line["material_id"]] += float(line.get("quantity") or 0) * quantity
        return dict(totals)

    def create_order(self, order: dict, bom: dict | None = None) -> dict:
        """
        Validate availability for every BOM line (all-or-nothing), then write
        the PENDING order and bump each material's committed_quantity as one
        journaled batch.
        """
        if bom is None:
            bom = self.repos.boms.require(order.get("bom_id"), "BOM")
        quantity = _as_float(order.get("quantity_produced"), "quantity_produced")
        if quantity <= 0:
            raise ValidationError("Số lượng sản xuất phải lớn hơn 0")

        requirements = self.requirements_for(bom, quantity)
        if not requirements:
            raise ValidationError("BOM không có nguyên liệu", details={"bom_id": bom.get("id")})

        shortages = self.commitments.check_availability(requirements)
        if shortages:
            message = "Không đủ nguyên liệu: " + "; ".join(
                f"{s['name']}: cần {fmt_qty(s['required'])}, có {fmt_qty(s['available'])}"
                for s in shortages
            )
            raise ValidationError(message, details={"shortages": shortages})

        committed_materials = []
        materials_cost = 0.0
        for material_id, required in requirements.items():
            material = self.repos.materials.get(material_id)
            estimated_cost = required * float(material.get("purchase_price") or 0)
            materials_cost += estimated_cost
            committed_materials.append({
                "material_id": material_id,
                "material_name": material.get("name"),
                "quantity": required,
                "estimated_cost": estimated_cost,
            })

        additional_costs = [
            {"description": line.get("description") or "", "amount": _as_float(line.get("amount"), "amount")}
            for line in order.get("additional_costs") or []
        ]
        values = {
            "id": order.get("id"),
            "bom_id": bom["id"],
            "product_name": order.get("product_name") or bom.get("product_name"),
            "quantity_produced": quantity,
            "status": PENDING,
            "materials_cost": materials_cost,
            "additional_costs": additional_costs,
            "total_cost": materials_cost + _sum_amounts(additional_costs),
            "committed_materials": committed_materials,
            "notes": order.get("notes"),
        }

        row = self.repos.production_orders.build(values)
        with self.journal.begin("production.create", row["id"]) as batch:
            created = batch.insert(self.repos.production_orders, row)
            for line in committed_materials:
                batch.adjust(self.repos.materials, line["material_id"], "committed_quantity", line["quantity"])

        logger.info("Created production order %s (%s x %s)", created["id"], quantity, created["product_name"])
        self.notify("Đã tạo lệnh sản xuất", f"{created['product_name']} x {fmt_qty(quantity)}", "success")
        return created

    def update_status(self, order_id: str, new_status: str) -> dict:
        order = self.repos.production_orders.require(order_id, "Production order")
        current = order["status"]
        if new_status == current:
            return order
        if new_status not in ALLOWED_TRANSITIONS:
            raise ValidationError(f"Trạng thái không hợp lệ: {new_status}", details={"status": new_status})
        if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
            raise ValidationError(
                f"Không thể chuyển trạng thái từ {STATUS_LABELS.get(current, current)} "
                f"sang {STATUS_LABELS[new_status]}",
                details={"from": current, "to": new_status},
            )

        if new_status == IN_PRODUCTION:
            updated = self.repos.production_orders.update(order_id, {"status": IN_PRODUCTION}, status=current)
            if updated is None:
                raise ValidationError("Lệnh sản xuất đã bị thay đổi, vui lòng tải lại", details={"id": order_id})
        elif new_status == CANCELLED:
            updated = self._cancel(order)
        else:
            updated = self._complete(order)

        self.notify(
            "Cập nhật lệnh sản xuất",
            f"{order['product_name']}: {STATUS_LABELS[new_status]}",
            "success",
        )
        return updated

    def _release_commitments(self, batch, order: dict) -> None:
        materials = self.repos.materials
        for line in order.get("committed_materials") or []:
            material_id, quantity = line["material_id"], float(line.get("quantity") or 0)
            if quantity <= 0 or materials.get(material_id) is None:
                continue
            batch.adjust(
                materials, material_id, "committed_quantity", -quantity,
                action=lambda m=material_id, q=quantity: materials.increment(m, "committed_quantity", -q, clamp=True),
            )

    def _cancel(self, order: dict) -> dict:
        with self.journal.begin("production.cancel", order["id"]) as batch:
            updated = batch.update(
                self.repos.production_orders, order["id"], {"status": CANCELLED}, status=order["status"]
            )
            self._release_commitments(batch, order)
        logger.info("Cancelled production order %s", order["id"])
        return updated

    @staticmethod
    def material_usage(order: dict) -> dict[str, float]:
        """Per-material consumption: actual_quantity_used where recorded, else the commitment."""
        usage: dict[str, float] = defaultdict(float)
        for line in order.get("committed_materials") or []:
            used = line.get("actual_quantity_used")
            used = float(line.get("quantity") or 0) if used in (None, "") else float(used)
            usage[line["material_id"]] += used
        return dict(usage)

    def _complete(self, order: dict) -> dict:
        """
        Deduct used stock, release commitments, receive the finished product.

        A recorded actual_quantity_used below the commitment deducts only what
        was used. Usage above the commitment is allowed only out of stock no
        other open order has reserved.
        """
        usage = self.material_usage(order)
        reserved = order_commitments(order)
        committed = self.commitments.committed_quantities()

        shortages = []
        for material_id, used in usage.items():
            material = self.repos.materials.get(material_id)
            stock = (material or {}).get("stock") or 0
            others = committed.get(material_id, 0.0) - reserved.get(material_id, 0.0)
            usable = max(0.0, stock - others)
            if material is None or used > usable:
                shortages.append(
                    f"{(material or {}).get('name') or material_id}: cần {fmt_qty(used)}, có {fmt_qty(usable)}"
                )
        if shortages:
            raise ValidationError(
                "Không đủ tồn kho để hoàn thành: " + "; ".join(shortages),
                details={"order_id": order["id"]},
            )

        bom = self.repos.boms.get(order["bom_id"]) or {}
        quantity = float(order.get("quantity_produced") or 0)
        actual = order.get("actual_costs") or {}
        produced_cost = float(actual.get("total_actual_cost") or order.get("total_cost") or 0)

        reason = f"Sản xuất: {order.get('product_name')} ({order['id']})"
        with self.journal.begin("production.complete", order["id"]) as batch:
            updated = batch.update(
                self.repos.production_orders,
                order["id"],
                {"status": COMPLETED, "completed_at": utcnow()},
                status=order["status"],
            )
            for material_id, used in usage.items():
                if used > 0:
                    batch.adjust(
                        self.repos.materials, material_id, "stock", -used,
                        action=lambda m=material_id, u=used: self._require_ok(
                            self.stock.adjust_material(m, -u, reason=reason, reference_id=order["id"])
                        ),
                    )
            self._release_commitments(batch, order)
            if quantity > 0:
                self._receive_product(batch, bom, order, quantity, produced_cost)

        logger.info("Completed production order %s", order["id"])
        return updated

    def _receive_product(self, batch, bom: dict, order: dict, quantity: float, produced_cost: float) -> None:
        products = self.repos.products
        sku = bom.get("product_sku")
        product = products.find_one(sku=sku) if sku else None
        if product is None:
            batch.insert(products, {
                "sku": sku or f"BOM-{order['bom_id']}",
                "name": order.get("product_name") or bom.get("product_name"),
                "stock": quantity,
                "cost_price": produced_cost / quantity,
            })
            return

        old_stock = float(product.get("stock") or 0)
        new_stock = old_stock + quantity
        cost_price = (float(product.get("cost_price") or 0) * old_stock + produced_cost) / new_stock
        batch.update(products, product["id"], {"cost_price": cost_price, "updated_at": utcnow()})
        batch.adjust(
            products, product["id"], "stock", quantity,
            action=lambda: self._require_ok(self.stock.adjust_product(
                product["id"], quantity,
                reason=f"Nhập thành phẩm: {product['name']} ({order['id']})", reference_id=order["id"],
            )),
        )

    @staticmethod
    def _require_ok(result):
        if not result.ok:
            raise ValidationError(result.reason or "Stock adjustment failed")
        return result

    def complete_order(self, order_id: str, actual_costs: dict) -> dict:
        """Record actual costs and the variance analysis; never touches stock."""
        order = self.repos.production_orders.require(order_id, "Production order")
        if order["status"] == CANCELLED:
            raise ValidationError("Đơn hàng không ở trạng thái có thể hoàn thành", details={"id": order_id})

        actual = dict(actual_costs or {})
        material_costs = [dict(line) for line in actual.get("material_costs") or []]
        other_costs = [
            {"description": line.get("description") or "", "amount": _as_float(line.get("amount"), "amount")}
            for line in actual.get("other_costs") or []
        ]
        if actual.get("total_actual_cost") in (None, ""):
            actual["total_actual_cost"] = (
                sum(float(line.get("actual_cost") or 0) for line in material_costs)
                + float(actual.get("labor_cost") or 0)
                + float(actual.get("electricity_cost") or 0)
                + float(actual.get("machinery_cost") or 0)
                + _sum_amounts(other_costs)
            )
        actual["material_costs"] = material_costs
        actual["other_costs"] = other_costs

        by_material = {line.get("material_id"): line for line in material_costs}
        committed = []
        for line in order.get("committed_materials") or []:
            line = dict(line)
            recorded = by_material.get(line["material_id"])
            if recorded is not None:
                if recorded.get("actual_cost") is not None:
                    line["actual_cost"] = float(recorded["actual_cost"])
                if recorded.get("actual_quantity_used") is not None:
                    line["actual_quantity_used"] = float(recorded["actual_quantity_used"])
            committed.append(line)

        analysis = calculate_cost_analysis(order, actual)
        updated = self.repos.production_orders.update(order_id, {
            "actual_costs": actual,
            "cost_analysis": analysis,
            "committed_materials": committed,
        })
        if updated is None:
            raise ValidationError("Không tìm thấy đơn hàng sản xuất", details={"id": order_id})
        self.notify(
            "Đã ghi nhận chi phí thực tế",
            f"{order['product_name']}: chênh lệch {analysis['variance']:,.0f}",
            "success",
        )
        return updated

    def open_orders(self) -> list[dict]:
        return self.repos.production_orders.find(lambda o: o.get("status") in OPEN_STATUSES)

    # ------------------------------------------------------------------
    # Disassembly
    # ------------------------------------------------------------------

    @staticmethod
    def _makes(product: dict):
        """BOM predicate: the BOM builds this product, by SKU or by name."""
        return lambda b: b.get("product_sku") == product.get("sku") or b.get("product_name") == product.get("name")

    def remove_product_and_return_materials(self, product_id: str, quantity) -> dict:
        """
        Take finished units off stock and put their BOM materials back.

        The quantity is floored, at least 1 and at most the product's stock.
        When the product runs out, its COMPLETED orders are cancelled and the
        product is deleted.
        """
        products = self.repos.products
        product = products.require(product_id, "Product")
        stock = float(product.get("stock") or 0)
        qty = min(max(1, math.floor(_as_float(quantity, "quantity"))), stock)
        if qty <= 0:
            raise ValidationError("Số lượng không hợp lệ", details={"id": product_id, "stock": stock})

        boms = self.repos.boms.find(self._makes(product))
        if not boms:
            raise ValidationError(f"Không tìm thấy BOM cho {product['name']}", details={"id": product_id})

        bom = boms[0]
        bom_ids = {b["id"] for b in boms}
        remaining = stock - qty
        related = self.repos.production_orders.find(lambda o: o.get("bom_id") in bom_ids and o.get("status") == COMPLETED)
        reason = f"Tháo thành phẩm: {product['name']} x {fmt_qty(qty)}"

        returned, cancelled = [], []
        with self.journal.begin("product.disassemble", product_id) as batch:
            batch.adjust(
                products, product_id, "stock", -qty,
                action=lambda: self._require_ok(
                    self.stock.adjust_product(product_id, -qty, reason=reason, reference_id=product_id)
                ),
            )
            for material_id, amount in self.requirements_for(bom, qty).items():
                if amount <= 0:
                    continue
                if self.repos.materials.get(material_id) is None:
                    logger.warning("Disassembly of %s: material %s gone, nothing returned", product_id, material_id)
                    continue
                batch.adjust(
                    self.repos.materials, material_id, "stock", amount,
                    action=lambda m=material_id, a=amount: self._require_ok(
                        self.stock.adjust_material(m, a, reason=reason, reference_id=product_id)
                    ),
                )
                returned.append({"material_id": material_id, "quantity": amount})
            if remaining <= 0:
                for order in related:
                    batch.update(self.repos.production_orders, order["id"], {"status": CANCELLED}, status=COMPLETED)
                    cancelled.append(order["id"])
                batch.delete(products, product_id)

        logger.info(
            "Disassembled %s x %s: %s material lines returned, %s orders cancelled",
            qty, product_id, len(returned), len(cancelled),
        )
        if remaining <= 0:
            self.notify(
                "Đã xoá thành phẩm",
                f"{product['name']} (xóa {fmt_qty(qty)}) và hủy {len(cancelled)} lệnh sản xuất liên quan",
                "success",
            )
        else:
            self.notify("Đã cập nhật tồn kho", f"{product['name']}: -{fmt_qty(qty)}, còn {fmt_qty(remaining)}", "success")
        return {
            "product_id": product_id,
            "removed": qty,
            "remaining": remaining,
            "returned": returned,
            "cancelled_orders": cancelled,
            "deleted": remaining <= 0,
        }
