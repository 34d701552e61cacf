# Overview: Material and product master data; stock moves only through the stock ledger.

from __future__ import annotations

import logging

from ..errors import ValidationError
from ..time_utils import utcnow
from .commitment_service import is_open
from .notifier import log_notify

logger = logging.getLogger(__name__)

# Written by the stock ledger / commitment tracker, never by master-data edits.
LEDGER_FIELDS = ("stock", "committed_quantity")


def _non_negative(values: dict, *keys: str) -> None:
    for key in keys:
        if values.get(key) is None:
            continue
        try:
            number = float(values[key])
        except (TypeError, ValueError):
            raise ValidationError(f"{key} must be a number", details={key: values[key]})
        if number < 0:
            raise ValidationError(f"{key} cannot be negative", details={key: number})
        values[key] = number


class InventoryService:
    def __init__(self, repos, stock, notify=log_notify):
        self.repos = repos
        self.stock = stock
        self.notify = notify

    # ------------------------------------------------------------------
    # Materials
    # ------------------------------------------------------------------

    def create_material(self, data: dict) -> dict:
        if not (data.get("name") or "").strip():
            raise ValidationError("Tên nguyên liệu là bắt buộc")
        values = {k: v for k, v in data.items() if k != "committed_quantity"}
        _non_negative(values, "stock", "purchase_price", "retail_price", "wholesale_price")
        values["committed_quantity"] = 0
        material = self.repos.materials.insert(values)
        logger.info("Created material %s (%s)", material["id"], material["name"])
        return material

    def update_material(self, material_id: str, data: dict) -> dict:
        self.repos.materials.require(material_id, "Material")
        values = {k: v for k, v in data.items() if k not in LEDGER_FIELDS and k != "id"}
        _non_negative(values, "purchase_price", "retail_price", "wholesale_price")
        values["updated_at"] = utcnow()
        return self.repos.materials.update(material_id, values)

    def delete_material(self, material_id: str) -> None:
        self.repos.materials.require(material_id, "Material")
        referencing = self.repos.production_orders.find(
            lambda o: is_open(o) and any(
                line.get("material_id") == material_id for line in o.get("committed_materials") or []
            )
        )
        if referencing:
            raise ValidationError(
                "Không thể xóa nguyên liệu đang được giữ cho lệnh sản xuất",
                details={"material_id": material_id, "order_ids": [o["id"] for o in referencing]},
            )
        self.repos.materials.delete(material_id)
        logger.info("Deleted material %s", material_id)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(self, data: dict) -> dict:
        if not (data.get("name") or "").strip():
            raise ValidationError("Tên sản phẩm là bắt buộc")
        if not (data.get("sku") or "").strip():
            raise ValidationError("SKU sản phẩm là bắt buộc")
        if self.repos.products.find_one(sku=data["sku"]):
            raise ValidationError(f"SKU đã tồn tại: {data['sku']}", details={"sku": data["sku"]})
        values = dict(data)
        _non_negative(values, "stock", "cost_price", "retail_price", "wholesale_price")
        return self.repos.products.insert(values)

    def update_product(self, product_id: str, data: dict) -> dict:
        self.repos.products.require(product_id, "Product")
        values = {k: v for k, v in data.items() if k not in LEDGER_FIELDS and k != "id"}
        _non_negative(values, "cost_price", "retail_price", "wholesale_price")
        values["updated_at"] = utcnow()
        return self.repos.products.update(product_id, values)

    def delete_product(self, product_id: str) -> None:
        self.repos.products.require(product_id, "Product")
        self.repos.products.delete(product_id)

    # ------------------------------------------------------------------
    # Manual stock moves (goods receipt, count corrections)
    # ------------------------------------------------------------------

    def adjust_stock(self, item_type: str, item_id: str, delta: float, reason: str | None = None) -> dict:
        repo = self.repos.materials if item_type == "material" else self.repos.products
        repo.require(item_id, "Material" if item_type == "material" else "Product")
        try:
            delta = float(delta)
        except (TypeError, ValueError):
            raise ValidationError("delta must be a number", details={"delta": delta})
        result = self.stock.adjust(item_type, item_id, delta, reason=reason)
        if not result.ok:
            raise ValidationError(result.reason or "Stock adjustment failed", details={"id": item_id, "delta": delta})
        self.notify("Đã cập nhật tồn kho", f"{item_id}: {delta:+g}", "success")
        return repo.get(item_id)

    def stock_history(self, item_type: str, item_id: str) -> list[dict]:
        repo = self.repos.materials if item_type == "material" else self.repos.products
        repo.require(item_id, "Material" if item_type == "material" else "Product")
        return self.stock.history_for(item_id, item_type)
