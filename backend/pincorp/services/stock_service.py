# Overview: Stock ledger primitive; the only writer of materials.stock / products.stock.

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import PincorpError, StorageError
from ..models import Material, Product
from ..store import is_missing_procedure
from ..time_utils import utcnow

logger = logging.getLogger(__name__)

DEFAULT_REASON = "Điều chỉnh tồn kho"


@dataclass(frozen=True)
class StockResult:
    ok: bool
    next_stock: float | None = None
    reason: str | None = None


class StockLedger:
    """
    Atomic stock adjustment.

    Primary path: the store procedure, a single
    UPDATE ... SET stock = stock + delta WHERE id = ? AND stock + delta >= 0.

    Fallback, when the deployment has no such procedure: read the cached
    stock, reject if it would go negative, then conditionally write
    stock = cached + delta WHERE stock >= -delta. The guard stops stock going
    negative but a concurrent writer between the read and the write can be
    overwritten; this path is best effort only.

    Every successful adjustment appends one stock_history row when a history
    repository is attached. The stock change has already landed by then, so a
    failed history write is logged and does not fail the adjustment.
    """

    def __init__(self, materials, products, history=None):
        self.materials = materials
        self.products = products
        self.history = history

    def adjust_material(self, material_id: str, delta: float, *,
                        reason: str | None = None, reference_id: str | None = None) -> StockResult:
        result = self._adjust(self.materials, Material, "adjust_material_stock", "material_id", material_id, delta)
        return self._record(result, "material", material_id, delta, reason, reference_id)

    def adjust_product(self, product_id: str, delta: float, *,
                       reason: str | None = None, reference_id: str | None = None) -> StockResult:
        result = self._adjust(self.products, Product, "adjust_product_stock", "product_id", product_id, delta)
        return self._record(result, "product", product_id, delta, reason, reference_id)

    def adjust(self, item_type: str, item_id: str, delta: float, **history) -> StockResult:
        """Dispatch on a sale line's type: 'material' or anything else = product."""
        if item_type == "material":
            return self.adjust_material(item_id, delta, **history)
        return self.adjust_product(item_id, delta, **history)

    def history_for(self, item_id: str, item_type: str | None = None) -> list[dict]:
        """Movements of one item, newest first."""
        if self.history is None:
            return []
        filters = {"item_id": item_id}
        if item_type:
            filters["item_type"] = item_type
        rows = self.history.find(**filters)
        rows.sort(key=lambda row: row.get("created_at") or utcnow(), reverse=True)
        return rows

    # ------------------------------------------------------------------

    def _record(self, result: StockResult, item_type: str, item_id: str, delta,
                reason: str | None, reference_id: str | None) -> StockResult:
        if not result.ok or self.history is None:
            return result
        delta = float(delta)
        if delta == 0:
            return result
        after = result.next_stock
        try:
            self.history.insert({
                "item_type": item_type,
                "item_id": item_id,
                "transaction_type": "import" if delta > 0 else "export",
                "quantity_change": delta,
                "quantity_before": None if after is None else after - delta,
                "quantity_after": after,
                "reason": reason or DEFAULT_REASON,
                "reference_id": reference_id,
                "created_at": utcnow(),
            })
        except PincorpError as exc:
            logger.warning("Stock history not written for %s %s (delta=%s): %s", item_type, item_id, delta, exc)
        return result

    def _adjust(self, repo, model, procedure: str, param: str, row_id: str, delta: float) -> StockResult:
        delta = float(delta)
        if repo.offline:
            return self._adjust_cached(repo, row_id, delta)

        try:
            next_stock = repo.gateway.call(procedure, **{param: row_id, "delta": delta})
        except PincorpError as exc:
            if not is_missing_procedure(exc):
                logger.warning("Stock adjust failed for %s %s (delta=%s): %s", repo.name, row_id, delta, exc)
                return StockResult(ok=False, reason=exc.message)
            logger.info("Procedure %s unavailable, using conditional-write fallback", procedure)
            return self._adjust_fallback(repo, model, row_id, delta)

        repo.patch_cache(row_id, {"stock": next_stock})
        return StockResult(ok=True, next_stock=next_stock)

    def _adjust_fallback(self, repo, model, row_id: str, delta: float) -> StockResult:
        current = repo.get(row_id)
        if current is None:
            return StockResult(ok=False, reason=f"{model.__name__} not found: {row_id}")
        cached_stock = current.get("stock") or 0
        next_stock = cached_stock + delta
        if next_stock < 0:
            return StockResult(ok=False, reason=f"Insufficient stock (current={cached_stock}, delta={delta})")

        try:
            row = repo.update(
                row_id,
                {"stock": next_stock, "updated_at": utcnow()},
                model.stock >= -delta,
            )
        except StorageError as exc:
            return StockResult(ok=False, reason=exc.message)
        if row is None:
            repo.refresh_one(row_id)
            return StockResult(ok=False, reason=f"Insufficient stock (current={cached_stock}, delta={delta})")
        return StockResult(ok=True, next_stock=row["stock"])

    def _adjust_cached(self, repo, row_id: str, delta: float) -> StockResult:
        current = repo.get(row_id)
        if current is None:
            return StockResult(ok=False, reason=f"not found: {row_id}")
        next_stock = (current.get("stock") or 0) + delta
        if next_stock < 0:
            return StockResult(ok=False, reason=f"Insufficient stock (current={current.get('stock')}, delta={delta})")
        repo.update(row_id, {"stock": next_stock, "updated_at": utcnow()})
        return StockResult(ok=True, next_stock=next_stock)

    def clamped_decrement(self, item_type: str, item_id: str, quantity: float, **history) -> StockResult:
        """Take up to `quantity` off stock, never below zero (sale lines)."""
        repo = self.materials if item_type == "material" else self.products
        current = repo.get(item_id)
        if current is None:
            return StockResult(ok=False, reason=f"not found: {item_id}")
        take = min(float(quantity), current.get("stock") or 0)
        if take <= 0:
            return StockResult(ok=True, next_stock=current.get("stock") or 0)
        return self.adjust(item_type, item_id, -take, **history)
