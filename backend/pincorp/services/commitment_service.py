# Overview: Material commitment tracker; available stock = stock minus open-order reservations.

from __future__ import annotations

import logging
from collections import defaultdict

from ..errors import NotFoundError

logger = logging.getLogger(__name__)

PENDING = "PENDING"
IN_PRODUCTION = "IN_PRODUCTION"
COMPLETED = "COMPLETED"
CANCELLED = "CANCELLED"

OPEN_STATUSES = frozenset({PENDING, IN_PRODUCTION})


def is_open(order: dict) -> bool:
    return order.get("status") in OPEN_STATUSES


def order_commitments(order: dict) -> dict[str, float]:
    """Per-material reserved quantity of one order (0 for closed orders)."""
    totals: dict[str, float] = defaultdict(float)
    if not is_open(order):
        return totals
    for line in order.get("committed_materials") or []:
        totals[line["material_id"]] += float(line.get("quantity") or 0)
    return totals


class CommitmentTracker:
    def __init__(self, materials, production_orders):
        self.materials = materials
        self.production_orders = production_orders

    def committed_quantities(self) -> dict[str, float]:
        """Sum of commitments per material over PENDING/IN_PRODUCTION orders."""
        totals: dict[str, float] = defaultdict(float)
        for order in self.production_orders.all():
            for material_id, quantity in order_commitments(order).items():
                totals[material_id] += quantity
        return dict(totals)

    def committed_quantity(self, material_id: str) -> float:
        return self.committed_quantities().get(material_id, 0.0)

    def available_stock(self, material_id: str) -> float:
        material = self.materials.get(material_id)
        if material is None:
            raise NotFoundError(f"Material not found: {material_id}", details={"id": material_id})
        return max(0.0, (material.get("stock") or 0) - self.committed_quantity(material_id))

    def check_availability(self, requirements: dict[str, float]) -> list[dict]:
        """
        Compare summed requirements against available stock.

        Returns one shortage entry per short material; empty means everything fits.
        """
        committed = self.committed_quantities()
        shortages = []
        for material_id, required in requirements.items():
            material = self.materials.get(material_id)
            if material is None:
                shortages.append({
                    "material_id": material_id,
                    "name": material_id,
                    "required": required,
                    "available": 0.0,
                    "shortage": required,
                })
                continue
            available = max(0.0, (material.get("stock") or 0) - committed.get(material_id, 0.0))
            if required > available:
                shortages.append({
                    "material_id": material_id,
                    "name": material.get("name") or material_id,
                    "required": required,
                    "available": available,
                    "shortage": required - available,
                })
        return shortages

    def stock_status(self) -> list[dict]:
        committed = self.committed_quantities()
        rows = []
        for material in self.materials.all():
            stock = material.get("stock") or 0
            reserved = committed.get(material["id"], 0.0)
            rows.append({
                "material_id": material["id"],
                "name": material.get("name"),
                "sku": material.get("sku"),
                "unit": material.get("unit"),
                "stock": stock,
                "committed_quantity": reserved,
                "stored_committed_quantity": material.get("committed_quantity") or 0,
                "available": max(0.0, stock - reserved),
            })
        return rows

    def drift(self) -> list[dict]:
        """Materials whose stored committed_quantity disagrees with open orders."""
        return [
            row for row in self.stock_status()
            if abs(row["stored_committed_quantity"] - row["committed_quantity"]) > 1e-9
        ]

    def reconcile(self) -> list[dict]:
        """Rewrite drifted committed_quantity fields from order data."""
        fixed = []
        for row in self.drift():
            self.materials.update(row["material_id"], {"committed_quantity": row["committed_quantity"]})
            logger.warning(
                "Reconciled committed_quantity for material %s: %s -> %s",
                row["material_id"], row["stored_committed_quantity"], row["committed_quantity"],
            )
            fixed.append(row)
        return fixed
