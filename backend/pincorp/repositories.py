# Overview: Entity collections; cached rows with write-through to the store gateway.

"""
One Repository per table. Each keeps the process-local cache of its rows
(the collection services read from) and forwards writes to the store.

Online: every write goes to the store first; the cache is only touched after
the store confirms, and the cached row is re-read from the store so defaults
and concurrent changes are picked up. refresh() resyncs from the store.

Offline (no gateway): writes apply to the cache only, with the same method
signatures and return shapes.
"""

from __future__ import annotations

import copy
import logging
from datetime import datetime
from typing import Callable

from sqlalchemy import DateTime

from .errors import NotFoundError
from .models import (
    Bom,
    CashTransaction,
    Material,
    Product,
    ProductionOrder,
    RepairOrder,
    Sale,
    StockHistory,
    WriteBatch,
)
from .models.base import new_id
from .time_utils import parse_iso_datetime, to_utc_z

logger = logging.getLogger(__name__)


class Repository:
    def __init__(self, model, gateway=None):
        self.model = model
        self.table = model.__table__
        self.name = self.table.name
        self.gateway = gateway
        self._rows: dict[str, dict] | None = None
        self._datetime_columns = {
            col.name for col in self.table.columns if isinstance(col.type, DateTime)
        }

    def __repr__(self) -> str:
        mode = "offline" if self.offline else "online"
        return f"<Repository {self.name} {mode}>"

    @property
    def offline(self) -> bool:
        return self.gateway is None

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    @property
    def _cache(self) -> dict[str, dict]:
        if self._rows is None:
            self.refresh()
        return self._rows

    def refresh(self) -> int:
        """Reload the cache from the store. Offline this only initialises it."""
        if self.offline:
            if self._rows is None:
                self._rows = {}
            return len(self._rows)
        rows = self.gateway.select(self.model)
        self._rows = {row["id"]: row for row in rows}
        logger.debug("Refreshed %s: %s rows", self.name, len(rows))
        return len(rows)

    def refresh_one(self, row_id) -> dict | None:
        if self.offline:
            return self.get(row_id)
        row = self.gateway.get(self.model, row_id)
        if row is None:
            self._cache.pop(row_id, None)
            return None
        self._cache[row_id] = row
        return copy.deepcopy(row)

    def _store_row(self, row_id) -> dict | None:
        row = self.gateway.get(self.model, row_id)
        if row is None:
            self._cache.pop(row_id, None)
        else:
            self._cache[row_id] = row
        return copy.deepcopy(row)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def all(self) -> list[dict]:
        return [copy.deepcopy(row) for row in self._cache.values()]

    def get(self, row_id) -> dict | None:
        row = self._cache.get(row_id)
        return copy.deepcopy(row) if row is not None else None

    def require(self, row_id, label: str | None = None) -> dict:
        row = self.get(row_id)
        if row is None:
            raise NotFoundError(
                f"{label or self.model.__name__} not found: {row_id}",
                details={"id": row_id},
            )
        return row

    def find(self, predicate: Callable[[dict], bool] | None = None, **filters) -> list[dict]:
        rows = []
        for row in self._cache.values():
            if any(row.get(key) != value for key, value in filters.items()):
                continue
            if predicate is not None and not predicate(row):
                continue
            rows.append(copy.deepcopy(row))
        return rows

    def find_one(self, predicate: Callable[[dict], bool] | None = None, **filters) -> dict | None:
        rows = self.find(predicate, **filters)
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # Value shaping
    # ------------------------------------------------------------------

    def coerce(self, values: dict) -> dict:
        """Keep known columns only; ISO strings become datetimes."""
        out = {}
        for key, value in values.items():
            if key not in self.table.c:
                continue
            if key in self._datetime_columns and isinstance(value, str):
                value = parse_iso_datetime(value)
            out[key] = value
        return out

    def encode(self, row: dict | None) -> dict | None:
        """JSON-safe copy of a row (datetimes as ISO strings)."""
        if row is None:
            return None
        out = copy.deepcopy(row)
        for key in self._datetime_columns:
            if isinstance(out.get(key), datetime):
                out[key] = to_utc_z(out[key])
        return out

    def build(self, values: dict) -> dict:
        """Full row: given values plus column defaults."""
        values = self.coerce(values)
        row = {}
        for col in self.table.columns:
            if col.name in values:
                row[col.name] = values[col.name]
            elif col.default is not None:
                default = col.default
                row[col.name] = default.arg(None) if default.is_callable else default.arg
            else:
                row[col.name] = None
        if not row.get("id"):
            row["id"] = new_id()
        return row

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, values: dict) -> dict:
        row = self.build(values)
        if self.offline:
            self._cache[row["id"]] = row
            return copy.deepcopy(row)
        self.gateway.insert(self.model, self._present(row))
        return self._store_row(row["id"])

    def update(self, row_id, values: dict, *criteria, **expected) -> dict | None:
        """
        Update one row. `expected` column values (and, online, SQL `criteria`)
        form the predicate; returns None when nothing matched.
        """
        values = self.coerce(values)
        values.pop("id", None)
        if self.offline:
            row = self._cache.get(row_id)
            if row is None or any(row.get(k) != v for k, v in expected.items()):
                return None
            row.update(values)
            return copy.deepcopy(row)
        if not values:
            row = self._cache.get(row_id)
            if row is None or any(row.get(k) != v for k, v in expected.items()):
                return None
            return copy.deepcopy(row)
        if not self.gateway.update(self.model, values, *criteria, id=row_id, **expected):
            return None
        return self._store_row(row_id)

    def upsert(self, values: dict) -> dict:
        """Insert-or-update by id; missing columns keep stored values."""
        values = self.coerce(values)
        existing = self._cache.get(values.get("id")) if values.get("id") else None
        if existing is None and self.offline:
            return self.insert(values)
        if self.offline:
            existing.update(values)
            return copy.deepcopy(existing)
        if existing is None and not self.gateway.get(self.model, values.get("id")):
            row = self._present(self.build(values))
        else:
            row = values
        self.gateway.upsert(self.model, row)
        return self._store_row(row["id"])

    @staticmethod
    def _present(row: dict) -> dict:
        """Drop unset columns so the store only sees what was given or defaulted."""
        return {key: value for key, value in row.items() if value is not None}

    def delete(self, row_id) -> bool:
        return self.delete_any(id=row_id) > 0

    def delete_any(self, **any_of) -> int:
        """Remove rows matching ANY filter; returns rows removed."""
        criteria = {key: value for key, value in any_of.items() if value is not None}
        matched = [
            row_id
            for row_id, row in self._cache.items()
            if any(row.get(key) == value for key, value in criteria.items())
        ]
        if self.offline:
            for row_id in matched:
                self._cache.pop(row_id, None)
            return len(matched)
        removed = self.gateway.delete(self.model, **criteria)
        for row_id in matched:
            self._cache.pop(row_id, None)
        return removed

    def increment(self, row_id, column: str, delta: float, *, clamp: bool = False):
        """
        Atomic column += delta. Returns the new value, or None when the row is
        missing or (without clamp) the result would go negative.
        """
        if self.offline:
            row = self._cache.get(row_id)
            if row is None:
                return None
            value = (row.get(column) or 0) + delta
            if value < 0:
                if not clamp:
                    return None
                value = 0
            row[column] = value
            return value
        value = self.gateway.increment(self.model, row_id, column, delta, clamp=clamp)
        if value is not None:
            self._store_row(row_id)
        return value

    def patch_cache(self, row_id, values: dict) -> None:
        """Cache-only change, for values the store already holds."""
        row = self._cache.get(row_id)
        if row is not None:
            row.update(self.coerce(values))


class Repositories:
    """All entity collections of one app process."""

    def __init__(self, gateway=None):
        self.gateway = gateway
        self.materials = Repository(Material, gateway)
        self.products = Repository(Product, gateway)
        self.boms = Repository(Bom, gateway)
        self.production_orders = Repository(ProductionOrder, gateway)
        self.sales = Repository(Sale, gateway)
        self.repair_orders = Repository(RepairOrder, gateway)
        self.cash_transactions = Repository(CashTransaction, gateway)
        self.stock_history = Repository(StockHistory, gateway)
        self.write_batches = Repository(WriteBatch, gateway)

    @property
    def offline(self) -> bool:
        return self.gateway is None

    def by_table(self) -> dict[str, Repository]:
        return {
            repo.name: repo
            for repo in (
                self.materials,
                self.products,
                self.boms,
                self.production_orders,
                self.sales,
                self.repair_orders,
                self.cash_transactions,
            )
        }

    def refresh_all(self) -> dict[str, int]:
        counts = {name: repo.refresh() for name, repo in self.by_table().items()}
        counts[self.stock_history.name] = self.stock_history.refresh()
        counts[self.write_batches.name] = self.write_batches.refresh()
        return counts
