# Overview: Backing-store gateway; request/response style access to the SQL tables.

"""
Store contract (authoritative)

- Every gateway call is one request: it runs in its own DB transaction and
  commits before returning. Nothing spans two calls.
- update() is conditional: extra keyword filters are part of the WHERE clause
  and the return value is the number of rows actually changed. Callers build
  compare-and-set locks on top of this, which is only sound because the
  database applies a single UPDATE atomically.
- call() runs a named stored procedure. Deployments may not ship every
  procedure; a missing one raises StorageError whose message matches
  MISSING_PROCEDURE_PATTERN so callers can take their fallback path.
"""

from __future__ import annotations

import re
from typing import Any, Callable

from sqlalchemy import case, delete, insert, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .concurrency import run_with_retry
from .errors import (
    ConflictError,
    NotFoundError,
    PincorpError,
    SchemaDriftError,
    StorageError,
    ValidationError,
)
from .models import DailySequence, Material, Product
from .time_utils import utcnow

UNIQUE_VIOLATION_PATTERN = re.compile(
    r"duplicate key|unique constraint|UNIQUE constraint failed|23505|409|Conflict", re.I
)
MISSING_COLUMN_PATTERN = re.compile(
    r"no such column|has no column named|column .+ does not exist|unknown column|schema cache", re.I
)
MISSING_PROCEDURE_PATTERN = re.compile(
    r"function .+ does not exist|no such function|could not find the function|procedure .+ not found", re.I
)


def is_missing_procedure(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and bool(MISSING_PROCEDURE_PATTERN.search(str(exc)))


def translate_error(exc: SQLAlchemyError) -> StorageError:
    message = str(getattr(exc, "orig", None) or exc)
    if isinstance(exc, IntegrityError) and UNIQUE_VIOLATION_PATTERN.search(message):
        return ConflictError(message)
    if MISSING_COLUMN_PATTERN.search(message):
        return SchemaDriftError(message)
    return StorageError(message)


def _table(model):
    return getattr(model, "__table__", model)


class StoreGateway:
    """
    Thin request/response facade over a SQLAlchemy session.

    Rows go in and come out as plain dicts keyed by column name.
    """

    def __init__(self, session, procedures: set[str] | list[str] | tuple = ()):
        self.session = session
        self.procedures = set(procedures)

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _run(self, op: Callable[[Any], Any]):
        def _attempt():
            result = op(self.session)
            self.session.commit()
            return result

        try:
            return run_with_retry(_attempt, session=self.session)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise translate_error(exc) from exc
        except PincorpError:
            self.session.rollback()
            raise

    @staticmethod
    def _where(table, filters: dict):
        return [table.c[key] == value for key, value in filters.items()]

    # ------------------------------------------------------------------
    # Table operations
    # ------------------------------------------------------------------

    def select(self, model, *, order_by=None, limit: int | None = None, **filters) -> list[dict]:
        table = _table(model)

        def _op(session):
            stmt = select(table).where(*self._where(table, filters))
            if order_by is not None:
                stmt = stmt.order_by(order_by)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [dict(row) for row in session.execute(stmt).mappings().all()]

        return self._run(_op)

    def get(self, model, row_id) -> dict | None:
        rows = self.select(model, id=row_id)
        return rows[0] if rows else None

    def insert(self, model, values: dict) -> dict:
        table = _table(model)
        self._run(lambda session: session.execute(insert(table).values(**values)))
        return self.get(model, values["id"])

    def update(self, model, values: dict, *criteria, **filters) -> int:
        """
        Conditional update; returns affected row count (0 = predicate failed).

        `criteria` are extra SQL expressions (e.g. Material.stock >= 5) ANDed
        with the equality filters.
        """
        if not filters:
            raise ValidationError("update requires at least one filter")
        table = _table(model)

        def _op(session):
            stmt = update(table).where(*self._where(table, filters), *criteria).values(**values)
            return session.execute(stmt).rowcount

        return self._run(_op)

    def upsert(self, model, values: dict) -> dict:
        """Insert-or-update keyed by id, safe to repeat."""
        table = _table(model)
        row_id = values["id"]
        changes = {k: v for k, v in values.items() if k != "id"}

        def _op(session):
            if changes:
                result = session.execute(update(table).where(table.c.id == row_id).values(**changes))
                if result.rowcount:
                    return
            elif session.execute(select(table.c.id).where(table.c.id == row_id)).first():
                return
            session.execute(insert(table).values(**values))

        try:
            self._run(_op)
        except ConflictError:
            # Lost an insert race against another writer: the row exists now.
            if changes:
                self.update(model, changes, id=row_id)
        return self.get(model, row_id)

    def delete(self, model, **any_of) -> int:
        """Delete rows matching ANY of the given column filters."""
        criteria = {key: value for key, value in any_of.items() if value is not None}
        if not criteria:
            raise ValidationError("delete requires at least one filter")
        table = _table(model)

        def _op(session):
            clauses = [table.c[key] == value for key, value in criteria.items()]
            return session.execute(delete(table).where(or_(*clauses))).rowcount

        return self._run(_op)

    def increment(self, model, row_id, column: str, delta: float, *, clamp: bool = False):
        """
        Atomic `column = column + delta` on one row.

        Without clamp the update only lands when the result stays >= 0 and
        None is returned otherwise. With clamp the result is floored at 0.
        """
        table = _table(model)
        col = table.c[column]

        def _op(session):
            stmt = update(table).where(table.c.id == row_id)
            if clamp:
                stmt = stmt.values({column: case((col + delta < 0, 0), else_=col + delta)})
            else:
                stmt = stmt.where(col + delta >= 0).values({column: col + delta})
            if not session.execute(stmt).rowcount:
                return None
            return session.execute(select(col).where(table.c.id == row_id)).scalar()

        return self._run(_op)

    # ------------------------------------------------------------------
    # Stored procedures
    # ------------------------------------------------------------------

    def call(self, name: str, **params):
        procedure = PROCEDURES.get(name)
        if procedure is None or name not in self.procedures:
            raise StorageError(f"function {name}({', '.join(params)}) does not exist")
        return self._run(lambda session: procedure(session, **params))


def _adjust_stock(session, model, row_id: str, delta: float) -> float:
    """
    Single conditional UPDATE: stock = stock + delta WHERE stock + delta >= 0.

    Either the whole adjustment lands or nothing changes.
    """
    table = model.__table__
    result = session.execute(
        update(table)
        .where(table.c.id == row_id, table.c.stock + delta >= 0)
        .values(stock=table.c.stock + delta, updated_at=utcnow())
    )
    current = session.execute(select(table.c.stock).where(table.c.id == row_id)).scalar()
    if not result.rowcount:
        if current is None:
            raise NotFoundError(f"{model.__name__} not found: {row_id}")
        raise ValidationError(
            f"Insufficient stock (current={current}, delta={delta})",
            details={"id": row_id, "current": current, "delta": delta},
        )
    return current


def _adjust_material_stock(session, material_id: str, delta: float) -> float:
    return _adjust_stock(session, Material, material_id, delta)


def _adjust_product_stock(session, product_id: str, delta: float) -> float:
    return _adjust_stock(session, Product, product_id, delta)


def _next_daily_sequence(session, prefix: str, day: str) -> int:
    """
    Atomically allocate the next number for (prefix, day).

    The counter row is bumped with a single UPDATE; the first caller of the
    day inserts it, and a losing insert race falls back to the UPDATE.
    """
    table = DailySequence.__table__
    stmt = (
        update(table)
        .where(table.c.prefix == prefix, table.c.day == day)
        .values(next_number=table.c.next_number + 1, updated_at=utcnow())
    )

    def _current() -> int:
        return session.execute(
            select(table.c.next_number).where(table.c.prefix == prefix, table.c.day == day)
        ).scalar()

    if session.execute(stmt).rowcount:
        return _current() - 1

    try:
        session.execute(
            insert(table).values(prefix=prefix, day=day, next_number=2, updated_at=utcnow())
        )
        session.flush()
        return 1
    except IntegrityError:
        session.rollback()
        if not session.execute(stmt).rowcount:
            raise
        return _current() - 1


PROCEDURES: dict[str, Callable[..., Any]] = {
    "adjust_material_stock": _adjust_material_stock,
    "adjust_product_stock": _adjust_product_stock,
    "get_next_daily_sequence": _next_daily_sequence,
}
