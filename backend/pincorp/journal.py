# Overview: Compensating-action log for multi-step write sequences, plus the reconcile job.

"""
Batches that span several store requests (order insert + commitment
increments, sale insert + stock decrements + cash row, ...) cannot be wrapped
in one database transaction because every gateway call commits on its own.
Instead every step is journaled:

1. the step's intent (with whatever is needed to undo it) is persisted with
   done=False,
2. the action runs,
3. the step is marked done=True.

A batch that finishes is 'committed'. A batch that fails after some steps
landed is 'failed' and the caller gets InconsistentStateError carrying the
batch id. Journal.reconcile() reverses failed (and stale open) batches, last
step first, and marks them 'reverted'.
"""

from __future__ import annotations

import copy
import logging
from datetime import timedelta
from typing import Any, Callable

from .errors import InconsistentStateError, PincorpError, ValidationError
from .models.base import new_id
from .time_utils import utcnow

logger = logging.getLogger(__name__)

OPEN = "open"
COMMITTED = "committed"
FAILED = "failed"
REVERTED = "reverted"

DEFAULT_STALE_AFTER = timedelta(minutes=10)


class Batch:
    """One journaled write sequence. Use through `with journal.begin(...) as batch`."""

    def __init__(self, journal: "Journal", kind: str, reference_id: str | None = None):
        self.journal = journal
        self.id = new_id()
        self.kind = kind
        self.reference_id = reference_id
        self.steps: list[dict] = []
        self.status = OPEN
        self._persisted = False

    def __enter__(self) -> "Batch":
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            if self.status == OPEN:
                self._finish(COMMITTED)
            return False
        if not isinstance(exc, Exception) or self.status != OPEN:
            return False
        if not self.applied_steps:
            # Nothing landed: the failure is clean and surfaces unchanged.
            if self._persisted:
                self._finish(REVERTED, error=str(exc))
            return False
        self.fail(exc)
        raise InconsistentStateError(
            f"Thao tác '{self.kind}' chỉ hoàn tất một phần ({len(self.applied_steps)} bước đã ghi); "
            f"cần đối soát lô {self.id}",
            details=self.error_details(exc),
        ) from exc

    # ------------------------------------------------------------------

    @property
    def applied_steps(self) -> list[dict]:
        return [step for step in self.steps if step["done"]]

    def error_details(self, exc: BaseException | None = None) -> dict:
        details = {
            "batch_id": self.id,
            "kind": self.kind,
            "reference_id": self.reference_id,
            "applied_steps": len(self.applied_steps),
        }
        if exc is not None:
            details["error"] = str(exc)
            if isinstance(exc, PincorpError) and exc.details:
                details["cause"] = exc.details
        return details

    def fail(self, error) -> None:
        """Mark the batch failed without raising; reconcile reverses it later."""
        self._finish(FAILED, error=str(error))
        logger.error(
            "Batch %s (%s, ref=%s) failed after %s applied steps: %s",
            self.id, self.kind, self.reference_id, len(self.applied_steps), error,
        )

    def _finish(self, status: str, error: str | None = None) -> None:
        self.status = status
        if not self._persisted:
            return
        self.journal.batches.update(
            self.id, {"status": status, "error": error, "updated_at": utcnow()}
        )

    def _save_steps(self) -> None:
        values = {"steps": copy.deepcopy(self.steps), "updated_at": utcnow()}
        if not self._persisted:
            self.journal.batches.insert({
                "id": self.id,
                "kind": self.kind,
                "reference_id": self.reference_id,
                "status": OPEN,
                **values,
            })
            self._persisted = True
        else:
            self.journal.batches.update(self.id, values)

    def run(self, step: dict, action: Callable[[], Any]):
        """Persist intent, run `action`, mark the step done. Exceptions propagate."""
        step = {**step, "done": False}
        self.steps.append(step)
        self._save_steps()
        result = action()
        step["done"] = True
        self._save_steps()
        return result

    # ------------------------------------------------------------------
    # Step helpers; each records what its undo needs.
    # ------------------------------------------------------------------

    def insert(self, repo, values: dict) -> dict:
        row = repo.build(values)
        step = {"op": "insert", "table": repo.name, "row_id": row["id"]}
        return self.run(step, lambda: repo.insert(row))

    def update(self, repo, row_id, values: dict, **expected) -> dict | None:
        before = repo.require(row_id)
        step = {"op": "update", "table": repo.name, "row_id": row_id, "before": repo.encode(before)}

        def _action():
            row = repo.update(row_id, values, **expected)
            if row is None:
                raise ValidationError(
                    f"{repo.model.__name__} {row_id} changed concurrently",
                    details={"id": row_id, "expected": expected},
                )
            return row

        return self.run(step, _action)

    def delete(self, repo, row_id) -> bool:
        before = repo.get(row_id)
        step = {"op": "delete", "table": repo.name, "row_id": row_id, "before": repo.encode(before)}
        return self.run(step, lambda: repo.delete(row_id))

    def delete_any(self, repo, action: Callable[[], int] | None = None, **any_of) -> int:
        """Delete rows matching any filter; `action` overrides the delete call."""
        criteria = {k: v for k, v in any_of.items() if v is not None}
        snapshots = repo.find(lambda row: any(row.get(k) == v for k, v in criteria.items()))
        step = {
            "op": "delete_many",
            "table": repo.name,
            "filters": criteria,
            "before": [repo.encode(row) for row in snapshots],
        }
        return self.run(step, action or (lambda: repo.delete_any(**criteria)))

    def adjust(self, repo, row_id, column: str, delta: float, action: Callable[[], Any] | None = None):
        """
        Numeric delta on one column. `action` performs the change (e.g. through
        the stock ledger) and must raise on failure.
        """
        step = {"op": "adjust", "table": repo.name, "row_id": row_id, "column": column, "delta": delta}

        def _default():
            value = repo.increment(row_id, column, delta)
            if value is None:
                raise ValidationError(
                    f"Cannot apply {column} {delta:+g} to {repo.model.__name__} {row_id}",
                    details={"id": row_id, "column": column, "delta": delta},
                )
            return value

        return self.run(step, action or _default)


class Journal:
    def __init__(self, batches, tables: dict):
        self.batches = batches
        self.tables = tables

    def begin(self, kind: str, reference_id: str | None = None) -> Batch:
        return Batch(self, kind, reference_id)

    def pending(self, *, stale_after: timedelta = DEFAULT_STALE_AFTER) -> list[dict]:
        """Failed batches, plus open ones older than `stale_after`."""
        cutoff = utcnow() - stale_after
        rows = []
        for row in self.batches.all():
            if row["status"] == FAILED:
                rows.append(row)
            elif row["status"] == OPEN:
                touched = row.get("updated_at") or row.get("created_at")
                if touched is not None and touched <= cutoff:
                    rows.append(row)
        rows.sort(key=lambda r: r.get("created_at") or utcnow())
        return rows

    def reconcile(self, batch_id: str | None = None, *, stale_after: timedelta = DEFAULT_STALE_AFTER) -> list[dict]:
        """
        Reverse pending batches (or just `batch_id`), newest step first.

        Done steps are undone. Steps whose intent was recorded but never
        confirmed are undone too when the undo is idempotent (insert, update,
        delete); unconfirmed numeric adjustments cannot be verified and are
        reported instead.
        """
        if batch_id is not None:
            row = self.batches.get(batch_id)
            if row is None:
                raise ValidationError(f"Write batch not found: {batch_id}", details={"id": batch_id})
            targets = [row] if row["status"] in (OPEN, FAILED) else []
        else:
            targets = self.pending(stale_after=stale_after)

        reports = []
        for row in targets:
            reverted, unverified = 0, []
            for step in reversed(row.get("steps") or []):
                if not step.get("done") and step["op"] == "adjust":
                    unverified.append(step)
                    continue
                self._undo(step)
                if step.get("done"):
                    reverted += 1
            self.batches.update(row["id"], {"status": REVERTED, "updated_at": utcnow()})
            logger.warning(
                "Reverted batch %s (%s, ref=%s): %s steps undone, %s unverified",
                row["id"], row["kind"], row.get("reference_id"), reverted, len(unverified),
            )
            reports.append({
                "batch_id": row["id"],
                "kind": row["kind"],
                "reference_id": row.get("reference_id"),
                "reverted_steps": reverted,
                "unverified_steps": unverified,
            })
        return reports

    def _undo(self, step: dict) -> None:
        repo = self.tables[step["table"]]
        op = step["op"]
        if op == "insert":
            repo.delete(step["row_id"])
        elif op == "update":
            if step.get("before"):
                repo.upsert(step["before"])
        elif op == "delete":
            if step.get("before") and repo.refresh_one(step["row_id"]) is None:
                repo.upsert(step["before"])
        elif op == "delete_many":
            for snapshot in step.get("before") or []:
                if repo.refresh_one(snapshot["id"]) is None:
                    repo.upsert(snapshot)
        elif op == "adjust":
            repo.increment(step["row_id"], step["column"], -step["delta"], clamp=True)
        else:
            raise ValidationError(f"Unknown journal step: {op}")
