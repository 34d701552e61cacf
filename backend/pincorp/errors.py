"""
Error taxonomy shared by the store gateway, services and routes.

- ValidationError: rejected before any write; the user corrects input and retries.
- StorageError: the backing store refused or failed a write. Earlier steps of a
  multi-step sequence are NOT rolled back automatically.
- ConflictError: unique-constraint violation; retried by callers up to a bound.
- SchemaDriftError: the store is missing a column the payload referenced.
- InconsistentStateError: a journaled batch stopped halfway; `details["batch_id"]`
  identifies it for `flask pin reconcile-batches`.

Lock contention on `materials_deducted` is deliberately not an exception:
it means the deduction already happened.
"""

from __future__ import annotations


class PincorpError(Exception):
    """Base class; carries a human-readable message plus structured details."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PincorpError):
    """400-level input or business-rule rejection."""


class NotFoundError(ValidationError):
    """Referenced entity does not exist."""


class StorageError(PincorpError):
    """Backend write/read failure, surfaced verbatim."""


class ConflictError(StorageError):
    """409-level unique-constraint violation (e.g. duplicate sale code)."""


class SchemaDriftError(StorageError):
    """The backend schema lacks a column the payload used."""


class InconsistentStateError(StorageError):
    """A multi-step batch applied some steps and then failed."""
