# Overview: Shared helpers for the JSON routes: row serialization and error responses.

from datetime import datetime

from flask import jsonify

from ..errors import ConflictError, NotFoundError, PincorpError, StorageError
from ..time_utils import to_utc_z


def serialize(row):
    """JSON-safe copy of a row dict (datetimes as ISO-8601 'Z')."""
    if row is None:
        return None
    if isinstance(row, list):
        return [serialize(item) for item in row]
    return {
        key: to_utc_z(value) if isinstance(value, datetime) else value
        for key, value in row.items()
    }


def status_for(exc: PincorpError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, StorageError):
        return 502
    return 400


def error_response(exc: PincorpError):
    return jsonify({"error": exc.message, "details": exc.details}), status_for(exc)
