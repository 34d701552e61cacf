# Overview: Flask API routes for the cash ledger; parses input and returns JSON responses.

# backend/pincorp/routes/ledger.py
"""Cash transactions API"""

from flask import Blueprint, current_app, jsonify, request

from ..container import get_services
from ..errors import PincorpError
from .common import error_response, serialize

ledger_bp = Blueprint("ledger", __name__, url_prefix="/api/cash-transactions")


@ledger_bp.get("/")
def list_cash_transactions_route():
    services = get_services()
    filters = {key: request.args[key] for key in ("sale_id", "work_order_id", "type") if request.args.get(key)}
    rows = services.repos.cash_transactions.find(**filters)
    rows.sort(key=lambda tx: tx["date"], reverse=True)
    return jsonify({"cash_transactions": serialize(rows), "summary": services.ledger.balance()}), 200


@ledger_bp.post("/")
def add_cash_transaction_route():
    try:
        data = request.get_json() or {}
        if data.get("amount") is None:
            return jsonify({"error": "amount required"}), 400
        tx = get_services().ledger.add_cash_transaction(data)
        return jsonify({"cash_transaction": serialize(tx)}), 201
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add cash transaction")
        return jsonify({"error": "Internal server error"}), 500


@ledger_bp.delete("/")
def delete_cash_transactions_route():
    """Delete by ?id= / ?sale_id= / ?work_order_id= (rows matching any filter)."""
    try:
        removed = get_services().ledger.delete_cash_transactions(
            id=request.args.get("id"),
            sale_id=request.args.get("sale_id"),
            work_order_id=request.args.get("work_order_id"),
        )
        return jsonify({"removed": removed}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete cash transactions")
        return jsonify({"error": "Internal server error"}), 500
