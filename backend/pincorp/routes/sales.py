# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/pincorp/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, current_app, jsonify, request

from ..container import get_services
from ..errors import PincorpError
from .common import error_response, serialize

sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("/")
def list_sales_route():
    sales = get_services().repos.sales.all()
    sales.sort(key=lambda s: s["date"], reverse=True)
    return jsonify({"sales": serialize(sales)}), 200


@sales_bp.post("/")
def create_sale_route():
    """
    Record a sale.

    Body: {"sale": {...items, total, customer, payment_method...}, "cash_entry"?: {"amount", "notes"?, ...}}
    """
    try:
        data = request.get_json() or {}
        sale_data = data.get("sale")
        if not sale_data:
            return jsonify({"error": "sale required"}), 400
        sale = get_services().sales.handle_sale(sale_data, data.get("cash_entry"))
        return jsonify({"sale": serialize(sale)}), 201
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<sale_id>")
def get_sale_route(sale_id: str):
    services = get_services()
    sale = services.repos.sales.get(sale_id)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({
        "sale": serialize(sale),
        "cash_transactions": serialize(services.ledger.for_sale(sale_id)),
    }), 200


@sales_bp.put("/<sale_id>")
def update_sale_route(sale_id: str):
    try:
        data = request.get_json() or {}
        sale = get_services().sales.update_sale({**data, "id": sale_id})
        return jsonify({"sale": serialize(sale)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<sale_id>")
def delete_sale_route(sale_id: str):
    try:
        result = get_services().sales.delete_sale(sale_id)
        return jsonify(result), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500
