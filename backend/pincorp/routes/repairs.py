# Overview: Flask API routes for repair orders; parses input and returns JSON responses.

# backend/pincorp/routes/repairs.py
"""Repair order API"""

from flask import Blueprint, current_app, jsonify, request

from ..container import get_services
from ..errors import PincorpError
from .common import error_response, serialize

repairs_bp = Blueprint("repairs", __name__, url_prefix="/api/repairs")


@repairs_bp.get("/")
def list_repairs_route():
    orders = get_services().repos.repair_orders
    status = request.args.get("status")
    rows = orders.find(status=status) if status else orders.all()
    return jsonify({"repairs": serialize(rows)}), 200


@repairs_bp.get("/<order_id>")
def get_repair_route(order_id: str):
    services = get_services()
    order = services.repos.repair_orders.get(order_id)
    if not order:
        return jsonify({"error": "Repair order not found"}), 404
    return jsonify({
        "repair": serialize(order),
        "cash_transactions": serialize(services.ledger.for_work_order(order_id)),
    }), 200


@repairs_bp.post("/")
def create_repair_route():
    try:
        data = request.get_json() or {}
        order = get_services().repairs.save_repair_order(data)
        return jsonify({"repair": serialize(order)}), 201
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create repair order")
        return jsonify({"error": "Internal server error"}), 500


@repairs_bp.put("/<order_id>")
def update_repair_route(order_id: str):
    """Save changes; moving to RETURNED takes the listed materials off stock once."""
    try:
        data = request.get_json() or {}
        services = get_services()
        if services.repos.repair_orders.get(order_id) is None:
            return jsonify({"error": "Repair order not found"}), 404
        order = services.repairs.save_repair_order({**data, "id": order_id})
        return jsonify({"repair": serialize(order)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update repair order")
        return jsonify({"error": "Internal server error"}), 500


@repairs_bp.delete("/<order_id>")
def delete_repair_route(order_id: str):
    try:
        result = get_services().repairs.delete_repair_order(order_id)
        return jsonify(result), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete repair order")
        return jsonify({"error": "Internal server error"}), 500
