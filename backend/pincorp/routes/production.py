# Overview: Flask API routes for BOMs and production orders; parses input and returns JSON responses.

# backend/pincorp/routes/production.py
"""Production lifecycle API"""

from flask import Blueprint, current_app, jsonify, request

from ..container import get_services
from ..errors import PincorpError
from .common import error_response, serialize

production_bp = Blueprint("production", __name__, url_prefix="/api/production")


@production_bp.get("/boms")
def list_boms_route():
    return jsonify({"boms": serialize(get_services().repos.boms.all())}), 200


@production_bp.post("/boms")
def upsert_bom_route():
    try:
        data = request.get_json() or {}
        bom = get_services().production.upsert_bom(data)
        return jsonify({"bom": serialize(bom)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save BOM")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.delete("/boms/<bom_id>")
def delete_bom_route(bom_id: str):
    try:
        get_services().production.delete_bom(bom_id)
        return jsonify({"deleted": bom_id}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete BOM")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.get("/orders")
def list_orders_route():
    status = request.args.get("status")
    orders = get_services().repos.production_orders
    rows = orders.find(status=status) if status else orders.all()
    return jsonify({"orders": serialize(rows)}), 200


@production_bp.post("/orders")
def create_order_route():
    """
    Create a PENDING order and reserve its materials.

    Body: {"bom_id", "quantity_produced", "additional_costs"?: [{"description", "amount"}], "notes"?}
    """
    try:
        data = request.get_json() or {}
        if not data.get("bom_id"):
            return jsonify({"error": "bom_id required"}), 400
        order = get_services().production.create_order(data)
        return jsonify({"order": serialize(order)}), 201
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create production order")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.post("/orders/<order_id>/status")
def update_status_route(order_id: str):
    try:
        data = request.get_json() or {}
        status = data.get("status")
        if not status:
            return jsonify({"error": "status required"}), 400
        order = get_services().production.update_status(order_id, status)
        return jsonify({"order": serialize(order)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update production order status")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.post("/orders/<order_id>/actual-costs")
def complete_order_route(order_id: str):
    """Record actual costs and return the variance analysis."""
    try:
        data = request.get_json() or {}
        order = get_services().production.complete_order(order_id, data)
        return jsonify({"order": serialize(order), "cost_analysis": order.get("cost_analysis")}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record production costs")
        return jsonify({"error": "Internal server error"}), 500


@production_bp.get("/commitments")
def commitments_route():
    return jsonify({"materials": get_services().commitments.stock_status()}), 200


@production_bp.post("/products/<product_id>/disassemble")
def disassemble_product_route(product_id: str):
    """Body: {"quantity"}; BOM materials for that many units go back to stock."""
    try:
        data = request.get_json() or {}
        if data.get("quantity") is None:
            return jsonify({"error": "quantity required"}), 400
        result = get_services().production.remove_product_and_return_materials(product_id, data["quantity"])
        return jsonify(result), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to disassemble product")
        return jsonify({"error": "Internal server error"}), 500
