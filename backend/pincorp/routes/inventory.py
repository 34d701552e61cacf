# Overview: Flask API routes for materials and products; parses input and returns JSON responses.

# backend/pincorp/routes/inventory.py
"""Material / product master data and manual stock moves"""

from flask import Blueprint, current_app, jsonify, request

from ..container import get_services
from ..errors import PincorpError
from .common import error_response, serialize

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")


@inventory_bp.get("/materials")
def list_materials_route():
    services = get_services()
    committed = services.commitments.committed_quantities()
    rows = []
    for material in services.repos.materials.all():
        reserved = committed.get(material["id"], 0.0)
        rows.append({**material, "available": max(0.0, (material.get("stock") or 0) - reserved)})
    return jsonify({"materials": serialize(rows)}), 200


@inventory_bp.post("/materials")
def create_material_route():
    try:
        data = request.get_json() or {}
        material = get_services().inventory.create_material(data)
        return jsonify({"material": serialize(material)}), 201
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create material")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.put("/materials/<material_id>")
def update_material_route(material_id: str):
    try:
        data = request.get_json() or {}
        material = get_services().inventory.update_material(material_id, data)
        return jsonify({"material": serialize(material)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update material")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.delete("/materials/<material_id>")
def delete_material_route(material_id: str):
    try:
        get_services().inventory.delete_material(material_id)
        return jsonify({"deleted": material_id}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete material")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/materials/<material_id>/adjust")
def adjust_material_route(material_id: str):
    """Goods receipt (positive delta) or correction (negative delta)."""
    try:
        data = request.get_json() or {}
        if data.get("delta") is None:
            return jsonify({"error": "delta required"}), 400
        material = get_services().inventory.adjust_stock(
            "material", material_id, data["delta"], reason=data.get("reason")
        )
        return jsonify({"material": serialize(material)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust material stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/products")
def list_products_route():
    return jsonify({"products": serialize(get_services().repos.products.all())}), 200


@inventory_bp.post("/products")
def create_product_route():
    try:
        data = request.get_json() or {}
        product = get_services().inventory.create_product(data)
        return jsonify({"product": serialize(product)}), 201
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.put("/products/<product_id>")
def update_product_route(product_id: str):
    try:
        data = request.get_json() or {}
        product = get_services().inventory.update_product(product_id, data)
        return jsonify({"product": serialize(product)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.delete("/products/<product_id>")
def delete_product_route(product_id: str):
    try:
        get_services().inventory.delete_product(product_id)
        return jsonify({"deleted": product_id}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete product")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.post("/products/<product_id>/adjust")
def adjust_product_route(product_id: str):
    try:
        data = request.get_json() or {}
        if data.get("delta") is None:
            return jsonify({"error": "delta required"}), 400
        product = get_services().inventory.adjust_stock(
            "product", product_id, data["delta"], reason=data.get("reason")
        )
        return jsonify({"product": serialize(product)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust product stock")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<any(materials, products):collection>/<item_id>/history")
def stock_history_route(collection: str, item_id: str):
    """Stock movements of one material or product, newest first."""
    try:
        item_type = "material" if collection == "materials" else "product"
        rows = get_services().inventory.stock_history(item_type, item_id)
        return jsonify({"history": serialize(rows)}), 200
    except PincorpError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load stock history")
        return jsonify({"error": "Internal server error"}), 500
