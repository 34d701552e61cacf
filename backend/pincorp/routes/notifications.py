# Overview: Flask API routes for notification polling and settings.

# backend/pincorp/routes/notifications.py
"""Notifications API; the presentation layer polls, the core never pushes"""

from flask import Blueprint, jsonify, request

from ..container import get_services

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


@notifications_bp.get("/checks")
def run_checks_route():
    service = get_services().notifications
    return jsonify({
        "low_stock": service.check_low_stock(),
        "debt_overdue": service.check_debt_overdue(),
    }), 200


@notifications_bp.get("/")
def inbox_route():
    service = get_services().notifications
    return jsonify({"notifications": service.all(), "unread": service.unread_count()}), 200


@notifications_bp.post("/")
def add_notification_route():
    data = request.get_json() or {}
    if not data.get("title"):
        return jsonify({"error": "title required"}), 400
    record = get_services().notifications.add(data)
    return jsonify({"notification": record}), 201


@notifications_bp.post("/<notification_id>/read")
def mark_read_route(notification_id: str):
    if not get_services().notifications.mark_read(notification_id):
        return jsonify({"error": "Notification not found"}), 404
    return jsonify({"read": notification_id}), 200


@notifications_bp.post("/read-all")
def mark_all_read_route():
    return jsonify({"marked": get_services().notifications.mark_all_read()}), 200


@notifications_bp.delete("/")
def clear_route():
    get_services().notifications.clear()
    return jsonify({"cleared": True}), 200


@notifications_bp.get("/settings")
def get_settings_route():
    return jsonify({"settings": get_services().notifications.settings.to_dict()}), 200


@notifications_bp.put("/settings")
def update_settings_route():
    data = request.get_json() or {}
    settings = get_services().notifications.update_settings(data)
    return jsonify({"settings": settings.to_dict()}), 200
