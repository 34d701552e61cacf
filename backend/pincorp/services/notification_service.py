# Overview: Low-stock and overdue-debt checks, plus the in-process notification inbox.

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime

from ..time_utils import parse_iso_datetime, to_utc_z, utcnow
from .notifier import log_notify

logger = logging.getLogger(__name__)

PRODUCT_LOW_QTY = 5
PRODUCT_CRITICAL_QTY = 2
OVERDUE_CRITICAL_DAYS = 7
INBOX_LIMIT = 100


@dataclass
class NotificationSettings:
    low_stock_threshold: float = 20
    critical_stock_threshold: float = 10
    enable_low_stock_alerts: bool = True
    enable_debt_alerts: bool = True
    enable_production_alerts: bool = True
    sound_enabled: bool = True

    @classmethod
    def from_config(cls, config) -> "NotificationSettings":
        return cls(
            low_stock_threshold=float(config.get("LOW_STOCK_THRESHOLD", 20)),
            critical_stock_threshold=float(config.get("CRITICAL_STOCK_THRESHOLD", 10)),
            enable_low_stock_alerts=bool(config.get("ENABLE_LOW_STOCK_ALERTS", True)),
            enable_debt_alerts=bool(config.get("ENABLE_DEBT_ALERTS", True)),
            enable_production_alerts=bool(config.get("ENABLE_PRODUCTION_ALERTS", True)),
            sound_enabled=bool(config.get("NOTIFICATION_SOUND_ENABLED", True)),
        )

    def merged(self, changes: dict) -> "NotificationSettings":
        known = {f.name for f in fields(self)}
        return NotificationSettings(**{**asdict(self), **{k: v for k, v in changes.items() if k in known}})

    def to_dict(self) -> dict:
        return asdict(self)


def _notification(id, type, severity, title, message, action_url, data, now):
    return {
        "id": id,
        "type": type,
        "severity": severity,
        "title": title,
        "message": message,
        "action_url": action_url,
        "data": data,
        "timestamp": to_utc_z(now),
        "read": False,
    }


def _qty(value) -> str:
    value = float(value or 0)
    return str(int(value)) if value.is_integer() else f"{value:g}"


def check_low_stock(materials, products, settings: NotificationSettings, now: datetime | None = None) -> list[dict]:
    """
    Materials: available (stock - committed) as a percentage of stock,
    crossed against the critical/low thresholds. Products: fixed unit counts.
    Items with no stock are skipped.
    """
    if not settings.enable_low_stock_alerts:
        return []
    now = now or utcnow()
    out = []
    for material in materials:
        stock = float(material.get("stock") or 0)
        if stock <= 0:
            continue
        available = stock - float(material.get("committed_quantity") or 0)
        percentage = available / stock * 100
        if percentage <= settings.critical_stock_threshold:
            severity = "critical"
            message = (f"Tồn kho NGUY HIỂM: {material.get('name')} ({material.get('sku')}) "
                       f"chỉ còn {_qty(available)} {material.get('unit') or ''}").strip()
        elif percentage <= settings.low_stock_threshold:
            severity = "high"
            message = (f"Tồn kho thấp: {material.get('name')} ({material.get('sku')}) "
                       f"còn {_qty(available)} {material.get('unit') or ''}").strip()
        else:
            continue
        out.append(_notification(
            f"low-stock-{material['id']}", "low_stock", severity, "Cảnh báo tồn kho", message, "/materials",
            {"material_id": material["id"], "available": available, "percentage": percentage}, now,
        ))

    for product in products:
        qty = float(product.get("stock") or 0)
        if qty <= 0 or qty > PRODUCT_LOW_QTY:
            continue
        out.append(_notification(
            f"low-stock-product-{product['id']}",
            "low_stock",
            "critical" if qty <= PRODUCT_CRITICAL_QTY else "high",
            "Cảnh báo tồn kho thành phẩm",
            f"Sản phẩm {product.get('name')} ({product.get('sku')}) chỉ còn {_qty(qty)} cái",
            "/products",
            {"product_id": product["id"], "stock": qty},
            now,
        ))
    return out


def _days_overdue(due, now: datetime) -> int:
    if isinstance(due, str):
        due = parse_iso_datetime(due)
    if due is None:
        return 0
    return int((now - due).total_seconds() // 86400)


def check_debt_overdue(sales, repair_orders, settings: NotificationSettings, now: datetime | None = None) -> list[dict]:
    """Unpaid sales past due_date and unpaid repairs past their payment/due date."""
    if not settings.enable_debt_alerts:
        return []
    now = now or utcnow()
    out = []
    for sale in sales:
        if sale.get("payment_status") not in ("partial", "debt") or not sale.get("due_date"):
            continue
        days = _days_overdue(sale["due_date"], now)
        if days <= 0:
            continue
        customer = (sale.get("customer") or {}).get("name") or ""
        out.append(_notification(
            f"debt-overdue-{sale['id']}",
            "debt_overdue",
            "critical" if days > OVERDUE_CRITICAL_DAYS else "high",
            "Công nợ quá hạn",
            f"Đơn hàng {sale.get('code') or sale['id']} của {customer} đã quá hạn {days} ngày",
            "/receivables",
            {"sale_id": sale["id"], "days_overdue": days},
            now,
        ))

    for order in repair_orders:
        due = order.get("payment_date") or order.get("due_date")
        if order.get("payment_status") not in ("partial", "unpaid") or not due:
            continue
        days = _days_overdue(due, now)
        if days <= 0:
            continue
        out.append(_notification(
            f"repair-debt-overdue-{order['id']}",
            "debt_overdue",
            "critical" if days > OVERDUE_CRITICAL_DAYS else "high",
            "Công nợ sửa chữa quá hạn",
            f"Phiếu sửa chữa {order['id']} của {order.get('customer_name')} đã quá hạn {days} ngày",
            "/repairs",
            {"repair_id": order["id"], "days_overdue": days},
            now,
        ))
    return out


class NotificationService:
    """
    Polling surface for the presentation layer: runs the checks over the
    current collections and keeps a bounded inbox of pushed notifications.
    """

    def __init__(self, repos, settings: NotificationSettings, notify=log_notify):
        self.repos = repos
        self.settings = settings
        self.notify = notify
        self._inbox: list[dict] = []

    def check_low_stock(self, now: datetime | None = None) -> list[dict]:
        return check_low_stock(self.repos.materials.all(), self.repos.products.all(), self.settings, now)

    def check_debt_overdue(self, now: datetime | None = None) -> list[dict]:
        return check_debt_overdue(self.repos.sales.all(), self.repos.repair_orders.all(), self.settings, now)

    def check_all(self, now: datetime | None = None) -> list[dict]:
        return self.check_low_stock(now) + self.check_debt_overdue(now)

    def update_settings(self, changes: dict) -> NotificationSettings:
        self.settings = self.settings.merged(changes)
        return self.settings

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def add(self, notification: dict) -> dict:
        now = utcnow()
        record = {
            "id": notification.get("id") or f"notif-{now.strftime('%Y%m%d%H%M%S%f')}-{len(self._inbox)}",
            "type": notification.get("type") or "info",
            "severity": notification.get("severity") or "low",
            "title": notification.get("title") or "",
            "message": notification.get("message") or "",
            "action_url": notification.get("action_url"),
            "data": notification.get("data"),
            "timestamp": to_utc_z(now),
            "read": False,
        }
        self._inbox.insert(0, record)
        del self._inbox[INBOX_LIMIT:]
        if record["severity"] in ("critical", "high"):
            self.notify(record["title"], record["message"], "error" if record["severity"] == "critical" else "warn")
        return record

    def all(self) -> list[dict]:
        return [dict(n) for n in self._inbox]

    def unread_count(self) -> int:
        return sum(1 for n in self._inbox if not n["read"])

    def mark_read(self, notification_id: str) -> bool:
        for n in self._inbox:
            if n["id"] == notification_id:
                n["read"] = True
                return True
        return False

    def mark_all_read(self) -> int:
        count = 0
        for n in self._inbox:
            if not n["read"]:
                n["read"] = True
                count += 1
        return count

    def clear(self) -> None:
        self._inbox.clear()
