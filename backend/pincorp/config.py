# backend/pincorp/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pincorp.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pincorp.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Degraded mode: every write stays in the in-memory collections
    OFFLINE_MODE = _env_flag("OFFLINE_MODE")

    # Stored procedures the backing store exposes. Older deployments may lack
    # some of them; callers then take their client-side fallback path.
    STORE_PROCEDURES = _env_list(
        "STORE_PROCEDURES",
        "adjust_material_stock,adjust_product_stock,get_next_daily_sequence",
    )

    SALE_CODE_PREFIX = os.environ.get("SALE_CODE_PREFIX", "LTN-BH")
    SALE_CODE_ATTEMPTS = int(os.environ.get("SALE_CODE_ATTEMPTS", "3"))
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "Asia/Ho_Chi_Minh")

    # Notification thresholds, percent of available vs total stock
    LOW_STOCK_THRESHOLD = float(os.environ.get("LOW_STOCK_THRESHOLD", "20"))
    CRITICAL_STOCK_THRESHOLD = float(os.environ.get("CRITICAL_STOCK_THRESHOLD", "10"))
    ENABLE_LOW_STOCK_ALERTS = _env_flag("ENABLE_LOW_STOCK_ALERTS", "true")
    ENABLE_DEBT_ALERTS = _env_flag("ENABLE_DEBT_ALERTS", "true")
    ENABLE_PRODUCTION_ALERTS = _env_flag("ENABLE_PRODUCTION_ALERTS", "true")
    NOTIFICATION_SOUND_ENABLED = _env_flag("NOTIFICATION_SOUND_ENABLED", "true")
