# Overview: Outcome callback injected into every service (title, message, type).

from __future__ import annotations

import logging
from typing import Callable

NOTIFY_TYPES = ("success", "warn", "error", "info")

Notify = Callable[..., None]

_notify_logger = logging.getLogger("pincorp.notify")

_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def log_notify(title: str, message: str = "", type: str = "info") -> None:
    """Default notifier: writes the outcome to the pincorp.notify logger."""
    _notify_logger.log(_LEVELS.get(type, logging.INFO), "%s: %s", title, message)


class RecordingNotifier:
    """Keeps every call; used by tests and the system status endpoint."""

    def __init__(self):
        self.calls: list[dict] = []

    def __call__(self, title: str, message: str = "", type: str = "info") -> None:
        self.calls.append({"title": title, "message": message, "type": type})

    def of_type(self, type: str) -> list[dict]:
        return [call for call in self.calls if call["type"] == type]
