# Overview: Wires repositories and services for one app process.

from __future__ import annotations

import logging

from flask import current_app

from .journal import Journal
from .repositories import Repositories
from .services.commitment_service import CommitmentTracker
from .services.inventory_service import InventoryService
from .services.ledger_service import LedgerService
from .services.notification_service import NotificationService, NotificationSettings
from .services.notifier import log_notify
from .services.production_service import ProductionService
from .services.repair_service import RepairService
from .services.sales_service import SalesService
from .services.sequence_service import SequenceService
from .services.stock_service import StockLedger
from .store import StoreGateway

logger = logging.getLogger(__name__)

EXTENSION_KEY = "pincorp.services"


class Services:
    """Every service shares the same repositories; none reaches into another's table directly."""

    def __init__(self, config, *, session=None, notify=None, offline: bool | None = None):
        if offline is None:
            offline = bool(config.get("OFFLINE_MODE"))
        self.offline = offline
        self.notify = notify or log_notify

        self.gateway = None if offline else StoreGateway(session, config.get("STORE_PROCEDURES", ()))
        self.repos = Repositories(self.gateway)
        self.journal = Journal(self.repos.write_batches, self.repos.by_table())

        self.stock = StockLedger(self.repos.materials, self.repos.products, self.repos.stock_history)
        self.commitments = CommitmentTracker(self.repos.materials, self.repos.production_orders)
        self.ledger = LedgerService(self.repos.cash_transactions, notify=self.notify)
        self.sequences = SequenceService(self.repos.sales, config.get("BUSINESS_TIMEZONE", "Asia/Ho_Chi_Minh"))
        self.inventory = InventoryService(self.repos, self.stock, notify=self.notify)
        self.production = ProductionService(
            self.repos, self.stock, self.commitments, self.journal, notify=self.notify
        )
        self.sales = SalesService(
            self.repos, self.stock, self.sequences, self.ledger, self.journal,
            code_prefix=config.get("SALE_CODE_PREFIX", "LTN-BH"),
            code_attempts=int(config.get("SALE_CODE_ATTEMPTS", 3)),
            notify=self.notify,
        )
        self.repairs = RepairService(self.repos, self.stock, self.ledger, self.journal, notify=self.notify)
        self.notifications = NotificationService(
            self.repos, NotificationSettings.from_config(config), notify=self.notify
        )

    def refresh_all(self) -> dict[str, int]:
        counts = self.repos.refresh_all()
        logger.info("Collections refreshed: %s", counts)
        return counts


def init_services(app, *, notify=None, offline: bool | None = None) -> Services:
    from .extensions import db

    services = Services(app.config, session=db.session, notify=notify, offline=offline)
    app.extensions[EXTENSION_KEY] = services
    return services


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
