# Overview: Daily human-readable document codes (PREFIX-YYYYMMDD-####).

from __future__ import annotations

import logging
import re
from datetime import date

from ..errors import StorageError
from ..store import is_missing_procedure
from ..time_utils import business_today

logger = logging.getLogger(__name__)

SEQUENCE_PROCEDURE = "get_next_daily_sequence"
CODE_SUFFIX_PATTERN = re.compile(r"-(\d{4})$")


def format_code(prefix: str, day: date, number: int, pad: int = 4) -> str:
    return f"{prefix}-{day.strftime('%Y%m%d')}-{number:0{pad}d}"


class SequenceService:
    """
    Allocates the next code for a prefix and business day.

    With the procedure available the counter row is bumped atomically in the
    store. Without it, today's existing sale codes are scanned and the highest
    suffix + 1 is used; that can collide under contention, which the sale
    insert retry absorbs through the unique constraint on sales.code.
    """

    def __init__(self, sales, timezone: str = "Asia/Ho_Chi_Minh"):
        self.sales = sales
        self.timezone = timezone

    def today(self) -> date:
        return business_today(self.timezone)

    def next_code(self, prefix: str, day: date | None = None) -> str:
        day = day or self.today()
        if not self.sales.offline:
            try:
                number = self.sales.gateway.call(SEQUENCE_PROCEDURE, prefix=prefix, day=day.strftime("%Y%m%d"))
                return format_code(prefix, day, int(number))
            except StorageError as exc:
                if not is_missing_procedure(exc):
                    raise
                logger.info("Procedure %s unavailable, scanning existing codes", SEQUENCE_PROCEDURE)
                self.sales.refresh()
        return format_code(prefix, day, self._scan_next(prefix, day))

    def _scan_next(self, prefix: str, day: date) -> int:
        stem = f"{prefix}-{day.strftime('%Y%m%d')}-"
        highest = 0
        for sale in self.sales.all():
            code = sale.get("code") or ""
            if not code.startswith(stem):
                continue
            match = CODE_SUFFIX_PATTERN.search(code)
            if match:
                highest = max(highest, int(match.group(1)))
        return highest + 1
