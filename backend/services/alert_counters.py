"""Outstanding-failure counters, used to decide when lights may go idle."""

import logging
from datetime import datetime, timezone

from db import get_db
from services.classifier import Intent

logger = logging.getLogger(__name__)

DEFAULT_NAME = "default"


class AlertCounters:
    def outstanding(self, name=DEFAULT_NAME):
        db = get_db()
        try:
            row = db.execute(
                "SELECT failures FROM alert_counters WHERE name = ?", (name,)
            ).fetchone()
            return row["failures"] if row else 0
        finally:
            db.close()

    def record(self, intent, name=DEFAULT_NAME):
        """Update the counter for a classified message.

        Fail increments, pass decrements down to zero; everything else
        leaves it alone.
        Returns the outstanding failure count.
        """
        if intent is Intent.FAIL:
            sql = """INSERT INTO alert_counters (name, failures, updated_at)
                     VALUES (?, 1, ?)
                     ON CONFLICT(name)
                     DO UPDATE SET failures = failures + 1, updated_at = excluded.updated_at"""
        elif intent is Intent.PASS:
            sql = """INSERT INTO alert_counters (name, failures, updated_at)
                     VALUES (?, 0, ?)
                     ON CONFLICT(name)
                     DO UPDATE SET failures = MAX(failures - 1, 0), updated_at = excluded.updated_at"""
        else:
            return self.outstanding(name)

        now = datetime.now(timezone.utc).isoformat()
        db = get_db()
        try:
            db.execute(sql, (name, now))
            db.commit()
            row = db.execute(
                "SELECT failures FROM alert_counters WHERE name = ?", (name,)
            ).fetchone()
        finally:
            db.close()
        logger.debug("Alert counter %s: %d outstanding", name, row["failures"])
        return row["failures"]

    def should_set_idle(self, intent, name=DEFAULT_NAME):
        """A pass with no outstanding failures settles into the idle color."""
        return intent is Intent.PASS and self.outstanding(name) == 0
