"""Duplicate alert suppression within a rule's cooldown period."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from src.alerts.models import AlertRule, AlertInstance
from src.alerts.store import AlertStore

logger = logging.getLogger(__name__)


def dedup_key(configuration_id: str, rule_id: str) -> str:
    return f"{configuration_id}:{rule_id}"


class DeduplicationGuard:
    """Looks up a prior alert for the same configuration and rule.

    A returned alert is the caller's signal to reuse it (same id) instead
    of creating a new one. The caller holds the store lock for the key
    while deciding and saving.
    """

    def __init__(self, store: AlertStore) -> None:
        self.store = store

    def find_duplicate(
        self,
        configuration_id: str,
        rule: AlertRule,
        current_time: datetime,
    ) -> Optional[AlertInstance]:
        if not rule.suppress_duplicates or rule.cooldown_period <= 0:
            return None

        since = current_time - timedelta(minutes=rule.cooldown_period)
        existing = self.store.find_recent_alert(configuration_id, rule.id, since)
        if existing is not None:
            logger.info(
                "Duplicate of alert %s within %d min cooldown (configuration %s, rule %s)",
                existing.id, rule.cooldown_period, configuration_id, rule.id,
            )
        return existing
