"""Alert and notification history store.

The evaluation and delivery services never keep history in process-wide
state; they read and write it through an injected AlertStore.
"""

import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from src.alerts.models import AlertInstance, NotificationLog


class AlertStore(ABC):
    """Persistence collaborator for deduplication and rate limiting."""

    @abstractmethod
    def find_recent_alert(
        self,
        configuration_id: str,
        rule_id: str,
        since: datetime,
    ) -> Optional[AlertInstance]:
        """Most recent alert for configuration+rule triggered at or after `since`."""

    @abstractmethod
    def recent_alerts(
        self,
        configuration_id: str,
        since: datetime,
    ) -> list[AlertInstance]:
        """Alerts for a configuration triggered at or after `since`, newest first."""

    @abstractmethod
    def save_alert(self, alert: AlertInstance) -> None:
        """Persist a newly created alert."""

    @abstractmethod
    def count_alerts(self, recipient_key: str, since: datetime) -> int:
        """Number of distinct alerts sent to a recipient at or after `since`.

        Independent of channel: one alert sent by email and SMS counts once.
        """

    @abstractmethod
    def record_notification(
        self,
        recipient_key: str,
        entry: NotificationLog,
        configuration_id: str = "",
        rule_id: str = "",
    ) -> None:
        """Record a delivery attempt for frequency limiting."""

    @abstractmethod
    def last_delivery_for(
        self,
        configuration_id: str,
        rule_id: str,
        exclude_alert_id: Optional[str] = None,
    ) -> Optional[datetime]:
        """When an alert of configuration+rule was last successfully delivered."""

    @abstractmethod
    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        """Serialize read-decide-write sequences for one key."""


class InMemoryAlertStore(AlertStore):
    """Thread-safe in-memory store, for tests and single-process use."""

    def __init__(self) -> None:
        self._alerts: list[AlertInstance] = []
        self._deliveries: dict[str, list[NotificationLog]] = defaultdict(list)
        self._pair_deliveries: dict[tuple[str, str], list[NotificationLog]] = defaultdict(list)
        self._mutex = threading.Lock()
        self._key_locks: dict[str, threading.Lock] = {}

    def find_recent_alert(self, configuration_id, rule_id, since):
        with self._mutex:
            matches = [
                a for a in self._alerts
                if a.configuration_id == configuration_id
                and a.rule_id == rule_id
                and a.triggered_at >= since
            ]
        if not matches:
            return None
        return max(matches, key=lambda a: a.triggered_at)

    def recent_alerts(self, configuration_id, since):
        with self._mutex:
            matches = [
                a for a in self._alerts
                if a.configuration_id == configuration_id and a.triggered_at >= since
            ]
        return sorted(matches, key=lambda a: a.triggered_at, reverse=True)

    def save_alert(self, alert):
        with self._mutex:
            self._alerts.append(alert)

    def get_alert(self, alert_id: str) -> Optional[AlertInstance]:
        with self._mutex:
            for alert in self._alerts:
                if alert.id == alert_id:
                    return alert
        return None

    def count_alerts(self, recipient_key, since):
        with self._mutex:
            return len({
                entry.alert_id for entry in self._deliveries.get(recipient_key, [])
                if entry.is_sent and entry.sent_at >= since
            })

    def record_notification(self, recipient_key, entry, configuration_id="", rule_id=""):
        with self._mutex:
            self._deliveries[recipient_key].append(entry)
            if configuration_id:
                self._pair_deliveries[(configuration_id, rule_id)].append(entry)

    def last_delivery_for(self, configuration_id, rule_id, exclude_alert_id=None):
        with self._mutex:
            sent = [
                e.sent_at for e in self._pair_deliveries.get((configuration_id, rule_id), [])
                if e.is_sent and e.alert_id != exclude_alert_id
            ]
        return max(sent) if sent else None

    @contextmanager
    def lock(self, key):
        with self._mutex:
            key_lock = self._key_locks.setdefault(key, threading.Lock())
        with key_lock:
            yield
