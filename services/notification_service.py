"""Notification sink: fire-and-forget event delivery to the notification service."""
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional

import requests
from loguru import logger

from configurations.config import Config

SCHEDULE_CREATED = "schedule_created"
SCHEDULE_RESCHEDULED = "schedule_rescheduled"
SCHEDULE_CANCELED = "schedule_canceled"
SCHEDULE_ESCALATED = "schedule_escalated"
ROUTE_COMPLETED = "route_completed"


class NotificationService:
    def __init__(self, webhook_url: Optional[str] = None, timeout: float = Config.NOTIFY_TIMEOUT_SECONDS):
        self.webhook_url = webhook_url if webhook_url is not None else Config.NOTIFY_WEBHOOK_URL
        self.timeout = timeout
        self.session = requests.Session()
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="notify") if self.webhook_url else None

        logger.info(f"NotificationService initialized ({'webhook ' + self.webhook_url if self.webhook_url else 'log only'})")

    def notify(self, event: str, payload: Dict[str, Any]) -> None:
        """Queue an event; delivery failures are logged and never raised."""
        if self._executor is None:
            logger.info(f"Notification {event}: {payload}")
            return
        try:
            self._executor.submit(self._deliver, event, payload)
        except RuntimeError as e:
            logger.error(f"Notification {event} dropped: {e}")

    def _deliver(self, event: str, payload: Dict[str, Any]) -> None:
        try:
            response = self.session.post(
                self.webhook_url,
                json={'event': event, 'payload': payload},
                timeout=self.timeout,
            )
            if response.status_code >= 400:
                logger.error(f"Notification {event} rejected with status {response.status_code}: {response.text[:200]}")
        except requests.RequestException as e:
            logger.error(f"Notification {event} failed: {e}")

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
