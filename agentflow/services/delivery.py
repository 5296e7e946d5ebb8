"""Outbound delivery of emails and webhook responses."""

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from ..core.logging import get_logger

logger = get_logger(__name__)


class DeliveryService(ABC):
    """Sends what email and webhook-response nodes produce."""

    @abstractmethod
    async def send_email(self, to: str, subject: str, body: str) -> None:
        """Send an email; raise on failure."""

    @abstractmethod
    async def deliver_response(self, execution_id: str, body: Any, status_code: int = 200) -> None:
        """Hand a webhook response body back to whoever triggered the run."""


class LoggingDeliveryService(DeliveryService):
    """Default delivery that only logs, keeping the last few deliveries."""

    def __init__(self, history_size: int = 100):
        self.history_size = history_size
        self.emails: List[Dict[str, Any]] = []
        self.responses: List[Dict[str, Any]] = []

    def _remember(self, bucket: List[Dict[str, Any]], item: Dict[str, Any]):
        bucket.append(item)
        if len(bucket) > self.history_size:
            del bucket[0]

    async def send_email(self, to: str, subject: str, body: str) -> None:
        if not to:
            raise ValueError("Email recipient is required")
        logger.info(f"Email to {to}: {subject}")
        self._remember(self.emails, {"to": to, "subject": subject, "body": body})

    async def deliver_response(self, execution_id: str, body: Any, status_code: int = 200) -> None:
        logger.info(f"Webhook response for execution {execution_id} with status {status_code}")
        self._remember(self.responses, {"execution_id": execution_id, "body": body, "status_code": status_code})
