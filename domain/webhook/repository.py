"""
Webhook delivery repository.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import WebhookDelivery, WebhookDeliveryStats


class WebhookDeliveryRepository(ABC):

    @abstractmethod
    async def add(self, delivery: WebhookDelivery) -> WebhookDelivery:
        """Insert one delivery record"""

    @abstractmethod
    async def list_recent(
        self,
        *,
        event_type: Optional[str] = None,
        status: Optional[str] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[WebhookDelivery]:
        """Newest deliveries first"""

    @abstractmethod
    async def stats(self, since: datetime) -> WebhookDeliveryStats:
        """Counts per status and average processing time of deliveries since ``since``"""
