"""Ports to external collaborators"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict

from domain.enums import ResourceKind

# Intent states reported by retrieve_status
INTENT_REQUIRES_CAPTURE = "requires_capture"
INTENT_SUCCEEDED = "succeeded"
INTENT_CANCELED = "canceled"


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current timezone-aware time"""
        pass


class CacheInvalidator(ABC):
    @abstractmethod
    def invalidate(self, kind: ResourceKind, identifier: str) -> None:
        pass


class PaymentGateway(ABC):
    """Payment provider seen from the booking core"""

    @abstractmethod
    async def authorize(self, amount_cents: int, metadata: Dict[str, Any]) -> str:
        """Place a hold (no capture) and return the intent id"""
        pass

    @abstractmethod
    async def capture(self, intent_id: str, amount_cents: int) -> None:
        pass

    @abstractmethod
    async def cancel(self, intent_id: str) -> None:
        """Release a hold"""
        pass

    @abstractmethod
    async def retrieve_status(self, intent_id: str) -> str:
        pass
