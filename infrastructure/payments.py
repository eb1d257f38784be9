"""In-memory payment provider"""
import logging
from typing import Any, Dict
from uuid import uuid4

from domain.exceptions import PaymentProviderError
from domain.ports import INTENT_CANCELED, INTENT_REQUIRES_CAPTURE, INTENT_SUCCEEDED, PaymentGateway

logger = logging.getLogger(__name__)


class InMemoryPaymentGateway(PaymentGateway):
    """Keeps payment intents in a dict; used by the default app and tests"""

    def __init__(self, instant_success: bool = False):
        self.intents: Dict[str, Dict[str, Any]] = {}
        # Settle authorizations synchronously, like a card that needs no action
        self.instant_success = instant_success

    async def authorize(self, amount_cents: int, metadata: Dict[str, Any]) -> str:
        if amount_cents < 0:
            raise PaymentProviderError("Amount must not be negative")

        intent_id = f"pi_{uuid4().hex[:24]}"
        self.intents[intent_id] = {
            "amount": amount_cents,
            "captured": 0,
            "status": INTENT_SUCCEEDED if self.instant_success else INTENT_REQUIRES_CAPTURE,
            "metadata": dict(metadata),
        }
        logger.info("Authorized %s for %d", intent_id, amount_cents)
        return intent_id

    async def capture(self, intent_id: str, amount_cents: int) -> None:
        intent = self._get(intent_id)
        if intent["status"] == INTENT_CANCELED:
            raise PaymentProviderError(f"Payment intent {intent_id} was canceled")
        if amount_cents > intent["amount"]:
            raise PaymentProviderError(
                f"Cannot capture {amount_cents} on intent {intent_id} authorized for {intent['amount']}"
            )
        intent["captured"] = amount_cents
        intent["status"] = INTENT_SUCCEEDED
        logger.info("Captured %d on %s", amount_cents, intent_id)

    async def cancel(self, intent_id: str) -> None:
        intent = self._get(intent_id)
        intent["status"] = INTENT_CANCELED

    async def retrieve_status(self, intent_id: str) -> str:
        return self._get(intent_id)["status"]

    def _get(self, intent_id: str) -> Dict[str, Any]:
        intent = self.intents.get(intent_id)
        if intent is None:
            raise PaymentProviderError(f"Unknown payment intent {intent_id}")
        return intent
