"""
Payment gateway capability used by the retry processor.

The gateway's own retry and dispute handling is out of our hands; we only ask
it to charge a stored customer once and read back the outcome.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import aiohttp
import structlog

from scoopify.core.config import settings
from scoopify.core.exceptions import ConfigurationError, ExternalServiceError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaymentReference:
    """What the gateway needs to charge a failed payment again."""
    retry_id: int
    payment_id: int
    customer_reference: str
    amount_cents: int
    currency: str = "usd"

    @property
    def idempotency_key(self) -> str:
        """Stable per retry so a repeated call cannot double charge."""
        return f"retry-{self.retry_id}"


@dataclass(frozen=True)
class GatewayResult:
    """Outcome of a charge attempt."""
    success: bool
    transaction_id: Optional[str] = None
    reason_code: Optional[str] = None

    @classmethod
    def approved(cls, transaction_id: str) -> "GatewayResult":
        return cls(success=True, transaction_id=transaction_id)

    @classmethod
    def declined(cls, reason_code: str) -> "GatewayResult":
        return cls(success=False, reason_code=reason_code)


class PaymentGateway(ABC):
    """Charges a stored payment method."""

    @abstractmethod
    async def charge_retry(self, reference: PaymentReference) -> GatewayResult:
        """Charge the customer once.

        Returns a declined result for card/bank declines and raises
        ExternalServiceError when the gateway could not be reached.
        """


class StripeGateway(PaymentGateway):
    """Stripe PaymentIntents over the REST API."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        api_base: Optional[str] = None,
        timeout_seconds: Optional[float] = None
    ):
        self.secret_key = secret_key or settings.stripe_secret_key
        self.api_base = (api_base or settings.stripe_api_base).rstrip("/")
        self.timeout = aiohttp.ClientTimeout(
            total=timeout_seconds or settings.gateway_timeout_seconds
        )

    async def charge_retry(self, reference: PaymentReference) -> GatewayResult:
        if not self.secret_key:
            raise ConfigurationError("Stripe secret key is not configured")

        form = {
            "amount": str(reference.amount_cents),
            "currency": reference.currency,
            "customer": reference.customer_reference,
            "confirm": "true",
            "off_session": "true",
            "metadata[payment_id]": str(reference.payment_id),
            "metadata[retry_id]": str(reference.retry_id),
        }
        headers = {
            "Authorization": f"Bearer {self.secret_key}",
            "Idempotency-Key": reference.idempotency_key,
        }

        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    f"{self.api_base}/payment_intents", data=form, headers=headers
                ) as response:
                    data = await response.json(content_type=None) or {}
                    status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ExternalServiceError(
                "Stripe request failed",
                {"retry_id": reference.retry_id, "error": str(e)}
            )

        if status == 200 and data.get("status") == "succeeded":
            logger.info(
                "Stripe charge succeeded",
                retry_id=reference.retry_id,
                payment_intent=data.get("id")
            )
            return GatewayResult.approved(data["id"])

        if status in (200, 402):
            # 402 is a card/bank decline; a 200 that did not succeed needs customer action
            error = data.get("error") or {}
            reason = (
                error.get("decline_code")
                or error.get("code")
                or data.get("status")
                or "declined"
            )
            logger.info("Stripe charge declined", retry_id=reference.retry_id, reason=reason)
            return GatewayResult.declined(reason)

        raise ExternalServiceError(
            "Stripe returned an unexpected response",
            {"retry_id": reference.retry_id, "status": status}
        )


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Get the process-wide payment gateway."""
    global _gateway
    if _gateway is None:
        _gateway = StripeGateway()
    return _gateway


def set_payment_gateway(gateway: Optional[PaymentGateway]) -> None:
    global _gateway
    _gateway = gateway
