"""Payment processor collaborator.

The job service only moves a job to ``deposit_paid`` / ``final_paid`` after
the processor reports a successful charge. Two backends:
- mock (development / testing): every charge succeeds
- http: POSTs the charge to ``settings.payment_gateway_url``

Set PAYMENT_BACKEND=http and configure PAYMENT_GATEWAY_* for production.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import httpx

from app.config import settings
from app.errors import MarketplaceError

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    succeeded: bool
    reference: str | None = None
    message: str | None = None


class PaymentGatewayError(MarketplaceError):
    status_code_default = 502
    kind = "payment_gateway"


class PaymentProcessor(Protocol):
    async def charge(
        self, job_id: uuid.UUID, amount: Decimal, method: str, details: dict | None = None
    ) -> PaymentResult: ...

    async def refund(self, job_id: uuid.UUID, reference: str | None, amount: Decimal) -> None: ...


class MockPaymentProcessor:
    """Development processor: approves every charge."""

    async def charge(
        self, job_id: uuid.UUID, amount: Decimal, method: str, details: dict | None = None
    ) -> PaymentResult:
        logger.info("MOCK charge job=%s amount=%s method=%s", job_id, amount, method)
        return PaymentResult(succeeded=True, reference=f"mock_{uuid.uuid4().hex[:16]}")

    async def refund(self, job_id: uuid.UUID, reference: str | None, amount: Decimal) -> None:
        logger.info("MOCK refund job=%s amount=%s reference=%s", job_id, amount, reference)


class HttpPaymentProcessor:
    """Charges through an external payment gateway over HTTPS."""

    async def _post(self, endpoint: str, payload: dict) -> httpx.Response:
        async with httpx.AsyncClient(timeout=settings.payment_timeout_seconds) as client:
            try:
                return await client.post(
                    f"{settings.payment_gateway_url.rstrip('/')}/{endpoint}",
                    headers={"Authorization": f"Bearer {settings.payment_gateway_api_key}"},
                    json=payload,
                )
            except httpx.TimeoutException:
                logger.error("Payment gateway timed out on %s", endpoint)
                raise PaymentGatewayError("Payment gateway timed out")
            except httpx.RequestError as e:
                logger.error("Payment gateway request failed: %s", e)
                raise PaymentGatewayError("Failed to reach payment gateway")

    async def charge(
        self, job_id: uuid.UUID, amount: Decimal, method: str, details: dict | None = None
    ) -> PaymentResult:
        resp = await self._post("charges", {
            "reference": str(job_id),
            "amount": str(amount),
            "payment_method": method,
            "details": details or {},
        })
        if resp.status_code in (400, 402):
            try:
                message = resp.json().get("message")
            except ValueError:
                message = None
            return PaymentResult(succeeded=False, message=message)
        if resp.status_code >= 300:
            logger.error("Payment gateway returned %d: %s", resp.status_code, resp.text[:500])
            raise PaymentGatewayError(f"Payment gateway error (status {resp.status_code})")

        data = resp.json()
        return PaymentResult(
            succeeded=data.get("status") == "succeeded",
            reference=data.get("id"),
            message=data.get("message"),
        )

    async def refund(self, job_id: uuid.UUID, reference: str | None, amount: Decimal) -> None:
        resp = await self._post("refunds", {
            "reference": str(job_id),
            "charge_id": reference,
            "amount": str(amount),
        })
        if resp.status_code >= 300:
            logger.error(
                "Refund for job %s (charge %s) failed with %d", job_id, reference, resp.status_code
            )
            raise PaymentGatewayError("Refund failed")


def get_payment_processor() -> PaymentProcessor:
    if settings.payment_backend == "http":
        return HttpPaymentProcessor()
    return MockPaymentProcessor()
