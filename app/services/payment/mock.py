"""
Mock Payment Gateway Implementation

Simulates Khalti / eSewa without making real API calls. Used in
development mode (ENV_MODE=development) so the full wallet flow
(initiate -> callback -> bill settled) works locally and in tests.

Behavior:
    - Remembers every initiated payment (transaction id -> bill, amount)
    - ``verify`` succeeds for known transaction ids unless the callback
      reports a non-completed status
    - Optional ``failure_rate`` simulates gateway declines on initiation
"""

import logging
import random
import uuid
from typing import Optional

from app.core.config import get_settings
from app.services.payment.base import BasePaymentGateway, GatewayResult

logger = logging.getLogger(__name__)

COMPLETED_STATUSES = ("Completed", "COMPLETE")


class MockPaymentGateway(BasePaymentGateway):
    """
    Mock implementation of a wallet gateway.

    Attributes:
        failure_rate: Probability of a simulated initiation failure (0.0-1.0)
        pending: Initiated payments keyed by transaction id

    Example:
        >>> gateway = MockPaymentGateway("KHALTI")
        >>> result = await gateway.initiate(1, "BILL-000001", 500.0, "Himalayan Kitchen")
        >>> verified = await gateway.verify({"pidx": result.transaction_id})
        >>> verified.amount
        500.0
    """

    def __init__(self, gateway: str = "KHALTI", failure_rate: float = 0.0):
        self._gateway = gateway.upper()
        self.failure_rate = failure_rate
        self.pending: dict[str, dict] = {}
        self.app_base_url = get_settings().app_base_url.rstrip("/")
        logger.info(f"MockPaymentGateway initialized for {self._gateway} (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    @property
    def gateway(self) -> str:
        return self._gateway

    def _should_fail(self) -> bool:
        return self.failure_rate > 0 and random.random() < self.failure_rate

    async def initiate(
        self,
        bill_id: int,
        bill_number: str,
        amount: float,
        restaurant_name: str,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> GatewayResult:
        if amount <= 0:
            return GatewayResult(success=False, gateway=self.gateway, bill_id=bill_id,
                                 message="Amount must be greater than 0")
        if self._should_fail():
            logger.debug(f"Mock: {self.gateway} initiation declined for bill {bill_id}")
            return GatewayResult(success=False, gateway=self.gateway, bill_id=bill_id,
                                 message=f"Failed to initiate {self.gateway.title()} payment")

        transaction_id = f"mock_{self.gateway.lower()}_{uuid.uuid4().hex[:16]}"
        self.pending[transaction_id] = {"bill_id": bill_id, "amount": round(amount, 2)}
        logger.info(f"Mock: {self.gateway} payment initiated - {transaction_id} - Rs. {amount:.2f}")

        result = GatewayResult(
            success=True,
            gateway=self.gateway,
            transaction_id=transaction_id,
            initiation_id=transaction_id,
            bill_id=bill_id,
            amount=round(amount, 2),
            message="Payment initiated",
        )
        if self.gateway == "ESEWA":
            result.form_url = f"{self.app_base_url}/mock/esewa"
            result.form_fields = {"transaction_uuid": transaction_id, "total_amount": str(amount)}
        else:
            result.payment_url = f"{self.app_base_url}/mock/khalti?pidx={transaction_id}"
        return result

    async def verify(self, data: dict) -> GatewayResult:
        transaction_id = data.get("pidx") or data.get("transaction_uuid")
        known = self.pending.get(transaction_id or "")
        if not known:
            return GatewayResult(success=False, gateway=self.gateway, transaction_id=transaction_id,
                                 message="Unknown transaction")

        status = data.get("status")
        if status and status not in COMPLETED_STATUSES:
            return GatewayResult(success=False, gateway=self.gateway, transaction_id=transaction_id,
                                 bill_id=known["bill_id"], message=f"Payment status: {status}")

        self.pending.pop(transaction_id)
        return GatewayResult(
            success=True,
            gateway=self.gateway,
            transaction_id=transaction_id,
            initiation_id=transaction_id,
            bill_id=known["bill_id"],
            amount=known["amount"],
            message="Payment verified successfully",
        )

    async def health_check(self) -> bool:
        return True
