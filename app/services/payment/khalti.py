"""
Khalti ePayment (KPG-2) Gateway

    POST {base}/epayment/initiate/   -> pidx + payment_url
    POST {base}/epayment/lookup/     -> status of a pidx

Requests carry ``Authorization: Key <secret>``. Amounts go over the wire
in paisa.

Sandbox:    https://a.khalti.com/api/v2
Production: https://khalti.com/api/v2
"""

import logging
from typing import Optional

import httpx

from app.core.config import get_settings
from app.services.payment.base import BasePaymentGateway, GatewayResult

logger = logging.getLogger(__name__)

SANDBOX_URL = "https://a.khalti.com/api/v2"
PRODUCTION_URL = "https://khalti.com/api/v2"


class KhaltiGateway(BasePaymentGateway):

    def __init__(self, secret_key: Optional[str] = None, sandbox: Optional[bool] = None):
        settings = get_settings()
        self.secret_key = secret_key or settings.khalti_secret_key
        if not self.secret_key:
            raise ValueError(
                "KHALTI_SECRET_KEY is required for real Khalti payments. "
                "Set it in your .env file or environment variables."
            )
        self.sandbox = settings.payment_sandbox_mode if sandbox is None else sandbox
        self.base_url = SANDBOX_URL if self.sandbox else PRODUCTION_URL
        self.app_base_url = settings.app_base_url.rstrip("/")
        logger.info(f"KhaltiGateway initialized ({'sandbox' if self.sandbox else 'live'})")

    @property
    def provider_name(self) -> str:
        return "khalti"

    @property
    def gateway(self) -> str:
        return "KHALTI"

    def _headers(self) -> dict:
        return {"Authorization": f"Key {self.secret_key}", "Content-Type": "application/json"}

    async def initiate(
        self,
        bill_id: int,
        bill_number: str,
        amount: float,
        restaurant_name: str,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> GatewayResult:
        payload = {
            "return_url": f"{self.app_base_url}/api/payments/khalti/callback",
            "website_url": self.app_base_url,
            "amount": int(round(amount * 100)),
            "purchase_order_id": str(bill_id),
            "purchase_order_name": f"Bill #{bill_number} - {restaurant_name}",
            "customer_info": {"name": customer_name or "Guest", "phone": customer_phone or ""},
        }
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    f"{self.base_url}/epayment/initiate/", json=payload, headers=self._headers()
                )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Khalti: Initiation failed for bill {bill_id} - {e}")
            return GatewayResult(success=False, gateway=self.gateway, bill_id=bill_id,
                                 message="Failed to initiate Khalti payment", sandbox=self.sandbox)

        if data.get("payment_url"):
            logger.info(f"Khalti: Payment initiated - {data.get('pidx')} - Rs. {amount:.2f}")
            return GatewayResult(
                success=True,
                gateway=self.gateway,
                transaction_id=data.get("pidx"),
                initiation_id=data.get("pidx"),
                bill_id=bill_id,
                amount=amount,
                payment_url=data["payment_url"],
                message="Payment initiated",
                sandbox=self.sandbox,
            )

        logger.warning(f"Khalti: Initiation rejected for bill {bill_id} - {data}")
        return GatewayResult(success=False, gateway=self.gateway, bill_id=bill_id,
                             message=data.get("detail") or "Failed to initiate Khalti payment",
                             sandbox=self.sandbox)

    async def verify(self, data: dict) -> GatewayResult:
        pidx = data.get("pidx")
        if not pidx:
            return GatewayResult(success=False, gateway=self.gateway, message="Missing pidx",
                                 sandbox=self.sandbox)
        try:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(
                    f"{self.base_url}/epayment/lookup/", json={"pidx": pidx}, headers=self._headers()
                )
            lookup = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Khalti: Lookup failed for {pidx} - {e}")
            return GatewayResult(success=False, gateway=self.gateway, transaction_id=pidx,
                                 message="Failed to verify Khalti payment", sandbox=self.sandbox)

        if lookup.get("status") != "Completed":
            return GatewayResult(success=False, gateway=self.gateway, transaction_id=pidx,
                                 message=f"Payment status: {lookup.get('status')}", sandbox=self.sandbox)

        # The lookup does not echo purchase_order_id; the caller resolves the
        # bill from the pidx recorded at initiation.
        bill_id = lookup.get("purchase_order_id")
        return GatewayResult(
            success=True,
            gateway=self.gateway,
            transaction_id=lookup.get("transaction_id") or pidx,
            initiation_id=pidx,
            bill_id=int(bill_id) if bill_id else None,
            amount=round(float(lookup.get("total_amount", 0)) / 100, 2),
            message="Payment verified successfully",
            sandbox=self.sandbox,
        )

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(self.base_url)
            return response.status_code < 500
        except httpx.HTTPError as e:
            logger.error(f"Khalti: Health check failed - {e}")
            return False
