"""
eSewa ePay v2 Gateway

eSewa payments are a signed HTML form POST followed by a redirect back
with a base64 JSON ``data`` parameter. Both directions are signed with
HMAC-SHA256 (base64) over ``field=value`` pairs joined by commas:

    total_amount=1130.0,transaction_uuid=7-1718000000,product_code=EPAYTEST
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Optional

from app.core.config import get_settings
from app.services.payment.base import BasePaymentGateway, GatewayResult

logger = logging.getLogger(__name__)

SANDBOX_FORM_URL = "https://rc-epay.esewa.com.np/api/epay/main/v2/form"
PRODUCTION_FORM_URL = "https://epay.esewa.com.np/api/epay/main/v2/form"

SIGNED_FIELD_NAMES = "total_amount,transaction_uuid,product_code"


def sign(message: str, secret_key: str) -> str:
    digest = hmac.new(secret_key.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def signature_message(fields: dict, signed_field_names: str) -> str:
    return ",".join(f"{name}={fields[name]}" for name in signed_field_names.split(","))


def decode_callback(encoded: str) -> Optional[dict]:
    """Decode eSewa's base64 ``data`` parameter, or None when malformed."""
    try:
        return json.loads(base64.b64decode(encoded).decode("utf-8"))
    except ValueError:  # binascii.Error, UnicodeDecodeError and JSONDecodeError included
        return None


def transaction_uuid(bill_id: int) -> str:
    """eSewa rejects a reused uuid, so each attempt carries a timestamp."""
    return f"{bill_id}-{int(time.time())}"


class EsewaGateway(BasePaymentGateway):

    def __init__(
        self,
        secret_key: Optional[str] = None,
        product_code: Optional[str] = None,
        sandbox: Optional[bool] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.esewa_secret_key
        if not self.secret_key:
            raise ValueError(
                "ESEWA_SECRET_KEY is required for real eSewa payments. "
                "Set it in your .env file or environment variables."
            )
        self.product_code = product_code or settings.esewa_product_code
        self.sandbox = settings.payment_sandbox_mode if sandbox is None else sandbox
        self.form_url = SANDBOX_FORM_URL if self.sandbox else PRODUCTION_FORM_URL
        self.app_base_url = settings.app_base_url.rstrip("/")

    @property
    def provider_name(self) -> str:
        return "esewa"

    @property
    def gateway(self) -> str:
        return "ESEWA"

    async def initiate(
        self,
        bill_id: int,
        bill_number: str,
        amount: float,
        restaurant_name: str,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> GatewayResult:
        fields = {
            "amount": str(amount),
            "tax_amount": "0",
            "total_amount": str(amount),
            "transaction_uuid": transaction_uuid(bill_id),
            "product_code": self.product_code,
            "product_service_charge": "0",
            "product_delivery_charge": "0",
            "success_url": f"{self.app_base_url}/api/payments/esewa/callback",
            "failure_url": f"{self.app_base_url}/api/payments/esewa/failure?bill_id={bill_id}",
            "signed_field_names": SIGNED_FIELD_NAMES,
        }
        fields["signature"] = sign(signature_message(fields, SIGNED_FIELD_NAMES), self.secret_key)
        return GatewayResult(
            success=True,
            gateway=self.gateway,
            transaction_id=fields["transaction_uuid"],
            initiation_id=fields["transaction_uuid"],
            bill_id=bill_id,
            amount=amount,
            form_url=self.form_url,
            form_fields=fields,
            message="Submit the form fields to eSewa",
            sandbox=self.sandbox,
        )

    async def verify(self, data: dict) -> GatewayResult:
        decoded = decode_callback(data.get("data") or "")
        if not isinstance(decoded, dict):
            return GatewayResult(success=False, gateway=self.gateway,
                                 message="Malformed eSewa response", sandbox=self.sandbox)

        signed_field_names = decoded.get("signed_field_names")
        signature = decoded.get("signature")
        if not isinstance(signed_field_names, str) or not isinstance(signature, str):
            return GatewayResult(success=False, gateway=self.gateway,
                                 message="Malformed eSewa response", sandbox=self.sandbox)

        try:
            expected = sign(signature_message(decoded, signed_field_names), self.secret_key)
        except KeyError as e:
            return GatewayResult(success=False, gateway=self.gateway,
                                 message=f"Missing field in eSewa response: {e}", sandbox=self.sandbox)

        if not hmac.compare_digest(expected.encode(), signature.encode()):
            logger.warning("eSewa: Invalid callback signature")
            return GatewayResult(success=False, gateway=self.gateway,
                                 message="Invalid signature - payment verification failed",
                                 sandbox=self.sandbox)

        if decoded.get("status") != "COMPLETE":
            return GatewayResult(success=False, gateway=self.gateway,
                                 message=f"Payment status: {decoded.get('status')}", sandbox=self.sandbox)

        try:
            amount = round(float(str(decoded.get("total_amount", "0")).replace(",", "")), 2)
        except ValueError:
            return GatewayResult(success=False, gateway=self.gateway,
                                 message="Malformed eSewa response", sandbox=self.sandbox)

        uuid = str(decoded.get("transaction_uuid", ""))
        bill_id = uuid.split("-")[0]
        return GatewayResult(
            success=True,
            gateway=self.gateway,
            transaction_id=decoded.get("transaction_code"),
            initiation_id=uuid or None,
            bill_id=int(bill_id) if bill_id.isdigit() else None,
            amount=amount,
            message="Payment verified successfully",
            sandbox=self.sandbox,
        )

    async def health_check(self) -> bool:
        return bool(self.secret_key)
