"""
Payment Gateway Abstract Base Class

Defines the interface contract for the Nepali wallet gateways. The mock
and the real Khalti / eSewa implementations all return ``GatewayResult``,
so the billing routes behave identically whichever one is active.

Flow:
    1. ``initiate`` for a bill  -> payment URL (Khalti) or signed form (eSewa)
    2. guest pays on the gateway's page
    3. gateway calls back       -> ``verify`` the callback data
    4. a verified result is recorded against the bill as a payment
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class GatewayResult:
    """
    Standardized result from a gateway call.

    Attributes:
        success: Whether the call (initiation or verification) succeeded
        gateway: KHALTI or ESEWA
        transaction_id: Gateway reference (Khalti pidx / transaction id, eSewa transaction code)
        initiation_id: Id issued at initiation (Khalti pidx, eSewa transaction_uuid)
        bill_id: Bill the payment belongs to, as echoed by the gateway
        amount: Amount in rupees
        payment_url: Where to send the guest (Khalti)
        form_url: Form action URL (eSewa)
        form_fields: Signed form fields to POST to ``form_url`` (eSewa)
        message: Human-readable outcome
        sandbox: Whether sandbox endpoints were used
    """
    success: bool
    gateway: str
    transaction_id: Optional[str] = None
    initiation_id: Optional[str] = None
    bill_id: Optional[int] = None
    amount: Optional[float] = None
    payment_url: Optional[str] = None
    form_url: Optional[str] = None
    form_fields: dict = field(default_factory=dict)
    message: str = ""
    sandbox: bool = True

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "gateway": self.gateway,
            "transaction_id": self.transaction_id,
            "initiation_id": self.initiation_id,
            "bill_id": self.bill_id,
            "amount": self.amount,
            "payment_url": self.payment_url,
            "form_url": self.form_url,
            "form_fields": self.form_fields,
            "message": self.message,
            "sandbox": self.sandbox,
        }


class BasePaymentGateway(ABC):
    """
    Abstract base class for payment gateways.

    Example:
        >>> gateway = get_payment_gateway("KHALTI")
        >>> result = await gateway.initiate(bill_id=7, bill_number="BILL-000007",
        ...                                 amount=1130.0, restaurant_name="Himalayan Kitchen")
        >>> result.payment_url
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the gateway name (e.g., "mock", "khalti", "esewa")."""
        pass

    @property
    @abstractmethod
    def gateway(self) -> str:
        """PaymentMethod value recorded for payments through this gateway."""
        pass

    @abstractmethod
    async def initiate(
        self,
        bill_id: int,
        bill_number: str,
        amount: float,
        restaurant_name: str,
        customer_name: Optional[str] = None,
        customer_phone: Optional[str] = None,
    ) -> GatewayResult:
        """
        Start a payment for a bill.

        Args:
            amount: Amount in rupees (implementations convert units as needed)
        """
        pass

    @abstractmethod
    async def verify(self, data: dict) -> GatewayResult:
        """
        Verify a gateway callback.

        Args:
            data: Query parameters the gateway sent back

        Returns:
            GatewayResult with ``success`` only for a completed, authentic payment
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass
