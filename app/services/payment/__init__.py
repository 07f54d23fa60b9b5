"""
Payment Gateway Factory

Single entry point for the wallet gateways used to settle bills.

Usage:
    from app.services.payment import get_payment_gateway

    gateway = get_payment_gateway("KHALTI")
    result = await gateway.initiate(bill.id, bill.bill_number, bill.total_amount, restaurant.name)

Environment Switching:
    - ENV_MODE=development → MockPaymentGateway (no API calls)
    - ENV_MODE=staging/production → KhaltiGateway / EsewaGateway
      (sandbox endpoints while PAYMENT_SANDBOX_MODE is true)
"""

import logging
from functools import lru_cache

from app.core.config import get_settings
from app.services.payment.base import BasePaymentGateway, GatewayResult
from app.services.payment.esewa import EsewaGateway
from app.services.payment.khalti import KhaltiGateway
from app.services.payment.mock import MockPaymentGateway

logger = logging.getLogger(__name__)

SUPPORTED_GATEWAYS = ("KHALTI", "ESEWA")


@lru_cache()
def get_payment_gateway(method: str) -> BasePaymentGateway:
    """
    Get the configured gateway for a payment method.

    Instances are cached per method, so the mock keeps track of the
    payments it initiated until the callback arrives.

    Raises:
        ValueError: Unsupported method, or production mode without keys
    """
    method = method.upper()
    if method not in SUPPORTED_GATEWAYS:
        raise ValueError(f"Unsupported payment gateway: {method}")

    settings = get_settings()
    if settings.is_development:
        logger.info(f"Payment Gateway: Using MockPaymentGateway for {method} (development mode)")
        return MockPaymentGateway(method)

    logger.info(f"Payment Gateway: Using {method.title()} ({settings.env_mode.value} mode)")
    if method == "KHALTI":
        return KhaltiGateway()
    return EsewaGateway()


def reset_payment_gateways() -> None:
    """Clear cached gateway instances (tests, config changes)."""
    get_payment_gateway.cache_clear()
    logger.debug("Payment gateway cache cleared")


__all__ = [
    "get_payment_gateway",
    "reset_payment_gateways",
    "SUPPORTED_GATEWAYS",
    "BasePaymentGateway",
    "GatewayResult",
    "MockPaymentGateway",
    "KhaltiGateway",
    "EsewaGateway",
]
