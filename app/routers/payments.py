"""
Wallet payments (Khalti, eSewa): initiation and gateway callbacks.

Callbacks come from the gateway (via the guest's browser), so they carry
no tenant header. The bill, and through it the restaurant, is resolved
from the payment recorded at initiation, looked up by the id the
gateway verified. Nothing the browser adds to the URL picks the bill.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError, ValidationError
from app.database import get_db
from app.dependencies import current_restaurant
from app.models import BillStatus, GatewayPayment, GatewayPaymentStatus, PaymentMethod, Restaurant
from app.routers.billing import serialize_payment_result
from app.schemas import GatewayInitiateRequest, GatewayPaymentResponse
from app.services.billing import BillingService
from app.services.payment import get_payment_gateway
from app.services.restaurants import get_restaurant

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Payments"])


@router.post("/bills/{bill_id}/gateway", summary="Initiate Wallet Payment")
async def initiate_gateway_payment(
    bill_id: int,
    payload: GatewayInitiateRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """
    Start a Khalti or eSewa payment for the bill's outstanding balance.

    Khalti answers with a ``payment_url``; eSewa with a signed form
    (``form_url`` + ``form_fields``) for the guest's browser to POST.
    """
    service = BillingService(db, restaurant)
    bill = await service.get(bill_id)
    if bill.status in (BillStatus.PAID, BillStatus.CANCELLED):
        raise ValidationError(f"Cannot start a payment for a {bill.status.value.lower()} bill")

    outstanding = round(bill.total_amount - bill.paid_amount, 2)
    gateway = get_payment_gateway(payload.gateway)
    result = await gateway.initiate(
        bill.id,
        bill.bill_number,
        outstanding,
        restaurant.name,
        customer_name=payload.customer_name,
        customer_phone=payload.customer_phone,
    )
    if not result.success or not result.initiation_id:
        raise ValidationError(result.message or "Payment initiation failed")

    await service.record_gateway_initiation(bill, PaymentMethod(payload.gateway), result.initiation_id, outstanding)
    await db.commit()
    return result.to_dict()


@router.get("/payments/refunds-due", response_model=list[GatewayPaymentResponse], summary="Wallet Refunds Due")
async def list_refunds_due(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
):
    """Wallet money received for bills that were already settled, or above the balance."""
    return await BillingService(db, restaurant).refunds_due()


async def _settle_verified(db: AsyncSession, method: PaymentMethod, data: dict) -> dict[str, Any]:
    gateway = get_payment_gateway(method.value)
    result = await gateway.verify(data)
    if not result.success:
        logger.warning(f"💳 {method.value} callback not verified: {result.message}")
        return {"success": False, "gateway": method.value, "message": result.message}

    found = await db.execute(
        select(GatewayPayment).where(
            GatewayPayment.method == method, GatewayPayment.initiation_id == result.initiation_id
        )
    )
    attempt = found.scalar_one_or_none()
    if not attempt:
        logger.warning(f"💳 {method.value} callback for unknown payment {result.initiation_id}")
        raise NotFoundError("Payment not found")

    if attempt.status != GatewayPaymentStatus.INITIATED:
        return {"success": True, "gateway": method.value, "bill_id": attempt.bill_id,
                "status": attempt.status.value, "message": "Payment already recorded"}

    restaurant = await get_restaurant(db, attempt.restaurant_id)
    settled = await BillingService(db, restaurant).settle_gateway_payment(attempt, result)
    response = serialize_payment_result(settled)
    await db.commit()

    logger.info(f"💳 {method.value} payment {result.transaction_id} for bill {attempt.bill_id}: {settled['status']}")
    return {
        "success": True,
        "gateway": method.value,
        "bill_id": attempt.bill_id,
        "status": settled["status"],
        "refund_amount": settled["refund_amount"],
        **response,
    }


@router.get("/payments/khalti/callback", summary="Khalti Return URL")
async def khalti_callback(request: Request, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """Khalti redirects here with ``pidx`` and ``status``; the pidx is looked up with Khalti."""
    return await _settle_verified(db, PaymentMethod.KHALTI, dict(request.query_params))


@router.get("/payments/esewa/callback", summary="eSewa Success URL")
async def esewa_callback(request: Request, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """eSewa redirects here with a base64 ``data`` payload signed with the merchant secret."""
    return await _settle_verified(db, PaymentMethod.ESEWA, dict(request.query_params))


@router.get("/payments/esewa/failure", summary="eSewa Failure URL")
async def esewa_failure(bill_id: int) -> dict[str, Any]:
    logger.warning(f"💳 eSewa payment failed or was cancelled for bill {bill_id}")
    return {"success": False, "gateway": "ESEWA", "bill_id": bill_id,
            "message": "Payment was not completed"}
