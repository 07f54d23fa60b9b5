"""
Loyalty program: customers, points and RFM segmentation.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import current_restaurant
from app.models import Restaurant
from app.schemas import (
    CustomerCreate,
    CustomerResponse,
    PointsTransactionResponse,
    RedeemRequest,
)
from app.services.loyalty import (
    LoyaltyService,
    calculate_max_redeemable,
    get_loyalty_settings,
    next_milestone,
    points_to_currency,
)

router = APIRouter(prefix="/api/loyalty", tags=["Loyalty"])


@router.get("/settings")
async def loyalty_settings(restaurant: Restaurant = Depends(current_restaurant)) -> dict[str, Any]:
    return get_loyalty_settings(restaurant).to_dict()


@router.post("/customers", response_model=CustomerResponse, summary="Find or Create Customer")
async def find_or_create_customer(
    payload: CustomerCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> CustomerResponse:
    """Customers are keyed by phone within a restaurant."""
    customer = await LoyaltyService(db, restaurant).find_or_create_customer(
        payload.phone, payload.name, payload.email, payload.date_of_birth
    )
    await db.commit()
    return CustomerResponse.model_validate(customer)


@router.get("/customers/{customer_id}")
async def get_customer(
    customer_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = LoyaltyService(db, restaurant)
    customer = await service.get_customer(customer_id)
    return {
        "customer": CustomerResponse.model_validate(customer).model_dump(mode="json"),
        "points_value": points_to_currency(customer.points_balance, service.settings),
        "next_milestone": next_milestone(customer.total_visits, service.settings),
    }


@router.get("/customers/{customer_id}/transactions", response_model=list[PointsTransactionResponse])
async def points_history(
    customer_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[PointsTransactionResponse]:
    transactions = await LoyaltyService(db, restaurant).transactions(customer_id)
    return [PointsTransactionResponse.model_validate(t) for t in transactions]


@router.get("/customers/{customer_id}/expiring")
async def expiring_points(
    customer_id: int,
    within_days: int = Query(30, ge=1, le=365),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    batches = await LoyaltyService(db, restaurant).expiring_points(customer_id, within_days)
    return {"batches": batches, "total_points": sum(b["points"] for b in batches)}


@router.post("/customers/{customer_id}/redeem-preview", summary="Check Redemption")
async def redeem_preview(
    customer_id: int,
    payload: RedeemRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """
    How many points may be spent on a bill of this amount, without
    spending them. Actual redemption happens with the bill payment.
    """
    service = LoyaltyService(db, restaurant)
    customer = await service.get_customer(customer_id)
    max_points = calculate_max_redeemable(customer.points_balance, payload.bill_amount, service.settings)
    allowed = (
        service.settings.enabled
        and payload.points >= service.settings.min_redeem
        and payload.points <= max_points
    )
    return {
        "requested_points": payload.points,
        "max_redeemable": max_points,
        "allowed": allowed,
        "value": points_to_currency(payload.points if allowed else 0, service.settings),
        "min_redeem": service.settings.min_redeem,
    }


@router.post("/customers/{customer_id}/birthday-bonus")
async def birthday_bonus(
    customer_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await LoyaltyService(db, restaurant).award_birthday_bonus(customer_id)
    await db.commit()
    return result


@router.post("/expire-points", summary="Expire Old Points")
async def expire_points(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await LoyaltyService(db, restaurant).process_expired_points()
    await db.commit()
    return result


@router.post("/expire-inactive", summary="Expire Points of Inactive Customers")
async def expire_inactive(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await LoyaltyService(db, restaurant).process_inactivity_expiry()
    await db.commit()
    return result


@router.get("/rfm", summary="RFM Segmentation")
async def rfm_analysis(
    segment: Optional[str] = Query(None, examples=["CHAMPIONS", "AT_RISK"]),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await LoyaltyService(db, restaurant).rfm_analysis(segment=segment)
