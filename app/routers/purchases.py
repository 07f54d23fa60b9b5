"""
Purchases: vendors, vendor bills, goods receipt and vendor payments.
"""

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import current_restaurant, staff_name
from app.models import Purchase, PurchasePaymentStatus, PurchaseStatus, Restaurant
from app.schemas import (
    PurchaseCreate,
    PurchaseItemResponse,
    PurchasePaymentCreate,
    PurchaseReceiveRequest,
    PurchaseResponse,
    StockMovementResponse,
    VendorCreate,
    VendorResponse,
    VendorStatusUpdate,
)
from app.services.purchases import PurchaseLine, PurchaseService

router = APIRouter(prefix="/api", tags=["Purchases"])


async def _detail(service: PurchaseService, purchase: Purchase) -> dict[str, Any]:
    items = await service.items(purchase.id)
    return {
        "purchase": PurchaseResponse.model_validate(purchase).model_dump(mode="json"),
        "items": [PurchaseItemResponse.model_validate(i).model_dump(mode="json") for i in items],
        "balance": round(purchase.total_amount - purchase.paid_amount, 2),
    }


# =============================================================================
# VENDORS
# =============================================================================

@router.post("/vendors", response_model=VendorResponse, status_code=201, tags=["Vendors"])
async def create_vendor(
    payload: VendorCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> VendorResponse:
    vendor = await PurchaseService(db, restaurant.id).create_vendor(**payload.model_dump())
    await db.commit()
    return VendorResponse.model_validate(vendor)


@router.get("/vendors", response_model=list[VendorResponse], tags=["Vendors"])
async def list_vendors(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[VendorResponse]:
    vendors = await PurchaseService(db, restaurant.id).list_vendors()
    return [VendorResponse.model_validate(v) for v in vendors]


@router.patch("/vendors/{vendor_id}/status", response_model=VendorResponse, tags=["Vendors"])
async def set_vendor_status(
    vendor_id: int,
    payload: VendorStatusUpdate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> VendorResponse:
    vendor = await PurchaseService(db, restaurant.id).set_vendor_status(vendor_id, payload.status)
    await db.commit()
    return VendorResponse.model_validate(vendor)


# =============================================================================
# PURCHASES
# =============================================================================

@router.post("/purchases", status_code=201, summary="Record Vendor Bill")
async def create_purchase(
    payload: PurchaseCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Lines are priced net of discount; VAT at 13% applies to vatable lines."""
    service = PurchaseService(db, restaurant.id)
    purchase = await service.create_purchase(
        payload.vendor_id,
        [PurchaseLine(**line.model_dump()) for line in payload.items],
        purchase_date=payload.purchase_date,
        vendor_bill_number=payload.vendor_bill_number,
        notes=payload.notes,
        created_by=staff,
    )
    response = await _detail(service, purchase)
    await db.commit()
    return response


@router.get("/purchases", response_model=list[PurchaseResponse])
async def list_purchases(
    status: Optional[PurchaseStatus] = Query(None),
    payment_status: Optional[PurchasePaymentStatus] = Query(None),
    vendor_id: Optional[int] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[PurchaseResponse]:
    purchases = await PurchaseService(db, restaurant.id).list_purchases(
        status, payment_status, vendor_id, from_date, to_date
    )
    return [PurchaseResponse.model_validate(p) for p in purchases]


@router.get("/purchases/{purchase_id}")
async def get_purchase(
    purchase_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = PurchaseService(db, restaurant.id)
    return await _detail(service, await service.get(purchase_id))


@router.post("/purchases/{purchase_id}/approve", response_model=PurchaseResponse)
async def approve_purchase(
    purchase_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> PurchaseResponse:
    purchase = await PurchaseService(db, restaurant.id).approve(purchase_id)
    await db.commit()
    return PurchaseResponse.model_validate(purchase)


@router.post("/purchases/{purchase_id}/receive", summary="Receive Goods")
async def receive_purchase(
    purchase_id: int,
    payload: PurchaseReceiveRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Stock lines come into the godown and the purchase voucher is posted."""
    result = await PurchaseService(db, restaurant.id).receive(
        purchase_id, godown_id=payload.godown_id, received_by=staff
    )
    response = {
        "purchase": PurchaseResponse.model_validate(result["purchase"]).model_dump(mode="json"),
        "movements": [
            StockMovementResponse.model_validate(m).model_dump(mode="json") for m in result["movements"]
        ],
        "voucher_id": result["voucher_id"],
    }
    await db.commit()
    return response


@router.post("/purchases/{purchase_id}/cancel", response_model=PurchaseResponse)
async def cancel_purchase(
    purchase_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> PurchaseResponse:
    purchase = await PurchaseService(db, restaurant.id).cancel(purchase_id)
    await db.commit()
    return PurchaseResponse.model_validate(purchase)


@router.post("/purchases/{purchase_id}/payments", summary="Pay Vendor")
async def pay_vendor(
    purchase_id: int,
    payload: PurchasePaymentCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await PurchaseService(db, restaurant.id).record_payment(
        purchase_id, payload.amount, method=payload.method, paid_by=staff
    )
    response = {
        "purchase": PurchaseResponse.model_validate(result["purchase"]).model_dump(mode="json"),
        "balance": result["balance"],
        "voucher_id": result["voucher_id"],
    }
    await db.commit()
    return response
