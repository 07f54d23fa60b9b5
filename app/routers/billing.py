"""
Bills: creation from orders, edits, finalization and payments.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import current_restaurant, staff_name
from app.models import Bill, BillStatus, Restaurant
from app.schemas import (
    BillCreate,
    BillDetailResponse,
    BillDiscountRequest,
    BillResponse,
    ComplimentaryRequest,
    ErrorResponse,
    InvoiceResponse,
    ItemDiscountRequest,
    OrderItemResponse,
    PaymentCreate,
    PaymentResponse,
    ReasonRequest,
)
from app.services.billing import BillingService

router = APIRouter(prefix="/api/bills", tags=["Billing"])


def serialize_payment_result(result: dict) -> dict[str, Any]:
    """JSON shape of ``BillingService.record_payment``."""
    invoice = result.get("invoice")
    return {
        "bill": BillResponse.model_validate(result["bill"]).model_dump(mode="json"),
        "payments": [PaymentResponse.model_validate(p).model_dump(mode="json") for p in result["payments"]],
        "change_amount": result.get("change_amount"),
        "loyalty": result.get("loyalty"),
        "invoice": InvoiceResponse.model_validate(invoice).model_dump(mode="json") if invoice else None,
    }


async def _detail(service: BillingService, bill: Bill) -> BillDetailResponse:
    detail = await service.detail(bill.id)
    return BillDetailResponse(
        bill=BillResponse.model_validate(detail["bill"]),
        items=[OrderItemResponse.model_validate(i) for i in detail["items"]],
        payments=[PaymentResponse.model_validate(p) for p in detail["payments"]],
        balance_due=detail["balance_due"],
    )


@router.post(
    "",
    response_model=BillDetailResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
    summary="Create Bill",
)
async def create_bill(
    payload: BillCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> BillDetailResponse:
    """
    Bill the unbilled orders of a session, a table or a single order.

    VAT and service charge follow the restaurant's settings.
    """
    service = BillingService(db, restaurant)
    bill = await service.create_bill(
        session_id=payload.session_id,
        table_id=payload.table_id,
        order_id=payload.order_id,
        created_by=staff,
    )
    response = await _detail(service, bill)
    await db.commit()
    return response


@router.get("", response_model=list[BillResponse])
async def list_bills(
    status: Optional[BillStatus] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[BillResponse]:
    bills = await BillingService(db, restaurant).list_bills(status)
    return [BillResponse.model_validate(b) for b in bills]


@router.get("/{bill_id}", response_model=BillDetailResponse)
async def get_bill(
    bill_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> BillDetailResponse:
    service = BillingService(db, restaurant)
    return await _detail(service, await service.get(bill_id))


@router.post("/{bill_id}/complimentary", response_model=BillDetailResponse)
async def mark_complimentary(
    bill_id: int,
    payload: ComplimentaryRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> BillDetailResponse:
    service = BillingService(db, restaurant)
    bill = await service.mark_complimentary(bill_id, payload.item_id, payload.reason, edited_by=staff)
    response = await _detail(service, bill)
    await db.commit()
    return response


@router.post("/{bill_id}/item-discount", response_model=BillDetailResponse)
async def apply_item_discount(
    bill_id: int,
    payload: ItemDiscountRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> BillDetailResponse:
    service = BillingService(db, restaurant)
    bill = await service.apply_item_discount(bill_id, payload.item_id, payload.amount, edited_by=staff)
    response = await _detail(service, bill)
    await db.commit()
    return response


@router.post("/{bill_id}/discount", response_model=BillDetailResponse)
async def apply_bill_discount(
    bill_id: int,
    payload: BillDiscountRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> BillDetailResponse:
    service = BillingService(db, restaurant)
    bill = await service.apply_bill_discount(bill_id, payload.amount, payload.reason, edited_by=staff)
    response = await _detail(service, bill)
    await db.commit()
    return response


@router.post("/{bill_id}/finalize", response_model=BillResponse)
async def finalize_bill(
    bill_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> BillResponse:
    bill = await BillingService(db, restaurant).finalize(bill_id, finalized_by=staff)
    await db.commit()
    return BillResponse.model_validate(bill)


@router.post("/{bill_id}/revert", response_model=BillResponse, summary="Reopen Finalized Bill")
async def revert_bill(
    bill_id: int,
    payload: ReasonRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> BillResponse:
    bill = await BillingService(db, restaurant).revert(bill_id, payload.reason, reverted_by=staff)
    await db.commit()
    return BillResponse.model_validate(bill)


@router.post("/{bill_id}/cancel", response_model=BillResponse)
async def cancel_bill(
    bill_id: int,
    payload: ReasonRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> BillResponse:
    bill = await BillingService(db, restaurant).cancel(bill_id, payload.reason, cancelled_by=staff)
    await db.commit()
    return BillResponse.model_validate(bill)


@router.post("/{bill_id}/payments", summary="Record Payment")
async def record_payment(
    bill_id: int,
    payload: PaymentCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """
    Take a payment against a bill.

    Full settlement ends the session, awards loyalty points, posts the
    sales voucher and issues the IRD invoice.
    """
    result = await BillingService(db, restaurant).record_payment(
        bill_id,
        amount=payload.amount,
        method=payload.method,
        cash_received=payload.cash_received,
        reference=payload.reference,
        points_to_redeem=payload.points_to_redeem,
        customer_id=payload.customer_id,
        buyer_name=payload.buyer_name,
        buyer_pan=payload.buyer_pan,
        received_by=staff,
    )
    response = serialize_payment_result(result)
    await db.commit()
    return response
