"""
Guest endpoints, scoped by the table's QR code.

Guests never see the table OTP: the waiter hands it over in person and
the guest enters it to be seated.
"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.database import get_db
from app.models import Restaurant, RestaurantTable, TableSession
from app.schemas import (
    AssistanceRequest,
    GuestOrderCreate,
    GuestTableResponse,
    OrderDetailResponse,
    OrderItemResponse,
    OrderResponse,
    OtpVerifyRequest,
    SessionResponse,
)
from app.services.orders import OrderService
from app.services.restaurants import get_restaurant
from app.services.sessions import SessionService, get_table_by_qr

router = APIRouter(prefix="/api/guest/{qr_code}", tags=["Guest"])


async def _table_and_restaurant(db: AsyncSession, qr_code: str) -> tuple[RestaurantTable, Restaurant]:
    table = await get_table_by_qr(db, qr_code)
    return table, await get_restaurant(db, table.restaurant_id)


async def _active_session(service: SessionService, table: RestaurantTable) -> TableSession:
    session = await service.get_active_for_table(table.id)
    if session is None:
        raise ValidationError("No active session. Please scan the QR code again.")
    return session


@router.post("/scan", summary="Scan Table QR")
async def scan_qr(qr_code: str, db: AsyncSession = Depends(get_db)) -> dict[str, Any]:
    """Open (or resume) the table's session. Returns table info without the OTP."""
    table, restaurant = await _table_and_restaurant(db, qr_code)
    session = await SessionService(db, restaurant.id).scan_qr(table)
    await db.commit()
    return {
        "restaurant": restaurant.name,
        "table": GuestTableResponse.model_validate(table).model_dump(mode="json"),
        "session_id": session.id,
        "phase": session.phase.value,
        "otp_required": session.seated_at is None,
    }


@router.post("/verify-otp", response_model=SessionResponse, summary="Verify Table OTP")
async def verify_otp(
    qr_code: str,
    payload: OtpVerifyRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    table, restaurant = await _table_and_restaurant(db, qr_code)
    session = await SessionService(db, restaurant.id).verify_otp(
        table.id, payload.otp, payload.guest_count
    )
    await db.commit()
    return SessionResponse.model_validate(session)


@router.post("/orders", response_model=OrderDetailResponse, status_code=201, summary="Place Guest Order")
async def place_order(
    qr_code: str,
    payload: GuestOrderCreate,
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    table, restaurant = await _table_and_restaurant(db, qr_code)
    service = OrderService(db, restaurant)
    session = await _active_session(service.sessions, table)

    order = await service.place_guest_order(
        session.id,
        [line.model_dump() for line in payload.items],
        notes=payload.notes,
    )
    items = await service.items(order.id)
    await db.commit()
    return OrderDetailResponse(
        order=OrderResponse.model_validate(order),
        items=[OrderItemResponse.model_validate(i) for i in items],
    )


@router.get("/orders", response_model=list[OrderResponse], summary="Session Orders")
async def list_session_orders(qr_code: str, db: AsyncSession = Depends(get_db)) -> list[OrderResponse]:
    table, restaurant = await _table_and_restaurant(db, qr_code)
    service = OrderService(db, restaurant)
    session = await _active_session(service.sessions, table)
    orders = await service.list_orders(session_id=session.id)
    return [OrderResponse.model_validate(o) for o in orders]


@router.post("/request-bill", response_model=SessionResponse)
async def request_bill(qr_code: str, db: AsyncSession = Depends(get_db)) -> SessionResponse:
    table, restaurant = await _table_and_restaurant(db, qr_code)
    service = SessionService(db, restaurant.id)
    session = await service.request_bill((await _active_session(service, table)).id)
    await db.commit()
    return SessionResponse.model_validate(session)


@router.post("/assistance", response_model=SessionResponse, summary="Call Waiter")
async def request_assistance(
    qr_code: str,
    payload: AssistanceRequest,
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    table, restaurant = await _table_and_restaurant(db, qr_code)
    service = SessionService(db, restaurant.id)
    session = await _active_session(service, table)
    await service.request_assistance(session.id, payload.reason)
    await db.commit()
    return SessionResponse.model_validate(session)
