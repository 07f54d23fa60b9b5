"""
Staff orders, confirmation and the kitchen/bar display.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import current_restaurant, staff_name
from app.models import Order, OrderStatus, Restaurant
from app.schemas import (
    OrderConfirmRequest,
    OrderDetailResponse,
    OrderItemResponse,
    OrderItemStatusUpdate,
    OrderRejectRequest,
    OrderResponse,
    OrderStatusUpdate,
    StaffOrderCreate,
)
from app.services.orders import OrderService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Orders"])


async def _detail(service: OrderService, order: Order) -> OrderDetailResponse:
    items = await service.items(order.id)
    return OrderDetailResponse(
        order=OrderResponse.model_validate(order),
        items=[OrderItemResponse.model_validate(i) for i in items],
    )


@router.post("/orders", response_model=OrderDetailResponse, status_code=201, summary="Place Staff Order")
async def place_staff_order(
    payload: StaffOrderCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    """Waiter-placed order. Goes straight to the kitchen without confirmation."""
    service = OrderService(db, restaurant)
    order = await service.place_staff_order(
        [line.model_dump() for line in payload.items],
        table_id=payload.table_id,
        notes=payload.notes,
        placed_by=staff,
    )
    response = await _detail(service, order)
    await db.commit()
    return response


@router.get("/orders", response_model=list[OrderResponse])
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    session_id: Optional[int] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[OrderResponse]:
    orders = await OrderService(db, restaurant).list_orders(status=status, session_id=session_id)
    return [OrderResponse.model_validate(o) for o in orders]


@router.get("/orders/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    service = OrderService(db, restaurant)
    return await _detail(service, await service.get(order_id))


@router.post("/orders/{order_id}/confirm", response_model=OrderDetailResponse, summary="Confirm Guest Order")
async def confirm_order(
    order_id: int,
    payload: OrderConfirmRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    service = OrderService(db, restaurant)
    order = await service.confirm(order_id, payload.guest_count, confirmed_by=staff)
    response = await _detail(service, order)
    await db.commit()
    return response


@router.post("/orders/{order_id}/reject", response_model=OrderDetailResponse, summary="Reject Guest Order")
async def reject_order(
    order_id: int,
    payload: OrderRejectRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    service = OrderService(db, restaurant)
    order = await service.reject(order_id, payload.reason, rejected_by=staff)
    response = await _detail(service, order)
    await db.commit()
    return response


@router.patch("/orders/{order_id}/status", response_model=OrderDetailResponse)
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> OrderDetailResponse:
    service = OrderService(db, restaurant)
    order = await service.update_status(order_id, payload.status, updated_by=staff)
    response = await _detail(service, order)
    await db.commit()
    return response


@router.post("/orders/{order_id}/serve-ready", summary="Serve All Ready Items")
async def serve_all_ready(
    order_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await OrderService(db, restaurant).serve_all_ready(order_id, served_by=staff)
    await db.commit()
    return result


@router.patch("/order-items/{item_id}/status", response_model=OrderItemResponse)
async def update_item_status(
    item_id: int,
    payload: OrderItemStatusUpdate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> OrderItemResponse:
    """
    Move one item through the kitchen.

    READY records the SLA check, SERVED deducts mapped stock and CANCELLED
    reverses any deduction.
    """
    item = await OrderService(db, restaurant).update_item_status(item_id, payload.status, updated_by=staff)
    await db.commit()
    return OrderItemResponse.model_validate(item)


@router.get("/kitchen/queue", tags=["Kitchen"], summary="Kitchen and Bar Tickets")
async def kitchen_queue(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await OrderService(db, restaurant).kitchen_queue()
