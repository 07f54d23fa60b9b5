"""
Restaurant setup: tenant creation, CBMS credentials, menu and tables.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFoundError
from app.database import get_db
from app.dependencies import current_restaurant, staff_name
from app.models import MenuItem, Restaurant
from app.schemas import (
    CbmsConfigUpdate,
    ErrorResponse,
    MenuItemCreate,
    MenuItemResponse,
    RestaurantCreate,
    RestaurantResponse,
    TableCreate,
    TableResponse,
)
from app.services.accounting import AccountService
from app.services.restaurants import create_restaurant, upsert_cbms_config
from app.services.tables import TableService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Restaurant"])


@router.post(
    "/restaurants",
    response_model=RestaurantResponse,
    status_code=201,
    responses={409: {"model": ErrorResponse}},
    summary="Create Restaurant",
)
async def create_restaurant_endpoint(
    payload: RestaurantCreate,
    db: AsyncSession = Depends(get_db),
) -> RestaurantResponse:
    """
    Register a restaurant (tenant).

    With ``seed_chart_of_accounts`` the default chart is created so that
    sales, purchases and payments post vouchers from day one.
    """
    restaurant = await create_restaurant(
        db,
        name=payload.name,
        address=payload.address,
        phone=payload.phone,
        pan_number=payload.pan_number,
        settings=payload.settings,
        loyalty_settings=payload.loyalty_settings,
    )
    if payload.seed_chart_of_accounts:
        await AccountService(db, restaurant.id).seed_default_chart()
    await db.commit()

    logger.info(f"🏪 Restaurant #{restaurant.id} '{restaurant.name}' created")
    return RestaurantResponse.model_validate(restaurant)


@router.get("/restaurants/me", response_model=RestaurantResponse, summary="Current Restaurant")
async def get_current_restaurant(
    restaurant: Restaurant = Depends(current_restaurant),
) -> RestaurantResponse:
    return RestaurantResponse.model_validate(restaurant)


@router.put("/restaurants/me/cbms", summary="Configure CBMS Credentials")
async def update_cbms_config(
    payload: CbmsConfigUpdate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Store the IRD CBMS credentials. The password is never echoed back."""
    values = payload.model_dump(exclude_unset=True)
    config = await upsert_cbms_config(db, restaurant.id, **values)
    await db.commit()
    return {
        "enabled": config.enabled,
        "username": config.username,
        "seller_pan": config.seller_pan,
        "api_url": config.api_url,
        "password_set": bool(config.password),
    }


# =============================================================================
# MENU
# =============================================================================

@router.post("/menu-items", response_model=MenuItemResponse, status_code=201, tags=["Menu"])
async def create_menu_item(
    payload: MenuItemCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    item = MenuItem(restaurant_id=restaurant.id, **payload.model_dump())
    item.station = item.station.upper()
    db.add(item)
    await db.commit()
    return MenuItemResponse.model_validate(item)


@router.get("/menu-items", response_model=list[MenuItemResponse], tags=["Menu"])
async def list_menu_items(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[MenuItemResponse]:
    result = await db.execute(
        select(MenuItem)
        .where(MenuItem.restaurant_id == restaurant.id)
        .order_by(MenuItem.category, MenuItem.name)
    )
    return [MenuItemResponse.model_validate(m) for m in result.scalars().all()]


@router.patch("/menu-items/{item_id}/availability", response_model=MenuItemResponse, tags=["Menu"])
async def set_menu_item_availability(
    item_id: int,
    available: bool,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> MenuItemResponse:
    item = await db.get(MenuItem, item_id)
    if not item or item.restaurant_id != restaurant.id:
        raise NotFoundError("Menu item not found")
    item.is_available = available
    await db.commit()
    return MenuItemResponse.model_validate(item)


# =============================================================================
# TABLES
# =============================================================================

@router.post("/tables", response_model=TableResponse, status_code=201, tags=["Tables"])
async def create_table(
    payload: TableCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> TableResponse:
    """Create a table with its QR code and first OTP."""
    table = await TableService(db, restaurant.id).create(
        payload.table_number, payload.capacity, changed_by=staff
    )
    await db.commit()
    return TableResponse.model_validate(table)


@router.get("/tables", response_model=list[TableResponse], tags=["Tables"])
async def list_tables(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[TableResponse]:
    tables = await TableService(db, restaurant.id).list_tables()
    return [TableResponse.model_validate(t) for t in tables]


@router.get("/tables/cleaning-queue", tags=["Tables"], summary="Tables Awaiting Cleaning")
async def cleaning_queue(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    return await TableService(db, restaurant.id).cleaning_queue()


@router.post("/tables/{table_id}/otp", response_model=TableResponse, tags=["Tables"], summary="Regenerate OTP")
async def regenerate_otp(
    table_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> TableResponse:
    service = TableService(db, restaurant.id)
    table = await service.get(table_id)
    await service.regenerate_otp(table, changed_by=staff)
    await db.commit()
    return TableResponse.model_validate(table)


@router.get("/tables/{table_id}/otp-history", tags=["Tables"])
async def otp_history(
    table_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    history = await TableService(db, restaurant.id).otp_history(table_id)
    return [
        {
            "otp": h.otp,
            "reason": h.reason.value,
            "changed_by": h.changed_by,
            "created_at": h.created_at.isoformat(),
        }
        for h in history
    ]


@router.post("/tables/{table_id}/cleaned", tags=["Tables"], summary="Mark Table Cleaned")
async def mark_table_cleaned(
    table_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await TableService(db, restaurant.id).mark_cleaned(table_id, cleaned_by=staff)
    await db.commit()
    return result
