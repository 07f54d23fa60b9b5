"""
Inventory: stock items, godowns, recipe mappings and movements.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import current_restaurant, staff_name
from app.models import Restaurant
from app.schemas import (
    GodownCreate,
    GodownResponse,
    StockItemCreate,
    StockItemResponse,
    StockMappingCreate,
    StockMovementCreate,
    StockMovementResponse,
    StockTransferCreate,
)
from app.services.stock import INWARD_TYPES, StockService

router = APIRouter(prefix="/api/stock", tags=["Stock"])


@router.post("/items", response_model=StockItemResponse, status_code=201)
async def create_stock_item(
    payload: StockItemCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> StockItemResponse:
    item = await StockService(db, restaurant.id).create_item(**payload.model_dump())
    await db.commit()
    return StockItemResponse.model_validate(item)


@router.get("/items", response_model=list[StockItemResponse])
async def list_stock_items(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[StockItemResponse]:
    items = await StockService(db, restaurant.id).list_items()
    return [StockItemResponse.model_validate(i) for i in items]


@router.get("/items/low", response_model=list[StockItemResponse], summary="Items At or Below Reorder Level")
async def low_stock(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[StockItemResponse]:
    items = await StockService(db, restaurant.id).low_stock()
    return [StockItemResponse.model_validate(i) for i in items]


@router.get("/items/{stock_item_id}", response_model=StockItemResponse)
async def get_stock_item(
    stock_item_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> StockItemResponse:
    item = await StockService(db, restaurant.id).get_item(stock_item_id)
    return StockItemResponse.model_validate(item)


@router.post("/godowns", response_model=GodownResponse, status_code=201)
async def create_godown(
    payload: GodownCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> GodownResponse:
    godown = await StockService(db, restaurant.id).create_godown(payload.name, payload.is_default)
    await db.commit()
    return GodownResponse.model_validate(godown)


@router.get("/godowns", response_model=list[GodownResponse])
async def list_godowns(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[GodownResponse]:
    godowns = await StockService(db, restaurant.id).list_godowns()
    return [GodownResponse.model_validate(g) for g in godowns]


@router.get("/godowns/{godown_id}/items/{stock_item_id}", summary="Quantity in Godown")
async def godown_quantity(
    godown_id: int,
    stock_item_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = StockService(db, restaurant.id)
    await service.get_godown(godown_id)
    await service.get_item(stock_item_id)
    return {
        "godown_id": godown_id,
        "stock_item_id": stock_item_id,
        "quantity": await service.godown_quantity(godown_id, stock_item_id),
    }


@router.put("/mappings", summary="Map Menu Item to Stock")
async def set_mapping(
    payload: StockMappingCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Serving the menu item deducts ``quantity_per_serving`` of the stock item."""
    mapping = await StockService(db, restaurant.id).set_mapping(
        payload.menu_item_id, payload.stock_item_id, payload.quantity_per_serving
    )
    await db.commit()
    return {
        "id": mapping.id,
        "menu_item_id": mapping.menu_item_id,
        "stock_item_id": mapping.stock_item_id,
        "quantity_per_serving": mapping.quantity_per_serving,
    }


@router.post("/movements", response_model=StockMovementResponse, status_code=201)
async def create_movement(
    payload: StockMovementCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> StockMovementResponse:
    """
    Manual movement. ``godown_id`` is the destination of an inward
    movement and the source of an outward one; it defaults to the
    restaurant's default godown.
    """
    service = StockService(db, restaurant.id)
    godown_id = payload.godown_id
    if godown_id:
        await service.get_godown(godown_id)
    else:
        default = await service.get_default_godown()
        godown_id = default.id if default else None

    inward = payload.movement_type in INWARD_TYPES
    movement = await service.create_movement(
        payload.stock_item_id,
        payload.movement_type,
        payload.quantity,
        rate=payload.rate,
        from_godown_id=None if inward else godown_id,
        to_godown_id=godown_id if inward else None,
        reference_type="manual",
        notes=payload.notes,
        created_by=staff,
    )
    await db.commit()
    return StockMovementResponse.model_validate(movement)


@router.get("/movements", response_model=list[StockMovementResponse])
async def list_movements(
    stock_item_id: Optional[int] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[StockMovementResponse]:
    movements = await StockService(db, restaurant.id).list_movements(stock_item_id)
    return [StockMovementResponse.model_validate(m) for m in movements]


@router.post("/transfers", response_model=list[StockMovementResponse], status_code=201)
async def transfer_stock(
    payload: StockTransferCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> list[StockMovementResponse]:
    out, inward = await StockService(db, restaurant.id).transfer(
        payload.stock_item_id,
        payload.from_godown_id,
        payload.to_godown_id,
        payload.quantity,
        notes=payload.notes,
        created_by=staff,
    )
    await db.commit()
    return [StockMovementResponse.model_validate(out), StockMovementResponse.model_validate(inward)]
