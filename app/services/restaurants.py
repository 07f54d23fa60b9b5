"""
Restaurant (tenant) lookups and per-restaurant settings.
"""

import re
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import NotFoundError, ConflictError
from app.models import CbmsConfig, Restaurant


def restaurant_setting(restaurant: Restaurant, key: str, default: Any = None) -> Any:
    """Read a per-restaurant override, falling back to ``default``."""
    return (restaurant.settings or {}).get(key, default)


def requires_order_confirmation(restaurant: Restaurant) -> bool:
    return bool(restaurant_setting(
        restaurant,
        "qr_order_requires_confirmation",
        get_settings().qr_order_requires_confirmation,
    ))


async def get_restaurant(db: AsyncSession, restaurant_id: int) -> Restaurant:
    restaurant = await db.get(Restaurant, restaurant_id)
    if not restaurant:
        raise NotFoundError("Restaurant not found")
    return restaurant


async def create_restaurant(
    db: AsyncSession,
    name: str,
    address: Optional[str] = None,
    phone: Optional[str] = None,
    pan_number: Optional[str] = None,
    settings: Optional[dict] = None,
    loyalty_settings: Optional[dict] = None,
) -> Restaurant:
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    existing = await db.execute(select(Restaurant).where(Restaurant.slug == slug))
    if existing.scalar_one_or_none():
        raise ConflictError("A restaurant with this name already exists")

    restaurant = Restaurant(
        name=name,
        slug=slug,
        address=address,
        phone=phone,
        pan_number=pan_number,
        settings=settings or {},
        loyalty_settings=loyalty_settings or {},
    )
    db.add(restaurant)
    await db.flush()
    return restaurant


async def get_cbms_config(db: AsyncSession, restaurant_id: int) -> Optional[CbmsConfig]:
    result = await db.execute(
        select(CbmsConfig).where(CbmsConfig.restaurant_id == restaurant_id)
    )
    return result.scalar_one_or_none()


async def upsert_cbms_config(db: AsyncSession, restaurant_id: int, **values) -> CbmsConfig:
    config = await get_cbms_config(db, restaurant_id)
    if config is None:
        config = CbmsConfig(restaurant_id=restaurant_id)
        db.add(config)
    for key, value in values.items():
        setattr(config, key, value)
    await db.flush()
    return config
