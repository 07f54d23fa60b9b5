"""
Request-scoped dependencies shared by the routers.

Tenant-scoped endpoints identify the restaurant with the
``X-Restaurant-Id`` header and the acting staff member with the optional
``X-Staff-Name`` header.
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.database import get_db
from app.models import Restaurant
from app.services.restaurants import get_restaurant

DEFAULT_STAFF_NAME = "Staff"


async def current_restaurant(
    x_restaurant_id: Optional[str] = Header(None, alias="X-Restaurant-Id"),
    db: AsyncSession = Depends(get_db),
) -> Restaurant:
    if not x_restaurant_id:
        raise ValidationError("X-Restaurant-Id header is required")
    if not x_restaurant_id.isdigit():
        raise ValidationError("X-Restaurant-Id must be a numeric id")
    return await get_restaurant(db, int(x_restaurant_id))


def staff_name(x_staff_name: Optional[str] = Header(None, alias="X-Staff-Name")) -> str:
    name = (x_staff_name or "").strip()
    return name or DEFAULT_STAFF_NAME
