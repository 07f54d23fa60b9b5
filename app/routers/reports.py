"""
IRD reports and their Excel exports.
"""

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import POSError
from app.database import get_db
from app.dependencies import current_restaurant
from app.models import Restaurant
from app.services.excel_manager import ExcelManager
from app.services.reports import ReportService

router = APIRouter(prefix="/api/reports/ird", tags=["IRD Reports"])


@router.get("/sales-register")
async def sales_register(
    from_date: date,
    to_date: date,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Every invoice in the period, cancelled ones included, with BS dates."""
    return await ReportService(db, restaurant).sales_register(from_date, to_date)


@router.get("/purchase-register")
async def purchase_register(
    from_date: date,
    to_date: date,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await ReportService(db, restaurant).purchase_register(from_date, to_date)


@router.get("/vat", summary="VAT Report")
async def vat_report(
    fiscal_year: Optional[str] = Query(None, examples=["2081.082"]),
    report_type: str = Query("monthly"),
    month: Optional[int] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await ReportService(db, restaurant).vat_summary(fiscal_year, report_type, month)


@router.get("/cbms-status")
async def cbms_status(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await ReportService(db, restaurant).cbms_status()


@router.post("/sales-register/export", summary="Export Sales Register to Excel")
async def export_sales_register(
    from_date: date,
    to_date: date,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    register = await ReportService(db, restaurant).sales_register(from_date, to_date)
    # Blocking: file lock and workbook write
    result = await run_in_threadpool(
        ExcelManager.export_sales_register,
        restaurant.slug, f"{from_date.isoformat()}_{to_date.isoformat()}", register
    )
    if not result["success"]:
        raise POSError(f"Export failed: {result['message']}", status_code=503)
    return result


@router.post("/purchase-register/export", summary="Export Purchase Register to Excel")
async def export_purchase_register(
    from_date: date,
    to_date: date,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    register = await ReportService(db, restaurant).purchase_register(from_date, to_date)
    result = await run_in_threadpool(
        ExcelManager.export_purchase_register,
        restaurant.slug, f"{from_date.isoformat()}_{to_date.isoformat()}", register
    )
    if not result["success"]:
        raise POSError(f"Export failed: {result['message']}", status_code=503)
    return result
