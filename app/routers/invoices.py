"""
IRD tax invoices: listing, printing, cancellation and CBMS sync.
"""

from datetime import date
from pathlib import Path
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.database import get_db
from app.dependencies import current_restaurant, staff_name
from app.models import InvoiceStatus, Restaurant
from app.schemas import (
    InvoiceAuditResponse,
    InvoiceItemResponse,
    InvoiceResponse,
    ReasonRequest,
)
from app.services.invoice import InvoiceService
from app.services.restaurants import get_cbms_config
from app.utils.nepal_date import fiscal_year_display, get_current_fiscal_year
from app.utils.number_to_words import format_nepali_number

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))
templates.env.filters["npr"] = format_nepali_number

router = APIRouter(prefix="/api/invoices", tags=["Invoices"])


@router.get("", response_model=list[InvoiceResponse])
async def list_invoices(
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    status: Optional[InvoiceStatus] = Query(None),
    cbms_synced: Optional[bool] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[InvoiceResponse]:
    invoices = await InvoiceService(db, restaurant).list_invoices(from_date, to_date, status, cbms_synced)
    return [InvoiceResponse.model_validate(i) for i in invoices]


@router.get("/sequence-gaps", summary="Missing Invoice Numbers")
async def sequence_gaps(
    fiscal_year: Optional[str] = Query(None, examples=["2081.082"]),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    fiscal_year = fiscal_year or get_current_fiscal_year()
    gaps = await InvoiceService(db, restaurant).sequence_gaps(fiscal_year)
    return {"fiscal_year": fiscal_year, "gaps": gaps, "has_gaps": bool(gaps)}


@router.post("/retry-sync", summary="Retry Pending CBMS Syncs")
async def retry_sync(
    limit: int = Query(50, ge=1, le=500),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    summary = await InvoiceService(db, restaurant).retry_pending(limit)
    await db.commit()
    return summary


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = InvoiceService(db, restaurant)
    invoice = await service.get(invoice_id)
    items = await service.items(invoice.id)
    return {
        "invoice": InvoiceResponse.model_validate(invoice).model_dump(mode="json"),
        "items": [InvoiceItemResponse.model_validate(i).model_dump(mode="json") for i in items],
    }


@router.post("/{invoice_id}/print", summary="Record Invoice Print")
async def print_invoice(
    invoice_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """The first print is the ORIGINAL; later prints are numbered copies."""
    result = await InvoiceService(db, restaurant).print_invoice(invoice_id, printed_by=staff)
    response = {**result, "invoice": InvoiceResponse.model_validate(result["invoice"]).model_dump(mode="json")}
    await db.commit()
    return response


@router.get("/{invoice_id}/print", response_class=HTMLResponse, summary="Printable Invoice")
async def print_invoice_html(
    invoice_id: int,
    request: Request,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> HTMLResponse:
    service = InvoiceService(db, restaurant)
    result = await service.print_invoice(invoice_id, printed_by=staff)
    items = await service.items(invoice_id)
    config = await get_cbms_config(db, restaurant.id)
    await db.commit()

    invoice = result["invoice"]
    return templates.TemplateResponse(
        request,
        "invoice.html",
        {
            "restaurant": restaurant,
            "invoice": invoice,
            "items": items,
            "label": result["label"],
            "fiscal_year": fiscal_year_display(invoice.fiscal_year),
            "seller_pan": invoice.seller_pan or (config.seller_pan if config else None) or restaurant.pan_number,
        },
    )


@router.post("/{invoice_id}/cancel", response_model=InvoiceResponse, summary="Cancel Invoice")
async def cancel_invoice(
    invoice_id: int,
    payload: ReasonRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> InvoiceResponse:
    """A synced invoice is reported to CBMS as a sales return."""
    invoice = await InvoiceService(db, restaurant).cancel_invoice(invoice_id, payload.reason, cancelled_by=staff)
    await db.commit()
    return InvoiceResponse.model_validate(invoice)


@router.post("/{invoice_id}/sync", summary="Sync Invoice to CBMS")
async def sync_invoice(
    invoice_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    service = InvoiceService(db, restaurant)
    invoice = await service.get(invoice_id)
    if invoice.status == InvoiceStatus.CANCELLED:
        raise ValidationError("Cancelled invoices are synced as returns")
    result = await service.sync_to_cbms(invoice)
    await db.commit()
    return {**result.to_dict(), "invoice_number": invoice.invoice_number, "attempts": invoice.cbms_sync_attempts}


@router.get("/{invoice_id}/audit", response_model=list[InvoiceAuditResponse])
async def invoice_audit(
    invoice_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[InvoiceAuditResponse]:
    entries = await InvoiceService(db, restaurant).audit_trail(invoice_id)
    return [InvoiceAuditResponse.model_validate(e) for e in entries]
