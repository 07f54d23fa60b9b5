"""
IRD Reports

Sales register, purchase register, VAT summary and CBMS status, shaped
for the Inland Revenue Department's books. Dates in every register are
shown in Bikram Sambat alongside AD.
"""

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.models import (
    CbmsSyncLog,
    CbmsSyncStatus,
    Invoice,
    InvoiceStatus,
    Purchase,
    PurchaseStatus,
    Restaurant,
    Vendor,
)
from app.services.invoice import InvoiceService
from app.services.restaurants import get_cbms_config
from app.utils.nepal_date import (
    NEPALI_MONTHS,
    SHRAWAN,
    ad_to_bs,
    bs_month,
    fiscal_year_bounds,
    fiscal_year_display,
    get_current_fiscal_year,
)

logger = logging.getLogger(__name__)

STANDARD_VAT_RATE = 13.0
VAT_REPORT_TYPES = ("monthly", "daily", "summary")


def _empty_totals() -> dict:
    return {
        "invoice_count": 0,
        "cancelled_count": 0,
        "total_subtotal": 0.0,
        "total_discount": 0.0,
        "total_taxable": 0.0,
        "total_vat": 0.0,
        "total_amount": 0.0,
    }


def _accumulate(bucket: dict, invoice: Invoice) -> None:
    bucket["invoice_count"] += 1
    if invoice.status == InvoiceStatus.CANCELLED:
        bucket["cancelled_count"] += 1
        return
    bucket["total_subtotal"] = round(bucket["total_subtotal"] + invoice.subtotal, 2)
    bucket["total_discount"] = round(bucket["total_discount"] + invoice.discount_amount, 2)
    bucket["total_taxable"] = round(bucket["total_taxable"] + invoice.taxable_amount, 2)
    bucket["total_vat"] = round(bucket["total_vat"] + invoice.vat_amount, 2)
    bucket["total_amount"] = round(bucket["total_amount"] + invoice.total_amount, 2)


def fiscal_months() -> list[int]:
    """BS month numbers in fiscal order: Shrawan (4) ... Ashad (3)."""
    return [((SHRAWAN - 1 + i) % 12) + 1 for i in range(12)]


def monthly_breakdown(invoices: list[Invoice], month: Optional[int] = None) -> list[dict]:
    months = {m: {"month": m, "month_name": NEPALI_MONTHS[m - 1], **_empty_totals()} for m in fiscal_months()}
    for invoice in invoices:
        _accumulate(months[bs_month(invoice.invoice_date_bs)], invoice)
    rows = [months[m] for m in fiscal_months()]
    if month is not None:
        rows = [row for row in rows if row["month"] == month]
    return rows


def daily_breakdown(invoices: list[Invoice]) -> list[dict]:
    days: dict[str, dict] = {}
    for invoice in invoices:
        key = invoice.invoice_date_ad.date().isoformat()
        if key not in days:
            days[key] = {"date": key, "date_bs": invoice.invoice_date_bs, **_empty_totals()}
        _accumulate(days[key], invoice)
    return [days[key] for key in sorted(days)]


def vat_totals(invoices: list[Invoice], fiscal_year: str) -> dict:
    """Totals over active invoices with the effective VAT rate on taxable sales."""
    active = [i for i in invoices if i.status == InvoiceStatus.ACTIVE]
    taxable = round(sum(i.taxable_amount for i in active), 2)
    vat = round(sum(i.vat_amount for i in active), 2)
    return {
        "fiscal_year": fiscal_year,
        "total_taxable_amount": taxable,
        "total_vat_collected": vat,
        "total_exempt_amount": round(sum(i.exempt_amount for i in active), 2),
        "total_export_amount": round(sum(i.export_amount for i in active), 2),
        "vat_rate": STANDARD_VAT_RATE,
        "effective_vat_rate": round(vat / taxable * 100, 2) if taxable else 0.0,
    }


class ReportService:
    """IRD reports for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant: Restaurant):
        self.db = db
        self.restaurant = restaurant
        self.restaurant_id = restaurant.id

    async def _header(self, report: str, **extra) -> dict:
        config = await get_cbms_config(self.db, self.restaurant_id)
        now = datetime.now()
        return {
            "report": report,
            "restaurant_name": self.restaurant.name,
            "restaurant_address": self.restaurant.address or "",
            "seller_pan": (config.seller_pan if config else None) or self.restaurant.pan_number or "",
            "generated_at": now.isoformat(),
            "generated_at_bs": ad_to_bs(now),
            **extra,
        }

    async def sales_register(self, from_date: date, to_date: date) -> dict:
        if from_date > to_date:
            raise ValidationError("Start date must be on or before end date")

        invoices = await InvoiceService(self.db, self.restaurant).list_invoices(from_date, to_date)
        entries = [
            {
                "invoice_number": inv.invoice_number,
                "date_bs": inv.invoice_date_bs,
                "date_ad": inv.invoice_date_ad.date().isoformat(),
                "buyer_name": inv.buyer_name,
                "buyer_pan": inv.buyer_pan,
                "subtotal": inv.subtotal,
                "discount": inv.discount_amount,
                "taxable_amount": inv.taxable_amount,
                "vat_amount": inv.vat_amount,
                "exempt_amount": inv.exempt_amount,
                "total_amount": inv.total_amount,
                "status": inv.status.value,
                "cbms_synced": inv.cbms_synced,
            }
            for inv in invoices
        ]

        totals = _empty_totals()
        for invoice in invoices:
            _accumulate(totals, invoice)
        summary = {
            "total_invoices": totals["invoice_count"],
            "total_cancelled": totals["cancelled_count"],
            "total_active": totals["invoice_count"] - totals["cancelled_count"],
            "total_subtotal": totals["total_subtotal"],
            "total_discount": totals["total_discount"],
            "total_taxable": totals["total_taxable"],
            "total_vat": totals["total_vat"],
            "grand_total": totals["total_amount"],
            "cbms_synced_count": sum(1 for i in invoices if i.cbms_synced),
            "cbms_pending_count": sum(
                1 for i in invoices if not i.cbms_synced and i.status == InvoiceStatus.ACTIVE
            ),
        }

        header = await self._header(
            "SALES_REGISTER",
            from_date=from_date.isoformat(),
            to_date=to_date.isoformat(),
            from_date_bs=ad_to_bs(from_date),
            to_date_bs=ad_to_bs(to_date),
        )
        return {"header": header, "entries": entries, "summary": summary}

    async def purchase_register(self, from_date: date, to_date: date) -> dict:
        if from_date > to_date:
            raise ValidationError("Start date must be on or before end date")

        result = await self.db.execute(
            select(Purchase, Vendor)
            .join(Vendor, Vendor.id == Purchase.vendor_id)
            .where(
                Purchase.restaurant_id == self.restaurant_id,
                Purchase.purchase_date >= from_date,
                Purchase.purchase_date <= to_date,
                Purchase.status != PurchaseStatus.CANCELLED,
            )
            .order_by(Purchase.purchase_date, Purchase.id)
        )
        rows = result.all()
        entries = [
            {
                "purchase_number": purchase.purchase_number,
                "date_bs": ad_to_bs(purchase.purchase_date),
                "date_ad": purchase.purchase_date.isoformat(),
                "vendor_name": vendor.name,
                "vendor_pan": vendor.pan_number,
                "vendor_bill_number": purchase.vendor_bill_number,
                "taxable_amount": purchase.taxable_amount,
                "vat_amount": purchase.vat_amount,
                "total_amount": purchase.total_amount,
                "status": purchase.status.value,
            }
            for purchase, vendor in rows
        ]
        summary = {
            "total_purchases": len(entries),
            "total_taxable": round(sum(e["taxable_amount"] for e in entries), 2),
            "total_vat": round(sum(e["vat_amount"] for e in entries), 2),
            "grand_total": round(sum(e["total_amount"] for e in entries), 2),
        }
        header = await self._header(
            "PURCHASE_REGISTER",
            from_date=from_date.isoformat(),
            to_date=to_date.isoformat(),
        )
        return {"header": header, "entries": entries, "summary": summary}

    async def vat_summary(
        self,
        fiscal_year: Optional[str] = None,
        report_type: str = "monthly",
        month: Optional[int] = None,
    ) -> dict:
        """
        VAT report for a BS fiscal year.

        Args:
            report_type: ``monthly`` (12 rows, Shrawan first), ``daily`` or ``summary``
            month: Restrict the monthly rows to one BS month (1-12)
        """
        if report_type not in VAT_REPORT_TYPES:
            raise ValidationError(f"Report type must be one of: {', '.join(VAT_REPORT_TYPES)}")
        if month is not None and not 1 <= month <= 12:
            raise ValidationError("Month must be between 1 and 12")

        fiscal_year = fiscal_year or get_current_fiscal_year()
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.restaurant_id == self.restaurant_id,
                Invoice.fiscal_year == fiscal_year,
            )
            .order_by(Invoice.invoice_date_ad)
        )
        invoices = list(result.scalars().all())

        start, end = fiscal_year_bounds(fiscal_year)
        header = await self._header(
            "VAT",
            fiscal_year=fiscal_year,
            fiscal_year_display=fiscal_year_display(fiscal_year),
            period_start=start.isoformat(),
            period_end=end.isoformat(),
            report_type=report_type,
        )
        summary = vat_totals(invoices, fiscal_year)

        if report_type == "daily":
            return {"header": header, "data": daily_breakdown(invoices), "summary": summary}
        if report_type == "monthly":
            return {"header": header, "data": monthly_breakdown(invoices, month), "summary": summary}
        return {
            "header": header,
            "summary": summary,
            "breakdown": {"by_month": monthly_breakdown(invoices), "total_invoices": len(invoices)},
        }

    async def cbms_status(self, recent: int = 10) -> dict:
        status = await InvoiceService(self.db, self.restaurant).cbms_status()
        result = await self.db.execute(
            select(CbmsSyncLog)
            .where(
                CbmsSyncLog.restaurant_id == self.restaurant_id,
                CbmsSyncLog.status == CbmsSyncStatus.FAILED,
            )
            .order_by(CbmsSyncLog.id.desc())
            .limit(recent)
        )
        status["recent_failures"] = [
            {
                "invoice_id": log.invoice_id,
                "sync_type": log.sync_type,
                "response_code": log.response_code,
                "response_message": log.response_message,
                "attempted_at": log.attempted_at.isoformat(),
            }
            for log in result.scalars().all()
        ]
        return status
