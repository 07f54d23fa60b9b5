"""
IRD Invoice Service

Tax invoices for paid bills, numbered per Nepali fiscal year:

    {FISCAL_YEAR}-{BRANCH}-{SEQUENCE}      e.g. 2081.082-001-00042

IRD rules carried here:
    - Sequential numbering within a fiscal year, resetting each Shrawan
    - One invoice per bill; invoices are cancelled, never deleted
    - Every create / print / cancel / sync is written to the audit log
    - First print is the ORIGINAL, later prints are marked as copies
    - Invoices are pushed to CBMS when the restaurant has it enabled;
      a failed push never blocks the sale and is retried later
"""

import logging
import re
from datetime import datetime, date
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ValidationError, NotFoundError
from app.models import (
    Bill,
    CbmsConfig,
    CbmsSyncLog,
    CbmsSyncStatus,
    Invoice,
    InvoiceAuditLog,
    InvoiceItem,
    InvoiceStatus,
    Order,
    OrderItem,
    OrderItemStatus,
    Restaurant,
)
from app.services.cbms import (
    BaseCbmsClient,
    CbmsCredentials,
    CbmsResult,
    build_sale_payload,
    build_return_payload,
    get_cbms_client,
    validate_payload,
)
from app.services.restaurants import get_cbms_config, restaurant_setting
from app.utils.nepal_date import ad_to_bs, get_fiscal_year
from app.utils.number_to_words import number_to_words

logger = logging.getLogger(__name__)

INVOICE_NUMBER_PATTERN = re.compile(r"^\d{4}\.\d{3}-[A-Z0-9]{1,5}-\d{5}$")


# =============================================================================
# NUMBERING
# =============================================================================

def format_invoice_number(fiscal_year: str, branch_code: str, sequence: int) -> str:
    return f"{fiscal_year}-{branch_code}-{sequence:05d}"


def validate_invoice_number(invoice_number: str) -> bool:
    return bool(INVOICE_NUMBER_PATTERN.match(invoice_number or ""))


def parse_invoice_number(invoice_number: str) -> Optional[dict]:
    """Split a valid invoice number into fiscal year, branch and sequence."""
    if not validate_invoice_number(invoice_number):
        return None
    fiscal_year, branch_code, sequence = invoice_number.split("-")
    return {"fiscal_year": fiscal_year, "branch_code": branch_code, "sequence": int(sequence)}


def find_sequence_gaps(invoice_numbers: list[str]) -> list[int]:
    """Sequence numbers missing between 1 and the highest issued."""
    sequences = sorted(
        parsed["sequence"]
        for parsed in (parse_invoice_number(n) for n in invoice_numbers)
        if parsed
    )
    gaps = []
    expected = 1
    for seq in sequences:
        while expected < seq:
            gaps.append(expected)
            expected += 1
        expected = seq + 1
    return gaps


def print_label(print_number: int) -> str:
    """Heading printed on the n-th print of an invoice."""
    if print_number <= 1:
        return "ORIGINAL"
    return f"COPY OF ORIGINAL ({print_number - 1})"


class InvoiceService:
    """IRD invoices and CBMS sync for one restaurant."""

    def __init__(
        self,
        db: AsyncSession,
        restaurant: Restaurant,
        cbms_client: Optional[BaseCbmsClient] = None,
    ):
        self.db = db
        self.restaurant = restaurant
        self.restaurant_id = restaurant.id
        self.cbms = cbms_client or get_cbms_client()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get(self, invoice_id: int) -> Invoice:
        result = await self.db.execute(
            select(Invoice).where(
                Invoice.id == invoice_id,
                Invoice.restaurant_id == self.restaurant_id,
            )
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice not found")
        return invoice

    async def get_for_bill(self, bill_id: int) -> Optional[Invoice]:
        result = await self.db.execute(select(Invoice).where(Invoice.bill_id == bill_id))
        return result.scalar_one_or_none()

    async def items(self, invoice_id: int) -> list[InvoiceItem]:
        result = await self.db.execute(
            select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.id)
        )
        return list(result.scalars().all())

    async def audit_trail(self, invoice_id: int) -> list[InvoiceAuditLog]:
        await self.get(invoice_id)
        result = await self.db.execute(
            select(InvoiceAuditLog)
            .where(InvoiceAuditLog.invoice_id == invoice_id)
            .order_by(InvoiceAuditLog.id)
        )
        return list(result.scalars().all())

    async def list_invoices(
        self,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        status: Optional[InvoiceStatus] = None,
        cbms_synced: Optional[bool] = None,
    ) -> list[Invoice]:
        query = select(Invoice).where(Invoice.restaurant_id == self.restaurant_id)
        if from_date:
            query = query.where(Invoice.invoice_date_ad >= datetime.combine(from_date, datetime.min.time()))
        if to_date:
            query = query.where(Invoice.invoice_date_ad <= datetime.combine(to_date, datetime.max.time()))
        if status:
            query = query.where(Invoice.status == status)
        if cbms_synced is not None:
            query = query.where(Invoice.cbms_synced.is_(cbms_synced))
        result = await self.db.execute(query.order_by(Invoice.invoice_number))
        return list(result.scalars().all())

    # =========================================================================
    # NUMBERING
    # =========================================================================

    def branch_code(self) -> str:
        return str(restaurant_setting(self.restaurant, "branch_code", get_settings().branch_code))

    async def next_invoice_number(self, fiscal_year: str) -> str:
        prefix = f"{fiscal_year}-{self.branch_code()}-"
        numbers = (await self.db.execute(
            select(Invoice.invoice_number).where(
                Invoice.restaurant_id == self.restaurant_id,
                Invoice.invoice_number.startswith(prefix),
            )
        )).scalars().all()
        last = max((parse_invoice_number(n)["sequence"] for n in numbers if validate_invoice_number(n)), default=0)
        return format_invoice_number(fiscal_year, self.branch_code(), last + 1)

    async def sequence_gaps(self, fiscal_year: str) -> list[int]:
        numbers = (await self.db.execute(
            select(Invoice.invoice_number).where(
                Invoice.restaurant_id == self.restaurant_id,
                Invoice.fiscal_year == fiscal_year,
            )
        )).scalars().all()
        return find_sequence_gaps(list(numbers))

    # =========================================================================
    # CREATE / PRINT / CANCEL
    # =========================================================================

    async def _bill_lines(self, bill: Bill) -> list[OrderItem]:
        result = await self.db.execute(
            select(OrderItem)
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                Order.bill_id == bill.id,
                OrderItem.status != OrderItemStatus.CANCELLED,
                OrderItem.is_complimentary.is_(False),
            )
            .order_by(OrderItem.id)
        )
        return list(result.scalars().all())

    async def _audit(self, invoice: Invoice, action: str, performed_by: str, **details) -> None:
        self.db.add(InvoiceAuditLog(
            invoice_id=invoice.id,
            action=action,
            details=details or None,
            performed_by=performed_by,
        ))
        await self.db.flush()

    async def create_invoice(
        self,
        bill: Bill,
        buyer_name: Optional[str] = None,
        buyer_pan: Optional[str] = None,
        buyer_address: Optional[str] = None,
        created_by: str = "Staff",
        issued_at: Optional[datetime] = None,
    ) -> Invoice:
        """
        Issue the tax invoice for a bill, or return the one already issued.

        VAT is charged on (subtotal - discount). When the bill carried no
        VAT the taxable value is reported as exempt sales.
        """
        existing = await self.get_for_bill(bill.id)
        if existing:
            return existing

        issued_at = issued_at or datetime.now()
        fiscal_year = get_fiscal_year(issued_at)
        config = await get_cbms_config(self.db, self.restaurant_id)

        subtotal = round(bill.subtotal, 2)
        discount = round(bill.discount_amount or 0.0, 2)
        taxable = round(subtotal - discount, 2)
        exempt = 0.0
        if bill.tax_amount > 0:
            # The bill already carries VAT at the restaurant's own rate
            vat = round(bill.tax_amount, 2)
        else:
            exempt, taxable, vat = taxable, 0.0, 0.0
        service_charge = round(bill.service_charge or 0.0, 2)
        total = round(taxable + exempt + vat + service_charge, 2)

        invoice = Invoice(
            restaurant_id=self.restaurant_id,
            bill_id=bill.id,
            invoice_number=await self.next_invoice_number(fiscal_year),
            fiscal_year=fiscal_year,
            invoice_date_ad=issued_at,
            invoice_date_bs=ad_to_bs(issued_at),
            seller_name=self.restaurant.name,
            seller_pan=(config.seller_pan if config and config.seller_pan else self.restaurant.pan_number),
            buyer_name=(buyer_name or "Cash").strip() or "Cash",
            buyer_pan=buyer_pan,
            buyer_address=buyer_address,
            subtotal=subtotal,
            discount_amount=discount,
            taxable_amount=taxable,
            vat_amount=vat,
            service_charge=service_charge,
            exempt_amount=exempt,
            total_amount=total,
            amount_in_words=number_to_words(total),
            status=InvoiceStatus.ACTIVE,
            created_by=created_by,
        )
        self.db.add(invoice)
        await self.db.flush()

        for line in await self._bill_lines(bill):
            amount = round(line.total_price - (line.discount_amount or 0.0), 2)
            self.db.add(InvoiceItem(
                invoice_id=invoice.id,
                description=line.name,
                quantity=line.quantity,
                rate=line.unit_price,
                amount=amount,
            ))

        await self._audit(invoice, "CREATED", created_by,
                          invoice_number=invoice.invoice_number,
                          total_amount=total, buyer_name=invoice.buyer_name)
        logger.info(f"🧾 Invoice {invoice.invoice_number} issued for {bill.bill_number} (Rs. {total:.2f})")

        if config and config.enabled:
            await self.sync_to_cbms(invoice, config)
        return invoice

    async def print_invoice(self, invoice_id: int, printed_by: str = "Staff") -> dict:
        invoice = await self.get(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise ValidationError("Cannot print a cancelled invoice")

        invoice.print_count += 1
        invoice.last_printed_at = datetime.now()
        is_copy = invoice.print_count > 1
        await self._audit(invoice, "REPRINTED" if is_copy else "PRINTED", printed_by,
                          print_number=invoice.print_count, is_copy=is_copy)
        return {
            "invoice": invoice,
            "print_count": invoice.print_count,
            "is_copy": is_copy,
            "label": print_label(invoice.print_count),
        }

    async def cancel_invoice(self, invoice_id: int, reason: str, cancelled_by: str = "Staff") -> Invoice:
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required")
        invoice = await self.get(invoice_id)
        if invoice.status == InvoiceStatus.CANCELLED:
            raise ValidationError("Invoice is already cancelled")

        was_synced = invoice.cbms_synced
        invoice.status = InvoiceStatus.CANCELLED
        invoice.cancellation_reason = reason.strip()
        invoice.cancelled_at = datetime.now()
        await self._audit(invoice, "CANCELLED", cancelled_by,
                          old_status=InvoiceStatus.ACTIVE.value,
                          cbms_synced=was_synced, reason=invoice.cancellation_reason)
        logger.warning(f"🚫 Invoice {invoice.invoice_number} cancelled: {invoice.cancellation_reason}")

        if was_synced:
            config = await get_cbms_config(self.db, self.restaurant_id)
            if config and config.enabled:
                await self.sync_return_to_cbms(invoice, config, invoice.cancellation_reason)
        return invoice

    # =========================================================================
    # CBMS
    # =========================================================================

    @staticmethod
    def _credentials(config: CbmsConfig) -> CbmsCredentials:
        return CbmsCredentials(
            api_url=config.api_url or get_settings().cbms_api_url,
            username=config.username or "",
            password=config.password or "",
            seller_pan=config.seller_pan or "",
        )

    def _sale_payload(self, invoice: Invoice, credentials: CbmsCredentials) -> dict:
        return build_sale_payload(
            credentials,
            buyer_name=invoice.buyer_name,
            buyer_pan=invoice.buyer_pan,
            fiscal_year=invoice.fiscal_year,
            invoice_number=invoice.invoice_number,
            invoice_date=invoice.invoice_date_bs,
            total_sales=invoice.total_amount,
            taxable_sales_vat=invoice.taxable_amount,
            vat=invoice.vat_amount,
            export_sales=invoice.export_amount,
            tax_exempted_sales=invoice.exempt_amount,
        )

    async def _send(self, invoice: Invoice, sync_type: str, api_url: str, payload: dict) -> CbmsResult:
        log = CbmsSyncLog(
            restaurant_id=self.restaurant_id,
            invoice_id=invoice.id,
            sync_type=sync_type,
            status=CbmsSyncStatus.IN_PROGRESS,
            request_payload={**payload, "password": "***"},
        )
        self.db.add(log)
        await self.db.flush()

        error = validate_payload(payload)
        if error:
            result = CbmsResult(success=False, code=104, message=f"Validation error: {error}")
        elif sync_type == "RETURN":
            result = await self.cbms.post_bill_return(api_url, payload)
        else:
            result = await self.cbms.post_bill(api_url, payload)

        log.status = CbmsSyncStatus.SUCCESS if result.success else CbmsSyncStatus.FAILED
        log.response_code = result.code
        log.response_message = result.message
        log.completed_at = datetime.now()
        await self.db.flush()
        return result

    async def sync_to_cbms(self, invoice: Invoice, config: Optional[CbmsConfig] = None) -> CbmsResult:
        """
        Push one invoice to CBMS and record the outcome on the invoice.

        Never raises for CBMS-side failures; check ``result.success``.
        """
        if invoice.cbms_synced:
            return CbmsResult(success=True, code=101, message="Already synced")

        config = config or await get_cbms_config(self.db, self.restaurant_id)
        if not config or not config.enabled:
            return CbmsResult(success=False, code=0, message="CBMS not configured")

        max_retries = get_settings().cbms_max_retries
        if invoice.cbms_sync_attempts >= max_retries:
            return CbmsResult(success=False, code=0, message="Maximum sync attempts reached")

        credentials = self._credentials(config)
        result = await self._send(invoice, "SALE", credentials.api_url, self._sale_payload(invoice, credentials))

        invoice.cbms_sync_attempts += 1
        invoice.cbms_response_code = result.code
        invoice.cbms_response_message = result.message[:255]
        if result.success:
            invoice.cbms_synced = True
            invoice.cbms_synced_at = datetime.now()
            invoice.cbms_last_error = None
            logger.info(f"📡 Invoice {invoice.invoice_number} synced to CBMS ({result.code})")
        else:
            invoice.cbms_last_error = result.message
            logger.error(
                f"❌ CBMS sync failed for {invoice.invoice_number} "
                f"(attempt {invoice.cbms_sync_attempts}/{max_retries}): {result.message}"
            )

        await self._audit(invoice, "CBMS_SYNC_SUCCESS" if result.success else "CBMS_SYNC_FAILED",
                          "System", code=result.code, message=result.message)
        return result

    async def sync_return_to_cbms(self, invoice: Invoice, config: CbmsConfig, reason: str) -> CbmsResult:
        credentials = self._credentials(config)
        now = datetime.now()
        payload = build_return_payload(
            credentials,
            self._sale_payload(invoice, credentials),
            credit_note_number=f"CN-{invoice.invoice_number}",
            credit_note_date=ad_to_bs(now),
            reason=reason,
        )
        result = await self._send(invoice, "RETURN", credentials.api_url, payload)
        await self._audit(invoice, "CBMS_RETURN_SUCCESS" if result.success else "CBMS_RETURN_FAILED",
                          "System", code=result.code, message=result.message)
        if not result.success:
            logger.error(f"❌ CBMS return failed for {invoice.invoice_number}: {result.message}")
        return result

    async def retry_pending(self, limit: int = 50) -> dict:
        """Retry unsynced active invoices that still have attempts left."""
        config = await get_cbms_config(self.db, self.restaurant_id)
        if not config or not config.enabled:
            return {"attempted": 0, "synced": 0, "failed": 0}

        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.restaurant_id == self.restaurant_id,
                Invoice.status == InvoiceStatus.ACTIVE,
                Invoice.cbms_synced.is_(False),
                Invoice.cbms_sync_attempts < get_settings().cbms_max_retries,
            )
            .order_by(Invoice.id)
            .limit(limit)
        )
        summary = {"attempted": 0, "synced": 0, "failed": 0}
        for invoice in result.scalars().all():
            outcome = await self.sync_to_cbms(invoice, config)
            summary["attempted"] += 1
            summary["synced" if outcome.success else "failed"] += 1
        return summary

    async def cbms_status(self) -> dict:
        base = select(func.count(Invoice.id)).where(
            Invoice.restaurant_id == self.restaurant_id,
            Invoice.status == InvoiceStatus.ACTIVE,
        )
        synced = await self.db.scalar(base.where(Invoice.cbms_synced.is_(True)))
        pending = await self.db.scalar(base.where(
            Invoice.cbms_synced.is_(False),
            Invoice.cbms_sync_attempts < get_settings().cbms_max_retries,
        ))
        failed = await self.db.scalar(base.where(
            Invoice.cbms_synced.is_(False),
            Invoice.cbms_sync_attempts >= get_settings().cbms_max_retries,
        ))
        config = await get_cbms_config(self.db, self.restaurant_id)
        return {
            "enabled": bool(config and config.enabled),
            "synced": synced or 0,
            "pending": pending or 0,
            "failed": failed or 0,
        }
