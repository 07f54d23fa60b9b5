"""
Purchase Service

Vendors, purchase bills and the stock / ledger effects of receiving them.

Purchase lifecycle:
    DRAFT --approve--> APPROVED --receive--> RECEIVED
    DRAFT / APPROVED --cancel--> CANCELLED

Payment status:
    UNPAID --partial payment--> PARTIAL --balance cleared--> PAID

Receiving writes PURCHASE_IN stock movements (re-averaging item cost) and,
when the restaurant has a chart of accounts, posts a PURCHASE voucher:

    Dr Purchases (5000)        taxable amount
    Dr VAT Receivable (1300)   input VAT
        Cr Sundry Creditors (2000)   bill total
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError, NotFoundError
from app.models import (
    MovementType,
    Purchase,
    PurchaseItem,
    PurchasePaymentStatus,
    PurchaseStatus,
    Vendor,
    VendorStatus,
    VoucherType,
)
from app.services.accounting import AccountService, VoucherService, EntryInput
from app.services.stock import StockService
from app.utils.nepal_date import gregorian_fiscal_year

logger = logging.getLogger(__name__)

PURCHASE_VAT_RATE = 13.0
PAYMENT_TOLERANCE = 0.01

PURCHASES_ACCOUNT_CODE = "5000"
VAT_RECEIVABLE_ACCOUNT_CODE = "1300"
CREDITORS_ACCOUNT_CODE = "2000"

# Account credited when a vendor is paid
VENDOR_PAYMENT_ACCOUNT_CODES = {
    "CASH": "1000",
    "BANK_TRANSFER": "1010",
    "CHEQUE": "1010",
    "KHALTI": "1020",
    "ESEWA": "1020",
}


@dataclass
class PurchaseLine:
    description: str
    quantity: float
    rate: float
    discount: float = 0.0
    is_vatable: bool = True
    stock_item_id: Optional[int] = None


def calculate_line(line: PurchaseLine) -> tuple[float, float]:
    """Return ``(amount, vat)`` for one purchase line."""
    if line.quantity <= 0:
        raise ValidationError("Quantity must be positive")
    if line.rate < 0 or line.discount < 0:
        raise ValidationError("Rate and discount cannot be negative")

    gross = round(line.quantity * line.rate, 2)
    if line.discount > gross:
        raise ValidationError(f"Discount cannot exceed the line amount for {line.description}")

    amount = round(gross - line.discount, 2)
    vat = round(amount * PURCHASE_VAT_RATE / 100, 2) if line.is_vatable else 0.0
    return amount, vat


def payment_status_for(paid: float, total: float) -> PurchasePaymentStatus:
    if paid <= 0:
        return PurchasePaymentStatus.UNPAID
    if paid >= total - PAYMENT_TOLERANCE:
        return PurchasePaymentStatus.PAID
    return PurchasePaymentStatus.PARTIAL


class PurchaseService:
    """Vendors and purchases for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant_id: int):
        self.db = db
        self.restaurant_id = restaurant_id

    # =========================================================================
    # VENDORS
    # =========================================================================

    async def get_vendor(self, vendor_id: int) -> Vendor:
        result = await self.db.execute(
            select(Vendor).where(
                Vendor.id == vendor_id,
                Vendor.restaurant_id == self.restaurant_id,
            )
        )
        vendor = result.scalar_one_or_none()
        if not vendor:
            raise NotFoundError("Vendor not found")
        return vendor

    async def create_vendor(
        self,
        name: str,
        pan_number: Optional[str] = None,
        phone: Optional[str] = None,
        credit_days: int = 0,
    ) -> Vendor:
        if credit_days < 0:
            raise ValidationError("Credit days cannot be negative")
        vendor = Vendor(
            restaurant_id=self.restaurant_id,
            name=name,
            pan_number=pan_number,
            phone=phone,
            credit_days=credit_days,
            status=VendorStatus.ACTIVE,
        )
        self.db.add(vendor)
        await self.db.flush()
        logger.info(f"🚚 Vendor {name} added (credit {credit_days} days)")
        return vendor

    async def set_vendor_status(self, vendor_id: int, status: VendorStatus) -> Vendor:
        vendor = await self.get_vendor(vendor_id)
        vendor.status = status
        await self.db.flush()
        return vendor

    async def list_vendors(self) -> list[Vendor]:
        result = await self.db.execute(
            select(Vendor)
            .where(Vendor.restaurant_id == self.restaurant_id)
            .order_by(Vendor.name)
        )
        return list(result.scalars().all())

    # =========================================================================
    # PURCHASES
    # =========================================================================

    async def get(self, purchase_id: int) -> Purchase:
        result = await self.db.execute(
            select(Purchase).where(
                Purchase.id == purchase_id,
                Purchase.restaurant_id == self.restaurant_id,
            )
        )
        purchase = result.scalar_one_or_none()
        if not purchase:
            raise NotFoundError("Purchase not found")
        return purchase

    async def items(self, purchase_id: int) -> list[PurchaseItem]:
        result = await self.db.execute(
            select(PurchaseItem)
            .where(PurchaseItem.purchase_id == purchase_id)
            .order_by(PurchaseItem.id)
        )
        return list(result.scalars().all())

    async def list_purchases(
        self,
        status: Optional[PurchaseStatus] = None,
        payment_status: Optional[PurchasePaymentStatus] = None,
        vendor_id: Optional[int] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> list[Purchase]:
        query = select(Purchase).where(Purchase.restaurant_id == self.restaurant_id)
        if status:
            query = query.where(Purchase.status == status)
        if payment_status:
            query = query.where(Purchase.payment_status == payment_status)
        if vendor_id:
            query = query.where(Purchase.vendor_id == vendor_id)
        if from_date:
            query = query.where(Purchase.purchase_date >= from_date)
        if to_date:
            query = query.where(Purchase.purchase_date <= to_date)
        result = await self.db.execute(query.order_by(Purchase.purchase_date, Purchase.id))
        return list(result.scalars().all())

    async def generate_purchase_number(self, purchase_date: date) -> str:
        stem = f"PO-{gregorian_fiscal_year(purchase_date)}-"
        result = await self.db.execute(
            select(Purchase.purchase_number)
            .where(
                Purchase.restaurant_id == self.restaurant_id,
                Purchase.purchase_number.like(f"{stem}%"),
            )
            .order_by(Purchase.id.desc())
            .limit(1)
        )
        last = result.scalar_one_or_none()
        sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
        return f"{stem}{sequence:05d}"

    async def create_purchase(
        self,
        vendor_id: int,
        lines: list[PurchaseLine],
        purchase_date: Optional[date] = None,
        vendor_bill_number: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: str = "Staff",
    ) -> Purchase:
        """
        Record a vendor bill as a DRAFT purchase.

        Raises:
            ValidationError: Inactive vendor, no lines, or invalid line values
        """
        vendor = await self.get_vendor(vendor_id)
        if vendor.status != VendorStatus.ACTIVE:
            raise ValidationError("Vendor is not active")
        if not lines:
            raise ValidationError("At least one item is required")

        purchase_date = purchase_date or date.today()
        stock = StockService(self.db, self.restaurant_id)

        subtotal = discount = taxable = vat_total = 0.0
        rows = []
        for line in lines:
            if line.stock_item_id:
                await stock.get_item(line.stock_item_id)
            amount, vat = calculate_line(line)
            subtotal += round(line.quantity * line.rate, 2)
            discount += line.discount
            taxable += amount
            vat_total += vat
            rows.append((line, amount, vat))

        taxable = round(taxable, 2)
        vat_total = round(vat_total, 2)
        purchase = Purchase(
            restaurant_id=self.restaurant_id,
            vendor_id=vendor.id,
            purchase_number=await self.generate_purchase_number(purchase_date),
            vendor_bill_number=vendor_bill_number,
            purchase_date=purchase_date,
            due_date=purchase_date + timedelta(days=vendor.credit_days),
            subtotal=round(subtotal, 2),
            discount_amount=round(discount, 2),
            taxable_amount=taxable,
            vat_amount=vat_total,
            total_amount=round(taxable + vat_total, 2),
            paid_amount=0.0,
            status=PurchaseStatus.DRAFT,
            payment_status=PurchasePaymentStatus.UNPAID,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(purchase)
        await self.db.flush()

        self.db.add_all([
            PurchaseItem(
                purchase_id=purchase.id,
                stock_item_id=line.stock_item_id,
                description=line.description,
                quantity=line.quantity,
                rate=line.rate,
                discount=round(line.discount, 2),
                amount=amount,
                is_vatable=line.is_vatable,
                vat_amount=vat,
            )
            for line, amount, vat in rows
        ])
        await self.db.flush()

        logger.info(
            f"🧾 Purchase {purchase.purchase_number} from {vendor.name} "
            f"- Rs. {purchase.total_amount:.2f} (due {purchase.due_date})"
        )
        return purchase

    async def approve(self, purchase_id: int) -> Purchase:
        purchase = await self.get(purchase_id)
        if purchase.status != PurchaseStatus.DRAFT:
            raise ValidationError("Only draft purchases can be approved")
        purchase.status = PurchaseStatus.APPROVED
        await self.db.flush()
        return purchase

    async def receive(
        self,
        purchase_id: int,
        godown_id: Optional[int] = None,
        received_by: str = "Staff",
    ) -> dict:
        """
        Receive goods into stock and post the purchase voucher.

        DRAFT purchases are approved implicitly.

        Returns:
            dict with the purchase, the stock movements written and the voucher id
            (None when the restaurant has no chart of accounts)
        """
        purchase = await self.get(purchase_id)
        if purchase.status not in (PurchaseStatus.DRAFT, PurchaseStatus.APPROVED):
            raise ValidationError("Only draft or approved purchases can be received")

        stock = StockService(self.db, self.restaurant_id)
        if godown_id:
            await stock.get_godown(godown_id)
        else:
            default = await stock.get_default_godown()
            godown_id = default.id if default else None

        movements = []
        for item in await self.items(purchase.id):
            if not item.stock_item_id:
                continue
            # Stock is valued net of line discount, excluding recoverable VAT
            rate = round(item.amount / item.quantity, 4)
            movement = await stock.create_movement(
                item.stock_item_id,
                MovementType.PURCHASE_IN,
                item.quantity,
                rate=rate,
                to_godown_id=godown_id,
                reference_type="purchase",
                reference_id=str(purchase.id),
                notes=f"Received against {purchase.purchase_number}",
                created_by=received_by,
            )
            movements.append(movement)

        purchase.status = PurchaseStatus.RECEIVED
        purchase.received_at = datetime.now()
        voucher_id = await self.post_purchase_voucher(purchase, received_by)
        await self.db.flush()

        logger.info(
            f"📥 Purchase {purchase.purchase_number} received "
            f"({len(movements)} stock movements)"
        )
        return {"purchase": purchase, "movements": movements, "voucher_id": voucher_id}

    async def cancel(self, purchase_id: int) -> Purchase:
        purchase = await self.get(purchase_id)
        if purchase.status == PurchaseStatus.RECEIVED:
            raise ValidationError("Received purchases cannot be cancelled")
        if purchase.status == PurchaseStatus.CANCELLED:
            raise ValidationError("Purchase is already cancelled")
        if purchase.paid_amount > 0:
            raise ValidationError("Cannot cancel paid purchases")
        purchase.status = PurchaseStatus.CANCELLED
        await self.db.flush()
        return purchase

    async def record_payment(
        self,
        purchase_id: int,
        amount: float,
        method: str = "CASH",
        paid_by: str = "Staff",
    ) -> dict:
        """
        Pay a vendor against a purchase.

        Raises:
            ValidationError: Non-positive amount, unreceived or settled purchase,
                or an amount above the outstanding balance
        """
        if amount <= 0:
            raise ValidationError("Valid payment amount is required")
        if method.upper() not in VENDOR_PAYMENT_ACCOUNT_CODES:
            raise ValidationError(f"Unsupported vendor payment method: {method}")

        purchase = await self.get(purchase_id)
        if purchase.status not in (PurchaseStatus.APPROVED, PurchaseStatus.RECEIVED):
            raise ValidationError("Purchase must be approved or received before payment")
        if purchase.payment_status == PurchasePaymentStatus.PAID:
            raise ValidationError("Purchase is already fully paid")

        remaining = round(purchase.total_amount - purchase.paid_amount, 2)
        if amount > remaining + PAYMENT_TOLERANCE:
            raise ValidationError(
                f"Payment amount exceeds remaining balance of Rs. {remaining:.2f}"
            )

        purchase.paid_amount = round(purchase.paid_amount + amount, 2)
        purchase.payment_status = payment_status_for(purchase.paid_amount, purchase.total_amount)
        voucher_id = await self.post_payment_voucher(purchase, amount, method, paid_by)
        await self.db.flush()

        logger.info(
            f"💸 Paid Rs. {amount:.2f} on {purchase.purchase_number} "
            f"({purchase.payment_status.value})"
        )
        return {
            "purchase": purchase,
            "balance": round(purchase.total_amount - purchase.paid_amount, 2),
            "voucher_id": voucher_id,
        }

    # =========================================================================
    # VOUCHERS
    # =========================================================================

    async def post_purchase_voucher(self, purchase: Purchase, posted_by: str = "System") -> Optional[int]:
        accounts = AccountService(self.db, self.restaurant_id)
        purchases_acc = await accounts.get_by_code(PURCHASES_ACCOUNT_CODE)
        vat_acc = await accounts.get_by_code(VAT_RECEIVABLE_ACCOUNT_CODE)
        creditors_acc = await accounts.get_by_code(CREDITORS_ACCOUNT_CODE)
        if not (purchases_acc and vat_acc and creditors_acc):
            logger.info(f"📒 No chart of accounts for restaurant {self.restaurant_id}; purchase voucher skipped")
            return None

        vendor = await self.get_vendor(purchase.vendor_id)
        entries = [EntryInput(account_id=purchases_acc.id, debit=purchase.taxable_amount)]
        if purchase.vat_amount > 0:
            entries.append(EntryInput(account_id=vat_acc.id, debit=purchase.vat_amount))
        entries.append(EntryInput(account_id=creditors_acc.id, credit=purchase.total_amount))

        voucher = await VoucherService(self.db, self.restaurant_id).create(
            VoucherType.PURCHASE,
            entries,
            voucher_date=purchase.purchase_date,
            narration=f"Purchase {purchase.purchase_number}",
            party_name=vendor.name,
            reference_type="purchase",
            reference_id=str(purchase.id),
            auto_post=True,
            created_by=posted_by,
        )
        return voucher.id

    async def post_payment_voucher(
        self,
        purchase: Purchase,
        amount: float,
        method: str,
        posted_by: str = "System",
    ) -> Optional[int]:
        code = VENDOR_PAYMENT_ACCOUNT_CODES[method.upper()]
        accounts = AccountService(self.db, self.restaurant_id)
        creditors_acc = await accounts.get_by_code(CREDITORS_ACCOUNT_CODE)
        paid_from = await accounts.get_by_code(code)
        if not (creditors_acc and paid_from):
            return None

        vendor = await self.get_vendor(purchase.vendor_id)
        voucher = await VoucherService(self.db, self.restaurant_id).create(
            VoucherType.PAYMENT,
            [
                EntryInput(account_id=creditors_acc.id, debit=amount),
                EntryInput(account_id=paid_from.id, credit=amount),
            ],
            narration=f"Payment against {purchase.purchase_number}",
            party_name=vendor.name,
            reference_type="purchase",
            reference_id=str(purchase.id),
            auto_post=True,
            created_by=posted_by,
        )
        return voucher.id
