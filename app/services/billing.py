"""
Billing Service

Bills gather a table's unbilled orders, carry VAT and service charge, and
collect one or more payments.

Bill lifecycle:
    OPEN --finalize--> FINALIZED --revert--> OPEN
    OPEN / FINALIZED --payment--> PARTIALLY_PAID --payment--> PAID
    OPEN / FINALIZED (no payments) --cancel--> CANCELLED

Settling a bill in full ends the table session, awards loyalty points,
posts a SALES voucher (when the restaurant has a chart of accounts) and
issues the IRD tax invoice.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ConflictError, ValidationError, NotFoundError
from app.models import (
    Bill,
    BillStatus,
    GatewayPayment,
    GatewayPaymentStatus,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    Payment,
    PaymentMethod,
    Restaurant,
    SessionStatus,
    TableSession,
    VoucherType,
)
from app.services.accounting import AccountService, VoucherService, EntryInput
from app.services.loyalty import LoyaltyService
from app.services.payment.base import GatewayResult
from app.services.restaurants import restaurant_setting
from app.services.sessions import SessionService

logger = logging.getLogger(__name__)

PAYMENT_TOLERANCE = 0.01

# Chart of accounts code debited for each payment method
PAYMENT_ACCOUNT_CODES = {
    PaymentMethod.CASH: "1000",
    PaymentMethod.CARD: "1010",
    PaymentMethod.BANK_TRANSFER: "1010",
    PaymentMethod.FONEPAY: "1010",
    PaymentMethod.KHALTI: "1020",
    PaymentMethod.ESEWA: "1020",
    PaymentMethod.CREDIT: "1100",
    PaymentMethod.LOYALTY_POINTS: "5100",
}
WALLET_METHODS = (PaymentMethod.KHALTI, PaymentMethod.ESEWA)
SALES_ACCOUNT_CODE = "4000"
VAT_ACCOUNT_CODE = "2100"
SERVICE_CHARGE_ACCOUNT_CODE = "2200"


@dataclass
class BillTotals:
    subtotal: float
    discount_amount: float
    tax_amount: float
    service_charge: float
    total_amount: float


def calculate_bill_totals(
    subtotal: float,
    discount_amount: float = 0.0,
    vat_rate: Optional[float] = 13.0,
    service_charge_rate: Optional[float] = 10.0,
) -> BillTotals:
    """
    VAT and service charge are levied on the subtotal after the bill discount.
    A rate of ``None`` disables that charge.
    """
    taxable = max(0.0, subtotal - discount_amount)
    tax = round(taxable * vat_rate / 100, 2) if vat_rate else 0.0
    service = round(taxable * service_charge_rate / 100, 2) if service_charge_rate else 0.0
    return BillTotals(
        subtotal=round(subtotal, 2),
        discount_amount=round(discount_amount, 2),
        tax_amount=tax,
        service_charge=service,
        total_amount=round(taxable + tax + service, 2),
    )


def billable_amount(item: OrderItem) -> float:
    """Line total an item contributes to the bill."""
    if item.status == OrderItemStatus.CANCELLED or item.is_complimentary:
        return 0.0
    return round(item.total_price - (item.discount_amount or 0.0), 2)


class BillingService:
    """Bills and payments for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant: Restaurant):
        self.db = db
        self.restaurant = restaurant
        self.restaurant_id = restaurant.id
        self.sessions = SessionService(db, restaurant.id)

    # =========================================================================
    # RATES
    # =========================================================================

    def _rates(self) -> tuple[Optional[float], Optional[float]]:
        settings = get_settings()
        vat_enabled = restaurant_setting(self.restaurant, "vat_enabled", settings.vat_enabled)
        service_enabled = restaurant_setting(
            self.restaurant, "service_charge_enabled", settings.service_charge_enabled
        )
        vat_rate = float(restaurant_setting(self.restaurant, "vat_rate", settings.vat_rate))
        service_rate = float(restaurant_setting(
            self.restaurant, "service_charge_rate", settings.service_charge_rate
        ))
        return (vat_rate if vat_enabled else None, service_rate if service_enabled else None)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get(self, bill_id: int) -> Bill:
        result = await self.db.execute(
            select(Bill).where(Bill.id == bill_id, Bill.restaurant_id == self.restaurant_id)
        )
        bill = result.scalar_one_or_none()
        if not bill:
            raise NotFoundError("Bill not found")
        return bill

    async def orders(self, bill_id: int) -> list[Order]:
        result = await self.db.execute(
            select(Order).where(Order.bill_id == bill_id).order_by(Order.id)
        )
        return list(result.scalars().all())

    async def items(self, bill_id: int) -> list[OrderItem]:
        order_ids = [o.id for o in await self.orders(bill_id)]
        if not order_ids:
            return []
        result = await self.db.execute(
            select(OrderItem).where(OrderItem.order_id.in_(order_ids)).order_by(OrderItem.id)
        )
        return list(result.scalars().all())

    async def payments(self, bill_id: int) -> list[Payment]:
        result = await self.db.execute(
            select(Payment).where(Payment.bill_id == bill_id).order_by(Payment.id)
        )
        return list(result.scalars().all())

    async def list_bills(self, status: Optional[BillStatus] = None) -> list[Bill]:
        query = select(Bill).where(Bill.restaurant_id == self.restaurant_id)
        if status:
            query = query.where(Bill.status == status)
        result = await self.db.execute(query.order_by(Bill.id.desc()))
        return list(result.scalars().all())

    async def detail(self, bill_id: int) -> dict:
        bill = await self.get(bill_id)
        return {
            "bill": bill,
            "items": await self.items(bill.id),
            "payments": await self.payments(bill.id),
            "balance_due": round(max(0.0, bill.total_amount - bill.paid_amount), 2),
        }

    # =========================================================================
    # CREATION
    # =========================================================================

    async def _next_bill_number(self) -> str:
        count = await self.db.scalar(
            select(func.count(Bill.id)).where(Bill.restaurant_id == self.restaurant_id)
        )
        return f"BILL-{(count or 0) + 1:06d}"

    async def create_bill(
        self,
        session_id: Optional[int] = None,
        table_id: Optional[int] = None,
        order_id: Optional[int] = None,
        created_by: str = "Staff",
    ) -> Bill:
        """
        Bill every non-cancelled, unbilled order of a session, table or single order.

        Raises:
            ValidationError: Nothing left to bill
        """
        if session_id is None and table_id is None and order_id is None:
            raise ValidationError("A session, table or order is required to create a bill")

        query = select(Order).where(
            Order.restaurant_id == self.restaurant_id,
            Order.bill_id.is_(None),
            Order.status != OrderStatus.CANCELLED,
        )
        if order_id is not None:
            query = query.where(Order.id == order_id)
        elif session_id is not None:
            query = query.where(Order.session_id == session_id)
        else:
            query = query.where(Order.table_id == table_id)

        orders = list((await self.db.execute(query.order_by(Order.id))).scalars().all())
        if not orders:
            raise ValidationError("No unbilled orders found")

        session: Optional[TableSession] = None
        session_ids = {o.session_id for o in orders if o.session_id}
        if session_id is not None:
            session = await self.sessions.get(session_id)
        elif len(session_ids) == 1:
            session = await self.sessions.get(session_ids.pop())

        bill = Bill(
            restaurant_id=self.restaurant_id,
            table_id=orders[0].table_id,
            session_id=session.id if session else None,
            customer_id=session.customer_id if session else None,
            bill_number=await self._next_bill_number(),
            status=BillStatus.OPEN,
            edit_log=[],
            created_by=created_by,
        )
        self.db.add(bill)
        await self.db.flush()

        now = datetime.now()
        for order in orders:
            order.bill_id = bill.id
            order.status = OrderStatus.COMPLETED
            if order.completed_at is None:
                order.completed_at = now

        await self.recalculate(bill)
        logger.info(
            f"🧾 Bill {bill.bill_number} created for {len(orders)} order(s): "
            f"Rs. {bill.total_amount:.2f}"
        )
        return bill

    async def recalculate(self, bill: Bill) -> Bill:
        subtotal = sum(billable_amount(i) for i in await self.items(bill.id))
        vat_rate, service_rate = self._rates()
        totals = calculate_bill_totals(subtotal, bill.discount_amount or 0.0, vat_rate, service_rate)
        bill.subtotal = totals.subtotal
        bill.tax_amount = totals.tax_amount
        bill.service_charge = totals.service_charge
        bill.total_amount = totals.total_amount
        await self.db.flush()
        return bill

    # =========================================================================
    # EDITS (OPEN bills only)
    # =========================================================================

    async def _require_open(self, bill_id: int) -> Bill:
        bill = await self.get(bill_id)
        if bill.status != BillStatus.OPEN:
            raise ValidationError("Bill can only be edited while open")
        return bill

    async def _bill_item(self, bill: Bill, item_id: int) -> OrderItem:
        for item in await self.items(bill.id):
            if item.id == item_id:
                return item
        raise NotFoundError("Item not found on this bill")

    def _log_edit(self, bill: Bill, action: str, edited_by: str, **details) -> None:
        bill.edit_log = list(bill.edit_log or []) + [{
            "action": action,
            "edited_by": edited_by,
            "edited_at": datetime.now().isoformat(),
            **details,
        }]

    async def mark_complimentary(self, bill_id: int, item_id: int, reason: str, edited_by: str = "Staff") -> Bill:
        if not reason or not reason.strip():
            raise ValidationError("A reason is required for complimentary items")
        bill = await self._require_open(bill_id)
        item = await self._bill_item(bill, item_id)

        item.is_complimentary = True
        item.complimentary_reason = reason.strip()
        self._log_edit(bill, "COMPLIMENTARY", edited_by, item_id=item.id,
                       item_name=item.name, amount=item.total_price, reason=item.complimentary_reason)
        return await self.recalculate(bill)

    async def apply_item_discount(self, bill_id: int, item_id: int, amount: float, edited_by: str = "Staff") -> Bill:
        bill = await self._require_open(bill_id)
        item = await self._bill_item(bill, item_id)
        if amount < 0:
            raise ValidationError("Discount cannot be negative")
        if amount > item.total_price:
            raise ValidationError("Discount cannot exceed the item total")

        previous = item.discount_amount
        item.discount_amount = round(amount, 2)
        self._log_edit(bill, "ITEM_DISCOUNT", edited_by, item_id=item.id,
                       item_name=item.name, previous=previous, amount=item.discount_amount)
        return await self.recalculate(bill)

    async def apply_bill_discount(
        self,
        bill_id: int,
        amount: float,
        reason: Optional[str] = None,
        edited_by: str = "Staff",
    ) -> Bill:
        bill = await self._require_open(bill_id)
        await self.recalculate(bill)
        if amount < 0:
            raise ValidationError("Discount cannot be negative")
        if amount > bill.subtotal:
            raise ValidationError("Discount cannot exceed the bill subtotal")

        previous = bill.discount_amount
        bill.discount_amount = round(amount, 2)
        self._log_edit(bill, "BILL_DISCOUNT", edited_by, previous=previous,
                       amount=bill.discount_amount, reason=reason)
        return await self.recalculate(bill)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def finalize(self, bill_id: int, finalized_by: str = "Staff") -> Bill:
        bill = await self.get(bill_id)
        if bill.status != BillStatus.OPEN:
            raise ValidationError("Only open bills can be finalized")
        await self.recalculate(bill)
        bill.status = BillStatus.FINALIZED
        bill.finalized_at = datetime.now()
        self._log_edit(bill, "FINALIZED", finalized_by)
        await self.db.flush()
        return bill

    async def revert(self, bill_id: int, reason: str, reverted_by: str = "Staff") -> Bill:
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to revert a bill")
        bill = await self.get(bill_id)
        if bill.status != BillStatus.FINALIZED:
            raise ValidationError("Only finalized bills can be reverted")
        if bill.paid_amount > 0 or await self.payments(bill.id):
            raise ValidationError("Cannot revert a bill with payments recorded")

        bill.status = BillStatus.OPEN
        bill.finalized_at = None
        bill.revert_reason = reason.strip()
        self._log_edit(bill, "REVERTED", reverted_by, reason=bill.revert_reason)
        await self.db.flush()
        logger.info(f"↩️ Bill {bill.bill_number} reverted to OPEN: {bill.revert_reason}")
        return bill

    async def cancel(self, bill_id: int, reason: str, cancelled_by: str = "Staff") -> Bill:
        """Void an unpaid bill and release its orders for re-billing."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to cancel a bill")
        bill = await self.get(bill_id)
        if bill.status not in (BillStatus.OPEN, BillStatus.FINALIZED):
            raise ValidationError("Only unpaid bills can be cancelled")
        if await self.payments(bill.id):
            raise ValidationError("Cannot cancel a bill with payments recorded")

        for order in await self.orders(bill.id):
            order.bill_id = None
        bill.status = BillStatus.CANCELLED
        self._log_edit(bill, "CANCELLED", cancelled_by, reason=reason.strip())
        await self.db.flush()
        return bill

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    async def record_payment(
        self,
        bill_id: int,
        amount: float,
        method: PaymentMethod,
        cash_received: Optional[float] = None,
        reference: Optional[str] = None,
        points_to_redeem: Optional[int] = None,
        customer_id: Optional[int] = None,
        buyer_name: Optional[str] = None,
        buyer_pan: Optional[str] = None,
        received_by: str = "Staff",
    ) -> dict:
        """
        Record a payment (optionally with points redemption) against a bill.

        Returns:
            dict with the bill, the payment rows written, change due and,
            once settled, the loyalty award and invoice
        """
        bill = await self.get(bill_id)
        if bill.status == BillStatus.PAID:
            raise ValidationError("Bill is already paid")
        if bill.status == BillStatus.CANCELLED:
            raise ValidationError("Cannot pay a cancelled bill")
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")
        if method == PaymentMethod.LOYALTY_POINTS:
            raise ValidationError("Use points_to_redeem to pay with loyalty points")
        if reference and method in WALLET_METHODS and await self._reference_used(method, reference):
            raise ConflictError(f"{method.value} transaction {reference} is already recorded")

        if customer_id is not None:
            loyalty = LoyaltyService(self.db, self.restaurant)
            await loyalty.get_customer(customer_id)
            bill.customer_id = customer_id
            if bill.session_id:
                session = await self.sessions.get(bill.session_id)
                session.customer_id = customer_id

        written: list[Payment] = []

        if points_to_redeem:
            if bill.customer_id is None:
                raise ValidationError("A customer is required to redeem points")
            loyalty = LoyaltyService(self.db, self.restaurant)
            value = await loyalty.redeem_points(
                bill.customer_id, points_to_redeem, bill.total_amount, bill_id=bill.id
            )
            written.append(Payment(
                restaurant_id=self.restaurant_id,
                bill_id=bill.id,
                method=PaymentMethod.LOYALTY_POINTS,
                amount=value,
                points_redeemed=points_to_redeem,
                received_by=received_by,
            ))
            bill.paid_amount = round(bill.paid_amount + value, 2)

        outstanding = round(bill.total_amount - bill.paid_amount, 2)
        if amount - outstanding > PAYMENT_TOLERANCE:
            raise ValidationError(f"Payment exceeds the outstanding balance ({outstanding:.2f})")

        change = None
        if cash_received is not None:
            if method != PaymentMethod.CASH:
                raise ValidationError("Cash received applies to cash payments only")
            if cash_received < amount:
                raise ValidationError("Cash received is less than the payment amount")
            change = round(cash_received - amount, 2)

        written.append(Payment(
            restaurant_id=self.restaurant_id,
            bill_id=bill.id,
            method=method,
            amount=round(amount, 2),
            cash_received=cash_received,
            change_amount=change,
            reference=reference,
            received_by=received_by,
        ))
        bill.paid_amount = round(bill.paid_amount + amount, 2)
        self.db.add_all(written)
        await self.db.flush()

        if bill.session_id:
            await self.sessions.mark_payment_started(bill.session_id)

        result = {
            "bill": bill,
            "payments": written,
            "change_amount": change,
            "loyalty": None,
            "invoice": None,
        }

        if bill.paid_amount + PAYMENT_TOLERANCE >= bill.total_amount:
            result.update(await self._settle(bill, received_by, buyer_name, buyer_pan))
        else:
            bill.status = BillStatus.PARTIALLY_PAID
            await self.db.flush()
            logger.info(
                f"💵 Partial payment on {bill.bill_number}: "
                f"{bill.paid_amount:.2f} / {bill.total_amount:.2f}"
            )
        return result

    # =========================================================================
    # WALLET PAYMENTS
    # =========================================================================

    async def _reference_used(
        self, method: PaymentMethod, reference: str, excluding: Optional[int] = None
    ) -> bool:
        """Gateway references are global: one wallet transaction pays one bill, in any tenant."""
        paid = await self.db.execute(
            select(Payment.id).where(Payment.method == method, Payment.reference == reference).limit(1)
        )
        if paid.scalar_one_or_none() is not None:
            return True
        query = select(GatewayPayment.id).where(
            GatewayPayment.method == method, GatewayPayment.reference == reference
        )
        if excluding is not None:
            query = query.where(GatewayPayment.id != excluding)
        claimed = await self.db.execute(query.limit(1))
        return claimed.scalar_one_or_none() is not None

    async def record_gateway_initiation(
        self, bill: Bill, method: PaymentMethod, initiation_id: str, amount: float
    ) -> GatewayPayment:
        """Bind the gateway's initiation id to the bill before the guest is sent off to pay."""
        attempt = GatewayPayment(
            restaurant_id=self.restaurant_id,
            bill_id=bill.id,
            method=method,
            initiation_id=initiation_id,
            amount=round(amount, 2),
        )
        self.db.add(attempt)
        await self.db.flush()
        return attempt

    async def settle_gateway_payment(self, attempt: GatewayPayment, verified: GatewayResult) -> dict:
        """
        Apply a verified wallet payment to the bill it was initiated for.

        The gateway has already taken the money, so nothing is dropped:
        whatever the bill cannot absorb (it was settled meanwhile, or the
        guest paid more than the balance) is kept on the attempt as
        ``refund_amount``.

        Returns:
            record_payment's dict plus ``status`` (APPLIED, EXCESS_REFUND_DUE
            or REFUND_DUE) and ``refund_amount``
        """
        reference = verified.transaction_id or attempt.initiation_id
        if await self._reference_used(attempt.method, reference, excluding=attempt.id):
            raise ConflictError(f"{attempt.method.value} transaction {reference} is already recorded")

        bill = await self.get(attempt.bill_id)
        amount = round(verified.amount or 0.0, 2)
        attempt.verified_amount = amount
        attempt.settled_at = datetime.now()

        outstanding = round(bill.total_amount - bill.paid_amount, 2)
        if bill.status in (BillStatus.PAID, BillStatus.CANCELLED) or outstanding < PAYMENT_TOLERANCE:
            attempt.status = GatewayPaymentStatus.REFUND_DUE
            attempt.refund_amount = amount
            attempt.reference = reference
            await self.db.flush()
            logger.warning(
                f"💸 {attempt.method.value} {reference}: Rs. {amount:.2f} received for "
                f"{bill.status.value.lower()} bill {bill.bill_number}; refund due"
            )
            return {
                "status": "REFUND_DUE",
                "refund_amount": amount,
                "bill": bill,
                "payments": [],
                "change_amount": None,
                "loyalty": None,
                "invoice": None,
            }

        applied = min(amount, outstanding)
        result = await self.record_payment(
            bill.id,
            amount=applied,
            method=attempt.method,
            reference=reference,
            received_by=attempt.method.value.title(),
        )
        # Set only now: record_payment checks the reference against attempts too.
        attempt.reference = reference
        attempt.payment_id = result["payments"][-1].id
        attempt.refund_amount = round(amount - applied, 2)
        if attempt.refund_amount > 0:
            attempt.status = GatewayPaymentStatus.REFUND_DUE
            logger.warning(
                f"💸 {attempt.method.value} {reference}: Rs. {attempt.refund_amount:.2f} above "
                f"the balance of {bill.bill_number}; refund due"
            )
        else:
            attempt.status = GatewayPaymentStatus.COMPLETED
        await self.db.flush()

        status = "EXCESS_REFUND_DUE" if attempt.refund_amount > 0 else "APPLIED"
        return {**result, "status": status, "refund_amount": attempt.refund_amount}

    async def refunds_due(self) -> list[GatewayPayment]:
        result = await self.db.execute(
            select(GatewayPayment)
            .where(
                GatewayPayment.restaurant_id == self.restaurant_id,
                GatewayPayment.status == GatewayPaymentStatus.REFUND_DUE,
            )
            .order_by(GatewayPayment.id)
        )
        return list(result.scalars().all())

    async def _settle(
        self,
        bill: Bill,
        settled_by: str,
        buyer_name: Optional[str],
        buyer_pan: Optional[str],
    ) -> dict:
        from app.services.invoice import InvoiceService

        bill.status = BillStatus.PAID
        bill.paid_at = datetime.now()
        await self.db.flush()
        logger.info(f"✅ Bill {bill.bill_number} paid in full (Rs. {bill.total_amount:.2f})")

        if bill.session_id:
            session = await self.sessions.get(bill.session_id)
            if session.status == SessionStatus.ACTIVE:
                await self.sessions.end_session(session.id, settled_by)

        loyalty_result = None
        if bill.customer_id:
            loyalty_result = await LoyaltyService(self.db, self.restaurant).award_points(
                bill.customer_id, bill.total_amount, bill_id=bill.id
            )

        await self.post_sales_voucher(bill, settled_by)

        invoice = await InvoiceService(self.db, self.restaurant).create_invoice(
            bill, buyer_name=buyer_name, buyer_pan=buyer_pan, created_by=settled_by
        )
        return {"loyalty": loyalty_result, "invoice": invoice}

    async def post_sales_voucher(self, bill: Bill, posted_by: str = "System") -> Optional[int]:
        """
        Post the SALES voucher for a paid bill.

        Skipped (returns None) when the restaurant has no chart of accounts.
        """
        accounts = AccountService(self.db, self.restaurant_id)
        payments = await self.payments(bill.id)

        by_code: dict[str, float] = {}
        for payment in payments:
            code = PAYMENT_ACCOUNT_CODES[payment.method]
            by_code[code] = round(by_code.get(code, 0.0) + payment.amount, 2)

        needed = set(by_code) | {SALES_ACCOUNT_CODE, VAT_ACCOUNT_CODE, SERVICE_CHARGE_ACCOUNT_CODE}
        resolved = {code: await accounts.get_by_code(code) for code in needed}
        if any(account is None for account in resolved.values()):
            logger.info(f"📒 No chart of accounts for restaurant {self.restaurant_id}; sales voucher skipped")
            return None

        debit_total = round(sum(by_code.values()), 2)
        sales = round(debit_total - bill.tax_amount - bill.service_charge, 2)
        entries = [
            EntryInput(account_id=resolved[code].id, debit=value)
            for code, value in by_code.items() if value > 0
        ]
        entries.append(EntryInput(account_id=resolved[SALES_ACCOUNT_CODE].id, credit=sales))
        if bill.tax_amount > 0:
            entries.append(EntryInput(account_id=resolved[VAT_ACCOUNT_CODE].id, credit=bill.tax_amount))
        if bill.service_charge > 0:
            entries.append(EntryInput(
                account_id=resolved[SERVICE_CHARGE_ACCOUNT_CODE].id, credit=bill.service_charge
            ))

        voucher = await VoucherService(self.db, self.restaurant_id).create(
            VoucherType.SALES,
            entries,
            narration=f"Sales against {bill.bill_number}",
            reference_type="bill",
            reference_id=str(bill.id),
            auto_post=True,
            created_by=posted_by,
        )
        return voucher.id
