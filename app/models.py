"""
SQLAlchemy Database Models

Relational schema for the multi-tenant POS back office:
- Restaurants, tables, table sessions, OTP history, cleaning logs, alerts
- Menu, orders and kitchen items
- Bills, payments and loyalty
- Chart of accounts, vouchers and ledger entries
- Stock items, godowns, movements, vendors and purchases
- IRD invoices, audit logs and CBMS sync logs

Every tenant-owned row carries a ``restaurant_id`` foreign key.
"""

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    DateTime,
    Date,
    Text,
    Enum,
    Boolean,
    ForeignKey,
    JSON,
    UniqueConstraint,
)

from app.database import Base


# =============================================================================
# ENUMS
# =============================================================================

class TableStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    BILL_REQUESTED = "BILL_REQUESTED"
    NEEDS_ATTENTION = "NEEDS_ATTENTION"
    CLEANING = "CLEANING"
    RESERVED = "RESERVED"


class SessionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class SessionPhase(str, enum.Enum):
    """Guest journey through a table visit, in order."""
    CREATED = "CREATED"
    SEATED = "SEATED"
    ORDERING = "ORDERING"
    DINING = "DINING"
    BILL_REQUESTED = "BILL_REQUESTED"
    PAYING = "PAYING"
    COMPLETED = "COMPLETED"


class OtpReason(str, enum.Enum):
    INITIAL = "INITIAL"
    MANUAL_REGENERATION = "MANUAL_REGENERATION"
    CHANGED_AFTER_PAYMENT = "CHANGED_AFTER_PAYMENT"
    USED = "USED"


class AlertType(str, enum.Enum):
    OTP_HELP = "OTP_HELP"
    ORDER_HELP = "ORDER_HELP"
    LONG_STAY = "LONG_STAY"
    SLA_BREACH = "SLA_BREACH"
    ASSISTANCE = "ASSISTANCE"


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "PENDING"
    PENDING_CONFIRMATION = "PENDING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class OrderItemStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENT_TO_KITCHEN = "SENT_TO_KITCHEN"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"
    CANCELLED = "CANCELLED"


class OrderSource(str, enum.Enum):
    QR = "QR"
    STAFF = "STAFF"


class BillStatus(str, enum.Enum):
    OPEN = "OPEN"
    FINALIZED = "FINALIZED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    KHALTI = "KHALTI"
    ESEWA = "ESEWA"
    FONEPAY = "FONEPAY"
    BANK_TRANSFER = "BANK_TRANSFER"
    CREDIT = "CREDIT"
    LOYALTY_POINTS = "LOYALTY_POINTS"


class GatewayPaymentStatus(str, enum.Enum):
    """Lifecycle of a wallet payment started from a bill."""
    INITIATED = "INITIATED"
    COMPLETED = "COMPLETED"
    REFUND_DUE = "REFUND_DUE"


class LoyaltyTier(str, enum.Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"


class PointsTransactionType(str, enum.Enum):
    EARN = "EARN"
    REDEEM = "REDEEM"
    BONUS = "BONUS"
    EXPIRE = "EXPIRE"
    ADJUST = "ADJUST"


class AccountGroup(str, enum.Enum):
    ASSETS = "ASSETS"
    LIABILITIES = "LIABILITIES"
    INCOME = "INCOME"
    EXPENSES = "EXPENSES"
    EQUITY = "EQUITY"


class VoucherType(str, enum.Enum):
    PAYMENT = "PAYMENT"
    RECEIPT = "RECEIPT"
    CONTRA = "CONTRA"
    JOURNAL = "JOURNAL"
    SALES = "SALES"
    PURCHASE = "PURCHASE"
    CREDIT_NOTE = "CREDIT_NOTE"
    DEBIT_NOTE = "DEBIT_NOTE"


class VoucherStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    POSTED = "POSTED"
    CANCELLED = "CANCELLED"


class MovementType(str, enum.Enum):
    PURCHASE_IN = "PURCHASE_IN"
    SALES_OUT = "SALES_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    TRANSFER_OUT = "TRANSFER_OUT"
    ADJUSTMENT_IN = "ADJUSTMENT_IN"
    ADJUSTMENT_OUT = "ADJUSTMENT_OUT"
    RETURN_IN = "RETURN_IN"
    RETURN_OUT = "RETURN_OUT"
    EXPIRED = "EXPIRED"


class VendorStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class PurchaseStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    APPROVED = "APPROVED"
    RECEIVED = "RECEIVED"
    CANCELLED = "CANCELLED"


class PurchasePaymentStatus(str, enum.Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class InvoiceStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"


class CbmsSyncStatus(str, enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# =============================================================================
# TENANT
# =============================================================================

class Restaurant(Base):
    """A tenant. Every other row hangs off one of these."""
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(150), nullable=False)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    address = Column(String(255), nullable=True)
    phone = Column(String(30), nullable=True)
    pan_number = Column(String(20), nullable=True)

    # Per-restaurant overrides: qr_order_requires_confirmation, loyalty settings
    settings = Column(JSON, nullable=False, default=dict)
    loyalty_settings = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.now, nullable=False)


class CbmsConfig(Base):
    """IRD CBMS credentials for a restaurant."""
    __tablename__ = "cbms_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, unique=True)
    enabled = Column(Boolean, default=False, nullable=False)
    username = Column(String(100), nullable=True)
    password = Column(String(255), nullable=True)
    seller_pan = Column(String(20), nullable=True)
    api_url = Column(String(255), nullable=True)


# =============================================================================
# TABLES, SESSIONS & ALERTS
# =============================================================================

class RestaurantTable(Base):
    __tablename__ = "tables"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_number = Column(String(20), nullable=False)
    capacity = Column(Integer, nullable=False, default=4)
    qr_code = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(Enum(TableStatus), default=TableStatus.AVAILABLE, nullable=False, index=True)

    # =========================================================================
    # OTP
    # =========================================================================
    current_otp = Column(String(3), nullable=True)
    otp_generated_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.now, nullable=False)

    __table_args__ = (UniqueConstraint("restaurant_id", "table_number"),)


class OtpHistory(Base):
    __tablename__ = "otp_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=False, index=True)
    otp = Column(String(3), nullable=False)
    reason = Column(Enum(OtpReason), nullable=False)
    changed_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class TableSession(Base):
    """
    One guest visit to a table, from QR scan to vacating.

    Phase timestamps are filled in as the visit progresses and are
    the source of truth for ``determine_session_phase``.
    """
    __tablename__ = "table_sessions"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)

    status = Column(Enum(SessionStatus), default=SessionStatus.ACTIVE, nullable=False, index=True)
    phase = Column(Enum(SessionPhase), default=SessionPhase.CREATED, nullable=False)

    # =========================================================================
    # GUESTS
    # =========================================================================
    guest_count = Column(Integer, nullable=True)
    guest_count_history = Column(JSON, nullable=False, default=list)

    # =========================================================================
    # PHASE TIMESTAMPS
    # =========================================================================
    qr_scanned_at = Column(DateTime, nullable=True)
    seated_at = Column(DateTime, nullable=True)
    waiter_notified_at = Column(DateTime, nullable=True)
    first_order_at = Column(DateTime, nullable=True)
    last_order_at = Column(DateTime, nullable=True)
    first_food_served_at = Column(DateTime, nullable=True)
    bill_requested_at = Column(DateTime, nullable=True)
    payment_started_at = Column(DateTime, nullable=True)
    payment_completed_at = Column(DateTime, nullable=True)
    vacated_at = Column(DateTime, nullable=True)

    started_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class SessionAlert(Base):
    __tablename__ = "session_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=True, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True)
    alert_type = Column(Enum(AlertType), nullable=False)
    priority = Column(String(20), nullable=False, default="medium")
    message = Column(Text, nullable=False)
    is_resolved = Column(Boolean, default=False, nullable=False, index=True)
    resolved_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class CleaningLog(Base):
    __tablename__ = "cleaning_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=True)
    started_at = Column(DateTime, default=datetime.now, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)
    cleaned_by = Column(String(100), nullable=True)


# =============================================================================
# MENU & ORDERS
# =============================================================================

class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    category = Column(String(100), nullable=True)
    price = Column(Float, nullable=False)
    station = Column(String(50), nullable=False, default="KITCHEN")
    is_available = Column(Boolean, default=True, nullable=False)
    expected_prep_time = Column(Integer, nullable=True)  # minutes


class Order(Base):
    """
    A round of items placed for a table, by a guest (QR) or by staff.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True, index=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=True, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=True, index=True)

    order_number = Column(String(20), nullable=False)
    source = Column(Enum(OrderSource), default=OrderSource.STAFF, nullable=False)
    status = Column(Enum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)
    notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    placed_by = Column(String(100), nullable=True)
    subtotal = Column(Float, nullable=False, default=0.0)

    # =========================================================================
    # STATUS TIMESTAMPS
    # =========================================================================
    placed_at = Column(DateTime, default=datetime.now, nullable=False)
    confirmed_at = Column(DateTime, nullable=True)
    preparing_at = Column(DateTime, nullable=True)
    ready_at = Column(DateTime, nullable=True)
    served_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=True)
    name = Column(String(150), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)
    total_price = Column(Float, nullable=False)
    notes = Column(Text, nullable=True)
    status = Column(Enum(OrderItemStatus), default=OrderItemStatus.PENDING, nullable=False)

    # =========================================================================
    # KITCHEN ROUTING & SLA
    # =========================================================================
    is_bar_item = Column(Boolean, default=False, nullable=False)
    expected_prep_time = Column(Integer, nullable=True)
    sent_to_kitchen_at = Column(DateTime, nullable=True)
    preparing_at = Column(DateTime, nullable=True)
    ready_at = Column(DateTime, nullable=True)
    served_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    sla_breached = Column(Boolean, default=False, nullable=False)
    sla_breach_minutes = Column(Integer, nullable=True)

    # =========================================================================
    # BILL EDITS
    # =========================================================================
    is_complimentary = Column(Boolean, default=False, nullable=False)
    complimentary_reason = Column(Text, nullable=True)
    discount_amount = Column(Float, default=0.0, nullable=False)

    stock_deducted = Column(Boolean, default=False, nullable=False)


# =============================================================================
# BILLING
# =============================================================================

class Bill(Base):
    __tablename__ = "bills"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True)
    session_id = Column(Integer, ForeignKey("table_sessions.id"), nullable=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=True)

    bill_number = Column(String(20), nullable=False)
    status = Column(Enum(BillStatus), default=BillStatus.OPEN, nullable=False, index=True)

    # =========================================================================
    # AMOUNTS
    # =========================================================================
    subtotal = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    service_charge = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    paid_amount = Column(Float, nullable=False, default=0.0)

    edit_log = Column(JSON, nullable=False, default=list)
    revert_reason = Column(Text, nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    finalized_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=False, index=True)
    method = Column(Enum(PaymentMethod), nullable=False)
    amount = Column(Float, nullable=False)
    cash_received = Column(Float, nullable=True)
    change_amount = Column(Float, nullable=True)
    reference = Column(String(100), nullable=True)  # gateway transaction id
    points_redeemed = Column(Integer, nullable=True)
    received_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class GatewayPayment(Base):
    """
    A Khalti / eSewa payment initiated for a bill.

    The callback is matched on ``(method, initiation_id)``, never on the
    bill id the browser sends back. Money the gateway confirmed but the
    bill could not absorb is kept in ``refund_amount``.
    """
    __tablename__ = "gateway_payments"
    __table_args__ = (UniqueConstraint("method", "initiation_id"),)

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=False, index=True)
    method = Column(Enum(PaymentMethod), nullable=False)
    initiation_id = Column(String(100), nullable=False)  # Khalti pidx / eSewa transaction_uuid
    amount = Column(Float, nullable=False)
    status = Column(Enum(GatewayPaymentStatus), default=GatewayPaymentStatus.INITIATED, nullable=False)
    verified_amount = Column(Float, nullable=True)
    refund_amount = Column(Float, default=0.0, nullable=False)
    reference = Column(String(100), nullable=True)  # gateway transaction id from verification
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    settled_at = Column(DateTime, nullable=True)


# =============================================================================
# LOYALTY
# =============================================================================

class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    phone = Column(String(20), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    status = Column(String(20), default="ACTIVE", nullable=False)

    tier = Column(Enum(LoyaltyTier), default=LoyaltyTier.BRONZE, nullable=False)
    points_balance = Column(Integer, default=0, nullable=False)
    points_earned_lifetime = Column(Integer, default=0, nullable=False)
    points_redeemed_lifetime = Column(Integer, default=0, nullable=False)
    total_spent = Column(Float, default=0.0, nullable=False)
    total_visits = Column(Integer, default=0, nullable=False)
    last_visit_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.now, nullable=False)

    __table_args__ = (UniqueConstraint("restaurant_id", "phone"),)


class PointsTransaction(Base):
    __tablename__ = "points_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=True)
    type = Column(Enum(PointsTransactionType), nullable=False)
    points = Column(Integer, nullable=False)
    balance_after = Column(Integer, nullable=False)
    bonus_type = Column(String(30), nullable=True)
    reason = Column(Text, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    is_expired = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


# =============================================================================
# ACCOUNTING
# =============================================================================

class ChartOfAccount(Base):
    __tablename__ = "chart_of_accounts"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    account_code = Column(String(20), nullable=False)
    account_name = Column(String(150), nullable=False)
    account_group = Column(Enum(AccountGroup), nullable=False)
    account_type = Column(String(50), nullable=False)
    parent_id = Column(Integer, ForeignKey("chart_of_accounts.id"), nullable=True)
    allow_posting = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_system = Column(Boolean, default=False, nullable=False)

    # =========================================================================
    # BALANCES
    # =========================================================================
    opening_balance = Column(Float, default=0.0, nullable=False)
    current_balance = Column(Float, default=0.0, nullable=False)

    __table_args__ = (UniqueConstraint("restaurant_id", "account_code"),)


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    voucher_number = Column(String(30), nullable=False, index=True)
    voucher_type = Column(Enum(VoucherType), nullable=False)
    voucher_date = Column(Date, nullable=False, index=True)
    narration = Column(Text, nullable=True)
    party_name = Column(String(150), nullable=True)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(50), nullable=True)
    total_amount = Column(Float, nullable=False, default=0.0)
    status = Column(Enum(VoucherStatus), default=VoucherStatus.DRAFT, nullable=False, index=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    posted_by = Column(String(100), nullable=True)
    posted_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)


class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    voucher_id = Column(Integer, ForeignKey("vouchers.id"), nullable=False, index=True)
    account_id = Column(Integer, ForeignKey("chart_of_accounts.id"), nullable=False, index=True)
    entry_date = Column(Date, nullable=False, index=True)
    debit = Column(Float, default=0.0, nullable=False)
    credit = Column(Float, default=0.0, nullable=False)
    narration = Column(Text, nullable=True)
    is_posted = Column(Boolean, default=False, nullable=False)


# =============================================================================
# STOCK
# =============================================================================

class StockItem(Base):
    __tablename__ = "stock_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    item_code = Column(String(30), nullable=False)
    name = Column(String(150), nullable=False)
    unit = Column(String(20), nullable=False, default="pcs")
    current_stock = Column(Float, default=0.0, nullable=False)
    average_cost = Column(Float, default=0.0, nullable=False)
    last_purchase_rate = Column(Float, nullable=True)
    reorder_level = Column(Float, default=0.0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    __table_args__ = (UniqueConstraint("restaurant_id", "item_code"),)


class Godown(Base):
    __tablename__ = "godowns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)


class GodownStock(Base):
    __tablename__ = "godown_stock"

    id = Column(Integer, primary_key=True, autoincrement=True)
    godown_id = Column(Integer, ForeignKey("godowns.id"), nullable=False)
    stock_item_id = Column(Integer, ForeignKey("stock_items.id"), nullable=False)
    quantity = Column(Float, default=0.0, nullable=False)
    average_cost = Column(Float, default=0.0, nullable=False)

    __table_args__ = (UniqueConstraint("godown_id", "stock_item_id"),)


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    stock_item_id = Column(Integer, ForeignKey("stock_items.id"), nullable=False, index=True)
    movement_number = Column(String(30), nullable=False)
    movement_type = Column(Enum(MovementType), nullable=False)
    movement_date = Column(DateTime, default=datetime.now, nullable=False)
    from_godown_id = Column(Integer, ForeignKey("godowns.id"), nullable=True)
    to_godown_id = Column(Integer, ForeignKey("godowns.id"), nullable=True)
    quantity = Column(Float, nullable=False)
    unit = Column(String(20), nullable=True)
    rate = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    balance_after = Column(Float, nullable=False)
    reference_type = Column(String(50), nullable=True)
    reference_id = Column(String(50), nullable=True, index=True)
    notes = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)


class MenuItemStockMapping(Base):
    """Bill of materials: stock consumed by one serving of a menu item."""
    __tablename__ = "menu_item_stock_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False, index=True)
    stock_item_id = Column(Integer, ForeignKey("stock_items.id"), nullable=False)
    quantity_per_serving = Column(Float, nullable=False)


# =============================================================================
# PURCHASES
# =============================================================================

class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(150), nullable=False)
    pan_number = Column(String(20), nullable=True)
    phone = Column(String(30), nullable=True)
    credit_days = Column(Integer, default=0, nullable=False)
    status = Column(Enum(VendorStatus), default=VendorStatus.ACTIVE, nullable=False)


class Purchase(Base):
    __tablename__ = "purchases"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id"), nullable=False, index=True)
    purchase_number = Column(String(30), nullable=False)
    vendor_bill_number = Column(String(50), nullable=True)
    purchase_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)

    # =========================================================================
    # AMOUNTS
    # =========================================================================
    subtotal = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    taxable_amount = Column(Float, nullable=False, default=0.0)
    vat_amount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    paid_amount = Column(Float, nullable=False, default=0.0)

    status = Column(Enum(PurchaseStatus), default=PurchaseStatus.DRAFT, nullable=False)
    payment_status = Column(
        Enum(PurchasePaymentStatus),
        default=PurchasePaymentStatus.UNPAID,
        nullable=False
    )
    notes = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)
    received_at = Column(DateTime, nullable=True)


class PurchaseItem(Base):
    __tablename__ = "purchase_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    purchase_id = Column(Integer, ForeignKey("purchases.id"), nullable=False, index=True)
    stock_item_id = Column(Integer, ForeignKey("stock_items.id"), nullable=True)
    description = Column(String(200), nullable=False)
    quantity = Column(Float, nullable=False)
    rate = Column(Float, nullable=False)
    discount = Column(Float, default=0.0, nullable=False)
    amount = Column(Float, nullable=False)
    is_vatable = Column(Boolean, default=True, nullable=False)
    vat_amount = Column(Float, default=0.0, nullable=False)


# =============================================================================
# IRD INVOICES & CBMS
# =============================================================================

class Invoice(Base):
    """
    IRD-compliant tax invoice issued for a paid bill.
    """
    __tablename__ = "invoices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    bill_id = Column(Integer, ForeignKey("bills.id"), nullable=True, unique=True)

    invoice_number = Column(String(30), nullable=False, index=True)
    fiscal_year = Column(String(10), nullable=False, index=True)
    invoice_date_ad = Column(DateTime, nullable=False)
    invoice_date_bs = Column(String(10), nullable=False)

    # =========================================================================
    # PARTIES
    # =========================================================================
    seller_name = Column(String(150), nullable=True)
    seller_pan = Column(String(20), nullable=True)
    buyer_name = Column(String(150), nullable=False, default="Cash")
    buyer_pan = Column(String(20), nullable=True)
    buyer_address = Column(String(255), nullable=True)

    # =========================================================================
    # AMOUNTS
    # =========================================================================
    subtotal = Column(Float, nullable=False)
    discount_amount = Column(Float, nullable=False, default=0.0)
    taxable_amount = Column(Float, nullable=False)
    vat_amount = Column(Float, nullable=False)
    service_charge = Column(Float, nullable=False, default=0.0)
    exempt_amount = Column(Float, nullable=False, default=0.0)
    export_amount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False)
    amount_in_words = Column(String(500), nullable=False)

    # =========================================================================
    # STATUS & PRINTING
    # =========================================================================
    status = Column(Enum(InvoiceStatus), default=InvoiceStatus.ACTIVE, nullable=False)
    cancellation_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    print_count = Column(Integer, default=0, nullable=False)
    last_printed_at = Column(DateTime, nullable=True)

    # =========================================================================
    # CBMS SYNC
    # =========================================================================
    cbms_synced = Column(Boolean, default=False, nullable=False, index=True)
    cbms_synced_at = Column(DateTime, nullable=True)
    cbms_response_code = Column(Integer, nullable=True)
    cbms_response_message = Column(String(255), nullable=True)
    cbms_sync_attempts = Column(Integer, default=0, nullable=False)
    cbms_last_error = Column(Text, nullable=True)

    created_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class InvoiceItem(Base):
    __tablename__ = "invoice_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    description = Column(String(200), nullable=False)
    quantity = Column(Float, nullable=False)
    rate = Column(Float, nullable=False)
    amount = Column(Float, nullable=False)


class InvoiceAuditLog(Base):
    __tablename__ = "invoice_audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    action = Column(String(30), nullable=False)
    details = Column(JSON, nullable=True)
    performed_by = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.now, nullable=False)


class CbmsSyncLog(Base):
    __tablename__ = "cbms_sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    sync_type = Column(String(20), nullable=False, default="SALE")
    status = Column(Enum(CbmsSyncStatus), default=CbmsSyncStatus.IN_PROGRESS, nullable=False)
    request_payload = Column(JSON, nullable=True)
    response_code = Column(Integer, nullable=True)
    response_message = Column(Text, nullable=True)
    attempted_at = Column(DateTime, default=datetime.now, nullable=False)
    completed_at = Column(DateTime, nullable=True)
