"""
Pydantic Schemas for Request/Response Validation

Request bodies for every business operation and ``from_attributes``
response models for the ORM rows they return.
"""

import re
from datetime import date, datetime
from typing import Annotated, Optional, List, Any

from pydantic import AfterValidator, BaseModel, Field, field_validator

from app.models import (
    AccountGroup,
    AlertType,
    BillStatus,
    GatewayPaymentStatus,
    InvoiceStatus,
    LoyaltyTier,
    MovementType,
    OrderItemStatus,
    OrderSource,
    OrderStatus,
    PaymentMethod,
    PointsTransactionType,
    PurchasePaymentStatus,
    PurchaseStatus,
    SessionPhase,
    SessionStatus,
    TableStatus,
    VendorStatus,
    VoucherStatus,
    VoucherType,
)


PAN_PATTERN = re.compile(r"^\d{9}$")


def _validate_pan(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    if not PAN_PATTERN.match(v):
        raise ValueError("PAN must be 9 digits")
    return v


Pan = Annotated[Optional[str], AfterValidator(_validate_pan)]


# =============================================================================
# RESTAURANT & TABLES
# =============================================================================

class RestaurantCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=150, examples=["Himalayan Kitchen"])
    address: Optional[str] = Field(None, max_length=255, examples=["Thamel, Kathmandu"])
    phone: Optional[str] = Field(None, max_length=30)
    pan_number: Pan = Field(None, examples=["123456789"])
    settings: dict[str, Any] = Field(default_factory=dict)
    loyalty_settings: dict[str, Any] = Field(default_factory=dict)
    seed_chart_of_accounts: bool = True


class CbmsConfigUpdate(BaseModel):
    enabled: bool = False
    username: Optional[str] = Field(None, max_length=100)
    password: Optional[str] = Field(None, max_length=255)
    seller_pan: Pan = None
    api_url: Optional[str] = Field(None, max_length=255, examples=["https://cbapi.ird.gov.np"])


class MenuItemCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=150, examples=["Chicken Momo"])
    category: Optional[str] = Field(None, max_length=100)
    price: float = Field(..., gt=0, examples=[350.0])
    station: str = Field(default="KITCHEN", examples=["KITCHEN", "BAR"])
    expected_prep_time: Optional[int] = Field(None, ge=1, le=240)


class TableCreate(BaseModel):
    table_number: str = Field(..., min_length=1, max_length=20, examples=["T1"])
    capacity: int = Field(default=4, ge=1, le=50)


class RestaurantResponse(BaseModel):
    id: int
    name: str
    slug: str
    address: Optional[str]
    phone: Optional[str]
    pan_number: Optional[str]
    settings: dict
    loyalty_settings: dict
    created_at: datetime

    class Config:
        from_attributes = True


class MenuItemResponse(BaseModel):
    id: int
    name: str
    category: Optional[str]
    price: float
    station: str
    is_available: bool
    expected_prep_time: Optional[int]

    class Config:
        from_attributes = True


class TableResponse(BaseModel):
    id: int
    table_number: str
    capacity: int
    qr_code: str
    status: TableStatus
    current_otp: Optional[str]
    otp_generated_at: Optional[datetime]

    class Config:
        from_attributes = True


class GuestTableResponse(BaseModel):
    """Table as seen by a guest: no OTP."""
    id: int
    table_number: str
    capacity: int
    status: TableStatus

    class Config:
        from_attributes = True


# =============================================================================
# SESSIONS
# =============================================================================

class OtpVerifyRequest(BaseModel):
    otp: str = Field(..., min_length=3, max_length=3, examples=["482"])
    guest_count: Optional[int] = Field(None, ge=1, le=50)

    @field_validator("otp")
    @classmethod
    def validate_otp(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError("OTP must be 3 digits")
        return v


class GuestCountUpdate(BaseModel):
    guest_count: int = Field(..., ge=1, le=50)


class AssistanceRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=200)


class SessionResponse(BaseModel):
    id: int
    table_id: int
    customer_id: Optional[int]
    status: SessionStatus
    phase: SessionPhase
    guest_count: Optional[int]
    qr_scanned_at: Optional[datetime]
    seated_at: Optional[datetime]
    first_order_at: Optional[datetime]
    first_food_served_at: Optional[datetime]
    bill_requested_at: Optional[datetime]
    payment_completed_at: Optional[datetime]
    vacated_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class AlertResponse(BaseModel):
    id: int
    session_id: Optional[int]
    table_id: Optional[int]
    alert_type: AlertType
    priority: str
    message: str
    is_resolved: bool
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# ORDERS & KITCHEN
# =============================================================================

class OrderLine(BaseModel):
    menu_item_id: int
    quantity: int = Field(default=1, ge=1, le=99)
    notes: Optional[str] = Field(None, max_length=200)


class GuestOrderCreate(BaseModel):
    items: List[OrderLine] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)


class StaffOrderCreate(BaseModel):
    table_id: Optional[int] = None
    items: List[OrderLine] = Field(..., min_length=1)
    notes: Optional[str] = Field(None, max_length=500)


class OrderConfirmRequest(BaseModel):
    guest_count: int = Field(..., ge=1, le=50)


class OrderRejectRequest(BaseModel):
    reason: str = Field(..., max_length=500)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderItemStatusUpdate(BaseModel):
    status: OrderItemStatus


class OrderItemResponse(BaseModel):
    id: int
    order_id: int
    menu_item_id: Optional[int]
    name: str
    quantity: int
    unit_price: float
    total_price: float
    notes: Optional[str]
    status: OrderItemStatus
    is_bar_item: bool
    is_complimentary: bool
    discount_amount: float
    sla_breached: bool
    sla_breach_minutes: Optional[int]

    class Config:
        from_attributes = True


class OrderResponse(BaseModel):
    id: int
    order_number: str
    table_id: Optional[int]
    session_id: Optional[int]
    bill_id: Optional[int]
    source: OrderSource
    status: OrderStatus
    subtotal: float
    notes: Optional[str]
    rejection_reason: Optional[str]
    placed_by: Optional[str]
    placed_at: datetime

    class Config:
        from_attributes = True


class OrderDetailResponse(BaseModel):
    order: OrderResponse
    items: List[OrderItemResponse]


# =============================================================================
# BILLING & PAYMENTS
# =============================================================================

class BillCreate(BaseModel):
    session_id: Optional[int] = None
    table_id: Optional[int] = None
    order_id: Optional[int] = None


class ComplimentaryRequest(BaseModel):
    item_id: int
    reason: str = Field(..., max_length=200)


class ItemDiscountRequest(BaseModel):
    item_id: int
    amount: float = Field(..., ge=0)


class BillDiscountRequest(BaseModel):
    amount: float = Field(..., ge=0)
    reason: Optional[str] = Field(None, max_length=200)


class ReasonRequest(BaseModel):
    reason: str = Field(..., max_length=500)


class PaymentCreate(BaseModel):
    amount: float = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.CASH
    cash_received: Optional[float] = Field(None, gt=0)
    reference: Optional[str] = Field(None, max_length=100)
    points_to_redeem: Optional[int] = Field(None, ge=1)
    customer_id: Optional[int] = None
    buyer_name: Optional[str] = Field(None, max_length=150)
    buyer_pan: Pan = None


class GatewayInitiateRequest(BaseModel):
    gateway: str = Field(..., pattern="^(KHALTI|ESEWA)$")
    customer_name: Optional[str] = Field(None, max_length=150)
    customer_phone: Optional[str] = Field(None, max_length=20)


class GatewayPaymentResponse(BaseModel):
    id: int
    bill_id: int
    method: PaymentMethod
    initiation_id: str
    amount: float
    status: GatewayPaymentStatus
    verified_amount: Optional[float]
    refund_amount: float
    reference: Optional[str]
    payment_id: Optional[int]
    created_at: datetime
    settled_at: Optional[datetime]

    class Config:
        from_attributes = True


class BillResponse(BaseModel):
    id: int
    bill_number: str
    table_id: Optional[int]
    session_id: Optional[int]
    customer_id: Optional[int]
    status: BillStatus
    subtotal: float
    discount_amount: float
    tax_amount: float
    service_charge: float
    total_amount: float
    paid_amount: float
    edit_log: list
    revert_reason: Optional[str]
    created_at: datetime
    finalized_at: Optional[datetime]
    paid_at: Optional[datetime]

    class Config:
        from_attributes = True


class PaymentResponse(BaseModel):
    id: int
    bill_id: int
    method: PaymentMethod
    amount: float
    cash_received: Optional[float]
    change_amount: Optional[float]
    reference: Optional[str]
    points_redeemed: Optional[int]
    received_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class BillDetailResponse(BaseModel):
    bill: BillResponse
    items: List[OrderItemResponse]
    payments: List[PaymentResponse]
    balance_due: float


# =============================================================================
# LOYALTY
# =============================================================================

class CustomerCreate(BaseModel):
    phone: str = Field(..., min_length=7, max_length=20, examples=["9841000000"])
    name: Optional[str] = Field(None, max_length=150)
    email: Optional[str] = None
    date_of_birth: Optional[date] = None

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        cleaned = re.sub(r"[^\d]", "", v)
        if len(cleaned) < 7:
            raise ValueError("Phone number must have at least 7 digits")
        return cleaned


class RedeemRequest(BaseModel):
    points: int = Field(..., ge=1)
    bill_amount: float = Field(..., gt=0)


class CustomerResponse(BaseModel):
    id: int
    name: str
    phone: str
    email: Optional[str]
    date_of_birth: Optional[date]
    tier: LoyaltyTier
    points_balance: int
    points_earned_lifetime: int
    points_redeemed_lifetime: int
    total_spent: float
    total_visits: int
    last_visit_at: Optional[datetime]

    class Config:
        from_attributes = True


class PointsTransactionResponse(BaseModel):
    id: int
    customer_id: int
    bill_id: Optional[int]
    type: PointsTransactionType
    points: int
    balance_after: int
    bonus_type: Optional[str]
    reason: Optional[str]
    expires_at: Optional[datetime]
    is_expired: bool
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# ACCOUNTING
# =============================================================================

class AccountCreate(BaseModel):
    account_code: str = Field(..., min_length=1, max_length=20)
    account_name: str = Field(..., min_length=1, max_length=150)
    account_group: AccountGroup
    account_type: str = Field(..., max_length=50)
    parent_id: Optional[int] = None
    allow_posting: bool = True
    opening_balance: float = 0.0


class VoucherEntryIn(BaseModel):
    account_id: int
    debit: float = Field(default=0.0, ge=0)
    credit: float = Field(default=0.0, ge=0)
    narration: Optional[str] = Field(None, max_length=255)


class VoucherCreate(BaseModel):
    voucher_type: VoucherType
    voucher_date: Optional[date] = None
    narration: Optional[str] = Field(None, max_length=500)
    party_name: Optional[str] = Field(None, max_length=150)
    entries: List[VoucherEntryIn] = Field(..., min_length=1)
    auto_post: bool = False


class VoucherUpdate(BaseModel):
    narration: Optional[str] = Field(None, max_length=500)
    party_name: Optional[str] = Field(None, max_length=150)


class AccountResponse(BaseModel):
    id: int
    account_code: str
    account_name: str
    account_group: AccountGroup
    account_type: str
    parent_id: Optional[int]
    allow_posting: bool
    is_system: bool
    opening_balance: float
    current_balance: float

    class Config:
        from_attributes = True


class LedgerEntryResponse(BaseModel):
    id: int
    account_id: int
    entry_date: date
    debit: float
    credit: float
    narration: Optional[str]
    is_posted: bool

    class Config:
        from_attributes = True


class VoucherResponse(BaseModel):
    id: int
    voucher_number: str
    voucher_type: VoucherType
    voucher_date: date
    narration: Optional[str]
    party_name: Optional[str]
    reference_type: Optional[str]
    reference_id: Optional[str]
    total_amount: float
    status: VoucherStatus
    created_by: Optional[str]
    posted_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]

    class Config:
        from_attributes = True


class VoucherDetailResponse(BaseModel):
    voucher: VoucherResponse
    entries: List[LedgerEntryResponse]


# =============================================================================
# STOCK
# =============================================================================

class StockItemCreate(BaseModel):
    item_code: str = Field(..., min_length=1, max_length=30)
    name: str = Field(..., min_length=1, max_length=150)
    unit: str = Field(default="pcs", max_length=20)
    reorder_level: float = Field(default=0.0, ge=0)


class GodownCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    is_default: bool = False


class StockMappingCreate(BaseModel):
    menu_item_id: int
    stock_item_id: int
    quantity_per_serving: float = Field(..., gt=0)


class StockMovementCreate(BaseModel):
    stock_item_id: int
    movement_type: MovementType
    quantity: float = Field(..., gt=0)
    rate: float = Field(default=0.0, ge=0)
    godown_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=500)


class StockTransferCreate(BaseModel):
    stock_item_id: int
    from_godown_id: int
    to_godown_id: int
    quantity: float = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)


class StockItemResponse(BaseModel):
    id: int
    item_code: str
    name: str
    unit: str
    current_stock: float
    average_cost: float
    last_purchase_rate: Optional[float]
    reorder_level: float
    is_active: bool

    class Config:
        from_attributes = True


class GodownResponse(BaseModel):
    id: int
    name: str
    is_default: bool

    class Config:
        from_attributes = True


class StockMovementResponse(BaseModel):
    id: int
    stock_item_id: int
    movement_number: str
    movement_type: MovementType
    movement_date: datetime
    from_godown_id: Optional[int]
    to_godown_id: Optional[int]
    quantity: float
    rate: float
    total_amount: float
    balance_after: float
    reference_type: Optional[str]
    reference_id: Optional[str]

    class Config:
        from_attributes = True


# =============================================================================
# PURCHASES
# =============================================================================

class VendorCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=150)
    pan_number: Pan = None
    phone: Optional[str] = Field(None, max_length=30)
    credit_days: int = Field(default=0, ge=0, le=365)


class VendorStatusUpdate(BaseModel):
    status: VendorStatus


class PurchaseLineIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    quantity: float = Field(..., gt=0)
    rate: float = Field(..., ge=0)
    discount: float = Field(default=0.0, ge=0)
    is_vatable: bool = True
    stock_item_id: Optional[int] = None


class PurchaseCreate(BaseModel):
    vendor_id: int
    purchase_date: Optional[date] = None
    vendor_bill_number: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=500)
    items: List[PurchaseLineIn] = Field(..., min_length=1)


class PurchaseReceiveRequest(BaseModel):
    godown_id: Optional[int] = None


class PurchasePaymentCreate(BaseModel):
    amount: float = Field(..., gt=0)
    method: str = Field(default="CASH", examples=["CASH", "BANK_TRANSFER", "CHEQUE"])


class VendorResponse(BaseModel):
    id: int
    name: str
    pan_number: Optional[str]
    phone: Optional[str]
    credit_days: int
    status: VendorStatus

    class Config:
        from_attributes = True


class PurchaseItemResponse(BaseModel):
    id: int
    stock_item_id: Optional[int]
    description: str
    quantity: float
    rate: float
    discount: float
    amount: float
    is_vatable: bool
    vat_amount: float

    class Config:
        from_attributes = True


class PurchaseResponse(BaseModel):
    id: int
    vendor_id: int
    purchase_number: str
    vendor_bill_number: Optional[str]
    purchase_date: date
    due_date: Optional[date]
    subtotal: float
    discount_amount: float
    taxable_amount: float
    vat_amount: float
    total_amount: float
    paid_amount: float
    status: PurchaseStatus
    payment_status: PurchasePaymentStatus
    received_at: Optional[datetime]

    class Config:
        from_attributes = True


# =============================================================================
# INVOICES
# =============================================================================

class InvoiceItemResponse(BaseModel):
    id: int
    description: str
    quantity: float
    rate: float
    amount: float

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: int
    bill_id: Optional[int]
    invoice_number: str
    fiscal_year: str
    invoice_date_ad: datetime
    invoice_date_bs: str
    seller_name: Optional[str]
    seller_pan: Optional[str]
    buyer_name: str
    buyer_pan: Optional[str]
    subtotal: float
    discount_amount: float
    taxable_amount: float
    vat_amount: float
    service_charge: float
    exempt_amount: float
    total_amount: float
    amount_in_words: str
    status: InvoiceStatus
    cancellation_reason: Optional[str]
    print_count: int
    cbms_synced: bool
    cbms_response_code: Optional[int]
    cbms_sync_attempts: int
    cbms_last_error: Optional[str]

    class Config:
        from_attributes = True


class InvoiceAuditResponse(BaseModel):
    id: int
    action: str
    details: Optional[dict]
    performed_by: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


# =============================================================================
# COMMON
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    cbms_client: str
    payment_gateways: dict[str, str]
    timestamp: datetime
