"""
CBMS Client Abstract Base Class

Defines the contract for talking to IRD's Central Billing Monitoring
System. Both the mock and the real HTTP client return ``CbmsResult`` so
the invoice service never needs to know which one is active.

IRD endpoints:
    POST {api_url}/api/bill         sales invoice
    POST {api_url}/api/billreturn   sales return (credit note)

Response codes:
    200  Success, invoice synced
    100  Authentication failed
    101  Invoice already exists (treated as success)
    102  Save error
    103  Unknown error
    104  Invalid model
    105  Referenced invoice not found
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

CBMS_RESPONSE_CODES = {
    200: "Success - Invoice synced",
    100: "Authentication failed",
    101: "Invoice already exists",
    102: "Save error - Check data",
    103: "Unknown error",
    104: "Invalid model - Missing fields",
    105: "Referenced invoice not found",
}

SUCCESS_CODES = (200, 101)

FISCAL_YEAR_PATTERN = re.compile(r"^\d{4}\.\d{3}$")
BS_DATE_PATTERN = re.compile(r"^\d{4}\.\d{2}\.\d{2}$")

AMOUNT_FIELDS = (
    "total_sales",
    "taxable_sales_vat",
    "vat",
    "excisable_amount",
    "excise",
    "taxable_sales_hst",
    "hst",
    "amount_for_esf",
    "esf",
    "export_sales",
    "tax_exempted_sales",
)


def response_message(code: int) -> str:
    return CBMS_RESPONSE_CODES.get(code, f"Unknown response code: {code}")


@dataclass
class CbmsCredentials:
    api_url: str
    username: str
    password: str
    seller_pan: str


@dataclass
class CbmsResult:
    """
    Outcome of one CBMS call.

    Attributes:
        success: True for 200 and for 101 (already on file)
        code: IRD response code, 0 for network errors
        message: Human-readable description of ``code``
        response: Raw JSON body when one was received
    """
    success: bool
    code: int
    message: str
    response: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "code": self.code,
            "message": self.message,
            "response": self.response,
        }


def build_sale_payload(
    credentials: CbmsCredentials,
    buyer_name: str,
    buyer_pan: Optional[str],
    fiscal_year: str,
    invoice_number: str,
    invoice_date: str,
    total_sales: float,
    taxable_sales_vat: float,
    vat: float,
    export_sales: float = 0.0,
    tax_exempted_sales: float = 0.0,
) -> dict:
    return {
        "username": credentials.username,
        "password": credentials.password,
        "seller_pan": credentials.seller_pan,
        "buyer_pan": buyer_pan or "",
        "buyer_name": buyer_name,
        "fiscal_year": fiscal_year,
        "invoice_number": invoice_number,
        "invoice_date": invoice_date,
        "total_sales": total_sales,
        "taxable_sales_vat": taxable_sales_vat,
        "vat": vat,
        "excisable_amount": 0,
        "excise": 0,
        "taxable_sales_hst": 0,
        "hst": 0,
        "amount_for_esf": 0,
        "esf": 0,
        "export_sales": export_sales,
        "tax_exempted_sales": tax_exempted_sales,
        "isrealtime": True,
        "datetimeClient": datetime.now().isoformat(),
    }


def build_return_payload(
    credentials: CbmsCredentials,
    sale_payload: dict,
    credit_note_number: str,
    credit_note_date: str,
    reason: str,
) -> dict:
    """A bill return mirrors the original sale with the reference fields added."""
    payload = {k: v for k, v in sale_payload.items() if k not in ("invoice_number", "invoice_date")}
    payload.update({
        "username": credentials.username,
        "password": credentials.password,
        "seller_pan": credentials.seller_pan,
        "ref_invoice_number": sale_payload["invoice_number"],
        "credit_note_number": credit_note_number,
        "credit_note_date": credit_note_date,
        "reason_for_return": reason,
        "datetimeClient": datetime.now().isoformat(),
    })
    return payload


def validate_payload(payload: dict) -> Optional[str]:
    """
    Check a sale or return payload before it is sent.

    Returns:
        An error message, or None when the payload is valid
    """
    is_return = "credit_note_number" in payload
    number = payload.get("credit_note_number" if is_return else "invoice_number")
    bs_date = payload.get("credit_note_date" if is_return else "invoice_date")

    if is_return and not payload.get("ref_invoice_number"):
        return "Reference invoice number is required"
    if not number:
        return "Credit note number is required" if is_return else "Invoice number is required"
    if not bs_date:
        return "Invoice date (BS) is required"
    if not payload.get("fiscal_year"):
        return "Fiscal year is required"
    if not payload.get("buyer_name"):
        return "Buyer name is required"
    if is_return and not payload.get("reason_for_return"):
        return "Reason for return is required"

    for field in AMOUNT_FIELDS:
        value = payload.get(field)
        if value is None or value < 0:
            return f"{field} must be a non-negative number"

    if not FISCAL_YEAR_PATTERN.match(payload["fiscal_year"]):
        return "Invalid fiscal year format (expected: YYYY.YYY)"
    if not BS_DATE_PATTERN.match(bs_date):
        return "Invalid invoice date format (expected: YYYY.MM.DD in BS)"
    return None


class BaseCbmsClient(ABC):
    """
    Abstract base class for CBMS clients.

    Implementations only move payloads over the wire; validation and
    bookkeeping (sync logs, invoice flags) live in the invoice service.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @abstractmethod
    async def post_bill(self, api_url: str, payload: dict) -> CbmsResult:
        """Send a sales invoice to ``{api_url}/api/bill``."""
        pass

    @abstractmethod
    async def post_bill_return(self, api_url: str, payload: dict) -> CbmsResult:
        """Send a sales return to ``{api_url}/api/billreturn``."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass
