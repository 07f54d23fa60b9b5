import asyncio
import base64
import json

import pytest

from app.core.errors import ValidationError
from app.models import LoyaltyTier
from app.services.accounting import EntryInput, validate_double_entry
from app.services.billing import calculate_bill_totals
from app.services.cbms.base import CbmsCredentials, build_return_payload, build_sale_payload, validate_payload
from app.services.cbms.mock import MockCbmsClient
from app.services.invoice import (
    find_sequence_gaps,
    format_invoice_number,
    parse_invoice_number,
    print_label,
    validate_invoice_number,
)
from app.services.loyalty import (
    LoyaltySettings,
    calculate_max_redeemable,
    calculate_points_earned,
    calculate_rfm_score,
    calculate_tier,
    next_milestone,
)
from app.services.payment.esewa import EsewaGateway, sign, signature_message
from app.services.payment.mock import MockPaymentGateway
from app.services.purchases import PurchaseLine, calculate_line
from app.services.stock import weighted_average_cost
from app.services.tables import generate_otp


# =============================================================================
# BILLING
# =============================================================================

def test_bill_totals_tax_after_discount() -> None:
    totals = calculate_bill_totals(850.0)
    assert (totals.tax_amount, totals.service_charge, totals.total_amount) == (110.5, 85.0, 1045.5)

    discounted = calculate_bill_totals(850.0, 100.0)
    assert (discounted.tax_amount, discounted.service_charge, discounted.total_amount) == (97.5, 75.0, 922.5)


def test_bill_totals_with_charges_disabled() -> None:
    totals = calculate_bill_totals(850.0, vat_rate=None, service_charge_rate=None)
    assert totals.tax_amount == 0.0
    assert totals.total_amount == 850.0


def test_double_entry_rules() -> None:
    debit, credit = validate_double_entry([EntryInput(1, debit=500), EntryInput(2, credit=500)])
    assert debit == credit == 500

    with pytest.raises(ValidationError, match="must equal"):
        validate_double_entry([EntryInput(1, debit=500), EntryInput(2, credit=400)])
    with pytest.raises(ValidationError, match="both debit and credit"):
        validate_double_entry([EntryInput(1, debit=10, credit=10), EntryInput(2, credit=0.0)])
    with pytest.raises(ValidationError, match="at least two"):
        validate_double_entry([EntryInput(1, debit=10)])


def test_purchase_line_excludes_discount_from_vat() -> None:
    assert calculate_line(PurchaseLine("Chicken", quantity=10, rate=100, discount=50)) == (950.0, 123.5)
    assert calculate_line(PurchaseLine("Vegetables", quantity=5, rate=40, is_vatable=False)) == (200.0, 0.0)
    with pytest.raises(ValidationError):
        calculate_line(PurchaseLine("Flour", quantity=1, rate=10, discount=20))


def test_weighted_average_cost() -> None:
    assert weighted_average_cost(10, 100, 10, 120) == 110
    assert weighted_average_cost(0, 100, 5, 80) == 80


def test_generated_otp_differs_from_previous() -> None:
    for _ in range(50):
        otp = generate_otp("123")
        assert otp != "123" and len(otp) == 3 and otp.isdigit()


def test_otp_comes_from_the_system_csprng(monkeypatch) -> None:
    draws = iter([23, 899])
    monkeypatch.setattr("app.services.tables.secrets.randbelow", lambda upper: next(draws))
    assert generate_otp("123") == "999"


# =============================================================================
# INVOICE NUMBERING
# =============================================================================

def test_invoice_number_format() -> None:
    number = format_invoice_number("2081.082", "001", 7)
    assert number == "2081.082-001-00007"
    assert validate_invoice_number(number)
    assert not validate_invoice_number("INV-7")
    assert parse_invoice_number(number) == {"fiscal_year": "2081.082", "branch_code": "001", "sequence": 7}


def test_sequence_gaps() -> None:
    numbers = [format_invoice_number("2081.082", "001", n) for n in (1, 2, 5, 7)]
    assert find_sequence_gaps(numbers) == [3, 4, 6]
    assert find_sequence_gaps([]) == []


def test_print_labels() -> None:
    assert print_label(1) == "ORIGINAL"
    assert print_label(2) == "COPY OF ORIGINAL (1)"
    assert print_label(4) == "COPY OF ORIGINAL (3)"


# =============================================================================
# LOYALTY
# =============================================================================

def test_tiers_and_points() -> None:
    settings = LoyaltySettings(enabled=True)
    assert calculate_tier(499) == LoyaltyTier.BRONZE
    assert calculate_tier(500) == LoyaltyTier.SILVER
    assert calculate_tier(5000) == LoyaltyTier.PLATINUM

    assert calculate_points_earned(1045.5, LoyaltyTier.BRONZE, settings) == 10
    assert calculate_points_earned(1000, LoyaltyTier.SILVER, settings) == 12
    assert calculate_points_earned(0, LoyaltyTier.GOLD, settings) == 0


def test_redeem_cap() -> None:
    settings = LoyaltySettings(enabled=True)
    assert calculate_max_redeemable(50, 1000, settings) == 0
    assert calculate_max_redeemable(500, 400, settings) == 200
    assert calculate_max_redeemable(150, 1000, settings) == 150


def test_next_milestone() -> None:
    settings = LoyaltySettings(enabled=True)
    assert next_milestone(3, settings) == {"next_milestone": 5, "points_reward": 50, "visits_remaining": 2}
    assert next_milestone(100, settings) is None


def test_rfm_segments() -> None:
    assert calculate_rfm_score(3, 10, 10000, 2, 2000)["segment"] == "CHAMPIONS"
    assert calculate_rfm_score(90, 1, 100, 4, 2000)["segment"] == "HIBERNATING"
    assert calculate_rfm_score(2, 1, 300, 4, 2000)["segment"] == "NEW_CUSTOMERS"


# =============================================================================
# CBMS
# =============================================================================

CREDENTIALS = CbmsCredentials(
    api_url="https://cbapi.ird.gov.np", username="himalayan", password="secret", seller_pan="123456789"
)


def _sale(**overrides) -> dict:
    values = dict(
        buyer_name="Cash",
        buyer_pan=None,
        fiscal_year="2081.082",
        invoice_number="2081.082-001-00001",
        invoice_date="2081.06.15",
        total_sales=1045.5,
        taxable_sales_vat=850.0,
        vat=110.5,
    )
    values.update(overrides)
    return build_sale_payload(CREDENTIALS, **values)


def test_validate_sale_payload() -> None:
    assert validate_payload(_sale()) is None
    assert "fiscal year" in validate_payload(_sale(fiscal_year="2081/82")).lower()
    assert "vat" in validate_payload(_sale(vat=-1))
    assert validate_payload(_sale(buyer_name="")) == "Buyer name is required"


def test_validate_return_payload() -> None:
    sale = _sale()
    ret = build_return_payload(CREDENTIALS, sale, "CN-2081.082-001-00001", "2081.06.16", "Wrong table")
    assert ret["ref_invoice_number"] == sale["invoice_number"]
    assert "invoice_number" not in ret
    assert validate_payload(ret) is None

    ret["reason_for_return"] = ""
    assert validate_payload(ret) == "Reason for return is required"


def test_mock_cbms_reports_duplicates_as_success() -> None:
    client = MockCbmsClient()
    first = asyncio.run(client.post_bill("https://cbapi.ird.gov.np", _sale()))
    again = asyncio.run(client.post_bill("https://cbapi.ird.gov.np", _sale()))
    assert (first.code, first.success) == (200, True)
    assert (again.code, again.success) == (101, True)
    assert len(client.sent) == 2

    failing = MockCbmsClient(failure_code=102)
    result = asyncio.run(failing.post_bill("https://cbapi.ird.gov.np", _sale()))
    assert not result.success and result.code == 102


# =============================================================================
# WALLETS
# =============================================================================

def _esewa_callback(secret: str, **fields) -> dict:
    data = {
        "transaction_code": "000AWEO",
        "status": "COMPLETE",
        "total_amount": "1,045.5",
        "transaction_uuid": "7-1718000000",
        "product_code": "EPAYTEST",
        "signed_field_names": "transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names",
    }
    data.update(fields)
    data["signature"] = sign(signature_message(data, data["signed_field_names"]), secret)
    return {"data": base64.b64encode(json.dumps(data).encode()).decode()}


def test_esewa_initiation_is_signed() -> None:
    gateway = EsewaGateway(secret_key="8gBm/:&EnhH.1/q", product_code="EPAYTEST", sandbox=True)
    result = asyncio.run(gateway.initiate(7, "BILL-000007", 1045.5, "Himalayan Kitchen"))
    fields = result.form_fields
    assert fields["transaction_uuid"].startswith("7-")
    assert fields["signature"] == sign(
        signature_message(fields, fields["signed_field_names"]), "8gBm/:&EnhH.1/q"
    )


def test_esewa_callback_verification() -> None:
    gateway = EsewaGateway(secret_key="8gBm/:&EnhH.1/q", product_code="EPAYTEST", sandbox=True)

    ok = asyncio.run(gateway.verify(_esewa_callback("8gBm/:&EnhH.1/q")))
    assert ok.success and ok.bill_id == 7 and ok.amount == 1045.5
    assert ok.transaction_id == "000AWEO"

    forged = asyncio.run(gateway.verify(_esewa_callback("wrong-key")))
    assert not forged.success and "signature" in forged.message.lower()

    pending = asyncio.run(gateway.verify(_esewa_callback("8gBm/:&EnhH.1/q", status="PENDING")))
    assert not pending.success

    assert not asyncio.run(gateway.verify({"data": "not-base64!"})).success


def test_esewa_requires_secret_key(monkeypatch) -> None:
    monkeypatch.setattr("app.services.payment.esewa.get_settings", lambda: _NoKeySettings())
    with pytest.raises(ValueError, match="ESEWA_SECRET_KEY"):
        EsewaGateway()


class _NoKeySettings:
    esewa_secret_key = None
    esewa_product_code = "EPAYTEST"
    payment_sandbox_mode = True
    app_base_url = "http://localhost:8001"


def test_mock_gateway_verifies_each_payment_once() -> None:
    gateway = MockPaymentGateway("KHALTI")
    started = asyncio.run(gateway.initiate(3, "BILL-000003", 500.0, "Himalayan Kitchen"))
    assert started.payment_url.endswith(started.transaction_id)

    verified = asyncio.run(gateway.verify({"pidx": started.transaction_id, "status": "Completed"}))
    assert verified.success and verified.bill_id == 3 and verified.amount == 500.0

    again = asyncio.run(gateway.verify({"pidx": started.transaction_id}))
    assert not again.success and again.message == "Unknown transaction"
