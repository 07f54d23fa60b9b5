import asyncio
import base64
import json

import httpx
import pytest

import app.services.payment.khalti as khalti_module
from app.services.payment.esewa import EsewaGateway, sign, signature_message
from app.services.payment.khalti import KhaltiGateway

from conftest import create_restaurant, open_bill

ESEWA_SECRET = "8gBm/:&EnhH.1/q"


def _initiate(client, headers, bill_id, gateway):
    return client.post(f"/api/bills/{bill_id}/gateway", json={"gateway": gateway}, headers=headers)


# =============================================================================
# KHALTI
# =============================================================================

def test_khalti_callback_settles_the_bill(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]

    started = _initiate(client, headers, bill_id, "KHALTI").json()
    assert started["success"] is True
    assert started["amount"] == 1045.5
    assert started["transaction_id"] in started["payment_url"]

    # Callbacks arrive without the tenant header
    settled = client.get(
        "/api/payments/khalti/callback",
        params={"pidx": started["transaction_id"], "status": "Completed"},
    ).json()
    assert settled["success"] is True
    assert settled["bill"]["status"] == "PAID"
    assert [(p["method"], p["reference"]) for p in settled["payments"]] == [("KHALTI", started["transaction_id"])]
    assert settled["invoice"]["total_amount"] == 1045.5

    replay = client.get("/api/payments/khalti/callback", params={"pidx": started["transaction_id"]}).json()
    assert replay == {"success": False, "gateway": "KHALTI", "message": "Unknown transaction"}
    assert len(client.get(f"/api/bills/{bill_id}", headers=headers).json()["payments"]) == 1

    balances = {a["account_code"]: a["current_balance"]
                for a in client.get("/api/accounting/accounts", headers=headers).json()}
    assert balances["1020"] == 1045.5


def test_cancelled_khalti_payment_leaves_bill_open(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]
    started = _initiate(client, headers, bill_id, "KHALTI").json()

    result = client.get(
        "/api/payments/khalti/callback",
        params={"pidx": started["transaction_id"], "status": "User canceled"},
    ).json()
    assert result["success"] is False
    assert result["message"] == "Payment status: User canceled"
    assert client.get(f"/api/bills/{bill_id}", headers=headers).json()["bill"]["status"] == "OPEN"


def test_wallet_pays_the_outstanding_balance(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]
    client.post(f"/api/bills/{bill_id}/payments", json={"amount": 500}, headers=headers)

    started = _initiate(client, headers, bill_id, "KHALTI").json()
    assert started["amount"] == 545.5

    settled = client.get("/api/payments/khalti/callback", params={"pidx": started["transaction_id"]}).json()
    assert settled["bill"]["status"] == "PAID"
    assert [p["method"] for p in settled["payments"]] == ["CASH", "KHALTI"]


def test_paid_bill_cannot_start_a_payment(client, headers, table, menu) -> None:
    bill = open_bill(client, headers, table, menu)["bill"]
    client.post(f"/api/bills/{bill['id']}/payments", json={"amount": bill["total_amount"]}, headers=headers)

    resp = _initiate(client, headers, bill["id"], "KHALTI")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Cannot start a payment for a paid bill"

    assert _initiate(client, headers, bill["id"], "PAYPAL").status_code == 422


# =============================================================================
# ESEWA
# =============================================================================

def test_esewa_returns_a_signed_form(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]

    started = _initiate(client, headers, bill_id, "ESEWA").json()
    assert started["payment_url"] is None
    assert started["form_fields"]["transaction_uuid"] == started["transaction_id"]

    settled = client.get(
        "/api/payments/esewa/callback", params={"transaction_uuid": started["transaction_id"]}
    ).json()
    assert settled["success"] is True
    assert settled["payments"][0]["method"] == "ESEWA"


def test_esewa_failure_redirect(client) -> None:
    resp = client.get("/api/payments/esewa/failure", params={"bill_id": 5})
    assert resp.json() == {
        "success": False, "gateway": "ESEWA", "bill_id": 5, "message": "Payment was not completed"
    }


def _esewa_callback(secret: str, **fields) -> dict:
    body = {
        "transaction_code": "000AWEO",
        "status": "COMPLETE",
        "total_amount": "1,045.5",
        "transaction_uuid": "7-1718000000",
        "product_code": "EPAYTEST",
        "signed_field_names": "transaction_code,status,total_amount,transaction_uuid,product_code,signed_field_names",
        **fields,
    }
    body["signature"] = sign(signature_message(body, body["signed_field_names"]), secret)
    return {"data": base64.b64encode(json.dumps(body).encode()).decode()}


def test_esewa_signature_is_verified() -> None:
    gateway = EsewaGateway(secret_key=ESEWA_SECRET, product_code="EPAYTEST", sandbox=True)

    verified = asyncio.run(gateway.verify(_esewa_callback(ESEWA_SECRET)))
    assert verified.success is True
    assert (verified.bill_id, verified.amount, verified.transaction_id) == (7, 1045.5, "000AWEO")

    forged = asyncio.run(gateway.verify(_esewa_callback("someone-else")))
    assert forged.success is False
    assert forged.message == "Invalid signature - payment verification failed"

    pending = asyncio.run(gateway.verify(_esewa_callback(ESEWA_SECRET, status="PENDING")))
    assert pending.message == "Payment status: PENDING"

    garbage = asyncio.run(gateway.verify({"data": "not-base64!"}))
    assert garbage.message == "Malformed eSewa response"


def test_esewa_form_is_signed_over_the_declared_fields() -> None:
    gateway = EsewaGateway(secret_key=ESEWA_SECRET, product_code="EPAYTEST", sandbox=True)
    result = asyncio.run(gateway.initiate(7, "BILL-000007", 1045.5, "Himalayan Kitchen"))

    fields = result.form_fields
    assert fields["signed_field_names"] == "total_amount,transaction_uuid,product_code"
    assert fields["transaction_uuid"].startswith("7-")
    message = f"total_amount=1045.5,transaction_uuid={fields['transaction_uuid']},product_code=EPAYTEST"
    assert fields["signature"] == sign(message, ESEWA_SECRET)
    assert result.form_url.startswith("https://rc-epay.esewa.com.np")


def _encode(body) -> dict:
    return {"data": base64.b64encode(json.dumps(body).encode()).decode()}


def test_malformed_esewa_payloads_fail_verification() -> None:
    gateway = EsewaGateway(secret_key=ESEWA_SECRET, product_code="EPAYTEST", sandbox=True)

    listed = asyncio.run(gateway.verify(_encode(["COMPLETE", "7-1718000000"])))
    assert (listed.success, listed.message) == (False, "Malformed eSewa response")

    numeric_signature = json.loads(base64.b64decode(_esewa_callback(ESEWA_SECRET)["data"]))
    numeric_signature["signature"] = 12345
    result = asyncio.run(gateway.verify(_encode(numeric_signature)))
    assert (result.success, result.message) == (False, "Malformed eSewa response")

    no_fields = asyncio.run(gateway.verify(_encode({"status": "COMPLETE", "signature": "abc"})))
    assert no_fields.success is False


def test_malformed_esewa_callback_is_not_a_server_error(client, monkeypatch) -> None:
    gateway = EsewaGateway(secret_key=ESEWA_SECRET, product_code="EPAYTEST", sandbox=True)
    monkeypatch.setattr("app.routers.payments.get_payment_gateway", lambda method: gateway)

    resp = client.get("/api/payments/esewa/callback", params=_encode([1, 2, 3]))
    assert resp.status_code == 200
    assert resp.json() == {"success": False, "gateway": "ESEWA", "message": "Malformed eSewa response"}


# =============================================================================
# SETTLEMENT EDGE CASES
# =============================================================================

def _refunds(client, headers) -> list[dict]:
    return client.get("/api/payments/refunds-due", headers=headers).json()


def test_wallet_money_for_a_paid_bill_is_kept_as_refund_due(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]
    first = _initiate(client, headers, bill_id, "KHALTI").json()
    second = _initiate(client, headers, bill_id, "KHALTI").json()

    paid = client.get("/api/payments/khalti/callback", params={"pidx": first["transaction_id"]}).json()
    assert paid["status"] == "APPLIED"
    assert paid["bill"]["status"] == "PAID"

    late = client.get("/api/payments/khalti/callback", params={"pidx": second["transaction_id"]}).json()
    assert late["success"] is True
    assert (late["status"], late["refund_amount"], late["payments"]) == ("REFUND_DUE", 1045.5, [])

    [refund] = _refunds(client, headers)
    assert refund["initiation_id"] == second["transaction_id"]
    assert (refund["refund_amount"], refund["payment_id"]) == (1045.5, None)
    assert len(client.get(f"/api/bills/{bill_id}", headers=headers).json()["payments"]) == 1


def test_wallet_payment_above_the_balance_keeps_the_excess(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]
    started = _initiate(client, headers, bill_id, "KHALTI").json()
    assert started["amount"] == 1045.5
    client.post(f"/api/bills/{bill_id}/payments", json={"amount": 500}, headers=headers)

    settled = client.get("/api/payments/khalti/callback", params={"pidx": started["transaction_id"]}).json()
    assert (settled["status"], settled["refund_amount"]) == ("EXCESS_REFUND_DUE", 500.0)
    assert settled["bill"]["status"] == "PAID"
    assert [(p["method"], p["amount"]) for p in settled["payments"]] == [("KHALTI", 545.5)]

    [refund] = _refunds(client, headers)
    assert (refund["verified_amount"], refund["refund_amount"]) == (1045.5, 500.0)
    assert refund["payment_id"] == settled["payments"][0]["id"]


# =============================================================================
# KHALTI LOOKUP
# =============================================================================

class FakeKhaltiClient:
    """Answers Khalti's initiate and lookup endpoints in place of httpx.AsyncClient."""

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def post(self, url, json=None, headers=None):
        if url.endswith("/epayment/initiate/"):
            pidx = f"KH-PIDX-{json['purchase_order_id']}"
            return httpx.Response(200, json={"pidx": pidx, "payment_url": f"https://test-pay.khalti.com/?pidx={pidx}"})
        return httpx.Response(200, json={
            "pidx": json["pidx"], "total_amount": 104550, "status": "Completed", "transaction_id": "KH-TXN-1"
        })


@pytest.fixture
def khalti(monkeypatch) -> KhaltiGateway:
    gateway = KhaltiGateway(secret_key="test_secret_key", sandbox=True)
    monkeypatch.setattr(khalti_module.httpx, "AsyncClient", FakeKhaltiClient)
    monkeypatch.setattr("app.routers.payments.get_payment_gateway", lambda method: gateway)
    return gateway


def _other_restaurant_bill(client) -> tuple[dict, dict]:
    headers = create_restaurant(client, name="Everest Diner")
    menu = {
        "momo": client.post("/api/menu-items", json={"name": "Buff Momo", "category": "Snacks", "price": 350},
                            headers=headers).json(),
        "lassi": client.post("/api/menu-items", json={"name": "Lassi", "category": "Drinks", "price": 150},
                             headers=headers).json(),
    }
    table = client.post("/api/tables", json={"table_number": "E1", "capacity": 2}, headers=headers).json()
    return headers, open_bill(client, headers, table, menu)["bill"]


def test_khalti_lookup_settles_only_the_initiating_bill(client, headers, table, menu, khalti) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]
    other_headers, other_bill = _other_restaurant_bill(client)

    started = _initiate(client, headers, bill_id, "KHALTI").json()
    assert started["transaction_id"] == f"KH-PIDX-{bill_id}"

    # The return URL query string cannot redirect the payment to another bill
    params = {"pidx": started["transaction_id"], "status": "Completed", "purchase_order_id": other_bill["id"]}
    settled = client.get("/api/payments/khalti/callback", params=params).json()
    assert settled["bill_id"] == bill_id
    assert settled["bill"]["status"] == "PAID"
    assert [p["reference"] for p in settled["payments"]] == ["KH-TXN-1"]

    replay = client.get("/api/payments/khalti/callback", params=params).json()
    assert (replay["bill_id"], replay["message"]) == (bill_id, "Payment already recorded")

    other = client.get(f"/api/bills/{other_bill['id']}", headers=other_headers).json()
    assert other["bill"]["status"] == "OPEN"
    assert other["payments"] == []


def test_khalti_callback_for_a_pidx_never_issued_here(client, headers, table, menu, khalti) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]

    resp = client.get("/api/payments/khalti/callback", params={"pidx": "KH-PIDX-999", "purchase_order_id": bill_id})
    assert resp.status_code == 404
    assert client.get(f"/api/bills/{bill_id}", headers=headers).json()["bill"]["status"] == "OPEN"


def test_wallet_reference_cannot_pay_two_bills(client, headers, table, menu, khalti) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]
    started = _initiate(client, headers, bill_id, "KHALTI").json()
    client.get("/api/payments/khalti/callback", params={"pidx": started["transaction_id"]})

    other_headers, other_bill = _other_restaurant_bill(client)
    resp = client.post(
        f"/api/bills/{other_bill['id']}/payments",
        json={"amount": 100, "method": "KHALTI", "reference": "KH-TXN-1"},
        headers=other_headers,
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "KHALTI transaction KH-TXN-1 is already recorded"
