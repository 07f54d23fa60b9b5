from conftest import open_bill, paid_bill, seat_guests, staff_order


def _pay(client, headers, bill_id, **body):
    return client.post(f"/api/bills/{bill_id}/payments", json={"method": "CASH", **body}, headers=headers)


# =============================================================================
# CREATION & EDITS
# =============================================================================

def test_bill_carries_vat_and_service_charge(client, headers, table, menu) -> None:
    detail = open_bill(client, headers, table, menu)
    bill = detail["bill"]

    assert bill["bill_number"] == "BILL-000001"
    assert bill["status"] == "OPEN"
    assert (bill["subtotal"], bill["tax_amount"], bill["service_charge"]) == (850.0, 110.5, 85.0)
    assert bill["total_amount"] == 1045.5
    assert detail["balance_due"] == 1045.5
    assert len(detail["items"]) == 2

    order = client.get("/api/orders", headers=headers).json()[0]
    assert order["status"] == "COMPLETED"
    assert order["bill_id"] == bill["id"]


def test_nothing_to_bill(client, headers, table) -> None:
    resp = client.post("/api/bills", json={"table_id": table["id"]}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "No unbilled orders found"

    assert client.post("/api/bills", json={}, headers=headers).status_code == 400


def test_complimentary_and_discounts_recalculate(client, headers, table, menu) -> None:
    detail = open_bill(client, headers, table, menu)
    bill_id = detail["bill"]["id"]
    momo, lassi = (i["id"] for i in detail["items"])

    no_reason = client.post(
        f"/api/bills/{bill_id}/complimentary", json={"item_id": lassi, "reason": ""}, headers=headers
    )
    assert no_reason.status_code == 400

    comp = client.post(
        f"/api/bills/{bill_id}/complimentary", json={"item_id": lassi, "reason": "Birthday"}, headers=headers
    ).json()
    assert (comp["bill"]["subtotal"], comp["bill"]["total_amount"]) == (700.0, 861.0)

    item_disc = client.post(
        f"/api/bills/{bill_id}/item-discount", json={"item_id": momo, "amount": 100}, headers=headers
    ).json()
    assert item_disc["bill"]["subtotal"] == 600.0

    too_much = client.post(f"/api/bills/{bill_id}/discount", json={"amount": 601}, headers=headers)
    assert too_much.status_code == 400

    discounted = client.post(
        f"/api/bills/{bill_id}/discount", json={"amount": 100, "reason": "Regular"}, headers=headers
    ).json()
    bill = discounted["bill"]
    assert (bill["discount_amount"], bill["tax_amount"], bill["service_charge"]) == (100.0, 65.0, 50.0)
    assert bill["total_amount"] == 615.0
    assert [e["action"] for e in bill["edit_log"]] == ["COMPLIMENTARY", "ITEM_DISCOUNT", "BILL_DISCOUNT"]
    assert bill["edit_log"][0]["edited_by"] == "Ramesh"


# =============================================================================
# LIFECYCLE
# =============================================================================

def test_finalize_locks_edits_until_reverted(client, headers, table, menu) -> None:
    detail = open_bill(client, headers, table, menu)
    bill_id = detail["bill"]["id"]

    finalized = client.post(f"/api/bills/{bill_id}/finalize", headers=headers).json()
    assert finalized["status"] == "FINALIZED"
    assert client.post(f"/api/bills/{bill_id}/finalize", headers=headers).status_code == 400

    locked = client.post(f"/api/bills/{bill_id}/discount", json={"amount": 50}, headers=headers)
    assert locked.status_code == 400
    assert locked.json()["error"] == "Bill can only be edited while open"

    assert client.post(f"/api/bills/{bill_id}/revert", json={"reason": " "}, headers=headers).status_code == 400
    reverted = client.post(f"/api/bills/{bill_id}/revert", json={"reason": "Wrong item"}, headers=headers).json()
    assert reverted["status"] == "OPEN"
    assert reverted["revert_reason"] == "Wrong item"


def test_cancel_releases_orders_for_rebilling(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]

    cancelled = client.post(f"/api/bills/{bill_id}/cancel", json={"reason": "Duplicate"}, headers=headers)
    assert cancelled.json()["status"] == "CANCELLED"
    assert _pay(client, headers, bill_id, amount=100).status_code == 400

    rebilled = client.post("/api/bills", json={"table_id": table["id"]}, headers=headers).json()
    assert rebilled["bill"]["bill_number"] == "BILL-000002"
    assert rebilled["bill"]["total_amount"] == 1045.5


# =============================================================================
# PAYMENTS
# =============================================================================

def test_partial_then_full_payment(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]

    partial = _pay(client, headers, bill_id, amount=500).json()
    assert partial["bill"]["status"] == "PARTIALLY_PAID"
    assert partial["invoice"] is None
    assert client.get(f"/api/bills/{bill_id}", headers=headers).json()["balance_due"] == 545.5

    assert client.post(f"/api/bills/{bill_id}/revert", json={"reason": "x"}, headers=headers).status_code == 400
    assert client.post(f"/api/bills/{bill_id}/cancel", json={"reason": "x"}, headers=headers).status_code == 400

    over = _pay(client, headers, bill_id, amount=600)
    assert over.status_code == 400
    assert over.json()["error"].startswith("Payment exceeds the outstanding balance")

    short = _pay(client, headers, bill_id, amount=545.5, cash_received=500)
    assert short.status_code == 400

    settled = _pay(client, headers, bill_id, amount=545.5, cash_received=600).json()
    assert settled["bill"]["status"] == "PAID"
    assert settled["change_amount"] == 54.5
    assert settled["payments"][0]["cash_received"] == 600.0

    again = _pay(client, headers, bill_id, amount=1)
    assert again.status_code == 400
    assert again.json()["error"] == "Bill is already paid"


def test_cash_received_only_for_cash(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]
    resp = _pay(client, headers, bill_id, amount=1045.5, method="CARD", cash_received=1100)
    assert resp.status_code == 400


def test_points_need_a_customer(client, headers, table, menu) -> None:
    bill_id = open_bill(client, headers, table, menu)["bill"]["id"]
    resp = _pay(client, headers, bill_id, amount=1000, points_to_redeem=100)
    assert resp.status_code == 400
    assert resp.json()["error"] == "A customer is required to redeem points"


def test_settlement_issues_invoice_and_frees_table(client, headers, table, menu) -> None:
    result = paid_bill(client, headers, table, menu, buyer_name="Sita Sharma")

    assert result["bill"]["status"] == "PAID"
    assert result["bill"]["paid_at"] is not None
    assert result["loyalty"] is None

    invoice = result["invoice"]
    assert invoice["buyer_name"] == "Sita Sharma"
    assert invoice["seller_pan"] == "123456789"
    assert (invoice["taxable_amount"], invoice["vat_amount"], invoice["total_amount"]) == (850.0, 110.5, 1045.5)
    assert invoice["invoice_number"].endswith("-001-00001")
    assert invoice["amount_in_words"] == "One Thousand Forty Five Rupees and Fifty Paisa Only"
    assert invoice["cbms_synced"] is False

    session_id = result["bill"]["session_id"]
    assert client.get(f"/api/sessions/{session_id}", headers=headers).json()["status"] == "COMPLETED"
    assert client.get("/api/tables", headers=headers).json()[0]["status"] == "CLEANING"


def test_settlement_posts_balanced_sales_voucher(client, headers, table, menu) -> None:
    paid_bill(client, headers, table, menu)

    vouchers = client.get("/api/accounting/vouchers", params={"voucher_type": "SALES"}, headers=headers).json()
    assert len(vouchers) == 1
    assert vouchers[0]["status"] == "POSTED"
    assert vouchers[0]["total_amount"] == 1045.5
    assert vouchers[0]["reference_type"] == "bill"

    trial = client.get("/api/accounting/trial-balance", headers=headers).json()
    assert trial["is_balanced"] is True
    assert trial["total_debit"] == 1045.5

    balances = {a["account_code"]: a["current_balance"]
                for a in client.get("/api/accounting/accounts", headers=headers).json()}
    assert balances["1000"] == 1045.5
    assert balances["4000"] == 850.0
    assert balances["2100"] == 110.5
    assert balances["2200"] == 85.0


def test_bills_filter_by_status(client, headers, table, menu) -> None:
    paid_bill(client, headers, table, menu)
    client.post(f"/api/tables/{table['id']}/cleaned", headers=headers)
    seat_guests(client, headers, table)
    staff_order(client, headers, table, menu)
    client.post("/api/bills", json={"table_id": table["id"]}, headers=headers)

    assert [b["status"] for b in client.get("/api/bills", headers=headers).json()] == ["OPEN", "PAID"]
    paid = client.get("/api/bills", params={"status": "PAID"}, headers=headers).json()
    assert [b["bill_number"] for b in paid] == ["BILL-000001"]
