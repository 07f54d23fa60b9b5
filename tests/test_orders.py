from conftest import seat_guests, staff_order


def _guest_order(client, table, menu, quantity=1):
    resp = client.post(
        f"/api/guest/{table['qr_code']}/orders",
        json={"items": [{"menu_item_id": menu["momo"]["id"], "quantity": quantity, "notes": "Extra spicy"}]},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _set_item(client, headers, item_id, status):
    resp = client.patch(f"/api/order-items/{item_id}/status", json={"status": status}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


# =============================================================================
# PLACING ORDERS
# =============================================================================

def test_staff_order_goes_straight_to_kitchen(client, headers, table, menu) -> None:
    seat_guests(client, headers, table)
    detail = staff_order(client, headers, table, menu)

    order = detail["order"]
    assert order["status"] == "PENDING"
    assert order["source"] == "STAFF"
    assert order["subtotal"] == 850.0
    assert order["order_number"] == "ORD-00001"
    assert order["session_id"] is not None
    assert [i["status"] for i in detail["items"]] == ["SENT_TO_KITCHEN", "SENT_TO_KITCHEN"]
    assert [i["is_bar_item"] for i in detail["items"]] == [False, True]


def test_kitchen_queue_splits_bar_items(client, headers, table, menu) -> None:
    seat_guests(client, headers, table)
    staff_order(client, headers, table, menu)

    queue = client.get("/api/kitchen/queue", headers=headers).json()
    assert [t["name"] for t in queue["kitchen"]] == ["Chicken Momo"]
    assert [t["name"] for t in queue["bar"]] == ["Mango Lassi"]
    assert queue["kitchen"][0]["color"] == "green"


def test_unavailable_item_cannot_be_ordered(client, headers, table, menu) -> None:
    client.patch(f"/api/menu-items/{menu['momo']['id']}/availability", params={"available": False}, headers=headers)
    resp = client.post(
        "/api/orders",
        json={"table_id": table["id"], "items": [{"menu_item_id": menu["momo"]["id"]}]},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "Some items are no longer available"


def test_staff_order_marks_free_table_occupied(client, headers, table, menu) -> None:
    staff_order(client, headers, table, menu)
    assert client.get("/api/tables", headers=headers).json()[0]["status"] == "OCCUPIED"


# =============================================================================
# GUEST ORDERS & CONFIRMATION
# =============================================================================

def test_guest_order_waits_for_confirmation(client, headers, table, menu) -> None:
    session = seat_guests(client, headers, table, guest_count=2)
    detail = _guest_order(client, table, menu, quantity=3)

    assert detail["order"]["status"] == "PENDING_CONFIRMATION"
    assert detail["order"]["source"] == "QR"
    assert detail["items"][0]["status"] == "PENDING"
    assert detail["items"][0]["notes"] == "Extra spicy"
    assert client.get("/api/kitchen/queue", headers=headers).json()["kitchen"] == []

    order_id = detail["order"]["id"]
    confirmed = client.post(f"/api/orders/{order_id}/confirm", json={"guest_count": 4}, headers=headers)
    assert confirmed.status_code == 200
    assert confirmed.json()["order"]["status"] == "CONFIRMED"
    assert confirmed.json()["items"][0]["status"] == "SENT_TO_KITCHEN"

    refreshed = client.get(f"/api/sessions/{session['id']}", headers=headers).json()
    assert refreshed["guest_count"] == 4
    assert refreshed["phase"] == "ORDERING"

    again = client.post(f"/api/orders/{order_id}/confirm", json={"guest_count": 4}, headers=headers)
    assert again.status_code == 400


def test_guest_can_list_session_orders(client, headers, table, menu) -> None:
    seat_guests(client, headers, table)
    _guest_order(client, table, menu)
    orders = client.get(f"/api/guest/{table['qr_code']}/orders").json()
    assert len(orders) == 1
    assert orders[0]["placed_by"] == "Guest"


def test_reject_needs_reason(client, headers, table, menu) -> None:
    seat_guests(client, headers, table)
    order_id = _guest_order(client, table, menu)["order"]["id"]

    blank = client.post(f"/api/orders/{order_id}/reject", json={"reason": "  "}, headers=headers)
    assert blank.status_code == 400

    rejected = client.post(f"/api/orders/{order_id}/reject", json={"reason": "Out of chicken"}, headers=headers)
    assert rejected.status_code == 200
    body = rejected.json()
    assert body["order"]["status"] == "CANCELLED"
    assert body["order"]["rejection_reason"] == "Out of chicken"
    assert body["items"][0]["status"] == "CANCELLED"


# =============================================================================
# KITCHEN PROGRESS
# =============================================================================

def test_item_progress_drives_order_status(client, headers, table, menu) -> None:
    session = seat_guests(client, headers, table)
    detail = staff_order(client, headers, table, menu)
    order_id = detail["order"]["id"]
    momo, lassi = (i["id"] for i in detail["items"])

    _set_item(client, headers, momo, "PREPARING")
    assert client.get(f"/api/orders/{order_id}", headers=headers).json()["order"]["status"] == "PREPARING"

    ready = _set_item(client, headers, momo, "READY")
    assert ready["sla_breached"] is False
    _set_item(client, headers, lassi, "READY")
    assert client.get(f"/api/orders/{order_id}", headers=headers).json()["order"]["status"] == "READY"

    served = client.post(f"/api/orders/{order_id}/serve-ready", headers=headers).json()
    assert sorted(served["served_item_ids"]) == sorted([momo, lassi])
    assert served["order_status"] == "SERVED"

    refreshed = client.get(f"/api/sessions/{session['id']}", headers=headers).json()
    assert refreshed["phase"] == "DINING"
    assert refreshed["first_food_served_at"] is not None


def test_cancelled_item_cannot_move(client, headers, table, menu) -> None:
    detail = staff_order(client, headers, table, menu)
    momo = detail["items"][0]["id"]

    _set_item(client, headers, momo, "CANCELLED")
    resp = client.patch(f"/api/order-items/{momo}/status", json={"status": "READY"}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Item is cancelled"

    pending = client.patch(f"/api/order-items/{momo}/status", json={"status": "PENDING"}, headers=headers)
    assert pending.status_code == 400


def test_completing_an_order_bills_it(client, headers, table, menu) -> None:
    order_id = staff_order(client, headers, table, menu)["order"]["id"]

    resp = client.patch(f"/api/orders/{order_id}/status", json={"status": "COMPLETED"}, headers=headers)
    assert resp.status_code == 200
    order = resp.json()["order"]
    assert order["status"] == "COMPLETED"
    assert order["bill_id"] is not None

    bills = client.get("/api/bills", headers=headers).json()
    assert [b["id"] for b in bills] == [order["bill_id"]]
    assert bills[0]["total_amount"] == 1045.5
    assert client.get("/api/tables", headers=headers).json()[0]["status"] == "AVAILABLE"


def test_orders_filter_by_status(client, headers, table, menu) -> None:
    seat_guests(client, headers, table)
    staff_order(client, headers, table, menu)
    _guest_order(client, table, menu)

    pending = client.get("/api/orders", params={"status": "PENDING_CONFIRMATION"}, headers=headers).json()
    assert [o["source"] for o in pending] == ["QR"]
    assert len(client.get("/api/orders", headers=headers).json()) == 2
