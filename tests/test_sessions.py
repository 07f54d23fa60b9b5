from datetime import datetime, timedelta

from app.services.sessions import SessionService

from conftest import create_restaurant, run_in_db, seat_guests


# =============================================================================
# TENANCY
# =============================================================================

def test_create_restaurant_seeds_chart_of_accounts(client, headers) -> None:
    me = client.get("/api/restaurants/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["slug"] == "himalayan-kitchen"

    accounts = client.get("/api/accounting/accounts", headers=headers).json()
    codes = {a["account_code"] for a in accounts}
    assert {"1000", "2100", "2200", "4000", "5000"} <= codes


def test_duplicate_restaurant_is_rejected(client, headers) -> None:
    resp = client.post("/api/restaurants", json={"name": "Himalayan Kitchen"})
    assert resp.status_code == 409
    assert resp.json() == {"success": False, "error": "A restaurant with this name already exists"}


def test_invalid_pan_is_rejected(client) -> None:
    resp = client.post("/api/restaurants", json={"name": "Everest Diner", "pan_number": "12AB"})
    assert resp.status_code == 422


def test_tenant_header_is_required(client) -> None:
    missing = client.get("/api/tables")
    assert missing.status_code == 400
    assert missing.json()["error"] == "X-Restaurant-Id header is required"

    assert client.get("/api/tables", headers={"X-Restaurant-Id": "abc"}).status_code == 400
    assert client.get("/api/tables", headers={"X-Restaurant-Id": "999"}).status_code == 404


def test_restaurants_do_not_see_each_others_tables(client, headers, table) -> None:
    other = create_restaurant(client, name="Everest Diner")
    assert client.get("/api/tables", headers=other).json() == []
    assert client.post(f"/api/tables/{table['id']}/otp", headers=other).status_code == 404


# =============================================================================
# TABLES & OTP
# =============================================================================

def test_table_gets_otp_and_qr(client, headers, table) -> None:
    assert len(table["current_otp"]) == 3
    assert table["qr_code"]
    assert table["status"] == "AVAILABLE"

    dup = client.post("/api/tables", json={"table_number": "T1"}, headers=headers)
    assert dup.status_code == 409


def test_regenerate_otp_records_history(client, headers, table) -> None:
    regenerated = client.post(f"/api/tables/{table['id']}/otp", headers=headers).json()
    assert regenerated["current_otp"] != table["current_otp"]

    history = client.get(f"/api/tables/{table['id']}/otp-history", headers=headers).json()
    assert [h["reason"] for h in history] == ["MANUAL_REGENERATION", "INITIAL"]
    assert history[0]["changed_by"] == "Ramesh"


# =============================================================================
# GUEST FLOW
# =============================================================================

def test_scan_does_not_reveal_otp(client, table) -> None:
    resp = client.post(f"/api/guest/{table['qr_code']}/scan")
    assert resp.status_code == 200
    data = resp.json()
    assert data["restaurant"] == "Himalayan Kitchen"
    assert data["otp_required"] is True
    assert data["phase"] == "CREATED"
    assert "current_otp" not in data["table"]

    again = client.post(f"/api/guest/{table['qr_code']}/scan").json()
    assert again["session_id"] == data["session_id"]


def test_unknown_qr_code(client) -> None:
    resp = client.post("/api/guest/not-a-table/scan")
    assert resp.status_code == 404
    assert resp.json()["error"] == "Invalid QR code"


def test_wrong_otp_is_rejected(client, headers, table) -> None:
    client.post(f"/api/guest/{table['qr_code']}/scan")
    wrong = "999" if table["current_otp"] != "999" else "998"
    resp = client.post(f"/api/guest/{table['qr_code']}/verify-otp", json={"otp": wrong})
    assert resp.status_code == 400
    assert "Invalid OTP" in resp.json()["error"]


def test_verify_otp_seats_guests(client, headers, table) -> None:
    session = seat_guests(client, headers, table, guest_count=3)
    assert session["phase"] == "SEATED"
    assert session["guest_count"] == 3
    assert session["seated_at"] is not None

    tables = client.get("/api/tables", headers=headers).json()
    assert tables[0]["status"] == "OCCUPIED"

    history = client.get(f"/api/tables/{table['id']}/otp-history", headers=headers).json()
    assert history[0]["reason"] == "USED"

    active = client.get("/api/sessions", headers=headers).json()
    assert [s["id"] for s in active] == [session["id"]]


def test_guest_count_update(client, headers, table) -> None:
    session = seat_guests(client, headers, table)
    resp = client.patch(f"/api/sessions/{session['id']}/guest-count", json={"guest_count": 5}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["guest_count"] == 5

    assert client.patch(
        f"/api/sessions/{session['id']}/guest-count", json={"guest_count": 0}, headers=headers
    ).status_code == 422


def test_request_bill_and_assistance(client, headers, table) -> None:
    seat_guests(client, headers, table)

    help_resp = client.post(f"/api/guest/{table['qr_code']}/assistance", json={"reason": "Need water"})
    assert help_resp.status_code == 200
    alerts = client.get("/api/alerts", headers=headers).json()
    assert len(alerts) == 1
    assert alerts[0]["alert_type"] == "ASSISTANCE"
    assert "Need water" in alerts[0]["message"]

    resolved = client.post(f"/api/alerts/{alerts[0]['id']}/resolve", headers=headers).json()
    assert resolved["is_resolved"] is True
    assert client.get("/api/alerts", headers=headers).json() == []

    bill_req = client.post(f"/api/guest/{table['qr_code']}/request-bill").json()
    assert bill_req["phase"] == "BILL_REQUESTED"
    assert client.get("/api/tables", headers=headers).json()[0]["status"] == "BILL_REQUESTED"


def test_end_session_rotates_otp_and_starts_cleaning(client, headers, table) -> None:
    session = seat_guests(client, headers, table)
    ended = client.post(f"/api/sessions/{session['id']}/end", headers=headers)
    assert ended.status_code == 200
    assert ended.json()["status"] == "COMPLETED"

    current = client.get("/api/tables", headers=headers).json()[0]
    assert current["status"] == "CLEANING"
    assert current["current_otp"] != table["current_otp"]

    queue = client.get("/api/tables/cleaning-queue", headers=headers).json()
    assert [q["table_id"] for q in queue] == [table["id"]]

    cleaned = client.post(f"/api/tables/{table['id']}/cleaned", headers=headers).json()
    assert cleaned["status"] == "AVAILABLE"
    assert client.get("/api/tables/cleaning-queue", headers=headers).json() == []

    guest_orders = client.get(f"/api/guest/{table['qr_code']}/orders")
    assert guest_orders.status_code == 400
    assert "No active session" in guest_orders.json()["error"]


def test_session_timeline_and_summary(client, headers, table) -> None:
    session = seat_guests(client, headers, table)

    timeline = client.get(f"/api/sessions/{session['id']}/timeline", headers=headers).json()
    assert [e["event"] for e in timeline][:2] == ["QR_SCANNED", "SEATED"]

    summary = client.get(f"/api/sessions/{session['id']}/summary", headers=headers).json()
    assert summary["phase"] == "SEATED"
    assert summary["order_count"] == 0
    assert summary["durations"]["seat_wait_minutes"] == 0


# =============================================================================
# TIMER ALERTS
# =============================================================================

def test_scan_alerts_raises_each_alert_once(client, headers, tmp_path, table) -> None:
    client.post(f"/api/guest/{table['qr_code']}/scan")
    assert client.post("/api/sessions/scan-alerts", headers=headers).json()["count"] == 0

    restaurant_id = int(headers["X-Restaurant-Id"])

    async def scan_later(db):
        service = SessionService(db, restaurant_id)
        later = datetime.now() + timedelta(minutes=3)
        return await service.scan_alerts(now=later), await service.scan_alerts(now=later)

    first, second = run_in_db(tmp_path, scan_later)
    assert [a["type"] for a in first] == ["OTP_HELP"]
    assert second == []

    alerts = client.get("/api/alerts", headers=headers).json()
    assert [a["alert_type"] for a in alerts] == ["OTP_HELP"]

    otp = client.get("/api/tables", headers=headers).json()[0]["current_otp"]
    client.post(f"/api/guest/{table['qr_code']}/verify-otp", json={"otp": otp})
    assert client.get("/api/alerts", headers=headers).json() == []


def test_long_stay_alert_levels(client, headers, tmp_path, table) -> None:
    seat_guests(client, headers, table)
    restaurant_id = int(headers["X-Restaurant-Id"])

    async def scan_at(db, minutes):
        return await SessionService(db, restaurant_id).scan_alerts(
            now=datetime.now() + timedelta(minutes=minutes)
        )

    warning = run_in_db(tmp_path, lambda db: scan_at(db, 95))
    assert {a["type"] for a in warning} == {"ORDER_HELP", "LONG_STAY"}
    assert any(a.get("priority") == "high" for a in warning)

    critical = run_in_db(tmp_path, lambda db: scan_at(db, 125))
    assert [(a["type"], a.get("priority")) for a in critical] == [("LONG_STAY", "critical")]
