from datetime import date, datetime, timedelta

import pytest

from app.models import Customer, Restaurant
from app.services.loyalty import LoyaltyService

from conftest import create_restaurant, open_bill, paid_bill, run_in_db, seat_guests


@pytest.fixture
def headers(client):
    return create_restaurant(client, loyalty_settings={"enabled": True, "min_redeem": 10})


@pytest.fixture
def customer(client, headers):
    resp = client.post("/api/loyalty/customers", json={"phone": "984-100-0000", "name": "Sita Sharma"}, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def _next_bill(client, headers, table, menu) -> dict:
    client.post(f"/api/tables/{table['id']}/cleaned", headers=headers)
    return open_bill(client, headers, table, menu)["bill"]


# =============================================================================
# CUSTOMERS
# =============================================================================

def test_settings_overlay_restaurant_values(client, headers) -> None:
    settings = client.get("/api/loyalty/settings", headers=headers).json()
    assert settings["enabled"] is True
    assert settings["min_redeem"] == 10
    assert settings["max_redeem_percent"] == 50
    assert settings["visit_milestones"]["5"] == 50


def test_customers_are_keyed_by_phone(client, headers, customer) -> None:
    assert customer["phone"] == "9841000000"
    assert customer["tier"] == "BRONZE"
    assert customer["points_balance"] == 0

    again = client.post("/api/loyalty/customers", json={"phone": "9841000000"}, headers=headers).json()
    assert again["id"] == customer["id"]
    assert again["name"] == "Sita Sharma"

    detail = client.get(f"/api/loyalty/customers/{customer['id']}", headers=headers).json()
    assert detail["next_milestone"] == {"next_milestone": 5, "points_reward": 50, "visits_remaining": 5}


# =============================================================================
# EARNING & REDEEMING
# =============================================================================

def test_paid_bill_earns_points(client, headers, table, menu, customer) -> None:
    result = paid_bill(client, headers, table, menu, customer_id=customer["id"])

    assert result["bill"]["customer_id"] == customer["id"]
    loyalty = result["loyalty"]
    assert loyalty["success"] is True
    assert (loyalty["points_earned"], loyalty["new_balance"], loyalty["tier"]) == (10, 10, "BRONZE")
    assert loyalty["milestone"]["is_milestone"] is False

    detail = client.get(f"/api/loyalty/customers/{customer['id']}", headers=headers).json()["customer"]
    assert detail["total_visits"] == 1
    assert detail["total_spent"] == 1045.5

    history = client.get(f"/api/loyalty/customers/{customer['id']}/transactions", headers=headers).json()
    assert [(t["type"], t["points"], t["balance_after"]) for t in history] == [("EARN", 10, 10)]
    assert history[0]["expires_at"] is not None

    soon = client.get(f"/api/loyalty/customers/{customer['id']}/expiring", headers=headers).json()
    assert soon == {"batches": [], "total_points": 0}
    within_year = client.get(
        f"/api/loyalty/customers/{customer['id']}/expiring", params={"within_days": 365}, headers=headers
    ).json()
    assert within_year["total_points"] == 10


def test_redeem_preview_does_not_spend(client, headers, table, menu, customer) -> None:
    paid_bill(client, headers, table, menu, customer_id=customer["id"])
    url = f"/api/loyalty/customers/{customer['id']}/redeem-preview"

    ok = client.post(url, json={"points": 10, "bill_amount": 100}, headers=headers).json()
    assert (ok["allowed"], ok["max_redeemable"], ok["value"]) == (True, 10, 10.0)

    too_few = client.post(url, json={"points": 5, "bill_amount": 100}, headers=headers).json()
    assert too_few["allowed"] is False
    assert too_few["value"] == 0

    capped = client.post(url, json={"points": 10, "bill_amount": 15}, headers=headers).json()
    assert (capped["max_redeemable"], capped["allowed"]) == (7, False)

    balance = client.get(f"/api/loyalty/customers/{customer['id']}", headers=headers).json()
    assert balance["customer"]["points_balance"] == 10


def test_points_pay_part_of_the_next_bill(client, headers, table, menu, customer) -> None:
    paid_bill(client, headers, table, menu, customer_id=customer["id"])
    bill = _next_bill(client, headers, table, menu)

    too_many = client.post(
        f"/api/bills/{bill['id']}/payments",
        json={"amount": 1000, "points_to_redeem": 20, "customer_id": customer["id"]},
        headers=headers,
    )
    assert too_many.status_code == 400
    assert too_many.json()["error"] == "Insufficient points balance"

    result = client.post(
        f"/api/bills/{bill['id']}/payments",
        json={"amount": 1035.5, "points_to_redeem": 10, "customer_id": customer["id"]},
        headers=headers,
    ).json()
    assert result["bill"]["status"] == "PAID"
    assert [(p["method"], p["amount"]) for p in result["payments"]] == [
        ("LOYALTY_POINTS", 10.0), ("CASH", 1035.5)
    ]
    assert result["payments"][0]["points_redeemed"] == 10
    assert result["loyalty"]["new_balance"] == 10

    detail = client.get(f"/api/loyalty/customers/{customer['id']}", headers=headers).json()["customer"]
    assert detail["points_redeemed_lifetime"] == 10
    assert detail["total_visits"] == 2

    trial = client.get("/api/accounting/trial-balance", headers=headers).json()
    assert trial["is_balanced"] is True


# =============================================================================
# BONUSES & EXPIRY
# =============================================================================

def test_birthday_bonus_once_per_year(client, headers) -> None:
    today = date.today()
    born_today = date(1992, 2, 29) if (today.month, today.day) == (2, 29) else today.replace(year=1990)
    customer = client.post(
        "/api/loyalty/customers",
        json={"phone": "9801234567", "date_of_birth": born_today.isoformat()},
        headers=headers,
    ).json()
    assert customer["name"] == "Guest"

    url = f"/api/loyalty/customers/{customer['id']}/birthday-bonus"
    assert client.post(url, headers=headers).json() == {"awarded": True, "points": 100}
    assert client.post(url, headers=headers).json() == {"awarded": False, "points": 0}


def test_no_birthday_bonus_without_date_of_birth(client, headers, customer) -> None:
    resp = client.post(f"/api/loyalty/customers/{customer['id']}/birthday-bonus", headers=headers)
    assert resp.json() == {"awarded": False, "points": 0}


def test_points_expire_after_a_year(client, headers, tmp_path, table, menu, customer) -> None:
    paid_bill(client, headers, table, menu, customer_id=customer["id"])
    assert client.post("/api/loyalty/expire-points", headers=headers).json()["total_points_expired"] == 0

    restaurant_id = int(headers["X-Restaurant-Id"])

    async def expire_next_year(db):
        restaurant = await db.get(Restaurant, restaurant_id)
        return await LoyaltyService(db, restaurant).process_expired_points(
            now=datetime.now() + timedelta(days=366)
        )

    result = run_in_db(tmp_path, expire_next_year)
    assert result == {"processed_customers": 1, "total_points_expired": 10}

    detail = client.get(f"/api/loyalty/customers/{customer['id']}", headers=headers).json()["customer"]
    assert detail["points_balance"] == 0
    history = client.get(f"/api/loyalty/customers/{customer['id']}/transactions", headers=headers).json()
    assert history[0]["type"] == "EXPIRE"
    assert history[0]["points"] == -10


def test_inactive_customers_lose_their_balance(client, headers, tmp_path, table, menu, customer) -> None:
    paid_bill(client, headers, table, menu, customer_id=customer["id"])
    regular = client.post("/api/loyalty/customers", json={"phone": "9812345678"}, headers=headers).json()

    async def backdate_visits(db):
        lapsed = await db.get(Customer, customer["id"])
        lapsed.last_visit_at = datetime.now() - timedelta(days=400)
        fading = await db.get(Customer, regular["id"])
        fading.points_balance = 50
        fading.last_visit_at = datetime.now() - timedelta(days=350)

    run_in_db(tmp_path, backdate_visits)

    result = client.post("/api/loyalty/expire-inactive", headers=headers).json()
    assert result == {"customers_expired": 1, "customers_at_risk": 1, "total_points_expired": 10}

    history = client.get(f"/api/loyalty/customers/{customer['id']}/transactions", headers=headers).json()
    assert (history[0]["type"], history[0]["points"]) == ("EXPIRE", -10)
    assert history[0]["reason"] == "Points expired due to 365 days of inactivity"
    fading = client.get(f"/api/loyalty/customers/{regular['id']}", headers=headers).json()["customer"]
    assert fading["points_balance"] == 50

    restaurant_id = int(headers["X-Restaurant-Id"])

    async def expire_next_year(db):
        restaurant = await db.get(Restaurant, restaurant_id)
        return await LoyaltyService(db, restaurant).process_expired_points(
            now=datetime.now() + timedelta(days=366)
        )

    # The earn batch went with the balance
    assert run_in_db(tmp_path, expire_next_year) == {"processed_customers": 0, "total_points_expired": 0}


# =============================================================================
# SEGMENTATION
# =============================================================================

def test_rfm_segments_customers(client, headers, table, menu, customer) -> None:
    paid_bill(client, headers, table, menu, customer_id=customer["id"])
    idle = client.post("/api/loyalty/customers", json={"phone": "9812345678"}, headers=headers).json()

    rfm = client.get("/api/loyalty/rfm", headers=headers).json()
    assert rfm["segment_counts"] == {"CHAMPIONS": 1, "HIBERNATING": 1}
    assert [c["customer_id"] for c in rfm["customers"]] == [customer["id"], idle["id"]]
    assert rfm["averages"] == {"avg_visits": 0.5, "avg_spend": 522.75}

    hibernating = client.get("/api/loyalty/rfm", params={"segment": "HIBERNATING"}, headers=headers).json()
    assert [c["customer_id"] for c in hibernating["customers"]] == [idle["id"]]


def test_loyalty_disabled_restaurant_awards_nothing(client) -> None:
    plain = create_restaurant(client, name="Everest Diner")
    momo = client.post("/api/menu-items", json={"name": "Veg Momo", "price": 200}, headers=plain).json()
    table = client.post("/api/tables", json={"table_number": "A1"}, headers=plain).json()
    guest = client.post("/api/loyalty/customers", json={"phone": "9800000001"}, headers=plain).json()

    seat_guests(client, plain, table)
    client.post("/api/orders", json={"table_id": table["id"], "items": [{"menu_item_id": momo["id"]}]}, headers=plain)
    bill = client.post("/api/bills", json={"table_id": table["id"]}, headers=plain).json()["bill"]
    result = client.post(
        f"/api/bills/{bill['id']}/payments",
        json={"amount": bill["total_amount"], "customer_id": guest["id"]},
        headers=plain,
    ).json()

    assert result["bill"]["status"] == "PAID"
    assert result["loyalty"] == {"success": False, "points_earned": 0, "message": "Loyalty program is disabled"}
