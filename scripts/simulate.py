"""
Dine-in Simulation Script

Drives complete table visits against a running server: QR scan, OTP,
guest order, waiter confirmation, kitchen, bill, payment and invoice.
Tables are run concurrently to exercise the per-restaurant numbering.

Run from project root: python scripts/simulate.py --tables 5
"""

import asyncio
import sys
import random
import time
import argparse
from datetime import datetime
from typing import Any

import httpx

# Windows event loop fix
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Configuration
API_BASE_URL = "http://localhost:8001"
TOTAL_TABLES = 5

MENU_ITEMS = [
    {"name": "Chicken Momo", "category": "Momo", "price": 350, "station": "KITCHEN", "expected_prep_time": 15},
    {"name": "Veg Momo", "category": "Momo", "price": 280, "station": "KITCHEN", "expected_prep_time": 12},
    {"name": "Dal Bhat Set", "category": "Nepali", "price": 450, "station": "KITCHEN", "expected_prep_time": 20},
    {"name": "Chowmein", "category": "Noodles", "price": 250, "station": "KITCHEN", "expected_prep_time": 10},
    {"name": "Masala Tea", "category": "Drinks", "price": 80, "station": "BAR", "expected_prep_time": 5},
    {"name": "Lassi", "category": "Drinks", "price": 150, "station": "BAR", "expected_prep_time": 5},
]


def check(response: httpx.Response, step: str) -> Any:
    if response.status_code >= 400:
        raise RuntimeError(f"{step} failed ({response.status_code}): {response.text[:200]}")
    return response.json()


async def setup_restaurant(client: httpx.AsyncClient, num_tables: int) -> dict[str, Any]:
    """Create a throwaway restaurant with a menu and tables."""
    name = f"Simulation Kitchen {datetime.now().strftime('%H%M%S')}"
    restaurant = check(await client.post("/api/restaurants", json={
        "name": name,
        "address": "Thamel, Kathmandu",
        "pan_number": "123456789",
        "loyalty_settings": {"enabled": True},
    }), "Create restaurant")

    headers = {"X-Restaurant-Id": str(restaurant["id"]), "X-Staff-Name": "Simulator"}
    menu = [
        check(await client.post("/api/menu-items", json=item, headers=headers), "Create menu item")
        for item in MENU_ITEMS
    ]
    tables = [
        check(await client.post("/api/tables", json={"table_number": f"T{i + 1}", "capacity": 4},
                                headers=headers), "Create table")
        for i in range(num_tables)
    ]
    return {"restaurant": restaurant, "headers": headers, "menu": menu, "tables": tables}


async def run_visit(client: httpx.AsyncClient, setup: dict[str, Any], table: dict[str, Any]) -> dict[str, Any]:
    """One complete table visit. Returns timing and the issued invoice number."""
    headers = setup["headers"]
    qr = table["qr_code"]
    start_time = time.time()

    try:
        check(await client.post(f"/api/guest/{qr}/scan"), "Scan QR")
        # The waiter reads the OTP off the staff screen
        tables = check(await client.get("/api/tables", headers=headers), "List tables")
        otp = next(t["current_otp"] for t in tables if t["id"] == table["id"])
        check(await client.post(f"/api/guest/{qr}/verify-otp",
                                json={"otp": otp, "guest_count": random.randint(1, 4)}), "Verify OTP")

        lines = [
            {"menu_item_id": item["id"], "quantity": random.randint(1, 3)}
            for item in random.sample(setup["menu"], k=random.randint(1, 4))
        ]
        placed = check(await client.post(f"/api/guest/{qr}/orders", json={"items": lines}), "Guest order")
        order_id = placed["order"]["id"]
        if placed["order"]["status"] == "PENDING_CONFIRMATION":
            check(await client.post(f"/api/orders/{order_id}/confirm", json={"guest_count": 2},
                                    headers=headers), "Confirm order")

        for item in placed["items"]:
            for status in ("PREPARING", "READY", "SERVED"):
                check(await client.patch(f"/api/order-items/{item['id']}/status",
                                         json={"status": status}, headers=headers), f"Item {status}")

        check(await client.post(f"/api/guest/{qr}/request-bill"), "Request bill")
        bill = check(await client.post("/api/bills", json={"table_id": table["id"]}, headers=headers), "Create bill")
        bill_id = bill["bill"]["id"]
        check(await client.post(f"/api/bills/{bill_id}/finalize", headers=headers), "Finalize bill")

        due = bill["balance_due"]
        paid = check(await client.post(f"/api/bills/{bill_id}/payments", json={
            "amount": due,
            "method": "CASH",
            "cash_received": float(int(due // 100 + 1) * 100),
        }, headers=headers), "Payment")

        invoice = paid.get("invoice") or {}
        check(await client.post(f"/api/tables/{table['id']}/cleaned", headers=headers), "Mark cleaned")
        return {
            "table": table["table_number"],
            "success": True,
            "total": paid["bill"]["total_amount"],
            "invoice_number": invoice.get("invoice_number"),
            "time": round(time.time() - start_time, 3),
        }
    except (RuntimeError, httpx.HTTPError, StopIteration) as e:
        return {
            "table": table["table_number"],
            "success": False,
            "error": str(e)[:200],
            "time": round(time.time() - start_time, 3),
        }


async def run_simulation(num_tables: int = TOTAL_TABLES) -> dict[str, Any]:
    print("=" * 70)
    print("🍽️  DINE-IN SIMULATION")
    print("=" * 70)
    print(f"📋 Tables: {num_tables}")
    print(f"🎯 Target: {API_BASE_URL}")
    print(f"⏰ Started: {datetime.now().strftime('%H:%M:%S')}")
    print("=" * 70)

    start_time = time.time()
    async with httpx.AsyncClient(base_url=API_BASE_URL, timeout=30.0) as client:
        health = check(await client.get("/health"), "Health check")
        print(f"\n✅ Server status: {health.get('status')} (database: {health.get('database')})")

        setup = await setup_restaurant(client, num_tables)
        print(f"🏪 Restaurant #{setup['restaurant']['id']} ready with {num_tables} tables\n")

        results = await asyncio.gather(*[run_visit(client, setup, t) for t in setup["tables"]])

        headers = setup["headers"]
        today = datetime.now().date().isoformat()
        register = check(await client.get("/api/reports/ird/sales-register",
                                          params={"from_date": today, "to_date": today},
                                          headers=headers), "Sales register")
        export = check(await client.post("/api/reports/ird/sales-register/export",
                                          params={"from_date": today, "to_date": today},
                                          headers=headers), "Register export")

    total_time = round(time.time() - start_time, 2)
    successful = [r for r in results if r["success"]]
    failed = [r for r in results if not r["success"]]

    print("=" * 70)
    print("📊 SIMULATION RESULTS")
    print("=" * 70)
    print(f"\n✅ Completed visits: {len(successful)}/{num_tables}")
    print(f"❌ Failed visits: {len(failed)}/{num_tables}")
    print(f"⏱️  Total Time: {total_time}s")

    if successful:
        avg_time = round(sum(r["time"] for r in successful) / len(successful), 3)
        print(f"\n📈 Average visit: {avg_time}s")
        print(f"   💰 Revenue: Rs. {sum(r['total'] for r in successful):.2f}")
        for r in successful:
            print(f"   {r['table']}: {r['invoice_number']}  Rs. {r['total']:.2f}")

    if failed:
        print("\n⚠️  Failed visits:")
        for f in failed:
            print(f"   {f['table']}: {f['error']}")

    summary = register["summary"]
    print(f"\n🧾 Sales register: {summary['total_invoices']} invoices, VAT Rs. {summary['total_vat']:.2f}")
    print(f"📄 Exported to: {export['path']}")
    print("\n" + "=" * 70)
    print(f"Next: python scripts/verify.py {export['path']}")
    print("=" * 70)

    return {"total": num_tables, "successful": len(successful), "failed": len(failed),
            "total_time": total_time, "results": results}


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Dine-in Simulation Script")
    parser.add_argument("--tables", type=int, default=TOTAL_TABLES, help="Number of concurrent table visits")
    parser.add_argument("--url", default=API_BASE_URL, help="Server base URL")
    args = parser.parse_args()

    API_BASE_URL = args.url
    asyncio.run(run_simulation(args.tables))
