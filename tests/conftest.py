import asyncio
import os
import tempfile

# Settings are read once at import time, so the environment goes first.
_TEST_DIR = tempfile.mkdtemp(prefix="pos-tests-")
os.environ["ENV_MODE"] = "development"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'app.db')}"
os.environ["DATA_DIRECTORY"] = os.path.join(_TEST_DIR, "data")
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.models  # noqa: F401
from app.database import Base, get_db
from app.main import app
from app.services.cbms import reset_cbms_client
from app.services.payment import reset_payment_gateways


def _make_client(db_path) -> TestClient:
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)

    async def create_schema():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_schema())
    TestingSession = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with TestingSession() as session:
            try:
                yield session
            finally:
                await session.close()

    app.dependency_overrides[get_db] = override_get_db
    reset_payment_gateways()
    reset_cbms_client()
    return TestClient(app)


@pytest.fixture
def client(tmp_path):
    with _make_client(tmp_path / "pos.db") as test_client:
        yield test_client
    app.dependency_overrides.clear()


def run_in_db(tmp_path, work):
    """Run ``work(session)`` against the test client's database and commit."""
    async def runner():
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}", poolclass=NullPool)
        try:
            async with async_sessionmaker(bind=engine, expire_on_commit=False)() as session:
                result = await work(session)
                await session.commit()
                return result
        finally:
            await engine.dispose()

    return asyncio.run(runner())


def create_restaurant(client, name="Himalayan Kitchen", **extra) -> dict:
    payload = {"name": name, "address": "Thamel, Kathmandu", "pan_number": "123456789", **extra}
    resp = client.post("/api/restaurants", json=payload)
    assert resp.status_code == 201, resp.text
    return {"X-Restaurant-Id": str(resp.json()["id"]), "X-Staff-Name": "Ramesh"}


@pytest.fixture
def headers(client):
    return create_restaurant(client)


@pytest.fixture
def menu(client, headers):
    momo = client.post(
        "/api/menu-items",
        json={"name": "Chicken Momo", "category": "Snacks", "price": 350, "expected_prep_time": 15},
        headers=headers,
    ).json()
    lassi = client.post(
        "/api/menu-items",
        json={"name": "Mango Lassi", "category": "Drinks", "price": 150, "station": "bar"},
        headers=headers,
    ).json()
    return {"momo": momo, "lassi": lassi}


@pytest.fixture
def table(client, headers):
    resp = client.post("/api/tables", json={"table_number": "T1", "capacity": 4}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def seat_guests(client, headers, table, guest_count=2) -> dict:
    """Scan the table QR and verify the OTP shown to the waiter."""
    scan = client.post(f"/api/guest/{table['qr_code']}/scan")
    assert scan.status_code == 200, scan.text
    otp = next(t["current_otp"] for t in client.get("/api/tables", headers=headers).json()
               if t["id"] == table["id"])
    verified = client.post(
        f"/api/guest/{table['qr_code']}/verify-otp",
        json={"otp": otp, "guest_count": guest_count},
    )
    assert verified.status_code == 200, verified.text
    return verified.json()


def staff_order(client, headers, table, menu) -> dict:
    """Two momos and a lassi: subtotal 850."""
    resp = client.post(
        "/api/orders",
        json={
            "table_id": table["id"],
            "items": [
                {"menu_item_id": menu["momo"]["id"], "quantity": 2},
                {"menu_item_id": menu["lassi"]["id"], "quantity": 1},
            ],
        },
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def open_bill(client, headers, table, menu) -> dict:
    seat_guests(client, headers, table)
    staff_order(client, headers, table, menu)
    resp = client.post("/api/bills", json={"table_id": table["id"]}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def paid_bill(client, headers, table, menu, **payment) -> dict:
    bill = open_bill(client, headers, table, menu)["bill"]
    body = {"amount": bill["total_amount"], "method": "CASH", **payment}
    resp = client.post(f"/api/bills/{bill['id']}/payments", json=body, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()
