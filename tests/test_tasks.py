import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

import app.tasks as tasks
from app.celery_worker import celery_app
from app.services.cbms import MockCbmsClient

from conftest import create_restaurant, paid_bill


@pytest.fixture
def task_db(client, tmp_path, monkeypatch):
    """Point the background jobs at the test client's database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}", poolclass=NullPool)
    monkeypatch.setattr(tasks, "engine", engine)
    monkeypatch.setattr(
        tasks, "async_session_maker", async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    )
    return engine


def test_beat_schedule() -> None:
    schedule = celery_app.conf.beat_schedule
    assert set(schedule) == {
        "scan-session-alerts", "retry-cbms-syncs", "expire-loyalty-points", "export-daily-sales-register"
    }
    assert schedule["retry-cbms-syncs"]["task"] == "app.tasks.retry_cbms_syncs"
    assert schedule["scan-session-alerts"]["schedule"] == 60.0


def test_health_check_task() -> None:
    result = tasks.health_check.delay().get()
    assert result["status"] == "healthy"
    assert result["worker"] == "celery"


def test_health_endpoint(client) -> None:
    health = client.get("/health").json()
    assert health["database"] == "healthy"
    assert health["cbms_client"] == "healthy"
    assert health["payment_gateways"] == {"KHALTI": "healthy", "ESEWA": "healthy"}


# =============================================================================
# PER-RESTAURANT JOBS
# =============================================================================

def test_jobs_run_for_every_restaurant(client, headers, task_db) -> None:
    create_restaurant(client, name="Everest Diner")

    assert tasks.expire_loyalty_points.delay().get() == {
        "restaurants": 2, "total_points_expired": 0, "inactive_customers_expired": 0
    }
    assert tasks.scan_session_alerts.delay().get() == {"restaurants": 2, "raised": 0}


def test_one_failing_restaurant_does_not_stop_the_rest(client, headers, task_db) -> None:
    create_restaurant(client, name="Everest Diner")
    first_id = int(headers["X-Restaurant-Id"])

    async def job(db, restaurant):
        if restaurant.id == first_id:
            raise RuntimeError("ledger locked")
        return {"name": restaurant.name}

    results = asyncio.run(tasks.for_each_restaurant(job))
    assert list(results.values()) == [{"name": "Everest Diner"}]


def test_cbms_retry_task(client, headers, table, menu, task_db, monkeypatch) -> None:
    monkeypatch.setattr("app.services.invoice.get_cbms_client", lambda: MockCbmsClient(failure_code=103))
    client.put(
        "/api/restaurants/me/cbms",
        json={"enabled": True, "username": "himalayan", "password": "secret", "seller_pan": "123456789"},
        headers=headers,
    )
    paid_bill(client, headers, table, menu)

    assert tasks.retry_cbms_syncs.delay().get() == {"restaurants": 1, "synced": 0, "failed": 1}

    monkeypatch.setattr("app.services.invoice.get_cbms_client", lambda: MockCbmsClient())
    assert tasks.retry_cbms_syncs.delay().get() == {"restaurants": 1, "synced": 1, "failed": 0}

    invoice = client.get("/api/invoices", headers=headers).json()[0]
    assert invoice["cbms_synced"] is True
    assert invoice["cbms_sync_attempts"] == 3


def test_sales_register_export_task(client, headers, table, menu, task_db) -> None:
    paid_bill(client, headers, table, menu)

    result = tasks.export_sales_register.delay().get()
    assert (result["exported"], result["failed"]) == (1, [])
    [export] = result["results"].values()
    assert export["rows"] == 1
