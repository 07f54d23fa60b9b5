"""
Celery Tasks
Periodic and on-demand background jobs run for every restaurant:
CBMS retries, session timer alerts, points expiry and register exports.
"""

import asyncio
import logging
import time
from datetime import date, datetime
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.celery_worker import celery_app
from app.database import async_session_maker, engine
from app.models import Restaurant
from app.services.excel_manager import ExcelManager
from app.services.invoice import InvoiceService
from app.services.loyalty import LoyaltyService
from app.services.reports import ReportService
from app.services.sessions import SessionService

logger = logging.getLogger(__name__)

RestaurantJob = Callable[[AsyncSession, Restaurant], Awaitable[dict]]


async def for_each_restaurant(job: RestaurantJob) -> dict[int, dict]:
    """
    Run ``job`` once per restaurant, each in its own committed transaction.

    A restaurant whose job raises is rolled back, logged and left out of
    the results; the remaining restaurants still run.
    """
    results: dict[int, dict] = {}
    try:
        async with async_session_maker() as db:
            restaurant_ids = (await db.execute(select(Restaurant.id))).scalars().all()

        for restaurant_id in restaurant_ids:
            async with async_session_maker() as db:
                try:
                    restaurant = await db.get(Restaurant, restaurant_id)
                    results[restaurant_id] = await job(db, restaurant)
                    await db.commit()
                except Exception:
                    await db.rollback()
                    logger.exception(f"❌ Background job failed for restaurant {restaurant_id}")
    finally:
        # Each task run gets a fresh event loop; pooled connections must not outlive it
        await engine.dispose()
    return results


def _run(job: RestaurantJob) -> dict[int, dict]:
    return asyncio.run(for_each_restaurant(job))


async def _retry_cbms(db: AsyncSession, restaurant: Restaurant) -> dict:
    return await InvoiceService(db, restaurant).retry_pending()


async def _scan_alerts(db: AsyncSession, restaurant: Restaurant) -> dict:
    raised = await SessionService(db, restaurant.id).scan_alerts()
    return {"raised": len(raised)}


async def _expire_points(db: AsyncSession, restaurant: Restaurant) -> dict:
    loyalty = LoyaltyService(db, restaurant)
    batches = await loyalty.process_expired_points()
    inactive = await loyalty.process_inactivity_expiry()
    return {
        "total_points_expired": batches["total_points_expired"] + inactive["total_points_expired"],
        "inactive_customers_expired": inactive["customers_expired"],
    }


def _sales_register_job(from_date: date, to_date: date) -> RestaurantJob:
    async def job(db: AsyncSession, restaurant: Restaurant) -> dict:
        register = await ReportService(db, restaurant).sales_register(from_date, to_date)
        label = f"{from_date.isoformat()}_{to_date.isoformat()}"
        return ExcelManager.export_sales_register(restaurant.slug, label, register)
    return job


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(ConnectionError, OSError),
    retry_backoff=True
)
def retry_cbms_syncs(self) -> dict:
    """Push unsynced invoices to the IRD CBMS again."""
    start_time = time.time()
    results = _run(_retry_cbms)
    synced = sum(r["synced"] for r in results.values())
    failed = sum(r["failed"] for r in results.values())
    logger.info(
        f"📡 Task {self.request.id}: CBMS retry synced {synced}, failed {failed} "
        f"in {round(time.time() - start_time, 3)}s"
    )
    return {"restaurants": len(results), "synced": synced, "failed": failed}


@celery_app.task(bind=True)
def scan_session_alerts(self) -> dict:
    results = _run(_scan_alerts)
    raised = sum(r["raised"] for r in results.values())
    if raised:
        logger.info(f"🔔 Task {self.request.id}: {raised} session alerts raised")
    return {"restaurants": len(results), "raised": raised}


@celery_app.task(bind=True)
def expire_loyalty_points(self) -> dict:
    results = _run(_expire_points)
    return {
        "restaurants": len(results),
        "total_points_expired": sum(r["total_points_expired"] for r in results.values()),
        "inactive_customers_expired": sum(r["inactive_customers_expired"] for r in results.values()),
    }


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(OSError,),
    retry_backoff=True
)
def export_sales_register(self, from_date: Optional[str] = None, to_date: Optional[str] = None) -> dict:
    """
    Export each restaurant's sales register to Excel.

    Args:
        from_date / to_date: ISO dates; both default to today

    Returns:
        dict: Export result per restaurant id
    """
    start = date.fromisoformat(from_date) if from_date else date.today()
    end = date.fromisoformat(to_date) if to_date else start
    results = _run(_sales_register_job(start, end))

    failed = [rid for rid, r in results.items() if not r["success"]]
    if failed:
        logger.warning(f"⚠️ Task {self.request.id}: register export failed for restaurants {failed}")
    return {"exported": len(results) - len(failed), "failed": failed,
            "results": {str(k): v for k, v in results.items()}}


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now().isoformat()
    }
