"""
Table Service

Tables, their 3-digit seating OTPs, cleaning turnaround and the staff
alert feed.

OTP rules:
    - Always 3 digits (100-999) and never equal to the previous code
    - Every change is written to ``otp_history`` with its reason
    - Rotated after payment so the next party cannot reuse it
"""

import logging
import secrets
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError, NotFoundError, ConflictError
from app.models import (
    AlertType,
    CleaningLog,
    OtpHistory,
    OtpReason,
    RestaurantTable,
    SessionAlert,
    TableStatus,
)
from app.utils.durations import minutes_between, get_duration_info

logger = logging.getLogger(__name__)


def generate_otp(previous: Optional[str] = None) -> str:
    """Random 3-digit OTP that differs from ``previous``."""
    while True:
        otp = str(secrets.randbelow(900) + 100)
        if otp != previous:
            return otp


class TableService:
    """Tables, OTPs and cleaning for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant_id: int):
        self.db = db
        self.restaurant_id = restaurant_id

    # =========================================================================
    # TABLES
    # =========================================================================

    async def get(self, table_id: int) -> RestaurantTable:
        result = await self.db.execute(
            select(RestaurantTable).where(
                RestaurantTable.id == table_id,
                RestaurantTable.restaurant_id == self.restaurant_id,
            )
        )
        table = result.scalar_one_or_none()
        if not table:
            raise NotFoundError("Table not found")
        return table

    async def list_tables(self) -> list[RestaurantTable]:
        result = await self.db.execute(
            select(RestaurantTable)
            .where(RestaurantTable.restaurant_id == self.restaurant_id)
            .order_by(RestaurantTable.id)
        )
        return list(result.scalars().all())

    async def create(self, table_number: str, capacity: int = 4, changed_by: str = "Staff") -> RestaurantTable:
        result = await self.db.execute(
            select(RestaurantTable).where(
                RestaurantTable.restaurant_id == self.restaurant_id,
                RestaurantTable.table_number == table_number,
            )
        )
        if result.scalar_one_or_none():
            raise ConflictError(f"Table {table_number} already exists")

        table = RestaurantTable(
            restaurant_id=self.restaurant_id,
            table_number=table_number,
            capacity=capacity,
            qr_code=secrets.token_urlsafe(12),
            status=TableStatus.AVAILABLE,
        )
        self.db.add(table)
        await self.db.flush()

        await self.regenerate_otp(table, OtpReason.INITIAL, changed_by)
        logger.info(f"🪑 Table {table_number} created (restaurant {self.restaurant_id})")
        return table

    async def set_status(self, table: RestaurantTable, status: TableStatus) -> None:
        if table.status != status:
            logger.debug(f"Table {table.table_number}: {table.status.value} → {status.value}")
        table.status = status
        await self.db.flush()

    # =========================================================================
    # OTP
    # =========================================================================

    async def regenerate_otp(
        self,
        table: RestaurantTable,
        reason: OtpReason = OtpReason.MANUAL_REGENERATION,
        changed_by: str = "Staff",
    ) -> str:
        otp = generate_otp(table.current_otp)
        table.current_otp = otp
        table.otp_generated_at = datetime.now()
        self.db.add(OtpHistory(
            restaurant_id=self.restaurant_id,
            table_id=table.id,
            otp=otp,
            reason=reason,
            changed_by=changed_by,
        ))
        await self.db.flush()
        logger.info(f"🔑 OTP rotated for table {table.table_number} ({reason.value})")
        return otp

    async def record_otp_used(self, table: RestaurantTable) -> None:
        self.db.add(OtpHistory(
            restaurant_id=self.restaurant_id,
            table_id=table.id,
            otp=table.current_otp,
            reason=OtpReason.USED,
            changed_by="Guest",
        ))
        await self.db.flush()

    async def otp_history(self, table_id: int) -> list[OtpHistory]:
        await self.get(table_id)
        result = await self.db.execute(
            select(OtpHistory)
            .where(OtpHistory.table_id == table_id)
            .order_by(OtpHistory.id.desc())
        )
        return list(result.scalars().all())

    # =========================================================================
    # CLEANING
    # =========================================================================

    async def start_cleaning(
        self,
        table: RestaurantTable,
        session_id: Optional[int] = None,
    ) -> CleaningLog:
        log = CleaningLog(
            restaurant_id=self.restaurant_id,
            table_id=table.id,
            session_id=session_id,
            started_at=datetime.now(),
        )
        self.db.add(log)
        await self.set_status(table, TableStatus.CLEANING)
        return log

    async def _open_cleaning_log(self, table_id: int) -> Optional[CleaningLog]:
        result = await self.db.execute(
            select(CleaningLog)
            .where(
                CleaningLog.table_id == table_id,
                CleaningLog.completed_at.is_(None),
            )
            .order_by(CleaningLog.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def mark_cleaned(self, table_id: int, cleaned_by: str = "Staff") -> dict:
        """
        Close the open cleaning log and free the table.

        A table with no open log is simply set AVAILABLE.
        """
        table = await self.get(table_id)
        log = await self._open_cleaning_log(table.id)

        duration = None
        if log:
            log.completed_at = datetime.now()
            log.duration_minutes = minutes_between(log.started_at, log.completed_at)
            log.cleaned_by = cleaned_by
            duration = log.duration_minutes

        await self.set_status(table, TableStatus.AVAILABLE)
        logger.info(f"🧹 Table {table.table_number} cleaned by {cleaned_by}")
        return {
            "table_id": table.id,
            "status": table.status.value,
            "duration_minutes": duration,
        }

    async def cleaning_queue(self) -> list[dict]:
        result = await self.db.execute(
            select(RestaurantTable).where(
                RestaurantTable.restaurant_id == self.restaurant_id,
                RestaurantTable.status == TableStatus.CLEANING,
            )
        )
        now = datetime.now()
        queue = []
        for table in result.scalars().all():
            log = await self._open_cleaning_log(table.id)
            waiting = minutes_between(log.started_at, now) if log else 0
            queue.append({
                "table_id": table.id,
                "table_number": table.table_number,
                "waiting_minutes": waiting,
                "color": get_duration_info(waiting).color,
            })
        return sorted(queue, key=lambda q: q["waiting_minutes"], reverse=True)


class AlertService:
    """Staff-facing alerts raised by session timers, the kitchen and guests."""

    def __init__(self, db: AsyncSession, restaurant_id: int):
        self.db = db
        self.restaurant_id = restaurant_id

    async def has_open(self, session_id: int, alert_type: AlertType, priority: Optional[str] = None) -> bool:
        query = select(SessionAlert.id).where(
            SessionAlert.session_id == session_id,
            SessionAlert.alert_type == alert_type,
            SessionAlert.is_resolved.is_(False),
        )
        if priority:
            query = query.where(SessionAlert.priority == priority)
        result = await self.db.execute(query.limit(1))
        return result.scalar_one_or_none() is not None

    async def raise_alert(
        self,
        alert_type: AlertType,
        message: str,
        priority: str = "medium",
        session_id: Optional[int] = None,
        table_id: Optional[int] = None,
    ) -> SessionAlert:
        alert = SessionAlert(
            restaurant_id=self.restaurant_id,
            session_id=session_id,
            table_id=table_id,
            alert_type=alert_type,
            priority=priority,
            message=message,
        )
        self.db.add(alert)
        await self.db.flush()
        logger.warning(f"🔔 {alert_type.value} [{priority}] {message}")
        return alert

    async def resolve(self, session_id: int, alert_types: Optional[list[AlertType]] = None) -> int:
        query = select(SessionAlert).where(
            SessionAlert.session_id == session_id,
            SessionAlert.is_resolved.is_(False),
        )
        if alert_types:
            query = query.where(SessionAlert.alert_type.in_(alert_types))
        alerts = (await self.db.execute(query)).scalars().all()

        now = datetime.now()
        for alert in alerts:
            alert.is_resolved = True
            alert.resolved_at = now
        await self.db.flush()
        return len(alerts)

    async def resolve_one(self, alert_id: int) -> SessionAlert:
        result = await self.db.execute(
            select(SessionAlert).where(
                SessionAlert.id == alert_id,
                SessionAlert.restaurant_id == self.restaurant_id,
            )
        )
        alert = result.scalar_one_or_none()
        if not alert:
            raise NotFoundError("Alert not found")
        if alert.is_resolved:
            raise ValidationError("Alert is already resolved")
        alert.is_resolved = True
        alert.resolved_at = datetime.now()
        await self.db.flush()
        return alert

    async def list_open(self) -> list[SessionAlert]:
        result = await self.db.execute(
            select(SessionAlert)
            .where(
                SessionAlert.restaurant_id == self.restaurant_id,
                SessionAlert.is_resolved.is_(False),
            )
            .order_by(SessionAlert.id.desc())
        )
        return list(result.scalars().all())
