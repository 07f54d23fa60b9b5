"""
Table Session Service

Tracks a guest visit from QR scan to vacating:

    CREATED → SEATED → ORDERING → DINING → BILL_REQUESTED → PAYING → COMPLETED

Phases only move forward. The stored ``phase`` is kept in step with the
timestamps and ``determine_session_phase`` can always rebuild it from them.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ValidationError, NotFoundError
from app.models import (
    AlertType,
    Bill,
    Order,
    OrderItem,
    OrderStatus,
    OtpReason,
    RestaurantTable,
    SessionPhase,
    SessionStatus,
    TableSession,
    TableStatus,
)
from app.services.tables import TableService, AlertService
from app.utils.durations import (
    minutes_between,
    get_duration_info,
    needs_otp_help,
    needs_order_help,
    long_stay_level,
)

logger = logging.getLogger(__name__)

PHASE_ORDER = [
    SessionPhase.CREATED,
    SessionPhase.SEATED,
    SessionPhase.ORDERING,
    SessionPhase.DINING,
    SessionPhase.BILL_REQUESTED,
    SessionPhase.PAYING,
    SessionPhase.COMPLETED,
]

LONG_STAY_PRIORITY = {"warning": "high", "critical": "critical"}


def determine_session_phase(session: TableSession) -> SessionPhase:
    """Derive the phase from the latest timestamp that is set."""
    if session.vacated_at:
        return SessionPhase.COMPLETED
    if session.payment_started_at:
        return SessionPhase.PAYING
    if session.bill_requested_at:
        return SessionPhase.BILL_REQUESTED
    if session.first_food_served_at:
        return SessionPhase.DINING
    if session.first_order_at:
        return SessionPhase.ORDERING
    if session.seated_at:
        return SessionPhase.SEATED
    return SessionPhase.CREATED


def advance_phase(session: TableSession, phase: SessionPhase) -> None:
    """Move the session forward to ``phase``; never backwards."""
    if PHASE_ORDER.index(phase) > PHASE_ORDER.index(session.phase):
        session.phase = phase


async def get_table_by_qr(db: AsyncSession, qr_code: str) -> RestaurantTable:
    result = await db.execute(
        select(RestaurantTable).where(RestaurantTable.qr_code == qr_code)
    )
    table = result.scalar_one_or_none()
    if not table:
        raise NotFoundError("Invalid QR code")
    return table


class SessionService:
    """Session lifecycle for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant_id: int):
        self.db = db
        self.restaurant_id = restaurant_id
        self.tables = TableService(db, restaurant_id)
        self.alerts = AlertService(db, restaurant_id)

    async def get(self, session_id: int) -> TableSession:
        result = await self.db.execute(
            select(TableSession).where(
                TableSession.id == session_id,
                TableSession.restaurant_id == self.restaurant_id,
            )
        )
        session = result.scalar_one_or_none()
        if not session:
            raise NotFoundError("Session not found")
        return session

    async def get_active_for_table(self, table_id: int) -> Optional[TableSession]:
        result = await self.db.execute(
            select(TableSession)
            .where(
                TableSession.table_id == table_id,
                TableSession.status == SessionStatus.ACTIVE,
            )
            .order_by(TableSession.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_active(self) -> list[TableSession]:
        result = await self.db.execute(
            select(TableSession).where(
                TableSession.restaurant_id == self.restaurant_id,
                TableSession.status == SessionStatus.ACTIVE,
            )
        )
        return list(result.scalars().all())

    async def require_active(self, session_id: int) -> TableSession:
        session = await self.get(session_id)
        if session.status != SessionStatus.ACTIVE:
            raise ValidationError("Session is not active")
        return session

    # =========================================================================
    # SEATING
    # =========================================================================

    async def scan_qr(self, table: RestaurantTable) -> TableSession:
        """Open (or return) the table's active session when a guest scans."""
        session = await self.get_active_for_table(table.id)
        if session is None:
            session = TableSession(
                restaurant_id=self.restaurant_id,
                table_id=table.id,
                status=SessionStatus.ACTIVE,
                phase=SessionPhase.CREATED,
                qr_scanned_at=datetime.now(),
                guest_count_history=[],
            )
            self.db.add(session)
            await self.db.flush()
            logger.info(f"📱 QR scanned at table {table.table_number}, session #{session.id} created")
        return session

    async def verify_otp(
        self,
        table_id: int,
        otp: str,
        guest_count: Optional[int] = None,
    ) -> TableSession:
        table = await self.tables.get(table_id)
        if not table.current_otp or table.current_otp != otp.strip():
            raise ValidationError("Invalid OTP. Please ask your waiter for the correct code.")

        now = datetime.now()
        session = await self.get_active_for_table(table.id)
        if session is None:
            session = TableSession(
                restaurant_id=self.restaurant_id,
                table_id=table.id,
                status=SessionStatus.ACTIVE,
                phase=SessionPhase.CREATED,
                qr_scanned_at=now,
                guest_count_history=[],
            )
            self.db.add(session)
            await self.db.flush()

        if session.seated_at is None:
            session.seated_at = now
            session.waiter_notified_at = now
        advance_phase(session, SessionPhase.SEATED)

        if guest_count is not None:
            self._set_guest_count(session, guest_count, "Guest")

        await self.tables.set_status(table, TableStatus.OCCUPIED)
        await self.tables.record_otp_used(table)
        await self.alerts.resolve(session.id, [AlertType.OTP_HELP])

        logger.info(f"✅ OTP verified at table {table.table_number}, session #{session.id} seated")
        return session

    def _set_guest_count(self, session: TableSession, count: int, changed_by: str) -> None:
        if count < 1:
            raise ValidationError("Guest count must be at least 1")
        session.guest_count = count
        session.guest_count_history = list(session.guest_count_history or []) + [{
            "count": count,
            "changed_at": datetime.now().isoformat(),
            "changed_by": changed_by,
        }]

    async def update_guest_count(self, session_id: int, count: int, changed_by: str = "Staff") -> TableSession:
        session = await self.require_active(session_id)
        self._set_guest_count(session, count, changed_by)
        await self.db.flush()
        return session

    # =========================================================================
    # REQUESTS FROM THE TABLE
    # =========================================================================

    async def request_bill(self, session_id: int) -> TableSession:
        session = await self.require_active(session_id)
        if session.bill_requested_at is None:
            session.bill_requested_at = datetime.now()
        advance_phase(session, SessionPhase.BILL_REQUESTED)

        table = await self.tables.get(session.table_id)
        await self.tables.set_status(table, TableStatus.BILL_REQUESTED)
        logger.info(f"🧾 Bill requested at table {table.table_number}")
        return session

    async def request_assistance(self, session_id: int, reason: Optional[str] = None) -> TableSession:
        session = await self.require_active(session_id)
        table = await self.tables.get(session.table_id)
        await self.tables.set_status(table, TableStatus.NEEDS_ATTENTION)
        await self.alerts.raise_alert(
            AlertType.ASSISTANCE,
            f"Table {table.table_number} needs assistance" + (f": {reason}" if reason else ""),
            priority="high",
            session_id=session.id,
            table_id=table.id,
        )
        return session

    async def mark_payment_started(self, session_id: int) -> None:
        session = await self.get(session_id)
        if session.payment_started_at is None:
            session.payment_started_at = datetime.now()
        advance_phase(session, SessionPhase.PAYING)
        await self.db.flush()

    # =========================================================================
    # END OF VISIT
    # =========================================================================

    async def end_session(self, session_id: int, ended_by: str = "Staff") -> TableSession:
        """
        Close an active session: rotate the OTP, start cleaning, clear alerts.
        """
        session = await self.require_active(session_id)
        now = datetime.now()

        session.status = SessionStatus.COMPLETED
        session.phase = SessionPhase.COMPLETED
        session.vacated_at = now
        if session.payment_completed_at is None:
            session.payment_completed_at = now

        table = await self.tables.get(session.table_id)
        await self.tables.regenerate_otp(table, OtpReason.CHANGED_AFTER_PAYMENT, ended_by)
        await self.tables.start_cleaning(table, session.id)
        await self.alerts.resolve(session.id)

        logger.info(
            f"🏁 Session #{session.id} ended at table {table.table_number} "
            f"after {minutes_between(session.seated_at or session.qr_scanned_at, now)} min"
        )
        return session

    # =========================================================================
    # REPORTING
    # =========================================================================

    async def _orders(self, session_id: int) -> list[Order]:
        result = await self.db.execute(
            select(Order).where(Order.session_id == session_id).order_by(Order.placed_at)
        )
        return list(result.scalars().all())

    async def _items(self, order_ids: list[int]) -> list[OrderItem]:
        if not order_ids:
            return []
        result = await self.db.execute(
            select(OrderItem).where(OrderItem.order_id.in_(order_ids))
        )
        return list(result.scalars().all())

    async def _bill(self, session_id: int) -> Optional[Bill]:
        result = await self.db.execute(
            select(Bill).where(Bill.session_id == session_id).order_by(Bill.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def timeline(self, session_id: int) -> list[dict]:
        session = await self.get(session_id)
        events: list[dict] = []

        def add(at: Optional[datetime], event: str, details: Optional[str] = None) -> None:
            if at is not None:
                events.append({"at": at, "event": event, "details": details})

        add(session.qr_scanned_at, "QR_SCANNED")
        add(session.seated_at, "SEATED", f"{session.guest_count or '?'} guests")
        add(session.bill_requested_at, "BILL_REQUESTED")
        add(session.payment_started_at, "PAYMENT_STARTED")
        add(session.payment_completed_at, "PAYMENT_COMPLETED")
        add(session.vacated_at, "VACATED")

        orders = await self._orders(session.id)
        for order in orders:
            add(order.placed_at, "ORDER_PLACED", order.order_number)
            add(order.confirmed_at, "ORDER_CONFIRMED", order.order_number)
            add(order.cancelled_at, "ORDER_CANCELLED", order.order_number)

        for item in await self._items([o.id for o in orders]):
            add(item.served_at, "ITEM_SERVED", f"{item.quantity} x {item.name}")

        bill = await self._bill(session.id)
        if bill:
            add(bill.created_at, "BILL_CREATED", bill.bill_number)
            add(bill.paid_at, "BILL_PAID", bill.bill_number)

        events.sort(key=lambda e: e["at"])
        return [{**e, "at": e["at"].isoformat()} for e in events]

    async def summary(self, session_id: int) -> dict:
        session = await self.get(session_id)
        end = session.vacated_at or datetime.now()
        start = session.qr_scanned_at or session.seated_at

        def gap(a: Optional[datetime], b: Optional[datetime]) -> Optional[int]:
            return minutes_between(a, b) if a and b else None

        orders = await self._orders(session.id)
        items = await self._items([o.id for o in orders if o.status != OrderStatus.CANCELLED])
        bill = await self._bill(session.id)
        total_minutes = minutes_between(start, end)

        return {
            "session_id": session.id,
            "table_id": session.table_id,
            "status": session.status.value,
            "phase": session.phase.value,
            "guest_count": session.guest_count,
            "durations": {
                "seat_wait_minutes": gap(session.qr_scanned_at, session.seated_at),
                "time_to_first_order_minutes": gap(session.seated_at, session.first_order_at),
                "time_to_first_food_minutes": gap(session.first_order_at, session.first_food_served_at),
                "dining_minutes": gap(session.first_food_served_at, session.bill_requested_at or session.vacated_at),
                "total_minutes": total_minutes,
            },
            "duration_color": get_duration_info(total_minutes).color,
            "order_count": len([o for o in orders if o.status != OrderStatus.CANCELLED]),
            "item_count": sum(i.quantity for i in items),
            "bill_total": bill.total_amount if bill else None,
        }

    # =========================================================================
    # TIMERS
    # =========================================================================

    async def scan_alerts(self, now: Optional[datetime] = None) -> list[dict]:
        """
        Raise OTP help, order help and long-stay alerts for active sessions.

        An alert of the same type (and level) that is still open is not raised again.
        """
        settings = get_settings()
        now = now or datetime.now()
        raised = []

        for session in await self.list_active():
            table = await self.tables.get(session.table_id)

            if needs_otp_help(session.qr_scanned_at, session.seated_at is not None,
                              settings.otp_help_minutes, now):
                if not await self.alerts.has_open(session.id, AlertType.OTP_HELP):
                    await self.alerts.raise_alert(
                        AlertType.OTP_HELP,
                        f"Table {table.table_number} scanned the QR but has not entered the OTP",
                        priority="medium", session_id=session.id, table_id=table.id,
                    )
                    raised.append({"session_id": session.id, "type": AlertType.OTP_HELP.value})

            if needs_order_help(session.seated_at, session.first_order_at,
                                settings.order_help_minutes, now):
                if not await self.alerts.has_open(session.id, AlertType.ORDER_HELP):
                    await self.alerts.raise_alert(
                        AlertType.ORDER_HELP,
                        f"Table {table.table_number} is seated but has not ordered yet",
                        priority="medium", session_id=session.id, table_id=table.id,
                    )
                    raised.append({"session_id": session.id, "type": AlertType.ORDER_HELP.value})

            level = long_stay_level(session.seated_at, now)
            if level != "none":
                priority = LONG_STAY_PRIORITY[level]
                if not await self.alerts.has_open(session.id, AlertType.LONG_STAY, priority):
                    minutes = minutes_between(session.seated_at, now)
                    await self.alerts.raise_alert(
                        AlertType.LONG_STAY,
                        f"Table {table.table_number} has been seated for {minutes} minutes",
                        priority=priority, session_id=session.id, table_id=table.id,
                    )
                    raised.append({"session_id": session.id, "type": AlertType.LONG_STAY.value,
                                   "priority": priority})

        return raised
