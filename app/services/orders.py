"""
Order Service

Guest (QR) and staff orders, confirmation, the kitchen/bar item workflow
and the kitchen display queue.

Order status workflow:
    PENDING_CONFIRMATION -> CONFIRMED -> PREPARING -> READY -> SERVED -> COMPLETED
    PENDING              -> PREPARING -> ...
    any active status    -> CANCELLED

Item status workflow:
    PENDING -> SENT_TO_KITCHEN -> PREPARING -> READY -> SERVED
                                                  any -> CANCELLED
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import POSError, ValidationError, NotFoundError
from app.models import (
    AlertType,
    MenuItem,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderSource,
    OrderStatus,
    Restaurant,
    SessionPhase,
    SessionStatus,
    TableSession,
    TableStatus,
)
from app.services.restaurants import requires_order_confirmation
from app.services.sessions import SessionService, advance_phase
from app.services.stock import StockService
from app.utils.durations import calculate_sla_breach, minutes_between, get_duration_info

logger = logging.getLogger(__name__)

ACTIVE_ORDER_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.PENDING_CONFIRMATION,
    OrderStatus.CONFIRMED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.SERVED,
)

ITEM_PATCH_STATUSES = (
    OrderItemStatus.SENT_TO_KITCHEN,
    OrderItemStatus.PREPARING,
    OrderItemStatus.READY,
    OrderItemStatus.SERVED,
    OrderItemStatus.CANCELLED,
)

KITCHEN_QUEUE_STATUSES = (
    OrderItemStatus.SENT_TO_KITCHEN,
    OrderItemStatus.PREPARING,
    OrderItemStatus.READY,
)

ORDER_TIMESTAMPS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.SERVED: "served_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


def is_bar_station(station: Optional[str]) -> bool:
    return bool(station) and "bar" in station.lower()


def derive_order_status(items: list[OrderItem]) -> Optional[OrderStatus]:
    """
    Order status implied by its items, or None when the items don't
    move the order.
    """
    statuses = [i.status for i in items]
    if not statuses:
        return None
    if all(s in (OrderItemStatus.SERVED, OrderItemStatus.CANCELLED) for s in statuses):
        if OrderItemStatus.SERVED in statuses:
            return OrderStatus.SERVED
        return None
    if OrderItemStatus.READY in statuses:
        return OrderStatus.READY
    if OrderItemStatus.PREPARING in statuses:
        return OrderStatus.PREPARING
    return None


class OrderService:
    """Orders and kitchen tickets for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant: Restaurant):
        self.db = db
        self.restaurant = restaurant
        self.restaurant_id = restaurant.id
        self.sessions = SessionService(db, restaurant.id)
        self.stock = StockService(db, restaurant.id)

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get(self, order_id: int) -> Order:
        result = await self.db.execute(
            select(Order).where(Order.id == order_id, Order.restaurant_id == self.restaurant_id)
        )
        order = result.scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def items(self, order_id: int) -> list[OrderItem]:
        result = await self.db.execute(
            select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
        )
        return list(result.scalars().all())

    async def get_item(self, item_id: int) -> tuple[Order, OrderItem]:
        result = await self.db.execute(
            select(OrderItem, Order)
            .join(Order, Order.id == OrderItem.order_id)
            .where(OrderItem.id == item_id, Order.restaurant_id == self.restaurant_id)
        )
        row = result.first()
        if not row:
            raise NotFoundError("Order item not found")
        item, order = row
        return order, item

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        session_id: Optional[int] = None,
    ) -> list[Order]:
        query = select(Order).where(Order.restaurant_id == self.restaurant_id)
        if status:
            query = query.where(Order.status == status)
        if session_id:
            query = query.where(Order.session_id == session_id)
        result = await self.db.execute(query.order_by(Order.id.desc()))
        return list(result.scalars().all())

    # =========================================================================
    # PLACING ORDERS
    # =========================================================================

    async def _next_order_number(self) -> str:
        count = await self.db.scalar(
            select(func.count(Order.id)).where(Order.restaurant_id == self.restaurant_id)
        )
        return f"ORD-{(count or 0) + 1:05d}"

    async def _load_menu(self, lines: list[dict]) -> dict[int, MenuItem]:
        if not lines:
            raise ValidationError("Order must contain at least one item")
        ids = {line["menu_item_id"] for line in lines}
        result = await self.db.execute(
            select(MenuItem).where(
                MenuItem.id.in_(ids),
                MenuItem.restaurant_id == self.restaurant_id,
            )
        )
        menu = {m.id: m for m in result.scalars().all()}
        if len(menu) != len(ids) or not all(m.is_available for m in menu.values()):
            raise ValidationError("Some items are no longer available")
        return menu

    async def _create(
        self,
        lines: list[dict],
        table_id: Optional[int],
        session: Optional[TableSession],
        source: OrderSource,
        needs_confirmation: bool,
        notes: Optional[str],
        placed_by: str,
    ) -> Order:
        menu = await self._load_menu(lines)
        now = datetime.now()

        order = Order(
            restaurant_id=self.restaurant_id,
            table_id=table_id,
            session_id=session.id if session else None,
            order_number=await self._next_order_number(),
            source=source,
            status=OrderStatus.PENDING_CONFIRMATION if needs_confirmation else OrderStatus.PENDING,
            notes=notes,
            placed_by=placed_by,
            placed_at=now,
        )
        self.db.add(order)
        await self.db.flush()

        subtotal = 0.0
        for line in lines:
            quantity = int(line.get("quantity", 1))
            if quantity < 1:
                raise ValidationError("Quantity must be at least 1")
            menu_item = menu[line["menu_item_id"]]
            total = round(menu_item.price * quantity, 2)
            subtotal += total
            self.db.add(OrderItem(
                order_id=order.id,
                menu_item_id=menu_item.id,
                name=menu_item.name,
                quantity=quantity,
                unit_price=menu_item.price,
                total_price=total,
                notes=line.get("notes"),
                status=OrderItemStatus.PENDING if needs_confirmation else OrderItemStatus.SENT_TO_KITCHEN,
                sent_to_kitchen_at=None if needs_confirmation else now,
                is_bar_item=is_bar_station(menu_item.station),
                expected_prep_time=menu_item.expected_prep_time,
            ))
        order.subtotal = round(subtotal, 2)

        if session is not None:
            if session.first_order_at is None:
                session.first_order_at = now
            session.last_order_at = now
            advance_phase(session, SessionPhase.ORDERING)
            await self.sessions.alerts.resolve(session.id, [AlertType.ORDER_HELP])

        await self.db.flush()
        logger.info(
            f"🍽️ Order {order.order_number} placed ({source.value}, {len(lines)} lines, "
            f"Rs. {order.subtotal:.2f}, {order.status.value})"
        )
        return order

    async def place_guest_order(self, session_id: int, lines: list[dict], notes: Optional[str] = None) -> Order:
        """
        Place an order from the guest's phone.

        Needs staff confirmation when the restaurant requires it or when the
        party size is still unknown.
        """
        session = await self.sessions.require_active(session_id)
        needs_confirmation = requires_order_confirmation(self.restaurant) or session.guest_count is None
        return await self._create(
            lines, session.table_id, session, OrderSource.QR, needs_confirmation, notes, "Guest"
        )

    async def place_staff_order(
        self,
        lines: list[dict],
        table_id: Optional[int] = None,
        notes: Optional[str] = None,
        placed_by: str = "Staff",
    ) -> Order:
        session = None
        if table_id is not None:
            table = await self.sessions.tables.get(table_id)
            session = await self.sessions.get_active_for_table(table.id)
            if table.status == TableStatus.AVAILABLE:
                await self.sessions.tables.set_status(table, TableStatus.OCCUPIED)
        return await self._create(lines, table_id, session, OrderSource.STAFF, False, notes, placed_by)

    # =========================================================================
    # CONFIRMATION
    # =========================================================================

    async def confirm(self, order_id: int, guest_count: int, confirmed_by: str = "Staff") -> Order:
        order = await self.get(order_id)
        if order.status != OrderStatus.PENDING_CONFIRMATION:
            raise ValidationError("Order is not awaiting confirmation")
        if guest_count < 1:
            raise ValidationError("Guest count must be at least 1")

        now = datetime.now()
        order.status = OrderStatus.CONFIRMED
        order.confirmed_at = now
        for item in await self.items(order.id):
            if item.status == OrderItemStatus.PENDING:
                item.status = OrderItemStatus.SENT_TO_KITCHEN
                item.sent_to_kitchen_at = now

        if order.session_id:
            session = await self.sessions.get(order.session_id)
            if session.status == SessionStatus.ACTIVE:
                await self.sessions.update_guest_count(session.id, guest_count, confirmed_by)

        await self.db.flush()
        logger.info(f"👍 Order {order.order_number} confirmed by {confirmed_by} ({guest_count} guests)")
        return order

    async def reject(self, order_id: int, reason: str, rejected_by: str = "Staff") -> Order:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required")
        order = await self.get(order_id)
        if order.status not in (OrderStatus.PENDING_CONFIRMATION, OrderStatus.PENDING):
            raise ValidationError("Only pending orders can be rejected")

        now = datetime.now()
        order.status = OrderStatus.CANCELLED
        order.cancelled_at = now
        order.rejection_reason = reason.strip()
        for item in await self.items(order.id):
            item.status = OrderItemStatus.CANCELLED
            item.cancelled_at = now

        await self.db.flush()
        logger.info(f"🚫 Order {order.order_number} rejected by {rejected_by}: {order.rejection_reason}")
        return order

    # =========================================================================
    # ORDER STATUS
    # =========================================================================

    async def _release_table(self, order: Order) -> None:
        """Free the table once nothing is in flight and no guests are seated."""
        if order.table_id is None:
            return
        others = await self.db.scalar(
            select(func.count(Order.id)).where(
                Order.table_id == order.table_id,
                Order.id != order.id,
                Order.status.in_(ACTIVE_ORDER_STATUSES),
            )
        )
        if others:
            return
        if await self.sessions.get_active_for_table(order.table_id):
            return
        table = await self.sessions.tables.get(order.table_id)
        if table.status != TableStatus.CLEANING:
            await self.sessions.tables.set_status(table, TableStatus.AVAILABLE)

    async def update_status(self, order_id: int, status: OrderStatus, updated_by: str = "Staff") -> Order:
        from app.services.billing import BillingService

        order = await self.get(order_id)
        if order.status == OrderStatus.CANCELLED:
            raise ValidationError("Order is cancelled")

        order.status = status
        field = ORDER_TIMESTAMPS.get(status)
        if field:
            setattr(order, field, datetime.now())

        if status == OrderStatus.COMPLETED:
            if order.bill_id is None:
                await BillingService(self.db, self.restaurant).create_bill(
                    order_id=order.id, created_by=updated_by
                )
            await self._release_table(order)
        elif status == OrderStatus.CANCELLED:
            for item in await self.items(order.id):
                if item.status != OrderItemStatus.CANCELLED:
                    await self._cancel_item(item, updated_by)
            await self._release_table(order)

        await self.db.flush()
        logger.info(f"📋 Order {order.order_number} → {status.value}")
        return order

    # =========================================================================
    # ITEM STATUS
    # =========================================================================

    async def _cancel_item(self, item: OrderItem, cancelled_by: str) -> None:
        if item.stock_deducted:
            await self.stock.reverse_deduction(item, cancelled_by)
        item.status = OrderItemStatus.CANCELLED
        item.cancelled_at = datetime.now()

    async def _serve_item(self, order: Order, item: OrderItem, served_by: str) -> None:
        now = datetime.now()
        item.status = OrderItemStatus.SERVED
        item.served_at = now

        if not item.stock_deducted:
            try:
                outcome = await self.stock.deduct_for_order_item(item, served_by)
                if not outcome["success"]:
                    logger.warning(f"⚠️ Stock not deducted for item #{item.id}: {outcome['errors']}")
            except POSError as e:
                logger.error(f"❌ Stock deduction failed for item #{item.id}: {e.message}")

        if order.session_id:
            session = await self.sessions.get(order.session_id)
            if session.first_food_served_at is None:
                session.first_food_served_at = now
            advance_phase(session, SessionPhase.DINING)

    async def _mark_ready(self, order: Order, item: OrderItem) -> None:
        item.ready_at = datetime.now()
        sla = calculate_sla_breach(
            item.expected_prep_time, item.sent_to_kitchen_at or item.preparing_at, item.ready_at
        )
        if not sla.is_breached:
            return

        item.sla_breached = True
        item.sla_breach_minutes = sla.breach_minutes
        priority = "high" if sla.breach_minutes > get_settings().sla_high_priority_minutes else "medium"
        await self.sessions.alerts.raise_alert(
            AlertType.SLA_BREACH,
            f"{item.name} for {order.order_number} took {sla.actual_minutes} min "
            f"({sla.breach_minutes} min over)",
            priority=priority,
            session_id=order.session_id,
            table_id=order.table_id,
        )

    async def update_item_status(self, item_id: int, status: OrderItemStatus, updated_by: str = "Staff") -> OrderItem:
        if status not in ITEM_PATCH_STATUSES:
            raise ValidationError(f"Invalid item status: {status.value}")

        order, item = await self.get_item(item_id)
        if item.status == OrderItemStatus.CANCELLED:
            raise ValidationError("Item is cancelled")

        if status == OrderItemStatus.SENT_TO_KITCHEN:
            item.status = status
            item.sent_to_kitchen_at = item.sent_to_kitchen_at or datetime.now()
        elif status == OrderItemStatus.PREPARING:
            item.status = status
            item.preparing_at = datetime.now()
        elif status == OrderItemStatus.READY:
            item.status = status
            await self._mark_ready(order, item)
        elif status == OrderItemStatus.SERVED:
            await self._serve_item(order, item, updated_by)
        else:
            await self._cancel_item(item, updated_by)

        await self._sync_order_status(order)
        await self.db.flush()
        return item

    async def _sync_order_status(self, order: Order) -> None:
        if order.status in (OrderStatus.COMPLETED, OrderStatus.CANCELLED):
            return
        derived = derive_order_status(await self.items(order.id))
        if derived and derived != order.status:
            order.status = derived
            setattr(order, ORDER_TIMESTAMPS[derived], datetime.now())

    async def serve_all_ready(self, order_id: int, served_by: str = "Staff") -> dict:
        order = await self.get(order_id)
        served = []
        for item in await self.items(order.id):
            if item.status == OrderItemStatus.READY:
                await self._serve_item(order, item, served_by)
                served.append(item.id)

        await self._sync_order_status(order)
        await self.db.flush()
        return {"order_id": order.id, "served_item_ids": served, "order_status": order.status.value}

    # =========================================================================
    # KITCHEN DISPLAY
    # =========================================================================

    async def kitchen_queue(self) -> dict:
        """Active items split into kitchen and bar tickets, oldest first."""
        result = await self.db.execute(
            select(OrderItem, Order)
            .join(Order, Order.id == OrderItem.order_id)
            .where(
                Order.restaurant_id == self.restaurant_id,
                OrderItem.status.in_(KITCHEN_QUEUE_STATUSES),
            )
            .order_by(OrderItem.sent_to_kitchen_at, OrderItem.id)
        )
        now = datetime.now()
        queue = {"kitchen": [], "bar": []}
        for item, order in result.all():
            elapsed = minutes_between(item.sent_to_kitchen_at, now)
            queue["bar" if item.is_bar_item else "kitchen"].append({
                "item_id": item.id,
                "order_id": order.id,
                "order_number": order.order_number,
                "table_id": order.table_id,
                "name": item.name,
                "quantity": item.quantity,
                "notes": item.notes,
                "status": item.status.value,
                "expected_prep_time": item.expected_prep_time,
                "elapsed_minutes": elapsed,
                "color": get_duration_info(elapsed).color,
            })
        return queue
