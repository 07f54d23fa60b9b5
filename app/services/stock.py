"""
Stock Service

Inventory movements with weighted-average costing, godown balances and
automatic consumption of ingredients when dishes are served.

Inward movement types raise ``current_stock`` and re-average the cost:

    new_avg = (stock * avg + qty * rate) / (stock + qty)

Outward movements are valued at the current average cost.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError, NotFoundError, ConflictError
from app.models import (
    Godown,
    GodownStock,
    MenuItem,
    MenuItemStockMapping,
    MovementType,
    OrderItem,
    StockItem,
    StockMovement,
)
from app.utils.nepal_date import gregorian_fiscal_year

logger = logging.getLogger(__name__)

INWARD_TYPES = {
    MovementType.PURCHASE_IN,
    MovementType.TRANSFER_IN,
    MovementType.ADJUSTMENT_IN,
    MovementType.RETURN_IN,
}

ORDER_ITEM_REFERENCE = "order_item"
CANCELLATION_REFERENCE = "order_cancellation"


def weighted_average_cost(current_stock: float, current_cost: float, quantity: float, rate: float) -> float:
    if current_stock <= 0:
        return rate
    total_quantity = current_stock + quantity
    if total_quantity <= 0:
        return rate
    return (current_stock * current_cost + quantity * rate) / total_quantity


class StockService:
    """Stock items, godowns and movements for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant_id: int):
        self.db = db
        self.restaurant_id = restaurant_id

    # =========================================================================
    # MASTER DATA
    # =========================================================================

    async def get_item(self, stock_item_id: int) -> StockItem:
        result = await self.db.execute(
            select(StockItem).where(
                StockItem.id == stock_item_id,
                StockItem.restaurant_id == self.restaurant_id,
            )
        )
        item = result.scalar_one_or_none()
        if not item:
            raise NotFoundError("Stock item not found")
        return item

    async def create_item(
        self,
        item_code: str,
        name: str,
        unit: str = "pcs",
        reorder_level: float = 0.0,
    ) -> StockItem:
        existing = await self.db.execute(
            select(StockItem.id).where(
                StockItem.restaurant_id == self.restaurant_id,
                StockItem.item_code == item_code,
            )
        )
        if existing.scalar_one_or_none():
            raise ConflictError("Stock item code already exists")

        item = StockItem(
            restaurant_id=self.restaurant_id,
            item_code=item_code,
            name=name,
            unit=unit,
            reorder_level=reorder_level,
        )
        self.db.add(item)
        await self.db.flush()
        return item

    async def list_items(self) -> list[StockItem]:
        result = await self.db.execute(
            select(StockItem)
            .where(StockItem.restaurant_id == self.restaurant_id)
            .order_by(StockItem.item_code)
        )
        return list(result.scalars().all())

    async def low_stock(self) -> list[StockItem]:
        result = await self.db.execute(
            select(StockItem).where(
                StockItem.restaurant_id == self.restaurant_id,
                StockItem.is_active.is_(True),
                StockItem.current_stock <= StockItem.reorder_level,
            )
        )
        return list(result.scalars().all())

    async def create_godown(self, name: str, is_default: bool = False) -> Godown:
        if is_default:
            for godown in await self.list_godowns():
                godown.is_default = False
        godown = Godown(restaurant_id=self.restaurant_id, name=name, is_default=is_default)
        self.db.add(godown)
        await self.db.flush()
        return godown

    async def list_godowns(self) -> list[Godown]:
        result = await self.db.execute(
            select(Godown).where(Godown.restaurant_id == self.restaurant_id)
        )
        return list(result.scalars().all())

    async def get_godown(self, godown_id: int) -> Godown:
        result = await self.db.execute(
            select(Godown).where(
                Godown.id == godown_id,
                Godown.restaurant_id == self.restaurant_id,
            )
        )
        godown = result.scalar_one_or_none()
        if not godown:
            raise NotFoundError("Godown not found")
        return godown

    async def get_default_godown(self) -> Optional[Godown]:
        result = await self.db.execute(
            select(Godown).where(
                Godown.restaurant_id == self.restaurant_id,
                Godown.is_default.is_(True),
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def godown_quantity(self, godown_id: int, stock_item_id: int) -> float:
        row = await self._godown_stock(godown_id, stock_item_id)
        return row.quantity if row else 0.0

    async def _godown_stock(self, godown_id: int, stock_item_id: int) -> Optional[GodownStock]:
        result = await self.db.execute(
            select(GodownStock).where(
                GodownStock.godown_id == godown_id,
                GodownStock.stock_item_id == stock_item_id,
            )
        )
        return result.scalar_one_or_none()

    async def _adjust_godown(self, godown_id: int, stock_item_id: int, delta: float, rate: float) -> None:
        row = await self._godown_stock(godown_id, stock_item_id)
        if row is None:
            row = GodownStock(godown_id=godown_id, stock_item_id=stock_item_id, quantity=0.0, average_cost=rate)
            self.db.add(row)
        row.quantity = round(max(0.0, row.quantity + delta), 4)

    async def set_mapping(self, menu_item_id: int, stock_item_id: int, quantity_per_serving: float) -> MenuItemStockMapping:
        if quantity_per_serving <= 0:
            raise ValidationError("Quantity per serving must be positive")
        menu_item = await self.db.get(MenuItem, menu_item_id)
        if not menu_item or menu_item.restaurant_id != self.restaurant_id:
            raise NotFoundError("Menu item not found")
        await self.get_item(stock_item_id)

        result = await self.db.execute(
            select(MenuItemStockMapping).where(
                MenuItemStockMapping.menu_item_id == menu_item_id,
                MenuItemStockMapping.stock_item_id == stock_item_id,
            )
        )
        mapping = result.scalar_one_or_none()
        if mapping is None:
            mapping = MenuItemStockMapping(
                restaurant_id=self.restaurant_id,
                menu_item_id=menu_item_id,
                stock_item_id=stock_item_id,
            )
            self.db.add(mapping)
        mapping.quantity_per_serving = quantity_per_serving
        await self.db.flush()
        return mapping

    # =========================================================================
    # MOVEMENTS
    # =========================================================================

    async def generate_movement_number(self) -> str:
        stem = f"SM-{gregorian_fiscal_year()}-"
        result = await self.db.execute(
            select(StockMovement.movement_number)
            .where(
                StockMovement.restaurant_id == self.restaurant_id,
                StockMovement.movement_number.like(f"{stem}%"),
            )
            .order_by(StockMovement.id.desc())
            .limit(1)
        )
        last = result.scalar_one_or_none()
        sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
        return f"{stem}{sequence:06d}"

    async def _write_movement(
        self,
        item: StockItem,
        movement_type: MovementType,
        quantity: float,
        rate: float,
        new_balance: float,
        from_godown_id: Optional[int] = None,
        to_godown_id: Optional[int] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: str = "System",
    ) -> StockMovement:
        movement = StockMovement(
            restaurant_id=self.restaurant_id,
            stock_item_id=item.id,
            movement_number=await self.generate_movement_number(),
            movement_type=movement_type,
            movement_date=datetime.now(),
            from_godown_id=from_godown_id,
            to_godown_id=to_godown_id,
            quantity=quantity,
            unit=item.unit,
            rate=round(rate, 4),
            total_amount=round(quantity * rate, 2),
            balance_after=round(new_balance, 4),
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
            created_by=created_by,
        )
        self.db.add(movement)
        # Flush so the next generated number sees this one
        await self.db.flush()
        return movement

    async def create_movement(
        self,
        stock_item_id: int,
        movement_type: MovementType,
        quantity: float,
        rate: float = 0.0,
        from_godown_id: Optional[int] = None,
        to_godown_id: Optional[int] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: str = "Staff",
    ) -> StockMovement:
        """
        Record a stock movement and update item and godown balances.

        Raises:
            ValidationError: Non-positive quantity, or outward movement beyond stock
        """
        if quantity <= 0:
            raise ValidationError("Quantity must be positive")

        item = await self.get_item(stock_item_id)
        inward = movement_type in INWARD_TYPES
        current = item.current_stock
        new_balance = current + quantity if inward else current - quantity

        if new_balance < 0:
            raise ValidationError(
                f"Insufficient stock. Available: {current:g}, Required: {quantity:g}"
            )

        if inward:
            effective_rate = rate
            item.average_cost = round(
                weighted_average_cost(current, item.average_cost, quantity, rate), 4
            )
            if movement_type == MovementType.PURCHASE_IN:
                item.last_purchase_rate = rate
        else:
            effective_rate = item.average_cost

        item.current_stock = round(new_balance, 4)

        if inward and to_godown_id:
            await self._adjust_godown(to_godown_id, item.id, quantity, effective_rate)
        if not inward and from_godown_id:
            await self._adjust_godown(from_godown_id, item.id, -quantity, effective_rate)

        movement = await self._write_movement(
            item, movement_type, quantity, effective_rate, new_balance,
            from_godown_id=from_godown_id, to_godown_id=to_godown_id,
            reference_type=reference_type, reference_id=reference_id,
            notes=notes, created_by=created_by,
        )
        logger.info(
            f"📦 {movement.movement_number} {movement_type.value} "
            f"{quantity:g} {item.unit} {item.name} → balance {item.current_stock:g}"
        )
        return movement

    async def transfer(
        self,
        stock_item_id: int,
        from_godown_id: int,
        to_godown_id: int,
        quantity: float,
        notes: Optional[str] = None,
        created_by: str = "Staff",
    ) -> tuple[StockMovement, StockMovement]:
        if from_godown_id == to_godown_id:
            raise ValidationError("Source and destination godowns must differ")
        await self.get_godown(from_godown_id)
        await self.get_godown(to_godown_id)

        available = await self.godown_quantity(from_godown_id, stock_item_id)
        if available < quantity:
            raise ValidationError(
                f"Insufficient stock in source godown. Available: {available:g}, Required: {quantity:g}"
            )

        out = await self.create_movement(
            stock_item_id, MovementType.TRANSFER_OUT, quantity,
            from_godown_id=from_godown_id, to_godown_id=to_godown_id,
            reference_type="transfer", notes=notes, created_by=created_by,
        )
        inward = await self.create_movement(
            stock_item_id, MovementType.TRANSFER_IN, quantity, rate=out.rate,
            from_godown_id=from_godown_id, to_godown_id=to_godown_id,
            reference_type="transfer", reference_id=out.movement_number,
            notes=notes, created_by=created_by,
        )
        return out, inward

    async def list_movements(self, stock_item_id: Optional[int] = None) -> list[StockMovement]:
        query = select(StockMovement).where(StockMovement.restaurant_id == self.restaurant_id)
        if stock_item_id:
            query = query.where(StockMovement.stock_item_id == stock_item_id)
        result = await self.db.execute(query.order_by(StockMovement.id))
        return list(result.scalars().all())

    # =========================================================================
    # CONSUMPTION FROM SERVED ITEMS
    # =========================================================================

    async def deduct_for_order_item(self, order_item: OrderItem, created_by: str = "System") -> dict:
        """
        Consume the mapped ingredients of a served item from the default godown.

        Shortfalls never block service: they are reported in ``errors`` and
        the balance floors at zero.
        """
        result = {"success": True, "deductions": [], "errors": []}
        if order_item.menu_item_id is None:
            return result

        mappings = (await self.db.execute(
            select(MenuItemStockMapping).where(
                MenuItemStockMapping.menu_item_id == order_item.menu_item_id
            )
        )).scalars().all()
        if not mappings:
            return result

        godown = await self.get_default_godown()
        if godown is None:
            result["success"] = False
            result["errors"].append("No default godown configured")
            return result

        for mapping in mappings:
            item = await self.get_item(mapping.stock_item_id)
            quantity = round(mapping.quantity_per_serving * order_item.quantity, 4)

            if item.current_stock < quantity:
                result["errors"].append(
                    f"Insufficient stock for {item.name}: available {item.current_stock:g}, "
                    f"required {quantity:g}"
                )

            new_balance = max(0.0, item.current_stock - quantity)
            item.current_stock = round(new_balance, 4)
            await self._adjust_godown(godown.id, item.id, -quantity, item.average_cost)

            movement = await self._write_movement(
                item, MovementType.SALES_OUT, quantity, item.average_cost, new_balance,
                from_godown_id=godown.id,
                reference_type=ORDER_ITEM_REFERENCE,
                reference_id=str(order_item.id),
                notes=f"Served: {order_item.quantity} x {order_item.name}",
                created_by=created_by,
            )
            result["deductions"].append({
                "stock_item_id": item.id,
                "name": item.name,
                "quantity": quantity,
                "movement_number": movement.movement_number,
            })

        order_item.stock_deducted = True
        if result["errors"]:
            logger.warning(f"⚠️ Stock shortfall serving item #{order_item.id}: {result['errors']}")
        return result

    async def reverse_deduction(self, order_item: OrderItem, created_by: str = "System") -> dict:
        """Put back everything a served-then-cancelled item consumed."""
        movements = (await self.db.execute(
            select(StockMovement).where(
                StockMovement.restaurant_id == self.restaurant_id,
                StockMovement.movement_type == MovementType.SALES_OUT,
                StockMovement.reference_type == ORDER_ITEM_REFERENCE,
                StockMovement.reference_id == str(order_item.id),
            )
        )).scalars().all()

        reversed_items = []
        for movement in movements:
            reversal = await self.create_movement(
                movement.stock_item_id,
                MovementType.ADJUSTMENT_IN,
                movement.quantity,
                rate=movement.rate,
                to_godown_id=movement.from_godown_id,
                reference_type=CANCELLATION_REFERENCE,
                reference_id=str(order_item.id),
                notes=f"Reversal of {movement.movement_number}",
                created_by=created_by,
            )
            reversed_items.append(reversal.movement_number)

        order_item.stock_deducted = False
        return {"success": True, "reversed": reversed_items}
