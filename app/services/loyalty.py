"""
Loyalty Service

Points earning and redemption, tiers, visit milestones, birthday bonus,
point expiry (per batch and for inactivity) and RFM (recency / frequency / monetary) segmentation.

Earning:
    points = floor(floor(amount / currency_per_point) * points_per_currency * tier_multiplier)

Redemption cap for a bill:
    0 if balance < min_redeem
    else min(balance, floor(bill * max_redeem_percent / 100 / point_value))
"""

import logging
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta, date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ValidationError, NotFoundError
from app.models import (
    Customer,
    LoyaltyTier,
    PointsTransaction,
    PointsTransactionType,
    Restaurant,
)

logger = logging.getLogger(__name__)

TIER_THRESHOLDS = {
    LoyaltyTier.BRONZE: 0,
    LoyaltyTier.SILVER: 500,
    LoyaltyTier.GOLD: 2000,
    LoyaltyTier.PLATINUM: 5000,
}

TIER_MULTIPLIERS = {
    LoyaltyTier.BRONZE: 1.0,
    LoyaltyTier.SILVER: 1.25,
    LoyaltyTier.GOLD: 1.5,
    LoyaltyTier.PLATINUM: 2.0,
}

DEFAULT_VISIT_MILESTONES = {5: 50, 10: 100, 25: 250, 50: 500, 100: 1000}

# Inactive customers this close to losing their points are reported as at risk
INACTIVITY_WARNING_DAYS = 30

RFM_SEGMENTS = {
    "CHAMPIONS": ("Champions", "Best customers who buy often and spend the most"),
    "LOYAL_CUSTOMERS": ("Loyal Customers", "Regular customers with high spend"),
    "POTENTIAL_LOYALISTS": ("Potential Loyalists", "Recent customers with good frequency"),
    "NEW_CUSTOMERS": ("New Customers", "Recently acquired customers"),
    "PROMISING": ("Promising", "Recent shoppers but haven't spent much"),
    "NEED_ATTENTION": ("Need Attention", "Average customers who may be slipping away"),
    "ABOUT_TO_SLEEP": ("About to Sleep", "Below average engagement, declining"),
    "AT_RISK": ("At Risk", "Used to be valuable but haven't visited recently"),
    "CANT_LOSE": ("Can't Lose", "High-value customers who haven't visited recently"),
    "HIBERNATING": ("Hibernating", "Very inactive, low engagement"),
    "LOST": ("Lost", "Haven't engaged in a very long time"),
}


@dataclass
class LoyaltySettings:
    enabled: bool = False
    points_per_currency: float = 1
    currency_per_point: float = 100
    point_value: float = 1
    min_redeem: int = 100
    max_redeem_percent: float = 50
    birthday_bonus: int = 100
    points_expiry_days: int = 365
    visit_milestones: dict[int, int] = field(default_factory=lambda: dict(DEFAULT_VISIT_MILESTONES))

    def to_dict(self) -> dict:
        data = asdict(self)
        data["visit_milestones"] = {str(k): v for k, v in self.visit_milestones.items()}
        return data


def get_loyalty_settings(restaurant: Restaurant) -> LoyaltySettings:
    """Defaults overlaid with the restaurant's stored loyalty settings."""
    stored = dict(restaurant.loyalty_settings or {})
    settings = LoyaltySettings(points_expiry_days=get_settings().loyalty_points_expiry_days)

    milestones = stored.pop("visit_milestones", None)
    for key, value in stored.items():
        if hasattr(settings, key):
            setattr(settings, key, value)
    if milestones:
        settings.visit_milestones = {int(k): int(v) for k, v in milestones.items()}
    return settings


# =============================================================================
# PURE RULES
# =============================================================================

def calculate_tier(lifetime_points: int) -> LoyaltyTier:
    tier = LoyaltyTier.BRONZE
    for candidate, threshold in TIER_THRESHOLDS.items():
        if lifetime_points >= threshold:
            tier = candidate
    return tier


def calculate_points_earned(amount: float, tier: LoyaltyTier, settings: LoyaltySettings) -> int:
    if amount <= 0:
        return 0
    units = math.floor(amount / settings.currency_per_point)
    return math.floor(units * settings.points_per_currency * TIER_MULTIPLIERS[tier])


def calculate_max_redeemable(available: int, bill_amount: float, settings: LoyaltySettings) -> int:
    if available < settings.min_redeem:
        return 0
    cap = math.floor(bill_amount * settings.max_redeem_percent / 100 / settings.point_value)
    return max(0, min(available, cap))


def points_to_currency(points: int, settings: LoyaltySettings) -> float:
    return round(points * settings.point_value, 2)


def check_visit_milestone(visit_number: int, settings: LoyaltySettings) -> tuple[bool, int]:
    bonus = settings.visit_milestones.get(visit_number)
    return (bonus is not None, bonus or 0)


def next_milestone(current_visits: int, settings: LoyaltySettings) -> Optional[dict]:
    for milestone in sorted(settings.visit_milestones):
        if milestone > current_visits:
            return {
                "next_milestone": milestone,
                "points_reward": settings.visit_milestones[milestone],
                "visits_remaining": milestone - current_visits,
            }
    return None


def _band(value: float, average: float) -> int:
    if value >= average * 2:
        return 5
    if value >= average * 1.5:
        return 4
    if value >= average:
        return 3
    if value >= average * 0.5:
        return 2
    return 1


def determine_rfm_segment(r: int, f: int, m: int) -> str:
    if r >= 4 and f >= 4 and m >= 4:
        return "CHAMPIONS"
    if f >= 4 and m >= 4:
        return "LOYAL_CUSTOMERS"
    if r <= 2 and f >= 4 and m >= 4:
        return "CANT_LOSE"
    if r <= 2 and f >= 3 and m >= 3:
        return "AT_RISK"
    if r >= 4 and f >= 3:
        return "POTENTIAL_LOYALISTS"
    if r >= 4 and f <= 2:
        return "NEW_CUSTOMERS"
    if r >= 4 and m <= 2:
        return "PROMISING"
    if r == 3 and f == 3 and m == 3:
        return "NEED_ATTENTION"
    if r == 2 and f <= 3:
        return "ABOUT_TO_SLEEP"
    if r == 1 and f <= 2:
        return "HIBERNATING"
    if r == 1:
        return "LOST"
    return "NEED_ATTENTION"


def calculate_rfm_score(
    days_since_last_visit: int,
    total_visits: int,
    total_spent: float,
    avg_visits: float,
    avg_spend: float,
) -> dict:
    if days_since_last_visit <= 7:
        recency = 5
    elif days_since_last_visit <= 14:
        recency = 4
    elif days_since_last_visit <= 30:
        recency = 3
    elif days_since_last_visit <= 60:
        recency = 2
    else:
        recency = 1

    frequency = _band(total_visits, avg_visits)
    monetary = _band(total_spent, avg_spend)
    return {
        "recency": recency,
        "frequency": frequency,
        "monetary": monetary,
        "segment": determine_rfm_segment(recency, frequency, monetary),
        "score": recency * 100 + frequency * 10 + monetary,
    }


# =============================================================================
# SERVICE
# =============================================================================

class LoyaltyService:
    """Customer points ledger for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant: Restaurant):
        self.db = db
        self.restaurant = restaurant
        self.restaurant_id = restaurant.id
        self.settings = get_loyalty_settings(restaurant)

    async def get_customer(self, customer_id: int) -> Customer:
        result = await self.db.execute(
            select(Customer).where(
                Customer.id == customer_id,
                Customer.restaurant_id == self.restaurant_id,
            )
        )
        customer = result.scalar_one_or_none()
        if not customer:
            raise NotFoundError("Customer not found")
        return customer

    async def find_or_create_customer(
        self,
        phone: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        date_of_birth: Optional[date] = None,
    ) -> Customer:
        result = await self.db.execute(
            select(Customer).where(
                Customer.restaurant_id == self.restaurant_id,
                Customer.phone == phone,
            )
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            customer = Customer(
                restaurant_id=self.restaurant_id,
                phone=phone,
                name=name or "Guest",
                email=email,
                date_of_birth=date_of_birth,
            )
            self.db.add(customer)
            await self.db.flush()
            logger.info(f"👤 New loyalty customer #{customer.id} ({phone})")
        return customer

    async def _transaction(
        self,
        customer: Customer,
        tx_type: PointsTransactionType,
        points: int,
        reason: str,
        bill_id: Optional[int] = None,
        bonus_type: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> PointsTransaction:
        tx = PointsTransaction(
            restaurant_id=self.restaurant_id,
            customer_id=customer.id,
            bill_id=bill_id,
            type=tx_type,
            points=points,
            balance_after=customer.points_balance,
            bonus_type=bonus_type,
            reason=reason,
            expires_at=expires_at,
        )
        self.db.add(tx)
        await self.db.flush()
        return tx

    async def award_points(
        self,
        customer_id: int,
        bill_amount: float,
        bill_id: Optional[int] = None,
    ) -> dict:
        """
        Credit points for a paid bill and count the visit.

        Returns:
            dict with ``points_earned``, ``new_balance``, ``tier`` and ``milestone``
        """
        if not self.settings.enabled:
            return {"success": False, "points_earned": 0, "message": "Loyalty program is disabled"}

        customer = await self.get_customer(customer_id)
        points = calculate_points_earned(bill_amount, customer.tier, self.settings)

        customer.points_balance += points
        customer.points_earned_lifetime += points
        customer.total_spent = round(customer.total_spent + bill_amount, 2)
        customer.total_visits += 1
        customer.last_visit_at = datetime.now()
        old_tier = customer.tier
        customer.tier = calculate_tier(customer.points_earned_lifetime)

        expires_at = None
        if self.settings.points_expiry_days > 0:
            expires_at = datetime.now() + timedelta(days=self.settings.points_expiry_days)

        if points > 0:
            await self._transaction(
                customer, PointsTransactionType.EARN, points,
                f"Earned on bill of Rs. {bill_amount:.2f}",
                bill_id=bill_id, expires_at=expires_at,
            )

        if customer.tier != old_tier:
            logger.info(f"⭐ Customer #{customer.id} promoted {old_tier.value} → {customer.tier.value}")

        milestone = await self.award_visit_milestone(customer, customer.total_visits)
        return {
            "success": True,
            "points_earned": points,
            "new_balance": customer.points_balance,
            "tier": customer.tier.value,
            "milestone": milestone,
        }

    async def award_visit_milestone(self, customer: Customer, visit_number: int) -> dict:
        is_milestone, bonus = check_visit_milestone(visit_number, self.settings)
        if not is_milestone:
            return {"is_milestone": False, "points_awarded": 0}

        marker = f"visit #{visit_number}"
        existing = await self.db.execute(
            select(PointsTransaction.id).where(
                PointsTransaction.customer_id == customer.id,
                PointsTransaction.type == PointsTransactionType.BONUS,
                PointsTransaction.bonus_type == "MILESTONE",
                PointsTransaction.reason.contains(marker),
            ).limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            return {"is_milestone": True, "points_awarded": 0}

        customer.points_balance += bonus
        customer.points_earned_lifetime += bonus
        customer.tier = calculate_tier(customer.points_earned_lifetime)
        await self._transaction(
            customer, PointsTransactionType.BONUS, bonus,
            f"Congratulations on your {marker}! Milestone bonus awarded.",
            bonus_type="MILESTONE",
        )
        logger.info(f"🎉 Customer #{customer.id} reached {marker}: +{bonus} points")
        return {"is_milestone": True, "points_awarded": bonus}

    async def award_birthday_bonus(self, customer_id: int, today: Optional[date] = None) -> dict:
        today = today or date.today()
        customer = await self.get_customer(customer_id)
        dob = customer.date_of_birth
        if not self.settings.enabled or dob is None or (dob.month, dob.day) != (today.month, today.day):
            return {"awarded": False, "points": 0}

        marker = f"Birthday bonus {today.year}"
        existing = await self.db.execute(
            select(PointsTransaction.id).where(
                PointsTransaction.customer_id == customer.id,
                PointsTransaction.bonus_type == "BIRTHDAY",
                PointsTransaction.reason == marker,
            ).limit(1)
        )
        if existing.scalar_one_or_none() is not None:
            return {"awarded": False, "points": 0}

        customer.points_balance += self.settings.birthday_bonus
        customer.points_earned_lifetime += self.settings.birthday_bonus
        await self._transaction(
            customer, PointsTransactionType.BONUS, self.settings.birthday_bonus,
            marker, bonus_type="BIRTHDAY",
        )
        return {"awarded": True, "points": self.settings.birthday_bonus}

    async def redeem_points(
        self,
        customer_id: int,
        points: int,
        bill_amount: float,
        bill_id: Optional[int] = None,
    ) -> float:
        """
        Spend points against a bill.

        Returns:
            Currency value of the redeemed points

        Raises:
            ValidationError: Below minimum, above balance, or above the bill cap
        """
        if not self.settings.enabled:
            raise ValidationError("Loyalty program is disabled")
        if points <= 0:
            raise ValidationError("Points to redeem must be positive")

        customer = await self.get_customer(customer_id)
        if points < self.settings.min_redeem:
            raise ValidationError(f"Minimum {self.settings.min_redeem} points required to redeem")
        if points > customer.points_balance:
            raise ValidationError("Insufficient points balance")

        max_points = calculate_max_redeemable(customer.points_balance, bill_amount, self.settings)
        if points > max_points:
            raise ValidationError(f"Maximum {max_points} points can be redeemed for this bill")

        customer.points_balance -= points
        customer.points_redeemed_lifetime += points
        await self._transaction(
            customer, PointsTransactionType.REDEEM, -points,
            f"Redeemed against bill of Rs. {bill_amount:.2f}",
            bill_id=bill_id,
        )
        value = points_to_currency(points, self.settings)
        logger.info(f"💳 Customer #{customer.id} redeemed {points} points (Rs. {value:.2f})")
        return value

    async def transactions(self, customer_id: int) -> list[PointsTransaction]:
        await self.get_customer(customer_id)
        result = await self.db.execute(
            select(PointsTransaction)
            .where(PointsTransaction.customer_id == customer_id)
            .order_by(PointsTransaction.id.desc())
        )
        return list(result.scalars().all())

    async def expiring_points(self, customer_id: int, within_days: int = 30) -> list[dict]:
        now = datetime.now()
        result = await self.db.execute(
            select(PointsTransaction)
            .where(
                PointsTransaction.customer_id == customer_id,
                PointsTransaction.type == PointsTransactionType.EARN,
                PointsTransaction.is_expired.is_(False),
                PointsTransaction.expires_at.is_not(None),
                PointsTransaction.expires_at > now,
                PointsTransaction.expires_at <= now + timedelta(days=within_days),
            )
            .order_by(PointsTransaction.expires_at)
        )
        return [
            {
                "points": tx.points,
                "expires_at": tx.expires_at.isoformat(),
                "days_left": (tx.expires_at - now).days,
            }
            for tx in result.scalars().all()
        ]

    async def process_expired_points(self, now: Optional[datetime] = None) -> dict:
        """Write EXPIRE transactions for every earn batch past its expiry."""
        now = now or datetime.now()
        result = await self.db.execute(
            select(PointsTransaction).where(
                PointsTransaction.restaurant_id == self.restaurant_id,
                PointsTransaction.type == PointsTransactionType.EARN,
                PointsTransaction.is_expired.is_(False),
                PointsTransaction.expires_at.is_not(None),
                PointsTransaction.expires_at < now,
            )
        )
        by_customer: dict[int, list[PointsTransaction]] = {}
        for tx in result.scalars().all():
            by_customer.setdefault(tx.customer_id, []).append(tx)

        total_expired = 0
        for customer_id, batch in by_customer.items():
            customer = await self.get_customer(customer_id)
            expired = sum(tx.points for tx in batch)
            deducted = min(expired, customer.points_balance)
            customer.points_balance -= deducted
            for tx in batch:
                tx.is_expired = True
            await self._transaction(
                customer, PointsTransactionType.EXPIRE, -deducted,
                f"{len(batch)} point transaction(s) expired",
            )
            total_expired += deducted

        if by_customer:
            logger.info(
                f"⌛ Expired {total_expired} points for {len(by_customer)} customers "
                f"(restaurant {self.restaurant_id})"
            )
        return {"processed_customers": len(by_customer), "total_points_expired": total_expired}

    async def process_inactivity_expiry(self, now: Optional[datetime] = None) -> dict:
        """
        Expire the whole balance of customers inactive for ``points_expiry_days``.

        Activity is the last visit (sign-up when there is none). Customers
        within INACTIVITY_WARNING_DAYS of the cutoff are counted as at risk.
        """
        now = now or datetime.now()
        expiry_days = get_loyalty_settings(self.restaurant).points_expiry_days
        cutoff = now - timedelta(days=expiry_days)
        warning = cutoff + timedelta(days=INACTIVITY_WARNING_DAYS)

        result = await self.db.execute(
            select(Customer).where(
                Customer.restaurant_id == self.restaurant_id,
                Customer.status == "ACTIVE",
                Customer.points_balance > 0,
            )
        )
        expired_customers = 0
        at_risk = 0
        total_expired = 0
        for customer in result.scalars().all():
            last_active = customer.last_visit_at or customer.created_at
            if last_active >= warning:
                continue
            if last_active >= cutoff:
                at_risk += 1
                continue

            expired = customer.points_balance
            customer.points_balance = 0
            batches = await self.db.execute(
                select(PointsTransaction).where(
                    PointsTransaction.customer_id == customer.id,
                    PointsTransaction.type == PointsTransactionType.EARN,
                    PointsTransaction.is_expired.is_(False),
                )
            )
            for tx in batches.scalars().all():
                tx.is_expired = True
            await self._transaction(
                customer, PointsTransactionType.EXPIRE, -expired,
                f"Points expired due to {expiry_days} days of inactivity",
            )
            expired_customers += 1
            total_expired += expired

        if expired_customers:
            logger.info(
                f"⌛ Expired {total_expired} points of {expired_customers} inactive customers "
                f"(restaurant {self.restaurant_id})"
            )
        return {
            "customers_expired": expired_customers,
            "customers_at_risk": at_risk,
            "total_points_expired": total_expired,
        }

    async def rfm_analysis(self, segment: Optional[str] = None, now: Optional[datetime] = None) -> dict:
        now = now or datetime.now()
        result = await self.db.execute(
            select(Customer).where(
                Customer.restaurant_id == self.restaurant_id,
                Customer.status == "ACTIVE",
            )
        )
        customers = list(result.scalars().all())
        if not customers:
            return {"customers": [], "segment_counts": {}, "averages": {"avg_visits": 0, "avg_spend": 0}}

        avg_visits = sum(c.total_visits for c in customers) / len(customers)
        avg_spend = sum(c.total_spent for c in customers) / len(customers)

        rows = []
        counts: dict[str, int] = {}
        for customer in customers:
            days = (now - customer.last_visit_at).days if customer.last_visit_at else 365
            rfm = calculate_rfm_score(days, customer.total_visits, customer.total_spent, avg_visits, avg_spend)
            counts[rfm["segment"]] = counts.get(rfm["segment"], 0) + 1
            if segment and rfm["segment"] != segment:
                continue
            label, description = RFM_SEGMENTS[rfm["segment"]]
            rows.append({
                "customer_id": customer.id,
                "name": customer.name,
                "phone": customer.phone,
                "tier": customer.tier.value,
                "points_balance": customer.points_balance,
                "total_visits": customer.total_visits,
                "total_spent": customer.total_spent,
                "days_since_last_visit": days,
                "rfm": rfm,
                "segment_label": label,
                "segment_description": description,
            })

        rows.sort(key=lambda r: r["rfm"]["score"], reverse=True)
        return {
            "customers": rows,
            "segment_counts": counts,
            "averages": {"avg_visits": round(avg_visits, 2), "avg_spend": round(avg_spend, 2)},
        }
