"""
Double-Entry Accounting Service

Chart of accounts, vouchers and the books built from their ledger entries.

Balance normality:
    ASSETS, EXPENSES                -> debit-normal  (debit - credit)
    LIABILITIES, INCOME, EQUITY     -> credit-normal (credit - debit)

Voucher lifecycle:
    DRAFT --post--> POSTED --cancel--> CANCELLED
    DRAFT --cancel--> CANCELLED
Balances on ``ChartOfAccount.current_balance`` move only when a voucher
is posted, and move back when a posted voucher is cancelled.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError, NotFoundError, ConflictError
from app.models import (
    AccountGroup,
    ChartOfAccount,
    LedgerEntry,
    Voucher,
    VoucherStatus,
    VoucherType,
)
from app.utils.nepal_date import gregorian_fiscal_year

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE = 0.01

VOUCHER_PREFIXES = {
    VoucherType.PAYMENT: "PMT",
    VoucherType.RECEIPT: "RCT",
    VoucherType.CONTRA: "CTR",
    VoucherType.JOURNAL: "JRN",
    VoucherType.SALES: "SLS",
    VoucherType.PURCHASE: "PUR",
    VoucherType.CREDIT_NOTE: "CN",
    VoucherType.DEBIT_NOTE: "DN",
}

DEBIT_NORMAL_GROUPS = (AccountGroup.ASSETS, AccountGroup.EXPENSES)

# (code, name, group, type) seeded for a new restaurant
DEFAULT_CHART = [
    ("1000", "Cash in Hand", AccountGroup.ASSETS, "CASH"),
    ("1010", "Bank Account", AccountGroup.ASSETS, "BANK"),
    ("1020", "Digital Wallets", AccountGroup.ASSETS, "BANK"),
    ("1100", "Sundry Debtors", AccountGroup.ASSETS, "SUNDRY_DEBTORS"),
    ("1200", "Inventory", AccountGroup.ASSETS, "STOCK"),
    ("1300", "VAT Receivable", AccountGroup.ASSETS, "DUTIES_TAXES"),
    ("2000", "Sundry Creditors", AccountGroup.LIABILITIES, "SUNDRY_CREDITORS"),
    ("2100", "VAT Payable", AccountGroup.LIABILITIES, "DUTIES_TAXES"),
    ("2200", "Service Charge Payable", AccountGroup.LIABILITIES, "DUTIES_TAXES"),
    ("3000", "Owner's Capital", AccountGroup.EQUITY, "CAPITAL"),
    ("4000", "Food & Beverage Sales", AccountGroup.INCOME, "SALES"),
    ("5000", "Purchases", AccountGroup.EXPENSES, "PURCHASE"),
    ("5100", "Discount Allowed", AccountGroup.EXPENSES, "INDIRECT_EXPENSE"),
]


@dataclass
class EntryInput:
    """One side of a voucher before it is persisted."""
    account_id: int
    debit: float = 0.0
    credit: float = 0.0
    narration: Optional[str] = None


def is_debit_normal(group: AccountGroup) -> bool:
    return group in DEBIT_NORMAL_GROUPS


def balance_change(group: AccountGroup, debit: float, credit: float) -> float:
    """Signed effect of an entry on an account of the given group."""
    if is_debit_normal(group):
        return debit - credit
    return credit - debit


def validate_double_entry(entries: list[EntryInput]) -> tuple[float, float]:
    """
    Check a set of voucher entries and return ``(total_debit, total_credit)``.

    Raises:
        ValidationError: On one-sided, two-sided or unbalanced entries
    """
    if len(entries) < 2:
        raise ValidationError("A voucher needs at least two entries")

    total_debit = 0.0
    total_credit = 0.0
    for entry in entries:
        if entry.debit < 0 or entry.credit < 0:
            raise ValidationError("Debit and credit amounts cannot be negative")
        if entry.debit > 0 and entry.credit > 0:
            raise ValidationError("Entry cannot have both debit and credit")
        if entry.debit == 0 and entry.credit == 0:
            raise ValidationError("Entry must have either debit or credit")
        total_debit += entry.debit
        total_credit += entry.credit

    total_debit = round(total_debit, 2)
    total_credit = round(total_credit, 2)

    if abs(total_debit - total_credit) >= BALANCE_TOLERANCE:
        raise ValidationError(
            f"Debits ({total_debit:.2f}) must equal Credits ({total_credit:.2f})"
        )

    return total_debit, total_credit


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

class AccountService:
    """Chart of accounts for one restaurant."""

    def __init__(self, db: AsyncSession, restaurant_id: int):
        self.db = db
        self.restaurant_id = restaurant_id

    async def get(self, account_id: int) -> ChartOfAccount:
        result = await self.db.execute(
            select(ChartOfAccount).where(
                ChartOfAccount.id == account_id,
                ChartOfAccount.restaurant_id == self.restaurant_id,
            )
        )
        account = result.scalar_one_or_none()
        if not account:
            raise NotFoundError("Account not found")
        return account

    async def get_by_code(self, code: str) -> Optional[ChartOfAccount]:
        result = await self.db.execute(
            select(ChartOfAccount).where(
                ChartOfAccount.restaurant_id == self.restaurant_id,
                ChartOfAccount.account_code == code,
            )
        )
        return result.scalar_one_or_none()

    async def list_accounts(self, group: Optional[AccountGroup] = None) -> list[ChartOfAccount]:
        query = select(ChartOfAccount).where(
            ChartOfAccount.restaurant_id == self.restaurant_id
        )
        if group:
            query = query.where(ChartOfAccount.account_group == group)
        result = await self.db.execute(query.order_by(ChartOfAccount.account_code))
        return list(result.scalars().all())

    async def create(
        self,
        account_code: str,
        account_name: str,
        account_group: AccountGroup,
        account_type: str,
        parent_id: Optional[int] = None,
        allow_posting: bool = True,
        opening_balance: float = 0.0,
        is_system: bool = False,
    ) -> ChartOfAccount:
        if await self.get_by_code(account_code):
            raise ConflictError("Account code already exists")

        if parent_id is not None:
            await self.get(parent_id)

        account = ChartOfAccount(
            restaurant_id=self.restaurant_id,
            account_code=account_code,
            account_name=account_name,
            account_group=account_group,
            account_type=account_type,
            parent_id=parent_id,
            allow_posting=allow_posting,
            opening_balance=round(opening_balance, 2),
            current_balance=round(opening_balance, 2),
            is_system=is_system,
        )
        self.db.add(account)
        await self.db.flush()
        return account

    async def seed_default_chart(self) -> list[ChartOfAccount]:
        """Create the standard chart if the restaurant has no accounts yet."""
        existing = await self.list_accounts()
        if existing:
            return existing

        for code, name, group, account_type in DEFAULT_CHART:
            await self.create(code, name, group, account_type, is_system=True)

        logger.info(f"📒 Seeded default chart of accounts for restaurant {self.restaurant_id}")
        return await self.list_accounts()


# =============================================================================
# VOUCHERS
# =============================================================================

class VoucherService:
    """
    Voucher creation, posting and cancellation for one restaurant.

    Methods flush but never commit: the caller owns the transaction, so a
    voucher, its entries and the balance updates land together.
    """

    def __init__(self, db: AsyncSession, restaurant_id: int):
        self.db = db
        self.restaurant_id = restaurant_id

    async def generate_voucher_number(
        self,
        voucher_type: VoucherType,
        voucher_date: Optional[date] = None,
    ) -> str:
        prefix = VOUCHER_PREFIXES[voucher_type]
        fiscal_year = gregorian_fiscal_year(voucher_date or date.today())
        stem = f"{prefix}-{fiscal_year}-"

        result = await self.db.execute(
            select(Voucher.voucher_number)
            .where(
                Voucher.restaurant_id == self.restaurant_id,
                Voucher.voucher_number.like(f"{stem}%"),
            )
            .order_by(Voucher.id.desc())
            .limit(1)
        )
        last = result.scalar_one_or_none()
        sequence = int(last.rsplit("-", 1)[1]) + 1 if last else 1
        return f"{stem}{sequence:06d}"

    async def get(self, voucher_id: int) -> Voucher:
        result = await self.db.execute(
            select(Voucher).where(
                Voucher.id == voucher_id,
                Voucher.restaurant_id == self.restaurant_id,
            )
        )
        voucher = result.scalar_one_or_none()
        if not voucher:
            raise NotFoundError("Voucher not found")
        return voucher

    async def get_entries(self, voucher_id: int) -> list[LedgerEntry]:
        result = await self.db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.voucher_id == voucher_id)
            .order_by(LedgerEntry.id)
        )
        return list(result.scalars().all())

    async def _load_accounts(self, account_ids: set[int]) -> dict[int, ChartOfAccount]:
        result = await self.db.execute(
            select(ChartOfAccount).where(
                ChartOfAccount.id.in_(account_ids),
                ChartOfAccount.restaurant_id == self.restaurant_id,
            )
        )
        return {a.id: a for a in result.scalars().all()}

    async def _apply_balances(self, entries: list[LedgerEntry], reverse: bool = False) -> None:
        accounts = await self._load_accounts({e.account_id for e in entries})
        sign = -1 if reverse else 1
        for entry in entries:
            account = accounts[entry.account_id]
            change = balance_change(account.account_group, entry.debit, entry.credit)
            account.current_balance = round(account.current_balance + sign * change, 2)

    async def create(
        self,
        voucher_type: VoucherType,
        entries: list[EntryInput],
        voucher_date: Optional[date] = None,
        narration: Optional[str] = None,
        party_name: Optional[str] = None,
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        auto_post: bool = False,
        created_by: str = "Staff",
    ) -> Voucher:
        """
        Create a voucher with its ledger entries.

        Args:
            voucher_type: Kind of voucher (decides the number prefix)
            entries: Debit/credit lines; must balance
            auto_post: Post immediately and update account balances
        """
        total_debit, _ = validate_double_entry(entries)
        voucher_date = voucher_date or date.today()

        account_ids = {e.account_id for e in entries}
        accounts = await self._load_accounts(account_ids)
        if len(accounts) != len(account_ids):
            raise NotFoundError("One or more accounts not found")

        blocked = [a.account_name for a in accounts.values() if not a.allow_posting]
        if blocked:
            raise ValidationError(f"Cannot post to accounts: {', '.join(blocked)}")

        voucher = Voucher(
            restaurant_id=self.restaurant_id,
            voucher_number=await self.generate_voucher_number(voucher_type, voucher_date),
            voucher_type=voucher_type,
            voucher_date=voucher_date,
            narration=narration,
            party_name=party_name,
            reference_type=reference_type,
            reference_id=reference_id,
            total_amount=total_debit,
            status=VoucherStatus.DRAFT,
            created_by=created_by,
        )
        self.db.add(voucher)
        await self.db.flush()

        ledger_entries = [
            LedgerEntry(
                restaurant_id=self.restaurant_id,
                voucher_id=voucher.id,
                account_id=e.account_id,
                entry_date=voucher_date,
                debit=round(e.debit, 2),
                credit=round(e.credit, 2),
                narration=e.narration or narration,
            )
            for e in entries
        ]
        self.db.add_all(ledger_entries)

        if auto_post:
            await self._post(voucher, ledger_entries, created_by)

        await self.db.flush()

        logger.info(
            f"🧾 Voucher {voucher.voucher_number} created "
            f"({voucher_type.value}, {total_debit:.2f}, {voucher.status.value})"
        )
        return voucher

    async def _post(self, voucher: Voucher, entries: list[LedgerEntry], posted_by: str) -> None:
        for entry in entries:
            entry.is_posted = True
        await self._apply_balances(entries)
        voucher.status = VoucherStatus.POSTED
        voucher.posted_by = posted_by
        voucher.posted_at = datetime.now()

    async def post(self, voucher_id: int, posted_by: str = "Staff") -> Voucher:
        voucher = await self.get(voucher_id)
        if voucher.status == VoucherStatus.POSTED:
            raise ValidationError("Voucher is already posted")
        if voucher.status == VoucherStatus.CANCELLED:
            raise ValidationError("Cannot post a cancelled voucher")

        await self._post(voucher, await self.get_entries(voucher.id), posted_by)
        await self.db.flush()

        logger.info(f"✅ Voucher {voucher.voucher_number} posted by {posted_by}")
        return voucher

    async def cancel(self, voucher_id: int, reason: str, cancelled_by: str = "Staff") -> Voucher:
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required")

        voucher = await self.get(voucher_id)
        if voucher.status == VoucherStatus.CANCELLED:
            raise ValidationError("Voucher is already cancelled")

        if voucher.status == VoucherStatus.POSTED:
            entries = await self.get_entries(voucher.id)
            await self._apply_balances(entries, reverse=True)
            for entry in entries:
                entry.is_posted = False

        voucher.status = VoucherStatus.CANCELLED
        voucher.cancelled_at = datetime.now()
        voucher.cancellation_reason = reason
        voucher.narration = f"{voucher.narration or ''}\n[CANCELLED: {reason}]"

        await self.db.flush()

        logger.warning(f"⚠️ Voucher {voucher.voucher_number} cancelled by {cancelled_by}: {reason}")
        return voucher

    async def update(
        self,
        voucher_id: int,
        narration: Optional[str] = None,
        party_name: Optional[str] = None,
    ) -> Voucher:
        voucher = await self.get(voucher_id)
        if voucher.status != VoucherStatus.DRAFT:
            raise ValidationError("Only draft vouchers can be edited")

        if narration is not None:
            voucher.narration = narration
        if party_name is not None:
            voucher.party_name = party_name

        await self.db.flush()
        return voucher

    async def delete(self, voucher_id: int) -> None:
        voucher = await self.get(voucher_id)
        if voucher.status != VoucherStatus.DRAFT:
            raise ValidationError("Only draft vouchers can be deleted")

        for entry in await self.get_entries(voucher.id):
            await self.db.delete(entry)
        await self.db.delete(voucher)
        await self.db.flush()
        logger.info(f"🗑️ Draft voucher {voucher.voucher_number} deleted")

    async def list_vouchers(
        self,
        voucher_type: Optional[VoucherType] = None,
        status: Optional[VoucherStatus] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> list[Voucher]:
        query = select(Voucher).where(Voucher.restaurant_id == self.restaurant_id)
        if voucher_type:
            query = query.where(Voucher.voucher_type == voucher_type)
        if status:
            query = query.where(Voucher.status == status)
        if from_date:
            query = query.where(Voucher.voucher_date >= from_date)
        if to_date:
            query = query.where(Voucher.voucher_date <= to_date)
        result = await self.db.execute(query.order_by(Voucher.voucher_date, Voucher.id))
        return list(result.scalars().all())


# =============================================================================
# BOOKS & STATEMENTS
# =============================================================================

class LedgerService:
    """Read-only books derived from posted ledger entries."""

    def __init__(self, db: AsyncSession, restaurant_id: int):
        self.db = db
        self.restaurant_id = restaurant_id

    async def _posted_totals(
        self,
        account_id: Optional[int] = None,
        before: Optional[date] = None,
        up_to: Optional[date] = None,
        since: Optional[date] = None,
    ) -> dict[int, tuple[float, float]]:
        query = (
            select(
                LedgerEntry.account_id,
                func.coalesce(func.sum(LedgerEntry.debit), 0.0),
                func.coalesce(func.sum(LedgerEntry.credit), 0.0),
            )
            .where(
                LedgerEntry.restaurant_id == self.restaurant_id,
                LedgerEntry.is_posted.is_(True),
            )
            .group_by(LedgerEntry.account_id)
        )
        if account_id is not None:
            query = query.where(LedgerEntry.account_id == account_id)
        if before is not None:
            query = query.where(LedgerEntry.entry_date < before)
        if up_to is not None:
            query = query.where(LedgerEntry.entry_date <= up_to)
        if since is not None:
            query = query.where(LedgerEntry.entry_date >= since)

        result = await self.db.execute(query)
        return {row[0]: (float(row[1]), float(row[2])) for row in result.all()}

    async def account_ledger(
        self,
        account_id: int,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> dict:
        account = await AccountService(self.db, self.restaurant_id).get(account_id)

        opening = account.opening_balance
        if from_date:
            prior = await self._posted_totals(account_id=account_id, before=from_date)
            debit, credit = prior.get(account_id, (0.0, 0.0))
            opening += balance_change(account.account_group, debit, credit)

        query = (
            select(LedgerEntry, Voucher)
            .join(Voucher, Voucher.id == LedgerEntry.voucher_id)
            .where(
                LedgerEntry.account_id == account_id,
                LedgerEntry.is_posted.is_(True),
            )
            .order_by(LedgerEntry.entry_date, LedgerEntry.id)
        )
        if from_date:
            query = query.where(LedgerEntry.entry_date >= from_date)
        if to_date:
            query = query.where(LedgerEntry.entry_date <= to_date)
        rows = (await self.db.execute(query)).all()

        running = round(opening, 2)
        total_debit = 0.0
        total_credit = 0.0
        lines = []
        for entry, voucher in rows:
            running = round(
                running + balance_change(account.account_group, entry.debit, entry.credit), 2
            )
            total_debit += entry.debit
            total_credit += entry.credit
            lines.append({
                "date": entry.entry_date.isoformat(),
                "voucher_id": voucher.id,
                "voucher_number": voucher.voucher_number,
                "voucher_type": voucher.voucher_type.value,
                "narration": entry.narration,
                "debit": entry.debit,
                "credit": entry.credit,
                "balance": running,
            })

        return {
            "account_id": account.id,
            "account_code": account.account_code,
            "account_name": account.account_name,
            "account_group": account.account_group.value,
            "opening_balance": round(opening, 2),
            "entries": lines,
            "total_debit": round(total_debit, 2),
            "total_credit": round(total_credit, 2),
            "closing_balance": running,
        }

    async def day_book(self, book_date: date) -> dict:
        result = await self.db.execute(
            select(Voucher)
            .where(
                Voucher.restaurant_id == self.restaurant_id,
                Voucher.voucher_date == book_date,
                Voucher.status.in_([VoucherStatus.POSTED, VoucherStatus.DRAFT]),
            )
            .order_by(Voucher.id)
        )
        vouchers = result.scalars().all()

        groups: dict[str, dict] = {}
        for voucher in vouchers:
            group = groups.setdefault(
                voucher.voucher_type.value,
                {"voucher_type": voucher.voucher_type.value, "count": 0, "total": 0.0, "vouchers": []},
            )
            group["count"] += 1
            group["total"] = round(group["total"] + voucher.total_amount, 2)
            group["vouchers"].append({
                "id": voucher.id,
                "voucher_number": voucher.voucher_number,
                "status": voucher.status.value,
                "narration": voucher.narration,
                "party_name": voucher.party_name,
                "total_amount": voucher.total_amount,
            })

        return {
            "date": book_date.isoformat(),
            "groups": list(groups.values()),
            "total_vouchers": len(vouchers),
            "total_amount": round(sum(v.total_amount for v in vouchers), 2),
        }

    async def trial_balance(self, as_of: Optional[date] = None) -> dict:
        as_of = as_of or date.today()
        accounts = await AccountService(self.db, self.restaurant_id).list_accounts()
        totals = await self._posted_totals(up_to=as_of)

        rows = []
        total_debit = 0.0
        total_credit = 0.0
        for account in accounts:
            debit, credit = totals.get(account.id, (0.0, 0.0))
            balance = round(
                account.opening_balance + balance_change(account.account_group, debit, credit), 2
            )
            if balance == 0:
                continue

            if is_debit_normal(account.account_group):
                debit_balance = balance if balance > 0 else 0.0
                credit_balance = abs(balance) if balance < 0 else 0.0
            else:
                credit_balance = balance if balance > 0 else 0.0
                debit_balance = abs(balance) if balance < 0 else 0.0

            total_debit += debit_balance
            total_credit += credit_balance
            rows.append({
                "account_id": account.id,
                "account_code": account.account_code,
                "account_name": account.account_name,
                "account_group": account.account_group.value,
                "debit": debit_balance,
                "credit": credit_balance,
            })

        total_debit = round(total_debit, 2)
        total_credit = round(total_credit, 2)
        return {
            "as_of": as_of.isoformat(),
            "accounts": rows,
            "total_debit": total_debit,
            "total_credit": total_credit,
            "difference": round(total_debit - total_credit, 2),
            "is_balanced": abs(total_debit - total_credit) < BALANCE_TOLERANCE,
        }

    async def profit_and_loss(self, from_date: date, to_date: date) -> dict:
        accounts = await AccountService(self.db, self.restaurant_id).list_accounts()
        totals = await self._posted_totals(since=from_date, up_to=to_date)

        income = []
        expenses = []
        for account in accounts:
            if account.account_group not in (AccountGroup.INCOME, AccountGroup.EXPENSES):
                continue
            debit, credit = totals.get(account.id, (0.0, 0.0))
            amount = round(balance_change(account.account_group, debit, credit), 2)
            if amount == 0:
                continue
            line = {"account_code": account.account_code, "account_name": account.account_name, "amount": amount}
            (income if account.account_group == AccountGroup.INCOME else expenses).append(line)

        total_income = round(sum(i["amount"] for i in income), 2)
        total_expenses = round(sum(e["amount"] for e in expenses), 2)
        return {
            "from_date": from_date.isoformat(),
            "to_date": to_date.isoformat(),
            "income": income,
            "expenses": expenses,
            "total_income": total_income,
            "total_expenses": total_expenses,
            "net_profit": round(total_income - total_expenses, 2),
        }
