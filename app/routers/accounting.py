"""
Double-entry accounting: chart of accounts, vouchers and books.
"""

from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import current_restaurant, staff_name
from app.models import AccountGroup, Restaurant, Voucher, VoucherStatus, VoucherType
from app.schemas import (
    AccountCreate,
    AccountResponse,
    ErrorResponse,
    LedgerEntryResponse,
    ReasonRequest,
    VoucherCreate,
    VoucherDetailResponse,
    VoucherResponse,
    VoucherUpdate,
)
from app.services.accounting import AccountService, EntryInput, LedgerService, VoucherService

router = APIRouter(prefix="/api/accounting", tags=["Accounting"])


async def _voucher_detail(service: VoucherService, voucher: Voucher) -> VoucherDetailResponse:
    entries = await service.get_entries(voucher.id)
    return VoucherDetailResponse(
        voucher=VoucherResponse.model_validate(voucher),
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
    )


# =============================================================================
# CHART OF ACCOUNTS
# =============================================================================

@router.get("/accounts", response_model=list[AccountResponse])
async def list_accounts(
    group: Optional[AccountGroup] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[AccountResponse]:
    accounts = await AccountService(db, restaurant.id).list_accounts(group)
    return [AccountResponse.model_validate(a) for a in accounts]


@router.post(
    "/accounts",
    response_model=AccountResponse,
    status_code=201,
    responses={409: {"model": ErrorResponse}},
)
async def create_account(
    payload: AccountCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> AccountResponse:
    account = await AccountService(db, restaurant.id).create(**payload.model_dump())
    await db.commit()
    return AccountResponse.model_validate(account)


@router.post("/accounts/seed", response_model=list[AccountResponse], summary="Seed Default Chart")
async def seed_chart(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[AccountResponse]:
    accounts = await AccountService(db, restaurant.id).seed_default_chart()
    await db.commit()
    return [AccountResponse.model_validate(a) for a in accounts]


@router.get("/accounts/{account_id}/ledger", summary="Account Ledger")
async def account_ledger(
    account_id: int,
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await LedgerService(db, restaurant.id).account_ledger(account_id, from_date, to_date)


# =============================================================================
# VOUCHERS
# =============================================================================

@router.post(
    "/vouchers",
    response_model=VoucherDetailResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}},
)
async def create_voucher(
    payload: VoucherCreate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> VoucherDetailResponse:
    """
    Create a voucher. Debits must equal credits; with ``auto_post`` the
    account balances are updated immediately.
    """
    service = VoucherService(db, restaurant.id)
    voucher = await service.create(
        payload.voucher_type,
        [EntryInput(**e.model_dump()) for e in payload.entries],
        voucher_date=payload.voucher_date,
        narration=payload.narration,
        party_name=payload.party_name,
        auto_post=payload.auto_post,
        created_by=staff,
    )
    response = await _voucher_detail(service, voucher)
    await db.commit()
    return response


@router.get("/vouchers", response_model=list[VoucherResponse])
async def list_vouchers(
    voucher_type: Optional[VoucherType] = Query(None),
    status: Optional[VoucherStatus] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[VoucherResponse]:
    vouchers = await VoucherService(db, restaurant.id).list_vouchers(voucher_type, status, from_date, to_date)
    return [VoucherResponse.model_validate(v) for v in vouchers]


@router.get("/vouchers/{voucher_id}", response_model=VoucherDetailResponse)
async def get_voucher(
    voucher_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> VoucherDetailResponse:
    service = VoucherService(db, restaurant.id)
    return await _voucher_detail(service, await service.get(voucher_id))


@router.patch("/vouchers/{voucher_id}", response_model=VoucherResponse)
async def update_voucher(
    voucher_id: int,
    payload: VoucherUpdate,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> VoucherResponse:
    voucher = await VoucherService(db, restaurant.id).update(
        voucher_id, narration=payload.narration, party_name=payload.party_name
    )
    await db.commit()
    return VoucherResponse.model_validate(voucher)


@router.delete("/vouchers/{voucher_id}", status_code=204)
async def delete_voucher(
    voucher_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> None:
    await VoucherService(db, restaurant.id).delete(voucher_id)
    await db.commit()


@router.post("/vouchers/{voucher_id}/post", response_model=VoucherResponse)
async def post_voucher(
    voucher_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> VoucherResponse:
    voucher = await VoucherService(db, restaurant.id).post(voucher_id, posted_by=staff)
    await db.commit()
    return VoucherResponse.model_validate(voucher)


@router.post("/vouchers/{voucher_id}/cancel", response_model=VoucherResponse)
async def cancel_voucher(
    voucher_id: int,
    payload: ReasonRequest,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> VoucherResponse:
    """Cancel a voucher. A posted voucher has its balance effects reversed."""
    voucher = await VoucherService(db, restaurant.id).cancel(voucher_id, payload.reason, cancelled_by=staff)
    await db.commit()
    return VoucherResponse.model_validate(voucher)


# =============================================================================
# BOOKS
# =============================================================================

@router.get("/day-book", tags=["Books"])
async def day_book(
    book_date: Optional[date] = Query(None, alias="date"),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await LedgerService(db, restaurant.id).day_book(book_date or date.today())


@router.get("/trial-balance", tags=["Books"])
async def trial_balance(
    as_of: Optional[date] = Query(None),
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await LedgerService(db, restaurant.id).trial_balance(as_of)


@router.get("/profit-and-loss", tags=["Books"])
async def profit_and_loss(
    from_date: date,
    to_date: date,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await LedgerService(db, restaurant.id).profit_and_loss(from_date, to_date)
