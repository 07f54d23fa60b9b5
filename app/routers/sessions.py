"""
Staff view of table sessions and their alerts.
"""

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import current_restaurant, staff_name
from app.models import Restaurant
from app.schemas import AlertResponse, GuestCountUpdate, SessionResponse
from app.services.sessions import SessionService
from app.services.tables import AlertService

router = APIRouter(prefix="/api", tags=["Sessions"])


@router.get("/sessions", response_model=list[SessionResponse], summary="Active Sessions")
async def list_active_sessions(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[SessionResponse]:
    sessions = await SessionService(db, restaurant.id).list_active()
    return [SessionResponse.model_validate(s) for s in sessions]


@router.get("/sessions/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    session = await SessionService(db, restaurant.id).get(session_id)
    return SessionResponse.model_validate(session)


@router.get("/sessions/{session_id}/timeline", summary="Session Timeline")
async def session_timeline(
    session_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """Chronological events of a session: scan, seating, orders, serving, bill."""
    return await SessionService(db, restaurant.id).timeline(session_id)


@router.get("/sessions/{session_id}/summary", summary="Session Summary")
async def session_summary(
    session_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    return await SessionService(db, restaurant.id).summary(session_id)


@router.patch("/sessions/{session_id}/guest-count", response_model=SessionResponse)
async def update_guest_count(
    session_id: int,
    payload: GuestCountUpdate,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    session = await SessionService(db, restaurant.id).update_guest_count(
        session_id, payload.guest_count, changed_by=staff
    )
    await db.commit()
    return SessionResponse.model_validate(session)


@router.post("/sessions/{session_id}/end", response_model=SessionResponse, summary="End Session")
async def end_session(
    session_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    staff: str = Depends(staff_name),
    db: AsyncSession = Depends(get_db),
) -> SessionResponse:
    """Close the session, rotate the table OTP and send the table to cleaning."""
    session = await SessionService(db, restaurant.id).end_session(session_id, ended_by=staff)
    await db.commit()
    return SessionResponse.model_validate(session)


@router.post("/sessions/scan-alerts", summary="Raise Timer Alerts")
async def scan_session_alerts(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    raised = await SessionService(db, restaurant.id).scan_alerts()
    await db.commit()
    return {"raised": raised, "count": len(raised)}


# =============================================================================
# ALERTS
# =============================================================================

@router.get("/alerts", response_model=list[AlertResponse], tags=["Alerts"])
async def list_open_alerts(
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> list[AlertResponse]:
    alerts = await AlertService(db, restaurant.id).list_open()
    return [AlertResponse.model_validate(a) for a in alerts]


@router.post("/alerts/{alert_id}/resolve", response_model=AlertResponse, tags=["Alerts"])
async def resolve_alert(
    alert_id: int,
    restaurant: Restaurant = Depends(current_restaurant),
    db: AsyncSession = Depends(get_db),
) -> AlertResponse:
    alert = await AlertService(db, restaurant.id).resolve_one(alert_id)
    await db.commit()
    return AlertResponse.model_validate(alert)
