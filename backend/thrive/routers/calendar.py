"""Calendar views and booking eligibility."""

from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, require_staff
from ..database import get_session
from ..services.booking import BookingService
from ..services.calendar import CalendarService

router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.get("/sessions")
def calendar_sessions(
    view: Literal["month", "week"] = "month",
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    week: Optional[int] = Query(None, ge=1, le=6),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Sessions in a month or a Sunday-started week, with booking flags."""
    return CalendarService(db).sessions_for_view(user, view, year, month, week)


@router.get("/sessions/day/{day}")
def sessions_for_day(day: date, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CalendarService(db).sessions_for_day(user, day)


@router.get("/sessions/{session_id}/eligibility")
def booking_eligibility(session_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return BookingService(db).eligibility(user, session_id)


@router.get("/sessions/{session_id}/attendees")
def session_attendees(session_id: str, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return CalendarService(db).attendees(session_id)


@router.get("/bookings/upcoming")
def upcoming_bookings(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CalendarService(db).upcoming_bookings(user)
