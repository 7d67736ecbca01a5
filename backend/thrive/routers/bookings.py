"""Booking and cancellation of sessions."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models, repositories
from ..auth import get_current_user
from ..database import get_session
from ..schemas import BookingIn
from ..serializers import booking_out
from ..services.booking import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("", status_code=201)
def create_booking(payload: BookingIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Book a session; required points are deducted on success."""
    booking = BookingService(db).create(user, payload.session_id)
    live = repositories.SessionRepository(db).get(booking.session_id)
    return booking_out(booking, live)


@router.get("/my-bookings")
def my_bookings(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return BookingService(db).my_bookings(user)


@router.delete("/{booking_id}")
def cancel_booking(booking_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Cancel a confirmed booking and refund its points."""
    booking = BookingService(db).cancel(user, booking_id)
    return booking_out(booking)
