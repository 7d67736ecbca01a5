"""Session booking with capacity and points checks.

Eligibility is a list of plain conditional checks evaluated against the
current rows; there is no seat reservation. Booking deducts the
session's required points and cancelling refunds them.
"""

import logging
from typing import Optional

from sqlmodel import Session

from .. import models, repositories
from ..errors import NotFoundError, PermissionDenied, ValidationError
from ..serializers import booking_out
from ..utils.dates import iso, utcnow
from .mailer import Mailer

logger = logging.getLogger("thrive.booking")

MAX_ACTIVE_BOOKINGS = 2


class BookingService:
    def __init__(self, session: Session, mailer: Optional[Mailer] = None):
        self.session = session
        self.mailer = mailer or Mailer()
        self.session_repo = repositories.SessionRepository(session)
        self.booking_repo = repositories.BookingRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)

    def _get_session(self, session_id: str) -> models.LiveSession:
        live = self.session_repo.get(session_id)
        if live is None:
            raise NotFoundError("session not found")
        return live

    def eligibility(self, user: models.User, session_id: str) -> dict:
        """Explain whether `user` may book the session and why not."""
        live = self._get_session(session_id)
        now = utcnow()
        profile = self.profile_repo.get_by_user(user.id)
        points = profile.points if profile else 0
        active = self.booking_repo.count_active_for_user(user.id, now)
        reasons = []
        if self.booking_repo.get_confirmed(user.id, live.id):
            reasons.append("you have already booked this session")
        if active >= MAX_ACTIVE_BOOKINGS:
            reasons.append(f"maximum of {MAX_ACTIVE_BOOKINGS} active bookings reached")
        if not live.is_active:
            reasons.append("session is not active")
        if live.is_full:
            reasons.append("session is full")
        if points < live.points_required:
            reasons.append(f"insufficient points (need {live.points_required}, have {points})")
        if live.scheduled_at <= now:
            reasons.append("session has already started")
        return {
            "can_book": not reasons,
            "reasons": reasons,
            "session": {
                "id": live.id,
                "title": live.title,
                "points_required": live.points_required,
                "spots_available": max(0, live.max_participants - live.current_participants),
                "scheduled_at": iso(live.scheduled_at),
            },
            "user": {"points": points, "active_bookings": active},
        }

    def create(self, user: models.User, session_id: str) -> models.Booking:
        live = self._get_session(session_id)
        now = utcnow()
        if not live.can_book(now):
            raise ValidationError("session cannot be booked")
        if self.booking_repo.get_confirmed(user.id, live.id):
            raise ValidationError("you have already booked this session")
        if self.booking_repo.count_active_for_user(user.id, now) >= MAX_ACTIVE_BOOKINGS:
            raise ValidationError(f"maximum of {MAX_ACTIVE_BOOKINGS} active bookings reached")
        profile = self.profile_repo.get_by_user(user.id)
        points = profile.points if profile else 0
        if points < live.points_required:
            raise ValidationError(f"insufficient points (need {live.points_required}, have {points})")
        booking = models.Booking(user_id=user.id, session_id=live.id, status=models.BookingStatus.CONFIRMED)
        self.session.add(booking)
        live.current_participants += 1
        self.session_repo.save(live)
        self.session.refresh(booking)
        if profile is not None and live.points_required:
            self.profile_repo.add_points(profile, -live.points_required)
        logger.info("user %s booked session %s", user.id, live.id)
        self.mailer.send_booking_confirmation(user.email, live.title, iso(live.scheduled_at), live.meeting_url)
        return booking

    def cancel(self, user: models.User, booking_id: str) -> models.Booking:
        booking = self.booking_repo.get(booking_id)
        if booking is None:
            raise NotFoundError("booking not found")
        if booking.user_id != user.id:
            raise PermissionDenied("you can only cancel your own bookings")
        if booking.status != models.BookingStatus.CONFIRMED:
            raise ValidationError("only confirmed bookings can be cancelled")
        booking.status = models.BookingStatus.CANCELLED
        live = self.session_repo.get(booking.session_id)
        if live is not None:
            live.current_participants = max(0, live.current_participants - 1)
            self.session.add(live)
        booking = self.booking_repo.save(booking)
        if live is not None and live.points_required:
            profile = self.profile_repo.get_by_user(user.id)
            if profile is not None:
                self.profile_repo.add_points(profile, live.points_required)
        logger.info("user %s cancelled booking %s", user.id, booking.id)
        return booking

    def my_bookings(self, user: models.User) -> list:
        out = []
        for b in self.booking_repo.list_for_user(user.id):
            out.append(booking_out(b, self.session_repo.get(b.session_id)))
        return out
