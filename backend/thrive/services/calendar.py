"""Calendar views over scheduled sessions."""

from datetime import date
from typing import Optional

from sqlmodel import Session

from .. import models, repositories
from ..errors import NotFoundError, ValidationError
from ..serializers import session_out
from ..utils.dates import day_range, iso, month_range, utcnow, week_range
from .booking import MAX_ACTIVE_BOOKINGS


class CalendarService:
    def __init__(self, session: Session):
        self.session = session
        self.session_repo = repositories.SessionRepository(session)
        self.booking_repo = repositories.BookingRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)
        self.user_repo = repositories.UserRepository(session)

    def _annotate(self, user: models.User, sessions: list) -> list:
        booked = self.booking_repo.booked_session_ids(user.id)
        now = utcnow()
        hosts = self.profile_repo.map_by_user(s.host_id for s in sessions if s.host_id)
        profile = self.profile_repo.get_by_user(user.id)
        points = profile.points if profile else 0
        active = self.booking_repo.count_active_for_user(user.id, now)
        out = []
        for s in sessions:
            item = session_out(s)
            host = hosts.get(s.host_id)
            item["host_name"] = host.name if host else None
            item["is_booked"] = s.id in booked
            item["can_book"] = (
                s.can_book(now)
                and s.id not in booked
                and active < MAX_ACTIVE_BOOKINGS
                and points >= s.points_required
            )
            out.append(item)
        return out

    def sessions_for_view(self, user: models.User, view: str = "month", year: Optional[int] = None,
                          month: Optional[int] = None, week: Optional[int] = None) -> dict:
        now = utcnow()
        year = year or now.year
        month = month or now.month
        try:
            if view == "week":
                start, end = week_range(year, month, week or 1)
            elif view == "month":
                start, end = month_range(year, month)
            else:
                raise ValidationError("view must be 'month' or 'week'")
        except ValueError as e:
            raise ValidationError(str(e))
        sessions = self.session_repo.list_between(start, end)
        return {
            "view": view,
            "start_date": iso(start),
            "end_date": iso(end),
            "sessions": self._annotate(user, sessions),
            "user_booking_count": self.booking_repo.count_active_for_user(user.id, now),
            "max_active_bookings": MAX_ACTIVE_BOOKINGS,
        }

    def sessions_for_day(self, user: models.User, day: date) -> list:
        start, end = day_range(day)
        return self._annotate(user, self.session_repo.list_between(start, end))

    def upcoming_bookings(self, user: models.User) -> list:
        out = []
        for booking, live in self.booking_repo.list_upcoming_with_sessions(user.id, utcnow()):
            out.append({
                "id": booking.id,
                "status": booking.status.value,
                "created_at": iso(booking.created_at),
                "session": session_out(live),
            })
        return out

    def attendees(self, session_id: str) -> list:
        if self.session_repo.get(session_id) is None:
            raise NotFoundError("session not found")
        bookings = self.booking_repo.list_confirmed_for_session(session_id)
        profiles = self.profile_repo.map_by_user(b.user_id for b in bookings)
        out = []
        for b in bookings:
            p = profiles.get(b.user_id)
            user = self.user_repo.get(b.user_id)
            out.append({
                "booking_id": b.id,
                "user_id": b.user_id,
                "email": user.email if user else None,
                "name": p.name if p else None,
                "profile_photo": p.profile_photo if p else None,
                "language_level": p.language_level.value if p else None,
                "booked_at": iso(b.created_at),
            })
        return out
