"""Listing and admin management of speaking sessions and events.

Recurring sessions are stored as independent weekly copies; the first
occurrence is the parent and the others reference it.
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlmodel import Session

from .. import models, repositories
from ..errors import NotFoundError, ValidationError
from ..serializers import session_out
from ..utils.dates import iso, to_utc_naive, utcnow

logger = logging.getLogger("thrive.sessions")


def page_meta(total: int, page: int, limit: int) -> dict:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


class SessionService:
    def __init__(self, session: Session):
        self.session = session
        self.session_repo = repositories.SessionRepository(session)
        self.user_repo = repositories.UserRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)

    def _with_host(self, live: models.LiveSession) -> dict:
        host = self.user_repo.get(live.host_id) if live.host_id else None
        profile = self.profile_repo.get_by_user(host.id) if host else None
        return session_out(live, host, profile)

    def get(self, session_id: str) -> models.LiveSession:
        live = self.session_repo.get(session_id)
        if live is None:
            raise NotFoundError("session not found")
        return live

    def get_detail(self, session_id: str) -> dict:
        return self._with_host(self.get(session_id))

    def upcoming(self, limit: int = 10) -> list:
        return [self._with_host(s) for s in self.session_repo.list_upcoming(utcnow(), limit)]

    def paginated(self, page: int = 1, limit: int = 10, session_type: Optional[models.SessionType] = None,
                  is_active: Optional[bool] = None, is_recurring: Optional[bool] = None) -> dict:
        rows, total = self.session_repo.list_paginated(
            (page - 1) * limit, limit, session_type=session_type, is_active=is_active, is_recurring=is_recurring
        )
        return {"sessions": [self._with_host(s) for s in rows], **page_meta(total, page, limit)}

    def in_range(self, start: Optional[datetime], end: Optional[datetime]) -> list:
        if start is None or end is None:
            raise ValidationError("start_date and end_date are required")
        start, end = to_utc_naive(start), to_utc_naive(end)
        if end < start:
            raise ValidationError("end_date must not be before start_date")
        return [self._with_host(s) for s in self.session_repo.list_between(start, end)]

    # admin

    def _check_host(self, host_id: Optional[str]) -> None:
        if host_id and self.user_repo.get(host_id) is None:
            raise ValidationError("host user not found")

    def create(self, data: dict, admin: models.User) -> list:
        """Create one session, or `recurring_weeks` weekly copies.

        Returns the created sessions in schedule order.
        """
        host_id = data.get("host_id") or admin.id
        self._check_host(host_id)
        scheduled_at = to_utc_naive(data["scheduled_at"])
        weeks = data.get("recurring_weeks") if data.get("is_recurring") else None
        base = dict(
            title=data["title"],
            description=data.get("description") or "",
            type=data.get("type") or models.SessionType.SPEAKING,
            host_id=host_id,
            meeting_url=data.get("meeting_url"),
            location=data.get("location"),
            duration=data.get("duration") or 60,
            max_participants=data.get("max_participants") or 8,
            points_required=data.get("points_required") or 0,
            is_active=data.get("is_active", True),
        )
        parent = self.session_repo.create(models.LiveSession(
            scheduled_at=scheduled_at, is_recurring=bool(weeks), recurring_weeks=weeks, **base
        ))
        created = [parent]
        if weeks:
            copies = [
                models.LiveSession(
                    scheduled_at=scheduled_at + timedelta(weeks=i),
                    is_recurring=True,
                    recurring_weeks=weeks,
                    recurring_parent_id=parent.id,
                    **base,
                )
                for i in range(1, weeks)
            ]
            created.extend(self.session_repo.create_many(copies))
        logger.info("admin %s created %d session(s) starting %s", admin.id, len(created), iso(scheduled_at))
        return created

    def update(self, session_id: str, changes: dict) -> models.LiveSession:
        live = self.get(session_id)
        if "host_id" in changes:
            self._check_host(changes["host_id"])
        if "max_participants" in changes and changes["max_participants"] < live.current_participants:
            raise ValidationError("max_participants cannot be below current participants")
        for key, value in changes.items():
            if key == "scheduled_at" and value is not None:
                value = to_utc_naive(value)
            setattr(live, key, value)
        return self.session_repo.save(live)

    def delete(self, session_id: str, delete_all_recurring: bool = False) -> int:
        """Delete a session, or its whole weekly series; returns the count."""
        live = self.get(session_id)
        if delete_all_recurring and live.is_recurring:
            parent_id = live.recurring_parent_id or live.id
            series = self.session_repo.list_series(parent_id)
            for s in series:
                self.session.delete(s)
            self.session.commit()
            return len(series)
        if live.recurring_parent_id is None and live.is_recurring:
            # promote the next copy so the series keeps a parent
            rest = [s for s in self.session_repo.list_series(live.id) if s.id != live.id]
            if rest:
                new_parent = rest[0]
                new_parent.recurring_parent_id = None
                for s in rest[1:]:
                    s.recurring_parent_id = new_parent.id
                    self.session.add(s)
                self.session.add(new_parent)
        self.session_repo.delete(live)
        return 1

    def recurring_details(self, session_id: str) -> dict:
        live = self.get(session_id)
        if not live.is_recurring:
            return {"is_recurring": False, "session": self._with_host(live), "series": []}
        parent_id = live.recurring_parent_id or live.id
        series = self.session_repo.list_series(parent_id)
        return {
            "is_recurring": True,
            "parent_id": parent_id,
            "recurring_weeks": live.recurring_weeks,
            "total_sessions": len(series),
            "session": self._with_host(live),
            "series": [session_out(s) for s in series],
        }
