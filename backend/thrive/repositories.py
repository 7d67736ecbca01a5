"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
profiles, courses, sessions, payments, ...). Repositories return
SQLModel objects and perform commits/refreshes where appropriate.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple
from sqlmodel import Session, select
from sqlalchemy import func, or_
from . import models
from .utils.dates import utcnow


class _BaseRepository:
    model = None

    def __init__(self, session: Session):
        self.session = session

    def get(self, obj_id: str):
        """Fetch a row by primary key or return `None`."""
        return self.session.get(self.model, obj_id)

    def create(self, obj):
        """Persist a new row and return the managed instance."""
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def save(self, obj):
        """Stamp `updated_at` and flush changes of an existing row."""
        obj.updated_at = utcnow()
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.commit()

    def _page(self, stmt, offset: int, limit: int, order_by) -> Tuple[list, int]:
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(stmt.order_by(*order_by).offset(offset).limit(limit)).all()
        return list(rows), int(total)


class UserRepository(_BaseRepository):
    """CRUD operations for `User` objects."""
    model = models.User

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email (case-insensitive) or `None`."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.strip().lower())
        return self.session.exec(stmt).first()

    def list_paginated(self, offset: int, limit: int) -> Tuple[List[models.User], int]:
        return self._page(select(models.User), offset, limit, [models.User.created_at.desc()])

    def count(self, active_only: bool = False, since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(models.User)
        if active_only:
            stmt = stmt.where(models.User.is_active == True)  # noqa: E712
        if since is not None:
            stmt = stmt.where(models.User.created_at >= since)
        return int(self.session.exec(stmt).one())


class ProfileRepository(_BaseRepository):
    model = models.Profile

    def get_by_user(self, user_id: str) -> Optional[models.Profile]:
        stmt = select(models.Profile).where(models.Profile.user_id == user_id)
        return self.session.exec(stmt).first()

    def map_by_user(self, user_ids: Iterable[str]) -> Dict[str, models.Profile]:
        """Return `{user_id: profile}` for the given ids in one query."""
        ids = list(set(user_ids))
        if not ids:
            return {}
        stmt = select(models.Profile).where(models.Profile.user_id.in_(ids))
        return {p.user_id: p for p in self.session.exec(stmt).all()}

    def search_by_name(self, query: str, limit: int = 20) -> List[models.Profile]:
        """Case-insensitive substring search over profile names of active users."""
        pattern = f"%{query.strip().lower()}%"
        stmt = (
            select(models.Profile)
            .join(models.User, models.User.id == models.Profile.user_id)
            .where(func.lower(models.Profile.name).like(pattern), models.User.is_active == True)  # noqa: E712
            .order_by(models.Profile.name)
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def add_points(self, profile: models.Profile, delta: int) -> models.Profile:
        """Apply a points delta, clamping at zero and recomputing the level."""
        profile.points = max(0, (profile.points or 0) + delta)
        profile.level = profile.points // 100 + 1
        return self.save(profile)


class VerificationCodeRepository(_BaseRepository):
    model = models.VerificationCode

    def latest_for_email(self, email: str) -> Optional[models.VerificationCode]:
        stmt = (
            select(models.VerificationCode)
            .where(models.VerificationCode.email == email.lower())
            .order_by(models.VerificationCode.created_at.desc())
        )
        return self.session.exec(stmt).first()

    def latest_verified(self, email: str) -> Optional[models.VerificationCode]:
        stmt = (
            select(models.VerificationCode)
            .where(models.VerificationCode.email == email.lower(), models.VerificationCode.verified == True)  # noqa: E712
            .order_by(models.VerificationCode.verified_at.desc())
        )
        return self.session.exec(stmt).first()

    def delete_unverified(self, email: str) -> None:
        """Drop pending codes so only the newest one can be used."""
        stmt = select(models.VerificationCode).where(
            models.VerificationCode.email == email.lower(),
            models.VerificationCode.verified == False,  # noqa: E712
        )
        for row in self.session.exec(stmt).all():
            self.session.delete(row)
        self.session.commit()


class RefreshTokenRepository(_BaseRepository):
    model = models.RefreshToken

    def get_by_token(self, token: str) -> Optional[models.RefreshToken]:
        stmt = select(models.RefreshToken).where(models.RefreshToken.token == token)
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: str) -> List[models.RefreshToken]:
        stmt = (
            select(models.RefreshToken)
            .where(models.RefreshToken.user_id == user_id)
            .order_by(models.RefreshToken.created_at.desc())
        )
        return list(self.session.exec(stmt).all())

    def delete_for_user(self, user_id: str) -> int:
        rows = self.list_for_user(user_id)
        for row in rows:
            self.session.delete(row)
        self.session.commit()
        return len(rows)


class CourseRepository(_BaseRepository):
    model = models.Course

    def list(self, include_inactive: bool = False) -> List[models.Course]:
        stmt = select(models.Course)
        if not include_inactive:
            stmt = stmt.where(models.Course.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.Course.created_at)).all())


class LessonRepository(_BaseRepository):
    model = models.Lesson

    def list_for_course(self, course_id: str) -> List[models.Lesson]:
        stmt = select(models.Lesson).where(models.Lesson.course_id == course_id).order_by(models.Lesson.order)
        return list(self.session.exec(stmt).all())

    def count_for_courses(self, course_ids: Iterable[str]) -> int:
        ids = list(course_ids)
        if not ids:
            return 0
        stmt = select(func.count()).select_from(models.Lesson).where(models.Lesson.course_id.in_(ids))
        return int(self.session.exec(stmt).one())

    def next_order(self, course_id: str) -> int:
        stmt = select(func.max(models.Lesson.order)).where(models.Lesson.course_id == course_id)
        current = self.session.exec(stmt).one()
        return (current or 0) + 1


class KeywordRepository(_BaseRepository):
    model = models.Keyword

    def list_for_lesson(self, lesson_id: str) -> List[models.Keyword]:
        stmt = select(models.Keyword).where(models.Keyword.lesson_id == lesson_id).order_by(models.Keyword.order)
        return list(self.session.exec(stmt).all())

    def replace_for_lesson(self, lesson_id: str, keywords: List[models.Keyword]) -> List[models.Keyword]:
        """Delete the lesson's keywords and insert `keywords` in order."""
        for old in self.list_for_lesson(lesson_id):
            self.session.delete(old)
        for idx, kw in enumerate(keywords):
            kw.lesson_id = lesson_id
            kw.order = idx
            self.session.add(kw)
        self.session.commit()
        return self.list_for_lesson(lesson_id)

    def append_to_lesson(self, lesson_id: str, keywords: List[models.Keyword]) -> int:
        start = len(self.list_for_lesson(lesson_id))
        for idx, kw in enumerate(keywords):
            kw.lesson_id = lesson_id
            kw.order = start + idx
            self.session.add(kw)
        self.session.commit()
        return len(keywords)


class EnrollmentRepository(_BaseRepository):
    model = models.Enrollment

    def get_for(self, user_id: str, course_id: str) -> Optional[models.Enrollment]:
        stmt = select(models.Enrollment).where(
            models.Enrollment.user_id == user_id, models.Enrollment.course_id == course_id
        )
        return self.session.exec(stmt).first()

    def list_for_user(self, user_id: str) -> List[models.Enrollment]:
        stmt = (
            select(models.Enrollment)
            .where(models.Enrollment.user_id == user_id)
            .order_by(models.Enrollment.enrolled_at.desc())
        )
        return list(self.session.exec(stmt).all())


class ProgressRepository(_BaseRepository):
    model = models.Progress

    def get_for(self, user_id: str, lesson_id: str) -> Optional[models.Progress]:
        stmt = select(models.Progress).where(
            models.Progress.user_id == user_id, models.Progress.lesson_id == lesson_id
        )
        return self.session.exec(stmt).first()

    def map_for_course(self, user_id: str, course_id: str) -> Dict[str, models.Progress]:
        stmt = select(models.Progress).where(
            models.Progress.user_id == user_id, models.Progress.course_id == course_id
        )
        return {p.lesson_id: p for p in self.session.exec(stmt).all()}

    def list_completed(self, user_id: str, course_ids: Optional[Iterable[str]] = None) -> List[models.Progress]:
        stmt = select(models.Progress).where(
            models.Progress.user_id == user_id, models.Progress.is_completed == True  # noqa: E712
        )
        if course_ids is not None:
            stmt = stmt.where(models.Progress.course_id.in_(list(course_ids)))
        return list(self.session.exec(stmt.order_by(models.Progress.completed_at.desc())).all())

    def count_completed(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(models.Progress).where(models.Progress.is_completed == True)  # noqa: E712
        if since is not None:
            stmt = stmt.where(models.Progress.completed_at >= since)
        return int(self.session.exec(stmt).one())

    def count_all(self) -> int:
        return int(self.session.exec(select(func.count()).select_from(models.Progress)).one())

    def completed_between(self, start: datetime, end: datetime) -> List[models.Progress]:
        stmt = select(models.Progress).where(
            models.Progress.is_completed == True,  # noqa: E712
            models.Progress.completed_at >= start,
            models.Progress.completed_at < end,
        )
        return list(self.session.exec(stmt).all())


class PostRepository(_BaseRepository):
    model = models.Post

    def list_paginated(self, offset: int, limit: int) -> Tuple[List[models.Post], int]:
        return self._page(select(models.Post), offset, limit, [models.Post.created_at.desc()])

    def list_flagged(self) -> List[models.Post]:
        stmt = select(models.Post).where(models.Post.is_flagged == True).order_by(models.Post.created_at.desc())  # noqa: E712
        return list(self.session.exec(stmt).all())

    def list_for_user(self, user_id: str, limit: Optional[int] = None) -> List[models.Post]:
        stmt = select(models.Post).where(models.Post.user_id == user_id).order_by(models.Post.created_at.desc())
        if limit:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt).all())

    def count_for_user(self, user_id: str) -> int:
        stmt = select(func.count()).select_from(models.Post).where(models.Post.user_id == user_id)
        return int(self.session.exec(stmt).one())

    def created_between(self, start: datetime, end: datetime) -> List[models.Post]:
        stmt = select(models.Post).where(models.Post.created_at >= start, models.Post.created_at < end)
        return list(self.session.exec(stmt).all())

    def add_like(self, post: models.Post, user_id: str) -> bool:
        """Record a like once per user; returns False when already liked."""
        existing = self.session.exec(
            select(models.PostLike).where(models.PostLike.post_id == post.id, models.PostLike.user_id == user_id)
        ).first()
        if existing:
            return False
        self.session.add(models.PostLike(post_id=post.id, user_id=user_id))
        post.likes_count = (post.likes_count or 0) + 1
        self.save(post)
        return True


class SessionRepository(_BaseRepository):
    """Queries over scheduled `LiveSession` rows."""
    model = models.LiveSession

    def list_between(self, start: datetime, end: datetime, active_only: bool = True) -> List[models.LiveSession]:
        stmt = select(models.LiveSession).where(
            models.LiveSession.scheduled_at >= start, models.LiveSession.scheduled_at < end
        )
        if active_only:
            stmt = stmt.where(models.LiveSession.is_active == True)  # noqa: E712
        return list(self.session.exec(stmt.order_by(models.LiveSession.scheduled_at)).all())

    def list_upcoming(self, now: datetime, limit: int) -> List[models.LiveSession]:
        stmt = (
            select(models.LiveSession)
            .where(models.LiveSession.scheduled_at > now, models.LiveSession.is_active == True)  # noqa: E712
            .order_by(models.LiveSession.scheduled_at)
            .limit(limit)
        )
        return list(self.session.exec(stmt).all())

    def list_paginated(
        self,
        offset: int,
        limit: int,
        session_type: Optional[models.SessionType] = None,
        is_active: Optional[bool] = None,
        is_recurring: Optional[bool] = None,
    ) -> Tuple[List[models.LiveSession], int]:
        stmt = select(models.LiveSession)
        if session_type is not None:
            stmt = stmt.where(models.LiveSession.type == session_type)
        if is_active is not None:
            stmt = stmt.where(models.LiveSession.is_active == is_active)
        if is_recurring is not None:
            stmt = stmt.where(models.LiveSession.is_recurring == is_recurring)
        return self._page(stmt, offset, limit, [models.LiveSession.scheduled_at.desc()])

    def list_series(self, parent_id: str) -> List[models.LiveSession]:
        """Return the parent session and every copy that points at it."""
        stmt = (
            select(models.LiveSession)
            .where(or_(models.LiveSession.id == parent_id, models.LiveSession.recurring_parent_id == parent_id))
            .order_by(models.LiveSession.scheduled_at)
        )
        return list(self.session.exec(stmt).all())

    def create_many(self, sessions: List[models.LiveSession]) -> List[models.LiveSession]:
        for s in sessions:
            self.session.add(s)
        self.session.commit()
        for s in sessions:
            self.session.refresh(s)
        return sessions


class BookingRepository(_BaseRepository):
    model = models.Booking

    def get_confirmed(self, user_id: str, session_id: str) -> Optional[models.Booking]:
        stmt = select(models.Booking).where(
            models.Booking.user_id == user_id,
            models.Booking.session_id == session_id,
            models.Booking.status == models.BookingStatus.CONFIRMED,
        )
        return self.session.exec(stmt).first()

    def count_active_for_user(self, user_id: str, now: datetime) -> int:
        """Confirmed bookings for sessions that have not started yet."""
        stmt = (
            select(func.count())
            .select_from(models.Booking)
            .join(models.LiveSession, models.LiveSession.id == models.Booking.session_id)
            .where(
                models.Booking.user_id == user_id,
                models.Booking.status == models.BookingStatus.CONFIRMED,
                models.LiveSession.scheduled_at > now,
            )
        )
        return int(self.session.exec(stmt).one())

    def list_for_user(self, user_id: str) -> List[models.Booking]:
        stmt = select(models.Booking).where(models.Booking.user_id == user_id).order_by(models.Booking.created_at.desc())
        return list(self.session.exec(stmt).all())

    def list_upcoming_with_sessions(self, user_id: str, now: datetime) -> List[Tuple[models.Booking, models.LiveSession]]:
        stmt = (
            select(models.Booking, models.LiveSession)
            .join(models.LiveSession, models.LiveSession.id == models.Booking.session_id)
            .where(
                models.Booking.user_id == user_id,
                models.Booking.status == models.BookingStatus.CONFIRMED,
                models.LiveSession.scheduled_at > now,
            )
            .order_by(models.LiveSession.scheduled_at)
        )
        return [(b, s) for b, s in self.session.exec(stmt).all()]

    def booked_session_ids(self, user_id: str) -> set:
        stmt = select(models.Booking.session_id).where(
            models.Booking.user_id == user_id, models.Booking.status == models.BookingStatus.CONFIRMED
        )
        return set(self.session.exec(stmt).all())

    def list_confirmed_for_session(self, session_id: str) -> List[models.Booking]:
        stmt = (
            select(models.Booking)
            .where(models.Booking.session_id == session_id, models.Booking.status == models.BookingStatus.CONFIRMED)
            .order_by(models.Booking.created_at)
        )
        return list(self.session.exec(stmt).all())

    def count_attended(self, user_id: str, now: datetime) -> int:
        """Bookings that were completed or whose session already took place."""
        stmt = (
            select(func.count())
            .select_from(models.Booking)
            .join(models.LiveSession, models.LiveSession.id == models.Booking.session_id)
            .where(
                models.Booking.user_id == user_id,
                or_(
                    models.Booking.status == models.BookingStatus.COMPLETED,
                    (models.Booking.status == models.BookingStatus.CONFIRMED) & (models.LiveSession.scheduled_at <= now),
                ),
            )
        )
        return int(self.session.exec(stmt).one())


class PaymentRepository(_BaseRepository):
    model = models.Payment

    def get_by_intent(self, intent_id: str) -> Optional[models.Payment]:
        stmt = select(models.Payment).where(models.Payment.stripe_payment_intent_id == intent_id)
        return self.session.exec(stmt).first()

    def completed_between(self, start: datetime, end: datetime) -> List[models.Payment]:
        stmt = select(models.Payment).where(
            models.Payment.status == models.PaymentStatus.COMPLETED,
            models.Payment.created_at >= start,
            models.Payment.created_at < end,
        )
        return list(self.session.exec(stmt).all())


class SubscriptionRepository(_BaseRepository):
    model = models.Subscription

    def list_for_user(self, user_id: str) -> List[models.Subscription]:
        stmt = (
            select(models.Subscription)
            .where(models.Subscription.user_id == user_id)
            .order_by(models.Subscription.created_at.desc())
        )
        return list(self.session.exec(stmt).all())

    def get_by_stripe_id(self, stripe_subscription_id: str) -> Optional[models.Subscription]:
        stmt = select(models.Subscription).where(models.Subscription.stripe_subscription_id == stripe_subscription_id)
        return self.session.exec(stmt).first()

    def get_by_customer(self, customer_id: str) -> Optional[models.Subscription]:
        stmt = (
            select(models.Subscription)
            .where(models.Subscription.stripe_customer_id == customer_id)
            .order_by(models.Subscription.created_at.desc())
        )
        return self.session.exec(stmt).first()

    def get_by_payment_intent(self, intent_id: str) -> Optional[models.Subscription]:
        stmt = select(models.Subscription).where(models.Subscription.stripe_payment_intent_id == intent_id)
        return self.session.exec(stmt).first()
