"""Admin operations: users, moderation, content management, analytics.

Point adjustments and moderation actions are written to the admin
audit log (`thrive.utils.audit`).
"""

import logging
from datetime import timedelta
from typing import List, Optional

from sqlmodel import Session

from .. import models, repositories
from ..errors import NotFoundError, ValidationError
from ..serializers import course_out, keyword_out, lesson_out, post_out, user_out
from ..utils.audit import record_admin_event
from ..utils.dates import month_range, months_back, utcnow
from ..utils.keyword_csv import parse_keyword_csv
from .sessions import page_meta

logger = logging.getLogger("thrive.admin")

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


class AdminService:
    def __init__(self, session: Session, admin: models.User):
        self.session = session
        self.admin = admin
        self.user_repo = repositories.UserRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)
        self.post_repo = repositories.PostRepository(session)
        self.course_repo = repositories.CourseRepository(session)
        self.lesson_repo = repositories.LessonRepository(session)
        self.keyword_repo = repositories.KeywordRepository(session)
        self.progress_repo = repositories.ProgressRepository(session)
        self.payment_repo = repositories.PaymentRepository(session)

    # users

    def list_users(self, page: int = 1, limit: int = 20) -> dict:
        users, total = self.user_repo.list_paginated((page - 1) * limit, limit)
        profiles = self.profile_repo.map_by_user(u.id for u in users)
        return {"users": [user_out(u, profiles.get(u.id)) for u in users], **page_meta(total, page, limit)}

    def _user(self, user_id: str) -> models.User:
        user = self.user_repo.get(user_id)
        if user is None:
            raise NotFoundError("user not found")
        return user

    def set_user_status(self, user_id: str, is_active: bool) -> dict:
        user = self._user(user_id)
        if user.id == self.admin.id and not is_active:
            raise ValidationError("admins cannot deactivate themselves")
        user.is_active = is_active
        user = self.user_repo.save(user)
        if not is_active:
            repositories.RefreshTokenRepository(self.session).delete_for_user(user.id)
        record_admin_event("user_status", self.admin.id, user_id=user.id, is_active=is_active)
        return user_out(user, self.profile_repo.get_by_user(user.id))

    def adjust_points(self, user_id: str, points: int, reason: str) -> dict:
        user = self._user(user_id)
        profile = self.profile_repo.get_by_user(user.id)
        if profile is None:
            raise NotFoundError("profile not found")
        before = profile.points
        profile = self.profile_repo.add_points(profile, points)
        record_admin_event("points_adjusted", self.admin.id, user_id=user.id, delta=points,
                           before=before, after=profile.points, reason=reason)
        return {"user_id": user.id, "points": profile.points, "level": profile.level, "previous_points": before}

    # moderation

    def flagged_posts(self) -> list:
        posts = self.post_repo.list_flagged()
        authors = self.profile_repo.map_by_user(p.user_id for p in posts)
        return [post_out(p, authors.get(p.user_id)) for p in posts]

    def _post(self, post_id: str) -> models.Post:
        post = self.post_repo.get(post_id)
        if post is None:
            raise NotFoundError("post not found")
        return post

    def delete_post(self, post_id: str) -> None:
        post = self._post(post_id)
        author_id = post.user_id
        self.post_repo.delete(post)
        record_admin_event("post_deleted", self.admin.id, post_id=post_id, author_id=author_id)

    def unflag_post(self, post_id: str) -> dict:
        post = self._post(post_id)
        post.is_flagged = False
        post = self.post_repo.save(post)
        record_admin_event("post_unflagged", self.admin.id, post_id=post_id)
        return post_out(post, self.profile_repo.get_by_user(post.user_id))

    def announce(self, content: str) -> dict:
        post = self.post_repo.create(models.Post(user_id=self.admin.id, content=content.strip(), is_announcement=True))
        return post_out(post, self.profile_repo.get_by_user(self.admin.id))

    # courses and lessons

    def _course(self, course_id: str) -> models.Course:
        course = self.course_repo.get(course_id)
        if course is None:
            raise NotFoundError("course not found")
        return course

    def create_course(self, data: dict) -> dict:
        course = self.course_repo.create(models.Course(**data))
        logger.info("admin %s created course %s", self.admin.id, course.id)
        return course_out(course)

    def update_course(self, course_id: str, changes: dict) -> dict:
        course = self._course(course_id)
        for key, value in changes.items():
            setattr(course, key, value)
        return course_out(self.course_repo.save(course))

    def delete_course(self, course_id: str) -> None:
        """Delete a course; lessons, keywords, enrollments and progress cascade."""
        self.course_repo.delete(self._course(course_id))
        logger.info("admin %s deleted course %s", self.admin.id, course_id)

    def _lesson(self, lesson_id: str) -> models.Lesson:
        lesson = self.lesson_repo.get(lesson_id)
        if lesson is None:
            raise NotFoundError("lesson not found")
        return lesson

    def _keywords(self, items: Optional[List[dict]]) -> List[models.Keyword]:
        return [models.Keyword(**item) for item in (items or [])]

    def _check_lesson_content(self, lesson: models.Lesson) -> None:
        if lesson.lesson_type == models.LessonType.QUIZ:
            questions = (lesson.content_data or {}).get("questions")
            if not isinstance(questions, list) or not questions:
                raise ValidationError("quiz lessons need content_data.questions")
            for q in questions:
                options = q.get("options") if isinstance(q, dict) else None
                if not isinstance(options, list) or len(options) < 2:
                    raise ValidationError("every quiz question needs at least two options")

    def create_lesson(self, course_id: str, data: dict) -> dict:
        self._course(course_id)
        keywords = data.pop("keywords", None)
        if not data.get("order"):
            data["order"] = self.lesson_repo.next_order(course_id)
        lesson = models.Lesson(course_id=course_id, **data)
        self._check_lesson_content(lesson)
        lesson = self.lesson_repo.create(lesson)
        saved = []
        if lesson.lesson_type == models.LessonType.KEYWORDS:
            saved = self.keyword_repo.replace_for_lesson(lesson.id, self._keywords(keywords))
        return lesson_out(lesson, saved)

    def update_lesson(self, lesson_id: str, changes: dict) -> dict:
        lesson = self._lesson(lesson_id)
        keywords = changes.pop("keywords", None)
        for key, value in changes.items():
            setattr(lesson, key, value)
        self._check_lesson_content(lesson)
        lesson = self.lesson_repo.save(lesson)
        if keywords is not None:
            saved = self.keyword_repo.replace_for_lesson(lesson.id, self._keywords(keywords))
        else:
            saved = self.keyword_repo.list_for_lesson(lesson.id)
        return lesson_out(lesson, saved)

    def delete_lesson(self, lesson_id: str) -> None:
        self.lesson_repo.delete(self._lesson(lesson_id))

    def get_lesson(self, lesson_id: str) -> dict:
        lesson = self._lesson(lesson_id)
        return lesson_out(lesson, self.keyword_repo.list_for_lesson(lesson.id))

    def import_keywords(self, lesson_id: str, payload: bytes, replace: bool = False) -> dict:
        lesson = self._lesson(lesson_id)
        if lesson.lesson_type != models.LessonType.KEYWORDS:
            raise ValidationError("keywords can only be imported into KEYWORDS lessons")
        try:
            rows, errors = parse_keyword_csv(payload)
        except ValueError as e:
            raise ValidationError(str(e))
        keywords = self._keywords(rows)
        if replace:
            saved = self.keyword_repo.replace_for_lesson(lesson.id, keywords)
            created = len(saved)
        else:
            created = self.keyword_repo.append_to_lesson(lesson.id, keywords)
        logger.info("imported %d keywords into lesson %s", created, lesson.id)
        return {
            "created": created,
            "errors": errors,
            "keywords": [keyword_out(k) for k in self.keyword_repo.list_for_lesson(lesson.id)],
        }

    # analytics

    def analytics_overview(self) -> dict:
        now = utcnow()
        month_ago = now - timedelta(days=30)
        revenue = sum(p.amount for p in self.payment_repo.completed_between(month_ago, now + timedelta(seconds=1)))
        total_progress = self.progress_repo.count_all()
        completed = self.progress_repo.count_completed()
        return {
            "total_users": self.user_repo.count(),
            "active_users": self.user_repo.count(active_only=True),
            "new_users_last_30_days": self.user_repo.count(since=month_ago),
            "revenue_last_30_days": revenue,
            "lessons_completed_last_30_days": self.progress_repo.count_completed(since=month_ago),
            "completion_rate": round(completed * 100 / total_progress, 1) if total_progress else 0.0,
        }

    def analytics_revenue(self, months: int = 6) -> dict:
        now = utcnow()
        series = []
        for year, month in months_back(now, months):
            start, end = month_range(year, month)
            payments = self.payment_repo.completed_between(start, end)
            series.append({
                "month": f"{year:04d}-{month:02d}",
                "revenue": sum(p.amount for p in payments),
                "payments": len(payments),
            })
        return {"months": series, "total": sum(m["revenue"] for m in series)}

    def analytics_engagement(self) -> dict:
        now = utcnow()
        start = (now - timedelta(days=6)).replace(hour=0, minute=0, second=0, microsecond=0)
        end = now + timedelta(seconds=1)
        days = []
        for offset in range(7):
            day = start + timedelta(days=offset)
            days.append({"date": day.date().isoformat(), "day": WEEKDAYS[day.weekday()], "lessons": 0, "posts": 0})
        by_date = {d["date"]: d for d in days}
        for p in self.progress_repo.completed_between(start, end):
            bucket = by_date.get(p.completed_at.date().isoformat())
            if bucket:
                bucket["lessons"] += 1
        for post in self.post_repo.created_between(start, end):
            bucket = by_date.get(post.created_at.date().isoformat())
            if bucket:
                bucket["posts"] += 1
        return {"days": days}
