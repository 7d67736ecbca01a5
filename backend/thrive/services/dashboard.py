"""Learner dashboard: stats, course progress, activity and achievements."""

from sqlmodel import Session

from .. import models, repositories
from ..serializers import session_out
from ..utils.dates import iso, utcnow

ACHIEVEMENTS = [
    ("first-lesson", "First Steps", "Complete your first lesson", lambda s: s["lessons_completed"] >= 1),
    ("7-day-streak", "Dedicated Learner", "Complete 7 lessons", lambda s: s["lessons_completed"] >= 7),
    ("community-active", "Community Member", "Write 3 community posts", lambda s: s["posts"] >= 3),
    ("points-100", "Point Collector", "Earn 100 points", lambda s: s["points"] >= 100),
    ("points-500", "Point Master", "Earn 500 points", lambda s: s["points"] >= 500),
    ("level-5", "Rising Star", "Reach level 5", lambda s: s["level"] >= 5),
]

MAX_ACHIEVEMENTS = 5
MAX_ACTIVITY = 10


def unlocked_achievements(stats: dict) -> list:
    out = []
    for key, title, description, rule in ACHIEVEMENTS:
        if rule(stats):
            out.append({"id": key, "title": title, "description": description})
    return out[:MAX_ACHIEVEMENTS]


class DashboardService:
    def __init__(self, session: Session):
        self.session = session
        self.profile_repo = repositories.ProfileRepository(session)
        self.course_repo = repositories.CourseRepository(session)
        self.lesson_repo = repositories.LessonRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)
        self.progress_repo = repositories.ProgressRepository(session)
        self.post_repo = repositories.PostRepository(session)
        self.booking_repo = repositories.BookingRepository(session)
        self.session_repo = repositories.SessionRepository(session)

    def _enrolled_courses(self, user_id: str) -> list:
        courses = []
        for e in self.enrollment_repo.list_for_user(user_id):
            course = self.course_repo.get(e.course_id)
            if course is not None and course.is_active:
                courses.append(course)
        return courses

    def course_progress(self, user_id: str) -> list:
        out = []
        for course in self._enrolled_courses(user_id):
            total = len(self.lesson_repo.list_for_course(course.id))
            done = len(self.progress_repo.list_completed(user_id, [course.id]))
            out.append({
                "course_id": course.id,
                "title": course.title,
                "icon": course.icon,
                "completed_lessons": done,
                "total_lessons": total,
                "progress_percentage": round(done * 100 / total) if total else 0,
            })
        return out

    def learning_stats(self, user_id: str) -> dict:
        courses = self._enrolled_courses(user_id)
        course_ids = [c.id for c in courses]
        profile = self.profile_repo.get_by_user(user_id)
        return {
            "lessons_completed": len(self.progress_repo.list_completed(user_id)),
            "lessons_available": self.lesson_repo.count_for_courses(course_ids),
            "points": profile.points if profile else 0,
            "level": profile.level if profile else 1,
            "posts": self.post_repo.count_for_user(user_id),
        }

    def recent_activity(self, user_id: str) -> list:
        items = []
        for p in self.progress_repo.list_completed(user_id)[:MAX_ACTIVITY]:
            lesson = self.lesson_repo.get(p.lesson_id)
            title = lesson.title if lesson else "Lesson"
            items.append((p.completed_at, {"type": "lesson_completed", "title": f"Completed {title}",
                                           "lesson_id": p.lesson_id}))
            if lesson and lesson.points_reward:
                items.append((p.completed_at, {"type": "points_earned",
                                               "title": f"Earned {lesson.points_reward} points",
                                               "points": lesson.points_reward}))
        for post in self.post_repo.list_for_user(user_id, limit=MAX_ACTIVITY):
            items.append((post.created_at, {"type": "post_created", "title": "Posted in the community",
                                            "post_id": post.id}))
        for b in self.booking_repo.list_for_user(user_id)[:MAX_ACTIVITY]:
            if b.status != models.BookingStatus.CONFIRMED:
                continue
            live = self.session_repo.get(b.session_id)
            items.append((b.created_at, {"type": "session_booked",
                                         "title": f"Booked {live.title if live else 'a session'}",
                                         "session_id": b.session_id}))
        items.sort(key=lambda pair: pair[0], reverse=True)
        return [{**payload, "timestamp": iso(ts)} for ts, payload in items[:MAX_ACTIVITY]]

    def data(self, user: models.User) -> dict:
        profile = self.profile_repo.get_by_user(user.id)
        stats = self.learning_stats(user.id)
        upcoming = self.booking_repo.list_upcoming_with_sessions(user.id, utcnow())
        return {
            "user": {
                "id": user.id,
                "email": user.email,
                "name": profile.name if profile else None,
                "profile_photo": profile.profile_photo if profile else None,
                "language_level": profile.language_level.value if profile else None,
                "level": stats["level"],
                "points": stats["points"],
            },
            "stats": {
                "total_lessons_completed": stats["lessons_completed"],
                "total_lessons_available": stats["lessons_available"],
                "total_points": stats["points"],
                "community_posts": stats["posts"],
                "upcoming_sessions": len(upcoming),
            },
            "course_progress": self.course_progress(user.id),
            "recent_activity": self.recent_activity(user.id),
            "achievements": unlocked_achievements(stats),
            "upcoming_sessions": [session_out(live) for _, live in upcoming],
        }
