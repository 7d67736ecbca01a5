"""Course catalogue, enrollment, lesson progress and quiz grading."""

import logging
from typing import List, Optional

from sqlmodel import Session

from .. import models, repositories
from ..errors import ConflictError, NotFoundError, PermissionDenied, ValidationError
from ..serializers import course_out, lesson_out
from ..utils.dates import iso, utcnow
from .subscriptions import SubscriptionService

logger = logging.getLogger("thrive.courses")


def _correct_answer(question: dict):
    if "correct_answer" in question:
        return question["correct_answer"]
    return question.get("correctAnswer")


def grade_quiz(questions: List[dict], answers: List) -> dict:
    """Grade answers against quiz questions.

    Single choice questions store the correct option index; multiple
    choice questions store a list of indexes and only an exact set match
    counts. Returns the score as a rounded percentage.
    """
    if not questions:
        raise ValidationError("lesson has no quiz questions")
    if len(answers) != len(questions):
        raise ValidationError(f"expected {len(questions)} answers, got {len(answers)}")
    results = []
    correct_count = 0
    for idx, (q, given) in enumerate(zip(questions, answers)):
        expected = _correct_answer(q)
        if q.get("type") == "multiple" or isinstance(expected, list):
            expected_set = set(expected if isinstance(expected, list) else [expected])
            given_set = set(given if isinstance(given, list) else ([] if given is None else [given]))
            ok = given_set == expected_set
        else:
            ok = given is not None and not isinstance(given, list) and given == expected
        if ok:
            correct_count += 1
        results.append({"index": idx, "question": q.get("question"), "given": given, "correct": ok,
                        "correct_answer": expected})
    score = round(correct_count * 100 / len(questions))
    return {"score": score, "correct": correct_count, "total": len(questions), "results": results}


class CourseService:
    def __init__(self, session: Session):
        self.session = session
        self.course_repo = repositories.CourseRepository(session)
        self.lesson_repo = repositories.LessonRepository(session)
        self.keyword_repo = repositories.KeywordRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)
        self.progress_repo = repositories.ProgressRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)
        self.subscriptions = SubscriptionService(session)

    def _is_admin(self, user: models.User) -> bool:
        return user.role == models.UserRole.ADMIN

    def list_courses(self, user: models.User) -> list:
        return [course_out(c) for c in self.course_repo.list(include_inactive=self._is_admin(user))]

    def get_course(self, user: models.User, course_id: str) -> models.Course:
        course = self.course_repo.get(course_id)
        if course is None or (not course.is_active and not self._is_admin(user)):
            raise NotFoundError("course not found")
        return course

    def enroll(self, user: models.User, course_id: str) -> models.Enrollment:
        course = self.course_repo.get(course_id)
        if course is None or not course.is_active:
            raise NotFoundError("course not found or inactive")
        if self.enrollment_repo.get_for(user.id, course_id):
            raise ConflictError("already enrolled in this course")
        enrollment = self.enrollment_repo.create(models.Enrollment(user_id=user.id, course_id=course_id))
        logger.info("user %s enrolled in course %s", user.id, course_id)
        return enrollment

    def my_enrollments(self, user: models.User) -> list:
        out = []
        for e in self.enrollment_repo.list_for_user(user.id):
            course = self.course_repo.get(e.course_id)
            if course is None:
                continue
            out.append({"id": e.id, "course_id": e.course_id, "enrolled_at": iso(e.enrolled_at),
                        "course": course_out(course)})
        return out

    def is_enrolled(self, user: models.User, course_id: str) -> bool:
        return self.enrollment_repo.get_for(user.id, course_id) is not None

    def _requires_subscription(self, course: models.Course, lesson: models.Lesson, has_access: bool) -> bool:
        return lesson.order > course.free_lesson_count and not has_access

    def _lesson_payload(self, lesson: models.Lesson, progress: Optional[models.Progress],
                        locked: bool, needs_subscription: bool) -> dict:
        keywords = None
        if lesson.lesson_type == models.LessonType.KEYWORDS:
            keywords = self.keyword_repo.list_for_lesson(lesson.id)
        out = lesson_out(lesson, keywords)
        out["is_completed"] = bool(progress and progress.is_completed)
        out["completed_at"] = iso(progress.completed_at) if progress else None
        out["quiz_score"] = progress.quiz_score if progress else None
        out["is_locked"] = locked
        out["requires_subscription"] = needs_subscription
        return out

    def lessons_with_progress(self, user: models.User, course_id: str) -> list:
        course = self.get_course(user, course_id)
        lessons = self.lesson_repo.list_for_course(course_id)
        progress = self.progress_repo.map_for_course(user.id, course_id)
        has_access = self.subscriptions.has_access(user)
        out = []
        previous_done = True
        for lesson in lessons:
            p = progress.get(lesson.id)
            out.append(self._lesson_payload(lesson, p, not previous_done,
                                            self._requires_subscription(course, lesson, has_access)))
            previous_done = bool(p and p.is_completed)
        return out

    def get_lesson(self, user: models.User, lesson_id: str) -> dict:
        lesson = self.lesson_repo.get(lesson_id)
        if lesson is None:
            raise NotFoundError("lesson not found")
        for item in self.lessons_with_progress(user, lesson.course_id):
            if item["id"] == lesson_id:
                return item
        raise NotFoundError("lesson not found")

    def complete_lesson(self, user: models.User, lesson_id: str, reflection_content: Optional[str] = None,
                        quiz_score: Optional[int] = None) -> dict:
        lesson = self.lesson_repo.get(lesson_id)
        if lesson is None:
            raise NotFoundError("lesson not found")
        course = self.get_course(user, lesson.course_id)
        if self._requires_subscription(course, lesson, self.subscriptions.has_access(user)):
            raise PermissionDenied("an active subscription is required for this lesson")
        progress = self.progress_repo.get_for(user.id, lesson_id)
        if progress and progress.is_completed:
            raise ValidationError("lesson already completed")
        reflection = (reflection_content or "").strip()
        if lesson.requires_reflection and not reflection:
            raise ValidationError("a reflection is required to complete this lesson")
        if lesson.lesson_type == models.LessonType.QUIZ and lesson.passing_score is not None:
            if quiz_score is None or quiz_score < lesson.passing_score:
                raise ValidationError(f"a quiz score of at least {lesson.passing_score} is required")
        if progress is None:
            progress = models.Progress(user_id=user.id, lesson_id=lesson.id, course_id=lesson.course_id)
        progress.is_completed = True
        progress.completed_at = utcnow()
        progress.reflection_submitted = bool(reflection)
        progress.reflection_content = reflection or None
        progress.quiz_score = quiz_score
        progress = self.progress_repo.save(progress)
        profile = self.profile_repo.get_by_user(user.id)
        if profile is not None and lesson.points_reward:
            profile = self.profile_repo.add_points(profile, lesson.points_reward)
        logger.info("user %s completed lesson %s (+%d points)", user.id, lesson.id, lesson.points_reward)
        return {
            "lesson_id": lesson.id,
            "is_completed": True,
            "completed_at": iso(progress.completed_at),
            "quiz_score": progress.quiz_score,
            "points_awarded": lesson.points_reward,
            "total_points": profile.points if profile else None,
            "level": profile.level if profile else None,
        }

    def submit_quiz(self, user: models.User, lesson_id: str, answers: list) -> dict:
        """Grade a QUIZ lesson server side and complete it when passed."""
        lesson = self.lesson_repo.get(lesson_id)
        if lesson is None:
            raise NotFoundError("lesson not found")
        if lesson.lesson_type != models.LessonType.QUIZ:
            raise ValidationError("lesson is not a quiz")
        questions = (lesson.content_data or {}).get("questions") or []
        result = grade_quiz(questions, answers)
        passing = lesson.passing_score if lesson.passing_score is not None else 0
        result["passing_score"] = lesson.passing_score
        result["passed"] = result["score"] >= passing
        result["completion"] = None
        if result["passed"]:
            progress = self.progress_repo.get_for(user.id, lesson_id)
            if not (progress and progress.is_completed):
                result["completion"] = self.complete_lesson(user, lesson_id, quiz_score=result["score"])
        return result
