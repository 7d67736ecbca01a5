"""Course catalogue, enrollment and lesson progress endpoints."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..schemas import LessonCompleteIn, QuizSubmission
from ..serializers import course_out
from ..services.courses import CourseService

router = APIRouter(prefix="/courses", tags=["courses"])


@router.get("")
def list_courses(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Active courses; admins also see inactive ones."""
    return CourseService(db).list_courses(user)


@router.get("/my-enrollments")
def my_enrollments(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CourseService(db).my_enrollments(user)


@router.get("/lessons/{lesson_id}")
def get_lesson(lesson_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CourseService(db).get_lesson(user, lesson_id)


@router.post("/lessons/{lesson_id}/complete")
def complete_lesson(
    lesson_id: str,
    payload: LessonCompleteIn,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Mark a lesson completed and award its points.

    Reflection lessons need `reflection_content`; quiz lessons need a
    `quiz_score` of at least the lesson's passing score.
    """
    return CourseService(db).complete_lesson(user, lesson_id, payload.reflection_content, payload.quiz_score)


@router.post("/lessons/{lesson_id}/quiz")
def submit_quiz(
    lesson_id: str,
    submission: QuizSubmission,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Grade quiz answers server side; a passing result completes the lesson."""
    return CourseService(db).submit_quiz(user, lesson_id, submission.answers)


@router.get("/{course_id}")
def get_course(course_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return course_out(CourseService(db).get_course(user, course_id))


@router.get("/{course_id}/enrollment-status")
def enrollment_status(course_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return {"course_id": course_id, "is_enrolled": CourseService(db).is_enrolled(user, course_id)}


@router.post("/{course_id}/enroll", status_code=201)
def enroll(course_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    enrollment = CourseService(db).enroll(user, course_id)
    return {"id": enrollment.id, "course_id": enrollment.course_id, "user_id": enrollment.user_id}


@router.get("/{course_id}/lessons")
def course_lessons(course_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Lessons in order with the caller's progress and lock state."""
    return CourseService(db).lessons_with_progress(user, course_id)
