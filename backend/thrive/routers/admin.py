"""Admin endpoints: users, moderation, content, sessions and analytics.

Every route requires an ADMIN account.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlmodel import Session

from .. import models
from ..auth import require_admin
from ..database import get_session
from ..schemas import (
    AnnouncementIn,
    CourseIn,
    CourseUpdateIn,
    LessonIn,
    LessonUpdateIn,
    PointsAdjustIn,
    SessionIn,
    SessionUpdateIn,
    UserStatusIn,
)
from ..serializers import session_out
from ..services.admin import AdminService
from ..services.sessions import SessionService
from ..utils.audit import read_admin_events

router = APIRouter(prefix="/admin", tags=["admin"])

MAX_CSV_BYTES = 1024 * 1024


# users

@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    return AdminService(db, admin).list_users(page, limit)


@router.put("/users/{user_id}/status")
def set_user_status(user_id: str, payload: UserStatusIn, db: Session = Depends(get_session),
                    admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).set_user_status(user_id, payload.is_active)


@router.post("/users/{user_id}/points")
def adjust_points(user_id: str, payload: PointsAdjustIn, db: Session = Depends(get_session),
                  admin: models.User = Depends(require_admin)):
    """Award (positive) or deduct (negative) points; recorded in the audit log."""
    return AdminService(db, admin).adjust_points(user_id, payload.points, payload.reason)


@router.get("/audit")
def audit_log(limit: int = Query(100, ge=1, le=1000), action: Optional[str] = None,
              admin: models.User = Depends(require_admin)):
    return read_admin_events(limit=limit, action=action)


# moderation

@router.get("/posts/flagged")
def flagged_posts(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).flagged_posts()


@router.delete("/posts/{post_id}")
def delete_post(post_id: str, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    AdminService(db, admin).delete_post(post_id)
    return {"deleted": True, "post_id": post_id}


@router.post("/posts/{post_id}/unflag")
def unflag_post(post_id: str, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).unflag_post(post_id)


@router.post("/announcements", status_code=201)
def create_announcement(payload: AnnouncementIn, db: Session = Depends(get_session),
                        admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).announce(payload.content)


# courses and lessons

@router.post("/courses", status_code=201)
def create_course(payload: CourseIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).create_course(payload.model_dump())


@router.put("/courses/{course_id}")
def update_course(course_id: str, payload: CourseUpdateIn, db: Session = Depends(get_session),
                  admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).update_course(course_id, payload.model_dump(exclude_unset=True))


@router.delete("/courses/{course_id}")
def delete_course(course_id: str, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    AdminService(db, admin).delete_course(course_id)
    return {"deleted": True, "course_id": course_id}


@router.post("/courses/{course_id}/lessons", status_code=201)
def create_lesson(course_id: str, payload: LessonIn, db: Session = Depends(get_session),
                  admin: models.User = Depends(require_admin)):
    """Create a lesson; KEYWORDS lessons may include their keyword list."""
    return AdminService(db, admin).create_lesson(course_id, payload.model_dump())


@router.get("/lessons/{lesson_id}")
def get_lesson(lesson_id: str, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).get_lesson(lesson_id)


@router.put("/lessons/{lesson_id}")
def update_lesson(lesson_id: str, payload: LessonUpdateIn, db: Session = Depends(get_session),
                  admin: models.User = Depends(require_admin)):
    """Update a lesson; a `keywords` list replaces the existing keywords."""
    return AdminService(db, admin).update_lesson(lesson_id, payload.model_dump(exclude_unset=True))


@router.delete("/lessons/{lesson_id}")
def delete_lesson(lesson_id: str, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    AdminService(db, admin).delete_lesson(lesson_id)
    return {"deleted": True, "lesson_id": lesson_id}


@router.post("/lessons/{lesson_id}/keywords/import")
def import_keywords(
    lesson_id: str,
    file: UploadFile = File(...),
    replace: bool = False,
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    """Import keywords from a CSV with Japanese/English (+ audio URL) columns."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="no file")
    content = file.file.read(MAX_CSV_BYTES + 1)
    if len(content) > MAX_CSV_BYTES:
        raise HTTPException(status_code=400, detail="file too large")
    return AdminService(db, admin).import_keywords(lesson_id, content, replace=replace)


# sessions

@router.post("/sessions", status_code=201)
def create_session(payload: SessionIn, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    """Create a session, or a weekly series when `is_recurring` is set."""
    created = SessionService(db).create(payload.model_dump(), admin)
    return {"sessions": [session_out(s) for s in created], "count": len(created)}


@router.get("/sessions/paginated")
def paginated_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    type: Optional[models.SessionType] = None,
    is_active: Optional[bool] = None,
    is_recurring: Optional[bool] = None,
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    return SessionService(db).paginated(page, limit, session_type=type, is_active=is_active,
                                        is_recurring=is_recurring)


@router.get("/sessions/{session_id}/recurring-details")
def recurring_details(session_id: str, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return SessionService(db).recurring_details(session_id)


@router.put("/sessions/{session_id}")
def update_session(session_id: str, payload: SessionUpdateIn, db: Session = Depends(get_session),
                   admin: models.User = Depends(require_admin)):
    return session_out(SessionService(db).update(session_id, payload.model_dump(exclude_unset=True)))


@router.delete("/sessions/{session_id}")
def delete_session(
    session_id: str,
    delete_all_recurring: bool = False,
    db: Session = Depends(get_session),
    admin: models.User = Depends(require_admin),
):
    deleted = SessionService(db).delete(session_id, delete_all_recurring)
    return {"deleted": deleted}


# analytics

@router.get("/analytics/overview")
def analytics_overview(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).analytics_overview()


@router.get("/analytics/revenue")
def analytics_revenue(months: int = Query(6, ge=1, le=24), db: Session = Depends(get_session),
                      admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).analytics_revenue(months)


@router.get("/analytics/engagement")
def analytics_engagement(db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    return AdminService(db, admin).analytics_engagement()
