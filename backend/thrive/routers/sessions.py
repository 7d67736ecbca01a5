"""Read-only session listings for learners."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..services.sessions import SessionService

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("/upcoming")
def upcoming_sessions(
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return SessionService(db).upcoming(limit)


@router.get("/range")
def sessions_in_range(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return SessionService(db).in_range(start_date, end_date)


@router.get("")
def list_sessions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    type: Optional[models.SessionType] = None,
    is_active: Optional[bool] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return SessionService(db).paginated(page, limit, session_type=type, is_active=is_active)


@router.get("/{session_id}")
def get_session_detail(session_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return SessionService(db).get_detail(session_id)
