"""User search."""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..serializers import profile_out
from ..services.profiles import ProfileService

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/search")
def search_users(
    q: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(20, ge=1, le=50),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return ProfileService(db).search(q, limit)


@router.get("/profile/{user_id}")
def user_profile(user_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return profile_out(ProfileService(db).get_by_user_id(user_id), public=True)
