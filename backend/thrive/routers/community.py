"""Community feed endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..schemas import PostIn
from ..services.community import CommunityService

router = APIRouter(prefix="/community", tags=["community"])


@router.post("/posts", status_code=201)
def create_post(payload: PostIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CommunityService(db).create_post(user, payload.content, payload.media_urls, payload.is_announcement)


@router.get("/posts")
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    return CommunityService(db).list_posts(page, limit)


@router.post("/posts/{post_id}/like")
def like_post(post_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return CommunityService(db).like(user, post_id)


@router.post("/posts/{post_id}/flag")
def flag_post(post_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Report a post to the moderators."""
    return CommunityService(db).flag(user, post_id)
