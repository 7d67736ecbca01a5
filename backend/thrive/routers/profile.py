"""Profile endpoints for the signed-in user plus the public profile page."""

from fastapi import APIRouter, Depends, File, UploadFile
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..config import settings
from ..database import get_session
from ..schemas import ProfileUpdateIn
from ..serializers import profile_out
from ..services.profiles import ProfileService

router = APIRouter(prefix="/profile", tags=["profile"])
public_router = APIRouter(prefix="/public/profile", tags=["profile"])


@router.get("/me")
def get_my_profile(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return profile_out(ProfileService(db).get_own(user))


@router.put("/me")
def update_my_profile(payload: ProfileUpdateIn, db: Session = Depends(get_session),
                      user: models.User = Depends(get_current_user)):
    changes = payload.model_dump(exclude_unset=True)
    return profile_out(ProfileService(db).update(user, changes))


@router.post("/me/photo")
def upload_photo(photo: UploadFile = File(...), db: Session = Depends(get_session),
                 user: models.User = Depends(get_current_user)):
    """Upload a JPEG, PNG, WebP or GIF photo of at most 5MB."""
    payload = photo.file.read(settings.MAX_PHOTO_BYTES + 1)
    return profile_out(ProfileService(db).upload_photo(user, payload, photo.content_type))


@router.delete("/me/photo")
def delete_photo(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return profile_out(ProfileService(db).delete_photo(user))


@router.get("/{user_id}")
def get_profile(user_id: str, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return profile_out(ProfileService(db).get_by_user_id(user_id), public=True)


@public_router.get("/{user_id}")
def get_public_profile(user_id: str, db: Session = Depends(get_session)):
    """No authentication: profile, learning stats and achievements."""
    return ProfileService(db).public_profile(user_id)
