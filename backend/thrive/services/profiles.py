"""Profile editing, photo uploads, public profiles and user search."""

import logging
from typing import Optional

from sqlmodel import Session

from .. import models, repositories
from ..config import settings
from ..errors import NotFoundError, ValidationError
from ..serializers import profile_out
from ..utils.dates import utcnow
from .dashboard import DashboardService, unlocked_achievements
from .storage import PHOTO_TYPES, PhotoStorage, sniff_image_type

logger = logging.getLogger("thrive.profiles")


class ProfileService:
    def __init__(self, session: Session, storage: Optional[PhotoStorage] = None):
        self.session = session
        self.storage = storage or PhotoStorage()
        self.user_repo = repositories.UserRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)

    def get_own(self, user: models.User) -> models.Profile:
        profile = self.profile_repo.get_by_user(user.id)
        if profile is None:
            raise NotFoundError("profile not found")
        return profile

    def update(self, user: models.User, changes: dict) -> models.Profile:
        profile = self.get_own(user)
        for key in ("name", "bio", "language_level"):
            if key in changes and changes[key] is not None:
                setattr(profile, key, changes[key])
        return self.profile_repo.save(profile)

    def upload_photo(self, user: models.User, payload: bytes, content_type: Optional[str]) -> models.Profile:
        """Validate and store a new photo, replacing any previous one."""
        if len(payload) > settings.MAX_PHOTO_BYTES:
            raise ValidationError(f"photo must be at most {settings.MAX_PHOTO_BYTES // (1024 * 1024)}MB")
        if not payload:
            raise ValidationError("photo file is empty")
        if content_type not in PHOTO_TYPES:
            raise ValidationError("photo must be a JPEG, PNG, WebP or GIF image")
        sniffed = sniff_image_type(payload)
        if sniffed is None:
            raise ValidationError("file content is not a supported image")
        profile = self.get_own(user)
        old = profile.profile_photo
        profile.profile_photo = self.storage.save(user.id, payload, sniffed)
        profile = self.profile_repo.save(profile)
        self.storage.delete(old)
        return profile

    def delete_photo(self, user: models.User) -> models.Profile:
        profile = self.get_own(user)
        if not profile.profile_photo:
            raise ValidationError("no profile photo to delete")
        self.storage.delete(profile.profile_photo)
        profile.profile_photo = None
        return self.profile_repo.save(profile)

    def get_by_user_id(self, user_id: str) -> models.Profile:
        profile = self.profile_repo.get_by_user(user_id)
        if profile is None:
            raise NotFoundError("profile not found")
        return profile

    def public_profile(self, user_id: str) -> dict:
        """Profile plus aggregate learning stats for anonymous visitors."""
        user = self.user_repo.get(user_id)
        if user is None or not user.is_active:
            raise NotFoundError("profile not found")
        profile = self.get_by_user_id(user_id)
        dashboard = DashboardService(self.session)
        stats = dashboard.learning_stats(user_id)
        progress = dashboard.course_progress(user_id)
        now = utcnow()
        return {
            "profile": profile_out(profile, public=True),
            "stats": {
                "lessons_completed": stats["lessons_completed"],
                "lessons_available": stats["lessons_available"],
                "points": stats["points"],
                "level": stats["level"],
                "days_since_joining": max(0, (now - user.created_at).days),
                "courses_enrolled": len(progress),
                "courses_completed": sum(1 for c in progress if c["total_lessons"] and
                                         c["completed_lessons"] >= c["total_lessons"]),
                "community_posts": stats["posts"],
                "sessions_attended": repositories.BookingRepository(self.session).count_attended(user_id, now),
            },
            "achievements": unlocked_achievements(stats),
            "course_progress": progress,
        }

    def search(self, query: str, limit: int = 20) -> list:
        if not query or not query.strip():
            raise ValidationError("search query is required")
        return [profile_out(p, public=True) for p in self.profile_repo.search_by_name(query, limit)]
