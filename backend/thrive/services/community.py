"""Community feed: posts, likes and moderation flags."""

import logging

from sqlmodel import Session

from .. import models, repositories
from ..errors import NotFoundError, PermissionDenied
from ..serializers import post_out
from .sessions import page_meta

logger = logging.getLogger("thrive.community")


class CommunityService:
    def __init__(self, session: Session):
        self.session = session
        self.post_repo = repositories.PostRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)

    def _get(self, post_id: str) -> models.Post:
        post = self.post_repo.get(post_id)
        if post is None:
            raise NotFoundError("post not found")
        return post

    def create_post(self, user: models.User, content: str, media_urls=None, is_announcement: bool = False) -> dict:
        if is_announcement and user.role != models.UserRole.ADMIN:
            raise PermissionDenied("only admins can post announcements")
        post = self.post_repo.create(models.Post(
            user_id=user.id,
            content=content,
            media_urls=list(media_urls or []),
            is_announcement=is_announcement,
        ))
        logger.info("user %s created post %s", user.id, post.id)
        return post_out(post, self.profile_repo.get_by_user(user.id))

    def list_posts(self, page: int = 1, limit: int = 20) -> dict:
        posts, total = self.post_repo.list_paginated((page - 1) * limit, limit)
        authors = self.profile_repo.map_by_user(p.user_id for p in posts)
        meta = page_meta(total, page, limit)
        return {
            "posts": [post_out(p, authors.get(p.user_id)) for p in posts],
            "total": meta["total"],
            "page": meta["page"],
            "total_pages": meta["total_pages"],
        }

    def like(self, user: models.User, post_id: str) -> dict:
        post = self._get(post_id)
        added = self.post_repo.add_like(post, user.id)
        return {"post_id": post.id, "likes_count": post.likes_count, "liked": True, "already_liked": not added}

    def flag(self, user: models.User, post_id: str) -> dict:
        post = self._get(post_id)
        if not post.is_flagged:
            post.is_flagged = True
            self.post_repo.save(post)
            logger.info("post %s flagged by user %s", post.id, user.id)
        return {"post_id": post.id, "is_flagged": True}
