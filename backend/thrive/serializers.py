"""Convert models into the JSON shapes returned by the API."""

from typing import List, Optional

from . import models
from .utils.dates import iso


def user_out(user: models.User, profile: Optional[models.Profile] = None) -> dict:
    out = {
        "id": user.id,
        "email": user.email,
        "role": user.role.value,
        "is_active": user.is_active,
        "is_verified": user.is_verified,
        "created_at": iso(user.created_at),
    }
    if profile is not None:
        out["profile"] = profile_out(profile)
    return out


def profile_out(profile: models.Profile, public: bool = False) -> dict:
    """Profile fields; `public=True` hides points and badges."""
    out = {
        "id": profile.id,
        "user_id": profile.user_id,
        "name": profile.name,
        "bio": profile.bio,
        "profile_photo": profile.profile_photo,
        "language_level": profile.language_level.value,
        "level": profile.level,
        "created_at": iso(profile.created_at),
    }
    if not public:
        out["points"] = profile.points
        out["badges"] = list(profile.badges or [])
        out["updated_at"] = iso(profile.updated_at)
    return out


def course_out(course: models.Course) -> dict:
    return {
        "id": course.id,
        "title": course.title,
        "description": course.description,
        "type": course.type.value,
        "icon": course.icon,
        "is_active": course.is_active,
        "free_lesson_count": course.free_lesson_count,
        "created_at": iso(course.created_at),
        "updated_at": iso(course.updated_at),
    }


def keyword_out(kw: models.Keyword) -> dict:
    return {
        "id": kw.id,
        "english_text": kw.english_text,
        "japanese_text": kw.japanese_text,
        "english_audio_url": kw.english_audio_url,
        "japanese_audio_url": kw.japanese_audio_url,
        "order": kw.order,
    }


def lesson_out(lesson: models.Lesson, keywords: Optional[List[models.Keyword]] = None) -> dict:
    out = {
        "id": lesson.id,
        "course_id": lesson.course_id,
        "title": lesson.title,
        "description": lesson.description,
        "order": lesson.order,
        "lesson_type": lesson.lesson_type.value,
        "content_url": lesson.content_url,
        "content_data": lesson.content_data,
        "audio_files": list(lesson.audio_files or []),
        "resources": list(lesson.resources or []),
        "requires_reflection": lesson.requires_reflection,
        "points_reward": lesson.points_reward,
        "passing_score": lesson.passing_score,
    }
    if keywords is not None:
        out["keywords"] = [keyword_out(k) for k in keywords]
    return out


def session_out(session: models.LiveSession, host: Optional[models.User] = None,
                host_profile: Optional[models.Profile] = None) -> dict:
    out = {
        "id": session.id,
        "title": session.title,
        "description": session.description,
        "type": session.type.value,
        "host_id": session.host_id,
        "meeting_url": session.meeting_url,
        "location": session.location,
        "scheduled_at": iso(session.scheduled_at),
        "duration": session.duration,
        "max_participants": session.max_participants,
        "current_participants": session.current_participants,
        "spots_available": max(0, session.max_participants - session.current_participants),
        "points_required": session.points_required,
        "is_active": session.is_active,
        "is_full": session.is_full,
        "is_recurring": session.is_recurring,
        "recurring_parent_id": session.recurring_parent_id,
        "recurring_weeks": session.recurring_weeks,
    }
    if host is not None:
        out["host"] = {
            "id": host.id,
            "email": host.email,
            "name": host_profile.name if host_profile else None,
        }
        out["host_name"] = host_profile.name if host_profile else host.email
    return out


def booking_out(booking: models.Booking, session: Optional[models.LiveSession] = None) -> dict:
    out = {
        "id": booking.id,
        "user_id": booking.user_id,
        "session_id": booking.session_id,
        "status": booking.status.value,
        "created_at": iso(booking.created_at),
    }
    if session is not None:
        out["session"] = session_out(session)
    return out


def post_out(post: models.Post, author: Optional[models.Profile] = None, liked: Optional[bool] = None) -> dict:
    out = {
        "id": post.id,
        "user_id": post.user_id,
        "content": post.content,
        "media_urls": list(post.media_urls or []),
        "is_announcement": post.is_announcement,
        "likes_count": post.likes_count,
        "is_flagged": post.is_flagged,
        "created_at": iso(post.created_at),
        "author": {
            "user_id": post.user_id,
            "name": author.name if author else None,
            "profile_photo": author.profile_photo if author else None,
        },
    }
    if liked is not None:
        out["liked"] = liked
    return out


def subscription_out(sub: models.Subscription) -> dict:
    return {
        "id": sub.id,
        "user_id": sub.user_id,
        "plan": sub.plan.value,
        "status": sub.status.value,
        "stripe_customer_id": sub.stripe_customer_id,
        "stripe_subscription_id": sub.stripe_subscription_id,
        "current_period_start": iso(sub.current_period_start),
        "current_period_end": iso(sub.current_period_end),
        "created_at": iso(sub.created_at),
    }


def refresh_session_out(row: models.RefreshToken, now) -> dict:
    return {
        "id": row.id,
        "ip_address": row.ip_address,
        "user_agent": row.user_agent,
        "created_at": iso(row.created_at),
        "last_used_at": iso(row.last_used_at),
        "expires_at": iso(row.expires_at),
        "is_expired": row.expires_at <= now,
    }
