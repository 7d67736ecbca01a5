"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Responses are plain dicts built in
`serializers`.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .models import CourseType, LanguageLevel, LessonType, SessionType


def _not_null(value):
    # partial updates may omit these fields but may not clear them
    if value is None:
        raise ValueError("may not be null")
    return value


class EmailIn(BaseModel):
    """Payload carrying only an email (verification codes, forgot password)."""
    email: EmailStr


class VerifyEmailIn(BaseModel):
    email: EmailStr
    code: str = Field(min_length=6, max_length=6)


class CompleteRegistrationIn(BaseModel):
    """Final registration step after email verification and payment."""
    email: EmailStr
    name: str = Field(min_length=1, max_length=100)
    password: str
    stripe_payment_intent_id: str = Field(min_length=1)


class LoginIn(BaseModel):
    email: EmailStr
    password: str


class ResetPasswordIn(BaseModel):
    token: str
    new_password: str


class LessonCompleteIn(BaseModel):
    reflection_content: Optional[str] = None
    quiz_score: Optional[int] = Field(default=None, ge=0, le=100)


class QuizSubmission(BaseModel):
    """One answer per question, in question order.

    Single choice answers are an option index, multiple choice answers a
    list of indexes; `None` marks a skipped question.
    """
    answers: List[Union[int, List[int], None]]


class PostIn(BaseModel):
    content: str = Field(max_length=5000)
    media_urls: List[str] = Field(default_factory=list)
    is_announcement: bool = False

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("content must not be empty")
        return v.strip()


class BookingIn(BaseModel):
    session_id: str


class PaymentIntentIn(BaseModel):
    amount: int = Field(default=5000, gt=0)
    currency: str = "jpy"
    email: Optional[EmailStr] = None


class CheckoutSessionIn(BaseModel):
    price_id: str
    mode: Literal["payment", "subscription"] = "subscription"
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)


class VerifyCheckoutIn(BaseModel):
    session_id: str


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    bio: Optional[str] = Field(default=None, max_length=500)
    language_level: Optional[LanguageLevel] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("name must not be blank")
        return v.strip() if v is not None else v


class UserStatusIn(BaseModel):
    is_active: bool


class PointsAdjustIn(BaseModel):
    """Positive values award points, negative values deduct them."""
    points: int
    reason: str = Field(min_length=1, max_length=500)


class AnnouncementIn(BaseModel):
    content: str = Field(min_length=1, max_length=5000)


class CourseIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    type: CourseType
    icon: str = "📚"
    is_active: bool = True
    free_lesson_count: int = Field(default=2, ge=0)


class CourseUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    type: Optional[CourseType] = None
    icon: Optional[str] = None
    is_active: Optional[bool] = None
    free_lesson_count: Optional[int] = Field(default=None, ge=0)

    _required = field_validator(
        "title", "description", "type", "icon", "is_active", "free_lesson_count",
    )(_not_null)


class KeywordIn(BaseModel):
    english_text: str = Field(min_length=1)
    japanese_text: str = Field(min_length=1)
    english_audio_url: Optional[str] = None
    japanese_audio_url: Optional[str] = None


class LessonIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    order: Optional[int] = Field(default=None, ge=1)
    lesson_type: LessonType = LessonType.VIDEO
    content_url: Optional[str] = None
    content_data: Optional[dict] = None
    audio_files: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    requires_reflection: bool = False
    points_reward: int = Field(default=0, ge=0)
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    keywords: Optional[List[KeywordIn]] = None


class LessonUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    order: Optional[int] = Field(default=None, ge=1)
    lesson_type: Optional[LessonType] = None
    content_url: Optional[str] = None
    content_data: Optional[dict] = None
    audio_files: Optional[List[str]] = None
    resources: Optional[List[str]] = None
    requires_reflection: Optional[bool] = None
    points_reward: Optional[int] = Field(default=None, ge=0)
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    keywords: Optional[List[KeywordIn]] = None

    _required = field_validator(
        "title", "description", "order", "lesson_type", "audio_files", "resources",
        "requires_reflection", "points_reward",
    )(_not_null)


class SessionIn(BaseModel):
    """Admin payload for creating a session, optionally as a weekly series."""
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    type: SessionType = SessionType.SPEAKING
    host_id: Optional[str] = None
    meeting_url: Optional[str] = None
    location: Optional[str] = None
    scheduled_at: datetime
    duration: int = Field(default=60, ge=15)
    max_participants: int = Field(default=8, ge=1)
    points_required: int = Field(default=0, ge=0)
    is_active: bool = True
    is_recurring: bool = False
    recurring_weeks: Optional[int] = Field(default=None, ge=2, le=52)

    @model_validator(mode="after")
    def _recurring_needs_weeks(self):
        if self.is_recurring and self.recurring_weeks is None:
            raise ValueError("recurring_weeks is required for recurring sessions")
        return self


class SessionUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    type: Optional[SessionType] = None
    host_id: Optional[str] = None
    meeting_url: Optional[str] = None
    location: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    duration: Optional[int] = Field(default=None, ge=15)
    max_participants: Optional[int] = Field(default=None, ge=1)
    points_required: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None

    _required = field_validator(
        "title", "description", "type", "scheduled_at", "duration", "max_participants",
        "points_required", "is_active",
    )(_not_null)
