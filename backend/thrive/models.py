"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Ids are opaque hex strings. Timestamps are naive UTC; datetime fields
declare `sa_type=DateTime` explicitly since newer SQLModel releases map
bare `datetime` to a column that rejects naive values. JSON columns
hold lists/dicts and are always reassigned, never mutated in place.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, Column, DateTime, Text, UniqueConstraint
from sqlmodel import SQLModel, Field

from .utils.dates import utcnow


def new_id() -> str:
    return uuid.uuid4().hex


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    INSTRUCTOR = "INSTRUCTOR"
    STUDENT = "STUDENT"


class LanguageLevel(str, Enum):
    N5 = "N5"
    N4 = "N4"
    N3 = "N3"
    N2 = "N2"
    N1 = "N1"


class CourseType(str, Enum):
    JAPAN_IN_CONTEXT = "JAPAN_IN_CONTEXT"
    JLPT_IN_CONTEXT = "JLPT_IN_CONTEXT"


class LessonType(str, Enum):
    VIDEO = "VIDEO"
    PDF = "PDF"
    KEYWORDS = "KEYWORDS"
    QUIZ = "QUIZ"
    SLIDES = "SLIDES"


class SessionType(str, Enum):
    SPEAKING = "SPEAKING"
    EVENT = "EVENT"


class BookingStatus(str, Enum):
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SubscriptionPlan(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ONE_TIME = "one-time"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    UNPAID = "unpaid"
    TRIALING = "trialing"


class TimestampedModel(SQLModel):
    id: str = Field(default_factory=new_id, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class User(TimestampedModel, table=True):
    """A registered account.

    `password_hash` holds a passlib hash; plaintext is never stored.
    """
    __tablename__ = "users"
    email: str = Field(index=True, unique=True, nullable=False)
    password_hash: str
    role: UserRole = Field(default=UserRole.STUDENT)
    is_active: bool = True
    is_verified: bool = False


class Profile(TimestampedModel, table=True):
    """Public-facing learner profile, one per user."""
    __tablename__ = "profiles"
    user_id: str = Field(foreign_key="users.id", unique=True, index=True, ondelete="CASCADE")
    name: str
    bio: Optional[str] = Field(default=None, sa_column=Column(Text))
    profile_photo: Optional[str] = None
    language_level: LanguageLevel = Field(default=LanguageLevel.N5)
    points: int = 0
    badges: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    level: int = 1


class VerificationCode(TimestampedModel, table=True):
    __tablename__ = "verification_codes"
    email: str = Field(index=True)
    code: str
    verified: bool = False
    verified_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    expires_at: datetime = Field(sa_type=DateTime)


class RefreshToken(TimestampedModel, table=True):
    """A stored refresh token; one row per signed-in device."""
    __tablename__ = "refresh_tokens"
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    token: str = Field(unique=True, index=True)
    expires_at: datetime = Field(sa_type=DateTime)
    last_used_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class Course(TimestampedModel, table=True):
    __tablename__ = "courses"
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    type: CourseType
    icon: str = "📚"
    is_active: bool = True
    free_lesson_count: int = 2


class Lesson(TimestampedModel, table=True):
    """A lesson inside a course.

    `content_data` carries type specific content; for QUIZ lessons it is
    `{"questions": [{"question", "options", "correct_answer", "type"}]}`.
    """
    __tablename__ = "lessons"
    course_id: str = Field(foreign_key="courses.id", index=True, ondelete="CASCADE")
    title: str
    description: str = ""
    order: int = 1
    lesson_type: LessonType = Field(default=LessonType.VIDEO)
    content_url: Optional[str] = None
    content_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    audio_files: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    resources: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    requires_reflection: bool = False
    points_reward: int = 0
    passing_score: Optional[int] = None


class Keyword(TimestampedModel, table=True):
    """Vocabulary pair attached to a KEYWORDS lesson."""
    __tablename__ = "keywords"
    lesson_id: str = Field(foreign_key="lessons.id", index=True, ondelete="CASCADE")
    english_text: str
    japanese_text: str
    english_audio_url: Optional[str] = None
    japanese_audio_url: Optional[str] = None
    order: int = 0


class Enrollment(TimestampedModel, table=True):
    __tablename__ = "enrollments"
    __table_args__ = (UniqueConstraint("user_id", "course_id"),)
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    course_id: str = Field(foreign_key="courses.id", index=True, ondelete="CASCADE")
    enrolled_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Progress(TimestampedModel, table=True):
    """Per user, per lesson completion record."""
    __tablename__ = "progress"
    __table_args__ = (UniqueConstraint("user_id", "lesson_id"),)
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    lesson_id: str = Field(foreign_key="lessons.id", index=True, ondelete="CASCADE")
    course_id: str = Field(foreign_key="courses.id", index=True, ondelete="CASCADE")
    is_completed: bool = False
    completed_at: Optional[datetime] = Field(default=None, sa_type=DateTime)
    reflection_submitted: bool = False
    reflection_content: Optional[str] = Field(default=None, sa_column=Column(Text))
    quiz_score: Optional[int] = None


class Post(TimestampedModel, table=True):
    __tablename__ = "posts"
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    content: str = Field(sa_column=Column(Text, nullable=False))
    media_urls: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    is_announcement: bool = False
    likes_count: int = 0
    is_flagged: bool = False


class PostLike(TimestampedModel, table=True):
    __tablename__ = "post_likes"
    __table_args__ = (UniqueConstraint("post_id", "user_id"),)
    post_id: str = Field(foreign_key="posts.id", index=True, ondelete="CASCADE")
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")


class LiveSession(TimestampedModel, table=True):
    """A scheduled speaking session or event that users can book.

    `duration` is in minutes. Recurring copies point at the first
    occurrence through `recurring_parent_id`.
    """
    __tablename__ = "sessions"
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    type: SessionType = Field(default=SessionType.SPEAKING)
    host_id: Optional[str] = Field(default=None, foreign_key="users.id", ondelete="SET NULL")
    meeting_url: Optional[str] = None
    location: Optional[str] = None
    scheduled_at: datetime = Field(index=True, sa_type=DateTime)
    duration: int = 60
    max_participants: int = 8
    current_participants: int = 0
    points_required: int = 0
    is_active: bool = True
    is_recurring: bool = False
    recurring_parent_id: Optional[str] = Field(default=None, index=True)
    recurring_weeks: Optional[int] = None

    @property
    def is_full(self) -> bool:
        return self.current_participants >= self.max_participants

    def can_book(self, now: datetime) -> bool:
        return self.is_active and not self.is_full and self.scheduled_at > now


class Booking(TimestampedModel, table=True):
    __tablename__ = "bookings"
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    session_id: str = Field(foreign_key="sessions.id", index=True, ondelete="CASCADE")
    status: BookingStatus = Field(default=BookingStatus.CONFIRMED)


class Payment(TimestampedModel, table=True):
    __tablename__ = "payments"
    email: str = Field(index=True)
    stripe_payment_intent_id: str = Field(unique=True, index=True)
    amount: int
    currency: str = "jpy"
    status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    # "metadata" is reserved on declarative classes
    payment_metadata: Optional[dict] = Field(default=None, sa_column=Column("metadata", JSON))


class Subscription(TimestampedModel, table=True):
    __tablename__ = "subscriptions"
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = Field(default=None, index=True)
    stripe_payment_intent_id: Optional[str] = None
    plan: SubscriptionPlan = Field(default=SubscriptionPlan.MONTHLY)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)
    current_period_start: Optional[datetime] = Field(default=None, sa_type=DateTime)
    current_period_end: Optional[datetime] = Field(default=None, sa_type=DateTime)

    def is_active_at(self, now: datetime) -> bool:
        if self.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING):
            return False
        return self.current_period_end is not None and self.current_period_end > now
