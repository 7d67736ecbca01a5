"""Subscription status checks used for gating paid content."""

from sqlmodel import Session

from .. import models, repositories
from ..serializers import subscription_out
from ..utils.dates import utcnow


class SubscriptionService:
    def __init__(self, session: Session):
        self.session = session
        self.sub_repo = repositories.SubscriptionRepository(session)

    def has_access(self, user: models.User) -> bool:
        """Admins always have access; everyone else needs a live subscription."""
        if user.role == models.UserRole.ADMIN:
            return True
        now = utcnow()
        return any(s.is_active_at(now) for s in self.sub_repo.list_for_user(user.id))

    def check(self, user: models.User) -> dict:
        subs = self.sub_repo.list_for_user(user.id)
        now = utcnow()
        active = [s for s in subs if s.is_active_at(now)]
        is_admin = user.role == models.UserRole.ADMIN
        if active:
            status = active[0].status.value
        elif subs:
            status = subs[0].status.value
        else:
            status = None
        return {
            "has_active_subscription": is_admin or bool(active),
            "has_trialing_subscription": any(s.status == models.SubscriptionStatus.TRIALING for s in active),
            "has_any_subscription": bool(subs),
            "status": "active" if is_admin and not active else status,
            "subscriptions": [subscription_out(s) for s in subs],
        }

    def list_for_user(self, user: models.User) -> list:
        return [subscription_out(s) for s in self.sub_repo.list_for_user(user.id)]
