"""Subscription status endpoints."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from .. import models
from ..auth import get_current_user
from ..database import get_session
from ..services.subscriptions import SubscriptionService

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("/check")
def check_subscription(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return SubscriptionService(db).check(user)


@router.get("/my-subscriptions")
def my_subscriptions(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return SubscriptionService(db).list_for_user(user)
