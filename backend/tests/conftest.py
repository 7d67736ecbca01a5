import json
import os
import tempfile
from datetime import timedelta
from pathlib import Path

# Point the app at a throwaway database before anything imports it.
_TMP = Path(tempfile.mkdtemp(prefix="thrive-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["UPLOAD_DIR"] = str(_TMP / "uploads")
os.environ["AUDIT_LOG_DIR"] = str(_TMP / "audit")
os.environ["LOGIN_RATE_LIMIT"] = "1000"
os.environ["PASSWORD_RESET_RATE_LIMIT"] = "1000"
os.environ.pop("SMTP_HOST", None)

import pytest
from sqlmodel import Session

from thrive import models, repositories
from thrive.database import create_db_and_tables, drop_db_and_tables, engine
from thrive.errors import NotFoundError, ValidationError
from thrive.main import app
from thrive.routers import auth as auth_router
from thrive.services.auth import create_access_token, hash_password
from thrive.services.payments import get_payment_gateway
from thrive.utils.dates import utcnow

PASSWORD = "Sakura2024!"


@pytest.fixture(autouse=True)
def reset_db():
    """Ensure every test starts from empty tables."""
    drop_db_and_tables()
    create_db_and_tables()
    auth_router._rate_limiter.reset()
    yield


@pytest.fixture
def db():
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(db):
    """Create a verified user with a profile; returns (user, auth headers)."""
    def _make(email="learner@example.com", role=models.UserRole.STUDENT, name="Learner", points=0,
              is_active=True, password=PASSWORD):
        user = repositories.UserRepository(db).create(models.User(
            email=email,
            password_hash=hash_password(password),
            role=role,
            is_active=is_active,
            is_verified=True,
        ))
        repositories.ProfileRepository(db).create(
            models.Profile(user_id=user.id, name=name, points=points, level=points // 100 + 1)
        )
        return user, {"Authorization": f"Bearer {create_access_token(user)}"}
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(email="admin@example.com", role=models.UserRole.ADMIN, name="Admin")


@pytest.fixture
def make_session(db):
    """Create a future session (defaults: 3 days ahead, 8 seats, free)."""
    def _make(**overrides):
        data = dict(title="Speaking Practice", scheduled_at=utcnow() + timedelta(days=3),
                    max_participants=8, points_required=0)
        data.update(overrides)
        return repositories.SessionRepository(db).create(models.LiveSession(**data))
    return _make


@pytest.fixture
def subscribe(db):
    def _subscribe(user, status=models.SubscriptionStatus.ACTIVE, days=30):
        now = utcnow()
        return repositories.SubscriptionRepository(db).create(models.Subscription(
            user_id=user.id,
            plan=models.SubscriptionPlan.MONTHLY,
            status=status,
            current_period_start=now,
            current_period_end=now + timedelta(days=days),
        ))
    return _subscribe


class FakeGateway:
    """Stands in for the Stripe-backed gateway; stores objects in dicts."""

    def __init__(self):
        self.intents = {}
        self.checkout_sessions = {}
        self.subscriptions = {}
        self.customers = {}
        self.created_checkouts = []

    def create_payment_intent(self, amount, currency, metadata, receipt_email=None):
        intent_id = f"pi_{len(self.intents) + 1}"
        intent = {"id": intent_id, "client_secret": f"{intent_id}_secret", "amount": amount,
                  "currency": currency, "metadata": dict(metadata), "receipt_email": receipt_email,
                  "status": "requires_payment_method"}
        self.intents[intent_id] = intent
        return intent

    def retrieve_payment_intent(self, intent_id):
        if intent_id not in self.intents:
            raise NotFoundError("payment intent not found")
        return self.intents[intent_id]

    def create_checkout_session(self, price_id, mode, success_url, cancel_url, metadata, customer_email=None):
        session_id = f"cs_{len(self.created_checkouts) + 1}"
        self.created_checkouts.append({"id": session_id, "price_id": price_id, "mode": mode,
                                       "metadata": dict(metadata), "customer_email": customer_email})
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def retrieve_checkout_session(self, session_id):
        if session_id not in self.checkout_sessions:
            raise NotFoundError("checkout session not found")
        return self.checkout_sessions[session_id]

    def retrieve_subscription(self, subscription_id):
        return self.subscriptions[subscription_id]

    def retrieve_customer(self, customer_id):
        return self.customers.get(customer_id, {"id": customer_id, "email": None})

    def end_trial(self, subscription_id):
        sub = dict(self.subscriptions[subscription_id])
        sub["status"] = "active"
        self.subscriptions[subscription_id] = sub
        return sub

    def create_portal_session(self, customer_id, return_url):
        return {"url": f"https://billing.stripe.test/{customer_id}"}

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise ValidationError("invalid webhook signature")
        return json.loads(payload)


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_payment_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_payment_gateway, None)
