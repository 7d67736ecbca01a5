"""Stripe integration: payment intents, checkout, portal and webhooks.

`PaymentGateway` is the only place that talks to the Stripe SDK; it
returns plain dicts so the rest of the service can be exercised with a
fake gateway. `PaymentService` records payments and keeps subscriptions
in sync with webhook events.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import stripe
from sqlmodel import Session

from .. import models, repositories
from ..config import settings
from ..errors import NotFoundError, PaymentError, ValidationError
from ..utils.dates import utcnow

logger = logging.getLogger("thrive.payments")

ONE_TIME_ACCESS = timedelta(days=365 * 100)

STRIPE_STATUS_MAP = {
    "active": models.SubscriptionStatus.ACTIVE,
    "canceled": models.SubscriptionStatus.CANCELED,
    "incomplete": models.SubscriptionStatus.UNPAID,
    "incomplete_expired": models.SubscriptionStatus.CANCELED,
    "past_due": models.SubscriptionStatus.PAST_DUE,
    "trialing": models.SubscriptionStatus.TRIALING,
    "unpaid": models.SubscriptionStatus.UNPAID,
    "paused": models.SubscriptionStatus.CANCELED,
}


def map_stripe_status(status: str) -> models.SubscriptionStatus:
    return STRIPE_STATUS_MAP.get(status or "", models.SubscriptionStatus.UNPAID)


def _to_dict(obj) -> dict:
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def _from_timestamp(ts) -> Optional[datetime]:
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).replace(tzinfo=None)


class PaymentGateway:
    """Thin wrapper over the Stripe SDK."""

    def __init__(self, api_key: str = None, webhook_secret: str = None):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET

    def _call(self, what: str, fn, *args, **kwargs) -> dict:
        if not self.api_key:
            raise PaymentError("payments are not configured", status_code=503)
        try:
            return _to_dict(fn(*args, api_key=self.api_key, **kwargs))
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                raise NotFoundError(f"{what} not found")
            logger.warning("stripe rejected %s: %s", what, e)
            raise PaymentError(str(getattr(e, "user_message", None) or e))
        except stripe.StripeError as e:
            logger.error("stripe call failed for %s: %s", what, e)
            raise PaymentError("payment provider error", status_code=502)

    def create_payment_intent(self, amount: int, currency: str, metadata: dict, receipt_email: str = None) -> dict:
        return self._call(
            "payment intent",
            stripe.PaymentIntent.create,
            amount=amount,
            currency=currency,
            metadata=metadata,
            receipt_email=receipt_email,
            automatic_payment_methods={"enabled": True},
        )

    def retrieve_payment_intent(self, intent_id: str) -> dict:
        return self._call("payment intent", stripe.PaymentIntent.retrieve, intent_id)

    def create_checkout_session(self, price_id: str, mode: str, success_url: str, cancel_url: str,
                                metadata: dict, customer_email: str = None) -> dict:
        params = dict(
            mode=mode,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )
        if customer_email:
            params["customer_email"] = customer_email
        if mode == "subscription":
            params["subscription_data"] = {"metadata": metadata}
        else:
            params["payment_intent_data"] = {"metadata": metadata}
        return self._call("checkout session", stripe.checkout.Session.create, **params)

    def retrieve_checkout_session(self, session_id: str) -> dict:
        return self._call("checkout session", stripe.checkout.Session.retrieve, session_id)

    def retrieve_subscription(self, subscription_id: str) -> dict:
        return self._call("subscription", stripe.Subscription.retrieve, subscription_id)

    def retrieve_customer(self, customer_id: str) -> dict:
        return self._call("customer", stripe.Customer.retrieve, customer_id)

    def end_trial(self, subscription_id: str) -> dict:
        return self._call("subscription", stripe.Subscription.modify, subscription_id, trial_end="now")

    def create_portal_session(self, customer_id: str, return_url: str) -> dict:
        return self._call(
            "billing portal session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )

    def construct_event(self, payload: bytes, signature: str) -> dict:
        """Verify the webhook signature and return the event as a dict."""
        if not self.webhook_secret:
            raise PaymentError("webhook secret is not configured", status_code=503)
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            raise ValidationError("invalid webhook payload")
        except stripe.SignatureVerificationError:
            raise ValidationError("invalid webhook signature")
        return _to_dict(event)


gateway = PaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency returning the process-wide gateway."""
    return gateway


class PaymentService:
    """Record payments and apply Stripe webhook events."""

    def __init__(self, session: Session, gateway: PaymentGateway):
        self.session = session
        self.gateway = gateway
        self.payment_repo = repositories.PaymentRepository(session)
        self.sub_repo = repositories.SubscriptionRepository(session)
        self.user_repo = repositories.UserRepository(session)

    # payments

    def record_payment(self, intent_id: str, email: str, amount: int, currency: str,
                       status: models.PaymentStatus, metadata: Optional[dict] = None) -> models.Payment:
        """Insert or update the payment row for `intent_id`.

        A COMPLETED payment is never downgraded by a later event.
        """
        existing = self.payment_repo.get_by_intent(intent_id)
        if existing:
            if existing.status != models.PaymentStatus.COMPLETED:
                existing.status = status
            if metadata:
                existing.payment_metadata = {**(existing.payment_metadata or {}), **metadata}
            if email and not existing.email:
                existing.email = email.lower()
            return self.payment_repo.save(existing)
        payment = models.Payment(
            email=(email or "").lower(),
            stripe_payment_intent_id=intent_id,
            amount=int(amount or 0),
            currency=(currency or "jpy").lower(),
            status=status,
            payment_metadata=dict(metadata or {}),
        )
        logger.info("payment recorded intent=%s status=%s", intent_id, status.value)
        return self.payment_repo.create(payment)

    def create_payment_intent(self, amount: int, currency: str, email: str, user: Optional[models.User]) -> dict:
        metadata = {"email": email}
        if user is not None:
            metadata["user_id"] = user.id
        intent = self.gateway.create_payment_intent(amount, currency, metadata, receipt_email=email)
        self.record_payment(intent["id"], email, amount, currency, models.PaymentStatus.PENDING, metadata)
        return {"client_secret": intent.get("client_secret"), "payment_intent_id": intent["id"]}

    def create_checkout_session(self, price_id: str, mode: str, success_url: str, cancel_url: str,
                                email: str, user: Optional[models.User], metadata: dict) -> dict:
        meta = {k: str(v) for k, v in (metadata or {}).items()}
        meta["email"] = email
        if user is not None:
            meta["user_id"] = user.id
        plan = self.plan_for_price(price_id, None)
        meta.setdefault("plan", plan.value)
        success = success_url or f"{settings.FRONTEND_URL}/payment-success?session_id={{CHECKOUT_SESSION_ID}}"
        cancel = cancel_url or f"{settings.FRONTEND_URL}/subscription"
        created = self.gateway.create_checkout_session(price_id, mode, success, cancel, meta, customer_email=email)
        logger.info("checkout session created id=%s mode=%s", created.get("id"), mode)
        return {"session_id": created["id"], "url": created.get("url")}

    def verify_checkout_session(self, session_id: str) -> dict:
        """Look up a checkout session and record its payment once paid.

        Subscription checkouts carry no payment intent; their session id is
        used as the payment reference instead.
        """
        cs = self.gateway.retrieve_checkout_session(session_id)
        metadata = dict(cs.get("metadata") or {})
        email = (cs.get("customer_details") or {}).get("email") or cs.get("customer_email") or metadata.get("email")
        reference = cs.get("payment_intent") or cs.get("id")
        if cs.get("subscription"):
            metadata["subscription_id"] = cs["subscription"]
        if cs.get("customer"):
            metadata["customer_id"] = cs["customer"]
        metadata["mode"] = cs.get("mode") or "payment"
        paid = cs.get("payment_status") in ("paid", "no_payment_required")
        if paid and reference:
            self.record_payment(reference, email, cs.get("amount_total") or 0, cs.get("currency") or "jpy",
                                models.PaymentStatus.COMPLETED, metadata)
            user_id = metadata.get("user_id")
            user = self.user_repo.get(user_id) if user_id else None
            if user is not None:
                self._apply_checkout_to_user(user, cs, metadata, reference)
        return {
            "status": cs.get("payment_status"),
            "payment_intent_id": reference,
            "customer_email": email,
            "metadata": metadata,
        }

    def confirm_intent_completed(self, intent_id: str, email: str) -> models.Payment:
        """Return a COMPLETED payment for `intent_id`, asking Stripe if needed."""
        payment = self.payment_repo.get_by_intent(intent_id)
        if payment and payment.status == models.PaymentStatus.COMPLETED:
            if payment.email and payment.email.lower() != email.lower():
                raise ValidationError("payment belongs to a different email")
            return payment
        intent = self.gateway.retrieve_payment_intent(intent_id)
        if intent.get("status") != "succeeded":
            raise ValidationError("payment has not been completed")
        intent_email = (intent.get("metadata") or {}).get("email") or intent.get("receipt_email")
        if intent_email and intent_email.lower() != email.lower():
            raise ValidationError("payment belongs to a different email")
        return self.record_payment(intent_id, email, intent.get("amount") or 0, intent.get("currency") or "jpy",
                                   models.PaymentStatus.COMPLETED, dict(intent.get("metadata") or {}))

    # subscriptions

    def plan_for_price(self, price_id: Optional[str], interval: Optional[str]) -> models.SubscriptionPlan:
        if price_id:
            if price_id == settings.STRIPE_MONTHLY_PRICE_ID:
                return models.SubscriptionPlan.MONTHLY
            if price_id == settings.STRIPE_YEARLY_PRICE_ID:
                return models.SubscriptionPlan.YEARLY
            if price_id == settings.STRIPE_ONE_TIME_PRICE_ID:
                return models.SubscriptionPlan.ONE_TIME
        if interval == "year":
            return models.SubscriptionPlan.YEARLY
        return models.SubscriptionPlan.MONTHLY

    def _plan_from_stripe(self, stripe_sub: dict) -> models.SubscriptionPlan:
        items = ((stripe_sub.get("items") or {}).get("data") or [])
        price = (items[0].get("price") or {}) if items else {}
        interval = (price.get("recurring") or {}).get("interval")
        return self.plan_for_price(price.get("id"), interval)

    def _period(self, stripe_sub: dict):
        start = stripe_sub.get("current_period_start")
        end = stripe_sub.get("current_period_end")
        items = ((stripe_sub.get("items") or {}).get("data") or [])
        if (not start or not end) and items:
            # newer API versions moved the period onto subscription items
            start = start or items[0].get("current_period_start")
            end = end or items[0].get("current_period_end")
        return _from_timestamp(start), _from_timestamp(end)

    def _user_for_stripe(self, metadata: dict, customer_id: Optional[str], email: Optional[str] = None):
        user_id = (metadata or {}).get("user_id")
        if user_id:
            user = self.user_repo.get(user_id)
            if user:
                return user
        mail = email or (metadata or {}).get("email")
        if mail:
            user = self.user_repo.get_by_email(mail)
            if user:
                return user
        if customer_id:
            existing = self.sub_repo.get_by_customer(customer_id)
            if existing:
                return self.user_repo.get(existing.user_id)
            customer = self.gateway.retrieve_customer(customer_id)
            if customer.get("email"):
                return self.user_repo.get_by_email(customer["email"])
        return None

    def upsert_from_stripe(self, user: models.User, stripe_sub: dict) -> models.Subscription:
        """Create or update the local row mirroring a Stripe subscription."""
        start, end = self._period(stripe_sub)
        row = self.sub_repo.get_by_stripe_id(stripe_sub["id"])
        if row is None:
            row = models.Subscription(user_id=user.id, stripe_subscription_id=stripe_sub["id"])
        row.stripe_customer_id = stripe_sub.get("customer") or row.stripe_customer_id
        row.plan = self._plan_from_stripe(stripe_sub)
        row.status = map_stripe_status(stripe_sub.get("status"))
        row.current_period_start = start or row.current_period_start
        row.current_period_end = end or row.current_period_end
        logger.info("subscription %s for user %s is %s", stripe_sub["id"], user.id, row.status.value)
        return self.sub_repo.save(row)

    def grant_one_time_access(self, user: models.User, intent_id: str, customer_id: Optional[str] = None) -> models.Subscription:
        """Create the lifetime subscription bought with a one-time payment."""
        existing = self.sub_repo.get_by_payment_intent(intent_id)
        if existing:
            return existing
        now = utcnow()
        row = models.Subscription(
            user_id=user.id,
            stripe_customer_id=customer_id,
            stripe_payment_intent_id=intent_id,
            plan=models.SubscriptionPlan.ONE_TIME,
            status=models.SubscriptionStatus.ACTIVE,
            current_period_start=now,
            current_period_end=now + ONE_TIME_ACCESS,
        )
        logger.info("one-time access granted to user %s via %s", user.id, intent_id)
        return self.sub_repo.create(row)

    def attach_registration_payment(self, user: models.User, payment: models.Payment) -> Optional[models.Subscription]:
        """Give a freshly registered user the access their payment bought."""
        meta = payment.payment_metadata or {}
        subscription_id = meta.get("subscription_id")
        if subscription_id:
            existing = self.sub_repo.get_by_stripe_id(subscription_id)
            if existing:
                existing.user_id = user.id
                return self.sub_repo.save(existing)
            return self.upsert_from_stripe(user, self.gateway.retrieve_subscription(subscription_id))
        return self.grant_one_time_access(user, payment.stripe_payment_intent_id, meta.get("customer_id"))

    def _apply_checkout_to_user(self, user: models.User, cs: dict, metadata: dict, reference: str):
        if cs.get("mode") == "subscription" and cs.get("subscription"):
            return self.upsert_from_stripe(user, self.gateway.retrieve_subscription(cs["subscription"]))
        return self.grant_one_time_access(user, reference, cs.get("customer"))

    # webhooks

    def handle_event(self, event: dict) -> dict:
        """Dispatch a verified Stripe event; unknown types are acknowledged."""
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        handlers = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.created": self._on_subscription_changed,
            "customer.subscription.updated": self._on_subscription_changed,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "customer.subscription.trial_will_end": self._on_trial_will_end,
            "invoice.payment_succeeded": self._on_invoice_paid,
            "invoice.payment_failed": self._on_invoice_failed,
            "payment_intent.payment_failed": self._on_intent_failed,
        }
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("ignoring stripe event %s", event_type)
            return {"received": True, "handled": False}
        handler(obj)
        return {"received": True, "handled": True}

    def _on_checkout_completed(self, cs: dict):
        metadata = dict(cs.get("metadata") or {})
        email = (cs.get("customer_details") or {}).get("email") or cs.get("customer_email") or metadata.get("email")
        reference = cs.get("payment_intent") or cs.get("id")
        if cs.get("subscription"):
            metadata["subscription_id"] = cs["subscription"]
        if cs.get("customer"):
            metadata["customer_id"] = cs["customer"]
        metadata["mode"] = cs.get("mode") or "payment"
        if cs.get("payment_status") in ("paid", "no_payment_required"):
            self.record_payment(reference, email, cs.get("amount_total") or 0, cs.get("currency") or "jpy",
                                models.PaymentStatus.COMPLETED, metadata)
        user = self._user_for_stripe(metadata, None, email)
        if user is None:
            # registration not finished yet; complete-registration attaches it
            logger.info("checkout %s completed before account creation", cs.get("id"))
            return
        self._apply_checkout_to_user(user, cs, metadata, reference)

    def _on_subscription_changed(self, sub: dict):
        user = self._user_for_stripe(sub.get("metadata") or {}, sub.get("customer"))
        if user is None:
            logger.warning("no user for stripe subscription %s", sub.get("id"))
            return
        self.upsert_from_stripe(user, sub)

    def _on_subscription_deleted(self, sub: dict):
        row = self.sub_repo.get_by_stripe_id(sub.get("id", ""))
        if row is None:
            logger.warning("deleted stripe subscription %s is unknown", sub.get("id"))
            return
        row.status = models.SubscriptionStatus.CANCELED
        self.sub_repo.save(row)
        logger.info("subscription %s canceled", row.stripe_subscription_id)

    def _on_trial_will_end(self, sub: dict):
        logger.info("trial ending soon for stripe subscription %s", sub.get("id"))

    def _on_invoice_paid(self, invoice: dict):
        intent_id = invoice.get("payment_intent")
        subscription_id = invoice.get("subscription")
        if subscription_id:
            row = self.sub_repo.get_by_stripe_id(subscription_id)
            if row is not None:
                if intent_id:
                    row.stripe_payment_intent_id = intent_id
                if row.status in (models.SubscriptionStatus.PAST_DUE, models.SubscriptionStatus.UNPAID):
                    row.status = models.SubscriptionStatus.ACTIVE
                self.sub_repo.save(row)
        if intent_id:
            self.record_payment(
                intent_id,
                invoice.get("customer_email"),
                invoice.get("amount_paid") or 0,
                invoice.get("currency") or "jpy",
                models.PaymentStatus.COMPLETED,
                {"invoice_id": invoice.get("id"), "subscription_id": subscription_id},
            )

    def _on_invoice_failed(self, invoice: dict):
        row = self.sub_repo.get_by_stripe_id(invoice.get("subscription") or "")
        if row is None:
            return
        row.status = models.SubscriptionStatus.PAST_DUE
        self.sub_repo.save(row)
        logger.warning("invoice payment failed for subscription %s", row.stripe_subscription_id)

    def _on_intent_failed(self, intent: dict):
        metadata = dict(intent.get("metadata") or {})
        error = (intent.get("last_payment_error") or {}).get("message")
        if error:
            metadata["error"] = error
        self.record_payment(
            intent["id"],
            metadata.get("email") or intent.get("receipt_email"),
            intent.get("amount") or 0,
            intent.get("currency") or "jpy",
            models.PaymentStatus.FAILED,
            metadata,
        )

    # self service

    def end_trial(self, user: models.User) -> models.Subscription:
        trialing = [s for s in self.sub_repo.list_for_user(user.id)
                    if s.status == models.SubscriptionStatus.TRIALING and s.stripe_subscription_id]
        if not trialing:
            raise NotFoundError("no trialing subscription")
        updated = self.gateway.end_trial(trialing[0].stripe_subscription_id)
        return self.upsert_from_stripe(user, updated)

    def customer_portal_url(self, user: models.User, return_url: Optional[str]) -> str:
        subs = [s for s in self.sub_repo.list_for_user(user.id) if s.stripe_customer_id]
        if not subs:
            raise NotFoundError("no billing account for this user")
        portal = self.gateway.create_portal_session(subs[0].stripe_customer_id,
                                                    return_url or f"{settings.FRONTEND_URL}/subscription")
        return portal["url"]
