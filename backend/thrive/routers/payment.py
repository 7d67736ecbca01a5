"""Stripe payment endpoints and the webhook receiver.

Anonymous callers may start a payment only for an email that finished
verification, which is the registration path; signed-in users pay for
their own account.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlmodel import Session

from .. import models
from ..auth import get_current_user, get_optional_user
from ..database import get_session
from ..schemas import CheckoutSessionIn, PaymentIntentIn, VerifyCheckoutIn
from ..serializers import subscription_out
from ..services.auth import AuthService
from ..services.payments import PaymentGateway, PaymentService, get_payment_gateway

router = APIRouter(prefix="/payment", tags=["payment"])
logger = logging.getLogger("thrive.payments")


class PortalIn(BaseModel):
    return_url: Optional[str] = None


def _payer_email(db: Session, user: Optional[models.User], email: Optional[str]) -> str:
    if user is not None:
        return user.email
    if not email:
        raise HTTPException(status_code=400, detail="email is required")
    if not AuthService(db).is_email_verified(email):
        raise HTTPException(status_code=403, detail="email must be verified before payment")
    return email.lower()


@router.post("/create-payment-intent")
def create_payment_intent(
    payload: PaymentIntentIn,
    db: Session = Depends(get_session),
    user: Optional[models.User] = Depends(get_optional_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    email = _payer_email(db, user, payload.email)
    return PaymentService(db, gateway).create_payment_intent(payload.amount, payload.currency.lower(), email, user)


@router.post("/create-checkout-session")
def create_checkout_session(
    payload: CheckoutSessionIn,
    db: Session = Depends(get_session),
    user: Optional[models.User] = Depends(get_optional_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    email = _payer_email(db, user, payload.metadata.get("email"))
    return PaymentService(db, gateway).create_checkout_session(
        payload.price_id, payload.mode, payload.success_url, payload.cancel_url, email, user, payload.metadata
    )


@router.post("/verify-checkout-session")
def verify_checkout_session(
    payload: VerifyCheckoutIn,
    db: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Confirm a checkout result; paid sessions are recorded once."""
    return PaymentService(db, gateway).verify_checkout_session(payload.session_id)


async def _raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/webhook")
def stripe_webhook(
    request: Request,
    payload: bytes = Depends(_raw_body),
    db: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Apply a signed Stripe event.

    Runs in the worker threadpool; only the body read is awaited.
    """
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="missing stripe-signature header")
    event = gateway.construct_event(payload, signature)
    logger.info("stripe event %s (%s)", event.get("type"), event.get("id"))
    return PaymentService(db, gateway).handle_event(event)


@router.post("/end-trial")
def end_trial(
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return subscription_out(PaymentService(db, gateway).end_trial(user))


@router.post("/customer-portal")
def customer_portal(
    payload: Optional[PortalIn] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    return_url = payload.return_url if payload else None
    return {"url": PaymentService(db, gateway).customer_portal_url(user, return_url)}
