"""Authentication, registration and password reset.

Access tokens are short-lived JWTs signed with `JWT_SECRET`. Refresh
tokens are JWTs signed with `JWT_REFRESH_SECRET` and are also stored in
the database so they can be rotated and revoked. Registration is a
three step flow: email verification, payment, account creation.
"""

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from .. import models, repositories
from ..config import settings
from ..errors import AuthenticationError, ConflictError, ValidationError
from ..utils.dates import utcnow
from ..utils.passwords import password_problems
from .mailer import Mailer
from .payments import PaymentGateway, PaymentService

logger = logging.getLogger("thrive.auth")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
CODE_TTL = timedelta(minutes=10)
VERIFIED_EMAIL_WINDOW = timedelta(hours=24)
RESET_TOKEN_TTL = timedelta(hours=1)


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return PWD_CTX.verify(password, password_hash)
    except ValueError:
        return False


def create_access_token(user: models.User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_MINUTES)
    payload = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role.value,
        "type": "access",
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_refresh_token(user: models.User) -> str:
    expire = datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_DAYS)
    payload = {
        "user_id": user.id,
        "token_id": secrets.token_hex(16),
        "type": "refresh",
        "exp": int(expire.timestamp()),
    }
    return jwt.encode(payload, settings.JWT_REFRESH_SECRET, algorithm=settings.JWT_ALGORITHM)


def _decode(token: str, secret: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("invalid token")
    if payload.get("type") != expected_type or not payload.get("user_id"):
        raise AuthenticationError("invalid token payload")
    return payload


def decode_access_token(token: str) -> dict:
    return _decode(token, settings.JWT_SECRET, "access")


def decode_refresh_token(token: str) -> dict:
    return _decode(token, settings.JWT_REFRESH_SECRET, "refresh")


def create_reset_token(user: models.User) -> str:
    expire = datetime.now(timezone.utc) + RESET_TOKEN_TTL
    payload = {"user_id": user.id, "email": user.email, "type": "password-reset", "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def _check_strength(password: str) -> None:
    problems = password_problems(password)
    if problems:
        raise ValidationError("password must contain " + ", ".join(problems))


class AuthService:
    """Authentication related operations."""

    def __init__(self, session: Session, mailer: Optional[Mailer] = None):
        self.session = session
        self.mailer = mailer or Mailer()
        self.user_repo = repositories.UserRepository(session)
        self.profile_repo = repositories.ProfileRepository(session)
        self.code_repo = repositories.VerificationCodeRepository(session)
        self.token_repo = repositories.RefreshTokenRepository(session)

    # registration

    def send_verification_code(self, email: str) -> models.VerificationCode:
        """Email a fresh 6-digit code; earlier pending codes stop working."""
        email = email.strip().lower()
        if self.user_repo.get_by_email(email):
            raise ConflictError("an account with this email already exists")
        self.code_repo.delete_unverified(email)
        code = f"{secrets.randbelow(1_000_000):06d}"
        row = self.code_repo.create(
            models.VerificationCode(email=email, code=code, expires_at=utcnow() + CODE_TTL)
        )
        self.mailer.send_verification_code(email, code)
        logger.info("verification code issued for %s", email)
        return row

    def verify_email(self, email: str, code: str) -> models.VerificationCode:
        email = email.strip().lower()
        row = self.code_repo.latest_for_email(email)
        if row is None or row.verified:
            raise ValidationError("no pending verification code for this email")
        if row.expires_at <= utcnow():
            raise ValidationError("verification code expired")
        if not secrets.compare_digest(row.code, code.strip()):
            raise ValidationError("invalid verification code")
        row.verified = True
        row.verified_at = utcnow()
        return self.code_repo.save(row)

    def is_email_verified(self, email: str) -> bool:
        row = self.code_repo.latest_verified(email.strip().lower())
        return bool(row and row.verified_at and row.verified_at >= utcnow() - VERIFIED_EMAIL_WINDOW)

    def complete_registration(self, email: str, name: str, password: str, payment_intent_id: str,
                              gateway: PaymentGateway, ip_address: str = None, user_agent: str = None):
        """Create the account once the email is verified and payment is done.

        Returns `(user, profile, tokens)`.
        """
        email = email.strip().lower()
        if self.user_repo.get_by_email(email):
            raise ConflictError("an account with this email already exists")
        if not self.is_email_verified(email):
            raise ValidationError("email has not been verified")
        _check_strength(password)
        payments = PaymentService(self.session, gateway)
        payment = payments.confirm_intent_completed(payment_intent_id, email)
        user = self.user_repo.create(
            models.User(email=email, password_hash=hash_password(password), is_verified=True)
        )
        profile = self.profile_repo.create(models.Profile(user_id=user.id, name=name.strip()))
        payments.attach_registration_payment(user, payment)
        self.mailer.send_welcome(email, profile.name)
        logger.info("registration completed for user %s", user.id)
        tokens = self.issue_tokens(user, ip_address, user_agent)
        return user, profile, tokens

    # sessions

    def issue_tokens(self, user: models.User, ip_address: str = None, user_agent: str = None) -> dict:
        refresh = create_refresh_token(user)
        self.token_repo.create(
            models.RefreshToken(
                user_id=user.id,
                token=refresh,
                expires_at=utcnow() + timedelta(days=settings.REFRESH_TOKEN_DAYS),
                last_used_at=utcnow(),
                ip_address=ip_address,
                user_agent=(user_agent or "")[:500] or None,
            )
        )
        return {
            "access_token": create_access_token(user),
            "refresh_token": refresh,
            "csrf_token": secrets.token_hex(32),
            "expires_in": settings.ACCESS_TOKEN_MINUTES * 60,
        }

    def login(self, email: str, password: str, ip_address: str = None, user_agent: str = None):
        """Verify credentials and return `(user, profile, tokens)`."""
        user = self.user_repo.get_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            logger.info("failed login for %s", email)
            raise ValidationError("invalid credentials")
        if not user.is_active:
            raise ValidationError("account is inactive")
        if not user.is_verified:
            raise ValidationError("account not verified")
        if PWD_CTX.needs_update(user.password_hash):
            user.password_hash = hash_password(password)
            self.user_repo.save(user)
        profile = self.profile_repo.get_by_user(user.id)
        tokens = self.issue_tokens(user, ip_address, user_agent)
        logger.info("user %s logged in", user.id)
        return user, profile, tokens

    def refresh(self, refresh_token: str, ip_address: str = None, user_agent: str = None):
        """Rotate a refresh token; returns `(user, tokens)`."""
        stored = self.token_repo.get_by_token(refresh_token)
        try:
            payload = decode_refresh_token(refresh_token)
        except AuthenticationError:
            if stored is not None:
                self.token_repo.delete(stored)
            raise
        if stored is None or stored.user_id != payload["user_id"]:
            raise AuthenticationError("refresh token not recognised")
        if stored.expires_at <= utcnow():
            self.token_repo.delete(stored)
            raise AuthenticationError("refresh token expired")
        user = self.user_repo.get(stored.user_id)
        if user is None or not user.is_active:
            self.token_repo.delete(stored)
            raise AuthenticationError("user not found or inactive")
        self.token_repo.delete(stored)
        return user, self.issue_tokens(user, ip_address or stored.ip_address, user_agent or stored.user_agent)

    def logout(self, refresh_token: Optional[str]) -> None:
        if not refresh_token:
            return
        stored = self.token_repo.get_by_token(refresh_token)
        if stored is not None:
            self.token_repo.delete(stored)

    def list_sessions(self, user: models.User) -> list:
        return self.token_repo.list_for_user(user.id)

    # password reset

    def forgot_password(self, email: str) -> str:
        user = self.user_repo.get_by_email(email)
        if user is None:
            raise ValidationError("no account found for this email")
        if not user.is_verified:
            raise ValidationError("account not verified")
        if not user.is_active:
            raise ValidationError("account is inactive")
        token = create_reset_token(user)
        self.mailer.send_password_reset(user.email, token)
        logger.info("password reset requested for user %s", user.id)
        return token

    def validate_reset_token(self, token: str) -> models.User:
        try:
            payload = _decode(token, settings.JWT_SECRET, "password-reset")
        except AuthenticationError as e:
            raise ValidationError(f"invalid reset token: {e.message}")
        user = self.user_repo.get(payload["user_id"])
        if user is None or user.email != payload.get("email"):
            raise ValidationError("invalid reset token")
        return user

    def reset_password(self, token: str, new_password: str) -> models.User:
        user = self.validate_reset_token(token)
        _check_strength(new_password)
        user.password_hash = hash_password(new_password)
        self.user_repo.save(user)
        revoked = self.token_repo.delete_for_user(user.id)
        logger.info("password reset for user %s; %d sessions revoked", user.id, revoked)
        return user
