"""Authentication and registration endpoints.

Registration runs in three steps: `send-verification-code` and
`verify-email`, then payment (see `payment`), then
`complete-registration`. Login and refresh set httponly cookies.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, Security
from fastapi.security import HTTPAuthorizationCredentials
from sqlmodel import Session

from .. import models, repositories
from ..auth import ACCESS_COOKIE, REFRESH_COOKIE, bearer_scheme, extract_access_token, get_current_user, resolve_user
from ..config import settings
from ..database import get_session
from ..schemas import CompleteRegistrationIn, EmailIn, LoginIn, ResetPasswordIn, VerifyEmailIn
from ..serializers import refresh_session_out, user_out
from ..services.auth import AuthService
from ..services.payments import PaymentGateway, get_payment_gateway
from ..utils.dates import utcnow
from ..utils.rate_limit import InMemoryRateLimiter, enforce_rate_limit

router = APIRouter(prefix="/auth", tags=["auth"])
_rate_limiter = InMemoryRateLimiter()


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _set_auth_cookies(response: Response, tokens: dict) -> None:
    common = dict(httponly=True, secure=settings.COOKIE_SECURE, samesite="lax", path="/")
    response.set_cookie(ACCESS_COOKIE, tokens["access_token"], max_age=settings.ACCESS_TOKEN_MINUTES * 60, **common)
    response.set_cookie(REFRESH_COOKIE, tokens["refresh_token"], max_age=settings.REFRESH_TOKEN_DAYS * 86400, **common)


def _clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path="/")


def _token_body(user: models.User, profile, tokens: dict) -> dict:
    return {
        "user": user_out(user, profile),
        "access_token": tokens["access_token"],
        "csrf_token": tokens["csrf_token"],
        "expires_in": tokens["expires_in"],
    }


@router.post("/send-verification-code")
def send_verification_code(payload: EmailIn, db: Session = Depends(get_session)):
    """Email a 6-digit code that is valid for 10 minutes."""
    AuthService(db).send_verification_code(payload.email)
    return {"message": "verification code sent", "email": payload.email.lower()}


@router.post("/resend-verification")
def resend_verification(payload: EmailIn, db: Session = Depends(get_session)):
    AuthService(db).send_verification_code(payload.email)
    return {"message": "verification code sent", "email": payload.email.lower()}


@router.post("/verify-email")
def verify_email(payload: VerifyEmailIn, db: Session = Depends(get_session)):
    AuthService(db).verify_email(payload.email, payload.code)
    return {"verified": True, "email": payload.email.lower()}


@router.post("/complete-registration", status_code=201)
def complete_registration(
    payload: CompleteRegistrationIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Create the account once email verification and payment are done."""
    user, profile, tokens = AuthService(db).complete_registration(
        payload.email,
        payload.name,
        payload.password,
        payload.stripe_payment_intent_id,
        gateway,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    _set_auth_cookies(response, tokens)
    return _token_body(user, profile, tokens)


@router.post("/login")
def login(payload: LoginIn, request: Request, response: Response, db: Session = Depends(get_session)):
    """Authenticate and set the access/refresh cookies."""
    enforce_rate_limit(_rate_limiter, request, "LOGIN_RATE_LIMIT", 5)
    user, profile, tokens = AuthService(db).login(
        payload.email, payload.password, _client_ip(request), request.headers.get("user-agent")
    )
    _set_auth_cookies(response, tokens)
    return _token_body(user, profile, tokens)


@router.post("/refresh")
def refresh(request: Request, response: Response, db: Session = Depends(get_session)):
    token = request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise HTTPException(status_code=403, detail="refresh token missing")
    user, tokens = AuthService(db).refresh(token, _client_ip(request), request.headers.get("user-agent"))
    _set_auth_cookies(response, tokens)
    profile = repositories.ProfileRepository(db).get_by_user(user.id)
    return _token_body(user, profile, tokens)


@router.post("/logout")
def logout(request: Request, response: Response, db: Session = Depends(get_session)):
    AuthService(db).logout(request.cookies.get(REFRESH_COOKIE))
    _clear_auth_cookies(response)
    return {"message": "logged out"}


@router.get("/check")
def check_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
):
    """Report whether the caller holds a valid session."""
    if not request.cookies.get(REFRESH_COOKIE) and credentials is None:
        raise HTTPException(status_code=403, detail="no session")
    token = extract_access_token(request, credentials)
    if not token:
        raise HTTPException(status_code=401, detail="access token missing")
    user = resolve_user(token, db)
    profile = repositories.ProfileRepository(db).get_by_user(user.id)
    return {"authenticated": True, "user": user_out(user, profile)}


@router.get("/sessions")
def list_sessions(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """List the caller's signed-in devices (stored refresh tokens)."""
    now = utcnow()
    return {"sessions": [refresh_session_out(r, now) for r in AuthService(db).list_sessions(user)]}


@router.post("/forgot-password")
def forgot_password(payload: EmailIn, request: Request, db: Session = Depends(get_session)):
    enforce_rate_limit(_rate_limiter, request, "PASSWORD_RESET_RATE_LIMIT", 3)
    AuthService(db).forgot_password(payload.email)
    return {"message": "password reset email sent"}


@router.get("/reset-password/validate/{token}")
def validate_reset_token(token: str, db: Session = Depends(get_session)):
    user = AuthService(db).validate_reset_token(token)
    return {"valid": True, "email": user.email}


@router.post("/reset-password")
def reset_password(payload: ResetPasswordIn, request: Request, db: Session = Depends(get_session)):
    enforce_rate_limit(_rate_limiter, request, "PASSWORD_RESET_RATE_LIMIT", 3)
    AuthService(db).reset_password(payload.token, payload.new_password)
    return {"message": "password has been reset"}
