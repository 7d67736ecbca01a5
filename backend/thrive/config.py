"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_REFRESH_SECRET: str
    JWT_ALGORITHM: str
    ACCESS_TOKEN_MINUTES: int
    REFRESH_TOKEN_DAYS: int
    ALLOW_INSECURE_JWT: bool
    FRONTEND_URL: str
    CORS_ORIGINS: list
    COOKIE_SECURE: bool
    STRIPE_SECRET_KEY: str
    STRIPE_WEBHOOK_SECRET: str
    STRIPE_MONTHLY_PRICE_ID: str
    STRIPE_YEARLY_PRICE_ID: str
    STRIPE_ONE_TIME_PRICE_ID: str
    SMTP_HOST: str
    SMTP_PORT: int
    SMTP_USER: str
    SMTP_PASSWORD: str
    EMAIL_FROM: str
    UPLOAD_DIR: Path
    MAX_PHOTO_BYTES: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'thrive.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "change_me_refresh_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.ACCESS_TOKEN_MINUTES = int(os.getenv("ACCESS_TOKEN_MINUTES", "15"))
        self.REFRESH_TOKEN_DAYS = int(os.getenv("REFRESH_TOKEN_DAYS", "7"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
        raw_origins = os.getenv("CORS_ORIGINS", self.FRONTEND_URL)
        self.CORS_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]
        self.COOKIE_SECURE = self.ENV == "production"
        self.STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
        self.STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
        self.STRIPE_MONTHLY_PRICE_ID = os.getenv("STRIPE_MONTHLY_PRICE_ID", "")
        self.STRIPE_YEARLY_PRICE_ID = os.getenv("STRIPE_YEARLY_PRICE_ID", "")
        self.STRIPE_ONE_TIME_PRICE_ID = os.getenv("STRIPE_ONE_TIME_PRICE_ID", "")
        self.SMTP_HOST = os.getenv("SMTP_HOST", "")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USER = os.getenv("SMTP_USER", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.EMAIL_FROM = os.getenv("EMAIL_FROM", "Thrive in Japan <noreply@thriveinjapan.com>")
        self.UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE / "uploads"))).expanduser()
        self.MAX_PHOTO_BYTES = int(os.getenv("MAX_PHOTO_BYTES", str(5 * 1024 * 1024)))  # 5 MB default
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT:
            if self.JWT_SECRET == "change_me_for_prod" or self.JWT_REFRESH_SECRET == "change_me_refresh_for_prod":
                raise RuntimeError("JWT secrets must be set to non-default values in non-dev environments")
        if self.ACCESS_TOKEN_MINUTES <= 0 or self.REFRESH_TOKEN_DAYS <= 0:
            raise RuntimeError("token lifetimes must be positive")


settings = Settings()
