"""Outgoing email.

Messages go through SMTP when `SMTP_HOST` is configured; otherwise they
are only logged, which is what local development and tests rely on.
"""

import logging
import smtplib
from email.message import EmailMessage

from ..config import settings

logger = logging.getLogger("thrive.email")


class Mailer:
    def send(self, to: str, subject: str, body: str) -> bool:
        """Send a plain-text email; returns False when it was only logged."""
        if not settings.SMTP_HOST:
            logger.info("email (not sent, SMTP disabled) to=%s subject=%s", to, subject)
            logger.debug("email body:\n%s", body)
            return False
        msg = EmailMessage()
        msg["From"] = settings.EMAIL_FROM
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)
        try:
            with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
                smtp.starttls()
                if settings.SMTP_USER:
                    smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("failed to send email to %s", to)
            raise
        logger.info("email sent to=%s subject=%s", to, subject)
        return True

    def notify(self, to: str, subject: str, body: str) -> bool:
        """Like `send`, but a delivery failure is logged and reported as False.

        Used for notices sent after the triggering change is committed.
        """
        try:
            return self.send(to, subject, body)
        except (smtplib.SMTPException, OSError):
            return False

    def send_verification_code(self, to: str, code: str) -> bool:
        body = (
            "Welcome to Thrive in Japan!\n\n"
            f"Your verification code is: {code}\n\n"
            "The code expires in 10 minutes."
        )
        return self.send(to, "Your Thrive in Japan verification code", body)

    def send_password_reset(self, to: str, token: str) -> bool:
        link = f"{settings.FRONTEND_URL}/reset-password?token={token}"
        body = (
            "We received a request to reset your password.\n\n"
            f"Reset it here within the next hour: {link}\n\n"
            "If you did not ask for this, you can ignore this email."
        )
        return self.send(to, "Reset your Thrive in Japan password", body)

    def send_booking_confirmation(self, to: str, session_title: str, scheduled_at: str, meeting_url: str = None) -> bool:
        lines = [f"You're booked for {session_title} on {scheduled_at} (UTC)."]
        if meeting_url:
            lines.append(f"Join here: {meeting_url}")
        return self.notify(to, f"Booking confirmed: {session_title}", "\n\n".join(lines))

    def send_welcome(self, to: str, name: str) -> bool:
        body = f"Hi {name},\n\nYour Thrive in Japan account is ready. Log in at {settings.FRONTEND_URL}/login."
        return self.notify(to, "Welcome to Thrive in Japan", body)
