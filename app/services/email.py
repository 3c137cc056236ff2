"""Transactional email: verification tokens and password-reset links over SMTP."""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import lru_cache
from html import escape
from typing import TYPE_CHECKING
from urllib.parse import urlencode

from app.core.config import get_settings

if TYPE_CHECKING:
    from app.core.config import Settings
    from app.models.admin import Admin

logger = logging.getLogger(__name__)


def redact_email(email: str) -> str:
    """Redact an email address for logging to avoid PII leakage."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class EmailService:
    """
    Sends multipart (text + HTML) mail via SMTP with STARTTLS or implicit SSL.

    When SMTP_HOST is not configured the message is logged instead of sent and
    the call reports success, so local development works without a mail server.
    """

    def __init__(
        self,
        *,
        smtp_host: str | None = None,
        smtp_port: int = 587,
        smtp_user: str | None = None,
        smtp_password: str | None = None,
        smtp_use_tls: bool = True,
        timeout: float = 30.0,
        from_email: str | None = None,
        church_name: str = "Church Admin",
        admin_url: str = "http://localhost:5173",
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.timeout = timeout
        self.from_email = from_email or smtp_user
        self.church_name = church_name
        self.admin_url = admin_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Settings) -> EmailService:
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=(
                settings.SMTP_PASSWORD.get_secret_value() if settings.SMTP_PASSWORD else None
            ),
            smtp_use_tls=settings.SMTP_USE_TLS,
            timeout=settings.SMTP_TIMEOUT_SEC,
            from_email=settings.EMAIL_FROM,
            church_name=settings.CHURCH_NAME,
            admin_url=settings.ADMIN_URL,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_host and self.from_email)

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> bool:
        """Send one message. Returns True if sent (or logged in dev mode), False on failure."""
        if not self.is_configured:
            logger.info(
                "Email not sent (SMTP not configured)",
                extra={"to": redact_email(to_email), "subject": subject},
            )
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = f"{self.church_name} <{self.from_email}>"
        msg["To"] = to_email
        if text_body:
            msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))

        context = ssl.create_default_context()
        try:
            if self.smtp_use_tls:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
            else:
                with smtplib.SMTP_SSL(
                    self.smtp_host, self.smtp_port, context=context, timeout=self.timeout
                ) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_email, to_email, msg.as_string())
        except smtplib.SMTPAuthenticationError as e:
            logger.error(
                "SMTP authentication failed",
                extra={"to": redact_email(to_email), "reason": str(e)[:200]},
            )
            return False
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "Email sending failed",
                extra={"to": redact_email(to_email), "reason": str(e)[:200]},
            )
            return False

        logger.info("Email sent", extra={"to": redact_email(to_email), "subject": subject})
        return True

    def _token_email(self, admin_name: str, intro: str, token: str, ttl_minutes: int) -> tuple[str, str]:
        text = (
            f"Hello {admin_name},\n\n{intro}\n\n"
            f"Your verification token: {token}\n\n"
            f"This token expires in {ttl_minutes} minutes and can be used once. "
            "If you did not request this, ignore this email and consider changing your password.\n"
        )
        html = (
            f"<p>Hello <strong>{escape(admin_name)}</strong>,</p>"
            f"<p>{escape(intro)}</p>"
            f'<p><strong>Your verification token:</strong></p>'
            f'<p style="font-family: monospace; font-size: 20px; letter-spacing: 2px;">{escape(token)}</p>'
            f"<p><small>This token expires in <strong>{ttl_minutes} minutes</strong> and can be used once.</small></p>"
            "<p>If you did not request this, ignore this email and consider changing your password.</p>"
        )
        return text, html

    def send_profile_update_email(self, admin: Admin, token: str, update_type: str, ttl_minutes: int) -> bool:
        action = "change your email address" if update_type == "email" else "update your profile information"
        intro = (
            f"You have requested to {action} on your {self.church_name} admin account. "
            "Enter the token below in the verification dialog to continue."
        )
        text, html = self._token_email(admin.name, intro, token, ttl_minutes)
        return self.send_email(
            admin.email, f"{self.church_name} - Profile Update Verification", html, text
        )

    def send_password_change_email(self, admin: Admin, token: str, ttl_minutes: int) -> bool:
        intro = (
            f"You have requested to change the password of your {self.church_name} admin account. "
            "Enter the token below together with your new password."
        )
        text, html = self._token_email(admin.name, intro, token, ttl_minutes)
        return self.send_email(
            admin.email, f"{self.church_name} - Password Change Verification", html, text
        )

    def send_password_reset_email(self, admin: Admin, reset_token: str, ttl_minutes: int) -> bool:
        link = f"{self.admin_url}/reset-password?{urlencode({'token': reset_token})}"
        text = (
            f"Hello {admin.name},\n\n"
            f"A password reset was requested for your {self.church_name} admin account.\n"
            f"Open this link within {ttl_minutes} minutes to choose a new password:\n{link}\n\n"
            "If you did not request this, you can ignore this email.\n"
        )
        html = (
            f"<p>Hello <strong>{escape(admin.name)}</strong>,</p>"
            f"<p>A password reset was requested for your {escape(self.church_name)} admin account.</p>"
            f'<p><a href="{escape(link)}">Reset your password</a> (valid for {ttl_minutes} minutes)</p>'
            "<p>If you did not request this, you can ignore this email.</p>"
        )
        return self.send_email(admin.email, f"{self.church_name} - Password Reset", html, text)


@lru_cache
def _default_email_service() -> EmailService:
    return EmailService.from_settings(get_settings())


def get_email_service() -> EmailService:
    """Dependency returning the process-wide EmailService (overridden in tests)."""
    return _default_email_service()
