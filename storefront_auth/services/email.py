"""Senders that deliver OTP codes to customers."""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Protocol

import anyio

from storefront_auth.core.config import Settings
from storefront_auth.core.logging import get_logger
from storefront_auth.db.models import OtpPurpose

logger = get_logger(__name__)

_SUBJECTS = {
    OtpPurpose.SIGNUP: "Verify your email",
    OtpPurpose.FORGOT_PASSWORD: "Reset your password",
}

_INTROS = {
    OtpPurpose.SIGNUP: "Use the following one-time code to finish creating your account:",
    OtpPurpose.FORGOT_PASSWORD: "Use the following one-time code to reset your password:",
}


class OtpSender(Protocol):
    async def send(self, email: str, code: str, purpose: OtpPurpose) -> bool:
        """Deliver the code; return False instead of raising when delivery fails."""
        ...


def build_otp_message(settings: Settings, email: str, code: str, purpose: OtpPurpose) -> MIMEMultipart:
    message = MIMEMultipart()
    message["From"] = settings.FROM_EMAIL or ""
    message["To"] = email
    message["Subject"] = f"{settings.STORE_NAME} - {_SUBJECTS[purpose]}"

    body = f"""
    <div>
        <h2>{settings.STORE_NAME}</h2>
        <p>{_INTROS[purpose]}</p>
        <h3 style="color: #2563eb; font-size: 24px; text-align: center; letter-spacing: 4px;">{code}</h3>
        <p>The code expires in {settings.OTP_EXPIRE_SECONDS // 60} minutes.</p>
        <p>If you didn't request this, you can safely ignore this email.</p>
    </div>
    """
    message.attach(MIMEText(body, "html"))
    return message


class SmtpOtpSender:
    """Send codes over SMTP with STARTTLS.

    Blocking SMTP calls run in a worker thread so the async request is not
    blocked.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def _send(self, message: MIMEMultipart) -> None:
        if not self.settings.smtp_configured:
            raise RuntimeError("SMTP settings are incomplete.")

        with smtplib.SMTP(self.settings.SMTP_SERVER, int(self.settings.SMTP_PORT), timeout=20) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(self.settings.SMTP_USERNAME, self.settings.SMTP_PASSWORD)
            server.send_message(message)

    async def send(self, email: str, code: str, purpose: OtpPurpose) -> bool:
        message = build_otp_message(self.settings, email, code, purpose)
        try:
            await anyio.to_thread.run_sync(self._send, message)
        except (OSError, smtplib.SMTPException, RuntimeError) as exc:  # pragma: no cover - SMTP network path
            logger.error("otp_email_failed", email=email, purpose=purpose.value, error=str(exc))
            return False
        logger.info("otp_email_sent", email=email, purpose=purpose.value)
        return True


class ConsoleOtpSender:
    """Development sender that logs the code instead of emailing it."""

    async def send(self, email: str, code: str, purpose: OtpPurpose) -> bool:
        logger.info("otp_console_delivery", email=email, purpose=purpose.value, code=code)
        return True


def build_sender(settings: Settings) -> OtpSender:
    if not settings.smtp_configured and settings.ENVIRONMENT != "production":
        return ConsoleOtpSender()
    return SmtpOtpSender(settings)
