import logging
import smtplib
from email.message import EmailMessage
from typing import Sequence

from hivex.core.config import settings
from hivex.core.timeutil import as_utc

logger = logging.getLogger(__name__)


def _build_message(to_email: str, subject: str, text_body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.SMTP_FROM_EMAIL
    msg["To"] = to_email
    msg.set_content(text_body)
    return msg


def send_email(to_email: str, subject: str, text_body: str) -> bool:
    """Best effort. Never raises; callers schedule it as a background task."""
    if not settings.SMTP_ENABLED:
        logger.info("Email disabled, skipped", extra={"to": to_email, "subject": subject})
        return False
    msg = _build_message(to_email, subject, text_body)
    try:
        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
            if settings.SMTP_USE_TLS:
                smtp.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            smtp.send_message(msg)
        return True
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("Email send failed: %s", exc)
        return False


def send_deal_to_members(emails: Sequence[str], *, title: str, value: str | None, expiry) -> int:
    body = (
        "Hello,\n\n"
        f"A new deal is now available: {title}.\n\n"
        f"Details: {value or 'see the app'} off, expires on {as_utc(expiry).date().isoformat()}."
    )
    sent = 0
    for email in emails:
        if send_email(email, "New Deal Available!", body):
            sent += 1
    logger.info("Deal announcement sent", extra={"title": title, "recipients": len(emails), "sent": sent})
    return sent


def send_password_reset(to_email: str, token: str) -> bool:
    body = (
        "A password reset was requested for your account.\n\n"
        f"Reset token: {token}\n"
        f"It expires in {settings.PASSWORD_RESET_MINUTES} minutes."
    )
    return send_email(to_email, "Password reset", body)
