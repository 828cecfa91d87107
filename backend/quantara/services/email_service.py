"""
backend/quantara/services/email_service.py

Purpose:
    SMTP delivery for transactional mails (password reset, admin-created
    accounts). smtplib is blocking, so sends run in the default executor.

Dependencies:
    - smtplib
    - quantara.config
"""

import asyncio
import logging
import smtplib
from email.message import EmailMessage

from quantara.config import settings

logger = logging.getLogger("quantara.email")


class EmailDeliveryError(Exception):
    """Raised when the SMTP server rejects or cannot take a message."""


def is_configured() -> bool:
    return bool(settings.SMTP_HOST and settings.FROM_EMAIL)


def _build_message(to: str, subject: str, html: str) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = settings.FROM_EMAIL
    msg["To"] = to
    msg.set_content("This message requires an HTML-capable mail client.")
    msg.add_alternative(html, subtype="html")
    return msg


def _send_sync(msg: EmailMessage) -> None:
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=15) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USERNAME:
            server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)


async def send_email(to: str, subject: str, html: str) -> None:
    """Send an HTML mail. Raises EmailDeliveryError on any SMTP failure."""
    if not is_configured():
        raise EmailDeliveryError("SMTP is not configured.")

    msg = _build_message(to, subject, html)
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(None, _send_sync, msg)
    except (smtplib.SMTPException, OSError) as exc:
        logger.error("Email to %s failed: %s", to, exc)
        raise EmailDeliveryError("Failed to send email.") from exc
    logger.info("Email sent: to=%s subject=%s", to, subject)
