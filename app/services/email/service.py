from __future__ import annotations

import logging
import smtplib
import ssl
import time
from email.message import EmailMessage

from app.core.settings import settings

logger = logging.getLogger(__name__)


def _from_header() -> str:
    if settings.email_from_name and settings.email_from:
        return f"{settings.email_from_name} <{settings.email_from}>"
    return settings.email_from or ""


def _smtp_connection() -> smtplib.SMTP:
    timeout = settings.smtp_timeout_seconds
    if settings.smtp_use_ssl:
        return smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=timeout, context=ssl.create_default_context())
    server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=timeout)
    if settings.smtp_use_tls:
        try:
            server.starttls(context=ssl.create_default_context())
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
    return server


def send_email(to_email: str, subject: str, body: str) -> None:
    """Send a plain-text notice over SMTP.

    Retries with a short linear backoff and re-raises the last error so RQ
    marks the job failed.
    """
    if not settings.smtp_host or not settings.email_from:
        logger.warning("SMTP not configured; logging notice to %s instead of sending", to_email)
        logger.info("Notice to %s: %s\n%s", to_email, subject, body)
        return

    msg = EmailMessage()
    msg["From"] = _from_header()
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    attempts = max(int(settings.email_send_retries), 1)
    for attempt in range(1, attempts + 1):
        try:
            with _smtp_connection() as server:
                if settings.smtp_username and settings.smtp_password:
                    server.login(settings.smtp_username, settings.smtp_password)
                server.send_message(msg)
            return
        except (smtplib.SMTPException, OSError):
            if attempt == attempts:
                logger.exception("Giving up on notice to %s after %s attempts", to_email, attempts)
                raise
            logger.warning("SMTP send to %s failed (attempt %s/%s), retrying", to_email, attempt, attempts)
            time.sleep(min(2 * attempt, 5))


def payment_failed_message() -> tuple[str, str]:
    subject = f"{settings.app_name}: your payment failed"
    body = (
        "We couldn't process the latest payment for your subscription.\n\n"
        "Your plan stays active for now. Please update your payment method:\n"
        f"{settings.site_url.rstrip('/')}/billing"
    )
    return subject, body


def subscription_canceled_message() -> tuple[str, str]:
    subject = f"{settings.app_name}: your subscription has ended"
    body = (
        "Your subscription was canceled and your account is now on the free plan.\n\n"
        "Your saved chats are kept. You can upgrade again at any time:\n"
        f"{settings.site_url.rstrip('/')}/billing"
    )
    return subject, body
