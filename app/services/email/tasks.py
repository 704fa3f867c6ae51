from __future__ import annotations

import logging

from app.services.email.queue import NoticeKind
from app.services.email.service import payment_failed_message, send_email, subscription_canceled_message

logger = logging.getLogger(__name__)

MESSAGES = {
    NoticeKind.PAYMENT_FAILED: payment_failed_message,
    NoticeKind.SUBSCRIPTION_CANCELED: subscription_canceled_message,
}


def send_billing_notice(kind: str, to_email: str) -> None:
    """RQ worker task: email a short billing notice."""
    try:
        build = MESSAGES[NoticeKind(kind)]
    except ValueError:
        logger.error("Unknown billing notice kind %r; dropping notice for %s", kind, to_email)
        return
    subject, body = build()
    send_email(to_email=to_email, subject=subject, body=body)
