from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import redis
from rq import Queue

from app.core.settings import settings

logger = logging.getLogger(__name__)

NOTICE_TASK = "app.services.email.tasks.send_billing_notice"


class NoticeKind(str, Enum):
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_CANCELED = "subscription_canceled"


@dataclass(frozen=True)
class Notice:
    kind: NoticeKind
    to_email: str


class Notifier(Protocol):
    def enqueue(self, notice: Notice) -> None: ...


class RQNotifier:
    """Hand notices to the RQ worker so the webhook response never waits on SMTP.

    ``enqueue`` blocks on Redis; async callers run it in the threadpool.
    """

    def __init__(self, redis_url: str | None = None, queue_name: str | None = None) -> None:
        timeout = settings.redis_socket_timeout_seconds
        # lazy: no connection is opened until the first enqueue
        self.redis = redis.from_url(
            redis_url or settings.redis_url,
            socket_connect_timeout=timeout,
            socket_timeout=timeout,
        )
        self.queue = Queue(queue_name or settings.notification_queue, connection=self.redis)

    def enqueue(self, notice: Notice) -> None:
        try:
            self.queue.enqueue(NOTICE_TASK, notice.kind.value, notice.to_email)
        except redis.exceptions.RedisError:
            # entitlement is already committed at this point
            logger.exception("Failed to enqueue %s notice for %s", notice.kind.value, notice.to_email)
