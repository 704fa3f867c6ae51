from __future__ import annotations

import os

import redis
from rq import Queue, Worker

from app.core.logging_config import configure_logging
from app.core.settings import settings


def main() -> None:
    configure_logging()
    listen = [settings.notification_queue]
    conn = redis.from_url(settings.redis_url)

    worker = Worker([Queue(name, connection=conn) for name in listen], connection=conn)
    worker.work(with_scheduler=False)


if __name__ == "__main__":
    os.environ.setdefault("PYTHONUNBUFFERED", "1")
    main()
