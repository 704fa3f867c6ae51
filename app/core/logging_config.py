from __future__ import annotations

import logging

from app.core.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if root.handlers:
        # uvicorn/rq already installed handlers; only adjust the level
        root.setLevel((level or settings.log_level).upper())
        return
    logging.basicConfig(level=(level or settings.log_level).upper(), format=LOG_FORMAT)
    # stripe logs every request at info
    logging.getLogger("stripe").setLevel(logging.WARNING)
