from __future__ import annotations

import logging

from rentflow.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Configure root logging once; uvicorn/pytest handlers already installed are kept.
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    root.setLevel(level)
    # Gateway/push HTTP clients are chatty at INFO; keep request lines at WARNING.
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))
