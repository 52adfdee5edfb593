"""Root logger setup shared by the service and the script entry point."""
from __future__ import annotations

import logging

from .config import settings


def setup_logging(level: str | None = None):
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    level_name = (level or settings.log_level).upper()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)

    root_logger.setLevel(getattr(logging, level_name, logging.INFO))
    root_logger.addHandler(stream_handler)
