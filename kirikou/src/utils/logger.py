"""
Kirikou - Logging
==================
One logger per module, all writing the same pipe-separated line to
stdout so the API process, the ingestion CLI and uvicorn's own access
log read as a single stream::

    2024-05-01 10:00:00 | INFO     | kirikou.src.core.pipeline | [PIPELINE] ...

Level selection (first match wins):
  • explicit ``level`` argument
  • ``settings.LOG_LEVEL``
  • ``settings.ENV``: ``"dev"`` → DEBUG, ``"prod"`` → WARNING

Component tags in messages (``[RATE]``, ``[AGENT]``, ``[STREAM]``,
``[API]`` …) make a single request easy to follow with ``grep``.

Usage:
    from kirikou.src.utils.logger import get_logger
    logger = get_logger(__name__)
"""

import copy
import logging
import sys
from typing import Any

from kirikou.config.settings import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_ACCESS_FORMAT = LOG_FORMAT.replace("%(message)s", "%(client_addr)s - \"%(request_line)s\" %(status_code)s")

_LEVEL_BY_ENV = {"dev": logging.DEBUG, "prod": logging.WARNING}


def default_level() -> int:
    """Level used when a caller does not pass one."""
    if settings.LOG_LEVEL:
        return logging.getLevelName(settings.LOG_LEVEL)
    return _LEVEL_BY_ENV.get(settings.ENV, logging.INFO)


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Return the module logger *name*, attaching the stdout handler once."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    resolved = level if level is not None else default_level()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(resolved)
    # uvicorn configures the root logger too; avoid printing every line twice
    logger.propagate = False
    return logger


def uvicorn_log_config() -> dict[str, Any]:
    """uvicorn's dictConfig with Kirikou's line format applied."""
    from uvicorn.config import LOGGING_CONFIG

    config = copy.deepcopy(LOGGING_CONFIG)
    config["formatters"]["default"].update(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    config["formatters"]["access"].update(fmt=_ACCESS_FORMAT, datefmt=DATE_FORMAT)
    return config
