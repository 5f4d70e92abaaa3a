"""
Remi - Logging
===============
``get_logger(__name__)`` hands every module a logger writing to stdout
with one shared line format.  Level comes from ``settings.ENV``
(``dev`` → DEBUG, ``prod`` → WARNING) unless overridden per call.

Messages start with a bracketed stage tag so one turn can be followed
through the relay: ``[WEBHOOK]``, ``[RETRIEVER]``, ``[LLM]``,
``[PIPELINE]``, ``[WHATSAPP]``, ``[STORE]``.
"""

import logging
import sys

from remi.config.settings import settings

_LEVEL_BY_ENV = {"dev": logging.DEBUG, "prod": logging.WARNING}
_LINE_FORMAT = logging.Formatter(fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def _stdout_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(_LINE_FORMAT)
    return handler


def get_logger(name: str, level: int | None = None) -> logging.Logger:
    """Named logger with Remi's stdout handler; configured once per name."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if level is None:
        level = _LEVEL_BY_ENV.get(settings.ENV, logging.INFO)
    logger.setLevel(level)
    logger.addHandler(_stdout_handler(level))
    logger.propagate = False
    return logger
