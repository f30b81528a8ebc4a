"""
logging_setup.py
----------------
Logging configuration for host applications.

The engine only creates module loggers (logging.getLogger(__name__));
it never installs handlers.  A host calls configure_logging() once.
"""

import logging

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger(__name__).info("Logging initialized with level %s", level)
