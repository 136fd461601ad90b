"""
Logging configuration for codegate.
"""
import logging
import sys
from typing import Optional, TextIO


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> None:
    if format_string is None:
        format_string = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }

    log_level = level_map.get(level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(stream or sys.stdout)]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format=format_string,
        handlers=handlers,
    )

    logging.getLogger("uvicorn").setLevel(log_level)
    # urllib3 logs every connection at DEBUG, including bearer-authenticated URLs
    logging.getLogger("urllib3").setLevel(logging.WARNING)
