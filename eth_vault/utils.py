"""Utilities."""

import datetime
import logging
import os
from typing import Optional
from urllib.parse import urlparse


def from_unix_timestamp(timestamp: float) -> datetime.datetime:
    """Convert UNIX seconds since epoch to naive Python datetime."""
    assert type(timestamp) in (int, float), f"Got {type(timestamp)}: {timestamp}"
    return datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc).replace(tzinfo=None)


def get_url_domain(url: str) -> str:
    """Redact URL so that only domain is displayed.

    Some services e.g. infura use path as an API key.
    """
    parsed = urlparse(url)
    if parsed.port in (80, 443, None):
        return parsed.hostname
    else:
        return f"{parsed.hostname}:{parsed.port}"


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    std_out_log_level: Optional[int] = None,
) -> logging.Logger:
    """Set up coloured log output.

    - Log level from ``LOG_LEVEL`` environment variable
    - Tune down some noisy dependency library logging

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    if not std_out_log_level:
        std_out_log_level = numeric_level

    if simplified_logging:
        fmt = "%(message)s"
    else:
        fmt = "%(asctime)s %(name)-30s %(message)s"
    date_fmt = "%H:%M:%S"

    try:
        # Optional dev dependency
        import coloredlogs

        coloredlogs.install(level=std_out_log_level, fmt=fmt, date_fmt=date_fmt)
    except ImportError:
        # non-ANSI e.g. Docker
        logging.basicConfig(level=std_out_log_level, format=fmt, datefmt=date_fmt)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()
