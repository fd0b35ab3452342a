"""Process-wide logging setup."""

from __future__ import annotations

import logging
import sys

_NOISY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai", "langfuse")


def configure_logging(level: str = "INFO", service_name: str = "support-agent") -> None:
    """Install a single stdout handler on the root logger."""

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        logging.Formatter(
            f"%(asctime)s - {service_name} - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    root_logger.setLevel(level.upper())
    root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
