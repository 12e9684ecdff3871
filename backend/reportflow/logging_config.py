"""
Logging configuration for the application.

Supports per-module log levels via environment variables:
- LOG_LEVEL: Global log level (default: INFO)
- LOG_FORMAT: Log format - simple or structured (default: structured)
- LOG_LEVEL_<MODULE>: Per-module override (e.g., LOG_LEVEL_PIPELINE=DEBUG)
"""

import logging
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reportflow.config import Settings


# Settings field suffix -> logger name
MODULE_LOGGERS = {
    "pipeline": "reportflow.services.pipeline",
    "stages": "reportflow.services.stages",
    "collaborators": "reportflow.services.collaborators",
    "api": "reportflow.api",
}

_PREFIXES = (
    ("reportflow.services.", ""),
    ("reportflow.api.", "api."),
    ("reportflow.", ""),
)


class StructuredFormatter(logging.Formatter):
    """
    Structured log formatter for easy parsing.

    Format: timestamp | level | logger | message
    """

    def format(self, record: logging.LogRecord) -> str:
        logger_name = record.name
        for prefix, replacement in _PREFIXES:
            if logger_name.startswith(prefix):
                logger_name = replacement + logger_name[len(prefix):]
                break

        timestamp = self.formatTime(record, "%Y-%m-%d %H:%M:%S")

        message = (
            f"{timestamp} | "
            f"{record.levelname:8} | "
            f"{logger_name:28} | "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


def setup_logging(settings: "Settings") -> None:
    """
    Configure the root logger from settings.

    Replaces existing root handlers, so calling it twice does not
    duplicate output.

    Args:
        settings: Application settings with log configuration
    """
    root_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "structured":
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(root_level)
    root_logger.addHandler(handler)

    for module_key, logger_name in MODULE_LOGGERS.items():
        level_str = getattr(settings, f"log_level_{module_key}", None)
        if level_str:
            level = getattr(logging, level_str.upper(), root_level)
            logging.getLogger(logger_name).setLevel(level)

    # Quiet noisy third-party loggers
    for name in ("httpx", "httpcore", "anthropic", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)
