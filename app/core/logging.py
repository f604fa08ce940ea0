"""Logging configuration driven by application settings."""

import logging
import sys

import structlog

from app.core.config import LogFormatEnum, Settings

SIMPLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def build_json_formatter() -> logging.Formatter:
    """Render stdlib log records as single-line JSON through structlog.

    Values passed with ``extra=`` become top-level keys.
    """
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.ExtraAdder(),
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
            structlog.processors.JSONRenderer(default=str),
        ],
    )


def setup_logging(config: Settings) -> None:
    """Configure the root logger once for the process."""
    handler = logging.StreamHandler(sys.stdout)
    if config.log_format == LogFormatEnum.json:
        handler.setFormatter(build_json_formatter())
    else:
        handler.setFormatter(logging.Formatter(SIMPLE_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(config.log_level.value)

    # Engine echo is controlled by settings.debug, keep SQLAlchemy quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
