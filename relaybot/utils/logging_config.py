"""
Logging configuration for the relay bot.

Console output is colored text by default or JSON with LOG_FORMAT=json; an
optional log file always gets JSON. Per-message code logs through structlog
loggers bound with room_id/event_id, everything else uses the stdlib logging
module. structlog hands its bound keys to stdlib as `extra`, so both kinds of
record go through the same formatters and context stays a top-level field.
"""

import copy
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from pythonjsonlogger import jsonlogger

from .. import __version__

TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
JSON_FORMAT = '%(asctime)s %(name)s %(levelname)s %(message)s'

# Libraries that log every request or sync at INFO
NOISY_LOGGERS = ('nio', 'httpx', 'httpcore', 'aiohttp.access', 'google_genai')


class StructuredFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with the service name and version."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        # Bound structlog keys (room_id, event_id, ...) are merged in as extras here
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['service'] = 'relaybot'
        log_record['version'] = __version__


# Attributes every LogRecord has; anything else arrived through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime'}


class ColoredFormatter(logging.Formatter):
    """Text formatter that colors the level name and appends context as key=value."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        # The file handler sees the same record
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname, '')
        record.levelname = f"{color}{record.levelname}{self.RESET}"

        context = ' '.join(
            f"{key}={value}" for key, value in vars(record).items() if key not in _RECORD_ATTRS
        )
        if context:
            record.msg = f"{record.getMessage()} {context}"
            record.args = None
        return super().format(record)


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            # Event becomes the message, bound keys become LogRecord extras
            structlog.stdlib.render_to_log_kwargs,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )


def _build_handlers(log_format: str, log_file: Optional[str]) -> List[logging.Handler]:
    console = logging.StreamHandler(sys.stderr)
    if log_format == "json":
        console.setFormatter(StructuredFormatter(JSON_FORMAT))
    else:
        console.setFormatter(ColoredFormatter(TEXT_FORMAT))
    handlers: List[logging.Handler] = [console]

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(StructuredFormatter(JSON_FORMAT))
        handlers.append(file_handler)

    return handlers


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure structlog and the root logger. Safe to call more than once.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_format: 'text' (colored, for terminals) or 'json'
        log_file: Optional path that receives JSON records
    """
    _configure_structlog()

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=_build_handlers(log_format, log_file),
        format='%(message)s',
        force=True,
    )

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Structlog logger for `name`; bind room_id/event_id on it for per-message logs."""
    return structlog.get_logger(name)
