"""Structured logging configuration.

Every record carries the scan context it was logged under (``barcode`` and
``stage``), so a single barcode can be followed through the source stages in
``logs/app.log``. Records logged outside a scan show ``-`` on the console and
omit the fields from the JSON output.
"""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from pythonjsonlogger import jsonlogger

from junktrunk.config import settings

CONTEXT_FIELDS = ("barcode", "stage")

# Chatty third-party loggers and the level they are held at
QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
}


class ScanContextFilter(logging.Filter):
    """Gives every record the scan context attributes the formatters expect."""

    def filter(self, record):
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, None)
        record.scan = record.barcode or "-"
        if record.stage:
            record.scan = f"{record.scan}/{record.stage}"
        return True


class ScanJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with time, level, origin and any scan context."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['origin'] = f"{record.filename}:{record.lineno}"

        log_record.pop('scan', None)
        for field in CONTEXT_FIELDS:
            if log_record.get(field) is None:
                log_record.pop(field, None)


def setup_logging(base_dir: str | Path | None = None):
    """Configure logging for the application.

    Args:
        base_dir: Directory to place the logs/ folder in. Defaults to
                  ``settings.log_dir``, then the current working directory.
    """
    root = base_dir or settings.log_dir
    logs_dir = (Path(root) if root else Path.cwd()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    context_filter = ScanContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.addFilter(context_filter)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - [%(scan)s] %(message)s")
    )
    root_logger.addHandler(console_handler)

    json_formatter = ScanJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    for filename, level in (("app.log", logging.DEBUG), ("error.log", logging.ERROR)):
        handler = RotatingFileHandler(
            logs_dir / filename,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.addFilter(context_filter)
        handler.setFormatter(json_formatter)
        root_logger.addHandler(handler)

    if not settings.debug:
        for name, level in QUIET_LOGGERS.items():
            logging.getLogger(name).setLevel(level)

    return root_logger


class ScanLogger(logging.LoggerAdapter):
    """Logger adapter that stamps its scan context onto each record."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs

    def bind(self, **context) -> "ScanLogger":
        """Return a logger with extra context layered over this one's."""
        return ScanLogger(self.logger, {**self.extra, **context})


def get_logger(name: str, **context) -> ScanLogger:
    """
    Get a logger bound to scan context.

    Args:
        name: Logger name (usually __name__)
        **context: Context fields, e.g. barcode='0123456789012'
    """
    return ScanLogger(logging.getLogger(name), context)
