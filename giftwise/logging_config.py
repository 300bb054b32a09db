"""Structured logging: readable console output plus JSON files for Loki/Promtail."""

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from pythonjsonlogger import jsonlogger

from giftwise.config import settings

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"

# Rotate at 10 MB, keep five files per log
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# Chatty third-party loggers held at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "openai")


class PipelineJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps each record with the pipeline's standard fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(record.created, timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["service"] = "giftwise"
        log_record["source"] = f"{record.module}.{record.funcName}:{record.lineno}"
        if record.exc_info and "exc_type" not in log_record:
            log_record["exc_type"] = record.exc_info[0].__name__


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(base_dir: str | Path | None = None, level: str | None = None, json_console: bool = False):
    """Configure root logging.

    Args:
        base_dir: Directory holding the logs/ folder (defaults to the cwd).
        level: Log level override (defaults to settings.log_level).
        json_console: Emit JSON on stdout too, for containers without a log file mount.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.log_level).upper()))
    root.handlers.clear()

    json_formatter = PipelineJsonFormatter(JSON_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(json_formatter if json_console else logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    root.addHandler(_file_handler(logs_dir / "app.log", logging.DEBUG, json_formatter))
    root.addHandler(_file_handler(logs_dir / "error.log", logging.ERROR, json_formatter))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter that merges bound context (proxy, query, category) into every record.

    Fields passed at the call site in ``extra`` win over bound ones.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """Return a logger for ``name`` carrying ``context`` on each record."""
    return LoggerAdapter(logging.getLogger(name), context)
