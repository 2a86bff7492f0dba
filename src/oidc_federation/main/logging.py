import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from rich.logging import RichHandler

from oidc_federation.main.config import get_loglevel
from oidc_federation.main.request_context import get_request_context


JSON_LOGS_ENABLED = os.getenv("JSON_LOGS", "true").lower() in {"1", "true", "yes", "on"}


class ContextJSONFormatter(logging.Formatter):
    """Serialize log records with request context into JSON."""

    RESERVED_ATTRS = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
    }

    def format(self, record: logging.LogRecord) -> str:
        log: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        # correlation_id, issuer, session, user_id and phase of the current request
        for key, value in get_request_context().items():
            if value is not None and key not in log:
                log[key] = value

        for key, value in record.__dict__.items():
            if key in self.RESERVED_ATTRS or key.startswith("_"):
                continue
            if value is None:
                continue
            log.setdefault(key, value)

        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log["stack"] = record.stack_info

        return json.dumps(log, default=str)


# Third-party loggers only speak up when we are debugging ourselves
for _logger in logging.root.manager.loggerDict:
    if get_loglevel() <= logging.DEBUG:
        logging.getLogger(_logger).setLevel(logging.INFO)
    else:
        logging.getLogger(_logger).setLevel(logging.CRITICAL)

for logger_name in (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "sqlalchemy.orm",
    "aiohttp.access",
):
    quiet_logger = logging.getLogger(logger_name)
    quiet_logger.setLevel(logging.WARNING)
    quiet_logger.propagate = False


class SimpleLogger(logging.Logger):
    """Logger that writes JSON lines to stdout, or rich console output locally."""

    def __init__(self, name="main", level=logging.WARNING):
        logging.Logger.__init__(self, name, level)

        handler: logging.Handler
        if JSON_LOGS_ENABLED:
            handler = logging.StreamHandler(stream=sys.stdout)
            handler.setFormatter(ContextJSONFormatter())
        else:
            handler = RichHandler(rich_tracebacks=True, markup=False, show_path=True)
        handler.setLevel(level)
        self.addHandler(handler)


def get_logger(module_name: str):
    return SimpleLogger(name=module_name, level=get_loglevel())
