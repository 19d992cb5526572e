"""Logging setup for nodekeeper.

Two output formats, picked by ``LoggingConfig.format``:

- ``text``: one human-readable line per record
- ``json``: one JSON object per record, carrying the ``extra`` fields
  (``event``, ``container``, ``service``, ...) as top-level keys
"""

import logging
import sys
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger import json as jsonlogger

from nodekeeper.config import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"

# Structured fields that tell otherwise identical records apart. A backup
# logs the same messages once per container and service.
_SUBJECT_FIELDS = ("event", "container", "service", "instance_id", "backup_id")


def _subject(record: logging.LogRecord) -> tuple:
    return tuple(getattr(record, field, None) for field in _SUBJECT_FIELDS)


class RateLimitFilter(logging.Filter):
    """Drop repeats of the same record within ``window`` seconds.

    Two records are the same when they come from the same call site, render
    the same message and are about the same subject (see
    ``_SUBJECT_FIELDS``). WARNING and above are never dropped.
    """

    def __init__(self, window: float = 5.0, max_keys: int = 1000) -> None:
        super().__init__()
        self._window = window
        self._max_keys = max_keys
        self._seen: OrderedDict[tuple, float] = OrderedDict()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True

        key = (record.name, record.lineno, record.getMessage(), _subject(record))
        now = time.monotonic()
        last = self._seen.pop(key, None)
        if last is not None and now - last < self._window:
            self._seen[key] = last
            return False

        self._seen[key] = now
        while len(self._seen) > self._max_keys:
            self._seen.popitem(last=False)
        return True


class NodeKeeperJsonFormatter(jsonlogger.JsonFormatter):
    """JSON records with a fixed envelope: timestamp, level, logger, service, pid."""

    def __init__(self, service_name: str, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._service_name = service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record.update(
            timestamp=datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            level=record.levelname,
            logger=record.name,
            service=self._service_name,
            pid=record.process,
        )
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


def setup_logging(config: LoggingConfig) -> None:
    """Route all logging (ours and uvicorn's) through one stdout handler."""
    if config.format == "json":
        formatter: logging.Formatter = NodeKeeperJsonFormatter(config.service_name)
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(RateLimitFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = False
        uvicorn_logger.addHandler(handler)
    logging.getLogger("uvicorn.access").disabled = True

    # Docker API calls are logged by nodekeeper itself
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)
