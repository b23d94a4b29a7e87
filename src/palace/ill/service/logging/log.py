from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Mapping, Sequence
from logging import Handler
from typing import Any

from palace.ill.service.logging.configuration import LoggingConfiguration, LogLevel
from palace.ill.util.datetime_helpers import from_timestamp
from palace.ill.util.json import json_serializer

# Log records of these libraries are only wanted at the verbose level.
VERBOSE_LOGGERS = (
    "sqlalchemy.engine",
    "requests.packages.urllib3.connectionpool",
    "urllib3.connectionpool",
)

# Attributes added to a record with `extra={"palace_<key>": ...}` are
# written out under `<key>`.
EXTRA_DATA_PREFIX = "palace_"


def _decode(value: Any) -> Any:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class JSONFormatter(logging.Formatter):
    """Writes each record as a single line of JSON.

    Searches run on worker threads, so records from anything other than
    the main thread carry the thread id.
    """

    def __init__(self) -> None:
        super().__init__()
        self.hostname = socket.getfqdn()
        self.main_thread_id = threading.main_thread().ident

    @staticmethod
    def _serializable(value: Any) -> bool:
        try:
            json_serializer(value)
        except (TypeError, ValueError):
            return False
        return True

    @staticmethod
    def _message(record: logging.LogRecord) -> str:
        message = _decode(record.msg)
        args: tuple[Any, ...] | dict[str, Any] | None = None
        if isinstance(record.args, Mapping):
            args = {_decode(k): _decode(v) for k, v in record.args.items()}
        elif isinstance(record.args, Sequence):
            args = tuple(_decode(arg) for arg in record.args)

        if not args:
            return str(message)
        try:
            return str(message % args)
        except Exception as e:
            # A broken log call must not break the search or hold that made it.
            return (
                "Log message could not be formatted. Exception: %r. Original message: message=%r args=%r"
                % (e, message, args)
            )

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "host": self.hostname,
            "name": record.name,
            "level": record.levelname,
            "filename": record.filename,
            "message": self._message(record),
            "timestamp": from_timestamp(record.created).isoformat(),
        }
        if record.exc_info:
            data["traceback"] = self.formatException(record.exc_info)
        if record.stack_info:
            data["stack"] = self.formatStack(record.stack_info)
        if record.process:
            data["process"] = record.process
        if record.thread and record.thread != self.main_thread_id:
            data["thread"] = record.thread

        for attribute, value in vars(record).items():
            if not attribute.startswith(EXTRA_DATA_PREFIX) or value is None:
                continue
            key = attribute.removeprefix(EXTRA_DATA_PREFIX)
            if key not in data and self._serializable(value):
                data[key] = value

        return json_serializer(data)


def create_stream_handler(formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    return handler


def setup_logging(level: LogLevel, verbose_level: LogLevel, stream: Handler) -> None:
    logging.basicConfig(force=True, level=level.value, handlers=[stream])
    for name in VERBOSE_LOGGERS:
        logging.getLogger(name).setLevel(verbose_level.value)


def configure_logging(config: LoggingConfiguration | None = None) -> None:
    """Set up logging for the broker from the environment."""
    config = config or LoggingConfiguration()
    setup_logging(
        config.level,
        config.verbose_level,
        create_stream_handler(JSONFormatter()),
    )
