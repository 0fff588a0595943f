"""Structured JSON logging configuration.

Logging is configured from ``logging_config.json`` next to this module. Records
go through a queue handler so the chat loop never blocks on log I/O; a
listener thread fans them out to stdout (up to INFO), stderr (WARNING and
above) and, when a log file is given, a rotating file of JSON lines.

Example:
    ```python
    import logging
    from minechat_client.logger import setup_logging

    logger = logging.getLogger(__name__)
    setup_logging(verbose=True)

    logger.info("Client started", extra={"version": "0.2.0"})
    ```
"""

import atexit
import datetime as dt
import json
import logging
import logging.config
import logging.handlers
import pathlib
import sys
from typing import Optional
from typing_extensions import override

# Built-in attributes of LogRecord that should not be included in extra fields
LOG_RECORD_BUILTIN_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "thread",
    "threadName",
    "taskName",
}

# Global queue listener instance
_queue_listener: Optional[logging.handlers.QueueListener] = None


def setup_logging(
    verbose: bool = False,
    log_file: Optional[pathlib.Path] = None,
    config_path: Optional[pathlib.Path] = None,
) -> None:
    """Set up logging configuration for the application.

    Args:
        verbose: Log at DEBUG instead of INFO.
        log_file: Where to write JSON log lines. The file handler is dropped
                  when not given.
        config_path: Optional path to a JSON logging configuration file.
                    If not provided, uses logging_config.json in the same directory as this module.

    Raises:
        FileNotFoundError: If the logging configuration file is not found
        json.JSONDecodeError: If the config file is not valid JSON
        ValueError: If the configuration is invalid
    """
    global _queue_listener

    if config_path is None:
        module_dir = pathlib.Path(__file__).parent
        config_path = module_dir / "logging_config.json"
    if not config_path.exists():
        raise FileNotFoundError(
            f"Logging configuration file not found: {config_path}. "
            "Please ensure logging_config.json exists in the module directory."
        )

    try:
        with open(config_path) as f_in:
            config = json.load(f_in)

        # Register our formatter class in the config
        if "formatters" in config:
            for formatter in config["formatters"].values():
                if isinstance(formatter, dict) and formatter.get("()", "").endswith(
                    "StructuredJSONFormatter"
                ):
                    formatter["()"] = f"{__name__}.StructuredJSONFormatter"

        handlers = config.get("handlers", {})
        _configure_file_handler(handlers, log_file)

        if verbose:
            config.setdefault("root", {})["level"] = "DEBUG"

        # Ensure log directory exists if file handlers are configured
        for handler in handlers.values():
            filename = handler.get("filename")
            if filename:
                log_path = pathlib.Path(filename).parent
                log_path.mkdir(parents=True, exist_ok=True)

        stop_logging()
        logging.config.dictConfig(config)

        # Set up queue handler if configured
        queue_handler = logging.getHandlerByName("queue_handler")
        if isinstance(queue_handler, logging.handlers.QueueHandler):
            _queue_listener = getattr(queue_handler, "listener", None)
            if _queue_listener is not None:
                _queue_listener.start()
                atexit.register(stop_logging)

    except json.JSONDecodeError as e:
        raise json.JSONDecodeError(
            f"Invalid logging configuration in {config_path}: {str(e)}", e.doc, e.pos
        ) from e
    except ValueError as e:
        raise ValueError(
            f"Invalid logging configuration in {config_path}: {str(e)}"
        ) from e


def stop_logging() -> None:
    """Flush and stop the queue listener, if one is running."""
    global _queue_listener

    if _queue_listener is not None:
        listener, _queue_listener = _queue_listener, None
        listener.stop()


def _configure_file_handler(handlers: dict, log_file: Optional[pathlib.Path]) -> None:
    file_handler = handlers.get("file_json")
    if file_handler is None:
        return
    if log_file is None:
        del handlers["file_json"]
        queue_handler = handlers.get("queue_handler", {})
        queue_handler["handlers"] = [
            name for name in queue_handler.get("handlers", []) if name != "file_json"
        ]
    else:
        file_handler["filename"] = str(log_file)


class StructuredJSONFormatter(logging.Formatter):
    def __init__(
        self,
        *,
        fmt_keys: dict[str, str] | None = None,
    ):
        super().__init__()
        self.fmt_keys = fmt_keys if fmt_keys is not None else {}

    @override
    def format(self, record: logging.LogRecord) -> str:
        message = self._prepare_log_dict(record)
        return json.dumps(message, default=str)

    def _prepare_log_dict(self, record: logging.LogRecord):
        always_fields = {
            "message": record.getMessage(),
            "timestamp": dt.datetime.fromtimestamp(
                record.created, tz=dt.timezone.utc
            ).isoformat(),
        }
        if record.exc_info is not None:
            always_fields["exc_info"] = self.formatException(record.exc_info)

        if record.stack_info is not None:
            always_fields["stack_info"] = self.formatStack(record.stack_info)

        message = {
            key: msg_val
            if (msg_val := always_fields.pop(val, None)) is not None
            else getattr(record, val)
            for key, val in self.fmt_keys.items()
        }
        message.update(always_fields)

        for key, val in record.__dict__.items():
            if key not in LOG_RECORD_BUILTIN_ATTRS:
                message[key] = val

        return message


class NonErrorFilter(logging.Filter):
    """Filter that only allows non-error log records (INFO and below)."""

    @override
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= logging.INFO


class StdStreamHandler(logging.StreamHandler):
    """Stream handler bound to ``sys.stdout`` or ``sys.stderr`` by name.

    The stream is looked up on every write, so redirections installed after
    logging is configured (such as prompt_toolkit's ``patch_stdout``) apply
    to log output too.
    """

    def __init__(self, stream_name: str = "stdout"):
        self.stream_name = stream_name
        super().__init__()

    @property
    def stream(self):
        return getattr(sys, self.stream_name)

    @stream.setter
    def stream(self, value):
        pass
