"""Structured logging for powermeter-mcp.

Builds on Python's standard logging module with:
- Structured data support (key-value pairs in logs)
- JSON formatting option for log aggregation
- Context management for per-meter operation tracking

Security Note:
    Values reported by the instrument (sensor names, calibration messages)
    are untrusted text. Pass them as keyword arguments rather than
    interpolating them into the message string:

    # SAFE - structured data is kept apart from the message
    logger.info("Sensor identified", name=sensor_name)

    # UNSAFE - could inject fake log entries with CRLF
    logger.info(f"Sensor {sensor_name} identified")

Example:
    logger = get_logger(__name__)

    logger.info("Registry initialized")
    logger.info("Meter connected", resource="USB0::0x1313::0x8078::P0000001::INSTR")

    with LogContext(resource=descriptor.resource_name):
        logger.info("Setting wavelength", requested_nm=635.0)

    configure_logging(json_format=True)
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import threading
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, cast

ROOT_LOGGER_NAME = "powermeter_mcp"

_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger(logging.Logger):
    """Logger with structured data support.

    Accepts keyword arguments on every level method; they become the
    ``structured_data`` attribute of the emitted record.

    Usage:
        logger = StructuredLogger("powermeter_mcp.devices.meter")
        logger.info("Wavelength set", applied_nm=635.0, clamped=False)
    """

    def debug(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log debug message with optional structured data kwargs."""
        if self.isEnabledFor(logging.DEBUG):
            self._log(
                logging.DEBUG,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def info(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log info message with optional structured data kwargs."""
        if self.isEnabledFor(logging.INFO):
            self._log(
                logging.INFO,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def warning(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log warning message with optional structured data kwargs."""
        if self.isEnabledFor(logging.WARNING):
            self._log(
                logging.WARNING,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def error(
        self,
        msg: object,
        *args: Any,
        exc_info: Any = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> None:
        """Log error message with optional structured data kwargs."""
        if self.isEnabledFor(logging.ERROR):
            self._log(
                logging.ERROR,
                msg,
                args,
                exc_info=exc_info,
                extra=extra,
                stack_info=stack_info,
                stacklevel=stacklevel + 1,
                **kwargs,
            )

    def _log(
        self,
        level: int,
        msg: object,
        args: tuple[Any, ...] | MutableMapping[str, Any] | None = None,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        **kwargs: Any,
    ) -> None:
        """Log a message, merging LogContext values and keyword arguments.

        The merge order is LogContext values < explicit kwargs, so a call
        site can override ambient context such as ``resource``.

        Args:
            level: Numeric log level.
            msg: Log message, may contain % placeholders.
            args: Arguments for % formatting.
            exc_info: Exception info, True to capture the current one.
            extra: Additional LogRecord attributes. The ``structured_data``
                key is overwritten.
            stack_info: Include a stack trace.
            stacklevel: Frames to skip when locating the caller.
            **kwargs: Structured key-value data for the record.
        """
        context = _log_context.get()
        structured_data = {**context, **kwargs}

        if extra is None:
            extra = {}
        extra["structured_data"] = structured_data

        super()._log(
            level,
            msg,
            args,
            exc_info=exc_info,
            extra=extra,
            stack_info=stack_info,
            stacklevel=stacklevel + 1,
        )


# =============================================================================
# Formatters
# =============================================================================


class StructuredFormatter(logging.Formatter):
    """Human-readable formatter with structured data.

    Format: timestamp - name - level - message | key=value key=value
    """

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        include_structured: bool = True,
    ) -> None:
        """Initialize the formatter.

        Args:
            fmt: Format string. Defaults to
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'.
            datefmt: Date format for %(asctime)s.
            include_structured: Append ' | key=value ...' when the record
                carries structured data.
        """
        if fmt is None:
            fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        super().__init__(fmt, datefmt)
        self.include_structured = include_structured

    def format(self, record: logging.LogRecord) -> str:
        """Format a record, appending structured key=value pairs.

        Args:
            record: Record to format. A missing ``structured_data``
                attribute is treated as empty.

        Returns:
            Formatted line, e.g.
            '... - INFO - Power read | resource=USB0::... power=0.0012 unit=W'.
        """
        base = super().format(record)

        if not self.include_structured:
            return base

        structured = getattr(record, "structured_data", {})
        if not structured:
            return base

        pairs = " ".join(f"{k}={_format_value(v)}" for k, v in structured.items())
        return f"{base} | {pairs}"


class JSONFormatter(logging.Formatter):
    """JSON formatter emitting one object per line (NDJSON).

    Keys: timestamp (ISO, UTC), level, logger, message, optional exception,
    plus every structured data key at the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a record as a single-line JSON object.

        Non-serializable values fall back to ``str()``.
        """
        log_dict: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        structured = getattr(record, "structured_data", {})
        log_dict.update(structured)

        if record.exc_info:
            log_dict["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_dict, default=str)


def _format_value(value: Any) -> str:
    """Format a value for key=value output.

    None becomes 'null', strings with spaces are quoted, dicts, lists and
    tuples are JSON-encoded, everything else goes through ``str()``.

    Example:
        >>> _format_value("Photodiode sensor")
        '"Photodiode sensor"'
        >>> _format_value(["Power sensor"])
        '["Power sensor"]'
    """
    if value is None:
        return "null"
    if isinstance(value, str):
        if " " in value:
            return f'"{value}"'
        return value
    if isinstance(value, dict | list | tuple):
        return json.dumps(value, default=str)
    return str(value)


# =============================================================================
# Context Management
# =============================================================================


@dataclass
class LogContext:
    """Context manager adding key-value pairs to every log line in scope.

    Nests: inner contexts merge with, and override, outer ones. Backed by
    contextvars so threads and tasks stay isolated.

    Usage:
        with LogContext(resource=descriptor.resource_name):
            logger.info("Connecting")

            with LogContext(operation="dark_adjust"):
                logger.info("Polling")  # Includes resource and operation
    """

    _kwargs: dict[str, Any] = field(default_factory=dict, init=False, repr=True)
    _token: contextvars.Token[dict[str, Any]] | None = field(
        default=None, init=False, repr=False
    )

    def __init__(self, **kwargs: Any) -> None:
        """Store the key-value pairs to activate on ``__enter__``."""
        self._kwargs = kwargs
        self._token = None

    def __enter__(self) -> LogContext:
        """Merge this context's values into the active logging context."""
        current = _log_context.get()
        new_context = {**current, **self._kwargs}
        self._token = _log_context.set(new_context)
        return self

    def __exit__(self, *args: Any) -> None:
        """Restore the previous logging context. Never suppresses errors."""
        if self._token is not None:
            _log_context.reset(self._token)


# =============================================================================
# Configuration
# =============================================================================

_configured = False
_config_lock = threading.Lock()


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
    force: bool = False,
) -> None:
    """Configure the powermeter-mcp logging system.

    Installs one stream handler on the ``powermeter_mcp`` logger and stops
    propagation to the root logger. Idempotent: later calls are ignored
    unless ``force=True``. Guarded by a lock.

    The MCP server speaks its protocol on stdout, so the default stream is
    stderr.

    Args:
        level: Minimum level, int or name ('DEBUG', 'INFO', ...).
        json_format: Use JSONFormatter instead of StructuredFormatter.
        stream: Output stream. Default: sys.stderr.
        include_structured: Append key=value pairs (text format only).
        force: Drop the existing configuration first.

    Example:
        >>> configure_logging(level="DEBUG")
        >>> import io
        >>> buffer = io.StringIO()
        >>> configure_logging(stream=buffer, force=True)
    """
    with _config_lock:
        if force:
            _reset_logging_impl()
        _configure_logging_impl(level, json_format, stream, include_structured)


def _configure_logging_impl(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: Any = None,
    include_structured: bool = True,
) -> None:
    """Internal implementation of configure_logging (assumes lock is held)."""
    global _configured

    if _configured:
        return

    logging.setLoggerClass(StructuredLogger)

    if stream is None:
        stream = sys.stderr
    handler = logging.StreamHandler(stream)

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = StructuredFormatter(include_structured=include_structured)
    handler.setFormatter(formatter)

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.addHandler(handler)
    root.propagate = False

    _configured = True


def _reset_logging_impl() -> None:
    """Internal implementation of reset_logging (assumes lock is held)."""
    global _configured

    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _configured = False


def reset_logging() -> None:
    """Reset the logging system to the unconfigured state.

    Removes and closes every handler on the ``powermeter_mcp`` logger. Meant
    for test teardown.
    """
    with _config_lock:
        _reset_logging_impl()


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger, configuring logging with defaults if needed.

    Args:
        name: Logger name, normally ``__name__``.

    Returns:
        StructuredLogger supporting ``logger.info("msg", key=value)``.

    Example:
        >>> logger = get_logger("powermeter_mcp.devices.meter")
        >>> logger.info("Meter connected", model="PM100D")
    """
    if not _configured:
        with _config_lock:
            if not _configured:  # pragma: no branch
                _configure_logging_impl()

    logger = logging.getLogger(name)

    # setLoggerClass() above guarantees the concrete class for our hierarchy.
    return cast(StructuredLogger, logger)
