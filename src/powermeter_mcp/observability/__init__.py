"""Observability module for powermeter-mcp.

Provides structured logging for meter operations.

Example:
    from powermeter_mcp.observability import get_logger, LogContext

    logger = get_logger(__name__)

    logger.info("Registry initialized")

    with LogContext(resource="USB0::0x1313::0x8072::P2000001::INSTR"):
        logger.info("Power read", power=1.2e-3, unit="W")
"""

from powermeter_mcp.observability.logging import (
    JSONFormatter,
    LogContext,
    StructuredFormatter,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)

__all__ = [
    "JSONFormatter",
    "LogContext",
    "StructuredFormatter",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
]
