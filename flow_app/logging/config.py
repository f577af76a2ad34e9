"""
Centralized logging configuration for the options flow pipeline.

This module provides standardized logging configuration using structlog
for all components. Producers, aggregators and query helpers should log
through loggers obtained here so output stays consistently structured.
"""
import logging
import sys
from typing import TYPE_CHECKING, Any, Optional

import structlog
from structlog.types import FilteringBoundLogger

if TYPE_CHECKING:
    from ..data.models import Trade


def configure_logging(
    level: str = "INFO",
    format_json: bool = False,
    include_timestamp: bool = True,
    include_caller: bool = False,
    extra_processors: Optional[list] = None
) -> None:
    """
    Configure structlog for the entire application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_json: If True, output JSON format; otherwise human-readable
        include_timestamp: Include timestamp in log output
        include_caller: Include caller information (filename, line number)
        extra_processors: Additional structlog processors to include
    """
    log_level = getattr(logging, level.upper())

    logging.basicConfig(
        level=log_level,
        stream=sys.stdout,
        format="%(message)s"  # structlog will handle formatting
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.FILENAME,
                        structlog.processors.CallsiteParameter.LINENO]
        ))

    if extra_processors:
        processors.extend(extra_processors)

    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """
    Get a configured structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)


def get_ingest_logger(name: str) -> FilteringBoundLogger:
    """Logger bound to the ingestion subsystem (normalize, classify, aggregate)."""
    return get_logger(name).bind(subsystem="ingest")


def get_backfill_logger(name: str) -> FilteringBoundLogger:
    """
    Get a logger specifically configured for backfill runs.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger for the backfill coordinator
    """
    logger = get_logger(name)

    return logger.bind(
        subsystem="backfill",
        audit_trail=True
    )


def log_classification(
    logger: FilteringBoundLogger,
    trade: "Trade",
    significant: bool,
    reason: str,
    dte: Optional[int] = None
) -> None:
    """
    Log a significance decision with standardized format.

    Args:
        logger: Structlog logger instance
        trade: Trade being classified
        significant: Whether the trade passed the premium and DTE gates
        reason: Short reason code for the decision
        dte: Days to expiry, when resolved
    """
    bound_logger = logger.bind(
        contract_symbol=trade.contract_symbol,
        underlying=trade.underlying,
        premium=str(trade.premium) if trade.premium is not None else None,
        dte=dte,
        classification="SIGNIFICANT" if significant else "RAW",
        reason=reason,
    )

    if significant:
        bound_logger.info("Significant trade")
    else:
        bound_logger.debug("Trade below significance gates")


def log_state_transition(
    logger: FilteringBoundLogger,
    run_id: str,
    from_state: str,
    to_state: str,
    trigger: str,
    context: Optional[dict[str, Any]] = None
) -> None:
    """
    Log a backfill state transition with standardized format.

    Args:
        logger: Structlog logger instance
        run_id: ID of the backfill run
        from_state: Current state
        to_state: Target state
        trigger: What triggered the transition
        context: Additional context data
    """
    bound_logger = logger.bind(
        run_id=run_id,
        from_state=from_state,
        to_state=to_state,
        trigger=trigger,
    )

    if context:
        bound_logger = bound_logger.bind(context=context)

    bound_logger.info("State transition")
