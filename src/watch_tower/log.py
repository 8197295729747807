"""
Structured logging configuration for watch-tower

Every decision the loop takes (skip, scale-down, patch success or failure) is
reported through these loggers, so the output is the operator's only view of
what happened.
"""

import logging
import sys

import structlog

# Custom TRACE level below DEBUG
TRACE_LEVEL = 5
logging.addLevelName(TRACE_LEVEL, "TRACE")

_trace_enabled = False


def trace_level_processor(logger, method_name, event_dict):
    """Drop trace events unless trace output was requested"""
    if event_dict.get("_trace") and not _trace_enabled:
        raise structlog.DropEvent

    event_dict.pop("_trace", None)
    return event_dict


def setup_logging(verbose: int = 0):
    """
    Configure structured logging for the application

    Args:
        verbose: Logging verbosity level (0=INFO, 1=DEBUG, 2=TRACE)
    """
    global _trace_enabled

    # Trace output rides on DEBUG, gated by the module flag
    log_level = logging.DEBUG if verbose >= 1 else logging.INFO
    _trace_enabled = verbose >= 2

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    structlog.configure(
        processors=[
            trace_level_processor,
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.WriteLoggerFactory(),
        cache_logger_on_first_use=True,
    )


class TracingBoundLogger:
    """Wrapper around structlog.BoundLogger to add trace method"""

    def __init__(self, logger: structlog.BoundLogger):
        self._logger = logger

    def trace(self, msg: str, **kwargs):
        """Log at TRACE level (only when trace is enabled)"""
        if _trace_enabled:
            kwargs["_trace"] = True
            self._logger.debug(msg, **kwargs)

    def __getattr__(self, name):
        return getattr(self._logger, name)


def get_logger(name: str) -> TracingBoundLogger:
    """
    Get a structured logger instance with trace method

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger with trace method
    """
    return TracingBoundLogger(structlog.get_logger(name))
