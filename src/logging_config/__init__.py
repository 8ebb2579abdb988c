"""Structured Logging & Session Tracing.

Provides structured JSON logging, session context propagation,
and round-trip timing for the Schwab gateway.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import SessionContext, generate_session_id, get_context_dict
from src.logging_config.performance import log_performance
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "SessionContext",
    "configure_logging",
    "generate_session_id",
    "get_context_dict",
    "get_logger",
    "log_performance",
]
