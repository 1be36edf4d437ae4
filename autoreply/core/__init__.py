"""Core building blocks: models, persistence, dedup, timing, crypto, logging."""

from autoreply.core.errors import (
    ConfigurationMissingError,
    DispatchFailureError,
    ParseFailure,
    ReplyGenerationError,
    TransientIOError,
)
from autoreply.core.logging import bind_context, clear_context, configure_logging, get_logger

__all__ = [
    "ConfigurationMissingError",
    "DispatchFailureError",
    "ParseFailure",
    "ReplyGenerationError",
    "TransientIOError",
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
]
