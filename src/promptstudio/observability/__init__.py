"""Observability module for PromptStudio.

Provides structured logging for the studio core and the CLI.
"""

from promptstudio.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
    log_context,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
    "log_context",
]
