"""Structured logging for PromptStudio.

Events are logged with structlog under snake_case names and routed through
stdlib logging to two sinks:

- the console, rendered as ``event key=value`` lines by rich on stderr, with
  the level chosen by the ``-v`` count;
- ``{workspace}/logs/debug.jsonl`` when file logging is on, one JSON object
  per event with every bound key kept as a field.

Keys bound with :func:`log_context` (for example the autoplay run number)
are merged into every event logged inside the block, on both sinks.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from structlog.typing import Processor

LOG_FILENAME = "debug.jsonl"

VERBOSITY_LEVELS = {0: logging.WARNING, 1: logging.INFO}

# asyncio logs selector chatter at DEBUG
QUIET_LOGGERS = ("asyncio",)

_configured = False
_file_handler: JSONLFileHandler | None = None
_logs_dir: Path | None = None


class JSONLFileHandler(logging.FileHandler):
    """Writes each record as one JSON line.

    Records coming from structlog carry their event dict as ``record.msg``;
    its keys become top-level fields. Plain stdlib records are reduced to
    their formatted message.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._write(self.to_entry(record))
        except Exception:
            self.handleError(record)

    def to_entry(self, record: logging.LogRecord) -> dict[str, object]:
        entry: dict[str, object] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        if isinstance(record.msg, dict):
            fields = {k: v for k, v in record.msg.items() if k not in ("level", "timestamp")}
            entry["event"] = fields.pop("event", "")
            entry.update(fields)
        else:
            entry["event"] = record.getMessage()
        if record.exc_info:
            entry["exception"] = logging.Formatter().formatException(record.exc_info)
        return entry

    def _write(self, entry: dict[str, object]) -> None:
        if self.stream is None:
            return
        self.stream.write(json.dumps(entry, default=str) + "\n")
        self.stream.flush()


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]


def _drop_rich_duplicates(
    logger: object, method_name: str, event_dict: structlog.typing.EventDict
) -> structlog.typing.EventDict:
    # rich already prints the time and level columns
    event_dict.pop("timestamp", None)
    event_dict.pop("level", None)
    return event_dict


def _console_handler(verbosity: int) -> RichHandler:
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
        level=VERBOSITY_LEVELS.get(verbosity, logging.DEBUG),
    )
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _drop_rich_duplicates,
                structlog.dev.ConsoleRenderer(colors=False),
            ],
            foreign_pre_chain=_shared_processors(),
        )
    )
    return handler


def _open_file_handler(workspace: Path) -> JSONLFileHandler:
    global _logs_dir
    _logs_dir = workspace / "logs"
    _logs_dir.mkdir(parents=True, exist_ok=True)
    handler = JSONLFileHandler(str(_logs_dir / LOG_FILENAME), mode="a", encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    return handler


def configure_logging(
    verbosity: int = 0,
    log_to_file: bool = False,
    workspace: Path | None = None,
) -> None:
    """Configure logging for PromptStudio.

    Safe to call again; the previous JSONL handler is closed first.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG on the console.
        log_to_file: If True, also write every event to {workspace}/logs/.
        workspace: Studio workspace directory. Required if log_to_file=True.

    Raises:
        ValueError: If log_to_file=True but workspace is not provided.
    """
    global _configured, _file_handler, _logs_dir

    if log_to_file and workspace is None:
        raise ValueError("workspace is required when log_to_file=True")

    close_file_logging()
    _logs_dir = None

    handlers: list[logging.Handler] = [_console_handler(verbosity)]
    if log_to_file and workspace is not None:
        _file_handler = _open_file_handler(workspace)
        handlers.append(_file_handler)

    # The file sink wants everything; the console handler filters on its own
    root_level = logging.DEBUG if (verbosity > 0 or log_to_file) else logging.WARNING
    logging.basicConfig(level=root_level, handlers=handlers, force=True)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Get a structured logger, configuring logging on first use."""
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def log_context(**values: object) -> AbstractContextManager[None]:
    """Bind ``values`` to every event logged inside the ``with`` block.

    Bindings live in a context variable, so a block inside an asyncio task
    only tags that task's events.
    """
    return structlog.contextvars.bound_contextvars(**values)


def get_logs_dir() -> Path | None:
    """Return the logs directory while file logging is enabled."""
    return _logs_dir


def close_file_logging() -> None:
    """Close the JSONL handler if one is open."""
    global _file_handler
    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None
