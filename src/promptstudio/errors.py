"""Error types for the studio core.

Precondition violations are handed back to callers as values (see
``AutoplayOrchestrator.check_start``); malformed provider payloads are
raised at the provider boundary so they never reach the aggregation code.
"""

from __future__ import annotations

from dataclasses import dataclass


class StudioError(Exception):
    """Base class for studio core errors."""


@dataclass
class PreconditionError(StudioError):
    """An operation was requested in a state that does not allow it.

    Attributes:
        operation: Name of the rejected operation (e.g. ``"autoplay.start"``).
        reason: Human-readable explanation suitable for the event log.
    """

    operation: str
    reason: str

    def __post_init__(self) -> None:
        super().__init__(f"Cannot {self.operation}: {self.reason}")


@dataclass
class MalformedResponseError(StudioError):
    """A provider returned a payload that does not match the expected shape.

    Attributes:
        kind: Which result was being parsed (``generation``, ``evaluation``, ``polish``).
        reason: Validation details.
    """

    kind: str
    reason: str

    def __post_init__(self) -> None:
        super().__init__(f"Malformed {self.kind} response: {self.reason}")


class AutoplayError(StudioError):
    """An autoplay iteration cannot continue (e.g. every render failed)."""
