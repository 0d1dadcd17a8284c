"""Autoplay state, events and the bounded event log."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from collections.abc import Iterator

AutoplayPhase = Literal[
    "idle",
    "generating",
    "evaluating",
    "refining",
    "polishing",
    "complete",
    "error",
]
CompletionReason = Literal["target_met", "max_iterations", "user_stopped", "error"]

RUNNING_PHASES: frozenset[str] = frozenset({"generating", "evaluating", "refining", "polishing"})
TERMINAL_PHASES: frozenset[str] = frozenset({"complete", "error"})

EventType = Literal[
    "started",
    "start_rejected",
    "phase_changed",
    "session_implicitly_closed",
    "prompts_generated",
    "image_failed",
    "image_evaluated",
    "image_saved",
    "candidate_rejected",
    "polish_started",
    "polish_skipped",
    "image_polished",
    "polish_no_improvement",
    "polish_error",
    "feedback_updated",
    "iteration_completed",
    "completed",
    "stopped",
    "timeout",
    "error",
    "reset",
]


@dataclass(frozen=True)
class SavedCandidate:
    """A candidate accepted during a run."""

    prompt_id: str
    image_url: str
    score: float
    iteration: int
    polished: bool = False


@dataclass
class IterationSummary:
    """What happened in one loop iteration."""

    iteration: int
    prompt_ids: list[str] = field(default_factory=list)
    rendered: int = 0
    scores: dict[str, float] = field(default_factory=dict)
    accepted: list[str] = field(default_factory=list)
    polished: list[str] = field(default_factory=list)


@dataclass
class AutoplayState:
    """Observable state of an autoplay run.

    Attributes:
        phase: Current phase of the state machine.
        current_iteration: 1-based iteration in progress; 0 before the first.
        max_iterations: Iteration budget for this run.
        saved_count: Candidates accepted so far.
        target_count: Accepted candidates needed to finish with ``target_met``.
        completion_reason: Why the run ended; None while idle or running.
        last_error: Human-readable error for the ``error`` phase.
        saved: Accepted candidates in acceptance order.
        iterations: Per-iteration summaries.
    """

    phase: AutoplayPhase = "idle"
    current_iteration: int = 0
    max_iterations: int = 0
    saved_count: int = 0
    target_count: int = 0
    completion_reason: CompletionReason | None = None
    last_error: str | None = None
    saved: list[SavedCandidate] = field(default_factory=list)
    iterations: list[IterationSummary] = field(default_factory=list)

    @property
    def is_running(self) -> bool:
        return self.phase in RUNNING_PHASES

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES


@dataclass(frozen=True)
class AutoplayEvent:
    """One entry of the append-only event log."""

    type: EventType
    phase: AutoplayPhase
    iteration: int
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class EventLog:
    """Most-recent-N event buffer; older events fall off the front."""

    def __init__(self, max_size: int = 100) -> None:
        self._events: deque[AutoplayEvent] = deque(maxlen=max_size)

    def append(self, event: AutoplayEvent) -> None:
        self._events.append(event)

    @property
    def max_size(self) -> int:
        return self._events.maxlen or 0

    def recent(self, count: int | None = None) -> list[AutoplayEvent]:
        """Return events oldest first, optionally only the last ``count``."""
        events = list(self._events)
        if count is None:
            return events
        return events[-count:] if count > 0 else []

    def of_type(self, event_type: EventType) -> list[AutoplayEvent]:
        return [e for e in self._events if e.type == event_type]

    def __iter__(self) -> Iterator[AutoplayEvent]:
        return iter(list(self._events))

    def __len__(self) -> int:
        return len(self._events)
