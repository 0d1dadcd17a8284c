"""Generation session tracking.

A session spans one attempt at reaching a satisfying output. The tracker
lives on an editing context (see :class:`promptstudio.context.StudioContext`)
so independent contexts never share session state.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from promptstudio.models.prompts import OutputMode, new_id
from promptstudio.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from promptstudio.models.prompts import Dimension

log = get_logger(__name__)

# Closed sessions kept for display; learning and the store see every one
MAX_CLOSED_SESSIONS = 100


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class IterationRecord:
    """One generation round inside a session."""

    id: str
    prompt_ids: tuple[str, ...]
    recorded_at: datetime


@dataclass
class GenerationSession:
    """State of one generation attempt.

    Attributes:
        id: Session identifier.
        started_at: When the session opened.
        dimensions_snapshot: Deep copy of the dimensions at start.
        base_image: Base image description at start.
        output_mode: Output mode at start.
        iterations: Iterations recorded while the session was active.
        ended_at: Close time; None while active.
        satisfied: True/False once closed; None while active.
        final_feedback: Optional note supplied on close.
    """

    id: str
    started_at: datetime
    dimensions_snapshot: list[Dimension]
    base_image: str
    output_mode: OutputMode
    iterations: list[IterationRecord] = field(default_factory=list)
    ended_at: datetime | None = None
    satisfied: bool | None = None
    final_feedback: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.ended_at is not None

    @property
    def iteration_count(self) -> int:
        return len(self.iterations)

    @property
    def iteration_ids(self) -> list[str]:
        return [it.id for it in self.iterations]

    @property
    def duration(self) -> timedelta | None:
        if self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    @property
    def time_to_satisfaction(self) -> timedelta | None:
        """Elapsed time for satisfied sessions, None otherwise."""
        if not self.satisfied:
            return None
        return self.duration

    @property
    def filled_dimension_types(self) -> list[str]:
        return sorted({d.type.value for d in self.dimensions_snapshot if d.is_filled})


@dataclass(frozen=True)
class SessionStart:
    """Result of :meth:`GenerationSessionTracker.start_session`.

    ``closed_previous`` is set when starting implicitly closed an active
    session as unsatisfied.
    """

    session: GenerationSession
    closed_previous: GenerationSession | None = None


class GenerationSessionTracker:
    """Tracks at most one active generation session.

    Args:
        clock: Returns the current time; injectable for tests.
        max_closed: How many closed sessions to retain, oldest dropped first.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        max_closed: int = MAX_CLOSED_SESSIONS,
    ) -> None:
        self._clock = clock or utc_now
        self._active: GenerationSession | None = None
        self._closed: deque[GenerationSession] = deque(maxlen=max_closed)
        self._listeners: list[Callable[[GenerationSession], None]] = []

    def add_close_listener(self, listener: Callable[[GenerationSession], None]) -> None:
        """Register a callback that receives every closed session."""
        self._listeners.append(listener)

    def start_session(
        self,
        dimensions: Sequence[Dimension],
        base_image: str,
        output_mode: OutputMode = OutputMode.GAMEPLAY,
    ) -> SessionStart:
        previous = None
        if self._active is not None:
            previous = self._close(satisfied=False, feedback=None)
            log.warning(
                "session_implicitly_closed",
                session_id=previous.id,
                iterations=previous.iteration_count,
            )

        self._active = GenerationSession(
            id=new_id(),
            started_at=self._clock(),
            dimensions_snapshot=[d.model_copy(deep=True) for d in dimensions],
            base_image=base_image,
            output_mode=output_mode,
        )
        log.info("session_started", session_id=self._active.id, output_mode=str(output_mode))
        return SessionStart(session=self._active, closed_previous=previous)

    def get_active_session(self) -> GenerationSession | None:
        return self._active

    def record_iteration(self, prompt_ids: Sequence[str]) -> IterationRecord | None:
        """Append an iteration to the active session.

        Returns:
            The new record, or None when no session is active.
        """
        if self._active is None:
            log.debug("iteration_without_session", prompts=len(prompt_ids))
            return None
        record = IterationRecord(
            id=new_id(), prompt_ids=tuple(prompt_ids), recorded_at=self._clock()
        )
        self._active.iterations.append(record)
        return record

    def mark_satisfied(self, feedback: str | None = None) -> GenerationSession | None:
        if self._active is None:
            return None
        return self._close(satisfied=True, feedback=feedback)

    def end_unsuccessful(self, feedback: str | None = None) -> GenerationSession | None:
        if self._active is None:
            return None
        return self._close(satisfied=False, feedback=feedback)

    @property
    def closed_sessions(self) -> list[GenerationSession]:
        return list(self._closed)

    def summary(self) -> dict[str, Any] | None:
        """Compact view of the active session for display."""
        session = self._active
        if session is None:
            return None
        return {
            "session_id": session.id,
            "iterations": session.iteration_count,
            "elapsed_seconds": (self._clock() - session.started_at).total_seconds(),
            "output_mode": str(session.output_mode),
            "dimensions": session.filled_dimension_types,
        }

    def _close(self, *, satisfied: bool, feedback: str | None) -> GenerationSession:
        session = self._active
        assert session is not None
        ended = self._clock()
        session.ended_at = max(ended, session.started_at)
        session.satisfied = satisfied
        session.final_feedback = feedback
        self._active = None
        self._closed.append(session)
        log.info(
            "session_closed",
            session_id=session.id,
            satisfied=satisfied,
            iterations=session.iteration_count,
        )
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception as e:
                log.warning("session_listener_failed", session_id=session.id, error=str(e))
        return session
