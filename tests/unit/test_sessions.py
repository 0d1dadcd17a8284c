"""Tests for generation session tracking."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from promptstudio.models import Dimension, DimensionType, OutputMode
from promptstudio.sessions import GenerationSession, GenerationSessionTracker

if TYPE_CHECKING:
    from tests.conftest import FakeClock


class TestStartSession:
    def test_start_snapshots_dimensions(self, clock: FakeClock) -> None:
        """Later edits to the caller's dimensions do not leak into the session."""
        tracker = GenerationSessionTracker(clock)
        dims = [Dimension(type=DimensionType.MOOD, reference="eerie")]

        started = tracker.start_session(dims, "temple", OutputMode.CONCEPT)
        dims[0].reference = "cheerful"

        session = started.session
        assert started.closed_previous is None
        assert tracker.get_active_session() is session
        assert session.dimensions_snapshot[0].reference == "eerie"
        assert session.output_mode == OutputMode.CONCEPT
        assert session.started_at == clock.now

    def test_second_start_closes_previous_as_unsatisfied(self, clock: FakeClock) -> None:
        """At most one session is active; the replaced one is returned closed."""
        tracker = GenerationSessionTracker(clock)
        first = tracker.start_session([], "temple").session
        clock.advance(30)

        second = tracker.start_session([], "temple")

        assert second.closed_previous is first
        assert first.is_closed
        assert first.satisfied is False
        assert first.duration == timedelta(seconds=30)
        assert tracker.get_active_session() is second.session
        assert tracker.closed_sessions == [first]


class TestIterations:
    def test_record_iteration_appends(self, clock: FakeClock) -> None:
        tracker = GenerationSessionTracker(clock)
        tracker.start_session([], "temple")

        record = tracker.record_iteration(["p1", "p2"])

        session = tracker.get_active_session()
        assert session is not None
        assert record is not None
        assert record.prompt_ids == ("p1", "p2")
        assert session.iteration_count == 1
        assert session.iteration_ids == [record.id]

    def test_record_without_session_is_a_no_op(self, clock: FakeClock) -> None:
        tracker = GenerationSessionTracker(clock)

        assert tracker.record_iteration(["p1"]) is None
        assert tracker.get_active_session() is None


class TestClosing:
    def test_mark_satisfied_records_time_to_satisfaction(self, clock: FakeClock) -> None:
        tracker = GenerationSessionTracker(clock)
        tracker.start_session([], "temple")
        clock.advance(90)

        session = tracker.mark_satisfied("love the lighting")

        assert session is not None
        assert session.satisfied is True
        assert session.final_feedback == "love the lighting"
        assert session.time_to_satisfaction == timedelta(seconds=90)
        assert tracker.get_active_session() is None

    def test_end_unsuccessful_has_no_time_to_satisfaction(self, clock: FakeClock) -> None:
        tracker = GenerationSessionTracker(clock)
        tracker.start_session([], "temple")

        session = tracker.end_unsuccessful()

        assert session is not None
        assert session.satisfied is False
        assert session.time_to_satisfaction is None

    def test_closing_without_session_returns_none(self, clock: FakeClock) -> None:
        tracker = GenerationSessionTracker(clock)

        assert tracker.mark_satisfied() is None
        assert tracker.end_unsuccessful() is None

    def test_clock_skew_never_yields_negative_duration(self, clock: FakeClock) -> None:
        tracker = GenerationSessionTracker(clock)
        tracker.start_session([], "temple")
        clock.advance(-10)

        session = tracker.end_unsuccessful()

        assert session is not None
        assert session.duration == timedelta(0)


class TestListeners:
    def test_listener_receives_closed_sessions(self, clock: FakeClock) -> None:
        tracker = GenerationSessionTracker(clock)
        closed: list[GenerationSession] = []
        tracker.add_close_listener(closed.append)

        tracker.start_session([], "a")
        tracker.start_session([], "b")
        tracker.mark_satisfied()

        assert [s.base_image for s in closed] == ["a", "b"]
        assert [s.satisfied for s in closed] == [False, True]

    def test_failing_listener_does_not_break_close(self, clock: FakeClock) -> None:
        tracker = GenerationSessionTracker(clock)

        def explode(session: GenerationSession) -> None:
            raise RuntimeError("listener down")

        tracker.add_close_listener(explode)
        tracker.start_session([], "temple")

        session = tracker.mark_satisfied()

        assert session is not None
        assert session.satisfied is True
        assert tracker.get_active_session() is None


def test_independent_trackers_do_not_share_state(clock: FakeClock) -> None:
    first = GenerationSessionTracker(clock)
    second = GenerationSessionTracker(clock)

    first.start_session([], "temple")

    assert second.get_active_session() is None


def test_summary(clock: FakeClock) -> None:
    tracker = GenerationSessionTracker(clock)
    assert tracker.summary() is None

    tracker.start_session(
        [
            Dimension(type=DimensionType.MOOD, reference="eerie"),
            Dimension(type=DimensionType.ERA, reference=""),
        ],
        "temple",
    )
    tracker.record_iteration(["p1"])
    clock.advance(12)

    summary = tracker.summary()

    assert summary is not None
    assert summary["iterations"] == 1
    assert summary["elapsed_seconds"] == 12
    assert summary["dimensions"] == ["mood"]


def test_closed_sessions_are_bounded(clock: FakeClock) -> None:
    tracker = GenerationSessionTracker(clock, max_closed=2)
    started = [tracker.start_session([], f"take {i}").session for i in range(4)]
    tracker.mark_satisfied()

    assert [s.base_image for s in tracker.closed_sessions] == ["take 2", "take 3"]
    assert started[3].satisfied
