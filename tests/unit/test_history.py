"""Tests for the bounded prompt history."""

from __future__ import annotations

from collections.abc import Callable

import pytest

from promptstudio.history import PromptHistoryEntry, PromptHistoryManager
from promptstudio.models import Dimension, DimensionType, GeneratedPrompt

PromptFactory = Callable[..., GeneratedPrompt]


def _push_sets(history: PromptHistoryManager, factory: PromptFactory, count: int) -> list[str]:
    """Push ``count`` single-prompt sets and return their prompt texts in order."""
    texts = []
    for i in range(count):
        text = f"set {i}"
        history.push([factory(text=text)])
        texts.append(text)
    return texts


def _text(entry: PromptHistoryEntry | None) -> str:
    assert entry is not None
    return entry.prompts[0].prompt


class TestPush:
    def test_push_moves_cursor_to_newest(self, prompt_factory: PromptFactory) -> None:
        history = PromptHistoryManager()
        _push_sets(history, prompt_factory, 2)

        assert len(history) == 2
        assert history.current_index == 1
        assert history.position_label == "2 of 2"
        assert _text(history.current()) == "set 1"

    def test_empty_push_is_ignored(self) -> None:
        history = PromptHistoryManager()

        assert history.push([]) is None
        assert history.push(None) is None
        assert len(history) == 0
        assert history.position_label == ""

    def test_six_pushes_keep_last_five(self, prompt_factory: PromptFactory) -> None:
        """Pushing past capacity evicts the oldest entry."""
        history = PromptHistoryManager(max_size=5)
        texts = _push_sets(history, prompt_factory, 6)

        assert len(history) == 5
        assert [_text(e) for e in history.entries] == texts[1:]
        assert history.current_index == 4

    def test_many_pushes_never_exceed_capacity(self, prompt_factory: PromptFactory) -> None:
        history = PromptHistoryManager(max_size=3)
        texts = _push_sets(history, prompt_factory, 20)

        assert len(history) == 3
        assert [_text(e) for e in history.entries] == texts[-3:]

    def test_push_after_undo_truncates_forward_branch(
        self, prompt_factory: PromptFactory
    ) -> None:
        history = PromptHistoryManager()
        _push_sets(history, prompt_factory, 3)
        history.undo()
        history.undo()

        history.push([prompt_factory(text="branch")])

        assert [_text(e) for e in history.entries] == ["set 0", "branch"]
        assert not history.can_redo

    def test_snapshot_is_isolated_from_caller(self, prompt_factory: PromptFactory) -> None:
        """Editing the pushed prompt afterwards does not change the entry."""
        history = PromptHistoryManager()
        prompt = prompt_factory(text="original")
        history.push([prompt])

        prompt.prompt = "edited"

        assert _text(history.current()) == "original"

    def test_invalid_capacity(self) -> None:
        with pytest.raises(ValueError, match="max_size"):
            PromptHistoryManager(max_size=0)


class TestNavigation:
    def test_undo_at_oldest_returns_none(self, prompt_factory: PromptFactory) -> None:
        history = PromptHistoryManager()
        _push_sets(history, prompt_factory, 1)

        assert history.undo() is None
        assert history.current_index == 0

    def test_redo_at_newest_returns_none(self, prompt_factory: PromptFactory) -> None:
        history = PromptHistoryManager()
        _push_sets(history, prompt_factory, 2)

        assert history.redo() is None

    def test_undo_then_redo(self, prompt_factory: PromptFactory) -> None:
        history = PromptHistoryManager()
        _push_sets(history, prompt_factory, 3)

        assert _text(history.undo()) == "set 1"
        assert history.position_label == "2 of 3"
        assert history.can_undo and history.can_redo
        assert _text(history.redo()) == "set 2"

    def test_undo_after_eviction_stops_at_oldest_kept(
        self, prompt_factory: PromptFactory
    ) -> None:
        history = PromptHistoryManager(max_size=5)
        _push_sets(history, prompt_factory, 7)

        undone = [_text(history.undo()) for _ in range(4)]

        assert undone == ["set 5", "set 4", "set 3", "set 2"]
        assert history.undo() is None

    def test_go_to(self, prompt_factory: PromptFactory) -> None:
        history = PromptHistoryManager()
        _push_sets(history, prompt_factory, 4)

        assert _text(history.go_to(1)) == "set 1"
        assert history.go_to(9) is None
        assert history.current_index == 1

    def test_clear(self, prompt_factory: PromptFactory) -> None:
        history = PromptHistoryManager()
        _push_sets(history, prompt_factory, 2)

        history.clear()

        assert len(history) == 0
        assert history.current() is None
        assert not history.can_undo


def test_entry_restores_dimension_copies(prompt_factory: PromptFactory) -> None:
    history = PromptHistoryManager()
    dimension = Dimension(type=DimensionType.MOOD, reference="eerie")
    entry = history.push([prompt_factory()], dimensions=[dimension], base_image="temple")
    assert entry is not None

    restored = entry.dimension_copies()

    assert restored is not None
    assert restored[0].reference == "eerie"
    assert restored[0] is not dimension
    assert entry.base_image == "temple"
