"""Bounded undo/redo history over generated prompt sets.

The history is a fixed-capacity ring buffer with a logical cursor. Pushing
after an undo drops the forward branch, and pushing past capacity evicts the
oldest entry; the cursor always lands on the newest entry after a push.

Example:
    >>> history = PromptHistoryManager(max_size=5)
    >>> history.push(prompts_a)
    >>> history.push(prompts_b)
    >>> history.undo().prompts == prompts_a
    True
    >>> history.position_label
    '1 of 2'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from promptstudio.config import DEFAULT_HISTORY_SIZE
from promptstudio.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from promptstudio.models.prompts import Dimension, GeneratedPrompt

log = get_logger(__name__)


@dataclass(frozen=True)
class PromptHistoryEntry:
    """Immutable snapshot of one prompt set and the editing state behind it.

    Attributes:
        prompts: Deep copies of the prompts as they were pushed.
        dimensions: Deep copies of the dimensions, if captured.
        base_image: Base image description, if captured.
        created_at: When the entry was pushed.
    """

    prompts: tuple[GeneratedPrompt, ...]
    dimensions: tuple[Dimension, ...] | None = None
    base_image: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def prompt_copies(self) -> list[GeneratedPrompt]:
        """Return fresh copies so callers can edit without touching the snapshot."""
        return [p.model_copy(deep=True) for p in self.prompts]

    def dimension_copies(self) -> list[Dimension] | None:
        if self.dimensions is None:
            return None
        return [d.model_copy(deep=True) for d in self.dimensions]


class PromptHistoryManager:
    """Fixed-capacity undo/redo stack of prompt sets."""

    def __init__(self, max_size: int = DEFAULT_HISTORY_SIZE) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._capacity = max_size
        self._slots: list[PromptHistoryEntry | None] = [None] * max_size
        self._head = 0  # physical slot of the oldest entry
        self._length = 0
        self._cursor = -1

    # --- ring buffer internals ---

    def _slot(self, logical_index: int) -> PromptHistoryEntry:
        entry = self._slots[(self._head + logical_index) % self._capacity]
        assert entry is not None
        return entry

    # --- mutation ---

    def push(
        self,
        prompts: Sequence[GeneratedPrompt] | None,
        *,
        dimensions: Sequence[Dimension] | None = None,
        base_image: str | None = None,
    ) -> PromptHistoryEntry | None:
        """Append a prompt set after the cursor.

        Entries after the cursor are discarded first. When the buffer is
        full the oldest entry is evicted.

        Args:
            prompts: The prompt set; an empty or missing set is ignored.
            dimensions: Optional dimension snapshot to restore on undo.
            base_image: Optional base image text to restore on undo.

        Returns:
            The new entry, or None when nothing was pushed.
        """
        if not prompts:
            return None

        entry = PromptHistoryEntry(
            prompts=tuple(p.model_copy(deep=True) for p in prompts),
            dimensions=(
                tuple(d.model_copy(deep=True) for d in dimensions)
                if dimensions is not None
                else None
            ),
            base_image=base_image,
        )

        # Truncate the forward branch
        for logical in range(self._cursor + 1, self._length):
            self._slots[(self._head + logical) % self._capacity] = None
        self._length = self._cursor + 1

        if self._length == self._capacity:
            self._slots[self._head] = None
            self._head = (self._head + 1) % self._capacity
            self._length -= 1
            log.debug("history_evicted_oldest", capacity=self._capacity)

        self._slots[(self._head + self._length) % self._capacity] = entry
        self._length += 1
        self._cursor = self._length - 1
        log.debug("history_pushed", size=self._length, prompts=len(entry.prompts))
        return entry

    def undo(self) -> PromptHistoryEntry | None:
        """Step back one entry. Returns None when already at the oldest."""
        if self._cursor <= 0:
            return None
        self._cursor -= 1
        return self._slot(self._cursor)

    def redo(self) -> PromptHistoryEntry | None:
        """Step forward one entry. Returns None when already at the newest."""
        if self._cursor < 0 or self._cursor >= self._length - 1:
            return None
        self._cursor += 1
        return self._slot(self._cursor)

    def go_to(self, index: int) -> PromptHistoryEntry | None:
        """Jump to a logical index (0 is the oldest). None when out of range."""
        if not 0 <= index < self._length:
            return None
        self._cursor = index
        return self._slot(index)

    def clear(self) -> None:
        self._slots = [None] * self._capacity
        self._head = 0
        self._length = 0
        self._cursor = -1

    # --- read model ---

    def current(self) -> PromptHistoryEntry | None:
        if self._cursor < 0:
            return None
        return self._slot(self._cursor)

    @property
    def entries(self) -> list[PromptHistoryEntry]:
        """All entries, oldest first."""
        return [self._slot(i) for i in range(self._length)]

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def current_index(self) -> int:
        return self._cursor

    @property
    def can_undo(self) -> bool:
        return self._cursor > 0

    @property
    def can_redo(self) -> bool:
        return 0 <= self._cursor < self._length - 1

    @property
    def position_label(self) -> str:
        """Human-readable cursor position, e.g. ``"2 of 5"``."""
        if self._length == 0:
            return ""
        return f"{self._cursor + 1} of {self._length}"

    def __len__(self) -> int:
        return self._length
