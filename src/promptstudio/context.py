"""The editing scope that owns history, sessions and learning.

Each :class:`StudioContext` is independent: two contexts never share a
session, a history stack or learned preferences. Components receive the
context explicitly instead of reaching for module-level state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from promptstudio.config import StudioConfig
from promptstudio.history import PromptHistoryManager
from promptstudio.learning.preferences import PreferenceLearner
from promptstudio.learning.tasks import BestEffortTaskQueue
from promptstudio.models.prompts import PromptFeedback, RefinementFeedback
from promptstudio.observability.logging import get_logger
from promptstudio.sessions import GenerationSessionTracker

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime

    from promptstudio.history import PromptHistoryEntry
    from promptstudio.learning.preferences import LearnedContext, Suggestion
    from promptstudio.models.prompts import (
        Dimension,
        GeneratedPrompt,
        OutputMode,
        PromptElement,
        Rating,
    )
    from promptstudio.providers.store import StudioStore
    from promptstudio.sessions import GenerationSession, SessionStart

log = get_logger(__name__)


class StudioContext:
    """Editing state plus the services that act on it.

    Args:
        config: Studio configuration; defaults apply when omitted.
        store: Optional persistence backend, written to fire-and-forget.
        clock: Time source for sessions; injectable for tests.

    Example:
        >>> ctx = StudioContext()
        >>> ctx.base_image = "isometric city street at dusk"
        >>> ctx.dimensions = [Dimension(type=DimensionType.MOOD, reference="melancholic")]
        >>> outcome = await generate(ctx, generator)
        >>> ctx.rate_prompt(outcome.prompts[0].id, "up")
    """

    def __init__(
        self,
        config: StudioConfig | None = None,
        *,
        store: StudioStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or StudioConfig(name="studio")
        self.base_image = ""
        self.dimensions: list[Dimension] = []
        self.output_mode: OutputMode = self.config.output_mode
        self.feedback = RefinementFeedback()
        self.prompts: list[GeneratedPrompt] = []

        self.store = store
        self.queue = BestEffortTaskQueue()
        self.history = PromptHistoryManager(self.config.history.max_size)
        self.sessions = GenerationSessionTracker(clock)
        self.learner = PreferenceLearner(self.config.learning, self.queue)
        self.sessions.add_close_listener(self._on_session_closed)

    # --- sessions ---

    def start_session(self) -> SessionStart:
        return self.sessions.start_session(self.dimensions, self.base_image, self.output_mode)

    def _on_session_closed(self, session: GenerationSession) -> None:
        self.learner.submit_session(session)
        if self.store is not None:
            self.queue.submit("persist_session", self.store.save_session, session)
            self.queue.submit("persist_preferences", self._save_preferences)

    async def _save_preferences(self) -> None:
        if self.store is not None:
            await self.store.save_preferences(self.learner.export_state())

    # --- prompts ---

    def filled_dimensions(self) -> list[Dimension]:
        return [d for d in self.dimensions if d.is_filled]

    def find_prompt(self, prompt_id: str) -> GeneratedPrompt | None:
        return next((p for p in self.prompts if p.id == prompt_id), None)

    def locked_elements(self) -> list[PromptElement]:
        """Locked elements across the current prompt set, in prompt order."""
        return [e for p in self.prompts for e in p.elements if e.locked]

    def commit_prompts(self, prompts: Sequence[GeneratedPrompt]) -> PromptHistoryEntry | None:
        """Make ``prompts`` the current set, push it to history and persist it.

        The history entry captures the dimensions and base image so undo can
        restore the editing state that produced the set.
        """
        self.prompts = [p.model_copy(deep=True) for p in prompts]
        entry = self.history.push(
            self.prompts, dimensions=self.dimensions, base_image=self.base_image
        )
        if self.store is not None and self.prompts:
            self.queue.submit("persist_prompt_set", self.store.save_prompt_set, list(self.prompts))
        return entry

    def apply_prompts(self, prompts: Sequence[GeneratedPrompt]) -> PromptHistoryEntry | None:
        """Commit a freshly generated set and record it as a session iteration."""
        entry = self.commit_prompts(prompts)
        self.sessions.record_iteration([p.id for p in self.prompts])
        return entry

    def rate_prompt(
        self,
        prompt_id: str,
        rating: Rating | None,
        *,
        text_feedback: str | None = None,
        liked_elements: Sequence[str] = (),
        disliked_elements: Sequence[str] = (),
    ) -> PromptFeedback | None:
        """Record a rating on a current prompt.

        Learning happens fire-and-forget. An ``up`` rating also marks the
        active session satisfied.

        Returns:
            The recorded feedback, or None when the prompt is unknown.
        """
        prompt = self.find_prompt(prompt_id)
        if prompt is None:
            log.debug("rating_unknown_prompt", prompt_id=prompt_id)
            return None

        prompt.rating = rating
        active = self.sessions.get_active_session()
        feedback = PromptFeedback(
            prompt_id=prompt_id,
            rating=rating,
            text_feedback=text_feedback,
            liked_elements=list(liked_elements),
            disliked_elements=list(disliked_elements),
            session_id=active.id if active else None,
        )
        self.learner.submit_feedback(
            feedback,
            prompt.model_copy(deep=True),
            [d.model_copy(deep=True) for d in self.dimensions],
        )
        if rating == "up":
            self.sessions.mark_satisfied(text_feedback)
        return feedback

    # --- history ---

    def undo(self) -> PromptHistoryEntry | None:
        return self._restore(self.history.undo())

    def redo(self) -> PromptHistoryEntry | None:
        return self._restore(self.history.redo())

    def _restore(self, entry: PromptHistoryEntry | None) -> PromptHistoryEntry | None:
        if entry is None:
            return None
        self.prompts = entry.prompt_copies()
        dimensions = entry.dimension_copies()
        if dimensions is not None:
            self.dimensions = dimensions
        if entry.base_image is not None:
            self.base_image = entry.base_image
        return entry

    # --- learning ---

    def suggestions(self, limit: int | None = None) -> list[Suggestion]:
        return self.learner.get_suggestions(
            self.dimensions, output_mode=self.output_mode, limit=limit
        )

    def learned_context(self) -> LearnedContext:
        return self.learner.build_learned_context()

    async def drain(self) -> None:
        """Wait for outstanding learning and persistence work."""
        await self.queue.join()
