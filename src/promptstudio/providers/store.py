"""Persistence protocol and a JSON file implementation.

Persistence is best-effort: callers submit saves through
:class:`~promptstudio.learning.tasks.BestEffortTaskQueue`, so a failing store
is logged and never interrupts generation.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from promptstudio.observability.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from promptstudio.learning.preferences import PreferenceSnapshot
    from promptstudio.models.prompts import GeneratedPrompt
    from promptstudio.sessions import GenerationSession

log = get_logger(__name__)

PREFERENCES_FILENAME = "preferences.json"


@runtime_checkable
class StudioStore(Protocol):
    """Protocol for persistence backends."""

    async def save_session(self, session: GenerationSession) -> None: ...

    async def save_prompt_set(self, prompts: Sequence[GeneratedPrompt]) -> None: ...

    async def save_preferences(self, snapshot: PreferenceSnapshot) -> None: ...


def _session_record(session: GenerationSession) -> dict[str, Any]:
    return {
        "id": session.id,
        "started_at": session.started_at.isoformat(),
        "ended_at": session.ended_at.isoformat() if session.ended_at else None,
        "satisfied": session.satisfied,
        "output_mode": session.output_mode.value,
        "base_image": session.base_image,
        "iterations": [
            {
                "id": it.id,
                "prompt_ids": list(it.prompt_ids),
                "recorded_at": it.recorded_at.isoformat(),
            }
            for it in session.iterations
        ],
        "dimensions": [d.model_dump(mode="json") for d in session.dimensions_snapshot],
        "final_feedback": session.final_feedback,
    }


class JsonFileStore:
    """Stores sessions and prompt sets as JSON lines, preferences as one JSON file.

    Layout under ``root``::

        sessions.jsonl
        prompts.jsonl
        preferences.json
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        # File writes run in a worker thread, one at a time in submission order
        self._lock = asyncio.Lock()

    @property
    def preferences_path(self) -> Path:
        return self.root / PREFERENCES_FILENAME

    def _append(self, name: str, record: dict[str, Any]) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        with (self.root / name).open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")

    def _replace_preferences(self, payload: str) -> None:
        self.root.mkdir(parents=True, exist_ok=True)
        self.preferences_path.write_text(payload, encoding="utf-8")

    async def _write(self, func: Callable[..., None], *args: Any) -> None:
        async with self._lock:
            await asyncio.to_thread(func, *args)

    async def save_session(self, session: GenerationSession) -> None:
        await self._write(self._append, "sessions.jsonl", _session_record(session))
        log.debug("session_persisted", session_id=session.id)

    async def save_prompt_set(self, prompts: Sequence[GeneratedPrompt]) -> None:
        record = {"prompts": [p.model_dump(mode="json") for p in prompts]}
        await self._write(self._append, "prompts.jsonl", record)
        log.debug("prompt_set_persisted", prompts=len(prompts))

    async def save_preferences(self, snapshot: PreferenceSnapshot) -> None:
        await self._write(self._replace_preferences, snapshot.model_dump_json(indent=2))
        log.debug("preferences_persisted", path=str(self.preferences_path))
