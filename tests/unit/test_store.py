"""Tests for the JSON file store."""

from __future__ import annotations

import asyncio
import json
import threading
from typing import TYPE_CHECKING, Any

import pytest

from promptstudio.learning import PreferenceSnapshot
from promptstudio.providers import JsonFileStore, StudioStore

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from promptstudio.models import GeneratedPrompt


class ThreadRecordingStore(JsonFileStore):
    """Records which thread performed each append."""

    def __init__(self, root: Path) -> None:
        super().__init__(root)
        self.threads: list[int] = []

    def _append(self, name: str, record: dict[str, Any]) -> None:
        self.threads.append(threading.get_ident())
        super()._append(name, record)


def test_json_store_satisfies_protocol(tmp_path: Path) -> None:
    assert isinstance(JsonFileStore(tmp_path), StudioStore)


@pytest.mark.asyncio
async def test_writes_run_off_the_event_loop_thread(
    tmp_path: Path, prompt_factory: Callable[..., GeneratedPrompt]
) -> None:
    store = ThreadRecordingStore(tmp_path / "state")

    await store.save_prompt_set([prompt_factory()])

    assert store.threads
    assert threading.get_ident() not in store.threads
    assert (tmp_path / "state" / "prompts.jsonl").exists()


@pytest.mark.asyncio
async def test_concurrent_saves_keep_submission_order(
    tmp_path: Path, prompt_factory: Callable[..., GeneratedPrompt]
) -> None:
    store = JsonFileStore(tmp_path)
    sets = [[prompt_factory(text=f"set {i}")] for i in range(5)]

    await asyncio.gather(*(store.save_prompt_set(s) for s in sets))

    lines = (tmp_path / "prompts.jsonl").read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["prompts"][0]["prompt"] for line in lines] == [
        f"set {i}" for i in range(5)
    ]


@pytest.mark.asyncio
async def test_latest_preferences_snapshot_wins(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path)

    await asyncio.gather(
        *(store.save_preferences(PreferenceSnapshot(feedback_count=n)) for n in range(1, 4))
    )

    snapshot = PreferenceSnapshot.model_validate_json(store.preferences_path.read_text())
    assert snapshot.feedback_count == 3
