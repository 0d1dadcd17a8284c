"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from promptstudio.models import (
    Dimension,
    DimensionType,
    ElementCategory,
    GeneratedPrompt,
    PromptElement,
    SceneType,
)


@pytest.fixture(autouse=True)
def clear_studio_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep PROMPTSTUDIO_* overrides from the developer shell out of tests."""
    for name in (
        "PROMPTSTUDIO_MAX_ITERATIONS",
        "PROMPTSTUDIO_APPROVAL_THRESHOLD",
        "PROMPTSTUDIO_CALL_TIMEOUT",
        "PROMPTSTUDIO_HISTORY_SIZE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


class FakeClock:
    """Manually advanced clock for session timing."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def dimensions() -> list[Dimension]:
    return [
        Dimension(type=DimensionType.ENVIRONMENT, reference="neon-lit rainy alley"),
        Dimension(type=DimensionType.MOOD, reference="melancholic", weight=0.6),
        Dimension(type=DimensionType.ART_STYLE, reference=""),
    ]


def make_prompt(
    scene_number: int = 1,
    *,
    text: str = "wide shot of a ruined temple",
    elements: list[tuple[ElementCategory, str]] | None = None,
    locked: bool = False,
) -> GeneratedPrompt:
    """Build a prompt with readable elements for learning tests."""
    scene_types = list(SceneType)
    pairs = elements if elements is not None else [(ElementCategory.LIGHTING, "golden hour")]
    return GeneratedPrompt(
        scene_number=scene_number,
        scene_type=scene_types[(scene_number - 1) % len(scene_types)],
        prompt=text,
        locked=locked,
        elements=[
            PromptElement(id=f"el-{scene_number}-{i}", text=t, category=c)
            for i, (c, t) in enumerate(pairs)
        ],
    )


@pytest.fixture
def prompt_factory() -> Callable[..., GeneratedPrompt]:
    return make_prompt
