"""Studio configuration loading.

Resolution order for every setting:
1. Environment variable (e.g. PROMPTSTUDIO_APPROVAL_THRESHOLD)
2. studio.yaml in the workspace
3. Built-in defaults below
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003 - used at runtime
from typing import Any

from ruamel.yaml import YAML

from promptstudio.models.prompts import OutputMode

CONFIG_FILENAME = "studio.yaml"

DEFAULT_APPROVAL_THRESHOLD = 70.0
DEFAULT_POLISH_FLOOR = 50.0
DEFAULT_TARGET_SAVED_COUNT = 2
MAX_ITERATIONS_HARD_CAP = 3
DEFAULT_CALL_TIMEOUT = 120.0
DEFAULT_EVENT_LOG_SIZE = 100
DEFAULT_HISTORY_SIZE = 5
DEFAULT_MIN_SAMPLES = 3


def _env_float(name: str, fallback: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return fallback
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return fallback
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


@dataclass
class AutoplayConfig:
    """Settings for the autoplay refinement loop.

    Attributes:
        target_saved_count: Accepted candidates needed for success.
        max_iterations: Iteration budget per run (clamped to max_iterations_cap).
        max_iterations_cap: Hard ceiling on iterations to bound provider cost.
        approval_threshold: Minimum evaluation score (0-100) for acceptance.
        polish_enabled: Whether near-miss candidates get a polish pass.
        polish_floor: Lower bound of the near-miss band; the upper bound is
            the approval threshold.
        call_timeout: Seconds allowed for each external call.
        event_log_size: Number of most recent events kept in memory.
        max_concurrency: Parallel image renders/evaluations per iteration.
    """

    target_saved_count: int = DEFAULT_TARGET_SAVED_COUNT
    max_iterations: int = MAX_ITERATIONS_HARD_CAP
    max_iterations_cap: int = MAX_ITERATIONS_HARD_CAP
    approval_threshold: float = DEFAULT_APPROVAL_THRESHOLD
    polish_enabled: bool = True
    polish_floor: float = DEFAULT_POLISH_FLOOR
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    event_log_size: int = DEFAULT_EVENT_LOG_SIZE
    max_concurrency: int = 2

    def __post_init__(self) -> None:
        if self.target_saved_count < 1:
            raise ValueError("target_saved_count must be at least 1")
        if self.max_iterations < 1 or self.max_iterations_cap < 1:
            raise ValueError("max_iterations and max_iterations_cap must be at least 1")
        if not 0.0 <= self.polish_floor <= self.approval_threshold <= 100.0:
            raise ValueError("expected 0 <= polish_floor <= approval_threshold <= 100")
        if self.call_timeout <= 0:
            raise ValueError("call_timeout must be positive")
        if self.event_log_size < 1:
            raise ValueError("event_log_size must be at least 1")

    def clamp_iterations(self, requested: int | None) -> int:
        """Return the iteration budget for a run, honouring the hard cap."""
        wanted = self.max_iterations if requested is None else requested
        return max(1, min(wanted, self.max_iterations_cap))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutoplayConfig:
        """Create config from a dictionary, applying environment overrides.

        Args:
            data: Mapping with any of the dataclass field names.

        Returns:
            AutoplayConfig instance.

        Raises:
            ValueError: If a value is out of range.
        """
        approval = float(data.get("approval_threshold", DEFAULT_APPROVAL_THRESHOLD))
        return cls(
            target_saved_count=int(data.get("target_saved_count", DEFAULT_TARGET_SAVED_COUNT)),
            max_iterations=_env_int(
                "PROMPTSTUDIO_MAX_ITERATIONS",
                int(data.get("max_iterations", MAX_ITERATIONS_HARD_CAP)),
            ),
            max_iterations_cap=int(data.get("max_iterations_cap", MAX_ITERATIONS_HARD_CAP)),
            approval_threshold=_env_float("PROMPTSTUDIO_APPROVAL_THRESHOLD", approval),
            polish_enabled=bool(data.get("polish_enabled", True)),
            polish_floor=float(data.get("polish_floor", DEFAULT_POLISH_FLOOR)),
            call_timeout=_env_float(
                "PROMPTSTUDIO_CALL_TIMEOUT",
                float(data.get("call_timeout", DEFAULT_CALL_TIMEOUT)),
            ),
            event_log_size=int(data.get("event_log_size", DEFAULT_EVENT_LOG_SIZE)),
            max_concurrency=int(data.get("max_concurrency", 2)),
        )


@dataclass
class HistoryConfig:
    """Settings for the prompt undo/redo history."""

    max_size: int = DEFAULT_HISTORY_SIZE

    def __post_init__(self) -> None:
        if self.max_size < 1:
            raise ValueError("history max_size must be at least 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HistoryConfig:
        return cls(
            max_size=_env_int(
                "PROMPTSTUDIO_HISTORY_SIZE", int(data.get("max_size", DEFAULT_HISTORY_SIZE))
            )
        )


@dataclass
class LearningConfig:
    """Settings for preference learning.

    Attributes:
        min_samples: Observations required before a value counts as a signal.
        min_combination_usage: Successful sessions required before a
            dimension combination is suggested.
        suggestion_limit: Maximum suggestions returned per query.
        ready_threshold: Feedback events needed before learning is "ready".
        recent_feedback_limit: Feedback events retained for analytics.
    """

    min_samples: int = DEFAULT_MIN_SAMPLES
    min_combination_usage: int = 2
    suggestion_limit: int = 5
    ready_threshold: int = 5
    recent_feedback_limit: int = 500

    def __post_init__(self) -> None:
        for name in ("min_samples", "min_combination_usage", "suggestion_limit"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be at least 1")
        if self.ready_threshold < 0 or self.recent_feedback_limit < 0:
            raise ValueError("ready_threshold and recent_feedback_limit must not be negative")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LearningConfig:
        return cls(
            min_samples=int(data.get("min_samples", DEFAULT_MIN_SAMPLES)),
            min_combination_usage=int(data.get("min_combination_usage", 2)),
            suggestion_limit=int(data.get("suggestion_limit", 5)),
            ready_threshold=int(data.get("ready_threshold", 5)),
            recent_feedback_limit=int(data.get("recent_feedback_limit", 500)),
        )


@dataclass
class StudioConfig:
    """Configuration for a PromptStudio workspace."""

    name: str
    version: int = 1
    output_mode: OutputMode = OutputMode.GAMEPLAY
    autoplay: AutoplayConfig = field(default_factory=AutoplayConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    learning: LearningConfig = field(default_factory=LearningConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StudioConfig:
        """Create config from a dictionary.

        Args:
            data: Dictionary containing config fields. Nested sections
                ``autoplay``, ``history`` and ``learning`` are optional.

        Returns:
            StudioConfig instance.
        """
        return cls(
            name=data.get("name", "unnamed"),
            version=int(data.get("version", 1)),
            output_mode=OutputMode(data.get("output_mode", OutputMode.GAMEPLAY.value)),
            autoplay=AutoplayConfig.from_dict(dict(data.get("autoplay") or {})),
            history=HistoryConfig.from_dict(dict(data.get("history") or {})),
            learning=LearningConfig.from_dict(dict(data.get("learning") or {})),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the studio.yaml layout."""
        autoplay = self.autoplay
        return {
            "name": self.name,
            "version": self.version,
            "output_mode": self.output_mode.value,
            "autoplay": {
                "target_saved_count": autoplay.target_saved_count,
                "max_iterations": autoplay.max_iterations,
                "approval_threshold": autoplay.approval_threshold,
                "polish_enabled": autoplay.polish_enabled,
                "polish_floor": autoplay.polish_floor,
                "call_timeout": autoplay.call_timeout,
            },
            "history": {"max_size": self.history.max_size},
            "learning": {
                "min_samples": self.learning.min_samples,
                "suggestion_limit": self.learning.suggestion_limit,
            },
        }


class StudioConfigError(Exception):
    """Raised when studio configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load studio config at {path}: {reason}")


def load_studio_config(workspace: Path) -> StudioConfig:
    """Load configuration from {workspace}/studio.yaml.

    Args:
        workspace: Path to the studio workspace directory.

    Returns:
        StudioConfig instance.

    Raises:
        StudioConfigError: If the file is missing, empty or invalid.
    """
    config_path = workspace / CONFIG_FILENAME

    if not config_path.exists():
        raise StudioConfigError(config_path, "File not found")

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise StudioConfigError(config_path, "Empty file")

        return StudioConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, StudioConfigError):
            raise
        raise StudioConfigError(config_path, str(e)) from e


def create_default_config(name: str, output_mode: OutputMode | None = None) -> StudioConfig:
    """Create a default configuration for a new workspace."""
    return StudioConfig(name=name, output_mode=output_mode or OutputMode.GAMEPLAY)


def write_studio_config(config: StudioConfig, workspace: Path) -> Path:
    """Write config to {workspace}/studio.yaml and return the file path."""
    config_path = workspace / CONFIG_FILENAME
    yaml_writer = YAML()
    yaml_writer.default_flow_style = False
    with config_path.open("w", encoding="utf-8") as f:
        yaml_writer.dump(config.to_dict(), f)
    return config_path
