"""Tests for studio configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from promptstudio.config import (
    CONFIG_FILENAME,
    DEFAULT_APPROVAL_THRESHOLD,
    MAX_ITERATIONS_HARD_CAP,
    AutoplayConfig,
    HistoryConfig,
    LearningConfig,
    StudioConfig,
    StudioConfigError,
    create_default_config,
    load_studio_config,
    write_studio_config,
)
from promptstudio.models import OutputMode

if TYPE_CHECKING:
    from pathlib import Path

# --- Tests for AutoplayConfig ---


class TestAutoplayConfig:
    """Tests for AutoplayConfig class."""

    def test_defaults(self) -> None:
        """Defaults match the documented loop parameters."""
        config = AutoplayConfig()

        assert config.approval_threshold == DEFAULT_APPROVAL_THRESHOLD == 70.0
        assert config.polish_floor == 50.0
        assert config.max_iterations == MAX_ITERATIONS_HARD_CAP == 3
        assert config.polish_enabled is True

    def test_clamp_iterations_honours_cap(self) -> None:
        """Requested iterations never exceed the hard cap and never drop below 1."""
        config = AutoplayConfig()

        assert config.clamp_iterations(None) == 3
        assert config.clamp_iterations(10) == 3
        assert config.clamp_iterations(2) == 2
        assert config.clamp_iterations(0) == 1

    def test_rejects_floor_above_threshold(self) -> None:
        """The near-miss band must sit below the approval threshold."""
        with pytest.raises(ValueError, match="polish_floor"):
            AutoplayConfig(approval_threshold=60.0, polish_floor=65.0)

    def test_rejects_non_positive_timeout(self) -> None:
        with pytest.raises(ValueError, match="call_timeout"):
            AutoplayConfig(call_timeout=0)

    def test_from_dict_reads_values(self) -> None:
        """Parse autoplay section values."""
        config = AutoplayConfig.from_dict(
            {"approval_threshold": 80, "polish_floor": 60, "max_iterations": 2}
        )

        assert config.approval_threshold == 80.0
        assert config.polish_floor == 60.0
        assert config.max_iterations == 2

    def test_env_overrides_file_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables win over studio.yaml values."""
        monkeypatch.setenv("PROMPTSTUDIO_APPROVAL_THRESHOLD", "75")
        monkeypatch.setenv("PROMPTSTUDIO_CALL_TIMEOUT", "5")

        config = AutoplayConfig.from_dict({"approval_threshold": 90})

        assert config.approval_threshold == 75.0
        assert config.call_timeout == 5.0

    def test_invalid_env_value_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTSTUDIO_MAX_ITERATIONS", "many")

        with pytest.raises(ValueError, match="PROMPTSTUDIO_MAX_ITERATIONS"):
            AutoplayConfig.from_dict({})


# --- Tests for HistoryConfig ---


class TestHistoryConfig:
    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PROMPTSTUDIO_HISTORY_SIZE", "8")

        assert HistoryConfig.from_dict({"max_size": 3}).max_size == 8

    def test_default_size(self) -> None:
        assert HistoryConfig.from_dict({}).max_size == 5

    def test_rejects_empty_history(self) -> None:
        with pytest.raises(ValueError, match="max_size"):
            HistoryConfig(max_size=0)


# --- Tests for LearningConfig ---


class TestLearningConfig:
    @pytest.mark.parametrize("field", ["min_samples", "min_combination_usage", "suggestion_limit"])
    def test_rejects_values_below_one(self, field: str) -> None:
        with pytest.raises(ValueError, match=field):
            LearningConfig.from_dict({field: 0})

    def test_rejects_negative_ready_threshold(self) -> None:
        with pytest.raises(ValueError, match="ready_threshold"):
            LearningConfig(ready_threshold=-1)

    def test_zero_sample_floor_in_file_is_wrapped(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("name: bad\nlearning:\n  min_samples: 0\n")

        with pytest.raises(StudioConfigError, match="min_samples"):
            load_studio_config(tmp_path)


# --- Tests for StudioConfig ---


class TestStudioConfig:
    """Tests for StudioConfig class."""

    def test_from_dict_minimal(self) -> None:
        """Missing sections fall back to defaults."""
        config = StudioConfig.from_dict({"name": "alley"})

        assert config.name == "alley"
        assert config.output_mode == OutputMode.GAMEPLAY
        assert config.autoplay.approval_threshold == 70.0
        assert config.learning.min_samples == 3

    def test_from_dict_nested_sections(self) -> None:
        config = StudioConfig.from_dict(
            {
                "name": "posters",
                "output_mode": "poster",
                "autoplay": {"target_saved_count": 4},
                "learning": {"min_samples": 5},
            }
        )

        assert config.output_mode == OutputMode.POSTER
        assert config.autoplay.target_saved_count == 4
        assert config.learning.min_samples == 5

    def test_to_dict_round_trips_through_from_dict(self) -> None:
        original = create_default_config("concepts", OutputMode.CONCEPT)

        restored = StudioConfig.from_dict(original.to_dict())

        assert restored.name == "concepts"
        assert restored.output_mode == OutputMode.CONCEPT
        assert restored.autoplay == original.autoplay


# --- Tests for loading and writing ---


class TestLoadStudioConfig:
    """Tests for load_studio_config and write_studio_config."""

    def test_write_then_load(self, tmp_path: Path) -> None:
        path = write_studio_config(create_default_config("demo"), tmp_path)

        assert path == tmp_path / CONFIG_FILENAME
        assert load_studio_config(tmp_path).name == "demo"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(StudioConfigError, match="File not found"):
            load_studio_config(tmp_path)

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("")

        with pytest.raises(StudioConfigError, match="Empty file"):
            load_studio_config(tmp_path)

    def test_invalid_value_is_wrapped(self, tmp_path: Path) -> None:
        """Out-of-range values surface as StudioConfigError with the path."""
        (tmp_path / CONFIG_FILENAME).write_text(
            "name: bad\nautoplay:\n  approval_threshold: 40\n  polish_floor: 60\n"
        )

        with pytest.raises(StudioConfigError) as exc_info:
            load_studio_config(tmp_path)

        assert exc_info.value.path == tmp_path / CONFIG_FILENAME
        assert "polish_floor" in exc_info.value.reason
