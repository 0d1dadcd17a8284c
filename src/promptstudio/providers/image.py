"""Image rendering, evaluation and polish protocols."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping

    from promptstudio.models.results import (
        Evaluation,
        EvaluationCriteria,
        PolishFailure,
        PolishSuccess,
    )


@dataclass(frozen=True)
class ImageResult:
    """Result of an image generation call.

    Attributes:
        url: Reference to the rendered image (URL, data URI or storage key).
        content_type: MIME type (e.g., ``image/png``).
        provider_metadata: Provider-specific metadata (model, revised prompt, etc.).
    """

    url: str
    content_type: str = "image/png"
    provider_metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ImageProvider(Protocol):
    """Protocol for image generation backends."""

    async def generate(
        self,
        prompt: str,
        *,
        negative_prompt: str | None = None,
    ) -> ImageResult:
        """Render an image from a text prompt.

        Args:
            prompt: Positive text prompt describing the desired image.
            negative_prompt: Things to avoid in the image (provider support varies).

        Returns:
            ImageResult referencing the rendered image.

        Raises:
            ImageProviderError: If generation fails.
        """
        ...


@runtime_checkable
class ImageEvaluator(Protocol):
    """Protocol for backends that score a rendered image against goals."""

    async def evaluate_image(
        self, image_ref: str, criteria: EvaluationCriteria
    ) -> Evaluation | Mapping[str, Any]:
        """Score an image 0-100 with critique.

        Returns:
            An Evaluation or an equivalent mapping; validated by the caller.
        """
        ...


@runtime_checkable
class ImagePolisher(Protocol):
    """Protocol for backends that improve a near-miss image in place."""

    async def polish_image(
        self, image_ref: str, evaluation: Evaluation
    ) -> PolishSuccess | PolishFailure | Mapping[str, Any]:
        """Polish an image using the critique from its evaluation.

        Returns:
            A tagged polish result or an equivalent mapping, optionally
            carrying the re-evaluation of the polished image.
        """
        ...


class ImageProviderError(Exception):
    """Base exception for image provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")
