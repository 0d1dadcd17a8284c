"""Prompt generator protocol, provider errors and the timeout primitive."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Mapping

    from promptstudio.models.results import GenerationFailure, GenerationRequest, GenerationSuccess

T = TypeVar("T")


@runtime_checkable
class PromptGenerator(Protocol):
    """Protocol for backends that turn a generation request into prompts.

    Implementations may return the typed result or a loosely-typed mapping;
    callers validate it with :func:`promptstudio.models.parse_generation_result`.
    """

    async def generate_prompts(
        self, request: GenerationRequest
    ) -> GenerationSuccess | GenerationFailure | Mapping[str, Any]:
        """Generate candidate prompts.

        Args:
            request: Base image, dimensions, feedback, output mode and locked
                elements.

        Returns:
            A tagged success/failure result or an equivalent mapping.

        Raises:
            ProviderError: If the backend cannot be reached.
        """
        ...


class ProviderError(Exception):
    """Base exception for provider errors."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderConnectionError(ProviderError):
    """Raised when connection to the provider fails."""

    pass


class ProviderTimeoutError(ProviderError):
    """Raised when a provider call exceeds its time budget."""

    def __init__(self, provider: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(provider, f"timed out after {timeout:g}s")


async def await_with_timeout(
    awaitable: Awaitable[T], timeout: float | None, *, operation: str
) -> T:
    """Await an external call with a time budget.

    This is the only place external calls are bounded, so every caller gets
    the same error type on expiry.

    Args:
        awaitable: The provider call.
        timeout: Seconds to wait; None waits indefinitely.
        operation: Name used in the error (e.g. ``"evaluate_image"``).

    Returns:
        The awaited result.

    Raises:
        ProviderTimeoutError: If the call does not finish in time.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except TimeoutError as e:
        raise ProviderTimeoutError(operation, timeout or 0.0) from e
