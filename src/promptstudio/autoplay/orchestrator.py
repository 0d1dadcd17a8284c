"""Autoplay: the generate -> evaluate -> (polish) -> refine loop.

One run iterates until enough candidates are accepted, the iteration budget
is spent, the user stops it, or an external call fails. Each run carries a
token; :meth:`AutoplayOrchestrator.stop` replaces the token so results that
arrive afterwards are dropped instead of counted.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from promptstudio.autoplay.evaluation import build_criteria, classify, extract_refinement_feedback
from promptstudio.autoplay.state import (
    AutoplayEvent,
    AutoplayState,
    EventLog,
    IterationSummary,
    SavedCandidate,
)
from promptstudio.errors import AutoplayError, PreconditionError
from promptstudio.generation import build_request
from promptstudio.models.prompts import PromptFeedback
from promptstudio.models.results import (
    GenerationFailure,
    PolishFailure,
    parse_evaluation,
    parse_generation_result,
    parse_polish_result,
)
from promptstudio.observability.logging import get_logger, log_context
from promptstudio.providers.base import ProviderTimeoutError, await_with_timeout

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from promptstudio.autoplay.state import AutoplayPhase, CompletionReason, EventType
    from promptstudio.config import AutoplayConfig
    from promptstudio.context import StudioContext
    from promptstudio.models.prompts import GeneratedPrompt, Rating
    from promptstudio.models.results import Evaluation, EvaluationCriteria
    from promptstudio.providers.base import PromptGenerator
    from promptstudio.providers.image import ImageEvaluator, ImagePolisher, ImageProvider

    Observer = Callable[[AutoplayState, AutoplayEvent], None]

log = get_logger(__name__)


class _StaleRun(Exception):
    """Raised inside a run whose token was replaced (stopped or restarted)."""


@dataclass
class _Candidate:
    prompt: GeneratedPrompt
    image_url: str
    evaluation: Evaluation


class AutoplayOrchestrator:
    """Drives autoplay runs for one editing context.

    Only one run may be active per orchestrator; :meth:`start` refuses a
    second one and reports why through :attr:`last_rejection`.

    Args:
        context: Editing scope providing base image, dimensions and services.
        generator: Prompt generation backend.
        images: Image rendering backend.
        evaluator: Image scoring backend.
        polisher: Optional near-miss polish backend.
        config: Loop settings; defaults to ``context.config.autoplay``.
    """

    def __init__(
        self,
        context: StudioContext,
        generator: PromptGenerator,
        images: ImageProvider,
        evaluator: ImageEvaluator,
        polisher: ImagePolisher | None = None,
        *,
        config: AutoplayConfig | None = None,
    ) -> None:
        self.context = context
        self.generator = generator
        self.images = images
        self.evaluator = evaluator
        self.polisher = polisher
        self.config = config or context.config.autoplay

        self.state = AutoplayState()
        self.events = EventLog(self.config.event_log_size)
        self.last_rejection: PreconditionError | None = None
        self._observers: list[Observer] = []
        self._task: asyncio.Task[None] | None = None
        self._token = 0

    # ------------------------------------------------------------------
    # Public control surface
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer of ``(state, event)`` pairs.

        Returns:
            A callable that removes the observer.
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def check_start(self) -> PreconditionError | None:
        """Return why a run cannot start now, or None when it can."""
        if not self.context.base_image.strip():
            return PreconditionError("autoplay.start", "no base image description")
        if self.is_running:
            return PreconditionError("autoplay.start", "autoplay is already running")
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return PreconditionError("autoplay.start", "no running event loop")
        return None

    def start(
        self,
        target_saved_count: int | None = None,
        max_iterations: int | None = None,
    ) -> bool:
        """Begin a run in the background.

        Args:
            target_saved_count: Accepted candidates needed; defaults to config.
            max_iterations: Iteration budget, clamped to the configured cap.

        Returns:
            True if the run started, False if a precondition failed (see
            :attr:`last_rejection`).
        """
        rejection = self.check_start()
        if rejection is not None:
            self.last_rejection = rejection
            log.info("autoplay_start_rejected", reason=rejection.reason)
            self._emit("start_rejected", str(rejection), reason=rejection.reason)
            return False

        self.last_rejection = None
        self._token += 1
        token = self._token
        target = max(1, target_saved_count or self.config.target_saved_count)
        self.state = AutoplayState(
            target_count=target,
            max_iterations=self.config.clamp_iterations(max_iterations),
        )

        started = self.context.start_session()
        if started.closed_previous is not None:
            self._emit(
                "session_implicitly_closed",
                "Previous generation session closed as unsatisfied",
                session_id=started.closed_previous.id,
            )

        self._transition("generating", "Autoplay started")
        self._emit(
            "started",
            f"Autoplay started: target {target}, up to {self.state.max_iterations} iterations",
            target=target,
            max_iterations=self.state.max_iterations,
        )
        self._task = asyncio.get_running_loop().create_task(
            self._run(token), name=f"autoplay-run-{token}"
        )
        return True

    def stop(self) -> bool:
        """Stop the active run immediately.

        In-flight external calls are left to finish, but their results are
        discarded when they arrive.

        Returns:
            False when nothing was running.
        """
        if not self.is_running:
            return False
        self._token += 1
        self.state.phase = "complete"
        self.state.completion_reason = "user_stopped"
        log.info("autoplay_transition", phase="complete", iteration=self.state.current_iteration)
        self._emit("stopped", "Autoplay stopped by user", reason="user_stopped")
        self.context.sessions.end_unsuccessful("autoplay stopped by user")
        return True

    def reset(self) -> bool:
        """Return to idle after a finished run. No-op (False) otherwise."""
        if not self.state.is_terminal:
            log.debug("autoplay_reset_ignored", phase=self.state.phase)
            return False
        self.state = AutoplayState()
        self._emit("reset", "Autoplay reset")
        return True

    async def wait(self) -> AutoplayState:
        """Wait for the current run task, including discarded in-flight calls."""
        if self._task is not None:
            await self._task
        return self.state

    async def run(
        self,
        target_saved_count: int | None = None,
        max_iterations: int | None = None,
    ) -> AutoplayState:
        """Start a run and wait for it to end.

        Raises:
            PreconditionError: If the run cannot start.
        """
        if not self.start(target_saved_count, max_iterations):
            assert self.last_rejection is not None
            raise self.last_rejection
        return await self.wait()

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(self, token: int) -> None:
        with log_context(autoplay_run=token):
            await self._iterate(token)

    async def _iterate(self, token: int) -> None:
        try:
            for iteration in range(1, self.state.max_iterations + 1):
                self._ensure_current(token, "iteration")
                self.state.current_iteration = iteration
                summary = IterationSummary(iteration=iteration)
                self.state.iterations.append(summary)

                if iteration > 1:
                    self._transition("generating", f"Iteration {iteration}: generating prompts")
                prompts = await self._generate(token)
                summary.prompt_ids = [p.id for p in prompts]

                rendered = await self._render(token, prompts)
                summary.rendered = len(rendered)

                self._transition("evaluating", f"Evaluating {len(rendered)} images")
                criteria = build_criteria(
                    self.context.base_image,
                    self.context.dimensions,
                    self.context.output_mode,
                    self.config.approval_threshold,
                )
                candidates = await self._evaluate(token, rendered, criteria)
                summary.scores = {c.prompt.id: c.evaluation.score for c in candidates}

                self._transition("refining", "Classifying candidates")
                await self._classify(token, candidates, criteria, summary)

                self._emit(
                    "iteration_completed",
                    f"Iteration {iteration} complete: {len(summary.accepted)} accepted",
                    accepted=len(summary.accepted),
                    saved_count=self.state.saved_count,
                )
                if self.state.saved_count >= self.state.target_count:
                    self._finish(token, "target_met")
                    return

                feedback = extract_refinement_feedback(
                    [c.evaluation for c in candidates], self.config.approval_threshold
                )
                self.context.feedback = feedback
                if not feedback.is_empty:
                    self._emit(
                        "feedback_updated",
                        "Refinement feedback for next iteration",
                        positive=feedback.positive,
                        negative=feedback.negative,
                    )

            self._finish(token, "max_iterations")
        except _StaleRun:
            return
        except Exception as e:
            if token == self._token:
                self._fail(e)
            else:
                log.info("late_result_discarded", operation="run", error=str(e))

    async def _call(self, token: int, awaitable: Awaitable[Any], operation: str) -> Any:
        """Await an external call; drop its outcome if the run went stale meanwhile."""
        try:
            result = await await_with_timeout(
                awaitable, self.config.call_timeout, operation=operation
            )
        except Exception:
            if token != self._token:
                log.info("late_result_discarded", operation=operation)
                raise _StaleRun() from None
            raise
        self._ensure_current(token, operation)
        return result

    def _ensure_current(self, token: int, operation: str) -> None:
        if token != self._token:
            log.info("late_result_discarded", operation=operation)
            raise _StaleRun()

    async def _generate(self, token: int) -> list[GeneratedPrompt]:
        raw = await self._call(
            token,
            self.generator.generate_prompts(build_request(self.context)),
            "generate_prompts",
        )
        result = parse_generation_result(raw)
        if isinstance(result, GenerationFailure):
            raise AutoplayError(f"Prompt generation failed: {result.error}")

        prompts = [p.model_copy(deep=True) for p in result.prompts]
        self.context.sessions.record_iteration([p.id for p in prompts])
        self._emit(
            "prompts_generated",
            f"Generated {len(prompts)} prompts",
            prompt_ids=[p.id for p in prompts],
        )
        return prompts

    async def _render(
        self, token: int, prompts: list[GeneratedPrompt]
    ) -> list[tuple[GeneratedPrompt, str]]:
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def render(prompt: GeneratedPrompt) -> str:
            async with semaphore:
                image = await self._call(
                    token,
                    self.images.generate(prompt.prompt, negative_prompt=prompt.negative_prompt),
                    "generate_image",
                )
                return str(image.url)

        results = await asyncio.gather(*(render(p) for p in prompts), return_exceptions=True)
        self._ensure_current(token, "generate_image")

        rendered = []
        for prompt, result in zip(prompts, results, strict=True):
            if isinstance(result, BaseException):
                if isinstance(result, ProviderTimeoutError):
                    raise result
                self._emit(
                    "image_failed",
                    f"Image generation failed for scene {prompt.scene_number}",
                    prompt_id=prompt.id,
                    error=str(result),
                )
                continue
            rendered.append((prompt, result))

        if not rendered:
            raise AutoplayError("All image generations failed")
        return rendered

    async def _evaluate(
        self,
        token: int,
        rendered: list[tuple[GeneratedPrompt, str]],
        criteria: EvaluationCriteria,
    ) -> list[_Candidate]:
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def evaluate(prompt: GeneratedPrompt, url: str) -> _Candidate:
            async with semaphore:
                raw = await self._call(
                    token, self.evaluator.evaluate_image(url, criteria), "evaluate_image"
                )
            return _Candidate(prompt, url, parse_evaluation(raw, prompt.id))

        results = await asyncio.gather(
            *(evaluate(p, url) for p, url in rendered), return_exceptions=True
        )
        self._ensure_current(token, "evaluate_image")
        for result in results:
            if isinstance(result, BaseException):
                raise result

        candidates = [r for r in results if isinstance(r, _Candidate)]
        for candidate in candidates:
            self._emit(
                "image_evaluated",
                f"Scene {candidate.prompt.scene_number} scored {candidate.evaluation.score:g}",
                prompt_id=candidate.prompt.id,
                score=candidate.evaluation.score,
                approved=candidate.evaluation.approved,
            )
        return candidates

    async def _classify(
        self,
        token: int,
        candidates: list[_Candidate],
        criteria: EvaluationCriteria,
        summary: IterationSummary,
    ) -> None:
        accepted: list[GeneratedPrompt] = []
        try:
            for candidate in candidates:
                if self.state.saved_count >= self.state.target_count:
                    break

                verdict = classify(
                    candidate.evaluation.score,
                    approval_threshold=self.config.approval_threshold,
                    polish_floor=self.config.polish_floor,
                )
                if verdict == "accept":
                    self._accept(candidate, summary, polished=False)
                    accepted.append(candidate.prompt)
                elif (
                    verdict == "polish"
                    and self.config.polish_enabled
                    and self.polisher is not None
                ):
                    if await self._polish(token, candidate, criteria, summary):
                        accepted.append(candidate.prompt)
                else:
                    if verdict == "polish":
                        self._emit(
                            "polish_skipped",
                            "Near miss, but polishing is unavailable",
                            prompt_id=candidate.prompt.id,
                            score=candidate.evaluation.score,
                        )
                    self._reject(candidate)
        finally:
            # Saved candidates reach history even if a later call went stale.
            if accepted:
                self.context.commit_prompts(accepted)

    async def _polish(
        self,
        token: int,
        candidate: _Candidate,
        criteria: EvaluationCriteria,
        summary: IterationSummary,
    ) -> bool:
        assert self.polisher is not None
        self._transition("polishing", f"Polishing scene {candidate.prompt.scene_number}")
        self._emit(
            "polish_started",
            f"Polishing near miss ({candidate.evaluation.score:g})",
            prompt_id=candidate.prompt.id,
            score=candidate.evaluation.score,
        )
        raw = await self._call(
            token,
            self.polisher.polish_image(candidate.image_url, candidate.evaluation),
            "polish_image",
        )
        result = parse_polish_result(raw)
        if isinstance(result, PolishFailure):
            self._emit(
                "polish_error",
                f"Polish failed: {result.error}",
                prompt_id=candidate.prompt.id,
                error=result.error,
            )
            self._transition("refining", "Polish failed")
            self._reject(candidate)
            return False

        re_evaluation = result.re_evaluation
        if re_evaluation is None:
            raw_eval = await self._call(
                token,
                self.evaluator.evaluate_image(result.polished_url, criteria),
                "evaluate_image",
            )
            re_evaluation = parse_evaluation(raw_eval, candidate.prompt.id)
        self._transition("refining", "Polish re-evaluated")

        if re_evaluation.score >= self.config.approval_threshold:
            polished = _Candidate(candidate.prompt, result.polished_url, re_evaluation)
            self._emit(
                "image_polished",
                f"Polish lifted score {candidate.evaluation.score:g} -> {re_evaluation.score:g}",
                prompt_id=candidate.prompt.id,
                before=candidate.evaluation.score,
                after=re_evaluation.score,
            )
            summary.polished.append(candidate.prompt.id)
            self._accept(polished, summary, polished=True)
            return True

        self._emit(
            "polish_no_improvement",
            f"Polish did not reach the threshold ({re_evaluation.score:g})",
            prompt_id=candidate.prompt.id,
            before=candidate.evaluation.score,
            after=re_evaluation.score,
        )
        self._reject(candidate)
        return False

    def _accept(self, candidate: _Candidate, summary: IterationSummary, *, polished: bool) -> None:
        self.state.saved_count += 1
        self.state.saved.append(
            SavedCandidate(
                prompt_id=candidate.prompt.id,
                image_url=candidate.image_url,
                score=candidate.evaluation.score,
                iteration=self.state.current_iteration,
                polished=polished,
            )
        )
        summary.accepted.append(candidate.prompt.id)
        self._emit(
            "image_saved",
            f"Saved scene {candidate.prompt.scene_number} ({candidate.evaluation.score:g})",
            prompt_id=candidate.prompt.id,
            image_url=candidate.image_url,
            score=candidate.evaluation.score,
            saved_count=self.state.saved_count,
        )
        self._learn(candidate, "up")

    def _reject(self, candidate: _Candidate) -> None:
        self._emit(
            "candidate_rejected",
            f"Rejected scene {candidate.prompt.scene_number} ({candidate.evaluation.score:g})",
            prompt_id=candidate.prompt.id,
            score=candidate.evaluation.score,
        )
        self._learn(candidate, "down")

    def _learn(self, candidate: _Candidate, rating: Rating) -> None:
        session = self.context.sessions.get_active_session()
        feedback = PromptFeedback(
            prompt_id=candidate.prompt.id,
            rating=rating,
            session_id=session.id if session else None,
        )
        self.context.learner.submit_feedback(
            feedback,
            candidate.prompt,
            [d.model_copy(deep=True) for d in self.context.dimensions],
        )

    # ------------------------------------------------------------------
    # Transitions and events
    # ------------------------------------------------------------------

    def _finish(self, token: int, reason: CompletionReason) -> None:
        self._ensure_current(token, "finish")
        self.state.phase = "complete"
        self.state.completion_reason = reason
        log.info(
            "autoplay_transition",
            phase="complete",
            iteration=self.state.current_iteration,
            reason=reason,
            saved_count=self.state.saved_count,
        )
        self._emit(
            "completed",
            f"Autoplay complete ({reason}): {self.state.saved_count} saved",
            reason=reason,
            saved_count=self.state.saved_count,
        )
        if reason == "target_met":
            self.context.sessions.mark_satisfied()
        else:
            self.context.sessions.end_unsuccessful(f"autoplay ended: {reason}")

    def _fail(self, error: Exception) -> None:
        message = str(error) or type(error).__name__
        self.state.phase = "error"
        self.state.completion_reason = "error"
        self.state.last_error = message
        log.error(
            "autoplay_failed",
            iteration=self.state.current_iteration,
            error_type=type(error).__name__,
            error=message,
        )
        event_type: EventType = "timeout" if isinstance(error, ProviderTimeoutError) else "error"
        self._emit(event_type, message, error_type=type(error).__name__)
        self.context.sessions.end_unsuccessful(message)

    def _transition(self, phase: AutoplayPhase, message: str) -> None:
        self.state.phase = phase
        log.info(
            "autoplay_transition",
            phase=phase,
            iteration=self.state.current_iteration,
            message=message,
        )
        self._emit("phase_changed", message)

    def _emit(self, event_type: EventType, message: str, **details: Any) -> None:
        event = AutoplayEvent(
            type=event_type,
            phase=self.state.phase,
            iteration=self.state.current_iteration,
            message=message,
            details=details,
        )
        self.events.append(event)
        log.debug("autoplay_event", type=event_type, message=message, **details)

        if not self._observers:
            return
        snapshot = copy.deepcopy(self.state)
        for observer in list(self._observers):
            try:
                observer(snapshot, event)
            except Exception as e:
                log.warning("autoplay_observer_failed", event_type=event_type, error=str(e))
