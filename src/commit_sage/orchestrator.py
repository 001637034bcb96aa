"""
Pipeline orchestration.

:class:`CommitOrchestrator` sequences diff capture, token budgeting,
prompt building, generation, validation, confirmation, and the commit
write. Each step moves the pipeline through :class:`PipelineState`;
any error moves it to ``ABORTED`` and is recorded on the returned
:class:`PipelineResult` instead of escaping, so callers can inspect the
exact state the run stopped in.

Retry policy:

* ``RateLimited`` and ``TransportFailure`` from the provider are retried
  up to ``retry.max_retries`` times with exponential backoff.
* ``FormatViolation`` triggers up to ``retry.format_regenerations``
  fresh generations.
* Everything else, including a failed commit write, is fatal.

``KeyboardInterrupt`` is never caught here; an interrupted run commits
nothing.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, List, Optional, Tuple

from commit_sage.config.loader import Config
from commit_sage.diff.diff_source import DiffContent, capture_diff
from commit_sage.errors import (
    CommitSageError,
    CommitWriteFailure,
    FormatViolation,
    ProviderError,
    RateLimited,
    RETRYABLE_PROVIDER_ERRORS,
    UserDeclined,
)
from commit_sage.llm.provider import GenerationConfig, ModelContext, ModelProvider
from commit_sage.message.validator import CommitMessage, validate_message
from commit_sage.prompt.builder import build_context
from commit_sage.prompt.token_budget import TokenBudgeter


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


class PipelineState(enum.Enum):
    IDLE = "idle"
    DIFF_CAPTURED = "diff_captured"
    PROMPT_READY = "prompt_ready"
    RESPONSE_RECEIVED = "response_received"
    VALIDATED = "validated"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMMITTING = "committing"
    DONE = "done"
    ABORTED = "aborted"


class PipelineObserver:
    """Receives progress notifications. All hooks default to no-ops."""

    def on_state(self, state: PipelineState) -> None:
        pass

    def on_captured(self, diff: DiffContent) -> None:
        pass

    def on_diff(self, diff: DiffContent) -> None:
        pass

    def on_truncated(self, original_tokens: int, budget: int) -> None:
        pass

    def on_retry(self, attempt: int, delay: float, error: CommitSageError) -> None:
        pass

    def on_message(self, message: CommitMessage) -> None:
        pass


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    state: PipelineState
    message: Optional[CommitMessage] = None
    diff: Optional[DiffContent] = None
    error: Optional[CommitSageError] = None
    history: List[PipelineState] = field(default_factory=list)
    attempts: int = 0
    committed: bool = False

    @property
    def ok(self) -> bool:
        return self.state is PipelineState.DONE


class CommitOrchestrator:
    """Drive one generate-validate-commit run.

    Parameters
    ----------
    config : Config
        Frozen configuration.
    provider : ModelProvider
        Any conforming provider; its concrete type is never inspected.
    git_client : GitClient
        Reads the staged diff and writes the commit.
    confirm : Callable[[CommitMessage], bool], optional
        Asked before committing when confirmation is required. Without
        it, a required confirmation counts as declined.
    observer : PipelineObserver, optional
        Output sink for progress notifications.
    budgeter : TokenBudgeter, optional
        Token estimator. By default one is built on first use from
        ``ai.encoding_file``, after a diff has been captured.
    sleep : Callable[[float], None], optional
        Used for backoff between retries.
    """

    def __init__(
        self,
        config: Config,
        provider: ModelProvider,
        git_client: Any,
        confirm: Optional[Callable[[CommitMessage], bool]] = None,
        observer: Optional[PipelineObserver] = None,
        budgeter: Optional[TokenBudgeter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.provider = provider
        self.git_client = git_client
        self.confirm = confirm
        self.observer = observer or PipelineObserver()
        self.budgeter = budgeter
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _enter(self, result: PipelineResult, state: PipelineState) -> None:
        logger.debug("Pipeline state: %s -> %s", result.state.value, state.value)
        result.state = state
        result.history.append(state)
        self.observer.on_state(state)

    def _abort(self, result: PipelineResult, error: CommitSageError) -> PipelineResult:
        logger.error("Pipeline aborted in state %s: %s", result.state.value, error)
        result.error = error
        self._enter(result, PipelineState.ABORTED)
        return result

    def generation_config(self) -> GenerationConfig:
        """Merge configured generation values over the provider defaults."""
        defaults = self.provider.default_config()
        ai = self.config.ai
        return GenerationConfig(
            temperature=defaults.temperature if ai.temperature is None else ai.temperature,
            max_tokens=defaults.max_tokens if ai.max_tokens is None else ai.max_tokens,
            stop_sequences=defaults.stop_sequences if ai.stop_sequences is None else ai.stop_sequences,
        )

    def _prepare_context(self, diff: DiffContent) -> Tuple[ModelContext, DiffContent]:
        """Fit the diff into its budget and build the model context.

        Returns the context and the diff as it was sent, with
        ``truncated`` set when the tail had to be cut.
        """
        ai = self.config.ai
        if self.budgeter is None:
            self.budgeter = TokenBudgeter(encoding_file=ai.encoding_file)
        gen_config = self.generation_config()
        budget = self.budgeter.diff_budget(
            ai.context_window, ai.system_prompt, ai.user_prompt_template, gen_config.max_tokens
        )
        fitted, truncated = self.budgeter.fit(diff.text, budget)
        if truncated:
            self.observer.on_truncated(self.budgeter.count(diff.text), budget)
            diff = replace(diff, text=fitted, truncated=True)
        context = build_context(ai.system_prompt, ai.user_prompt_template, fitted, gen_config)
        return context, diff

    def _generate(self, context: ModelContext, result: PipelineResult) -> str:
        """Call the provider, retrying transient failures with backoff."""
        retry = self.config.retry
        attempt = 0
        while True:
            result.attempts += 1
            try:
                return self.provider.generate(context)
            except RETRYABLE_PROVIDER_ERRORS as exc:
                attempt += 1
                if attempt > retry.max_retries:
                    logger.error("Giving up after %d retries: %s", retry.max_retries, exc)
                    raise
                retry_after = exc.retry_after if isinstance(exc, RateLimited) else None
                delay = retry.delay_for(attempt, retry_after)
                logger.warning(
                    "Provider error (%s); retry %d/%d in %.1fs",
                    exc,
                    attempt,
                    retry.max_retries,
                    delay,
                )
                self.observer.on_retry(attempt, delay, exc)
                self.sleep(delay)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def run(self) -> PipelineResult:
        """Run the pipeline to ``DONE`` or ``ABORTED``."""
        result = PipelineResult(state=PipelineState.IDLE, history=[PipelineState.IDLE])
        policy = self.config.commit

        try:
            diff = capture_diff(
                self.git_client,
                self.config.git.include_untracked,
                require_staged=policy.auto_commit or policy.require_confirmation,
            )
        except CommitSageError as exc:
            return self._abort(result, exc)
        result.diff = diff
        self._enter(result, PipelineState.DIFF_CAPTURED)
        self.observer.on_captured(diff)
        if self.config.git.show_diff:
            self.observer.on_diff(diff)

        try:
            context, result.diff = self._prepare_context(diff)
        except CommitSageError as exc:
            return self._abort(result, exc)
        self._enter(result, PipelineState.PROMPT_READY)

        regenerations = 0
        while True:
            try:
                raw = self._generate(context, result)
            except ProviderError as exc:
                return self._abort(result, exc)
            self._enter(result, PipelineState.RESPONSE_RECEIVED)
            logger.debug("Raw model output: %r", raw)

            try:
                message = validate_message(
                    raw,
                    policy.allowed_types,
                    policy.max_length,
                    verify_format=policy.verify_format,
                )
                break
            except FormatViolation as exc:
                if regenerations >= self.config.retry.format_regenerations:
                    return self._abort(result, exc)
                regenerations += 1
                logger.warning("Invalid format (%s); regenerating (%d)", exc, regenerations)
                self.observer.on_retry(regenerations, 0.0, exc)
                self._enter(result, PipelineState.PROMPT_READY)

        result.message = message
        self._enter(result, PipelineState.VALIDATED)
        self.observer.on_message(message)

        if not policy.auto_commit:
            if not policy.require_confirmation:
                logger.info("Suggestion only; no commit requested")
                self._enter(result, PipelineState.DONE)
                return result
            self._enter(result, PipelineState.AWAITING_CONFIRMATION)
            accepted = self.confirm(message) if self.confirm is not None else False
            if not accepted:
                return self._abort(result, UserDeclined())

        self._enter(result, PipelineState.COMMITTING)
        try:
            self.git_client.commit(message.raw_text)
        except Exception as exc:
            # Never retried.
            error = CommitWriteFailure(f"Failed to write commit: {exc}")
            error.__cause__ = exc
            return self._abort(result, error)
        result.committed = True
        self._enter(result, PipelineState.DONE)
        return result
