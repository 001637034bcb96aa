"""
Provider-agnostic model interface.

:class:`ModelProvider` is the capability every backend implements. The
orchestrator only ever talks to this interface, so the built-in
:class:`~commit_sage.llm.together_client.TogetherAIProvider`, a
user-supplied provider, and a test double are interchangeable.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Tuple


@dataclass(frozen=True)
class GenerationConfig:
    """Tunable parameters for a single model invocation.

    Attributes
    ----------
    temperature : float
        Sampling temperature in the closed range [0, 1].
    max_tokens : int
        Upper bound on generated tokens; must be positive.
    stop_sequences : Tuple[str, ...]
        Ordered stop sequences passed to the backend.
    """

    temperature: float = 0.3
    max_tokens: int = 100
    stop_sequences: Tuple[str, ...] = ("\n",)

    def __post_init__(self) -> None:
        if isinstance(self.temperature, bool) or not 0.0 <= self.temperature <= 1.0:
            raise ValueError(f"temperature must be within [0, 1], got {self.temperature!r}")
        if isinstance(self.max_tokens, bool) or not isinstance(self.max_tokens, int) or self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be a positive integer, got {self.max_tokens!r}")
        # Accept any sequence but store an immutable tuple.
        object.__setattr__(self, "stop_sequences", tuple(self.stop_sequences))


@dataclass(frozen=True)
class ModelContext:
    """Everything a provider needs for one request."""

    system_prompt: str
    user_prompt: str
    config: GenerationConfig

    def messages(self) -> List[Dict[str, str]]:
        """Render the chat-completions message list."""
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.user_prompt},
        ]


class ModelProvider(ABC):
    """Capability interface for text generation backends.

    Implementations must be safe for concurrent read-only use: beyond
    fixed credentials and the model id they keep no mutable state.
    Failures are reported with the
    :class:`~commit_sage.errors.ProviderError` family.
    """

    @abstractmethod
    def generate(self, context: ModelContext) -> str:
        """Send ``context`` to the backend and return the raw generated text."""

    @abstractmethod
    def model_id(self) -> str:
        """Return the stable identifier of the model in use."""

    @abstractmethod
    def default_config(self) -> GenerationConfig:
        """Return the generation parameters used when the caller sets none."""
