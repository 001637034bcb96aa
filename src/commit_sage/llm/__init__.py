"""
Language model integration for commit_sage.

This package contains the provider-agnostic :class:`ModelProvider`
interface with its request types, and the built-in
:class:`TogetherAIProvider`.
"""

from .provider import GenerationConfig, ModelContext, ModelProvider  # noqa: F401
from .together_client import AVAILABLE_MODELS, TogetherAIProvider  # noqa: F401
