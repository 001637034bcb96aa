"""
Configuration loading for commit_sage.

Provides the layered loader (defaults, ``commit-sage.toml``,
environment, command line) and the frozen configuration dataclasses.
See :mod:`commit_sage.config.loader` for implementation details.
"""

from .loader import (  # noqa: F401
    AiSettings,
    CommitPolicy,
    Config,
    ConfigError,
    GitSettings,
    RetryPolicy,
    load_config,
    resolve_api_key,
)
