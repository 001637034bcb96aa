"""Commit message validation and repair."""

from .validator import CommitMessage, strip_thinking_tags, validate_message  # noqa: F401
