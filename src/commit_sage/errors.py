"""
Exception hierarchy for commit_sage.

Every failure the pipeline can surface derives from
:class:`CommitSageError` so the CLI can map each class to a distinct
message and exit code. Provider failures share the
:class:`ProviderError` base; the orchestrator decides which of them are
worth retrying via :data:`RETRYABLE_PROVIDER_ERRORS`.
"""

from __future__ import annotations

from typing import Optional


class CommitSageError(Exception):
    """Base class for all errors raised by commit_sage."""

    pass


class ConfigError(CommitSageError):
    """Raised when configuration is missing, malformed, or has wrong types."""

    pass


class NoChanges(CommitSageError):
    """Raised when there is nothing to describe.

    ``reason`` is ``"no_commits"`` when the repository has no commit yet
    and nothing is staged, or ``"nothing_staged"`` otherwise.
    """

    NO_COMMITS = "no_commits"
    NOTHING_STAGED = "nothing_staged"

    def __init__(self, reason: str = NOTHING_STAGED) -> None:
        self.reason = reason
        if reason == self.NO_COMMITS:
            message = (
                "No commits yet and nothing staged. "
                "Stage your first files with 'git add' before generating a message."
            )
        else:
            message = "No staged changes to commit. Stage your changes with 'git add' first."
        super().__init__(message)


class RepoAccessFailure(CommitSageError):
    """Raised when the git repository cannot be read."""

    pass


class TemplateError(CommitSageError):
    """Raised when prompt templates cannot be rendered."""

    pass


class TokenizerUnavailable(CommitSageError):
    """Raised when a configured token encoding file cannot be loaded."""

    pass


class ProviderError(CommitSageError):
    """Raised when a model provider fails to produce text."""

    pass


class AuthenticationFailure(ProviderError):
    """Raised when the backend rejects the credentials."""

    pass


class RateLimited(ProviderError):
    """Raised when the backend asks the client to slow down."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TransportFailure(ProviderError):
    """Raised on network errors, timeouts, and server-side failures."""

    pass


class MalformedResponse(ProviderError):
    """Raised when the backend reply cannot be interpreted as text."""

    pass


class FormatViolation(CommitSageError):
    """Raised when generated text is not a valid Conventional Commit summary."""

    pass


class UserDeclined(CommitSageError):
    """Raised when the user rejects the proposed commit message."""

    def __init__(self, message: str = "Commit declined by user.") -> None:
        super().__init__(message)


class CommitWriteFailure(CommitSageError):
    """Raised when writing the commit fails. Never retried."""

    pass


RETRYABLE_PROVIDER_ERRORS = (RateLimited, TransportFailure)
