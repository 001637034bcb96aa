"""
Version control integration.

Contains the :class:`GitClient` used to read staged changes and to
write the final commit.
"""

from .git_client import GitClient, GitError  # noqa: F401
