"""
Git client implementation for commit_sage.

This module wraps the handful of Git operations the commit assistant
needs: reading the staged diff, listing and reading untracked files,
checking whether HEAD exists, and writing a commit over the staged
content. All subprocess calls go through :meth:`GitClient._run` so that
unit tests can mock them easily.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from commit_sage.errors import RepoAccessFailure


logger = logging.getLogger(__name__)
# Attach a null handler to avoid logging errors when the root logger is not
# configured. Logs will propagate to the root when configured by the CLI.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


class GitError(RepoAccessFailure):
    """Raised when a Git command fails."""

    pass


class GitClient:
    """Client for interacting with a Git repository."""

    def __init__(self, repo_root: Path) -> None:
        self.repo_root = repo_root

    # ------------------------------------------------------------------
    # Static helpers
    # ------------------------------------------------------------------
    @staticmethod
    def find_repo_root(start: Path) -> Optional[Path]:
        """Find the root of the Git repository starting from ``start``.

        Walk upwards until a ``.git`` entry is found or the filesystem
        root is reached.
        """
        current = start.resolve()
        while True:
            if (current / ".git").exists():
                return current
            if current.parent == current:
                # reached filesystem root
                return None
            current = current.parent

    # ------------------------------------------------------------------
    # Basic Git commands
    # ------------------------------------------------------------------
    def _run(self, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run a Git command in the repository root.

        Raises
        ------
        GitError
            If Git cannot be executed, or the command exits with a
            non-zero status when ``check`` is True.
        """
        full_cmd = ["git"] + args
        logger.debug("Executing Git command: %s", " ".join(full_cmd))
        try:
            result = subprocess.run(
                full_cmd,
                cwd=self.repo_root,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",  # Replace invalid characters instead of failing
            )
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to execute Git: %s", e)
            raise GitError(f"Failed to execute git: {e}") from e

        if check and result.returncode != 0:
            logger.error(
                "Git command failed: %s\nSTDOUT: %s\nSTDERR: %s",
                " ".join(full_cmd),
                result.stdout,
                result.stderr,
            )
            raise GitError(result.stderr.strip() or result.stdout.strip())
        return result

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------
    def has_head(self) -> bool:
        """Return True if the repository has at least one commit."""
        result = self._run(["rev-parse", "--verify", "--quiet", "HEAD"], check=False)
        return result.returncode == 0

    def get_staged_diff(self) -> str:
        """Return the unified diff between HEAD and the index.

        On a repository without commits Git compares the index against
        the empty tree, so newly staged files show up as additions.
        """
        result = self._run(
            ["diff", "--cached", "--no-color", "--no-ext-diff", "--no-renames"],
            check=True,
        )
        return result.stdout

    def list_untracked(self) -> List[str]:
        """Return untracked, non-ignored files relative to the repository root."""
        result = self._run(["ls-files", "--others", "--exclude-standard"], check=True)
        return [line for line in result.stdout.splitlines() if line.strip()]

    def read_file(self, relative_path: str) -> bytes:
        """Read a working tree file as raw bytes."""
        path = self.repo_root / relative_path
        try:
            return path.read_bytes()
        except OSError as exc:
            logger.error("Failed to read '%s': %s", path, exc)
            raise GitError(f"Failed to read {relative_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Committing
    # ------------------------------------------------------------------
    def commit(self, message: str) -> None:
        """Create a commit with the given message from the staged content.

        If the commit fails, a GitError is raised.
        """
        self._run(["commit", "-m", message], check=True)
