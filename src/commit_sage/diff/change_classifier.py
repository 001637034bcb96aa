"""
Heuristics for suggesting a Conventional Commit type per changed file.

The suggestion is derived from the file path, the change status, and
the added/removed lines of the file's diff. It is deterministic so it
can be unit tested without a language model, and it is only advisory:
the model chooses the final type and the validator checks it against
the configured vocabulary.
"""

from __future__ import annotations

import re
from collections import Counter
from pathlib import PurePosixPath
from typing import Iterable, List

DOC_SUFFIXES = {".md", ".rst", ".txt", ".adoc"}
BUILD_FILES = {
    "Dockerfile",
    "docker-compose.yml",
    "Makefile",
    "pyproject.toml",
    "setup.py",
    "setup.cfg",
    "Cargo.toml",
    "package.json",
}

_FIX_PATTERN = re.compile(r"\b(fix(e[ds])?|bug|error|issue|patch|hotfix)\b", re.IGNORECASE)
_REFACTOR_PATTERN = re.compile(r"\brefactor\b", re.IGNORECASE)
_PERF_PATTERN = re.compile(r"\bperf(ormance)?\b", re.IGNORECASE)
_DEFINITION_PATTERN = re.compile(r"\b(class|def|function|fn|func)\b")


def _changed_lines(diff: str) -> List[str]:
    return [
        line
        for line in diff.splitlines()
        if line.startswith(("+", "-")) and not line.startswith(("+++", "---"))
    ]


def _is_whitespace_only(changed: List[str]) -> bool:
    removed = "".join(re.sub(r"\s", "", line[1:]) for line in changed if line.startswith("-"))
    added = "".join(re.sub(r"\s", "", line[1:]) for line in changed if line.startswith("+"))
    return removed == added


def classify_change(file_path: str, diff: str, status: str = "modified") -> str:
    """Suggest a Conventional Commit type for one changed file.

    Parameters
    ----------
    file_path : str
        Path relative to the repository root.
    diff : str
        The file's section of the unified diff.
    status : str
        ``added``, ``modified``, ``deleted``, ``renamed`` or ``untracked``.

    Returns
    -------
    str
        One of ``feat``, ``fix``, ``docs``, ``style``, ``refactor``,
        ``perf``, ``test``, ``build``, ``ci`` or ``chore``.
    """
    path = PurePosixPath(file_path)

    if path.suffix.lower() in DOC_SUFFIXES:
        return "docs"
    if path.name.startswith("test_") or path.stem.endswith("_test") or "tests" in path.parts:
        return "test"
    if ".github" in path.parts or ".gitlab-ci.yml" == path.name:
        return "ci"
    if path.name in BUILD_FILES or path.suffix in {".yaml", ".yml", ".lock"}:
        return "build"

    changed = _changed_lines(diff)
    if status == "modified" and changed and _is_whitespace_only(changed):
        return "style"

    body = "\n".join(line[1:] for line in changed)
    if _FIX_PATTERN.search(body):
        return "fix"
    if _REFACTOR_PATTERN.search(body):
        return "refactor"
    if _PERF_PATTERN.search(body):
        return "perf"
    if status in {"added", "untracked"}:
        return "feat"
    if _DEFINITION_PATTERN.search("\n".join(line for line in changed if line.startswith("+"))):
        return "feat"
    if status == "deleted":
        return "refactor"
    return "chore"


def suggest_commit_type(types: Iterable[str]) -> str:
    """Return the most common suggestion, ties broken by first appearance."""
    counts = Counter(types)
    if not counts:
        return "chore"
    return counts.most_common(1)[0][0]
