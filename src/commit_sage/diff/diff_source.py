"""
Diff capture for commit_sage.

:func:`capture_diff` reads the staged changes through a
:class:`~commit_sage.vcs.git_client.GitClient` (or any object with the
same reading methods) and returns an immutable :class:`DiffContent`.
Untracked files can optionally be appended as synthetic "new file"
sections so the model sees them too.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from commit_sage.diff.change_classifier import classify_change
from commit_sage.errors import NoChanges


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


# Number of leading bytes inspected when deciding whether a file is binary.
BINARY_SNIFF_BYTES = 8192


@dataclass(frozen=True)
class FileSummary:
    """Per-file statistics for one section of the diff."""

    path: str
    status: str
    additions: int = 0
    deletions: int = 0
    suggested_type: str = "chore"


@dataclass(frozen=True)
class DiffContent:
    """Captured diff text plus per-file summaries."""

    text: str
    files: Tuple[FileSummary, ...] = ()
    truncated: bool = False

    @property
    def byte_length(self) -> int:
        return len(self.text.encode("utf-8"))

    @property
    def file_count(self) -> int:
        return len(self.files)


def _section_path(lines: List[str]) -> str:
    """Pick the file path of a ``diff --git`` section."""
    for line in lines:
        if line.startswith("+++ b/"):
            return line[len("+++ b/"):]
    for line in lines:
        if line.startswith("--- a/"):
            return line[len("--- a/"):]
    header = lines[0]
    marker = header.rfind(" b/")
    if marker != -1:
        return header[marker + len(" b/"):]
    return header[len("diff --git "):]


def _summarize_section(lines: List[str]) -> FileSummary:
    status = "modified"
    additions = deletions = 0
    in_hunk = False
    for line in lines[1:]:
        if line.startswith("@@"):
            in_hunk = True
            continue
        if not in_hunk:
            if line.startswith("new file mode"):
                status = "added"
            elif line.startswith("deleted file mode"):
                status = "deleted"
            elif line.startswith("rename from"):
                status = "renamed"
            continue
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
    path = _section_path(lines)
    return FileSummary(
        path=path,
        status=status,
        additions=additions,
        deletions=deletions,
        suggested_type=classify_change(path, "\n".join(lines), status),
    )


def parse_file_summaries(diff_text: str) -> List[FileSummary]:
    """Split a unified diff into ``diff --git`` sections and summarise each."""
    summaries: List[FileSummary] = []
    current: Optional[List[str]] = None
    for line in diff_text.splitlines():
        if line.startswith("diff --git "):
            if current:
                summaries.append(_summarize_section(current))
            current = [line]
        elif current is not None:
            current.append(line)
    if current:
        summaries.append(_summarize_section(current))
    return summaries


def render_untracked(path: str, data: bytes) -> str:
    """Render an untracked file as a unified diff adding the whole file."""
    header = [
        f"diff --git a/{path} b/{path}",
        "new file mode 100644",
    ]
    if b"\0" in data[:BINARY_SNIFF_BYTES]:
        header.append(f"Binary files /dev/null and b/{path} differ")
        return "\n".join(header) + "\n"

    text = data.decode("utf-8", errors="replace")
    header += ["--- /dev/null", f"+++ b/{path}"]
    if not text:
        return "\n".join(header) + "\n"

    lines = text.splitlines()
    body = [f"@@ -0,0 +1,{len(lines)} @@"]
    body += [f"+{line}" for line in lines]
    if not text.endswith(("\n", "\r")):
        body.append("\\ No newline at end of file")
    return "\n".join(header + body) + "\n"


def _no_changes(client: Any) -> NoChanges:
    reason = NoChanges.NOTHING_STAGED if client.has_head() else NoChanges.NO_COMMITS
    logger.warning("No changes captured (%s)", reason)
    return NoChanges(reason)


def capture_diff(
    client: Any, include_untracked: bool = False, require_staged: bool = True
) -> DiffContent:
    """Capture the staged diff, optionally with untracked files appended.

    Parameters
    ----------
    client : GitClient
        Must implement ``get_staged_diff``, ``has_head``, and, when
        ``include_untracked`` is set, ``list_untracked`` and ``read_file``.
    include_untracked : bool
        Append untracked, non-ignored files as additions.
    require_staged : bool
        Raise :class:`NoChanges` when nothing is staged, even if untracked
        files were found. A commit only records staged content, so runs
        that end in a commit need this. Suggest-only runs may describe
        untracked files alone.

    Returns
    -------
    DiffContent
        The diff text and per-file summaries.

    Raises
    ------
    NoChanges
        When the resulting diff is empty, or nothing is staged and
        ``require_staged`` is set. ``reason`` tells a repository without
        commits apart from one where nothing is staged.
    RepoAccessFailure
        When the repository cannot be read.
    """
    staged = client.get_staged_diff()
    if require_staged and not staged.strip():
        raise _no_changes(client)

    parts: List[str] = []
    summaries = parse_file_summaries(staged)
    if staged.strip():
        parts.append(staged if staged.endswith("\n") else staged + "\n")

    if include_untracked:
        for path in client.list_untracked():
            section = render_untracked(path, client.read_file(path))
            parts.append(section)
            summary = _summarize_section(section.splitlines())
            summaries.append(
                FileSummary(
                    path=path,
                    status="untracked",
                    additions=summary.additions,
                    deletions=0,
                    suggested_type=classify_change(path, section, "untracked"),
                )
            )

    text = "".join(parts)
    if not text.strip():
        raise _no_changes(client)

    logger.debug("Captured diff: %d file(s), %d bytes", len(summaries), len(text.encode("utf-8")))
    return DiffContent(text=text, files=tuple(summaries))
