"""
Diff capture and per-file change summaries.

See :mod:`commit_sage.diff.diff_source` for capturing the staged diff
and :mod:`commit_sage.diff.change_classifier` for the heuristic commit
type suggestions attached to each file.
"""

from .change_classifier import classify_change, suggest_commit_type  # noqa: F401
from .diff_source import DiffContent, FileSummary, capture_diff  # noqa: F401
