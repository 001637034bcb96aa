"""
Validation and repair of generated commit messages.

Models rarely return exactly one clean line. :func:`validate_message`
removes reasoning blocks, code fences, labels and quoting, picks the
summary line, checks it against the Conventional Commits grammar and
the configured type vocabulary, and shortens an over-long description
so the summary fits ``max_length``. Only the summary line is validated;
any body the model produced is dropped.

The function is deterministic and idempotent: feeding the ``raw_text``
of a returned :class:`CommitMessage` back in yields the same message.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from commit_sage.errors import FormatViolation


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


SUMMARY_PATTERN = re.compile(
    r"(?P<type>[A-Za-z][A-Za-z0-9-]*)"
    r"(?:\((?P<scope>[^()\s](?:[^()]*[^()\s])?)\))?"
    r": (?P<description>\S.*)"
)

_THINKING_PATTERNS = [
    re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<thinking>.*?</thinking>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<thought>.*?</thought>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<reasoning>.*?</reasoning>", re.DOTALL | re.IGNORECASE),
]
_LABEL_PATTERN = re.compile(r"^(?:suggested\s+)?commit(?:\s+message)?\s*:\s*", re.IGNORECASE)
_LEADING_LABEL = re.compile(r"^[A-Za-z][A-Za-z ]*:\s+")
_QUOTES = ('"', "'", "`")


@dataclass(frozen=True)
class CommitMessage:
    """A validated commit summary line.

    Attributes
    ----------
    type : Optional[str]
        Conventional Commit type. ``None`` only when format verification
        was disabled and the text did not parse.
    scope : Optional[str]
        Scope between parentheses, if any.
    description : str
        Text after ``": "``.
    raw_text : str
        The exact text to commit with.
    """

    type: Optional[str]
    scope: Optional[str]
    description: str
    raw_text: str

    def __str__(self) -> str:
        return self.raw_text


def strip_thinking_tags(text: str) -> str:
    """Remove reasoning blocks such as ``<think>...</think>`` from model output."""
    result = text
    for pattern in _THINKING_PATTERNS:
        result = pattern.sub("", result)
    return result.strip()


def _clean_line(line: str) -> str:
    cleaned = line.strip()
    changed = True
    while changed and cleaned:
        changed = False
        # Markdown bold and matching quotes around the whole line.
        if len(cleaned) >= 4 and cleaned.startswith("**") and cleaned.endswith("**"):
            cleaned, changed = cleaned[2:-2].strip(), True
        elif len(cleaned) >= 2 and cleaned[0] in _QUOTES and cleaned[-1] == cleaned[0]:
            cleaned, changed = cleaned[1:-1].strip(), True
        else:
            unlabeled = _LABEL_PATTERN.sub("", cleaned, count=1)
            if unlabeled != cleaned:
                cleaned, changed = unlabeled.strip(), True
    return cleaned


def _candidate_lines(raw_text: str) -> List[str]:
    text = strip_thinking_tags(raw_text)
    lines = []
    for line in text.splitlines():
        if line.strip().startswith("```"):
            continue
        cleaned = _clean_line(line)
        if cleaned:
            lines.append(cleaned)
    return lines


def _select_summary(lines: List[str], allowed: List[str]) -> Optional[str]:
    """Pick the summary line.

    The first line that parses with an allowed type wins, also after
    dropping one leading ``Label:`` the model put in front of it. Failing
    that, the first line that parses at all, then the first line.
    """
    for line in lines:
        for candidate in (line, _LEADING_LABEL.sub("", line, count=1)):
            match = SUMMARY_PATTERN.fullmatch(candidate)
            if match and match.group("type").lower() in allowed:
                return candidate
    for line in lines:
        if SUMMARY_PATTERN.fullmatch(line):
            return line
    return lines[0] if lines else None


def _format(commit_type: str, scope: Optional[str], description: str) -> str:
    prefix = f"{commit_type}({scope}): " if scope else f"{commit_type}: "
    return prefix + description


def validate_message(
    raw_text: str,
    allowed_types: Iterable[str],
    max_length: int,
    verify_format: bool = True,
) -> CommitMessage:
    """Turn raw model output into a :class:`CommitMessage`.

    Parameters
    ----------
    raw_text : str
        Text returned by the model provider.
    allowed_types : Iterable[str]
        Accepted commit types.
    max_length : int
        Maximum length of the summary line. An over-long description is
        cut at exactly the character that makes the line fill
        ``max_length``, even inside a word, so the exact-length repair
        wins over word boundaries. Whitespace at the cut is dropped, which
        leaves the line shorter than ``max_length`` in that one case.
    verify_format : bool
        When False the text is passed through unchanged and the fields are
        filled from a best-effort parse.

    Raises
    ------
    FormatViolation
        If the text is empty, does not match ``type(scope): description``,
        uses a type outside ``allowed_types``, or the prefix alone does
        not fit ``max_length``.
    """
    allowed = [commit_type.lower() for commit_type in allowed_types]
    summary = _select_summary(_candidate_lines(raw_text), allowed)

    if not verify_format:
        match = SUMMARY_PATTERN.fullmatch(summary) if summary else None
        if match:
            return CommitMessage(
                type=match.group("type").lower(),
                scope=match.group("scope"),
                description=match.group("description"),
                raw_text=raw_text,
            )
        return CommitMessage(type=None, scope=None, description=raw_text.strip(), raw_text=raw_text)

    if summary is None:
        raise FormatViolation("Model returned an empty commit message")

    match = SUMMARY_PATTERN.fullmatch(summary)
    if not match:
        logger.warning("Generated message does not follow the conventional format: %r", summary)
        raise FormatViolation(
            f"Generated message does not follow the 'type(scope): description' format: {summary!r}"
        )

    commit_type = match.group("type").lower()
    if commit_type not in allowed:
        logger.warning("Generated message uses disallowed type %r", commit_type)
        raise FormatViolation(
            f"Commit type '{commit_type}' is not allowed (allowed: {', '.join(allowed)})"
        )

    scope = match.group("scope")
    description = match.group("description")
    text = _format(commit_type, scope, description)
    if len(text) > max_length:
        room = max_length - (len(text) - len(description))
        if room < 1:
            raise FormatViolation(
                f"Prefix '{text[: len(text) - len(description)]}' leaves no room for a "
                f"description within {max_length} characters"
            )
        description = description[:room].rstrip()
        text = _format(commit_type, scope, description)
        logger.info("Shortened commit message description to fit %d characters", max_length)

    return CommitMessage(type=commit_type, scope=scope, description=description, raw_text=text)
