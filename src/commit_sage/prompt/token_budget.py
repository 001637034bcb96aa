"""
Token budgeting for the diff portion of the prompt.

Token counts come from a ``tiktoken`` BPE encoding and always give the
same answer for the same text. The encoding is resolved without
requiring the network:

1. an explicit ``.tiktoken`` ranks file (``ai.encoding_file``), read
   from disk;
2. ``tiktoken.get_encoding``, which uses its local cache and only
   downloads the ranks on a first run;
3. if that download fails, a byte-level encoding in which every UTF-8
   byte is one token. BPE tokens are at least one byte long, so this
   over-estimates and a fitted diff still fits the real budget.

When a diff does not fit its budget it is cut from the tail, at line
boundaries, and a marker line tells the model that content is missing.
Trailing header lines that would be left without their hunk body are
dropped too.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import requests
import tiktoken
from tiktoken.load import load_tiktoken_bpe

from commit_sage.errors import TemplateError, TokenizerUnavailable
from commit_sage.prompt.builder import PLACEHOLDERS


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


DEFAULT_ENCODING = "cl100k_base"
BYTE_ENCODING = "utf8_bytes"
TRUNCATION_MARKER = "[... diff truncated to fit the model context ...]\n"

# Split pattern and special tokens of cl100k_base, used when the ranks
# are loaded from a local file.
CL100K_PATTERN = (
    r"""(?i:'s|'t|'re|'ve|'m|'ll|'d)|[^\r\n\p{L}\p{N}]?\p{L}+|\p{N}{1,3}|"""
    r""" ?[^\s\p{L}\p{N}]+[\r\n]*|\s*[\r\n]+|\s+(?!\S)|\s+"""
)
CL100K_SPECIAL_TOKENS = {
    "<|endoftext|>": 100257,
    "<|fim_prefix|>": 100258,
    "<|fim_middle|>": 100259,
    "<|fim_suffix|>": 100260,
    "<|endofprompt|>": 100276,
}

# Framing tokens the chat format adds per message, and for priming the reply.
CHAT_MESSAGE_OVERHEAD = 4
CHAT_REPLY_OVERHEAD = 3

_HEADER_PREFIXES = (
    "diff --git ",
    "index ",
    "--- ",
    "+++ ",
    "@@",
    "new file mode",
    "deleted file mode",
    "old mode",
    "new mode",
    "similarity index",
    "rename from",
    "rename to",
)


def _is_header(line: str) -> bool:
    return line.startswith(_HEADER_PREFIXES)


def byte_encoding() -> tiktoken.Encoding:
    """Return an encoding that maps every UTF-8 byte to one token."""
    return tiktoken.Encoding(
        name=BYTE_ENCODING,
        pat_str=CL100K_PATTERN,
        mergeable_ranks={bytes([value]): value for value in range(256)},
        special_tokens={},
    )


def load_encoding(
    encoding_name: str = DEFAULT_ENCODING, encoding_file: Optional[Path] = None
) -> tiktoken.Encoding:
    """Resolve the encoding used for counting.

    Raises
    ------
    TokenizerUnavailable
        If ``encoding_file`` is given but cannot be read or parsed.
    """
    if encoding_file is not None:
        try:
            ranks = load_tiktoken_bpe(str(encoding_file))
        except (OSError, ValueError) as exc:
            logger.error("Failed to load token encoding from %s: %s", encoding_file, exc)
            raise TokenizerUnavailable(
                f"Cannot load token encoding file {encoding_file}: {exc}"
            ) from exc
        logger.debug("Loaded %d token ranks from %s", len(ranks), encoding_file)
        return tiktoken.Encoding(
            name=encoding_name,
            pat_str=CL100K_PATTERN,
            mergeable_ranks=ranks,
            special_tokens=CL100K_SPECIAL_TOKENS,
        )

    try:
        return tiktoken.get_encoding(encoding_name)
    except (requests.RequestException, OSError, ValueError) as exc:
        logger.warning(
            "Token encoding '%s' is not available offline (%s); counting UTF-8 bytes instead",
            encoding_name,
            exc,
        )
        return byte_encoding()


class TokenBudgeter:
    """Estimate token counts and fit text into a token budget."""

    def __init__(
        self, encoding_name: str = DEFAULT_ENCODING, encoding_file: Optional[Path] = None
    ) -> None:
        self._encoding = load_encoding(encoding_name, encoding_file)
        self.encoding_name = self._encoding.name
    def count(self, text: str) -> int:
        """Return the number of tokens in ``text``."""
        if not text:
            return 0
        # Diffs may legitimately contain special-token text such as
        # "<|endoftext|>"; encode it as ordinary text.
        return len(self._encoding.encode(text, disallowed_special=()))

    def diff_budget(
        self,
        context_window: int,
        system_prompt: str,
        user_template: str,
        response_tokens: int,
    ) -> int:
        """Tokens left for the diff once prompts and the response are reserved.

        Raises
        ------
        TemplateError
            When the templates and the response reservation leave no room.
        """
        template_text = user_template
        for placeholder in PLACEHOLDERS:
            template_text = template_text.replace(placeholder, "")
        overhead = (
            self.count(system_prompt)
            + self.count(template_text)
            + 2 * CHAT_MESSAGE_OVERHEAD
            + CHAT_REPLY_OVERHEAD
        )
        budget = context_window - overhead - response_tokens
        logger.debug(
            "Token budget: window=%d prompt_overhead=%d response=%d diff=%d",
            context_window,
            overhead,
            response_tokens,
            budget,
        )
        if budget <= 0:
            raise TemplateError(
                f"Prompt templates ({overhead} tokens) and the response reservation "
                f"({response_tokens} tokens) exceed the {context_window}-token context window"
            )
        return budget

    def fit(self, text: str, max_tokens: int) -> Tuple[str, bool]:
        """Fit ``text`` into ``max_tokens``.

        Returns
        -------
        Tuple[str, bool]
            ``(text, False)`` unchanged when it already fits, otherwise the
            longest whole-line prefix that fits together with
            :data:`TRUNCATION_MARKER`, and ``True``. If not even the marker
            fits, the empty string is returned.
        """
        if max_tokens < 0:
            raise ValueError("max_tokens must not be negative")
        if self.count(text) <= max_tokens:
            return text, False

        if self.count(TRUNCATION_MARKER) > max_tokens:
            logger.warning("Token budget of %d is too small to keep any diff content", max_tokens)
            return "", True

        lines = text.splitlines(keepends=True)
        keep = self._longest_fitting_prefix(lines, max_tokens)
        while keep > 0 and _is_header(lines[keep - 1]):
            keep -= 1
        # Prefix counts are not strictly monotonic under BPE; settle on a
        # prefix that is verified to fit.
        while keep > 0 and self.count(self._join(lines, keep)) > max_tokens:
            keep -= 1

        result = self._join(lines, keep)
        logger.info(
            "Diff truncated from %d to %d lines to fit %d tokens",
            len(lines),
            keep,
            max_tokens,
        )
        return result, True

    def _join(self, lines: List[str], keep: int) -> str:
        prefix = "".join(lines[:keep])
        if prefix and not prefix.endswith(("\n", "\r")):
            prefix += "\n"
        return prefix + TRUNCATION_MARKER

    def _longest_fitting_prefix(self, lines: List[str], max_tokens: int) -> int:
        lo, hi = 0, len(lines)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self.count(self._join(lines, mid)) <= max_tokens:
                lo = mid
            else:
                hi = mid - 1
        return lo
