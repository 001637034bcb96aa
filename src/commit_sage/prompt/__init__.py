"""
Prompt construction and token budgeting.

:mod:`commit_sage.prompt.builder` renders the prompts around the diff;
:mod:`commit_sage.prompt.token_budget` keeps the diff within the
model's context window.
"""

from .builder import DIFF_PLACEHOLDER, build_context, render_user_prompt  # noqa: F401
from .token_budget import TRUNCATION_MARKER, TokenBudgeter  # noqa: F401
