"""
Prompt construction.

The user prompt template carries exactly one placeholder for the diff.
``{diff}`` is the documented spelling; the bare ``{}`` used by older
configuration files is accepted as well. Substitution is a plain split
and join, so braces anywhere else in the template or inside the diff are
left untouched. The system prompt is passed through verbatim.
"""

from __future__ import annotations

from commit_sage.errors import TemplateError
from commit_sage.llm.provider import GenerationConfig, ModelContext

DIFF_PLACEHOLDER = "{diff}"
LEGACY_PLACEHOLDER = "{}"
PLACEHOLDERS = (DIFF_PLACEHOLDER, LEGACY_PLACEHOLDER)


def _find_placeholder(template: str) -> str:
    found = {p: template.count(p) for p in PLACEHOLDERS}
    total = sum(found.values())
    if total == 0:
        raise TemplateError(
            f"User prompt template has no {DIFF_PLACEHOLDER} placeholder for the diff"
        )
    if total > 1:
        raise TemplateError(
            f"User prompt template must contain exactly one diff placeholder, found {total}"
        )
    return next(p for p, n in found.items() if n)


def render_user_prompt(template: str, diff: str) -> str:
    """Substitute ``diff`` into the single placeholder of ``template``."""
    placeholder = _find_placeholder(template)
    before, after = template.split(placeholder, 1)
    return before + diff + after


def build_context(
    system_prompt: str,
    user_prompt_template: str,
    diff: str,
    config: GenerationConfig,
) -> ModelContext:
    """Build the :class:`ModelContext` for one request.

    Raises
    ------
    TemplateError
        If the template has no placeholder or more than one.
    """
    return ModelContext(
        system_prompt=system_prompt,
        user_prompt=render_user_prompt(user_prompt_template, diff),
        config=config,
    )
