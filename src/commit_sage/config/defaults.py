"""Built-in configuration defaults for commit_sage."""

from __future__ import annotations

DEFAULT_MODEL = "mistralai/Mixtral-8x7B-Instruct-v0.1"
DEFAULT_API_URL = "https://api.together.xyz/v1/chat/completions"
DEFAULT_CONTEXT_WINDOW = 32768
DEFAULT_REQUEST_TIMEOUT = 60.0

DEFAULT_ALLOWED_TYPES = (
    "feat",
    "fix",
    "docs",
    "style",
    "refactor",
    "perf",
    "test",
    "build",
    "ci",
    "chore",
    "revert",
)
DEFAULT_MAX_LENGTH = 72

CONFIG_FILE_NAME = "commit-sage.toml"
API_KEY_ENV_VAR = "TOGETHER_API_KEY"

DEFAULT_SYSTEM_PROMPT = """\
You are a highly skilled developer who writes perfect conventional commit messages.
Your task is to analyze git diffs and generate commit messages that strictly follow the Conventional Commits specification.

COMMIT FORMAT RULES:
1. Messages MUST follow this exact structure: type(scope): description
2. Valid types are: feat, fix, docs, style, refactor, perf, test, build, ci, chore, revert
3. Scope should be the main component being changed (e.g., auth, api, core)
4. Description must:
   - Start with a lowercase letter
   - Use imperative mood (e.g., 'add' not 'adds')
   - No period at the end
   - Stay under 72 characters total

EXAMPLES:
   feat(cli): add command-line interface with comprehensive options
   feat(config): implement TOML-based configuration system
   fix(api): handle empty responses from the completion endpoint
   not good: feat: add new features
   not good: chore: initial commit"""

DEFAULT_USER_PROMPT_TEMPLATE = """\
Generate a conventional commit message for the following git diff.
The message MUST strictly follow the conventional commit format rules specified above.
Validate your message against the examples and rules before returning it.
Only return the commit message, nothing else.

Diff:
{diff}"""
