"""
Command line interface for commit_sage.

This module defines the ``main`` click command used as the entry point
of the ``commit-sage`` console script. It loads ``.env`` and the layered
configuration, builds the Together AI provider and the git client, runs
the :class:`~commit_sage.orchestrator.CommitOrchestrator`, renders its
progress, and maps the outcome to an exit code.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from dotenv import find_dotenv, load_dotenv

from commit_sage import __version__
from commit_sage.config.loader import Config, load_config, resolve_api_key
from commit_sage.diff.change_classifier import suggest_commit_type
from commit_sage.diff.diff_source import DiffContent
from commit_sage.errors import (
    AuthenticationFailure,
    CommitSageError,
    CommitWriteFailure,
    ConfigError,
    FormatViolation,
    NoChanges,
    ProviderError,
    RateLimited,
    RepoAccessFailure,
    TemplateError,
    TokenizerUnavailable,
    TransportFailure,
    UserDeclined,
)
from commit_sage.llm.together_client import AVAILABLE_MODELS, TogetherAIProvider
from commit_sage.message.validator import CommitMessage
from commit_sage.orchestrator import CommitOrchestrator, PipelineObserver, PipelineState
from commit_sage.vcs.git_client import GitClient

# Create a module-level logger. Attach a null handler and disable
# propagation until ``configure_logging`` turns it on for --debug.
logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------
EXIT_SUCCESS = 0
EXIT_GENERIC_ERROR = 1
EXIT_NO_REPO = 3
EXIT_NO_CHANGES = 4
EXIT_CONFIG_ERROR = 5
EXIT_COMMIT_FAILURE = 6
EXIT_LLM_FAILURE = 7
EXIT_DECLINED = 8
EXIT_FORMAT_VIOLATION = 9
EXIT_INTERRUPTED = 130

# Checked in order; subclasses must come before their bases.
_EXIT_CODES = (
    (NoChanges, EXIT_NO_CHANGES),
    (RepoAccessFailure, EXIT_NO_REPO),
    (ConfigError, EXIT_CONFIG_ERROR),
    (TemplateError, EXIT_CONFIG_ERROR),
    (TokenizerUnavailable, EXIT_CONFIG_ERROR),
    (ProviderError, EXIT_LLM_FAILURE),
    (FormatViolation, EXIT_FORMAT_VIOLATION),
    (UserDeclined, EXIT_DECLINED),
    (CommitWriteFailure, EXIT_COMMIT_FAILURE),
)


def exit_code_for(error: CommitSageError) -> int:
    """Map a pipeline error to the process exit code."""
    for error_type, code in _EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return EXIT_GENERIC_ERROR


def hint_for(error: CommitSageError) -> Optional[str]:
    """Return an actionable follow-up line for ``error``, if there is one."""
    if isinstance(error, AuthenticationFailure):
        return "Check your Together AI API key (TOGETHER_API_KEY or --api-key)"
    if isinstance(error, RateLimited):
        return "Rate limit exceeded. Please wait a moment before trying again"
    if isinstance(error, TransportFailure):
        return "Check your internet connection or raise ai.request_timeout"
    if isinstance(error, FormatViolation):
        return "Try again, adjust the prompt, or use --no-verify to accept free-form messages"
    if isinstance(error, TokenizerUnavailable):
        return "Point ai.encoding_file at a valid .tiktoken file, or unset it to use the cached cl100k_base data"
    if isinstance(error, UserDeclined):
        return "Nothing was committed"
    if isinstance(error, CommitWriteFailure):
        return "The commit was not retried; inspect 'git status' before trying again"
    return None


# ---------------------------------------------------------------------------
# Progress and status display utilities
# ---------------------------------------------------------------------------

def print_info(message: str, indent: int = 0):
    """Print an info message."""
    prefix = "  " * indent
    click.echo(f"{prefix}ℹ {message}", err=False)


def print_success(message: str, indent: int = 0):
    """Print a success message."""
    prefix = "  " * indent
    click.echo(f"{prefix}✓ {message}", err=False)


def print_warning(message: str, indent: int = 0):
    """Print a warning message."""
    prefix = "  " * indent
    click.echo(f"{prefix}⚠ {message}", err=False)


def print_error(message: str, indent: int = 0):
    """Print an error message."""
    prefix = "  " * indent
    click.echo(f"{prefix}✗ {message}", err=True)


def print_message_box(title: str, lines: List[str]):
    """Print ``lines`` in a box wide enough to hold the longest one."""
    width = max([len(title)] + [len(line) for line in lines]) + 2
    click.echo(f"\n┌{'─' * width}┐")
    click.echo(f"│ {title.ljust(width - 1)}│")
    click.echo(f"├{'─' * width}┤")
    for line in lines:
        click.echo(f"│ {line.ljust(width - 1)}│")
    click.echo(f"└{'─' * width}┘")


class CliObserver(PipelineObserver):
    """Render orchestrator progress on the terminal."""

    _STATE_MESSAGES = {
        PipelineState.RESPONSE_RECEIVED: "Response received",
        PipelineState.VALIDATED: "Commit message validated",
        PipelineState.COMMITTING: "Writing commit",
    }

    def __init__(self, model_id: str) -> None:
        self.model_id = model_id

    def on_state(self, state: PipelineState) -> None:
        if state is PipelineState.PROMPT_READY:
            print_info(f"Generating commit message with {self.model_id}")
            return
        message = self._STATE_MESSAGES.get(state)
        if message:
            print_info(message)

    def on_captured(self, diff: DiffContent) -> None:
        describe_diff(diff)

    def on_diff(self, diff: DiffContent) -> None:
        click.echo("\nChanges to be committed:")
        click.echo(diff.text)

    def on_truncated(self, original_tokens: int, budget: int) -> None:
        print_warning(
            f"Diff is ~{original_tokens} tokens; truncated to fit the {budget}-token budget"
        )

    def on_retry(self, attempt: int, delay: float, error: CommitSageError) -> None:
        if isinstance(error, FormatViolation):
            print_warning(f"{error}; regenerating")
        else:
            print_warning(f"{error}; retry {attempt} in {delay:.1f}s")

    def on_message(self, message: CommitMessage) -> None:
        print_message_box("Suggested commit message", message.raw_text.splitlines() or [""])


def confirm_commit(message: CommitMessage) -> bool:
    """Ask the user whether to commit with ``message``."""
    click.echo("")
    return click.confirm("Do you want to commit with this message?", default=False)


def configure_logging(verbose: bool) -> None:
    """Configure root logging; with ``verbose`` route package logs to it."""
    # Use force=True so handlers are reconfigured on repeated invocations
    # (important for tests).
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
        force=True,
    )
    if verbose:
        for name, item in logging.Logger.manager.loggerDict.items():
            if name.startswith("commit_sage") and isinstance(item, logging.Logger):
                item.propagate = True


def describe_diff(diff: DiffContent) -> None:
    """Summarise the captured files before generation."""
    print_success(
        f"Captured {diff.file_count} changed file{'s' if diff.file_count != 1 else ''} "
        f"({diff.byte_length} bytes)"
    )
    for summary in diff.files[:5]:
        print_info(
            f"{summary.status:<9} {summary.path} (+{summary.additions}/-{summary.deletions})",
            indent=1,
        )
    if diff.file_count > 5:
        print_info(f"... and {diff.file_count - 5} more", indent=1)
    if diff.files:
        print_info(
            f"Heuristic type suggestion: {suggest_commit_type(f.suggested_type for f in diff.files)}",
            indent=1,
        )


def build_overrides(
    path: Optional[Path],
    model: Optional[str],
    temperature: Optional[float],
    max_tokens: Optional[int],
    untracked: bool,
    show_diff: bool,
    auto_commit: bool,
    no_verify: bool,
    yes: bool,
) -> Dict[str, Dict[str, Any]]:
    """Translate command line flags into config overrides.

    Flags that were not given map to ``None`` so they do not clobber
    values from the file or the environment.
    """
    return {
        "ai": {"model": model, "temperature": temperature, "max_tokens": max_tokens},
        "git": {
            "repo_path": path,
            "include_untracked": True if untracked else None,
            "show_diff": True if show_diff else None,
        },
        "commit": {
            "auto_commit": True if auto_commit else None,
            "verify_format": False if no_verify else None,
            "require_confirmation": False if yes else None,
        },
    }


def print_config(config: Config) -> None:
    if config.source is None:
        print_warning("No commit-sage.toml found; using built-in defaults")
    else:
        print_success(f"Configuration loaded from {config.source}")
    print_info(f"Model: {config.ai.model}", indent=1)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("-p", "--path", type=click.Path(file_okay=False, path_type=Path), help="Path to the git repository (defaults to the current directory).")
@click.option("-k", "--api-key", "api_key", help="Together AI API key (defaults to TOGETHER_API_KEY).")
@click.option("-m", "--model", help="AI model to use.")
@click.option("-t", "--temperature", type=click.FloatRange(0.0, 1.0), help="Temperature for model output (0.0 to 1.0).")
@click.option("--max-tokens", type=click.IntRange(min=1), help="Maximum tokens in the response.")
@click.option("-u", "--untracked", is_flag=True, help="Include untracked files in the diff.")
@click.option("-s", "--show-diff", is_flag=True, help="Show the diff before generating the commit message.")
@click.option("-a", "--auto-commit", is_flag=True, help="Commit with the generated message without asking.")
@click.option("--no-verify", is_flag=True, help="Skip commit message format verification.")
@click.option("-y", "--yes", is_flag=True, help="Skip the confirmation prompt (only suggests unless --auto-commit).")
@click.option("-f", "--config", "config_file", type=click.Path(dir_okay=False, path_type=Path), help="Path to a custom configuration file.")
@click.option("-l", "--list-models", is_flag=True, help="List available models and exit.")
@click.option("-d", "--debug", "--verbose", "verbose", is_flag=True, help="Enable debug logging.")
@click.version_option(version=__version__, prog_name="commit-sage")
def main(
    path: Optional[Path],
    api_key: Optional[str],
    model: Optional[str],
    temperature: Optional[float],
    max_tokens: Optional[int],
    untracked: bool,
    show_diff: bool,
    auto_commit: bool,
    no_verify: bool,
    yes: bool,
    config_file: Optional[Path],
    list_models: bool,
    verbose: bool,
) -> None:
    """Generate a Conventional Commits message for your staged changes with AI."""
    load_dotenv(find_dotenv(usecwd=True))
    configure_logging(verbose)

    if list_models:
        click.echo("Available models:")
        for model_name, description in AVAILABLE_MODELS:
            click.echo(f"  {model_name} - {description}")
        raise click.exceptions.Exit(EXIT_SUCCESS)

    # Get Click context for proper exit handling
    ctx = click.get_current_context(silent=True)

    try:
        search_root = GitClient.find_repo_root(path or Path.cwd())

        try:
            config = load_config(
                repo_root=search_root,
                config_path=config_file,
                overrides=build_overrides(
                    path, model, temperature, max_tokens,
                    untracked, show_diff, auto_commit, no_verify, yes,
                ),
            )
            key = resolve_api_key(api_key)
        except ConfigError as exc:
            print_error(f"Configuration error: {exc}")
            raise click.exceptions.Exit(EXIT_CONFIG_ERROR)
        print_config(config)

        repo_root = GitClient.find_repo_root(config.git.repo_path)
        if repo_root is None:
            print_error(f"No Git repository found at {config.git.repo_path.resolve()} or its parents.")
            raise click.exceptions.Exit(EXIT_NO_REPO)
        print_success(f"Found Git repository at: {repo_root}")

        provider = TogetherAIProvider(
            api_key=key,
            model=config.ai.model,
            request_timeout=config.ai.request_timeout,
            api_url=config.ai.api_url,
        )
        observer = CliObserver(provider.model_id())
        orchestrator = CommitOrchestrator(
            config,
            provider,
            GitClient(repo_root),
            confirm=confirm_commit,
            observer=observer,
        )

        result = orchestrator.run()

        if not result.ok:
            error = result.error or CommitSageError(
                f"Pipeline stopped in state {result.state.value}"
            )
            print_error(str(error))
            hint = hint_for(error)
            if hint:
                print_info(hint, indent=1)
            raise click.exceptions.Exit(exit_code_for(error))

        if result.committed:
            print_success("Changes committed successfully!")
        else:
            print_info("Run with --auto-commit to commit with this message")
        raise click.exceptions.Exit(EXIT_SUCCESS)

    except click.exceptions.Exit:
        # Click uses its own Exit exception; re-raise to let Click handle it
        raise
    except KeyboardInterrupt:
        print_error("Interrupted; nothing was committed.")
        raise click.exceptions.Exit(EXIT_INTERRUPTED)
    except Exception as exc:
        # Catch any other unhandled errors
        logging.exception("Unhandled error: %s", exc)
        print_error(f"Unexpected error: {exc}")
        ctx.exit(EXIT_GENERIC_ERROR)
