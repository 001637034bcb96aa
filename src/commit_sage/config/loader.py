"""
Configuration loader for commit_sage.

Configuration is layered, lowest precedence first:

1. built-in defaults (:mod:`commit_sage.config.defaults`),
2. a ``commit-sage.toml`` file (an explicit path, else the repository
   root, else the user's home directory),
3. ``COMMIT_SAGE_*`` environment variables,
4. command line overrides passed in by the CLI.

The result is a frozen :class:`Config` value that is built once at
startup and passed explicitly to the orchestrator. Malformed files,
unknown value types, and out-of-range values raise :class:`ConfigError`.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from commit_sage.config.defaults import (
    API_KEY_ENV_VAR,
    CONFIG_FILE_NAME,
    DEFAULT_ALLOWED_TYPES,
    DEFAULT_API_URL,
    DEFAULT_CONTEXT_WINDOW,
    DEFAULT_MAX_LENGTH,
    DEFAULT_MODEL,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SYSTEM_PROMPT,
    DEFAULT_USER_PROMPT_TEMPLATE,
)
from commit_sage.errors import ConfigError


logger = logging.getLogger(__name__)
# Attach a null handler to avoid "No handler" warnings when the root
# logger is not configured. The CLI configures logging explicitly.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


@dataclass(frozen=True)
class AiSettings:
    """Model selection, prompts, and generation overrides.

    ``temperature``, ``max_tokens`` and ``stop_sequences`` left as
    ``None`` fall back to the provider's default generation config.
    ``encoding_file`` points at a local ``.tiktoken`` ranks file used for
    token counting instead of the downloaded ``cl100k_base`` data.
    """

    model: str = DEFAULT_MODEL
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stop_sequences: Optional[Tuple[str, ...]] = None
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    user_prompt_template: str = DEFAULT_USER_PROMPT_TEMPLATE
    context_window: int = DEFAULT_CONTEXT_WINDOW
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    api_url: str = DEFAULT_API_URL
    encoding_file: Optional[Path] = None


@dataclass(frozen=True)
class GitSettings:
    repo_path: Path = Path(".")
    include_untracked: bool = False
    show_diff: bool = False


@dataclass(frozen=True)
class CommitPolicy:
    allowed_types: Tuple[str, ...] = DEFAULT_ALLOWED_TYPES
    max_length: int = DEFAULT_MAX_LENGTH
    auto_commit: bool = False
    verify_format: bool = True
    require_confirmation: bool = True


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry settings used by the orchestrator."""

    max_retries: int = 2
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 30.0
    format_regenerations: int = 1

    def delay_for(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Return the sleep before retry number ``attempt`` (1-based)."""
        if retry_after is not None and retry_after >= 0:
            return min(retry_after, self.max_delay)
        delay = self.initial_delay * (self.backoff_factor ** max(attempt - 1, 0))
        return min(delay, self.max_delay)


@dataclass(frozen=True)
class Config:
    """Process-wide, read-only configuration."""

    ai: AiSettings = field(default_factory=AiSettings)
    git: GitSettings = field(default_factory=GitSettings)
    commit: CommitPolicy = field(default_factory=CommitPolicy)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    source: Optional[Path] = None


# Expected value type per section and key. ``list`` means a list of strings.
_SCHEMA: Dict[str, Dict[str, type]] = {
    "ai": {
        "model": str,
        "temperature": float,
        "max_tokens": int,
        "stop_sequences": list,
        "system_prompt": str,
        "user_prompt_template": str,
        "context_window": int,
        "request_timeout": float,
        "api_url": str,
        "encoding_file": str,
    },
    "git": {
        "repo_path": str,
        "include_untracked": bool,
        "show_diff": bool,
    },
    "commit": {
        "allowed_types": list,
        "max_length": int,
        "auto_commit": bool,
        "verify_format": bool,
        "require_confirmation": bool,
    },
    "retry": {
        "max_retries": int,
        "initial_delay": float,
        "backoff_factor": float,
        "max_delay": float,
        "format_regenerations": int,
    },
}

ENV_VARS: Dict[str, Tuple[str, str]] = {
    "COMMIT_SAGE_MODEL": ("ai", "model"),
    "COMMIT_SAGE_TEMPERATURE": ("ai", "temperature"),
    "COMMIT_SAGE_MAX_TOKENS": ("ai", "max_tokens"),
    "COMMIT_SAGE_ENCODING_FILE": ("ai", "encoding_file"),
    "COMMIT_SAGE_REPO_PATH": ("git", "repo_path"),
    "COMMIT_SAGE_INCLUDE_UNTRACKED": ("git", "include_untracked"),
    "COMMIT_SAGE_SHOW_DIFF": ("git", "show_diff"),
    "COMMIT_SAGE_MAX_LENGTH": ("commit", "max_length"),
    "COMMIT_SAGE_AUTO_COMMIT": ("commit", "auto_commit"),
    "COMMIT_SAGE_VERIFY_FORMAT": ("commit", "verify_format"),
    "COMMIT_SAGE_REQUIRE_CONFIRMATION": ("commit", "require_confirmation"),
}

_PATH_KEYS = {"repo_path", "encoding_file"}
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _get_home_directory() -> Path:
    """Return the directory searched after the repository root."""
    return Path.home()


def find_config_file(
    repo_root: Optional[Path] = None, config_path: Optional[Path] = None
) -> Optional[Path]:
    """Locate the TOML configuration file.

    An explicit ``config_path`` must exist. Otherwise the repository root
    is searched first and the home directory second; ``None`` is
    returned when neither holds a ``commit-sage.toml``.
    """
    if config_path is not None:
        if not config_path.is_file():
            logger.error("Configuration file '%s' does not exist", config_path)
            raise ConfigError(f"Configuration file not found: {config_path}")
        return config_path

    candidates = []
    if repo_root is not None:
        candidates.append(repo_root / CONFIG_FILE_NAME)
    candidates.append(_get_home_directory() / CONFIG_FILE_NAME)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def _coerce(section: str, key: str, value: Any, origin: str) -> Any:
    """Validate ``value`` against the schema and normalise its type."""
    expected = _SCHEMA[section][key]
    where = f"'{section}.{key}' ({origin})"
    if expected is bool:
        if not isinstance(value, bool):
            raise ConfigError(f"{where} must be a boolean")
        return value
    if expected is int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"{where} must be an integer")
        return value
    if expected is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ConfigError(f"{where} must be a number")
        return float(value)
    if expected is list:
        if isinstance(value, str) or not isinstance(value, (list, tuple)):
            raise ConfigError(f"{where} must be a list of strings")
        if not all(isinstance(item, str) for item in value):
            raise ConfigError(f"{where} must be a list of strings")
        return tuple(value)
    if key in _PATH_KEYS and isinstance(value, Path):
        return value
    if not isinstance(value, str):
        raise ConfigError(f"{where} must be a string")
    if key in _PATH_KEYS:
        return Path(value).expanduser()
    return value


def _merge_layer(
    sections: Dict[str, Dict[str, Any]], layer: Mapping[str, Any], origin: str
) -> None:
    for section, values in layer.items():
        if section not in _SCHEMA:
            logger.debug("Ignoring unknown configuration section '%s' (%s)", section, origin)
            continue
        if not isinstance(values, Mapping):
            raise ConfigError(f"Section '{section}' ({origin}) must be a table")
        for key, value in values.items():
            if key not in _SCHEMA[section]:
                logger.debug("Ignoring unknown configuration key '%s.%s' (%s)", section, key, origin)
                continue
            if value is None:
                continue
            sections[section][key] = _coerce(section, key, value, origin)


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.error("Failed to read or parse configuration file: %s", exc)
        raise ConfigError(f"Invalid TOML in {path.name}: {exc}") from exc


def _parse_env_value(name: str, raw: str, section: str, key: str) -> Any:
    expected = _SCHEMA[section][key]
    text = raw.strip()
    try:
        if expected is bool:
            lowered = text.lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(raw)
        if expected is int:
            return int(text)
        if expected is float:
            return float(text)
    except ValueError as exc:
        raise ConfigError(f"Environment variable {name} has an invalid value: {raw!r}") from exc
    return raw


def _env_layer(env: Mapping[str, str]) -> Dict[str, Dict[str, Any]]:
    layer: Dict[str, Dict[str, Any]] = {}
    for name, (section, key) in ENV_VARS.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        layer.setdefault(section, {})[key] = _parse_env_value(name, raw, section, key)
    return layer


def _validate_ranges(config: Config) -> None:
    ai = config.ai
    if ai.temperature is not None and not 0.0 <= ai.temperature <= 1.0:
        raise ConfigError("'ai.temperature' must be between 0.0 and 1.0")
    if ai.max_tokens is not None and ai.max_tokens <= 0:
        raise ConfigError("'ai.max_tokens' must be a positive integer")
    if ai.context_window <= 0:
        raise ConfigError("'ai.context_window' must be a positive integer")
    if ai.request_timeout <= 0:
        raise ConfigError("'ai.request_timeout' must be positive")
    if not config.commit.allowed_types:
        raise ConfigError("'commit.allowed_types' must not be empty")
    if config.commit.max_length <= 0:
        raise ConfigError("'commit.max_length' must be a positive integer")
    retry = config.retry
    if retry.max_retries < 0 or retry.format_regenerations < 0:
        raise ConfigError("Retry counts must not be negative")
    if retry.initial_delay < 0 or retry.max_delay < 0 or retry.backoff_factor < 1.0:
        raise ConfigError("Retry delays must not be negative and 'backoff_factor' must be >= 1")


def load_config(
    repo_root: Optional[Path] = None,
    config_path: Optional[Path] = None,
    env: Optional[Mapping[str, str]] = None,
    overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
) -> Config:
    """Build the layered configuration.

    Args:
        repo_root: Repository root searched for ``commit-sage.toml``.
        config_path: Explicit configuration file; must exist when given.
        env: Environment mapping, defaults to ``os.environ``.
        overrides: Nested ``{section: {key: value}}`` mapping from the
            command line. ``None`` values are skipped.

    Returns:
        The frozen :class:`Config`. ``Config.source`` names the file that
        was read, or is ``None`` when only defaults and overrides apply.

    Raises:
        ConfigError: On unreadable files, wrong value types, or values
            out of range.
    """
    sections: Dict[str, Dict[str, Any]] = {name: {} for name in _SCHEMA}

    source = find_config_file(repo_root, config_path)
    if source is not None:
        _merge_layer(sections, _read_toml(source), source.name)
        logger.debug("Loaded configuration from: %s", source)
    else:
        logger.info("No %s found; using built-in defaults", CONFIG_FILE_NAME)

    _merge_layer(sections, _env_layer(os.environ if env is None else env), "environment")
    if overrides:
        _merge_layer(sections, overrides, "command line")

    config = Config(
        ai=AiSettings(**sections["ai"]),
        git=GitSettings(**sections["git"]),
        commit=CommitPolicy(**sections["commit"]),
        retry=RetryPolicy(**sections["retry"]),
        source=source,
    )
    _validate_ranges(config)
    logger.debug("Configuration data: %s", config)
    return config


def resolve_api_key(cli_value: Optional[str], env: Optional[Mapping[str, str]] = None) -> str:
    """Return the API key from the command line or the environment."""
    environ = os.environ if env is None else env
    key = cli_value or environ.get(API_KEY_ENV_VAR, "")
    if not key.strip():
        raise ConfigError(
            f"API key not provided. Set the {API_KEY_ENV_VAR} environment variable or use --api-key"
        )
    return key.strip()
