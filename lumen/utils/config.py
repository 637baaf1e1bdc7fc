"""Configuration management for lumen.

The effective configuration is merged from four partial sources, highest
priority first: command line flags, one config file, environment variables
and built-in defaults. Merging happens field by field, so a source only
wins for the fields it actually sets.
"""

import copy
import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import yaml

from lumen.core.providers import PROVIDERS, supported_providers
from lumen.errors import (
    ConfigFileNotFoundError,
    ConfigParseError,
    InvalidProviderError,
)

logger = logging.getLogger(__name__)

CONFIG_FILE_NAMES = ("lumen.config.json", "lumen.config.yaml", "lumen.config.yml")
YAML_SUFFIXES = (".yaml", ".yml")

ENV_PROVIDER = "LUMEN_AI_PROVIDER"
ENV_API_KEY = "LUMEN_API_KEY"
ENV_MODEL = "LUMEN_AI_MODEL"

DEFAULT_PROVIDER = "phind"
DEFAULT_COMMIT_TYPES: Dict[str, str] = {
    "docs": "Documentation only changes",
    "style": "Changes that do not affect the meaning of the code (white-space, formatting, missing semi-colons, etc)",
    "refactor": "A code change that neither fixes a bug nor adds a feature",
    "perf": "A code change that improves performance",
    "test": "Adding missing tests or correcting existing tests",
    "build": "Changes that affect the build system or external dependencies",
    "ci": "Changes to our CI configuration files and scripts",
    "chore": "Other changes that don't modify src or test files",
    "revert": "Reverts a previous commit",
    "feat": "A new feature",
    "fix": "A bug fix",
}

TOP_LEVEL_FIELDS = ("provider", "model", "api_key")
COMMAND_SECTIONS = ("draft", "explain", "operate")
PROMPT_FIELDS = ("system_prompt", "user_prompt")
# Mappings that are replaced wholesale instead of merged key by key
LEAF_MAPPINGS = ("commit_types",)


def default_global_dir() -> Path:
    return Path.home() / ".config" / "lumen"


@dataclass(frozen=True)
class PromptOptions:
    system_prompt: Optional[str] = None
    user_prompt: Optional[str] = None


@dataclass(frozen=True)
class DraftOptions(PromptOptions):
    commit_types: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_COMMIT_TYPES))
    )


@dataclass(frozen=True)
class EffectiveConfig:
    """The merged configuration used for the rest of an invocation."""

    provider: str = DEFAULT_PROVIDER
    model: Optional[str] = None
    api_key: Optional[str] = None
    config_file_path: Optional[Path] = None
    draft: DraftOptions = field(default_factory=DraftOptions)
    explain: PromptOptions = field(default_factory=PromptOptions)
    operate: PromptOptions = field(default_factory=PromptOptions)

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation, used by ``config show``."""
        data: Dict[str, Any] = {
            "provider": self.provider,
            "model": self.model,
            "api_key": self.api_key,
            "config_file": str(self.config_file_path) if self.config_file_path else None,
        }
        for section in COMMAND_SECTIONS:
            options = getattr(self, section)
            data[section] = {name: getattr(options, name) for name in PROMPT_FIELDS}
        data["draft"]["commit_types"] = dict(self.draft.commit_types)
        return data


def _is_absent(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, Mapping):
        return not value
    return False


def merge_partials(*partials: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Merge partial configurations, highest priority first.

    For every field the first present value wins. ``None``, blank strings and
    empty mappings count as absent and never hide a lower priority value.
    Nested sections merge per sub-field; the keys in ``LEAF_MAPPINGS`` are
    taken as a whole from a single source.

    Args:
        *partials: Partial configuration mappings in priority order

    Returns:
        Merged configuration dictionary
    """
    merged: Dict[str, Any] = {}
    for partial in partials:
        if not partial:
            continue
        for key, value in partial.items():
            if _is_absent(value):
                continue
            if isinstance(value, Mapping) and key not in LEAF_MAPPINGS:
                merged[key] = merge_partials(merged.get(key), value)
            elif key not in merged:
                merged[key] = value
    return merged


def _expect_string(path, data: Mapping[str, Any], key: str, label: str) -> Optional[str]:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ConfigParseError(path, f"'{label}' must be a string")
    return value


def _validate_file_data(path, data: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep the known keys of a config file, checking their types."""
    partial: Dict[str, Any] = {}
    for key in TOP_LEVEL_FIELDS:
        partial[key] = _expect_string(path, data, key, key)

    for section in COMMAND_SECTIONS:
        raw = data.get(section)
        if raw is None:
            continue
        if not isinstance(raw, dict):
            raise ConfigParseError(path, f"'{section}' must be an object")

        options = {
            name: _expect_string(path, raw, name, f"{section}.{name}")
            for name in PROMPT_FIELDS
        }
        if section == "draft" and raw.get("commit_types") is not None:
            commit_types = raw["commit_types"]
            if not isinstance(commit_types, dict) or not all(
                isinstance(k, str) and isinstance(v, str)
                for k, v in commit_types.items()
            ):
                raise ConfigParseError(
                    path, "'draft.commit_types' must map type names to descriptions"
                )
            options["commit_types"] = dict(commit_types)
        partial[section] = options
    return partial


def read_structured_file(path: Path) -> Dict[str, Any]:
    """
    Read a JSON or YAML mapping from disk.

    Args:
        path: File to read; ``.yaml``/``.yml`` files are parsed as YAML

    Returns:
        Parsed mapping (empty for an empty file)

    Raises:
        ConfigParseError: If the file cannot be read or parsed, or is not a mapping
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigParseError(path, exc.strerror or str(exc)) from exc
    except UnicodeDecodeError as exc:
        raise ConfigParseError(path, f"not valid UTF-8 ({exc.reason})") from exc

    if not text.strip():
        return {}

    if Path(path).suffix.lower() in YAML_SUFFIXES:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigParseError(path, str(exc)) from exc
    else:
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise ConfigParseError(path, str(exc)) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigParseError(path, "top level must be an object")
    return data


def load_config_file(path: Path) -> Dict[str, Any]:
    """Load a config file as a partial configuration. Unknown keys are ignored."""
    return _validate_file_data(path, read_structured_file(path))


def discover_config_file(
    explicit_path=None, project_root=None, global_dir=None
) -> Optional[Path]:
    """
    Find the single config file to read.

    An explicit path must exist. Otherwise the project root and then the
    global directory are searched; the first existing file wins and the
    rest are never read.
    """
    if explicit_path:
        path = Path(explicit_path).expanduser()
        if not path.is_file():
            raise ConfigFileNotFoundError(path)
        return path

    for directory in (project_root, global_dir):
        if directory is None:
            continue
        for name in CONFIG_FILE_NAMES:
            candidate = Path(directory) / name
            if candidate.is_file():
                return candidate
    return None


def env_partial(env: Mapping[str, str]) -> Dict[str, Any]:
    return {
        "provider": env.get(ENV_PROVIDER),
        "model": env.get(ENV_MODEL),
        "api_key": env.get(ENV_API_KEY),
    }


def default_partial() -> Dict[str, Any]:
    return {
        "provider": DEFAULT_PROVIDER,
        "draft": {"commit_types": dict(DEFAULT_COMMIT_TYPES)},
    }


def _strip(value: Optional[str]) -> Optional[str]:
    return value.strip() if isinstance(value, str) else value


def _prompt_options(section: Mapping[str, Any]) -> Dict[str, Optional[str]]:
    return {name: section.get(name) for name in PROMPT_FIELDS}


def resolve(
    cli_args: Optional[Mapping[str, Any]] = None,
    explicit_config_path=None,
    env_vars: Optional[Mapping[str, str]] = None,
    project_root=None,
    global_config_dir=None,
) -> EffectiveConfig:
    """
    Resolve the effective configuration.

    Args:
        cli_args: Values given on the command line (``provider``, ``model``,
            ``api_key`` and optionally command sections)
        explicit_config_path: Path passed with ``--config``
        env_vars: Environment mapping, defaults to ``os.environ``
        project_root: Git toplevel of the current project, if any
        global_config_dir: Directory of the per-user config file

    Returns:
        Immutable EffectiveConfig

    Raises:
        ConfigFileNotFoundError: If ``explicit_config_path`` does not exist
        ConfigParseError: If the selected config file is invalid
        InvalidProviderError: If the resolved provider is unknown
    """
    env_vars = os.environ if env_vars is None else env_vars
    if global_config_dir is None:
        global_config_dir = default_global_dir()

    config_path = discover_config_file(
        explicit_config_path, project_root, global_config_dir
    )
    file_partial: Dict[str, Any] = {}
    if config_path is not None:
        logger.debug("Reading config file %s", config_path)
        file_partial = load_config_file(config_path)
    else:
        logger.debug("No config file found, using flags, environment and defaults")

    merged = merge_partials(
        dict(cli_args or {}), file_partial, env_partial(env_vars), default_partial()
    )

    provider = _strip(merged["provider"]).lower()
    if provider not in PROVIDERS:
        raise InvalidProviderError(provider, supported_providers())

    api_key = _strip(merged.get("api_key"))
    if not api_key:
        env_var = PROVIDERS[provider].env_var
        if env_var and env_vars.get(env_var, "").strip():
            logger.debug("Using API key from %s", env_var)
            api_key = env_vars[env_var].strip()

    draft = merged.get("draft", {})
    return EffectiveConfig(
        provider=provider,
        model=_strip(merged.get("model")),
        api_key=api_key or None,
        config_file_path=config_path,
        draft=DraftOptions(
            commit_types=MappingProxyType(
                dict(draft.get("commit_types") or DEFAULT_COMMIT_TYPES)
            ),
            **_prompt_options(draft),
        ),
        explain=PromptOptions(**_prompt_options(merged.get("explain", {}))),
        operate=PromptOptions(**_prompt_options(merged.get("operate", {}))),
    )


def mask_api_key(api_key: str) -> str:
    return f"{api_key[:8]}...{api_key[-4:]}" if len(api_key) > 12 else "***"


def format_config(data: Mapping[str, Any]) -> str:
    """
    Render configuration data as YAML with the API key masked.

    Returns:
        YAML formatted config
    """
    display_data = copy.deepcopy(dict(data))
    api_key = display_data.get("api_key")
    if api_key:
        display_data["api_key"] = mask_api_key(api_key)
    return yaml.safe_dump(display_data, default_flow_style=False, sort_keys=False)


class GlobalConfig:
    """Read and edit the per-user config file."""

    FILE_NAME = "lumen.config.json"

    def __init__(self, path=None):
        """
        Initialize the global config manager.

        Args:
            path: Config file to manage. Defaults to ~/.config/lumen/lumen.config.json
        """
        self.config_file = Path(path) if path else default_global_dir() / self.FILE_NAME
        self.config_dir = self.config_file.parent
        self.data = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if self.config_file.exists():
            return read_structured_file(self.config_file)
        return {}

    def save(self):
        """Save configuration to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=2, ensure_ascii=False)
            f.write("\n")
        logger.debug("Wrote %s", self.config_file)

    def get(self, key: str, default=None):
        """
        Get a configuration value.

        Args:
            key: Config key in dot notation (e.g., 'draft.system_prompt')
            default: Default value if key not found

        Returns:
            Configuration value
        """
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default
        return value

    def set(self, key: str, value):
        """
        Set a configuration value and save.

        Args:
            key: Config key in dot notation (e.g., 'draft.system_prompt')
            value: Value to set
        """
        keys = key.split(".")
        data = self.data
        for k in keys[:-1]:
            if not isinstance(data.get(k), dict):
                data[k] = {}
            data = data[k]
        data[keys[-1]] = value
        self.save()

    def set_api_key(self, api_key: str):
        self.set("api_key", api_key)

    def set_provider(self, provider: str, model: Optional[str] = None):
        """Switch the active provider, dropping a model chosen for another one."""
        if provider not in PROVIDERS:
            raise InvalidProviderError(provider, supported_providers())

        if model:
            self.data["model"] = model
        elif self.data.get("provider") != provider:
            self.data.pop("model", None)
        self.set("provider", provider)

    def reset(self):
        """Reset configuration to defaults."""
        self.data = {}
        self.save()

    def show(self) -> str:
        return format_config(self.data) if self.data else "{}\n"
