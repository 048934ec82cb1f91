"""Configuration management for Kitchen Guard.

Two kinds of configuration live here:

* ``Options`` - the plugin's own knobs (concurrency, destroy behaviour),
  read from keyword arguments, environment variables or the CLI.
* The test-kitchen project configuration (``.kitchen.yml`` and its local and
  global overlays), loaded with PyYAML and validated with pydantic.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator


# Set up logger
logger = logging.getLogger(__name__)

PROJECT_YAML_NAMES = (".kitchen.yml", "kitchen.yml")
LOCAL_YAML_NAME = ".kitchen.local.yml"

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


class FatalConfigurationError(Exception):
    """Raised when the kitchen configuration cannot be loaded at all."""


class ActionKind(str, Enum):
    """Lifecycle actions understood by the kitchen command."""

    CREATE = "create"
    CONVERGE = "converge"
    VERIFY = "verify"
    DESTROY = "destroy"

    @classmethod
    def parse(cls, value: "ActionKind | str") -> "ActionKind":
        if isinstance(value, ActionKind):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(kind.value for kind in cls)
            raise ValueError(f'Unknown action "{value}" (expected one of: {valid})') from None


@dataclass(frozen=True)
class Options:
    """Immutable plugin options.

    Attributes:
        concurrency_level: Maximum number of instances kitchen may handle in
            parallel for one action (must be >= 1)
        destroy_on_reload: Destroy all instances before re-creating them on reload
        destroy_on_exit: Destroy all instances when the watcher stops
        non_concurrent_stages: Actions that always run with concurrency 1
        command_timeout: Seconds before a kitchen invocation is abandoned
            (None waits forever)
        kitchen_command: Executable used to run kitchen actions
    """
    concurrency_level: int = 1
    destroy_on_reload: bool = False
    destroy_on_exit: bool = True
    non_concurrent_stages: frozenset = field(default_factory=frozenset)
    command_timeout: Optional[float] = None
    kitchen_command: str = "kitchen"

    def __post_init__(self):
        if isinstance(self.concurrency_level, bool) or not isinstance(self.concurrency_level, int):
            raise ValueError(
                f"concurrency_level must be an integer, got {type(self.concurrency_level).__name__}"
            )
        if self.concurrency_level < 1:
            raise ValueError(f"concurrency_level must be at least 1, got {self.concurrency_level}")
        if self.command_timeout is not None and self.command_timeout <= 0:
            raise ValueError(f"command_timeout must be positive, got {self.command_timeout}")

        # Frozen dataclass: normalise through object.__setattr__
        stages = frozenset(ActionKind.parse(stage) for stage in self.non_concurrent_stages)
        object.__setattr__(self, "non_concurrent_stages", stages)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any) -> "Options":
        """Build options from KITCHEN_GUARD_* environment variables.

        Keyword overrides (typically parsed CLI flags) take precedence over the
        environment. Overrides whose value is None are ignored.

        Raises:
            ValueError: If an environment variable holds a malformed value
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if concurrency := env.get("KITCHEN_GUARD_CONCURRENCY"):
            try:
                values["concurrency_level"] = int(concurrency)
            except ValueError:
                raise ValueError(
                    f'KITCHEN_GUARD_CONCURRENCY must be an integer, got "{concurrency}"'
                ) from None

        for env_var, option in (
            ("KITCHEN_GUARD_DESTROY_ON_RELOAD", "destroy_on_reload"),
            ("KITCHEN_GUARD_DESTROY_ON_EXIT", "destroy_on_exit"),
        ):
            if env_var in env:
                values[option] = _parse_bool(env_var, env[env_var])

        if stages := env.get("KITCHEN_GUARD_NON_CONCURRENT"):
            values["non_concurrent_stages"] = frozenset(
                stage for stage in (s.strip() for s in stages.split(",")) if stage
            )

        if timeout := env.get("KITCHEN_GUARD_TIMEOUT"):
            try:
                values["command_timeout"] = float(timeout)
            except ValueError:
                raise ValueError(f'KITCHEN_GUARD_TIMEOUT must be a number, got "{timeout}"') from None

        if command := env.get("KITCHEN_GUARD_COMMAND"):
            values["kitchen_command"] = command

        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)


def _parse_bool(name: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f'{name} must be a boolean (true/false), got "{value}"')


class PlatformConfig(BaseModel):
    """A kitchen platform entry. Only the name is interpreted."""
    model_config = ConfigDict(extra="allow")

    name: str


class SuiteConfig(BaseModel):
    """A kitchen suite entry. Only the name is interpreted."""
    model_config = ConfigDict(extra="allow")

    name: str


class KitchenConfig(BaseModel):
    """Merged test-kitchen configuration for one project.

    Acts as the configuration handle passed to the action runner: it knows
    where the project lives and which file it was loaded from.
    """
    model_config = ConfigDict(extra="allow")

    project_dir: Path
    config_path: Path
    local_config_path: Optional[Path] = None
    platforms: list[PlatformConfig] = []
    suites: list[SuiteConfig] = []

    @field_validator("platforms", "suites", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return [] if value is None else value

    @field_validator("suites")
    @classmethod
    def _unique_suite_names(cls, suites: list[SuiteConfig]) -> list[SuiteConfig]:
        seen: set[str] = set()
        for suite in suites:
            if suite.name in seen:
                raise ValueError(f'Suite "{suite.name}" is defined more than once')
            seen.add(suite.name)
        return suites

    @property
    def suite_names(self) -> list[str]:
        return [suite.name for suite in self.suites]


def get_project_config_path(project_dir: str | Path, environ: Optional[Mapping[str, str]] = None) -> Path:
    """Get the kitchen project configuration file path.

    Search order:
    1. KITCHEN_YAML environment variable (if set, relative to the project)
    2. .kitchen.yml in the project directory
    3. kitchen.yml in the project directory

    Returns:
        Resolved path (may not exist; loading reports that)
    """
    env = os.environ if environ is None else environ
    project = Path(project_dir).expanduser().resolve()

    if env_path := env.get("KITCHEN_YAML"):
        return (project / Path(env_path).expanduser()).resolve()

    for name in PROJECT_YAML_NAMES:
        candidate = project / name
        if candidate.exists():
            return candidate.resolve()

    return project / PROJECT_YAML_NAMES[0]


def get_local_config_path(project_dir: str | Path, environ: Optional[Mapping[str, str]] = None) -> Path:
    """Get the local overlay path (KITCHEN_LOCAL_YAML or .kitchen.local.yml)."""
    env = os.environ if environ is None else environ
    project = Path(project_dir).expanduser().resolve()
    if env_path := env.get("KITCHEN_LOCAL_YAML"):
        return (project / Path(env_path).expanduser()).resolve()
    return project / LOCAL_YAML_NAME


def get_global_config_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    """Get the global overlay path (KITCHEN_GLOBAL_YAML or ~/.kitchen/config.yml)."""
    env = os.environ if environ is None else environ
    if env_path := env.get("KITCHEN_GLOBAL_YAML"):
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".kitchen" / "config.yml"


def _read_yaml(path: Path) -> dict:
    """Read one YAML document that must be a mapping (empty file -> {})."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise FatalConfigurationError(f"Invalid YAML in kitchen configuration {path}: {e}") from e
    except OSError as e:
        raise FatalConfigurationError(f"Error reading kitchen configuration {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise FatalConfigurationError(
            f"Kitchen configuration {path} must be a YAML mapping, got {type(data).__name__}"
        )
    return data


def deep_merge(base: Mapping, overlay: Mapping) -> dict:
    """Recursively merge overlay into base; non-mapping values are replaced."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_kitchen_config(
    project_dir: str | Path,
    environ: Optional[Mapping[str, str]] = None,
) -> KitchenConfig:
    """Load, merge and validate the kitchen configuration for a project.

    Args:
        project_dir: Directory containing the kitchen project
        environ: Environment mapping used for path lookup (default: os.environ)

    Returns:
        Validated KitchenConfig

    Raises:
        FatalConfigurationError: If the project file is missing, malformed or invalid
    """
    project = Path(project_dir).expanduser().resolve()
    config_path = get_project_config_path(project, environ)

    if not config_path.exists():
        raise FatalConfigurationError(f"Kitchen configuration file not found: {config_path}")

    data: dict = {}
    global_path = get_global_config_path(environ)
    if global_path.exists():
        logger.debug(f"Merging global kitchen configuration: {global_path}")
        data = deep_merge(data, _read_yaml(global_path))

    data = deep_merge(data, _read_yaml(config_path))

    local_path: Optional[Path] = get_local_config_path(project, environ)
    if local_path.exists():
        logger.debug(f"Merging local kitchen configuration: {local_path}")
        data = deep_merge(data, _read_yaml(local_path))
    else:
        local_path = None

    data.update(project_dir=project, config_path=config_path, local_config_path=local_path)
    try:
        config = KitchenConfig.model_validate(data)
    except ValidationError as e:
        raise FatalConfigurationError(f"Invalid kitchen configuration {config_path}: {e}") from e

    logger.debug(
        f"Loaded kitchen configuration from {config_path}: "
        f"{len(config.suites)} suite(s), {len(config.platforms)} platform(s)"
    )
    return config
