"""
PONYX Configuration Management
==============================

Layered configuration for the compiler and its command line.

Sources are merged by priority (highest wins):
1. Runtime overrides (``config.set``)
2. Environment variables (PONYX_SECTION__KEY)
3. ponyx_config.py (project file)
4. Default values

Example:
    # ponyx_config.py
    config = {
        "compiler": {
            "for_keying": "positional",
            "prelude": ["log", "web_sys"],
        },
        "build": {"out_dir": "generated"},
    }

    # Access configuration
    cfg = Config.load(Path("."))
    cfg.get("compiler.for_keying")          # "positional"
    options = CompilerOptions.from_config(cfg)

    # Environment
    PONYX_COMPILER__PRELUDE='["log"]' ponyx build components/
"""

from __future__ import annotations

import importlib.util
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

import orjson

CONFIG_FILE = "ponyx_config.py"
ENV_PREFIX = "PONYX_"

DEFAULTS: Dict[str, Any] = {
    "compiler": {
        "mixed_extern": "error",
        "for_keying": "rebuild",
        "prelude": [],
    },
    "log": {
        "level": "WARNING",
        "format": "text",
    },
    "build": {
        "out_dir": None,
        "format": "json",
    },
}

MIXED_EXTERN_POLICIES = ("error", "warn")
FOR_KEYING_STRATEGIES = ("rebuild", "positional")

# Priorities of the built-in layers
DEFAULTS_PRIORITY = 0
FILE_PRIORITY = 10
ENV_PRIORITY = 100
RUNTIME_PRIORITY = 1000


class ConfigError(Exception):
    """Raised for unreadable config files and invalid option values."""
    pass


@dataclass
class ConfigSource:
    """One layer of configuration."""
    name: str
    data: Dict[str, Any] = field(default_factory=dict)
    priority: int = 0


def parse_env_value(value: str) -> Any:
    """
    Decode an environment value.

    ``true``/``yes`` and ``false``/``no`` become booleans, integers are
    parsed, and values starting with ``[`` or ``{`` are read as JSON.
    Anything else stays a string.
    """
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    try:
        return int(value)
    except ValueError:
        pass
    if value.startswith(("[", "{")):
        try:
            return orjson.loads(value)
        except orjson.JSONDecodeError:
            pass
    return value


def _nest(key: str, value: Any) -> Dict[str, Any]:
    """``("a.b", 1)`` -> ``{"a": {"b": 1}}``"""
    for part in reversed(key.split(".")[1:]):
        value = {part: value}
    return {key.split(".")[0]: value}


def _merge_into(target: Dict[str, Any], layer: Mapping[str, Any]) -> None:
    for key, value in layer.items():
        if isinstance(value, dict):
            branch = target.get(key)
            if not isinstance(branch, dict):
                branch = target[key] = {}
            _merge_into(branch, value)
        else:
            target[key] = value


class Config:
    """
    Configuration container.

    Values are addressed with dot notation; the merged view is rebuilt
    lazily after any source changes.

    Example:
        config = Config()
        config.set("compiler.for_keying", "positional")

        config.get("compiler.for_keying")           # "positional"
        config.get("compiler.mixed_extern")         # "error"
        config.get("compiler.missing", "default")   # "default"
    """

    def __init__(self, defaults: bool = True) -> None:
        self._sources: List[ConfigSource] = []
        self._merged: Optional[Dict[str, Any]] = None
        if defaults:
            self.add_source("defaults", DEFAULTS, priority=DEFAULTS_PRIORITY)

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "Config":
        """
        Build a configuration from defaults, a project file and the environment.

        Args:
            path: ``ponyx_config.py`` itself, or a directory that may hold one
            environ: Environment mapping (defaults to ``os.environ``)

        Raises:
            ConfigError: ``path`` names a file that does not exist or is not
                a valid config file
        """
        config = cls()
        if path is not None:
            path = Path(path)
            if path.is_dir():
                config_file = path / CONFIG_FILE
                if config_file.exists():
                    config.add_source(str(config_file), _read_config_file(config_file), FILE_PRIORITY)
            elif path.exists():
                config.add_source(str(path), _read_config_file(path), FILE_PRIORITY)
            else:
                raise ConfigError(f"Config file not found: {path}")

        env = os.environ if environ is None else environ
        overrides: Dict[str, Any] = {}
        for name in sorted(env):
            if name.startswith(ENV_PREFIX):
                # PONYX_COMPILER__FOR_KEYING -> compiler.for_keying
                key = name[len(ENV_PREFIX):].lower().replace("__", ".")
                _merge_into(overrides, _nest(key, parse_env_value(env[name])))
        if overrides:
            config.add_source("environment", overrides, ENV_PRIORITY)
        return config

    def add_source(self, name: str, data: Dict[str, Any], priority: int = 0) -> None:
        """Add a configuration layer."""
        if not isinstance(data, dict):
            raise ConfigError(f"Config source {name!r} must be a dict, got {type(data).__name__}")
        self._sources.append(ConfigSource(name=name, data=data, priority=priority))
        self._merged = None

    @property
    def sources(self) -> List[Tuple[str, int]]:
        """``(name, priority)`` of every layer, lowest priority first."""
        return [(s.name, s.priority) for s in sorted(self._sources, key=lambda s: s.priority)]

    def _view(self) -> Dict[str, Any]:
        if self._merged is None:
            merged: Dict[str, Any] = {}
            # stable sort: equal priorities keep insertion order
            for source in sorted(self._sources, key=lambda s: s.priority):
                _merge_into(merged, source.data)
            self._merged = merged
        return self._merged

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a value using dot notation.

        Args:
            key: Configuration key (e.g., "compiler.for_keying")
            default: Returned when any part of the key is missing
        """
        current: Any = self._view()
        for part in key.split("."):
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        return current

    def get_list(self, key: str, default: Optional[List[Any]] = None) -> List[Any]:
        """Get a value as a list; a string is split on commas."""
        value = self.get(key)
        if value is None:
            return list(default or [])
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [value]

    def set(self, key: str, value: Any) -> None:
        """Set a runtime value; runtime values have the highest priority."""
        runtime = next((s for s in self._sources if s.name == "runtime"), None)
        if runtime is None:
            runtime = ConfigSource(name="runtime", priority=RUNTIME_PRIORITY)
            self._sources.append(runtime)
        _merge_into(runtime.data, _nest(key, value))
        self._merged = None

    def all(self) -> Dict[str, Any]:
        """Merged configuration as a plain dict."""
        return dict(self._view())

    def __getitem__(self, key: str) -> Any:
        value = self.get(key)
        if value is None:
            raise KeyError(key)
        return value

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


def _read_config_file(path: Path) -> Dict[str, Any]:
    """
    Execute a Python config file.

    A module-level ``config`` dict wins; otherwise every public dict at
    module level is taken as a section.
    """
    spec = importlib.util.spec_from_file_location("ponyx_config", path)
    if spec is None or spec.loader is None:
        raise ConfigError(f"Cannot load config file: {path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    if hasattr(module, "config"):
        return module.config
    return {
        name: value
        for name, value in vars(module).items()
        if not name.startswith("_") and isinstance(value, dict)
    }


@dataclass(frozen=True)
class CompilerOptions:
    """
    Resolved compiler settings.

    Attributes:
        mixed_extern: ``"error"`` or ``"warn"`` when singleton and grouped
            ``extern`` declarations are mixed in one unit
        for_keying: Strategy for ``{#for}`` blocks without a ``key``:
            ``"rebuild"`` or ``"positional"``
        prelude: Extra lowercase names that resolve without a declaration
    """
    mixed_extern: str = "error"
    for_keying: str = "rebuild"
    prelude: FrozenSet[str] = frozenset()

    def __post_init__(self) -> None:
        if self.mixed_extern not in MIXED_EXTERN_POLICIES:
            raise ConfigError(
                f"compiler.mixed_extern must be one of {MIXED_EXTERN_POLICIES}, got {self.mixed_extern!r}"
            )
        if self.for_keying not in FOR_KEYING_STRATEGIES:
            raise ConfigError(
                f"compiler.for_keying must be one of {FOR_KEYING_STRATEGIES}, got {self.for_keying!r}"
            )

    @classmethod
    def from_config(cls, config: Optional[Config] = None) -> "CompilerOptions":
        """Read the ``compiler.*`` section of a configuration."""
        config = config or get_config()
        return cls(
            mixed_extern=str(config.get("compiler.mixed_extern", "error")),
            for_keying=str(config.get("compiler.for_keying", "rebuild")),
            prelude=frozenset(str(name) for name in config.get_list("compiler.prelude")),
        )


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration, loading defaults and environment on first use."""
    global _config
    if _config is None:
        _config = Config.load()
    return _config


def set_config(config: Optional[Config]) -> None:
    """Replace (or with ``None`` reset) the global configuration."""
    global _config
    _config = config
