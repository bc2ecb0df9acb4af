"""Configuration loading for apiscan (.apiscan.yml)."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .errors import ApiscanError
from .parsers import canonical_language

CONFIG_FILENAME = ".apiscan.yml"
DEFAULT_WORKERS = 4


class ConfigError(ApiscanError):
    """Raised when the configuration file cannot be parsed."""


@dataclass
class ApiscanConfig:
    """Settings defined in .apiscan.yml."""

    root: Optional[Path] = None
    languages: List[str] = field(default_factory=list)
    exclude_paths: List[str] = field(default_factory=list)
    workers: int = DEFAULT_WORKERS
    include_private: bool = False

    def allows(self, language: str) -> bool:
        """An empty ``languages`` list enables every backend."""
        return not self.languages or language in self.languages


def load_config(config_path: Path) -> ApiscanConfig:
    """Load configuration from a directory or an explicit file path.

    A missing file yields the defaults.
    """
    config_file = _resolve_config_path(config_path)
    root = config_file.parent.resolve()

    if not config_file.exists():
        return ApiscanConfig(root=root)

    data = _read_config(config_file)
    if not isinstance(data, dict):
        raise ConfigError(f"{CONFIG_FILENAME} must contain a mapping at the root")

    languages = [canonical_language(name) for name in _as_str_list(data, "languages")]
    workers = data.get("workers", DEFAULT_WORKERS)
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
        raise ConfigError("'workers' must be a positive integer")
    include_private = data.get("include_private", False)
    if not isinstance(include_private, bool):
        raise ConfigError("'include_private' must be true or false")

    return ApiscanConfig(
        root=root,
        languages=languages,
        exclude_paths=_as_str_list(data, "exclude_paths"),
        workers=workers,
        include_private=include_private,
    )


def _resolve_config_path(config_path: Path) -> Path:
    config_path = config_path.expanduser()
    if config_path.is_dir():
        return (config_path / CONFIG_FILENAME).resolve()
    return config_path.resolve()


def _read_config(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read {path.name}: {exc}") from exc
    if not text.strip():
        return {}
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse {path.name}: {exc}") from exc
    return {} if loaded is None else loaded


def _as_str_list(data: Dict[str, Any], key: str) -> List[str]:
    value = data.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(item, str) for item in value):
        return list(value)
    raise ConfigError(f"'{key}' must be a list of strings")


__all__ = ["ApiscanConfig", "CONFIG_FILENAME", "ConfigError", "load_config"]
