"""Configuration loading for facefinder.

Values come from a YAML file, then environment variables for service
credentials, then CLI overrides applied by the entry points.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from facefinder.errors import ConfigError
from facefinder.io_utils import load_yaml
from facefinder.types import RunOptions, SearchCriteria

LOGGER = logging.getLogger("facefinder.config")

DEFAULT_CONFIG_PATH = Path("configs/facefinder.yaml")
DEFAULT_ENDPOINT = "https://westcentralus.api.cognitive.microsoft.com"
DEFAULT_EXTENSIONS: Tuple[str, ...] = (".bmp", ".gif", ".jpg", ".png")


@dataclass
class ServiceConfig:
    endpoint: str = DEFAULT_ENDPOINT
    key: str = ""
    timeout_s: float = 30.0

    def require_key(self, service: str) -> None:
        if not self.key:
            raise ConfigError(f"Missing subscription key for the {service} service")


@dataclass
class ThumbnailConfig:
    folder_name: str = "FaceThumbnails"
    suffix: str = "_thumb"
    width: int = 100
    height: int = 100
    smart_cropping: bool = True


@dataclass
class TrainingConfig:
    poll_interval_s: float = 1.0
    # None waits forever
    timeout_s: Optional[float] = 300.0


@dataclass
class SearchConfig:
    age: bool = False
    min_age: float = 10.0
    max_age: float = 80.0
    male: bool = False
    female: bool = False

    def to_criteria(self) -> SearchCriteria:
        return SearchCriteria(
            age_range=(self.min_age, self.max_age) if self.age else None,
            male_only=self.male,
            female_only=self.female,
        )


@dataclass
class FinderConfig:
    face: ServiceConfig = field(default_factory=ServiceConfig)
    vision: ServiceConfig = field(default_factory=ServiceConfig)
    extensions: Tuple[str, ...] = DEFAULT_EXTENSIONS
    thumbnails: ThumbnailConfig = field(default_factory=ThumbnailConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    options: RunOptions = field(default_factory=RunOptions)
    group_prefix: str = "ff-"


def _section(data: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {type(value).__name__}")
    return dict(value)


def _build(cls, values: Dict[str, Any], section: str):
    known = set(cls.__dataclass_fields__)
    unknown = sorted(set(values) - known)
    if unknown:
        LOGGER.warning("Ignoring unknown keys in config section '%s': %s", section, unknown)
    try:
        return cls(**{k: v for k, v in values.items() if k in known})
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid config section '{section}': {exc}") from exc


def _normalize_extensions(raw: Any) -> Tuple[str, ...]:
    if isinstance(raw, str):
        raw = raw.split()
    exts = []
    for ext in raw:
        ext = str(ext).strip().lower()
        if not ext:
            continue
        exts.append(ext if ext.startswith(".") else f".{ext}")
    if not exts:
        raise ConfigError("scan.extensions must list at least one extension")
    return tuple(exts)


def config_from_dict(data: Mapping[str, Any]) -> FinderConfig:
    """Map a parsed YAML document onto FinderConfig."""
    scan = _section(data, "scan")
    person_group = _section(data, "person_group")
    config = FinderConfig(
        face=_build(ServiceConfig, _section(data, "face"), "face"),
        vision=_build(ServiceConfig, _section(data, "vision"), "vision"),
        thumbnails=_build(ThumbnailConfig, _section(data, "thumbnails"), "thumbnails"),
        training=_build(TrainingConfig, _section(data, "training"), "training"),
        search=_build(SearchConfig, _section(data, "search"), "search"),
        options=_build(RunOptions, _section(data, "options"), "options"),
    )
    if "extensions" in scan:
        config.extensions = _normalize_extensions(scan["extensions"])
    if "prefix" in person_group:
        config.group_prefix = str(person_group["prefix"])
    if config.search.min_age > config.search.max_age:
        raise ConfigError(
            f"search.min_age ({config.search.min_age}) exceeds search.max_age ({config.search.max_age})"
        )
    if config.search.male and config.search.female:
        raise ConfigError("search.male and search.female are mutually exclusive")
    return config


def apply_env_overrides(config: FinderConfig, environ: Optional[Mapping[str, str]] = None) -> FinderConfig:
    env = os.environ if environ is None else environ
    overrides = {
        "FACEFINDER_FACE_KEY": (config.face, "key"),
        "FACEFINDER_FACE_ENDPOINT": (config.face, "endpoint"),
        "FACEFINDER_VISION_KEY": (config.vision, "key"),
        "FACEFINDER_VISION_ENDPOINT": (config.vision, "endpoint"),
    }
    for var, (target, attr) in overrides.items():
        value = env.get(var)
        if value:
            setattr(target, attr, value)
            LOGGER.debug("Config %s taken from environment", var)
    return config


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FinderConfig:
    """Load configuration from YAML (if present) and the environment."""
    path = DEFAULT_CONFIG_PATH if path is None else Path(path)
    if path.exists():
        data = load_yaml(path)
    else:
        LOGGER.info("Config file %s not found; using defaults", path)
        data = {}
    return apply_env_overrides(config_from_dict(data), environ)
