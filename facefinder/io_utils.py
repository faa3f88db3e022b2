"""I/O helpers shared across CLI entrypoints and pipeline modules."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict

import yaml

from facefinder.errors import FilesystemError

LOGGER = logging.getLogger("facefinder.io")


def ensure_dir(path: Path) -> Path:
    """Create directory (and parents) if it does not exist."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML file and return a dictionary."""
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    LOGGER.debug("Loaded YAML config %s -> keys=%s", path, list(data.keys()))
    return data


def dump_yaml(path: Path, data: Dict[str, Any]) -> None:
    """Write YAML to disk."""
    with path.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(data, fh, sort_keys=False)
    LOGGER.debug("Wrote YAML config %s", path)


def dump_json(path: Path, data: Any, indent: int = 2) -> None:
    """Write JSON to disk (with dataclass support)."""
    def _default(obj: Any) -> Any:
        if is_dataclass(obj):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        raise TypeError(f"Object of type {type(obj)} is not JSON serializable")

    with path.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=indent, default=_default)
    LOGGER.debug("Wrote JSON file %s", path)


def load_json(path: Path) -> Any:
    """Read JSON from disk."""
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure application logging if not already configured."""
    if logging.getLogger().handlers:
        logging.getLogger().setLevel(level)
        return
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def read_image_bytes(path: Path) -> bytes:
    """Read a source image, converting OS errors into FilesystemError."""
    try:
        return Path(path).read_bytes()
    except OSError as exc:
        raise FilesystemError(path, f"Unable to read image ({exc.strerror or exc})") from exc


def write_image_bytes(path: Path, payload: bytes) -> Path:
    """Write image bytes, replacing any existing file of the same name."""
    try:
        Path(path).write_bytes(payload)
    except OSError as exc:
        raise FilesystemError(path, f"Unable to write image ({exc.strerror or exc})") from exc
    return Path(path)
