"""Directory scanning for candidate image files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional

from facefinder.config import DEFAULT_EXTENSIONS
from facefinder.errors import FilesystemError
from facefinder.types import CatalogScan

LOGGER = logging.getLogger("facefinder.catalog")


def scan_directory(directory: Path, extensions: Optional[Iterable[str]] = None) -> CatalogScan:
    """List image files directly inside ``directory`` (no recursion).

    Files are grouped by extension in allow-list order, then sorted by name
    within each group. An empty result is not an error.
    """
    directory = Path(directory)
    allowed = [ext.lower() for ext in (extensions or DEFAULT_EXTENSIONS)]
    try:
        entries = [p for p in directory.iterdir() if p.is_file()]
    except OSError as exc:
        raise FilesystemError(directory, f"Unable to list directory ({exc.strerror or exc})") from exc

    by_ext = {ext: [] for ext in allowed}
    for entry in entries:
        suffix = entry.suffix.lower()
        if suffix in by_ext:
            by_ext[suffix].append(entry)

    files = [p for ext in allowed for p in sorted(by_ext[ext], key=lambda p: p.name.lower())]
    scan = CatalogScan(directory=directory, files=files, total_files=len(entries))
    LOGGER.info(
        "Scanned %s: %d files, %d images", directory, scan.total_files, scan.image_count
    )
    return scan
