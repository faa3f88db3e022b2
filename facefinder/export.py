"""Write run results to disk."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from facefinder.io_utils import dump_json, ensure_dir
from facefinder.types import CatalogScan, ImageRecord, RunCounters

LOGGER = logging.getLogger("facefinder.export")

RESULT_COLUMNS = [
    "file_path",
    "file_name",
    "attributes",
    "metadata",
    "caption",
    "ocr_text",
    "thumbnail",
    "confidence",
]


@dataclass
class ExportArtifacts:
    results_csv_path: Path
    summary_json_path: Path


def export_results(
    records: Sequence[ImageRecord],
    counters: RunCounters,
    output_dir: Path,
    scan: Optional[CatalogScan] = None,
    error: Optional[str] = None,
    error_file: Optional[str] = None,
    cancelled: bool = False,
) -> ExportArtifacts:
    ensure_dir(output_dir)
    results_csv_path = output_dir / "results.csv"
    summary_json_path = output_dir / "summary.json"

    df = pd.DataFrame([record.to_dict() for record in records], columns=RESULT_COLUMNS)
    df.to_csv(results_csv_path, index=False)

    summary = {
        "counters": counters.to_dict(),
        "results": len(df),
        "cancelled": cancelled,
        "error": None if error is None else {"message": error, "file_name": error_file},
    }
    if scan is not None:
        summary["catalog"] = {
            "directory": str(scan.directory),
            "total_files": scan.total_files,
            "image_files": scan.image_count,
        }
    dump_json(summary_json_path, summary)

    LOGGER.info("Exported %d results to %s", len(df), results_csv_path)
    return ExportArtifacts(results_csv_path, summary_json_path)
