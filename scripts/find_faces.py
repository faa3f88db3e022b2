#!/usr/bin/env python3
"""CLI for scanning a folder and finding faces that match the given criteria."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from facefinder.catalog import scan_directory
from facefinder.config import FinderConfig, load_config
from facefinder.enrichment import Enricher
from facefinder.errors import ConfigError, FaceFinderError
from facefinder.export import export_results
from facefinder.io_utils import setup_logging
from facefinder.pipeline import CancellationToken, FaceFinderPipeline, ResultSink
from facefinder.recognition.reference import ReferencePersonManager
from facefinder.services.face_client import FaceServiceClient
from facefinder.services.vision_client import VisionServiceClient
from facefinder.types import ImageRecord, RunCounters, RunOptions, SearchCriteria

LOGGER = logging.getLogger("scripts.find_faces")


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find faces in a folder of images")
    parser.add_argument("folder", type=Path, help="Folder containing the images to search")
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="FaceFinder configuration YAML (default configs/facefinder.yaml)",
    )
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path("data/outputs"),
        help="Where results.csv and summary.json are written",
    )
    parser.add_argument("--min-age", type=float, default=None, help="Enable age filter with this minimum")
    parser.add_argument("--max-age", type=float, default=None, help="Enable age filter with this maximum")
    parser.add_argument("--no-age", action="store_true", help="Disable the age filter from config")
    gender_group = parser.add_mutually_exclusive_group()
    gender_group.add_argument("--male", action="store_true", help="Only male faces")
    gender_group.add_argument("--female", action="store_true", help="Only female faces")
    parser.add_argument(
        "--person",
        type=str,
        default=None,
        help="Only keep images matching this trained reference person",
    )
    thumb_group = parser.add_mutually_exclusive_group()
    thumb_group.add_argument("--thumbnails", dest="thumbnail", action="store_true")
    thumb_group.add_argument("--no-thumbnails", dest="thumbnail", action="store_false")
    thumb_group.set_defaults(thumbnail=None)
    parser.add_argument("--caption", action="store_true", default=None, help="Request image captions")
    parser.add_argument("--ocr", action="store_true", default=None, help="Extract printed text")
    parser.add_argument("--metadata", action="store_true", default=None, help="Read date taken and title")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def resolve_criteria(args: argparse.Namespace, config: FinderConfig) -> SearchCriteria:
    """CLI flags override the search section of the config."""
    search = config.search
    age_enabled = search.age or args.min_age is not None or args.max_age is not None
    if args.no_age:
        age_enabled = False
    min_age = search.min_age if args.min_age is None else args.min_age
    max_age = search.max_age if args.max_age is None else args.max_age
    if age_enabled and min_age > max_age:
        raise ConfigError(f"--min-age ({min_age:g}) exceeds --max-age ({max_age:g})")
    male, female = search.male, search.female
    if args.male or args.female:
        male, female = args.male, args.female
    return SearchCriteria(
        age_range=(min_age, max_age) if age_enabled else None,
        male_only=male,
        female_only=female,
    )


def resolve_options(args: argparse.Namespace, config: FinderConfig) -> RunOptions:
    base = config.options

    def pick(cli_value, config_value: bool) -> bool:
        return config_value if cli_value is None else bool(cli_value)

    return RunOptions(
        thumbnail=pick(args.thumbnail, base.thumbnail),
        caption=pick(args.caption, base.caption),
        ocr=pick(args.ocr, base.ocr),
        metadata=pick(args.metadata, base.metadata),
        match_person=bool(args.person) or base.match_person,
    )


class ProgressSink(ResultSink):
    """Progress bar over processed files."""

    def __init__(self, total: int) -> None:
        self.bar = tqdm(total=total, unit="img", desc="Searching")

    def on_counters(self, counters: RunCounters) -> None:
        self.bar.n = counters.processed
        self.bar.set_postfix(
            faces=counters.searched, hits=counters.qualifying, matched=counters.matched, refresh=False
        )
        self.bar.refresh()

    def on_record(self, record: ImageRecord) -> None:
        LOGGER.debug("Match: %s [%s]", record.file_name, record.attributes)

    def on_error(self, message: str, file_name: str) -> None:
        self.bar.write(f"Error processing {file_name}: {message}")

    def close(self) -> None:
        self.bar.close()


def _install_interrupt(token: CancellationToken) -> None:
    def _handler(signum, frame):
        if token.cancelled:
            raise KeyboardInterrupt
        LOGGER.warning("Interrupt received; finishing the current image (press Ctrl-C again to abort)")
        token.cancel()

    signal.signal(signal.SIGINT, _handler)


async def run_search(args: argparse.Namespace, config: FinderConfig, token: CancellationToken) -> int:
    scan = scan_directory(args.folder, config.extensions)
    if not scan.files:
        LOGGER.warning("No images found in %s (%d files)", args.folder, scan.total_files)
        return 0

    criteria = resolve_criteria(args, config)
    options = resolve_options(args, config)
    needs_vision = options.thumbnail or options.caption or options.ocr
    LOGGER.info("Search criteria: %s; options: %s", criteria, options)

    face_service = FaceServiceClient.from_config(config.face)
    vision_service = None
    if needs_vision:
        vision_service = VisionServiceClient.from_config(
            config.vision, smart_cropping=config.thumbnails.smart_cropping
        )
    sink = ProgressSink(total=scan.image_count)
    try:
        manager = None
        if options.match_person:
            manager = ReferencePersonManager(
                face_service,
                poll_interval_s=config.training.poll_interval_s,
                training_timeout_s=config.training.timeout_s,
                group_prefix=config.group_prefix,
            )
            subject = await manager.locate_or_create(args.person)
            if subject is None or not subject.trained:
                LOGGER.warning(
                    "Reference person %r is not trained; images will not be filtered by person",
                    args.person,
                )
        enricher = Enricher(vision_service, config.thumbnails) if vision_service is not None else None
        pipeline = FaceFinderPipeline(face_service, enricher=enricher, person_manager=manager, sink=sink)
        result = await pipeline.collect(scan.files, criteria, options, token)
    finally:
        sink.close()
        await face_service.aclose()
        if vision_service is not None:
            await vision_service.aclose()

    artifacts = export_results(
        result.records,
        result.counters,
        args.output_dir,
        scan=scan,
        error=None if result.error is None else result.error.message,
        error_file=None if result.error is None else result.error.file_name,
        cancelled=result.cancelled,
    )
    LOGGER.info(
        "Processed %d/%d images: %d with faces, %d qualifying, %d results -> %s",
        result.counters.processed,
        scan.image_count,
        result.counters.searched,
        result.counters.qualifying,
        len(result.records),
        artifacts.results_csv_path,
    )
    return 1 if result.error is not None else 0


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    setup_logging(getattr(logging, args.log_level))
    try:
        config = load_config(args.config)
        token = CancellationToken()
        _install_interrupt(token)
        return asyncio.run(run_search(args, config, token))
    except FaceFinderError as exc:
        LOGGER.error("%s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
