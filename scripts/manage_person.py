#!/usr/bin/env python3
"""CLI for managing the reference person used to filter search results."""

from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from facefinder.catalog import scan_directory
from facefinder.config import FinderConfig, load_config
from facefinder.errors import FaceFinderError
from facefinder.io_utils import setup_logging
from facefinder.recognition.reference import ReferencePersonManager
from facefinder.services.face_client import FaceServiceClient

LOGGER = logging.getLogger("scripts.manage_person")


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create, train and delete reference persons")
    parser.add_argument("--config", type=Path, default=None, help="FaceFinder configuration YAML")
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List reference persons")

    show = sub.add_parser("show", help="Locate (or create) a person and list its face images")
    show.add_argument("name")

    add = sub.add_parser("add", help="Attach face images to a person and train it")
    add.add_argument("name")
    add.add_argument(
        "images",
        type=Path,
        nargs="+",
        help="Image files (one face each) or folders of images",
    )

    delete = sub.add_parser("delete", help="Delete a person and its training images")
    delete.add_argument("name")
    delete.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    return parser.parse_args(argv)


def expand_images(paths: List[Path], config: FinderConfig) -> List[Path]:
    """Folders are expanded to the images they contain; files are kept as-is."""
    images: List[Path] = []
    for path in paths:
        if path.is_dir():
            images.extend(scan_directory(path, config.extensions).files)
        else:
            images.append(path)
    return images


def _confirm(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in {"y", "yes"}


async def run_command(args: argparse.Namespace, config: FinderConfig) -> int:
    async with FaceServiceClient.from_config(config.face) as face_service:
        manager = ReferencePersonManager(
            face_service,
            poll_interval_s=config.training.poll_interval_s,
            training_timeout_s=config.training.timeout_s,
            group_prefix=config.group_prefix,
        )
        if args.command == "list":
            for name in await manager.list_subjects():
                print(name)
            return 0

        if args.command == "delete":
            if not args.yes and not _confirm(f"Delete {args.name} and its training images?"):
                LOGGER.info("Delete cancelled")
                return 0
            await manager.delete_subject(manager.identifier_for(args.name))
            return 0

        subject = await manager.locate_or_create(args.name)
        if subject is None:
            LOGGER.error("A person name is required")
            return 2
        if args.command == "add":
            images = expand_images(args.images, config)
            trained = await manager.attach_faces(subject, images)
            LOGGER.info("%s: %d faces, trained=%s", subject.name, len(subject.faces), trained)

        print(f"{subject.name} ({subject.identifier}) trained={subject.trained}")
        for ref in subject.faces:
            print(f"  {ref.face_id}  {ref.source_path or '<untagged>'}")
        return 0


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    setup_logging(getattr(logging, args.log_level))
    try:
        config = load_config(args.config)
        return asyncio.run(run_command(args, config))
    except FaceFinderError as exc:
        LOGGER.error("%s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
