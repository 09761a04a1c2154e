"""Main module for the face indexer CLI."""

import argparse
import asyncio
import contextlib
import sys
from typing import AsyncIterator, List, Optional

from .core.exceptions import FaceIndexerError
from .core.factories import FaceIndexerFactory
from .core.gallery_store import DynamoGalleryStore
from .core.logging_config import configure_logging
from .core.models import IndexingConfig, IndexingStatus, IndexingStatusValue
from .core.protocols import GalleryStoreProtocol

VERSION = "0.1.0"


def format_status(album_code: str, status: IndexingStatus) -> List[str]:
    """Human readable lines describing a gallery's indexing status."""
    lines = [
        f"Gallery:      {album_code}",
        f"Status:       {status.status.value}",
        f"Progress:     {status.indexed_photos}/{status.total_photos} photos ({status.progress}%)",
        f"Faces:        {status.faces_indexed}",
        f"Ready:        {'yes' if status.is_ready_to_send else 'no'}",
    ]
    if status.status == IndexingStatusValue.IN_PROGRESS:
        lines.append(f"ETA:          {status.estimated_time_remaining} min")
    if status.error_message:
        lines.append(f"Error:        {status.error_message}")
    lines.append(f"Last updated: {status.last_updated.isoformat()}")
    return lines


def build_config(args: argparse.Namespace) -> IndexingConfig:
    overrides = {"debug": getattr(args, "debug", False)}
    if getattr(args, "region", None):
        overrides["aws_region"] = args.region
    if getattr(args, "table", None):
        overrides["gallery_table"] = args.table
    return IndexingConfig.from_env(**overrides)


@contextlib.asynccontextmanager
async def open_store(
    config: IndexingConfig, gallery_file: Optional[str]
) -> AsyncIterator[GalleryStoreProtocol]:
    """The gallery store named on the command line, DynamoDB by default."""
    if gallery_file:
        yield FaceIndexerFactory.create_local_store(gallery_file)
        return
    async with DynamoGalleryStore(config) as store:
        yield store


async def run_index(args: argparse.Namespace) -> int:
    """Start a job and wait in the foreground until it ends."""
    config = build_config(args)
    async with open_store(config, args.gallery_file) as store:
        async with FaceIndexerFactory.create_controller(config, store=store) as controller:
            started = await controller.start_indexing(args.album_code, resume=args.resume)
            print(
                f"Indexing {started.total_photos} photos of {started.album_code} "
                f"into {started.collection_id} "
                f"(from photo {started.start_index}, ~{started.estimated_time_remaining} min)"
            )
            final = await controller.wait_for(started.album_code)
            status = await controller.get_status(started.album_code)

    for line in format_status(started.album_code, status):
        print(line)
    return 0 if final == IndexingStatusValue.COMPLETED else 1


async def show_status(args: argparse.Namespace) -> int:
    config = build_config(args)
    async with open_store(config, args.gallery_file) as store:
        gallery = await store.find_gallery(args.album_code)
    if gallery is None:
        print(f"Error: Gallery not found: {args.album_code}", file=sys.stderr)
        return 1
    for line in format_status(gallery.album_code, gallery.indexing_status):
        print(line)
    return 0


async def run_purge(args: argparse.Namespace) -> int:
    config = build_config(args)
    async with open_store(config, args.gallery_file) as store:
        async with FaceIndexerFactory.create_controller(config, store=store) as controller:
            collection_id = await controller.purge_collection(args.album_code)
    print(f"Deleted face collection {collection_id}")
    return 0


COMMANDS = {
    "index": run_index,
    "status": show_status,
    "purge": run_purge,
}


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="face-indexer",
        description="Face Indexer - index gallery faces into AWS Rekognition collections",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Index a gallery and wait until it finishes
  face-indexer index wedding-42

  # Continue an interrupted run
  face-indexer index wedding-42 --resume

  # Dry run against galleries from a JSON file instead of DynamoDB
  face-indexer index wedding-42 --gallery-file galleries.json

  # Show version
  face-indexer version
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("album_code", help="Album code of the gallery")
    common.add_argument("--region", default=None, help="AWS region (default: $AWS_REGION)")
    common.add_argument("--table", default=None, help="DynamoDB gallery table")
    common.add_argument(
        "--gallery-file",
        default=None,
        help="Read galleries from a JSON file instead of DynamoDB",
    )
    common.add_argument("--debug", action="store_true", help="Enable debug logging")

    index_parser = subparsers.add_parser(
        "index", parents=[common], help="Index the faces of a gallery"
    )
    index_parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue from where an interrupted run stopped",
    )
    subparsers.add_parser(
        "status", parents=[common], help="Show the indexing status of a gallery"
    )
    subparsers.add_parser(
        "purge", parents=[common], help="Delete the face collection of a gallery"
    )
    subparsers.add_parser("version", help="Show version information")
    return parser


def main() -> None:
    """Entry point for the face-indexer command-line interface."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command == "version":
        print("Face Indexer CLI")
        print(f"Version {VERSION}")
        print("Gallery face indexing with AWS Rekognition")
        sys.exit(0)
        return

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        sys.exit(1)
        return

    configure_logging(level="DEBUG" if args.debug else None)

    try:
        exit_code = asyncio.run(command(args))
    except FaceIndexerError as e:
        print(f"Error: {e}", file=sys.stderr)
        exit_code = 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        exit_code = 130
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
