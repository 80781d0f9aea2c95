"""CLI for publishing tarballs to channels."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger

from core.channels.publisher import Publisher
from core.exceptions import ChannelServeError
from core.logging_config import setup_logging
from core.settings import Settings
from core.storage import create_storage


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Publish tarballs to S3-backed channels")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    commands = parser.add_subparsers(dest="command", required=True)

    publish = commands.add_parser("publish", help="Upload a tarball and make it the channel's latest")
    publish.add_argument("bucket", help="The bucket to publish to")
    publish.add_argument("channel", help="The channel to update")
    publish.add_argument("file", type=Path, help="A .tar.xz file; its name becomes the blob id")
    publish.add_argument("--blob-id", help="Use this blob id instead of the file name")

    listing = commands.add_parser("list", help="Show every channel and its latest blob")
    listing.add_argument("bucket", help="The bucket to inspect")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.load(args.config)
    except (FileNotFoundError, ChannelServeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    setup_logging(
        level=args.log_level or settings.logging.level,
        json_format=settings.logging.json_format,
        log_file=settings.logging.file,
    )
    storage_settings = settings.storage.model_copy(update={"bucket": args.bucket})

    try:
        publisher = Publisher(create_storage(storage_settings))
        if args.command == "publish":
            blob_id = publisher.publish_file(args.channel, args.file, blob_id=args.blob_id)
            print(blob_id)
        else:
            for channel_name, pointer in publisher.list_channels().items():
                print(f"{channel_name}\t{pointer.latest if pointer else '-'}")
    except ChannelServeError as exc:
        logger.error("{type}: {message} {details}", type=type(exc).__name__, message=exc.message, details=exc.details)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
