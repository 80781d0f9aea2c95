"""Serve an S3 bucket of tarballs as channels."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

import uvicorn
from loguru import logger

from core.exceptions import ChannelServeError
from core.logging_config import setup_logging
from core.settings import Settings
from services.api.main import create_app
from services.api.systemd import listen_fds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve an S3 bucket via the lockable tarball protocol")
    parser.add_argument("--config", type=Path, help="YAML configuration file")
    parser.add_argument("--bucket", help="The S3 bucket to serve the content from")
    parser.add_argument(
        "--base-url",
        help="Public base URL of this service, e.g. https://foo.com for https://foo.com/permanent/123.tar.xz",
    )
    parser.add_argument(
        "--listen",
        help="HOST:PORT to listen on. Without it a socket passed by systemd is used.",
    )
    parser.add_argument("--jwt-pem", type=Path, help="RSA public key (PEM); enables JWT authentication")
    return parser


def _split_listen(value: str) -> tuple[str, int]:
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        raise argparse.ArgumentTypeError(f"Expected HOST:PORT, got {value!r}")
    return host.strip("[]") or "0.0.0.0", int(port)


def load_settings(args: argparse.Namespace) -> Settings:
    settings = Settings.load(args.config)
    storage = settings.storage
    server = settings.server
    auth = settings.auth
    if args.bucket:
        storage = storage.model_copy(update={"bucket": args.bucket})
    if args.base_url:
        server = server.model_copy(update={"base_url": args.base_url.rstrip("/")})
    if args.listen:
        host, port = _split_listen(args.listen)
        server = server.model_copy(update={"host": host, "port": port})
    if args.jwt_pem:
        auth = auth.model_copy(update={"jwt_public_key_path": args.jwt_pem})
    return settings.model_copy(update={"storage": storage, "server": server, "auth": auth})


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    except (FileNotFoundError, ChannelServeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    setup_logging(
        level=settings.logging.level,
        json_format=settings.logging.json_format,
        log_file=settings.logging.file,
    )

    listen_on_address = settings.server.host is not None and settings.server.port is not None
    fds = [] if listen_on_address else listen_fds()
    if not listen_on_address and not fds:
        logger.error("Got 0 file descriptors from systemd and no --listen address was given")
        return 2

    try:
        # Keys are loaded here, before any socket is served.
        app = create_app(settings)
    except ChannelServeError as exc:
        logger.error("Startup failed: {message} {details}", message=exc.message, details=exc.details)
        return 1

    if fds:
        logger.info("Got listening socket from systemd")
        uvicorn.run(app, fd=fds[0], access_log=False, log_config=None)
    else:
        logger.info("Listening on {host}:{port}", host=settings.server.host, port=settings.server.port)
        uvicorn.run(app, host=settings.server.host, port=settings.server.port, access_log=False, log_config=None)
    return 0


if __name__ == "__main__":
    sys.exit(main())
