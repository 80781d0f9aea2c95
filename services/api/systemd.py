"""Socket activation and readiness notification (sd_listen_fds / sd_notify)."""

from __future__ import annotations

import os
import socket

from loguru import logger

SD_LISTEN_FDS_START = 3


def listen_fds() -> list[int]:
    """File descriptors passed by systemd socket activation, if any."""
    if os.getenv("LISTEN_PID") != str(os.getpid()):
        return []
    try:
        count = int(os.getenv("LISTEN_FDS", "0"))
    except ValueError:
        return []
    return list(range(SD_LISTEN_FDS_START, SD_LISTEN_FDS_START + count))


def notify_ready() -> bool:
    """Send READY=1 to the supervisor. Returns False when there is none."""
    address = os.getenv("NOTIFY_SOCKET")
    if not address:
        return False
    if address.startswith("@"):
        # Abstract namespace socket
        address = "\0" + address[1:]
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
            sock.connect(address)
            sock.sendall(b"READY=1")
    except OSError as exc:
        logger.warning("Failed to notify systemd: {error}", error=exc)
        return False
    logger.debug("Notified systemd that we are ready to serve")
    return True


__all__ = ["listen_fds", "notify_ready"]
