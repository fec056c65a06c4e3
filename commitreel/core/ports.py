"""Ephemeral TCP port allocation for web-mode runs."""

from __future__ import annotations

import socket


def allocate_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for an unused port and release it immediately.

    The port is free at return time; the child process is expected to bind it
    shortly after.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return int(sock.getsockname()[1])
