"""Listening socket acquisition with sequential port fallback."""

from __future__ import annotations

import errno
import logging
import socket
import sys
from dataclasses import dataclass

from config import HOST, IPV4_FALLBACK_HOST, LISTEN_BACKLOG, StartupError

logger = logging.getLogger(__name__)

MAX_PORT: int = 65_535


@dataclass(slots=True)
class Bound:
    listener: socket.socket
    port: int
    host: str = HOST


@dataclass(slots=True)
class Exhausted:
    last_error: OSError
    first_port: int
    last_port: int

    def describe(self) -> str:
        return (
            f"Failed to bind any port in range {self.first_port}-{self.last_port}: "
            f"{self.last_error.strerror or self.last_error}"
        )


BindAttemptResult = Bound | Exhausted


def acquire_listener(
    base_port: int,
    max_retries: int,
    host: str = HOST,
    *,
    backlog: int = LISTEN_BACKLOG,
) -> BindAttemptResult:
    """Bind the first free port in ``base_port .. base_port + max_retries``.

    Only "address already in use" moves on to the next port. Any other bind
    failure raises ``StartupError`` straight away.
    """
    if max_retries < 0:
        raise ValueError("max_retries cannot be negative")
    if not 0 <= base_port <= MAX_PORT:
        raise ValueError(f"base_port must be within 0-{MAX_PORT}")

    if host == "::" and not _ipv6_available():
        logger.info("IPv6 is unavailable, listening on %s instead", IPV4_FALLBACK_HOST)
        host = IPV4_FALLBACK_HOST

    last_port = min(base_port + max_retries, MAX_PORT)
    last_error: OSError | None = None
    for port in range(base_port, last_port + 1):
        try:
            listener = _bind(host, port, backlog)
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise StartupError(f"Failed to bind {host}:{port}: {exc}") from exc
            last_error = exc
            if port < last_port:
                logger.warning("Port %s is in use, trying %s", port, port + 1)
            continue
        return Bound(listener=listener, port=listener.getsockname()[1], host=host)

    assert last_error is not None
    return Exhausted(last_error=last_error, first_port=base_port, last_port=last_port)


def _bind(host: str, port: int, backlog: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    listener = socket.socket(family, socket.SOCK_STREAM)
    try:
        if not sys.platform.startswith("win"):
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if host == "::" and hasattr(socket, "IPV6_V6ONLY"):
            # Accept IPv4 clients as v4-mapped addresses too.
            listener.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
        listener.bind((host, port))
        listener.listen(backlog)
    except BaseException:
        listener.close()
        raise
    return listener


def _ipv6_available() -> bool:
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as probe:
            probe.bind(("::", 0))
    except OSError:
        return False
    return True
