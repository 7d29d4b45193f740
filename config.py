"""Configuration constants and startup settings for the static file server."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

HOST: str = "::"
IPV4_FALLBACK_HOST: str = "0.0.0.0"
BASE_PORT: int = 8000
MAX_PORT_RETRIES: int = 25
LISTEN_BACKLOG: int = 128
ACCEPT_TIMEOUT_SECS: float = 0.2
WORKER_COUNT: int = 8
REQUEST_QUEUE_SIZE: int = 64
SOCKET_TIMEOUT_SECS: int = 5
MAX_KEEPALIVE_REQUESTS: int = 100
READ_CHUNK_SIZE: int = 8192
MAX_HEADER_BYTES: int = 16_384
MAX_BODY_BYTES: int = 1_048_576
MAX_TARGET_LENGTH: int = 8192
INDEX_FILENAME: str = "index.html"
DEFAULT_CONTENT_TYPE: str = "application/octet-stream"
SERVER_NAME: str = "srvplz"
LOG_FORMAT: str = "plain"


class StartupError(Exception):
    """Fatal condition that prevents the server from starting."""

    def __init__(self, message: str, *, exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


@dataclass(frozen=True, slots=True)
class ServerConfig:
    root_directory: Path
    base_port: int = BASE_PORT
    max_retries: int = MAX_PORT_RETRIES
    host: str = HOST
    worker_count: int = WORKER_COUNT
    request_queue_size: int = REQUEST_QUEUE_SIZE
    log_format: str = LOG_FORMAT

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.worker_count <= 0 or self.request_queue_size <= 0:
            raise ValueError("worker_count and request_queue_size must be positive")
        if self.log_format not in ("plain", "json"):
            raise ValueError(f"Unsupported log format: {self.log_format}")

    @classmethod
    def from_directory(cls, directory: str | Path | None = None, **overrides: object) -> "ServerConfig":
        """Build a config after resolving the root to an absolute, existing directory."""
        return cls(root_directory=resolve_root_directory(directory), **overrides)


def resolve_root_directory(directory: str | Path | None) -> Path:
    raw = Path.cwd() if directory is None else Path(directory)
    try:
        root = raw.resolve(strict=True)
    except (OSError, RuntimeError) as exc:
        raise StartupError(f"Invalid directory: {raw}: {exc}", exit_code=2) from exc

    if not root.is_dir():
        raise StartupError(f"Not a directory: {root}", exit_code=2)
    return root
