"""Static file resolution and response construction for the document root."""

from __future__ import annotations

import logging
import stat
from dataclasses import dataclass
from pathlib import Path

from config import INDEX_FILENAME
from request import HTTPRequest
from response import HTTPResponse
from utils import get_content_type, normalize_request_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class File:
    path: Path
    content_type: str


@dataclass(frozen=True, slots=True)
class NotFound:
    reason: str = "missing"


ResolvedTarget = File | NotFound


def resolve(root_directory: Path, request_path: str) -> ResolvedTarget:
    """Map a request path onto a file under ``root_directory``.

    Directories are addressed with or without a trailing slash and are served
    through their ``index.html``. Anything that would land outside the root
    resolves to ``NotFound`` rather than a 403.
    """
    relative = normalize_request_path(request_path)
    if relative is None:
        return NotFound("invalid")

    candidate = root_directory / relative
    try:
        real_path = candidate.resolve(strict=True)
    except FileNotFoundError:
        return NotFound("missing")
    except (OSError, RuntimeError, ValueError):
        return NotFound("invalid")

    if not real_path.is_relative_to(root_directory):
        return NotFound("outside-root")

    mode = _stat_mode(real_path)
    if mode is None:
        return NotFound("missing")
    if stat.S_ISREG(mode):
        return File(real_path, get_content_type(real_path))
    if not stat.S_ISDIR(mode):
        return NotFound("missing")

    index_path = real_path / INDEX_FILENAME
    index_mode = _stat_mode(index_path)
    if index_mode is None or not stat.S_ISREG(index_mode):
        return NotFound("no-index")
    if not index_path.resolve().is_relative_to(root_directory):
        return NotFound("outside-root")
    return File(index_path, "text/html")


def serve(resolved: ResolvedTarget) -> HTTPResponse:
    if isinstance(resolved, NotFound):
        return HTTPResponse(status_code=404, body="Not Found")

    try:
        with resolved.path.open("rb") as file_obj:
            body = file_obj.read()
    except OSError as exc:
        logger.warning("Failed to read %s: %s", resolved.path, exc)
        return HTTPResponse(status_code=500, body="Internal Server Error")

    return HTTPResponse(
        status_code=200,
        headers={"Content-Type": resolved.content_type},
        body=body,
    )


def serve_static(request: HTTPRequest, root_directory: Path) -> tuple[HTTPResponse, str]:
    """Resolve and serve a request path, returning the response and its outcome tag."""
    resolved = resolve(root_directory, request.path)
    response = serve(resolved)
    if isinstance(resolved, NotFound):
        return response, resolved.reason
    if response.status_code != 200:
        return response, "read-error"
    return response, "file"


def _stat_mode(path: Path) -> int | None:
    try:
        return path.stat().st_mode
    except (OSError, ValueError):
        return None
