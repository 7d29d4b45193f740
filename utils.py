"""Utility helpers shared across server modules."""

from __future__ import annotations

import mimetypes
from pathlib import Path, PurePosixPath
from urllib.parse import unquote_to_bytes

from config import DEFAULT_CONTENT_TYPE

CONTENT_TYPES: dict[str, str] = {
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".map": "application/json",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".xml": "application/xml",
    ".pdf": "application/pdf",
    ".wasm": "application/wasm",
    ".svg": "image/svg+xml",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mp3": "audio/mpeg",
}


def get_content_type(file_path: Path) -> str:
    content_type = CONTENT_TYPES.get(file_path.suffix.lower())
    if content_type is not None:
        return content_type
    guessed, _encoding = mimetypes.guess_type(file_path.name)
    return guessed or DEFAULT_CONTENT_TYPE


def normalize_request_path(request_path: str) -> PurePosixPath | None:
    """Turn a URL path into a root-relative path, or None if it must not be served.

    ``request_path`` is the target as read off the wire, one character per
    byte (ISO-8859-1), so raw UTF-8 and percent escapes decode the same way.
    Query strings and fragments are dropped and trailing slashes ignored.
    Parent segments, NUL bytes, backslashes and paths that turn absolute
    after decoding are rejected.
    """
    path = request_path.split("?", 1)[0].split("#", 1)[0]
    try:
        decoded = unquote_to_bytes(path.encode("iso-8859-1")).decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return None
    if "\x00" in decoded or "\\" in decoded:
        return None

    relative = decoded[1:] if decoded.startswith("/") else decoded
    if relative.startswith("/"):
        return None

    segments = [segment for segment in relative.split("/") if segment not in ("", ".")]
    if ".." in segments:
        return None
    return PurePosixPath(*segments)
