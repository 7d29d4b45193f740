"""Tests for HEAD handling and method rules."""

import socket
import threading
from pathlib import Path

from config import ServerConfig
from server import StaticHTTPServer


def _start_server(root: Path) -> tuple[StaticHTTPServer, threading.Thread]:
    config = ServerConfig.from_directory(root, base_port=0, max_retries=0, host="127.0.0.1")
    server = StaticHTTPServer(config)
    server.bind()
    thread = threading.Thread(target=server.start, daemon=True)
    thread.start()
    return server, thread


def _stop_server(server: StaticHTTPServer, thread: threading.Thread) -> None:
    server.stop()
    thread.join(timeout=3)


def _send_and_recv(host: str, port: int, payload: bytes) -> bytes:
    with socket.create_connection((host, port), timeout=2) as sock:
        sock.sendall(payload)
        chunks = []
        while True:
            chunk = sock.recv(8192)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)


def _split_head_body(raw_response: bytes) -> tuple[bytes, bytes]:
    head, body = raw_response.split(b"\r\n\r\n", 1)
    return head, body


def test_head_returns_headers_without_body(tmp_path: Path) -> None:
    (tmp_path / "index.html").write_text("Hello")
    server, thread = _start_server(tmp_path)
    try:
        payload = (
            b"HEAD / HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Connection: close\r\n"
            b"\r\n"
        )
        response = _send_and_recv(server.host, server.port, payload)
    finally:
        _stop_server(server, thread)

    head, body = _split_head_body(response)
    assert head.startswith(b"HTTP/1.1 200 OK")
    assert b"Content-Type: text/html\r\n" in head + b"\r\n"
    assert b"Content-Length: 5\r\n" in head + b"\r\n"
    assert body == b""


def test_head_missing_path_returns_404_without_body(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        response = _send_and_recv(
            server.host,
            server.port,
            b"HEAD /missing HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n",
        )
    finally:
        _stop_server(server, thread)

    head, body = _split_head_body(response)
    assert head.startswith(b"HTTP/1.1 404 Not Found")
    assert body == b""


def test_other_methods_return_405_with_allow_header(tmp_path: Path) -> None:
    (tmp_path / "index.html").write_text("Hello")
    server, thread = _start_server(tmp_path)
    try:
        responses = [
            _send_and_recv(
                server.host,
                server.port,
                f"{method} / HTTP/1.1\r\nHost: localhost\r\nConnection: close\r\n\r\n".encode(),
            )
            for method in ("POST", "PUT", "DELETE", "OPTIONS", "BREW")
        ]
    finally:
        _stop_server(server, thread)

    for response in responses:
        assert response.startswith(b"HTTP/1.1 405 Method Not Allowed")
        assert b"Allow: GET, HEAD\r\n" in response
        assert b"Hello" not in response


def test_post_body_is_consumed_before_the_405(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        response = _send_and_recv(
            server.host,
            server.port,
            (
                b"POST /upload HTTP/1.1\r\n"
                b"Host: localhost\r\n"
                b"Content-Length: 9\r\n"
                b"Connection: close\r\n"
                b"\r\n"
                b"name=test"
            ),
        )
    finally:
        _stop_server(server, thread)

    assert response.startswith(b"HTTP/1.1 405 Method Not Allowed")
    assert response.count(b"HTTP/1.1") == 1


def test_chunked_request_body_returns_501(tmp_path: Path) -> None:
    server, thread = _start_server(tmp_path)
    try:
        response = _send_and_recv(
            server.host,
            server.port,
            (
                b"GET / HTTP/1.1\r\n"
                b"Host: localhost\r\n"
                b"Transfer-Encoding: chunked\r\n"
                b"\r\n"
            ),
        )
    finally:
        _stop_server(server, thread)

    assert response.startswith(b"HTTP/1.1 501 Not Implemented")
