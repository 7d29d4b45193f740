"""Static file server entry point and connection lifecycle orchestration."""

from __future__ import annotations

import argparse
import errno
import json
import logging
import signal
import socket
import sys
import threading
import time
from collections.abc import Sequence

from config import (
    ACCEPT_TIMEOUT_SECS,
    BASE_PORT,
    HOST,
    LOG_FORMAT,
    MAX_KEEPALIVE_REQUESTS,
    MAX_PORT_RETRIES,
    REQUEST_QUEUE_SIZE,
    SOCKET_TIMEOUT_SECS,
    WORKER_COUNT,
    ServerConfig,
    StartupError,
)
from handlers.static_files import serve_static
from port_binder import Exhausted, acquire_listener
from request import HTTPRequest, HTTPRequestParseError
from response import REASON_PHRASES, HTTPResponse
from socket_handler import (
    HeaderTooLargeError,
    HTTPReadError,
    MalformedRequestError,
    PayloadTooLargeError,
    SocketTimeoutError,
    linger_before_close,
    read_http_request_message,
    write_http_response_message,
)
from thread_pool import ThreadPool

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "HEAD")

READ_ERROR_STATUS: dict[type[HTTPReadError], int] = {
    PayloadTooLargeError: 413,
    HeaderTooLargeError: 431,
    SocketTimeoutError: 408,
    MalformedRequestError: 400,
}

LISTENER_GONE_ERRNOS = frozenset({errno.EBADF, errno.EINVAL, errno.ENOTSOCK})


class StaticHTTPServer:
    def __init__(self, config: ServerConfig) -> None:
        self.config = config
        self.host = config.host
        self.port = 0

        self._listener: socket.socket | None = None
        self._shutdown = threading.Event()

    def bind(self) -> None:
        """Acquire the listening socket, falling back to higher ports when busy."""
        result = acquire_listener(self.config.base_port, self.config.max_retries, self.config.host)
        if isinstance(result, Exhausted):
            raise StartupError(result.describe())
        self._listener = result.listener
        self.host = result.host
        self.port = result.port
        display_host = result.host
        url_host = f"[{display_host}]" if ":" in display_host else display_host
        logger.info(
            "Serving HTTP on %s port %s (http://%s:%s/) ...",
            display_host,
            self.port,
            url_host,
            self.port,
        )

    def start(self) -> None:
        """Bind if needed, then accept connections until stop() is called."""
        if self._listener is None:
            self.bind()
        listener = self._listener
        assert listener is not None

        pool = ThreadPool(
            worker_count=self.config.worker_count,
            queue_size=self.config.request_queue_size,
            handler=self._handle_client,
        )
        pool.start()
        listener.settimeout(ACCEPT_TIMEOUT_SECS)
        try:
            while not self._shutdown.is_set():
                try:
                    client_socket, address = listener.accept()
                except socket.timeout:
                    continue
                except OSError as exc:
                    if self._shutdown.is_set():
                        break
                    if exc.errno in LISTENER_GONE_ERRNOS:
                        raise
                    # Descriptor exhaustion and aborted handshakes are transient.
                    logger.warning("accept() failed: %s", exc)
                    self._shutdown.wait(ACCEPT_TIMEOUT_SECS)
                    continue

                if not pool.submit(client_socket, address):
                    threading.Thread(
                        target=self._send_queue_full_response,
                        args=(client_socket, address),
                        name="srvplz-busy",
                        daemon=True,
                    ).start()
        finally:
            listener.close()
            self._listener = None
            pool.shutdown(drain_timeout=SOCKET_TIMEOUT_SECS)

    def stop(self) -> None:
        self._shutdown.set()

    def _send_queue_full_response(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        with client_socket:
            started_at = time.perf_counter()
            response = HTTPResponse(
                status_code=503,
                headers={"Connection": "close"},
                body="Service Unavailable",
            )
            try:
                bytes_sent = write_http_response_message(client_socket, response)
            except OSError:
                return
            linger_before_close(client_socket)
            self._log_request(address, "-", "-", "busy", response, bytes_sent, started_at)

    def _handle_client(self, client_socket: socket.socket, address: tuple[str, int]) -> None:
        with client_socket:
            client_socket.settimeout(SOCKET_TIMEOUT_SECS)
            carry = b""
            for request_count in range(1, MAX_KEEPALIVE_REQUESTS + 1):
                started_at = time.perf_counter()
                try:
                    raw_request, carry = read_http_request_message(client_socket, carry)
                except HTTPReadError as exc:
                    status = READ_ERROR_STATUS.get(type(exc), 400)
                    self._reject(client_socket, address, status, started_at)
                    return
                except OSError:
                    return

                if not raw_request:
                    return

                try:
                    request = HTTPRequest.from_bytes(raw_request)
                except HTTPRequestParseError as exc:
                    self._reject(client_socket, address, exc.status_code, started_at)
                    return

                response, outcome = self._dispatch(request)
                should_close = (not request.keep_alive) or request_count >= MAX_KEEPALIVE_REQUESTS
                response.headers.setdefault("Connection", "close" if should_close else "keep-alive")

                try:
                    bytes_sent = write_http_response_message(client_socket, response)
                except OSError as exc:
                    logger.debug("Client %s went away mid-response: %s", address[0], exc)
                    return

                self._log_request(
                    address,
                    request.method,
                    request.raw_target,
                    outcome,
                    response,
                    bytes_sent,
                    started_at,
                )
                if should_close:
                    return

    def _reject(
        self,
        client_socket: socket.socket,
        address: tuple[str, int],
        status_code: int,
        started_at: float,
    ) -> None:
        response = HTTPResponse(
            status_code=status_code,
            headers={"Connection": "close"},
            body=REASON_PHRASES.get(status_code, "Bad Request"),
        )
        try:
            bytes_sent = write_http_response_message(client_socket, response)
        except OSError:
            return
        linger_before_close(client_socket)
        self._log_request(address, "-", "-", "rejected", response, bytes_sent, started_at)

    def _dispatch(self, request: HTTPRequest) -> tuple[HTTPResponse, str]:
        if request.method not in ALLOWED_METHODS:
            response = HTTPResponse(
                status_code=405,
                headers={"Allow": ", ".join(ALLOWED_METHODS)},
                body="Method Not Allowed",
            )
            return response, "method-not-allowed"

        try:
            response, outcome = serve_static(request, self.config.root_directory)
        except Exception:
            logger.exception("Unhandled error while serving %s", request.path)
            response, outcome = HTTPResponse(status_code=500, body="Internal Server Error"), "error"

        if request.method == "HEAD":
            return response.without_body(), outcome
        return response, outcome

    def _log_request(
        self,
        address: tuple[str, int],
        method: str,
        path: str,
        outcome: str,
        response: HTTPResponse,
        bytes_sent: int,
        started_at: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started_at) * 1000
        event = {
            "client": address[0],
            "method": method,
            "path": path,
            "outcome": outcome,
            "status": response.status_code,
            "bytes_out": bytes_sent,
            "latency_ms": round(duration_ms, 3),
        }
        if self.config.log_format == "json":
            logger.info(json.dumps(event, sort_keys=True))
            return

        logger.info(
            "client=%s method=%s path=%s outcome=%s status=%s bytes_out=%s duration_ms=%.2f",
            event["client"],
            event["method"],
            event["path"],
            event["outcome"],
            event["status"],
            event["bytes_out"],
            duration_ms,
        )


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="srvplz", description="Serve a directory over HTTP")
    parser.add_argument("directory", nargs="?", default=None, help="directory to serve (default: cwd)")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=BASE_PORT)
    parser.add_argument("--max-retries", type=int, default=MAX_PORT_RETRIES)
    parser.add_argument("--workers", type=int, default=WORKER_COUNT)
    parser.add_argument("--queue-size", type=int, default=REQUEST_QUEUE_SIZE)
    parser.add_argument("--log-format", choices=["plain", "json"], default=LOG_FORMAT)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s", stream=sys.stdout)

    try:
        config = ServerConfig.from_directory(
            args.directory,
            base_port=args.port,
            max_retries=args.max_retries,
            host=args.host,
            worker_count=args.workers,
            request_queue_size=args.queue_size,
            log_format=args.log_format,
        )
        server = StaticHTTPServer(config)
        server.bind()
    except StartupError as exc:
        logger.error("%s", exc)
        return exc.exit_code
    except ValueError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    def _request_shutdown(signum: int, _frame: object) -> None:
        logger.info("Received %s, shutting down", signal.Signals(signum).name)
        server.stop()

    signal.signal(signal.SIGTERM, _request_shutdown)
    try:
        server.start()
    except KeyboardInterrupt:
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
