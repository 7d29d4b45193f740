"""Behavioral tests for the srvplz command line entry point."""

from __future__ import annotations

import signal
import socket
import subprocess
import sys
import urllib.request
from pathlib import Path

import pytest

from server import main

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_SCRIPT = PROJECT_ROOT / "server.py"


def _run_script(*args: str, timeout: float = 10) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, str(SERVER_SCRIPT), *args],
        cwd=PROJECT_ROOT,
        capture_output=True,
        text=True,
        check=False,
        timeout=timeout,
    )


def test_missing_directory_exits_with_code_2(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    exit_code = main([str(tmp_path / "nope")])

    assert exit_code == 2
    assert "Invalid directory" in caplog.text


def test_file_instead_of_directory_exits_with_code_2(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    target = tmp_path / "file.txt"
    target.write_text("x")

    exit_code = main([str(target)])

    assert exit_code == 2
    assert "Not a directory" in caplog.text


def test_exhausted_port_range_exits_non_zero(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        busy_port = holder.getsockname()[1]

        exit_code = main(
            [str(tmp_path), "--host", "127.0.0.1", "--port", str(busy_port), "--max-retries", "0"]
        )

    assert exit_code == 1
    assert f"Failed to bind any port in range {busy_port}-{busy_port}" in caplog.text


def test_out_of_range_port_is_a_usage_error(tmp_path: Path) -> None:
    assert main([str(tmp_path), "--port", "70000"]) == 2


def test_too_many_positional_arguments_is_a_usage_error(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([str(tmp_path), str(tmp_path)])

    assert excinfo.value.code == 2


def test_script_reports_invalid_directory(tmp_path: Path) -> None:
    result = _run_script(str(tmp_path / "missing"))

    assert result.returncode == 2
    assert "Invalid directory" in result.stdout


@pytest.mark.skipif(sys.platform.startswith("win"), reason="SIGTERM delivery differs on Windows")
def test_script_serves_and_exits_cleanly_on_sigterm(tmp_path: Path) -> None:
    (tmp_path / "index.html").write_text("Hello")
    process = subprocess.Popen(
        [sys.executable, "-u", str(SERVER_SCRIPT), str(tmp_path), "--host", "127.0.0.1", "--port", "0"],
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
    try:
        assert process.stdout is not None
        banner = process.stdout.readline()
        assert banner.startswith("Serving HTTP on 127.0.0.1 port ")
        port = int(banner.split(" port ", 1)[1].split(" ", 1)[0])

        with urllib.request.urlopen(f"http://127.0.0.1:{port}/", timeout=5) as response:
            body = response.read()

        process.send_signal(signal.SIGTERM)
        exit_code = process.wait(timeout=10)
    finally:
        if process.poll() is None:
            process.kill()
            process.wait()

    assert body == b"Hello"
    assert exit_code == 0
