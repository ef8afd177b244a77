"""Shared fixtures: loopback ports, an echo target and forwards files."""

import contextlib
import socket
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from loguru import logger

from forward_manager.core.config import Settings
from forward_manager.core.utils.log_config import configure_logging

LOOPBACK = "127.0.0.1"
IO_TIMEOUT = 5.0


def allocate_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOOPBACK, 0))
        return sock.getsockname()[1]


class EchoServer:
    """Threaded TCP echo service that closes its side once the client does."""

    def __init__(self) -> None:
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.sock.bind((LOOPBACK, 0))
        self.sock.listen(16)
        self.port = self.sock.getsockname()[1]
        self.connections = 0
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            self.connections += 1
            threading.Thread(target=self._echo, args=(conn,), daemon=True).start()

    @staticmethod
    def _echo(conn: socket.socket) -> None:
        with conn:
            while True:
                try:
                    data = conn.recv(65536)
                except OSError:
                    return
                if not data:
                    return
                conn.sendall(data)

    def close(self) -> None:
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        self.sock.close()
        self._thread.join(timeout=IO_TIMEOUT)


@pytest.fixture
def free_port() -> Callable[[], int]:
    return allocate_port


@pytest.fixture
def echo_server() -> Iterator[EchoServer]:
    server = EchoServer()
    yield server
    server.close()


@pytest.fixture
def connect() -> Iterator[Callable[[int], socket.socket]]:
    """Open loopback client connections, closing them after the test."""
    opened: list[socket.socket] = []

    def _connect(port: int) -> socket.socket:
        sock = socket.create_connection((LOOPBACK, port), timeout=IO_TIMEOUT)
        opened.append(sock)
        return sock

    yield _connect
    for sock in opened:
        sock.close()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    def _wait_until(predicate: Callable[[], bool], timeout: float = IO_TIMEOUT) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return predicate()

    return _wait_until


@pytest.fixture
def forwards_file(tmp_path: Path) -> Callable[[str], Path]:
    path = tmp_path / "forwards.conf"

    def _write(text: str) -> Path:
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        config_path=tmp_path / "forwards.conf",
        grace_period=0.5,
        connect_timeout=1.0,
    )


@pytest.fixture
def log_messages() -> Iterator[list[str]]:
    messages: list[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message)), level="DEBUG", format="{level} {message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    yield
    configure_logging()
