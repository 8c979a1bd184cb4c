"""Pytest configuration and shared fixtures for the FTP transfer client tests."""

import io
import logging
from typing import Callable, List, Optional, Tuple

import pytest

from ftpclient.ftp.control import ControlChannel


class FakeSocket:
    """
    In-memory stand-in for a connected TCP socket.

    Reads come from a scripted byte string; writes are recorded.
    """

    def __init__(
        self,
        incoming: bytes = b"",
        local: Tuple[str, int] = ("127.0.0.1", 50000),
        peer: Tuple[str, int] = ("127.0.0.1", 21),
    ):
        self._stream = io.BytesIO(incoming)
        self._local = local
        self._peer = peer
        self._timeout: Optional[float] = 30
        self.sent: List[bytes] = []
        self.oob: List[bytes] = []
        self.closed = False

    def makefile(self, mode: str = "rb"):
        return self._stream

    def recv(self, size: int) -> bytes:
        return self._stream.read(size)

    def sendall(self, data: bytes, flags: int = 0) -> None:
        if flags:
            self.oob.append(data)
        else:
            self.sent.append(data)

    def getsockname(self):
        return self._local

    def getpeername(self):
        return self._peer

    def gettimeout(self):
        return self._timeout

    def settimeout(self, timeout):
        self._timeout = timeout

    def close(self) -> None:
        self.closed = True

    @property
    def commands(self) -> List[str]:
        """Command lines written to the socket, without CRLF."""
        text = b"".join(self.sent).decode("latin-1")
        return [line for line in text.split("\r\n") if line]

    @property
    def data(self) -> bytes:
        return b"".join(self.sent)


def script(*lines: str) -> bytes:
    """Join reply lines with CRLF terminators."""
    return "".join(line + "\r\n" for line in lines).encode("latin-1")


@pytest.fixture
def make_socket() -> Callable[..., FakeSocket]:
    """Factory for a FakeSocket that will answer with the given reply lines."""
    def factory(*lines: str, **kwargs) -> FakeSocket:
        return FakeSocket(script(*lines), **kwargs)
    return factory


@pytest.fixture
def make_control(make_socket) -> Callable[..., Tuple[ControlChannel, FakeSocket]]:
    """Factory for a ControlChannel over a scripted FakeSocket."""
    def factory(*lines: str, **kwargs) -> Tuple[ControlChannel, FakeSocket]:
        sock = make_socket(*lines, **kwargs)
        return ControlChannel(sock), sock
    return factory


@pytest.fixture
def package_logger():
    """Restore the package logger after setup_logging reconfigures it."""
    logger = logging.getLogger("ftpclient")
    level, handlers = logger.level, list(logger.handlers)
    yield logger
    for handler in logger.handlers:
        handler.close()
    logger.handlers[:] = handlers
    logger.setLevel(level)
