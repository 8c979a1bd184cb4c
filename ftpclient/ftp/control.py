"""Control connection for the FTP transfer client.

Owns the command socket. Commands and their replies are strictly paired:
one command may be outstanding at a time, so every send/read pair (and
any multi-step exchange built from several pairs) runs under a lock.
"""

import logging
import socket
import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

from ftpclient.ftp.commands import CRLF, Command, format_command
from ftpclient.ftp.exceptions import (
    FTPNotConnectedError,
    FTPTimeoutError,
    PermanentError,
    ProtocolError,
    ReplyError,
    TemporaryError,
    TransportError,
)
from ftpclient.ftp.reply import Reply, read_reply

logger = logging.getLogger("ftpclient.control")

# First reply accepted after ABOR
ABORT_CODES = (225, 226, 426)


def classify(reply: Reply) -> Reply:
    """
    Map a reply onto the error taxonomy.

    Returns:
        The reply itself for classes 1, 2 and 3

    Raises:
        TemporaryError: For 4xx replies
        PermanentError: For 5xx replies
        ProtocolError: For any other class
    """
    digit = reply.first_digit
    if digit in (1, 2, 3):
        return reply
    if digit == 4:
        raise TemporaryError(reply)
    if digit == 5:
        raise PermanentError(reply)
    raise ProtocolError(reply.text, reply)


class ControlChannel:
    """Blocking request/response access to the FTP command socket."""

    def __init__(self, sock: socket.socket, encoding: str = "latin-1"):
        """
        Initialize the control channel.

        Args:
            sock: Connected control socket (ownership is taken)
            encoding: Text encoding used on the wire
        """
        self._sock = sock
        self._file = sock.makefile("rb")
        self._encoding = encoding
        self._lock = threading.RLock()
        self._closed = False
        self._aborted = False
        self._last_reply: Optional[Reply] = None

    @property
    def encoding(self) -> str:
        return self._encoding

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def last_reply(self) -> Optional[Reply]:
        """Last reply read from the server."""
        return self._last_reply

    @property
    def local_address(self) -> Tuple[str, int]:
        """(ip, port) of the local end of the control socket."""
        return self._sock.getsockname()[:2]

    @property
    def remote_address(self) -> Tuple[str, int]:
        """(ip, port) of the server end of the control socket."""
        return self._sock.getpeername()[:2]

    @contextmanager
    def exchange(self) -> Iterator["ControlChannel"]:
        """
        Hold the channel for a sequence of command/reply pairs.

        Other threads block on send_and_read() until the block exits.
        The lock is reentrant, so send_and_read() may be used inside.
        """
        with self._lock:
            yield self

    def _check_open(self) -> None:
        if self._closed:
            raise FTPNotConnectedError("Control channel access")

    def send(self, cmd: Command, *params: str) -> None:
        """
        Write one command line to the server. No reply is read.

        Raises:
            TransportError: If the socket write fails
        """
        with self._lock:
            self._check_open()
            line = format_command(cmd, *params)
            if cmd is Command.PASS:
                logger.debug("Sending command 'PASS ****'")
            else:
                logger.debug(f"Sending command '{line}'")
            try:
                self._sock.sendall((line + CRLF).encode(self._encoding, "surrogateescape"))
            except socket.timeout:
                timeout = self._sock.gettimeout()
                self._mark_broken()
                raise FTPTimeoutError(f"Sending {cmd.value or 'command'}", timeout)
            except OSError as e:
                self._mark_broken()
                raise TransportError("Control connection write failed", e)

    def _receive(self) -> Reply:
        """Read one reply without classifying it."""
        self._check_open()
        try:
            reply = read_reply(self._file.readline, self._encoding)
        except socket.timeout:
            # The buffered reader refuses every read after a timeout
            timeout = self._sock.gettimeout()
            self._mark_broken()
            raise FTPTimeoutError("Reading reply", timeout)
        except ProtocolError:
            raise
        except OSError as e:
            self._mark_broken()
            raise TransportError("Control connection read failed", e)
        self._last_reply = reply
        logger.debug(f"Server reply: {reply.text}")
        return reply

    def read(self) -> Reply:
        """
        Block until one complete reply has arrived.

        Returns:
            Reply with a leading 1, 2 or 3

        Raises:
            TemporaryError: 4xx reply
            PermanentError: 5xx reply
            ProtocolError: Malformed reply or unknown reply class
            TransportError: Socket failure
        """
        with self._lock:
            return classify(self._receive())

    def send_and_read(self, cmd: Command, *params: str) -> Reply:
        """Send a command and read its reply as one atomic step."""
        with self._lock:
            self.send(cmd, *params)
            return self.read()

    def send_and_read_empty(self, cmd: Command, *params: str) -> Reply:
        """
        Send a command and require a success (2xx) reply.

        Raises:
            ReplyError: If the reply is of class 1 or 3
        """
        reply = self.send_and_read(cmd, *params)
        if not reply.is_success:
            raise ReplyError(reply)
        return reply

    def abort(self) -> Reply:
        """
        Interrupt a transfer by sending ABOR as out-of-band data.

        Only the first reply is read here. When a transfer was running the
        server answers 426 for it and then 226 for the ABOR; the transfer
        consumes that 226 as its final reply and reports the abort.

        Returns:
            The 426, 225 or 226 reply

        Raises:
            ProtocolError: If the server answers with anything else
        """
        with self._lock:
            self._check_open()
            logger.debug("Sending command 'ABOR' (out of band)")
            try:
                line = (Command.ABOR.value + CRLF).encode(self._encoding)
                self._sock.sendall(line, socket.MSG_OOB)
            except OSError as e:
                self._mark_broken()
                raise TransportError("Control connection write failed", e)

            self._aborted = True
            reply = self._receive()
            if reply.code not in ABORT_CODES:
                raise ProtocolError(f"unexpected reply to ABOR: {reply.text}", reply)
            return reply

    def take_abort(self) -> bool:
        """Return whether ABOR was sent since the last call, and reset it."""
        with self._lock:
            aborted, self._aborted = self._aborted, False
            return aborted

    def _mark_broken(self) -> None:
        logger.warning("Control connection lost")
        self.close()

    def close(self) -> None:
        """Close the control socket. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._file.close()
        finally:
            try:
                self._sock.close()
            except OSError as e:
                logger.debug(f"Error closing control socket: {e}")
