"""Streaming transfer engine for the FTP transfer client.

Moves bytes (binary, TYPE I) or lines (text, TYPE A) between a local
source or sink and a freshly negotiated data connection. Every transfer
opens exactly one data connection, closes it, and then consumes exactly
one final reply from the control connection, whether or not the
streaming succeeded.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, List, Optional, TextIO, Union

from ftpclient.ftp.commands import CRLF, Command
from ftpclient.ftp.control import ControlChannel
from ftpclient.ftp.datachannel import DataChannelNegotiator, DataConnection
from ftpclient.ftp.exceptions import (
    ConfigurationError,
    FTPError,
    FTPTransferAbortedError,
    FTPTransferError,
)
from ftpclient.ftp.reply import Reply

logger = logging.getLogger("ftpclient.transfer")

# Block size for binary transfers (8KB)
BLOCK_SIZE = 8192


@dataclass
class TransferProgress:
    """Progress information passed to callbacks during a transfer."""
    remote_name: str
    local_identifier: str
    bytes_transferred: int
    end_of_stream: bool = False
    expected_size: Optional[int] = None

    @property
    def percent(self) -> Optional[float]:
        """Progress as percentage (0-100), None when the size is unknown."""
        if not self.expected_size:
            return None
        return (self.bytes_transferred / self.expected_size) * 100.0


@dataclass
class TransferResult:
    """Outcome of a single completed transfer."""
    remote_name: str
    local_identifier: str
    bytes_transferred: int
    expected_size: Optional[int]
    reply: Reply
    duration_seconds: float = 0.0


# Type alias for progress callback
ProgressCallback = Callable[[TransferProgress], None]

PathLike = Union[str, Path]


class TransferEngine:
    """Runs file and listing transfers over one session's channels."""

    def __init__(
        self,
        control: ControlChannel,
        negotiator: DataChannelNegotiator,
        block_size: int = BLOCK_SIZE,
    ):
        """
        Initialize the engine.

        Args:
            control: Control channel of the session
            negotiator: Data channel negotiator of the session
            block_size: Bytes read per block in binary mode
        """
        if block_size <= 0:
            raise ConfigurationError(f"Block size must be positive, got {block_size}")
        self._control = control
        self._negotiator = negotiator
        self._block_size = block_size

    @property
    def block_size(self) -> int:
        return self._block_size

    def _open(
        self,
        cmd: Command,
        params: Iterable[str],
        line_mode: bool,
        rest: Optional[int] = None,
    ) -> DataConnection:
        """Switch representation type and negotiate, as one exchange."""
        with self._control.exchange():
            # An ABOR answered before this transfer does not concern it
            self._control.take_abort()
            self._control.send_and_read(Command.TYPE_A if line_mode else Command.TYPE_I)
            return self._negotiator.transfer_cmd(cmd, *params, rest=rest)

    def _run(self, cmd: Command, params: List[str], line_mode: bool, stream, rest: Optional[int] = None):
        """
        Negotiate, stream, then resynchronize the control channel.

        Args:
            stream: Callable taking the DataConnection, returning a byte count

        Returns:
            Tuple of (bytes streamed, expected size, final reply, seconds)
        """
        start_time = time.time()
        conn = self._open(cmd, params, line_mode, rest)
        try:
            count = stream(conn)
        except BaseException as e:
            conn.close()
            self._drain_final_reply(cmd)
            # The server drops the data connection when it honours ABOR
            if self._control.take_abort() and isinstance(e, OSError):
                raise FTPTransferAbortedError(" ".join(params)) from e
            raise
        # The server may hold the final reply until the data socket closes
        conn.close()
        final = self._control.read()
        if self._control.take_abort():
            logger.info(f"{cmd.value} aborted after {count} bytes")
            raise FTPTransferAbortedError(" ".join(params), final)
        return count, conn.expected_size, final, time.time() - start_time

    def _drain_final_reply(self, cmd: Command) -> None:
        """Consume the final reply after a failed transfer."""
        try:
            reply = self._control.read()
            logger.debug(f"Final reply after failed {cmd.value}: {reply.text}")
        except FTPError as e:
            logger.debug(f"Final reply after failed {cmd.value}: {e}")

    def get_bytes(
        self,
        cmd: Command,
        write: Callable[[bytes], object],
        *params: str,
        rest: Optional[int] = None,
        callback: Optional[ProgressCallback] = None,
        local_identifier: str = "",
    ) -> TransferResult:
        """
        Retrieve data in binary mode.

        Args:
            cmd: A RETR command
            write: Called with each block read from the data connection
            *params: Command parameters (the remote name)
            rest: Byte offset to restart from (REST)
            callback: Progress callback
            local_identifier: Local name reported to the callback

        Returns:
            TransferResult
        """
        remote_name = " ".join(params)

        def stream(conn: DataConnection) -> int:
            total = 0
            while True:
                block = conn.sock.recv(self._block_size)
                if not block:
                    break
                write(block)
                total += len(block)
                if callback:
                    callback(TransferProgress(
                        remote_name, local_identifier, total, False, conn.expected_size
                    ))
            if callback:
                callback(TransferProgress(
                    remote_name, local_identifier, total, True, conn.expected_size
                ))
            return total

        count, expected, final, duration = self._run(cmd, list(params), False, stream, rest)
        return TransferResult(remote_name, local_identifier, count, expected, final, duration)

    def get_lines(
        self,
        cmd: Command,
        on_line: Callable[[str], object],
        *params: str,
        callback: Optional[ProgressCallback] = None,
        local_identifier: str = "",
    ) -> TransferResult:
        """
        Retrieve data in line mode.

        Args:
            cmd: A RETR, LIST, NLST or MLSD command
            on_line: Called for each line with the trailing CRLF stripped
            *params: Command parameters
            callback: Progress callback (byte count of received lines)
            local_identifier: Local name reported to the callback

        Returns:
            TransferResult
        """
        remote_name = " ".join(params)
        encoding = self._control.encoding

        def stream(conn: DataConnection) -> int:
            total = 0
            reader = conn.sock.makefile("rb")
            try:
                while True:
                    raw = reader.readline()
                    if not raw:
                        break
                    total += len(raw)
                    on_line(raw.decode(encoding, "surrogateescape").rstrip("\r\n"))
                    if callback:
                        callback(TransferProgress(
                            remote_name, local_identifier, total, False, conn.expected_size
                        ))
            finally:
                reader.close()
            if callback:
                callback(TransferProgress(
                    remote_name, local_identifier, total, True, conn.expected_size
                ))
            return total

        count, expected, final, duration = self._run(cmd, list(params), True, stream)
        return TransferResult(remote_name, local_identifier, count, expected, final, duration)

    def retrieve_lines(self, cmd: Command, *params: str) -> List[str]:
        """Run a line mode transfer and collect the lines (listings)."""
        lines: List[str] = []
        self.get_lines(cmd, lines.append, *params)
        return lines

    def store_bytes(
        self,
        source: BinaryIO,
        remote_name: str,
        local_identifier: str = "",
        callback: Optional[ProgressCallback] = None,
        cmd: Command = Command.STOR,
    ) -> TransferResult:
        """
        Upload bytes read from source in blocks.

        The callback is invoked after every block written, and once more
        with end_of_stream set when the source is exhausted.
        """
        def stream(conn: DataConnection) -> int:
            total = 0
            while True:
                block = source.read(self._block_size)
                if not block:
                    break
                conn.sock.sendall(block)
                total += len(block)
                if callback:
                    callback(TransferProgress(remote_name, local_identifier, total, False))
            if callback:
                callback(TransferProgress(remote_name, local_identifier, total, True))
            return total

        count, expected, final, duration = self._run(cmd, [remote_name], False, stream)
        return TransferResult(remote_name, local_identifier, count, expected, final, duration)

    def store_lines(
        self,
        source: TextIO,
        remote_name: str,
        local_identifier: str = "",
        callback: Optional[ProgressCallback] = None,
        cmd: Command = Command.STOR,
    ) -> TransferResult:
        """Upload text lines, each terminated by CRLF on the wire."""
        encoding = self._control.encoding

        def stream(conn: DataConnection) -> int:
            total = 0
            for line in source:
                data = (line.rstrip("\r\n") + CRLF).encode(encoding, "surrogateescape")
                conn.sock.sendall(data)
                total += len(data)
                if callback:
                    callback(TransferProgress(remote_name, local_identifier, total, False))
            if callback:
                callback(TransferProgress(remote_name, local_identifier, total, True))
            return total

        count, expected, final, duration = self._run(cmd, [remote_name], True, stream)
        return TransferResult(remote_name, local_identifier, count, expected, final, duration)

    def download_file(
        self,
        remote_name: str,
        local_path: PathLike,
        line_mode: bool = False,
        offset: int = 0,
        callback: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """
        Download a remote file to a local path.

        Args:
            remote_name: Remote file name (relative to the remote cwd)
            local_path: Destination path
            line_mode: Text transfer with local line terminators
            offset: Resume a binary download from this byte offset; the
                local file must already hold at least offset bytes
            callback: Progress callback

        Raises:
            ConfigurationError: Resume requested in line mode, negative
                offset, or a local partial file shorter than offset
            FTPTransferError: If the transfer fails
        """
        local_path = Path(local_path)
        if offset < 0:
            raise ConfigurationError(f"Resume offset must not be negative, got {offset}")
        if offset and line_mode:
            raise ConfigurationError("Resuming a line mode transfer is not supported")
        if offset and (not local_path.is_file() or local_path.stat().st_size < offset):
            raise ConfigurationError(
                f"Cannot resume at {offset}: local file '{local_path}' is missing or shorter"
            )

        logger.debug(f"Downloading {remote_name} to {local_path} (offset {offset})")
        try:
            if line_mode:
                encoding = self._control.encoding
                with open(local_path, "w", encoding=encoding, errors="surrogateescape", newline="\n") as f:
                    return self.get_lines(
                        Command.RETR,
                        lambda line: f.write(line + "\n"),
                        remote_name,
                        callback=callback,
                        local_identifier=str(local_path),
                    )

            mode = "r+b" if offset else "wb"
            with open(local_path, mode) as f:
                if offset:
                    f.seek(offset)
                    f.truncate()
                return self.get_bytes(
                    Command.RETR,
                    f.write,
                    remote_name,
                    rest=offset or None,
                    callback=callback,
                    local_identifier=str(local_path),
                )
        except (FTPError, OSError) as e:
            raise FTPTransferError(str(local_path), remote_name, e) from e

    def upload_file(
        self,
        remote_name: str,
        local_path: PathLike,
        line_mode: bool = False,
        callback: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """
        Upload a local file into the remote current directory.

        Raises:
            FTPTransferError: If the transfer fails
        """
        local_path = Path(local_path)
        logger.debug(f"Uploading {local_path} as {remote_name}")
        try:
            if line_mode:
                encoding = self._control.encoding
                with open(local_path, "r", encoding=encoding, errors="surrogateescape") as f:
                    return self.store_lines(f, remote_name, str(local_path), callback)
            with open(local_path, "rb") as f:
                return self.store_bytes(f, remote_name, str(local_path), callback)
        except (FTPError, OSError) as e:
            raise FTPTransferError(str(local_path), remote_name, e) from e

