"""FTP session management for the FTP transfer client.

Provides ConnectionState enum, FTPConnectionConfig dataclass, and the
FTPSession class that owns one control connection and exposes the
protocol operations built on it.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

from ftpclient.config.credentials import CredentialManager
from ftpclient.ftp.commands import Command
from ftpclient.ftp.control import ControlChannel
from ftpclient.ftp.datachannel import DataChannelNegotiator
from ftpclient.ftp.dialer import Dialer
from ftpclient.ftp.exceptions import (
    FTPAuthenticationError,
    FTPError,
    FTPNotConnectedError,
    ReplyError,
)
from ftpclient.ftp.reply import (
    NameFacts,
    Reply,
    parse_211,
    parse_213_size,
    parse_257,
    parse_mlsd_line,
)
from ftpclient.ftp.transfer import BLOCK_SIZE, ProgressCallback, TransferEngine, TransferResult
from ftpclient.utils.validators import (
    validate_encoding,
    validate_host,
    validate_port,
    validate_proxy_url,
    validate_timeout,
)

logger = logging.getLogger("ftpclient.connection")

DEFAULT_FTP_PORT = 21
ANONYMOUS_USER = "anonymous"
ANONYMOUS_PASSWORD = "anonymous@"


class ConnectionState(Enum):
    """FTP connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass
class FTPConnectionConfig:
    """FTP connection configuration."""
    host: str
    port: int = DEFAULT_FTP_PORT
    username: str = ANONYMOUS_USER
    acct: str = ""
    passive_mode: bool = True
    timeout: float = 30
    encoding: str = "utf-8"
    proxy_url: str = ""
    block_size: int = BLOCK_SIZE

    def __post_init__(self):
        """Validate configuration after initialization."""
        for is_valid, error in (
            validate_host(self.host),
            validate_port(self.port),
            validate_timeout(self.timeout),
            validate_encoding(self.encoding),
            validate_proxy_url(self.proxy_url),
        ):
            if not is_valid:
                raise ValueError(error)
        if self.block_size <= 0:
            raise ValueError(f"Block size must be positive, got {self.block_size}")

    @classmethod
    def from_settings(cls, settings) -> "FTPConnectionConfig":
        """Build a configuration from persisted ClientSettings."""
        return cls(
            host=settings.host,
            port=settings.port,
            username=settings.username,
            passive_mode=settings.passive_mode,
            timeout=settings.timeout,
            encoding=settings.encoding,
            proxy_url=settings.proxy_url,
            block_size=settings.block_size,
        )


class FTPSession:
    """One logged-in control connection and the operations it offers."""

    def __init__(self, credentials: Optional[CredentialManager] = None):
        """
        Initialize the session.

        Args:
            credentials: Keyring lookup used when connect() gets no password
        """
        self._credentials = credentials or CredentialManager()
        self._config: Optional[FTPConnectionConfig] = None
        self._password: Optional[str] = None
        self._control: Optional[ControlChannel] = None
        self._negotiator: Optional[DataChannelNegotiator] = None
        self._engine: Optional[TransferEngine] = None
        self._state = ConnectionState.DISCONNECTED
        self._welcome: Optional[str] = None
        self._connected_at: Optional[datetime] = None
        self._last_activity: Optional[datetime] = None
        self._error_message: Optional[str] = None

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """True if currently connected."""
        return (
            self._state == ConnectionState.CONNECTED
            and self._control is not None
            and not self._control.is_closed
        )

    @property
    def config(self) -> Optional[FTPConnectionConfig]:
        """Current connection configuration."""
        return self._config

    @property
    def welcome(self) -> Optional[str]:
        """Banner sent by the server on connect."""
        return self._welcome

    @property
    def connected_at(self) -> Optional[datetime]:
        """Timestamp when connection was established."""
        return self._connected_at

    @property
    def last_activity(self) -> Optional[datetime]:
        """Timestamp of last successful operation."""
        return self._last_activity

    @property
    def error_message(self) -> Optional[str]:
        """Last error message if state is ERROR."""
        return self._error_message

    @property
    def control(self) -> ControlChannel:
        """
        Get the control channel.

        Raises:
            FTPNotConnectedError: If not connected
        """
        if not self.is_connected:
            raise FTPNotConnectedError("FTP access")
        return self._control

    @property
    def engine(self) -> TransferEngine:
        """
        Get the transfer engine.

        Raises:
            FTPNotConnectedError: If not connected
        """
        if not self.is_connected:
            raise FTPNotConnectedError("Transfer")
        return self._engine

    @property
    def passive(self) -> bool:
        if self._negotiator is not None:
            return self._negotiator.passive
        return self._config.passive_mode if self._config else True

    def set_passive(self, passive: bool) -> None:
        """Use PASV (True) or PORT (False) for the following transfers."""
        if self._negotiator is not None:
            self._negotiator.passive = passive
        if self._config is not None:
            self._config.passive_mode = passive

    def _make_dialer(self, config: FTPConnectionConfig) -> Dialer:
        if config.proxy_url:
            return Dialer.from_url(config.proxy_url, config.timeout)
        return Dialer.from_environment(config.timeout)

    def connect(self, config: FTPConnectionConfig, password: Optional[str] = None) -> Reply:
        """
        Establish the control connection and log in.

        Args:
            config: Connection configuration
            password: FTP password; None looks it up in the keyring

        Returns:
            The final login reply

        Raises:
            FTPConnectionError: If connection fails
            FTPAuthenticationError: If login fails
            FTPTimeoutError: If connection times out
        """
        self._config = config
        self._state = ConnectionState.CONNECTING
        self._error_message = None

        if password is None:
            password = self._credentials.get_password(config.host, config.username)

        try:
            dialer = self._make_dialer(config)
            sock = dialer.dial(config.host, config.port)
            self._control = ControlChannel(sock, config.encoding)
            self._negotiator = DataChannelNegotiator(
                self._control, dialer, config.host, config.passive_mode
            )
            self._engine = TransferEngine(self._control, self._negotiator, config.block_size)

            banner = self._control.read()
            # 120: service ready in nnn minutes, the 220 follows
            if banner.is_preliminary:
                banner = self._control.read()
            self._welcome = banner.message
            logger.info(
                f"Connected to {config.host}:{config.port} "
                f"from {self._control.local_address[0]} (proxy: {dialer.uses_proxy})"
            )

            self._state = ConnectionState.CONNECTED
            reply = self.login(config.username, password or "", config.acct)

            self._password = password
            self._connected_at = datetime.now()
            self._last_activity = self._connected_at
            return reply

        except FTPError as e:
            self._state = ConnectionState.ERROR
            self._error_message = str(e)
            self._discard_channel()
            raise

    def login(self, username: str = "", password: str = "", acct: str = "") -> Reply:
        """
        Log in with USER, then PASS and ACCT when the server asks for them.

        An empty username means anonymous; anonymous without a password
        sends "anonymous@".

        Raises:
            FTPAuthenticationError: If the final reply is not 2xx
        """
        if not username:
            username = ANONYMOUS_USER
        if username == ANONYMOUS_USER and not password:
            password = ANONYMOUS_PASSWORD

        logger.debug(f"Logging in as {username}")
        control = self.control
        try:
            reply = control.send_and_read(Command.USER, username)
            if reply.is_intermediate:
                reply = control.send_and_read(Command.PASS, password)
            if reply.is_intermediate:
                reply = control.send_and_read(Command.ACCT, acct)
        except ReplyError as e:
            raise FTPAuthenticationError(username, e.reply, e)
        if not reply.is_success:
            raise FTPAuthenticationError(username, reply)

        self._update_activity()
        return reply

    def quit(self) -> Optional[Reply]:
        """
        Send QUIT and close the connection, even if QUIT fails.

        Returns:
            The QUIT reply, or None if none could be read
        """
        if self._control is None:
            return None
        try:
            return self._control.send_and_read(Command.QUIT)
        finally:
            self._discard_channel()
            self._state = ConnectionState.DISCONNECTED
            self._connected_at = None

    def disconnect(self) -> None:
        """Close FTP connection gracefully."""
        try:
            self.quit()
        except FTPError as e:
            # Best effort close
            logger.debug(f"QUIT failed while disconnecting: {e}")

    def close(self) -> None:
        """Close the control socket without sending QUIT."""
        self._discard_channel()
        self._state = ConnectionState.DISCONNECTED
        self._connected_at = None

    def _discard_channel(self) -> None:
        if self._control is not None:
            self._control.close()
        self._control = None
        self._negotiator = None
        self._engine = None

    def clone(self) -> "FTPSession":
        """
        Open a second, independently logged-in session to the same server.

        Returns:
            New connected FTPSession

        Raises:
            FTPNotConnectedError: If this session never connected
        """
        if self._config is None:
            raise FTPNotConnectedError("Clone")
        session = FTPSession(self._credentials)
        session.connect(self._config, password=self._password or "")
        return session

    def _update_activity(self) -> None:
        """Update last activity timestamp."""
        self._last_activity = datetime.now()

    def _command(self, cmd: Command, *params: str) -> Reply:
        reply = self.control.send_and_read(cmd, *params)
        self._update_activity()
        return reply

    def noop(self) -> Reply:
        return self._command(Command.NOOP)

    def acct(self, account: str = "") -> Reply:
        """Send an ACCT command."""
        return self._command(Command.ACCT, account)

    def opts(self, *params: str) -> Reply:
        return self._command(Command.OPTS, *params)

    def abort(self) -> Reply:
        """Interrupt a running transfer (ABOR sent out of band)."""
        return self.control.abort()

    def send_port(self, host: str, port: int) -> Reply:
        """Send a PORT command for the given address."""
        if self._negotiator is None:
            raise FTPNotConnectedError("PORT")
        return self._negotiator.send_port(host, port)

    def pwd(self) -> str:
        """
        Get current working directory.

        Returns:
            Current directory path ("" for servers that do not quote it)
        """
        reply = self._command(Command.PWD)
        if reply.code != 257:
            return ""
        return parse_257(reply)

    def cwd(self, dirname: str) -> Reply:
        """
        Change current working directory.

        ".." is sent as CDUP, an empty name as ".".
        """
        if dirname == "..":
            return self._command(Command.CDUP)
        return self._command(Command.CWD, dirname or ".")

    def cdup(self) -> Reply:
        return self._command(Command.CDUP)

    def mkd(self, dirname: str) -> str:
        """
        Create a directory.

        Returns:
            The created directory name ("" for non-257 replies)
        """
        reply = self._command(Command.MKD, dirname)
        # IIS on Windows Server 2003 answers without a 257
        if reply.code != 257:
            return ""
        return parse_257(reply)

    def rmd(self, dirname: str) -> Reply:
        """Remove a directory."""
        return self._command(Command.RMD, dirname)

    def delete(self, filename: str) -> Reply:
        """
        Delete a file.

        Raises:
            ReplyError: If the reply is not 200 or 250
        """
        reply = self._command(Command.DELE, filename)
        if reply.code not in (200, 250):
            raise ReplyError(reply)
        return reply

    def rename(self, from_name: str, to_name: str) -> Reply:
        """
        Rename a file with RNFR/RNTO.

        Raises:
            ReplyError: If RNFR is not answered with a 3xx reply
        """
        with self.control.exchange():
            reply = self._command(Command.RNFR, from_name)
            if not reply.is_intermediate:
                raise ReplyError(reply)
            return self._command(Command.RNTO, to_name)

    def size(self, filename: str) -> int:
        """
        Retrieve the size of a file.

        SIZE is sent in binary mode (TYPE I); many servers refuse it in
        ASCII mode.
        """
        with self.control.exchange():
            self._command(Command.TYPE_I)
            return parse_213_size(self._command(Command.SIZE, filename))

    def feat(self) -> List[str]:
        """List the extensions the server supports beyond RFC 959."""
        return parse_211(self._command(Command.FEAT))

    def nlst(self, *params: str) -> List[str]:
        """List names in a directory, by default the current one."""
        self._update_activity()
        return self.engine.retrieve_lines(Command.NLST, *params)

    def dir(self, *params: str) -> List[str]:
        """List a directory in long form (LIST), by default the current one."""
        self._update_activity()
        return self.engine.retrieve_lines(Command.LIST, *params)

    def mlsd(self, path: str = "", facts: Sequence[str] = ()) -> List[NameFacts]:
        """
        List a directory in the RFC 3659 machine format.

        Args:
            path: Directory to list, current directory if empty
            facts: Facts to request first with OPTS MLST (e.g. type, size)

        Returns:
            List of NameFacts, names lowercased
        """
        if facts:
            self.opts("MLST", ";".join(facts) + ";")
        self._update_activity()
        lines = self.engine.retrieve_lines(Command.MLSD, path)
        return [parse_mlsd_line(line) for line in lines if line.strip()]

    def download_file(
        self,
        remote_name: str,
        local_path: Union[str, Path],
        line_mode: bool = False,
        offset: int = 0,
        callback: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """Download a file; see TransferEngine.download_file."""
        result = self.engine.download_file(remote_name, local_path, line_mode, offset, callback)
        self._update_activity()
        return result

    def upload_file(
        self,
        remote_name: str,
        local_path: Union[str, Path],
        line_mode: bool = False,
        callback: Optional[ProgressCallback] = None,
    ) -> TransferResult:
        """Upload a file into the current directory; see TransferEngine.upload_file."""
        result = self.engine.upload_file(remote_name, local_path, line_mode, callback)
        self._update_activity()
        return result

    @contextmanager
    def remote_directory(self, path: Optional[str] = None) -> Iterator[str]:
        """
        Scope in which the remote working directory may change.

        The directory current on entry is restored on every exit path. A
        failing restore is logged; it never hides the error that ended
        the block.

        Args:
            path: Directory to change into on entry (None stays put)

        Yields:
            The directory current on entry
        """
        previous = self.pwd()
        restore = previous
        if not restore and path and "/" not in path.rstrip("/"):
            # Server did not report the directory; one level down, so go back up
            restore = ".."
        if path is not None:
            self.cwd(path)
        try:
            yield previous
        finally:
            if path is not None or previous:
                try:
                    self.cwd(restore)
                except FTPError as e:
                    logger.warning(f"Could not return to remote directory {previous}: {e}")

    def __enter__(self) -> "FTPSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()
