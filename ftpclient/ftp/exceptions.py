"""FTP-specific exceptions for the FTP transfer client.

Custom exception hierarchy for FTP operations. Errors raised from a server
reply keep the reply attached so callers can tell server-reported reasons
apart from local or transport failures.
"""

from typing import Optional


class FTPError(Exception):
    """Base exception for all FTP-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception = None,
        reply=None
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.reply = reply

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class TransportError(FTPError):
    """Socket-level failure. The session is unusable afterwards."""


class FTPConnectionError(TransportError):
    """Failed to establish a TCP connection."""

    def __init__(self, host: str, port: int, original_error: Exception = None):
        self.host = host
        self.port = port
        message = f"Failed to connect to {host}:{port}"
        super().__init__(message, original_error)


class FTPTimeoutError(TransportError):
    """FTP operation timed out."""

    def __init__(self, operation: str = "Operation", timeout: float = 30):
        self.timeout = timeout
        message = f"{operation} timed out after {timeout} seconds"
        super().__init__(message)


class ProtocolError(FTPError):
    """The server sent text that does not follow the reply grammar."""

    def __init__(self, message: str, reply=None):
        super().__init__(f"Protocol error: {message}", reply=reply)


class ReplyError(FTPError):
    """Well-formed reply that does not allow the operation to go on."""

    def __init__(self, reply, message: Optional[str] = None):
        text = reply.message if reply is not None else ""
        super().__init__(message or f"Reply error: {text}", reply=reply)

    @property
    def code(self) -> Optional[int]:
        """Numeric reply code, if a reply is attached."""
        return self.reply.code if self.reply is not None else None


class TemporaryError(ReplyError):
    """4xx reply: transient negative completion."""

    def __init__(self, reply):
        super().__init__(reply, f"Temporary error: {reply.message}")


class PermanentError(ReplyError):
    """5xx reply: permanent negative completion."""

    def __init__(self, reply):
        super().__init__(reply, f"Permanent error: {reply.message}")


class FTPAuthenticationError(ReplyError):
    """FTP authentication (login) failed."""

    def __init__(self, username: str, reply=None, original_error: Exception = None):
        self.username = username
        super().__init__(reply, f"Authentication failed for user '{username}'")
        self.original_error = original_error


class ConfigurationError(FTPError):
    """Invalid request made by the caller (bad parameter combination)."""


class FTPNotConnectedError(FTPError):
    """Operation attempted without active FTP connection."""

    def __init__(self, operation: str = "Operation"):
        message = f"{operation} requires an active FTP connection"
        super().__init__(message)


class DirectoryNonExistent(FTPError):
    """The remote folder does not exist and can not be removed."""

    def __init__(self, path: str, original_error: Exception = None):
        self.path = path
        message = f"The folder '{path}' does not exist and can not be removed"
        super().__init__(message, original_error)


class FTPTransferError(FTPError):
    """Failed to move a single file over a data connection."""

    def __init__(
        self,
        local_path: str,
        remote_path: str,
        original_error: Exception = None
    ):
        self.local_path = local_path
        self.remote_path = remote_path
        message = f"Failed to transfer '{local_path}' <-> '{remote_path}'"
        reply = getattr(original_error, "reply", None)
        super().__init__(message, original_error, reply)


class FTPTransferAbortedError(FTPError):
    """A transfer was interrupted with ABOR before it completed."""

    def __init__(self, remote_path: str, reply=None):
        self.remote_path = remote_path
        super().__init__(f"Transfer of '{remote_path}' was aborted", reply=reply)
