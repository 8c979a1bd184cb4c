"""FTP operations module for the FTP transfer client.

This module handles all FTP-related functionality:
- FTPSession: Connection management with state tracking
- ControlChannel: Command/reply exchange on the control connection
- DataChannelNegotiator: PASV/PORT data connection setup
- TransferEngine: Binary and line mode transfers
- TreeOrchestrator: Recursive directory tree transfers
- Exceptions: FTP-specific error types
"""

from ftpclient.ftp.connection import ConnectionState, FTPConnectionConfig, FTPSession
from ftpclient.ftp.exceptions import (
    ConfigurationError,
    DirectoryNonExistent,
    FTPError,
    PermanentError,
    ProtocolError,
    ReplyError,
    TemporaryError,
    TransportError,
)
from ftpclient.ftp.reply import Reply
from ftpclient.ftp.transfer import TransferProgress, TransferResult
from ftpclient.ftp.tree import TreeOrchestrator, TreeTransferResult

__all__ = [
    "ConnectionState",
    "FTPConnectionConfig",
    "FTPSession",
    "ConfigurationError",
    "DirectoryNonExistent",
    "FTPError",
    "PermanentError",
    "ProtocolError",
    "ReplyError",
    "TemporaryError",
    "TransportError",
    "Reply",
    "TransferProgress",
    "TransferResult",
    "TreeOrchestrator",
    "TreeTransferResult",
]
