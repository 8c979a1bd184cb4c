"""FTP command verbs.

The enum doubles as the read-only verb table used to build wire commands.
"""

from enum import Enum


CRLF = "\r\n"


class Command(Enum):
    """FTP protocol verb as written on the control connection."""
    NONE = ""
    USER = "USER"
    PASS = "PASS"
    ACCT = "ACCT"
    ABOR = "ABOR"
    PORT = "PORT"
    PASV = "PASV"
    TYPE_A = "TYPE A"
    TYPE_I = "TYPE I"
    NLST = "NLST"
    LIST = "LIST"
    MLSD = "MLSD"
    FEAT = "FEAT"
    OPTS = "OPTS"
    RETR = "RETR"
    STOR = "STOR"
    REST = "REST"
    RNFR = "RNFR"
    RNTO = "RNTO"
    DELE = "DELE"
    CWD = "CWD"
    CDUP = "CDUP"
    SIZE = "SIZE"
    MKD = "MKD"
    RMD = "RMD"
    PWD = "PWD"
    NOOP = "NOOP"
    QUIT = "QUIT"


# Commands that open a data connection
TRANSFER_COMMANDS = frozenset({
    Command.RETR,
    Command.STOR,
    Command.LIST,
    Command.NLST,
    Command.MLSD,
})


def format_command(cmd: Command, *params: str) -> str:
    """
    Build the command line for a verb and its parameters.

    Parameters are stripped; empty ones are dropped. The result has no
    trailing CRLF.

    Args:
        cmd: Protocol verb
        *params: Optional parameters

    Returns:
        Command line text, e.g. "RETR notes.txt"
    """
    parts = [cmd.value]
    for param in params:
        if param is None:
            continue
        param = str(param).strip()
        if param:
            parts.append(param)
    return " ".join(parts)
