"""Reply codec for the FTP control connection.

Turns raw server text into Reply objects and extracts the structured
payload of the replies the client depends on (227, 150, 257, 211, 213),
plus directory listing lines produced by MLSD and LIST.

Reply grammar (RFC 959 section 4.2):

    single line:  "<code> <text>"
    multi-line:   "<code>-<text>"
                  ...any lines...
                  "<code> <text>"

Nothing here performs I/O; read_reply() pulls lines from a readline
callable supplied by the caller.
"""

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ftpclient.ftp.exceptions import ProtocolError


# Longest control line accepted before the reply is considered garbage
MAXLINE = 8192

PASV_PATTERN = re.compile(r"(\d+),(\d+),(\d+),(\d+),(\d+),(\d+)")
SIZE_150_PATTERN = re.compile(r"\((\d+) bytes\)", re.IGNORECASE)


@dataclass(frozen=True)
class Reply:
    """A complete (possibly multi-line) server reply."""
    code: int
    message: str
    raw_lines: Tuple[str, ...] = ()

    @property
    def first_digit(self) -> int:
        """Reply class: 1 preliminary, 2 success, 3 intermediate, 4/5 error."""
        return self.code // 100

    @property
    def is_preliminary(self) -> bool:
        return self.first_digit == 1

    @property
    def is_success(self) -> bool:
        return self.first_digit == 2

    @property
    def is_intermediate(self) -> bool:
        return self.first_digit == 3

    @property
    def is_error(self) -> bool:
        return self.first_digit in (4, 5)

    @property
    def text(self) -> str:
        """The reply as the server sent it, lines joined with newlines."""
        return "\n".join(self.raw_lines) if self.raw_lines else f"{self.code} {self.message}"

    def __str__(self) -> str:
        return self.text


@dataclass
class NameFacts:
    """One MLSD entry: a lowercased name and its facts."""
    name: str
    facts: Dict[str, str] = field(default_factory=dict)
    original_name: str = ""

    @property
    def is_directory(self) -> bool:
        return self.facts.get("type", "").lower() in ("dir", "cdir", "pdir")


@dataclass
class ListEntry:
    """One line of a Unix style LIST (long form) listing."""
    name: str
    is_directory: bool
    permissions: str


def _split_code(line: str) -> Tuple[str, str]:
    """Return (code, separator) of a reply line, validating the code."""
    code = line[:3]
    if len(code) < 3 or not code.isdigit():
        raise ProtocolError(f"invalid reply line: {line!r}")
    return code, line[3:4]


def _decode(raw: bytes, encoding: str) -> str:
    if len(raw) > MAXLINE:
        raise ProtocolError(f"reply line exceeds {MAXLINE} bytes")
    line = raw.decode(encoding, "surrogateescape")
    if line.endswith("\r\n"):
        return line[:-2]
    if line.endswith(("\r", "\n")):
        return line[:-1]
    return line


def parse_reply(lines: List[str]) -> Reply:
    """
    Build a Reply from the text lines of one complete reply.

    Args:
        lines: Reply lines without line terminators

    Returns:
        Reply instance

    Raises:
        ProtocolError: If the lines do not form one well-formed reply
    """
    if not lines:
        raise ProtocolError("empty reply")

    code, separator = _split_code(lines[0])
    if separator not in (" ", "-", ""):
        raise ProtocolError(f"invalid reply line: {lines[0]!r}")

    if separator != "-":
        if len(lines) != 1:
            raise ProtocolError("single line reply followed by extra lines")
        return Reply(int(code), lines[0][4:], (lines[0],))

    last = lines[-1]
    if len(lines) < 2 or last[:3] != code or last[3:4] != " ":
        raise ProtocolError(f"unterminated multi-line reply {code}")

    body = [lines[0][4:]] + list(lines[1:-1]) + [last[4:]]
    return Reply(int(code), "\n".join(body), tuple(lines))


def read_reply(readline: Callable[..., bytes], encoding: str = "latin-1") -> Reply:
    """
    Read one complete reply from a line source.

    Args:
        readline: Callable returning one line of bytes per call, b"" at EOF
        encoding: Text encoding of the control connection

    Returns:
        Reply instance

    Raises:
        ProtocolError: On EOF before the reply ends or a malformed code
    """
    raw = readline(MAXLINE + 1)
    if not raw:
        raise ProtocolError("connection closed before a reply was received")

    first = _decode(raw, encoding)
    code, separator = _split_code(first)
    lines = [first]

    if separator == "-":
        while True:
            raw = readline(MAXLINE + 1)
            if not raw:
                raise ProtocolError(f"connection closed inside multi-line reply {code}")
            line = _decode(raw, encoding)
            lines.append(line)
            # Interior lines may start with the same digits; only "<code> " ends it
            if line[:3] == code and line[3:4] == " ":
                break

    return parse_reply(lines)


def parse_227(reply: Reply) -> Tuple[str, int]:
    """
    Parse the reply to PASV.

    Args:
        reply: Reply with code 227

    Returns:
        Tuple of (host, port)

    Raises:
        ProtocolError: If the code is not 227 or no address is present
    """
    if reply.code != 227:
        raise ProtocolError(f"unexpected reply to PASV: {reply.text}", reply)

    match = PASV_PATTERN.search(reply.message)
    if match is None:
        raise ProtocolError(f"no address in PASV reply: {reply.text}", reply)

    numbers = [int(group) for group in match.groups()]
    host = ".".join(str(n) for n in numbers[:4])
    port = (numbers[4] << 8) + numbers[5]
    return host, port


def parse_150_size(reply: Reply) -> Optional[int]:
    """
    Extract the expected transfer size from a 150 reply.

    Returns:
        Size in bytes, or None when the server did not announce one
    """
    if reply.code != 150:
        return None
    match = SIZE_150_PATTERN.search(reply.message)
    if match is None:
        return None
    return int(match.group(1))


def parse_257(reply: Reply) -> str:
    """
    Extract the directory name from a MKD or PWD reply.

    Doubled quotes inside the name stand for one literal quote; a name whose
    closing quote is missing ends at its last doubled quote. Servers that do
    not quote the name get an empty string back.

    Raises:
        ProtocolError: If the code is not 257
    """
    if reply.code != 257:
        raise ProtocolError(f"unexpected reply to PWD/MKD: {reply.text}", reply)

    text = reply.message
    if not text.startswith('"'):
        return ""

    dirname = []
    i, n = 1, len(text)
    while i < n:
        c = text[i]
        i += 1
        if c == '"':
            if i >= n or text[i] != '"':
                break
            i += 1
            # A doubled quote with no closing quote left is the last character
            if '"' not in text[i:]:
                dirname.append(c)
                break
        dirname.append(c)
    return "".join(dirname)


def parse_211(reply: Reply) -> List[str]:
    """
    Extract the feature list from a FEAT reply.

    Raises:
        ProtocolError: If the code is not 211
    """
    if reply.code != 211:
        raise ProtocolError(f"unexpected reply to FEAT: {reply.text}", reply)

    # Only the opening and closing status lines are dropped
    code = str(reply.code)
    lines = list(reply.raw_lines)
    if lines and lines[0].startswith(code):
        lines = lines[1:]
    if lines and lines[-1].startswith(code + " "):
        lines = lines[:-1]
    return [line.strip() for line in lines if line.strip()]


def parse_213_size(reply: Reply) -> int:
    """
    Extract the size from a SIZE reply.

    Raises:
        ProtocolError: If the code is not 213 or the size is not a number
    """
    if reply.code != 213:
        raise ProtocolError(f"unexpected reply to SIZE: {reply.text}", reply)
    try:
        return int(reply.message.strip())
    except ValueError:
        raise ProtocolError(f"invalid size in reply: {reply.text}", reply)


def parse_mlsd_line(line: str) -> NameFacts:
    """
    Parse one MLSD line.

    Servers write "fact=value;fact=value; name". The older name-first
    layout "name fact=value;..." is accepted as well.

    Raises:
        ProtocolError: If the line has no facts part
    """
    line = line.rstrip("\r\n")
    head, sep, tail = line.partition(" ")
    if not sep:
        raise ProtocolError(f"invalid MLSD line: {line!r}")

    if "=" in head and head.endswith(";"):
        facts_part, name = head, tail
    else:
        name, facts_part = head, tail.strip()

    facts = {}
    for fact in facts_part.split(";"):
        if not fact:
            continue
        key, _, value = fact.partition("=")
        facts[key.lower()] = value
    return NameFacts(name.lower(), facts, name)


def parse_list_line(line: str) -> Optional[ListEntry]:
    """
    Parse one Unix style LIST line.

    Returns:
        ListEntry, or None for lines that carry no entry ("total 12")
    """
    parts = line.split(None, 8)
    if len(parts) < 2 or parts[0].lower() == "total":
        return None

    permissions = parts[0]
    name = parts[-1]
    if permissions.startswith("l") and " -> " in name:
        name = name.split(" -> ", 1)[0]
    return ListEntry(name, permissions.startswith("d"), permissions)
