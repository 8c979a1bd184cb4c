"""Data connection negotiation.

Each transfer gets a fresh data connection, set up either passively
(PASV: the server listens, the client dials) or actively (PORT: the
client listens, the server dials in).
"""

import logging
import socket
from dataclasses import dataclass
from typing import Optional, Tuple

from ftpclient.ftp.commands import Command
from ftpclient.ftp.control import ControlChannel
from ftpclient.ftp.dialer import Dialer
from ftpclient.ftp.exceptions import FTPTimeoutError, ReplyError, TransportError
from ftpclient.ftp.reply import Reply, parse_150_size, parse_227

logger = logging.getLogger("ftpclient.datachannel")


@dataclass
class DataConnection:
    """A negotiated data connection ready for streaming."""
    sock: socket.socket
    expected_size: Optional[int]
    reply: Reply

    def close(self) -> None:
        try:
            self.sock.close()
        except OSError as e:
            logger.debug(f"Error closing data socket: {e}")


def format_port_argument(host: str, port: int) -> str:
    """Encode host and port as h1,h2,h3,h4,p1,p2."""
    octets = host.split(".")
    return ",".join(octets + [str(port >> 8), str(port & 0xFF)])


class DataChannelNegotiator:
    """Opens the data connection for one transfer command."""

    def __init__(
        self,
        control: ControlChannel,
        dialer: Dialer,
        host: str,
        passive: bool = True,
    ):
        """
        Initialize the negotiator.

        Args:
            control: Control channel of the session
            dialer: Dialer used for passive connections
            host: Host name the control connection was dialed with
            passive: True for PASV, False for PORT
        """
        self._control = control
        self._dialer = dialer
        self._host = host
        self.passive = passive

    def make_pasv(self) -> Tuple[str, int]:
        """Send PASV and return the (host, port) the server listens on."""
        reply = self._control.send_and_read(Command.PASV)
        return parse_227(reply)

    def send_port(self, host: str, port: int) -> Reply:
        """Send a PORT command for host:port."""
        return self._control.send_and_read(Command.PORT, format_port_argument(host, port))

    def make_port(self) -> socket.socket:
        """
        Listen on an ephemeral port of the control connection's local
        address and announce it with PORT.

        Returns:
            Listening socket
        """
        local_ip = self._control.local_address[0]
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.bind((local_ip, 0))
            listener.listen(1)
            listener.settimeout(self._dialer.timeout)
            port = listener.getsockname()[1]
            logger.debug(f"Listening locally at {local_ip} on port {port}")
            self.send_port(local_ip, port)
        except BaseException:
            listener.close()
            raise
        return listener

    def _dial_passive(self) -> socket.socket:
        host, port = self.make_pasv()
        # Servers behind NAT report their internal address
        if host != self._control.remote_address[0]:
            logger.debug(
                f"Server answered PASV with {host}, using the original host {self._host} instead"
            )
            host = self._host
        return self._dialer.dial(host, port)

    def transfer_cmd(self, cmd: Command, *params: str, rest: Optional[int] = None) -> DataConnection:
        """
        Set up a data connection and start a transfer command.

        Args:
            cmd: RETR, STOR, LIST, NLST or MLSD
            *params: Command parameters
            rest: Byte offset sent with REST before the command

        Returns:
            DataConnection with the expected size (None if unknown)

        Raises:
            ReplyError: If the server does not answer with a 1xx reply
        """
        sock: Optional[socket.socket] = None
        listener: Optional[socket.socket] = None

        with self._control.exchange():
            try:
                if self.passive:
                    sock = self._dial_passive()
                else:
                    listener = self.make_port()

                if rest is not None:
                    reply = self._control.send_and_read(Command.REST, str(rest))
                    if not reply.is_intermediate:
                        raise ReplyError(reply)

                reply = self._control.send_and_read(cmd, *params)
                # Some servers send a 200 before the 1xx; discard it
                if reply.is_success:
                    reply = self._control.read()
                if not reply.is_preliminary:
                    raise ReplyError(reply)

                if listener is not None:
                    try:
                        sock, _ = listener.accept()
                    except socket.timeout:
                        raise FTPTimeoutError("Waiting for the data connection", self._dialer.timeout)
                    except OSError as e:
                        raise TransportError("Accepting the data connection failed", e)
                    sock.settimeout(self._dialer.timeout)
            except BaseException:
                if sock is not None:
                    sock.close()
                raise
            finally:
                if listener is not None:
                    listener.close()

        expected_size = parse_150_size(reply) if reply.code == 150 else None
        logger.debug(f"Data connection open for {cmd.value}, expected size: {expected_size}")
        return DataConnection(sock, expected_size, reply)
