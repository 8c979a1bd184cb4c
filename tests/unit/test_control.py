"""Unit tests for the control channel and command formatting."""

import socket
import threading
from unittest.mock import MagicMock

import pytest

from ftpclient.ftp.commands import Command, format_command
from ftpclient.ftp.control import ControlChannel, classify
from ftpclient.ftp.exceptions import (
    FTPNotConnectedError,
    FTPTimeoutError,
    PermanentError,
    ProtocolError,
    ReplyError,
    TemporaryError,
    TransportError,
)
from ftpclient.ftp.reply import Reply


class TestFormatCommand:
    def test_verb_only(self):
        assert format_command(Command.PWD) == "PWD"

    def test_parameters_joined_by_single_spaces(self):
        assert format_command(Command.OPTS, "MLST", "type;size;") == "OPTS MLST type;size;"

    def test_empty_and_none_parameters_dropped(self):
        assert format_command(Command.MLSD, "", None, "  ") == "MLSD"

    def test_parameters_stripped(self):
        assert format_command(Command.CWD, "  docs ") == "CWD docs"

    def test_two_word_verbs(self):
        assert format_command(Command.TYPE_I) == "TYPE I"
        assert format_command(Command.TYPE_A) == "TYPE A"


class TestClassify:
    @pytest.mark.parametrize("code", [150, 226, 331])
    def test_positive_replies_returned(self, code):
        reply = Reply(code, "ok")
        assert classify(reply) is reply

    def test_4xx_is_temporary(self):
        with pytest.raises(TemporaryError) as exc_info:
            classify(Reply(421, "Service not available"))
        assert exc_info.value.code == 421
        assert "Service not available" in str(exc_info.value)

    def test_5xx_is_permanent(self):
        with pytest.raises(PermanentError) as exc_info:
            classify(Reply(550, "No such file"))
        assert isinstance(exc_info.value, ReplyError)
        assert exc_info.value.reply.message == "No such file"

    def test_unknown_class_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            classify(Reply(600, "odd"))


class TestControlChannel:
    """Tests for command/reply exchange over a fake socket."""

    def test_send_writes_crlf_terminated_line(self, make_control):
        control, sock = make_control()
        control.send(Command.CWD, "docs")
        assert sock.data == b"CWD docs\r\n"

    def test_send_does_not_read(self, make_control):
        control, sock = make_control("200 OK")
        control.send(Command.NOOP)
        assert control.last_reply is None

    def test_send_and_read(self, make_control):
        control, sock = make_control("257 \"/\" is current directory")
        reply = control.send_and_read(Command.PWD)
        assert reply.code == 257
        assert sock.commands == ["PWD"]
        assert control.last_reply is reply

    def test_multi_line_reply_read_whole(self, make_control):
        control, _ = make_control("211-Features:", " UTF8", "211 End", "200 NOOP ok")
        assert control.send_and_read(Command.FEAT).code == 211
        assert control.send_and_read(Command.NOOP).code == 200

    def test_read_raises_permanent_error(self, make_control):
        control, _ = make_control("550 Permission denied")
        with pytest.raises(PermanentError):
            control.send_and_read(Command.MKD, "x")

    def test_read_raises_temporary_error(self, make_control):
        control, _ = make_control("450 Busy")
        with pytest.raises(TemporaryError):
            control.send_and_read(Command.DELE, "x")

    def test_eof_is_protocol_error(self, make_control):
        control, _ = make_control()
        with pytest.raises(ProtocolError):
            control.read()

    def test_send_and_read_empty_requires_2xx(self, make_control):
        control, _ = make_control("350 Ready for RNTO")
        with pytest.raises(ReplyError):
            control.send_and_read_empty(Command.RNFR, "a")

    def test_send_and_read_empty_accepts_2xx(self, make_control):
        control, _ = make_control("250 OK")
        assert control.send_and_read_empty(Command.CWD, "a").code == 250

    def test_latin1_round_trip(self, make_socket):
        sock = make_socket("250 OK")
        control = ControlChannel(sock, "latin-1")
        control.send_and_read(Command.CWD, "café")
        assert sock.data == b"CWD caf\xe9\r\n"

    def test_password_not_logged(self, make_control, caplog):
        control, sock = make_control("230 Logged in")
        with caplog.at_level("DEBUG", logger="ftpclient.control"):
            control.send_and_read(Command.PASS, "hunter2")
        assert sock.commands == ["PASS hunter2"]
        assert "hunter2" not in caplog.text
        assert "PASS ****" in caplog.text

    def test_socket_error_wrapped_and_closes(self, make_socket):
        sock = make_socket()
        sock.sendall = MagicMock(side_effect=ConnectionResetError("reset"))
        control = ControlChannel(sock)

        with pytest.raises(TransportError):
            control.send(Command.NOOP)

        assert control.is_closed is True
        assert sock.closed is True
        with pytest.raises(FTPNotConnectedError):
            control.send(Command.NOOP)

    def test_send_timeout(self, make_socket):
        sock = make_socket()
        sock.sendall = MagicMock(side_effect=socket.timeout("timed out"))
        control = ControlChannel(sock)
        with pytest.raises(FTPTimeoutError):
            control.send(Command.NOOP)
        assert control.is_closed is True

    def test_read_timeout_closes_channel(self, make_socket):
        sock = make_socket()
        sock.makefile = MagicMock(return_value=MagicMock(
            readline=MagicMock(side_effect=socket.timeout("timed out"))
        ))
        control = ControlChannel(sock)

        with pytest.raises(FTPTimeoutError) as exc_info:
            control.read()

        assert exc_info.value.timeout == 30
        assert control.is_closed is True
        assert sock.closed is True
        with pytest.raises(FTPNotConnectedError):
            control.send_and_read(Command.PWD)

    def test_close_is_idempotent(self, make_control):
        control, sock = make_control()
        control.close()
        control.close()
        assert sock.closed is True

    def test_abort_sends_out_of_band(self, make_control):
        control, sock = make_control("426 Connection closed", "226 Abort successful")
        reply = control.abort()
        assert reply.code == 426
        assert sock.oob == [b"ABOR\r\n"]
        # The 226 is left for the interrupted transfer to read
        assert control.read().code == 226

    def test_abort_without_transfer(self, make_control):
        control, _ = make_control("225 No transfer to abort")
        assert control.abort().code == 225
        assert control.take_abort() is True
        assert control.take_abort() is False

    def test_abort_unexpected_reply(self, make_control):
        control, _ = make_control("200 Huh")
        with pytest.raises(ProtocolError):
            control.abort()

    def test_exchange_serializes_pairs(self, make_control):
        """Another thread's send_and_read waits until the exchange ends."""
        control, sock = make_control("227 Entering Passive Mode (127,0,0,1,4,1)", "150 Go", "200 NOOP ok")
        other_done = threading.Event()

        def other():
            control.send_and_read(Command.NOOP)
            other_done.set()

        with control.exchange():
            control.send_and_read(Command.PASV)
            thread = threading.Thread(target=other)
            thread.start()
            assert not other_done.wait(0.2)
            control.send_and_read(Command.RETR, "x")

        thread.join(timeout=5)
        assert other_done.is_set()
        assert sock.commands == ["PASV", "RETR x", "NOOP"]
