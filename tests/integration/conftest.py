"""Fixtures for integration tests against a local pyftpdlib server."""

import pytest

from mock_ftp_server import MockFTPServer

from ftpclient.ftp.connection import FTPConnectionConfig, FTPSession


def pytest_collection_modifyitems(items):
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(autouse=True)
def no_proxy_env(monkeypatch):
    monkeypatch.delenv("all_proxy", raising=False)
    monkeypatch.delenv("ALL_PROXY", raising=False)


@pytest.fixture
def ftp_server():
    """Provide a running mock FTP server."""
    server = MockFTPServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def config(ftp_server):
    return FTPConnectionConfig(
        host=ftp_server.host,
        port=ftp_server.port,
        username=ftp_server.username,
        timeout=10,
    )


@pytest.fixture
def session(ftp_server, config):
    """Provide a logged-in session, closed after the test."""
    session = FTPSession()
    session.connect(config, password=ftp_server.password)
    yield session
    session.disconnect()
