"""TCP dialer for control and data connections.

Connections are made directly or through a SOCKS5 proxy taken from an
explicit URL or from the ``all_proxy`` environment variable.
"""

import logging
import os
import socket
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote, urlparse

import socks

from ftpclient.ftp.exceptions import (
    ConfigurationError,
    FTPConnectionError,
    FTPTimeoutError,
)

logger = logging.getLogger("ftpclient.dialer")

DEFAULT_SOCKS_PORT = 1080
PROXY_ENV_VARS = ("all_proxy", "ALL_PROXY")


@dataclass(frozen=True)
class ProxyConfig:
    """SOCKS5 proxy endpoint."""
    host: str
    port: int = DEFAULT_SOCKS_PORT
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_url(cls, url: str) -> "ProxyConfig":
        """
        Parse a socks5:// URL.

        Raises:
            ConfigurationError: If the scheme is not socks5 or host is missing
        """
        parsed = urlparse(url)
        if parsed.scheme.lower() not in ("socks5", "socks5h"):
            raise ConfigurationError(f"Unsupported proxy scheme '{parsed.scheme}'")
        if not parsed.hostname:
            raise ConfigurationError("Proxy URL has no host")
        return cls(
            host=parsed.hostname,
            port=parsed.port or DEFAULT_SOCKS_PORT,
            username=unquote(parsed.username) if parsed.username else None,
            password=unquote(parsed.password) if parsed.password else None,
        )


class Dialer:
    """Opens TCP connections, optionally through a SOCKS5 proxy."""

    def __init__(self, proxy: Optional[ProxyConfig] = None, timeout: Optional[float] = None):
        """
        Initialize the dialer.

        Args:
            proxy: SOCKS5 proxy to route through, None for direct
            timeout: Socket timeout in seconds (None blocks forever)
        """
        self._proxy = proxy
        self._timeout = timeout

    @classmethod
    def direct(cls, timeout: Optional[float] = None) -> "Dialer":
        return cls(None, timeout)

    @classmethod
    def from_url(cls, proxy_url: str, timeout: Optional[float] = None) -> "Dialer":
        """Dialer routed through the proxy at proxy_url."""
        return cls(ProxyConfig.from_url(proxy_url), timeout)

    @classmethod
    def from_environment(cls, timeout: Optional[float] = None) -> "Dialer":
        """
        Dialer configured from the all_proxy environment variable.

        Non-SOCKS5 values are ignored and a direct dialer is returned.
        """
        for name in PROXY_ENV_VARS:
            value = os.environ.get(name)
            if not value:
                continue
            try:
                dialer = cls.from_url(value, timeout)
            except ConfigurationError as e:
                logger.warning(f"Ignoring {name}: {e}")
                break
            logger.debug(f"Using proxy from {name}")
            return dialer
        return cls.direct(timeout)

    @property
    def proxy(self) -> Optional[ProxyConfig]:
        return self._proxy

    @property
    def uses_proxy(self) -> bool:
        return self._proxy is not None

    @property
    def timeout(self) -> Optional[float]:
        return self._timeout

    def dial(self, host: str, port: int) -> socket.socket:
        """
        Connect to host:port.

        Returns:
            Connected socket

        Raises:
            FTPTimeoutError: If the connection attempt times out
            FTPConnectionError: On any other socket failure
        """
        try:
            if self._proxy is None:
                return socket.create_connection((host, port), timeout=self._timeout)
            return socks.create_connection(
                (host, port),
                timeout=self._timeout,
                proxy_type=socks.SOCKS5,
                proxy_addr=self._proxy.host,
                proxy_port=self._proxy.port,
                proxy_rdns=True,
                proxy_username=self._proxy.username,
                proxy_password=self._proxy.password,
            )
        except socket.timeout:
            raise FTPTimeoutError(f"Connecting to {host}:{port}", self._timeout)
        except (socks.ProxyError, OSError) as e:
            logger.debug(f"Dial error, address: {host}:{port}, proxy enabled: {self.uses_proxy}")
            raise FTPConnectionError(host, port, e)
