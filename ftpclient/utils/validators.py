"""Input validators for the FTP transfer client.

Provides validation functions for connection settings and remote paths.
"""

import codecs
import re
from typing import Optional, Tuple
from urllib.parse import urlparse


# IPv4 address pattern
IPV4_PATTERN = re.compile(
    r'^(?:(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)\.){3}'
    r'(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)$'
)

# Hostname pattern (simplified)
HOSTNAME_PATTERN = re.compile(
    r'^(?=.{1,253}$)(?!-)[A-Za-z0-9-]{1,63}(?<!-)(\.[A-Za-z0-9-]{1,63})*$'
)


def validate_ip_address(ip: str) -> Tuple[bool, Optional[str]]:
    """
    Validate an IPv4 address.

    Args:
        ip: IP address string to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not ip or not ip.strip():
        return False, "IP address is required"

    ip = ip.strip()

    if IPV4_PATTERN.match(ip):
        return True, None

    return False, f"Invalid IP address format: {ip}"


def validate_host(host: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a host (IP address or hostname).

    Args:
        host: Host string to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not host or not host.strip():
        return False, "Host is required"

    host = host.strip()

    is_valid_ip, _ = validate_ip_address(host)
    if is_valid_ip or HOSTNAME_PATTERN.match(host):
        return True, None

    return False, f"Invalid host: {host}. Must be a valid IP address or hostname."


def validate_port(port: int) -> Tuple[bool, Optional[str]]:
    """
    Validate a port number.

    Args:
        port: Port number to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(port, int):
        try:
            port = int(port)
        except (ValueError, TypeError):
            return False, "Port must be a number"

    if port < 1 or port > 65535:
        return False, f"Port must be between 1 and 65535, got {port}"

    return True, None


def validate_timeout(timeout: float) -> Tuple[bool, Optional[str]]:
    """
    Validate a timeout value in seconds.

    Args:
        timeout: Timeout in seconds

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(timeout, (int, float)):
        try:
            timeout = float(timeout)
        except (ValueError, TypeError):
            return False, "Timeout must be a number"

    if timeout < 1 or timeout > 300:
        return False, f"Timeout must be between 1 and 300 seconds, got {timeout}"

    return True, None


def validate_encoding(encoding: str) -> Tuple[bool, Optional[str]]:
    """Check that encoding names a known text codec."""
    try:
        codecs.lookup(encoding)
    except (LookupError, TypeError):
        return False, f"Unknown encoding: {encoding}"
    return True, None


def validate_proxy_url(url: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a SOCKS5 proxy URL (empty means no proxy).

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not url:
        return True, None

    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("socks5", "socks5h"):
        return False, f"Proxy URL must use socks5://, got {url.split('://')[0]}"
    if not parsed.hostname:
        return False, "Proxy URL has no host"
    return True, None


def validate_ftp_path(path: str) -> Tuple[bool, Optional[str]]:
    """
    Validate a remote root directory.

    Args:
        path: FTP path to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not path or not path.strip():
        return False, "FTP path is required"

    if "\r" in path or "\n" in path:
        return False, "FTP path cannot contain line breaks"

    return True, None
