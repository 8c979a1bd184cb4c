"""Secure credential storage for the FTP transfer client.

Uses the system keyring (Windows Credential Manager, macOS Keychain,
Linux Secret Service) to store FTP passwords; they never enter the
settings file.
"""

import logging
from typing import Optional

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger("ftpclient.credentials")


class CredentialManager:
    """Secure credential storage using system keyring."""

    SERVICE_NAME = "ftpclient"

    def _make_key(self, host: str, username: str) -> str:
        """Create the keyring user name for a host and FTP user."""
        return f"{username}@{host}"

    def save_password(self, host: str, username: str, password: str) -> bool:
        """
        Save FTP password securely.

        Args:
            host: FTP host
            username: FTP username
            password: Password to save

        Returns:
            True if saved successfully, False otherwise
        """
        try:
            keyring.set_password(self.SERVICE_NAME, self._make_key(host, username), password)
            return True
        except KeyringError as e:
            logger.warning(f"Could not store password for {username}: {e}")
            return False

    def get_password(self, host: str, username: str) -> Optional[str]:
        """
        Retrieve saved password.

        Returns:
            Password string or None if not found
        """
        try:
            return keyring.get_password(self.SERVICE_NAME, self._make_key(host, username))
        except KeyringError as e:
            logger.debug(f"Keyring lookup failed: {e}")
            return None

    def delete_password(self, host: str, username: str) -> bool:
        """
        Remove saved password.

        Returns:
            True if deleted successfully, False otherwise
        """
        try:
            keyring.delete_password(self.SERVICE_NAME, self._make_key(host, username))
            return True
        except KeyringError:
            return False

    def has_password(self, host: str, username: str) -> bool:
        return self.get_password(host, username) is not None
