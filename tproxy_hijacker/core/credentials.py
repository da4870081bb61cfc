"""
Credential handling for deploying the topology on a remote host over SSH.
"""

import getpass
import os
import sys
from typing import Dict, Optional

import paramiko

from .logging_config import get_logger

logger = get_logger(__name__)

KEY_CLASSES = (paramiko.RSAKey, paramiko.Ed25519Key, paramiko.ECDSAKey)


class CredentialManager:
    """Prompts for and caches SSH passwords and key passphrases."""

    def __init__(self):
        self._cache: Dict[str, str] = {}
        self._non_interactive = False
        self._allow_ssh_agent = True

    @property
    def non_interactive(self) -> bool:
        return self._non_interactive

    @property
    def allow_ssh_agent(self) -> bool:
        return self._allow_ssh_agent and bool(os.environ.get("SSH_AUTH_SOCK"))

    def set_non_interactive(self, non_interactive: bool):
        """Set non-interactive mode (no prompts)."""
        self._non_interactive = non_interactive
        if non_interactive:
            logger.info("Non-interactive mode enabled - all prompts will fail")

    def set_allow_ssh_agent(self, allow: bool):
        """Enable or disable SSH agent usage."""
        self._allow_ssh_agent = allow
        if not allow:
            logger.info("SSH agent usage disabled")

    def get_ssh_password(self, username: str, host: str) -> Optional[str]:
        """Return the cached SSH password for ``username@host``, prompting once."""
        cache_key = f"ssh:{username}@{host}"
        if cache_key in self._cache:
            return self._cache[cache_key]

        password = self._prompt(f"Enter SSH password for {username}@{host}: ")
        if password:
            self._cache[cache_key] = password
        return password

    def load_private_key(self, key_path: str) -> Optional[paramiko.PKey]:
        """
        Load a private key, prompting for its passphrase when it has one.

        Args:
            key_path: Path to the private key file

        Returns:
            Loaded key or None if it could not be loaded
        """
        key_path = os.path.expanduser(key_path)
        if not os.path.exists(key_path):
            logger.error("Private key not found: %s", key_path)
            return None

        passphrase = self._cache.get(f"passphrase:{key_path}")
        for attempt in range(2):
            for key_class in KEY_CLASSES:
                try:
                    key = key_class.from_private_key_file(key_path, password=passphrase)
                    logger.debug("Loaded %s from %s", key_class.__name__, key_path)
                    return key
                except paramiko.PasswordRequiredException:
                    break
                except paramiko.SSHException:
                    continue
            else:
                logger.error("Unable to load private key from %s", key_path)
                return None

            if attempt == 1 or passphrase:
                logger.error("Invalid passphrase for %s", key_path)
                return None

            passphrase = self._prompt(f"Enter passphrase for {key_path}: ")
            if not passphrase:
                return None
            self._cache[f"passphrase:{key_path}"] = passphrase

        return None

    def _prompt(self, prompt: str) -> Optional[str]:
        if self._non_interactive:
            logger.error("Cannot prompt in non-interactive mode: %s", prompt.strip())
            return None

        if not sys.stdin.isatty():
            logger.error("Cannot prompt for credentials: not running in a terminal")
            return None

        try:
            value = getpass.getpass(prompt)
            return value if value else None
        except (KeyboardInterrupt, EOFError):
            logger.info("Credential prompt cancelled by user")
            return None

    def clear_cache(self):
        """Clear credential cache."""
        self._cache.clear()
        logger.debug("Credential cache cleared")


# Global credential manager instance
credential_manager = CredentialManager()
