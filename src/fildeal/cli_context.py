"""
CLI Context for managing application dependencies.

Provides a clean way to manage CLI-level dependencies like settings, the
chain reader and the key custodian, avoiding global state and enabling
proper dependency injection.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .chain import GatewayChainReader
from .keystore import KeystoreCustodian
from .settings import Settings, create_settings_from_env


@dataclass
class CLIContext:
    """
    Shared context for CLI commands.

    Manages application-level dependencies that are initialized once and
    shared across a CLI command execution.
    """
    settings: Settings
    _chain: Optional[GatewayChainReader] = None
    _custodian: Optional[KeystoreCustodian] = None

    @classmethod
    def from_env(cls) -> CLIContext:
        """
        Create CLI context from environment variables.

        Returns:
            CLIContext with settings loaded from environment
        """
        return cls(settings=create_settings_from_env())

    @property
    def chain(self) -> GatewayChainReader:
        """Get or create the gateway chain reader (lazy initialization)."""
        if self._chain is None:
            self._chain = GatewayChainReader(self.settings)
        return self._chain

    @property
    def custodian(self) -> KeystoreCustodian:
        """
        Get or create the key custodian (lazy initialization).

        Without a configured keystore the custodian holds no keys and every
        signing request fails with SigningError.
        """
        if self._custodian is None:
            network = self.settings.address_prefix
            if self.settings.keystore_path:
                self._custodian = KeystoreCustodian.from_file(self.settings.keystore_path, network=network)
            else:
                self._custodian = KeystoreCustodian(network=network)
        return self._custodian
