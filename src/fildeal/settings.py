"""
Settings and configuration for fildeal.

Centralizes configuration values and provides validation with fail-fast behavior.
Loads settings from environment variables at collaborator construction time.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Optional

__all__ = ["Settings", "create_settings_from_env", "NETWORK_PREFIXES"]

# Address network character per chain network
NETWORK_PREFIXES = {
    "mainnet": "f",
    "testnet": "t",
}


@dataclass(frozen=True)
class Settings:
    """
    Configuration settings for fildeal collaborators.

    Chain Reader Settings:
        gateway_url: Lotus gateway JSON-RPC endpoint (required)
        gateway_token: Bearer token for the gateway
        network: "mainnet" or "testnet"; selects the address prefix
        rpc_timeout_s: HTTP request timeout in seconds

    Negotiation Settings:
        deal_timeout_s: Deadline for the request/response exchange
        max_frame_size: Largest response frame accepted, in bytes

    Key Custodian Settings:
        keystore_path: YAML keystore used by the local custodian
    """
    gateway_url: str
    gateway_token: Optional[str] = None
    network: str = "mainnet"
    rpc_timeout_s: float = 30.0
    deal_timeout_s: float = 60.0
    max_frame_size: int = 1 << 20
    keystore_path: Optional[str] = None

    def __post_init__(self):
        """Validate settings on construction."""
        if not self.gateway_url:
            raise ValueError("gateway_url is required")

        url_pattern = r"^(?:https?|wss?)://[a-zA-Z0-9.-]+(?::[0-9]+)?(?:/.*)?$"
        if not re.match(url_pattern, self.gateway_url):
            raise ValueError(f"Invalid gateway_url format: {self.gateway_url}")

        if self.network not in NETWORK_PREFIXES:
            raise ValueError(
                f"Invalid network: {self.network}. Use one of {', '.join(sorted(NETWORK_PREFIXES))}"
            )

        if self.rpc_timeout_s <= 0:
            raise ValueError(f"rpc_timeout_s must be positive, got {self.rpc_timeout_s}")

        if self.deal_timeout_s <= 0:
            raise ValueError(f"deal_timeout_s must be positive, got {self.deal_timeout_s}")

        if self.max_frame_size <= 0:
            raise ValueError(f"max_frame_size must be positive, got {self.max_frame_size}")

    @property
    def address_prefix(self) -> str:
        """Network character used when formatting addresses ("f" or "t")."""
        return NETWORK_PREFIXES[self.network]


def create_settings_from_env() -> Settings:
    """
    Load settings from environment variables.

    Environment Variables:
        - FILDEAL_GATEWAY_URL (required)
        - FILDEAL_GATEWAY_TOKEN (optional)
        - FILDEAL_NETWORK (default: mainnet)
        - FILDEAL_RPC_TIMEOUT (default: 30.0)
        - FILDEAL_DEAL_TIMEOUT (default: 60.0)
        - FILDEAL_MAX_FRAME_SIZE (default: 1048576)
        - FILDEAL_KEYSTORE (optional)

    Returns:
        Settings object with validated configuration

    Raises:
        ValueError: If configuration is invalid or required values missing

    Note:
        Creates a fresh Settings instance every time (no caching).
    """
    def get_float(key: str, default: float) -> float:
        value = os.getenv(key)
        return float(value) if value else default

    def get_int(key: str, default: int) -> int:
        value = os.getenv(key)
        return int(value) if value else default

    gateway_url = os.getenv("FILDEAL_GATEWAY_URL")
    if not gateway_url:
        raise ValueError("FILDEAL_GATEWAY_URL environment variable is required")

    return Settings(
        gateway_url=gateway_url,
        gateway_token=os.getenv("FILDEAL_GATEWAY_TOKEN") or None,
        network=os.getenv("FILDEAL_NETWORK", "mainnet").lower(),
        rpc_timeout_s=get_float("FILDEAL_RPC_TIMEOUT", 30.0),
        deal_timeout_s=get_float("FILDEAL_DEAL_TIMEOUT", 60.0),
        max_frame_size=get_int("FILDEAL_MAX_FRAME_SIZE", 1 << 20),
        keystore_path=os.getenv("FILDEAL_KEYSTORE") or None,
    )
