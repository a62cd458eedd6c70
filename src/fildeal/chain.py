"""
Chain Reader for deal preparation.

Supplies the current chain height, provider collateral bounds and actor id
lookups. ``GatewayChainReader`` talks JSON-RPC 2.0 to a Lotus gateway and
decodes every result through a typed model so a malformed or unexpected
response is rejected instead of half-used.
"""
from __future__ import annotations

import itertools
import logging
from typing import Any, List, Optional, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from . import __version__
from .address import Address, Protocol as AddressProtocol, parse_address
from .deal_types import CollateralBounds
from .errors import ChainReadError, InvalidAddressError
from .settings import Settings

logger = logging.getLogger(__name__)

__all__ = ["ChainReader", "GatewayChainReader", "TipSetHeader", "CollateralBoundsResult"]


@runtime_checkable
class ChainReader(Protocol):
    """Read-only view of the chain used while preparing a deal."""

    def chain_head(self) -> int:
        """Height of the current head tipset."""
        ...

    def collateral_bounds(self, piece_size: int, verified: bool) -> CollateralBounds:
        """Provider collateral bounds for a padded piece size."""
        ...

    def resolve_actor_id(self, address: Address) -> Address:
        """ID address of the actor behind ``address``."""
        ...


# Typed RPC results

class _RpcError(BaseModel):
    code: int
    message: str


class _RpcResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str = "2.0"
    id: Optional[int] = None
    result: Any = None
    error: Optional[_RpcError] = None


class TipSetHeader(BaseModel):
    """Subset of a tipset we use: its height."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    height: StrictInt = Field(..., alias="Height", ge=0)


class CollateralBoundsResult(BaseModel):
    """Collateral bounds; big integers arrive as decimal strings."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    min: int = Field(..., alias="Min", ge=0)
    max: int = Field(..., alias="Max", ge=0)

    @field_validator("min", "max", mode="before")
    @classmethod
    def parse_bigint(cls, v):
        """Accept decimal strings only, the wire form of big integers."""
        if not isinstance(v, str) or not v.isdigit():
            raise ValueError(f"expected a decimal string, got {v!r}")
        return int(v)


class GatewayChainReader:
    """
    JSON-RPC client for a Lotus gateway.

    Transient network failures (timeouts, refused connections) are retried
    with exponential backoff; RPC errors and undecodable results are not.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize the gateway client.

        Args:
            settings: Gateway URL, token, network and timeout
            transport: Optional httpx transport (tests inject a MockTransport)
        """
        self.settings = settings
        headers = {"User-Agent": f"fildeal/{__version__}", "Content-Type": "application/json"}
        if settings.gateway_token:
            headers["Authorization"] = f"Bearer {settings.gateway_token}"

        self.client = httpx.Client(
            timeout=httpx.Timeout(settings.rpc_timeout_s, connect=5.0),
            headers=headers,
            transport=transport,
        )
        self._ids = itertools.count(1)
        logger.debug(f"Gateway chain reader for {settings.gateway_url} ({settings.network})")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.ConnectError)),
        reraise=True,
    )
    def _post(self, body: dict) -> httpx.Response:
        response = self.client.post(self.settings.gateway_url, json=body)
        response.raise_for_status()
        return response

    def call(self, method: str, params: List[Any]) -> Any:
        """
        Invoke a JSON-RPC method and return its raw result.

        Raises:
            ChainReadError: On network failure, HTTP error or RPC error
        """
        body = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}
        logger.debug(f"RPC {method} {params}")

        try:
            response = self._post(body)
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise ChainReadError(f"Gateway rejected credentials for {method}") from e
            raise ChainReadError(f"Gateway error {e.response.status_code} for {method}") from e
        except httpx.RequestError as e:
            raise ChainReadError(f"Network error calling {method}: {e}") from e

        try:
            envelope = _RpcResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ChainReadError(f"Malformed JSON-RPC response for {method}: {e}") from e

        if envelope.error is not None:
            raise ChainReadError(f"{method} failed: {envelope.error.message} (code {envelope.error.code})")
        return envelope.result

    def chain_head(self) -> int:
        result = self.call("Filecoin.ChainHead", [])
        try:
            return TipSetHeader.model_validate(result).height
        except ValidationError as e:
            raise ChainReadError(f"cannot get chain head: {e}") from e

    def collateral_bounds(self, piece_size: int, verified: bool) -> CollateralBounds:
        result = self.call("Filecoin.StateDealProviderCollateralBounds", [piece_size, verified, None])
        try:
            bounds = CollateralBoundsResult.model_validate(result)
        except ValidationError as e:
            raise ChainReadError(f"node error getting collateral bounds: {e}") from e
        return CollateralBounds(min=bounds.min, max=bounds.max)

    def resolve_actor_id(self, address: Address) -> Address:
        result = self.call("Filecoin.StateLookupID", [str(address), None])
        if not isinstance(result, str):
            raise ChainReadError(f"failed to lookup actor id for {address}: expected a string, got {result!r}")
        try:
            actor = parse_address(result)
        except InvalidAddressError as e:
            raise ChainReadError(f"failed to lookup actor id for {address}: {e}") from e
        if actor.protocol != AddressProtocol.ID:
            raise ChainReadError(f"failed to lookup actor id for {address}: {result} is not an ID address")
        return actor

    def close(self):
        """Close HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
