"""
Token metadata lookup with a TTL cache.

Base metadata comes from the token list HTTP service. When the mint account
can be read, the entry is enriched with Token-2022 extension data.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from refillbot.api.api_client import ApiClient, ApiClientError
from refillbot.errors import (
    DecodeFailure,
    InvalidAddressError,
    RpcError,
    TokenMetadataUnavailableError,
)
from refillbot.solana.extensions import (
    InterestBearingExtension,
    MintExtensions,
    PermanentDelegateExtension,
    TransferFeeExtension,
    decode_mint,
)
from refillbot.solana.models import CacheEntry, InterestRate, TokenMetadata, TransferFee
from refillbot.solana.rpc_gateway import SolanaRpc


class TokenCache:
    """
    Thread-safe TTL map of token metadata keyed by mint address.

    Expired entries are dropped when they are next looked up.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry[TokenMetadata]] = {}
        self._lock = threading.RLock()

    def get(self, address: str) -> Optional[TokenMetadata]:
        with self._lock:
            entry = self._entries.get(address)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[address]
                return None
            return entry.value

    def set(self, address: str, value: TokenMetadata) -> None:
        with self._lock:
            self._entries[address] = CacheEntry[TokenMetadata](
                value=value,
                expires_at=self._clock() + self.ttl,
            )

    def clear(self) -> int:
        """Drop every entry and return how many were held."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def count(self) -> int:
        with self._lock:
            return len(self._entries)


def _apply_extensions(metadata: TokenMetadata, decoded: MintExtensions) -> TokenMetadata:
    updates: Dict[str, Any] = {
        "mint_authority": decoded.authorities.mint_authority,
        "freeze_authority": decoded.authorities.freeze_authority,
    }

    for extension in decoded.extensions:
        if isinstance(extension, TransferFeeExtension):
            updates["transfer_fee"] = TransferFee(
                basis_points=extension.basis_points,
                maximum_fee=extension.maximum_fee,
                collector=extension.collector,
            )
        elif isinstance(extension, InterestBearingExtension):
            updates["interest_rate"] = InterestRate(
                current_rate=extension.current_rate,
                apy=extension.apy,
                last_update_slot=extension.last_update_slot,
            )
        elif isinstance(extension, PermanentDelegateExtension):
            updates["permanent_delegate"] = extension.delegate
        else:
            raise TypeError(f"unhandled mint extension {type(extension).__name__}")

    return metadata.model_copy(update=updates)


class TokenInfoClient:
    """
    Resolves token metadata, serving fresh cache entries when allowed.
    """

    def __init__(
        self,
        api_client: ApiClient,
        rpc: SolanaRpc,
        cache: TokenCache,
        token_api_endpoint: str,
        refresh_cache: bool = False,
        log=None,
    ):
        """
        Initialize the client.

        Args:
            api_client: HTTP client for the token list service
            rpc: RPC gateway used to read mint accounts
            cache: Shared metadata cache
            token_api_endpoint: Base URL; the mint address is appended
            refresh_cache: Bypass the cache on every lookup
            log: Optional bound logger
        """
        self.api_client = api_client
        self.rpc = rpc
        self.cache = cache
        self.token_api_endpoint = token_api_endpoint.rstrip("/")
        self.refresh_cache = refresh_cache
        self.logger = (log or logger).bind(component="token_cache")

    async def get_token_info(self, address: str, force_refresh: Optional[bool] = None) -> TokenMetadata:
        """
        Get metadata for a mint.

        Args:
            address: Mint address
            force_refresh: Skip the cache for this call; defaults to the configured flag

        Raises:
            TokenMetadataUnavailableError: If the token service cannot provide base metadata
        """
        refresh = self.refresh_cache if force_refresh is None else force_refresh
        if not refresh:
            cached = self.cache.get(address)
            if cached is not None:
                self.logger.debug(f"Token cache hit for {address}")
                return cached

        metadata = await self._fetch_base(address)
        metadata = await self._enrich(metadata)
        self.cache.set(address, metadata)

        self.logger.bind(
            mint=address,
            decimals=metadata.decimals,
            transfer_fee_bps=metadata.transfer_fee_bps,
        ).info(f"Loaded token info for {metadata.symbol or address}")
        return metadata

    async def _fetch_base(self, address: str) -> TokenMetadata:
        url = f"{self.token_api_endpoint}/{address}"
        try:
            data = await self.api_client.get(url)
        except ApiClientError as e:
            raise TokenMetadataUnavailableError(f"error fetching token info for {address}: {e}") from e

        if not isinstance(data, dict):
            raise TokenMetadataUnavailableError(f"unexpected token info payload for {address}")

        payload = dict(data)
        payload["address"] = payload.get("address") or address
        payload["tags"] = payload.get("tags") or []
        try:
            return TokenMetadata.model_validate(payload)
        except PydanticValidationError as e:
            raise TokenMetadataUnavailableError(f"invalid token info for {address}: {e}") from e

    async def _enrich(self, metadata: TokenMetadata) -> TokenMetadata:
        """Best effort; any failure leaves the base metadata untouched."""
        try:
            raw = await self.rpc.get_account_info(metadata.address)
        except (RpcError, InvalidAddressError) as e:
            self.logger.warning(f"Could not read mint account {metadata.address}: {e}")
            return metadata

        if raw is None:
            self.logger.warning(f"Mint account {metadata.address} not found")
            return metadata

        try:
            decoded = decode_mint(raw)
        except DecodeFailure as e:
            self.logger.warning(f"Could not decode mint {metadata.address}: {e}")
            return metadata

        return _apply_extensions(metadata, decoded)
