"""
Thin async gateway over the Solana JSON-RPC client.

Converts solders response objects into plain Python values so the rest of
the bot never depends on RPC response shapes.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from loguru import logger
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Finalized
from solana.rpc.core import RPCException
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.pubkey import Pubkey
from solders.signature import Signature

from refillbot.errors import InvalidAddressError, RpcError

SIGNATURE_PAGE_LIMIT = 1000


@dataclass(frozen=True)
class TransactionView:
    """The parts of a confirmed transaction the ledger needs."""
    signature: str
    block_time: Optional[int]
    account_keys: List[str] = field(default_factory=list)
    pre_balances: List[int] = field(default_factory=list)
    post_balances: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class TokenAccountBalance:
    """A token account owned by a wallet, read with jsonParsed encoding."""
    account: str
    mint: str
    amount: int
    decimals: int
    program_id: str


def parse_pubkey(address: str) -> Pubkey:
    """
    Parse a base58 address.

    Raises:
        InvalidAddressError: If the address is not a valid public key
    """
    try:
        return Pubkey.from_string(address)
    except (ValueError, TypeError) as e:
        raise InvalidAddressError(f"invalid Solana address {address!r}: {e}") from e


class SolanaRpc:
    """
    Async Solana RPC operations used by the bot.
    """

    def __init__(self, endpoint: str, timeout: float = 30, client: Optional[AsyncClient] = None):
        """
        Initialize the gateway.

        Args:
            endpoint: RPC endpoint URL
            timeout: Request timeout in seconds
            client: Optional pre-built AsyncClient
        """
        self.endpoint = endpoint
        self.client = client if client else AsyncClient(endpoint, commitment=Finalized, timeout=timeout)
        logger.info(f"SolanaRpc initialized for {endpoint}")

    async def close(self):
        await self.client.close()

    async def get_balance(self, address: str) -> int:
        """Native balance in lamports."""
        pubkey = parse_pubkey(address)
        try:
            resp = await self.client.get_balance(pubkey, commitment=Finalized)
        except (SolanaRpcException, RPCException) as e:
            raise RpcError(f"failed to get balance: {e}") from e
        return resp.value

    async def get_account_info(self, address: str) -> Optional[bytes]:
        """Raw account data, or None when the account does not exist."""
        pubkey = parse_pubkey(address)
        try:
            resp = await self.client.get_account_info(pubkey, commitment=Finalized)
        except (SolanaRpcException, RPCException) as e:
            raise RpcError(f"failed to fetch account info: {e}") from e
        if resp.value is None:
            return None
        return bytes(resp.value.data)

    async def send_raw_transaction(self, tx_bytes: bytes, skip_preflight: bool = False) -> str:
        """Submit a signed, serialized transaction and return its signature."""
        try:
            resp = await self.client.send_raw_transaction(
                tx_bytes,
                opts=TxOpts(skip_preflight=skip_preflight, preflight_commitment=Finalized),
            )
        except (SolanaRpcException, RPCException) as e:
            raise RpcError(f"failed to send transaction: {e}") from e
        return str(resp.value)

    async def get_signatures_for_address(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = SIGNATURE_PAGE_LIMIT,
    ) -> List[str]:
        """One page of signatures for an address, newest first."""
        pubkey = parse_pubkey(address)
        try:
            resp = await self.client.get_signatures_for_address(
                pubkey,
                before=Signature.from_string(before) if before else None,
                limit=limit,
                commitment=Finalized,
            )
        except (SolanaRpcException, RPCException) as e:
            raise RpcError(f"failed to get signatures: {e}") from e
        return [str(status.signature) for status in resp.value]

    async def get_transaction(self, signature: str) -> Optional[TransactionView]:
        """Fetch a finalized transaction, or None when the node does not have it."""
        try:
            resp = await self.client.get_transaction(
                Signature.from_string(signature),
                commitment=Finalized,
                max_supported_transaction_version=0,
            )
        except (SolanaRpcException, RPCException) as e:
            raise RpcError(f"failed to get transaction {signature[:8]}...: {e}") from e

        tx = resp.value
        if tx is None:
            return None

        meta = tx.transaction.meta
        message = tx.transaction.transaction.message
        account_keys = [str(key) for key in message.account_keys]
        if meta is not None and meta.loaded_addresses is not None:
            account_keys.extend(str(key) for key in meta.loaded_addresses.writable)
            account_keys.extend(str(key) for key in meta.loaded_addresses.readonly)

        return TransactionView(
            signature=signature,
            block_time=tx.block_time,
            account_keys=account_keys,
            pre_balances=list(meta.pre_balances) if meta else [],
            post_balances=list(meta.post_balances) if meta else [],
        )

    async def get_token_accounts_by_owner(self, owner: str, program_id: str) -> List[TokenAccountBalance]:
        """Token accounts of one token program held by the owner, with raw amounts."""
        pubkey = parse_pubkey(owner)
        try:
            resp = await self.client.get_token_accounts_by_owner_json_parsed(
                pubkey,
                TokenAccountOpts(program_id=parse_pubkey(program_id)),
                commitment=Finalized,
            )
        except (SolanaRpcException, RPCException) as e:
            raise RpcError(f"failed to get token accounts for program {program_id}: {e}") from e

        accounts: List[TokenAccountBalance] = []
        for keyed in resp.value:
            parsed = keyed.account.data.parsed
            info = parsed.get("info", {}) if isinstance(parsed, dict) else {}
            token_amount = info.get("tokenAmount") or {}
            if not info.get("mint") or "amount" not in token_amount:
                logger.debug(f"Skipping token account {keyed.pubkey} without parsed amount")
                continue
            accounts.append(TokenAccountBalance(
                account=str(keyed.pubkey),
                mint=info["mint"],
                amount=int(token_amount["amount"]),
                decimals=int(token_amount.get("decimals", 0)),
                program_id=program_id,
            ))
        return accounts
