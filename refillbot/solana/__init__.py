"""
Solana integration for the refill bot.

This package contains modules for reading the chain, decoding Token-2022
mint extensions, executing swaps and tracking dividend transfers.
"""

from refillbot.solana.models import (
    BalanceSample,
    BotStats,
    BotStatus,
    DividendSummary,
    RunState,
    SwapOutcome,
    TokenMetadata,
    TransferLedger,
    TransferRecord,
)
from refillbot.solana.rpc_gateway import SolanaRpc, TransactionView
from refillbot.solana.wallet import Wallet
from refillbot.solana.extensions import (
    decode_mint,
    iter_extensions,
    parse_authorities,
    parse_interest_bearing,
    parse_permanent_delegate,
    parse_transfer_fee,
)
from refillbot.solana.token_cache import TokenCache, TokenInfoClient
