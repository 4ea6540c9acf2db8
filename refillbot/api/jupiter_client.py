"""
Client for the Jupiter swap aggregator.

Quotes are rate limited process-wide. Swaps are built by the aggregator,
signed locally and submitted through the RPC gateway without waiting for
confirmation.
"""

import base64
import binascii
from typing import Any, Dict, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from solders.transaction import VersionedTransaction

from refillbot.api.api_client import ApiClient, ApiClientError, ApiDecodeError
from refillbot.api.models import Quote, SwapRequest, SwapResponse
from refillbot.config import (
    DEFAULT_COMPUTE_UNIT_LIMIT,
    JUPITER_QUOTE_ENDPOINT,
    JUPITER_SWAP_ENDPOINT,
    TOKEN_2022_COMPUTE_UNIT_LIMIT,
)
from refillbot.errors import (
    BuildRequestError,
    QuoteDecodeError,
    QuoteUnavailableError,
    RpcError,
    SubmissionError,
    TransactionDecodeError,
    TransientError,
    ValidationError,
)
from refillbot.solana.rpc_gateway import SolanaRpc
from refillbot.solana.token_cache import TokenInfoClient
from refillbot.solana.wallet import Wallet
from refillbot.utils.rate_limit_utils import RateLimiter, quote_rate_limiter


def _short(address: str) -> str:
    if len(address) <= 16:
        return address
    return f"{address[:8]}...{address[-8:]}"


class JupiterClient:
    """Quote and swap operations against the Jupiter v6 API."""

    def __init__(
        self,
        api_client: ApiClient,
        rpc: SolanaRpc,
        token_info: TokenInfoClient,
        quote_endpoint: str = JUPITER_QUOTE_ENDPOINT,
        swap_endpoint: str = JUPITER_SWAP_ENDPOINT,
        only_direct_routes: bool = False,
        rate_limiter: Optional[RateLimiter] = None,
        rate_limit_timeout: Optional[float] = None,
        log=None,
    ):
        """
        Initialize the client.

        Args:
            api_client: HTTP client
            rpc: RPC gateway used for submission
            token_info: Token metadata source
            quote_endpoint: Quote URL
            swap_endpoint: Swap-build URL
            only_direct_routes: Restrict quotes to single-hop routes
            rate_limiter: Limiter for quote calls; defaults to the process-wide one
            rate_limit_timeout: Longest acceptable wait for a quote slot
            log: Optional bound logger
        """
        self.api_client = api_client
        self.rpc = rpc
        self.token_info = token_info
        self.quote_endpoint = quote_endpoint
        self.swap_endpoint = swap_endpoint
        self.only_direct_routes = only_direct_routes
        self.rate_limiter = rate_limiter if rate_limiter is not None else quote_rate_limiter
        self.rate_limit_timeout = rate_limit_timeout
        self.logger = (log or logger).bind(component="jupiter")

    async def _warm_token_cache(self, *mints: str) -> None:
        for mint in mints:
            try:
                await self.token_info.get_token_info(mint)
            except (TransientError, ValidationError) as e:
                self.logger.warning(f"Could not load token info for {mint}: {e}")

    def _quote_params(
        self,
        input_mint: str,
        output_mint: str,
        raw_amount: int,
        slippage_bps: int,
        dexes: Optional[str],
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(raw_amount),
            "onlyDirectRoutes": str(self.only_direct_routes).lower(),
            "prioritizationFeeLamports": "auto",
            "computeUnitPriceMicroLamports": "auto",
        }
        if slippage_bps > 0:
            params["slippageBps"] = str(slippage_bps)
        else:
            params["dynamicSlippage"] = "true"
        if dexes:
            params["dexes"] = dexes
        return params

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        raw_amount: int,
        slippage_bps: int,
        dexes: Optional[str] = None,
    ) -> Quote:
        """
        Request a swap quote.

        Args:
            input_mint: Mint being sold
            output_mint: Mint being bought
            raw_amount: Input amount in base units
            slippage_bps: Slippage tolerance; 0 asks the aggregator for dynamic slippage
            dexes: Optional comma-separated DEX filter

        Returns:
            The parsed quote

        Raises:
            RateLimitedError: If the limiter wait would exceed the configured timeout
            QuoteUnavailableError: On transport failure or non-success status
            QuoteDecodeError: If the body is not a valid quote
        """
        await self.rate_limiter.wait(self.rate_limit_timeout)
        await self._warm_token_cache(input_mint, output_mint)

        params = self._quote_params(input_mint, output_mint, raw_amount, slippage_bps, dexes)
        self.logger.bind(amount=raw_amount, slippage_bps=slippage_bps, dexes=dexes).info(
            f"Requesting quote {_short(input_mint)} -> {_short(output_mint)}"
        )

        try:
            data = await self.api_client.get(self.quote_endpoint, params=params)
        except ApiDecodeError as e:
            raise QuoteDecodeError(f"failed to decode quote response: {e}") from e
        except ApiClientError as e:
            raise QuoteUnavailableError(f"failed to get quote: {e}") from e

        try:
            quote = Quote.model_validate(data)
        except PydanticValidationError as e:
            raise QuoteDecodeError(f"invalid quote response: {e}") from e

        self.logger.bind(
            price_impact_pct=quote.price_impact_pct,
            route_steps=len(quote.route_plan),
            context_slot=quote.context_slot,
        ).info(f"Quote received: {quote.in_amount} -> {quote.out_amount}")
        return quote

    async def _compute_unit_limit(self, output_mint: str) -> int:
        output_token = await self.token_info.get_token_info(output_mint)
        if output_token.is_token_2022:
            return TOKEN_2022_COMPUTE_UNIT_LIMIT
        return DEFAULT_COMPUTE_UNIT_LIMIT

    async def _build_swap(self, request: SwapRequest) -> SwapResponse:
        try:
            data = await self.api_client.post(
                self.swap_endpoint,
                json=request.model_dump(by_alias=True),
            )
        except ApiClientError as e:
            raise BuildRequestError(f"failed to submit swap request: {e}") from e

        try:
            return SwapResponse.model_validate(data)
        except PydanticValidationError as e:
            raise BuildRequestError(f"invalid swap response: {e}") from e

    @staticmethod
    def _decode_transaction(encoded: str) -> VersionedTransaction:
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise TransactionDecodeError(f"failed to decode swap transaction: {e}") from e

        try:
            return VersionedTransaction.from_bytes(raw)
        except Exception as e:
            raise TransactionDecodeError(f"failed to deserialize transaction: {e}") from e

    async def execute_swap(self, wallet: Wallet, quote: Quote, priority_fee: int) -> str:
        """
        Build, sign and submit a swap for a quote.

        Args:
            wallet: Signing wallet
            quote: Quote to execute; must not have been submitted before
            priority_fee: Prioritization fee in lamports

        Returns:
            Transaction signature

        Raises:
            BuildRequestError: If the aggregator cannot build the transaction
            TransactionDecodeError: If the returned transaction cannot be decoded
            SigningKeyMismatchError: If the wallet lacks a required signer
            SubmissionError: If the RPC node rejects the transaction
        """
        self.logger.bind(
            wallet=_short(wallet.public_key),
            input=f"{quote.in_amount} {quote.input_mint[:8]}",
            output=f"{quote.out_amount} {quote.output_mint[:8]}",
            slippage_bps=quote.slippage_bps,
        ).info("Initiating swap transaction")

        compute_unit_limit = await self._compute_unit_limit(quote.output_mint)
        request = SwapRequest(
            user_public_key=wallet.public_key,
            prioritization_fee_lamports=priority_fee,
            quote_response=quote.to_wire(),
            compute_unit_limit=compute_unit_limit,
        )
        self.logger.bind(priority_fee=priority_fee, compute_limit=compute_unit_limit).debug(
            "Swap request details"
        )

        swap_response = await self._build_swap(request)
        tx = self._decode_transaction(swap_response.swap_transaction)
        signed = wallet.sign_transaction(tx)

        try:
            signature = await self.rpc.send_raw_transaction(bytes(signed))
        except RpcError as e:
            raise SubmissionError(f"failed to send transaction: {e}") from e

        self.logger.bind(signature=signature, explorer=f"https://solscan.io/tx/{signature}").info(
            "Transaction sent"
        )
        return signature
