"""
Swap execution pipeline.

Balance check, token lookup, tax-aware slippage, quote, price impact guard,
then a signed submission. Every stage raises; nothing is half-applied.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, Optional, Union

from loguru import logger

from refillbot.api.jupiter_client import JupiterClient
from refillbot.api.models import Quote
from refillbot.config import BotConfig
from refillbot.errors import (
    InsufficientBalanceError,
    PriceImpactParseError,
    PriceImpactTooHighError,
)
from refillbot.solana.models import SwapOutcome, TokenMetadata
from refillbot.solana.token_cache import TokenInfoClient
from refillbot.solana.wallet import Wallet
from refillbot.utils.retry import with_retry

Number = Union[Decimal, int, float, str]


def to_raw_amount(amount: Number, decimals: int) -> int:
    """Scale a human amount to base units, rounding half up."""
    scaled = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_raw_amount(raw_amount: Union[int, str], decimals: int) -> Decimal:
    """Scale base units back to a human amount without rounding."""
    return Decimal(str(raw_amount)) / (Decimal(10) ** decimals)


def effective_slippage_bps(base_slippage_bps: int, output_token: TokenMetadata) -> int:
    """Base slippage widened by the output token's transfer tax."""
    return base_slippage_bps + output_token.transfer_fee_bps


def parse_price_impact(text: str) -> Decimal:
    """
    Parse the quote's price impact as an absolute percentage.

    Raises:
        PriceImpactParseError: If the text is not a finite decimal
    """
    try:
        impact = Decimal(text.strip())
    except (InvalidOperation, AttributeError) as e:
        raise PriceImpactParseError(f"failed to parse price impact {text!r}") from e
    if not impact.is_finite():
        raise PriceImpactParseError(f"failed to parse price impact {text!r}")
    return abs(impact)


def check_price_impact(price_impact: Decimal, slippage_bps: int) -> None:
    """
    Refuse quotes whose impact exceeds the slippage cap.

    Raises:
        PriceImpactTooHighError: If price_impact > slippage_bps / 100
    """
    max_price_impact = Decimal(slippage_bps) / Decimal(100)
    if price_impact > max_price_impact:
        raise PriceImpactTooHighError(price_impact, max_price_impact)


class Trader:
    """
    Converts the configured swap amount into the output token.
    """

    def __init__(
        self,
        config: BotConfig,
        jupiter_client: JupiterClient,
        token_info: TokenInfoClient,
        wallet: Wallet,
        log=None,
    ):
        self.config = config
        self.jupiter_client = jupiter_client
        self.token_info = token_info
        self.wallet = wallet
        self.logger = (log or logger).bind(component="trader")

    async def _guarded_quote(self, raw_amount: int, slippage_bps: int) -> Quote:
        token = self.config.token
        quote = await self.jupiter_client.get_quote(
            token.input_mint,
            token.output_mint,
            raw_amount,
            slippage_bps,
            token.dexes,
        )
        check_price_impact(parse_price_impact(quote.price_impact_pct), slippage_bps)
        return quote

    async def execute_swap(self, balance: Decimal) -> SwapOutcome:
        """
        Run one swap.

        Args:
            balance: Current SOL balance

        Returns:
            Outcome of the submitted swap

        Raises:
            InsufficientBalanceError: If balance is below swap amount plus reserve
            PriceImpactTooHighError: If a quote breaches the slippage cap
            RetryExhaustedError: If quoting or submission kept failing
        """
        token = self.config.token
        monitor = self.config.monitor
        amount = token.swap_amount
        required = amount + self.config.wallet.reserve_amount

        if balance < required:
            raise InsufficientBalanceError(balance, required)

        input_token = await self.token_info.get_token_info(token.input_mint)
        output_token = await self.token_info.get_token_info(token.output_mint)

        raw_amount = to_raw_amount(amount, input_token.decimals)
        slippage_bps = effective_slippage_bps(token.slippage_bps, output_token)

        self.logger.bind(
            amount=str(amount),
            raw_amount=raw_amount,
            input_token=input_token.symbol,
            output_token=output_token.symbol,
        ).info("Starting swap execution")
        if slippage_bps != token.slippage_bps:
            self.logger.bind(
                base_slippage=token.slippage_bps,
                tax_buffer=output_token.transfer_fee_bps,
                effective_slippage=slippage_bps,
            ).debug("Added tax buffer to slippage")

        quote = await with_retry(
            lambda: self.jupiter_client.get_quote(
                token.input_mint,
                token.output_mint,
                raw_amount,
                slippage_bps,
                token.dexes,
            ),
            monitor.max_retries,
            monitor.retry_delay_seconds,
            log=self.logger,
        )
        price_impact = parse_price_impact(quote.price_impact_pct)
        check_price_impact(price_impact, slippage_bps)

        # The guarded quote is used once; retries quote again.
        pending: List[Quote] = [quote]
        submitted: Optional[Quote] = None

        async def _submit() -> str:
            nonlocal submitted
            next_quote = pending.pop() if pending else await self._guarded_quote(raw_amount, slippage_bps)
            submitted = next_quote
            return await self.jupiter_client.execute_swap(
                self.wallet,
                next_quote,
                self.config.jupiter.priority_fee_lamports,
            )

        signature = await with_retry(
            _submit,
            monitor.max_retries,
            monitor.retry_delay_seconds,
            log=self.logger,
        )

        outcome = SwapOutcome(
            signature=signature,
            input_amount=from_raw_amount(submitted.in_amount, input_token.decimals),
            output_amount=from_raw_amount(submitted.out_amount, output_token.decimals),
            input_symbol=input_token.symbol,
            output_symbol=output_token.symbol,
            price_impact_pct=parse_price_impact(submitted.price_impact_pct),
        )

        self.logger.bind(
            signature=signature,
            input_amount=f"{outcome.input_amount} {input_token.symbol}",
            output_amount=f"{outcome.output_amount} {output_token.symbol}",
            price_impact=f"{outcome.price_impact_pct}%",
        ).info("Swap executed successfully")
        return outcome
