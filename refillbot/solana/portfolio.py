"""
Wallet holdings and their USD value.

Balances come from the RPC node: native SOL plus every SPL and Token-2022
token account the wallet owns. Prices come from the Jupiter price API.
"""

from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, List, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from refillbot.api.api_client import ApiClient, ApiClientError
from refillbot.api.models import PriceResponse
from refillbot.config import (
    JUPITER_PRICE_ENDPOINT,
    LAMPORTS_PER_SOL,
    SOL_DECIMALS,
    SOL_MINT,
    TOKEN_2022_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
)
from refillbot.errors import PriceUnavailableError, RpcError, TransientError
from refillbot.solana.models import Portfolio, PortfolioToken, TokenBalance
from refillbot.solana.rpc_gateway import SolanaRpc, TokenAccountBalance, parse_pubkey
from refillbot.solana.token_cache import TokenInfoClient


def _short(address: str) -> str:
    return f"{address[:4]}...{address[-4:]}"


def format_amount(amount: Decimal) -> str:
    """Two decimals with a k, M or B suffix for large amounts."""
    if amount == 0:
        return "0"

    magnitude = abs(amount)
    if magnitude < 1_000:
        return f"{amount:.2f}"
    if magnitude < 1_000_000:
        return f"{amount / 1_000:.2f}k"
    if magnitude < 1_000_000_000:
        return f"{amount / 1_000_000:.2f}M"
    return f"{amount / 1_000_000_000:.2f}B"


def sort_balances(balances: Iterable[TokenBalance]) -> List[TokenBalance]:
    """The configured pair first, then the largest balances."""
    return sorted(balances, key=lambda b: (not (b.is_input or b.is_output), -b.balance))


def calculate_portfolio(balances: Iterable[TokenBalance], prices: Dict[str, Decimal]) -> Portfolio:
    """
    Value each balance at its price and compute its share of the total.

    Mints without a price are valued at zero.
    """
    tokens: List[PortfolioToken] = []
    total = Decimal("0")
    for balance in balances:
        usd_value = balance.balance * prices.get(balance.mint, Decimal("0"))
        total += usd_value
        tokens.append(PortfolioToken(**dict(balance), usd_value=usd_value))

    if total > 0:
        for token in tokens:
            token.distribution = token.usd_value / total * 100

    tokens.sort(key=lambda t: t.usd_value, reverse=True)
    return Portfolio(tokens=tokens, total_usd_value=total)


def format_token_line(token: PortfolioToken, show_role: bool) -> str:
    role = ""
    if show_role:
        if token.is_input:
            role = " (Input)"
        if token.is_output:
            role = " (Output)"

    details = ""
    if token.token_info is not None:
        if token.token_info.transfer_fee is not None:
            details += f" | Fee: {Decimal(token.token_info.transfer_fee_bps) / 100:.2f}%"
        if token.token_info.interest_rate is not None:
            details += f" | APY: {token.token_info.interest_rate.apy:.2f}%"

    value = ""
    if token.usd_value > 0:
        value = f" | ${token.usd_value:.2f} ({token.distribution:.2f}%)"

    program = "Token-2022" if token.is_token_2022 else "SPL"
    return (
        f"  {token.symbol}{role}: {format_amount(token.balance)} ({token.name}) "
        f"[{program}]{details}{value}"
    )


class PortfolioService:
    """
    Reads a wallet's holdings and prices them.
    """

    def __init__(
        self,
        rpc: SolanaRpc,
        api_client: ApiClient,
        token_info: Optional[TokenInfoClient] = None,
        price_endpoint: str = JUPITER_PRICE_ENDPOINT,
        input_mint: str = SOL_MINT,
        output_mint: str = "",
        log=None,
    ):
        """
        Initialize the service.

        Args:
            rpc: RPC gateway
            api_client: HTTP client for the price API
            token_info: Optional metadata client used to name tokens
            price_endpoint: Jupiter price endpoint
            input_mint: Mint the bot sells, flagged in balances
            output_mint: Mint the bot buys, flagged in balances
            log: Optional bound logger
        """
        self.rpc = rpc
        self.api_client = api_client
        self.token_info = token_info
        self.price_endpoint = price_endpoint
        self.input_mint = input_mint
        self.output_mint = output_mint
        self.logger = (log or logger).bind(component="portfolio")

    async def get_wallet_balances(self, wallet: str) -> List[TokenBalance]:
        """
        SOL and token balances of a wallet, the configured pair first.

        Token-2022 accounts are best effort; a failure there only drops them.

        Raises:
            InvalidAddressError: If the wallet address is malformed
            RpcError: If the SOL balance or SPL token accounts cannot be read
        """
        parse_pubkey(wallet)
        self.logger.debug(f"Fetching wallet balances for {_short(wallet)}")

        accounts = await self.rpc.get_token_accounts_by_owner(wallet, TOKEN_PROGRAM_ID)
        spl_count = len(accounts)
        try:
            accounts += await self.rpc.get_token_accounts_by_owner(wallet, TOKEN_2022_PROGRAM_ID)
        except RpcError as e:
            self.logger.warning(f"Failed to get Token-2022 accounts: {e}")
        self.logger.bind(regular=spl_count, token2022=len(accounts) - spl_count).debug(
            "Token accounts found"
        )

        lamports = await self.rpc.get_balance(wallet)
        balances = [TokenBalance(
            mint=SOL_MINT,
            symbol="SOL",
            name="Solana",
            balance=Decimal(lamports) / Decimal(LAMPORTS_PER_SOL),
            decimals=SOL_DECIMALS,
            is_input=self.input_mint == SOL_MINT,
            is_output=self.output_mint == SOL_MINT,
        )]
        for account in accounts:
            balances.append(await self._token_balance(account))

        self.logger.bind(total_tokens=len(balances)).debug("Finished processing balances")
        return sort_balances(balances)

    async def _token_balance(self, account: TokenAccountBalance) -> TokenBalance:
        metadata = None
        if self.token_info is not None:
            try:
                metadata = await self.token_info.get_token_info(account.mint)
            except TransientError as e:
                self.logger.debug(f"No token info for {account.mint}: {e}")

        symbol = _short(account.mint)
        name = symbol
        if metadata is not None:
            symbol = metadata.symbol or symbol
            name = metadata.name or name

        is_token_2022 = account.program_id == TOKEN_2022_PROGRAM_ID
        if metadata is not None and metadata.is_token_2022:
            is_token_2022 = True

        return TokenBalance(
            mint=account.mint,
            symbol=symbol,
            name=name,
            balance=Decimal(account.amount).scaleb(-account.decimals),
            decimals=account.decimals,
            is_input=account.mint == self.input_mint,
            is_output=account.mint == self.output_mint,
            is_token_2022=is_token_2022,
            token_info=metadata,
        )

    async def get_token_prices(self, mints: List[str]) -> Dict[str, Decimal]:
        """
        USD prices for the given mints. Mints the API does not price are left out.

        Raises:
            PriceUnavailableError: On transport failure, non-success status or a malformed body
        """
        if not mints:
            return {}

        self.logger.bind(token_count=len(mints)).debug("Fetching token prices")
        try:
            data = await self.api_client.get(self.price_endpoint, params={"ids": ",".join(mints)})
        except ApiClientError as e:
            raise PriceUnavailableError(f"failed to fetch prices: {e}") from e

        try:
            response = PriceResponse.model_validate(data)
        except (PydanticValidationError, InvalidOperation) as e:
            raise PriceUnavailableError(f"failed to decode price response: {e}") from e

        prices = {mint: entry.price for mint, entry in response.data.items() if entry is not None}
        self.logger.bind(
            token_count=len(prices),
            time_taken=f"{response.time_taken * 1000:.2f}ms",
        ).debug("Prices fetched successfully")
        return prices

    async def get_portfolio(self, wallet: str) -> Portfolio:
        """Balances valued at current prices; without prices every value is zero."""
        balances = await self.get_wallet_balances(wallet)
        try:
            prices = await self.get_token_prices([b.mint for b in balances])
        except PriceUnavailableError as e:
            self.logger.warning(f"Failed to fetch token prices: {e}")
            prices = {}
        return calculate_portfolio(balances, prices)
