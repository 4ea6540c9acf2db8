#!/usr/bin/env python
import argparse
import asyncio
import logging
import signal
import sys
from decimal import Decimal
from typing import List, Optional

from loguru import logger

from refillbot.api.api_client import ApiClient
from refillbot.config import DEFAULT_CONFIG_PATH, SOL_MINT, BotConfig, load_config
from refillbot.errors import ConfigError, PriceUnavailableError, RefillBotError
from refillbot.solana.dividends import DividendTracker, price_summary
from refillbot.solana.integration import RefillBot
from refillbot.solana.models import Portfolio
from refillbot.solana.portfolio import PortfolioService, format_token_line
from refillbot.solana.rpc_gateway import SolanaRpc
from refillbot.solana.token_cache import TokenCache, TokenInfoClient
from refillbot.solana.wallet import Wallet


def setup_logging(
    level: str = "INFO",
    file_path: str = "logs/refillbot.log",
    rotation: str = "1 day",
    retention: str = "14 days",
    compress: bool = False,
) -> List[int]:
    """Configure structured logging with loguru. Returns the sink ids."""
    logger.remove()  # Remove default handler
    sink_ids = [
        logger.add(
            file_path,
            rotation=rotation,
            retention=retention,
            compression="gz" if compress else None,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message} | {extra}",
            serialize=True,  # JSON formatting for structured logs
        ),
        # Also send logs to stdout
        logger.add(
            lambda msg: print(msg, end=""),
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"
        ),
    ]

    # Redirect solana-py, httpx and urllib3 loggers to loguru
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    return sink_ids


def shutdown_logging(sink_ids: List[int]) -> None:
    """Flush and remove the sinks added by setup_logging."""
    for sink_id in sink_ids:
        try:
            logger.remove(sink_id)
        except ValueError:
            logger.debug(f"Log sink {sink_id} already removed")


class InterceptHandler(logging.Handler):
    """Intercept standard logging and redirect to loguru."""
    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _wallet_address(config: BotConfig, wallet: Optional[str]) -> str:
    if wallet:
        return wallet
    return Wallet.from_base58(config.wallet.private_key).public_key


async def run_bot(config: BotConfig) -> None:
    """Run the refill bot until SIGINT or SIGTERM."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    bot = RefillBot(config)
    try:
        await bot.start(stop_event)
    finally:
        stats = bot.get_stats()
        logger.bind(
            total_swaps=stats.total_swaps,
            failed_swaps=stats.failed_swaps,
            total_volume=str(stats.total_volume),
            uptime_seconds=round(stats.uptime_seconds, 1),
        ).info("Final stats")
        await bot.close()


def _token_info_client(config: BotConfig, api_client: ApiClient, rpc: SolanaRpc) -> TokenInfoClient:
    return TokenInfoClient(
        api_client=api_client,
        rpc=rpc,
        cache=TokenCache(ttl=config.cache_ttl_seconds),
        token_api_endpoint=config.jupiter.token_api_endpoint,
        refresh_cache=config.token.refresh_cache,
    )


def _portfolio_service(config: BotConfig, api_client: ApiClient, rpc: SolanaRpc) -> PortfolioService:
    return PortfolioService(
        rpc=rpc,
        api_client=api_client,
        token_info=_token_info_client(config, api_client, rpc),
        price_endpoint=config.jupiter.price_endpoint,
        input_mint=config.token.input_mint,
        output_mint=config.token.output_mint,
    )


def _usd(amount: Decimal, price: Optional[Decimal]) -> str:
    if price is None:
        return ""
    return f" (${amount * price:.2f})"


async def show_dividends(config: BotConfig, wallet: Optional[str]) -> None:
    address = _wallet_address(config, wallet)
    rpc = SolanaRpc(config.rpc.endpoint, timeout=config.rpc.timeout_seconds)
    api_client = ApiClient(timeout=config.jupiter.timeout_seconds)
    try:
        tracker = DividendTracker(rpc, config.token.dividend_mint)
        summary = await tracker.get_dividend_history(address)
        try:
            prices = await _portfolio_service(config, api_client, rpc).get_token_prices([SOL_MINT])
        except PriceUnavailableError as e:
            logger.warning(f"Failed to fetch SOL price: {e}")
            prices = {}
        if SOL_MINT in prices:
            summary = price_summary(summary, prices[SOL_MINT])
    finally:
        api_client.close()
        await rpc.close()

    price = summary.sol_price
    print(f"Dividends for {address}")
    print(f"  Total:     {summary.total_amount} SOL{_usd(summary.total_amount, price)} "
          f"({summary.transfer_count} transfers)")
    print(f"  Last 24h:  {summary.last_24h_amount} SOL{_usd(summary.last_24h_amount, price)}")
    print(f"  Last 7d:   {summary.last_7d_amount} SOL{_usd(summary.last_7d_amount, price)}")
    print(f"  Last 30d:  {summary.last_30d_amount} SOL{_usd(summary.last_30d_amount, price)}")
    if summary.last_received:
        print(f"  Last paid: {summary.last_received.isoformat()}")


async def show_token_info(config: BotConfig, mint: str, refresh: bool) -> None:
    rpc = SolanaRpc(config.rpc.endpoint, timeout=config.rpc.timeout_seconds)
    api_client = ApiClient(timeout=config.jupiter.timeout_seconds)
    try:
        client = _token_info_client(config, api_client, rpc)
        info = await client.get_token_info(mint, force_refresh=refresh or None)
    finally:
        api_client.close()
        await rpc.close()

    print(info.model_dump_json(indent=2, by_alias=True))


def print_portfolio(address: str, portfolio: Portfolio) -> None:
    print(f"Portfolio for {address}: ${portfolio.total_usd_value:.2f}")
    print("Input/output tokens:")
    for token in portfolio.tokens:
        if token.is_input or token.is_output:
            print(format_token_line(token, show_role=True))

    print("Other tokens:")
    for token in portfolio.tokens:
        if not (token.is_input or token.is_output) and token.balance > 0:
            print(format_token_line(token, show_role=False))


async def show_balance(config: BotConfig, wallet: Optional[str]) -> None:
    address = _wallet_address(config, wallet)
    rpc = SolanaRpc(config.rpc.endpoint, timeout=config.rpc.timeout_seconds)
    api_client = ApiClient(timeout=config.jupiter.timeout_seconds)
    try:
        portfolio = await _portfolio_service(config, api_client, rpc).get_portfolio(address)
    finally:
        api_client.close()
        await rpc.close()
    print_portfolio(address, portfolio)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="refillbot", description="SOL balance triggered token refill bot")
    parser.add_argument("-c", "--config", default=DEFAULT_CONFIG_PATH, help="path to the YAML config file")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("run", help="start the bot")

    dividends = subparsers.add_parser("dividends", help="show dividend history")
    dividends.add_argument("--wallet", help="wallet address (defaults to the configured wallet)")

    token_info = subparsers.add_parser("token-info", help="show token metadata")
    token_info.add_argument("mint", help="token mint address")
    token_info.add_argument("--refresh", action="store_true", help="bypass the metadata cache")

    balance = subparsers.add_parser("balance", help="show wallet balances and their USD value")
    balance.add_argument("--wallet", help="wallet address (defaults to the configured wallet)")
    return parser


async def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments and run the selected command."""
    args = build_parser().parse_args(argv)
    command = args.command or "run"

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # Setup logging first for observability
    sink_ids = setup_logging(
        level=config.logging.level,
        file_path=config.logging.file_path,
        rotation=config.logging.rotation,
        retention=config.logging.retention,
        compress=config.logging.compress,
    )

    try:
        if command == "run":
            logger.info("Starting token refill bot")
            await run_bot(config)
        elif command == "dividends":
            await show_dividends(config, args.wallet)
        elif command == "token-info":
            await show_token_info(config, args.mint, args.refresh)
        elif command == "balance":
            await show_balance(config, args.wallet)
        return 0
    except RefillBotError as e:
        logger.error(f"{command} failed: {e}")
        return 1
    finally:
        shutdown_logging(sink_ids)


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == '__main__':
    run()
