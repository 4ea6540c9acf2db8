"""
Integration module that wires the refill components together.

The bot watches the wallet's SOL balance and runs a swap every time a
balance sample meets the configured threshold.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Optional

from loguru import logger

from refillbot.api.api_client import ApiClient
from refillbot.api.jupiter_client import JupiterClient
from refillbot.config import BotConfig
from refillbot.errors import RefillBotError
from refillbot.solana.models import BalanceSample, BotStats, BotStatus, RunState
from refillbot.solana.rpc_gateway import SolanaRpc
from refillbot.solana.token_cache import TokenCache, TokenInfoClient
from refillbot.solana.trader import Trader
from refillbot.solana.wallet import Wallet
from refillbot.state.run_state import RunStateCell
from refillbot.utils.balance_poller import BalanceMonitor


class RefillBot:
    """
    Runs the balance monitor and reacts to its samples.

    Components are built from the configuration unless passed in.
    """

    def __init__(self,
                 config: BotConfig,
                 wallet: Optional[Wallet] = None,
                 rpc: Optional[SolanaRpc] = None,
                 api_client: Optional[ApiClient] = None,
                 token_info: Optional[TokenInfoClient] = None,
                 jupiter_client: Optional[JupiterClient] = None,
                 trader: Optional[Trader] = None,
                 monitor: Optional[BalanceMonitor] = None,
                 log=None):
        """
        Initialize the bot.

        Args:
            config: Validated configuration
            wallet: Optional Wallet. If None, decoded from the configured private key.
            rpc: Optional SolanaRpc. If None, connects to the configured endpoint.
            api_client: Optional ApiClient for HTTP calls.
            token_info: Optional TokenInfoClient.
            jupiter_client: Optional JupiterClient.
            trader: Optional Trader.
            monitor: Optional BalanceMonitor.
            log: Optional bound logger.

        Raises:
            InvalidAddressError: If the configured private key is malformed
        """
        self.config = config
        self.logger = (log or logger).bind(component="bot")

        self.wallet = wallet if wallet else Wallet.from_base58(config.wallet.private_key)
        self.rpc = rpc if rpc else SolanaRpc(config.rpc.endpoint, timeout=config.rpc.timeout_seconds)
        self.api_client = api_client if api_client else ApiClient(timeout=config.jupiter.timeout_seconds)

        self.token_info = token_info if token_info else TokenInfoClient(
            api_client=self.api_client,
            rpc=self.rpc,
            cache=TokenCache(ttl=config.cache_ttl_seconds),
            token_api_endpoint=config.jupiter.token_api_endpoint,
            refresh_cache=config.token.refresh_cache,
            log=log,
        )
        self.jupiter_client = jupiter_client if jupiter_client else JupiterClient(
            api_client=self.api_client,
            rpc=self.rpc,
            token_info=self.token_info,
            quote_endpoint=config.jupiter.quote_endpoint,
            swap_endpoint=config.jupiter.swap_endpoint,
            only_direct_routes=config.jupiter.only_direct_routes,
            log=log,
        )
        self.trader = trader if trader else Trader(
            config=config,
            jupiter_client=self.jupiter_client,
            token_info=self.token_info,
            wallet=self.wallet,
            log=log,
        )
        self.monitor = monitor if monitor else BalanceMonitor(
            rpc=self.rpc,
            wallet_address=self.wallet.public_key,
            min_balance=config.wallet.min_sol_balance,
            check_interval=config.check_interval_seconds,
            log=log,
        )

        self._state = RunStateCell()
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False
        self._start_time: Optional[datetime] = None
        self._successful_swaps = 0
        self._failed_swaps = 0
        self._total_volume = Decimal("0")

        self.logger.info(f"RefillBot initialized for wallet {self.wallet.public_key}")

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run until stop() is called, the stop event is set, or the task is cancelled.

        Raises:
            RefillBotError: If the bot is already running or the monitor's first check fails
        """
        if self._running:
            raise RefillBotError("bot is already running")

        self._stop_event = stop_event if stop_event is not None else asyncio.Event()
        self._running = True
        self._start_time = datetime.now()
        self._state.set(RunState(status=BotStatus.IDLE))

        self.logger.bind(wallet=self.wallet.public_key, token=self.config.token.output_mint).info(
            "Starting bot"
        )

        monitor_task = asyncio.create_task(self.monitor.start())
        try:
            await self._run(monitor_task)
        finally:
            self.monitor.stop()
            if not monitor_task.done():
                monitor_task.cancel()
                try:
                    await monitor_task
                except asyncio.CancelledError:
                    pass
            self._running = False
            self._state.update(lambda s: setattr(s, "status", BotStatus.STOPPED))
            self.logger.info("Bot stopped")

    async def _run(self, monitor_task: "asyncio.Task[None]") -> None:
        stop_task = asyncio.ensure_future(self._stop_event.wait())
        try:
            while True:
                sample_task = asyncio.ensure_future(self.monitor.next_sample())
                done, _ = await asyncio.wait(
                    {sample_task, stop_task, monitor_task},
                    return_when=asyncio.FIRST_COMPLETED,
                )
                if not sample_task.done():
                    sample_task.cancel()

                if stop_task in done:
                    self.logger.info("Bot stopped by request")
                    return

                if monitor_task in done and not monitor_task.cancelled():
                    error = monitor_task.exception()
                    if error is not None:
                        self.logger.error(f"Monitor error: {error}")
                        raise error

                if sample_task in done and not sample_task.cancelled():
                    sample = sample_task.result()
                    if self._handle_sample(sample):
                        if not await self._swap(sample.amount, stop_task):
                            self.logger.info("Bot stopped by request")
                            return

                if monitor_task in done:
                    self.logger.info("Monitor finished, stopping bot")
                    return
        finally:
            stop_task.cancel()

    def stop(self) -> None:
        """Request shutdown; an in-flight swap is cancelled."""
        if self._stop_event is not None:
            self._stop_event.set()

    def _record_error(self, message: str) -> None:
        self.logger.error(message)

        def _apply(state: RunState) -> None:
            state.status = BotStatus.ERROR
            state.error_count += 1

        self._state.update(_apply)

    def _handle_sample(self, sample: BalanceSample) -> bool:
        """Record a sample. Returns True when it calls for a swap."""
        if sample.error:
            self._record_error(f"Balance check error: {sample.error}")
            return False

        def _checking(state: RunState) -> None:
            state.current_balance = sample.amount
            state.status = BotStatus.CHECKING

        self._state.update(_checking)

        if not sample.met_threshold:
            return False

        self.logger.bind(
            balance=str(sample.amount),
            threshold=str(self.config.wallet.min_sol_balance),
            swap_amount=str(self.config.token.swap_amount),
        ).info("Balance threshold met, initiating swap")
        self._state.update(lambda s: setattr(s, "status", BotStatus.SWAPPING))
        return True

    async def _swap(self, balance: Decimal, stop_task: "asyncio.Future[bool]") -> bool:
        """
        Run one swap while watching for shutdown.

        Returns False when shutdown won the race; the swap task is then
        cancelled and counted as failed.
        """
        swap_task = asyncio.ensure_future(self.trader.execute_swap(balance))
        try:
            done, _ = await asyncio.wait(
                {swap_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not swap_task.done():
                swap_task.cancel()
                try:
                    await swap_task
                except asyncio.CancelledError:
                    pass

        if swap_task not in done:
            self._failed_swaps += 1
            self.logger.warning("Shutdown requested during swap, swap cancelled")
            return False

        error = swap_task.exception()
        if error is not None:
            if not isinstance(error, Exception):
                raise error
            self._failed_swaps += 1
            self._record_error(f"Swap failed: {error}")
            return True

        outcome = swap_task.result()
        self._successful_swaps += 1
        self._total_volume += outcome.input_amount

        def _swapped(state: RunState) -> None:
            state.status = BotStatus.IDLE
            state.total_swaps += 1
            state.last_swap_amount = outcome.input_amount
            state.last_swap_time = outcome.timestamp
            state.last_signature = outcome.signature

        self._state.update(_swapped)
        return True

    def get_state(self) -> RunState:
        return self._state.get()

    def get_stats(self) -> BotStats:
        state = self._state.get()
        uptime = 0.0
        if self._start_time is not None:
            uptime = (datetime.now() - self._start_time).total_seconds()
        return BotStats(
            start_time=self._start_time,
            total_swaps=state.total_swaps,
            successful_swaps=self._successful_swaps,
            failed_swaps=self._failed_swaps,
            total_volume=self._total_volume,
            uptime_seconds=uptime,
        )

    async def close(self) -> None:
        """Release network resources."""
        self.api_client.close()
        await self.rpc.close()
