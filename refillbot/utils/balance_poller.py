import asyncio
from decimal import Decimal
from enum import Enum
from typing import Optional

from loguru import logger

from refillbot.config import LAMPORTS_PER_SOL
from refillbot.errors import RefillBotError
from refillbot.solana.models import BalanceSample
from refillbot.solana.rpc_gateway import SolanaRpc


class MonitorState(str, Enum):
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


class BalanceMonitor:
    """
    Polls a wallet's SOL balance at a fixed interval.

    Each check publishes a BalanceSample into a single-slot queue. If the
    consumer has not taken the previous sample yet, it is replaced, so the
    consumer always sees the most recent balance.
    """

    def __init__(
        self,
        rpc: SolanaRpc,
        wallet_address: str,
        min_balance: Decimal,
        check_interval: float,
        log=None,
    ):
        """
        Initialize the balance monitor.

        Args:
            rpc: RPC gateway
            wallet_address: Wallet to watch
            min_balance: Threshold in SOL
            check_interval: Seconds between checks
            log: Optional bound logger
        """
        self.rpc = rpc
        self.wallet_address = wallet_address
        self.min_balance = Decimal(str(min_balance))
        self.check_interval = check_interval
        self.state = MonitorState.STOPPED
        self.logger = (log or logger).bind(component="monitor")
        self._results: "asyncio.Queue[BalanceSample]" = asyncio.Queue(maxsize=1)
        self._stop_event = asyncio.Event()
        self._wakeup = asyncio.Event()

    @property
    def results(self) -> "asyncio.Queue[BalanceSample]":
        return self._results

    async def next_sample(self) -> BalanceSample:
        return await self._results.get()

    async def start(self) -> None:
        """
        Run the monitor until stopped or cancelled.

        The first check runs immediately; if it fails, the error is raised
        and the monitor does not start polling.
        """
        self._stop_event.clear()
        self._wakeup.clear()
        self.state = MonitorState.RUNNING
        self.logger.bind(min_balance=str(self.min_balance), interval=self.check_interval).info(
            f"Starting balance monitor for {self.wallet_address}"
        )

        try:
            try:
                await self._check_balance()
            except RefillBotError as e:
                self.logger.error(f"Initial balance check failed: {e}")
                raise

            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.check_interval)
                except asyncio.TimeoutError:
                    await self._tick()
                else:
                    # woken by stop() or an interval change; restart the wait
                    self._wakeup.clear()

            self.logger.info("Monitor stopped by request")
        except asyncio.CancelledError:
            self.logger.info("Monitor cancelled")
            raise
        finally:
            self.state = MonitorState.STOPPED

    def stop(self) -> None:
        self._stop_event.set()
        self._wakeup.set()

    async def _tick(self) -> None:
        try:
            await self._check_balance()
        except RefillBotError as e:
            self.logger.bind(wallet=self.wallet_address).error(f"Balance check failed: {e}")
            self._publish(BalanceSample(amount=Decimal("0"), met_threshold=False, error=str(e)))

    async def _check_balance(self) -> BalanceSample:
        self.logger.debug(f"Checking SOL balance for {self.wallet_address}")

        lamports = await self.rpc.get_balance(self.wallet_address)
        balance = Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)
        sample = BalanceSample(amount=balance, met_threshold=balance >= self.min_balance)

        self.logger.bind(
            balance=str(balance),
            min_balance=str(self.min_balance),
            met_threshold=sample.met_threshold,
        ).debug("Balance check complete")
        self._publish(sample)
        return sample

    def _publish(self, sample: BalanceSample) -> None:
        try:
            self._results.put_nowait(sample)
        except asyncio.QueueFull:
            self._results.get_nowait()
            self._results.put_nowait(sample)
            self.logger.debug("Replaced unconsumed balance sample")

    def update_min_balance(self, new_min: Decimal) -> None:
        self.min_balance = Decimal(str(new_min))
        self.logger.info(f"Updated minimum balance threshold to {self.min_balance}")

    def update_check_interval(self, new_interval: float) -> None:
        self.check_interval = new_interval
        self._wakeup.set()
        self.logger.info(f"Updated check interval to {new_interval}s")

    def pending(self) -> Optional[BalanceSample]:
        """Take the waiting sample without blocking, if there is one."""
        try:
            return self._results.get_nowait()
        except asyncio.QueueEmpty:
            return None
