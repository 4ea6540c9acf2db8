"""
Dividend history for a wallet.

Finds native SOL transfers that involve the configured dividend source and
credit the wallet. Results are kept in a per-wallet JSON ledger so each run
only inspects signatures newer than the last one fully processed.
"""

import json
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from refillbot.config import DIVIDEND_CACHE_DIR, LAMPORTS_PER_SOL
from refillbot.errors import ConfigError, LedgerCorruptError, RpcError
from refillbot.solana.models import DividendSummary, TransferLedger, TransferRecord
from refillbot.solana.rpc_gateway import (
    SIGNATURE_PAGE_LIMIT,
    SolanaRpc,
    TransactionView,
    parse_pubkey,
)

PROGRESS_LOG_EVERY = 50


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _short(address: str) -> str:
    return f"{address[:8]}...{address[-8:]}"


def ledger_path(wallet: str, cache_dir: str = DIVIDEND_CACHE_DIR) -> str:
    return os.path.join(cache_dir, f"dividend_cache_{wallet[:8]}.json")


def load_ledger(path: str) -> TransferLedger:
    """
    Load a ledger file; a missing file is an empty ledger.

    Raises:
        LedgerCorruptError: If the file exists but cannot be parsed
    """
    if not os.path.exists(path):
        return TransferLedger()

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return TransferLedger.model_validate(data)
    except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
        raise LedgerCorruptError(f"failed to load dividend cache {path}: {e}") from e


def save_ledger(path: str, ledger: TransferLedger) -> None:
    """Write the ledger as indented JSON, replacing the old file atomically."""
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    tmp_path = f"{path}.tmp"
    with open(tmp_path, 'w', encoding='utf-8') as f:
        f.write(ledger.model_dump_json(indent=2))
    os.replace(tmp_path, path)


def transfer_balances(tx: TransactionView, source: str, wallet: str) -> Optional[Tuple[Decimal, Decimal]]:
    """
    Return the wallet's (pre, post) SOL balances if the transaction credited
    it and the source address took part, otherwise None.
    """
    if source not in tx.account_keys or wallet not in tx.account_keys:
        return None

    index = tx.account_keys.index(wallet)
    if index >= len(tx.pre_balances) or index >= len(tx.post_balances):
        return None

    pre = Decimal(tx.pre_balances[index]) / Decimal(LAMPORTS_PER_SOL)
    post = Decimal(tx.post_balances[index]) / Decimal(LAMPORTS_PER_SOL)
    if post <= pre:
        return None
    return pre, post


def get_transfer_amount(tx: TransactionView, source: str, wallet: str) -> Decimal:
    """SOL received by the wallet in a transaction involving the source, or 0."""
    balances = transfer_balances(tx, source, wallet)
    if balances is None:
        return Decimal("0")
    pre, post = balances
    return post - pre


def summarize_ledger(ledger: TransferLedger, now: Optional[datetime] = None) -> DividendSummary:
    """Totals over the whole ledger plus 24h, 7d and 30d windows."""
    now = _as_utc(now) if now is not None else _utc_now()
    day = timedelta(days=1)
    summary = DividendSummary()

    for record in ledger.transactions.values():
        timestamp = _as_utc(record.timestamp)
        age = now - timestamp

        summary.total_amount += record.amount
        summary.transfer_count += 1
        if age <= day:
            summary.last_24h_amount += record.amount
        if age <= 7 * day:
            summary.last_7d_amount += record.amount
        if age <= 30 * day:
            summary.last_30d_amount += record.amount
        if summary.last_received is None or timestamp > summary.last_received:
            summary.last_received = timestamp

    return summary


def price_summary(summary: DividendSummary, sol_price: Decimal) -> DividendSummary:
    """Attach the SOL price and the USD value of the total received."""
    return summary.model_copy(update={
        "sol_price": sol_price,
        "usd_value": summary.total_amount * sol_price,
    })


class DividendTracker:
    """
    Incrementally scans a wallet's history for dividend transfers.
    """

    def __init__(
        self,
        rpc: SolanaRpc,
        source_address: str,
        cache_dir: str = DIVIDEND_CACHE_DIR,
        page_limit: int = SIGNATURE_PAGE_LIMIT,
        clock: Callable[[], datetime] = _utc_now,
        log=None,
    ):
        """
        Initialize the tracker.

        Args:
            rpc: RPC gateway
            source_address: Address that pays the dividends
            cache_dir: Directory holding per-wallet ledgers
            page_limit: Signatures requested per page
            clock: Source of the current UTC time
            log: Optional bound logger
        """
        self.rpc = rpc
        self.source_address = source_address
        self.cache_dir = cache_dir
        self.page_limit = page_limit
        self._clock = clock
        self.logger = (log or logger).bind(component="dividends")

    async def _signatures_since(self, wallet: str, watermark: str) -> List[str]:
        """Signatures newer than the watermark, newest first."""
        newer: List[str] = []
        before: Optional[str] = None

        while True:
            page = await self.rpc.get_signatures_for_address(wallet, before=before, limit=self.page_limit)
            for signature in page:
                if watermark and signature == watermark:
                    return newer
                newer.append(signature)
            if len(page) < self.page_limit:
                return newer
            before = page[-1]

    def _to_record(self, signature: str, tx: TransactionView, wallet: str) -> Optional[TransferRecord]:
        balances = transfer_balances(tx, self.source_address, wallet)
        if balances is None:
            return None

        pre, post = balances
        if tx.block_time is not None:
            timestamp = datetime.fromtimestamp(tx.block_time, tz=timezone.utc)
        else:
            timestamp = self._clock()

        self.logger.bind(source=_short(self.source_address), amount=str(post - pre)).debug(
            "Found SOL transfer"
        )
        return TransferRecord(
            signature=signature,
            amount=post - pre,
            timestamp=timestamp,
            pre_balance=pre,
            post_balance=post,
        )

    async def _process(self, wallet: str, ledger: TransferLedger, newest_first: List[str]) -> int:
        """
        Walk candidates oldest to newest, recording transfers.

        The watermark only moves past signatures that were fully handled and
        have no failed fetch before them.
        """
        found = 0
        contiguous = True

        for processed, signature in enumerate(reversed(newest_first), start=1):
            if processed % PROGRESS_LOG_EVERY == 0:
                self.logger.bind(processed=processed, total=len(newest_first), found=found).info(
                    "Processing progress"
                )

            if signature not in ledger.transactions:
                try:
                    tx = await self.rpc.get_transaction(signature)
                except RpcError as e:
                    self.logger.debug(f"Failed to get transaction {signature[:8]}...: {e}")
                    contiguous = False
                    continue

                if tx is not None and tx.pre_balances and tx.post_balances:
                    record = self._to_record(signature, tx, wallet)
                    if record is not None:
                        ledger.transactions[signature] = record
                        found += 1

            if contiguous:
                ledger.last_signature = signature

        return found

    async def get_dividend_history(self, wallet: str) -> DividendSummary:
        """
        Update the wallet's ledger and return its totals.

        Raises:
            InvalidAddressError: If the wallet or source address is malformed
            ConfigError: If no dividend source is configured
            LedgerCorruptError: If the ledger file cannot be read
            RpcError: If the signature list cannot be fetched
        """
        parse_pubkey(wallet)
        if not self.source_address:
            raise ConfigError("dividend address not configured")
        parse_pubkey(self.source_address)

        self.logger.bind(wallet=_short(wallet), dividend_address=_short(self.source_address)).info(
            "Fetching SOL dividend history"
        )

        path = ledger_path(wallet, self.cache_dir)
        ledger = load_ledger(path)
        new_signatures: List[str] = []
        found = 0

        try:
            new_signatures = await self._signatures_since(wallet, ledger.last_signature)
            self.logger.info(f"Processing {len(new_signatures)} new signatures")
            found = await self._process(wallet, ledger, new_signatures)
        finally:
            ledger.last_update = self._clock()
            try:
                save_ledger(path, ledger)
            except OSError as e:
                self.logger.error(f"Failed to save dividend cache: {e}")

        summary = summarize_ledger(ledger, self._clock())
        self.logger.bind(
            total_txs=len(ledger.transactions),
            new_txs=len(new_signatures),
            found=found,
            total_amount=str(summary.total_amount),
            last_24h=str(summary.last_24h_amount),
            last_7d=str(summary.last_7d_amount),
            last_30d=str(summary.last_30d_amount),
        ).info("SOL dividend history processed")
        return summary
