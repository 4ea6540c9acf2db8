"""
Models for Solana operations.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from refillbot.config import TOKEN_2022_TAG

T = TypeVar("T")


class BotStatus(str, Enum):
    """Operational status of the bot."""
    IDLE = "IDLE"
    CHECKING = "CHECKING"
    SWAPPING = "SWAPPING"
    ERROR = "ERROR"
    STOPPED = "STOPPED"


class BalanceSample(BaseModel):
    """Result of one balance poll."""
    model_config = ConfigDict(frozen=True)

    amount: Decimal
    timestamp: datetime = Field(default_factory=datetime.now)
    met_threshold: bool = False
    error: Optional[str] = None


class RunState(BaseModel):
    """Mutable run state, exchanged as a whole value."""
    current_balance: Decimal = Decimal("0")
    last_swap_amount: Decimal = Decimal("0")
    last_swap_time: Optional[datetime] = None
    last_signature: Optional[str] = None
    total_swaps: int = 0
    error_count: int = 0
    status: BotStatus = BotStatus.IDLE


class BotStats(BaseModel):
    """Aggregate statistics about the bot's operation."""
    start_time: Optional[datetime] = None
    total_swaps: int = 0
    successful_swaps: int = 0
    failed_swaps: int = 0
    total_volume: Decimal = Decimal("0")
    uptime_seconds: float = 0.0


class TransferFee(BaseModel):
    """Token-2022 transfer fee configuration."""
    model_config = ConfigDict(frozen=True)

    basis_points: int
    maximum_fee: int
    collector: str


class InterestRate(BaseModel):
    """Token-2022 interest-bearing configuration."""
    model_config = ConfigDict(frozen=True)

    current_rate: int
    apy: float
    last_update_slot: int


class TokenMetadata(BaseModel):
    """Token list metadata combined with decoded mint extensions."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    address: str
    symbol: str = ""
    name: str = ""
    decimals: int
    tags: FrozenSet[str] = frozenset()
    logo_uri: Optional[str] = Field(default=None, alias="logoURI")
    daily_volume: Optional[float] = None

    transfer_fee: Optional[TransferFee] = None
    interest_rate: Optional[InterestRate] = None
    permanent_delegate: Optional[str] = None
    freeze_authority: Optional[str] = None
    mint_authority: Optional[str] = None

    @property
    def transfer_fee_bps(self) -> int:
        """Transfer fee in basis points, 0 when the token has none."""
        if self.transfer_fee is not None:
            return self.transfer_fee.basis_points
        return 0

    @property
    def is_token_2022(self) -> bool:
        return TOKEN_2022_TAG in self.tags


class CacheEntry(BaseModel, Generic[T]):
    """A cached value and the moment it stops being served."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    value: T
    expires_at: float


class SwapOutcome(BaseModel):
    """Terminal record of a submitted swap."""
    model_config = ConfigDict(frozen=True)

    signature: str
    input_amount: Decimal
    output_amount: Decimal
    input_symbol: str = ""
    output_symbol: str = ""
    price_impact_pct: Decimal
    timestamp: datetime = Field(default_factory=datetime.now)


class TransferRecord(BaseModel):
    """A SOL transfer received from the dividend source."""
    model_config = ConfigDict(frozen=True)

    signature: str
    amount: Decimal
    timestamp: datetime
    pre_balance: Decimal
    post_balance: Decimal


class TransferLedger(BaseModel):
    """Persisted dividend ledger for one wallet."""
    last_update: Optional[datetime] = None
    last_signature: str = ""
    transactions: Dict[str, TransferRecord] = Field(default_factory=dict)


class DividendSummary(BaseModel):
    """Rolling totals computed from a transfer ledger."""
    total_amount: Decimal = Decimal("0")
    last_24h_amount: Decimal = Decimal("0")
    last_7d_amount: Decimal = Decimal("0")
    last_30d_amount: Decimal = Decimal("0")
    transfer_count: int = 0
    last_received: Optional[datetime] = None
    sol_price: Optional[Decimal] = None
    usd_value: Optional[Decimal] = None


class TokenBalance(BaseModel):
    """One holding of a wallet, in UI units."""
    mint: str
    symbol: str
    name: str
    balance: Decimal
    decimals: int
    is_input: bool = False
    is_output: bool = False
    is_token_2022: bool = False
    token_info: Optional[TokenMetadata] = None


class PortfolioToken(TokenBalance):
    usd_value: Decimal = Decimal("0")
    distribution: Decimal = Decimal("0")


class Portfolio(BaseModel):
    """Holdings sorted by USD value, with distribution in percent."""
    tokens: List[PortfolioToken] = Field(default_factory=list)
    total_usd_value: Decimal = Decimal("0")
