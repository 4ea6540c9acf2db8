"""
Wire models for the Jupiter aggregator API.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _JupiterModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class PlatformFee(_JupiterModel):
    amount: str = "0"
    fee_bps: int = Field(default=0, alias="feeBps")


class SwapInfo(_JupiterModel):
    amm_key: str = Field(alias="ammKey")
    label: str = ""
    input_mint: str = Field(alias="inputMint")
    output_mint: str = Field(alias="outputMint")
    in_amount: str = Field(alias="inAmount")
    out_amount: str = Field(alias="outAmount")
    fee_amount: str = Field(default="0", alias="feeAmount")
    fee_mint: str = Field(default="", alias="feeMint")


class RoutePlanStep(_JupiterModel):
    swap_info: SwapInfo = Field(alias="swapInfo")
    percent: int = 100


class Quote(_JupiterModel):
    """
    A priced route returned by the quote endpoint.

    Amounts are integer strings in base units. A quote is submitted at most once.
    """
    input_mint: str = Field(alias="inputMint")
    output_mint: str = Field(alias="outputMint")
    in_amount: str = Field(alias="inAmount")
    out_amount: str = Field(alias="outAmount")
    other_amount_threshold: str = Field(alias="otherAmountThreshold")
    swap_mode: str = Field(default="ExactIn", alias="swapMode")
    slippage_bps: int = Field(default=0, alias="slippageBps")
    platform_fee: Optional[PlatformFee] = Field(default=None, alias="platformFee")
    price_impact_pct: str = Field(alias="priceImpactPct")
    route_plan: List[RoutePlanStep] = Field(default_factory=list, alias="routePlan")
    context_slot: Optional[int] = Field(default=None, alias="contextSlot")
    time_taken: Optional[float] = Field(default=None, alias="timeTaken")

    def to_wire(self) -> Dict[str, Any]:
        """Serialize back to the aggregator's camelCase JSON."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SwapRequest(_JupiterModel):
    user_public_key: str = Field(alias="userPublicKey")
    wrap_and_unwrap_sol: bool = Field(default=True, alias="wrapAndUnwrapSol")
    use_shared_accounts: bool = Field(default=True, alias="useSharedAccounts")
    prioritization_fee_lamports: int = Field(alias="prioritizationFeeLamports")
    as_legacy_transaction: bool = Field(default=False, alias="asLegacyTransaction")
    use_token_ledger: bool = Field(default=False, alias="useTokenLedger")
    dynamic_compute_unit_limit: bool = Field(default=True, alias="dynamicComputeUnitLimit")
    skip_user_accounts_rpc_calls: bool = Field(default=True, alias="skipUserAccountsRpcCalls")
    quote_response: Dict[str, Any] = Field(alias="quoteResponse")
    compute_unit_limit: int = Field(alias="computeUnitLimit")
    compute_unit_price: int = Field(default=0, alias="computeUnitPrice")


class SwapResponse(_JupiterModel):
    swap_transaction: str = Field(alias="swapTransaction")
    last_valid_block_height: Optional[int] = Field(default=None, alias="lastValidBlockHeight")


class TokenPrice(_JupiterModel):
    id: str
    type: str = ""
    price: Decimal


class PriceResponse(_JupiterModel):
    """Price API payload; unknown mints map to null."""
    data: Dict[str, Optional[TokenPrice]] = Field(default_factory=dict)
    time_taken: float = Field(default=0.0, alias="timeTaken")
