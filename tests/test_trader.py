from decimal import Decimal

import pytest
from solders.keypair import Keypair

from refillbot.api.models import Quote
from refillbot.errors import (
    InsufficientBalanceError,
    PriceImpactParseError,
    PriceImpactTooHighError,
    QuoteUnavailableError,
    RetryExhaustedError,
    SubmissionError,
)
from refillbot.solana.trader import (
    Trader,
    check_price_impact,
    effective_slippage_bps,
    from_raw_amount,
    parse_price_impact,
    to_raw_amount,
)
from refillbot.solana.wallet import Wallet

from conftest import SOL_META, TAXED_MINT, FakeTokenInfo, make_config, taxed_token


def make_quote(price_impact="0.50", out_amount="2500000") -> Quote:
    return Quote.model_validate({
        "inputMint": SOL_META.address,
        "outputMint": TAXED_MINT,
        "inAmount": "100000000",
        "outAmount": out_amount,
        "otherAmountThreshold": "2400000",
        "slippageBps": 250,
        "priceImpactPct": price_impact,
        "routePlan": [],
    })


class FakeJupiter:
    """Replays scripted quote and swap results."""

    def __init__(self, quotes, swaps=None):
        self.quotes = list(quotes)
        self.swaps = list(swaps or ["sig-1"])
        self.quote_calls = []
        self.executed = []

    async def get_quote(self, input_mint, output_mint, raw_amount, slippage_bps, dexes=None):
        self.quote_calls.append((input_mint, output_mint, raw_amount, slippage_bps, dexes))
        result = self.quotes.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def execute_swap(self, wallet, quote, priority_fee):
        self.executed.append((quote, priority_fee))
        result = self.swaps.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


def make_trader(jupiter, bps=200, **config_overrides):
    token_info = FakeTokenInfo({SOL_META.address: SOL_META, TAXED_MINT: taxed_token(bps=bps)})
    return Trader(
        config=make_config(**config_overrides),
        jupiter_client=jupiter,
        token_info=token_info,
        wallet=Wallet(Keypair()),
    )


def test_to_raw_amount_scales_by_decimals():
    assert to_raw_amount(Decimal("1.5"), 6) == 1_500_000
    assert to_raw_amount(Decimal("0.1"), 9) == 100_000_000


def test_to_raw_amount_rounds_half_up():
    assert to_raw_amount(Decimal("0.0000005"), 6) == 1
    assert to_raw_amount(Decimal("0.0000004"), 6) == 0


def test_from_raw_amount_is_exact():
    assert from_raw_amount(2_500_000, 6) == Decimal("2.5")
    assert from_raw_amount("1", 9) == Decimal("0.000000001")


@pytest.mark.parametrize("amount,decimals", [("1.5", 6), ("0.123456789", 9), ("42", 0)])
def test_raw_amount_round_trip(amount, decimals):
    assert from_raw_amount(to_raw_amount(Decimal(amount), decimals), decimals) == Decimal(amount)


def test_effective_slippage_adds_transfer_tax():
    assert effective_slippage_bps(50, taxed_token(bps=200)) == 250
    assert effective_slippage_bps(50, SOL_META) == 50


def test_parse_price_impact_takes_absolute_value():
    assert parse_price_impact("-1.25") == Decimal("1.25")
    assert parse_price_impact("0") == Decimal("0")


@pytest.mark.parametrize("text", ["abc", "", "NaN"])
def test_parse_price_impact_rejects_garbage(text):
    with pytest.raises(PriceImpactParseError):
        parse_price_impact(text)


def test_check_price_impact_boundary():
    check_price_impact(Decimal("2.5"), 250)
    with pytest.raises(PriceImpactTooHighError):
        check_price_impact(Decimal("2.51"), 250)


@pytest.mark.asyncio
async def test_execute_swap_within_impact_cap():
    jupiter = FakeJupiter([make_quote("1.50")])
    trader = make_trader(jupiter)

    outcome = await trader.execute_swap(Decimal("2"))

    assert jupiter.quote_calls == [(SOL_META.address, TAXED_MINT, 100_000_000, 250, None)]
    assert len(jupiter.executed) == 1
    assert jupiter.executed[0][1] == 36699
    assert outcome.signature == "sig-1"
    assert outcome.input_amount == Decimal("0.1")
    assert outcome.output_amount == Decimal("2.5")
    assert outcome.input_symbol == "SOL"
    assert outcome.output_symbol == "TAX"
    assert outcome.price_impact_pct == Decimal("1.50")


@pytest.mark.asyncio
async def test_execute_swap_aborts_on_high_impact_before_submission():
    jupiter = FakeJupiter([make_quote("3.00")])
    trader = make_trader(jupiter)

    with pytest.raises(PriceImpactTooHighError):
        await trader.execute_swap(Decimal("2"))

    assert jupiter.executed == []


@pytest.mark.asyncio
async def test_execute_swap_requires_reserve():
    jupiter = FakeJupiter([make_quote()])
    trader = make_trader(jupiter)

    with pytest.raises(InsufficientBalanceError) as excinfo:
        await trader.execute_swap(Decimal("0.12"))

    assert excinfo.value.required == Decimal("0.15")
    assert jupiter.quote_calls == []


@pytest.mark.asyncio
async def test_quote_is_retried():
    jupiter = FakeJupiter([QuoteUnavailableError("503"), make_quote()])
    trader = make_trader(jupiter)

    outcome = await trader.execute_swap(Decimal("2"))

    assert len(jupiter.quote_calls) == 2
    assert outcome.signature == "sig-1"


@pytest.mark.asyncio
async def test_swap_retry_uses_a_fresh_quote():
    first, second = make_quote(out_amount="2500000"), make_quote(out_amount="2400000")
    jupiter = FakeJupiter([first, second], swaps=[SubmissionError("dropped"), "sig-2"])
    trader = make_trader(jupiter)

    outcome = await trader.execute_swap(Decimal("2"))

    assert [quote for quote, _ in jupiter.executed] == [first, second]
    assert outcome.signature == "sig-2"
    assert outcome.output_amount == Decimal("2.4")


@pytest.mark.asyncio
async def test_swap_retry_rechecks_impact():
    jupiter = FakeJupiter([make_quote("1.0"), make_quote("9.0")], swaps=[SubmissionError("dropped")])
    trader = make_trader(jupiter)

    with pytest.raises(PriceImpactTooHighError):
        await trader.execute_swap(Decimal("2"))

    assert len(jupiter.executed) == 1


@pytest.mark.asyncio
async def test_swap_gives_up_after_max_retries():
    quotes = [make_quote() for _ in range(3)]
    jupiter = FakeJupiter(quotes, swaps=[SubmissionError("dropped")] * 3)
    trader = make_trader(jupiter)

    with pytest.raises(RetryExhaustedError) as excinfo:
        await trader.execute_swap(Decimal("2"))

    assert excinfo.value.attempts == 3
    assert len(jupiter.executed) == 3
