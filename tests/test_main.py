from decimal import Decimal

import pytest

from refillbot.config import SOL_MINT
from refillbot.main import build_parser, main, print_portfolio
from refillbot.solana.models import Portfolio, PortfolioToken


def test_parser_defaults_to_run():
    args = build_parser().parse_args([])

    assert args.command is None


def test_parser_token_info():
    args = build_parser().parse_args(["-c", "bot.yaml", "token-info", "MintAddr", "--refresh"])

    assert args.config == "bot.yaml"
    assert args.command == "token-info"
    assert args.mint == "MintAddr"
    assert args.refresh is True


def test_parser_dividends_wallet():
    args = build_parser().parse_args(["dividends", "--wallet", "WalletAddr"])

    assert args.command == "dividends"
    assert args.wallet == "WalletAddr"


@pytest.mark.asyncio
async def test_config_error_exit_code(tmp_path):
    code = await main(["-c", str(tmp_path / "missing.yaml"), "balance"])

    assert code == 2


def test_print_portfolio_groups_pair_and_hides_empty_tokens(capsys):
    portfolio = Portfolio(
        total_usd_value=Decimal("300"),
        tokens=[
            PortfolioToken(mint=SOL_MINT, symbol="SOL", name="Solana", balance=Decimal("2"),
                           decimals=9, is_input=True, usd_value=Decimal("300"), distribution=Decimal("100")),
            PortfolioToken(mint="Other1111", symbol="OTH", name="Other", balance=Decimal("5"), decimals=6),
            PortfolioToken(mint="Empty1111", symbol="EMP", name="Empty", balance=Decimal("0"), decimals=6),
        ],
    )

    print_portfolio("WalletAddr", portfolio)

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "Portfolio for WalletAddr: $300.00"
    assert lines[1] == "Input/output tokens:"
    assert lines[2].startswith("  SOL (Input): 2.00 (Solana) [SPL]")
    assert lines[3] == "Other tokens:"
    assert lines[4].startswith("  OTH: 5.00")
    assert len(lines) == 5


def test_parser_balance_wallet():
    args = build_parser().parse_args(["balance", "--wallet", "WalletAddr"])

    assert args.command == "balance"
    assert args.wallet == "WalletAddr"
