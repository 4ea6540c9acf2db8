import base64

import pytest
import requests
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.transaction import VersionedTransaction

from refillbot.api.api_client import ApiClient
from refillbot.api.jupiter_client import JupiterClient
from refillbot.api.models import Quote
from refillbot.errors import (
    BuildRequestError,
    QuoteDecodeError,
    QuoteUnavailableError,
    RateLimitedError,
    RpcError,
    SigningKeyMismatchError,
    SubmissionError,
    TransactionDecodeError,
)
from refillbot.solana.wallet import Wallet
from refillbot.utils.rate_limit_utils import RateLimiter

from conftest import (
    SOL_META,
    TAXED_MINT,
    FakeResponse,
    FakeRpc,
    FakeSession,
    FakeTokenInfo,
    taxed_token,
)

QUOTE_URL = "https://quote.example/v6/quote"
SWAP_URL = "https://quote.example/v6/swap"

QUOTE_PAYLOAD = {
    "inputMint": SOL_META.address,
    "outputMint": TAXED_MINT,
    "inAmount": "100000000",
    "outAmount": "2500000",
    "otherAmountThreshold": "2437500",
    "swapMode": "ExactIn",
    "slippageBps": 250,
    "platformFee": None,
    "priceImpactPct": "0.15",
    "routePlan": [
        {
            "swapInfo": {
                "ammKey": "amm111",
                "label": "Meteora",
                "inputMint": SOL_META.address,
                "outputMint": TAXED_MINT,
                "inAmount": "100000000",
                "outAmount": "2500000",
                "feeAmount": "250000",
                "feeMint": SOL_META.address,
            },
            "percent": 100,
        }
    ],
    "contextSlot": 299_000_000,
    "timeTaken": 0.012,
}


def encoded_swap_transaction(payer: Keypair) -> str:
    message = MessageV0.try_compile(payer.pubkey(), [], [], Hash.default())
    tx = VersionedTransaction(message, [payer])
    return base64.b64encode(bytes(tx)).decode()


def make_client(session, rpc=None, token_2022=True, limiter=None, limiter_timeout=None):
    token_info = FakeTokenInfo({
        SOL_META.address: SOL_META,
        TAXED_MINT: taxed_token(token_2022=token_2022),
    })
    return JupiterClient(
        api_client=ApiClient(session=session),
        rpc=rpc or FakeRpc(),
        token_info=token_info,
        quote_endpoint=QUOTE_URL,
        swap_endpoint=SWAP_URL,
        rate_limiter=limiter or RateLimiter(0),
        rate_limit_timeout=limiter_timeout,
    )


@pytest.mark.asyncio
async def test_get_quote_sends_fixed_slippage():
    session = FakeSession({QUOTE_URL: FakeResponse(200, QUOTE_PAYLOAD)})
    client = make_client(session)

    quote = await client.get_quote(SOL_META.address, TAXED_MINT, 100_000_000, 250)

    params = session.calls[0]["params"]
    assert params["inputMint"] == SOL_META.address
    assert params["outputMint"] == TAXED_MINT
    assert params["amount"] == "100000000"
    assert params["slippageBps"] == "250"
    assert params["onlyDirectRoutes"] == "false"
    assert params["prioritizationFeeLamports"] == "auto"
    assert params["computeUnitPriceMicroLamports"] == "auto"
    assert "dynamicSlippage" not in params
    assert "dexes" not in params
    assert quote.out_amount == "2500000"
    assert quote.route_plan[0].swap_info.label == "Meteora"


@pytest.mark.asyncio
async def test_get_quote_without_slippage_asks_for_dynamic_slippage():
    session = FakeSession({QUOTE_URL: FakeResponse(200, QUOTE_PAYLOAD)})
    client = make_client(session)

    await client.get_quote(SOL_META.address, TAXED_MINT, 100_000_000, 0, dexes="Raydium,Orca")

    params = session.calls[0]["params"]
    assert params["dynamicSlippage"] == "true"
    assert "slippageBps" not in params
    assert params["dexes"] == "Raydium,Orca"


@pytest.mark.asyncio
async def test_get_quote_warms_token_cache():
    session = FakeSession({QUOTE_URL: FakeResponse(200, QUOTE_PAYLOAD)})
    client = make_client(session)

    await client.get_quote(SOL_META.address, TAXED_MINT, 1, 50)

    assert client.token_info.calls == [SOL_META.address, TAXED_MINT]


@pytest.mark.asyncio
async def test_get_quote_error_body_with_braces():
    body = {"error": "Could not find any route", "errorCode": "COULD_NOT_FIND_ANY_ROUTE"}
    client = make_client(FakeSession({QUOTE_URL: FakeResponse(400, body)}))

    with pytest.raises(QuoteUnavailableError) as exc_info:
        await client.get_quote(SOL_META.address, TAXED_MINT, 100_000_000, 250)

    assert "COULD_NOT_FIND_ANY_ROUTE" in str(exc_info.value)


@pytest.mark.asyncio
async def test_get_quote_non_success_status():
    session = FakeSession({QUOTE_URL: FakeResponse(429, text="slow down")})
    client = make_client(session)

    with pytest.raises(QuoteUnavailableError):
        await client.get_quote(SOL_META.address, TAXED_MINT, 1, 50)


@pytest.mark.asyncio
async def test_get_quote_transport_failure():
    session = FakeSession({QUOTE_URL: requests.exceptions.ConnectionError("refused")})
    client = make_client(session)

    with pytest.raises(QuoteUnavailableError):
        await client.get_quote(SOL_META.address, TAXED_MINT, 1, 50)


@pytest.mark.asyncio
async def test_get_quote_malformed_body():
    session = FakeSession({QUOTE_URL: FakeResponse(200, text="<html>")})
    client = make_client(session)

    with pytest.raises(QuoteDecodeError):
        await client.get_quote(SOL_META.address, TAXED_MINT, 1, 50)


@pytest.mark.asyncio
async def test_get_quote_missing_fields():
    session = FakeSession({QUOTE_URL: FakeResponse(200, {"inputMint": SOL_META.address})})
    client = make_client(session)

    with pytest.raises(QuoteDecodeError):
        await client.get_quote(SOL_META.address, TAXED_MINT, 1, 50)


@pytest.mark.asyncio
async def test_get_quote_gives_up_when_limiter_wait_too_long():
    session = FakeSession({QUOTE_URL: FakeResponse(200, QUOTE_PAYLOAD)})
    limiter = RateLimiter(1.0, clock=lambda: 0.0)
    client = make_client(session, limiter=limiter, limiter_timeout=0.5)

    await client.get_quote(SOL_META.address, TAXED_MINT, 1, 50)
    with pytest.raises(RateLimitedError):
        await client.get_quote(SOL_META.address, TAXED_MINT, 1, 50)

    assert len(session.calls) == 1


@pytest.mark.asyncio
async def test_execute_swap_raises_compute_limit_for_token_2022(keypair):
    session = FakeSession({SWAP_URL: FakeResponse(200, {"swapTransaction": encoded_swap_transaction(keypair)})})
    rpc = FakeRpc()
    client = make_client(session, rpc=rpc, token_2022=True)
    quote = Quote.model_validate(QUOTE_PAYLOAD)

    signature = await client.execute_swap(Wallet(keypair), quote, 36699)

    body = session.calls[0]["json"]
    assert signature == "5igSignature"
    assert body["computeUnitLimit"] == 400_000
    assert body["computeUnitPrice"] == 0
    assert body["userPublicKey"] == str(keypair.pubkey())
    assert body["prioritizationFeeLamports"] == 36699
    assert body["wrapAndUnwrapSol"] is True
    assert body["useSharedAccounts"] is True
    assert body["asLegacyTransaction"] is False
    assert body["useTokenLedger"] is False
    assert body["dynamicComputeUnitLimit"] is True
    assert body["skipUserAccountsRpcCalls"] is True
    assert body["quoteResponse"]["priceImpactPct"] == "0.15"
    assert body["quoteResponse"]["routePlan"][0]["swapInfo"]["ammKey"] == "amm111"

    sent = VersionedTransaction.from_bytes(rpc.sent[0])
    assert len(sent.signatures) == 1


@pytest.mark.asyncio
async def test_execute_swap_default_compute_limit(keypair):
    session = FakeSession({SWAP_URL: FakeResponse(200, {"swapTransaction": encoded_swap_transaction(keypair)})})
    client = make_client(session, token_2022=False)

    await client.execute_swap(Wallet(keypair), Quote.model_validate(QUOTE_PAYLOAD), 1000)

    assert session.calls[0]["json"]["computeUnitLimit"] == 200_000


@pytest.mark.asyncio
async def test_execute_swap_refuses_foreign_signer(keypair):
    other = Keypair()
    session = FakeSession({SWAP_URL: FakeResponse(200, {"swapTransaction": encoded_swap_transaction(other)})})
    rpc = FakeRpc()
    client = make_client(session, rpc=rpc)

    with pytest.raises(SigningKeyMismatchError):
        await client.execute_swap(Wallet(keypair), Quote.model_validate(QUOTE_PAYLOAD), 1000)

    assert rpc.sent == []


@pytest.mark.asyncio
async def test_execute_swap_undecodable_transaction(keypair):
    session = FakeSession({SWAP_URL: FakeResponse(200, {"swapTransaction": "not base64!"})})
    client = make_client(session)

    with pytest.raises(TransactionDecodeError):
        await client.execute_swap(Wallet(keypair), Quote.model_validate(QUOTE_PAYLOAD), 1000)


@pytest.mark.asyncio
async def test_execute_swap_build_failure(keypair):
    session = FakeSession({SWAP_URL: FakeResponse(500, text="route expired")})
    client = make_client(session)

    with pytest.raises(BuildRequestError):
        await client.execute_swap(Wallet(keypair), Quote.model_validate(QUOTE_PAYLOAD), 1000)


@pytest.mark.asyncio
async def test_execute_swap_submission_failure(keypair):
    session = FakeSession({SWAP_URL: FakeResponse(200, {"swapTransaction": encoded_swap_transaction(keypair)})})
    rpc = FakeRpc()
    rpc.send_error = RpcError("blockhash not found")
    client = make_client(session, rpc=rpc)

    with pytest.raises(SubmissionError):
        await client.execute_swap(Wallet(keypair), Quote.model_validate(QUOTE_PAYLOAD), 1000)
