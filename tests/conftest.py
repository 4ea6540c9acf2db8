import json
import struct
from typing import Any, Dict, List, Optional

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from refillbot.config import SOL_DECIMALS, TOKEN_2022_TAG, BotConfig
from refillbot.errors import TokenMetadataUnavailableError
from refillbot.solana.models import TokenMetadata, TransferFee
from refillbot.solana.rpc_gateway import TokenAccountBalance, TransactionView

COLLECTOR_BYTES = bytes(range(1, 33))
COLLECTOR = str(Pubkey.from_bytes(COLLECTOR_BYTES))


def transfer_fee_record(bps: int = 250, max_fee: int = 1_000_000, collector: bytes = COLLECTOR_BYTES) -> bytes:
    return struct.pack("<HHQ", 1, bps, max_fee) + collector


def interest_record(rate: int = 500, slot: int = 123456) -> bytes:
    return struct.pack("<HH12xQ", 2, rate, slot)


def delegate_record(delegate: bytes) -> bytes:
    return struct.pack("<H", 3) + delegate


def mint_data(extensions: bytes = b"", mint_authority: Optional[bytes] = None,
              freeze_authority: Optional[bytes] = None) -> bytes:
    base = bytearray(82)
    if mint_authority:
        base[0:32] = mint_authority
    if freeze_authority:
        base[36:68] = freeze_authority
    return bytes(base) + extensions


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self.text = text if text is not None else json.dumps(body)
        self.content = self.text.encode()

    def json(self):
        return json.loads(self.text)


class FakeSession:
    """Stands in for requests.Session, answering by URL prefix."""

    def __init__(self, routes: Optional[Dict[str, FakeResponse]] = None):
        self.routes = routes or {}
        self.calls: List[Dict[str, Any]] = []

    def _respond(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        for prefix, response in self.routes.items():
            if url.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                return response
        return FakeResponse(404, text="not found")

    def get(self, url, **kwargs):
        return self._respond("get", url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond("post", url, **kwargs)

    def close(self):
        pass


class FakeRpc:
    """In-memory RPC gateway."""

    def __init__(self, balances=None, accounts=None, signatures=None, transactions=None, token_accounts=None):
        self.balances = list(balances or [])
        self.accounts: Dict[str, Any] = accounts or {}
        self.signatures: List[str] = signatures or []
        self.transactions: Dict[str, Any] = transactions or {}
        self.token_accounts: Dict[str, Any] = token_accounts or {}
        self.sent: List[bytes] = []
        self.transaction_calls: List[str] = []
        self.send_error: Optional[Exception] = None

    async def get_balance(self, address: str) -> int:
        value = self.balances.pop(0) if len(self.balances) > 1 else self.balances[0]
        if isinstance(value, Exception):
            raise value
        return value

    async def get_account_info(self, address: str) -> Optional[bytes]:
        value = self.accounts.get(address)
        if isinstance(value, Exception):
            raise value
        return value

    async def send_raw_transaction(self, tx_bytes: bytes, skip_preflight: bool = False) -> str:
        if self.send_error:
            raise self.send_error
        self.sent.append(tx_bytes)
        return "5igSignature"

    async def get_signatures_for_address(self, address, before=None, limit=1000):
        start = self.signatures.index(before) + 1 if before else 0
        return self.signatures[start:start + limit]

    async def get_transaction(self, signature: str) -> Optional[TransactionView]:
        self.transaction_calls.append(signature)
        value = self.transactions.get(signature)
        if isinstance(value, Exception):
            raise value
        return value

    async def get_token_accounts_by_owner(self, owner: str, program_id: str) -> List[TokenAccountBalance]:
        value = self.token_accounts.get(program_id, [])
        if isinstance(value, Exception):
            raise value
        return list(value)

    async def close(self):
        pass


class FakeTokenInfo:
    def __init__(self, tokens: Dict[str, TokenMetadata]):
        self.tokens = tokens
        self.calls: List[str] = []

    async def get_token_info(self, address: str, force_refresh=None) -> TokenMetadata:
        self.calls.append(address)
        if address not in self.tokens:
            raise TokenMetadataUnavailableError(f"unknown token {address}")
        return self.tokens[address]


SOL_META = TokenMetadata(
    address="So11111111111111111111111111111111111111112",
    symbol="SOL",
    name="Wrapped SOL",
    decimals=SOL_DECIMALS,
)

TAXED_MINT = str(Keypair().pubkey())


def taxed_token(bps: int = 200, token_2022: bool = True) -> TokenMetadata:
    return TokenMetadata(
        address=TAXED_MINT,
        symbol="TAX",
        name="Taxed Token",
        decimals=6,
        tags=frozenset({TOKEN_2022_TAG}) if token_2022 else frozenset(),
        transfer_fee=TransferFee(basis_points=bps, maximum_fee=1_000_000, collector=COLLECTOR) if bps else None,
    )


def make_config(**overrides) -> BotConfig:
    raw = {
        "wallet": {"private_key": "placeholder", "min_sol_balance": "1.0", "reserve_amount": "0.05"},
        "rpc": {"endpoint": "http://localhost:8899"},
        "token": {
            "output_mint": TAXED_MINT,
            "swap_amount": "0.1",
            "slippage_bps": 50,
        },
        "monitor": {"check_interval_minutes": 1, "max_retries": 2, "retry_delay_seconds": 0},
    }
    for section, values in overrides.items():
        raw.setdefault(section, {}).update(values)
    return BotConfig.model_validate(raw)


@pytest.fixture
def config() -> BotConfig:
    return make_config()


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()
