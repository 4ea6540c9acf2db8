"""
Token-2022 mint extension decoding.

Mint account data starts with the 82-byte base mint layout. Extension
records follow immediately, each beginning with a 2-byte little-endian
type tag and a fixed-size payload:

    TransferFee        [tag:2][bps:2][max_fee:8][collector:32]      44 bytes
    InterestBearing    [tag:2][rate_bps:2][pad:12][last_slot:8]     24 bytes
    PermanentDelegate  [tag:2][delegate:32]                         34 bytes

The single-record parsers read the record sitting in the first slot at
offset 82. ``iter_extensions`` walks the whole chain.
"""

import struct
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Union

from solders.pubkey import Pubkey

from refillbot.errors import BufferTooShortError, NotThisExtensionError

# Extension type identifiers
EXTENSION_TRANSFER_FEE = 1
EXTENSION_INTEREST_BEARING = 2
EXTENSION_PERMANENT_DELEGATE = 3
EXTENSION_CONFIDENTIAL_TRANSFERS = 4
EXTENSION_DEFAULT_ACCOUNT_STATE = 5
EXTENSION_MEMO_TRANSFER = 6
EXTENSION_NON_TRANSFERABLE = 7
EXTENSION_INTEREST_BEARING_CONFIG = 8

# Base account data size
MINT_ACCOUNT_SIZE = 82

# Authority offsets in the base layout
MINT_AUTHORITY_OFFSET = 0
FREEZE_AUTHORITY_OFFSET = 36
PUBKEY_LENGTH = 32

TAG_LENGTH = 2
TRANSFER_FEE_MIN_LENGTH = 16
TRANSFER_FEE_RECORD_LENGTH = 44
INTEREST_BEARING_RECORD_LENGTH = 24
PERMANENT_DELEGATE_RECORD_LENGTH = 34

_EMPTY_PUBKEY = bytes(PUBKEY_LENGTH)


@dataclass(frozen=True)
class TransferFeeExtension:
    basis_points: int
    maximum_fee: int
    collector: str


@dataclass(frozen=True)
class InterestBearingExtension:
    current_rate: int
    apy: float
    last_update_slot: int


@dataclass(frozen=True)
class PermanentDelegateExtension:
    delegate: str


MintExtension = Union[TransferFeeExtension, InterestBearingExtension, PermanentDelegateExtension]


@dataclass(frozen=True)
class Authorities:
    mint_authority: Optional[str] = None
    freeze_authority: Optional[str] = None


@dataclass(frozen=True)
class MintExtensions:
    """Everything decodable from one mint account."""
    authorities: Authorities
    extensions: List[MintExtension] = field(default_factory=list)


def _pubkey_at(data: bytes, offset: int) -> str:
    return str(Pubkey.from_bytes(bytes(data[offset:offset + PUBKEY_LENGTH])))


def _read_tag(data: bytes, offset: int) -> int:
    return struct.unpack_from("<H", data, offset)[0]


def _check_record(data: bytes, offset: int, expected_tag: int, min_length: int, name: str) -> None:
    if len(data) < offset + min_length:
        raise BufferTooShortError(f"data too short for {name}")
    tag = _read_tag(data, offset)
    if tag != expected_tag:
        raise NotThisExtensionError(f"not a {name} extension (tag {tag})")


def _decode_transfer_fee(data: bytes, offset: int) -> TransferFeeExtension:
    _check_record(data, offset, EXTENSION_TRANSFER_FEE, TRANSFER_FEE_MIN_LENGTH, "transfer fee")
    if len(data) < offset + TRANSFER_FEE_RECORD_LENGTH:
        raise BufferTooShortError("data too short for transfer fee collector")

    basis_points, maximum_fee = struct.unpack_from("<HQ", data, offset + 2)
    return TransferFeeExtension(
        basis_points=basis_points,
        maximum_fee=maximum_fee,
        collector=_pubkey_at(data, offset + 12),
    )


def _decode_interest_bearing(data: bytes, offset: int) -> InterestBearingExtension:
    _check_record(
        data, offset, EXTENSION_INTEREST_BEARING, INTEREST_BEARING_RECORD_LENGTH, "interest bearing"
    )
    current_rate = struct.unpack_from("<H", data, offset + 2)[0]
    last_update_slot = struct.unpack_from("<Q", data, offset + 16)[0]
    return InterestBearingExtension(
        current_rate=current_rate,
        apy=current_rate / 100.0,  # bps to percent
        last_update_slot=last_update_slot,
    )


def _decode_permanent_delegate(data: bytes, offset: int) -> PermanentDelegateExtension:
    _check_record(
        data, offset, EXTENSION_PERMANENT_DELEGATE, PERMANENT_DELEGATE_RECORD_LENGTH, "permanent delegate"
    )
    return PermanentDelegateExtension(delegate=_pubkey_at(data, offset + TAG_LENGTH))


def parse_transfer_fee(data: bytes) -> TransferFeeExtension:
    """
    Parse the transfer fee extension in the first extension slot.

    Raises:
        BufferTooShortError: If the data cannot hold the record
        NotThisExtensionError: If the slot holds another extension type
    """
    return _decode_transfer_fee(data, MINT_ACCOUNT_SIZE)


def parse_interest_bearing(data: bytes) -> InterestBearingExtension:
    """Parse the interest-bearing extension in the first extension slot."""
    return _decode_interest_bearing(data, MINT_ACCOUNT_SIZE)


def parse_permanent_delegate(data: bytes) -> PermanentDelegateExtension:
    """Parse the permanent delegate extension in the first extension slot."""
    return _decode_permanent_delegate(data, MINT_ACCOUNT_SIZE)


def parse_authorities(data: bytes) -> Authorities:
    """
    Read mint and freeze authorities from the base mint layout.

    An all-zero key means the authority is not set.
    """
    if len(data) < MINT_ACCOUNT_SIZE:
        raise BufferTooShortError("data too short for authorities")

    def _authority(offset: int) -> Optional[str]:
        raw = bytes(data[offset:offset + PUBKEY_LENGTH])
        if raw == _EMPTY_PUBKEY:
            return None
        return _pubkey_at(data, offset)

    return Authorities(
        mint_authority=_authority(MINT_AUTHORITY_OFFSET),
        freeze_authority=_authority(FREEZE_AUTHORITY_OFFSET),
    )


_DECODERS = {
    EXTENSION_TRANSFER_FEE: (_decode_transfer_fee, TRANSFER_FEE_RECORD_LENGTH),
    EXTENSION_INTEREST_BEARING: (_decode_interest_bearing, INTEREST_BEARING_RECORD_LENGTH),
    EXTENSION_PERMANENT_DELEGATE: (_decode_permanent_delegate, PERMANENT_DELEGATE_RECORD_LENGTH),
}


def iter_extensions(data: bytes) -> Iterator[MintExtension]:
    """
    Walk every extension record after the base layout.

    Stops at a zero tag (uninitialized padding), at a tag whose record size
    is unknown, or at a truncated record.
    """
    offset = MINT_ACCOUNT_SIZE
    while offset + TAG_LENGTH <= len(data):
        tag = _read_tag(data, offset)
        if tag not in _DECODERS:
            return
        decoder, record_length = _DECODERS[tag]
        if offset + record_length > len(data):
            return
        yield decoder(data, offset)
        offset += record_length


def decode_mint(data: bytes) -> MintExtensions:
    """Decode authorities and all extensions from raw mint account data."""
    return MintExtensions(
        authorities=parse_authorities(data),
        extensions=list(iter_extensions(data)),
    )
