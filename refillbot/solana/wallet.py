"""
Wallet key handling and transaction signing.
"""

from typing import Optional

import base58
from loguru import logger
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from refillbot.errors import InvalidAddressError, SigningKeyMismatchError

KEYPAIR_LENGTH = 64


class Wallet:
    """
    Holds the bot's signing key.

    The key never leaves this object; callers ask it to sign instead.
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @classmethod
    def from_base58(cls, private_key: str) -> "Wallet":
        """
        Build a wallet from a base58-encoded 64-byte secret key.

        Raises:
            InvalidAddressError: If the key is not valid base58 or has the wrong length
        """
        try:
            secret = base58.b58decode(private_key.strip())
        except ValueError as e:
            raise InvalidAddressError(f"invalid private key encoding: {e}") from e

        if len(secret) != KEYPAIR_LENGTH:
            raise InvalidAddressError(
                f"invalid private key length: expected {KEYPAIR_LENGTH} bytes, got {len(secret)}"
            )

        try:
            keypair = Keypair.from_bytes(secret)
        except ValueError as e:
            raise InvalidAddressError(f"invalid private key: {e}") from e

        return cls(keypair)

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    def keypair_for(self, pubkey: Pubkey) -> Optional[Keypair]:
        """Return the keypair for a public key, or None if this wallet does not hold it."""
        if pubkey == self._keypair.pubkey():
            return self._keypair
        return None

    def sign_transaction(self, tx: VersionedTransaction) -> VersionedTransaction:
        """
        Sign every required signer slot of a versioned transaction.

        Raises:
            SigningKeyMismatchError: If a required signer is not held by this wallet
        """
        message = tx.message
        required = message.header.num_required_signatures
        signers = []
        for pubkey in message.account_keys[:required]:
            keypair = self.keypair_for(pubkey)
            if keypair is None:
                raise SigningKeyMismatchError(f"no key held for required signer {pubkey}")
            signers.append(keypair)

        logger.debug(f"Signing transaction with {len(signers)} signer(s)")
        return VersionedTransaction(message, signers)
