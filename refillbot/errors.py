"""
Exception hierarchy for the refill bot.

Errors fall into four families that decide how callers react:

- TransientError: network, RPC and HTTP failures. Eligible for retry.
- ValidationError: malformed input or configuration. Never retried.
- PolicyViolationError: a trade rule refused the swap. The next monitor tick
  may try again.
- DecodeFailure: raw bytes did not match the expected layout.
"""

from typing import Optional


class RefillBotError(Exception):
    """Base exception for refill bot errors."""
    pass


class TransientError(RefillBotError):
    """Failure that may succeed if the same operation is attempted again."""
    pass


class ValidationError(RefillBotError):
    """Input or configuration is malformed."""
    pass


class PolicyViolationError(RefillBotError):
    """A trading rule rejected the operation."""
    pass


class DecodeFailure(RefillBotError):
    """Raw data did not match the expected binary layout."""
    pass


# Validation

class ConfigError(ValidationError):
    """Configuration is missing or invalid."""
    pass


class InvalidAddressError(ValidationError):
    """A string is not a valid base58 public key."""
    pass


class SigningKeyMismatchError(ValidationError):
    """The wallet does not hold a key the transaction requires."""
    pass


class PriceImpactParseError(ValidationError):
    """The quote's price impact is not a decimal number."""
    pass


class LedgerCorruptError(ValidationError):
    """The persisted transfer ledger cannot be read back."""
    pass


# Policy

class InsufficientBalanceError(PolicyViolationError):
    """Balance does not cover the swap amount plus the reserve."""

    def __init__(self, balance, required):
        self.balance = balance
        self.required = required
        super().__init__(
            f"insufficient balance for swap: have {balance}, need {required} (including reserve)"
        )


class PriceImpactTooHighError(PolicyViolationError):
    """Quoted price impact exceeds the effective slippage cap."""

    def __init__(self, price_impact, max_price_impact):
        self.price_impact = price_impact
        self.max_price_impact = max_price_impact
        super().__init__(
            f"price impact too high: {price_impact}% (max: {max_price_impact}%)"
        )


# Decode

class NotThisExtensionError(DecodeFailure):
    """The extension tag does not match the requested extension type."""
    pass


class BufferTooShortError(DecodeFailure):
    """The account data is smaller than the layout requires."""
    pass


class TransactionDecodeError(DecodeFailure):
    """The aggregator returned a transaction that cannot be deserialized."""
    pass


# Transient

class RpcError(TransientError):
    """A Solana RPC call failed."""
    pass


class QuoteUnavailableError(TransientError):
    """The quote endpoint failed or returned a non-success status."""
    pass


class QuoteDecodeError(TransientError):
    """The quote endpoint returned a body that is not a valid quote."""
    pass


class RateLimitedError(TransientError):
    """Gave up waiting for a rate limiter slot."""
    pass


class BuildRequestError(TransientError):
    """The swap-build request failed."""
    pass


class SubmissionError(TransientError):
    """The signed transaction could not be submitted."""
    pass


class TokenMetadataUnavailableError(TransientError):
    """Token metadata could not be fetched."""
    pass


class PriceUnavailableError(TransientError):
    """Token prices could not be fetched."""
    pass


class RetryExhaustedError(RefillBotError):
    """Every attempt of a retried operation failed."""

    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"operation failed after {attempts} attempts: {last_error}")
