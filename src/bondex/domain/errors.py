"""
errors.py - Error taxonomy for the execution engine.

Classification drives retry decisions:
- ConfigurationError: fatal, raised at construction, never retried
- QuoteError: fatal for the attempt (curve math produced nothing usable)
- FeeEstimationError: recovered inside the fee estimator, never surfaced
- SubmissionError / ConfirmationError: retryable unless the message matches
  a fatal phrase
- RelayExhaustionError: fatal for one router call, retryable for the trade
"""

from __future__ import annotations


class BondexError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(BondexError):
    """Missing or invalid credentials / endpoints."""


class QuoteError(BondexError):
    """Curve math produced a non-positive or undefined amount."""


class InvalidReserveState(QuoteError):
    """Reserves would force a division by zero."""


class UninvestableQuote(QuoteError):
    """Reserves exhausted or trade too small to register at integer precision."""


class FeeEstimationError(BondexError):
    """Dynamic fee source failed or returned garbage."""


class SubmissionError(BondexError):
    """Broadcast, swap-builder or relay rejected the transaction."""


class ConfirmationError(BondexError):
    """Transaction was not confirmed on-chain."""


class RelayExhaustionError(SubmissionError):
    """Every relay endpoint failed for one submission."""


class AllRelaysExhausted(RelayExhaustionError):
    def __init__(self, attempts: int, last_error: str = ""):
        self.attempts = attempts
        self.last_error = last_error
        msg = f"all relay endpoints failed after {attempts} attempts"
        if last_error:
            msg = f"{msg}: {last_error}"
        super().__init__(msg)
