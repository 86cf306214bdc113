from .errors import (
    AllRelaysExhausted,
    BondexError,
    ConfigurationError,
    ConfirmationError,
    FeeEstimationError,
    InvalidReserveState,
    QuoteError,
    RelayExhaustionError,
    SubmissionError,
    UninvestableQuote,
)
from .models import (
    AttemptOutcome,
    DeliveryMode,
    ExitPosition,
    FeeEstimate,
    FeeMode,
    OutcomeKind,
    ReserveState,
    RetryPolicy,
    SwapParameters,
    TradeAction,
    TradeIntent,
    TradeOptions,
    TradeResult,
)

__all__ = [
    "AllRelaysExhausted",
    "AttemptOutcome",
    "BondexError",
    "ConfigurationError",
    "ConfirmationError",
    "DeliveryMode",
    "ExitPosition",
    "FeeEstimate",
    "FeeEstimationError",
    "FeeMode",
    "InvalidReserveState",
    "OutcomeKind",
    "QuoteError",
    "RelayExhaustionError",
    "ReserveState",
    "RetryPolicy",
    "SubmissionError",
    "SwapParameters",
    "TradeAction",
    "TradeIntent",
    "TradeOptions",
    "TradeResult",
    "UninvestableQuote",
]
