from .fee_estimator import (
    FeeEstimator,
    FeeSamples,
    FeeSampleSource,
    HeliusPriorityFeeSource,
    RpcPrioritizationFeeSource,
)
from .relay_router import RelayFailoverRouter, RelayPool
from .retry import FATAL_ERROR_PHRASES, RetryController, RetryState, is_fatal_error, run_with_retry

__all__ = [
    "FATAL_ERROR_PHRASES",
    "FeeEstimator",
    "FeeSamples",
    "FeeSampleSource",
    "HeliusPriorityFeeSource",
    "RelayFailoverRouter",
    "RelayPool",
    "RetryController",
    "RetryState",
    "RpcPrioritizationFeeSource",
    "is_fatal_error",
    "run_with_retry",
]
