from .rpc import ConfirmationStatus, FeedClosedCallback, ReserveCallback, RpcPort
from .swap_builder import SwapBuilderPort, SwapRequest
from .wallet import WalletPort

__all__ = [
    "ConfirmationStatus",
    "FeedClosedCallback",
    "ReserveCallback",
    "RpcPort",
    "SwapBuilderPort",
    "SwapRequest",
    "WalletPort",
]
