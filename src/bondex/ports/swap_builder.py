from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal

from ..domain.models import TradeAction


@dataclass(frozen=True)
class SwapRequest:
    """One unsigned-swap request. amount is SOL when amount_is_base_asset."""

    signer_address: str
    action: TradeAction
    mint: str
    amount_is_base_asset: bool
    amount: Decimal
    slippage_bps: int
    fee_sol: Decimal


class SwapBuilderPort(ABC):
    """Swap-transaction building API."""

    @abstractmethod
    async def build_swap(self, request: SwapRequest) -> bytes:
        """Return the serialized unsigned transaction or raise SubmissionError."""
        ...

    async def close(self) -> None:
        return None
