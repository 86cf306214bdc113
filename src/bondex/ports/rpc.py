from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional

from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from ..domain.models import ReserveState


@dataclass(frozen=True)
class ConfirmationStatus:
    """Result of waiting on a signature."""

    ok: bool
    error: str = ""


ReserveCallback = Callable[[ReserveState], None]
# Called once with a reason when a live subscription ends without unsubscribe().
FeedClosedCallback = Callable[[str], None]


class RpcPort(ABC):
    """Blockchain RPC collaborator."""

    @abstractmethod
    async def fetch_reserve_state(self, curve_address: Pubkey) -> ReserveState:
        ...

    @abstractmethod
    async def get_recent_blockhash(self) -> Hash:
        ...

    @abstractmethod
    async def broadcast(
        self,
        tx: VersionedTransaction,
        skip_preflight: bool = True,
        max_retries: int = 2,
    ) -> str:
        ...

    @abstractmethod
    async def confirm(self, signature: str) -> ConfirmationStatus:
        ...

    @abstractmethod
    async def subscribe_account_changes(
        self,
        address: Pubkey,
        on_change: ReserveCallback,
        on_closed: Optional[FeedClosedCallback] = None,
    ) -> Any:
        """Raise SubmissionError when the subscription cannot be established."""
        ...

    @abstractmethod
    async def unsubscribe(self, handle: Any) -> None:
        ...

    @abstractmethod
    async def get_token_balance(self, owner: Pubkey, mint: str) -> Decimal:
        ...
