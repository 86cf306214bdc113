from abc import ABC, abstractmethod
from typing import List

from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction


class WalletPort(ABC):
    """Signing capability. Implementations never expose key material."""

    @abstractmethod
    def public_key(self) -> Pubkey:
        ...

    @abstractmethod
    async def sign_transaction(self, tx: VersionedTransaction) -> VersionedTransaction:
        ...

    async def sign_all_transactions(self, txs: List[VersionedTransaction]) -> List[VersionedTransaction]:
        return [await self.sign_transaction(tx) for tx in txs]
