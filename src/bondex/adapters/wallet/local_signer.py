"""
local_signer.py - Keypair held in process memory.

ACCEPTS: base58 string decoding to exactly 64 bytes.
REJECTS: everything else, with ConfigurationError at construction.
NEVER LOGS: the key bytes or decoded value.
"""

from __future__ import annotations

import base58
from loguru import logger
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from ...domain.errors import ConfigurationError
from ...ports.wallet import WalletPort


_B58_CHARS = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")


def load_keypair(private_key_b58: str) -> Keypair:
    if not private_key_b58 or not isinstance(private_key_b58, str):
        raise ConfigurationError("private key is empty or not set")

    private_key_b58 = private_key_b58.strip()
    if not all(c in _B58_CHARS for c in private_key_b58):
        raise ConfigurationError("private key contains invalid characters (must be base58)")

    try:
        key_bytes = base58.b58decode(private_key_b58)
    except ValueError as exc:
        raise ConfigurationError(f"failed to decode private key as base58: {exc}") from exc

    if len(key_bytes) != 64:
        raise ConfigurationError(f"private key decoded to {len(key_bytes)} bytes, expected 64")

    try:
        return Keypair.from_bytes(key_bytes)
    except ValueError as exc:
        raise ConfigurationError(f"failed to create keypair: {exc}") from exc


class LocalKeypairSigner(WalletPort):
    def __init__(self, keypair: Keypair):
        self._keypair = keypair
        logger.info(f"LOCAL_SIGNER | init | wallet={str(keypair.pubkey())[:8]}...")

    @classmethod
    def from_base58(cls, private_key_b58: str) -> "LocalKeypairSigner":
        return cls(load_keypair(private_key_b58))

    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign_transaction(self, tx: VersionedTransaction) -> VersionedTransaction:
        return VersionedTransaction(tx.message, [self._keypair])
