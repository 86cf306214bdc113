"""
transactions.py - Small helpers around solders versioned transactions.

A swap and its tip must share one recent blockhash: both are re-bound to the
hash fetched once per attempt, so they expire together.
"""

from __future__ import annotations

from typing import Union

import base58
from solders.hash import Hash
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction


AnyMessage = Union[Message, MessageV0]


def unsigned(message: AnyMessage) -> VersionedTransaction:
    """Wrap a message with placeholder signatures for the wallet to replace."""
    required = message.header.num_required_signatures
    return VersionedTransaction.populate(message, [Signature.default()] * required)


def with_blockhash(message: AnyMessage, blockhash: Hash) -> AnyMessage:
    if isinstance(message, MessageV0):
        return MessageV0(
            message.header,
            message.account_keys,
            blockhash,
            message.instructions,
            message.address_table_lookups,
        )
    header = message.header
    return Message.new_with_compiled_instructions(
        header.num_required_signatures,
        header.num_readonly_signed_accounts,
        header.num_readonly_unsigned_accounts,
        message.account_keys,
        blockhash,
        message.instructions,
    )


def rebind_swap_transaction(raw: bytes, blockhash: Hash) -> VersionedTransaction:
    """Deserialize an API-built swap and point it at our blockhash."""
    tx = VersionedTransaction.from_bytes(raw)
    return unsigned(with_blockhash(tx.message, blockhash))


def build_tip_transaction(payer: Pubkey, tip_account: Pubkey, lamports: int, blockhash: Hash) -> VersionedTransaction:
    ix = transfer(TransferParams(from_pubkey=payer, to_pubkey=tip_account, lamports=lamports))
    message = MessageV0.try_compile(payer, [ix], [], blockhash)
    return unsigned(message)


def first_signature(tx: VersionedTransaction) -> str:
    return str(tx.signatures[0])


def encode_base58(tx: VersionedTransaction) -> str:
    return base58.b58encode(bytes(tx)).decode("ascii")
