"""
solana_client.py - Solana RPC gateway for bonding curve trading

Features:
1. Bonding curve account fetch + decode (reserve snapshot per trade)
2. Latest blockhash (fetched once per attempt by the caller)
3. Raw broadcast with explicit preflight/retry options
4. Confirmation polling with timeout (the only timeout this engine imposes)
5. Account-change subscriptions over websocket with deterministic unsubscribe

Usage:
    gateway = SolanaRpcGateway(rpc_url, ws_url)
    reserves = await gateway.fetch_reserve_state(derive_bonding_curve_address(mint))
    sig = await gateway.broadcast(signed_tx)
    status = await gateway.confirm(sig)
"""

from __future__ import annotations

import asyncio
import struct
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from loguru import logger
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solana.rpc.websocket_api import connect
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from ...config.constants import BONDING_CURVE_SEED, PUMP_PROGRAM_ID
from ...domain.errors import SubmissionError
from ...domain.models import ReserveState
from ...ports.rpc import ConfirmationStatus, FeedClosedCallback, ReserveCallback, RpcPort


# =============================================================================
# BONDING CURVE ACCOUNT
# =============================================================================

# 8-byte anchor discriminator, then:
# virtual_token_reserves, virtual_sol_reserves, real_token_reserves,
# real_sol_reserves, token_total_supply (u64 LE), complete (bool)
_DISCRIMINATOR_LEN = 8
_CURVE_LAYOUT = struct.Struct("<5Q?")


def derive_bonding_curve_address(mint: str, program_id: str = PUMP_PROGRAM_ID) -> Pubkey:
    address, _bump = Pubkey.find_program_address(
        [BONDING_CURVE_SEED, bytes(Pubkey.from_string(mint))],
        Pubkey.from_string(program_id),
    )
    return address


def decode_bonding_curve(data: bytes) -> ReserveState:
    needed = _DISCRIMINATOR_LEN + _CURVE_LAYOUT.size
    if len(data) < needed:
        raise ValueError(f"bonding curve account too short: {len(data)} < {needed} bytes")
    vtok, vsol, rtok, rsol, supply, complete = _CURVE_LAYOUT.unpack_from(data, _DISCRIMINATOR_LEN)
    return ReserveState(
        virtual_sol_reserves=vsol,
        virtual_token_reserves=vtok,
        real_sol_reserves=rsol,
        real_token_reserves=rtok,
        complete=complete,
        token_total_supply=supply,
    )


# =============================================================================
# ERROR CLASSIFICATION
# =============================================================================

class TxFailureReason(Enum):
    """Tag prefixed onto broadcast/confirmation errors."""
    BLOCKHASH_EXPIRED = "blockhash_expired"
    CURVE_COMPLETE = "curve_complete"
    SLIPPAGE_EXCEEDED = "slippage_exceeded"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SIMULATION_FAILED = "simulation_failed"
    PROGRAM_ERROR = "program_error"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    UNKNOWN = "unknown"


# First match wins: curve program errors arrive wrapped in generic
# "simulation failed" / "custom program error" text.
_FAILURE_MARKERS = (
    (TxFailureReason.BLOCKHASH_EXPIRED, ("blockhash",)),
    (TxFailureReason.CURVE_COMPLETE, ("bondingcurvecomplete",)),
    (TxFailureReason.SLIPPAGE_EXCEEDED, ("toomuchsolrequired", "toolittlesolreceived", "slippage")),
    (TxFailureReason.INSUFFICIENT_FUNDS, ("insufficient", "not enough")),
    (TxFailureReason.SIMULATION_FAILED, ("simulation",)),
    (TxFailureReason.PROGRAM_ERROR, ("program",)),
    (TxFailureReason.TIMEOUT, ("timeout", "timed out")),
    (TxFailureReason.NETWORK_ERROR, ("connection", "network")),
)


def classify_error(error_msg: str) -> TxFailureReason:
    lowered = error_msg.lower()
    for reason, markers in _FAILURE_MARKERS:
        if any(m in lowered for m in markers):
            return reason
    return TxFailureReason.UNKNOWN


@dataclass(frozen=True)
class SignatureStatus:
    landed: bool
    error: Optional[str] = None
    slot: Optional[int] = None


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

@dataclass
class AccountSubscription:
    """Handle returned by subscribe_account_changes."""
    address: Pubkey
    on_change: ReserveCallback
    on_closed: Optional[FeedClosedCallback] = None
    active: bool = True
    handed_out: bool = False
    subscription_id: Optional[int] = None
    ready: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


def _end_reason(task: asyncio.Task) -> str:
    exc = None if task.cancelled() else task.exception()
    if exc is None:
        return "stream closed"
    return f"{type(exc).__name__}: {exc}"


# =============================================================================
# GATEWAY
# =============================================================================

class SolanaRpcGateway(RpcPort):
    """
    RPC collaborator for the trader.

    Key behaviours:
    1. Never caches reserves: every call hits the chain
    2. Broadcast failures are raised as SubmissionError tagged with a reason
    3. Confirmation returns a status instead of raising
    """

    def __init__(
        self,
        rpc_url: str,
        ws_url: str,
        confirm_timeout: float = 60.0,
        poll_interval: float = 0.5,
        subscribe_timeout: float = 10.0,
    ):
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval
        self.subscribe_timeout = subscribe_timeout

        self._client: Optional[AsyncClient] = None
        self._subscriptions: Dict[int, AccountSubscription] = {}

        logger.info(f"SOLANA_GATEWAY | init | confirm_timeout={confirm_timeout}s")

    async def _get_client(self) -> AsyncClient:
        if self._client is None:
            self._client = AsyncClient(self.rpc_url, commitment=Confirmed)
        return self._client

    async def close(self) -> None:
        """Drop live subscriptions first, then the HTTP client."""
        for sub in list(self._subscriptions.values()):
            await self.unsubscribe(sub)
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    # =========================================================================
    # READS
    # =========================================================================

    async def fetch_reserve_state(self, curve_address: Pubkey) -> ReserveState:
        client = await self._get_client()
        resp = await client.get_account_info(curve_address, commitment=Confirmed)
        if resp.value is None:
            raise SubmissionError(f"bonding curve account not found: {curve_address}")
        return decode_bonding_curve(bytes(resp.value.data))

    async def get_recent_blockhash(self) -> Hash:
        client = await self._get_client()
        resp = await client.get_latest_blockhash(Confirmed)
        return resp.value.blockhash

    async def get_token_balance(self, owner: Pubkey, mint: str) -> Decimal:
        """SPL balance in whole tokens, summed over all accounts for the mint."""
        client = await self._get_client()
        result = await client.get_token_accounts_by_owner_json_parsed(
            owner,
            TokenAccountOpts(mint=Pubkey.from_string(mint)),
            commitment=Confirmed,
        )

        total = Decimal(0)
        for account in result.value:
            data = account.account.data
            if hasattr(data, "parsed"):
                info = data.parsed.get("info", {})
                amount = info.get("tokenAmount", {})
                total += Decimal(str(amount.get("uiAmountString") or amount.get("uiAmount") or 0))
        return total

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """None while the cluster has not seen the signature or the lookup failed."""
        client = await self._get_client()
        try:
            resp = await client.get_signature_statuses([Signature.from_string(signature)])
        except Exception as e:
            logger.warning(f"SIG_STATUS | lookup_failed | sig={signature[:16]}... | {type(e).__name__}: {e}")
            return None

        found = resp.value[0] if resp.value else None
        if found is None:
            return None

        level = str(found.confirmation_status or "").lower()
        return SignatureStatus(
            landed="confirmed" in level or "finalized" in level,
            error=str(found.err) if found.err else None,
            slot=found.slot,
        )

    # =========================================================================
    # WRITES
    # =========================================================================

    async def broadcast(
        self,
        tx: VersionedTransaction,
        skip_preflight: bool = True,
        max_retries: int = 2,
    ) -> str:
        client = await self._get_client()
        opts = TxOpts(skip_preflight=skip_preflight, preflight_commitment=Confirmed, max_retries=max_retries)
        try:
            resp = await client.send_raw_transaction(bytes(tx), opts=opts)
        except Exception as e:
            error_msg = str(e)
            reason = classify_error(error_msg)
            logger.error(f"TX_SEND | error | reason={reason.value} | {error_msg}")
            raise SubmissionError(f"{reason.value}: {error_msg}") from e

        signature = str(resp.value)
        logger.info(f"TX_SENT | sig={signature}")
        return signature

    async def confirm(self, signature: str) -> ConfirmationStatus:
        """Poll until confirmed, failed, or confirm_timeout elapses."""
        loop = asyncio.get_running_loop()
        start = loop.time()

        polls = 0

        while loop.time() - start <= self.confirm_timeout:
            polls += 1
            status = await self.get_signature_status(signature)

            if status is not None and status.error:
                reason = classify_error(status.error)
                logger.error(f"TX_FAILED | sig={signature} | reason={reason.value} | slot={status.slot} | {status.error}")
                return ConfirmationStatus(ok=False, error=f"{reason.value}: {status.error}")

            if status is not None and status.landed:
                logger.info(f"TX_CONFIRMED | sig={signature} | slot={status.slot} | polls={polls}")
                return ConfirmationStatus(ok=True)

            await asyncio.sleep(self.poll_interval)

        elapsed = loop.time() - start
        logger.warning(f"TX_TIMEOUT | sig={signature} | elapsed={elapsed:.1f}s | polls={polls}")
        return ConfirmationStatus(ok=False, error=f"confirmation_timeout:{elapsed:.1f}s")

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    async def subscribe_account_changes(
        self,
        address: Pubkey,
        on_change: ReserveCallback,
        on_closed: Optional[FeedClosedCallback] = None,
    ) -> AccountSubscription:
        """
        Start streaming account updates.

        Fails with SubmissionError if the stream dies before it is confirmed.
        Once the handle is returned, a later end of stream (error or close)
        is reported once through on_closed.
        """
        sub = AccountSubscription(address=address, on_change=on_change, on_closed=on_closed)
        task = asyncio.create_task(self._run_subscription(sub))
        sub.task = task
        task.add_done_callback(lambda t: self._subscription_ended(sub, t))
        self._subscriptions[id(sub)] = sub

        ready = asyncio.ensure_future(sub.ready.wait())
        try:
            await asyncio.wait({ready, task}, timeout=self.subscribe_timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            ready.cancel()

        if not sub.ready.is_set():
            if task.done():
                sub.active = False
                self._subscriptions.pop(id(sub), None)
                reason = _end_reason(task)
                logger.error(f"WS_SUBSCRIBE | failed | address={str(address)[:8]}... | {reason}")
                raise SubmissionError(f"account subscription failed: {reason}")
            logger.warning(f"WS_SUBSCRIBE | slow | address={str(address)[:8]}... | still connecting")

        sub.handed_out = True
        if task.done():
            self._subscription_ended(sub, task)
        return sub

    def _subscription_ended(self, sub: AccountSubscription, task: asyncio.Task) -> None:
        if task.cancelled() or not sub.handed_out or not sub.active:
            return

        reason = _end_reason(task)
        logger.error(f"WS_SUBSCRIPTION | ended | address={str(sub.address)[:8]}... | {reason}")
        sub.active = False
        self._subscriptions.pop(id(sub), None)
        if sub.on_closed is None:
            return
        try:
            sub.on_closed(reason)
        except Exception as e:
            logger.error(f"WS_SUBSCRIPTION | on_closed_error | {type(e).__name__}: {e}")

    async def _run_subscription(self, sub: AccountSubscription) -> None:
        async with connect(self.ws_url) as ws:
            await ws.account_subscribe(sub.address, commitment=Confirmed, encoding="base64")
            first = await ws.recv()
            sub.subscription_id = first[0].result
            sub.ready.set()
            logger.info(f"WS_SUBSCRIBED | address={str(sub.address)[:8]}... | id={sub.subscription_id}")

            async for msgs in ws:
                for msg in msgs:
                    value = getattr(getattr(msg, "result", None), "value", None)
                    if value is None or not sub.active:
                        continue
                    try:
                        state = decode_bonding_curve(bytes(value.data))
                    except ValueError as e:
                        logger.warning(f"WS_DECODE | skipped | {e}")
                        continue
                    try:
                        sub.on_change(state)
                    except Exception as e:
                        logger.error(f"WS_CALLBACK | error | {type(e).__name__}: {e}")

    async def unsubscribe(self, handle: AccountSubscription) -> None:
        if handle is None:
            return
        # Flip first: nothing already queued may reach the callback.
        handle.active = False
        self._subscriptions.pop(id(handle), None)

        task = handle.task
        handle.task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info(f"WS_UNSUBSCRIBED | address={str(handle.address)[:8]}...")
