from __future__ import annotations

import asyncio
import struct
from decimal import Decimal
from types import SimpleNamespace

import pytest
from solders.pubkey import Pubkey

from bondex.config.constants import PUMP_PROGRAM_ID
from bondex.domain.errors import SubmissionError
from bondex.engines.execution import solana_client
from bondex.engines.execution.solana_client import (
    AccountSubscription,
    SignatureStatus,
    SolanaRpcGateway,
    TxFailureReason,
    classify_error,
    decode_bonding_curve,
    derive_bonding_curve_address,
)
from bondex.engines.exit_engine import ExitEngine, ExitState


MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"


def _account_bytes(vtok: int, vsol: int, rtok: int, rsol: int, supply: int, complete: bool) -> bytes:
    discriminator = bytes([23, 183, 248, 55, 96, 216, 172, 96])
    return discriminator + struct.pack("<5Q?", vtok, vsol, rtok, rsol, supply, complete) + bytes(32)


def test_decode_bonding_curve_layout() -> None:
    data = _account_bytes(1_073_000_000_000_000, 30_000_000_000, 793_100_000_000_000, 0, 10**15, False)

    state = decode_bonding_curve(data)

    assert state.virtual_token_reserves == 1_073_000_000_000_000
    assert state.virtual_sol_reserves == 30_000_000_000
    assert state.real_token_reserves == 793_100_000_000_000
    assert state.real_sol_reserves == 0
    assert state.token_total_supply == 10**15
    assert state.complete is False


def test_decode_completed_curve() -> None:
    assert decode_bonding_curve(_account_bytes(1, 1, 0, 0, 1, True)).complete is True


def test_decode_short_account_rejected() -> None:
    with pytest.raises(ValueError):
        decode_bonding_curve(bytes(20))


def test_bonding_curve_address_is_stable_pda() -> None:
    expected, _ = Pubkey.find_program_address(
        [b"bonding-curve", bytes(Pubkey.from_string(MINT))],
        Pubkey.from_string(PUMP_PROGRAM_ID),
    )

    assert derive_bonding_curve_address(MINT) == expected
    assert not expected.is_on_curve()


@pytest.mark.parametrize(
    "message, reason",
    [
        ("Blockhash not found", TxFailureReason.BLOCKHASH_EXPIRED),
        ("Transaction simulation failed", TxFailureReason.SIMULATION_FAILED),
        ("insufficient lamports", TxFailureReason.INSUFFICIENT_FUNDS),
        ("custom program error: TooMuchSolRequired", TxFailureReason.SLIPPAGE_EXCEEDED),
        ("ReadTimeout", TxFailureReason.TIMEOUT),
        ("custom program error: BondingCurveComplete", TxFailureReason.CURVE_COMPLETE),
        ("Transaction simulation failed: insufficient funds for rent", TxFailureReason.INSUFFICIENT_FUNDS),
        ("something odd", TxFailureReason.UNKNOWN),
    ],
)
def test_classify_error(message: str, reason: TxFailureReason) -> None:
    assert classify_error(message) is reason


def test_unsubscribe_deactivates_and_cancels() -> None:
    gateway = SolanaRpcGateway("http://localhost:8899", "ws://localhost:8900")
    delivered: list = []

    async def scenario():
        sub = AccountSubscription(address=Pubkey.new_unique(), on_change=delivered.append)
        sub.task = asyncio.create_task(asyncio.sleep(3600))
        await gateway.unsubscribe(sub)
        await gateway.unsubscribe(sub)
        return sub

    sub = asyncio.run(scenario())

    assert sub.active is False
    assert sub.task is None
    assert delivered == []


class _ScriptedGateway(SolanaRpcGateway):
    def __init__(self, statuses, **kwargs) -> None:
        super().__init__("http://localhost:8899", "ws://localhost:8900", poll_interval=0, **kwargs)
        self.statuses = list(statuses)

    async def get_signature_status(self, signature):
        return self.statuses.pop(0) if self.statuses else None


def test_confirm_waits_until_landed() -> None:
    gateway = _ScriptedGateway([None, SignatureStatus(landed=False), SignatureStatus(landed=True, slot=42)])

    status = asyncio.run(gateway.confirm("sig"))

    assert status.ok is True
    assert gateway.statuses == []


def test_confirm_reports_on_chain_failure() -> None:
    gateway = _ScriptedGateway([SignatureStatus(landed=True, error="custom program error: TooLittleSolReceived")])

    status = asyncio.run(gateway.confirm("sig"))

    assert status.ok is False
    assert status.error.startswith("slippage_exceeded")


def test_confirm_times_out() -> None:
    gateway = _ScriptedGateway([], confirm_timeout=0.01)

    status = asyncio.run(gateway.confirm("sig"))

    assert status.ok is False
    assert status.error.startswith("confirmation_timeout")


class _FakeWebsocket:
    """Scripted account stream: one ack, then the given batches, then an optional error."""

    def __init__(self, batches, error: Exception = None, hang: bool = False) -> None:
        self.batches = list(batches)
        self.error = error
        self.hang = hang
        self.subscribed: list = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def account_subscribe(self, address, commitment=None, encoding=None):
        self.subscribed.append((address, encoding))

    async def recv(self):
        return [SimpleNamespace(result=7)]

    def __aiter__(self):
        return self._messages()

    async def _messages(self):
        for batch in self.batches:
            yield [SimpleNamespace(result=SimpleNamespace(value=SimpleNamespace(data=data))) for data in batch]
        if self.error is not None:
            raise self.error
        if self.hang:
            await asyncio.sleep(3600)


def _stream(monkeypatch: pytest.MonkeyPatch, ws: _FakeWebsocket) -> SolanaRpcGateway:
    monkeypatch.setattr(solana_client, "connect", lambda url: ws)
    return SolanaRpcGateway("http://localhost:8899", "ws://localhost:8900", subscribe_timeout=1)


class _CurveFeedTrader:
    """Just enough of PumpTrader for an ExitEngine on a real gateway."""

    def __init__(self, gateway: SolanaRpcGateway) -> None:
        self.gateway = gateway
        self.sells: list = []

    async def on_bonding_curve_change(self, mint, callback, on_closed=None):
        return await self.gateway.subscribe_account_changes(
            derive_bonding_curve_address(mint), lambda r: callback(r.spot_price()), on_closed
        )

    async def remove_listener(self, handle):
        await self.gateway.unsubscribe(handle)

    async def sell(self, mint, amount, options):
        self.sells.append((mint, amount))


def test_subscribe_to_dead_endpoint_raises_and_exit_engine_fails() -> None:
    gateway = SolanaRpcGateway("http://127.0.0.1:9", "ws://127.0.0.1:9", subscribe_timeout=5)
    trader = _CurveFeedTrader(gateway)
    engine = ExitEngine(trader, mint=MINT, entry_price=Decimal("0.00003"), token_balance=Decimal("1000"))

    async def scenario():
        with pytest.raises(SubmissionError, match="account subscription failed"):
            await gateway.subscribe_account_changes(Pubkey.new_unique(), lambda r: None)
        with pytest.raises(SubmissionError):
            await engine.start()
        result = await asyncio.wait_for(engine.wait(), timeout=1)
        await gateway.close()
        return result

    assert asyncio.run(scenario()) is None
    assert engine.state is ExitState.FAILED
    assert gateway._subscriptions == {}
    assert trader.sells == []


def test_callback_error_does_not_end_feed(monkeypatch: pytest.MonkeyPatch) -> None:
    good = _account_bytes(1_000, 2_000, 0, 0, 1_000, False)
    ws = _FakeWebsocket([[good], [good]], hang=True)
    gateway = _stream(monkeypatch, ws)
    seen: list = []
    closed: list = []

    def on_change(state):
        seen.append(state)
        if len(seen) == 1:
            raise RuntimeError("consumer bug")

    async def scenario():
        sub = await gateway.subscribe_account_changes(Pubkey.new_unique(), on_change, closed.append)
        for _ in range(5):
            await asyncio.sleep(0)
        still_running = not sub.task.done()
        await gateway.unsubscribe(sub)
        return sub, still_running

    sub, still_running = asyncio.run(scenario())

    assert still_running is True
    assert len(seen) == 2
    assert sub.subscription_id == 7
    assert closed == []
    assert ws.subscribed[0][1] == "base64"


@pytest.mark.parametrize(
    "error, reason_prefix",
    [
        (None, "stream closed"),
        (ConnectionResetError("peer went away"), "ConnectionResetError"),
    ],
)
def test_feed_end_after_subscribe_reports_closed_once(
    monkeypatch: pytest.MonkeyPatch, error, reason_prefix: str
) -> None:
    good = _account_bytes(1_000, 2_000, 0, 0, 1_000, False)
    gateway = _stream(monkeypatch, _FakeWebsocket([[good]], error=error))
    seen: list = []
    closed: list = []

    async def scenario():
        sub = await gateway.subscribe_account_changes(Pubkey.new_unique(), seen.append, closed.append)
        await asyncio.wait({sub.task})
        await asyncio.sleep(0)
        await gateway.unsubscribe(sub)
        return sub

    sub = asyncio.run(scenario())

    assert len(seen) == 1
    assert len(closed) == 1
    assert closed[0].startswith(reason_prefix)
    assert sub.active is False
    assert gateway._subscriptions == {}


def test_exit_engine_fails_when_live_feed_drops(monkeypatch: pytest.MonkeyPatch) -> None:
    # 30 SOL over 1M tokens prices at entry, so the tick does not trigger the stop
    healthy = _account_bytes(1_000_000_000_000, 30_000_000_000, 0, 0, 10**15, False)
    gateway = _stream(monkeypatch, _FakeWebsocket([[healthy]], error=ConnectionResetError("1006")))
    trader = _CurveFeedTrader(gateway)
    engine = ExitEngine(trader, mint=MINT, entry_price=Decimal("0.00003"), token_balance=Decimal("1000"))

    async def scenario():
        await engine.start()
        result = await asyncio.wait_for(engine.wait(), timeout=1)
        await engine.stop()
        await gateway.close()
        return result

    assert asyncio.run(scenario()) is None
    assert engine.state is ExitState.FAILED
    assert engine.exit_reason.startswith("FEED_LOST ConnectionResetError")
    assert trader.sells == []
