from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import List

import pytest

from bondex.config.app_config import ExitSettings
from bondex.domain.errors import SubmissionError
from bondex.domain.models import DeliveryMode, TradeOptions, TradeResult
from bondex.engines.exit_engine import ExitConfig, ExitEngine, ExitState


MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"


class _FakeTrader:
    def __init__(self, sell_ok: bool = True) -> None:
        self.sell_ok = sell_ok
        self.callback = None
        self.on_closed = None
        self.removed: list = []
        self.sells: List[tuple] = []

    async def on_bonding_curve_change(self, mint, callback, on_closed=None):
        self.callback = callback
        self.on_closed = on_closed
        return f"sub-{mint[:4]}"

    async def remove_listener(self, handle):
        self.removed.append(handle)

    async def sell(self, mint, amount, options: TradeOptions) -> TradeResult:
        self.sells.append((mint, amount, options))
        if self.sell_ok:
            return TradeResult(success=True, mode=DeliveryMode.RELAY, signature="exit-sig", attempts=1)
        return TradeResult(success=False, mode=DeliveryMode.RELAY, error="all relay endpoints failed", attempts=3)

    def push(self, *prices: str) -> None:
        for p in prices:
            self.callback(Decimal(p))

    def drop_feed(self, reason: str = "ConnectionClosedError: 1006") -> None:
        self.on_closed(reason)


def _engine(trader: _FakeTrader) -> ExitEngine:
    return ExitEngine(trader, mint=MINT, entry_price=Decimal("1.0"), token_balance=Decimal("150000"))


def test_stop_loss_triggers_on_third_tick_and_sells_everything() -> None:
    trader = _FakeTrader()
    engine = _engine(trader)

    async def scenario():
        await engine.start()
        trader.push("0.90", "0.86")
        assert engine.state is ExitState.MONITORING
        trader.push("0.84")
        assert engine.state is ExitState.TRIGGERED
        return await engine.wait()

    result = asyncio.run(scenario())

    assert result.success is True
    assert engine.state is ExitState.DONE
    assert engine.exit_reason.startswith("STOP_LOSS")
    assert trader.removed == ["sub-7GCi"]

    mint, amount, options = trader.sells[0]
    assert (mint, amount) == (MINT, Decimal("150000"))
    assert options.slippage_bps == 1500
    assert options.use_relay is True
    assert options.dynamic_fee is True
    assert options.priority_fee_sol == Decimal("0.005")


def test_trailing_stop_ratchets_once_and_keeps_monitoring() -> None:
    trader = _FakeTrader()
    engine = _engine(trader)

    async def scenario():
        await engine.start()
        trader.push("1.5", "1.3")
        assert engine.state is ExitState.MONITORING
        assert engine.position.trailing_triggered is True
        assert engine.position.stop_loss_price == Decimal("1.20")

        # second big move does not move the stop again
        trader.push("2.5")
        assert engine.position.stop_loss_price == Decimal("1.20")

        trader.push("1.19")
        return await engine.wait()

    result = asyncio.run(scenario())

    assert result.success is True
    assert engine.exit_reason.startswith("TRAILING_STOP")
    assert len(trader.sells) == 1


def test_stop_before_trigger_ignores_later_ticks() -> None:
    trader = _FakeTrader()
    engine = _engine(trader)

    async def scenario():
        await engine.start()
        await engine.stop()
        trader.push("0.10", "0.05")
        await engine.stop()
        return await engine.wait()

    result = asyncio.run(scenario())

    assert result is None
    assert engine.state is ExitState.STOPPED
    assert engine.ticks_evaluated == 0
    assert trader.removed == ["sub-7GCi"]
    assert trader.sells == []


def test_ticks_after_trigger_are_dropped() -> None:
    trader = _FakeTrader()
    engine = _engine(trader)

    async def scenario():
        await engine.start()
        trader.push("0.50", "0.40", "0.30")
        await engine.wait()

    asyncio.run(scenario())

    assert engine.ticks_evaluated == 1
    assert engine.position.last_price == Decimal("0.50")
    assert len(trader.sells) == 1


def test_failed_exit_sell_ends_failed() -> None:
    trader = _FakeTrader(sell_ok=False)
    engine = _engine(trader)

    async def scenario():
        await engine.start()
        trader.push("0.5")
        return await engine.wait()

    result = asyncio.run(scenario())

    assert result.success is False
    assert engine.state is ExitState.FAILED
    assert engine.finished is True


def test_lost_price_feed_ends_failed_and_wakes_waiter() -> None:
    trader = _FakeTrader()
    engine = _engine(trader)

    async def scenario():
        await engine.start()
        waiter = asyncio.create_task(engine.wait())
        await asyncio.sleep(0)
        trader.drop_feed()
        result = await asyncio.wait_for(waiter, timeout=1)
        trader.push("0.10")
        await engine.stop()
        return result

    result = asyncio.run(scenario())

    assert result is None
    assert engine.state is ExitState.FAILED
    assert engine.exit_reason.startswith("FEED_LOST")
    assert engine.position.active is False
    assert engine.ticks_evaluated == 0
    assert trader.sells == []
    assert trader.removed == ["sub-7GCi"]


def test_feed_closing_after_trigger_does_not_override_exit() -> None:
    trader = _FakeTrader()
    engine = _engine(trader)

    async def scenario():
        await engine.start()
        trader.push("0.5")
        trader.drop_feed("stream closed")
        return await engine.wait()

    result = asyncio.run(scenario())

    assert result.success is True
    assert engine.state is ExitState.DONE
    assert engine.exit_reason.startswith("STOP_LOSS")


def test_subscribe_failure_ends_failed_and_propagates() -> None:
    class _NoFeedTrader(_FakeTrader):
        async def on_bonding_curve_change(self, mint, callback, on_closed=None):
            raise SubmissionError("account subscription failed: ConnectionRefusedError")

    engine = _engine(_NoFeedTrader())

    async def scenario():
        with pytest.raises(SubmissionError):
            await engine.start()
        return await asyncio.wait_for(engine.wait(), timeout=1)

    assert asyncio.run(scenario()) is None
    assert engine.state is ExitState.FAILED


def test_check_strategy_before_start_is_ignored() -> None:
    engine = _engine(_FakeTrader())

    assert engine.check_strategy(Decimal("0.01")) is False
    assert engine.state is ExitState.IDLE


def test_start_twice_rejected() -> None:
    engine = _engine(_FakeTrader())

    async def scenario():
        await engine.start()
        with pytest.raises(RuntimeError):
            await engine.start()
        await engine.stop()

    asyncio.run(scenario())


def test_custom_thresholds_from_settings() -> None:
    settings = ExitSettings(
        stop_loss_pct=Decimal("0.10"),
        trailing_trigger_pct=Decimal("1.0"),
        trailing_lock_pct=Decimal("0.5"),
        exit_slippage_bps=2500,
        exit_priority_fee_sol=Decimal("0.01"),
    )
    engine = ExitEngine(_FakeTrader(), MINT, Decimal("2"), Decimal("10"), ExitConfig.from_settings(settings))

    assert engine.position.stop_loss_price == Decimal("1.80")
    assert engine.config.exit_options().slippage_bps == 2500


def test_entry_price_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ExitEngine(_FakeTrader(), MINT, Decimal("0"), Decimal("10"))
