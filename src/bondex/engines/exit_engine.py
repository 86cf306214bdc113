"""
exit_engine.py - Stop-loss / trailing-stop watcher for one open position

State machine:

    IDLE --start()--> MONITORING --stop hit--> TRIGGERED --> EXECUTING --> DONE | FAILED
    IDLE | MONITORING --stop()--> STOPPED
    MONITORING --feed lost--> FAILED

Rules on every price tick (while MONITORING):
1. price <= stop_loss_price            -> TRIGGERED
2. gain >= trailing_trigger_pct (once) -> stop_loss_price := entry * (1 + trailing_lock_pct)

The stop only ever moves up, and only once. On trigger the subscription is
released before the sell is sent; the sell is forced through the relay with
a dynamic fee and wide slippage. Ticks outside MONITORING are dropped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from loguru import logger

from ..config.app_config import ExitSettings
from ..domain.models import DeliveryMode, ExitPosition, TradeOptions, TradeResult


class ExitState(Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    TRIGGERED = "triggered"
    EXECUTING = "executing"
    DONE = "done"
    FAILED = "failed"
    STOPPED = "stopped"


_FINAL_STATES = (ExitState.DONE, ExitState.FAILED, ExitState.STOPPED)


@dataclass(frozen=True)
class ExitConfig:
    stop_loss_pct: Decimal = Decimal("0.15")
    trailing_trigger_pct: Decimal = Decimal("0.50")
    trailing_lock_pct: Decimal = Decimal("0.20")
    exit_slippage_bps: int = 1500
    exit_priority_fee_sol: Decimal = Decimal("0.005")

    @classmethod
    def from_settings(cls, settings: ExitSettings) -> "ExitConfig":
        return cls(
            stop_loss_pct=Decimal(settings.stop_loss_pct),
            trailing_trigger_pct=Decimal(settings.trailing_trigger_pct),
            trailing_lock_pct=Decimal(settings.trailing_lock_pct),
            exit_slippage_bps=settings.exit_slippage_bps,
            exit_priority_fee_sol=Decimal(settings.exit_priority_fee_sol),
        )

    def exit_options(self) -> TradeOptions:
        return TradeOptions(
            slippage_bps=self.exit_slippage_bps,
            priority_fee_sol=self.exit_priority_fee_sol,
            dynamic_fee=True,
            use_relay=True,
        )


class ExitEngine:
    """
    Watches one position through the trader's curve subscription.

    The trader is anything exposing on_bonding_curve_change, remove_listener
    and sell (normally a PumpTrader). One engine per position; never reused.
    """

    def __init__(
        self,
        trader: Any,
        mint: str,
        entry_price: Decimal,
        token_balance: Decimal,
        config: ExitConfig = ExitConfig(),
    ):
        entry_price = Decimal(entry_price)
        if entry_price <= 0:
            raise ValueError(f"entry_price must be > 0, got {entry_price}")

        self.trader = trader
        self.config = config
        self.position = ExitPosition(
            mint=mint,
            entry_price=entry_price,
            token_balance=Decimal(token_balance),
            stop_loss_price=entry_price * (1 - config.stop_loss_pct),
        )
        self.state = ExitState.IDLE
        self.result: Optional[TradeResult] = None
        self.exit_reason: Optional[str] = None
        self.ticks_evaluated = 0

        self._handle: Any = None
        self._exit_task: Optional[asyncio.Task] = None
        self._finished = asyncio.Event()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        if self.state is not ExitState.IDLE:
            raise RuntimeError(f"exit engine already started (state={self.state.value})")

        pos = self.position
        self.state = ExitState.MONITORING
        logger.info(
            f"EXIT_START | mint={pos.mint[:8]}... | entry={pos.entry_price} | "
            f"stop={pos.stop_loss_price} | balance={pos.token_balance}"
        )

        try:
            handle = await self.trader.on_bonding_curve_change(pos.mint, self.on_price, self._on_feed_closed)
        except Exception as e:
            logger.error(f"EXIT_SUBSCRIBE | failed | {type(e).__name__}: {e}")
            self._finish(ExitState.FAILED)
            raise

        self._handle = handle
        # A tick may have triggered (or stop() run) while subscribing.
        if self.state is not ExitState.MONITORING:
            await self._release_subscription()

    async def stop(self) -> None:
        """Stop watching. An exit already in flight is left to finish."""
        if self.state in (ExitState.IDLE, ExitState.MONITORING):
            logger.info(f"EXIT_STOP | mint={self.position.mint[:8]}... | state={self.state.value}")
            self.position.active = False
            self._finish(ExitState.STOPPED)
        await self._release_subscription()

    async def wait(self) -> Optional[TradeResult]:
        """Block until the engine reaches DONE, FAILED or STOPPED."""
        await self._finished.wait()
        return self.result

    @property
    def finished(self) -> bool:
        return self.state in _FINAL_STATES

    # =========================================================================
    # STRATEGY
    # =========================================================================

    def _on_feed_closed(self, reason: str) -> None:
        if self.state is not ExitState.MONITORING:
            return
        pos = self.position
        logger.error(f"EXIT_FEED_LOST | mint={pos.mint[:8]}... | {reason}")
        pos.active = False
        self.exit_reason = f"FEED_LOST {reason}"
        self._finish(ExitState.FAILED)

    def on_price(self, price: Decimal) -> None:
        if self.state is not ExitState.MONITORING:
            return
        self.check_strategy(Decimal(price))

    def check_strategy(self, price: Decimal) -> bool:
        """Evaluate one tick. Returns True when it triggered the exit."""
        if self.state is not ExitState.MONITORING:
            return False

        self.ticks_evaluated += 1
        pos = self.position
        pos.last_price = price
        change = (price - pos.entry_price) / pos.entry_price

        if price <= pos.stop_loss_price:
            kind = "TRAILING_STOP" if pos.trailing_triggered else "STOP_LOSS"
            self._trigger(f"{kind} {change * 100:.2f}%")
            return True

        if not pos.trailing_triggered and change >= self.config.trailing_trigger_pct:
            pos.stop_loss_price = pos.entry_price * (1 + self.config.trailing_lock_pct)
            pos.trailing_triggered = True
            logger.info(
                f"EXIT_TRAILING_ARMED | mint={pos.mint[:8]}... | change={change * 100:.2f}% | "
                f"new_stop={pos.stop_loss_price}"
            )
        return False

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _trigger(self, reason: str) -> None:
        pos = self.position
        self.state = ExitState.TRIGGERED
        self.exit_reason = reason
        pos.active = False
        logger.warning(
            f"EXIT_TRIGGERED | mint={pos.mint[:8]}... | {reason} | price={pos.last_price} | "
            f"stop={pos.stop_loss_price}"
        )
        self._exit_task = asyncio.get_running_loop().create_task(self._execute_exit())

    async def _execute_exit(self) -> None:
        pos = self.position
        self.state = ExitState.EXECUTING
        await self._release_subscription()

        try:
            result = await self.trader.sell(pos.mint, pos.token_balance, self.config.exit_options())
        except asyncio.CancelledError:
            self._finish(ExitState.FAILED)
            raise
        except Exception as e:
            result = TradeResult(success=False, mode=DeliveryMode.RELAY, error=f"{type(e).__name__}: {e}")

        self.result = result
        if result.success:
            logger.info(f"EXIT_DONE | mint={pos.mint[:8]}... | sig={result.signature}")
            self._finish(ExitState.DONE)
        else:
            logger.error(f"EXIT_FAILED | mint={pos.mint[:8]}... | error={result.error}")
            self._finish(ExitState.FAILED)

    async def _release_subscription(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            await self.trader.remove_listener(handle)
        except Exception as e:
            logger.warning(f"EXIT_UNSUBSCRIBE | error | {type(e).__name__}: {e}")

    def _finish(self, state: ExitState) -> None:
        self.state = state
        self._finished.set()
