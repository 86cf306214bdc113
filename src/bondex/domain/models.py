"""
models.py - Value types shared by the execution engine.

All amounts that touch on-chain math are integers (lamports / token base
units). Human-facing amounts (SOL, whole tokens, fees) are Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional


LAMPORTS_PER_SOL = 1_000_000_000
TOKEN_DECIMALS = 6
TOKEN_BASE_UNITS = 10 ** TOKEN_DECIMALS
BPS_DENOMINATOR = 10_000


class TradeAction(Enum):
    BUY = "buy"
    SELL = "sell"


class DeliveryMode(Enum):
    DIRECT = "direct"
    RELAY = "relay"


class FeeMode(Enum):
    FIXED = "fixed"
    DYNAMIC = "dynamic"


@dataclass(frozen=True)
class ReserveState:
    """
    Snapshot of a bonding curve account.

    Fetched per trade and never cached: reserves change every block.
    """
    virtual_sol_reserves: int
    virtual_token_reserves: int
    real_sol_reserves: int
    real_token_reserves: int
    complete: bool
    token_total_supply: int = 0

    def spot_price(self) -> Decimal:
        """SOL per whole token at the current virtual reserves."""
        if self.virtual_token_reserves <= 0:
            return Decimal(0)
        sol = Decimal(self.virtual_sol_reserves) / LAMPORTS_PER_SOL
        tokens = Decimal(self.virtual_token_reserves) / TOKEN_BASE_UNITS
        return sol / tokens


@dataclass(frozen=True)
class TradeIntent:
    """amount is SOL for BUY and whole tokens for SELL."""
    action: TradeAction
    mint: str
    amount: Decimal
    slippage_bps: int

    def __post_init__(self):
        if self.slippage_bps < 0:
            raise ValueError(f"slippage_bps must be >= 0: {self.slippage_bps}")
        # Buy cost caps may exceed 2x input; a sell floor cannot go below zero.
        if self.action is TradeAction.SELL and self.slippage_bps > BPS_DENOMINATOR:
            raise ValueError(f"sell slippage_bps out of range: {self.slippage_bps}")


@dataclass(frozen=True)
class SwapParameters:
    """
    Instruction amounts for one swap.

    limit_amount is maxSolCost for BUY and minSolOutput for SELL.
    sol_amount is the lamport input (BUY) or expected lamport output (SELL).
    """
    token_amount: int
    limit_amount: int
    sol_amount: int


@dataclass(frozen=True)
class FeeEstimate:
    micro_lamports_per_cu: int
    total_fee_sol: Decimal
    source: str = "fixed"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_ms: int = 500

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms must be >= 0")


class OutcomeKind(Enum):
    SUCCESS = "success"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class AttemptOutcome:
    kind: OutcomeKind
    signature: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, signature: str) -> "AttemptOutcome":
        return cls(OutcomeKind.SUCCESS, signature=signature)

    @classmethod
    def retryable(cls, reason: str) -> "AttemptOutcome":
        return cls(OutcomeKind.RETRYABLE, reason=reason)

    @classmethod
    def fatal(cls, reason: str) -> "AttemptOutcome":
        return cls(OutcomeKind.FATAL, reason=reason)

    @property
    def is_success(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS


@dataclass(frozen=True)
class TradeOptions:
    """Per-call trade knobs. Fees and tips are in SOL."""
    slippage_bps: int = 100
    priority_fee_sol: Decimal = Decimal("0.0001")
    dynamic_fee: bool = False
    max_priority_fee_sol: Decimal = Decimal("0.01")
    min_priority_fee_sol: Decimal = Decimal("0.00001")
    use_relay: bool = False
    tip_sol: Decimal = Decimal("0.001")


@dataclass
class TradeResult:
    success: bool
    mode: DeliveryMode
    signature: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    quote: Optional[SwapParameters] = None


@dataclass
class ExitPosition:
    """Owned by exactly one ExitEngine; mutated on every tick."""
    mint: str
    entry_price: Decimal
    token_balance: Decimal
    stop_loss_price: Decimal
    trailing_triggered: bool = False
    active: bool = True
    last_price: Optional[Decimal] = field(default=None)
