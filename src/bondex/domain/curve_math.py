"""
curve_math.py - Constant-product bonding curve quoting.

Pure functions, integer math only. Every division floors exactly like the
on-chain program; a rounding mismatch makes the on-chain limit check reject
the transaction.

    K = virtual_sol * virtual_tokens

    BUY  s lamports:  tokens_out = vTok - K // (vSol + s)
                      max_sol_cost = s * (10000 + bps) // 10000
    SELL t units:     sol_out = vSol - K // (vTok + t)
                      min_sol_output = sol_out * (10000 - bps) // 10000
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal

from .errors import InvalidReserveState, UninvestableQuote
from .models import (
    BPS_DENOMINATOR,
    LAMPORTS_PER_SOL,
    TOKEN_BASE_UNITS,
    ReserveState,
    SwapParameters,
    TradeAction,
    TradeIntent,
)


def to_base_units(amount: Decimal, scale: int) -> int:
    """Floor a human amount into integer base units."""
    return int((Decimal(amount) * scale).to_integral_value(rounding=ROUND_DOWN))


def sol_to_lamports(amount_sol: Decimal) -> int:
    return to_base_units(amount_sol, LAMPORTS_PER_SOL)


def tokens_to_base_units(amount_tokens: Decimal) -> int:
    return to_base_units(amount_tokens, TOKEN_BASE_UNITS)


def _check_reserves(reserves: ReserveState) -> None:
    if reserves.virtual_token_reserves <= 0 or reserves.virtual_sol_reserves <= 0:
        raise InvalidReserveState(
            f"degenerate reserves: vSol={reserves.virtual_sol_reserves} "
            f"vTok={reserves.virtual_token_reserves}"
        )


def quote_buy(reserves: ReserveState, lamports_in: int, slippage_bps: int) -> SwapParameters:
    _check_reserves(reserves)
    if lamports_in <= 0:
        raise UninvestableQuote(f"buy input is {lamports_in} lamports")

    k = reserves.virtual_sol_reserves * reserves.virtual_token_reserves
    new_virtual_sol = reserves.virtual_sol_reserves + lamports_in
    new_virtual_tokens = k // new_virtual_sol
    token_amount = reserves.virtual_token_reserves - new_virtual_tokens

    if token_amount <= 0:
        raise UninvestableQuote(f"buy of {lamports_in} lamports yields {token_amount} tokens")

    max_sol_cost = lamports_in * (BPS_DENOMINATOR + slippage_bps) // BPS_DENOMINATOR
    return SwapParameters(token_amount=token_amount, limit_amount=max_sol_cost, sol_amount=lamports_in)


def quote_sell(reserves: ReserveState, tokens_in: int, slippage_bps: int) -> SwapParameters:
    _check_reserves(reserves)
    if tokens_in <= 0:
        raise UninvestableQuote(f"sell input is {tokens_in} base units")

    k = reserves.virtual_sol_reserves * reserves.virtual_token_reserves
    new_virtual_tokens = reserves.virtual_token_reserves + tokens_in
    new_virtual_sol = k // new_virtual_tokens
    sol_output = reserves.virtual_sol_reserves - new_virtual_sol

    if sol_output <= 0:
        raise UninvestableQuote(f"sell of {tokens_in} units yields {sol_output} lamports")

    min_sol_output = sol_output * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR
    return SwapParameters(token_amount=tokens_in, limit_amount=min_sol_output, sol_amount=sol_output)


def quote(reserves: ReserveState, intent: TradeIntent) -> SwapParameters:
    """Turn a trade intent into exact, slippage-bounded swap parameters."""
    if intent.action is TradeAction.BUY:
        return quote_buy(reserves, sol_to_lamports(intent.amount), intent.slippage_bps)
    return quote_sell(reserves, tokens_to_base_units(intent.amount), intent.slippage_bps)
