"""
trader.py - Trade orchestrator for bonding curve swaps

Flow per attempt:
1. Fetch reserves, quote with curve math (fatal on a bad quote)
2. Estimate the priority fee (fixed or dynamic)
3. Ask the swap builder for the unsigned transaction
4. Fetch ONE blockhash and bind the swap (and tip) to it
5. Sign, then deliver directly or as a relay bundle, then confirm

Every attempt is wrapped by the retry controller. Public methods never raise:
they return a TradeResult. Only construction fails fast.

Usage:
    trader = PumpTrader.from_config(AppConfig.load("settings.toml"))
    result = await trader.buy(mint, Decimal("0.01"), TradeOptions(use_relay=True))
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from loguru import logger
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from ..config.app_config import AppConfig
from ..config.constants import PUMP_PROGRAM_ID
from ..domain.curve_math import quote, sol_to_lamports
from ..domain.errors import ConfigurationError, ConfirmationError, QuoteError, SubmissionError
from ..domain.models import (
    AttemptOutcome,
    DeliveryMode,
    FeeMode,
    OutcomeKind,
    RetryPolicy,
    SwapParameters,
    TradeAction,
    TradeIntent,
    TradeOptions,
    TradeResult,
)
from ..ports.rpc import FeedClosedCallback, RpcPort
from ..ports.swap_builder import SwapBuilderPort, SwapRequest
from ..ports.wallet import WalletPort
from .execution.fee_estimator import (
    FeeEstimator,
    FeeSampleSource,
    HeliusPriorityFeeSource,
    RpcPrioritizationFeeSource,
)
from .execution.relay_router import RelayFailoverRouter, RelayPool
from .execution.retry import RetryController
from .execution.solana_client import derive_bonding_curve_address
from .execution.transactions import (
    build_tip_transaction,
    encode_base58,
    first_signature,
    rebind_swap_transaction,
)


PriceCallback = Callable[[Decimal], None]


class PumpTrader:
    """
    Buy/sell orchestrator.

    Key properties:
    1. Reserves and fees are read fresh on every attempt, never cached
    2. Swap and tip share one blockhash per attempt
    3. The relay router is shared across concurrent trades (its pool is locked)
    """

    def __init__(
        self,
        rpc: RpcPort,
        wallet: WalletPort,
        swap_builder: SwapBuilderPort,
        fee_estimator: FeeEstimator,
        relay_router: Optional[RelayFailoverRouter] = None,
        retry_policy: RetryPolicy = RetryPolicy(),
        program_id: str = PUMP_PROGRAM_ID,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if rpc is None:
            raise ConfigurationError("Configuration Error: RPC collaborator missing")
        if wallet is None:
            raise ConfigurationError("Configuration Error: wallet missing")
        if swap_builder is None:
            raise ConfigurationError("Configuration Error: swap builder missing")

        self.rpc = rpc
        self.wallet = wallet
        self.swap_builder = swap_builder
        self.fee_estimator = fee_estimator
        self.relay_router = relay_router
        self.retry_policy = retry_policy
        self.program_id = program_id
        self._sleep = sleep

        logger.info(f"PUMP_TRADER | init | wallet={str(wallet.public_key())[:8]}... | relay={'on' if relay_router else 'off'}")

    @classmethod
    def from_config(cls, config: AppConfig, wallet: Optional[WalletPort] = None) -> "PumpTrader":
        from ..adapters.wallet import build_wallet
        from .execution.adapters.pumpportal_adapter import PumpPortalSwapBuilder
        from .execution.solana_client import SolanaRpcGateway

        rpc = SolanaRpcGateway(
            rpc_url=config.rpc.url,
            ws_url=config.rpc.ws_url,
            confirm_timeout=config.rpc.confirm_timeout_seconds,
        )
        source: FeeSampleSource
        if config.fees.source == "helius":
            source = HeliusPriorityFeeSource(config.fees.helius_url or config.rpc.url, account_keys=[PUMP_PROGRAM_ID])
        else:
            source = RpcPrioritizationFeeSource(config.rpc.url, accounts=[PUMP_PROGRAM_ID])

        return cls(
            rpc=rpc,
            wallet=wallet or build_wallet(config.signer),
            swap_builder=PumpPortalSwapBuilder(
                url=config.swap_api.url,
                api_key=config.swap_api.api_key,
                pool=config.swap_api.pool,
                http_timeout=config.swap_api.http_timeout_seconds,
            ),
            fee_estimator=FeeEstimator(
                fixed_fee_sol=config.fees.fixed_fee_sol,
                compute_unit_limit=config.fees.compute_unit_limit,
                source=source,
            ),
            relay_router=RelayFailoverRouter(
                RelayPool(config.relay.endpoints, config.relay.tip_accounts),
                http_timeout=config.relay.http_timeout_seconds,
            ),
            retry_policy=config.retry,
        )

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def buy(self, mint: str, amount_sol: Decimal, options: TradeOptions = TradeOptions()) -> TradeResult:
        return await self._execute_trade(TradeAction.BUY, mint, Decimal(amount_sol), options)

    async def sell(self, mint: str, amount_tokens: Decimal, options: TradeOptions = TradeOptions()) -> TradeResult:
        return await self._execute_trade(TradeAction.SELL, mint, Decimal(amount_tokens), options)

    async def sell_all(self, mint: str, options: TradeOptions = TradeOptions()) -> TradeResult:
        mode = DeliveryMode.RELAY if options.use_relay else DeliveryMode.DIRECT
        try:
            balance = await self.rpc.get_token_balance(self.wallet.public_key(), mint)
        except Exception as e:
            logger.error(f"SELL_ALL | balance_error | mint={mint[:8]}... | {type(e).__name__}: {e}")
            return TradeResult(success=False, mode=mode, error=str(e))

        if balance <= 0:
            return TradeResult(success=False, mode=mode, error="No token balance found to sell.")

        logger.info(f"SELL_ALL | mint={mint[:8]}... | balance={balance}")
        return await self._execute_trade(TradeAction.SELL, mint, balance, options)

    def curve_address(self, mint: str) -> Pubkey:
        return derive_bonding_curve_address(mint, self.program_id)

    async def on_bonding_curve_change(
        self,
        mint: str,
        callback: PriceCallback,
        on_closed: Optional[FeedClosedCallback] = None,
    ) -> Any:
        """
        Push the curve's spot price (SOL per token) on every account change.

        on_closed fires once if the feed ends without remove_listener().
        """
        def _on_reserves(reserves):
            callback(reserves.spot_price())

        return await self.rpc.subscribe_account_changes(self.curve_address(mint), _on_reserves, on_closed)

    async def remove_listener(self, handle: Any) -> None:
        await self.rpc.unsubscribe(handle)

    async def close(self) -> None:
        for closable in (self.swap_builder, self.fee_estimator, self.relay_router, self.rpc, self.wallet):
            close = getattr(closable, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"PUMP_TRADER | close_error | {type(closable).__name__}: {e}")

    # =========================================================================
    # CORE EXECUTION
    # =========================================================================

    async def _execute_trade(
        self,
        action: TradeAction,
        mint: str,
        amount: Decimal,
        options: TradeOptions,
    ) -> TradeResult:
        mode = DeliveryMode.RELAY if options.use_relay else DeliveryMode.DIRECT
        side = action.value.upper()
        logger.info(f"TRADE_START | {side} | mint={mint} | amount={amount} | mode={mode.value}")

        if mode is DeliveryMode.RELAY and self.relay_router is None:
            return TradeResult(success=False, mode=mode, error="relay delivery requested but no relay router configured")

        try:
            intent = TradeIntent(action=action, mint=mint, amount=amount, slippage_bps=options.slippage_bps)
        except ValueError as e:
            return TradeResult(success=False, mode=mode, error=str(e))

        last_quote: list = [None]

        async def attempt() -> AttemptOutcome:
            return await self._attempt(intent, options, mode, last_quote)

        controller = RetryController(self.retry_policy, sleep=self._sleep)
        try:
            outcome = await controller.run(attempt, label=f"{side}:{mint[:8]}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"TRADE_ERROR | {side} | {type(e).__name__}: {e}")
            return TradeResult(success=False, mode=mode, error=str(e), attempts=controller.invocations)

        result = TradeResult(
            success=outcome.kind is OutcomeKind.SUCCESS,
            mode=mode,
            signature=outcome.signature,
            error=None if outcome.is_success else outcome.reason,
            attempts=controller.invocations,
            quote=last_quote[0],
        )
        if result.success:
            logger.info(f"TRADE_SUCCESS | {side} | sig={result.signature} | attempts={result.attempts}")
        else:
            logger.error(f"TRADE_FAILED | {side} | attempts={result.attempts} | error={result.error}")
        return result

    async def _attempt(
        self,
        intent: TradeIntent,
        options: TradeOptions,
        mode: DeliveryMode,
        last_quote: list,
    ) -> AttemptOutcome:
        try:
            params = await self._quote(intent)
            last_quote[0] = params

            fee = await self.fee_estimator.estimate(
                FeeMode.DYNAMIC if options.dynamic_fee else FeeMode.FIXED,
                cap=options.max_priority_fee_sol,
                floor=options.min_priority_fee_sol,
                fixed_fee_sol=options.priority_fee_sol,
            )

            raw = await self.swap_builder.build_swap(SwapRequest(
                signer_address=str(self.wallet.public_key()),
                action=intent.action,
                mint=intent.mint,
                amount_is_base_asset=intent.action is TradeAction.BUY,
                amount=intent.amount,
                slippage_bps=intent.slippage_bps,
                fee_sol=fee.total_fee_sol,
            ))

            blockhash = await self.rpc.get_recent_blockhash()
            swap_tx = rebind_swap_transaction(raw, blockhash)

            if mode is DeliveryMode.RELAY:
                signature = await self._send_bundle(swap_tx, blockhash, options.tip_sol)
            else:
                signature = await self._send_direct(swap_tx)
            return AttemptOutcome.success(signature)

        except (QuoteError, ConfigurationError) as e:
            return AttemptOutcome.fatal(str(e))
        except (SubmissionError, ConfirmationError) as e:
            return AttemptOutcome.retryable(str(e))

    async def _quote(self, intent: TradeIntent) -> SwapParameters:
        reserves = await self.rpc.fetch_reserve_state(self.curve_address(intent.mint))
        if reserves.complete:
            raise QuoteError("bonding curve complete: token has migrated off the curve")

        params = quote(reserves, intent)
        logger.info(
            f"QUOTE | {intent.action.value.upper()} | tokens={params.token_amount} | "
            f"sol={params.sol_amount} | limit={params.limit_amount} | slippage={intent.slippage_bps}bps"
        )
        return params

    async def _send_direct(self, swap_tx: VersionedTransaction) -> str:
        signed = await self.wallet.sign_transaction(swap_tx)
        signature = await self.rpc.broadcast(signed, skip_preflight=True, max_retries=2)

        status = await self.rpc.confirm(signature)
        if not status.ok:
            raise ConfirmationError(f"Transaction dropped or failed: {status.error or 'unknown'}")
        return signature

    async def _send_bundle(self, swap_tx: VersionedTransaction, blockhash: Hash, tip_sol: Decimal) -> str:
        tip_account = self.relay_router.next_tip_address()
        tip_tx = build_tip_transaction(
            payer=self.wallet.public_key(),
            tip_account=tip_account,
            lamports=sol_to_lamports(tip_sol),
            blockhash=blockhash,
        )

        signed_swap, signed_tip = await self.wallet.sign_all_transactions([swap_tx, tip_tx])
        bundle_id = await self.relay_router.submit_bundle([encode_base58(signed_swap), encode_base58(signed_tip)])

        signature = first_signature(signed_swap)
        logger.info(f"BUNDLE_SENT | bundle={bundle_id} | swap_sig={signature} | tip={str(tip_account)[:8]}...")

        status = await self.rpc.confirm(signature)
        if not status.ok:
            raise ConfirmationError(f"Bundle transaction not confirmed on-chain: {status.error or 'unknown'}")
        return signature
