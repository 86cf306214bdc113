"""
fee_estimator.py - Priority fee estimation with floor/cap policy.

Two dynamic sources:
- RpcPrioritizationFeeSource: raw per-slot samples (getRecentPrioritizationFees).
  Reduced to the 75th percentile and multiplied by 1.2 for drift between
  observation and landing.
- HeliusPriorityFeeSource: graded levels (getPriorityFeeEstimate). The highest
  non-"unsafe" grade is used as-is.

Fees are micro-lamports per compute unit. The total SOL fee assumes the
configured compute unit limit; the same limit must be used for the
compute-budget instruction or the paid fee will not match the requested one.

Dynamic estimation never fails: any error falls back to the fixed fee.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Sequence

import httpx
from loguru import logger

from ...domain.curve_math import sol_to_lamports
from ...domain.errors import FeeEstimationError
from ...domain.models import LAMPORTS_PER_SOL, FeeEstimate, FeeMode


MICRO_LAMPORTS_PER_LAMPORT = 1_000_000
PERCENTILE_RANK_FROM_TOP = Decimal("0.25")
RAW_SAMPLE_SAFETY_NUM = 12
RAW_SAMPLE_SAFETY_DEN = 10

# Highest first. "unsafeMax" is never used.
GRADED_LEVELS = ("veryHigh", "high", "medium", "low", "min")


@dataclass(frozen=True)
class FeeSamples:
    values: List[int]
    graded: bool = False


class FeeSampleSource(ABC):
    @abstractmethod
    async def fetch(self) -> FeeSamples:
        ...

    async def close(self) -> None:
        return None


class _JsonRpcSource(FeeSampleSource):
    def __init__(self, url: str, http_timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._http_timeout = http_timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._http_timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _call(self, method: str, params: list) -> object:
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        resp = await self._get_client().post(self.url, json=payload)
        if resp.status_code != 200:
            raise FeeEstimationError(f"{method} status={resp.status_code}")
        data = resp.json()
        if "error" in data:
            raise FeeEstimationError(f"{method} error={data['error']}")
        return data.get("result")


class RpcPrioritizationFeeSource(_JsonRpcSource):
    """Raw per-slot samples for the given write-locked accounts."""

    def __init__(self, url: str, accounts: Sequence[str] = (), **kwargs):
        super().__init__(url, **kwargs)
        self.accounts = list(accounts)

    async def fetch(self) -> FeeSamples:
        params = [self.accounts] if self.accounts else []
        result = await self._call("getRecentPrioritizationFees", params)
        if not isinstance(result, list):
            raise FeeEstimationError(f"unexpected result type: {type(result).__name__}")
        values = [int(entry["prioritizationFee"]) for entry in result]
        return FeeSamples(values=values, graded=False)


class HeliusPriorityFeeSource(_JsonRpcSource):
    """Graded estimate; the provider already did the statistics."""

    def __init__(self, url: str, account_keys: Sequence[str] = (), **kwargs):
        super().__init__(url, **kwargs)
        self.account_keys = list(account_keys)

    async def fetch(self) -> FeeSamples:
        params = [{
            "accountKeys": self.account_keys,
            "options": {"includeAllPriorityFeeLevels": True},
        }]
        result = await self._call("getPriorityFeeEstimate", params)
        levels = (result or {}).get("priorityFeeLevels") or {}
        for level in GRADED_LEVELS:
            if levels.get(level) is not None:
                return FeeSamples(values=[int(Decimal(str(levels[level])))], graded=True)
        return FeeSamples(values=[], graded=True)


def reduce_raw_samples(values: Sequence[int]) -> int:
    """75th percentile from a raw population, plus the drift multiplier."""
    ordered = sorted(values, reverse=True)
    index = int(len(ordered) * PERCENTILE_RANK_FROM_TOP)
    return ordered[index] * RAW_SAMPLE_SAFETY_NUM // RAW_SAMPLE_SAFETY_DEN


class FeeEstimator:
    def __init__(
        self,
        fixed_fee_sol: Decimal,
        compute_unit_limit: int,
        source: Optional[FeeSampleSource] = None,
    ):
        if compute_unit_limit <= 0:
            raise ValueError("compute_unit_limit must be > 0")
        self.fixed_fee_sol = Decimal(fixed_fee_sol)
        self.compute_unit_limit = compute_unit_limit
        self.source = source

    def per_cu_to_sol(self, micro_lamports_per_cu: int) -> Decimal:
        lamports = micro_lamports_per_cu * self.compute_unit_limit // MICRO_LAMPORTS_PER_LAMPORT
        return Decimal(lamports) / LAMPORTS_PER_SOL

    def sol_to_per_cu(self, fee_sol: Decimal) -> int:
        return sol_to_lamports(fee_sol) * MICRO_LAMPORTS_PER_LAMPORT // self.compute_unit_limit

    def _fixed(self, fee_sol: Decimal, source: str) -> FeeEstimate:
        return FeeEstimate(
            micro_lamports_per_cu=self.sol_to_per_cu(fee_sol),
            total_fee_sol=fee_sol,
            source=source,
        )

    async def estimate(
        self,
        mode: FeeMode,
        cap: Decimal,
        floor: Decimal,
        fixed_fee_sol: Optional[Decimal] = None,
    ) -> FeeEstimate:
        fixed = Decimal(fixed_fee_sol) if fixed_fee_sol is not None else self.fixed_fee_sol

        if mode is FeeMode.FIXED:
            return self._fixed(fixed, "fixed")

        if self.source is None:
            logger.warning("FEE_FALLBACK | reason=no_dynamic_source")
            return self._fixed(fixed, "fallback")

        try:
            samples = await self.source.fetch()
        except Exception as e:
            logger.warning(f"FEE_FALLBACK | reason=source_error | {type(e).__name__}: {e}")
            return self._fixed(fixed, "fallback")

        if not samples.values:
            logger.warning("FEE_FALLBACK | reason=empty_samples")
            return self._fixed(fixed, "fallback")

        if samples.graded:
            per_cu = samples.values[0]
        else:
            per_cu = reduce_raw_samples(samples.values)

        raw_sol = self.per_cu_to_sol(per_cu)
        total_sol = min(max(raw_sol, Decimal(floor)), Decimal(cap))
        if total_sol != raw_sol:
            per_cu = self.sol_to_per_cu(total_sol)

        logger.debug(
            f"FEE_ESTIMATE | graded={samples.graded} | samples={len(samples.values)} | "
            f"per_cu={per_cu} | raw_sol={raw_sol} | total_sol={total_sol}"
        )
        return FeeEstimate(micro_lamports_per_cu=per_cu, total_fee_sol=total_sol, source="dynamic")

    async def close(self) -> None:
        if self.source is not None:
            await self.source.close()
