"""
pumpportal_adapter.py - PumpPortal trade-local API client

Builds unsigned swap transactions for bonding curve trades. The API answers
with the raw serialized transaction; signing and delivery stay local.

Endpoint: POST https://pumpportal.fun/api/trade-local
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from ....domain.errors import SubmissionError
from ....domain.models import TradeAction
from ....ports.swap_builder import SwapBuilderPort, SwapRequest


class PumpPortalSwapBuilder(SwapBuilderPort):
    def __init__(
        self,
        url: str,
        api_key: str = "",
        pool: str = "pump",
        http_timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.pool = pool
        self._api_key = api_key
        self._http_timeout = http_timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._http_timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def build_payload(self, request: SwapRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "publicKey": request.signer_address,
            "action": request.action.value,
            "mint": request.mint,
            "denominatedInSol": "true" if request.amount_is_base_asset else "false",
            "amount": float(request.amount),
            # API slippage is a percentage
            "slippage": float(Decimal(request.slippage_bps) / 100),
            "priorityFee": float(request.fee_sol),
            "pool": self.pool,
        }
        if self._api_key:
            payload["apiKey"] = self._api_key
        return payload

    async def build_swap(self, request: SwapRequest) -> bytes:
        payload = self.build_payload(request)
        side = "BUY" if request.action is TradeAction.BUY else "SELL"

        try:
            resp = await self._get_client().post(self.url, json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"PUMPPORTAL | timeout | {side} | mint={request.mint[:8]}...")
            raise SubmissionError("swap builder timeout") from e
        except httpx.HTTPError as e:
            logger.error(f"PUMPPORTAL | error | {type(e).__name__}: {e}")
            raise SubmissionError(f"swap builder unreachable: {type(e).__name__}: {e}") from e

        if resp.status_code != 200:
            logger.error(f"PUMPPORTAL | api_error | status={resp.status_code} | {resp.text[:200]}")
            raise SubmissionError(f"PumpPortal API error (status={resp.status_code}): {resp.text}")

        tx_bytes = resp.content
        if not tx_bytes:
            raise SubmissionError("PumpPortal returned an empty transaction")

        logger.debug(f"PUMPPORTAL | success | {side} | size={len(tx_bytes)} bytes | fee={request.fee_sol}")
        return tx_bytes
