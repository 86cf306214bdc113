"""
relay_router.py - Bundle submission with sticky endpoint failover.

- Tip accounts rotate round-robin on every request (spreads write locks).
- Endpoints are tried from the last one that worked, wrapping around:
  [last_good, last_good+1, ..., last_good-1], each once per call, no delay.
- A success moves last_good to the succeeding endpoint.
- All endpoints failing raises AllRelaysExhausted.

RelayPool is the only cross-trade mutable state in the engine. Cursor
reads and writes happen under its lock; network I/O never does.
"""

from __future__ import annotations

import threading
from typing import List, Optional, Sequence

import httpx
from loguru import logger
from solders.pubkey import Pubkey

from ...domain.errors import AllRelaysExhausted


class RelayPool:
    """Endpoints and tip accounts with their rotation cursors."""

    def __init__(self, endpoints: Sequence[str], tip_accounts: Sequence[str]):
        if not endpoints:
            raise ValueError("relay pool needs at least one endpoint")
        if not tip_accounts:
            raise ValueError("relay pool needs at least one tip account")
        self.endpoints = tuple(endpoints)
        self.tip_accounts = tuple(Pubkey.from_string(a) for a in tip_accounts)
        self._last_good = 0
        self._tip_cursor = 0
        self._lock = threading.Lock()

    @property
    def last_good(self) -> int:
        with self._lock:
            return self._last_good

    def mark_good(self, index: int) -> None:
        with self._lock:
            self._last_good = index % len(self.endpoints)

    def candidate_order(self) -> List[int]:
        with self._lock:
            start = self._last_good
        n = len(self.endpoints)
        return [(start + i) % n for i in range(n)]

    def next_tip_account(self) -> Pubkey:
        with self._lock:
            account = self.tip_accounts[self._tip_cursor]
            self._tip_cursor = (self._tip_cursor + 1) % len(self.tip_accounts)
        return account


def _short_host(url: str) -> str:
    return url.split("//", 1)[-1].split("/", 1)[0]


class RelayFailoverRouter:
    def __init__(
        self,
        pool: RelayPool,
        http_timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.pool = pool
        self._http_timeout = http_timeout
        self._client = client
        self.bundles_submitted = 0

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._http_timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def next_tip_address(self) -> Pubkey:
        return self.pool.next_tip_account()

    async def _send(self, url: str, encoded_txs: List[str]) -> str:
        payload = {"jsonrpc": "2.0", "id": 1, "method": "sendBundle", "params": [encoded_txs]}
        resp = await self._get_client().post(url, json=payload)
        if not resp.is_success:
            raise RuntimeError(f"status {resp.status_code}")
        data = resp.json()
        if not isinstance(data, dict):
            raise RuntimeError(f"malformed relay response: {type(data).__name__}")
        if data.get("error"):
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else None
            raise RuntimeError(message or str(err))
        bundle_id = data.get("result")
        if not bundle_id:
            raise RuntimeError("missing bundle id in response")
        return str(bundle_id)

    async def submit_bundle(self, encoded_txs: Sequence[str]) -> str:
        """Submit an ordered bundle of base58-encoded signed transactions."""
        txs = list(encoded_txs)
        attempts = 0
        last_error = ""

        for index in self.pool.candidate_order():
            url = self.pool.endpoints[index]
            attempts += 1
            logger.info(f"RELAY_SEND | engine={_short_host(url)} | txs={len(txs)} | attempt={attempts}")
            try:
                bundle_id = await self._send(url, txs)
            except (httpx.HTTPError, RuntimeError, ValueError) as e:
                last_error = f"{_short_host(url)}: {e}"
                logger.warning(f"RELAY_FAILED | engine={_short_host(url)} | {type(e).__name__}: {e} | switching")
                continue

            self.pool.mark_good(index)
            self.bundles_submitted += 1
            logger.info(f"RELAY_ACCEPTED | engine={_short_host(url)} | bundle={bundle_id}")
            return bundle_id

        logger.error(f"RELAY_EXHAUSTED | attempts={attempts} | last_error={last_error}")
        raise AllRelaysExhausted(attempts=attempts, last_error=last_error)
