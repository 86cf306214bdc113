"""
remote_signer.py - Custodial signing service over HTTP.

The service receives the versioned message bytes (base64) and answers with a
base58 signature for the configured public key. Key material never enters
this process.

    POST {remote_url}
    {"publicKey": "...", "message": "<base64>"}
    -> {"signature": "<base58>"}
"""

from __future__ import annotations

import base64
from typing import Optional

import httpx
from loguru import logger
from solders.message import to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import VersionedTransaction

from ...domain.errors import SubmissionError
from ...ports.wallet import WalletPort


class RemoteSigner(WalletPort):
    def __init__(
        self,
        url: str,
        public_key: str,
        api_key: str = "",
        http_timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self._pubkey = Pubkey.from_string(public_key)
        self._api_key = api_key
        self._http_timeout = http_timeout
        self._client = client
        logger.info(f"REMOTE_SIGNER | init | wallet={public_key[:8]}... | url={url}")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._http_timeout)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def public_key(self) -> Pubkey:
        return self._pubkey

    async def sign_transaction(self, tx: VersionedTransaction) -> VersionedTransaction:
        message_bytes = to_bytes_versioned(tx.message)
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        payload = {
            "publicKey": str(self._pubkey),
            "message": base64.b64encode(message_bytes).decode("ascii"),
        }

        try:
            resp = await self._get_client().post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise SubmissionError(f"remote signer unreachable: {type(e).__name__}: {e}") from e

        if resp.status_code in (401, 403):
            raise SubmissionError(f"remote signer unauthorized (status={resp.status_code})")
        if resp.status_code != 200:
            raise SubmissionError(f"remote signer error (status={resp.status_code}): {resp.text}")

        try:
            signature = Signature.from_string(resp.json()["signature"])
        except (KeyError, ValueError) as e:
            raise SubmissionError(f"remote signer returned invalid signature: {e}") from e

        if not signature.verify(self._pubkey, message_bytes):
            raise SubmissionError("remote signer signature verification failed")

        return VersionedTransaction.populate(tx.message, [signature])
