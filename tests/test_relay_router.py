from __future__ import annotations

import asyncio
import json
from typing import Dict, List

import httpx
import pytest

from bondex.config.constants import JITO_TIP_ACCOUNTS
from bondex.domain.errors import AllRelaysExhausted, SubmissionError
from bondex.engines.execution.relay_router import RelayFailoverRouter, RelayPool


ENDPOINTS = ["https://a.relay.test/bundles", "https://b.relay.test/bundles", "https://c.relay.test/bundles"]


class _Relays:
    """Scripted relay hosts. behaviour[host] is one of: ok, down, error, empty, malformed, raise."""

    def __init__(self, behaviour: Dict[str, str]) -> None:
        self.behaviour = behaviour
        self.hits: List[str] = []
        self.bodies: List[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host.split(".")[0]
        self.hits.append(host)
        self.bodies.append(json.loads(request.content))
        mode = self.behaviour.get(host, "ok")
        if mode == "down":
            return httpx.Response(503, text="unavailable")
        if mode == "error":
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"message": "bundle rejected"}})
        if mode == "empty":
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1})
        if mode == "malformed":
            return httpx.Response(200, json=["not", "a", "jsonrpc", "object"])
        if mode == "raise":
            raise httpx.ConnectTimeout("timed out", request=request)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": f"bundle-{host}"})


def _router(relays: _Relays) -> RelayFailoverRouter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(relays))
    return RelayFailoverRouter(RelayPool(ENDPOINTS, JITO_TIP_ACCOUNTS[:3]), client=client)


def test_failover_to_next_endpoint_and_stick_to_it() -> None:
    relays = _Relays({"a": "down"})
    router = _router(relays)

    bundle_id = asyncio.run(router.submit_bundle(["tx1", "tx2"]))

    assert bundle_id == "bundle-b"
    assert relays.hits == ["a", "b"]
    assert router.pool.last_good == 1

    relays.hits.clear()
    asyncio.run(router.submit_bundle(["tx3"]))
    assert relays.hits == ["b"]


def test_candidate_order_wraps_from_last_good() -> None:
    relays = _Relays({"a": "down", "b": "down"})
    router = _router(relays)
    router.pool.mark_good(1)

    bundle_id = asyncio.run(router.submit_bundle(["tx"]))

    assert relays.hits == ["b", "c"]
    assert bundle_id == "bundle-c"
    assert router.pool.last_good == 2


def test_malformed_response_fails_over() -> None:
    relays = _Relays({"a": "malformed"})
    router = _router(relays)

    bundle_id = asyncio.run(router.submit_bundle(["tx"]))

    assert bundle_id == "bundle-b"
    assert relays.hits == ["a", "b"]
    assert router.pool.last_good == 1


@pytest.mark.parametrize("failure", ["down", "error", "empty", "malformed", "raise"])
def test_all_endpoints_failing_raises_exhaustion(failure: str) -> None:
    relays = _Relays({"a": failure, "b": failure, "c": failure})
    router = _router(relays)

    with pytest.raises(AllRelaysExhausted) as exc_info:
        asyncio.run(router.submit_bundle(["tx"]))

    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value, SubmissionError)
    assert relays.hits == ["a", "b", "c"]
    assert router.pool.last_good == 0


def test_send_bundle_payload_shape() -> None:
    relays = _Relays({})
    router = _router(relays)

    asyncio.run(router.submit_bundle(["swapB58", "tipB58"]))

    assert relays.bodies[0] == {"jsonrpc": "2.0", "id": 1, "method": "sendBundle", "params": [["swapB58", "tipB58"]]}
    assert router.bundles_submitted == 1


def test_tip_accounts_rotate_round_robin() -> None:
    router = _router(_Relays({}))
    picks = [str(router.next_tip_address()) for _ in range(4)]

    assert picks == [JITO_TIP_ACCOUNTS[0], JITO_TIP_ACCOUNTS[1], JITO_TIP_ACCOUNTS[2], JITO_TIP_ACCOUNTS[0]]


def test_pool_requires_endpoints_and_tips() -> None:
    with pytest.raises(ValueError):
        RelayPool([], JITO_TIP_ACCOUNTS)
    with pytest.raises(ValueError):
        RelayPool(ENDPOINTS, [])
