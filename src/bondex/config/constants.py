"""
Network constants for pump-style bonding curve trading.

Kept in one small module so the trader, the relay router and the CLI agree on
the same addresses. Override endpoints and tip accounts through settings, not
by editing this file at runtime.
"""

from __future__ import annotations

from typing import Tuple


PUMP_PROGRAM_ID = "6EF8rrecthR5Dkzon8Nwu78hRvfCKubJ14M5uBEwF6P"
BONDING_CURVE_SEED = b"bonding-curve"

PUMP_PORTAL_API = "https://pumpportal.fun/api/trade-local"

HELIUS_MAINNET_RPC = "https://mainnet.helius-rpc.com"

# Block engine regions, tried in order starting from the last one that worked.
JITO_BLOCK_ENGINE_URLS: Tuple[str, ...] = (
    "https://mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://amsterdam.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://frankfurt.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://ny.mainnet.block-engine.jito.wtf/api/v1/bundles",
    "https://tokyo.mainnet.block-engine.jito.wtf/api/v1/bundles",
)

# NOTE: verify against getTipAccounts before going live.
JITO_TIP_ACCOUNTS: Tuple[str, ...] = (
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
)

DEFAULT_COMPUTE_UNIT_LIMIT = 200_000
