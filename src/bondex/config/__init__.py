from .app_config import (
    AppConfig,
    ExitSettings,
    FeeSettings,
    RelaySettings,
    RpcSettings,
    SignerSettings,
    SwapApiSettings,
)

__all__ = [
    "AppConfig",
    "ExitSettings",
    "FeeSettings",
    "RelaySettings",
    "RpcSettings",
    "SignerSettings",
    "SwapApiSettings",
]
