import os
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import toml
from loguru import logger

from ..domain.errors import ConfigurationError
from ..domain.models import FeeMode, RetryPolicy
from .constants import (
    DEFAULT_COMPUTE_UNIT_LIMIT,
    JITO_BLOCK_ENGINE_URLS,
    JITO_TIP_ACCOUNTS,
    PUMP_PORTAL_API,
)


@dataclass(frozen=True)
class RpcSettings:
    url: str
    ws_url: str
    confirm_timeout_seconds: float = 60.0


@dataclass(frozen=True)
class SignerSettings:
    mode: str = "local"
    private_key: str = field(default="", repr=False)
    remote_url: str = ""
    remote_api_key: str = field(default="", repr=False)
    remote_public_key: str = ""


@dataclass(frozen=True)
class SwapApiSettings:
    url: str = PUMP_PORTAL_API
    api_key: str = field(default="", repr=False)
    pool: str = "pump"
    http_timeout_seconds: float = 10.0


@dataclass(frozen=True)
class RelaySettings:
    endpoints: Tuple[str, ...] = JITO_BLOCK_ENGINE_URLS
    tip_accounts: Tuple[str, ...] = JITO_TIP_ACCOUNTS
    http_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class FeeSettings:
    mode: FeeMode = FeeMode.FIXED
    source: str = "rpc"  # "rpc" (raw samples) or "helius" (graded levels)
    fixed_fee_sol: Decimal = Decimal("0.0001")
    floor_sol: Decimal = Decimal("0.00001")
    cap_sol: Decimal = Decimal("0.01")
    compute_unit_limit: int = DEFAULT_COMPUTE_UNIT_LIMIT
    helius_url: str = ""


@dataclass(frozen=True)
class ExitSettings:
    stop_loss_pct: Decimal = Decimal("0.15")
    trailing_trigger_pct: Decimal = Decimal("0.50")
    trailing_lock_pct: Decimal = Decimal("0.20")
    exit_slippage_bps: int = 1500
    exit_priority_fee_sol: Decimal = Decimal("0.005")


@dataclass
class OverrideRecord:
    key: str
    source: str
    old: Any
    new: Any


@dataclass
class AppConfig:
    rpc: RpcSettings
    signer: SignerSettings
    swap_api: SwapApiSettings = field(default_factory=SwapApiSettings)
    relay: RelaySettings = field(default_factory=RelaySettings)
    fees: FeeSettings = field(default_factory=FeeSettings)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    exit: ExitSettings = field(default_factory=ExitSettings)
    overrides: List[OverrideRecord] = field(default_factory=list)
    loaded_files: List[str] = field(default_factory=list)

    @classmethod
    def load(
        cls,
        settings_path: Optional[str] = None,
        env_prefix: str = "BONDEX__",
    ) -> "AppConfig":
        layers: List[Tuple[Dict[str, Any], str]] = []
        loaded_files: List[str] = []

        if settings_path:
            if not os.path.exists(settings_path):
                raise ConfigurationError(f"settings file not found: {settings_path}")
            with open(settings_path, "r", encoding="utf-8") as f:
                layers.append((toml.load(f), os.path.basename(settings_path)))
            loaded_files.append(os.path.basename(settings_path))

        env_overrides = _load_env_overrides(env_prefix)
        if env_overrides:
            layers.append((env_overrides, "env"))

        merged: Dict[str, Any] = {}
        overrides: List[OverrideRecord] = []
        for payload, source in layers:
            _merge_dicts(merged, payload, source, overrides)

        cfg = cls.from_dict(merged)
        cfg.overrides = overrides
        cfg.loaded_files = loaded_files
        cfg.log_summary()
        return cfg

    @classmethod
    def from_dict(cls, merged: Dict[str, Any]) -> "AppConfig":
        return cls(
            rpc=_build_rpc(merged),
            signer=_build_signer(merged),
            swap_api=_build_swap_api(merged),
            relay=_build_relay(merged),
            fees=_build_fees(merged),
            retry=_build_retry(merged),
            exit=_build_exit(merged),
        )

    def log_summary(self) -> None:
        logger.info(f"CONFIG | files={', '.join(self.loaded_files) or '<none>'}")
        for o in self.overrides:
            # Values may be secrets; only the key and source are logged.
            logger.info(f"CONFIG_OVERRIDE | {o.key} | source={o.source}")
        logger.info(
            f"CONFIG | rpc={self.rpc.url[:40]}... | signer={self.signer.mode} | "
            f"relays={len(self.relay.endpoints)} | tips={len(self.relay.tip_accounts)}"
        )
        logger.info(
            f"CONFIG | fees mode={self.fees.mode.value} source={self.fees.source} "
            f"fixed={self.fees.fixed_fee_sol} floor={self.fees.floor_sol} cap={self.fees.cap_sol} "
            f"cu_limit={self.fees.compute_unit_limit}"
        )
        logger.info(
            f"CONFIG | retry max_attempts={self.retry.max_attempts} "
            f"initial_delay_ms={self.retry.initial_delay_ms}"
        )


def _merge_dicts(dst: Dict[str, Any], src: Dict[str, Any], source: str, overrides: List[OverrideRecord], prefix: str = "") -> None:
    for key, value in src.items():
        full_key = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict) and isinstance(dst.get(key), dict):
            _merge_dicts(dst[key], value, source, overrides, full_key)
        elif isinstance(value, dict):
            dst[key] = value.copy()
        else:
            if key in dst and dst[key] != value:
                overrides.append(OverrideRecord(full_key, source, dst[key], value))
            dst[key] = value


def _load_env_overrides(prefix: str) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_key, env_val in os.environ.items():
        if not env_key.startswith(prefix):
            continue
        path_parts = env_key[len(prefix):].lower().split("__")
        _assign_env_override(overrides, path_parts, env_val)
    return overrides


_LIST_KEYS = {"endpoints", "tip_accounts"}
_STRING_KEYS = {"private_key", "api_key", "remote_api_key", "url", "ws_url", "remote_url", "helius_url"}


def _assign_env_override(dst: Dict[str, Any], path_parts: List[str], raw_val: str) -> None:
    cur = dst
    for part in path_parts[:-1]:
        if part not in cur or not isinstance(cur[part], dict):
            cur[part] = {}
        cur = cur[part]
    leaf = path_parts[-1]
    if leaf in _LIST_KEYS:
        cur[leaf] = [s.strip() for s in raw_val.split(",") if s.strip()]
        return
    if leaf in _STRING_KEYS:
        cur[leaf] = raw_val.strip()
        return
    cur[leaf] = _coerce_env_value(raw_val)


def _coerce_env_value(val: str) -> Any:
    lowered = val.lower()
    if lowered in {"true", "false"}:
        return lowered == "true"
    try:
        return int(val)
    except ValueError:
        pass
    try:
        return float(val)
    except ValueError:
        pass
    return val


def _derive_ws_url(http_url: str) -> str:
    if http_url.startswith("https://"):
        return "wss://" + http_url[len("https://"):]
    if http_url.startswith("http://"):
        return "ws://" + http_url[len("http://"):]
    return http_url


def _build_rpc(cfg: Dict[str, Any]) -> RpcSettings:
    section = cfg.get("rpc", {}) or {}
    url = str(section.get("url", "") or "").strip()
    if not url:
        raise ConfigurationError("rpc.url is required")
    return RpcSettings(
        url=url,
        ws_url=str(section.get("ws_url", "") or "").strip() or _derive_ws_url(url),
        confirm_timeout_seconds=float(section.get("confirm_timeout_seconds", 60.0)),
    )


def _build_signer(cfg: Dict[str, Any]) -> SignerSettings:
    section = cfg.get("signer", {}) or {}
    mode = str(section.get("mode", "local")).strip().lower()
    signer = SignerSettings(
        mode=mode,
        private_key=str(section.get("private_key", "") or "").strip(),
        remote_url=str(section.get("remote_url", "") or "").strip(),
        remote_api_key=str(section.get("remote_api_key", "") or "").strip(),
        remote_public_key=str(section.get("remote_public_key", "") or "").strip(),
    )
    if mode == "local":
        if not signer.private_key:
            raise ConfigurationError("signer.private_key is required for local signing")
    elif mode == "remote":
        if not signer.remote_url or not signer.remote_public_key:
            raise ConfigurationError("signer.remote_url and signer.remote_public_key are required for remote signing")
    else:
        raise ConfigurationError(f"Unknown signer.mode '{mode}' (expected 'local' or 'remote')")
    return signer


def _build_swap_api(cfg: Dict[str, Any]) -> SwapApiSettings:
    section = cfg.get("swap_api", {}) or {}
    return SwapApiSettings(
        url=str(section.get("url", PUMP_PORTAL_API)),
        api_key=str(section.get("api_key", "") or ""),
        pool=str(section.get("pool", "pump")),
        http_timeout_seconds=float(section.get("http_timeout_seconds", 10.0)),
    )


def _build_relay(cfg: Dict[str, Any]) -> RelaySettings:
    section = cfg.get("relay", {}) or {}
    endpoints = tuple(section.get("endpoints") or JITO_BLOCK_ENGINE_URLS)
    tip_accounts = tuple(section.get("tip_accounts") or JITO_TIP_ACCOUNTS)
    if not endpoints:
        raise ConfigurationError("relay.endpoints cannot be empty")
    if not tip_accounts:
        raise ConfigurationError("relay.tip_accounts cannot be empty")
    return RelaySettings(
        endpoints=endpoints,
        tip_accounts=tip_accounts,
        http_timeout_seconds=float(section.get("http_timeout_seconds", 5.0)),
    )


def _build_fees(cfg: Dict[str, Any]) -> FeeSettings:
    section = cfg.get("fees", {}) or {}
    raw_mode = str(section.get("mode", "fixed")).lower()
    try:
        mode = FeeMode(raw_mode)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown fees.mode '{raw_mode}'") from exc

    source = str(section.get("source", "rpc")).lower()
    if source not in {"rpc", "helius"}:
        raise ConfigurationError(f"Unknown fees.source '{source}' (expected 'rpc' or 'helius')")

    floor = _to_decimal(section.get("floor_sol", "0.00001"), "fees.floor_sol")
    cap = _to_decimal(section.get("cap_sol", "0.01"), "fees.cap_sol")
    if floor > cap:
        raise ConfigurationError(f"fees.floor_sol ({floor}) must be <= fees.cap_sol ({cap})")

    cu_limit = int(section.get("compute_unit_limit", DEFAULT_COMPUTE_UNIT_LIMIT))
    if cu_limit <= 0:
        raise ConfigurationError("fees.compute_unit_limit must be > 0")

    return FeeSettings(
        mode=mode,
        source=source,
        fixed_fee_sol=_to_decimal(section.get("fixed_fee_sol", "0.0001"), "fees.fixed_fee_sol"),
        floor_sol=floor,
        cap_sol=cap,
        compute_unit_limit=cu_limit,
        helius_url=str(section.get("helius_url", "") or ""),
    )


def _build_retry(cfg: Dict[str, Any]) -> RetryPolicy:
    section = cfg.get("retry", {}) or {}
    try:
        return RetryPolicy(
            max_attempts=int(section.get("max_attempts", 3)),
            initial_delay_ms=int(section.get("initial_delay_ms", 500)),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid retry settings: {exc}") from exc


def _build_exit(cfg: Dict[str, Any]) -> ExitSettings:
    section = cfg.get("exit", {}) or {}
    return ExitSettings(
        stop_loss_pct=_to_decimal(section.get("stop_loss_pct", "0.15"), "exit.stop_loss_pct"),
        trailing_trigger_pct=_to_decimal(section.get("trailing_trigger_pct", "0.50"), "exit.trailing_trigger_pct"),
        trailing_lock_pct=_to_decimal(section.get("trailing_lock_pct", "0.20"), "exit.trailing_lock_pct"),
        exit_slippage_bps=int(section.get("exit_slippage_bps", 1500)),
        exit_priority_fee_sol=_to_decimal(section.get("exit_priority_fee_sol", "0.005"), "exit.exit_priority_fee_sol"),
    )


def _to_decimal(value: Any, label: str) -> Decimal:
    try:
        return Decimal(str(value))
    except Exception as exc:
        raise ConfigurationError(f"Invalid decimal value for {label}: {value}") from exc
