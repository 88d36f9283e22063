"""
TOML-based configuration for the AssetGate gateway.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from assetgate_core.config import load_config
    cfg = load_config("assetgate.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]


ERROR_MODES = ("flat", "detailed")
BACKENDS = ("fabric", "memory")


@dataclass
class ServerConfig:
    """HTTP listener settings."""
    host: str = "0.0.0.0"
    port: int = 4000
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 0            # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 1_048_576    # 1 MiB max request body
    # "flat": every failure is a 500.  "detailed": per-kind status codes.
    error_mode: str = "flat"
    access_log: bool = True


@dataclass
class FabricConfig:
    """Network, channel and chaincode settings."""
    backend: str = "fabric"            # "fabric" (hfc SDK) or "memory"
    channel_name: str = "mychannel"
    chaincode_name: str = "basic"
    wallet_path: str = "wallet"
    profiles_dir: str = "profiles"
    # {index} is replaced by the numeric organization index
    profile_pattern: str = "connection-org{index}.json"
    discovery_enabled: bool = True
    submit_timeout_seconds: float = 0.0   # 0 = wait as long as the network does
    # memory backend only: run InitLedger once at startup
    memory_seed: bool = True


@dataclass
class CAConfig:
    """Certificate-authority enrollment settings used by /register."""
    admin_id: str = "admin"
    admin_secret: str = "adminpw"
    user_role: str = "client"
    affiliation: str = "org{index}.department1"


@dataclass
class OrganizationsConfig:
    """
    Explicit MSP id → organization index table.

    Organizations missing from the table fall back to digit extraction
    (``"Org1MSP"`` → 1), which breaks on names with several digit groups.
    """
    index: dict[str, int] = field(default_factory=dict)


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class GatewayConfig:
    """Top-level configuration container."""
    server: ServerConfig = field(default_factory=ServerConfig)
    fabric: FabricConfig = field(default_factory=FabricConfig)
    ca: CAConfig = field(default_factory=CAConfig)
    organizations: OrganizationsConfig = field(default_factory=OrganizationsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def validate_config(cfg: GatewayConfig) -> None:
    """Reject settings the gateway cannot start with."""
    if cfg.server.error_mode not in ERROR_MODES:
        raise ValueError(f"server.error_mode must be one of {ERROR_MODES}, got {cfg.server.error_mode!r}")
    if cfg.fabric.backend not in BACKENDS:
        raise ValueError(f"fabric.backend must be one of {BACKENDS}, got {cfg.fabric.backend!r}")
    if not cfg.fabric.channel_name or not cfg.fabric.chaincode_name:
        raise ValueError("fabric.channel_name and fabric.chaincode_name are required")
    if "{index}" not in cfg.fabric.profile_pattern:
        raise ValueError("fabric.profile_pattern must contain '{index}'")
    if not 0 <= int(cfg.server.port) <= 65535:
        raise ValueError(f"server.port out of range: {cfg.server.port}")
    if cfg.fabric.submit_timeout_seconds < 0:
        raise ValueError("fabric.submit_timeout_seconds must be >= 0")


def load_config(path: str | None = None) -> GatewayConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        ASSETGATE_HOST          -> server.host
        ASSETGATE_PORT          -> server.port
        ASSETGATE_API_KEY       -> server.api_key
        ASSETGATE_CORS_ORIGINS  -> server.cors_origins  (comma-separated)
        ASSETGATE_ERROR_MODE    -> server.error_mode
        ASSETGATE_BACKEND       -> fabric.backend
        ASSETGATE_CHANNEL       -> fabric.channel_name
        ASSETGATE_CHAINCODE     -> fabric.chaincode_name
        ASSETGATE_WALLET_PATH   -> fabric.wallet_path
        ASSETGATE_PROFILES_DIR  -> fabric.profiles_dir
        ASSETGATE_DISCOVERY     -> fabric.discovery_enabled
        ASSETGATE_LOG_LEVEL     -> logging.level
        ASSETGATE_LOG_FMT       -> logging.format
    """
    cfg = GatewayConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("server", cfg.server),
                ("fabric", cfg.fabric),
                ("ca", cfg.ca),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])
            if "organizations" in data:
                cfg.organizations.index = {
                    str(k): int(v) for k, v in data["organizations"].items()
                }

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("ASSETGATE_HOST"):
        cfg.server.host = v
    if v := os.environ.get("ASSETGATE_PORT"):
        cfg.server.port = int(v)
    if v := os.environ.get("ASSETGATE_API_KEY"):
        cfg.server.api_key = v
    if v := os.environ.get("ASSETGATE_CORS_ORIGINS"):
        cfg.server.cors_origins = [o.strip() for o in v.split(",") if o.strip()]
    if v := os.environ.get("ASSETGATE_ERROR_MODE"):
        cfg.server.error_mode = v.lower()
    if v := os.environ.get("ASSETGATE_BACKEND"):
        cfg.fabric.backend = v.lower()
    if v := os.environ.get("ASSETGATE_CHANNEL"):
        cfg.fabric.channel_name = v
    if v := os.environ.get("ASSETGATE_CHAINCODE"):
        cfg.fabric.chaincode_name = v
    if v := os.environ.get("ASSETGATE_WALLET_PATH"):
        cfg.fabric.wallet_path = v
    if v := os.environ.get("ASSETGATE_PROFILES_DIR"):
        cfg.fabric.profiles_dir = v
    if v := os.environ.get("ASSETGATE_DISCOVERY"):
        cfg.fabric.discovery_enabled = _as_bool(v)
    if v := os.environ.get("ASSETGATE_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("ASSETGATE_LOG_FMT"):
        cfg.logging.format = v

    validate_config(cfg)
    return cfg
