#!/usr/bin/env python3
"""
AssetGate runner: starts the HTTP gateway in front of a Fabric network.

Usage:
    python run_gateway.py --config assetgate.toml
    python run_gateway.py --backend memory --port 4000

Environment variables (alternative to flags):
    ASSETGATE_PORT, ASSETGATE_BACKEND, ASSETGATE_WALLET_PATH, ASSETGATE_PROFILES_DIR, ...
    (see assetgate_core.config.load_config)
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys
from pathlib import Path

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from assetgate_core.api import APIServer  # noqa: E402
from assetgate_core.config import GatewayConfig, load_config, validate_config  # noqa: E402
from assetgate_core.logging_config import setup_logging  # noqa: E402
from assetgate_core.organizations import ProfileResolver  # noqa: E402
from assetgate_core.registration import IdentityRegistrar  # noqa: E402
from assetgate_core.service import AssetGatewayService  # noqa: E402
from assetgate_core.wallet import FileSystemWallet  # noqa: E402

logger = logging.getLogger("assetgate")


def build_service(cfg: GatewayConfig) -> AssetGatewayService:
    """Wire resolver, wallet, backend and registrar from configuration."""
    fab = cfg.fabric
    resolver = ProfileResolver(fab.profiles_dir, fab.profile_pattern, cfg.organizations.index)

    wallet_dir = Path(fab.wallet_path)
    wallet_dir.mkdir(parents=True, exist_ok=True)
    wallet = FileSystemWallet(wallet_dir)

    if fab.backend == "memory":
        from assetgate_core.memory import (
            MemoryCertificateAuthority,
            MemoryConnector,
            MemoryNetwork,
            memory_ca_factory,
        )

        network = MemoryNetwork()
        contract = network.deploy(fab.channel_name, fab.chaincode_name)
        if fab.memory_seed:
            contract.invoke("InitLedger", [])
        connector = MemoryConnector(network)
        ca_factory = memory_ca_factory(
            MemoryCertificateAuthority(cfg.ca.admin_id, cfg.ca.admin_secret)
        )
        logger.warning("Using the in-memory network: state is lost on restart")
    else:
        from assetgate_core.fabric import FabricConnector, fabric_ca_factory

        connector = FabricConnector()
        ca_factory = fabric_ca_factory

    registrar = IdentityRegistrar(resolver, wallet, ca_factory, cfg.ca)
    return AssetGatewayService(fab, resolver, connector, registrar)


# ===================================================================
#  Main entry point
# ===================================================================

def parse_args():
    p = argparse.ArgumentParser(description="AssetGate HTTP gateway")
    p.add_argument("--config", default=None, help="Path to assetgate.toml config file")
    p.add_argument("--host", default=None, help="Listen host")
    p.add_argument("--port", type=int, default=None, help="Listen port")
    p.add_argument("--backend", choices=("fabric", "memory"), default=None,
                   help="Network backend")
    p.add_argument("--wallet", default=None, help="Wallet directory")
    p.add_argument("--profiles", default=None, help="Connection profile directory")
    return p.parse_args()


async def main():
    args = parse_args()

    # Load config (TOML + env overrides)
    cfg = load_config(args.config)

    # CLI flags override config
    if args.host:
        cfg.server.host = args.host
    if args.port is not None:
        cfg.server.port = args.port
    if args.backend:
        cfg.fabric.backend = args.backend
    if args.wallet:
        cfg.fabric.wallet_path = args.wallet
    if args.profiles:
        cfg.fabric.profiles_dir = args.profiles
    validate_config(cfg)

    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    service = build_service(cfg)
    api = APIServer(service, cfg.server)
    await api.start()
    logger.info(
        f"Gateway ready: channel={cfg.fabric.channel_name} chaincode={cfg.fabric.chaincode_name} "
        f"backend={cfg.fabric.backend}"
    )

    try:
        while True:
            await asyncio.sleep(3600)
    except asyncio.CancelledError:
        pass
    finally:
        await api.stop()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
