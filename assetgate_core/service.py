"""
Per-request orchestration shared by every HTTP route.

Each call resolves the organization's profile, opens the wallet, opens a
session as the caller's identity, runs one transaction and closes the
session again.  No session is reused across requests.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from assetgate_core.config import FabricConfig
from assetgate_core.errors import InvalidInput
from assetgate_core.gateway import GatewayConnector, open_session
from assetgate_core.organizations import ProfileResolver, org_index
from assetgate_core.registration import IdentityRegistrar, RegistrationResult
from assetgate_core.transactions import (
    CREATE_ASSET,
    GET_ALL_ASSETS,
    GET_ASSET_HISTORY,
    READ_ASSET,
    TRANSFER_ASSET,
    TransactionRequest,
    TransactionResult,
    create_asset_args,
    evaluate,
    submit,
    transfer_asset_args,
)
from assetgate_core.wallet import open_wallet

logger = logging.getLogger("assetgate.service")


def _require_user(user_id: Any) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise InvalidInput("userId must be a non-empty string")
    return user_id.strip()


class AssetGatewayService:
    """Routes requests onto the network as the requesting identity."""

    def __init__(
        self,
        config: FabricConfig,
        resolver: ProfileResolver,
        connector: GatewayConnector,
        registrar: IdentityRegistrar | None = None,
    ):
        self.config = config
        self.resolver = resolver
        self.connector = connector
        self.registrar = registrar

    def build_request(self, org: Any, user_id: Any, function: str, args: tuple[str, ...]) -> TransactionRequest:
        if not isinstance(org, str):
            raise InvalidInput("org must be a non-empty string")
        return TransactionRequest(
            org=org.strip(),
            user_id=_require_user(user_id),
            channel=self.config.channel_name,
            contract=self.config.chaincode_name,
            function=function,
            args=args,
        )

    async def execute(self, req: TransactionRequest, *, query: bool = False) -> TransactionResult:
        # index first: a bad org fails before anything touches the network
        index = org_index(req.org, self.resolver.table)
        profile = self.resolver.resolve(index)
        wallet = open_wallet(self.config.wallet_path)
        timeout = self.config.submit_timeout_seconds or None

        started = time.monotonic()
        session = await open_session(
            self.connector, profile, wallet, req.user_id, self.config.discovery_enabled,
        )
        async with session:
            channel = await session.get_channel(req.channel)
            contract = await channel.get_contract(req.contract)
            if query:
                result = await evaluate(contract, req.function, req.args, timeout)
            else:
                result = await submit(contract, req.function, req.args, timeout)

        logger.info(
            f"{req.function} by {req.user_id}@{req.org} on {req.channel}/{req.contract} "
            f"done in {(time.monotonic() - started) * 1000:.0f} ms"
        )
        return result

    # ── operations ───────────────────────────────────────────────

    async def create_asset(self, org: Any, user_id: Any, data: Any) -> TransactionResult:
        req = self.build_request(org, user_id, CREATE_ASSET, create_asset_args(data))
        return await self.execute(req)

    async def transfer_asset(self, org: Any, user_id: Any, data: Any) -> TransactionResult:
        req = self.build_request(org, user_id, TRANSFER_ASSET, transfer_asset_args(data))
        return await self.execute(req)

    async def read_asset(self, org: Any, user_id: Any, part_number: str) -> TransactionResult:
        req = self.build_request(org, user_id, READ_ASSET, (part_number,))
        return await self.execute(req, query=True)

    async def all_assets(self, org: Any, user_id: Any) -> TransactionResult:
        req = self.build_request(org, user_id, GET_ALL_ASSETS, ())
        return await self.execute(req, query=True)

    async def asset_history(self, org: Any, user_id: Any, part_number: str) -> TransactionResult:
        req = self.build_request(org, user_id, GET_ASSET_HISTORY, (part_number,))
        return await self.execute(req, query=True)

    async def register(self, org: Any, user_id: Any) -> RegistrationResult:
        if self.registrar is None:
            raise RuntimeError("no identity registrar configured")
        if not isinstance(org, str):
            raise InvalidInput("org must be a non-empty string")
        return await self.registrar.register(org, _require_user(user_id))
