"""
Network sessions.

A session binds one connection profile and one wallet identity to a live
connection.  Backends (``assetgate_core.fabric``, ``assetgate_core.memory``)
implement :class:`GatewayConnector`; this module adds the identity checks,
channel/contract lookup and the close-on-exit lifecycle shared by all of
them.

Usage:
    async with await open_session(connector, profile, wallet, "alice") as session:
        channel = await session.get_channel("mychannel")
        contract = await channel.get_contract("basic")
"""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from assetgate_core.errors import AuthError, NotFound
from assetgate_core.organizations import ConnectionProfile
from assetgate_core.wallet import FileSystemWallet, Identity

logger = logging.getLogger("assetgate.gateway")


# ═══════════════════════════════════════════════════════════════════
#  Backend protocol
# ═══════════════════════════════════════════════════════════════════

class ContractBackend(Protocol):
    async def submit(self, function: str, args: Sequence[str]) -> bytes: ...

    async def evaluate(self, function: str, args: Sequence[str]) -> bytes: ...


class ChannelBackend(Protocol):
    async def get_contract(self, name: str) -> ContractBackend: ...


class NetworkSession(Protocol):
    async def get_channel(self, name: str) -> ChannelBackend: ...

    async def close(self) -> None: ...


class GatewayConnector(Protocol):
    async def connect(
        self,
        profile: ConnectionProfile,
        identity: Identity,
        discovery: bool,
    ) -> NetworkSession: ...


# ═══════════════════════════════════════════════════════════════════
#  Session wrappers
# ═══════════════════════════════════════════════════════════════════

class Contract:
    """A deployed chaincode on one channel, seen through one session."""

    def __init__(self, name: str, channel: str, backend: ContractBackend):
        self.name = name
        self.channel = channel
        self._backend = backend

    async def submit_transaction(self, function: str, *args: str) -> bytes:
        return await self._backend.submit(function, list(args))

    async def evaluate_transaction(self, function: str, *args: str) -> bytes:
        return await self._backend.evaluate(function, list(args))

    def __repr__(self) -> str:
        return f"Contract({self.channel}/{self.name})"


class Channel:
    def __init__(self, name: str, backend: ChannelBackend):
        self.name = name
        self._backend = backend

    async def get_contract(self, name: str) -> Contract:
        if not name:
            raise NotFound("contract name is empty")
        backend = await self._backend.get_contract(name)
        return Contract(name, self.name, backend)


class Session:
    """A live connection for one (profile, identity) pair."""

    def __init__(
        self,
        profile: ConnectionProfile,
        identity: Identity,
        backend: NetworkSession,
        discovery: bool,
    ):
        self.profile = profile
        self.identity = identity
        self.discovery = discovery
        self._backend = backend
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def get_channel(self, name: str) -> Channel:
        if self._closed:
            raise RuntimeError("session is closed")
        declared = self.profile.channels
        if declared and name not in declared:
            raise NotFound(f"channel {name!r} is not joined by {self.profile.name}")
        backend = await self._backend.get_channel(name)
        return Channel(name, backend)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._backend.close()
        logger.debug(f"Closed session {self.identity.label}@{self.profile.name}")

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def authorize(profile: ConnectionProfile, identity: Identity) -> None:
    """The identity's MSP must be an organization of the profile."""
    members = profile.msp_ids
    if members and identity.msp_id not in members:
        raise AuthError(
            f"identity {identity.label!r} ({identity.msp_id}) is not a member of {profile.name}",
        )
    identity.signing_key()


async def open_session(
    connector: GatewayConnector,
    profile: ConnectionProfile,
    wallet: FileSystemWallet,
    identity_label: str,
    discovery: bool = True,
) -> Session:
    """Look up *identity_label* in *wallet* and connect with it."""
    identity = wallet.get(identity_label)
    if identity is None:
        raise AuthError(f"an identity for the user {identity_label!r} does not exist in the wallet")
    authorize(profile, identity)

    backend = await connector.connect(profile, identity, discovery)
    logger.debug(
        f"Opened session {identity.label}@{profile.name} (discovery={'on' if discovery else 'off'})"
    )
    return Session(profile, identity, backend, discovery)
