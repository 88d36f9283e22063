"""
Shared pytest fixtures for the AssetGate test suite.
"""

from __future__ import annotations

import json

import pytest
from ecdsa import NIST256p, SigningKey

from assetgate_core.config import FabricConfig
from assetgate_core.memory import (
    MemoryCertificateAuthority,
    MemoryConnector,
    MemoryNetwork,
    memory_ca_factory,
)
from assetgate_core.organizations import ProfileResolver
from assetgate_core.registration import IdentityRegistrar
from assetgate_core.service import AssetGatewayService
from assetgate_core.wallet import FileSystemWallet, Identity


def make_profile(index: int, channels: list[str] | None = None) -> dict:
    """Connection profile shaped like the Fabric test-network ones."""
    org = f"Org{index}"
    peer = f"peer0.org{index}.example.com"
    ca = f"ca.org{index}.example.com"
    profile = {
        "name": f"test-network-org{index}",
        "version": "1.0.0",
        "client": {"organization": org},
        "organizations": {
            org: {
                "mspid": f"{org}MSP",
                "peers": [peer],
                "certificateAuthorities": [ca],
            },
        },
        "peers": {
            peer: {"url": f"grpcs://localhost:{5051 + index * 2000}"},
        },
        "certificateAuthorities": {
            ca: {
                "url": f"https://localhost:{6054 + index * 1000}",
                "caName": f"ca-org{index}",
                "tlsCACerts": {"pem": ["-----BEGIN CERTIFICATE-----\n", "MIIB\n", "-----END CERTIFICATE-----\n"]},
                "httpOptions": {"verify": False},
            },
        },
    }
    if channels is not None:
        profile["channels"] = {name: {"peers": {peer: {}}} for name in channels}
    return profile


def make_identity(label: str, msp_id: str) -> Identity:
    sk = SigningKey.generate(curve=NIST256p)
    return Identity(
        label=label,
        msp_id=msp_id,
        certificate=sk.get_verifying_key().to_pem().decode(),
        private_key=sk.to_pem(format="pkcs8").decode(),
    )


class RecordingConnector:
    """GatewayConnector that records every invocation instead of sending it."""

    def __init__(self, payload: bytes = b"", error: Exception | None = None):
        self.payload = payload
        self.error = error
        self.sessions: list[_RecordingSession] = []
        self.calls: list[dict] = []

    async def connect(self, profile, identity, discovery):
        session = _RecordingSession(self, profile, identity, discovery)
        self.sessions.append(session)
        return session


class _RecordingSession:
    def __init__(self, connector, profile, identity, discovery):
        self.connector = connector
        self.profile = profile
        self.identity = identity
        self.discovery = discovery
        self.closed = False

    async def get_channel(self, name):
        return _RecordingChannel(self, name)

    async def close(self):
        self.closed = True


class _RecordingChannel:
    def __init__(self, session, name):
        self.session = session
        self.name = name

    async def get_contract(self, name):
        return _RecordingContract(self.session, self.name, name)


class _RecordingContract:
    def __init__(self, session, channel, name):
        self.session = session
        self.channel = channel
        self.name = name

    async def _call(self, kind, function, args):
        connector = self.session.connector
        connector.calls.append({
            "kind": kind,
            "profile": self.session.profile.name,
            "user": self.session.identity.label,
            "channel": self.channel,
            "contract": self.name,
            "function": function,
            "args": list(args),
        })
        if connector.error is not None:
            raise connector.error
        return connector.payload

    async def submit(self, function, args):
        return await self._call("submit", function, args)

    async def evaluate(self, function, args):
        return await self._call("evaluate", function, args)


@pytest.fixture
def profiles_dir(tmp_path):
    """Profiles for Org1 and Org2."""
    d = tmp_path / "profiles"
    d.mkdir()
    for i in (1, 2):
        (d / f"connection-org{i}.json").write_text(json.dumps(make_profile(i)))
    return d


@pytest.fixture
def resolver(profiles_dir):
    return ProfileResolver(profiles_dir)


@pytest.fixture
def wallet(tmp_path):
    """Wallet holding alice (Org1MSP) and bob (Org2MSP)."""
    d = tmp_path / "wallet"
    d.mkdir()
    w = FileSystemWallet(d)
    w.put("alice", make_identity("alice", "Org1MSP"))
    w.put("bob", make_identity("bob", "Org2MSP"))
    return w


@pytest.fixture
def fabric_config(wallet, profiles_dir):
    return FabricConfig(
        backend="memory",
        wallet_path=str(wallet.path),
        profiles_dir=str(profiles_dir),
    )


@pytest.fixture
def network():
    """Memory network with the basic contract seeded on mychannel."""
    net = MemoryNetwork()
    contract = net.deploy("mychannel", "basic")
    contract.invoke("InitLedger", [])
    return net


@pytest.fixture
def memory_ca():
    return MemoryCertificateAuthority()


@pytest.fixture
def registrar(resolver, wallet, memory_ca):
    return IdentityRegistrar(resolver, wallet, memory_ca_factory(memory_ca))


@pytest.fixture
def service(fabric_config, resolver, network, registrar):
    """Service over the memory network."""
    return AssetGatewayService(fabric_config, resolver, MemoryConnector(network), registrar)


@pytest.fixture
def recorder():
    return RecordingConnector()


@pytest.fixture
def recording_service(fabric_config, resolver, recorder, registrar):
    """Service whose network calls are only recorded."""
    return AssetGatewayService(fabric_config, resolver, recorder, registrar)
