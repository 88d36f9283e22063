"""
In-process network backend.

Hosts channels and contracts inside the gateway process so the HTTP
surface can be run and tested without a Fabric network.  Submissions on
one channel are serialized, which stands in for ordering; there is no
endorsement and no persistence.

``AssetTransferContract`` implements the airline-parts asset contract:

    InitLedger, CreateAsset, ReadAsset, UpdateAsset, DeleteAsset,
    AssetExists, TransferAsset, GetAllAssets, GetAssetHistory

Write functions return an empty payload, as the deployed chaincode does.
"""

from __future__ import annotations

import asyncio
import hashlib
import itertools
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

from assetgate_core.errors import AuthError, ChaincodeError, InvalidInput, NotFound
from assetgate_core.organizations import CAInfo, ConnectionProfile
from assetgate_core.registration import Enrollment
from assetgate_core.wallet import Identity

logger = logging.getLogger("assetgate.memory")

_SEED_ASSETS = [
    ("Flight Controls", "E96GJE93D", "United Airlines"),
    ("Landing Gear", "U46834HJ3", "American Airlines"),
    ("Fuselage", "FOIE463U2", "Delta"),
    ("Rudder Pedals", "DFU9436OB", "Spirit"),
    ("Instrument Panels", "FJE582KFD3", "Frontier"),
    ("Engine", "DFJRO895D", "Alaska Airlines"),
    ("Wings", "RID5569D2", "Southwest Airlines"),
    ("Rudders", "TOIE835D3", "JetBlue"),
    ("Vertical Stabalizer", "TI45GMD32W", "Hawaiian Airlines"),
    ("Overhead Panel", "EKLF8534H", "Allegiant Air"),
]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ═══════════════════════════════════════════════════════════════════
#  Contract
# ═══════════════════════════════════════════════════════════════════

class AssetTransferContract:
    """World state plus per-key history for airline part assets."""

    READ_ONLY = frozenset({"ReadAsset", "AssetExists", "GetAllAssets", "GetAssetHistory"})

    def __init__(self):
        self.state: dict[str, dict[str, Any]] = {}
        self.history: dict[str, list[dict[str, Any]]] = {}
        self._tx_counter = itertools.count(1)

    # ── dispatch ─────────────────────────────────────────────────

    def invoke(self, function: str, args: Sequence[str], read_only: bool = False) -> bytes:
        handler: Callable[..., Any] | None = getattr(self, f"_fn_{function}", None)
        if handler is None:
            raise ChaincodeError(f"function {function} not found in contract")
        if read_only and function not in self.READ_ONLY:
            raise ChaincodeError(f"{function} modifies state and cannot be evaluated")
        try:
            result = handler(*args)
        except TypeError as exc:
            raise ChaincodeError(f"{function}: incorrect number of arguments, got {len(args)}") from exc
        if result is None:
            return b""
        return json.dumps(result).encode("utf-8")

    def _tx_id(self, function: str, args: Sequence[str]) -> str:
        seed = f"{next(self._tx_counter)}:{function}:{json.dumps(list(args))}"
        return hashlib.sha256(seed.encode()).hexdigest()

    def _put(self, key: str, record: dict[str, Any] | None, tx_id: str) -> None:
        if record is None:
            self.state.pop(key, None)
        else:
            self.state[key] = record
        self.history.setdefault(key, []).append({
            "record": dict(record) if record else {},
            "txId": tx_id,
            "timestamp": _now(),
            "isDelete": record is None,
        })

    def _read(self, part_number: str) -> dict[str, Any]:
        record = self.state.get(part_number)
        if record is None:
            raise ChaincodeError(f"the asset {part_number} does not exist")
        return record

    # ── contract functions ───────────────────────────────────────

    def _fn_InitLedger(self):
        tx_id = self._tx_id("InitLedger", [])
        for i, (name, serial, owner) in enumerate(_SEED_ASSETS):
            self._put(f"PART{i}", {
                "productID": serial,
                "name": name,
                "quantity": "1",
                "owner": owner,
            }, tx_id)

    def _fn_CreateAsset(self, part_number, product_id, quantity, owner):
        if part_number in self.state:
            raise ChaincodeError(f"the asset {part_number} already exists")
        record = {"productID": product_id, "quantity": quantity, "owner": owner}
        self._put(part_number, record, self._tx_id("CreateAsset", [part_number]))

    def _fn_ReadAsset(self, part_number):
        return self._read(part_number)

    def _fn_UpdateAsset(self, part_number, product_id, quantity, owner):
        self._read(part_number)
        record = {"productID": product_id, "quantity": quantity, "owner": owner}
        self._put(part_number, record, self._tx_id("UpdateAsset", [part_number]))

    def _fn_DeleteAsset(self, part_number):
        self._read(part_number)
        self._put(part_number, None, self._tx_id("DeleteAsset", [part_number]))

    def _fn_AssetExists(self, part_number):
        return part_number in self.state

    def _fn_TransferAsset(self, part_number, new_owner):
        record = dict(self._read(part_number))
        record["owner"] = new_owner
        self._put(part_number, record, self._tx_id("TransferAsset", [part_number, new_owner]))

    def _fn_GetAllAssets(self):
        return [{"Key": k, "Record": self.state[k]} for k in sorted(self.state)]

    def _fn_GetAssetHistory(self, part_number):
        return list(self.history.get(part_number, []))


# ═══════════════════════════════════════════════════════════════════
#  Network / connector
# ═══════════════════════════════════════════════════════════════════

class MemoryNetwork:
    """Channels → deployed contracts, shared by every session."""

    def __init__(self):
        self.channels: dict[str, dict[str, AssetTransferContract]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self.sessions_opened = 0

    def deploy(self, channel: str, name: str, contract: AssetTransferContract | None = None) -> AssetTransferContract:
        contract = contract or AssetTransferContract()
        self.channels.setdefault(channel, {})[name] = contract
        self._locks.setdefault(channel, asyncio.Lock())
        return contract

    def lock(self, channel: str) -> asyncio.Lock:
        return self._locks.setdefault(channel, asyncio.Lock())


class _MemoryContract:
    def __init__(self, network: MemoryNetwork, channel: str, contract: AssetTransferContract):
        self._network = network
        self._channel = channel
        self._contract = contract

    async def submit(self, function: str, args: Sequence[str]) -> bytes:
        async with self._network.lock(self._channel):
            await asyncio.sleep(0)
            return self._contract.invoke(function, args)

    async def evaluate(self, function: str, args: Sequence[str]) -> bytes:
        await asyncio.sleep(0)
        return self._contract.invoke(function, args, read_only=True)


class _MemoryChannel:
    def __init__(self, network: MemoryNetwork, name: str):
        self._network = network
        self._name = name

    async def get_contract(self, name: str) -> _MemoryContract:
        contract = self._network.channels[self._name].get(name)
        if contract is None:
            raise NotFound(f"chaincode {name!r} is not deployed on channel {self._name!r}")
        return _MemoryContract(self._network, self._name, contract)


class _MemorySession:
    def __init__(self, network: MemoryNetwork):
        self._network = network
        self.closed = False

    async def get_channel(self, name: str) -> _MemoryChannel:
        if name not in self._network.channels:
            raise NotFound(f"channel {name!r} does not exist")
        return _MemoryChannel(self._network, name)

    async def close(self) -> None:
        self.closed = True


class MemoryConnector:
    """GatewayConnector over a :class:`MemoryNetwork`."""

    def __init__(self, network: MemoryNetwork):
        self.network = network

    async def connect(self, profile: ConnectionProfile, identity: Identity, discovery: bool) -> _MemorySession:
        self.network.sessions_opened += 1
        return _MemorySession(self.network)


# ═══════════════════════════════════════════════════════════════════
#  Certificate authority
# ═══════════════════════════════════════════════════════════════════

class MemoryCertificateAuthority:
    """
    Issues P-256 keys for registered users.

    The "certificate" is the bare public key in PEM form; there is no X.509
    chain behind it.
    """

    def __init__(self, admin_id: str = "admin", admin_secret: str = "adminpw"):
        self._secrets: dict[str, str] = {admin_id: admin_secret}
        self._admins = {admin_id}

    async def enroll(self, enrollment_id: str, secret: str) -> Enrollment:
        from ecdsa import NIST256p, SigningKey

        expected = self._secrets.get(enrollment_id)
        if expected is None or not secrets.compare_digest(expected, secret):
            raise AuthError(f"enrollment of {enrollment_id!r} failed: invalid credentials")
        sk = SigningKey.generate(curve=NIST256p)
        cert = sk.get_verifying_key().to_pem().decode()
        return Enrollment(
            certificate=cert,
            private_key=sk.to_pem(format="pkcs8").decode(),
        )

    async def register(self, registrar: Identity, enrollment_id: str, role: str, affiliation: str) -> str:
        if registrar.label.split("@", 1)[0] not in self._admins:
            raise AuthError(f"{registrar.label!r} is not allowed to register identities")
        if enrollment_id in self._secrets:
            raise InvalidInput(f"identity {enrollment_id!r} is already registered with the CA")
        secret = secrets.token_urlsafe(12)
        self._secrets[enrollment_id] = secret
        logger.debug(f"Registered {enrollment_id} role={role} affiliation={affiliation}")
        return secret


def memory_ca_factory(ca: MemoryCertificateAuthority) -> Callable[[CAInfo], MemoryCertificateAuthority]:
    """One shared CA regardless of which organization asks."""
    return lambda _info: ca
