"""
Hyperledger Fabric backend built on ``fabric-sdk-py`` (``hfc``).

The SDK is imported lazily so the rest of the gateway (and the memory
backend) works without it.  Install with ``pip install ".[fabric]"``.

SDK exceptions are translated into the gateway's error taxonomy here and
nowhere else.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Sequence

from assetgate_core.errors import (
    AuthError,
    ChaincodeError,
    EndorsementFailure,
    GatewayError,
    NetworkConnectionError,
    NotFound,
    TransactionTimeout,
)
from assetgate_core.organizations import CAInfo, ConnectionProfile
from assetgate_core.registration import Enrollment
from assetgate_core.wallet import Identity

logger = logging.getLogger("assetgate.fabric")


# ═══════════════════════════════════════════════════════════════════
#  Error translation
# ═══════════════════════════════════════════════════════════════════

_NOT_FOUND_MARKERS = (
    "could not find chaincode",
    "chaincode definition for",
    "cannot retrieve package for chaincode",
    "channel not found",
    "not found in",
)
_ENDORSEMENT_MARKERS = (
    "endorsement policy failure",
    "endorsement_policy_failure",
    "proposal response",
    "failed to collect enough",
)
_AUTH_MARKERS = ("access denied", "creator certificate is not valid", "authentication failure")


def translate_error(exc: BaseException, what: str) -> GatewayError:
    """Map an SDK / transport exception onto a :class:`GatewayError`."""
    if isinstance(exc, GatewayError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return TransactionTimeout(f"{what}: timed out waiting for the network")

    # only the SDK imports grpc; if it never loaded, exc cannot be an RpcError
    grpc = sys.modules.get("grpc")
    if grpc is not None and isinstance(exc, grpc.RpcError):
        code = exc.code() if callable(getattr(exc, "code", None)) else None
        if code == grpc.StatusCode.UNAVAILABLE:
            return NetworkConnectionError(f"{what}: network unreachable ({exc.details()})")
        if code == grpc.StatusCode.DEADLINE_EXCEEDED:
            return TransactionTimeout(f"{what}: deadline exceeded")

    if isinstance(exc, (ConnectionError, OSError)):
        return NetworkConnectionError(f"{what}: {exc}")

    text = str(exc)
    lowered = text.lower()
    if any(m in lowered for m in _AUTH_MARKERS):
        return AuthError(f"{what}: {text}")
    if any(m in lowered for m in _NOT_FOUND_MARKERS):
        return NotFound(f"{what}: {text}")
    if any(m in lowered for m in _ENDORSEMENT_MARKERS):
        return EndorsementFailure(f"{what}: {text}")
    return ChaincodeError(f"{what}: {text}")


# ═══════════════════════════════════════════════════════════════════
#  SDK objects
# ═══════════════════════════════════════════════════════════════════

def _load_private_key(pem: str):
    from cryptography.hazmat.backends import default_backend
    from cryptography.hazmat.primitives import serialization

    return serialization.load_pem_private_key(pem.encode(), password=None, backend=default_backend())


def _sdk_user(identity: Identity, org_name: str):
    """Build an ``hfc`` User from a wallet identity."""
    from hfc.fabric.user import User
    from hfc.fabric_ca.caservice import Enrollment as HfcEnrollment
    from hfc.util.crypto.crypto import ecies
    from hfc.util.keyvaluestore import FileKeyValueStore

    user = User(identity.label, org_name, FileKeyValueStore(".hfc-state"))
    user.enrollment = HfcEnrollment(_load_private_key(identity.private_key), identity.certificate.encode())
    user.msp_id = identity.msp_id
    user.cryptoSuite = ecies()
    return user


def _org_name(profile: ConnectionProfile, msp_id: str) -> str:
    for name, org in profile.organizations.items():
        if org.get("mspid") == msp_id:
            return name
    return msp_id


class _FabricContract:
    def __init__(self, session: FabricSession, channel: str, name: str):
        self._session = session
        self._channel = channel
        self._name = name

    async def submit(self, function: str, args: Sequence[str]) -> bytes:
        what = f"{function} on {self._channel}/{self._name}"
        try:
            payload = await self._session.client.chaincode_invoke(
                requestor=self._session.user,
                channel_name=self._channel,
                peers=self._session.peers,
                cc_name=self._name,
                fcn=function,
                args=list(args),
                wait_for_event=True,
            )
        except Exception as exc:
            raise translate_error(exc, what) from exc
        return _checked_payload(payload, what)

    async def evaluate(self, function: str, args: Sequence[str]) -> bytes:
        what = f"{function} on {self._channel}/{self._name}"
        try:
            payload = await self._session.client.chaincode_query(
                requestor=self._session.user,
                channel_name=self._channel,
                peers=self._session.peers[:1],
                cc_name=self._name,
                fcn=function,
                args=list(args),
            )
        except Exception as exc:
            raise translate_error(exc, what) from exc
        return _checked_payload(payload, what)


def _as_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, bytes):
        return payload
    return str(payload).encode("utf-8")


def _checked_payload(payload: Any, what: str) -> bytes:
    """
    Separate a contract payload from a rejection reported as text.

    hfc returns the proposal or orderer response message instead of raising
    when a transaction is rejected, so anything that is not empty and not
    JSON is treated as that message.  A rejection whose message is empty
    or happens to be valid JSON cannot be told apart from a payload.
    """
    raw = _as_bytes(payload)
    if not raw.strip():
        return raw
    try:
        json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        text = raw.decode("utf-8", errors="replace")
        raise translate_error(Exception(text), what) from None
    return raw


class _FabricChannel:
    def __init__(self, session: FabricSession, name: str):
        self._session = session
        self._name = name

    async def get_contract(self, name: str) -> _FabricContract:
        return _FabricContract(self._session, self._name, name)


class FabricSession:
    """One ``hfc`` Client bound to one user."""

    def __init__(self, client: Any, user: Any, peers: list[str], discovery: bool):
        self.client = client
        self.user = user
        self.peers = peers
        self.discovery = discovery

    async def get_channel(self, name: str) -> _FabricChannel:
        try:
            if self.discovery:
                # discovery needs the Peer object, not its profile name
                target = self.client.get_peer(self.peers[0])
                if target is None:
                    raise NotFound(f"peer {self.peers[0]!r} is not defined in the connection profile")
                await self.client.init_with_discovery(self.user, target, name)
            elif self.client.get_channel(name) is None:
                self.client.new_channel(name)
        except Exception as exc:
            raise translate_error(exc, f"channel {name}") from exc
        if self.client.get_channel(name) is None:
            raise NotFound(f"channel {name!r} is not joined")
        return _FabricChannel(self, name)

    async def close(self) -> None:
        # hfc keeps gRPC channels on the peer objects
        for peer in getattr(self.client, "peers", {}).values():
            channel = getattr(peer, "_channel", None)
            if channel is not None:
                channel.close()


class FabricConnector:
    """GatewayConnector backed by ``hfc.fabric.Client``."""

    async def connect(self, profile: ConnectionProfile, identity: Identity, discovery: bool) -> FabricSession:
        from hfc.fabric import Client

        org_name = _org_name(profile, identity.msp_id)
        try:
            client = Client(net_profile=str(profile.path))
            user = _sdk_user(identity, org_name)
        except Exception as exc:
            raise translate_error(exc, f"connect to {profile.name}") from exc

        org = profile.organizations.get(org_name, {})
        peers = list(org.get("peers", ())) or profile.peers
        if not peers:
            raise NotFound(f"profile {profile.name} lists no peers for {org_name}")
        logger.debug(f"Connecting {identity.label} to {profile.name} via {peers}")
        return FabricSession(client, user, peers, discovery)


# ═══════════════════════════════════════════════════════════════════
#  Certificate authority
# ═══════════════════════════════════════════════════════════════════

def _pem_bytes(key: Any) -> str:
    from cryptography.hazmat.primitives import serialization

    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


class FabricCertificateAuthority:
    """Fabric CA client; the SDK is synchronous, so calls run in a thread."""

    def __init__(self, info: CAInfo):
        from hfc.fabric_ca.caservice import ca_service

        self.info = info
        self._service = ca_service(
            target=info.url,
            ca_certs_path=info.tls_path or None,
            ca_name=info.ca_name,
        )

    async def enroll(self, enrollment_id: str, secret: str) -> Enrollment:
        try:
            enrollment = await asyncio.to_thread(self._service.enroll, enrollment_id, secret)
        except Exception as exc:
            raise translate_error(exc, f"enroll {enrollment_id} at {self.info.name}") from exc
        cert = enrollment.cert
        return Enrollment(
            certificate=cert.decode() if isinstance(cert, bytes) else str(cert),
            private_key=_pem_bytes(enrollment.private_key),
        )

    async def register(self, registrar: Identity, enrollment_id: str, role: str, affiliation: str) -> str:
        from hfc.fabric_ca.caservice import Enrollment as HfcEnrollment

        admin = HfcEnrollment(
            _load_private_key(registrar.private_key),
            registrar.certificate.encode(),
            service=self._service,
        )
        try:
            return await asyncio.to_thread(
                admin.register,
                enrollment_id,
                role=role,
                affiliation=affiliation,
            )
        except Exception as exc:
            raise translate_error(exc, f"register {enrollment_id} at {self.info.name}") from exc


def fabric_ca_factory(info: CAInfo) -> FabricCertificateAuthority:
    return FabricCertificateAuthority(info)
