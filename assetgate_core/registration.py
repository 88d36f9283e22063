"""
Identity registration against an organization's certificate authority.

Flow for ``register(org, user_id)``:

1. Resolve the organization's connection profile and its CA entry.
2. If the wallet already holds ``user_id``, report ``already_registered``.
3. Load the CA admin from the wallet, enrolling it on first use.
4. Register the user with the admin's credentials, enroll it, and store
   the resulting identity in the wallet.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Protocol

from assetgate_core.config import CAConfig
from assetgate_core.errors import InvalidInput
from assetgate_core.organizations import CAInfo, ProfileResolver, org_index
from assetgate_core.wallet import FileSystemWallet, Identity

logger = logging.getLogger("assetgate.registration")

REGISTERED = "registered"
ALREADY_REGISTERED = "already_registered"


@dataclass(frozen=True)
class Enrollment:
    certificate: str
    private_key: str


class CertificateAuthority(Protocol):
    async def enroll(self, enrollment_id: str, secret: str) -> Enrollment: ...

    async def register(
        self,
        registrar: Identity,
        enrollment_id: str,
        role: str,
        affiliation: str,
    ) -> str: ...


CAFactory = Callable[[CAInfo], CertificateAuthority]


@dataclass(frozen=True)
class RegistrationResult:
    status: str
    user_id: str
    msp_id: str
    message: str = ""

    def to_dict(self) -> dict[str, str]:
        return {
            "status": self.status,
            "userId": self.user_id,
            "mspId": self.msp_id,
            "message": self.message,
        }


class IdentityRegistrar:
    """Registers and enrolls users, writing their identities to the wallet."""

    def __init__(
        self,
        resolver: ProfileResolver,
        wallet: FileSystemWallet,
        ca_factory: CAFactory,
        ca_config: CAConfig | None = None,
    ):
        self.resolver = resolver
        self.wallet = wallet
        self.ca_factory = ca_factory
        self.ca_config = ca_config or CAConfig()
        # label -> [lock, tasks holding or waiting on it]
        self._locks: dict[str, list] = {}

    def admin_label(self, msp_id: str) -> str:
        return f"{self.ca_config.admin_id}@{msp_id}"

    @contextlib.asynccontextmanager
    async def _locked(self, label: str) -> AsyncIterator[None]:
        """Serialize work on one wallet label; the entry goes once nobody needs it."""
        entry = self._locks.setdefault(label, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[label]

    async def register(self, org: str, user_id: str) -> RegistrationResult:
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidInput("userId must be a non-empty string")
        user_id = user_id.strip()
        index = org_index(org, self.resolver.table)
        msp_id = org.strip()
        if user_id == self.admin_label(msp_id):
            raise InvalidInput(f"userId {user_id!r} is reserved for the CA admin")
        profile = self.resolver.resolve(index)

        async with self._locked(user_id):
            existing = self.wallet.get(user_id)
            if existing is not None:
                logger.info(f"Identity {user_id} already exists in the wallet ({existing.msp_id})")
                return RegistrationResult(
                    status=ALREADY_REGISTERED,
                    user_id=user_id,
                    msp_id=existing.msp_id,
                    message=f"An identity for the user {user_id} already exists in the wallet",
                )

            ca = self.ca_factory(profile.ca_for(msp_id))
            admin = await self._admin(ca, msp_id)

            affiliation = self.ca_config.affiliation.format(index=index)
            secret = await ca.register(admin, user_id, self.ca_config.user_role, affiliation)
            enrollment = await ca.enroll(user_id, secret)
            self.wallet.put(user_id, Identity(
                label=user_id,
                msp_id=msp_id,
                certificate=enrollment.certificate,
                private_key=enrollment.private_key,
            ))

        logger.info(f"Registered and enrolled {user_id} for {msp_id}")
        return RegistrationResult(
            status=REGISTERED,
            user_id=user_id,
            msp_id=msp_id,
            message=f"Successfully registered and enrolled user {user_id} and imported it into the wallet",
        )

    async def _admin(self, ca: CertificateAuthority, msp_id: str) -> Identity:
        label = self.admin_label(msp_id)
        async with self._locked(label):
            admin = self.wallet.get(label)
            if admin is not None:
                return admin
            enrollment = await ca.enroll(self.ca_config.admin_id, self.ca_config.admin_secret)
            admin = Identity(
                label=label,
                msp_id=msp_id,
                certificate=enrollment.certificate,
                private_key=enrollment.private_key,
            )
            self.wallet.put(label, admin)
            logger.info(f"Enrolled CA admin for {msp_id}")
            return admin
