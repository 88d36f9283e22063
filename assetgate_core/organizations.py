"""
Connection-profile resolution.

An organization is addressed by its MSP id (``"Org1MSP"``).  The numeric
index used to pick its connection profile comes from an explicit table
when one is configured, otherwise from the digits embedded in the id.
Profiles are JSON files in the Fabric "common connection profile" layout
and are loaded once, then served from a cache.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

from assetgate_core.errors import InvalidInput, NotFound, StorageError

logger = logging.getLogger("assetgate.organizations")

_DIGITS = re.compile(r"\d")


def org_index(org: Any, table: Mapping[str, int] | None = None) -> int:
    """
    Derive the organization index for *org*.

    Table entries win.  Otherwise every digit in the string is concatenated
    (``"Org12MSP"`` → 12, but also ``"Org1Dept2MSP"`` → 12).
    """
    if not isinstance(org, str) or not org.strip():
        raise InvalidInput("org must be a non-empty string")
    org = org.strip()
    if table and org in table:
        return int(table[org])
    digits = _DIGITS.findall(org)
    if not digits:
        raise InvalidInput(f"organization {org!r} contains no digits and is not in the organizations table")
    try:
        return int("".join(digits))
    except ValueError as exc:  # past the interpreter's int-string limit
        raise InvalidInput(f"organization id has too many digits ({len(digits)})") from exc


@dataclass(frozen=True)
class CAInfo:
    """Enough of a CA entry to build an enrollment client."""
    name: str
    url: str
    ca_name: str = ""
    tls_pem: str = ""
    tls_path: str = ""


@dataclass(frozen=True)
class ConnectionProfile:
    """Read-only view over one organization's connection profile."""
    index: int
    path: Path
    data: Mapping[str, Any] = field(repr=False)

    @property
    def name(self) -> str:
        return str(self.data.get("name", self.path.stem))

    @property
    def organizations(self) -> Mapping[str, Any]:
        return self.data.get("organizations", {})

    @property
    def peers(self) -> list[str]:
        return list(self.data.get("peers", {}))

    @property
    def orderers(self) -> list[str]:
        return list(self.data.get("orderers", {}))

    @property
    def certificate_authorities(self) -> list[str]:
        return list(self.data.get("certificateAuthorities", {}))

    @property
    def channels(self) -> list[str]:
        return list(self.data.get("channels", {}))

    @property
    def msp_ids(self) -> set[str]:
        return {
            org.get("mspid")
            for org in self.organizations.values()
            if isinstance(org, Mapping) and org.get("mspid")
        }

    def peer_url(self, peer: str) -> str:
        return str(self.data.get("peers", {}).get(peer, {}).get("url", ""))

    def ca_for(self, msp_id: str) -> CAInfo:
        """Return the first CA listed for the organization owning *msp_id*."""
        cas = self.data.get("certificateAuthorities", {})
        for org in self.organizations.values():
            if not isinstance(org, Mapping) or org.get("mspid") != msp_id:
                continue
            for ca_key in org.get("certificateAuthorities", []):
                entry = cas.get(ca_key)
                if entry:
                    tls = entry.get("tlsCACerts", {})
                    pem = tls.get("pem", "")
                    if isinstance(pem, list):
                        pem = "".join(pem)
                    return CAInfo(
                        name=ca_key,
                        url=entry.get("url", ""),
                        ca_name=entry.get("caName", ""),
                        tls_pem=pem,
                        tls_path=tls.get("path", ""),
                    )
        raise NotFound(f"no certificate authority for {msp_id} in profile {self.name}")


def _freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


class ProfileResolver:
    """Load and cache connection profiles by organization index."""

    def __init__(
        self,
        profiles_dir: str | Path,
        pattern: str = "connection-org{index}.json",
        table: Mapping[str, int] | None = None,
    ):
        self.profiles_dir = Path(profiles_dir)
        self.pattern = pattern
        self.table = dict(table or {})
        self._cache: dict[int, ConnectionProfile] = {}

    def path_for(self, index: int) -> Path:
        return self.profiles_dir / self.pattern.format(index=index)

    def resolve(self, index: int) -> ConnectionProfile:
        cached = self._cache.get(index)
        if cached is not None:
            return cached

        path = self.path_for(index)
        if not path.is_file():
            raise NotFound(f"no connection profile for organization index {index}", path=str(path))
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise StorageError(f"cannot read connection profile {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StorageError(f"connection profile {path} is not valid JSON: {exc}") from exc
        if not isinstance(raw, dict):
            raise StorageError(f"connection profile {path} must be a JSON object")

        profile = ConnectionProfile(index=index, path=path, data=_freeze(raw))
        # setdefault keeps the first load if two requests raced here
        profile = self._cache.setdefault(index, profile)
        logger.debug(f"Loaded connection profile {profile.name} from {path}")
        return profile

    def for_org(self, org: str) -> ConnectionProfile:
        return self.resolve(org_index(org, self.table))
