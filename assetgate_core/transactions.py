"""
Transaction submission.

``submit`` sends an invocation through a :class:`Contract` and waits for
the commit; ``evaluate`` runs a read-only query.  Both return a
:class:`TransactionResult` whose ``value`` is the JSON-decoded payload
(``None`` when the contract returned nothing).  A payload that is not
JSON is a ``ChaincodeError`` on every path.

Argument builders validate request data and fix the argument order of
the asset-transfer contract.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from assetgate_core.errors import ChaincodeError, InvalidInput, TransactionTimeout
from assetgate_core.gateway import Contract

logger = logging.getLogger("assetgate.tx")

CREATE_ASSET = "CreateAsset"
TRANSFER_ASSET = "TransferAsset"
READ_ASSET = "ReadAsset"
GET_ALL_ASSETS = "GetAllAssets"
GET_ASSET_HISTORY = "GetAssetHistory"

CREATE_ASSET_FIELDS = ("airlinePartNumber", "productID", "quantity", "owner")


@dataclass(frozen=True)
class TransactionRequest:
    org: str
    user_id: str
    channel: str
    contract: str
    function: str
    args: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TransactionResult:
    function: str
    payload: bytes = field(repr=False)
    value: Any = None


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _require_str(data: Mapping[str, Any], name: str, *aliases: str) -> str:
    """Return ``data[name]`` (or the first alias present) as a string."""
    for key in (name, *aliases):
        if key in data and data[key] is not None:
            value = data[key]
            break
    else:
        raise InvalidInput(f"data.{name} is required")

    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InvalidInput(f"data.{name} must be a string or number")
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        raise InvalidInput(f"data.{name} must be a finite number")
    text = str(value).strip()
    if not text:
        raise InvalidInput(f"data.{name} must not be empty")
    return text


def _require_mapping(data: Any) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise InvalidInput("data must be a JSON object")
    return data


def create_asset_args(data: Any) -> tuple[str, ...]:
    """(airlinePartNumber, productID, quantity, owner)"""
    data = _require_mapping(data)
    return tuple(_require_str(data, name) for name in CREATE_ASSET_FIELDS)


def transfer_asset_args(data: Any) -> tuple[str, ...]:
    """(airlinePartNumber, newOwner); ``id`` is accepted for the part number."""
    data = _require_mapping(data)
    return (
        _require_str(data, "airlinePartNumber", "id"),
        _require_str(data, "newOwner"),
    )


# ═══════════════════════════════════════════════════════════════════
#  Result decoding
# ═══════════════════════════════════════════════════════════════════

def decode_result(function: str, payload: bytes | str | None) -> TransactionResult:
    if payload is None:
        payload = b""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    if not payload.strip():
        return TransactionResult(function, payload, None)
    try:
        value = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ChaincodeError(
            f"{function} returned a non-JSON payload",
            payload=payload[:200].decode("utf-8", errors="replace"),
        ) from exc
    return TransactionResult(function, payload, value)


# ═══════════════════════════════════════════════════════════════════
#  Submit / evaluate
# ═══════════════════════════════════════════════════════════════════

async def _await(coro, function: str, timeout: float | None):
    if not timeout:
        return await coro
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError as exc:
        raise TransactionTimeout(f"{function} did not complete within {timeout:g}s") from exc


async def submit(
    contract: Contract,
    function: str,
    args: Sequence[str],
    timeout: float | None = None,
) -> TransactionResult:
    """Invoke *function* and wait for it to be committed."""
    logger.info(f"Submitting {function} on {contract.channel}/{contract.name} args={list(args)}")
    payload = await _await(contract.submit_transaction(function, *args), function, timeout)
    result = decode_result(function, payload)
    logger.debug(f"{function} committed ({len(result.payload)} bytes)")
    return result


async def evaluate(
    contract: Contract,
    function: str,
    args: Sequence[str] = (),
    timeout: float | None = None,
) -> TransactionResult:
    """Run a query; nothing is sent for ordering."""
    payload = await _await(contract.evaluate_transaction(function, *args), function, timeout)
    return decode_result(function, payload)
