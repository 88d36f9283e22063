"""
Error taxonomy for the AssetGate gateway.

Every component raises a subclass of :class:`GatewayError`.  The HTTP layer
catches them once, at the route boundary, and renders them either flat
(always 500) or with the per-kind ``status`` below.
"""

from __future__ import annotations

from typing import Any


class GatewayError(Exception):
    """Base class for all gateway failures."""

    kind = "GatewayError"
    status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(GatewayError):
    """Malformed organization identifier or missing request fields."""
    kind = "InvalidInput"
    status = 400


class StorageError(GatewayError):
    """Wallet or connection-profile storage is unreadable."""
    kind = "StorageError"
    status = 500


class AuthError(GatewayError):
    """Identity unknown to the wallet, or not allowed on this network."""
    kind = "AuthError"
    status = 403


class NotFound(GatewayError):
    """Organization profile, channel or chaincode does not exist."""
    kind = "NotFound"
    status = 404


class NetworkConnectionError(GatewayError):
    """The network (peers, orderers or CA) could not be reached."""
    kind = "ConnectionError"
    status = 503


class EndorsementFailure(GatewayError):
    """Not enough peers endorsed the proposal."""
    kind = "EndorsementFailure"
    status = 502


class ChaincodeError(GatewayError):
    """The contract rejected the transaction or returned an unusable payload."""
    kind = "ChaincodeError"
    status = 409


class TransactionTimeout(GatewayError):
    """No commit or response within the configured window."""
    kind = "TimeoutError"
    status = 504
