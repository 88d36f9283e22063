"""
AssetGate - an HTTP gateway onto a Hyperledger Fabric asset-transfer chaincode.

Key features:
- Per-organization connection profiles resolved from MSP ids
- Filesystem identity wallet (Fabric SDK layout)
- One network session per request, closed when the request ends
- CreateAsset / TransferAsset submission and asset queries
- Identity registration and enrollment against the organization CA
- In-memory network backend for development and tests
"""

__version__ = "1.0.0"
__all__ = [
    "api",
    "config",
    "errors",
    "fabric",
    "gateway",
    "logging_config",
    "memory",
    "organizations",
    "registration",
    "service",
    "transactions",
    "wallet",
]
