"""Bridge connection and process runtime."""

from wahook.bridge.client import BridgeClient, BridgeProtocolError, BridgeProtocolMismatchError
from wahook.bridge.runtime import BridgeRuntimeManager, BridgeStatus

__all__ = [
    "BridgeClient",
    "BridgeProtocolError",
    "BridgeProtocolMismatchError",
    "BridgeRuntimeManager",
    "BridgeStatus",
]
