"""Error taxonomy for the introspection bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every failure surfaced as a tool-call error."""

    kind = "BridgeError"

    def describe(self) -> str:
        """Render as ``Kind: message`` for tool-call error content."""
        return f"{self.kind}: {self}"


class ConnectionLost(BridgeError):
    """No peer attached, peer closed, I/O failure or round-trip timeout."""

    kind = "ConnectionLost"


class InvalidHandle(BridgeError):
    """The remote peer rejected a stale or unknown handle."""

    kind = "InvalidHandle"


class UnsupportedOperation(BridgeError):
    """The remote peer does not support the requested operation."""

    kind = "UnsupportedOperation"


class InvalidArguments(BridgeError):
    """Tool arguments are missing or have the wrong shape."""

    kind = "InvalidArguments"


class ProtocolError(BridgeError):
    """The remote peer sent an unexpected or malformed response."""

    kind = "ProtocolError"


class BindError(BridgeError):
    """The listening port could not be bound."""

    kind = "BindError"
