from __future__ import annotations


class BridgeError(Exception):
    """Base class for errors raised by the Shimmer bridge."""


class MalformedHex(BridgeError, ValueError):
    """User-supplied hex command is empty, odd-length or contains non-hex characters."""


class TruncatedPayload(BridgeError, ValueError):
    """Sample payload is shorter than its channel descriptor requires."""


class TransportError(BridgeError, ConnectionError):
    """Open, read, write or close on the serial transport failed."""


class UnrecognizedFrame(BridgeError, ValueError):
    """Buffer does not match any known frame kind/length."""
