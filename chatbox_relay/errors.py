"""Error types for the chatbox relay."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay errors."""


class MalformedPacket(RelayError, ValueError):
    """Inbound datagram could not be decoded. Logged and discarded."""


class AddressInUse(RelayError, OSError):
    """Listen port already bound (by another process or a live receiver)."""

    def __init__(self, port: int, detail: str = "") -> None:
        self.port = port
        super().__init__(f"UDP port {port} is already in use" + (f": {detail}" if detail else ""))


class PermissionDenied(RelayError, PermissionError):
    """Not allowed to bind the listen port."""

    def __init__(self, port: int, detail: str = "") -> None:
        self.port = port
        super().__init__(f"not permitted to bind UDP port {port}" + (f": {detail}" if detail else ""))


class SendFailed(RelayError):
    """One outbound datagram could not be written. Never retried."""

    def __init__(self, address: str, target: tuple, cause: BaseException) -> None:
        self.address = address
        self.target = target
        self.cause = cause
        super().__init__(f"send {address} to {target[0]}:{target[1]} failed: {cause}")


class ConfigurationInvalid(RelayError, ValueError):
    """Rejected settings. The previous configuration stays active."""


__all__ = [
    "RelayError",
    "MalformedPacket",
    "AddressInUse",
    "PermissionDenied",
    "SendFailed",
    "ConfigurationInvalid",
]
