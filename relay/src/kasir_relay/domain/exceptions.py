"""Relay-specific exception types and handshake rejection reasons."""

from __future__ import annotations

from enum import Enum


class RejectReason(Enum):
    """Why a handshake was refused; the value is ``(close code, close reason)``."""

    MISSING_ID = (4001, "kasir_id is required")
    INVALID_SECRET = (4002, "invalid secret")
    NOT_ALLOWED = (4003, "kasir_id is not allowed")

    @property
    def code(self) -> int:
        return self.value[0]

    @property
    def text(self) -> str:
        return self.value[1]


class RelayError(Exception):
    """Base class for relay failures."""


class AuthRejectedError(RelayError):
    """Raised when a terminal fails the handshake; never retried by the server."""

    def __init__(self, reason: RejectReason, kasir_id: str | None = None) -> None:
        super().__init__(reason.text)
        self.reason = reason
        self.kasir_id = kasir_id


class NotConnectedError(LookupError, RelayError):
    """Raised when no open session is registered for the addressed terminal."""

    def __init__(self, kasir_id: str) -> None:
        super().__init__(f"Kasir {kasir_id} is not connected")
        self.kasir_id = kasir_id


class DeliveryFailedError(RuntimeError, RelayError):
    """Raised when writing to a terminal's transport fails."""

    def __init__(self, kasir_id: str) -> None:
        super().__init__(f"Failed to deliver message to Kasir {kasir_id}")
        self.kasir_id = kasir_id


class MalformedInboundMessageError(ValueError, RelayError):
    """Raised when a terminal sends a frame that is not a JSON object."""


class TransportWriteError(ConnectionError):
    """Raised by transport adapters when a frame cannot be written."""


__all__ = [
    "AuthRejectedError",
    "DeliveryFailedError",
    "MalformedInboundMessageError",
    "NotConnectedError",
    "RejectReason",
    "RelayError",
    "TransportWriteError",
]
