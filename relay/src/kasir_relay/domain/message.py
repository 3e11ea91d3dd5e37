"""Outbound message envelope pushed to terminals."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class MessageKind(str, Enum):
    """``type`` tags used on the terminal wire protocol."""

    CONNECTED = "connected"
    QR_CODE = "qr_code"
    PAYMENT_SUCCESS = "payment_success"
    PING = "ping"
    PONG = "pong"


def utc_now() -> datetime:
    return datetime.now(UTC)


def iso_timestamp(moment: datetime) -> str:
    """Format ``moment`` as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    return moment.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class OutboundMessage:
    """A transient payload addressed to one terminal."""

    kind: MessageKind
    fields: Mapping[str, Any] = field(default_factory=dict)
    timestamp: str | None = None

    def to_wire(self) -> dict[str, Any]:
        wire: dict[str, Any] = {"type": self.kind.value, **self.fields}
        if self.timestamp is not None:
            wire["timestamp"] = self.timestamp
        return wire

    def encode(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"), ensure_ascii=False)


__all__ = ["MessageKind", "OutboundMessage", "iso_timestamp", "utc_now"]
