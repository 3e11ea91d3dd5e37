"""Request and response shapes for the relay HTTP API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict


def _coerce_id(value: object) -> object:
    # JSON clients sometimes send numeric terminal ids; the registry keys on strings.
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


KasirIdField = Annotated[str | None, BeforeValidator(_coerce_id)]


class SendQrRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kasir_id: KasirIdField = None
    qr_string: str | None = None
    text: str | None = None


class SendPaymentSuccessRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    kasir_id: KasirIdField = None
    qr_string: str | None = None
    status: bool = True


@dataclass(frozen=True, slots=True)
class SendQrResponse:
    success: bool
    message: str
    kasir_id: str
    qr_string: str
    text: str


@dataclass(frozen=True, slots=True)
class SendPaymentSuccessResponse:
    success: bool
    message: str
    kasir_id: str
    qr_string: str
    status: bool


@dataclass(frozen=True, slots=True)
class ClientListResponse:
    success: bool
    count: int
    clients: list[str]


@dataclass(frozen=True, slots=True)
class ClientStatusResponse:
    success: bool
    kasir_id: str
    connected: bool


@dataclass(frozen=True, slots=True)
class HealthResponse:
    success: bool
    status: str
    timestamp: str


__all__ = [
    "ClientListResponse",
    "ClientStatusResponse",
    "HealthResponse",
    "SendPaymentSuccessRequest",
    "SendPaymentSuccessResponse",
    "SendQrRequest",
    "SendQrResponse",
]
