"""Best-effort notification delivery to registered terminals."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from kasir_relay.application.ports.session_registry import SessionRegistryPort
from kasir_relay.domain.exceptions import DeliveryFailedError, NotConnectedError, TransportWriteError
from kasir_relay.domain.message import MessageKind, OutboundMessage, iso_timestamp, utc_now
from kasir_relay.domain.terminal import KasirId

logger = logging.getLogger("kasir_relay.delivery")


class NotificationGateway:
    """Routes notifications to the session registered for a terminal.

    Delivery happens only if a session is open at the moment of the call.
    Nothing is queued and failed writes are not retried. A write that does not
    finish within ``send_timeout_seconds`` counts as failed.
    """

    def __init__(
        self,
        *,
        registry: SessionRegistryPort,
        send_timeout_seconds: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._send_timeout = send_timeout_seconds
        self._clock = clock

    async def send_notification(
        self,
        kasir_id: KasirId,
        kind: MessageKind,
        fields: Mapping[str, Any],
    ) -> OutboundMessage:
        session = self._registry.lookup(kasir_id)
        if session is None or not session.is_open:
            raise NotConnectedError(kasir_id)

        message = OutboundMessage(kind, dict(fields), timestamp=iso_timestamp(self._clock()))
        try:
            await asyncio.wait_for(session.send(message.encode()), timeout=self._send_timeout)
        except (TransportWriteError, TimeoutError) as exc:
            logger.warning(
                "delivery failed",
                extra={"data": {"kasir_id": kasir_id, "kind": kind.value, "error": repr(exc)}},
            )
            raise DeliveryFailedError(kasir_id) from exc

        logger.info("notification delivered", extra={"data": {"kasir_id": kasir_id, "kind": kind.value}})
        return message

    async def send_qr(self, kasir_id: KasirId, qr_string: str, text: str = "") -> OutboundMessage:
        return await self.send_notification(
            kasir_id,
            MessageKind.QR_CODE,
            {"qr_string": qr_string, "text": text},
        )

    async def send_payment_success(
        self,
        kasir_id: KasirId,
        qr_string: str,
        status: bool = True,
    ) -> OutboundMessage:
        return await self.send_notification(
            kasir_id,
            MessageKind.PAYMENT_SUCCESS,
            {"qr_string": qr_string, "status": status},
        )

    def is_connected(self, kasir_id: KasirId) -> bool:
        session = self._registry.lookup(kasir_id)
        return session is not None and session.is_open

    def list_connected(self) -> list[KasirId]:
        return self._registry.list_connected()


__all__ = ["NotificationGateway"]
