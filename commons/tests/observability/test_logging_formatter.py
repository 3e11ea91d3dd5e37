from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from enum import Enum

from kasir_commons.observability.logging import (
    CloudJsonSanitizer,
    ExtrasFormatter,
    build_log_config,
    sanitize_for_json,
)


def _record(name: str, msg: str, *, level: int = logging.INFO, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


def test_formatter_appends_data_on_console(monkeypatch) -> None:
    monkeypatch.delenv("K_SERVICE", raising=False)
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
    formatter = ExtrasFormatter("%(levelname)s %(name)s: %(message)s")

    record = _record("kasir_relay.delivery", "notification delivered")
    record.data = {"kasir_id": "5", "kind": "qr_code"}

    rendered = formatter.format(record)

    assert rendered == 'INFO kasir_relay.delivery: notification delivered | data={"kasir_id":"5","kind":"qr_code"}'


def test_formatter_falls_back_to_sanitized_data(monkeypatch) -> None:
    monkeypatch.delenv("K_SERVICE", raising=False)
    monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)
    formatter = ExtrasFormatter("%(message)s")

    record = _record("kasir_relay.handshake", "malformed message from kasir")
    record.data = {"raw": b"\x00\x01"}

    assert formatter.format(record).endswith('| data={"raw":"<bytes len=2>"}')


def test_formatter_emits_json_payload_in_cloud_run(monkeypatch) -> None:
    monkeypatch.setenv("K_SERVICE", "kasir-relay")
    formatter = ExtrasFormatter("%(levelname)s %(name)s: %(message)s")

    record = _record("kasir_relay.handshake", "kasir connected")
    record.data = {"kasir_id": "3", "superseded": True}
    record.json_fields = {"otel": {"trace_id": "abc"}}

    payload = json.loads(formatter.format(record))

    assert payload["message"].startswith("kasir connected | data=")
    assert payload["severity"] == "INFO"
    assert payload["logger"] == "kasir_relay.handshake"
    assert payload["data"] == {"kasir_id": "3", "superseded": True}
    assert payload["otel"]["trace_id"] == "abc"
    assert payload["timestamp"].endswith("Z")


def test_formatter_emits_exception_payload_in_kubernetes(monkeypatch) -> None:
    monkeypatch.delenv("K_SERVICE", raising=False)
    monkeypatch.setenv("KUBERNETES_SERVICE_HOST", "10.0.0.1")
    formatter = ExtrasFormatter("%(message)s")

    try:
        raise ValueError("boom")
    except ValueError:
        exc_info = sys.exc_info()

    record = _record("kasir_relay.liveness", "liveness tick failed", level=logging.ERROR, exc_info=exc_info)
    payload = json.loads(formatter.format(record))

    assert payload["severity"] == "ERROR"
    assert "ValueError: boom" in payload["exception"]


def test_cloud_json_sanitizer_injects_data_into_json_fields() -> None:
    record = _record("kasir_relay.delivery", "delivery failed")
    record.data = {"kasir_id": "5", "payload": b"hello"}

    assert CloudJsonSanitizer().filter(record) is True
    assert record.json_fields["data"]["kasir_id"] == "5"
    assert record.json_fields["data"]["payload"] == "<bytes len=5>"


class _Kind(Enum):
    QR = "qr_code"


@dataclass
class _Probe:
    kasir_id: str
    kind: _Kind


def test_sanitize_for_json_handles_enums_dataclasses_and_limits() -> None:
    assert sanitize_for_json(_Probe("5", _Kind.QR)) == {"kasir_id": "5", "kind": "qr_code"}
    assert sanitize_for_json(frozenset({"a"})) == ["a"]
    assert sanitize_for_json({"deep": {"deeper": 1}}, depth=2) == {"deep": {"deeper": "<depth_exceeded>"}}
    assert sanitize_for_json(list(range(5)), max_items=2) == [0, 1, "... 3 more"]


def test_build_log_config_routes_third_party_loggers_to_console(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")

    config = build_log_config(
        root_level_env="LOG_LEVEL",
        root_default="INFO",
        extra_loggers={"kasir_relay.http": {"level": "INFO"}},
    )

    assert config["root"] == {"level": "DEBUG", "handlers": ["console"]}
    assert config["loggers"]["uvicorn.access"]["handlers"] == ["console"]
    assert config["loggers"]["uvicorn.access"]["propagate"] is False
    assert config["loggers"]["kasir_relay.http"] == {"level": "INFO"}
    assert "cloud_logging" not in config["handlers"]
