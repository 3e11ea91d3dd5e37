"""Shared logging setup: console formatter, structured payloads and dictConfig builder."""

from __future__ import annotations

import json
import logging
import os
import time
import traceback
from collections.abc import Mapping
from dataclasses import asdict, is_dataclass
from enum import Enum
from logging.config import dictConfig
from typing import Any

from google.cloud import logging as gcp_logging
from opentelemetry import baggage, trace

_LOGGER_NAME = "kasir_commons.observability.logging"

# (logger name, level env var, default level) for third-party loggers we keep quiet.
_THIRD_PARTY_LOGGERS: tuple[tuple[str, str, str], ...] = (
    ("uvicorn", "UVICORN_LOG_LEVEL", "INFO"),
    ("uvicorn.error", "UVICORN_LOG_LEVEL", "INFO"),
    ("uvicorn.access", "UVICORN_ACCESS_LOG_LEVEL", "WARNING"),
    ("websockets", "WEBSOCKETS_LOG_LEVEL", "WARNING"),
    ("httpx", "HTTPX_LOG_LEVEL", "WARNING"),
    ("httpcore", "HTTPX_LOG_LEVEL", "WARNING"),
)

_PACKAGE_LOGGER_ROOTS: tuple[str, ...] = ("kasir_relay", "kasir_commons")


def _level(env_var: str, default: str) -> str:
    return os.getenv(env_var, default).upper()


def _managed_runtime() -> bool:
    # Cloud Run and Kubernetes ingest one JSON object per line as a structured entry.
    return bool(os.getenv("K_SERVICE") or os.getenv("KUBERNETES_SERVICE_HOST"))


def _iso_timestamp(created: float, msecs: float) -> str:
    return f"{time.strftime('%Y-%m-%dT%H:%M:%S', time.gmtime(created))}.{int(msecs):03d}Z"


def _compact_json(value: Any, *, limit: int = 512) -> str:
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"))
    if len(encoded) <= limit:
        return encoded
    return encoded[:limit] + "... (truncated)"


def structured_payload(record: logging.LogRecord) -> dict[str, Any]:
    """Render ``record`` as the JSON object emitted in managed runtimes."""
    data = record.__dict__.get("data")
    json_fields = record.__dict__.get("json_fields")

    message = record.getMessage()
    sanitized: Any | None = None
    if data:
        sanitized = sanitize_for_json(data)
        message = f"{message} | data={_compact_json(sanitized)}"

    payload: dict[str, Any] = {
        "message": message,
        "severity": record.levelname,
        "logger": record.name,
        "timestamp": _iso_timestamp(record.created, record.msecs),
    }
    if sanitized is not None:
        payload["data"] = sanitized
    if record.exc_info:
        payload["exception"] = "".join(traceback.format_exception(*record.exc_info)).rstrip("\n")
    if record.stack_info:
        payload["stack_info"] = str(record.stack_info)

    if json_fields:
        extra = sanitize_for_json(json_fields)
        if not isinstance(extra, Mapping):
            payload["json_fields"] = extra
            return payload
        for key, value in extra.items():
            if key in payload:
                payload.setdefault("json_fields", {})[key] = value
            else:
                payload[key] = value
    return payload


class ExtrasFormatter(logging.Formatter):
    """Console formatter that appends ``extra={"data": ...}`` payloads."""

    def format(self, record: logging.LogRecord) -> str:
        if _managed_runtime():
            return json.dumps(structured_payload(record), sort_keys=True, separators=(",", ":"))

        formatted = super().format(record)
        data = record.__dict__.get("data")
        if not data:
            return formatted
        try:
            encoded = json.dumps(data, sort_keys=True, separators=(",", ":"))
        except TypeError:
            encoded = json.dumps(sanitize_for_json(data), sort_keys=True, separators=(",", ":"))
        return f"{formatted} | data={encoded}"


class CloudJsonSanitizer(logging.Filter):
    """Coerce ``data``/``json_fields`` into JSON-safe values before Cloud Logging ships them."""

    def filter(self, record: logging.LogRecord) -> bool:
        record_dict = record.__dict__
        data: Any | None = None
        if "data" in record_dict:
            data = sanitize_for_json(record_dict["data"])
            record_dict["data"] = data
        if "json_fields" in record_dict or data is not None:
            fields = sanitize_for_json(record_dict.get("json_fields") or {})
            if not isinstance(fields, Mapping):
                fields = {"json_fields": fields}
            if data is not None:
                fields.setdefault("data", data)
            record_dict["json_fields"] = fields
        return True


class OtelContextLogFilter(logging.Filter):
    """Attach the active OpenTelemetry span ids and baggage under ``json_fields.otel``."""

    def __init__(self, *, gcp_project_id: str | None = None) -> None:
        super().__init__()
        self._gcp_project_id = (gcp_project_id or "").strip() or None

    def filter(self, record: logging.LogRecord) -> bool:
        otel: dict[str, Any] = {}
        fields: dict[str, Any] = {}

        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            trace_id = f"{span_context.trace_id:032x}"
            span_id = f"{span_context.span_id:016x}"
            otel["trace_id"] = trace_id
            otel["span_id"] = span_id
            if self._gcp_project_id:
                fields["logging.googleapis.com/trace"] = (
                    f"projects/{self._gcp_project_id}/traces/{trace_id}"
                )
                fields["logging.googleapis.com/spanId"] = span_id

        baggage_values = baggage.get_all()
        if baggage_values:
            otel["baggage"] = {key: str(value) for key, value in baggage_values.items()}

        if not otel:
            return True

        existing = record.__dict__.get("json_fields")
        merged: dict[str, Any] = dict(existing) if isinstance(existing, Mapping) else {}
        for key, value in fields.items():
            merged.setdefault(key, value)
        merged["otel"] = otel
        record.__dict__["json_fields"] = merged
        return True


def build_log_config(
    *,
    root_level_env: str,
    root_default: str,
    extra_loggers: Mapping[str, dict[str, Any]] | None = None,
    cloud_logging_enabled: bool = False,
    gcp_project: str | None = None,
    cloud_log_name: str = "kasir-relay",
    cloud_log_labels: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return a ``logging.config.dictConfig`` mapping for the service."""
    handler_names = ["console"]
    handlers: dict[str, Any] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "console",
            "stream": "ext://sys.stdout",
            "filters": ["otel_context"],
        }
    }
    if cloud_logging_enabled:
        if not gcp_project:
            raise RuntimeError("GCP project required when cloud logging is enabled")
        handlers["cloud_logging"] = _cloud_logging_handler(gcp_project, cloud_log_name, cloud_log_labels)
        handler_names.append("cloud_logging")

    loggers: dict[str, dict[str, Any]] = {
        name: {"level": _level(env_var, default), "propagate": False}
        for name, env_var, default in _THIRD_PARTY_LOGGERS
    }
    loggers.update({name: dict(config) for name, config in (extra_loggers or {}).items()})
    for name, config in loggers.items():
        if config.get("propagate", True) is False:
            config["handlers"] = list(handler_names)

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": ExtrasFormatter,
                "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S",
            }
        },
        "filters": {
            "otel_context": {"()": OtelContextLogFilter, "gcp_project_id": gcp_project},
            "cloud_json_sanitizer": {"()": CloudJsonSanitizer},
        },
        "handlers": handlers,
        "root": {"level": _level(root_level_env, root_default), "handlers": list(handler_names)},
        "loggers": loggers,
    }


def _cloud_logging_handler(
    project: str,
    log_name: str,
    labels: Mapping[str, str] | None,
) -> dict[str, Any]:
    from google.cloud.logging_v2.resource import Resource

    logger = logging.getLogger(_LOGGER_NAME)
    start = time.monotonic()
    # Credentials come from the ambient environment (ADC / workload identity).
    client: gcp_logging.Client = gcp_logging.Client(project=project)  # type: ignore[no-untyped-call]
    logger.debug(
        "created cloud logging client",
        extra={"data": {"project": project, "elapsed_s": round(time.monotonic() - start, 3)}},
    )
    return {
        "level": "INFO",
        "class": "google.cloud.logging_v2.handlers.handlers.CloudLoggingHandler",
        "client": client,
        "name": log_name,
        "resource": Resource("global", {"project_id": project}),
        "labels": dict(labels or {}),
        "formatter": "console",
        "filters": ["otel_context", "cloud_json_sanitizer"],
    }


def sanitize_for_json(value: Any, depth: int = 10, max_items: int = 200) -> Any:
    """Return a JSON-serializable copy of ``value``; unknown objects become strings."""
    if depth <= 0:
        return "<depth_exceeded>"
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return sanitize_for_json(value.value, depth - 1, max_items)
    if isinstance(value, (bytes, bytearray)):
        return f"<bytes len={len(value)}>"
    if is_dataclass(value) and not isinstance(value, type):
        return sanitize_for_json(asdict(value), depth - 1, max_items)
    if callable(value):
        return f"<callable {getattr(value, '__name__', type(value).__name__)}>"

    if isinstance(value, Mapping):
        result: dict[str, Any] = {}
        for idx, (key, item) in enumerate(value.items()):
            if idx >= max_items:
                result["<truncated>"] = f"...{len(value) - idx} more"
                break
            result[str(key)] = sanitize_for_json(item, depth - 1, max_items)
        return result

    if isinstance(value, (list, tuple, set, frozenset)):
        items = list(value)
        out = [sanitize_for_json(item, depth - 1, max_items) for item in items[:max_items]]
        if len(items) > max_items:
            out.append(f"... {len(items) - max_items} more")
        return out

    try:
        return str(value)
    except Exception:  # pragma: no cover - pathological __str__
        return "<unrepresentable>"


def configure_logging(
    *,
    root_level_env: str,
    root_default: str,
    extra_loggers: Mapping[str, dict[str, Any]] | None = None,
    cloud_logging_enabled: bool = False,
    gcp_project: str | None = None,
    cloud_log_name: str = "kasir-relay",
    cloud_log_labels: Mapping[str, str] | None = None,
) -> None:
    """Build and apply the logging config, then re-enable our package loggers."""
    config = build_log_config(
        root_level_env=root_level_env,
        root_default=root_default,
        extra_loggers=extra_loggers,
        cloud_logging_enabled=cloud_logging_enabled,
        gcp_project=gcp_project,
        cloud_log_name=cloud_log_name,
        cloud_log_labels=cloud_log_labels,
    )
    dictConfig(config)

    explicit = set(config["loggers"])
    root_level = logging.getLogger().level
    for root_name in _PACKAGE_LOGGER_ROOTS:
        if root_name in explicit:
            continue
        package_logger = logging.getLogger(root_name)
        package_logger.setLevel(root_level)
        package_logger.propagate = True

    logging.getLogger(_LOGGER_NAME).debug(
        "configured logging",
        extra={"data": {"cloud_logging_enabled": cloud_logging_enabled, "gcp_project": gcp_project}},
    )


def shutdown_logging() -> None:
    """Flush and close Cloud Logging handlers so buffered entries are not lost on exit."""
    from google.cloud.logging_v2.handlers.handlers import CloudLoggingHandler

    seen: set[int] = set()
    loggers: list[logging.Logger] = [logging.getLogger()]
    loggers.extend(
        entry for entry in logging.Logger.manager.loggerDict.values() if isinstance(entry, logging.Logger)
    )
    for logger in loggers:
        for handler in logger.handlers:
            if id(handler) in seen or not isinstance(handler, CloudLoggingHandler):
                continue
            seen.add(id(handler))
            handler.flush()  # type: ignore[no-untyped-call]
            handler.close()  # type: ignore[no-untyped-call]


__all__ = [
    "CloudJsonSanitizer",
    "ExtrasFormatter",
    "OtelContextLogFilter",
    "build_log_config",
    "configure_logging",
    "sanitize_for_json",
    "shutdown_logging",
    "structured_payload",
]
