"""Relay logging helpers built on shared commons logging."""

from __future__ import annotations

from kasir_commons.observability.logging import build_log_config as _build_log_config
from kasir_commons.observability.logging import configure_logging as _configure_logging

_RELAY_EXTRA_LOGGERS = {
    "kasir_relay.handshake": {"level": "INFO"},
    "kasir_relay.delivery": {"level": "INFO"},
    "kasir_relay.liveness": {"level": "INFO"},
    "kasir_relay.transport": {"level": "INFO"},
    "kasir_relay.http": {"level": "INFO"},
}

DEFAULT_CLOUD_LOG_NAME = "kasir-relay"

__all__ = [
    "DEFAULT_CLOUD_LOG_NAME",
    "build_log_config",
    "configure_logging",
    "enable_cloud_logging",
    "init_logging",
]


def init_logging() -> None:
    """Bootstrap console logging without cloud handlers."""

    configure_logging(cloud_logging_enabled=False, gcp_project=None)


def build_log_config(
    *,
    cloud_logging_enabled: bool = False,
    gcp_project: str | None = None,
    cloud_log_name: str = DEFAULT_CLOUD_LOG_NAME,
    cloud_log_labels: dict[str, str] | None = None,
) -> dict[str, object]:
    return _build_log_config(
        root_level_env="LOG_LEVEL",
        root_default="INFO",
        extra_loggers=_RELAY_EXTRA_LOGGERS,
        cloud_logging_enabled=cloud_logging_enabled,
        gcp_project=gcp_project,
        cloud_log_name=cloud_log_name,
        cloud_log_labels=cloud_log_labels,
    )


def configure_logging(
    *,
    cloud_logging_enabled: bool = False,
    gcp_project: str | None = None,
    cloud_log_name: str = DEFAULT_CLOUD_LOG_NAME,
    cloud_log_labels: dict[str, str] | None = None,
) -> None:
    _configure_logging(
        root_level_env="LOG_LEVEL",
        root_default="INFO",
        extra_loggers=_RELAY_EXTRA_LOGGERS,
        cloud_logging_enabled=cloud_logging_enabled,
        gcp_project=gcp_project,
        cloud_log_name=cloud_log_name,
        cloud_log_labels=cloud_log_labels,
    )


def enable_cloud_logging(
    *,
    gcp_project: str | None,
    cloud_log_name: str = DEFAULT_CLOUD_LOG_NAME,
    cloud_log_labels: dict[str, str] | None = None,
) -> None:
    """Attach cloud logging on top of the existing console setup."""

    configure_logging(
        cloud_logging_enabled=True,
        gcp_project=gcp_project,
        cloud_log_name=cloud_log_name,
        cloud_log_labels=cloud_log_labels,
    )
