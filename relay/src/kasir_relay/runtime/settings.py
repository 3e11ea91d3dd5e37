"""Configuration for the relay runtime."""

from __future__ import annotations

import logging
import re

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from kasir_commons.config.observability import ObservabilitySettings

_SHA256_HEX = re.compile(r"^[0-9a-f]{64}$")


def _split_csv(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Settings(BaseSettings):
    """Relay configuration resolved from the environment (and ``.env``).

    Leaving ``KASIR_ALLOWED_IDS`` empty accepts any terminal identifier and
    leaving ``KASIR_SECRET_SHA256`` unset skips the shared-secret check.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # --- Server ---
    listen_host: str = Field(
        default="0.0.0.0",  # noqa: S104
        validation_alias=AliasChoices("KASIR_RELAY_HOST", "HOST"),
    )
    port: int = Field(default=3001, ge=1, le=65535, validation_alias=AliasChoices("KASIR_RELAY_PORT", "PORT"))
    cors_origins_raw: str = Field(default="*", alias="CORS_ORIGINS")

    # --- Terminal authentication ---
    allowed_kasir_ids_raw: str = Field(default="", alias="KASIR_ALLOWED_IDS")
    secret_sha256: str | None = Field(default=None, alias="KASIR_SECRET_SHA256")

    # --- Sessions ---
    probe_interval_seconds: float = Field(default=30.0, gt=0, alias="KASIR_PROBE_INTERVAL_SECONDS")
    probe_send_timeout_seconds: float = Field(default=5.0, gt=0, alias="KASIR_PROBE_SEND_TIMEOUT_SECONDS")
    send_timeout_seconds: float = Field(default=5.0, gt=0, alias="KASIR_SEND_TIMEOUT_SECONDS")
    close_superseded: bool = Field(default=True, alias="KASIR_CLOSE_SUPERSEDED")

    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("secret_sha256", mode="before")
    @classmethod
    def _normalise_digest(cls, value: object) -> object:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValueError("KASIR_SECRET_SHA256 must be a string")
        digest = value.strip().lower()
        if not digest:
            return None
        if not _SHA256_HEX.match(digest):
            raise ValueError("KASIR_SECRET_SHA256 must be a 64-character hex SHA-256 digest")
        return digest

    @property
    def allowed_kasir_ids(self) -> frozenset[str] | None:
        ids = _split_csv(self.allowed_kasir_ids_raw)
        return frozenset(ids) if ids else None

    @property
    def cors_origins(self) -> list[str]:
        return _split_csv(self.cors_origins_raw) or ["*"]

    # --- Loader ---
    @classmethod
    def load(cls) -> Settings:
        instance = cls()
        logger = logging.getLogger("kasir_relay.settings")
        logger.info(
            "relay settings loaded",
            extra={
                "data": {
                    "listen_host": instance.listen_host,
                    "port": instance.port,
                    "allow_list_size": len(instance.allowed_kasir_ids or ()),
                    "secret_required": instance.secret_sha256 is not None,
                    "probe_interval_seconds": instance.probe_interval_seconds,
                    "send_timeout_seconds": instance.send_timeout_seconds,
                    "close_superseded": instance.close_superseded,
                    "cors_origins": instance.cors_origins,
                    "cloud_logging": instance.observability.enable_cloud_logging,
                    "cloud_log_name": instance.observability.cloud_log_name,
                }
            },
        )
        return instance


__all__ = ["Settings"]
