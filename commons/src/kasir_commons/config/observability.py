"""Where a service ships its logs, resolved from the environment."""

from __future__ import annotations

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ObservabilitySettings(BaseSettings):
    """Cloud logging target for one service.

    Cloud logging needs a GCP project; enabling it without one fails at load
    time instead of at the first log write. ``CLOUD_LOG_LABELS`` takes
    ``key=value`` pairs separated by commas.
    """

    model_config = SettingsConfigDict(
        env_prefix="",
        extra="ignore",
        case_sensitive=False,
        frozen=True,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    enable_cloud_logging: bool = Field(default=False, alias="ENABLE_CLOUD_LOGGING")
    gcp_project_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("GCP_PROJECT_ID", "GOOGLE_CLOUD_PROJECT"),
    )
    cloud_log_name: str = Field(default="kasir-relay", min_length=1, alias="CLOUD_LOG_NAME")
    cloud_log_labels_raw: str = Field(default="", alias="CLOUD_LOG_LABELS")

    @model_validator(mode="after")
    def _require_project_for_cloud_logging(self) -> ObservabilitySettings:
        if self.enable_cloud_logging and not self.gcp_project_id:
            raise ValueError("ENABLE_CLOUD_LOGGING requires GCP_PROJECT_ID")
        return self

    @property
    def cloud_log_labels(self) -> dict[str, str]:
        labels: dict[str, str] = {}
        for pair in self.cloud_log_labels_raw.split(","):
            key, sep, value = pair.partition("=")
            if sep and key.strip():
                labels[key.strip()] = value.strip()
        return labels

    def labels_for(self, service: str) -> dict[str, str]:
        """Labels attached to every cloud log entry; ``service`` wins over a configured one."""
        return {**self.cloud_log_labels, "service": service}


__all__ = ["ObservabilitySettings"]
