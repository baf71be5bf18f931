"""Webhook configuration and loader."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from accounts_api.webhooks.exceptions import WebhookConfigError

logger = logging.getLogger(__name__)

# Default configuration path
CONFIG_PATH = Path("config/webhooks.yaml")


@dataclass(frozen=True)
class WebhookConfig:
    """Delivery, retry and signing options."""

    max_retry_attempts: int = 5
    initial_retry_delay_ms: int = 1000
    max_retry_delay_ms: int = 300_000
    backoff_multiplier: float = 2
    timeout_ms: int = 30_000
    batch_size: int = 100
    concurrency: int = 10
    enable_signature_verification: bool = True
    signature_header: str = "X-Webhook-Signature"
    timestamp_header: str = "X-Webhook-Timestamp"
    timestamp_tolerance_seconds: int = 300
    processing_interval_seconds: float = 5
    retry_interval_seconds: float = 30

    def __post_init__(self) -> None:
        if self.max_retry_attempts < 1:
            raise WebhookConfigError("max_retry_attempts must be at least 1")
        if self.initial_retry_delay_ms <= 0:
            raise WebhookConfigError("initial_retry_delay_ms must be positive")
        if self.max_retry_delay_ms < self.initial_retry_delay_ms:
            raise WebhookConfigError(
                "max_retry_delay_ms must not be lower than initial_retry_delay_ms"
            )
        if self.backoff_multiplier < 1:
            raise WebhookConfigError("backoff_multiplier must be at least 1")
        if self.timeout_ms <= 0:
            raise WebhookConfigError("timeout_ms must be positive")
        if self.batch_size < 1:
            raise WebhookConfigError("batch_size must be at least 1")
        if self.concurrency < 1:
            raise WebhookConfigError("concurrency must be at least 1")
        if not self.signature_header or not self.timestamp_header:
            raise WebhookConfigError("signature_header and timestamp_header are required")
        if self.timestamp_tolerance_seconds < 0:
            raise WebhookConfigError("timestamp_tolerance_seconds must not be negative")
        if self.processing_interval_seconds <= 0 or self.retry_interval_seconds <= 0:
            raise WebhookConfigError("loop intervals must be positive")

    def with_overrides(self, **overrides: Any) -> WebhookConfig:
        """Copy with some options replaced (validated again)."""
        unknown = set(overrides) - {f.name for f in dataclasses.fields(self)}
        if unknown:
            raise WebhookConfigError(
                f"Unknown webhook option(s): {', '.join(sorted(unknown))}",
                {"options": sorted(unknown)},
            )
        return dataclasses.replace(self, **overrides)


DEFAULT_WEBHOOK_CONFIG = WebhookConfig()


class WebhookConfigLoader:
    """Loads webhook options from the ``settings`` section of a YAML file."""

    _config: WebhookConfig | None = None

    @classmethod
    def load(cls, path: Path | str | None = None) -> WebhookConfig:
        """Load options; a missing or unreadable file means defaults."""
        config_path = Path(path) if path is not None else CONFIG_PATH

        if not config_path.exists():
            logger.info(
                "Webhook configuration not found at %s. Using defaults.",
                config_path,
            )
            cls._config = WebhookConfig()
            return cls._config

        try:
            with open(config_path) as f:
                raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            logger.error("Failed to parse webhook configuration: %s", e)
            cls._config = WebhookConfig()
            return cls._config

        if not isinstance(raw_config, dict):
            raise WebhookConfigError(f"{config_path} must contain a mapping")

        settings_data = raw_config.get("settings") or {}
        if not isinstance(settings_data, dict):
            raise WebhookConfigError(f"'settings' in {config_path} must be a mapping")

        known = {f.name for f in dataclasses.fields(WebhookConfig)}
        for key in sorted(set(settings_data) - known):
            logger.warning("Ignoring unknown webhook setting '%s'", key)

        try:
            cls._config = WebhookConfig(**{k: v for k, v in settings_data.items() if k in known})
        except TypeError as e:
            raise WebhookConfigError(f"Invalid webhook settings in {config_path}: {e}") from e

        logger.info("Loaded webhook settings from %s", config_path)
        return cls._config

    @classmethod
    def reload(cls, path: Path | str | None = None) -> WebhookConfig:
        """Reload configuration (for hot-reload)."""
        return cls.load(path)

    @classmethod
    def get_config(cls) -> WebhookConfig:
        """Get current configuration, loading if necessary."""
        if cls._config is None:
            cls.load()
        return cls._config  # type: ignore
