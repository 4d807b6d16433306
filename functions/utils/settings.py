"""
functions/utils/settings.py

WHAT THIS FILE IS FOR
---------------------
This module defines the *single source of truth* for runtime configuration
of the Webhook Upload Relay.

It is responsible for:
- Defining all supported configuration fields (via Pydantic BaseSettings)
- Loading default values from parameters/parameters.yaml
- Overriding defaults with environment variables (UPLOAD_RELAY_*)
- Validating required settings (the downstream webhook URL)
- Exposing a cached, fully-validated Settings object to the application

Configuration is read once at process start and treated as immutable
afterwards. Nothing in the request path mutates it.

LOAD & PRECEDENCE MODEL
-----------------------
Configuration is loaded in the following order (last wins):

1) YAML defaults from:
       parameters/parameters.yaml
2) Environment variables (or a local .env file):
       UPLOAD_RELAY_*
   The webhook URL is also accepted as N8N_WEBHOOK_URL, the name used
   by existing n8n deployments.

WHAT THIS FILE IS NOT FOR
-------------------------
This module is NOT responsible for:
- HTTP calls
- Request handling
- Response normalization

SECRETS
-------
The webhook URL may embed a workflow secret in its path. It is never
logged in full (only its host) and never returned to callers.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import structlog
import yaml
from pydantic import AliasChoices, AnyHttpUrl, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

PARAMETERS_PATH = Path(__file__).resolve().parents[2] / "parameters" / "parameters.yaml"

DEFAULT_MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 120.0


class Settings(BaseSettings):
    """
    Runtime settings for the Webhook Upload Relay.

    Load order / precedence:
        1) YAML defaults (parameters/parameters.yaml)
        2) Environment variables (UPLOAD_RELAY_*), overriding YAML
    """

    model_config = SettingsConfigDict(
        env_prefix="UPLOAD_RELAY_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    # Service metadata
    service_name: str = "webhook_upload_relay"
    environment: str = "local"
    log_level: str = "INFO"
    log_format: str = "json"

    # Bind address for the bundled uvicorn runner
    host: str = "0.0.0.0"
    port: int = 3001

    # Downstream webhook.
    # Optional at the model level to allow partial env loading;
    # enforced explicitly in get_settings().
    webhook_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices("webhook_url", "UPLOAD_RELAY_WEBHOOK_URL", "N8N_WEBHOOK_URL"),
    )

    # Upload / relay limits
    max_upload_bytes: int = Field(default=DEFAULT_MAX_UPLOAD_BYTES, gt=0)
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)

    # HTTP surface
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])
    correlation_header: str = "X-Correlation-Id"

    # Response JSON normalization
    preserve_container_keys: Set[str] = Field(
        default_factory=lambda: {"data", "details"},
        description=(
            "Envelope keys whose contents are passed through verbatim (not camelCased). "
            "Downstream payloads live under these keys."
        ),
    )

    # Feature flags
    enable_debug_metadata: bool = Field(
        default=False,
        description="If true, downstream body snippets are logged at info level instead of debug.",
    )

    @property
    def webhook_host(self) -> str:
        """Host part of the webhook URL, safe to log."""
        if self.webhook_url is None:
            return ""
        return self.webhook_url.host or ""


@lru_cache(maxsize=1)
def _load_yaml_parameters() -> Dict[str, Any]:
    """
    Load base configuration from parameters/parameters.yaml.

    Cached to avoid repeated disk I/O and to guarantee consistent
    config during process lifetime.
    """
    if not PARAMETERS_PATH.exists():
        logger.warning("parameters_yaml_missing", expected=str(PARAMETERS_PATH))
        return {}

    try:
        with PARAMETERS_PATH.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning(
                "parameters_yaml_not_dict",
                path=str(PARAMETERS_PATH),
                type=type(data).__name__,
            )
            return {}
        logger.info("parameters_yaml_loaded", path=str(PARAMETERS_PATH))
        return data
    except (OSError, yaml.YAMLError) as exc:
        logger.error("parameters_yaml_load_error", path=str(PARAMETERS_PATH), error=str(exc))
        return {}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Construct and return the final validated Settings object.

    Cached (singleton per process). Any code needing configuration
    should call this function, not instantiate Settings() directly.
    """
    # 1) YAML defaults
    yaml_data = _load_yaml_parameters()

    # 2) env overrides (partial)
    try:
        env_settings = Settings()
        env_data = env_settings.model_dump(mode="json", exclude_unset=True)
        logger.info("settings_loaded_env_only_partial", fields=list(env_data.keys()))
    except ValidationError as exc:
        logger.warning("settings_env_validation_error", errors=exc.errors())
        env_data = {}

    # 3) merge
    merged: Dict[str, Any] = {**yaml_data, **env_data}

    # 4) enforce required URL
    if not merged.get("webhook_url"):
        logger.error("settings_missing_webhook_url", yaml_path=str(PARAMETERS_PATH))
        raise RuntimeError(
            "Missing required setting: webhook_url. "
            "Set UPLOAD_RELAY_WEBHOOK_URL (or N8N_WEBHOOK_URL) "
            f"or webhook_url in {PARAMETERS_PATH}."
        )

    # 5) final validation
    settings = Settings.model_validate(merged)

    logger.info(
        "settings_loaded",
        environment=settings.environment,
        service_name=settings.service_name,
        webhook_host=settings.webhook_host,
        max_upload_bytes=settings.max_upload_bytes,
        timeout_seconds=settings.timeout_seconds,
        cors_allow_origins=settings.cors_allow_origins,
        preserve_container_keys=sorted(settings.preserve_container_keys),
        enable_debug_metadata=settings.enable_debug_metadata,
    )

    return settings
