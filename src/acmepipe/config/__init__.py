"""Configuration subsystem for ACMEPIPE.

Public API::

    from acmepipe.config import get_config, PipelineConfig

    # At startup (CLI only):
    PipelineConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    ttl = cfg.settings.dns.record_ttl        # typed access
    url = cfg.get("secrets.vault_url")       # dynamic dot-path
"""

from acmepipe.config.pipeline_config import (
    ConfigValidationError,
    PipelineConfig,
    get_config,
)
from acmepipe.config.settings import (
    AcmeSettings,
    DeploySettings,
    DnsSettings,
    HookEntrySettings,
    HookSettings,
    HttpSettings,
    LoggingSettings,
    PipelineAppSettings,
    PipelineSettings,
    SecretsSettings,
    VerifySettings,
    build_settings,
)

__all__ = [
    "AcmeSettings",
    "ConfigValidationError",
    "DeploySettings",
    "DnsSettings",
    "HookEntrySettings",
    "HookSettings",
    "HttpSettings",
    "LoggingSettings",
    "PipelineAppSettings",
    "PipelineConfig",
    "PipelineSettings",
    "SecretsSettings",
    "VerifySettings",
    "build_settings",
    "get_config",
]
