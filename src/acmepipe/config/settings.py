"""Frozen settings for the acme, dns, secrets, deploy, verify, http,
pipeline, logging and hooks sections.

Default values live here.  ``schema.json`` only constrains types and
ranges; :func:`build_settings` fills in anything the file leaves out.

Access pattern::

    from acmepipe.config import get_config

    acme = get_config().settings.acme
    print(acme.poll_interval_seconds, acme.poll_max_attempts)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from acmepipe.core.types import Environment

# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------

DEFAULT_DIRECTORIES: dict[str, str] = {
    Environment.PRODUCTION.value: "https://acme-v02.api.letsencrypt.org/directory",
    Environment.STAGING.value: "https://acme-staging-v02.api.letsencrypt.org/directory",
}


@dataclass(frozen=True)
class AcmeSettings:
    """ACME directory selection, account contact and order polling."""

    environment: str
    directory_url: str | None
    directories: dict[str, str]
    contact: tuple[str, ...]
    terms_of_service_agreed: bool
    eab_kid: str | None
    eab_hmac_key: str | None = field(repr=False)
    certificate_key_type: str
    poll_interval_seconds: float
    poll_max_attempts: int
    poll_backoff: str
    poll_max_delay_seconds: float

    def resolve_directory_url(
        self,
        *,
        environment: str | None = None,
        directory_url: str | None = None,
    ) -> str:
        """Return the directory URL for a run.

        An explicit *directory_url* wins, then the configured
        ``directory_url``, then the directory of the selected environment.
        """
        if directory_url:
            return directory_url
        if self.directory_url and environment is None:
            return self.directory_url
        env = (environment or self.environment).lower()
        try:
            return self.directories[env]
        except KeyError:
            msg = f"No ACME directory configured for environment '{env}'"
            raise ValueError(msg) from None


def _build_acme(data: dict | None) -> AcmeSettings:
    d = data or {}
    directories = dict(DEFAULT_DIRECTORIES)
    directories.update(d.get("directories") or {})
    return AcmeSettings(
        environment=d.get("environment", Environment.PRODUCTION.value),
        directory_url=d.get("directory_url"),
        directories=directories,
        contact=tuple(d.get("contact", [])),
        terms_of_service_agreed=d.get("terms_of_service_agreed", True),
        eab_kid=d.get("eab_kid"),
        eab_hmac_key=d.get("eab_hmac_key"),
        certificate_key_type=d.get("certificate_key_type", "EC256"),
        poll_interval_seconds=d.get("poll_interval_seconds", 5.0),
        poll_max_attempts=d.get("poll_max_attempts", 24),
        poll_backoff=d.get("poll_backoff", "fixed"),
        poll_max_delay_seconds=d.get("poll_max_delay_seconds", 60.0),
    )


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DnsSettings:
    """DNS provider selection, challenge record TTL and propagation polling."""

    provider: str
    provider_config: dict[str, Any]
    record_ttl: int
    propagation_timeout_seconds: float
    propagation_interval_seconds: float
    propagation_max_attempts: int
    proceed_on_propagation_timeout: bool
    nameservers: tuple[str, ...]
    require_authoritative: bool
    query_timeout_seconds: float
    lock_timeout_seconds: float
    cleanup_max_attempts: int


def _build_dns(data: dict | None) -> DnsSettings:
    d = data or {}
    return DnsSettings(
        provider=d.get("provider", "infoblox"),
        provider_config=dict(d.get("provider_config") or {}),
        record_ttl=d.get("record_ttl", 60),
        propagation_timeout_seconds=d.get("propagation_timeout_seconds", 120.0),
        propagation_interval_seconds=d.get("propagation_interval_seconds", 10.0),
        propagation_max_attempts=d.get("propagation_max_attempts", 12),
        proceed_on_propagation_timeout=d.get("proceed_on_propagation_timeout", False),
        nameservers=tuple(d.get("nameservers", [])),
        require_authoritative=d.get("require_authoritative", True),
        query_timeout_seconds=d.get("query_timeout_seconds", 5.0),
        lock_timeout_seconds=d.get("lock_timeout_seconds", 0.0),
        cleanup_max_attempts=d.get("cleanup_max_attempts", 3),
    )


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecretsSettings:
    """Secret store backend and connection parameters."""

    backend: str
    store_name: str
    vault_url: str
    vault_token: str | None = field(repr=False)
    vault_namespace: str | None
    path_prefix: str
    ca_cert_path: str | None
    env_prefix: str


def _build_secrets(data: dict | None) -> SecretsSettings:
    d = data or {}
    return SecretsSettings(
        backend=d.get("backend", "vault"),
        store_name=d.get("store_name", "secret"),
        vault_url=d.get("vault_url", "http://127.0.0.1:8200"),
        vault_token=d.get("vault_token"),
        vault_namespace=d.get("vault_namespace"),
        path_prefix=d.get("path_prefix", "acmepipe"),
        ca_cert_path=d.get("ca_cert_path"),
        env_prefix=d.get("env_prefix", "ACMEPIPE_SECRET_"),
    )


# ---------------------------------------------------------------------------
# HTTP (shared by ACME, Vault, DNS provider and target server clients)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HttpSettings:
    timeout_seconds: float
    max_retries: int
    retry_delay_seconds: float
    verify_ssl: bool
    ca_cert_path: str | None
    user_agent: str


def _build_http(data: dict | None) -> HttpSettings:
    d = data or {}
    return HttpSettings(
        timeout_seconds=d.get("timeout_seconds", 30.0),
        max_retries=d.get("max_retries", 3),
        retry_delay_seconds=d.get("retry_delay_seconds", 1.0),
        verify_ssl=d.get("verify_ssl", True),
        ca_cert_path=d.get("ca_cert_path"),
        user_agent=d.get("user_agent", "acmepipe/1.0"),
    )


# ---------------------------------------------------------------------------
# Deployment / verification
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeploySettings:
    """Target server connection and binding defaults."""

    backend: str
    base_url: str
    auth_header: str
    auth_value: str | None = field(repr=False)
    port: int
    protocol: str
    store_location: str
    binding_lock_timeout_seconds: float


def _build_deploy(data: dict | None) -> DeploySettings:
    d = data or {}
    return DeploySettings(
        backend=d.get("backend", "rest"),
        base_url=d.get("base_url", "https://{server}:55539/api"),
        auth_header=d.get("auth_header", "Authorization"),
        auth_value=d.get("auth_value"),
        port=d.get("port", 443),
        protocol=d.get("protocol", "https"),
        store_location=d.get("store_location", "My"),
        binding_lock_timeout_seconds=d.get("binding_lock_timeout_seconds", 60.0),
    )


@dataclass(frozen=True)
class VerifySettings:
    tls_handshake: bool
    tls_host: str | None
    tls_timeout_seconds: float


def _build_verify(data: dict | None) -> VerifySettings:
    d = data or {}
    return VerifySettings(
        tls_handshake=d.get("tls_handshake", False),
        tls_host=d.get("tls_host"),
        tls_timeout_seconds=d.get("tls_timeout_seconds", 10.0),
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineSettings:
    max_workers: int
    fingerprint_algorithm: str


def _build_pipeline(data: dict | None) -> PipelineSettings:
    d = data or {}
    return PipelineSettings(
        max_workers=d.get("max_workers", 4),
        fingerprint_algorithm=d.get("fingerprint_algorithm", "sha256"),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoggingSettings:
    """Console logging and the append-only activity log."""

    level: str
    format: str
    activity_log: str | None
    activity_level: str


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "text"),
        activity_log=d.get("activity_log"),
        activity_level=d.get("activity_level", "INFO"),
    )


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HookEntrySettings:
    class_path: str
    enabled: bool
    events: tuple[str, ...]
    timeout_seconds: int | None
    config: dict[str, Any]


@dataclass(frozen=True)
class HookSettings:
    timeout_seconds: int
    max_workers: int
    max_retries: int
    registered: tuple[HookEntrySettings, ...]


def _build_hooks(data: dict | None) -> HookSettings:
    d = data or {}
    entries = []
    for entry in d.get("registered", []):
        entries.append(
            HookEntrySettings(
                class_path=entry["class"],
                enabled=entry.get("enabled", True),
                events=tuple(entry.get("events", [])),
                timeout_seconds=entry.get("timeout_seconds"),
                config=dict(entry.get("config") or {}),
            ),
        )
    return HookSettings(
        timeout_seconds=d.get("timeout_seconds", 30),
        max_workers=d.get("max_workers", 4),
        max_retries=d.get("max_retries", 0),
        registered=tuple(entries),
    )


# ---------------------------------------------------------------------------
# Root settings aggregate
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineAppSettings:
    acme: AcmeSettings
    dns: DnsSettings
    secrets: SecretsSettings
    http: HttpSettings
    deploy: DeploySettings
    verify: VerifySettings
    pipeline: PipelineSettings
    logging: LoggingSettings
    hooks: HookSettings


def build_settings(data: dict | None) -> PipelineAppSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`PipelineConfig` initialisation after
    environment-variable resolution and schema validation.  An empty
    or missing mapping yields all defaults.
    """
    data = data or {}
    return PipelineAppSettings(
        acme=_build_acme(data.get("acme")),
        dns=_build_dns(data.get("dns")),
        secrets=_build_secrets(data.get("secrets")),
        http=_build_http(data.get("http")),
        deploy=_build_deploy(data.get("deploy")),
        verify=_build_verify(data.get("verify")),
        pipeline=_build_pipeline(data.get("pipeline")),
        logging=_build_logging(data.get("logging")),
        hooks=_build_hooks(data.get("hooks")),
    )
