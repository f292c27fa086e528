"""In-memory secrets bundle for one pipeline run."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DnsCredentials:
    """Connection details for the managed DNS provider."""

    host: str
    credential: str = field(repr=False)


@dataclass(frozen=True)
class SecretsBundle:
    """Secrets fetched fresh for a single run; never persisted or logged."""

    account_key_material: str = field(repr=False)
    dns_provider_host: str
    dns_provider_credential: str = field(repr=False)

    @property
    def dns_credentials(self) -> DnsCredentials:
        return DnsCredentials(
            host=self.dns_provider_host,
            credential=self.dns_provider_credential,
        )
