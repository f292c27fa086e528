"""Abstract base class for managed DNS providers.

A provider creates, looks up and deletes the TXT records that carry
DNS-01 challenge values.  Providers are built per run from the DNS
credentials fetched from the secret store.

Custom providers are loaded with ``dns.provider: ext:pkg.module.Class``
and must subclass :class:`DnsProvider`.

Error contract:

- authentication rejected: :class:`~acmepipe.errors.DnsProviderAuthFailed`
- record creation rejected: :class:`~acmepipe.errors.DnsRecordCreateFailed`
- anything transient: :class:`~acmepipe.errors.DnsProviderError`
  with ``retryable=True``
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from acmepipe.config.settings import HttpSettings
    from acmepipe.models.secrets import DnsCredentials


class DnsProvider(abc.ABC):
    """Base class for all DNS provider backends.

    Parameters
    ----------
    credentials:
        Provider host and credential from the secret store.
    config:
        The ``dns.provider_config`` mapping.
    http_settings:
        Shared HTTP settings for API-based providers.

    """

    name: str = "provider"

    def __init__(
        self,
        credentials: DnsCredentials,
        config: dict[str, Any] | None = None,
        http_settings: HttpSettings | None = None,
    ) -> None:
        self.credentials = credentials
        self.config = config or {}
        self.http_settings = http_settings

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> None:
        """Reject unusable ``provider_config`` with :class:`ValueError`."""

    @abc.abstractmethod
    def create_txt_record(self, record_name: str, value: str, ttl: int) -> str | None:
        """Create a TXT record and return a provider reference, if any."""

    @abc.abstractmethod
    def delete_txt_record(self, record_name: str, value: str, ref: str | None = None) -> None:
        """Delete the TXT record carrying *value*.

        Deleting a record that no longer exists is not an error.
        """

    def get_txt_values(self, record_name: str) -> list[str]:
        """Return the TXT values the provider holds for *record_name*."""
        return []
