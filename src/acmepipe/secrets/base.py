"""Abstract base class for secret stores.

A secret store maps logical secret names to string values.  Stores are
read-only from the pipeline's point of view.

Usage::

    from acmepipe.secrets.base import SecretStore

    class MyStore(SecretStore):
        def get(self, name: str) -> str | None:
            ...
"""

from __future__ import annotations

import abc

ACCOUNT_KEY = "acme-account-key"
DNS_PROVIDER_HOST = "dns-provider-host"
DNS_PROVIDER_CREDENTIALS = "dns-provider-credentials"

BUNDLE_NAMES: tuple[str, ...] = (ACCOUNT_KEY, DNS_PROVIDER_HOST, DNS_PROVIDER_CREDENTIALS)


class SecretStore(abc.ABC):
    """Base class for all secret store backends.

    Implementations must raise
    :class:`~acmepipe.errors.SecretStoreUnavailable` on transport or
    authentication failure and return ``None`` when a name is absent.
    """

    name: str = "store"

    @abc.abstractmethod
    def get(self, name: str) -> str | None:
        """Return the value stored under *name*, or ``None`` if absent."""
