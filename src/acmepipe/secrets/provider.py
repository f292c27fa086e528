"""Read-only retrieval of the secrets a pipeline run needs.

Secrets are fetched fresh for every run and held only in the returned
objects; nothing is cached between calls and no value is ever logged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from acmepipe.errors import SecretNotFound, SecretStoreUnavailable
from acmepipe.models.secrets import SecretsBundle
from acmepipe.secrets.base import (
    ACCOUNT_KEY,
    BUNDLE_NAMES,
    DNS_PROVIDER_CREDENTIALS,
    DNS_PROVIDER_HOST,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from acmepipe.secrets.base import SecretStore

log = logging.getLogger(__name__)


class SecretProvider:
    """Fetch named secrets from a :class:`SecretStore`."""

    def __init__(self, store: SecretStore) -> None:
        self._store = store

    def fetch(self, names: Iterable[str]) -> dict[str, str]:
        """Return ``{name: value}`` for every requested name.

        Raises
        ------
        SecretNotFound
            Naming every absent secret, after all names were looked up.
        SecretStoreUnavailable
            On a transport or authentication failure.

        """
        values: dict[str, str] = {}
        missing: list[str] = []
        for name in dict.fromkeys(names):
            try:
                value = self._store.get(name)
            except SecretStoreUnavailable:
                raise
            except OSError as exc:
                msg = f"Secret store '{self._store.name}' failed reading '{name}': {exc}"
                raise SecretStoreUnavailable(msg) from exc
            if value is None:
                missing.append(name)
            else:
                values[name] = value

        if missing:
            log.error("Missing secret(s) in store '%s': %s", self._store.name, ", ".join(missing))
            raise SecretNotFound(missing)

        log.info("Fetched %d secret(s) from store '%s'", len(values), self._store.name)
        return values

    def fetch_bundle(self) -> SecretsBundle:
        """Fetch the account key and DNS provider credentials."""
        values = self.fetch(BUNDLE_NAMES)
        return SecretsBundle(
            account_key_material=values[ACCOUNT_KEY],
            dns_provider_host=values[DNS_PROVIDER_HOST],
            dns_provider_credential=values[DNS_PROVIDER_CREDENTIALS],
        )
