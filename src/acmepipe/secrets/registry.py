"""Secret store registry.

Builds the configured :class:`SecretStore` by backend name.

Usage::

    from acmepipe.secrets.registry import load_secret_store

    store = load_secret_store(settings.secrets, settings.http, store_name="kv-prod")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from acmepipe.errors import SecretStoreUnavailable
from acmepipe.secrets.env import EnvSecretStore
from acmepipe.secrets.vault import VaultKvStore

if TYPE_CHECKING:
    from acmepipe.config.settings import HttpSettings, SecretsSettings
    from acmepipe.secrets.base import SecretStore

log = logging.getLogger(__name__)


def load_secret_store(
    settings: SecretsSettings,
    http_settings: HttpSettings,
    *,
    store_name: str | None = None,
) -> SecretStore:
    """Return a store for ``settings.backend``.

    *store_name* overrides ``secrets.store_name`` (the Vault mount).
    """
    backend = settings.backend
    if backend == "vault":
        store: SecretStore = VaultKvStore(settings, http_settings, store_name=store_name)
    elif backend == "env":
        store = EnvSecretStore(prefix=settings.env_prefix)
    else:
        msg = f"Unknown secret store backend '{backend}'; built-in options: ['env', 'vault']"
        raise SecretStoreUnavailable(msg)
    log.debug("Using secret store backend: %s", backend)
    return store
