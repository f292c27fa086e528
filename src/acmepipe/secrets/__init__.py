"""Secret retrieval for ACMEPIPE.

Public API::

    from acmepipe.secrets import SecretProvider, load_secret_store

    store = load_secret_store(settings.secrets, settings.http)
    bundle = SecretProvider(store).fetch_bundle()
"""

from acmepipe.secrets.base import BUNDLE_NAMES, SecretStore
from acmepipe.secrets.env import EnvSecretStore
from acmepipe.secrets.provider import SecretProvider
from acmepipe.secrets.registry import load_secret_store
from acmepipe.secrets.vault import VaultKvStore

__all__ = [
    "BUNDLE_NAMES",
    "EnvSecretStore",
    "SecretProvider",
    "SecretStore",
    "VaultKvStore",
    "load_secret_store",
]
