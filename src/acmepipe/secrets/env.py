"""Environment-variable secret store.

``acme-account-key`` is read from ``ACMEPIPE_SECRET_ACME_ACCOUNT_KEY``
(with the default prefix).  Intended for CI runners and local testing
where a vault is not available.
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING

from acmepipe.secrets.base import SecretStore

if TYPE_CHECKING:
    from collections.abc import Mapping


def env_var_name(prefix: str, name: str) -> str:
    return prefix + name.upper().replace("-", "_").replace(".", "_")


class EnvSecretStore(SecretStore):
    name = "env"

    def __init__(
        self,
        prefix: str = "ACMEPIPE_SECRET_",
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get(self, name: str) -> str | None:
        value = self._environ.get(env_var_name(self._prefix, name))
        if value is None or value == "":
            return None
        # Multi-line PEM values are often flattened with literal "\n".
        if "-----BEGIN " in value and "\\n" in value:
            value = value.replace("\\n", "\n")
        return value
