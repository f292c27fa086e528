"""DNS provider delegating to external scripts.

Required ``dns.provider_config`` keys:

- ``create_script``: called as ``script <domain> <record_name> <record_value> <ttl>``
- ``delete_script``: called as ``script <domain> <record_name> <record_value>``

Optional keys:

- ``lookup_script``: called as ``script <record_name>``; prints one
  TXT value per line
- ``script_timeout``: seconds before a script is killed (default 60)

The provider host and credential are passed to every script in the
``ACMEPIPE_DNS_HOST`` and ``ACMEPIPE_DNS_CREDENTIAL`` environment
variables, never on the command line.  Exit status 77 from
``create_script`` signals an authentication failure.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import TYPE_CHECKING, Any

from acmepipe.dns.base import DnsProvider
from acmepipe.errors import DnsProviderAuthFailed, DnsProviderError, DnsRecordCreateFailed

if TYPE_CHECKING:
    from acmepipe.config.settings import HttpSettings
    from acmepipe.models.secrets import DnsCredentials

log = logging.getLogger(__name__)

AUTH_FAILURE_EXIT_CODE = 77


class CallbackDnsProvider(DnsProvider):
    name = "callback"

    def __init__(
        self,
        credentials: DnsCredentials,
        config: dict[str, Any] | None = None,
        http_settings: HttpSettings | None = None,
    ) -> None:
        super().__init__(credentials, config, http_settings)
        self.validate_config(self.config)
        self._create_script = self.config["create_script"]
        self._delete_script = self.config["delete_script"]
        self._lookup_script = self.config.get("lookup_script")
        self._timeout = self.config.get("script_timeout", 60)

    @classmethod
    def validate_config(cls, config: dict[str, Any]) -> None:
        for key in ("create_script", "delete_script"):
            if not config.get(key):
                msg = f"callback DNS provider requires '{key}' in provider_config"
                raise ValueError(msg)

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        env = dict(os.environ)
        env["ACMEPIPE_DNS_HOST"] = self.credentials.host
        env["ACMEPIPE_DNS_CREDENTIAL"] = self.credentials.credential
        return subprocess.run(  # noqa: S603
            args,
            check=True,
            timeout=self._timeout,
            capture_output=True,
            text=True,
            env=env,
        )

    def create_txt_record(self, record_name: str, value: str, ttl: int) -> str | None:
        domain = record_name.split(".", 1)[1]
        log.info("DNS create: %s via %s", record_name, self._create_script)
        try:
            self._run([self._create_script, domain, record_name, value, str(ttl)])
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()[:200]
            if exc.returncode == AUTH_FAILURE_EXIT_CODE:
                msg = f"DNS create script reported an authentication failure: {stderr}"
                raise DnsProviderAuthFailed(msg) from exc
            msg = f"DNS create script exited with status {exc.returncode}: {stderr}"
            raise DnsRecordCreateFailed(msg) from exc
        except (subprocess.TimeoutExpired, OSError) as exc:
            msg = f"DNS create script failed to run: {exc}"
            raise DnsRecordCreateFailed(msg) from exc
        return None

    def delete_txt_record(self, record_name: str, value: str, ref: str | None = None) -> None:
        domain = record_name.split(".", 1)[1]
        log.info("DNS delete: %s via %s", record_name, self._delete_script)
        try:
            self._run([self._delete_script, domain, record_name, value])
        except subprocess.CalledProcessError as exc:
            msg = f"DNS delete script exited with status {exc.returncode}"
            raise DnsProviderError(msg) from exc
        except subprocess.TimeoutExpired as exc:
            msg = f"DNS delete script timed out after {self._timeout}s"
            raise DnsProviderError(msg, retryable=True) from exc
        except OSError as exc:
            msg = f"DNS delete script failed to run: {exc}"
            raise DnsProviderError(msg) from exc

    def get_txt_values(self, record_name: str) -> list[str]:
        if not self._lookup_script:
            return []
        try:
            result = self._run([self._lookup_script, record_name])
        except (subprocess.SubprocessError, OSError) as exc:
            msg = f"DNS lookup script failed: {exc}"
            raise DnsProviderError(msg) from exc
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]
