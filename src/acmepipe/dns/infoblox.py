r"""Infoblox NIOS WAPI DNS provider.

The DNS credentials from the secret store map as follows:

- ``dns-provider-host``: grid master host name (``ipam.example.com``)
- ``dns-provider-credentials``: ``username:password`` for HTTP Basic auth

Optional ``dns.provider_config`` keys: ``wapi_version`` (default
``v2.12``), ``view`` (DNS view, default ``default``), ``port``.

API contract
------------
**Create**: ``POST /wapi/{version}/record:txt``::

    {"name": "_acme-challenge.www.example.com", "text": "...",
     "ttl": 60, "use_ttl": true, "view": "default"}

Response (HTTP 201): the new object reference as a JSON string.

**Lookup**: ``GET /wapi/{version}/record:txt?name=...&view=...&_return_fields=name,text``

Response (HTTP 200)::

    [{"_ref": "record:txt/ZG5z...:_acme-challenge.www.example.com/default",
      "name": "_acme-challenge.www.example.com", "text": "..."}]

**Delete**: ``DELETE /wapi/{version}/{_ref}``
"""

from __future__ import annotations

import base64
import logging
import urllib.parse
from typing import TYPE_CHECKING, Any

from acmepipe.core.http import HttpClient
from acmepipe.core.retry import call_with_retry
from acmepipe.dns.base import DnsProvider
from acmepipe.errors import DnsProviderAuthFailed, DnsProviderError, DnsRecordCreateFailed

if TYPE_CHECKING:
    from acmepipe.config.settings import HttpSettings
    from acmepipe.core.http import HttpResponse
    from acmepipe.models.secrets import DnsCredentials

log = logging.getLogger(__name__)

_HTTP_NOT_FOUND = 404
_HTTP_AUTH_FAILURES = (401, 403)


class InfobloxDnsProvider(DnsProvider):
    name = "infoblox"

    def __init__(
        self,
        credentials: DnsCredentials,
        config: dict[str, Any] | None = None,
        http_settings: HttpSettings | None = None,
    ) -> None:
        super().__init__(credentials, config, http_settings)
        if http_settings is None:
            msg = "Infoblox provider requires HTTP settings"
            raise DnsProviderError(msg)
        if ":" not in credentials.credential:
            msg = "Infoblox credentials must have the form 'username:password'"
            raise DnsProviderAuthFailed(msg)

        host = credentials.host.strip().rstrip("/")
        if "://" not in host:
            host = f"https://{host}"
        if self.config.get("port"):
            host = f"{host}:{self.config['port']}"
        version = self.config.get("wapi_version", "v2.12")
        self._base = f"{host}/wapi/{version}"
        self._view = self.config.get("view", "default")

        token = base64.b64encode(credentials.credential.encode("utf-8")).decode("ascii")
        self._http = HttpClient(
            http_settings,
            service="Infoblox WAPI",
            error_cls=DnsProviderError,
            headers={"Authorization": f"Basic {token}"},
            ca_cert_path=self.config.get("ca_cert_path"),
        )

    def _call(self, method: str, url: str, payload: Any = None) -> HttpResponse:  # noqa: ANN401
        return call_with_retry(
            lambda: self._call_once(method, url, payload),
            self._http.backoff,
            description=f"Infoblox {method}",
        )

    def _call_once(self, method: str, url: str, payload: Any) -> HttpResponse:  # noqa: ANN401
        resp = self._http.send(method, url, payload=payload, raise_for_status=False)
        if resp.status in _HTTP_AUTH_FAILURES:
            msg = f"Infoblox rejected the credentials (HTTP {resp.status})"
            raise DnsProviderAuthFailed(msg)
        if resp.status >= 500:  # noqa: PLR2004
            msg = f"Infoblox returned HTTP {resp.status}: {resp.text(200)}"
            raise DnsProviderError(msg, retryable=True)
        return resp

    def create_txt_record(self, record_name: str, value: str, ttl: int) -> str | None:
        payload = {
            "name": record_name,
            "text": value,
            "ttl": ttl,
            "use_ttl": True,
            "view": self._view,
        }
        resp = self._call("POST", f"{self._base}/record:txt", payload)
        if resp.status >= 400:  # noqa: PLR2004
            msg = f"Infoblox refused to create {record_name} (HTTP {resp.status}): {resp.text(200)}"
            raise DnsRecordCreateFailed(msg)
        ref = resp.json()
        log.info("Created TXT record %s in view %s", record_name, self._view)
        return ref if isinstance(ref, str) else None

    def _lookup(self, record_name: str) -> list[dict[str, Any]]:
        query = urllib.parse.urlencode(
            {"name": record_name, "view": self._view, "_return_fields": "name,text"},
        )
        resp = self._call("GET", f"{self._base}/record:txt?{query}")
        if resp.status >= 400:  # noqa: PLR2004
            msg = f"Infoblox lookup of {record_name} failed (HTTP {resp.status})"
            raise DnsProviderError(msg)
        body = resp.json()
        return body if isinstance(body, list) else []

    def get_txt_values(self, record_name: str) -> list[str]:
        return [r.get("text", "") for r in self._lookup(record_name)]

    def delete_txt_record(self, record_name: str, value: str, ref: str | None = None) -> None:
        refs = [ref] if ref else [
            r["_ref"] for r in self._lookup(record_name) if r.get("text") == value
        ]
        if not refs:
            log.info("TXT record %s already absent", record_name)
            return
        for item in refs:
            resp = self._call("DELETE", f"{self._base}/{item}")
            if resp.status == _HTTP_NOT_FOUND:
                log.info("TXT record %s already absent", record_name)
            elif resp.status >= 400:  # noqa: PLR2004
                msg = f"Infoblox refused to delete {record_name} (HTTP {resp.status})"
                raise DnsProviderError(msg)
        log.info("Deleted TXT record %s", record_name)
