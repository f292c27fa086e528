r"""Target server driven through a JSON management API over HTTPS.

``deploy.base_url`` is a template; ``{server}`` is replaced with the
target server name (``https://{server}:55539/api`` by default).  The
optional ``deploy.auth_header`` / ``deploy.auth_value`` pair is sent
with every request.

API contract
------------
**Probe certificate**: ``GET {base}/certificates/{store}/{fingerprint}``

HTTP 200 if present, HTTP 404 if not.

**Import certificate**: ``POST {base}/certificates/{store}``

Request body (JSON)::

    {"pfx": "<base64 PKCS#12>", "password": "<passphrase>"}

Response body (JSON, HTTP 200/201)::

    {"fingerprint": "3A1F...", "store": "My"}

**Read bindings**: ``GET {base}/sites/{site}/bindings``

Response body (JSON, HTTP 200; HTTP 404 if the site does not exist)::

    [{"protocol": "https", "port": 443, "host_name": null,
      "fingerprint": "3A1F...", "store": "My"}]

**Upsert binding**: ``PUT {base}/sites/{site}/bindings``

Request body is one binding object as above; the server replaces the
binding with the same protocol, port and host name or creates it.
Response: the stored binding object (HTTP 200/201).
"""

from __future__ import annotations

import base64
import logging
import urllib.parse
from typing import TYPE_CHECKING, Any

from acmepipe.core.crypto import normalize_fingerprint
from acmepipe.core.http import HttpClient
from acmepipe.core.retry import call_with_retry
from acmepipe.deploy.base import TargetServer
from acmepipe.errors import (
    BindingUpdateFailed,
    CertificateImportFailed,
    SiteNotFound,
    TargetServerError,
)
from acmepipe.models.binding import Binding

if TYPE_CHECKING:
    from acmepipe.config.settings import DeploySettings, HttpSettings
    from acmepipe.core.http import HttpResponse

log = logging.getLogger(__name__)

_HTTP_NOT_FOUND = 404


def _quote(value: str) -> str:
    return urllib.parse.quote(value, safe="")


class RestTargetServer(TargetServer):
    def __init__(
        self,
        server: str,
        settings: DeploySettings,
        http_settings: HttpSettings,
    ) -> None:
        super().__init__(server)
        self._base = settings.base_url.format(server=server).rstrip("/")
        headers = {}
        if settings.auth_value:
            headers[settings.auth_header] = settings.auth_value
        self._http = HttpClient(
            http_settings,
            service=f"target server {server}",
            error_cls=TargetServerError,
            headers=headers,
        )

    def _call(self, method: str, url: str, payload: Any = None) -> HttpResponse:  # noqa: ANN401
        return call_with_retry(
            lambda: self._call_once(method, url, payload),
            self._http.backoff,
            description=f"{self.server} {method}",
        )

    def _call_once(self, method: str, url: str, payload: Any) -> HttpResponse:  # noqa: ANN401
        resp = self._http.send(method, url, payload=payload, raise_for_status=False)
        if resp.status >= 500:  # noqa: PLR2004
            msg = f"Target server {self.server} returned HTTP {resp.status}: {resp.text(200)}"
            raise TargetServerError(msg, retryable=True)
        return resp

    def has_certificate(self, fingerprint: str, store_location: str) -> bool:
        url = (
            f"{self._base}/certificates/{_quote(store_location)}/"
            f"{normalize_fingerprint(fingerprint)}"
        )
        resp = self._call("GET", url)
        if resp.status == _HTTP_NOT_FOUND:
            return False
        if resp.status >= 400:  # noqa: PLR2004
            msg = f"Certificate probe on {self.server} failed (HTTP {resp.status})"
            raise TargetServerError(msg)
        return True

    def import_certificate(self, bundle: bytes, passphrase: str, store_location: str) -> str:
        payload = {
            "pfx": base64.b64encode(bundle).decode("ascii"),
            "password": passphrase,
        }
        resp = self._call("POST", f"{self._base}/certificates/{_quote(store_location)}", payload)
        if resp.status >= 400:  # noqa: PLR2004
            msg = (
                f"{self.server} refused the certificate import "
                f"(HTTP {resp.status}): {resp.text(200)}"
            )
            raise CertificateImportFailed(msg)
        body = resp.json() or {}
        fingerprint = body.get("fingerprint")
        if not fingerprint:
            msg = f"{self.server} did not report the imported certificate's fingerprint"
            raise CertificateImportFailed(msg)
        return fingerprint

    def get_binding(
        self,
        site: str,
        protocol: str,
        port: int,
        host_name: str | None = None,
    ) -> Binding | None:
        resp = self._call("GET", f"{self._base}/sites/{_quote(site)}/bindings")
        if resp.status == _HTTP_NOT_FOUND:
            msg = f"Site '{site}' does not exist on {self.server}"
            raise SiteNotFound(msg)
        if resp.status >= 400:  # noqa: PLR2004
            msg = f"Reading bindings of '{site}' on {self.server} failed (HTTP {resp.status})"
            raise TargetServerError(msg)

        candidates = [
            b
            for b in (resp.json() or [])
            if b.get("protocol", "").lower() == protocol.lower() and int(b.get("port", 0)) == port
        ]
        if host_name is not None:
            exact = [b for b in candidates if (b.get("host_name") or "") == host_name]
            candidates = exact or [b for b in candidates if not b.get("host_name")]
        if not candidates:
            return None
        return self._binding_from(site, candidates[0])

    def set_binding(self, binding: Binding) -> Binding:
        payload = {
            "protocol": binding.protocol,
            "port": binding.port,
            "host_name": binding.host_name,
            "fingerprint": binding.fingerprint,
            "store": binding.store_location,
        }
        resp = self._call("PUT", f"{self._base}/sites/{_quote(binding.site)}/bindings", payload)
        if resp.status == _HTTP_NOT_FOUND:
            msg = f"Site '{binding.site}' does not exist on {self.server}"
            raise SiteNotFound(msg)
        if resp.status >= 400:  # noqa: PLR2004
            msg = f"{self.server} refused the binding update (HTTP {resp.status}): {resp.text(200)}"
            raise BindingUpdateFailed(msg)
        body = resp.json()
        return self._binding_from(binding.site, body) if body else binding

    def _binding_from(self, site: str, data: dict[str, Any]) -> Binding:
        return Binding(
            server=self.server,
            site=site,
            protocol=data.get("protocol", "https"),
            port=int(data.get("port", 443)),
            fingerprint=data.get("fingerprint", ""),
            store_location=data.get("store", "My"),
            host_name=data.get("host_name"),
        )
