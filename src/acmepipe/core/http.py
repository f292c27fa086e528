"""Small JSON-over-HTTPS client shared by the external adapters.

Wraps :mod:`urllib.request` with TLS trust configuration, bounded
retries (:func:`~acmepipe.core.retry.call_with_retry`) and a mapping of
transport failures onto the caller's error class:

- HTTP 5xx and connection errors are *retryable*
- HTTP 4xx are raised immediately (or returned, for callers such as
  the ACME client that interpret error bodies themselves)
"""

from __future__ import annotations

import contextlib
import json
import logging
import ssl
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from acmepipe.core.retry import Backoff, call_with_retry
from acmepipe.errors import PipelineError

if TYPE_CHECKING:
    import threading

    from acmepipe.config.settings import HttpSettings

log = logging.getLogger(__name__)

_MAX_ERROR_BODY = 500


@dataclass(frozen=True)
class HttpResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    def json(self) -> Any:  # noqa: ANN401
        if not self.body:
            return None
        return json.loads(self.body.decode("utf-8"))

    def text(self, limit: int | None = None) -> str:
        text = self.body.decode("utf-8", errors="replace")
        return text if limit is None else text[:limit]


class HttpClient:
    """JSON HTTP client for one external service.

    Parameters
    ----------
    settings:
        Shared ``http`` settings (timeouts, retries, TLS trust).
    service:
        Human-readable service name used in error messages.
    error_cls:
        :class:`PipelineError` subclass raised on failures.
    headers:
        Headers added to every request (e.g. auth tokens).
    ca_cert_path:
        Optional trust anchor overriding ``settings.ca_cert_path``.

    """

    def __init__(
        self,
        settings: HttpSettings,
        *,
        service: str,
        error_cls: type[PipelineError],
        headers: dict[str, str] | None = None,
        ca_cert_path: str | None = None,
    ) -> None:
        self._settings = settings
        self._service = service
        self._error_cls = error_cls
        self._headers = dict(headers or {})
        self._ca_cert_path = ca_cert_path or settings.ca_cert_path
        self._ssl_ctx: ssl.SSLContext | None = None

    @property
    def backoff(self) -> Backoff:
        return Backoff(
            max_attempts=self._settings.max_retries,
            delay_seconds=self._settings.retry_delay_seconds,
        )

    def _get_ssl_context(self) -> ssl.SSLContext:
        """Build (and cache) an SSL context with the configured trust."""
        if self._ssl_ctx is not None:
            return self._ssl_ctx

        ctx = ssl.create_default_context()
        if self._ca_cert_path:
            ctx.load_verify_locations(self._ca_cert_path)
        if not self._settings.verify_ssl:
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
        self._ssl_ctx = ctx
        return ctx

    def _build_request(
        self,
        method: str,
        url: str,
        data: bytes | None,
        content_type: str | None,
        headers: dict[str, str] | None,
    ) -> urllib.request.Request:
        req = urllib.request.Request(url, data=data, method=method)  # noqa: S310
        req.add_header("User-Agent", self._settings.user_agent)
        req.add_header("Accept", "application/json")
        if content_type and data is not None:
            req.add_header("Content-Type", content_type)
        for name, value in {**self._headers, **(headers or {})}.items():
            req.add_header(name, value)
        return req

    def send(
        self,
        method: str,
        url: str,
        *,
        payload: Any = None,  # noqa: ANN401
        data: bytes | None = None,
        content_type: str = "application/json",
        headers: dict[str, str] | None = None,
        raise_for_status: bool = True,
    ) -> HttpResponse:
        """Send a single request.

        With ``raise_for_status=False`` HTTP error responses are
        returned instead of raised; transport failures always raise.
        """
        if payload is not None:
            data = json.dumps(payload).encode("utf-8")
        req = self._build_request(method, url, data, content_type, headers)
        handler = urllib.request.HTTPSHandler(context=self._get_ssl_context())
        opener = urllib.request.build_opener(handler)

        try:
            resp = opener.open(req, timeout=self._settings.timeout_seconds)
        except urllib.error.HTTPError as exc:
            body = b""
            with contextlib.suppress(Exception):
                body = exc.read()
            response = HttpResponse(
                status=exc.code,
                headers={k.lower(): v for k, v in (exc.headers or {}).items()},
                body=body,
            )
            if not raise_for_status:
                return response
            msg = f"{self._service} returned HTTP {exc.code}: {response.text(_MAX_ERROR_BODY)}"
            raise self._error_cls(msg, retryable=exc.code >= 500) from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"Failed to reach {self._service} at {url}: {exc}"
            raise self._error_cls(msg, retryable=True) from exc

        try:
            body = resp.read()
        finally:
            resp.close()
        return HttpResponse(
            status=resp.status,
            headers={k.lower(): v for k, v in resp.headers.items()},
            body=body,
        )

    def request(
        self,
        method: str,
        url: str,
        *,
        cancel_event: threading.Event | None = None,
        **kwargs: Any,  # noqa: ANN401
    ) -> HttpResponse:
        """Send a request, retrying retryable failures with backoff."""
        return call_with_retry(
            lambda: self.send(method, url, **kwargs),
            self.backoff,
            description=f"{self._service} {method} {url}",
            cancel_event=cancel_event,
        )

    def request_json(self, method: str, url: str, **kwargs: Any) -> Any:  # noqa: ANN401
        """Like :meth:`request` but decode the JSON body."""
        resp = self.request(method, url, **kwargs)
        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            msg = f"{self._service} returned invalid JSON: {exc}"
            raise self._error_cls(msg, retryable=False) from exc
