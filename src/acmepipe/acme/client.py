"""ACME (RFC 8555) client bound to one directory.

Protocol work is delegated to certbot's ``acme`` library: JWS signing,
the ``Replay-Nonce`` pool, the single ``badNonce`` retry and problem
document parsing all happen inside :class:`acme.client.ClientNetwork`.
This module adds what the pipeline needs on top:

- one network session per account key, keys held only in memory
- the directory document fetched once and cached
- HTTP 5xx and transport failures retried with bounded, cancellable
  backoff (:func:`~acmepipe.core.retry.call_with_retry`)
- every failure surfaced as :class:`AcmeProblemError`
- order, authorization and challenge state returned as the frozen
  snapshots in :mod:`acmepipe.models.order`

Only the operations a single-domain DNS-01 issuance needs are exposed.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, TypeVar

import josepy as jose
import requests
from acme import client as acme_client
from acme import errors as acme_errors
from acme import messages

from acmepipe.core.jws import compute_thumbprint, dns01_challenge, signing_algorithm
from acmepipe.core.retry import Backoff, call_with_retry
from acmepipe.errors import AcmeProblemError
from acmepipe.models.order import Authorization, Order

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmepipe.config.settings import HttpSettings
    from acmepipe.models.account import AccountIdentity

log = logging.getLogger(__name__)

ACCOUNT_DOES_NOT_EXIST = messages.ERROR_PREFIX + "accountDoesNotExist"

_RETRYABLE_CODES = frozenset({"badNonce", "serverInternal"})
_HTTP_SERVER_ERROR = 500

T = TypeVar("T")


class FinalizeRequest(jose.JSONObjectWithFields):
    """Payload of an order ``finalize`` request (RFC 8555 §7.4)."""

    csr: bytes = jose.field("csr", encoder=jose.encode_b64jose, decoder=jose.decode_b64jose)


def problem_from_error(exc: Exception, description: str) -> AcmeProblemError:
    """Translate an ``acme``/``requests`` failure into :class:`AcmeProblemError`."""
    if isinstance(exc, messages.Error):
        detail = exc.detail or exc.title or str(exc.typ)
        return AcmeProblemError(
            f"{description} failed: {detail}",
            problem_type=exc.typ,
            retryable=exc.code in _RETRYABLE_CODES,
        )
    if isinstance(exc, acme_errors.ClientError) and exc.args:
        response = exc.args[0]
        status = getattr(response, "status_code", None)
        if status is not None:
            return AcmeProblemError(
                f"{description} failed (HTTP {status})",
                status=status,
                retryable=status >= _HTTP_SERVER_ERROR,
            )
    if isinstance(exc, (requests.exceptions.RequestException, ValueError)):
        return AcmeProblemError(f"{description} could not reach the server: {exc}", retryable=True)
    return AcmeProblemError(f"{description} failed: {exc}")


class _Session:
    """A :class:`acme.client.ClientV2` for one account key.

    ``ClientNetwork`` keeps a nonce pool and the account URL on the
    instance, so requests through one session are serialized.
    """

    def __init__(self, client: acme_client.ClientV2) -> None:
        self.client = client
        self.lock = threading.Lock()

    @property
    def net(self) -> acme_client.ClientNetwork:
        return self.client.net

    def bind(self, account_url: str) -> None:
        current = self.net.account
        if current is None or current.uri != account_url:
            self.net.account = messages.RegistrationResource(
                uri=account_url,
                body=messages.Registration(),
            )

    def post(self, url: str, obj: jose.JSONDeSerializable | None) -> requests.Response:
        return self.net.post(url, obj, new_nonce_url=self.client.directory["newNonce"])


class AcmeClient:
    """Client bound to one ACME directory.

    Thread-safe: each account key gets its own network session and
    requests through a session are serialized, so concurrent pipelines
    can share a client.

    Parameters
    ----------
    directory_url:
        URL of the ACME directory document.
    http_settings:
        Shared ``http`` settings (timeouts, retries, TLS trust).

    """

    def __init__(self, directory_url: str, http_settings: HttpSettings) -> None:
        self.directory_url = directory_url
        self._settings = http_settings
        self._lock = threading.Lock()
        self._directory: messages.Directory | None = None
        self._sessions: dict[str, _Session] = {}

    @property
    def backoff(self) -> Backoff:
        return Backoff(
            max_attempts=self._settings.max_retries,
            delay_seconds=self._settings.retry_delay_seconds,
        )

    # -- sessions ----------------------------------------------------------

    def _network(self, key: jose.JWK) -> acme_client.ClientNetwork:
        verify: bool | str = self._settings.verify_ssl
        if verify and self._settings.ca_cert_path:
            verify = self._settings.ca_cert_path
        return acme_client.ClientNetwork(
            key,
            alg=signing_algorithm(key),
            verify_ssl=verify,
            user_agent=self._settings.user_agent,
            timeout=self._settings.timeout_seconds,
        )

    def _load_directory(self, net: acme_client.ClientNetwork) -> messages.Directory:
        with self._lock:
            if self._directory is not None:
                return self._directory
        body = net.get(self.directory_url).json()
        if not isinstance(body, dict) or "newNonce" not in body:
            msg = f"{self.directory_url} is not an ACME directory"
            raise AcmeProblemError(msg)
        directory = messages.Directory.from_json(body)
        with self._lock:
            self._directory = directory
        log.debug("Loaded ACME directory %s", self.directory_url)
        return directory

    def _session(self, key: jose.JWK, cancel_event: threading.Event | None) -> _Session:
        thumbprint = compute_thumbprint(key)
        with self._lock:
            session = self._sessions.get(thumbprint)
        if session is not None:
            return session

        net = self._network(key)
        directory = self._call(
            lambda: self._load_directory(net),
            f"ACME directory {self.directory_url}",
            cancel_event,
        )
        with self._lock:
            return self._sessions.setdefault(
                thumbprint,
                _Session(acme_client.ClientV2(directory, net=net)),
            )

    @property
    def directory(self) -> messages.Directory | None:
        """The cached directory document, once any request has loaded it."""
        return self._directory

    # -- request plumbing --------------------------------------------------

    def _call(
        self,
        func: Callable[[], T],
        description: str,
        cancel_event: threading.Event | None,
    ) -> T:
        def attempt() -> T:
            try:
                return func()
            except AcmeProblemError:
                raise
            except (
                acme_errors.Error,
                jose.DeserializationError,
                requests.exceptions.RequestException,
                ValueError,
            ) as exc:
                raise problem_from_error(exc, description) from exc

        return call_with_retry(
            attempt,
            self.backoff,
            description=description,
            cancel_event=cancel_event,
        )

    def _post_as(
        self,
        account: AccountIdentity,
        url: str,
        obj: jose.JSONDeSerializable | None,
        cancel_event: threading.Event | None,
    ) -> requests.Response:
        session = self._session(account.key, cancel_event)

        def send() -> requests.Response:
            with session.lock:
                session.bind(account.account_id)
                return session.post(url, obj)

        return self._call(send, f"ACME POST {url}", cancel_event)

    # -- accounts ----------------------------------------------------------

    def _registration(
        self,
        session: _Session,
        registration: messages.NewRegistration,
    ) -> tuple[str, dict[str, Any], bool]:
        with session.lock:
            session.net.account = None
            try:
                regr = session.client.new_account(registration)
                created = True
            except acme_errors.ConflictError as exc:
                # 200 + Location: the key already has an account
                regr = session.client.query_registration(
                    messages.RegistrationResource(uri=exc.location, body=messages.Registration()),
                )
                created = False
        return regr.uri, regr.body.to_json(), created

    def lookup_account(
        self,
        key: jose.JWK,
        *,
        cancel_event: threading.Event | None = None,
    ) -> tuple[str, dict[str, Any]] | None:
        """Return ``(account_url, account_body)`` for the account bound to *key*.

        Returns ``None`` when the server knows no account for the key.
        """
        session = self._session(key, cancel_event)
        try:
            url, body, _ = self._call(
                lambda: self._registration(
                    session,
                    messages.NewRegistration(only_return_existing=True),
                ),
                "ACME account lookup",
                cancel_event,
            )
        except AcmeProblemError as exc:
            if exc.problem_type == ACCOUNT_DOES_NOT_EXIST:
                return None
            raise
        return url, body

    def new_account(
        self,
        key: jose.JWK,
        contact: tuple[str, ...],
        *,
        terms_of_service_agreed: bool = True,
        eab_kid: str | None = None,
        eab_hmac_key: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> tuple[str, dict[str, Any], bool]:
        """Register an account; return ``(url, body, created)``.

        ``created`` is ``False`` when the server answered with an
        existing account for the key (HTTP 200 instead of 201).
        """
        session = self._session(key, cancel_event)
        binding = None
        if eab_kid and eab_hmac_key:
            binding = messages.ExternalAccountBinding.from_data(
                account_public_key=key.public_key(),
                kid=eab_kid,
                hmac_key=eab_hmac_key,
                directory=session.client.directory,
            )
        fields: dict[str, Any] = {"terms_of_service_agreed": terms_of_service_agreed}
        if contact:
            # an explicit contact, even (), is always serialized
            fields["contact"] = tuple(contact)
        if binding is not None:
            fields["external_account_binding"] = binding
        registration = messages.NewRegistration(**fields)
        return self._call(
            lambda: self._registration(session, registration),
            "ACME account registration",
            cancel_event,
        )

    # -- orders ------------------------------------------------------------

    def new_order(
        self,
        account: AccountIdentity,
        domain: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Order:
        session = self._session(account.key, cancel_event)
        payload = messages.NewOrder(
            identifiers=(messages.Identifier(typ=messages.IDENTIFIER_FQDN, value=domain),),
        )
        resp = self._post_as(account, session.client.directory["newOrder"], payload, cancel_event)
        return Order.from_response(domain, _location(resp), _json(resp))

    def get_order(
        self,
        account: AccountIdentity,
        order: Order,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Order:
        resp = self._post_as(account, order.url, None, cancel_event)
        return Order.from_response(order.domain, order.url, _json(resp))

    def get_authorization(
        self,
        account: AccountIdentity,
        url: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Authorization:
        resp = self._post_as(account, url, None, cancel_event)
        return Authorization.from_response(url, _json(resp))

    def respond_challenge(
        self,
        account: AccountIdentity,
        challenge: dict[str, Any],
        *,
        cancel_event: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Tell the server the dns-01 *challenge* is ready for validation."""
        response = dns01_challenge(challenge["token"]).response(account.key)
        resp = self._post_as(account, challenge["url"], response, cancel_event)
        return _json(resp)

    def finalize(
        self,
        account: AccountIdentity,
        order: Order,
        csr_der: bytes,
        *,
        cancel_event: threading.Event | None = None,
    ) -> Order:
        request = FinalizeRequest(csr=csr_der)
        resp = self._post_as(account, order.finalize_url, request, cancel_event)
        return Order.from_response(order.domain, order.url, _json(resp))

    def download_certificate(
        self,
        account: AccountIdentity,
        url: str,
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        return self._post_as(account, url, None, cancel_event).text


def _json(resp: requests.Response) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as exc:
        msg = f"ACME server returned invalid JSON from {resp.url}"
        raise AcmeProblemError(msg) from exc
    return body if isinstance(body, dict) else {}


def _location(resp: requests.Response) -> str:
    location = resp.headers.get("Location")
    if not location:
        msg = "ACME response is missing the Location header"
        raise AcmeProblemError(msg)
    return location


def client_factory(http_settings: HttpSettings) -> Callable[[str], AcmeClient]:
    """Return a callable handing out one shared client per directory URL."""
    clients: dict[str, AcmeClient] = {}
    lock = threading.Lock()

    def get(directory_url: str) -> AcmeClient:
        with lock:
            client = clients.get(directory_url)
            if client is None:
                client = AcmeClient(directory_url, http_settings)
                clients[directory_url] = client
            return client

    return get
