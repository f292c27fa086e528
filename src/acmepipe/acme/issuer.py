"""Single-domain certificate issuance over ACME with DNS-01.

Drives one domain through::

    new_order → authorization_pending → challenge_provisioned
              → awaiting_validation → finalizing → certificate_ready

with ``failed`` reachable from every non-terminal state.  An
authorization that is already valid skips the challenge entirely.

The challenge record is created under a per-domain lease and removed
in a ``finally`` block, so it is cleaned up on success, failure and
cancellation alike.  Nothing is returned unless the whole chain was
downloaded and packaged; there is no partial artifact.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from acmepipe.core import crypto
from acmepipe.core.leases import LeaseRegistry
from acmepipe.core.retry import Backoff, check_cancelled, wait
from acmepipe.core.state import (
    ISSUANCE_TRANSITIONS,
    ORDER_TRANSITIONS,
    assert_transition,
    log_transition,
)
from acmepipe.core.types import (
    AuthorizationStatus,
    IssuanceState,
    OrderStatus,
    PropagationResult,
)
from acmepipe.errors import (
    AcmeProblemError,
    AcmeValidationInvalid,
    AcmeValidationTimeout,
    Cancelled,
    CertificateIssuanceFailed,
    ChallengeInProgress,
    DnsPropagationTimeout,
    DnsProviderAuthFailed,
    DnsRecordCreateFailed,
    PipelineError,
)
from acmepipe.models.certificate import CertificateArtifact

if TYPE_CHECKING:
    import threading
    from collections.abc import Callable

    from acmepipe.acme.client import AcmeClient
    from acmepipe.config.settings import AcmeSettings, DnsSettings
    from acmepipe.dns.challenge import DnsChallengeController
    from acmepipe.hooks.registry import HookRegistry
    from acmepipe.models.account import AccountIdentity
    from acmepipe.models.order import Authorization, Order
    from acmepipe.models.secrets import DnsCredentials

log = logging.getLogger(__name__)

DNS01 = "dns-01"

# Errors that already describe the failure precisely and pass through.
_PASSTHROUGH = (
    CertificateIssuanceFailed,
    Cancelled,
    ChallengeInProgress,
    DnsPropagationTimeout,
    DnsProviderAuthFailed,
    DnsRecordCreateFailed,
)


class _IssuanceRun:
    """Tracks the issuance state of one domain and reports transitions."""

    def __init__(self, domain: str, hooks: HookRegistry | None) -> None:
        self.domain = domain
        self.state = IssuanceState.NEW_ORDER
        self._hooks = hooks

    def advance(self, target: IssuanceState, reason: str | None = None) -> None:
        assert_transition(self.state, target, ISSUANCE_TRANSITIONS)
        log_transition("issuance", self.domain, self.state, target, reason=reason)
        if self._hooks is not None:
            self._hooks.dispatch(
                "order.transition",
                {
                    "domain": self.domain,
                    "from_state": self.state.value,
                    "to_state": target.value,
                    "reason": reason,
                },
            )
        self.state = target

    def fail(self, reason: str) -> None:
        if self.state not in (IssuanceState.FAILED, IssuanceState.CERTIFICATE_READY):
            self.advance(IssuanceState.FAILED, reason=reason)


class CertificateIssuer:
    """Obtain a certificate for one domain.

    Parameters
    ----------
    settings:
        The ``acme`` settings (key type, polling bounds).
    dns_settings:
        The ``dns`` settings (lease timeout, propagation policy).
    client_factory:
        Returns the :class:`AcmeClient` for a directory URL.
    challenges:
        Controller owning the DNS challenge records.
    fingerprint_algorithm:
        Algorithm of the fingerprint stored in the artifact; must match
        what the target server reports.
    leases:
        Per-domain challenge leases; shared between issuers running in
        the same process.
    hooks:
        Optional event emitter.

    """

    def __init__(  # noqa: PLR0913
        self,
        settings: AcmeSettings,
        dns_settings: DnsSettings,
        client_factory: Callable[[str], AcmeClient],
        challenges: DnsChallengeController,
        *,
        fingerprint_algorithm: str = "sha256",
        leases: LeaseRegistry | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._dns_settings = dns_settings
        self._client_factory = client_factory
        self._challenges = challenges
        self._fingerprint_algorithm = fingerprint_algorithm
        self._leases = leases or LeaseRegistry("challenge", ChallengeInProgress)
        self._hooks = hooks

    @property
    def poll_backoff(self) -> Backoff:
        return Backoff(
            max_attempts=self._settings.poll_max_attempts,
            delay_seconds=self._settings.poll_interval_seconds,
            strategy=self._settings.poll_backoff,
            max_delay_seconds=self._settings.poll_max_delay_seconds,
        )

    # -- public API --------------------------------------------------------

    def issue(
        self,
        account: AccountIdentity,
        domain: str,
        dns_credentials: DnsCredentials,
        cancel_event: threading.Event | None = None,
    ) -> CertificateArtifact:
        """Run the full issuance for *domain* and return the artifact.

        Raises
        ------
        AcmeValidationInvalid
            The server judged the challenge or order invalid.
        AcmeValidationTimeout
            Polling attempts were exhausted.
        DnsPropagationTimeout
            The TXT record never became visible (and the configuration
            does not allow proceeding anyway).
        CertificateIssuanceFailed
            Any other protocol or transport failure.
        Cancelled
            *cancel_event* was set.

        """
        client = self._client_factory(account.directory_url)
        run = _IssuanceRun(domain, self._hooks)
        try:
            check_cancelled(cancel_event)
            order = client.new_order(account, domain, cancel_event=cancel_event)
            log.info("Created order %s for %s (status=%s)", order.url, domain, order.status)
            self._emit(
                "order.creation",
                domain=domain,
                order_url=order.url,
                status=order.status.value,
            )
            run.advance(IssuanceState.AUTHORIZATION_PENDING)

            authz = self._pending_authorization(client, account, order, cancel_event)
            if authz is None:
                run.advance(IssuanceState.FINALIZING, reason="authorization already valid")
            else:
                order = self._validate(
                    client, account, order, authz, dns_credentials, run, cancel_event,
                )
                run.advance(IssuanceState.FINALIZING)

            artifact = self._finalize(client, account, order, cancel_event)
            run.advance(IssuanceState.CERTIFICATE_READY)
        except PipelineError as exc:
            run.fail(exc.detail)
            if isinstance(exc, _PASSTHROUGH):
                raise
            msg = f"Issuance for {domain} failed: {exc.detail}"
            raise CertificateIssuanceFailed(msg) from exc
        except Exception as exc:
            run.fail(f"{type(exc).__name__}: {exc}")
            raise

        log.info(
            "Issued certificate for %s (fingerprint=%s, not_after=%s)",
            domain,
            artifact.fingerprint,
            artifact.not_after,
        )
        self._emit(
            "certificate.issuance",
            domain=domain,
            fingerprint=artifact.fingerprint,
            not_after=artifact.not_after.isoformat() if artifact.not_after else None,
        )
        return artifact

    # -- authorization / challenge ------------------------------------------

    def _pending_authorization(
        self,
        client: AcmeClient,
        account: AccountIdentity,
        order: Order,
        cancel_event: threading.Event | None,
    ) -> Authorization | None:
        """Return the authorization that still needs a challenge, if any."""
        if not order.authorization_urls:
            msg = f"Order {order.url} lists no authorizations"
            raise CertificateIssuanceFailed(msg)
        for url in order.authorization_urls:
            authz = client.get_authorization(account, url, cancel_event=cancel_event)
            if authz.status == AuthorizationStatus.VALID:
                log.info("Authorization for %s is already valid", authz.domain or order.domain)
                continue
            if authz.status != AuthorizationStatus.PENDING:
                detail = authz.error_detail() or "no detail"
                msg = f"Authorization {url} is {authz.status.value}: {detail}"
                raise AcmeValidationInvalid(msg)
            return authz
        return None

    def _validate(  # noqa: PLR0913
        self,
        client: AcmeClient,
        account: AccountIdentity,
        order: Order,
        authz: Authorization,
        dns_credentials: DnsCredentials,
        run: _IssuanceRun,
        cancel_event: threading.Event | None,
    ) -> Order:
        challenge = authz.challenge(DNS01)
        if challenge is None or not challenge.get("token"):
            msg = f"ACME server offered no {DNS01} challenge for {order.domain}"
            raise CertificateIssuanceFailed(msg)

        lease_key = order.domain.removeprefix("*.").lower()
        with self._leases.hold(lease_key, timeout=self._dns_settings.lock_timeout_seconds):
            record = None
            try:
                record = self._challenges.provision(
                    order.domain,
                    challenge["token"],
                    dns_credentials,
                    account,
                )
                run.advance(IssuanceState.CHALLENGE_PROVISIONED)

                result = self._challenges.await_propagation(record, cancel_event=cancel_event)
                if result == PropagationResult.TIMED_OUT:
                    if not self._dns_settings.proceed_on_propagation_timeout:
                        msg = f"TXT record {record.record_name} did not propagate in time"
                        raise DnsPropagationTimeout(msg)
                    log.warning(
                        "Proceeding although %s has not propagated",
                        record.record_name,
                    )

                check_cancelled(cancel_event)
                client.respond_challenge(account, challenge, cancel_event=cancel_event)
                run.advance(IssuanceState.AWAITING_VALIDATION)

                self._poll_authorization(client, account, authz, cancel_event)
                return self._poll_order(
                    client,
                    account,
                    order,
                    done=(OrderStatus.READY, OrderStatus.VALID),
                    what="order readiness",
                    cancel_event=cancel_event,
                )
            finally:
                if record is not None:
                    self._challenges.cleanup(record)

    # -- polling -----------------------------------------------------------

    def _poll_authorization(
        self,
        client: AcmeClient,
        account: AccountIdentity,
        authz: Authorization,
        cancel_event: threading.Event | None,
    ) -> None:
        backoff = self.poll_backoff
        for attempt in range(1, backoff.max_attempts + 1):
            check_cancelled(cancel_event)
            current = client.get_authorization(account, authz.url, cancel_event=cancel_event)
            if current.status == AuthorizationStatus.VALID:
                log.info("Authorization for %s validated", current.domain or authz.domain)
                return
            if current.status != AuthorizationStatus.PENDING:
                detail = current.error_detail() or f"authorization is {current.status.value}"
                msg = f"Challenge validation failed for {authz.domain}: {detail}"
                raise AcmeValidationInvalid(msg)
            if attempt < backoff.max_attempts:
                wait(backoff.delay(attempt), cancel_event)

        msg = f"Authorization for {authz.domain} still pending after {backoff.max_attempts} polls"
        raise AcmeValidationTimeout(msg)

    def _poll_order(  # noqa: PLR0913
        self,
        client: AcmeClient,
        account: AccountIdentity,
        order: Order,
        *,
        done: tuple[OrderStatus, ...],
        what: str,
        cancel_event: threading.Event | None,
    ) -> Order:
        backoff = self.poll_backoff
        current = order
        for attempt in range(1, backoff.max_attempts + 1):
            check_cancelled(cancel_event)
            current = self._track(
                current,
                client.get_order(account, order, cancel_event=cancel_event),
            )
            if current.status in done:
                return current
            if current.status == OrderStatus.INVALID:
                detail = (current.error or {}).get("detail") or "order is invalid"
                msg = f"Order for {order.domain} became invalid: {detail}"
                raise AcmeValidationInvalid(msg)
            if attempt < backoff.max_attempts:
                wait(backoff.delay(attempt), cancel_event)

        msg = f"Timed out waiting for {what} of {order.domain} after {backoff.max_attempts} polls"
        raise AcmeValidationTimeout(msg)

    @staticmethod
    def _track(previous: Order, current: Order) -> Order:
        """Check an order status change reported by the server."""
        if current.status == previous.status:
            return current
        try:
            assert_transition(previous.status, current.status, ORDER_TRANSITIONS)
        except ValueError as exc:
            msg = f"ACME server reported an impossible order change for {previous.domain}: {exc}"
            raise CertificateIssuanceFailed(msg) from exc
        log_transition("order", previous.domain, previous.status, current.status)
        return current

    # -- finalization ------------------------------------------------------

    def _finalize(
        self,
        client: AcmeClient,
        account: AccountIdentity,
        order: Order,
        cancel_event: threading.Event | None,
    ) -> CertificateArtifact:
        if order.status == OrderStatus.PENDING:
            order = self._poll_order(
                client,
                account,
                order,
                done=(OrderStatus.READY, OrderStatus.VALID),
                what="order readiness",
                cancel_event=cancel_event,
            )
        if order.status == OrderStatus.VALID:
            msg = f"Order {order.url} was already finalized with a different key"
            raise CertificateIssuanceFailed(msg)

        key = crypto.generate_private_key(self._settings.certificate_key_type)
        csr_der = crypto.build_csr(order.domain, key)
        try:
            finalized = client.finalize(account, order, csr_der, cancel_event=cancel_event)
            order = self._track(order, finalized)
        except AcmeProblemError as exc:
            msg = f"Finalization of {order.domain} rejected: {exc.detail}"
            raise CertificateIssuanceFailed(msg) from exc

        if order.status != OrderStatus.VALID:
            order = self._poll_order(
                client,
                account,
                order,
                done=(OrderStatus.VALID,),
                what="certificate issuance",
                cancel_event=cancel_event,
            )
        if not order.certificate_url:
            msg = f"Valid order {order.url} carries no certificate URL"
            raise CertificateIssuanceFailed(msg)

        chain_pem = client.download_certificate(
            account, order.certificate_url, cancel_event=cancel_event,
        )
        certs = crypto.split_pem_chain(chain_pem)
        leaf, intermediates = certs[0], certs[1:]
        if not crypto.public_keys_match(leaf, key):
            msg = "Downloaded certificate does not match the generated key"
            raise CertificateIssuanceFailed(msg)

        passphrase = crypto.generate_passphrase()
        return CertificateArtifact(
            domain=order.domain,
            certificate_pem=crypto.certificate_pem(leaf),
            chain_pem=chain_pem,
            private_key_pem=crypto.private_key_pem(key),
            bundle=crypto.build_pkcs12(order.domain, key, leaf, intermediates, passphrase),
            passphrase=passphrase,
            fingerprint=crypto.certificate_fingerprint(leaf, self._fingerprint_algorithm),
            not_after=crypto.not_after(leaf),
        )

    def _emit(self, event: str, **context: object) -> None:
        if self._hooks is not None:
            self._hooks.dispatch(event, context)
