"""DNS-01 challenge record lifecycle.

:class:`DnsChallengeController` owns every TXT record it creates:

- at most one live record per domain; a second :meth:`provision` for
  the same domain fails with :class:`ChallengeInProgress`
- :meth:`await_propagation` is bounded by attempts and time and reports
  a timeout as :attr:`PropagationResult.TIMED_OUT` rather than raising
- :meth:`cleanup` deletes a record exactly once, and a failed delete is
  reported as a warning so it never masks the caller's own error
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from acmepipe.core.jws import dns01_txt_value
from acmepipe.core.retry import Backoff, call_with_retry, check_cancelled, wait
from acmepipe.core.state import CHALLENGE_TRANSITIONS, assert_transition, log_transition
from acmepipe.core.types import ChallengeState, PropagationResult
from acmepipe.dns.propagation import PropagationChecker
from acmepipe.errors import (
    ChallengeInProgress,
    DnsProviderAuthFailed,
    DnsProviderError,
    DnsRecordCreateFailed,
)
from acmepipe.models.challenge import ChallengeRecord, challenge_record_name

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmepipe.config.settings import DnsSettings
    from acmepipe.dns.base import DnsProvider
    from acmepipe.hooks.registry import HookRegistry
    from acmepipe.models.account import AccountIdentity
    from acmepipe.models.secrets import DnsCredentials

log = logging.getLogger(__name__)


@dataclass
class _LiveRecord:
    record: ChallengeRecord
    provider: DnsProvider | None = None
    ref: str | None = None


def _advance(
    record: ChallengeRecord,
    target: ChallengeState,
    reason: str | None = None,
) -> ChallengeRecord:
    assert_transition(record.state, target, CHALLENGE_TRANSITIONS)
    log_transition("challenge", record.record_name, record.state, target, reason=reason)
    return replace(record, state=target)


class DnsChallengeController:
    """Provision, confirm and remove DNS-01 challenge records.

    Parameters
    ----------
    settings:
        The ``dns`` settings section.
    provider_factory:
        Builds a :class:`DnsProvider` from the run's DNS credentials.
    checker:
        Performs the TXT lookups; defaults to a
        :class:`PropagationChecker` over *settings*.
    hooks:
        Optional event emitter.

    """

    def __init__(
        self,
        settings: DnsSettings,
        provider_factory: Callable[[DnsCredentials], DnsProvider],
        *,
        checker: PropagationChecker | None = None,
        hooks: HookRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._provider_factory = provider_factory
        self._checker = checker or PropagationChecker(settings)
        self._hooks = hooks
        self._lock = threading.Lock()
        self._live: dict[str, _LiveRecord] = {}

    @staticmethod
    def _key(domain: str) -> str:
        return domain.removeprefix("*.").rstrip(".").lower()

    def is_live(self, domain: str) -> bool:
        with self._lock:
            return self._key(domain) in self._live

    # -- provision ---------------------------------------------------------

    def provision(
        self,
        domain: str,
        token: str,
        credentials: DnsCredentials,
        account: AccountIdentity,
    ) -> ChallengeRecord:
        """Create the ``_acme-challenge`` TXT record for *domain*.

        Raises
        ------
        ChallengeInProgress
            A live record for the domain is already held.
        DnsProviderAuthFailed
            The provider rejected the credentials.
        DnsRecordCreateFailed
            The provider refused to create the record.

        """
        key = self._key(domain)
        record = ChallengeRecord(
            domain=domain,
            token=token,
            record_name=challenge_record_name(domain),
            record_value=dns01_txt_value(token, account.key),
            ttl=self._settings.record_ttl,
        )

        with self._lock:
            if key in self._live:
                msg = f"A challenge record for {key} is already live"
                raise ChallengeInProgress(msg)
            # Reserve the slot before calling out to the provider.
            self._live[key] = _LiveRecord(record=record)

        try:
            provider = self._provider_factory(credentials)
            stale = self._stale_values(provider, record)
            if stale:
                log.warning(
                    "%d other TXT value(s) already present at %s",
                    len(stale),
                    record.record_name,
                )
            ref = provider.create_txt_record(record.record_name, record.record_value, record.ttl)
        except (DnsProviderAuthFailed, DnsRecordCreateFailed):
            self._release(key)
            raise
        except DnsProviderError as exc:
            self._release(key)
            msg = f"Could not create {record.record_name}: {exc.detail}"
            raise DnsRecordCreateFailed(msg) from exc
        except BaseException:
            self._release(key)
            raise

        record = _advance(record, ChallengeState.CREATED)
        with self._lock:
            self._live[key] = _LiveRecord(record=record, provider=provider, ref=ref)

        self._emit("challenge.provisioned", record)
        return record

    def _release(self, key: str) -> None:
        with self._lock:
            self._live.pop(key, None)

    @staticmethod
    def _stale_values(provider: DnsProvider, record: ChallengeRecord) -> list[str]:
        try:
            values = provider.get_txt_values(record.record_name)
        except DnsProviderError as exc:
            log.debug("Could not list TXT values at %s: %s", record.record_name, exc)
            return []
        return [v for v in values if v != record.record_value]

    # -- propagation -------------------------------------------------------

    def await_propagation(
        self,
        record: ChallengeRecord,
        timeout: float | None = None,
        poll_interval: float | None = None,
        max_attempts: int | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PropagationResult:
        """Poll until the TXT value is visible or the bounds are exhausted.

        Polls at least once.  Lookup errors count as "not yet visible".

        Raises
        ------
        Cancelled
            If *cancel_event* is set while polling.

        """
        timeout = self._settings.propagation_timeout_seconds if timeout is None else timeout
        interval = (
            self._settings.propagation_interval_seconds if poll_interval is None else poll_interval
        )
        attempts_limit = (
            self._settings.propagation_max_attempts if max_attempts is None else max_attempts
        )

        resolver = self._checker.resolver_for(record.record_name)
        deadline = time.monotonic() + timeout
        attempt = 0
        while True:
            check_cancelled(cancel_event)
            attempt += 1
            if self._checker.is_visible(resolver, record.record_name, record.record_value):
                log.info(
                    "TXT record %s visible after %d attempt(s)",
                    record.record_name,
                    attempt,
                )
                self._mark_confirmed(record)
                self._emit("challenge.propagated", record, result=PropagationResult.READY.value)
                return PropagationResult.READY

            remaining = deadline - time.monotonic()
            if attempt >= attempts_limit or remaining <= 0:
                break
            wait(min(interval, remaining), cancel_event)

        log.warning(
            "TXT record %s not visible after %d attempt(s) / %.0fs",
            record.record_name,
            attempt,
            timeout,
        )
        self._emit("challenge.propagated", record, result=PropagationResult.TIMED_OUT.value)
        return PropagationResult.TIMED_OUT

    def _mark_confirmed(self, record: ChallengeRecord) -> None:
        with self._lock:
            live = self._live.get(self._key(record.domain))
            if live is None or live.record.state != ChallengeState.CREATED:
                return
            live.record = _advance(live.record, ChallengeState.PROPAGATION_CONFIRMED)

    # -- cleanup -----------------------------------------------------------

    def cleanup(self, record: ChallengeRecord) -> ChallengeRecord:
        """Delete the TXT record; never raises for provider failures.

        A second call for the same record is a no-op.
        """
        with self._lock:
            live = self._live.pop(self._key(record.domain), None)

        if live is None or live.provider is None:
            log.debug("No live challenge record for %s, nothing to clean up", record.domain)
            if record.state == ChallengeState.CLEANED:
                return record
            return replace(record, state=ChallengeState.CLEANED)

        current = live.record
        backoff = Backoff(
            max_attempts=self._settings.cleanup_max_attempts,
            delay_seconds=1.0,
        )
        try:
            call_with_retry(
                lambda: live.provider.delete_txt_record(
                    current.record_name,
                    current.record_value,
                    live.ref,
                ),
                backoff,
                description=f"Delete TXT {current.record_name}",
            )
        except Exception as exc:  # noqa: BLE001
            log.warning(
                "Failed to remove TXT record %s, remove it manually: %s: %s",
                current.record_name,
                type(exc).__name__,
                exc,
            )
            self._emit("challenge.cleanup_failed", current, error=str(exc))
            return current

        cleaned = _advance(current, ChallengeState.CLEANED)
        self._emit("challenge.cleanup", cleaned)
        return cleaned

    # -- events ------------------------------------------------------------

    def _emit(self, event: str, record: ChallengeRecord, **extra: str) -> None:
        if self._hooks is None:
            return
        self._hooks.dispatch(
            event,
            {"domain": record.domain, "record_name": record.record_name, **extra},
        )
