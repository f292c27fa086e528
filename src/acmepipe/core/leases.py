"""Per-key exclusive leases.

Used to keep at most one in-flight DNS challenge per domain and at most
one binding update per (server, site, port).  Each key gets its own
lock so unrelated domains never contend; a lock is dropped again once
nobody holds or waits for it.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import TYPE_CHECKING

from acmepipe.errors import ChallengeInProgress, PipelineError

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger(__name__)


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # holders plus waiters
        self.users = 0


class LeaseRegistry:
    """Registry of named, non-reentrant locks.

    Parameters
    ----------
    name:
        Label used in log and error messages (e.g. ``"challenge"``).
    error_cls:
        Exception raised when a lease cannot be acquired in time.

    """

    def __init__(
        self,
        name: str,
        error_cls: type[PipelineError] = ChallengeInProgress,
    ) -> None:
        self._name = name
        self._error_cls = error_cls
        self._guard = threading.Lock()
        self._locks: dict[str, _KeyLock] = {}
        self._holders: dict[str, str] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.users += 1
            return entry.lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def is_held(self, key: str) -> bool:
        with self._guard:
            return key in self._holders

    @contextmanager
    def hold(self, key: str, *, timeout: float = 0.0) -> Iterator[None]:
        """Hold the lease for *key* for the duration of the block.

        Parameters
        ----------
        key:
            The resource key (normalised by the caller).
        timeout:
            Seconds to wait for a concurrent holder to release.  ``0``
            fails immediately.

        Raises
        ------
        PipelineError
            An instance of ``error_cls`` if the lease is still held by
            someone else after *timeout* seconds.

        """
        lock = self._checkout(key)
        if timeout > 0:
            acquired = lock.acquire(timeout=timeout)
        else:
            acquired = lock.acquire(blocking=False)
        if not acquired:
            with self._guard:
                holder = self._holders.get(key, "unknown")
            self._checkin(key)
            msg = f"{self._name} already in progress for {key} (held by {holder})"
            raise self._error_cls(msg)

        with self._guard:
            self._holders[key] = threading.current_thread().name
        log.debug("%s lease acquired for %s", self._name, key)
        try:
            yield
        finally:
            with self._guard:
                self._holders.pop(key, None)
            lock.release()
            self._checkin(key)
            log.debug("%s lease released for %s", self._name, key)
