"""Event emitter for the pipeline.

:meth:`HookRegistry.dispatch` does two things with every event:

1. writes one line to the activity log, synchronously and in pipeline
   order, whether or not any hooks are configured;
2. hands a sanitized copy of the context to each subscribed
   :class:`Hook` on a :class:`~concurrent.futures.ThreadPoolExecutor`.

Hooks are loaded eagerly from ``hooks.registered``; a hook that cannot
be imported, is not a :class:`Hook` subclass, rejects its config or
subscribes to an unknown event stops the pipeline from starting.  Once
running, a failing hook is retried ``hooks.max_retries`` times, then
counted and logged.  Nothing a hook does reaches the caller.

Usage::

    registry = HookRegistry(settings.hooks)
    registry.dispatch("certificate.issuance", {"domain": "www.example.com"})
    registry.shutdown()
"""

from __future__ import annotations

import copy
import importlib
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmepipe.hooks.base import Hook
from acmepipe.hooks.events import ACTIVITY_MESSAGES, EVENT_METHOD_MAP, KNOWN_EVENTS
from acmepipe.logging.sanitize import sanitize_for_logs
from acmepipe.logging.setup import ACTIVITY_LOGGER

if TYPE_CHECKING:
    from acmepipe.config.settings import HookEntrySettings, HookSettings

log = logging.getLogger(__name__)
activity_log = logging.getLogger(ACTIVITY_LOGGER)

_DOTTED_PATH = re.compile(r"^[A-Za-z_]\w*(\.[A-Za-z_]\w*)+$", re.ASCII)

_RETRY_BASE_SECONDS = 0.5


class _Missing(dict):
    def __missing__(self, key: str) -> str:
        return "?"


@dataclass(frozen=True)
class _LoadedHook:
    instance: Hook
    entry: HookEntrySettings
    subscribed_events: frozenset[str]

    @property
    def name(self) -> str:
        return self.entry.class_path


def activity_message(event: str, context: dict) -> str:
    """Render the activity log line for *event*."""
    template = ACTIVITY_MESSAGES.get(event, event)
    return template.format_map(_Missing(context))


def _activity_level(event: str, context: dict) -> int:
    if event == "challenge.cleanup_failed":
        return logging.WARNING
    if event == "pipeline.completed" and not context.get("succeeded", True):
        return logging.ERROR
    if event == "verification.completed" and context.get("outcome") != "ok":
        return logging.WARNING
    return logging.INFO


def _import_hook_class(class_path: str) -> type[Hook]:
    if not _DOTTED_PATH.match(class_path):
        msg = (
            f"Invalid hook class path '{class_path}': expected a dotted "
            "'module.ClassName' made of identifiers"
        )
        raise ValueError(msg)
    module_name, _, attr = class_path.rpartition(".")
    candidate = getattr(importlib.import_module(module_name), attr)
    if not (isinstance(candidate, type) and issubclass(candidate, Hook)):
        msg = f"Hook '{class_path}' must be a subclass of acmepipe.hooks.Hook"
        raise TypeError(msg)
    return candidate


def _subscriptions(entry: HookEntrySettings) -> frozenset[str]:
    if not entry.events:
        return KNOWN_EVENTS
    unknown = set(entry.events) - KNOWN_EVENTS
    if unknown:
        msg = (
            f"Hook '{entry.class_path}' subscribes to unknown events "
            f"{sorted(unknown)}; valid events are {sorted(KNOWN_EVENTS)}"
        )
        raise ValueError(msg)
    return frozenset(entry.events)


class HookRegistry:
    """Activity logging plus fire-and-forget hook dispatch.

    Parameters
    ----------
    settings:
        The ``hooks`` section of the pipeline settings.  ``None`` means
        activity logging only.

    """

    def __init__(self, settings: HookSettings | None = None) -> None:
        self._settings = settings
        self._hooks: list[_LoadedHook] = []
        self._executor: ThreadPoolExecutor | None = None
        self._shutdown_event = threading.Event()
        self._lock = threading.Lock()
        self._dispatch_count = 0
        self._error_count = 0
        if settings is not None:
            self._load(settings)

    @property
    def dispatch_count(self) -> int:
        """Hook invocations finished so far, successful or not."""
        with self._lock:
            return self._dispatch_count

    @property
    def error_count(self) -> int:
        """Hook invocations that still failed after their retries."""
        with self._lock:
            return self._error_count

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown_event.is_set()

    def _load(self, settings: HookSettings) -> None:
        for entry in settings.registered:
            if not entry.enabled:
                log.debug("Skipping disabled hook %s", entry.class_path)
                continue
            try:
                hook_class = _import_hook_class(entry.class_path)
                hook_class.validate_config(entry.config)
                loaded = _LoadedHook(
                    instance=hook_class(config=entry.config),
                    entry=entry,
                    subscribed_events=_subscriptions(entry),
                )
            except Exception:
                log.critical("Cannot load hook %s", entry.class_path, exc_info=True)
                raise
            self._hooks.append(loaded)
            log.info(
                "Hook %s subscribed to %s",
                loaded.name,
                "all events"
                if loaded.subscribed_events == KNOWN_EVENTS
                else ", ".join(sorted(loaded.subscribed_events)),
            )

        if self._hooks:
            self._executor = ThreadPoolExecutor(
                max_workers=settings.max_workers,
                thread_name_prefix="acmepipe-hook",
            )

    def dispatch(self, event: str, context: dict) -> None:
        """Log *event* to the activity log, then queue it for every
        subscribed hook.

        Raises :class:`ValueError` for an event name outside
        :data:`~acmepipe.hooks.events.KNOWN_EVENTS`; never raises for
        anything a hook does.
        """
        method_name = EVENT_METHOD_MAP.get(event)
        if method_name is None:
            msg = f"Unknown hook event '{event}'; valid events are {sorted(KNOWN_EVENTS)}"
            raise ValueError(msg)

        safe_context = sanitize_for_logs(context)
        activity_log.log(
            _activity_level(event, safe_context),
            activity_message(event, safe_context),
            extra={"event": event},
        )

        if self._shutdown_event.is_set() or self._executor is None:
            return

        # One deep copy per event; hooks get shallow copies of it.
        snapshot = copy.deepcopy(safe_context)
        for loaded in self._hooks:
            if event not in loaded.subscribed_events:
                continue
            try:
                self._executor.submit(self._run_hook, loaded, event, method_name, dict(snapshot))
            except RuntimeError:
                log.warning(
                    "Hook executor is shut down, cannot dispatch %s to %s",
                    event,
                    loaded.name,
                )

    def _run_hook(self, loaded: _LoadedHook, event: str, method_name: str, context: dict) -> None:
        settings = self._settings
        max_retries = settings.max_retries if settings else 0
        timeout = loaded.entry.timeout_seconds
        if timeout is None:
            timeout = settings.timeout_seconds if settings else 30
        handler = getattr(loaded.instance, method_name)

        started = time.monotonic()
        failure: Exception | None = None
        for attempt in range(max_retries + 1):
            if attempt:
                time.sleep(_RETRY_BASE_SECONDS * 2 ** (attempt - 1))
            try:
                handler(context)
            except Exception as exc:  # noqa: BLE001
                failure = exc
            else:
                failure = None
                break
        elapsed_ms = (time.monotonic() - started) * 1000

        with self._lock:
            self._dispatch_count += 1
            if failure is not None:
                self._error_count += 1

        extra = {"hook_name": loaded.name, "event": event, "duration_ms": round(elapsed_ms, 2)}
        if failure is not None:
            log.error(
                "Hook %s raised an exception for %s after %d attempt(s): %s",
                loaded.name,
                event,
                max_retries + 1,
                failure,
                extra=extra,
            )
        elif elapsed_ms > timeout * 1000:
            log.warning(
                "Hook %s took %.0fms for %s, over its %ds budget",
                loaded.name,
                elapsed_ms,
                event,
                timeout,
                extra=extra,
            )
        else:
            log.debug("Hook %s handled %s in %.1fms", loaded.name, event, elapsed_ms, extra=extra)

    def shutdown(self, wait: bool = True) -> None:  # noqa: FBT001, FBT002
        """Stop accepting hook work and release the worker threads.

        Idempotent.  Activity logging keeps working after shutdown.
        """
        if self._shutdown_event.is_set():
            return
        self._shutdown_event.set()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            log.info(
                "Hook executor stopped: %d dispatched, %d failed",
                self.dispatch_count,
                self.error_count,
            )
