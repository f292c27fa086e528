"""Hook-specific fixtures for testing."""

from __future__ import annotations

import logging
import types
from typing import Any
from unittest.mock import patch

import pytest

from acmepipe.config.settings import HookEntrySettings, HookSettings
from acmepipe.hooks.base import Hook
from acmepipe.logging.setup import ACTIVITY_LOGGER

# ---------------------------------------------------------------------------
# Concrete Hook subclasses for testing
# ---------------------------------------------------------------------------


class DummyHook(Hook):
    """Records every call in ``self.calls``."""

    def __init__(self, config: dict | None = None) -> None:
        super().__init__(config)
        self.calls: list[tuple[str, dict]] = []

    def _record(self, method: str, ctx: dict) -> None:
        self.calls.append((method, ctx))

    def on_account_registration(self, ctx: dict) -> None:
        self._record("on_account_registration", ctx)

    def on_order_creation(self, ctx: dict) -> None:
        self._record("on_order_creation", ctx)

    def on_certificate_issuance(self, ctx: dict) -> None:
        self._record("on_certificate_issuance", ctx)

    def on_pipeline_completed(self, ctx: dict) -> None:
        self._record("on_pipeline_completed", ctx)


class FailingHook(Hook):
    """Raises RuntimeError on the events the tests dispatch."""

    def __init__(self, config: dict | None = None) -> None:
        super().__init__(config)
        self.attempts = 0

    def on_certificate_issuance(self, ctx: dict) -> None:
        self.attempts += 1
        raise RuntimeError("boom")


class ValidatingHook(Hook):
    """``validate_config`` requires ``webhook_url`` in config."""

    @classmethod
    def validate_config(cls, config: dict) -> None:
        if "webhook_url" not in config:
            raise ValueError("missing webhook_url")


class ContextMutatingHook(Hook):
    """Mutates the received context dict (for isolation tests)."""

    def on_certificate_issuance(self, ctx: dict) -> None:
        ctx["mutated_by"] = "ContextMutatingHook"
        ctx["nested"] = {"injected": True}


class NotAHook:
    """Not a Hook subclass — used for TypeError tests."""


# ---------------------------------------------------------------------------
# Helper builders
# ---------------------------------------------------------------------------


def _entry(
    class_path: str = "fake_hooks.DummyHook",
    enabled: bool = True,  # noqa: FBT001, FBT002
    events: tuple[str, ...] = (),
    timeout_seconds: int | None = None,
    config: dict[str, Any] | None = None,
) -> HookEntrySettings:
    return HookEntrySettings(
        class_path=class_path,
        enabled=enabled,
        events=events,
        timeout_seconds=timeout_seconds,
        config=config or {},
    )


def _settings(
    registered: tuple[HookEntrySettings, ...] = (),
    timeout_seconds: int = 30,
    max_workers: int = 2,
    max_retries: int = 0,
) -> HookSettings:
    return HookSettings(
        timeout_seconds=timeout_seconds,
        max_workers=max_workers,
        max_retries=max_retries,
        registered=registered,
    )


@pytest.fixture()
def make_hook_entry():
    return _entry


@pytest.fixture()
def make_hook_settings():
    return _settings


# ---------------------------------------------------------------------------
# Fake module for importlib mocking
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_module():
    """Return a fake module object with test hook classes."""
    mod = types.ModuleType("fake_hooks")
    mod.DummyHook = DummyHook
    mod.FailingHook = FailingHook
    mod.ValidatingHook = ValidatingHook
    mod.ContextMutatingHook = ContextMutatingHook
    mod.NotAHook = NotAHook
    return mod


@pytest.fixture()
def patched_import(fake_module):
    with patch("acmepipe.hooks.registry.importlib.import_module", return_value=fake_module):
        yield


@pytest.fixture()
def registry_with_hooks(patched_import):
    """Yield a factory building a :class:`HookRegistry` over the fake module.

    Usage in tests::

        def test_x(registry_with_hooks):
            registry = registry_with_hooks(entries=[...])
            ...
    """
    from acmepipe.hooks.registry import HookRegistry

    def _factory(
        entries: list[HookEntrySettings] | None = None,
        max_workers: int = 2,
        max_retries: int = 0,
    ) -> HookRegistry:
        if entries is None:
            entries = [_entry()]
        return HookRegistry(
            _settings(registered=tuple(entries), max_workers=max_workers, max_retries=max_retries),
        )

    return _factory


@pytest.fixture()
def activity(caplog):
    """Capture records written to the activity logger."""
    logger = logging.getLogger(ACTIVITY_LOGGER)
    logger.addHandler(caplog.handler)
    logger.setLevel(logging.DEBUG)
    try:
        yield caplog
    finally:
        logger.removeHandler(caplog.handler)
