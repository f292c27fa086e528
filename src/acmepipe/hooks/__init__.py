"""Lifecycle hooks subsystem for ACMEPIPE.

Public API::

    from acmepipe.hooks import Hook, HookRegistry, KNOWN_EVENTS

    class MyHook(Hook):
        def on_certificate_issuance(self, ctx: dict) -> None:
            ...
"""

from acmepipe.hooks.base import Hook
from acmepipe.hooks.events import KNOWN_EVENTS
from acmepipe.hooks.registry import HookRegistry

__all__ = ["KNOWN_EVENTS", "Hook", "HookRegistry"]
