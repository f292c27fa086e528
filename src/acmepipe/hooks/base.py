"""Abstract base class for ACMEPIPE lifecycle hooks.

All custom hooks must inherit from :class:`Hook` and override the
event methods they are interested in.  Unimplemented methods are
no-ops by default.

Usage::

    from acmepipe.hooks import Hook

    class ChatOpsHook(Hook):
        def on_pipeline_completed(self, ctx: dict) -> None:
            post_message(ctx["summary"])
"""

from __future__ import annotations

import abc


class Hook(abc.ABC):  # noqa: B024
    """Base class for all ACMEPIPE lifecycle hooks.

    Parameters
    ----------
    config:
        Optional passthrough configuration from the hook entry's
        ``config`` dict in the configuration file.

    """

    def __init__(self, config: dict | None = None) -> None:
        self.config = config or {}

    @classmethod
    def validate_config(cls, config: dict) -> None:
        """Validate hook-specific configuration at load time.

        Override in subclasses to reject invalid config before the
        hook is instantiated.  Raise :class:`ValueError` if *config*
        is not acceptable.
        """

    # -- Account events ---------------------------------------------------

    def on_account_resolved(self, ctx: dict) -> None:
        """Called when an existing account bound to the key is reused.

        Context keys: ``account_id``, ``directory_url``, ``thumbprint``.
        """

    def on_account_registration(self, ctx: dict) -> None:
        """Called after a new account is registered.

        Context keys: ``account_id``, ``directory_url``, ``contact``,
        ``thumbprint``.
        """

    # -- Order events -----------------------------------------------------

    def on_order_creation(self, ctx: dict) -> None:
        """Context keys: ``domain``, ``order_url``, ``status``."""

    def on_order_transition(self, ctx: dict) -> None:
        """Context keys: ``domain``, ``from_state``, ``to_state``, ``reason``."""

    # -- Challenge events -------------------------------------------------

    def on_challenge_provisioned(self, ctx: dict) -> None:
        """Context keys: ``domain``, ``record_name``."""

    def on_challenge_propagated(self, ctx: dict) -> None:
        """Context keys: ``domain``, ``record_name``, ``result``."""

    def on_challenge_cleanup(self, ctx: dict) -> None:
        """Context keys: ``domain``, ``record_name``."""

    def on_challenge_cleanup_failed(self, ctx: dict) -> None:
        """Called when a TXT record could not be removed.

        The record is left behind and needs manual removal.

        Context keys: ``domain``, ``record_name``, ``error``.
        """

    # -- Certificate / deployment events ----------------------------------

    def on_certificate_issuance(self, ctx: dict) -> None:
        """Context keys: ``domain``, ``fingerprint``, ``not_after``."""

    def on_deployment_completed(self, ctx: dict) -> None:
        """Context keys: ``server``, ``site``, ``port``, ``fingerprint``, ``action``."""

    def on_verification_completed(self, ctx: dict) -> None:
        """Context keys: ``server``, ``site``, ``port``, ``outcome``, ``reason``."""

    def on_pipeline_completed(self, ctx: dict) -> None:
        """Called once per domain when the pipeline finishes.

        Context keys: ``domain``, ``succeeded``, ``summary``, ``failed_stage``,
        ``error_code``, ``fingerprint``.
        """
