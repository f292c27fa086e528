"""DNS provider registry.

Loads the configured DNS provider by name.  Supports the built-in
providers (``infoblox``, ``callback``) and custom providers via the
``ext:`` prefix.

Usage::

    from acmepipe.dns.registry import provider_factory

    factory = provider_factory(settings.dns, settings.http)
    provider = factory(bundle.dns_credentials)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

from acmepipe.dns.base import DnsProvider
from acmepipe.errors import DnsProviderError

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmepipe.config.settings import DnsSettings, HttpSettings
    from acmepipe.models.secrets import DnsCredentials

log = logging.getLogger(__name__)

# Maps config string → (module_path, class_name)
_BUILTIN_PROVIDERS: dict[str, tuple[str, str]] = {
    "infoblox": ("acmepipe.dns.infoblox", "InfobloxDnsProvider"),
    "callback": ("acmepipe.dns.callback", "CallbackDnsProvider"),
}


def load_provider_class(name: str) -> type[DnsProvider]:
    """Resolve a provider name to its :class:`DnsProvider` subclass.

    Raises
    ------
    DnsProviderError
        If the provider is unknown or cannot be imported.

    """
    if name in _BUILTIN_PROVIDERS:
        mod_path, cls_name = _BUILTIN_PROVIDERS[name]
        label = name
    elif name.startswith("ext:"):
        mod_path, _, cls_name = name[4:].rpartition(".")
        label = name
        if not mod_path:
            msg = (
                f"Invalid external DNS provider '{name}': must be fully "
                "qualified (e.g. 'ext:mypackage.module.ClassName')"
            )
            raise DnsProviderError(msg)
    else:
        msg = (
            f"Unknown DNS provider '{name}'; built-in options: "
            f"{sorted(_BUILTIN_PROVIDERS)}. "
            "Use 'ext:mypackage.module.ClassName' for custom providers."
        )
        raise DnsProviderError(msg)

    try:
        module = importlib.import_module(mod_path)
        cls = getattr(module, cls_name)
    except (ImportError, AttributeError) as exc:
        msg = f"Failed to load DNS provider '{label}': {exc}"
        raise DnsProviderError(msg) from exc

    if not (isinstance(cls, type) and issubclass(cls, DnsProvider)):
        msg = f"DNS provider '{label}' must be a subclass of DnsProvider"
        raise DnsProviderError(msg)
    return cls


def provider_factory(
    settings: DnsSettings,
    http_settings: HttpSettings,
) -> Callable[[DnsCredentials], DnsProvider]:
    """Return a callable building the configured provider for credentials.

    The provider class and its config are validated up front so a
    misconfiguration fails before any ACME order is created.
    """
    cls = load_provider_class(settings.provider)
    try:
        cls.validate_config(settings.provider_config)
    except ValueError as exc:
        msg = f"Invalid configuration for DNS provider '{settings.provider}': {exc}"
        raise DnsProviderError(msg) from exc
    log.info("Using DNS provider: %s", settings.provider)

    def build(credentials: DnsCredentials) -> DnsProvider:
        return cls(credentials, settings.provider_config, http_settings)

    return build
