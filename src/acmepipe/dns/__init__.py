"""DNS-01 challenge provisioning for ACMEPIPE.

Public API::

    from acmepipe.dns import DnsChallengeController, provider_factory

    controller = DnsChallengeController(
        settings.dns, provider_factory(settings.dns, settings.http),
    )
"""

from acmepipe.dns.base import DnsProvider
from acmepipe.dns.challenge import DnsChallengeController
from acmepipe.dns.propagation import PropagationChecker
from acmepipe.dns.registry import load_provider_class, provider_factory

__all__ = [
    "DnsChallengeController",
    "DnsProvider",
    "PropagationChecker",
    "load_provider_class",
    "provider_factory",
]
