"""Authoritative TXT lookups used to confirm challenge propagation.

By default the authoritative nameservers of the record's zone are
queried directly, so a confirmed record is visible to the ACME server's
validators regardless of recursive-resolver caching.  Configured
``dns.nameservers`` take precedence over NS discovery.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import dns.exception
import dns.resolver

if TYPE_CHECKING:
    from acmepipe.config.settings import DnsSettings

log = logging.getLogger(__name__)


class PropagationChecker:
    """Query TXT records the way a DNS-01 validator would."""

    def __init__(self, settings: DnsSettings) -> None:
        self._settings = settings

    def resolver_for(self, record_name: str) -> dns.resolver.Resolver:
        """Build a resolver aimed at the nameservers to poll for *record_name*."""
        timeout = self._settings.query_timeout_seconds
        if self._settings.nameservers:
            resolver = dns.resolver.Resolver(configure=False)
            resolver.nameservers = list(self._settings.nameservers)
            resolver.lifetime = timeout
            return resolver

        resolver = dns.resolver.Resolver()
        resolver.lifetime = timeout
        if not self._settings.require_authoritative:
            return resolver

        domain = record_name.split(".", 1)[1] if "." in record_name else record_name
        try:
            zone = dns.resolver.zone_for_name(domain)
            ns_answer = dns.resolver.resolve(zone, "NS")
            ns_ips = []
            for rdata in ns_answer:
                ns_name = rdata.target.to_text()
                for rdtype in ("A", "AAAA"):
                    try:
                        answer = dns.resolver.resolve(ns_name, rdtype)
                    except dns.exception.DNSException:
                        continue
                    ns_ips.extend(r.address for r in answer)
        except dns.exception.DNSException as exc:
            log.warning(
                "Authoritative NS lookup failed for %s: %s; "
                "falling back to standard resolution",
                domain,
                exc,
            )
            return resolver

        if not ns_ips:
            log.warning(
                "Authoritative NS lookup for %s yielded no IPs; "
                "falling back to standard resolution",
                domain,
            )
            return resolver

        auth = dns.resolver.Resolver(configure=False)
        auth.nameservers = ns_ips
        auth.lifetime = timeout
        log.debug("Polling authoritative NS for %s: %s", domain, ns_ips)
        return auth

    @staticmethod
    def lookup(resolver: dns.resolver.Resolver, record_name: str) -> list[str]:
        """Return the TXT values at *record_name* (empty when absent).

        Raises :class:`dns.exception.DNSException` on timeouts and
        server failures.
        """
        try:
            answer = resolver.resolve(record_name, "TXT")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        # TXT rdata has .strings, a tuple of bytes segments to concatenate.
        return [b"".join(r.strings).decode("ascii", errors="replace") for r in answer]

    def is_visible(
        self,
        resolver: dns.resolver.Resolver,
        record_name: str,
        expected: str,
    ) -> bool:
        """Return whether *expected* is among the TXT values; errors mean no."""
        try:
            values = self.lookup(resolver, record_name)
        except dns.exception.DNSException as exc:
            log.debug("TXT lookup for %s failed: %s", record_name, exc)
            return False
        return expected in values
