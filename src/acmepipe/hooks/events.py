"""Canonical pipeline event definitions.

Single source of truth for all known lifecycle event names, their
corresponding :class:`~acmepipe.hooks.base.Hook` method names and the
activity log line written for each.

This module has **zero** internal dependencies; it can be imported
from anywhere without circular import risk.
"""

from __future__ import annotations

EVENT_METHOD_MAP: dict[str, str] = {
    "account.resolved": "on_account_resolved",
    "account.registration": "on_account_registration",
    "order.creation": "on_order_creation",
    "order.transition": "on_order_transition",
    "challenge.provisioned": "on_challenge_provisioned",
    "challenge.propagated": "on_challenge_propagated",
    "challenge.cleanup": "on_challenge_cleanup",
    "challenge.cleanup_failed": "on_challenge_cleanup_failed",
    "certificate.issuance": "on_certificate_issuance",
    "deployment.completed": "on_deployment_completed",
    "verification.completed": "on_verification_completed",
    "pipeline.completed": "on_pipeline_completed",
}

KNOWN_EVENTS: frozenset[str] = frozenset(EVENT_METHOD_MAP.keys())

# Activity log templates, formatted with the event context.
ACTIVITY_MESSAGES: dict[str, str] = {
    "account.resolved": "Using existing ACME account {account_id}",
    "account.registration": "Registered ACME account {account_id}",
    "order.creation": "Created order for {domain}",
    "order.transition": "Issuance of {domain}: {from_state} -> {to_state}",
    "challenge.provisioned": "Created TXT record {record_name} for {domain}",
    "challenge.propagated": "TXT record {record_name} propagation: {result}",
    "challenge.cleanup": "Removed TXT record {record_name}",
    "challenge.cleanup_failed": "Failed to remove TXT record {record_name}: {error}",
    "certificate.issuance": "Issued certificate for {domain} (fingerprint {fingerprint})",
    "deployment.completed": "Deployed {fingerprint} to {server}/{site}:{port} ({action})",
    "verification.completed": "Verification of {server}/{site}:{port}: {outcome}",
    "pipeline.completed": "{summary}",
}
