"""Enumerated types shared across the pipeline.

All enums inherit from :class:`enum.StrEnum` so their ``.value`` is a
plain string that serialises naturally into logs and JSON output.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


class AccountStatus(StrEnum):
    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Order / authorization (server-side ACME states)
# ---------------------------------------------------------------------------


class OrderStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(StrEnum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


# ---------------------------------------------------------------------------
# Client-side issuance state machine
# ---------------------------------------------------------------------------


class IssuanceState(StrEnum):
    NEW_ORDER = "new_order"
    AUTHORIZATION_PENDING = "authorization_pending"
    CHALLENGE_PROVISIONED = "challenge_provisioned"
    AWAITING_VALIDATION = "awaiting_validation"
    FINALIZING = "finalizing"
    CERTIFICATE_READY = "certificate_ready"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# DNS challenge record
# ---------------------------------------------------------------------------


class ChallengeState(StrEnum):
    PENDING = "pending"
    CREATED = "created"
    PROPAGATION_CONFIRMED = "propagation_confirmed"
    CLEANED = "cleaned"


class PropagationResult(StrEnum):
    READY = "ready"
    TIMED_OUT = "timed_out"


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class Environment(StrEnum):
    PRODUCTION = "production"
    STAGING = "staging"


class Stage(StrEnum):
    SECRETS = "secrets"
    ACCOUNT = "account"
    ISSUE = "issue"
    DEPLOY = "deploy"
    VERIFY = "verify"


class StageStatus(StrEnum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class KeyType(StrEnum):
    EC256 = "EC256"
    EC384 = "EC384"
    RSA2048 = "RSA2048"
    RSA3072 = "RSA3072"
    RSA4096 = "RSA4096"
